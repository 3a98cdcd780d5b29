"""
Exceptions
==========

Error taxonomy for the engine:
- ConfigurationError: the layer chain was declared or used incorrectly
  (a programming error, raised at construction time)
- ShapeMismatchError: a tensor does not have the shape a layer expects
- NumericalInstabilityError: NaN or infinity appeared in a signal or loss
"""


class ScratchCNNError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(ScratchCNNError, ValueError):
    """Invalid layer configuration or invalid use of the network lifecycle."""


class ShapeMismatchError(ScratchCNNError, ValueError):
    """A tensor's shape does not match the shape declared by its layer."""


class NumericalInstabilityError(ScratchCNNError, ArithmeticError):
    """A non-finite value was produced by the forward pass or the loss."""
