"""
Activation Functions
====================

Non-linear activation functions applied to each neuron's weighted sum.
Each activation implements a forward pass f(x) and a backward pass f'(x);
both work elementwise on scalars and NumPy arrays.

The catalog is keyed by ActivationType. Two kinds are structural markers
rather than per-neuron functions:
- MAX_POOL: handled by MaxPoolLayer (pass-through of the window maximum)
- SOFT_MAX: handled by OutputLayer (needs the whole output vector)

Asking the catalog for a function of either marker is a configuration error.
"""

from enum import Enum

import numpy as np

from .exceptions import ConfigurationError


class ActivationType(Enum):
    IDENTITY = 'identity'
    TANH = 'tanh'
    SIGMOID = 'sigmoid'
    RELU = 'relu'
    ELU = 'elu'
    LEAKY_RELU = 'leaky_relu'
    MAX_POOL = 'max_pool'
    SOFT_MAX = 'softmax'

    @classmethod
    def parse(cls, value):
        """
        Convert a name or member to an ActivationType.

        Accepts members, values and common spellings ('ReLU', 'leaky-relu',
        'SoftMax', 'maxpool', None for identity).
        """
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.IDENTITY

        key = str(value).lower().replace('-', '_').replace(' ', '_')
        if key in _ALIASES:
            return _ALIASES[key]

        available = ', '.join(sorted(_ALIASES))
        raise ConfigurationError(f"Unknown activation '{value}'. Available: {available}")


_ALIASES = {
    'identity': ActivationType.IDENTITY,
    'linear': ActivationType.IDENTITY,
    'none': ActivationType.IDENTITY,
    'tanh': ActivationType.TANH,
    'sigmoid': ActivationType.SIGMOID,
    'relu': ActivationType.RELU,
    'elu': ActivationType.ELU,
    'leaky_relu': ActivationType.LEAKY_RELU,
    'leakyrelu': ActivationType.LEAKY_RELU,
    'max_pool': ActivationType.MAX_POOL,
    'maxpool': ActivationType.MAX_POOL,
    'softmax': ActivationType.SOFT_MAX,
    'soft_max': ActivationType.SOFT_MAX,
}


class Activation:
    """Base class for all activation functions."""

    def forward(self, x):
        """Apply activation function."""
        raise NotImplementedError

    def backward(self, x):
        """Compute derivative of activation w.r.t. input."""
        raise NotImplementedError

    def __call__(self, x):
        return self.forward(x)


class Identity(Activation):
    """
    Identity activation: f(x) = x

    Used for regression outputs and for layers feeding a softmax output.
    """

    def forward(self, x):
        return x

    def backward(self, x):
        return np.ones_like(x)


class Tanh(Activation):
    """
    Hyperbolic Tangent: f(x) = (e^2x - 1) / (e^2x + 1)

    Output range: (-1, 1). The input is clamped to [-38, 38] so that e^2x
    stays finite in single precision.

    Derivative:
        f'(x) = 1 - tanh(x)^2
    """

    clamp = 38.0

    def forward(self, x):
        return np.tanh(np.clip(x, -self.clamp, self.clamp))

    def backward(self, x):
        t = self.forward(x)
        return 1 - t * t


class Sigmoid(Activation):
    """
    Sigmoid: f(x) = 1 / (1 + exp(-x))

    Output range: (0, 1). The input is clamped to [-76, 76] so that exp
    stays finite in single precision.

    Derivative:
        f'(x) = f(x) * (1 - f(x))
    """

    clamp = 76.0

    def forward(self, x):
        x_clipped = np.clip(x, -self.clamp, self.clamp)
        return 1.0 / (1.0 + np.exp(-x_clipped))

    def backward(self, x):
        s = self.forward(x)
        return s * (1 - s)


class ReLU(Activation):
    """
    Rectified Linear Unit: f(x) = max(0, x)

    Derivative:
        f'(x) = 1 if x > 0 else 0

    The derivative at exactly zero is 0, so a neuron sitting on the hinge
    receives no feedback.
    """

    def forward(self, x):
        return np.maximum(0, x)

    def backward(self, x):
        return np.where(x > 0, 1.0, 0.0)


class ELU(Activation):
    """
    Exponential Linear Unit: f(x) = x if x >= 0 else alpha * (e^x - 1)

    Args:
        alpha: Saturation value for negative inputs (default: 0.1)

    Derivative:
        f'(x) = 1 if x >= 0 else alpha * e^x
    """

    def __init__(self, alpha=0.1):
        self.alpha = alpha

    def forward(self, x):
        # exp only ever sees the negative half, so it cannot overflow
        return np.where(x >= 0, x, self.alpha * (np.exp(np.minimum(x, 0)) - 1))

    def backward(self, x):
        return np.where(x >= 0, 1.0, self.alpha * np.exp(np.minimum(x, 0)))


class LeakyReLU(Activation):
    """
    Leaky ReLU: f(x) = x if x > 0 else alpha * x

    Args:
        alpha: Slope for negative values (default: 0.1)

    Derivative:
        f'(x) = 1 if x > 0 else alpha
    """

    def __init__(self, alpha=0.1):
        self.alpha = alpha

    def forward(self, x):
        return np.where(x > 0, x, self.alpha * x)

    def backward(self, x):
        return np.where(x > 0, 1.0, self.alpha)


# ====================================
# Activation Registry
# ====================================

ACTIVATIONS = {
    ActivationType.IDENTITY: Identity,
    ActivationType.TANH: Tanh,
    ActivationType.SIGMOID: Sigmoid,
    ActivationType.RELU: ReLU,
    ActivationType.ELU: ELU,
    ActivationType.LEAKY_RELU: LeakyReLU,
}


def get_activation(kind):
    """
    Get activation function by kind.

    Args:
        kind: ActivationType, string name ('relu', 'tanh', ...) or Activation instance

    Returns:
        Activation instance

    Example:
        >>> act = get_activation('relu')
        >>> act(np.array([-1, 0, 1]))
        array([0, 0, 1])
    """
    if isinstance(kind, Activation):
        return kind

    kind = ActivationType.parse(kind)
    if kind not in ACTIVATIONS:
        raise ConfigurationError(
            f"{kind.name} has no per-neuron function; it is handled by its layer type")

    return ACTIVATIONS[kind]()
