"""
Layer Configuration
===================

A network is declared as a list of LayerConfig entries, one per hidden layer.
The kind of layer is implied by the entry:

    activation == MAX_POOL  -> MaxPoolLayer
    kernel_size > 0         -> ConvolutionLayer
    otherwise               -> DenseLayer

Example:
    >>> configuration = [
    ...     LayerConfig.convolution(8, 'relu', kernel_size=3),
    ...     LayerConfig.max_pool(8, size=2),
    ...     LayerConfig.dense(10, 'identity'),
    ... ]
"""

from dataclasses import dataclass, asdict

from .activations import ActivationType
from .exceptions import ConfigurationError
from .layers import ConvolutionLayer, DenseLayer, MaxPoolLayer
from .tensor import kernel_extent


@dataclass(frozen=True)
class LayerConfig:
    """
    Declaration of one layer.

    Args:
        channel_count: Number of output channels (neurons for a dense layer)
        activation: ActivationType or name
        kernel_size: Spatial window size; 0 declares a dense layer
        stride: Step between windows
        dropout: Fraction of neurons dropped while learning (0 disables)
    """

    channel_count: int
    activation: ActivationType = ActivationType.RELU
    kernel_size: int = 0
    stride: int = 1
    dropout: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, 'activation', ActivationType.parse(self.activation))

        if self.channel_count < 1:
            raise ConfigurationError(f"channel_count must be positive, got {self.channel_count}")
        if self.kernel_size < 0:
            raise ConfigurationError(f"kernel_size must not be negative, got {self.kernel_size}")
        if self.stride < 1:
            raise ConfigurationError(f"stride must be at least 1, got {self.stride}")
        if not 0.0 <= self.dropout < 1.0:
            raise ConfigurationError(f"dropout must be in [0, 1), got {self.dropout}")
        if self.activation == ActivationType.SOFT_MAX:
            raise ConfigurationError("SoftMax is only available as the output activation")

    @classmethod
    def dense(cls, channel_count, activation='relu', dropout=0.0):
        """Fully connected layer."""
        return cls(channel_count, activation, kernel_size=0, stride=1, dropout=dropout)

    @classmethod
    def convolution(cls, channel_count, activation='relu', kernel_size=3, stride=1, dropout=0.0):
        """Convolution layer with an odd kernel size."""
        return cls(channel_count, activation, kernel_size=kernel_size, stride=stride,
                   dropout=dropout)

    @classmethod
    def max_pool(cls, channel_count, size=2):
        """Max pooling over non-overlapping size x size windows."""
        return cls(channel_count, ActivationType.MAX_POOL, kernel_size=size, stride=size)

    @classmethod
    def from_dict(cls, data):
        """Build from a mapping such as {'channel_count': 8, 'activation': 'relu'}."""
        known = {'channel_count', 'activation', 'kernel_size', 'stride', 'dropout'}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown layer config keys: {', '.join(sorted(unknown))}")
        return cls(**data)

    @classmethod
    def coerce(cls, entry):
        """Accept a LayerConfig or a mapping."""
        if isinstance(entry, cls):
            return entry
        if isinstance(entry, dict):
            return cls.from_dict(entry)
        raise ConfigurationError(f"Cannot build a LayerConfig from {entry!r}")

    def to_dict(self):
        data = asdict(self)
        data['activation'] = self.activation.value
        return data

    @property
    def kernel_extent(self):
        return kernel_extent(self.kernel_size)

    def calculate_output_size(self, num_inputs):
        """Output length along one spatial axis for num_inputs input cells."""
        return (num_inputs - self.kernel_size + self.kernel_extent) // self.stride + 1

    def get_input_index(self, out_index, kernel_index):
        """Input cell read by kernel tap kernel_index of output cell out_index."""
        return out_index * self.stride + kernel_index - self.kernel_extent

    def create_layer(self, in_layer, rng=None, dtype=None):
        """Instantiate the layer this entry declares on top of in_layer."""
        if self.activation == ActivationType.MAX_POOL:
            return MaxPoolLayer(in_layer, self, dtype=dtype)
        if self.kernel_size > 0:
            return ConvolutionLayer(in_layer, self, rng=rng, dtype=dtype)
        return DenseLayer(in_layer, self, rng=rng, dtype=dtype)
