"""
Convolutional Neural Network Driver
===================================

This is the main class that ties everything together:
- Building the layer chain from a declarative configuration
- Forward pass (think)
- Loss, backward pass and parameter update (learn)
- Layer introspection for debugging and visualization tools

The chain is an indexed list:

    InputLayer -> [configured layers...] -> OutputLayer

Forward and update passes walk it in ascending order, the backward pass in
descending order. Layers never hold references to their neighbours; the
driver hands each layer the neighbour it needs.
"""

import logging
from contextlib import contextmanager

import numpy as np

from .activations import ActivationType
from .config import LayerConfig
from .exceptions import ConfigurationError
from .layers import DEFAULT_DTYPE, ConvolutionLayer, InputLayer, OutputLayer

logger = logging.getLogger(__name__)


class ConvolutionalNeuralNetwork:
    """
    Feed-forward / convolutional neural network.

    Example:
        >>> net = ConvolutionalNeuralNetwork(
        ...     [LayerConfig.dense(4, 'relu'), LayerConfig.dense(1, 'sigmoid')],
        ...     learning_rate=0.1, rng=0)
        >>> net.initialize(width=1, height=1, depth=2)
        >>> net.set_inputs([0.5, -0.5])
        >>> net.set_targets([1.0])
        >>> loss = net.learn()
        >>> prediction = net.think()
    """

    def __init__(self, configuration=(), learning_rate=0.001, rng=None, dtype=DEFAULT_DTYPE):
        """
        Args:
            configuration: Sequence of LayerConfig entries (or dicts) for the hidden layers
            learning_rate: Base step size, scaled per call by learn()'s multiplier
            rng: numpy.random.Generator or seed for weight initialization,
                 dropout and shuffling
            dtype: Floating point type of every tensor (float32 by default)
        """
        self.configuration = [LayerConfig.coerce(entry) for entry in configuration]
        self.learning_rate = learning_rate
        self.rng = np.random.default_rng(rng)
        self.dtype = np.dtype(dtype)

        self.layers = []
        self.loss = 0.0
        self._busy = False

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def initialize(self, width, height, depth, output_activation=ActivationType.IDENTITY):
        """
        Build the layer chain for inputs of shape (depth, height, width).

        Args:
            width, height, depth: Input tensor shape
            output_activation: SOFT_MAX for classification with cross-entropy,
                               anything else for mean squared error
        """
        if self.layers:
            raise ConfigurationError(
                "Network is already initialized; call reset() before initializing again")

        self.layers = self._build_network(width, height, depth, output_activation)
        self.loss = 0.0

        for layer in self.layers:
            logger.debug("%s: %dx%dx%d; %s", type(layer).__name__,
                         layer.width, layer.height, layer.depth, layer.activation.name)

    def _build_network(self, width, height, depth, output_activation):
        layers = [InputLayer(width, height, depth, dtype=self.dtype)]
        for config in self.configuration:
            layers.append(config.create_layer(layers[-1], rng=self.rng, dtype=self.dtype))
        layers.append(OutputLayer(layers[-1], output_activation, dtype=self.dtype))
        return layers

    def change_configuration(self, configuration):
        """Replace the layer configuration. Only allowed before initialize()."""
        if self.layers:
            raise ConfigurationError("Cannot change configuration after initialization")
        self.configuration = [LayerConfig.coerce(entry) for entry in configuration]

    def reset(self):
        """Discard the layer chain so the network can be configured and initialized again."""
        self.layers = []
        self.loss = 0.0

    @property
    def is_initialized(self):
        return bool(self.layers)

    def _check_initialized(self):
        if not self.layers:
            raise ConfigurationError("Network is not initialized; call initialize() first")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def layer_count(self):
        return len(self.layers)

    def get_layer(self, index):
        """Layer at position index (0 is the input layer), or None when out of range."""
        if 0 <= index < len(self.layers):
            return self.layers[index]
        return None

    @property
    def input_layer(self):
        self._check_initialized()
        return self.layers[0]

    @property
    def output_layer(self):
        self._check_initialized()
        return self.layers[-1]

    @property
    def outputs(self):
        return self.output_layer.outputs

    def set_inputs(self, signals):
        """Write the raw signal tensor of the input layer."""
        self.input_layer.set_signals(signals)

    def set_targets(self, targets):
        """Write the targets used by the next learn()."""
        self.output_layer.set_targets(targets)

    # ------------------------------------------------------------------
    # Thinking and learning
    # ------------------------------------------------------------------

    @contextmanager
    def _exclusive(self):
        if self._busy:
            raise RuntimeError("think()/learn() is already running on this network")
        self._busy = True
        try:
            yield
        finally:
            self._busy = False

    def _forward(self, with_dropout):
        layers = self.layers
        layers[0].activate(None, with_dropout)
        for i in range(1, len(layers)):
            layers[i].activate(layers[i - 1], with_dropout)

    def think(self):
        """
        Forward pass from the current input tensor.

        Returns:
            The output layer's outputs, shape (depth, height, width)
        """
        self._check_initialized()
        with self._exclusive():
            self._forward(with_dropout=False)
        return self.output_layer.outputs

    def learn(self, learning_rate_multiplier=1.0):
        """
        One training step on the current inputs and targets.

        Forward pass (with dropout), loss, backward pass, then a gradient
        step of size learning_rate * learning_rate_multiplier on every layer.

        Returns:
            Loss of the forward pass, before the update
        """
        self._check_initialized()
        layers = self.layers

        with self._exclusive():
            self._forward(with_dropout=True)
            self.loss = layers[-1].calculate_loss()

            for i in range(len(layers) - 1, 0, -1):
                out_layer = layers[i + 1] if i + 1 < len(layers) else None
                layers[i].back_propagate(out_layer)

            learning_rate = self.learning_rate * learning_rate_multiplier
            for i in range(1, len(layers)):
                layers[i].update_weights_and_biases(layers[i - 1], learning_rate)

        return self.loss

    def predict(self):
        """
        Think and return the predicted class.

        SoftMax networks return the index of the largest probability;
        single-output networks return 1 when the output exceeds 0.5, else 0;
        other networks return the index of the largest output.
        """
        outputs = self.think().ravel()
        if outputs.size == 1 and not self.output_layer.uses_softmax:
            return int(outputs[0] > 0.5)
        return int(np.argmax(outputs))

    # ------------------------------------------------------------------
    # Inspection helpers
    # ------------------------------------------------------------------

    def get_feature_maps(self):
        """
        Outputs of every convolution layer from the most recent forward pass.

        Returns:
            List of dicts with 'layer_index', 'layer', 'feature_map',
            'channel_min' and 'channel_max'
        """
        feature_maps = []
        for i, layer in enumerate(self.layers):
            if isinstance(layer, ConvolutionLayer):
                feature_maps.append({
                    'layer_index': i,
                    'layer': layer,
                    'feature_map': layer.outputs.copy(),
                    'channel_min': layer.channel_min.copy(),
                    'channel_max': layer.channel_max.copy(),
                })
        return feature_maps

    def get_kernels(self):
        """
        Kernels and biases of every convolution layer.

        Returns:
            List of dicts with 'layer_index', 'layer', 'kernels' and 'biases'
        """
        kernels = []
        for i, layer in enumerate(self.layers):
            if isinstance(layer, ConvolutionLayer):
                kernels.append({
                    'layer_index': i,
                    'layer': layer,
                    'kernels': layer.kernels.copy(),
                    'biases': layer.biases.copy(),
                })
        return kernels

    def summary(self):
        """Print model summary and return the number of trainable parameters."""
        self._check_initialized()
        print("\n" + "=" * 70)
        print("Network Summary")
        print("=" * 70)

        total_params = 0

        for i, layer in enumerate(self.layers):
            n_params = sum(param.size for param in layer.params.values())
            total_params += n_params
            print(f"{i:3d}. {str(layer):<50} Params: {n_params:,}")

        print("-" * 70)
        print(f"Total trainable parameters: {total_params:,}")
        print("=" * 70 + "\n")

        return total_params

    def __repr__(self):
        return (f"ConvolutionalNeuralNetwork(layers={len(self.configuration)}, "
                f"learning_rate={self.learning_rate})")
