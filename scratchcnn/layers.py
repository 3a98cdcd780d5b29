"""
Network Layers - From Scratch Implementation
============================================

Every layer owns a rank-3 output tensor [depth, height, width] and a
feedback tensor of the same shape, and implements the same four operations:

- activate(in_layer, with_dropout): compute outputs from the predecessor's outputs
- back_propagate(out_layer): compute own feedback from the successor's
  calculate_weighted_feedback queries (chain rule)
- update_weights_and_biases(in_layer, learning_rate): gradient step on owned parameters
- calculate_weighted_feedback(z, y, x): this layer's share of the error at
  output coordinate (z, y, x) of its predecessor

Feedback is the engine's name for the error with respect to a neuron's
pre-activation signal, with the sign of (target - prediction). Adding
learning_rate * feedback * input to a weight therefore reduces the loss.
Feedback is overwritten on every pass, never accumulated.

Layers implemented:
- InputLayer: head of the chain, outputs written by the caller
- DenseLayer: fully connected, every output channel sees the whole input volume
- ConvolutionLayer: strided cross-correlation with one kernel per
  (output channel, input channel) pair
- MaxPoolLayer: non-overlapping window maximum with winner-take-all feedback routing
- OutputLayer: mean squared error or softmax + cross-entropy loss
"""

import numpy as np

from .activations import ActivationType, get_activation
from .exceptions import ConfigurationError, NumericalInstabilityError, ShapeMismatchError
from .tensor import convolution, cross_correlation

DEFAULT_DTYPE = np.float32

# Floor applied to softmax outputs before taking the log
CROSS_ENTROPY_EPSILON = 1.267e-14


class Layer:
    """Base class for all layers."""

    def __init__(self, depth, height, width, activation, dtype=None):
        self.dtype = np.dtype(DEFAULT_DTYPE if dtype is None else dtype)
        self.depth = depth
        self.height = height
        self.width = width
        self.activation = activation

        self.params = {}    # Trainable parameters
        self.outputs = np.zeros((depth, height, width), dtype=self.dtype)
        self.feedback = np.zeros((depth, height, width), dtype=self.dtype)
        self.channel_min = np.full(depth, np.inf, dtype=self.dtype)
        self.channel_max = np.full(depth, -np.inf, dtype=self.dtype)

    @property
    def shape(self):
        return (self.depth, self.height, self.width)

    def activate(self, in_layer, with_dropout=False):
        """Forward pass."""
        raise NotImplementedError

    def back_propagate(self, out_layer):
        """Backward pass."""
        raise NotImplementedError

    def update_weights_and_biases(self, in_layer, learning_rate):
        """Parameter update. Layers without parameters have nothing to do."""

    def calculate_weighted_feedback(self, in_z, in_y, in_x):
        """Error contribution to the predecessor's output at (in_z, in_y, in_x)."""
        raise NotImplementedError

    def _track_channel_range(self):
        self.channel_min[:] = self.outputs.min(axis=(1, 2))
        self.channel_max[:] = self.outputs.max(axis=(1, 2))

    def _check_input(self, in_layer):
        if in_layer is None or in_layer.shape != self.input_shape:
            got = None if in_layer is None else in_layer.shape
            raise ShapeMismatchError(
                f"{type(self).__name__} expects input of shape {self.input_shape}, got {got}")

    def __repr__(self):
        return f"{type(self).__name__}({self.width}x{self.height}x{self.depth}, {self.activation.name})"


class InputLayer(Layer):
    """
    Head of the chain.

    Its outputs are the raw signal tensor, written by the caller before
    each think or learn. It has no predecessor and no parameters.
    """

    def __init__(self, width, height, depth, dtype=None):
        if min(width, height, depth) < 1:
            raise ShapeMismatchError(f"Input shape must be positive, got {width}x{height}x{depth}")
        super().__init__(depth, height, width, ActivationType.IDENTITY, dtype)

    def set_signals(self, signals):
        """Copy signals into the input tensor (any array with the same number of elements)."""
        signals = np.asarray(signals, dtype=self.dtype)
        if signals.size != self.outputs.size:
            raise ShapeMismatchError(
                f"Input has {signals.size} values, layer expects shape {self.shape}")
        self.outputs[...] = signals.reshape(self.shape)

    def activate(self, in_layer=None, with_dropout=False):
        self._track_channel_range()

    def back_propagate(self, out_layer):
        """Nothing upstream to propagate to."""

    def calculate_weighted_feedback(self, in_z, in_y, in_x):
        raise NotImplementedError("The input layer has no predecessor")


class _NeuronLayer(Layer):
    """Shared plumbing for layers with an activation function and optional dropout."""

    def __init__(self, in_layer, config, height, width, rng=None, dtype=None):
        super().__init__(config.channel_count, height, width, config.activation, dtype)
        self.config = config
        self.input_shape = in_layer.shape
        self.rng = np.random.default_rng(rng)
        self.activation_fn = get_activation(config.activation)

        # Pre-activation value of each neuron, cached for the derivative
        self.signals = np.zeros(self.shape, dtype=self.dtype)
        # Per-neuron dropout factor: 0 for dropped, 1 / (1 - rate) for kept
        self.dropout_scale = np.ones(self.shape, dtype=self.dtype)

    def _init_weights(self, shape, fan_in):
        """
        He-style initialization.

        Each weight is the sum of two uniform draws in [-range, range]
        (a cheap pseudo-normal), range = 1 / sqrt(fan_in / 2).
        Each channel's bias is set to minus the sum of its weights,
        shifting the initial activation toward zero.
        """
        scale = 1.0 / np.sqrt(fan_in / 2.0)
        weights = (self.rng.uniform(-scale, scale, shape)
                   + self.rng.uniform(-scale, scale, shape)).astype(self.dtype)
        biases = -weights.reshape(shape[0], -1).sum(axis=1)
        return weights, biases.astype(self.dtype)

    def _apply_activation(self, with_dropout):
        activations = self.activation_fn.forward(self.signals)

        rate = self.config.dropout
        if with_dropout and rate > 0:
            # Inverted dropout: kept neurons are scaled so inference needs no rescaling
            mask = self.rng.random(self.shape) >= rate
            self.dropout_scale[...] = mask / (1.0 - rate)
        else:
            self.dropout_scale[...] = 1.0

        self.outputs[...] = activations * self.dropout_scale
        self._track_channel_range()

    def back_propagate(self, out_layer):
        """
        feedback = f'(signal) * weighted error from the successor.

        Neurons whose slope is exactly zero (saturated, dead or dropped)
        get zero feedback without querying the successor.
        """
        slopes = self.activation_fn.backward(self.signals) * self.dropout_scale

        for z, y, x in np.ndindex(*self.shape):
            slope = slopes[z, y, x]
            if slope == 0:
                self.feedback[z, y, x] = 0
                continue
            weighted_error = out_layer.calculate_weighted_feedback(z, y, x)
            self.feedback[z, y, x] = slope * weighted_error


class DenseLayer(_NeuronLayer):
    """
    Fully Connected (Dense) Layer.

    Every output channel is connected to every cell of the input volume,
    so an input of any rank-3 shape is consumed without flattening.

    Args:
        in_layer: Predecessor layer
        config: LayerConfig with kernel_size == 0
        rng: numpy.random.Generator used for initialization and dropout
        dtype: Floating point type of all tensors

    Output shape: (channel_count, 1, 1)

    Parameters:
        weight: [channel_count, in_depth, in_height, in_width]
        bias: [channel_count]
    """

    def __init__(self, in_layer, config, rng=None, dtype=None):
        if config.kernel_size != 0:
            raise ConfigurationError("A dense layer's kernel size must be zero")
        super().__init__(in_layer, config, 1, 1, rng, dtype)

        fan_in = in_layer.depth * in_layer.height * in_layer.width
        weights, biases = self._init_weights((self.depth,) + in_layer.shape, fan_in)
        self.params['weight'] = weights
        self.params['bias'] = biases

    @property
    def weights(self):
        return self.params['weight']

    @property
    def biases(self):
        return self.params['bias']

    def get_weight(self, channel, in_z, in_y, in_x):
        return float(self.params['weight'][channel, in_z, in_y, in_x])

    def get_bias(self, channel):
        return float(self.params['bias'][channel])

    def activate(self, in_layer, with_dropout=False):
        """signal = bias + sum over the input volume of input * weight, then f(signal)."""
        self._check_input(in_layer)

        weighted_sums = np.tensordot(self.params['weight'], in_layer.outputs, axes=3)
        self.signals[:, 0, 0] = self.params['bias'] + weighted_sums
        self._apply_activation(with_dropout)

    def update_weights_and_biases(self, in_layer, learning_rate):
        """
        bias += lr * feedback
        weight += lr * feedback * input
        """
        change = learning_rate * self.feedback[:, 0, 0]
        self.params['bias'] += change
        self.params['weight'] += change[:, None, None, None] * in_layer.outputs[None]

    def calculate_weighted_feedback(self, in_z, in_y, in_x):
        """sum over output channels of feedback * weight[channel, in_z, in_y, in_x]"""
        return float(np.dot(self.feedback[:, 0, 0], self.params['weight'][:, in_z, in_y, in_x]))

    def __repr__(self):
        return f"DenseLayer({self.input_shape} -> {self.depth}, {self.activation.name})"


class ConvolutionLayer(_NeuronLayer):
    """
    2D Convolutional Layer.

    Each output channel owns one kernel slice per input channel and one bias.
    The kernel is shared across all spatial positions.

    Args:
        in_layer: Predecessor layer
        config: LayerConfig with an odd kernel_size and stride >= 1
        rng: numpy.random.Generator used for initialization and dropout
        dtype: Floating point type of all tensors

    Output size along each spatial axis:
        (input_size - kernel_size + ceil(kernel_size / 2)) // stride + 1

    Kernel taps outside the input read as zero.

    Parameters:
        kernel: [channel_count, in_depth, kernel_size, kernel_size]
        bias: [channel_count]
    """

    def __init__(self, in_layer, config, rng=None, dtype=None):
        if config.kernel_size % 2 != 1:
            raise ConfigurationError(
                f"A convolution layer's kernel size must be odd, got {config.kernel_size}")

        height = config.calculate_output_size(in_layer.height)
        width = config.calculate_output_size(in_layer.width)
        if height < 1 or width < 1:
            raise ShapeMismatchError(
                f"Kernel {config.kernel_size} with stride {config.stride} does not fit "
                f"input {in_layer.width}x{in_layer.height}")
        super().__init__(in_layer, config, height, width, rng, dtype)

        k = config.kernel_size
        kernels, biases = self._init_weights((self.depth, in_layer.depth, k, k),
                                             k * k * in_layer.depth)
        self.params['kernel'] = kernels
        self.params['bias'] = biases

    @property
    def kernel_size(self):
        return self.config.kernel_size

    @property
    def stride(self):
        return self.config.stride

    @property
    def kernels(self):
        return self.params['kernel']

    @property
    def biases(self):
        return self.params['bias']

    def get_kernel_value(self, channel, kernel_x, kernel_y, in_z=0):
        return float(self.params['kernel'][channel, in_z, kernel_y, kernel_x])

    def get_bias(self, channel):
        return float(self.params['bias'][channel])

    def activate(self, in_layer, with_dropout=False):
        """signal = bias + cross_correlation(input, kernel), then f(signal)."""
        self._check_input(in_layer)

        kernels = self.params['kernel']
        biases = self.params['bias']
        inputs = in_layer.outputs

        for z, y, x in np.ndindex(*self.shape):
            self.signals[z, y, x] = biases[z] + cross_correlation(
                x, y, z, kernels, inputs, self.stride)

        self._apply_activation(with_dropout)

    def update_weights_and_biases(self, in_layer, learning_rate):
        """
        For every output cell, change = lr * feedback:
            bias += change
            kernel[:, ky, kx] += change * input[:, in_y, in_x]   (in-bounds taps only)
        """
        kernels = self.params['kernel']
        biases = self.params['bias']
        inputs = in_layer.outputs
        in_height, in_width = in_layer.height, in_layer.width

        for z, out_y, out_x in np.ndindex(*self.shape):
            change = learning_rate * self.feedback[z, out_y, out_x]
            if change == 0:
                continue

            biases[z] += change
            for kernel_y in range(self.kernel_size):
                in_y = self.config.get_input_index(out_y, kernel_y)
                if in_y < 0 or in_y >= in_height:
                    continue
                for kernel_x in range(self.kernel_size):
                    in_x = self.config.get_input_index(out_x, kernel_x)
                    if in_x < 0 or in_x >= in_width:
                        continue
                    kernels[z, :, kernel_y, kernel_x] += change * inputs[:, in_y, in_x]

    def calculate_weighted_feedback(self, in_z, in_y, in_x):
        """
        Transpose of the forward cross-correlation.

        With stride 1 this is the convolution (rotated kernel) of the feedback
        map, read through the kernels that connect every output channel to
        input channel in_z. Strided layers gather from the output cells whose
        window covers (in_y, in_x).
        """
        if self.stride == 1:
            transposed = self.params['kernel'].transpose(1, 0, 2, 3)
            extent = self.kernel_size - 1 - self.config.kernel_extent
            return convolution(in_x, in_y, in_z, transposed, self.feedback, 1, extent)

        return self._strided_weighted_feedback(in_z, in_y, in_x)

    def _strided_weighted_feedback(self, in_z, in_y, in_x):
        kernels = self.params['kernel']
        stride = self.stride
        extent = self.config.kernel_extent
        total = 0.0

        for kernel_y in range(self.kernel_size):
            offset_y = in_y - kernel_y + extent
            if offset_y % stride:
                continue
            out_y = offset_y // stride
            if out_y < 0 or out_y >= self.height:
                continue
            for kernel_x in range(self.kernel_size):
                offset_x = in_x - kernel_x + extent
                if offset_x % stride:
                    continue
                out_x = offset_x // stride
                if out_x < 0 or out_x >= self.width:
                    continue
                total += float(np.dot(self.feedback[:, out_y, out_x],
                                      kernels[:, in_z, kernel_y, kernel_x]))
        return total

    def __repr__(self):
        return (f"ConvolutionLayer({self.input_shape[0]} -> {self.depth}, "
                f"kernel_size={self.kernel_size}, stride={self.stride}, {self.activation.name})")


class MaxPoolLayer(Layer):
    """
    Max Pooling Layer.

    Downsamples each channel by taking the maximum of every
    kernel_size x kernel_size window. Windows never overlap
    (kernel_size == stride). The (row, column) of each window's winner is
    remembered so that feedback flows back only through it.

    Args:
        in_layer: Predecessor layer
        config: LayerConfig with activation MAX_POOL, kernel_size == stride
                and channel_count == in_layer.depth
    """

    def __init__(self, in_layer, config, dtype=None):
        if config.activation != ActivationType.MAX_POOL:
            raise ConfigurationError("A max pool layer's activation must be MAX_POOL")
        if config.kernel_size != config.stride:
            raise ConfigurationError(
                f"Max pool kernel size ({config.kernel_size}) must equal its stride ({config.stride})")
        if config.kernel_size < 2:
            raise ConfigurationError(f"Max pool windows must be at least 2x2, got {config.kernel_size}")
        if config.channel_count != in_layer.depth:
            raise ConfigurationError(
                f"Max pool channel count ({config.channel_count}) must equal input depth ({in_layer.depth})")

        height = config.calculate_output_size(in_layer.height)
        width = config.calculate_output_size(in_layer.width)
        super().__init__(in_layer.depth, height, width, ActivationType.MAX_POOL, dtype)
        self.config = config
        self.input_shape = in_layer.shape
        self.max_input_coords = np.zeros((self.depth, height, width, 2), dtype=np.intp)

    @property
    def kernel_size(self):
        return self.config.kernel_size

    @property
    def stride(self):
        return self.config.stride

    def activate(self, in_layer, with_dropout=False):
        """Output the maximum of each window and remember where it came from."""
        self._check_input(in_layer)
        inputs = in_layer.outputs
        size = self.kernel_size

        for z, out_y, out_x in np.ndindex(*self.shape):
            top = out_y * self.stride
            left = out_x * self.stride
            window = inputs[z, top:top + size, left:left + size]
            row, column = np.unravel_index(np.argmax(window), window.shape)
            self.max_input_coords[z, out_y, out_x] = (top + row, left + column)
            self.outputs[z, out_y, out_x] = window[row, column]

        self._track_channel_range()

    def back_propagate(self, out_layer):
        for z, y, x in np.ndindex(*self.shape):
            self.feedback[z, y, x] = out_layer.calculate_weighted_feedback(z, y, x)

    def calculate_weighted_feedback(self, in_z, in_y, in_x):
        """
        Winner-take-all routing: the window's feedback goes to the input that
        was the maximum, every other input in the window receives zero.
        """
        out_y = in_y // self.stride
        out_x = in_x // self.stride
        if out_y >= self.height or out_x >= self.width:
            return 0.0

        max_y, max_x = self.max_input_coords[in_z, out_y, out_x]
        if max_y == in_y and max_x == in_x:
            return float(self.feedback[in_z, out_y, out_x])
        return 0.0

    def __repr__(self):
        return f"MaxPoolLayer(pool_size={self.kernel_size}, {self.width}x{self.height}x{self.depth})"


class OutputLayer(Layer):
    """
    Terminal layer: holds the targets, computes the loss and seeds the
    backward pass.

    Modes:
        SOFT_MAX: softmax over the predecessor's outputs with cross-entropy
                  loss. Requires a 1x1 spatial shape (classification).
        anything else: the predecessor's outputs pass through unchanged and
                  the loss is mean squared error.

    Args:
        in_layer: Predecessor layer
        activation: ActivationType (or name) selecting the mode
    """

    def __init__(self, in_layer, activation=ActivationType.IDENTITY, dtype=None):
        activation = ActivationType.parse(activation)
        super().__init__(in_layer.depth, in_layer.height, in_layer.width, activation, dtype)
        if self.uses_softmax and (self.height, self.width) != (1, 1):
            raise ShapeMismatchError(
                f"SoftMax output requires a 1x1 spatial shape, got {self.width}x{self.height}")

        self.input_shape = in_layer.shape
        self.targets = np.zeros(self.shape, dtype=self.dtype)
        self.loss = 0.0
        # Only meaningful in SoftMax mode
        self.targets_one_hot_index = -1
        self.outputs_winner_index = -1

    @property
    def uses_softmax(self):
        return self.activation == ActivationType.SOFT_MAX

    def set_targets(self, targets):
        """Copy targets in (any array with the same number of elements)."""
        targets = np.asarray(targets, dtype=self.dtype)
        if targets.size != self.targets.size:
            raise ShapeMismatchError(
                f"Targets have {targets.size} values, output expects shape {self.shape}")
        self.targets[...] = targets.reshape(self.shape)

    def activate(self, in_layer, with_dropout=False):
        self._check_input(in_layer)

        if self.uses_softmax:
            self._softmax(in_layer.outputs[:, 0, 0])
        else:
            self.outputs[...] = in_layer.outputs
            self.channel_min[:] = in_layer.channel_min
            self.channel_max[:] = in_layer.channel_max

        if not np.all(np.isfinite(self.outputs)):
            raise NumericalInstabilityError(f"Non-finite network outputs: {self.outputs.ravel()}")

    def _softmax(self, logits):
        """
        Numerically stable softmax.

        The maximum is subtracted before exponentiating and the
        exponentials are summed in double precision.
        """
        logits = logits.astype(np.float64)
        self.outputs_winner_index = int(np.argmax(logits))
        shifted_exp = np.exp(logits - logits[self.outputs_winner_index])
        exp_sum = shifted_exp.sum()
        if not np.isfinite(exp_sum) or exp_sum == 0.0:
            raise NumericalInstabilityError(f"Softmax normalizer is {exp_sum}")

        self.outputs[:, 0, 0] = shifted_exp / exp_sum
        self.channel_min[:] = 0.0
        self.channel_max[:] = 1.0

    def calculate_loss(self):
        """
        Compute the loss and the feedback that seeds back propagation.

        Mean squared error:
            loss = mean((target - output)^2), feedback = 2 * (target - output)
        Softmax + cross-entropy:
            loss = -sum(target * log(max(output, eps))), feedback = target - output

        Returns:
            Loss as a float
        """
        errors = self.targets - self.outputs

        if self.uses_softmax:
            targets = self.targets[:, 0, 0]
            clipped = np.maximum(self.outputs[:, 0, 0], CROSS_ENTROPY_EPSILON)
            loss = -np.sum(targets * np.log(clipped))
            hot = np.flatnonzero(targets == 1)
            self.targets_one_hot_index = int(hot[0]) if len(hot) else -1
            self.feedback[...] = errors
        else:
            loss = np.mean(errors * errors)
            self.feedback[...] = 2 * errors

        if not np.isfinite(loss):
            raise NumericalInstabilityError(f"Loss is {loss}")

        self.loss = float(loss)
        return self.loss

    def back_propagate(self, out_layer=None):
        """Feedback was already set by calculate_loss."""

    def calculate_weighted_feedback(self, in_z, in_y, in_x):
        return float(self.feedback[in_z, in_y, in_x])

    def __repr__(self):
        mode = 'SoftMax+CrossEntropy' if self.uses_softmax else 'MSE'
        return f"OutputLayer({self.width}x{self.height}x{self.depth}, {mode})"
