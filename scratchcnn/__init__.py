"""
Neural Network Engine from Scratch
==================================

A feed-forward / convolutional neural network built for transparency.
Every layer implements the same explicit contract:
- activate: forward pass
- back_propagate: error feedback via the chain rule
- update_weights_and_biases: gradient descent step
- calculate_weighted_feedback: error share handed to the previous layer

Layers: InputLayer, DenseLayer, ConvolutionLayer, MaxPoolLayer, OutputLayer
(mean squared error or softmax + cross-entropy).
"""

from .activations import ActivationType, get_activation
from .config import LayerConfig
from .exceptions import (ScratchCNNError, ConfigurationError, ShapeMismatchError,
                         NumericalInstabilityError)
from .layers import InputLayer, DenseLayer, ConvolutionLayer, MaxPoolLayer, OutputLayer
from .network import ConvolutionalNeuralNetwork
from .tensor import cross_correlation, convolution, fill, shuffle, apply_kernel
from .training import train, evaluate
from .utils import one_hot_encode, to_class_labels, accuracy_score
from . import datasets

__version__ = "1.0.0"
__all__ = [
    # Activations
    'ActivationType', 'get_activation',
    # Configuration
    'LayerConfig',
    # Errors
    'ScratchCNNError', 'ConfigurationError', 'ShapeMismatchError', 'NumericalInstabilityError',
    # Layers
    'InputLayer', 'DenseLayer', 'ConvolutionLayer', 'MaxPoolLayer', 'OutputLayer',
    # Main class
    'ConvolutionalNeuralNetwork',
    # Tensor operations
    'cross_correlation', 'convolution', 'fill', 'shuffle', 'apply_kernel',
    # Training
    'train', 'evaluate',
    # Utilities
    'one_hot_encode', 'to_class_labels', 'accuracy_score',
    # Toy datasets
    'datasets',
]
