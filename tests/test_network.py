"""
Integration Tests for the Network
=================================

End-to-end tests for ConvolutionalNeuralNetwork.
"""

import logging

import numpy as np
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from scratchcnn.config import LayerConfig
from scratchcnn.datasets import make_dataset, xor
from scratchcnn.exceptions import ConfigurationError, ShapeMismatchError
from scratchcnn.layers import InputLayer, DenseLayer, ConvolutionLayer, MaxPoolLayer, OutputLayer
from scratchcnn.network import ConvolutionalNeuralNetwork
from scratchcnn.training import train, evaluate


def small_dense_network(seed=0, learning_rate=0.05):
    network = ConvolutionalNeuralNetwork(
        [LayerConfig.dense(4, 'tanh'), LayerConfig.dense(1, 'identity')],
        learning_rate=learning_rate, rng=seed)
    network.initialize(width=1, height=1, depth=2)
    return network


def small_conv_network(seed=0, learning_rate=0.05):
    network = ConvolutionalNeuralNetwork(
        [
            LayerConfig.convolution(4, 'tanh', kernel_size=3),
            LayerConfig.max_pool(4, size=2),
            LayerConfig.dense(2, 'identity'),
        ],
        learning_rate=learning_rate, rng=seed)
    network.initialize(width=5, height=5, depth=1, output_activation='softmax')
    return network


def bar_images():
    """Vertical bars (class 0) and horizontal bars (class 1) on a 5x5 canvas."""
    images, labels = [], []
    for position in (1, 2, 3):
        vertical = np.zeros((1, 5, 5), dtype=np.float32)
        vertical[0, :, position] = 1.0
        horizontal = np.zeros((1, 5, 5), dtype=np.float32)
        horizontal[0, position, :] = 1.0
        images += [vertical, horizontal]
        labels += [0, 1]
    return np.array(images), np.array(labels)


class TestLifecycle:
    """Tests for building, resetting and reconfiguring the layer chain."""

    def test_layer_chain(self):
        network = small_conv_network()

        assert network.layer_count == 5
        assert isinstance(network.get_layer(0), InputLayer)
        assert isinstance(network.get_layer(1), ConvolutionLayer)
        assert isinstance(network.get_layer(2), MaxPoolLayer)
        assert isinstance(network.get_layer(3), DenseLayer)
        assert isinstance(network.get_layer(4), OutputLayer)
        assert network.get_layer(5) is None
        assert network.get_layer(-1) is None

    def test_shapes_flow_through(self):
        network = small_conv_network()
        assert network.get_layer(1).shape == (4, 5, 5)
        assert network.get_layer(2).shape == (4, 3, 3)
        assert network.get_layer(3).weights.shape == (2, 4, 3, 3)
        assert network.output_layer.shape == (2, 1, 1)

    def test_initialize_twice(self):
        network = small_dense_network()
        with pytest.raises(ConfigurationError, match="already initialized"):
            network.initialize(width=1, height=1, depth=2)

    def test_change_configuration(self):
        network = ConvolutionalNeuralNetwork([LayerConfig.dense(3)])
        network.change_configuration([{'channel_count': 5, 'activation': 'sigmoid'}])
        network.initialize(width=2, height=1, depth=1)
        assert network.get_layer(1).depth == 5

        with pytest.raises(ConfigurationError):
            network.change_configuration([LayerConfig.dense(2)])

    def test_reset(self):
        network = small_dense_network()
        network.reset()

        assert not network.is_initialized
        assert network.layer_count == 0
        network.change_configuration([LayerConfig.dense(2, 'relu')])
        network.initialize(width=3, height=1, depth=1)
        assert network.layer_count == 3

    def test_use_before_initialize(self):
        network = ConvolutionalNeuralNetwork([LayerConfig.dense(2)])
        with pytest.raises(ConfigurationError, match="not initialized"):
            network.think()
        with pytest.raises(ConfigurationError):
            network.learn()
        with pytest.raises(ConfigurationError):
            network.set_inputs([1.0])

    def test_invalid_entry(self):
        with pytest.raises(ConfigurationError):
            ConvolutionalNeuralNetwork(['dense'])

    def test_invalid_layer_is_reported_at_initialize(self):
        network = ConvolutionalNeuralNetwork([LayerConfig.max_pool(3)])
        with pytest.raises(ConfigurationError):
            network.initialize(width=4, height=4, depth=1)
        assert not network.is_initialized

    def test_initialize_logs_layers(self, caplog):
        caplog.set_level(logging.DEBUG, logger='scratchcnn.network')
        small_dense_network()
        assert "DenseLayer: 1x1x4; TANH" in caplog.text
        assert "OutputLayer: 1x1x1; IDENTITY" in caplog.text


class TestThinkAndLearn:
    """Tests for the forward pass and training steps."""

    def test_think_shape(self):
        network = small_conv_network()
        network.set_inputs(np.ones(25))
        outputs = network.think()

        assert outputs.shape == (2, 1, 1)
        assert outputs.sum() == pytest.approx(1.0, rel=1e-5)

    def test_same_seed_same_outputs(self):
        a = small_conv_network(seed=11)
        b = small_conv_network(seed=11)
        signals = np.random.default_rng(0).random((1, 5, 5))
        a.set_inputs(signals)
        b.set_inputs(signals)
        np.testing.assert_array_equal(a.think(), b.think())

    def test_think_does_not_train(self):
        network = small_dense_network()
        network.set_inputs([0.5, -0.5])
        weights = network.get_layer(1).weights.copy()

        first = network.think().copy()
        second = network.think()

        np.testing.assert_array_equal(first, second)
        np.testing.assert_array_equal(network.get_layer(1).weights, weights)

    def test_learn_returns_loss_before_update(self):
        network = small_dense_network()
        network.set_inputs([0.5, -0.5])
        network.set_targets([1.0])
        output = float(network.think()[0, 0, 0])

        loss = network.learn()

        assert loss == pytest.approx((1.0 - output) ** 2, rel=1e-5)
        assert network.loss == loss

    def test_loss_decreases(self):
        network = small_dense_network()
        network.set_inputs([0.5, -0.5])
        network.set_targets([1.0])

        losses = [network.learn() for _ in range(500)]

        assert losses[-1] < 1e-4
        assert losses[-1] < losses[0]

    def test_single_layer_loss_decreases(self):
        """A 2-input / 1-output tanh layer fits one fixed pair over 1000 learn calls."""
        network = ConvolutionalNeuralNetwork([LayerConfig.dense(1, 'tanh')],
                                             learning_rate=0.01, rng=0)
        network.initialize(width=1, height=1, depth=2)
        network.set_inputs([0.5, -0.5])
        network.set_targets([0.5])

        losses = np.array([network.learn() for _ in range(1000)])

        assert losses[-1] < losses[0]
        assert np.all(np.diff(losses) <= 1e-7)

    def test_learning_rate_multiplier_zero(self):
        network = small_dense_network()
        network.set_inputs([0.5, -0.5])
        network.set_targets([1.0])
        weights = network.get_layer(1).weights.copy()

        network.learn(learning_rate_multiplier=0.0)

        np.testing.assert_array_equal(network.get_layer(1).weights, weights)

    def test_dropout_only_while_learning(self):
        network = ConvolutionalNeuralNetwork(
            [LayerConfig.dense(16, 'tanh', dropout=0.5), LayerConfig.dense(1, 'identity')],
            learning_rate=0.01, rng=2)
        network.initialize(width=1, height=1, depth=2)
        network.set_inputs([0.3, 0.7])
        network.set_targets([0.0])

        network.learn()
        assert np.any(network.get_layer(1).dropout_scale == 0)

        first = network.think().copy()
        assert np.all(network.get_layer(1).dropout_scale == 1)
        np.testing.assert_array_equal(network.think(), first)

    def test_predict(self):
        network = small_dense_network()
        network.set_inputs([0.1, 0.2])
        assert network.predict() == int(network.outputs[0, 0, 0] > 0.5)

        classifier = small_conv_network()
        classifier.set_inputs(np.eye(5))
        assert classifier.predict() == int(np.argmax(classifier.outputs))

    def test_input_size_mismatch(self):
        network = small_dense_network()
        with pytest.raises(ShapeMismatchError):
            network.set_inputs([1.0, 2.0, 3.0])

    def test_reentrant_call_rejected(self, monkeypatch):
        network = small_dense_network()
        hidden = network.get_layer(1)
        monkeypatch.setattr(hidden, 'activate',
                            lambda in_layer, with_dropout=False: network.think())

        with pytest.raises(RuntimeError, match="already running"):
            network.think()

        monkeypatch.undo()
        network.think()


class TestEndToEnd:
    """Small problems the network must be able to solve."""

    XOR_POINTS = [(0.8, 0.6), (-0.7, 0.9), (0.9, -0.5), (-0.6, -0.8)]

    def test_xor(self):
        """[Dense(4, ReLU)] -> Dense(1, Sigmoid) separates the four XOR points."""
        inputs, labels = make_dataset(xor, self.XOR_POINTS)
        np.testing.assert_array_equal(labels, [0, 1, 1, 0])

        # Some initializations leave too few live ReLU units to separate XOR
        network = ConvolutionalNeuralNetwork(
            [LayerConfig.dense(4, 'relu'), LayerConfig.dense(1, 'sigmoid')],
            learning_rate=0.5, rng=0)
        network.initialize(width=1, height=1, depth=2)

        history = train(network, inputs, labels.astype(np.float32), epochs=3000)

        assert history['loss'][-1] < history['loss'][0]
        assert evaluate(network, inputs, labels) == 1.0

    def test_convolutional_classifier(self):
        """Conv + max pool + dense + softmax learns to tell bar orientations apart."""
        images, labels = bar_images()
        targets = np.eye(2, dtype=np.float32)[labels]
        network = small_conv_network(seed=3)

        history = train(network, images, targets, epochs=80)

        assert history['loss'][-1] < 0.5 * history['loss'][0]
        assert evaluate(network, images, labels) == 1.0


class TestInspection:
    """Tests for summary, kernels and feature maps."""

    def test_summary(self, capsys):
        network = small_conv_network()
        total = network.summary()

        # conv: 4 * 1 * 9 + 4, dense: 2 * 4 * 3 * 3 + 2
        assert total == 40 + 74
        captured = capsys.readouterr()
        assert "Total trainable parameters: 114" in captured.out

    def test_get_kernels(self):
        network = small_conv_network()
        kernels = network.get_kernels()

        assert len(kernels) == 1
        assert kernels[0]['layer_index'] == 1
        assert kernels[0]['kernels'].shape == (4, 1, 3, 3)

        kernels[0]['kernels'][...] = 0.0
        assert np.any(network.get_layer(1).kernels != 0.0)

    def test_get_feature_maps(self):
        network = small_conv_network()
        network.set_inputs(np.eye(5))
        network.think()

        maps = network.get_feature_maps()

        assert len(maps) == 1
        np.testing.assert_array_equal(maps[0]['feature_map'], network.get_layer(1).outputs)
        np.testing.assert_array_equal(maps[0]['channel_max'],
                                      network.get_layer(1).outputs.max(axis=(1, 2)))

    def test_repr(self):
        network = small_dense_network()
        assert "learning_rate=0.05" in repr(network)
        assert "ConvolutionLayer" in repr(small_conv_network().get_layer(1))


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
