"""
Tests for Activation Functions
==============================

Values, derivatives and numerical safety of the activation catalog.
"""

import numpy as np
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from scratchcnn.activations import (ActivationType, get_activation, Identity, Tanh, Sigmoid,
                                    ReLU, ELU, LeakyReLU)
from scratchcnn.exceptions import ConfigurationError


class TestCatalog:
    """Tests for activation lookup."""

    def test_every_kind_resolves(self):
        """Test that each per-neuron kind maps to its class."""
        expected = {
            ActivationType.IDENTITY: Identity,
            ActivationType.TANH: Tanh,
            ActivationType.SIGMOID: Sigmoid,
            ActivationType.RELU: ReLU,
            ActivationType.ELU: ELU,
            ActivationType.LEAKY_RELU: LeakyReLU,
        }
        for kind, cls in expected.items():
            assert isinstance(get_activation(kind), cls)

    def test_names(self):
        """Test lookup by name with different spellings."""
        assert isinstance(get_activation('ReLU'), ReLU)
        assert isinstance(get_activation('leaky-relu'), LeakyReLU)
        assert ActivationType.parse('SoftMax') == ActivationType.SOFT_MAX
        assert ActivationType.parse('maxpool') == ActivationType.MAX_POOL
        assert ActivationType.parse(None) == ActivationType.IDENTITY

    def test_sentinels_have_no_function(self):
        """MaxPool and SoftMax are handled by their layers."""
        with pytest.raises(ConfigurationError):
            get_activation(ActivationType.MAX_POOL)
        with pytest.raises(ConfigurationError):
            get_activation('softmax')

    def test_unknown_name(self):
        with pytest.raises(ConfigurationError, match="Unknown activation"):
            get_activation('swish')


class TestValues:
    """Tests for forward values and derivative policies."""

    def test_relu(self):
        relu = ReLU()
        np.testing.assert_array_equal(relu.forward(np.array([-1.0, 0.0, 2.0])), [0.0, 0.0, 2.0])
        # Derivative at exactly zero is zero
        np.testing.assert_array_equal(relu.backward(np.array([-1.0, 0.0, 2.0])), [0.0, 0.0, 1.0])

    def test_leaky_relu(self):
        leaky = LeakyReLU()
        np.testing.assert_allclose(leaky.forward(np.array([-2.0, 3.0])), [-0.2, 3.0])
        np.testing.assert_allclose(leaky.backward(np.array([-2.0, 3.0])), [0.1, 1.0])

    def test_elu(self):
        elu = ELU()
        x = np.array([-1.0, 0.0, 1.5])
        np.testing.assert_allclose(elu.forward(x), [0.1 * (np.exp(-1.0) - 1), 0.0, 1.5])
        np.testing.assert_allclose(elu.backward(x), [0.1 * np.exp(-1.0), 1.0, 1.0])

    def test_identity(self):
        identity = Identity()
        x = np.array([-3.0, 4.0])
        np.testing.assert_array_equal(identity.forward(x), x)
        np.testing.assert_array_equal(identity.backward(x), [1.0, 1.0])

    def test_tanh_and_sigmoid_scalars(self):
        assert Tanh().forward(0.0) == pytest.approx(0.0)
        assert Sigmoid().forward(0.0) == pytest.approx(0.5)
        assert Sigmoid().backward(0.0) == pytest.approx(0.25)
        assert Tanh().backward(0.0) == pytest.approx(1.0)

    def test_clamping_keeps_values_finite(self):
        """Huge inputs must not overflow in single precision."""
        x = np.array([-1e30, -1e6, 1e6, 1e30], dtype=np.float32)
        with np.errstate(over='raise'):
            t = Tanh().forward(x)
            s = Sigmoid().forward(x)
            dt = Tanh().backward(x)
            ds = Sigmoid().backward(x)

        for values in (t, s, dt, ds):
            assert np.all(np.isfinite(values))
        np.testing.assert_allclose(t, [-1, -1, 1, 1])
        np.testing.assert_allclose(s, [0, 0, 1, 1], atol=1e-30)

    def test_elu_large_positive_input(self):
        with np.errstate(over='raise'):
            assert ELU().forward(np.float32(1e6)) == pytest.approx(1e6)


class TestDerivatives:
    """Analytical derivatives against centered finite differences."""

    @pytest.mark.parametrize('kind', ['identity', 'tanh', 'sigmoid', 'relu', 'elu', 'leaky_relu'])
    def test_derivative_matches_finite_difference(self, kind):
        act = get_activation(kind)
        # Keep away from the hinge at zero
        x = np.array([-2.3, -0.7, -0.2, 0.3, 0.9, 1.7])
        epsilon = 1e-6

        numerical = (act.forward(x + epsilon) - act.forward(x - epsilon)) / (2 * epsilon)
        np.testing.assert_allclose(act.backward(x), numerical, rtol=1e-5, atol=1e-8)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
