"""
Toy Datasets
============

Labelling functions over 2-D points, used to exercise small networks.
Each function takes arrays x and y and returns 1.0 inside the region and
0.0 outside.

Samples are shaped for a network initialized with width=1, height=1,
depth=2: inputs (N, 2, 1, 1), labels (N,).
"""

import numpy as np


def linear(x, y):
    return np.where((0.333 - x) > 0.5 * y, 1.0, 0.0)


def ellipse(x, y):
    return np.where(0.5 * x * x + 0.333 * y * y < 1.0, 1.0, 0.0)


def hyperbola(x, y):
    return np.where(x * (x - 1.0) - y * (0.333 * y + 0.2) > 0.0, 1.0, 0.0)


def sine_patches(x, y):
    return np.where(np.sin(3.0 * x) * np.sin(2.0 * y) > 0.2, 1.0, 0.0)


def xor(x, y):
    return np.where((x > 0) != (y > 0), 1.0, 0.0)


TEST_FUNCTIONS = {
    'linear': linear,
    'ellipse': ellipse,
    'hyperbola': hyperbola,
    'sine_patches': sine_patches,
    'xor': xor,
}


def get_test_function(name):
    """Look up a labelling function by name."""
    if callable(name):
        return name
    if name not in TEST_FUNCTIONS:
        available = ', '.join(TEST_FUNCTIONS.keys())
        raise ValueError(f"Unknown test function '{name}'. Available: {available}")
    return TEST_FUNCTIONS[name]


def random_points(n, rng=None, low=-2.0, high=2.0):
    """n points drawn uniformly from the square [low, high)^2, shape (n, 2)."""
    rng = np.random.default_rng(rng)
    return rng.uniform(low, high, size=(n, 2))


def make_dataset(function, points, dtype=np.float32):
    """
    Label points with a test function.

    Args:
        function: Name in TEST_FUNCTIONS or a callable f(x, y)
        points: Array of shape (N, 2)

    Returns:
        inputs: shape (N, 2, 1, 1)
        labels: integer labels, shape (N,)
    """
    points = np.asarray(points, dtype=dtype)
    labels = get_test_function(function)(points[:, 0], points[:, 1]).astype(int)
    inputs = points.reshape(len(points), 2, 1, 1)
    return inputs, labels
