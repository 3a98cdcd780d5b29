"""
Utility Functions
=================

Helpers for preparing targets and scoring predictions.

Per-sample targets follow the output layer's rank-3 layout, so a batch of
targets is (N, depth, height, width). A classifier's targets are
(N, classes, 1, 1); a single-output network's are (N, 1, 1, 1) or simply (N,).
"""

import numpy as np


def one_hot_encode(labels, num_classes=None):
    """
    Convert integer labels to softmax targets.

    Args:
        labels: Integer labels, shape (N,)
        num_classes: Number of classes (inferred if None)

    Returns:
        One-hot targets shaped like a softmax output per sample,
        shape (N, num_classes, 1, 1)
    """
    labels = np.asarray(labels).astype(int).ravel()

    if num_classes is None:
        num_classes = labels.max() + 1

    targets = np.zeros((len(labels), num_classes, 1, 1), dtype=np.float32)
    targets[np.arange(len(labels)), labels, 0, 0] = 1.0
    return targets


def to_class_labels(values):
    """
    Reduce per-sample labels or targets to one class index per sample.

    Rows with several values (one-hot targets, softmax outputs) give the
    index of their largest entry. Single values (integer labels, a column
    of 0/1 targets) are kept as they are.
    """
    values = np.asarray(values)
    if values.ndim <= 1:
        return values

    rows = values.reshape(len(values), -1)
    if rows.shape[1] == 1:
        return rows.ravel()
    return np.argmax(rows, axis=1)


def accuracy_score(y_true, y_pred):
    """
    Compute classification accuracy.

    Args:
        y_true: True labels (integers, a target column, or one-hot)
        y_pred: Predictions in any of the same layouts

    Returns:
        Accuracy as float
    """
    y_true = to_class_labels(y_true)
    y_pred = to_class_labels(y_pred)
    if len(y_true) != len(y_pred):
        raise ValueError(f"Got {len(y_true)} labels but {len(y_pred)} predictions")

    return float(np.mean(y_true == y_pred))
