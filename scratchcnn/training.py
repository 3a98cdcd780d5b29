"""
Training Loop
=============

Per-sample training on top of ConvolutionalNeuralNetwork.learn():
- the sample order is reshuffled every epoch (Fisher-Yates)
- the learning rate multiplier decays linearly from 1 toward 0 over the epochs
- mean and worst loss are recorded per epoch
"""

import logging

import numpy as np
from tqdm import tqdm

from .exceptions import ShapeMismatchError
from .tensor import shuffle
from .utils import accuracy_score

logger = logging.getLogger(__name__)


def train(network, inputs, targets, epochs=100, rng=None, verbose=False, log_every=100):
    """
    Train the network one sample at a time.

    Args:
        network: Initialized ConvolutionalNeuralNetwork
        inputs: Samples, shape (N, ...) with each sample matching the input layer's size
        targets: Targets, shape (N, ...) with each row matching the output layer's size
        epochs: Number of passes over the data
        rng: Generator or seed for the shuffle order (default: the network's generator)
        verbose: Show a progress bar
        log_every: Log the epoch loss every this many epochs

    Returns:
        History dictionary with 'loss', 'max_loss' and 'lr_multiplier' per epoch
    """
    inputs = np.asarray(inputs)
    targets = np.asarray(targets)
    if len(inputs) != len(targets):
        raise ShapeMismatchError(f"Got {len(inputs)} samples but {len(targets)} targets")

    rng = network.rng if rng is None else np.random.default_rng(rng)
    order = np.arange(len(inputs))
    history = {'loss': [], 'max_loss': [], 'lr_multiplier': []}

    pbar = tqdm(range(epochs), desc="Training", disable=not verbose)
    for epoch in pbar:
        shuffle(order, rng)
        multiplier = (epochs - epoch) / epochs

        epoch_loss = 0.0
        max_loss = 0.0
        for index in order:
            network.set_inputs(inputs[index])
            network.set_targets(targets[index])
            loss = network.learn(multiplier)
            epoch_loss += loss
            max_loss = max(max_loss, loss)

        mean_loss = epoch_loss / max(len(order), 1)
        history['loss'].append(mean_loss)
        history['max_loss'].append(max_loss)
        history['lr_multiplier'].append(multiplier)

        if verbose:
            pbar.set_postfix({'loss': f'{mean_loss:.4f}', 'max': f'{max_loss:.4f}'})
        if epoch < 10 or (epoch + 1) % log_every == 0:
            logger.info("Loss is %.6f | %.6f after %d epochs", mean_loss, max_loss, epoch + 1)

    return history


def predict_all(network, inputs):
    """Predicted class for every sample, shape (N,)."""
    predictions = []
    for sample in np.asarray(inputs):
        network.set_inputs(sample)
        predictions.append(network.predict())
    return np.array(predictions, dtype=int)


def evaluate(network, inputs, labels):
    """
    Classification accuracy of the network on (inputs, labels).

    Args:
        labels: Integer labels (N,), a column of 0/1 targets (N, 1) or
                one-hot targets (N, classes[, 1, 1])
    """
    return accuracy_score(labels, predict_all(network, inputs))
