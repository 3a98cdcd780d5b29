"""
Tensor Operations
=================

Sliding-window operators over rank-3 tensors addressed (depth, row, column),
plus small array utilities.

The window for output cell (row, column) starts at
    (row * stride - extent, column * stride - extent)
with extent = ceil(kernel_size / 2) by default. Kernel taps that fall
outside the tensor contribute zero (implicit zero padding).

- cross_correlation: the forward operator of a convolution layer
- convolution: the same window with the kernel rotated 180 degrees, the
  operator used to route error back through a kernel

Kernel banks are either [channels, depth, k, k] (one kernel slice per input
channel) or [channels, k, k] (one kernel shared across input depth).
"""

import math

import numpy as np

from .exceptions import ShapeMismatchError


def kernel_extent(kernel_size):
    """Offset of a window's first tap relative to its anchor, ceil(k / 2)."""
    return math.ceil(kernel_size / 2)


def _select_kernel(kernels, channel, tensor):
    kernel = np.asarray(kernels)[channel]
    if kernel.shape[-1] != kernel.shape[-2]:
        raise ShapeMismatchError(f"Kernels must be square, got {kernel.shape[-2:]}")

    if kernel.ndim == 2:
        return kernel[np.newaxis]
    if kernel.ndim == 3 and kernel.shape[0] == tensor.shape[0]:
        return kernel
    raise ShapeMismatchError(
        f"Kernel of shape {kernel.shape} does not match tensor depth {tensor.shape[0]}")


def _window_sum(kernel, tensor, column, row, stride, extent):
    depth, height, width = tensor.shape
    kernel_size = kernel.shape[-1]
    if extent is None:
        extent = kernel_extent(kernel_size)

    top = row * stride - extent
    left = column * stride - extent

    # Clip the window to the tensor; the clipped-away taps read zeros
    y0, y1 = max(top, 0), min(top + kernel_size, height)
    x0, x1 = max(left, 0), min(left + kernel_size, width)
    if y0 >= y1 or x0 >= x1:
        return 0.0

    window = tensor[:, y0:y1, x0:x1]
    weights = kernel[:, y0 - top:y1 - top, x0 - left:x1 - left]
    return float(np.sum(window * weights))


def cross_correlation(column, row, channel, kernels, tensor, stride=1, extent=None):
    """
    Cross-correlation (sliding inner product) of tensor with kernels[channel].

    Args:
        column: Column index in the OUTPUT map
        row: Row index in the OUTPUT map
        channel: Index of the kernel to use
        kernels: Kernel bank [channels, depth, k, k] or [channels, k, k]
        tensor: Input tensor [depth, height, width]
        stride: Step between neighbouring windows
        extent: Window offset (default: ceil(k / 2))

    Returns:
        sum over z, ky, kx of tensor[z, y, x] * kernel[z, ky, kx]
        where y = row * stride + ky - extent and x likewise
    """
    tensor = np.asarray(tensor)
    kernel = _select_kernel(kernels, channel, tensor)
    return _window_sum(kernel, tensor, column, row, stride, extent)


def convolution(column, row, channel, kernels, tensor, stride=1, extent=None):
    """
    Convolution of tensor with kernels[channel].

    Identical to cross_correlation except that the kernel is indexed with
    both spatial axes mirrored (k - 1 - index), i.e. rotated 180 degrees.
    """
    tensor = np.asarray(tensor)
    kernel = _select_kernel(kernels, channel, tensor)
    return _window_sum(kernel[:, ::-1, ::-1], tensor, column, row, stride, extent)


def fill(array, value):
    """Set every element of array to value, in place."""
    array[...] = value
    return array


def shuffle(array, rng=None):
    """
    Unbiased in-place Fisher-Yates shuffle along the first axis.

    Args:
        array: Mutable sequence or NumPy array
        rng: numpy.random.Generator (or seed) supplying the randomness
    """
    rng = np.random.default_rng(rng)
    length = len(array)
    for n in range(length - 1):
        m = int(rng.integers(n, length))
        if m != n:
            if isinstance(array, np.ndarray):
                array[[n, m]] = array[[m, n]]
            else:
                array[n], array[m] = array[m], array[n]
    return array


# ====================================
# Image Filter Presets
# ====================================

FILTER_PRESETS = {
    'identity': np.array([[0, 0, 0],
                          [0, 1, 0],
                          [0, 0, 0]], dtype=np.float32),
    'outline': np.array([[-1, -1, -1],
                         [-1, 8, -1],
                         [-1, -1, -1]], dtype=np.float32),
    'sharpen': np.array([[0, -1, 0],
                         [-1, 5, -1],
                         [0, -1, 0]], dtype=np.float32),
    'blur': np.array([[0.0625, 0.125, 0.0625],
                      [0.125, 0.25, 0.125],
                      [0.0625, 0.125, 0.0625]], dtype=np.float32),
    'emboss': np.array([[-2, -1, 0],
                        [-1, 1, 1],
                        [0, 1, 2]], dtype=np.float32),
    'bottom_sobel': np.array([[-1, -2, -1],
                              [0, 0, 0],
                              [1, 2, 1]], dtype=np.float32),
    'top_sobel': np.array([[1, 2, 1],
                           [0, 0, 0],
                           [-1, -2, -1]], dtype=np.float32),
    'left_sobel': np.array([[1, 0, -1],
                            [2, 0, -2],
                            [1, 0, -1]], dtype=np.float32),
    'right_sobel': np.array([[-1, 0, 1],
                             [-2, 0, 2],
                             [-1, 0, 1]], dtype=np.float32),
    'laplacian': np.array([[1, 2, 1],
                           [2, -12, 2],
                           [1, 2, 1]], dtype=np.float32),
}


def apply_kernel(image, kernel):
    """
    Filter a 2-D image with a square odd-sized kernel, keeping its size.

    The window is centred on each pixel (extent = k // 2) and pixels outside
    the image read as zero.

    Args:
        image: 2-D array [height, width]
        kernel: 2-D kernel or the name of one of FILTER_PRESETS

    Returns:
        Filtered image, same shape as the input
    """
    if isinstance(kernel, str):
        if kernel not in FILTER_PRESETS:
            available = ', '.join(sorted(FILTER_PRESETS))
            raise ValueError(f"Unknown filter '{kernel}'. Available: {available}")
        kernel = FILTER_PRESETS[kernel]

    image = np.asarray(image)
    if image.ndim != 2:
        raise ShapeMismatchError(f"Expected a 2-D image, got shape {image.shape}")

    kernels = np.asarray(kernel)[np.newaxis]
    tensor = image[np.newaxis]
    extent = kernels.shape[-1] // 2
    height, width = image.shape

    filtered = np.zeros(image.shape, dtype=np.result_type(image, kernels))
    for row in range(height):
        for column in range(width):
            filtered[row, column] = cross_correlation(column, row, 0, kernels, tensor,
                                                      stride=1, extent=extent)
    return filtered
