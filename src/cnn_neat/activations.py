from __future__ import annotations

import numpy as np


ACTIVATION_TO_ID = {
    "identity": 0,
    "tanh": 1,
    "relu": 2,
    "sigmoid": 3,
    "leaky_relu": 4,
}

LEAKY_SLOPE = 0.01


def sigmoid(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-x))


def apply_activation(name: str, x: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Return ``(f(x), f'(x))`` for the named activation."""
    if name == "identity":
        return x.copy(), np.ones_like(x)
    if name == "tanh":
        y = np.tanh(x)
        return y, 1.0 - y * y
    if name == "relu":
        return np.maximum(0.0, x), (x > 0.0).astype(x.dtype)
    if name == "sigmoid":
        y = sigmoid(x)
        return y, y * (1.0 - y)
    if name == "leaky_relu":
        return np.where(x > 0.0, x, LEAKY_SLOPE * x), np.where(x > 0.0, 1.0, LEAKY_SLOPE)
    raise ValueError(f"Unknown activation: {name}")
