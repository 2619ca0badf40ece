from __future__ import annotations

import copy

import numpy as np

from .activations import ACTIVATION_TO_ID, apply_activation
from .codec import (
    TokenCursor,
    decode_array,
    decode_bool,
    decode_float,
    decode_int,
    encode_array,
    encode_bool,
    encode_float,
)
from .errors import SerializationError
from .rng import NormalDistribution, SeededRandom

NODE_KINDS = ("input", "hidden", "output")

BIAS_SCALE = 0.1


class Node:
    """A 2-D feature map with a bias field.

    ``values`` holds the pre-activation sum while inbound edges are firing and
    the activated output once every live input has arrived.
    """

    def __init__(
        self,
        innovation_number: int,
        depth: float,
        size_x: int,
        size_y: int,
        kind: str = "hidden",
        activation: str | None = None,
    ):
        if kind not in NODE_KINDS:
            raise ValueError(f"Unknown node kind: {kind}")
        self.innovation_number = innovation_number
        self.depth = float(depth)
        self.size_x = size_x
        self.size_y = size_y
        self.kind = kind
        if activation is None:
            activation = "relu" if kind == "hidden" else "identity"
        self.activation = activation

        self.total_inputs = 0
        self.inputs_fired = 0
        self.weight_count = 0
        self.needs_init = True
        self.visited = False

        self._allocate()

    def _allocate(self) -> None:
        shape = self.shape
        self.bias = np.zeros(shape)
        self.bias_velocity = np.zeros(shape)
        self.best_bias = np.zeros(shape)
        self.best_bias_velocity = np.zeros(shape)
        self.values = np.zeros(shape)
        self.errors = np.zeros(shape)
        self.gradients = np.zeros(shape)

    @property
    def shape(self) -> tuple[int, int]:
        return (self.size_y, self.size_x)

    @property
    def is_input(self) -> bool:
        return self.kind == "input"

    @property
    def is_output(self) -> bool:
        return self.kind == "output"

    @property
    def is_hidden(self) -> bool:
        return self.kind == "hidden"

    @property
    def delta(self) -> np.ndarray:
        return self.errors * self.gradients

    def copy(self) -> "Node":
        return copy.deepcopy(self)

    # -- forward / backward -------------------------------------------------

    def reset(self) -> None:
        self.values.fill(0.0)
        self.errors.fill(0.0)
        self.gradients.fill(0.0)
        self.inputs_fired = 0
        if not self.is_input and self.total_inputs == 0:
            self._fire()

    def set_values(
        self,
        pixels: np.ndarray,
        channel: int,
        perform_dropout: bool,
        rng: SeededRandom,
        dropout_probability: float,
    ) -> None:
        channel_pixels = np.asarray(pixels[channel], dtype=np.float64)
        if channel_pixels.shape != self.shape:
            raise ValueError(
                f"Input node {self.innovation_number} has shape {self.shape}, "
                f"image channel has shape {channel_pixels.shape}"
            )
        self.values[:] = channel_pixels
        if perform_dropout and dropout_probability > 0.0:
            keep = rng.uniform_array(self.shape) >= dropout_probability
            self.values *= keep / (1.0 - dropout_probability)

    def input_fired(self) -> None:
        self.inputs_fired += 1
        if self.inputs_fired == self.total_inputs:
            self._fire()

    def _fire(self) -> None:
        self.values, self.gradients = apply_activation(self.activation, self.values + self.bias)

    def propagate_bias(self, mu: float, learning_rate: float, weight_decay: float) -> None:
        if self.is_input:
            return
        self.bias_velocity = mu * self.bias_velocity - learning_rate * (self.delta + weight_decay * self.bias)
        self.bias += self.bias_velocity

    def get_value(self, y: int, x: int) -> float:
        return float(self.values[y, x])

    def set_value(self, y: int, x: int, value: float) -> None:
        self.values[y, x] = value

    def set_error(self, y: int, x: int, error: float) -> None:
        self.errors[y, x] = error

    def set_gradient(self, y: int, x: int, gradient: float) -> None:
        self.gradients[y, x] = gradient

    # -- bias lifecycle ------------------------------------------------------

    def initialize_bias(self, rng: SeededRandom, normal: NormalDistribution) -> None:
        self.bias = BIAS_SCALE * normal.sample(rng, self.shape)
        self.bias_velocity = np.zeros(self.shape)
        self.needs_init = False

    def save_best_bias(self) -> None:
        self.best_bias = self.bias.copy()
        self.best_bias_velocity = self.bias_velocity.copy()

    def set_bias_to_best(self) -> None:
        self.bias = self.best_bias.copy()
        self.bias_velocity = self.best_bias_velocity.copy()

    def reset_velocities(self) -> None:
        self.bias_velocity.fill(0.0)

    def has_zero_bias(self) -> bool:
        return float(np.sum(self.bias)) == 0.0

    def has_nan(self) -> bool:
        return not (
            np.all(np.isfinite(self.bias))
            and np.all(np.isfinite(self.bias_velocity))
            and np.all(np.isfinite(self.best_bias))
        )

    def resize(self, size_x: int, size_y: int) -> None:
        self.size_x = size_x
        self.size_y = size_y
        self._allocate()
        self.needs_init = True

    # -- graph bookkeeping ---------------------------------------------------

    def visit(self) -> None:
        self.visited = True

    def set_unvisited(self) -> None:
        self.visited = False

    def enable_input(self) -> None:
        self.total_inputs += 1

    def disable_input(self) -> None:
        self.total_inputs -= 1

    def reset_weight_count(self) -> None:
        self.weight_count = 0

    def add_weight_count(self, count: int) -> None:
        self.weight_count += count

    # -- serialization -------------------------------------------------------

    def serialize(self) -> str:
        fields = [
            str(self.innovation_number),
            encode_float(self.depth),
            str(self.size_x),
            str(self.size_y),
            self.kind,
            self.activation,
            str(self.total_inputs),
            encode_bool(self.needs_init),
            encode_array(self.bias),
            encode_array(self.bias_velocity),
            encode_array(self.best_bias),
            encode_array(self.best_bias_velocity),
        ]
        return " ".join(fields)

    @classmethod
    def deserialize(cls, line: str) -> "Node":
        cursor = TokenCursor(line)
        innovation_number = decode_int(cursor.next())
        depth = decode_float(cursor.next())
        size_x = decode_int(cursor.next())
        size_y = decode_int(cursor.next())
        kind = cursor.next()
        activation = cursor.next()
        if kind not in NODE_KINDS:
            raise SerializationError(f"Unknown node kind: {kind!r}")
        if activation not in ACTIVATION_TO_ID:
            raise SerializationError(f"Unknown activation: {activation!r}")
        if size_x <= 0 or size_y <= 0:
            raise SerializationError(f"Node {innovation_number} has impossible size {size_x} x {size_y}")

        node = cls(innovation_number, depth, size_x, size_y, kind=kind, activation=activation)
        node.total_inputs = decode_int(cursor.next())
        node.needs_init = decode_bool(cursor.next())
        area = size_x * size_y
        node.bias = decode_array(cursor.take(area), node.shape)
        node.bias_velocity = decode_array(cursor.take(area), node.shape)
        node.best_bias = decode_array(cursor.take(area), node.shape)
        node.best_bias_velocity = decode_array(cursor.take(area), node.shape)
        cursor.finish()
        return node

    def __repr__(self) -> str:
        return (
            f"Node(innovation={self.innovation_number}, kind={self.kind}, depth={self.depth}, "
            f"size={self.size_x}x{self.size_y}, inputs={self.total_inputs})"
        )
