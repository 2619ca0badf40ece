from __future__ import annotations

from typing import Sequence

import numpy as np

from .codec import (
    TokenCursor,
    decode_array,
    decode_bool,
    decode_int,
    encode_array,
    encode_bool,
)
from .errors import SerializationError
from .node import Node
from .rng import NormalDistribution, SeededRandom


def _axis_slices(offset: int, in_len: int, out_len: int, reverse: bool) -> tuple[slice, slice]:
    # Non-reversed axes slide the filter over the (larger) input; reversed
    # axes scatter every input cell over the (larger) output.
    if reverse:
        return slice(0, in_len), slice(offset, offset + in_len)
    return slice(offset, offset + out_len), slice(0, out_len)


def expected_filter(in_len: int, out_len: int, reverse: bool) -> int:
    if reverse:
        return out_len - in_len + 1
    return in_len - out_len + 1


class Edge:
    """A learned filter from one input Node to one output Node.

    The edge only refers to its endpoints; the owning genome resolves them by
    innovation number with :meth:`set_nodes`.
    """

    def __init__(
        self,
        innovation_number: int,
        input_innovation_number: int,
        output_innovation_number: int,
        filter_x: int,
        filter_y: int,
        reverse_filter_x: bool = False,
        reverse_filter_y: bool = False,
        disabled: bool = False,
    ):
        self.innovation_number = innovation_number
        self.input_innovation_number = input_innovation_number
        self.output_innovation_number = output_innovation_number
        self.filter_x = filter_x
        self.filter_y = filter_y
        self.reverse_filter_x = reverse_filter_x
        self.reverse_filter_y = reverse_filter_y
        self.disabled = disabled
        self.needs_init = True

        self.input_node: Node | None = None
        self.output_node: Node | None = None
        self.dropped = False
        self._forward_scale = 1.0

        self._allocate()

    def _allocate(self) -> None:
        shape = (max(self.filter_y, 0), max(self.filter_x, 0))
        self.weights = np.zeros(shape)
        self.weight_velocity = np.zeros(shape)
        self.best_weights = np.zeros(shape)
        self.best_weight_velocity = np.zeros(shape)
        self.weight_gradients = np.zeros(shape)

    @classmethod
    def connect(cls, innovation_number: int, input_node: Node, output_node: Node) -> "Edge":
        reverse_x = input_node.size_x < output_node.size_x
        reverse_y = input_node.size_y < output_node.size_y
        edge = cls(
            innovation_number,
            input_node.innovation_number,
            output_node.innovation_number,
            filter_x=expected_filter(input_node.size_x, output_node.size_x, reverse_x),
            filter_y=expected_filter(input_node.size_y, output_node.size_y, reverse_y),
            reverse_filter_x=reverse_x,
            reverse_filter_y=reverse_y,
        )
        edge.input_node = input_node
        edge.output_node = output_node
        output_node.enable_input()
        return edge

    @property
    def depth(self) -> float:
        return self.input_node.depth

    @property
    def number_weights(self) -> int:
        return self.filter_x * self.filter_y

    def copy(self) -> "Edge":
        edge = Edge(
            self.innovation_number,
            self.input_innovation_number,
            self.output_innovation_number,
            self.filter_x,
            self.filter_y,
            reverse_filter_x=self.reverse_filter_x,
            reverse_filter_y=self.reverse_filter_y,
            disabled=self.disabled,
        )
        edge.needs_init = self.needs_init
        edge.weights = self.weights.copy()
        edge.weight_velocity = self.weight_velocity.copy()
        edge.best_weights = self.best_weights.copy()
        edge.best_weight_velocity = self.best_weight_velocity.copy()
        return edge

    def set_nodes(self, nodes: Sequence[Node]) -> bool:
        """Point this edge at the nodes carrying its endpoint innovation numbers.

        Returns False when an endpoint is missing or the filter does not fit
        the endpoint sizes.
        """
        self.input_node = None
        self.output_node = None
        for node in nodes:
            if node.innovation_number == self.input_innovation_number:
                self.input_node = node
            if node.innovation_number == self.output_innovation_number:
                self.output_node = node
        if self.input_node is None or self.output_node is None:
            return False
        return self.is_filter_correct()

    def is_filter_correct(self) -> bool:
        if self.input_node is None or self.output_node is None:
            return False
        fx = expected_filter(self.input_node.size_x, self.output_node.size_x, self.reverse_filter_x)
        fy = expected_filter(self.input_node.size_y, self.output_node.size_y, self.reverse_filter_y)
        return (
            fx == self.filter_x
            and fy == self.filter_y
            and self.weights.shape == (self.filter_y, self.filter_x)
        )

    def equals(self, other: "Edge") -> bool:
        return (
            self.innovation_number == other.innovation_number
            and self.filter_x == other.filter_x
            and self.filter_y == other.filter_y
            and self.reverse_filter_x == other.reverse_filter_x
            and self.reverse_filter_y == other.reverse_filter_y
            and np.array_equal(self.weights, other.weights)
        )

    # -- enable / disable ----------------------------------------------------

    def disable(self) -> None:
        if self.disabled:
            return
        self.disabled = True
        self.output_node.disable_input()

    def enable(self) -> None:
        if not self.disabled:
            return
        self.disabled = False
        self.output_node.enable_input()

    def resize(self) -> None:
        self.reverse_filter_x = self.input_node.size_x < self.output_node.size_x
        self.reverse_filter_y = self.input_node.size_y < self.output_node.size_y
        self.filter_x = expected_filter(self.input_node.size_x, self.output_node.size_x, self.reverse_filter_x)
        self.filter_y = expected_filter(self.input_node.size_y, self.output_node.size_y, self.reverse_filter_y)
        self._allocate()
        self.needs_init = True

    # -- forward / backward -------------------------------------------------

    def _offsets(self):
        in_y, in_x = self.input_node.shape
        out_y, out_x = self.output_node.shape
        for ky in range(self.filter_y):
            in_sy, out_sy = _axis_slices(ky, in_y, out_y, self.reverse_filter_y)
            for kx in range(self.filter_x):
                in_sx, out_sx = _axis_slices(kx, in_x, out_x, self.reverse_filter_x)
                yield ky, kx, (in_sy, in_sx), (out_sy, out_sx)

    def _scale(self, dropout_probability: float) -> float:
        return 1.0 / (1.0 - dropout_probability) if dropout_probability > 0.0 else 1.0

    def propagate_forward(self, perform_dropout: bool, rng: SeededRandom, dropout_probability: float) -> None:
        if self.disabled:
            return

        self.dropped = False
        scale = 1.0
        if perform_dropout and dropout_probability > 0.0:
            self.dropped = rng.uniform() < dropout_probability
            scale = self._scale(dropout_probability)
        self._forward_scale = scale

        if not self.dropped:
            inputs = self.input_node.values
            outputs = self.output_node.values
            for ky, kx, in_slice, out_slice in self._offsets():
                outputs[out_slice] += scale * self.weights[ky, kx] * inputs[in_slice]

        self.output_node.input_fired()

    def propagate_backward(self) -> None:
        if self.disabled or self.dropped:
            return

        scale = self._forward_scale
        delta = self.output_node.delta
        inputs = self.input_node.values
        input_errors = self.input_node.errors
        for ky, kx, in_slice, out_slice in self._offsets():
            self.weight_gradients[ky, kx] += scale * float(np.sum(inputs[in_slice] * delta[out_slice]))
            input_errors[in_slice] += scale * self.weights[ky, kx] * delta[out_slice]

    def update_weights(self, mu: float, learning_rate: float, weight_decay: float) -> None:
        if self.disabled:
            return
        self.weight_velocity = mu * self.weight_velocity - learning_rate * (
            self.weight_gradients + weight_decay * self.weights
        )
        self.weights += self.weight_velocity
        self.weight_gradients.fill(0.0)

    def propagate_weight_count(self) -> None:
        if not self.disabled:
            self.output_node.add_weight_count(self.number_weights)

    # -- weight lifecycle ----------------------------------------------------

    def initialize_weights(self, rng: SeededRandom, normal: NormalDistribution) -> None:
        fan_in = max(self.output_node.weight_count, self.number_weights, 1)
        self.weights = normal.sample(rng, (self.filter_y, self.filter_x)) * np.sqrt(2.0 / fan_in)
        self.weight_velocity = np.zeros_like(self.weights)
        self.weight_gradients = np.zeros_like(self.weights)
        self.needs_init = False

    def save_best_weights(self) -> None:
        self.best_weights = self.weights.copy()
        self.best_weight_velocity = self.weight_velocity.copy()

    def set_weights_to_best(self) -> None:
        self.weights = self.best_weights.copy()
        self.weight_velocity = self.best_weight_velocity.copy()

    def reset_velocities(self) -> None:
        self.weight_velocity.fill(0.0)

    def has_zero_weight(self) -> bool:
        return float(np.sum(self.weights)) == 0.0

    def has_nan(self) -> bool:
        return not (
            np.all(np.isfinite(self.weights))
            and np.all(np.isfinite(self.weight_velocity))
            and np.all(np.isfinite(self.best_weights))
        )

    # -- serialization -------------------------------------------------------

    def serialize(self) -> str:
        fields = [
            str(self.innovation_number),
            str(self.input_innovation_number),
            str(self.output_innovation_number),
            str(self.filter_x),
            str(self.filter_y),
            encode_bool(self.reverse_filter_x),
            encode_bool(self.reverse_filter_y),
            encode_bool(self.disabled),
            encode_bool(self.needs_init),
            encode_array(self.weights),
            encode_array(self.weight_velocity),
            encode_array(self.best_weights),
            encode_array(self.best_weight_velocity),
        ]
        return " ".join(fields)

    @classmethod
    def deserialize(cls, line: str) -> "Edge":
        cursor = TokenCursor(line)
        innovation_number = decode_int(cursor.next())
        input_innovation_number = decode_int(cursor.next())
        output_innovation_number = decode_int(cursor.next())
        filter_x = decode_int(cursor.next())
        filter_y = decode_int(cursor.next())
        if filter_x <= 0 or filter_y <= 0:
            raise SerializationError(f"Edge {innovation_number} has impossible filter {filter_x} x {filter_y}")

        edge = cls(
            innovation_number,
            input_innovation_number,
            output_innovation_number,
            filter_x,
            filter_y,
            reverse_filter_x=decode_bool(cursor.next()),
            reverse_filter_y=decode_bool(cursor.next()),
            disabled=decode_bool(cursor.next()),
        )
        edge.needs_init = decode_bool(cursor.next())
        shape = (filter_y, filter_x)
        area = filter_x * filter_y
        edge.weights = decode_array(cursor.take(area), shape)
        edge.weight_velocity = decode_array(cursor.take(area), shape)
        edge.best_weights = decode_array(cursor.take(area), shape)
        edge.best_weight_velocity = decode_array(cursor.take(area), shape)
        cursor.finish()
        return edge

    def __repr__(self) -> str:
        return (
            f"Edge(innovation={self.innovation_number}, {self.input_innovation_number}->"
            f"{self.output_innovation_number}, filter={self.filter_x}x{self.filter_y}, "
            f"reverse=({self.reverse_filter_x}, {self.reverse_filter_y}), disabled={self.disabled})"
        )
