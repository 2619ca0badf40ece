"""Primitives of the genome text format.

Every float is written as a Python hex float so that reading a file back
reproduces the exact bits that were written.
"""

from __future__ import annotations

from typing import Iterable

import numpy as np

from .errors import SerializationError

FORMAT_VERSION = "1.0"
VERSION_LINE = f"v{FORMAT_VERSION}"
INVALID_VERSION = "INVALID"

NODES_LABEL = "NODES"
EDGES_LABEL = "EDGES"
INNOVATION_NUMBERS_LABEL = "INNOVATION_NUMBERS"
BACKPROP_ORDER_LABEL = "BACKPROP_ORDER"
BEST_CLASS_ERROR_LABEL = "BEST_CLASS_ERROR"
BEST_CORRECT_PREDICTIONS_LABEL = "BEST_CORRECT_PREDICTIONS"

# One counter per mutation operator that can produce a genome, in file order.
PROVENANCE_COUNTERS = (
    "disable_edge",
    "enable_edge",
    "split_edge",
    "add_edge",
    "change_size",
    "change_size_x",
    "change_size_y",
    "crossover",
    "reset_weights",
    "add_node",
)


def encode_float(value: float) -> str:
    return float(value).hex()


def decode_float(token: str) -> float:
    try:
        return float.fromhex(token)
    except ValueError as exc:
        raise SerializationError(f"Invalid hex float: {token!r}") from exc


def decode_int(token: str) -> int:
    try:
        return int(token)
    except ValueError as exc:
        raise SerializationError(f"Invalid integer: {token!r}") from exc


def decode_bool(token: str) -> bool:
    if token not in ("0", "1"):
        raise SerializationError(f"Invalid flag: {token!r}")
    return token == "1"


def encode_bool(value: bool) -> str:
    return "1" if value else "0"


def encode_array(values: np.ndarray) -> str:
    return " ".join(float(v).hex() for v in np.asarray(values).ravel())


def decode_array(tokens: Iterable[str], shape: tuple[int, ...]) -> np.ndarray:
    flat = [decode_float(t) for t in tokens]
    expected = int(np.prod(shape))
    if len(flat) != expected:
        raise SerializationError(f"Expected {expected} values for shape {shape}, got {len(flat)}")
    return np.asarray(flat, dtype=np.float64).reshape(shape)


class TokenCursor:
    """Sequential reader over the whitespace-separated tokens of one line."""

    def __init__(self, line: str):
        self.tokens = line.split()
        self.position = 0

    def next(self) -> str:
        if self.position >= len(self.tokens):
            raise SerializationError("Unexpected end of line")
        token = self.tokens[self.position]
        self.position += 1
        return token

    def take(self, count: int) -> list[str]:
        if self.position + count > len(self.tokens):
            raise SerializationError(
                f"Expected {count} more tokens, only {len(self.tokens) - self.position} remain"
            )
        chunk = self.tokens[self.position : self.position + count]
        self.position += count
        return chunk

    def finish(self) -> None:
        if self.position != len(self.tokens):
            raise SerializationError(f"{len(self.tokens) - self.position} unexpected trailing tokens")
