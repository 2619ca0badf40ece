"""Seeded random stream shared by weight initialization, dropout and shuffling.

The stream is a numpy ``Generator`` whose bit-generator state can be written
to a single text line and restored exactly, so a checkpointed genome resumes
with the same random sequence it would have drawn had it never stopped.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import MutableSequence

import numpy as np

from .codec import decode_float, encode_float


class SeededRandom:
    def __init__(self, seed: int = 0):
        self.generator = np.random.Generator(np.random.PCG64(seed))

    def uniform(self) -> float:
        return float(self.generator.random())

    def uniform_array(self, shape: tuple[int, ...]) -> np.ndarray:
        return self.generator.random(shape)

    def integer(self, high: int) -> int:
        """Uniform integer in ``[0, high)``."""
        return int(self.generator.integers(high))

    def standard_normal(self, shape: tuple[int, ...]) -> np.ndarray:
        return self.generator.standard_normal(shape)

    def state_string(self) -> str:
        return json.dumps(self.generator.bit_generator.state, sort_keys=True)

    @classmethod
    def from_state_string(cls, text: str) -> "SeededRandom":
        state = json.loads(text)
        bit_generator = np.random.PCG64()
        bit_generator.state = state
        rng = cls.__new__(cls)
        rng.generator = np.random.Generator(bit_generator)
        return rng


@dataclass
class NormalDistribution:
    mean: float = 0.0
    std_dev: float = 1.0

    def sample(self, rng: SeededRandom, shape: tuple[int, ...]) -> np.ndarray:
        return self.mean + self.std_dev * rng.standard_normal(shape)

    def __str__(self) -> str:
        return f"{encode_float(self.mean)} {encode_float(self.std_dev)}"

    @classmethod
    def parse(cls, text: str) -> "NormalDistribution":
        tokens = text.split()
        if len(tokens) != 2:
            raise ValueError(f"Expected 'mean std_dev', got: {text!r}")
        return cls(mean=decode_float(tokens[0]), std_dev=decode_float(tokens[1]))


def fisher_yates_shuffle(rng: SeededRandom, values: MutableSequence) -> None:
    for i in range(len(values) - 1, 0, -1):
        j = rng.integer(i + 1)
        values[i], values[j] = values[j], values[i]
