"""Exceptions for conditions that leave a genome in an inconsistent state."""

from __future__ import annotations


class GenomeIntegrityError(RuntimeError):
    """A structural or logical invariant of a genome was violated."""


class NumericalInstabilityError(GenomeIntegrityError):
    """A non-finite value reached the output normalization."""


class SerializationError(GenomeIntegrityError):
    """A serialized genome could not be parsed."""
