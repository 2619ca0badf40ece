"""Trainable, serializable CNN genomes for neuroevolution."""

from .config import CNNConfig, HyperParameters
from .errors import GenomeIntegrityError
from .genome import Genome, SanityCheck, create_initial_genome

__all__ = [
    "CNNConfig",
    "Genome",
    "GenomeIntegrityError",
    "HyperParameters",
    "SanityCheck",
    "create_initial_genome",
]
