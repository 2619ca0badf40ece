"""Shared fixtures for the cnn_neat test suite."""

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from cnn_neat.config import CNNConfig
from cnn_neat.datasets import ImageSet, make_dataset
from cnn_neat.edge import Edge
from cnn_neat.genome import Genome, create_initial_genome
from cnn_neat.node import Node


def build_linear_genome(
    input_x: int = 4,
    input_y: int = 4,
    classes: int = 3,
    seed: int = 0,
    connect: bool = True,
    initialize: bool = True,
    **kwargs,
) -> Genome:
    """One input node wired straight into ``classes`` 1x1 output nodes."""
    input_node = Node(0, 0.0, input_x, input_y, kind="input")
    outputs = [Node(1 + i, 1.0, 1, 1, kind="output") for i in range(classes)]
    edges = []
    if connect:
        edges = [Edge.connect(10 + i, input_node, out) for i, out in enumerate(outputs)]
    genome = Genome([input_node, *outputs], edges, seed=seed, **kwargs)
    if initialize:
        genome.initialize()
    return genome


@pytest.fixture
def make_genome():
    return build_linear_genome


@pytest.fixture
def tiny_images() -> ImageSet:
    return make_dataset(task="bars", size=24, rows=5, cols=5, noise=0.05, seed=3)


@pytest.fixture
def small_config() -> CNNConfig:
    cfg = CNNConfig(seed=7)
    cfg.hyper.learning_rate = 0.05
    cfg.training.max_epochs = 1
    return cfg


@pytest.fixture
def seed_genome(small_config, tiny_images) -> Genome:
    return create_initial_genome(small_config, tiny_images)


@pytest.fixture
def square_images() -> ImageSet:
    """Three-class set of 2x2 single-channel images."""
    rng = np.random.default_rng(11)
    images = rng.normal(size=(9, 1, 2, 2))
    labels = np.array([0, 1, 2] * 3)
    return ImageSet(name="square", images=images, labels=labels, number_classes=3)
