from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class HyperParameters:
    mu: float = 0.5
    mu_delta: float = 0.95
    learning_rate: float = 0.001
    learning_rate_delta: float = 0.95
    weight_decay: float = 0.0005
    weight_decay_delta: float = 0.95
    input_dropout_probability: float = 0.0
    hidden_dropout_probability: float = 0.0
    velocity_reset: int = 0


@dataclass
class TrainingConfig:
    max_epochs: int = 10
    reset_weights: bool = True
    working_set_size: int = 2000
    output_filename: str = ""
    checkpoint_filename: str = ""


@dataclass
class DatasetConfig:
    task: str = "bars"
    size: int = 400
    rows: int = 8
    cols: int = 8
    noise: float = 0.1


@dataclass
class SeedGenomeConfig:
    hidden_nodes: int = 0
    hidden_size: int = 4
    hidden_activation: str = "relu"


@dataclass
class CNNConfig:
    seed: int = 0
    generation_id: int = 0
    hyper: HyperParameters = field(default_factory=HyperParameters)
    training: TrainingConfig = field(default_factory=TrainingConfig)
    dataset: DatasetConfig = field(default_factory=DatasetConfig)
    seed_genome: SeedGenomeConfig = field(default_factory=SeedGenomeConfig)
