from __future__ import annotations

import bisect
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Sequence, TextIO

from .codec import PROVENANCE_COUNTERS, VERSION_LINE
from .config import CNNConfig, HyperParameters
from .datasets import Image, ImageSet
from .edge import Edge
from .errors import GenomeIntegrityError, NumericalInstabilityError
from .innovation import InnovationTracker
from .node import Node
from .rng import NormalDistribution, SeededRandom, fisher_yates_shuffle
from .serialization import read_genome, write_genome

logger = logging.getLogger(__name__)

MAX_EXTENT = 100
MU_CEILING = 0.99
WORKING_SET_SIZE = 2000

ProgressCallback = Callable[[float], None]


class SanityCheck(Enum):
    BEFORE_INSERT = "before_insert"
    AFTER_GENERATION = "after_generation"


@dataclass
class EvaluationResult:
    total_error: float = 0.0
    predictions: int = 0
    samples: int = 0
    class_error: list[float] = field(default_factory=list)
    correct_predictions: list[int] = field(default_factory=list)

    @property
    def accuracy(self) -> float:
        return self.predictions / self.samples if self.samples else 0.0


def softmax(values: Sequence[float]) -> list[float]:
    """Max-shifted softmax; any non-finite intermediate is fatal."""
    for value in values:
        if not math.isfinite(value):
            raise NumericalInstabilityError(f"Non-finite output value before softmax: {list(values)}")

    shift = max(values)
    exponentials = []
    total = 0.0
    for value in values:
        exponential = math.exp(value - shift)
        if not math.isfinite(exponential):
            raise NumericalInstabilityError(f"Non-finite exponential in softmax: {list(values)}")
        exponentials.append(exponential)
        total += exponential

    if total == 0.0 or not math.isfinite(total):
        raise NumericalInstabilityError(f"Softmax sum is {total} for outputs {list(values)}")
    return [exponential / total for exponential in exponentials]


class Genome:
    """One candidate convolutional network: its graph plus its training state.

    Nodes and edges handed to the constructor are copied, so the template a
    genome was built from can be reused for other genomes. Both sequences are
    kept sorted by depth, which makes a single scan over the edges a valid
    forward pass and the reverse scan a valid backward pass.
    """

    def __init__(
        self,
        nodes: Sequence[Node] = (),
        edges: Sequence[Edge] = (),
        hyperparameters: HyperParameters | None = None,
        generation_id: int = 0,
        seed: int = 0,
        max_epochs: int = 0,
        reset_weights: bool = True,
        working_set_size: int = WORKING_SET_SIZE,
        progress_callback: ProgressCallback | None = None,
    ):
        hyper = hyperparameters or HyperParameters()

        self.version_str = VERSION_LINE
        self.exact_id = -1
        self.genome_id = -1
        self.generation_id = generation_id
        self.started_from_checkpoint = False

        self.rng = SeededRandom(seed)
        self.normal_distribution = NormalDistribution()
        self.progress_callback = progress_callback

        self.initial_mu = self.mu = hyper.mu
        self.mu_delta = hyper.mu_delta
        self.initial_learning_rate = self.learning_rate = hyper.learning_rate
        self.learning_rate_delta = hyper.learning_rate_delta
        self.initial_weight_decay = self.weight_decay = hyper.weight_decay
        self.weight_decay_delta = hyper.weight_decay_delta
        self.input_dropout_probability = hyper.input_dropout_probability
        self.hidden_dropout_probability = hyper.hidden_dropout_probability
        self.velocity_reset = hyper.velocity_reset

        self.epoch = 0
        self.max_epochs = max_epochs
        self.reset_weights = reset_weights
        self.working_set_size = working_set_size

        self.best_error = math.inf
        self.best_error_epoch = 0
        self.best_predictions = 0
        self.best_predictions_epoch = 0
        self.best_class_error: list[float] = []
        self.best_correct_predictions: list[int] = []
        self.backprop_order: list[int] = []

        self.generated_by = {tag: 0 for tag in PROVENANCE_COUNTERS}

        self.name = ""
        self.output_filename = ""
        self.checkpoint_filename = ""
        self.history: list[dict[str, float]] = []

        self.nodes: list[Node] = []
        self.edges: list[Edge] = []
        self.input_nodes: list[Node] = []
        self.softmax_nodes: list[Node] = []

        for node in nodes:
            self.add_node(node.copy())
        for template in edges:
            edge = template.copy()
            if not edge.set_nodes(self.nodes):
                raise GenomeIntegrityError(
                    f"Edge {edge.innovation_number} does not fit its endpoints "
                    f"{edge.input_innovation_number} -> {edge.output_innovation_number}"
                )
            self.add_edge(edge)

    @classmethod
    def from_config(
        cls,
        cfg: CNNConfig,
        nodes: Sequence[Node],
        edges: Sequence[Edge],
        progress_callback: ProgressCallback | None = None,
    ) -> "Genome":
        genome = cls(
            nodes,
            edges,
            hyperparameters=cfg.hyper,
            generation_id=cfg.generation_id,
            seed=cfg.seed,
            max_epochs=cfg.training.max_epochs,
            reset_weights=cfg.training.reset_weights,
            working_set_size=cfg.training.working_set_size,
            progress_callback=progress_callback,
        )
        genome.output_filename = cfg.training.output_filename
        genome.checkpoint_filename = cfg.training.checkpoint_filename
        return genome

    @classmethod
    def from_stream(cls, stream: TextIO, is_checkpoint: bool = False) -> "Genome":
        genome = cls()
        genome.started_from_checkpoint = is_checkpoint
        read_genome(genome, stream)
        return genome

    @classmethod
    def from_file(cls, path: str | Path, is_checkpoint: bool = False) -> "Genome":
        with open(path, "r", encoding="utf-8") as stream:
            genome = cls.from_stream(stream, is_checkpoint=is_checkpoint)
        genome.name = Path(path).stem
        return genome

    # -- bookkeeping ---------------------------------------------------------

    @property
    def is_valid(self) -> bool:
        return self.version_str == VERSION_LINE

    @property
    def fitness(self) -> float:
        return self.best_error

    @property
    def number_classes(self) -> int:
        return len(self.softmax_nodes)

    @property
    def number_nodes(self) -> int:
        return len(self.nodes)

    @property
    def number_edges(self) -> int:
        return len(self.edges)

    @property
    def number_enabled_edges(self) -> int:
        return sum(1 for edge in self.edges if not edge.disabled)

    @property
    def number_weights(self) -> int:
        return sum(edge.number_weights for edge in self.edges)

    @property
    def number_biases(self) -> int:
        return sum(node.size_x * node.size_y for node in self.nodes)

    def get_operations_estimate(self) -> int:
        operations = sum(node.size_x * node.size_y for node in self.nodes)
        for edge in self.edges:
            # a reversed axis visits every input cell, otherwise every output cell
            span_x = edge.input_node.size_x if edge.reverse_filter_x else edge.output_node.size_x
            span_y = edge.input_node.size_y if edge.reverse_filter_y else edge.output_node.size_y
            operations += edge.number_weights * span_x * span_y
        return operations

    def get_node(self, position: int) -> Node:
        if not 0 <= position < len(self.nodes):
            raise IndexError(f"node position {position} out of range")
        return self.nodes[position]

    def get_edge(self, position: int) -> Edge:
        if not 0 <= position < len(self.edges):
            raise IndexError(f"edge position {position} out of range")
        return self.edges[position]

    def mark_generated_by(self, tag: str) -> None:
        if tag not in self.generated_by:
            raise ValueError(f"Unknown mutation operator: {tag}")
        self.generated_by[tag] += 1

    # -- structure -----------------------------------------------------------

    def add_node(self, node: Node) -> None:
        bisect.insort_right(self.nodes, node, key=lambda n: n.depth)
        if node.is_input:
            self.input_nodes.append(node)
        elif node.is_output:
            self.softmax_nodes.append(node)

    def add_edge(self, edge: Edge) -> None:
        bisect.insort_right(self.edges, edge, key=lambda e: e.depth)

    def sort_edges_by_depth(self) -> None:
        self.edges.sort(key=lambda e: e.depth)

    def disable_edge(self, position: int) -> None:
        edge = self.edges[position]
        if edge.disabled:
            logger.info("edge %d was already disabled", edge.innovation_number)
            return
        edge.disable()

    def resize_edges_around_node(self, innovation_number: int) -> None:
        for edge in self.edges:
            if innovation_number in (edge.input_innovation_number, edge.output_innovation_number):
                edge.resize()

    def equals(self, other: "Genome") -> bool:
        """Two genomes are equal when their enabled edges match weight for weight."""
        mine = {edge.innovation_number: edge for edge in self.edges if not edge.disabled}
        theirs = {edge.innovation_number: edge for edge in other.edges if not edge.disabled}
        if mine.keys() != theirs.keys():
            return False
        return all(mine[innovation].equals(theirs[innovation]) for innovation in mine)

    def outputs_connected(self) -> bool:
        for node in self.nodes:
            node.set_unvisited()
        for node in self.input_nodes:
            node.visit()

        for edge in self.edges:
            if not edge.disabled and edge.input_node.visited:
                edge.output_node.visit()

        for node in self.softmax_nodes:
            if not node.visited:
                logger.info("output node %d is unreachable from the inputs", node.innovation_number)
                return False
        return True

    def sanity_check(self, check: SanityCheck) -> bool:
        """Verify the structural invariants of the graph.

        After generation, all-zero biases and weights are reinitialized in
        place instead of failing. Every other violation is logged and makes
        the check return False.
        """
        for edge in self.edges:
            if not edge.is_filter_correct():
                logger.error(
                    "edge %d has filter %d x %d that does not fit its endpoints",
                    edge.innovation_number, edge.filter_x, edge.filter_y,
                )
                return False

        for edge in self.edges:
            if not 0 < edge.filter_x <= MAX_EXTENT or not 0 < edge.filter_y <= MAX_EXTENT:
                logger.error(
                    "edge %d has filter %d x %d outside (0, %d]",
                    edge.innovation_number, edge.filter_x, edge.filter_y, MAX_EXTENT,
                )
                return False

        for node in self.nodes:
            if not 0 < node.size_x <= MAX_EXTENT or not 0 < node.size_y <= MAX_EXTENT:
                logger.error(
                    "node %d has size %d x %d outside (0, %d]",
                    node.innovation_number, node.size_x, node.size_y, MAX_EXTENT,
                )
                return False

        if check is SanityCheck.AFTER_GENERATION:
            for node in self.nodes:
                if node.has_zero_bias():
                    logger.warning("node %d had a zero bias, reinitializing", node.innovation_number)
                    node.initialize_bias(self.rng, self.normal_distribution)
                    node.save_best_bias()
            for edge in self.edges:
                if edge.has_zero_weight():
                    logger.warning("edge %d had a zero weight, reinitializing", edge.innovation_number)
                    edge.initialize_weights(self.rng, self.normal_distribution)
                    edge.save_best_weights()

        seen_edges: set[int] = set()
        for edge in self.edges:
            if edge.innovation_number in seen_edges:
                logger.error("duplicate edge innovation number %d", edge.innovation_number)
                return False
            seen_edges.add(edge.innovation_number)

        seen_nodes: set[int] = set()
        for node in self.nodes:
            if node.innovation_number in seen_nodes:
                logger.error("duplicate node innovation number %d", node.innovation_number)
                return False
            seen_nodes.add(node.innovation_number)

        for node in self.nodes:
            inputs = 0
            for edge in self.edges:
                if edge.disabled or edge.output_innovation_number != node.innovation_number:
                    continue
                if edge.output_node is not node:
                    logger.error(
                        "edge %d names node %d as output but points at a different object",
                        edge.innovation_number, node.innovation_number,
                    )
                    return False
                inputs += 1
            if inputs != node.total_inputs:
                logger.error(
                    "node %d records %d inputs but %d enabled edges feed it",
                    node.innovation_number, node.total_inputs, inputs,
                )
                return False

        return True

    # -- weights -------------------------------------------------------------

    def initialize(self) -> None:
        for node in self.nodes:
            node.reset_weight_count()
        for edge in self.edges:
            edge.propagate_weight_count()

        if self.reset_weights:
            for edge in self.edges:
                edge.initialize_weights(self.rng, self.normal_distribution)
                edge.save_best_weights()
            for node in self.nodes:
                node.initialize_bias(self.rng, self.normal_distribution)
                node.save_best_bias()
            return

        for edge in self.edges:
            if edge.needs_init:
                edge.initialize_weights(self.rng, self.normal_distribution)
                edge.save_best_weights()
        for node in self.nodes:
            if node.needs_init:
                node.initialize_bias(self.rng, self.normal_distribution)
                node.save_best_bias()
        self.set_to_best()

    def save_to_best(self) -> None:
        for edge in self.edges:
            edge.save_best_weights()
        for node in self.nodes:
            node.save_best_bias()

    def set_to_best(self) -> None:
        for edge in self.edges:
            edge.set_weights_to_best()
        for node in self.nodes:
            node.set_bias_to_best()

    def reset_velocities(self) -> None:
        for edge in self.edges:
            edge.reset_velocities()
        for node in self.nodes:
            node.reset_velocities()

    # -- evaluation ----------------------------------------------------------

    def evaluate_image(
        self,
        image: Image,
        class_error: list[float],
        perform_backprop: bool = False,
        perform_dropout: bool = False,
    ) -> tuple[int, float]:
        """Run one sample forward (and optionally backward).

        Adds the absolute per-output error to ``class_error`` and returns the
        predicted class with the sample's cross-entropy.
        """
        for node in self.nodes:
            node.reset()
        for channel, node in enumerate(self.input_nodes):
            node.set_values(image.pixels, channel, perform_dropout, self.rng, self.input_dropout_probability)
        for edge in self.edges:
            edge.propagate_forward(perform_dropout, self.rng, self.hidden_dropout_probability)

        probabilities = softmax([node.get_value(0, 0) for node in self.softmax_nodes])

        predicted_class = -1
        max_value = -math.inf
        sample_error = 0.0
        for i, (node, value) in enumerate(zip(self.softmax_nodes, probabilities)):
            target = 1.0 if i == image.classification else 0.0
            error = value - target
            node.set_value(0, 0, value)
            node.set_error(0, 0, error)
            node.set_gradient(0, 0, value * (1.0 - value))
            class_error[i] += abs(error)

            if value > max_value:
                predicted_class = i
                max_value = value
            if target:
                sample_error -= math.log(value) if value > 0.0 else -math.inf

        if perform_backprop:
            for edge in reversed(self.edges):
                edge.propagate_backward()
            for edge in self.edges:
                edge.update_weights(self.mu, self.learning_rate, self.weight_decay)
            for node in self.nodes:
                node.propagate_bias(self.mu, self.learning_rate, self.weight_decay)

        return predicted_class, sample_error

    def _evaluate_order(self, images: ImageSet, order: Sequence[int], perform_backprop: bool) -> EvaluationResult:
        result = EvaluationResult(
            samples=len(order),
            class_error=[0.0] * self.number_classes,
            correct_predictions=[0] * self.number_classes,
        )
        for j, index in enumerate(order):
            image = images.get_image(index)
            predicted_class, sample_error = self.evaluate_image(
                image, result.class_error, perform_backprop, perform_dropout=perform_backprop
            )
            result.total_error += sample_error

            if perform_backprop and self.velocity_reset > 0 and j > 0 and j % self.velocity_reset == 0:
                self.reset_velocities()

            if predicted_class == image.classification:
                result.predictions += 1
                result.correct_predictions[image.classification] += 1
        return result

    def _check_dataset(self, images: ImageSet) -> None:
        if images.number_classes != self.number_classes:
            raise GenomeIntegrityError(
                f"dataset has {images.number_classes} classes but genome has {self.number_classes} outputs"
            )
        if images.channels != len(self.input_nodes):
            raise GenomeIntegrityError(
                f"dataset has {images.channels} channels but genome has {len(self.input_nodes)} inputs"
            )

    def evaluate(self, images: ImageSet) -> EvaluationResult:
        """Unbiased pass over every image in dataset order."""
        self._check_dataset(images)
        result = self._evaluate_order(images, range(images.number_images), perform_backprop=False)
        logger.info(
            "%s evaluated %d images: predictions %d (%.2f%%), error %.6f",
            self.name or "genome", result.samples, result.predictions,
            100.0 * result.accuracy, result.total_error,
        )
        return result

    # -- training ------------------------------------------------------------

    def _check_trainable(self) -> None:
        for node in self.nodes:
            if node.needs_init:
                raise GenomeIntegrityError(f"node {node.innovation_number} needs init before training")
            if node.has_nan():
                raise NumericalInstabilityError(f"node {node.innovation_number} holds non-finite bias values")
        for edge in self.edges:
            if edge.needs_init:
                raise GenomeIntegrityError(f"edge {edge.innovation_number} needs init before training")
            if edge.has_nan():
                raise NumericalInstabilityError(f"edge {edge.innovation_number} holds non-finite weights")

    def _log_progress(self, result: EvaluationResult) -> None:
        best_accuracy = self.best_predictions / result.samples if result.samples else 0.0
        logger.info(
            "[%-8s gen %4d] predictions: %6d (%6.2f%%) best %6d (%6.2f%%) epoch %d, "
            "error: %.6f best %.6f epoch %d, mu %.6f lr %.6g wd %.6g",
            self.name or "genome", self.generation_id,
            result.predictions, 100.0 * result.accuracy,
            self.best_predictions, 100.0 * best_accuracy, self.best_predictions_epoch,
            result.total_error, self.best_error, self.best_error_epoch,
            self.mu, self.learning_rate, self.weight_decay,
        )

    def stochastic_backpropagation(self, images: ImageSet) -> None:
        """Train until the epoch counter passes ``max_epochs``.

        Each epoch runs a shuffled pass with weight updates followed by an
        unbiased pass. Only an improving unbiased error is kept; otherwise
        every weight and bias is rolled back to the best values seen so far.
        """
        self._check_dataset(images)
        self._check_trainable()

        if not self.started_from_checkpoint:
            self.backprop_order = list(range(images.number_images))
            fisher_yates_shuffle(self.rng, self.backprop_order)
            self.best_error = math.inf
        # truncate only, short datasets are not padded up to the working set size
        del self.backprop_order[self.working_set_size:]

        self.sort_edges_by_depth()

        initial = self._evaluate_order(images, self.backprop_order, perform_backprop=False)
        logger.info("%s initial weights:", self.name or "genome")
        self._log_progress(initial)

        while True:
            fisher_yates_shuffle(self.rng, self.backprop_order)
            self._evaluate_order(images, self.backprop_order, perform_backprop=True)
            result = self._evaluate_order(images, self.backprop_order, perform_backprop=False)

            if result.total_error < self.best_error:
                self.best_error = result.total_error
                self.best_error_epoch = self.epoch
                self.best_predictions = result.predictions
                self.best_predictions_epoch = self.epoch
                self.best_class_error = list(result.class_error)
                self.best_correct_predictions = list(result.correct_predictions)
                self.save_to_best()
                if self.output_filename:
                    self.write_to_file(self.output_filename)
            else:
                self.set_to_best()

            self._log_progress(result)
            self.history.append(
                {
                    "epoch": float(self.epoch),
                    "total_error": float(result.total_error),
                    "predictions": float(result.predictions),
                    "accuracy": float(result.accuracy),
                    "best_error": float(self.best_error),
                    "best_predictions": float(self.best_predictions),
                    "mu": float(self.mu),
                    "learning_rate": float(self.learning_rate),
                    "weight_decay": float(self.weight_decay),
                }
            )

            self.mu = MU_CEILING - (MU_CEILING - self.mu) * self.mu_delta
            self.learning_rate *= self.learning_rate_delta
            self.weight_decay *= self.weight_decay_delta
            self.epoch += 1

            if self.checkpoint_filename:
                self.write_to_file(self.checkpoint_filename)

            if self.progress_callback is not None:
                self.progress_callback(min(1.0, self.epoch / (self.max_epochs + 1.0)))

            if self.epoch > self.max_epochs:
                break

    # -- persistence ---------------------------------------------------------

    def write(self, out: TextIO) -> None:
        write_genome(self, out)

    def write_to_file(self, path: str | Path) -> None:
        with open(path, "w", encoding="utf-8") as out:
            self.write(out)

    def read(self, stream: TextIO) -> bool:
        return read_genome(self, stream)

    def __repr__(self) -> str:
        return (
            f"Genome(generation_id={self.generation_id}, nodes={self.number_nodes}, "
            f"edges={self.number_enabled_edges}/{self.number_edges}, epoch={self.epoch}, "
            f"best_error={self.best_error})"
        )


def create_initial_genome(
    cfg: CNNConfig,
    images: ImageSet,
    tracker: InnovationTracker | None = None,
    progress_callback: ProgressCallback | None = None,
) -> Genome:
    """Seed genome: one input node per channel, an optional hidden layer and
    one 1x1 output node per class, fully connected layer to layer."""
    tracker = tracker or InnovationTracker()
    seed_cfg = cfg.seed_genome

    inputs = [
        Node(tracker.get_node_innovation(), 0.0, images.cols, images.rows, kind="input")
        for _ in range(images.channels)
    ]
    hidden = [
        Node(
            tracker.get_node_innovation(), 0.5, seed_cfg.hidden_size, seed_cfg.hidden_size,
            kind="hidden", activation=seed_cfg.hidden_activation,
        )
        for _ in range(seed_cfg.hidden_nodes)
    ]
    outputs = [
        Node(tracker.get_node_innovation(), 1.0, 1, 1, kind="output")
        for _ in range(images.number_classes)
    ]

    layers = [inputs, hidden, outputs] if hidden else [inputs, outputs]
    edges: list[Edge] = []
    for sources, targets in zip(layers, layers[1:]):
        for src in sources:
            for dst in targets:
                innovation = tracker.get_edge_innovation(src.innovation_number, dst.innovation_number)
                edges.append(Edge.connect(innovation, src, dst))

    genome = Genome.from_config(cfg, inputs + hidden + outputs, edges, progress_callback=progress_callback)
    genome.initialize()
    return genome
