"""Reading and writing whole genomes.

The file is one field per line. Scalars come first, then the labeled
sections ``NODES``, ``EDGES``, ``INNOVATION_NUMBERS``, ``BACKPROP_ORDER``,
``BEST_CLASS_ERROR`` and ``BEST_CORRECT_PREDICTIONS``. Every section writes
its count line and its list line even when the list is empty.

A version or section label that does not match leaves the genome marked
``INVALID``; anything else that cannot be parsed raises.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, TextIO

from .codec import (
    BACKPROP_ORDER_LABEL,
    BEST_CLASS_ERROR_LABEL,
    BEST_CORRECT_PREDICTIONS_LABEL,
    EDGES_LABEL,
    INNOVATION_NUMBERS_LABEL,
    INVALID_VERSION,
    NODES_LABEL,
    PROVENANCE_COUNTERS,
    VERSION_LINE,
    decode_bool,
    decode_float,
    decode_int,
    encode_bool,
    encode_float,
)
from .edge import Edge
from .errors import GenomeIntegrityError, SerializationError
from .node import Node
from .rng import NormalDistribution, SeededRandom

if TYPE_CHECKING:
    from .genome import Genome

logger = logging.getLogger(__name__)


class _LineReader:
    def __init__(self, stream: TextIO):
        self.stream = stream
        self.line_number = 0

    def line(self) -> str:
        text = self.stream.readline()
        if text == "":
            raise SerializationError(f"unexpected end of genome after line {self.line_number}")
        self.line_number += 1
        return text.rstrip("\r\n")

    def integer(self) -> int:
        return decode_int(self.line().strip())

    def real(self) -> float:
        return decode_float(self.line().strip())

    def flag(self) -> bool:
        return decode_bool(self.line().strip())

    def tokens(self, count: int) -> list[str]:
        tokens = self.line().split()
        if len(tokens) != count:
            raise SerializationError(
                f"line {self.line_number}: expected {count} values, found {len(tokens)}"
            )
        return tokens


def _join(values) -> str:
    return " ".join(values)


def write_genome(genome: "Genome", out: TextIO) -> None:
    lines = [
        VERSION_LINE,
        str(genome.exact_id),
        str(genome.genome_id),
        encode_float(genome.initial_mu),
        encode_float(genome.mu),
        encode_float(genome.mu_delta),
        encode_float(genome.initial_learning_rate),
        encode_float(genome.learning_rate),
        encode_float(genome.learning_rate_delta),
        encode_float(genome.initial_weight_decay),
        encode_float(genome.weight_decay),
        encode_float(genome.weight_decay_delta),
        encode_float(genome.input_dropout_probability),
        encode_float(genome.hidden_dropout_probability),
        str(genome.velocity_reset),
        str(genome.epoch),
        str(genome.max_epochs),
        encode_bool(genome.reset_weights),
        str(genome.best_predictions),
        str(genome.best_predictions_epoch),
        encode_float(genome.best_error),
        str(genome.best_error_epoch),
    ]
    lines.extend(str(genome.generated_by[tag]) for tag in PROVENANCE_COUNTERS)
    lines.append(str(genome.generation_id))
    lines.append(str(genome.normal_distribution))
    lines.append(genome.rng.state_string())

    lines.append(NODES_LABEL)
    lines.append(str(len(genome.nodes)))
    lines.extend(node.serialize() for node in genome.nodes)

    lines.append(EDGES_LABEL)
    lines.append(str(len(genome.edges)))
    lines.extend(edge.serialize() for edge in genome.edges)

    lines.append(INNOVATION_NUMBERS_LABEL)
    lines.append(str(len(genome.input_nodes)))
    lines.append(_join(str(node.innovation_number) for node in genome.input_nodes))
    lines.append(str(len(genome.softmax_nodes)))
    lines.append(_join(str(node.innovation_number) for node in genome.softmax_nodes))

    lines.append(BACKPROP_ORDER_LABEL)
    lines.append(str(len(genome.backprop_order)))
    lines.append(_join(str(index) for index in genome.backprop_order))

    lines.append(BEST_CLASS_ERROR_LABEL)
    lines.append(str(len(genome.best_class_error)))
    lines.append(_join(encode_float(value) for value in genome.best_class_error))

    lines.append(BEST_CORRECT_PREDICTIONS_LABEL)
    lines.append(str(len(genome.best_correct_predictions)))
    lines.append(_join(str(value) for value in genome.best_correct_predictions))

    out.write("\n".join(lines))
    out.write("\n")


def _invalidate(genome: "Genome", reason: str) -> bool:
    logger.error("invalid genome file: %s", reason)
    genome.version_str = INVALID_VERSION
    return False


def _expect_label(reader: _LineReader, genome: "Genome", label: str) -> bool:
    found = reader.line().strip()
    if found != label:
        return _invalidate(genome, f"expected section {label!r} on line {reader.line_number}, found {found!r}")
    return True


def _resolve(nodes: list[Node], innovation_numbers: list[int], role: str) -> list[Node]:
    resolved = []
    for innovation_number in innovation_numbers:
        for node in nodes:
            if node.innovation_number == innovation_number:
                resolved.append(node)
                break
        else:
            raise GenomeIntegrityError(f"{role} node {innovation_number} is not among the genome's nodes")
    return resolved


def read_genome(genome: "Genome", stream: TextIO) -> bool:
    """Fill ``genome`` from ``stream``; returns ``genome.is_valid``."""
    reader = _LineReader(stream)

    version_str = stream.readline().rstrip("\r\n")
    reader.line_number += 1
    genome.version_str = version_str
    if version_str != VERSION_LINE:
        return _invalidate(genome, f"version {version_str!r} does not match {VERSION_LINE!r}")
    logger.debug("reading genome file version %s", version_str)

    genome.exact_id = reader.integer()
    genome.genome_id = reader.integer()

    genome.initial_mu = reader.real()
    genome.mu = reader.real()
    genome.mu_delta = reader.real()
    genome.initial_learning_rate = reader.real()
    genome.learning_rate = reader.real()
    genome.learning_rate_delta = reader.real()
    genome.initial_weight_decay = reader.real()
    genome.weight_decay = reader.real()
    genome.weight_decay_delta = reader.real()
    genome.input_dropout_probability = reader.real()
    genome.hidden_dropout_probability = reader.real()
    genome.velocity_reset = reader.integer()

    genome.epoch = reader.integer()
    genome.max_epochs = reader.integer()
    genome.reset_weights = reader.flag()

    genome.best_predictions = reader.integer()
    genome.best_predictions_epoch = reader.integer()
    genome.best_error = reader.real()
    genome.best_error_epoch = reader.integer()

    for tag in PROVENANCE_COUNTERS:
        genome.generated_by[tag] = reader.integer()
    genome.generation_id = reader.integer()
    logger.debug("read scalar fields of genome %d (generation %d)", genome.genome_id, genome.generation_id)

    try:
        genome.normal_distribution = NormalDistribution.parse(reader.line())
    except ValueError as exc:
        raise SerializationError(f"line {reader.line_number}: bad normal distribution") from exc
    try:
        genome.rng = SeededRandom.from_state_string(reader.line())
    except (ValueError, TypeError, KeyError) as exc:
        # json.JSONDecodeError is a ValueError
        raise SerializationError(f"line {reader.line_number}: bad generator state") from exc

    if not _expect_label(reader, genome, NODES_LABEL):
        return False
    nodes = [Node.deserialize(reader.line()) for _ in range(reader.integer())]
    logger.debug("read %d nodes", len(nodes))

    if not _expect_label(reader, genome, EDGES_LABEL):
        return False
    edges = []
    for _ in range(reader.integer()):
        edge = Edge.deserialize(reader.line())
        if not edge.set_nodes(nodes):
            raise GenomeIntegrityError(
                f"edge {edge.innovation_number} does not fit nodes "
                f"{edge.input_innovation_number} -> {edge.output_innovation_number}"
            )
        edges.append(edge)
    logger.debug("read %d edges", len(edges))
    genome.nodes = nodes
    genome.edges = edges

    if not _expect_label(reader, genome, INNOVATION_NUMBERS_LABEL):
        return False
    inputs = [decode_int(token) for token in reader.tokens(reader.integer())]
    outputs = [decode_int(token) for token in reader.tokens(reader.integer())]
    genome.input_nodes = _resolve(nodes, inputs, "input")
    genome.softmax_nodes = _resolve(nodes, outputs, "softmax")

    if not _expect_label(reader, genome, BACKPROP_ORDER_LABEL):
        return False
    genome.backprop_order = [decode_int(token) for token in reader.tokens(reader.integer())]

    if not _expect_label(reader, genome, BEST_CLASS_ERROR_LABEL):
        return False
    genome.best_class_error = [decode_float(token) for token in reader.tokens(reader.integer())]

    if not _expect_label(reader, genome, BEST_CORRECT_PREDICTIONS_LABEL):
        return False
    genome.best_correct_predictions = [decode_int(token) for token in reader.tokens(reader.integer())]

    logger.debug("finished reading genome after %d lines", reader.line_number)
    return True
