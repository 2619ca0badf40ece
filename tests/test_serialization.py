"""Tests for writing and reading whole genomes."""

import io
import math

import pytest

from cnn_neat.codec import INVALID_VERSION, VERSION_LINE
from cnn_neat.errors import GenomeIntegrityError, SerializationError
from cnn_neat.genome import Genome, SanityCheck


def _text(genome: Genome) -> str:
    out = io.StringIO()
    genome.write(out)
    return out.getvalue()


def _read(text: str, is_checkpoint: bool = False) -> Genome:
    return Genome.from_stream(io.StringIO(text), is_checkpoint=is_checkpoint)


class TestRoundTrip:
    """A written genome reads back identical."""

    def test_trained_genome_is_bit_exact(self, seed_genome, tiny_images):
        seed_genome.mark_generated_by("split_edge")
        seed_genome.stochastic_backpropagation(tiny_images)
        text = _text(seed_genome)
        copy = _read(text)

        assert copy.is_valid
        assert _text(copy) == text
        assert copy.equals(seed_genome)
        assert seed_genome.equals(copy)

    def test_scalars_survive(self, seed_genome, tiny_images):
        seed_genome.exact_id = 12
        seed_genome.genome_id = 34
        seed_genome.mark_generated_by("add_node")
        seed_genome.stochastic_backpropagation(tiny_images)
        copy = _read(_text(seed_genome))

        for name in (
            "exact_id", "genome_id", "generation_id", "initial_mu", "mu", "mu_delta",
            "initial_learning_rate", "learning_rate", "learning_rate_delta",
            "initial_weight_decay", "weight_decay", "weight_decay_delta",
            "input_dropout_probability", "hidden_dropout_probability", "velocity_reset",
            "epoch", "max_epochs", "reset_weights", "best_predictions", "best_predictions_epoch",
            "best_error", "best_error_epoch", "backprop_order", "best_class_error",
            "best_correct_predictions", "generated_by",
        ):
            assert getattr(copy, name) == getattr(seed_genome, name), name
        assert copy.normal_distribution == seed_genome.normal_distribution

    def test_views_are_resolved_to_read_nodes(self, seed_genome):
        copy = _read(_text(seed_genome))
        assert [n.innovation_number for n in copy.input_nodes] == [n.innovation_number for n in seed_genome.input_nodes]
        assert [n.innovation_number for n in copy.softmax_nodes] == [n.innovation_number for n in seed_genome.softmax_nodes]
        assert all(any(n is m for m in copy.nodes) for n in copy.softmax_nodes)
        assert all(edge.output_node in copy.nodes for edge in copy.edges)

    def test_random_stream_continues(self, seed_genome):
        copy = _read(_text(seed_genome))
        assert copy.rng.uniform() == seed_genome.rng.uniform()

    def test_untrained_genome_with_empty_lists(self, seed_genome):
        assert seed_genome.backprop_order == []
        copy = _read(_text(seed_genome))
        assert copy.is_valid
        assert copy.backprop_order == []
        assert copy.best_class_error == []
        assert copy.best_error == math.inf

    def test_disabled_edges_are_kept(self, make_genome):
        genome = make_genome()
        genome.disable_edge(1)
        copy = _read(_text(genome))
        assert copy.number_edges == 3
        assert copy.edges[1].disabled
        assert copy.sanity_check(SanityCheck.BEFORE_INSERT)
        assert copy.edges[1].output_node.total_inputs == 0

    def test_checkpoint_flag(self, seed_genome):
        assert _read(_text(seed_genome), is_checkpoint=True).started_from_checkpoint
        assert not _read(_text(seed_genome)).started_from_checkpoint

    def test_file_round_trip(self, seed_genome, tmp_path):
        path = tmp_path / "genome.txt"
        seed_genome.write_to_file(path)
        copy = Genome.from_file(path)
        assert copy.name == "genome"
        assert copy.equals(seed_genome)

    def test_read_into_existing_genome(self, seed_genome):
        genome = Genome()
        assert genome.read(io.StringIO(_text(seed_genome)))
        assert genome.equals(seed_genome)


class TestSoftFailures:
    """Version and section label problems mark the genome invalid."""

    def test_version_mismatch(self, seed_genome):
        text = _text(seed_genome).replace(VERSION_LINE, "v0.9", 1)
        copy = _read(text)
        assert not copy.is_valid
        assert copy.version_str == INVALID_VERSION
        assert copy.nodes == []

    def test_garbled_version(self):
        copy = _read("\x00garbage\n")
        assert copy.version_str == INVALID_VERSION

    def test_empty_stream(self):
        assert not _read("").is_valid

    @pytest.mark.parametrize("label", ["NODES", "EDGES", "INNOVATION_NUMBERS", "BACKPROP_ORDER",
                                       "BEST_CLASS_ERROR", "BEST_CORRECT_PREDICTIONS"])
    def test_label_mismatch(self, seed_genome, label):
        lines = _text(seed_genome).split("\n")
        lines[lines.index(label)] = label.lower()
        copy = _read("\n".join(lines))
        assert not copy.is_valid
        assert copy.version_str == INVALID_VERSION


class TestFatalFailures:
    """Corrupt content raises instead of producing a broken genome."""

    def test_truncated_stream(self, seed_genome):
        lines = _text(seed_genome).split("\n")
        cut = lines.index("EDGES") + 2
        with pytest.raises(SerializationError):
            _read("\n".join(lines[:cut]) + "\n")

    def test_line_cut_mid_way(self, seed_genome):
        lines = _text(seed_genome).split("\n")
        index = lines.index("NODES") + 2
        lines[index] = lines[index][: len(lines[index]) // 2]
        with pytest.raises(SerializationError):
            _read("\n".join(lines))

    def test_bad_hex_float(self, seed_genome):
        lines = _text(seed_genome).split("\n")
        lines[3] = "0x1.zzp+0"
        with pytest.raises(SerializationError):
            _read("\n".join(lines))

    def test_list_length_mismatch(self, seed_genome, tiny_images):
        seed_genome.max_epochs = 0
        seed_genome.stochastic_backpropagation(tiny_images)
        lines = _text(seed_genome).split("\n")
        index = lines.index("BACKPROP_ORDER")
        lines[index + 2] = lines[index + 2] + " 0"
        with pytest.raises(SerializationError):
            _read("\n".join(lines))

    def test_filter_mismatch(self, make_genome):
        genome = make_genome(input_x=4, input_y=4, classes=2)
        genome.input_nodes[0].resize(5, 4)
        with pytest.raises(GenomeIntegrityError):
            _read(_text(genome))

    def test_unknown_output_innovation(self, make_genome):
        genome = make_genome(classes=2)
        lines = _text(genome).split("\n")
        index = lines.index("INNOVATION_NUMBERS")
        lines[index + 4] = "1 77"
        with pytest.raises(GenomeIntegrityError):
            _read("\n".join(lines))

    def test_bad_generator_state(self, seed_genome):
        lines = _text(seed_genome).split("\n")
        index = lines.index("NODES")
        lines[index - 1] = "{not json"
        with pytest.raises(SerializationError):
            _read("\n".join(lines))
