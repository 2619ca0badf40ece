"""Tests for per-sample evaluation and output normalization."""

import math

import numpy as np
import pytest

from cnn_neat.datasets import Image, ImageSet
from cnn_neat.errors import GenomeIntegrityError, NumericalInstabilityError
from cnn_neat.genome import softmax


class TestSoftmax:
    """Numerically stable output normalization."""

    def test_sums_to_one_and_is_monotonic(self):
        probabilities = softmax([2.0, 1.0, 0.1])
        assert sum(probabilities) == pytest.approx(1.0)
        assert probabilities[0] > probabilities[1] > probabilities[2]

    def test_large_values_do_not_overflow(self):
        probabilities = softmax([1000.0, 999.0])
        assert probabilities[0] == pytest.approx(1.0 / (1.0 + math.exp(-1.0)))

    @pytest.mark.parametrize("bad", [math.nan, math.inf, -math.inf])
    def test_non_finite_input_is_fatal(self, bad):
        with pytest.raises(NumericalInstabilityError):
            softmax([0.5, bad])


class TestEvaluateImage:
    """Forward and backward pass over a single sample."""

    def _image(self, label=0, shape=(1, 2, 2)):
        return Image(pixels=np.ones(shape), classification=label)

    def test_prediction_follows_output_biases(self, make_genome):
        genome = make_genome(input_x=2, input_y=2, classes=3, connect=False)
        for node, bias in zip(genome.softmax_nodes, [2.0, 1.0, 0.1]):
            node.bias[:] = bias
        class_error = [0.0, 0.0, 0.0]
        predicted, error = genome.evaluate_image(self._image(label=0), class_error)

        expected = softmax([2.0, 1.0, 0.1])
        assert predicted == 0
        assert error == pytest.approx(-math.log(expected[0]))
        assert class_error[0] == pytest.approx(1.0 - expected[0])
        assert class_error[1] == pytest.approx(expected[1])
        values = [node.get_value(0, 0) for node in genome.softmax_nodes]
        assert sum(values) == pytest.approx(1.0)

    def test_output_error_and_gradient(self, make_genome):
        genome = make_genome(input_x=2, input_y=2, classes=2, connect=False)
        genome.evaluate_image(self._image(label=1), [0.0, 0.0])
        for i, node in enumerate(genome.softmax_nodes):
            value = node.get_value(0, 0)
            target = 1.0 if i == 1 else 0.0
            assert node.errors[0, 0] == pytest.approx(value - target)
            assert node.gradients[0, 0] == pytest.approx(value * (1.0 - value))

    def test_ties_go_to_lowest_index(self, make_genome):
        genome = make_genome(input_x=2, input_y=2, classes=3, connect=False)
        for node in genome.softmax_nodes:
            node.bias[:] = 0.3
        predicted, _ = genome.evaluate_image(self._image(label=2), [0.0] * 3)
        assert predicted == 0

    def test_repeat_evaluation_is_deterministic(self, make_genome):
        genome = make_genome(input_x=2, input_y=2, classes=3, seed=5)
        image = Image(pixels=np.arange(4, dtype=float).reshape(1, 2, 2), classification=1)
        first_errors = [0.0] * 3
        second_errors = [0.0] * 3
        first = genome.evaluate_image(image, first_errors)
        second = genome.evaluate_image(image, second_errors)
        assert first == second
        assert first_errors == second_errors

    def test_backprop_moves_weights_toward_target(self, make_genome):
        genome = make_genome(input_x=2, input_y=2, classes=2, seed=1)
        genome.learning_rate = 0.5
        image = self._image(label=1)
        _, before = genome.evaluate_image(image, [0.0, 0.0])
        weights = [edge.weights.copy() for edge in genome.edges]
        genome.evaluate_image(image, [0.0, 0.0], perform_backprop=True)
        assert any(not np.array_equal(w, edge.weights) for w, edge in zip(weights, genome.edges))
        _, after = genome.evaluate_image(image, [0.0, 0.0])
        assert after < before

    def test_evaluation_without_backprop_leaves_weights(self, make_genome):
        genome = make_genome(input_x=2, input_y=2, classes=2, seed=1)
        weights = [edge.weights.copy() for edge in genome.edges]
        genome.evaluate_image(self._image(), [0.0, 0.0])
        assert all(np.array_equal(w, edge.weights) for w, edge in zip(weights, genome.edges))

    def test_nan_bias_is_fatal(self, make_genome):
        genome = make_genome(input_x=2, input_y=2, classes=2)
        genome.softmax_nodes[0].bias[0, 0] = np.nan
        with pytest.raises(NumericalInstabilityError):
            genome.evaluate_image(self._image(), [0.0, 0.0])


class TestEvaluate:
    """Unbiased evaluation over a whole image set."""

    def test_counts_every_image(self, make_genome, square_images):
        genome = make_genome(input_x=2, input_y=2, classes=3, seed=2)
        result = genome.evaluate(square_images)
        assert result.samples == 9
        assert 0 <= result.predictions <= 9
        assert sum(result.correct_predictions) == result.predictions
        assert len(result.class_error) == 3
        assert result.total_error > 0.0

    def test_class_count_mismatch_raises(self, make_genome, square_images):
        genome = make_genome(input_x=2, input_y=2, classes=2)
        with pytest.raises(GenomeIntegrityError):
            genome.evaluate(square_images)

    def test_channel_count_mismatch_raises(self, make_genome):
        genome = make_genome(input_x=2, input_y=2, classes=2)
        images = ImageSet(
            name="rgb", images=np.zeros((2, 3, 2, 2)), labels=np.array([0, 1]), number_classes=2
        )
        with pytest.raises(GenomeIntegrityError):
            genome.evaluate(images)
