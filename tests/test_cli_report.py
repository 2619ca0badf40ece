"""Tests for the command line entry point, plots and reports."""

import io

from cnn_neat.cli import main, parse_args
from cnn_neat.genome import Genome
from cnn_neat.report import save_genome_summary_json, save_history_csv, write_report
from cnn_neat.viz import plot_genome, plot_training_curves, write_graphviz

SMALL_RUN = ["--size", "16", "--rows", "5", "--cols", "5", "--epochs", "1", "--learning-rate", "0.05"]


def _only_run_dir(root):
    runs = [p for p in root.iterdir() if p.is_dir()]
    assert len(runs) == 1
    return runs[0]


class TestCli:
    """End-to-end runs of ``cnn-neat``."""

    def test_parse_defaults(self):
        args = parse_args([])
        assert args.task == "bars"
        assert args.resume is None
        assert args.hidden_nodes == 0

    def test_fresh_run_writes_artifacts(self, tmp_path):
        assert main(SMALL_RUN + ["--out-root", str(tmp_path), "--hidden-nodes", "1", "--hidden-size", "3"]) == 0
        run_dir = _only_run_dir(tmp_path)
        for name in ("genome.txt", "checkpoint.txt", "history.csv", "genome.dot", "report.md", "genome_summary.json"):
            assert (run_dir / name).exists(), name
        assert (run_dir / "plots" / "training_curves.png").exists()
        assert (run_dir / "plots" / "genome.png").exists()

        checkpoint = Genome.from_file(run_dir / "checkpoint.txt")
        assert checkpoint.is_valid
        assert checkpoint.epoch == 2

    def test_resume_run(self, tmp_path):
        first = tmp_path / "first"
        assert main(SMALL_RUN + ["--out-root", str(first)]) == 0
        checkpoint = _only_run_dir(first) / "checkpoint.txt"

        second = tmp_path / "second"
        assert main(SMALL_RUN + ["--out-root", str(second), "--epochs", "3", "--resume", str(checkpoint)]) == 0
        resumed = Genome.from_file(_only_run_dir(second) / "checkpoint.txt")
        assert resumed.epoch == 4

    def test_invalid_checkpoint_exits_with_error(self, tmp_path):
        bad = tmp_path / "bad.txt"
        bad.write_text("v0.0\n", encoding="utf-8")
        assert main(SMALL_RUN + ["--out-root", str(tmp_path / "out"), "--resume", str(bad)]) == 1


class TestReports:
    """CSV, JSON, markdown and plot outputs."""

    def test_history_and_report(self, seed_genome, tiny_images, tmp_path):
        seed_genome.stochastic_backpropagation(tiny_images)
        csv_path = tmp_path / "history.csv"
        save_history_csv(seed_genome.history, csv_path)
        rows = csv_path.read_text(encoding="utf-8").strip().split("\n")
        assert rows[0].startswith("epoch,total_error")
        assert len(rows) == 1 + len(seed_genome.history)

        json_path = tmp_path / "summary.json"
        save_genome_summary_json(seed_genome, json_path)
        assert '"operations_estimate"' in json_path.read_text(encoding="utf-8")

        report = tmp_path / "report.md"
        write_report(report, task="bars", history=seed_genome.history, genome=seed_genome,
                     artifacts={"history_csv": csv_path})
        text = report.read_text(encoding="utf-8")
        assert "# CNN Genome Training Report" in text
        assert "| 0 |" in text
        assert "history_csv" in text

    def test_empty_history_is_skipped(self, tmp_path):
        save_history_csv([], tmp_path / "history.csv")
        plot_training_curves([], tmp_path / "curves.png")
        assert not (tmp_path / "history.csv").exists()
        assert not (tmp_path / "curves.png").exists()

    def test_plots(self, seed_genome, tiny_images, tmp_path):
        seed_genome.stochastic_backpropagation(tiny_images)
        seed_genome.disable_edge(0)
        plot_training_curves(seed_genome.history, tmp_path / "plots" / "curves.png")
        plot_genome(seed_genome, tmp_path / "plots" / "genome.png")
        assert (tmp_path / "plots" / "curves.png").stat().st_size > 0
        assert (tmp_path / "plots" / "genome.png").stat().st_size > 0

    def test_graphviz_lists_enabled_edges(self, make_genome):
        genome = make_genome(classes=3)
        genome.disable_edge(2)
        out = io.StringIO()
        write_graphviz(genome, out)
        dot = out.getvalue()
        assert dot.startswith("digraph CNN {")
        assert "rank = source;" in dot and "rank = sink;" in dot
        assert "node1 -> node2 -> node3 [style=invis];" in dot
        assert "node0 -> node1 [" in dot
        assert "node0 -> node3 [" not in dot
        assert dot.rstrip().endswith("}")
