from __future__ import annotations

import argparse
import datetime as dt
import logging
from pathlib import Path

from .config import CNNConfig
from .datasets import TASKS, ImageSet, load_image_set, make_dataset
from .errors import GenomeIntegrityError
from .genome import Genome, SanityCheck, create_initial_genome
from .report import save_genome_summary_json, save_history_csv, write_report
from .viz import plot_genome, plot_training_curves, write_graphviz

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Train a single CNN genome with momentum SGD")
    p.add_argument("--task", choices=sorted(TASKS), default="bars")
    p.add_argument("--data", type=str, default=None, help="optional .npz with images/labels, replaces --task data")
    p.add_argument("--epochs", type=int, default=10)
    p.add_argument("--seed", type=int, default=0)

    p.add_argument("--size", type=int, default=400)
    p.add_argument("--rows", type=int, default=8)
    p.add_argument("--cols", type=int, default=8)
    p.add_argument("--noise", type=float, default=0.1)

    p.add_argument("--hidden-nodes", type=int, default=0)
    p.add_argument("--hidden-size", type=int, default=4)

    p.add_argument("--mu", type=float, default=0.5)
    p.add_argument("--learning-rate", type=float, default=0.001)
    p.add_argument("--weight-decay", type=float, default=0.0005)
    p.add_argument("--input-dropout", type=float, default=0.0)
    p.add_argument("--hidden-dropout", type=float, default=0.0)
    p.add_argument("--velocity-reset", type=int, default=0)

    p.add_argument("--resume", type=str, default=None, help="checkpoint file to continue training from")
    p.add_argument("--out-root", type=str, default="artifacts")
    p.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default="INFO")
    return p.parse_args(argv)


def _build_config(args: argparse.Namespace) -> CNNConfig:
    cfg = CNNConfig(seed=args.seed)
    cfg.dataset.task = args.task
    cfg.dataset.size = args.size
    cfg.dataset.rows = args.rows
    cfg.dataset.cols = args.cols
    cfg.dataset.noise = args.noise

    cfg.seed_genome.hidden_nodes = args.hidden_nodes
    cfg.seed_genome.hidden_size = args.hidden_size

    cfg.hyper.mu = args.mu
    cfg.hyper.learning_rate = args.learning_rate
    cfg.hyper.weight_decay = args.weight_decay
    cfg.hyper.input_dropout_probability = args.input_dropout
    cfg.hyper.hidden_dropout_probability = args.hidden_dropout
    cfg.hyper.velocity_reset = args.velocity_reset

    cfg.training.max_epochs = args.epochs
    return cfg


def _load_data(cfg: CNNConfig, args: argparse.Namespace) -> ImageSet:
    if args.data:
        return load_image_set(Path(args.data))
    return make_dataset(
        task=cfg.dataset.task,
        size=cfg.dataset.size,
        rows=cfg.dataset.rows,
        cols=cfg.dataset.cols,
        noise=cfg.dataset.noise,
        seed=cfg.seed,
    )


def _log_progress(fraction: float) -> None:
    logger.debug("training %.1f%% complete", 100.0 * fraction)


def run(args: argparse.Namespace) -> Path:
    cfg = _build_config(args)
    data = _load_data(cfg, args)

    timestamp = dt.datetime.now().strftime("%Y%m%d_%H%M%S")
    out_dir = Path(args.out_root).resolve() / f"{data.name}_{timestamp}"
    out_dir.mkdir(parents=True, exist_ok=True)

    genome_path = out_dir / "genome.txt"
    checkpoint_path = out_dir / "checkpoint.txt"
    cfg.training.output_filename = str(genome_path)
    cfg.training.checkpoint_filename = str(checkpoint_path)

    if args.resume:
        genome = Genome.from_file(args.resume, is_checkpoint=True)
        if not genome.is_valid:
            raise GenomeIntegrityError(f"could not read checkpoint {args.resume}")
        genome.max_epochs = cfg.training.max_epochs
        genome.output_filename = cfg.training.output_filename
        genome.checkpoint_filename = cfg.training.checkpoint_filename
        genome.progress_callback = _log_progress
        logger.info("resuming %s at epoch %d", args.resume, genome.epoch)
    else:
        genome = create_initial_genome(cfg, data, progress_callback=_log_progress)
    genome.name = data.name

    if not genome.sanity_check(SanityCheck.AFTER_GENERATION):
        raise GenomeIntegrityError("genome failed its sanity check")
    if not genome.outputs_connected():
        raise GenomeIntegrityError("some outputs are unreachable from the inputs")

    genome.stochastic_backpropagation(data)
    result = genome.evaluate(data)

    history_csv = out_dir / "history.csv"
    summary_json = out_dir / "genome_summary.json"
    dot_path = out_dir / "genome.dot"
    save_history_csv(genome.history, history_csv)
    save_genome_summary_json(genome, summary_json)
    with dot_path.open("w", encoding="utf-8") as f:
        write_graphviz(genome, f)

    plots = out_dir / "plots"
    plot_training_curves(genome.history, plots / "training_curves.png")
    plot_genome(genome, plots / "genome.png", title=f"Trained Genome ({data.name})")

    artifacts = {
        "best_genome": genome_path,
        "checkpoint": checkpoint_path,
        "history_csv": history_csv,
        "genome_summary": summary_json,
        "graphviz": dot_path,
        "training_curves": plots / "training_curves.png",
        "genome_plot": plots / "genome.png",
    }
    write_report(out_dir / "report.md", task=data.name, history=genome.history, genome=genome, artifacts=artifacts)

    print(f"Task {data.name} complete: {out_dir}")
    print(f"Best error={genome.best_error:.4f}, accuracy={result.accuracy:.4f}, epochs={genome.epoch}")
    return out_dir


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        run(args)
    except GenomeIntegrityError as exc:
        logger.error("aborting: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
