from __future__ import annotations

import csv
import json
from pathlib import Path

from .genome import Genome


def _safe(history: list[dict[str, float]], key: str, default: float = 0.0) -> tuple[float, float]:
    if not history:
        return default, default
    return float(history[0].get(key, default)), float(history[-1].get(key, default))


def save_history_csv(history: list[dict[str, float]], path: Path) -> None:
    if not history:
        return
    fieldnames = list(history[0].keys())
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for row in history:
            writer.writerow(row)


def save_genome_summary_json(genome: Genome, path: Path) -> None:
    data = {
        "name": genome.name,
        "generation_id": genome.generation_id,
        "epoch": genome.epoch,
        "best_error": genome.best_error,
        "best_error_epoch": genome.best_error_epoch,
        "best_predictions": genome.best_predictions,
        "best_predictions_epoch": genome.best_predictions_epoch,
        "best_class_error": genome.best_class_error,
        "best_correct_predictions": genome.best_correct_predictions,
        "number_weights": genome.number_weights,
        "number_biases": genome.number_biases,
        "operations_estimate": genome.get_operations_estimate(),
        "generated_by": genome.generated_by,
        "nodes": [
            {
                "innovation_number": n.innovation_number,
                "kind": n.kind,
                "depth": n.depth,
                "size_x": n.size_x,
                "size_y": n.size_y,
                "activation": n.activation,
                "total_inputs": n.total_inputs,
            }
            for n in sorted(genome.nodes, key=lambda x: x.innovation_number)
        ],
        "edges": [
            {
                "innovation_number": e.innovation_number,
                "input": e.input_innovation_number,
                "output": e.output_innovation_number,
                "filter_x": e.filter_x,
                "filter_y": e.filter_y,
                "reverse_filter_x": e.reverse_filter_x,
                "reverse_filter_y": e.reverse_filter_y,
                "disabled": e.disabled,
            }
            for e in sorted(genome.edges, key=lambda x: x.innovation_number)
        ],
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def write_report(
    path: Path,
    task: str,
    history: list[dict[str, float]],
    genome: Genome,
    artifacts: dict[str, Path],
) -> None:
    err0, err1 = _safe(history, "total_error")
    acc0, acc1 = _safe(history, "accuracy")
    mu0, mu1 = _safe(history, "mu")
    lr0, lr1 = _safe(history, "learning_rate")

    lines = [
        "# CNN Genome Training Report",
        "",
        f"## Task: `{task}`",
        "",
        "## Summary",
        "",
        f"- Epochs trained: {genome.epoch} (max {genome.max_epochs})",
        f"- Epoch error: {err0:.4f} -> {err1:.4f} (delta {err1-err0:+.4f})",
        f"- Accuracy: {acc0:.4f} -> {acc1:.4f} (delta {acc1-acc0:+.4f})",
        f"- Best error: {genome.best_error:.4f} at epoch {genome.best_error_epoch}",
        f"- Best predictions: {genome.best_predictions} at epoch {genome.best_predictions_epoch}",
        f"- Momentum: {mu0:.4f} -> {mu1:.4f}, learning rate: {lr0:.3g} -> {lr1:.3g}",
        "",
        "## Structure",
        "",
        f"- Nodes: {genome.number_nodes} ({len(genome.input_nodes)} input, {genome.number_classes} output)",
        f"- Edges: {genome.number_enabled_edges} enabled of {genome.number_edges}",
        f"- Weights: {genome.number_weights}, biases: {genome.number_biases}",
        f"- Operations estimate: {genome.get_operations_estimate()}",
        "",
        "## Per-Class Best Results",
        "",
    ]

    if genome.best_class_error:
        lines.append("| class | error | correct |")
        lines.append("| --- | --- | --- |")
        for i, class_error in enumerate(genome.best_class_error):
            correct = genome.best_correct_predictions[i] if i < len(genome.best_correct_predictions) else 0
            lines.append(f"| {i} | {class_error:.4f} | {correct} |")
    else:
        lines.append("- No improving epoch was recorded.")

    lines.extend(["", "## Artifacts", ""])
    for name, p in sorted(artifacts.items()):
        lines.append(f"- {name}: `{p}`")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines), encoding="utf-8")
