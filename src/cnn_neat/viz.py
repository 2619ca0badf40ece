from __future__ import annotations

from pathlib import Path
from typing import TextIO

import matplotlib.pyplot as plt
import numpy as np

from .genome import Genome


def plot_training_curves(history: list[dict[str, float]], path: Path) -> None:
    if not history:
        return

    epoch = np.array([r["epoch"] for r in history], dtype=float)
    error = np.array([r["total_error"] for r in history], dtype=float)
    best_error = np.array([r["best_error"] for r in history], dtype=float)
    accuracy = np.array([r["accuracy"] for r in history], dtype=float)

    mu = np.array([r["mu"] for r in history], dtype=float)
    lr = np.array([r["learning_rate"] for r in history], dtype=float)
    wd = np.array([r["weight_decay"] for r in history], dtype=float)

    fig, axes = plt.subplots(3, 1, figsize=(10, 11), sharex=True)

    axes[0].plot(epoch, error, label="epoch error", linewidth=1.6)
    axes[0].plot(epoch, best_error, label="best error", linewidth=2)
    axes[0].set_ylabel("cross-entropy")
    axes[0].grid(True, alpha=0.3)
    axes[0].legend()

    axes[1].plot(epoch, accuracy, label="accuracy", linewidth=2)
    axes[1].set_ylabel("accuracy")
    axes[1].set_ylim(0.0, 1.05)
    axes[1].grid(True, alpha=0.3)
    axes[1].legend()

    axes[2].plot(epoch, mu, label="mu", linewidth=2)
    axes[2].plot(epoch, lr, label="learning rate", linewidth=1.6)
    axes[2].plot(epoch, wd, label="weight decay", linewidth=1.2)
    axes[2].set_yscale("log")
    axes[2].set_ylabel("schedule")
    axes[2].set_xlabel("epoch")
    axes[2].grid(True, alpha=0.3)
    axes[2].legend()

    path.parent.mkdir(parents=True, exist_ok=True)
    fig.tight_layout()
    fig.savefig(path, dpi=180)
    plt.close(fig)


def plot_genome(genome: Genome, path: Path, title: str = "Best Genome") -> None:
    depths = sorted({node.depth for node in genome.nodes})
    depth_to_x = {depth: i for i, depth in enumerate(depths)}

    nodes_by_depth: dict[float, list[int]] = {}
    for node in genome.nodes:
        nodes_by_depth.setdefault(node.depth, []).append(node.innovation_number)

    pos: dict[int, tuple[float, float]] = {}
    for depth in depths:
        ids = nodes_by_depth[depth]
        ys = np.linspace(0.1, 0.9, len(ids)) if len(ids) > 1 else np.array([0.5])
        for i, innovation in enumerate(ids):
            pos[innovation] = (depth_to_x[depth], ys[i])

    fig, ax = plt.subplots(figsize=(11, 6))

    for edge in genome.edges:
        x1, y1 = pos[edge.input_innovation_number]
        x2, y2 = pos[edge.output_innovation_number]
        mean_weight = float(np.mean(edge.weights)) if edge.weights.size else 0.0
        color = "#1f77b4" if mean_weight >= 0 else "#d62728"
        alpha = 0.16 if edge.disabled else 0.7
        style = "--" if edge.disabled else "-"
        lw = 0.8 + min(2.4, abs(mean_weight) * 10.0)
        ax.plot([x1, x2], [y1, y2], color=color, alpha=alpha, linewidth=lw, linestyle=style)

    color_map = {"input": "#2ca02c", "hidden": "#9467bd", "output": "#ff7f0e"}
    for node in genome.nodes:
        x, y = pos[node.innovation_number]
        ax.scatter([x], [y], s=170, color=color_map.get(node.kind, "#7f7f7f"), edgecolors="black", zorder=3)
        ax.text(
            x, y + 0.03,
            f"{node.innovation_number}: {node.size_x}x{node.size_y}",
            ha="center", va="bottom", fontsize=8,
        )

    ax.set_title(title)
    ax.set_xlabel("depth")
    ax.set_ylabel("node position")
    ax.set_xticks(range(len(depths)))
    ax.set_xticklabels([f"{depth:g}" for depth in depths])
    ax.set_xlim(-0.5, len(depths) - 0.5)
    ax.set_ylim(0.0, 1.0)
    ax.grid(True, alpha=0.2)

    path.parent.mkdir(parents=True, exist_ok=True)
    fig.tight_layout()
    fig.savefig(path, dpi=180)
    plt.close(fig)


def write_graphviz(genome: Genome, out: TextIO) -> None:
    """Write the enabled topology as a DOT digraph.

    Inputs share the source rank, outputs share the sink rank and are chained
    with invisible edges so they render in class order.
    """
    lines = ["digraph CNN {", "\t{", "\t\trank = source;"]
    for node in genome.input_nodes:
        lines.append(
            f'\t\tnode{node.innovation_number} [shape=box,color=green,'
            f'label="input {node.innovation_number}\\n{node.size_x} x {node.size_y}"];'
        )
    lines.extend(["\t}", "", "\t{", "\t\trank = sink;"])
    for i, node in enumerate(genome.softmax_nodes):
        lines.append(
            f'\t\tnode{node.innovation_number} [shape=box,color=blue,'
            f'label="output {i}\\n{node.size_x} x {node.size_y}"];'
        )
    lines.extend(["\t}", ""])

    if len(genome.softmax_nodes) > 1:
        chain = " -> ".join(f"node{node.innovation_number}" for node in genome.softmax_nodes)
        lines.extend([f"\t{chain} [style=invis];", ""])

    for node in genome.nodes:
        if node.is_hidden:
            lines.append(
                f'\tnode{node.innovation_number} [shape=box,'
                f'label="node {node.innovation_number}\\n{node.size_x} x {node.size_y}"];'
            )
    lines.append("")

    for edge in genome.edges:
        if edge.disabled:
            continue
        lines.append(
            f"\tnode{edge.input_innovation_number} -> node{edge.output_innovation_number}"
            f' [label="{edge.filter_x} x {edge.filter_y}"];'
        )
    lines.append("}")

    out.write("\n".join(lines))
    out.write("\n")
