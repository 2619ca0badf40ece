from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class InnovationTracker:
    next_node_innovation: int = 0
    next_edge_innovation: int = 0
    edge_innov: dict[tuple[int, int], int] = field(default_factory=dict)

    def get_node_innovation(self) -> int:
        innovation = self.next_node_innovation
        self.next_node_innovation += 1
        return innovation

    def get_edge_innovation(self, src: int, dst: int) -> int:
        key = (src, dst)
        if key not in self.edge_innov:
            self.edge_innov[key] = self.next_edge_innovation
            self.next_edge_innovation += 1
        return self.edge_innov[key]
