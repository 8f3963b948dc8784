"""Relationship graph over cards.

Edges come from three signals between a pair of cards: an explicit
``relatedCardIds`` link, shared references and shared tags. Distances from a
center card walk the graph with edge cost ``1 / weight``, so strong
relationships count as short hops.
"""

import heapq
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cards import Card

logger = logging.getLogger(__name__)

KIND_TAG = "tag"
KIND_REFERENCE = "reference"
KIND_EXPLICIT = "explicit"
KINDS = (KIND_EXPLICIT, KIND_REFERENCE, KIND_TAG)

EXPLICIT_WEIGHT = 10
REFERENCE_WEIGHT = 3
TAG_WEIGHT = 1
MAX_EDGE_WIDTH = 3

UNTITLED = "(untitled)"

NODE_COLOR = "#6366f1"
EDGE_COLORS = {
    KIND_TAG: "#0891b2",
    KIND_REFERENCE: "#64748b",
    KIND_EXPLICIT: "#4f46e5",
}

# (upper cost bound, level); anything past the last bound is FAR_LEVEL.
LEVEL_BOUNDS = ((0.5, 1), (1.5, 2), (2.5, 3))
FAR_LEVEL = 4


class EdgePolicy(str, Enum):
    STRONGEST = "strongest"
    ALL = "all"


@dataclass
class GraphNode:
    id: str
    display_name: str
    card: "Card | None" = None
    color: str = NODE_COLOR
    size: int = 1

    def to_dict(self) -> dict:
        return {"id": self.id, "displayName": self.display_name,
                "color": self.color, "size": self.size}


@dataclass
class GraphEdge:
    source: str
    target: str
    kind: str
    weight: float
    label: str = ""
    color: str = ""
    width: float = 1.0

    def other(self, node_id: str) -> str:
        return self.target if node_id == self.source else self.source

    def to_dict(self) -> dict:
        return {"sourceId": self.source, "targetId": self.target, "kind": self.kind,
                "weight": self.weight, "label": self.label,
                "color": self.color, "width": self.width}


@dataclass
class Graph:
    nodes: list[GraphNode] = field(default_factory=list)
    edges: list[GraphEdge] = field(default_factory=list)

    def node_ids(self) -> set[str]:
        return {n.id for n in self.nodes}

    def to_dict(self) -> dict:
        return {"nodes": [n.to_dict() for n in self.nodes],
                "edges": [e.to_dict() for e in self.edges]}


def _shared(a, b) -> list[str]:
    other = set(b)
    seen = []
    for item in a:
        if item in other and item not in seen:
            seen.append(item)
    return seen


def _edge(source: str, target: str, kind: str, weight: float, label: str = "") -> GraphEdge:
    return GraphEdge(source=source, target=target, kind=kind, weight=weight, label=label,
                     color=EDGE_COLORS[kind], width=min(weight / 2, MAX_EDGE_WIDTH))


def _pair_edges(a, b, policy: EdgePolicy) -> list[GraphEdge]:
    edges = []
    if b.id in a.related_card_ids or a.id in b.related_card_ids:
        edges.append(_edge(a.id, b.id, KIND_EXPLICIT, EXPLICIT_WEIGHT))
    common_refs = _shared(a.references, b.references)
    if common_refs:
        edges.append(_edge(a.id, b.id, KIND_REFERENCE,
                           REFERENCE_WEIGHT * len(common_refs), ", ".join(common_refs)))
    common_tags = _shared(a.tags, b.tags)
    if common_tags:
        edges.append(_edge(a.id, b.id, KIND_TAG,
                           TAG_WEIGHT * len(common_tags), ", ".join(common_tags)))
    if policy is EdgePolicy.STRONGEST:
        return edges[:1]
    return edges


def build_graph(cards, policy: EdgePolicy = EdgePolicy.STRONGEST) -> Graph:
    """One node per card and one edge per related pair.

    With ``EdgePolicy.STRONGEST`` a pair gets only its highest-precedence
    edge (explicit, then reference, then tag); ``EdgePolicy.ALL`` keeps one
    edge per applicable kind.
    """
    policy = EdgePolicy(policy)
    cards = list(cards)
    edges = []
    for i, a in enumerate(cards):
        for b in cards[i + 1:]:
            edges.extend(_pair_edges(a, b, policy))

    degree: dict[str, int] = {}
    for e in edges:
        degree[e.source] = degree.get(e.source, 0) + 1
        degree[e.target] = degree.get(e.target, 0) + 1
    nodes = [
        GraphNode(id=c.id, display_name=c.title.strip() or UNTITLED, card=c,
                  size=1 + degree.get(c.id, 0))
        for c in cards
    ]
    logger.debug("Built graph: %d nodes, %d edges", len(nodes), len(edges))
    return Graph(nodes=nodes, edges=edges)


def filter_by_kind(graph: Graph, allowed_kinds) -> Graph:
    allowed = set(allowed_kinds)
    edges = [e for e in graph.edges if e.kind in allowed]
    connected = {e.source for e in edges} | {e.target for e in edges}
    return Graph(nodes=[n for n in graph.nodes if n.id in connected], edges=edges)


def compute_costs(graph: Graph, center_id: str) -> dict[str, float]:
    ids = graph.node_ids()
    if center_id not in ids:
        return {}
    adjacency: dict[str, list[tuple[str, float]]] = {node_id: [] for node_id in ids}
    for e in graph.edges:
        if e.source not in adjacency or e.target not in adjacency or e.weight <= 0:
            continue
        cost = 1 / e.weight
        adjacency[e.source].append((e.target, cost))
        adjacency[e.target].append((e.source, cost))

    costs = {center_id: 0.0}
    visited = set()
    heap = [(0.0, center_id)]
    while heap:
        cost, node_id = heapq.heappop(heap)
        if node_id in visited:
            continue
        visited.add(node_id)
        for neighbor, step in adjacency[node_id]:
            candidate = cost + step
            if neighbor not in costs or candidate < costs[neighbor]:
                costs[neighbor] = candidate
                heapq.heappush(heap, (candidate, neighbor))
    return costs


def level_for_cost(cost: float) -> int:
    for bound, level in LEVEL_BOUNDS:
        if cost <= bound:
            return level
    return FAR_LEVEL


def compute_distances(graph: Graph, center_id: str) -> dict[str, int]:
    """Relevance level of every node reachable from ``center_id``.

    0 is the center, 1 covers cumulative cost up to 0.5, 2 up to 1.5, 3 up to
    2.5 and 4 anything farther. Unreachable nodes are left out.
    """
    return {
        node_id: 0 if node_id == center_id else level_for_cost(cost)
        for node_id, cost in compute_costs(graph, center_id).items()
    }


def filter_by_distance(graph: Graph, center_id: str | None, max_level: int | None,
                       distances: dict[str, int] | None = None) -> Graph:
    if not center_id or max_level is None:
        return graph
    if distances is None:
        distances = compute_distances(graph, center_id)
    keep = {node_id for node_id, level in distances.items() if level <= max_level}
    return Graph(
        nodes=[n for n in graph.nodes if n.id in keep],
        edges=[e for e in graph.edges if e.source in keep and e.target in keep],
    )


def visible_graph(graph: Graph, kinds=None, center_id: str | None = None,
                  max_level: int | None = None) -> Graph:
    """Kind filter, then distance filter measured on the full graph.

    Levels always come from ``graph`` itself, so hiding a relationship kind
    never changes how far away a card is.
    """
    shown = graph if kinds is None else filter_by_kind(graph, kinds)
    if not center_id or max_level is None:
        return shown
    return filter_by_distance(shown, center_id, max_level,
                              distances=compute_distances(graph, center_id))
