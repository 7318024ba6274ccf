"""Layered (hierarchical) layout for dependency graphs.

Nodes are assigned to layers by longest path from a source, ordered within a
layer by the median position of their parents, then given coordinates along
the layout axis (``layer * (extent + spacing)``) and across it (evenly spaced,
centered on the widest layer).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from .models import Edge, LayoutNode

logger = logging.getLogger(__name__)

DIRECTIONS = ("TB", "LR")

NodeSpec = str | tuple[str, Any]
EdgeSpec = Edge | tuple[str, str]

_WHITE, _GRAY, _BLACK = 0, 1, 2


@dataclass(frozen=True)
class LayoutOptions:
    direction: str = "LR"
    node_spacing_x: float = 180
    node_spacing_y: float = 30
    node_width: float = 300
    node_height: float = 80

    def __post_init__(self) -> None:
        if self.direction not in DIRECTIONS:
            raise ValueError(f"direction must be one of {DIRECTIONS}, got {self.direction!r}")
        for name in ("node_spacing_x", "node_spacing_y"):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"{name} must be a finite number >= 0")
        for name in ("node_width", "node_height"):
            value = getattr(self, name)
            if not math.isfinite(value) or value <= 0:
                raise ValueError(f"{name} must be a finite number > 0")

    @property
    def primary_step(self) -> float:
        if self.direction == "TB":
            return self.node_height + self.node_spacing_y
        return self.node_width + self.node_spacing_x

    @property
    def secondary_step(self) -> float:
        if self.direction == "TB":
            return self.node_width + self.node_spacing_x
        return self.node_height + self.node_spacing_y


def _split_node(item: NodeSpec) -> tuple[str, Any]:
    if isinstance(item, tuple):
        return str(item[0]), item[1]
    return str(item), None


def _split_edge(item: EdgeSpec) -> tuple[str, str]:
    if isinstance(item, Edge):
        return item.source, item.target
    return str(item[0]), str(item[1])


def _acyclic_edges(
    order: list[str], succ: dict[str, list[str]], has_incoming: set[str]
) -> tuple[dict[str, list[str]], list[str]]:
    """Depth-first walk dropping back-edges.

    Returns the acyclic successor lists and a topological order (reverse
    postorder). Sources are visited first so that, where a cycle hangs off a
    proper source, the edge closing the cycle is the one dropped.
    """
    color = {node: _WHITE for node in order}
    kept: dict[str, list[str]] = {node: [] for node in order}
    postorder: list[str] = []

    starts = [n for n in order if n not in has_incoming] + [n for n in order if n in has_incoming]
    for start in starts:
        if color[start] != _WHITE:
            continue
        color[start] = _GRAY
        stack: list[tuple[str, int]] = [(start, 0)]
        while stack:
            node, idx = stack[-1]
            children = succ[node]
            if idx < len(children):
                stack[-1] = (node, idx + 1)
                child = children[idx]
                if color[child] == _GRAY:
                    continue  # back-edge
                kept[node].append(child)
                if color[child] == _WHITE:
                    color[child] = _GRAY
                    stack.append((child, 0))
            else:
                stack.pop()
                color[node] = _BLACK
                postorder.append(node)

    postorder.reverse()
    return kept, postorder


def _median(values: list[int]) -> float:
    values = sorted(values)
    mid = len(values) // 2
    if len(values) % 2:
        return float(values[mid])
    return (values[mid - 1] + values[mid]) / 2


def layout(
    nodes: Sequence[NodeSpec],
    edges: Iterable[EdgeSpec] = (),
    options: LayoutOptions | None = None,
) -> list[LayoutNode]:
    """Position ``nodes`` and return them in input order.

    Edges naming unknown nodes are ignored. Cycles never prevent a layout:
    the edge closing each cycle is simply left out of layering.
    """
    opts = options or LayoutOptions()

    order: list[str] = []
    data: dict[str, Any] = {}
    for item in nodes:
        node_id, payload = _split_node(item)
        if node_id in data:
            continue
        order.append(node_id)
        data[node_id] = payload
    if not order:
        return []
    index = {node_id: i for i, node_id in enumerate(order)}

    succ: dict[str, list[str]] = {node_id: [] for node_id in order}
    has_incoming: set[str] = set()
    seen: set[tuple[str, str]] = set()
    skipped = 0
    for item in edges:
        source, target = _split_edge(item)
        if source not in index or target not in index:
            skipped += 1
            continue
        if (source, target) in seen:
            continue
        seen.add((source, target))
        succ[source].append(target)
        if source != target:
            has_incoming.add(target)
    if skipped:
        logger.debug("layout ignored %d edges referencing unknown nodes", skipped)

    kept, topo = _acyclic_edges(order, succ, has_incoming)

    layer = {node_id: 0 for node_id in order}
    parents: dict[str, list[str]] = {node_id: [] for node_id in order}
    for node_id in topo:
        for child in kept[node_id]:
            parents[child].append(node_id)
            if layer[node_id] + 1 > layer[child]:
                layer[child] = layer[node_id] + 1

    layers: dict[int, list[str]] = {}
    for node_id in order:
        layers.setdefault(layer[node_id], []).append(node_id)

    position: dict[str, int] = {}
    depth = max(layers) + 1
    for level in range(depth):
        members = layers.get(level, [])
        medians: dict[str, float] = {}
        for node_id in members:
            upper = [position[p] for p in parents[node_id] if layer[p] == level - 1]
            if upper:
                medians[node_id] = _median(upper)
        movable = iter(
            sorted(
                (n for n in members if n in medians),
                key=lambda n: (medians[n], index[n]),
            )
        )
        # Parentless nodes keep their input-order slots; the rest are reordered.
        ordered = [next(movable) if n in medians else n for n in members]
        layers[level] = ordered
        for pos, node_id in enumerate(ordered):
            position[node_id] = pos

    widest = max(len(members) for members in layers.values())
    result: dict[str, LayoutNode] = {}
    for level, members in layers.items():
        offset = (widest - len(members)) * opts.secondary_step / 2
        primary = level * opts.primary_step
        for pos, node_id in enumerate(members):
            secondary = offset + pos * opts.secondary_step
            if opts.direction == "TB":
                x, y = secondary, primary
            else:
                x, y = primary, secondary
            result[node_id] = LayoutNode(id=node_id, x=x, y=y, layer=level, data=data[node_id])

    return [result[node_id] for node_id in order]
