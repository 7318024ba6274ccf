from __future__ import annotations

from typing import TYPE_CHECKING

__all__ = [
    "__version__",
    "BeadsTracker",
    "GraphService",
    "LayoutOptions",
    "MemoryTracker",
    "SyncController",
    "build_graphs",
]

__version__ = "0.1.0"

if TYPE_CHECKING:
    from .graph import build_graphs
    from .layout import LayoutOptions
    from .service import GraphService
    from .sync import SyncController
    from .tracker import BeadsTracker, MemoryTracker


def __getattr__(name: str):
    if name == "build_graphs":
        from .graph import build_graphs

        return build_graphs
    if name == "LayoutOptions":
        from .layout import LayoutOptions

        return LayoutOptions
    if name == "GraphService":
        from .service import GraphService

        return GraphService
    if name == "SyncController":
        from .sync import SyncController

        return SyncController
    if name in {"BeadsTracker", "MemoryTracker"}:
        from .tracker import BeadsTracker, MemoryTracker

        return {"BeadsTracker": BeadsTracker, "MemoryTracker": MemoryTracker}[name]
    raise AttributeError(f"module 'beadgraph' has no attribute {name!r}")
