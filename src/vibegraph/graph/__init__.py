"""Graph domain: Neo4j storage, identity resolution and synchronization.

Exports are loaded lazily to avoid import cycles between graph and engine
packages during test/bootstrap imports.
"""

from __future__ import annotations

from importlib import import_module

__all__ = [
    "AffiliationLinker",
    "BatchSynchronizer",
    "BatchUpsertResult",
    "CleanupResult",
    "DuplicateCleaner",
    "EdgeDiff",
    "FollowGraphSynchronizer",
    "GraphStore",
    "IdentityResolver",
    "LinkResult",
    "MutualFinder",
    "MutualsResult",
    "ResolutionAction",
    "decide_resolution",
    "diff_edges",
    "init_schema",
    "relevancy_score",
]


_EXPORT_TO_MODULE = {
    "AffiliationLinker": "vibegraph.graph.linking",
    "LinkResult": "vibegraph.graph.linking",
    "MutualFinder": "vibegraph.graph.mutuals",
    "MutualsResult": "vibegraph.graph.mutuals",
    "relevancy_score": "vibegraph.graph.mutuals",
    "BatchSynchronizer": "vibegraph.graph.sync",
    "BatchUpsertResult": "vibegraph.graph.sync",
    "CleanupResult": "vibegraph.graph.cleanup",
    "DuplicateCleaner": "vibegraph.graph.cleanup",
    "EdgeDiff": "vibegraph.graph.differ",
    "FollowGraphSynchronizer": "vibegraph.graph.differ",
    "diff_edges": "vibegraph.graph.differ",
    "GraphStore": "vibegraph.graph.store",
    "IdentityResolver": "vibegraph.graph.resolution",
    "ResolutionAction": "vibegraph.graph.resolution",
    "decide_resolution": "vibegraph.graph.resolution",
    "init_schema": "vibegraph.graph.schema",
}


def __getattr__(name: str):
    module_name = _EXPORT_TO_MODULE.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module = import_module(module_name)
    return getattr(module, name)
