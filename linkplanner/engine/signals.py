"""Per-run page signals derived from the existing link graph and embeddings."""

from __future__ import annotations

from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple
from urllib.parse import urlparse

from .config import EngineConfig
from .graph import ContentGraph
from .profile import SEOProfile
from .similarity import SimilarityIndex
from .types import PageSignals

Checkpoint = Callable[[int, int], None]


def classify_pages(
    graph: ContentGraph,
    index: SimilarityIndex,
    profile: SEOProfile,
    config: EngineConfig,
    as_of: datetime,
    checkpoint: Checkpoint | None = None,
) -> Dict[str, PageSignals]:
    """Compute the signals for every page of ``graph``; pure and run-scoped."""

    max_depth = int(config.get("max_click_depth", 10))
    hubs = _lookup_set(profile.hub_pages)
    priority = _lookup_set(profile.priority_pages)

    entries = entry_pages(graph, hubs)
    depths = click_depths(len(graph), graph.outgoing, entries, max_depth)
    clusters = cluster_pages(graph, index, float(config.get("cluster_threshold", 0.75)))
    fresh_cutoff = _aware(as_of) - timedelta(days=profile.freshness_push.days_fresh)

    signals: Dict[str, PageSignals] = {}
    total = len(graph)
    for idx, page in enumerate(graph.pages):
        modified = page.last_modified
        signals[page.id] = PageSignals(
            in_degree=len(graph.incoming[idx]),
            out_degree=len(graph.outgoing[idx]),
            is_orphan=not graph.incoming[idx],
            click_depth=depths[idx],
            cluster_id=clusters[idx],
            is_fresh=modified is not None and _aware(modified) >= fresh_cutoff,
            is_commercial=page.id in priority or page.url in priority,
            is_hub=page.id in hubs or page.url in hubs,
        )
        if checkpoint is not None:
            checkpoint(idx + 1, total)
    return signals


def entry_pages(graph: ContentGraph, hubs: Set[str]) -> List[int]:
    """Indices the click-depth BFS starts from."""

    entries = [
        idx
        for idx, page in enumerate(graph.pages)
        if page.is_entry or page.id in hubs or page.url in hubs
    ]
    if entries:
        return entries
    roots = [idx for idx, page in enumerate(graph.pages) if urlparse(page.url).path in ("", "/")]
    if roots:
        return roots
    if not graph.pages:
        return []
    best = min(range(len(graph.pages)), key=lambda idx: (-len(graph.incoming[idx]), graph.pages[idx].id))
    return [best]


def click_depths(
    size: int,
    outgoing: Sequence[Iterable[int]],
    entries: Sequence[int],
    max_depth: int,
) -> List[int]:
    """Breadth-first hop counts from ``entries``; unreachable pages get ``max_depth``."""

    depths = [max_depth] * size
    queue: deque[int] = deque()
    for entry in entries:
        if depths[entry] != 0:
            depths[entry] = 0
            queue.append(entry)
    seen = set(entries)
    while queue:
        current = queue.popleft()
        next_depth = depths[current] + 1
        for neighbour in outgoing[current]:
            if neighbour in seen:
                continue
            seen.add(neighbour)
            depths[neighbour] = min(next_depth, max_depth)
            queue.append(neighbour)
    return depths


def cluster_pages(graph: ContentGraph, index: SimilarityIndex, threshold: float) -> List[str]:
    """Threshold connected components over page embeddings.

    Two pages are joined when their cosine similarity is at least
    ``threshold``. Component labels are ``c0, c1, ...`` numbered by their
    lowest page index so labels are stable across runs.
    """

    size = len(graph)
    parent = list(range(size))

    def find(node: int) -> int:
        while parent[node] != node:
            parent[node] = parent[parent[node]]
            node = parent[node]
        return node

    def union(a: int, b: int) -> None:
        root_a, root_b = find(a), find(b)
        if root_a != root_b:
            parent[max(root_a, root_b)] = min(root_a, root_b)

    embedded = [idx for idx, page in enumerate(graph.pages) if page.id in index]
    for pos, idx_a in enumerate(embedded):
        page_a = graph.pages[idx_a].id
        for idx_b in embedded[pos + 1:]:
            if index.similarity(page_a, graph.pages[idx_b].id) >= threshold:
                union(idx_a, idx_b)

    labels: Dict[int, str] = {}
    result: List[str] = []
    for idx in range(size):
        root = find(idx)
        if root not in labels:
            labels[root] = f"c{len(labels)}"
        result.append(labels[root])
    return result


def cluster_members(signals: Dict[str, PageSignals]) -> Dict[str, List[str]]:
    members: Dict[str, List[str]] = {}
    for page_id in sorted(signals):
        members.setdefault(signals[page_id].cluster_id, []).append(page_id)
    return members


def depth_after(
    graph: ContentGraph,
    added: Iterable[Tuple[str, str]],
    hubs: Set[str],
    max_depth: int,
) -> List[int]:
    """Click depths once ``added`` (source id, target id) links are in place."""

    outgoing = [list(targets) for targets in graph.outgoing]
    for source_id, target_id in added:
        src = graph.index_of.get(source_id)
        dst = graph.index_of.get(target_id)
        if src is None or dst is None or dst in outgoing[src]:
            continue
        outgoing[src].append(dst)
    return click_depths(len(graph), outgoing, entry_pages(graph, hubs), max_depth)


def _lookup_set(values: Iterable[str]) -> Set[str]:
    return {value.strip() for value in values if value and value.strip()}


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def recency(modified: Optional[datetime], as_of: datetime, days_fresh: int, floor: float) -> float:
    """1.0 for content modified at ``as_of``, falling linearly to ``floor``."""

    if modified is None:
        return floor
    age_days = max(0.0, (_aware(as_of) - _aware(modified)).total_seconds() / 86400.0)
    return max(floor, 1.0 - age_days / float(days_fresh))
