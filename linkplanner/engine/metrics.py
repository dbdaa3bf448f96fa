"""Run-level diagnostic metrics stored alongside a draft."""

from __future__ import annotations

import math
from collections import Counter
from typing import Any, Dict, Iterable, List, Sequence

from .config import EngineConfig
from .graph import ContentGraph
from .profile import normalize_anchor
from .signals import depth_after
from .types import ACCEPTED, FLAGGED, REJECTED, LinkCandidate, PageSignals

SELECTED = (ACCEPTED, FLAGGED)


def summarize(
    graph: ContentGraph,
    signals: Dict[str, PageSignals],
    candidates: Sequence[LinkCandidate],
    config: EngineConfig,
    hubs: Iterable[str] = (),
) -> Dict[str, Any]:
    """Return coverage, orphan and depth deltas plus anchor statistics."""

    total_pages = len(graph) or 1
    selected = [candidate for candidate in candidates if candidate.status in SELECTED]
    rejected = [candidate for candidate in candidates if candidate.status == REJECTED]

    sources = {candidate.source_id for candidate in selected}
    new_targets = {candidate.target_id for candidate in selected}
    orphans_before = [page_id for page_id, signal in signals.items() if signal.is_orphan]
    orphans_after = [page_id for page_id in orphans_before if page_id not in new_targets]

    max_depth = int(config.get("max_click_depth", 10))
    depth_before = [signal.click_depth for signal in signals.values()]
    depths = depth_after(graph, [candidate.pair for candidate in selected], set(hubs), max_depth)

    anchors = Counter(normalize_anchor(candidate.anchor_text) for candidate in selected if candidate.anchor_text)
    exact = sum(1 for candidate in selected if candidate.is_exact_anchor)

    return {
        "coverage": len(sources) / total_pages,
        "orphan_rate_before": len(orphans_before) / total_pages,
        "orphan_rate_after": len(orphans_after) / total_pages,
        "avg_click_depth_before": _mean(depth_before),
        "avg_click_depth_after": _mean(depths),
        "anchor_diversity_index": _shannon_entropy(anchors),
        "exact_anchor_rate": exact / len(selected) if selected else 0.0,
        "mean_score_accepted": _mean([candidate.score for candidate in selected]),
        "mean_score_rejected": _mean([candidate.score for candidate in rejected]),
        "anchor_source_counts": dict(Counter(candidate.anchor_source for candidate in selected)),
        "rejection_reason_counts": dict(Counter(candidate.rejection_reason for candidate in rejected)),
    }


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _shannon_entropy(counter: Counter) -> float:
    """Shannon entropy normalised to [0, 1] by the number of distinct keys."""

    total = sum(counter.values())
    if total == 0 or len(counter) <= 1:
        return 0.0
    entropy = 0.0
    for count in counter.values():
        probability = count / total
        entropy -= probability * math.log(probability)
    return entropy / math.log(len(counter))
