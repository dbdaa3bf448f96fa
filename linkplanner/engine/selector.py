"""Merge, rank and filter raw candidates under the profile's constraints.

Selection is a single-threaded greedy pass over the ranked candidates. When a
candidate needs an AI anchor it is parked as *pending* (keeping its slot on
the source page); all pending anchors are then resolved in one concurrent
batch and the pass is repeated from scratch. The final pass therefore only
depends on the ranked candidates, the anchor resolutions and the dead target
set, which keeps re-runs deterministic.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from .anchors import AnchorResolver
from .config import EngineConfig
from .graph import ContentGraph
from .liveness import LivenessChecker, check_targets
from .profile import SEOProfile
from .progress import RunControl
from .types import (
    ACCEPTED,
    ANCHOR_AI_REWRITE,
    ANCHOR_QUOTA,
    BROKEN_TARGET,
    DUPLICATE,
    FLAGGED,
    GAP_VIOLATION,
    LIMIT_EXCEEDED,
    NO_ANCHOR,
    REJECTED,
    STOPLIST,
    AnchorMatch,
    AnchorResolution,
    LinkCandidate,
    RawCandidate,
)

logger = logging.getLogger(__name__)

PRIORITY: Tuple[str, ...] = (
    "orphan_fix",
    "head_consolidation",
    "commercial_routing",
    "depth_lift",
    "freshness_push",
    "cluster_cross_link",
)

Pair = Tuple[str, str]
Checkpoint = Callable[[int, int], None]


def scenario_rank(scenario: str) -> int:
    try:
        return PRIORITY.index(scenario)
    except ValueError:
        return len(PRIORITY)


def rank_key(candidate: LinkCandidate) -> Tuple[float, int, int]:
    return (-candidate.score, scenario_rank(candidate.scenario), candidate.order)


def merge_candidates(
    outputs: Mapping[str, Sequence[RawCandidate]],
    graph: ContentGraph,
) -> Tuple[List[LinkCandidate], List[LinkCandidate]]:
    """Collapse duplicate pairs across scenarios and rank the survivors.

    Returns ``(ranked, duplicates)``; duplicates are already rejected with
    reason ``duplicate`` and point at the scenario that kept the pair.
    """

    grouped: Dict[Pair, List[LinkCandidate]] = defaultdict(list)
    order = 0
    for scenario, raw_candidates in outputs.items():
        for raw in raw_candidates:
            if raw.source_id == raw.target_id:
                continue
            if raw.source_id not in graph.index_of or raw.target_id not in graph.index_of:
                continue
            candidate = LinkCandidate(
                source_id=raw.source_id,
                target_id=raw.target_id,
                source_url=graph.page(raw.source_id).url,
                target_url=graph.page(raw.target_id).url,
                scenario=scenario,
                score=raw.score,
                similarity_score=raw.similarity,
                rationale=raw.rationale,
                order=order,
                source_block_id=raw.source_block_id,
            )
            order += 1
            grouped[(raw.source_id, raw.target_id)].append(candidate)

    ranked: List[LinkCandidate] = []
    duplicates: List[LinkCandidate] = []
    for group in grouped.values():
        group.sort(key=rank_key)
        winner = group[0]
        ranked.append(winner)
        for loser in group[1:]:
            loser.reject(DUPLICATE)
            loser.metadata["duplicate_of"] = winner.scenario
            duplicates.append(loser)

    ranked.sort(key=rank_key)
    duplicates.sort(key=lambda candidate: candidate.order)
    return ranked, duplicates


class CandidateSelector:
    """Greedy policy filter for one run."""

    def __init__(
        self,
        graph: ContentGraph,
        profile: SEOProfile,
        resolver: AnchorResolver,
        config: Optional[EngineConfig] = None,
        checker: Optional[LivenessChecker] = None,
        control: Optional[RunControl] = None,
        anchor_checkpoint: Checkpoint | None = None,
        liveness_checkpoint: Checkpoint | None = None,
    ) -> None:
        self.graph = graph
        self.profile = profile
        self.resolver = resolver
        self.config = config or EngineConfig()
        self.checker = checker
        self.control = control
        self.anchor_checkpoint = anchor_checkpoint
        self.liveness_checkpoint = liveness_checkpoint

        self.remote: Dict[Pair, AnchorResolution] = {}
        self.dead: Set[str] = set()
        self.dead_urls: Set[str] = set()
        self.inconclusive_urls: Set[str] = set()
        self.passes = 0
        self._preferred_block: Dict[Pair, Optional[str]] = {}

    @property
    def regenerate(self) -> bool:
        return self.profile.old_links_policy == "regenerate"

    def select(self, outputs: Mapping[str, Sequence[RawCandidate]]) -> List[LinkCandidate]:
        """Return every candidate (ranked winners, then duplicates) with its final status."""

        ranked, duplicates = merge_candidates(outputs, self.graph)
        for candidate in ranked:
            self._preferred_block[candidate.pair] = candidate.source_block_id

        self.settle(ranked)
        self._apply_broken_link_policy(ranked)

        if self.profile.old_links_policy == "audit":
            for candidate in ranked:
                if candidate.status == ACCEPTED:
                    candidate.accept(FLAGGED)
                    candidate.metadata["audit"] = True

        logger.debug(
            "Selection finished after %s passes: %s ranked, %s duplicates",
            self.passes,
            len(ranked),
            len(duplicates),
        )
        return ranked + duplicates

    def settle(self, ranked: Sequence[LinkCandidate]) -> None:
        """Repeat the greedy pass until no candidate waits for an AI anchor."""

        while True:
            if self.control is not None:
                self.control.raise_if_canceled()
            pending = self.greedy_pass(ranked)
            if not pending:
                return
            self.remote.update(self.resolver.resolve_remote(pending, checkpoint=self.anchor_checkpoint))

    def greedy_pass(self, ranked: Sequence[LinkCandidate]) -> List[LinkCandidate]:
        """Assign statuses in rank order; return candidates still waiting for an anchor."""

        self.passes += 1
        profile = self.profile
        accepted_pairs: Set[Pair] = set()
        slots: Counter = Counter()
        positions: Dict[str, List[int]] = defaultdict(list)
        state = {"accepted": 0, "exact": 0}
        pending: List[LinkCandidate] = []

        for candidate in ranked:
            self._reset(candidate)

            if candidate.target_id in self.dead:
                candidate.reject(BROKEN_TARGET)
                continue

            if profile.remove_duplicates and (
                candidate.pair in accepted_pairs
                or (not self.regenerate and self.graph.has_link(candidate.source_id, candidate.target_id))
            ):
                candidate.reject(DUPLICATE)
                continue

            if slots[candidate.source_id] >= profile.max_links_per_page:
                candidate.reject(LIMIT_EXCEEDED)
                continue

            resolution = self.resolver.resolve_local(candidate)
            if not resolution.ok:
                remote = self.remote.get(candidate.pair)
                if remote is None:
                    slots[candidate.source_id] += 1
                    pending.append(candidate)
                    continue
                if not remote.ok:
                    candidate.reject(NO_ANCHOR)
                    candidate.metadata["anchor_error"] = remote.error
                    continue
                resolution = remote

            chosen: Optional[AnchorMatch] = None
            first_reason: Optional[str] = None
            for option in resolution.options():
                reason = self._check_option(candidate, option, positions, state)
                if reason is None:
                    chosen = option
                    break
                if first_reason is None:
                    first_reason = reason

            if chosen is None:
                self._apply_anchor(candidate, resolution.primary)
                candidate.reject(first_reason or NO_ANCHOR)
                continue

            self._apply_anchor(candidate, chosen)
            candidate.accept()
            accepted_pairs.add(candidate.pair)
            slots[candidate.source_id] += 1
            positions[candidate.source_id].append(chosen.position)
            state["accepted"] += 1
            if chosen.is_exact:
                state["exact"] += 1

        return pending

    def _check_option(
        self,
        candidate: LinkCandidate,
        option: AnchorMatch,
        positions: Dict[str, List[int]],
        state: Dict[str, int],
    ) -> Optional[str]:
        profile = self.profile
        if profile.is_stop_anchor(option.text):
            return STOPLIST
        if option.is_exact and not exact_anchor_allowed(
            state["exact"], state["accepted"], profile.max_exact_anchor_percent
        ):
            return ANCHOR_QUOTA
        taken = list(positions[candidate.source_id])
        if not self.regenerate:
            taken.extend(self.graph.existing_positions(candidate.source_id))
        if any(abs(option.position - other) < profile.min_word_gap for other in taken):
            return GAP_VIOLATION
        return None

    def _reset(self, candidate: LinkCandidate) -> None:
        candidate.status = REJECTED
        candidate.rejection_reason = None
        candidate.anchor_text = ""
        candidate.anchor_source = None
        candidate.position = None
        candidate.modified_sentence = None
        candidate.is_exact_anchor = False
        candidate.confidence = 0.0
        candidate.source_block_id = self._preferred_block.get(candidate.pair, candidate.source_block_id)
        candidate.metadata.pop("anchor_error", None)

    def _apply_anchor(self, candidate: LinkCandidate, anchor: Optional[AnchorMatch]) -> None:
        if anchor is None:
            return
        candidate.apply_anchor(anchor)
        weight = 1.0
        if anchor.source == ANCHOR_AI_REWRITE:
            weight = 0.8 if anchor.modified_sentence else 0.9
        candidate.confidence = round(candidate.score * weight, 6)

    def _apply_broken_link_policy(self, ranked: Sequence[LinkCandidate]) -> None:
        policy = self.profile.broken_links_policy
        if policy == "ignore" or self.checker is None:
            return

        liveness = self.config.section("liveness")
        checked: Dict[str, Optional[bool]] = {}
        while True:
            urls = {
                candidate.target_url
                for candidate in ranked
                if candidate.status == ACCEPTED and candidate.target_url not in checked
            }
            if not urls:
                break
            checked.update(
                check_targets(
                    self.checker,
                    urls,
                    concurrency=int(liveness.get("concurrency", 8)),
                    retries=int(liveness.get("retries", 1)),
                    control=self.control,
                    checkpoint=self.liveness_checkpoint,
                )
            )
            newly_dead = {
                candidate.target_id
                for candidate in ranked
                if checked.get(candidate.target_url) is False and candidate.target_id not in self.dead
            }
            self.dead_urls.update(url for url, alive in checked.items() if alive is False)
            if policy == "replace" and newly_dead:
                logger.info("Replacing links to %s dead targets", len(newly_dead))
                self.dead.update(newly_dead)
                self.settle(ranked)

        for candidate in ranked:
            if candidate.status != ACCEPTED:
                continue
            alive = checked.get(candidate.target_url)
            if alive is False:
                candidate.reject(BROKEN_TARGET)
            elif alive is None and candidate.target_url in checked:
                candidate.accept(FLAGGED)
                candidate.metadata["liveness"] = "inconclusive"
                self.inconclusive_urls.add(candidate.target_url)


def exact_anchor_allowed(exact_count: int, accepted_count: int, max_percent: float) -> bool:
    """Whether one more exact-match anchor keeps the run within its quota.

    The share is measured against the accepted set including the new
    candidate, with a tolerance of one candidate. A quota of 0 forbids exact
    anchors entirely.
    """

    if max_percent <= 0:
        return False
    return exact_count + 1 <= max_percent / 100.0 * (accepted_count + 1) + 1
