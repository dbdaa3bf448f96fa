"""Scenario generators producing raw link candidates.

Each scenario is a :class:`CandidateGenerator` subclass registered in
``SCENARIOS`` under its name. Generators only read the graph, the signals and
the similarity index, so they can run concurrently.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Type

from .config import EngineConfig
from .errors import RunCanceled, ScenarioError
from .graph import ContentGraph
from .profile import SEOProfile
from .progress import RunControl
from .signals import cluster_members, recency
from .similarity import SimilarityIndex, cosine
from .text import content_tokens, jaccard, tokenize
from .types import Page, PageSignals, RawCandidate

logger = logging.getLogger(__name__)

Checkpoint = Callable[[str, int, int], None]


@dataclass(frozen=True)
class ScenarioOutput:
    candidates: List[RawCandidate] = field(default_factory=list)
    scanned: int = 0
    error: Optional[str] = None


SCENARIOS: Dict[str, Type["CandidateGenerator"]] = {}


def register(cls: Type["CandidateGenerator"]) -> Type["CandidateGenerator"]:
    """Class decorator adding a generator to ``SCENARIOS`` in definition order."""

    if not cls.name:
        raise ValueError(f"{cls.__name__} must define a scenario name")
    SCENARIOS[cls.name] = cls
    return cls


class CandidateGenerator:
    """Base class for scenario generators."""

    name: str = ""

    def __init__(self, config: EngineConfig, as_of: datetime, control: Optional[RunControl] = None) -> None:
        self.config = config
        self.as_of = as_of
        self.control = control

    def param(self, key: str, default):
        return self.config.param(self.name, key, default)

    def scan(self, graph: ContentGraph) -> Iterator[Page]:
        """Iterate the graph's pages, stopping at the first page after a cancel request."""

        for page in graph.pages:
            if self.control is not None:
                self.control.raise_if_canceled()
            yield page

    def generate(
        self,
        graph: ContentGraph,
        signals: Dict[str, PageSignals],
        index: SimilarityIndex,
        profile: SEOProfile,
    ) -> ScenarioOutput:
        raise NotImplementedError

    def candidate(
        self,
        graph: ContentGraph,
        source_id: str,
        target_id: str,
        score: float,
        similarity: float,
        rationale: str,
    ) -> RawCandidate:
        return RawCandidate(
            source_id=source_id,
            target_id=target_id,
            scenario=self.name,
            score=round(score, 6),
            similarity=round(similarity, 6),
            rationale=rationale,
            source_block_id=best_source_block(graph, source_id, target_id),
        )

    def similar_sources(
        self,
        graph: ContentGraph,
        index: SimilarityIndex,
        target_id: str,
        k: int,
        min_similarity: float,
        accept: Callable[[str], bool],
    ) -> List[Tuple[str, float]]:
        """Top ``k`` pages most similar to ``target_id`` passing ``accept``."""

        vector = index.vector(target_id)
        if vector is None or k <= 0:
            return []
        hits = index.nearest(
            vector,
            k,
            filter=lambda page_id: page_id != target_id and accept(page_id),
        )
        return [(page_id, score) for page_id, score in hits if score >= min_similarity]


def best_source_block(graph: ContentGraph, source_id: str, target_id: str) -> Optional[str]:
    """Block of the source page whose embedding is closest to the target page."""

    target_vector = graph.page_vector(target_id)
    if target_vector is None:
        return None
    best: Optional[str] = None
    best_score = float("-inf")
    for block in graph.blocks_of(source_id):
        vector = graph.block_vectors.get(block.id)
        if vector is None or len(vector) != len(target_vector):
            continue
        score = cosine(vector, target_vector)
        if score > best_score:
            best, best_score = block.id, score
    return best


def heading_tokens(graph: ContentGraph, page_id: str) -> set:
    page = graph.page(page_id)
    return set(content_tokens(" ".join((page.title,) + tuple(page.headings))))


@register
class OrphanFix(CandidateGenerator):
    """Give every orphan page an inbound link from its closest linked pages."""

    name = "orphan_fix"

    def generate(self, graph, signals, index, profile) -> ScenarioOutput:
        donors = int(self.param("donors", 1))
        min_similarity = float(self.param("min_similarity", 0.3))
        output: List[RawCandidate] = []
        scanned = 0
        for page in self.scan(graph):
            if not signals[page.id].is_orphan:
                continue
            scanned += 1
            sources = self.similar_sources(
                graph,
                index,
                page.id,
                donors,
                min_similarity,
                accept=lambda page_id: not signals[page_id].is_orphan,
            )
            for source_id, similarity in sources:
                output.append(
                    self.candidate(
                        graph,
                        source_id,
                        page.id,
                        similarity,
                        similarity,
                        f"Orphan page has no inbound links; closest linked page (similarity {similarity:.2f}).",
                    )
                )
        return ScenarioOutput(output, scanned)


@register
class HeadConsolidation(CandidateGenerator):
    """Point cluster pages sharing a hub's headings at the hub and its close variants."""

    name = "head_consolidation"

    def generate(self, graph, signals, index, profile) -> ScenarioOutput:
        hub_match = float(self.param("hub_match", 0.5))
        min_overlap = float(self.param("min_overlap", 0.15))
        members = cluster_members(signals)
        tokens = {page.id: heading_tokens(graph, page.id) for page in graph.pages}
        output: List[RawCandidate] = []
        scanned = 0

        for hub in self.scan(graph):
            if not signals[hub.id].is_hub:
                continue
            scanned += 1
            cluster = members.get(signals[hub.id].cluster_id, [hub.id])
            targets = [hub.id] + [
                page_id
                for page_id in cluster
                if page_id != hub.id and jaccard(tokens[hub.id], tokens[page_id]) >= hub_match
            ]
            for target_id in targets:
                for source_id in cluster:
                    if source_id == target_id:
                        continue
                    overlap = jaccard(tokens[source_id], tokens[target_id])
                    if overlap < min_overlap:
                        continue
                    output.append(
                        self.candidate(
                            graph,
                            source_id,
                            target_id,
                            overlap,
                            index.similarity(source_id, target_id),
                            f"Consolidates heading topic around hub {hub.url} (heading overlap {overlap:.2f}).",
                        )
                    )
        return ScenarioOutput(output, scanned)


@register
class ClusterCrossLink(CandidateGenerator):
    """Link topically close pages of the same cluster that are not yet connected."""

    name = "cluster_cross_link"

    def generate(self, graph, signals, index, profile) -> ScenarioOutput:
        per_page = int(self.param("per_page", 2))
        min_similarity = float(self.param("min_similarity", 0.5))
        members = cluster_members(signals)
        output: List[RawCandidate] = []
        scanned = 0

        for source in self.scan(graph):
            scanned += 1
            cluster = members.get(signals[source.id].cluster_id, [])
            scored: List[Tuple[float, str]] = []
            for target_id in cluster:
                if target_id == source.id or graph.has_link(source.id, target_id):
                    continue
                similarity = index.similarity(source.id, target_id)
                if similarity >= min_similarity:
                    scored.append((similarity, target_id))
            scored.sort(key=lambda item: (-item[0], item[1]))
            for similarity, target_id in scored[:per_page]:
                output.append(
                    self.candidate(
                        graph,
                        source.id,
                        target_id,
                        similarity,
                        similarity,
                        f"Same topic cluster {signals[source.id].cluster_id}, not linked yet (similarity {similarity:.2f}).",
                    )
                )
        return ScenarioOutput(output, scanned)


@register
class CommercialRouting(CandidateGenerator):
    """Route relevant pages with buying intent toward priority (money) pages."""

    name = "commercial_routing"

    def generate(self, graph, signals, index, profile) -> ScenarioOutput:
        donors = int(self.param("donors", 3))
        min_similarity = float(self.param("min_similarity", 0.3))
        weight = float(self.param("intent_weight", 0.2))
        terms = {term.lower() for term in self.param("intent_terms", [])}
        output: List[RawCandidate] = []
        scanned = 0

        for target in self.scan(graph):
            if not signals[target.id].is_commercial:
                continue
            scanned += 1
            sources = self.similar_sources(
                graph,
                index,
                target.id,
                donors,
                min_similarity,
                accept=lambda page_id: not signals[page_id].is_commercial,
            )
            for source_id, similarity in sources:
                intent = commercial_intent(graph, source_id, terms)
                score = similarity * (1.0 - weight + weight * intent)
                output.append(
                    self.candidate(
                        graph,
                        source_id,
                        target.id,
                        score,
                        similarity,
                        f"Routes relevant traffic to priority page (similarity {similarity:.2f}, intent {intent:.2f}).",
                    )
                )
        return ScenarioOutput(output, scanned)


def commercial_intent(graph: ContentGraph, page_id: str, terms: set) -> float:
    """Share of the page's blocks mentioning at least one intent term."""

    blocks = graph.blocks_of(page_id)
    if not blocks or not terms:
        return 0.0
    hits = sum(1 for block in blocks if terms.intersection(tokenize(block.text)))
    return hits / len(blocks)


@register
class DepthLift(CandidateGenerator):
    """Pull deep pages closer to the entry pages through shallower cluster peers."""

    name = "depth_lift"

    def generate(self, graph, signals, index, profile) -> ScenarioOutput:
        donors = int(self.param("donors", 2))
        min_similarity = float(self.param("min_similarity", 0.3))
        min_depth = profile.depth_lift.min_depth
        members = cluster_members(signals)
        output: List[RawCandidate] = []
        scanned = 0

        for target in self.scan(graph):
            depth = signals[target.id].click_depth
            if depth < min_depth:
                continue
            scanned += 1
            scored: List[Tuple[float, float, str]] = []
            for source_id in members.get(signals[target.id].cluster_id, []):
                source_depth = signals[source_id].click_depth
                if source_id == target.id or source_depth >= depth:
                    continue
                similarity = index.similarity(source_id, target.id)
                if similarity < min_similarity:
                    continue
                scored.append((similarity / (1.0 + 0.25 * source_depth), similarity, source_id))
            scored.sort(key=lambda item: (-item[0], item[2]))
            for score, similarity, source_id in scored[:donors]:
                output.append(
                    self.candidate(
                        graph,
                        source_id,
                        target.id,
                        score,
                        similarity,
                        f"Page sits {depth} clicks deep; linked from depth {signals[source_id].click_depth}.",
                    )
                )
        return ScenarioOutput(output, scanned)


@register
class FreshnessPush(CandidateGenerator):
    """Send link equity from older related pages to recently updated content."""

    name = "freshness_push"

    def generate(self, graph, signals, index, profile) -> ScenarioOutput:
        min_similarity = float(self.param("min_similarity", 0.3))
        min_recency = float(self.param("min_recency", 0.1))
        settings = profile.freshness_push
        output: List[RawCandidate] = []
        scanned = 0

        for target in self.scan(graph):
            if not signals[target.id].is_fresh:
                continue
            scanned += 1
            target_modified = target.last_modified
            sources = self.similar_sources(
                graph,
                index,
                target.id,
                settings.links_per_donor,
                min_similarity,
                accept=lambda page_id: _is_older(graph, page_id, target_modified, signals),
            )
            weight = recency(target_modified, self.as_of, settings.days_fresh, min_recency)
            for source_id, similarity in sources:
                output.append(
                    self.candidate(
                        graph,
                        source_id,
                        target.id,
                        similarity * weight,
                        similarity,
                        f"Fresh content updated within {settings.days_fresh} days (recency {weight:.2f}).",
                    )
                )
        return ScenarioOutput(output, scanned)


def _is_older(graph: ContentGraph, page_id: str, reference: Optional[datetime], signals) -> bool:
    if not signals[page_id].is_fresh:
        return True
    modified = graph.page(page_id).last_modified
    if modified is None or reference is None:
        return False
    return modified < reference


def enabled_generators(
    profile: SEOProfile,
    config: EngineConfig,
    as_of: datetime,
    control: Optional[RunControl] = None,
) -> List[CandidateGenerator]:
    return [cls(config, as_of, control) for name, cls in SCENARIOS.items() if profile.scenario_enabled(name)]


def run_generators(
    generators: Sequence[CandidateGenerator],
    graph: ContentGraph,
    signals: Dict[str, PageSignals],
    index: SimilarityIndex,
    profile: SEOProfile,
    workers: int = 6,
    checkpoint: Checkpoint | None = None,
) -> Dict[str, ScenarioOutput]:
    """Run ``generators`` concurrently and collect outputs in registry order.

    A generator that raises is logged and contributes an empty output
    carrying the error message; the other scenarios are unaffected.
    """

    results: Dict[str, ScenarioOutput] = {}
    if not generators:
        return results

    with ThreadPoolExecutor(
        max_workers=max(1, min(workers, len(generators))),
        thread_name_prefix="linkplanner-scenario",
    ) as pool:
        futures = [
            (generator.name, pool.submit(generator.generate, graph, signals, index, profile))
            for generator in generators
        ]
        for done, (name, future) in enumerate(futures, start=1):
            try:
                output = future.result()
            except RunCanceled:
                raise
            except Exception as exc:
                error = ScenarioError(name, str(exc) or exc.__class__.__name__)
                logger.warning("Scenario failed: %s", error, exc_info=exc)
                output = ScenarioOutput(error=str(error))
            results[name] = output
            if checkpoint is not None:
                checkpoint(name, done, len(futures))
    return results
