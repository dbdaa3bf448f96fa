"""Phase sequencing for one generation run, independent of storage."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .ai import AnchorService
from .anchors import AnchorResolver
from .config import EngineConfig, load_config
from .graph import ContentGraph, ContentSource
from .liveness import LivenessChecker
from .metrics import summarize
from .profile import SEOProfile
from .progress import RunControl
from .scenarios import enabled_generators, run_generators
from .selector import CandidateSelector
from .signals import classify_pages
from .similarity import build_page_index
from .types import ACCEPTED, FLAGGED, REJECTED, LinkCandidate

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    candidates: List[LinkCandidate]
    metrics: Dict[str, Any] = field(default_factory=dict)
    scenario_progress: Dict[str, Dict[str, int]] = field(default_factory=dict)
    scenario_errors: Dict[str, str] = field(default_factory=dict)
    dead_urls: List[str] = field(default_factory=list)

    @property
    def counts(self) -> Dict[str, int]:
        return {
            "generated": len(self.candidates),
            "accepted": sum(1 for candidate in self.candidates if candidate.status == ACCEPTED),
            "rejected": sum(1 for candidate in self.candidates if candidate.status == REJECTED),
            "flagged": sum(1 for candidate in self.candidates if candidate.status == FLAGGED),
        }

    def accepted(self) -> List[LinkCandidate]:
        return [candidate for candidate in self.candidates if candidate.status == ACCEPTED]


class GenerationPipeline:
    """Run loading, analysis, generation and liveness checks for a project."""

    def __init__(
        self,
        source: ContentSource,
        config: Optional[EngineConfig] = None,
        anchor_service: Optional[AnchorService] = None,
        liveness_checker: Optional[LivenessChecker] = None,
    ) -> None:
        self.source = source
        self.config = config or load_config(None)
        self.anchor_service = anchor_service
        self.liveness_checker = liveness_checker

    def run(
        self,
        project_id: str,
        profile: SEOProfile,
        control: Optional[RunControl] = None,
        as_of: Optional[datetime] = None,
    ) -> GenerationResult:
        control = control or RunControl()
        as_of = as_of or datetime.now(timezone.utc)

        control.checkpoint("loading")
        graph = ContentGraph.load(
            self.source,
            project_id,
            checkpoint=lambda done, total: control.checkpoint("loading", done, total),
        )
        logger.info("Loaded %s pages for project %s", len(graph), project_id)

        control.checkpoint("analyzing")
        index = build_page_index({page.id: graph.page_vector(page.id) for page in graph.pages})
        signals = classify_pages(
            graph,
            index,
            profile,
            self.config,
            as_of,
            checkpoint=lambda done, total: control.checkpoint("analyzing", done, total),
        )

        control.checkpoint("generating")
        generators = enabled_generators(profile, self.config, as_of, control)
        for generator in generators:
            control.update_scenario(generator.name)

        def _scenario_done(name: str, done: int, total: int) -> None:
            control.checkpoint("generating", done, total * 2)

        outputs = run_generators(
            generators,
            graph,
            signals,
            index,
            profile,
            workers=int(self.config.get("scenario_workers", 6)),
            checkpoint=_scenario_done,
        )
        errors = {name: output.error for name, output in outputs.items() if output.error}
        for name, output in outputs.items():
            control.update_scenario(name, scanned=output.scanned, candidates=len(output.candidates))

        resolver = AnchorResolver(graph, self.config, service=self.anchor_service, control=control)
        selector = CandidateSelector(
            graph,
            profile,
            resolver,
            config=self.config,
            checker=self.liveness_checker,
            control=control,
            anchor_checkpoint=lambda done, total: control.checkpoint("generating", total + done, total * 2),
            liveness_checkpoint=lambda done, total: control.checkpoint("checking_404", done, total),
        )
        candidates = selector.select({name: output.candidates for name, output in outputs.items()})
        control.checkpoint("checking_404", 1, 1)

        control.checkpoint("finalizing")
        progress: Dict[str, Dict[str, int]] = {}
        for name, output in outputs.items():
            mine = [candidate for candidate in candidates if candidate.scenario == name]
            counts = {
                "scanned": output.scanned,
                "candidates": len(output.candidates),
                "accepted": sum(1 for candidate in mine if candidate.status in (ACCEPTED, FLAGGED)),
                "rejected": sum(1 for candidate in mine if candidate.status == REJECTED),
            }
            control.update_scenario(name, **counts)
            progress[name] = counts

        metrics = summarize(graph, signals, candidates, self.config, hubs=profile.hub_pages)
        metrics["anchor_resolution_passes"] = selector.passes
        metrics["ai_calls"] = resolver.calls
        metrics["ai_failures"] = resolver.failures

        result = GenerationResult(
            candidates=candidates,
            metrics=metrics,
            scenario_progress=progress,
            scenario_errors=errors,
            dead_urls=sorted(selector.dead_urls),
        )
        logger.info("Generation for project %s produced %s", project_id, result.counts)
        return result
