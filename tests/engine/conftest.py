"""Shared fixtures for engine tests."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import pytest

from linkplanner.engine.ai import AnchorSuggestion
from linkplanner.engine.config import load_config
from linkplanner.engine.errors import ExternalServiceError
from linkplanner.engine.graph import ContentGraph, InMemoryContentSource
from linkplanner.engine.profile import SCENARIO_NAMES
from linkplanner.engine.types import Block, ExistingLink, Page, RawCandidate

AS_OF = datetime(2024, 6, 1, tzinfo=timezone.utc)
PROJECT = "p1"


@pytest.fixture()
def engine_config():
    """Provide a mutable copy of the default engine configuration without retry delays."""

    config = load_config(None)
    config.raw["ai"]["backoff"] = 0.0
    return config


def make_page(
    page_id: str,
    title: str,
    *,
    url: str | None = None,
    keyword: str | None = None,
    headings: Iterable[str] = (),
    is_entry: bool = False,
    updated_at: datetime | None = None,
) -> Page:
    return Page(
        id=page_id,
        url=url or f"https://example.com/{page_id}",
        title=title,
        keyword=keyword,
        headings=tuple(headings),
        is_entry=is_entry,
        updated_at=updated_at,
    )


def make_block(page_id: str, text: str, position: int = 0) -> Block:
    return Block(id=f"{page_id}-b{position}", page_id=page_id, text=text, position=position)


def link(source_id: str, target_id: str, position: int | None = None) -> ExistingLink:
    return ExistingLink(source_id=source_id, target_id=target_id, position=position)


def build_source(
    pages: Sequence[Page],
    blocks: Sequence[Block] = (),
    links: Sequence[ExistingLink] = (),
    embeddings: Mapping[str, Sequence[float]] | None = None,
    project_id: str = PROJECT,
) -> InMemoryContentSource:
    source = InMemoryContentSource()
    source.add_project(project_id, pages, blocks, links, embeddings)
    return source


def load_graph(source: InMemoryContentSource, project_id: str = PROJECT) -> ContentGraph:
    return ContentGraph.load(source, project_id)


def only(*names: str) -> Dict[str, object]:
    """Scenario section of a profile payload enabling just ``names``."""

    scenarios: Dict[str, object] = {}
    for name in SCENARIO_NAMES:
        enabled = name in names
        if name in ("depth_lift", "freshness_push"):
            scenarios[name] = {"enabled": enabled}
        else:
            scenarios[name] = enabled
    return scenarios


def raw(source_id: str, target_id: str, score: float, scenario: str = "cluster_cross_link") -> RawCandidate:
    return RawCandidate(
        source_id=source_id,
        target_id=target_id,
        scenario=scenario,
        score=score,
        similarity=score,
        rationale="test",
    )


class FakeAnchorService:
    """Scripted anchor service keyed by target topic."""

    def __init__(
        self,
        replies: Optional[Mapping[str, AnchorSuggestion]] = None,
        error: Optional[Exception] = None,
        fail_times: int = 0,
    ) -> None:
        self.replies = dict(replies or {})
        self.error = error
        self.fail_times = fail_times
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def rewrite_or_find_anchor(self, source_text: str, target_topic: str) -> AnchorSuggestion:
        with self._lock:
            self.calls.append(target_topic)
            failing = self.fail_times > 0
            if failing:
                self.fail_times -= 1
        if self.error is not None:
            raise self.error
        if failing:
            raise ExternalServiceError("temporarily unavailable")
        return self.replies[target_topic]


class FakeLivenessChecker:
    """Liveness checker with fixed dead and unreachable URLs."""

    def __init__(self, dead: Iterable[str] = (), unreachable: Iterable[str] = ()) -> None:
        self.dead = set(dead)
        self.unreachable = set(unreachable)
        self.checked: List[str] = []
        self._lock = threading.Lock()

    def is_alive(self, url: str) -> bool:
        with self._lock:
            self.checked.append(url)
        if url in self.unreachable:
            raise ExternalServiceError(f"{url} timed out")
        return url not in self.dead
