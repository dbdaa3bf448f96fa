"""Typed data structures used by the link generation pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

# Run statuses
RUNNING = "running"
DRAFT = "draft"
PUBLISHED = "published"
FAILED = "failed"
CANCELED = "canceled"

RUN_TRANSITIONS: Dict[str, frozenset[str]] = {
    RUNNING: frozenset({DRAFT, FAILED, CANCELED}),
    DRAFT: frozenset({PUBLISHED}),
    PUBLISHED: frozenset(),
    FAILED: frozenset(),
    CANCELED: frozenset(),
}

PHASES: Tuple[str, ...] = ("loading", "analyzing", "generating", "checking_404", "finalizing")

# Candidate statuses
ACCEPTED = "accepted"
REJECTED = "rejected"
FLAGGED = "flagged"

# Anchor sources
ANCHOR_EXISTING = "existing"
ANCHOR_AI_REWRITE = "ai-rewrite"
ANCHOR_GENERIC = "generic"

# Rejection reasons
LIMIT_EXCEEDED = "limit_exceeded"
GAP_VIOLATION = "gap_violation"
STOPLIST = "stoplist"
ANCHOR_QUOTA = "anchor_quota"
DUPLICATE = "duplicate"
BROKEN_TARGET = "broken_target"
NO_ANCHOR = "no_anchor"


def can_transition(current: str, new: str) -> bool:
    """Return True when a run may move from ``current`` to ``new``."""

    return new in RUN_TRANSITIONS.get(current, frozenset())


@dataclass(frozen=True)
class Page:
    """Imported page as seen by the engine. Identity fields never change."""

    id: str
    url: str
    title: str
    word_count: int = 0
    keyword: Optional[str] = None
    headings: Tuple[str, ...] = ()
    published_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_entry: bool = False

    @property
    def primary_keyword(self) -> str:
        return (self.keyword or self.title or "").strip()

    @property
    def last_modified(self) -> Optional[datetime]:
        return self.updated_at or self.published_at


@dataclass(frozen=True)
class Block:
    """Content-bearing fragment of a page, used as insertion site."""

    id: str
    page_id: str
    text: str
    position: int = 0
    word_offset: Optional[int] = None
    html: Optional[str] = None


@dataclass(frozen=True)
class ExistingLink:
    """Internal link already present on the live site."""

    source_id: str
    target_id: str
    anchor_text: str = ""
    position: Optional[int] = None


@dataclass(frozen=True)
class PageSignals:
    """Run-scoped derived signals for a page."""

    in_degree: int
    out_degree: int
    is_orphan: bool
    click_depth: int
    cluster_id: str
    is_fresh: bool
    is_commercial: bool
    is_hub: bool


@dataclass(frozen=True)
class RawCandidate:
    """Unfiltered link opportunity emitted by a scenario generator."""

    source_id: str
    target_id: str
    scenario: str
    score: float
    similarity: float
    rationale: str
    source_block_id: Optional[str] = None


@dataclass(frozen=True)
class AnchorMatch:
    """A resolved anchor placement inside the source page."""

    text: str
    block_id: str
    position: int
    source: str = ANCHOR_EXISTING
    is_exact: bool = False
    modified_sentence: Optional[str] = None


@dataclass(frozen=True)
class AnchorResolution:
    """Outcome of anchor resolution for one (source, target) pair."""

    primary: Optional[AnchorMatch]
    alternatives: Tuple[AnchorMatch, ...] = ()
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.primary is not None

    def options(self) -> Tuple[AnchorMatch, ...]:
        if self.primary is None:
            return ()
        return (self.primary,) + self.alternatives


@dataclass
class LinkCandidate:
    """Proposed internal link carrying its selection outcome."""

    source_id: str
    target_id: str
    source_url: str
    target_url: str
    scenario: str
    score: float
    similarity_score: float
    rationale: str
    order: int
    source_block_id: Optional[str] = None
    anchor_text: str = ""
    anchor_source: Optional[str] = None
    position: Optional[int] = None
    modified_sentence: Optional[str] = None
    is_exact_anchor: bool = False
    confidence: float = 0.0
    status: str = REJECTED
    rejection_reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def pair(self) -> Tuple[str, str]:
        return self.source_id, self.target_id

    def apply_anchor(self, anchor: AnchorMatch) -> None:
        self.anchor_text = anchor.text
        self.anchor_source = anchor.source
        self.position = anchor.position
        self.modified_sentence = anchor.modified_sentence
        self.is_exact_anchor = anchor.is_exact
        if anchor.block_id:
            self.source_block_id = anchor.block_id

    def accept(self, status: str = ACCEPTED) -> None:
        self.status = status
        self.rejection_reason = None

    def reject(self, reason: str) -> None:
        self.status = REJECTED
        self.rejection_reason = reason

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
