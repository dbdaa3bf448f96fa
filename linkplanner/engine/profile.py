"""SEO profile: the user-supplied linking policy for a single run."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Tuple

from .errors import ProfileError

SCENARIO_NAMES: Tuple[str, ...] = (
    "orphan_fix",
    "head_consolidation",
    "cluster_cross_link",
    "commercial_routing",
    "depth_lift",
    "freshness_push",
)

BROKEN_LINK_POLICIES = ("delete", "replace", "ignore")
OLD_LINK_POLICIES = ("enrich", "regenerate", "audit")
CLASS_MODES = ("append", "replace")


@dataclass(frozen=True)
class DepthLiftSettings:
    enabled: bool = True
    min_depth: int = 5


@dataclass(frozen=True)
class FreshnessPushSettings:
    enabled: bool = True
    days_fresh: int = 30
    links_per_donor: int = 1


@dataclass(frozen=True)
class HtmlAttributes:
    """Attributes applied to every inserted anchor tag."""

    class_name: str = ""
    class_mode: str = "append"
    rel_noopener: bool = False
    rel_noreferrer: bool = False
    rel_nofollow: bool = False
    target_blank: bool = False

    @property
    def rel(self) -> str:
        values = []
        if self.rel_nofollow:
            values.append("nofollow")
        if self.rel_noopener:
            values.append("noopener")
        if self.rel_noreferrer:
            values.append("noreferrer")
        return " ".join(values)

    @property
    def target(self) -> str:
        return "_blank" if self.target_blank else ""


@dataclass(frozen=True)
class SEOProfile:
    """Immutable linking policy supplied at run start."""

    max_links_per_page: int = 3
    min_word_gap: int = 100
    max_exact_anchor_percent: float = 20.0
    stop_anchors: FrozenSet[str] = frozenset()
    priority_pages: Tuple[str, ...] = ()
    hub_pages: Tuple[str, ...] = ()
    orphan_fix: bool = True
    head_consolidation: bool = True
    cluster_cross_link: bool = True
    commercial_routing: bool = True
    depth_lift: DepthLiftSettings = field(default_factory=DepthLiftSettings)
    freshness_push: FreshnessPushSettings = field(default_factory=FreshnessPushSettings)
    remove_duplicates: bool = True
    broken_links_policy: str = "replace"
    old_links_policy: str = "enrich"
    html: HtmlAttributes = field(default_factory=HtmlAttributes)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "stop_anchors", frozenset(normalize_anchor(item) for item in self.stop_anchors)
        )
        object.__setattr__(self, "priority_pages", tuple(self.priority_pages))
        object.__setattr__(self, "hub_pages", tuple(self.hub_pages))
        if self.max_links_per_page < 1:
            raise ProfileError("max_links_per_page must be at least 1.")
        if self.min_word_gap < 0:
            raise ProfileError("min_word_gap cannot be negative.")
        if not 0 <= self.max_exact_anchor_percent <= 100:
            raise ProfileError("max_exact_anchor_percent must be between 0 and 100.")
        if self.broken_links_policy not in BROKEN_LINK_POLICIES:
            raise ProfileError(f"Unknown broken_links_policy: {self.broken_links_policy}")
        if self.old_links_policy not in OLD_LINK_POLICIES:
            raise ProfileError(f"Unknown old_links_policy: {self.old_links_policy}")
        if self.html.class_mode not in CLASS_MODES:
            raise ProfileError(f"Unknown class_mode: {self.html.class_mode}")
        if self.depth_lift.min_depth < 1:
            raise ProfileError("depth_lift.min_depth must be at least 1.")
        if self.freshness_push.days_fresh < 1:
            raise ProfileError("freshness_push.days_fresh must be at least 1.")
        if self.freshness_push.links_per_donor < 0:
            raise ProfileError("freshness_push.links_per_donor cannot be negative.")

    def scenario_enabled(self, name: str) -> bool:
        if name == "depth_lift":
            return self.depth_lift.enabled
        if name == "freshness_push":
            return self.freshness_push.enabled and self.freshness_push.links_per_donor > 0
        if name == "commercial_routing":
            return self.commercial_routing and bool(self.priority_pages)
        if name == "head_consolidation":
            return self.head_consolidation
        return bool(getattr(self, name, False))

    def is_stop_anchor(self, text: str) -> bool:
        return normalize_anchor(text) in self.stop_anchors

    def with_changes(self, **changes: Any) -> "SEOProfile":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_links_per_page": self.max_links_per_page,
            "min_word_gap": self.min_word_gap,
            "max_exact_anchor_percent": self.max_exact_anchor_percent,
            "stop_anchors": sorted(self.stop_anchors),
            "priority_pages": list(self.priority_pages),
            "hub_pages": list(self.hub_pages),
            "scenarios": {
                "orphan_fix": self.orphan_fix,
                "head_consolidation": self.head_consolidation,
                "cluster_cross_link": self.cluster_cross_link,
                "commercial_routing": self.commercial_routing,
                "depth_lift": {
                    "enabled": self.depth_lift.enabled,
                    "min_depth": self.depth_lift.min_depth,
                },
                "freshness_push": {
                    "enabled": self.freshness_push.enabled,
                    "days_fresh": self.freshness_push.days_fresh,
                    "links_per_donor": self.freshness_push.links_per_donor,
                },
            },
            "policies": {
                "remove_duplicates": self.remove_duplicates,
                "broken_links": self.broken_links_policy,
                "old_links": self.old_links_policy,
            },
            "html": {
                "class_name": self.html.class_name,
                "class_mode": self.html.class_mode,
                "rel_noopener": self.html.rel_noopener,
                "rel_noreferrer": self.html.rel_noreferrer,
                "rel_nofollow": self.html.rel_nofollow,
                "target_blank": self.html.target_blank,
            },
        }


def normalize_anchor(text: str) -> str:
    return " ".join(str(text).lower().split())


def _string_tuple(values: Iterable[Any] | str | None) -> Tuple[str, ...]:
    if values is None:
        return ()
    if isinstance(values, str):
        values = values.replace("\n", ",").split(",")
    cleaned = []
    for value in values:
        text = str(value).strip()
        if text and text not in cleaned:
            cleaned.append(text)
    return tuple(cleaned)


def _as_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ProfileError(f"{name} must be an integer.") from exc


def _as_float(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ProfileError(f"{name} must be a number.") from exc


def profile_from_dict(data: Mapping[str, Any] | None) -> SEOProfile:
    """Build a profile from the nested dict produced by :meth:`SEOProfile.to_dict`.

    Missing keys keep their defaults, so partial payloads are accepted.
    """

    data = dict(data or {})
    defaults = SEOProfile()
    scenarios = dict(data.get("scenarios") or {})
    policies = dict(data.get("policies") or {})
    html = dict(data.get("html") or {})

    depth = scenarios.get("depth_lift", {})
    if isinstance(depth, bool):
        depth = {"enabled": depth}
    fresh = scenarios.get("freshness_push", {})
    if isinstance(fresh, bool):
        fresh = {"enabled": fresh}

    return SEOProfile(
        max_links_per_page=_as_int(
            data.get("max_links_per_page", defaults.max_links_per_page), "max_links_per_page"
        ),
        min_word_gap=_as_int(data.get("min_word_gap", defaults.min_word_gap), "min_word_gap"),
        max_exact_anchor_percent=_as_float(
            data.get("max_exact_anchor_percent", defaults.max_exact_anchor_percent),
            "max_exact_anchor_percent",
        ),
        stop_anchors=frozenset(normalize_anchor(item) for item in _string_tuple(data.get("stop_anchors"))),
        priority_pages=_string_tuple(data.get("priority_pages")),
        hub_pages=_string_tuple(data.get("hub_pages")),
        orphan_fix=bool(scenarios.get("orphan_fix", defaults.orphan_fix)),
        head_consolidation=bool(scenarios.get("head_consolidation", defaults.head_consolidation)),
        cluster_cross_link=bool(scenarios.get("cluster_cross_link", defaults.cluster_cross_link)),
        commercial_routing=bool(scenarios.get("commercial_routing", defaults.commercial_routing)),
        depth_lift=DepthLiftSettings(
            enabled=bool(depth.get("enabled", defaults.depth_lift.enabled)),
            min_depth=_as_int(depth.get("min_depth", defaults.depth_lift.min_depth), "depth_lift.min_depth"),
        ),
        freshness_push=FreshnessPushSettings(
            enabled=bool(fresh.get("enabled", defaults.freshness_push.enabled)),
            days_fresh=_as_int(
                fresh.get("days_fresh", defaults.freshness_push.days_fresh), "freshness_push.days_fresh"
            ),
            links_per_donor=_as_int(
                fresh.get("links_per_donor", defaults.freshness_push.links_per_donor),
                "freshness_push.links_per_donor",
            ),
        ),
        remove_duplicates=bool(policies.get("remove_duplicates", defaults.remove_duplicates)),
        broken_links_policy=str(policies.get("broken_links", defaults.broken_links_policy)),
        old_links_policy=str(policies.get("old_links", defaults.old_links_policy)),
        html=HtmlAttributes(
            class_name=str(html.get("class_name", "")).strip(),
            class_mode=str(html.get("class_mode", "append")),
            rel_noopener=bool(html.get("rel_noopener", False)),
            rel_noreferrer=bool(html.get("rel_noreferrer", False)),
            rel_nofollow=bool(html.get("rel_nofollow", False)),
            target_blank=bool(html.get("target_blank", False)),
        ),
    )
