"""Configuration helpers for the link generation engine."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml


@dataclass(frozen=True)
class EngineConfig:
    """Typed wrapper around the engine configuration dictionary."""

    raw: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.raw.get(key, default)

    def section(self, name: str) -> Dict[str, Any]:
        value = self.raw.get(name, {})
        return value if isinstance(value, dict) else {}

    def param(self, section: str, key: str, default: Any = None) -> Any:
        return self.section(section).get(key, default)


DEFAULTS: Dict[str, Any] = {
    "max_click_depth": 10,
    "cluster_threshold": 0.75,
    "scenario_workers": 6,
    "orphan_fix": {
        "donors": 1,
        "min_similarity": 0.3,
    },
    "head_consolidation": {
        "hub_match": 0.5,
        "min_overlap": 0.15,
    },
    "cluster_cross_link": {
        "per_page": 2,
        "min_similarity": 0.5,
    },
    "commercial_routing": {
        "donors": 3,
        "min_similarity": 0.3,
        "intent_weight": 0.2,
        "intent_terms": [
            "buy",
            "price",
            "pricing",
            "order",
            "shop",
            "deal",
            "discount",
            "cost",
            "compare",
            "best",
            "review",
        ],
    },
    "depth_lift": {
        "donors": 2,
        "min_similarity": 0.3,
    },
    "freshness_push": {
        "min_similarity": 0.3,
        "min_recency": 0.1,
    },
    "anchors": {
        "min_words": 2,
        "max_words": 8,
        "max_chars": 80,
        "alternatives": 3,
    },
    "ai": {
        "concurrency": 4,
        "timeout": 20.0,
        "retries": 2,
        "backoff": 0.5,
        "max_failure_rate": None,
        "min_failure_sample": 10,
        "context_chars": 1500,
    },
    "liveness": {
        "concurrency": 8,
        "timeout": 10.0,
        "retries": 1,
    },
}


def load_config(path: str | Path | None = None) -> EngineConfig:
    """Load configuration from YAML, merging with defaults."""

    data: Dict[str, Any] = copy.deepcopy(DEFAULTS)

    if path is not None and Path(path).exists():
        with Path(path).open("r", encoding="utf-8") as stream:
            user = yaml.safe_load(stream) or {}
        merge_into(data, user)

    return EngineConfig(data)


def merge_into(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """Recursively merge override into base dict."""

    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merge_into(base[key], value)
        else:
            base[key] = value
