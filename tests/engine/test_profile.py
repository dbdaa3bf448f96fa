"""Profile parsing, configuration loading, run control and metrics helpers."""

from __future__ import annotations

from collections import Counter

import pytest

from linkplanner.engine.config import load_config
from linkplanner.engine.errors import ProfileError, RunCanceled
from linkplanner.engine.metrics import _shannon_entropy
from linkplanner.engine.profile import SEOProfile, profile_from_dict
from linkplanner.engine.progress import RunControl
from linkplanner.engine.types import CANCELED, DRAFT, FAILED, PUBLISHED, RUNNING, can_transition


def test_profile_from_partial_payload_keeps_defaults():
    profile = profile_from_dict(
        {
            "max_links_per_page": "5",
            "stop_anchors": "Click Here,\nread   more",
            "priority_pages": ["https://example.com/shop", "https://example.com/shop", " "],
            "scenarios": {"depth_lift": {"min_depth": 3}, "freshness_push": False},
            "policies": {"broken_links": "delete"},
            "html": {"rel_nofollow": True, "target_blank": True},
        }
    )

    assert profile.max_links_per_page == 5
    assert profile.min_word_gap == 100
    assert profile.stop_anchors == frozenset({"click here", "read more"})
    assert profile.is_stop_anchor("READ MORE")
    assert profile.priority_pages == ("https://example.com/shop",)
    assert profile.depth_lift.enabled
    assert profile.depth_lift.min_depth == 3
    assert not profile.scenario_enabled("freshness_push")
    assert profile.scenario_enabled("commercial_routing")
    assert profile.broken_links_policy == "delete"
    assert profile.html.rel == "nofollow"
    assert profile.html.target == "_blank"


def test_profile_round_trips_through_dict():
    profile = profile_from_dict({"hub_pages": ["hub"], "html": {"class_name": "internal", "class_mode": "replace"}})

    assert profile_from_dict(profile.to_dict()) == profile


@pytest.mark.parametrize(
    "payload",
    [
        {"max_links_per_page": 0},
        {"min_word_gap": -1},
        {"max_exact_anchor_percent": 120},
        {"max_links_per_page": "many"},
        {"policies": {"broken_links": "archive"}},
        {"policies": {"old_links": "keep"}},
        {"html": {"class_mode": "merge"}},
        {"scenarios": {"freshness_push": {"days_fresh": 0}}},
    ],
)
def test_invalid_profiles_are_rejected(payload):
    with pytest.raises(ProfileError):
        profile_from_dict(payload)


def test_commercial_routing_needs_priority_pages():
    assert not SEOProfile().scenario_enabled("commercial_routing")
    assert SEOProfile(priority_pages=("p",)).scenario_enabled("commercial_routing")


def test_load_config_merges_yaml_over_defaults(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text("cluster_threshold: 0.6\nai:\n  retries: 5\n", encoding="utf-8")

    config = load_config(path)

    assert config.get("cluster_threshold") == 0.6
    assert config.param("ai", "retries") == 5
    assert config.param("ai", "concurrency") == 4
    assert load_config(tmp_path / "missing.yaml").get("cluster_threshold") == 0.75


def test_run_transitions_are_monotonic():
    assert can_transition(RUNNING, DRAFT)
    assert can_transition(DRAFT, PUBLISHED)
    assert not can_transition(DRAFT, RUNNING)
    assert not can_transition(FAILED, RUNNING)
    assert not can_transition(CANCELED, DRAFT)
    assert not can_transition(PUBLISHED, DRAFT)


def test_run_control_keeps_progress_monotonic():
    control = RunControl("r1")
    control.checkpoint("generating", 1, 2)
    control.checkpoint("analyzing", 1, 1)

    snapshot = control.snapshot()
    assert snapshot["phase"] == "generating"
    assert snapshot["percent"] == 52.5

    control.update_scenario("orphan_fix", scanned=3)
    control.note("halfway")
    snapshot = control.snapshot()
    assert snapshot["scenarios"] == {"orphan_fix": {"scanned": 3, "candidates": 0, "accepted": 0, "rejected": 0}}
    assert snapshot["message"] == "halfway"

    control.cancel()
    with pytest.raises(RunCanceled):
        control.checkpoint("finalizing")
    assert control.snapshot()["percent"] == 52.5


def test_shannon_entropy_is_normalised():
    assert _shannon_entropy(Counter()) == 0.0
    assert _shannon_entropy(Counter({"only": 4})) == 0.0
    assert _shannon_entropy(Counter({"a": 2, "b": 2})) == pytest.approx(1.0)
    assert 0.0 < _shannon_entropy(Counter({"a": 5, "b": 1})) < 1.0


def test_run_control_polls_for_remote_cancellation():
    replies = iter([False, True])
    seen = []

    def poll(snapshot):
        seen.append(snapshot["phase"])
        return next(replies)

    control = RunControl("r1")
    control.watch(poll)

    control.checkpoint("loading", 1, 2)
    with pytest.raises(RunCanceled):
        control.checkpoint("analyzing")

    assert seen == ["loading", "analyzing"]
    assert control.snapshot()["cancel_requested"]


def test_run_control_throttles_polling():
    calls = []
    control = RunControl("r1")
    control.watch(lambda snapshot: calls.append(snapshot) or False, interval=3600)

    control.checkpoint("loading")
    control.checkpoint("analyzing")
    control.sync(force=True)

    assert len(calls) == 2
