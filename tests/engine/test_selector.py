"""Candidate selection: limits, spacing, anchors and link policies."""

from __future__ import annotations

from linkplanner.engine.ai import AnchorSuggestion
from linkplanner.engine.anchors import AnchorResolver
from linkplanner.engine.errors import ExternalServiceError
from linkplanner.engine.profile import SEOProfile
from linkplanner.engine.selector import CandidateSelector, exact_anchor_allowed, merge_candidates
from linkplanner.engine.types import (
    ACCEPTED,
    ANCHOR_AI_REWRITE,
    ANCHOR_EXISTING,
    ANCHOR_QUOTA,
    BROKEN_TARGET,
    DUPLICATE,
    FLAGGED,
    GAP_VIOLATION,
    LIMIT_EXCEEDED,
    NO_ANCHOR,
    REJECTED,
    STOPLIST,
)

from .conftest import (
    FakeAnchorService,
    FakeLivenessChecker,
    build_source,
    link,
    load_graph,
    make_block,
    make_page,
    raw,
)

# alpha=0 widgets=1 beta=2 widgets=3 ... gamma=10 widgets=11
SOURCE_TEXT = "alpha widgets beta widgets one two three four five six gamma widgets seven eight nine ten"


def _graph(links=()):
    pages = [
        make_page("s", "Source Page"),
        make_page("t1", "Alpha Widgets", keyword="alpha widgets"),
        make_page("t2", "Beta Widgets", keyword="beta widgets"),
        make_page("t3", "Gamma Widgets", keyword="gamma widgets"),
        make_page("t4", "Delta Gadgets", keyword="delta gadgets"),
        make_page("x", "Elsewhere"),
    ]
    return load_graph(build_source(pages, blocks=[make_block("s", SOURCE_TEXT)], links=links))


def _profile(**overrides):
    values = {"min_word_gap": 0, "max_exact_anchor_percent": 100.0}
    values.update(overrides)
    return SEOProfile(**values)


def _select(engine_config, profile, outputs, *, links=(), service=None, checker=None):
    graph = _graph(links)
    selector = CandidateSelector(
        graph,
        profile,
        AnchorResolver(graph, engine_config, service=service),
        config=engine_config,
        checker=checker,
    )
    candidates = selector.select(outputs)
    by_target = {}
    for candidate in candidates:
        by_target.setdefault(candidate.target_id, candidate)
    return selector, candidates, by_target


def _three(scenario="cluster_cross_link"):
    return {scenario: [raw("s", "t1", 0.9, scenario), raw("s", "t2", 0.8, scenario), raw("s", "t3", 0.7, scenario)]}


def test_accepts_in_score_order_until_page_limit(engine_config):
    _, candidates, by_target = _select(engine_config, _profile(max_links_per_page=2), _three())

    assert [candidate.target_id for candidate in candidates] == ["t1", "t2", "t3"]
    assert by_target["t1"].status == ACCEPTED
    assert by_target["t2"].status == ACCEPTED
    assert by_target["t3"].status == REJECTED
    assert by_target["t3"].rejection_reason == LIMIT_EXCEEDED
    assert by_target["t1"].anchor_text == "alpha widgets"
    assert by_target["t1"].anchor_source == ANCHOR_EXISTING
    assert by_target["t1"].position == 0
    assert by_target["t2"].position == 2
    assert by_target["t1"].confidence == 0.9


def test_word_gap_applies_to_accepted_and_existing_links(engine_config):
    _, _, by_target = _select(engine_config, _profile(min_word_gap=5), _three())

    assert by_target["t1"].status == ACCEPTED
    assert by_target["t2"].rejection_reason == GAP_VIOLATION
    assert by_target["t3"].status == ACCEPTED
    assert by_target["t3"].position == 10

    _, _, by_target = _select(engine_config, _profile(min_word_gap=5), _three(), links=[link("s", "x", 12)])
    assert by_target["t3"].rejection_reason == GAP_VIOLATION

    _, _, by_target = _select(
        engine_config,
        _profile(min_word_gap=5, old_links_policy="regenerate"),
        _three(),
        links=[link("s", "x", 12)],
    )
    assert by_target["t3"].status == ACCEPTED


def test_stop_anchors_are_never_used(engine_config):
    _, _, by_target = _select(engine_config, _profile(stop_anchors=frozenset({"Alpha  Widgets"})), _three())

    assert by_target["t1"].status == REJECTED
    assert by_target["t1"].rejection_reason == STOPLIST
    assert by_target["t2"].status == ACCEPTED


def test_exact_anchor_quota(engine_config):
    _, _, by_target = _select(engine_config, _profile(max_exact_anchor_percent=20.0), _three())

    assert by_target["t1"].status == ACCEPTED
    assert by_target["t1"].is_exact_anchor
    assert by_target["t2"].rejection_reason == ANCHOR_QUOTA
    assert by_target["t3"].rejection_reason == ANCHOR_QUOTA


def test_exact_anchor_allowed_bounds():
    assert not exact_anchor_allowed(0, 0, 0)
    assert exact_anchor_allowed(0, 0, 20)
    assert not exact_anchor_allowed(1, 1, 20)
    assert exact_anchor_allowed(1, 4, 20)
    assert exact_anchor_allowed(10, 10, 100)


def test_zero_quota_falls_back_to_partial_anchor(engine_config):
    pages = [
        make_page("s", "Source"),
        make_page("t", "Mountain Trail Shoes", keyword="mountain trail shoes"),
    ]
    graph = load_graph(
        build_source(pages, blocks=[make_block("s", "Pick mountain trail shoes with a deep lug.")])
    )
    selector = CandidateSelector(graph, _profile(max_exact_anchor_percent=0.0), AnchorResolver(graph, engine_config))

    (candidate,) = selector.select({"orphan_fix": [raw("s", "t", 0.7, "orphan_fix")]})

    assert candidate.status == ACCEPTED
    assert candidate.anchor_text == "mountain trail"
    assert not candidate.is_exact_anchor


def test_duplicate_pairs_keep_highest_score(engine_config):
    outputs = {
        "orphan_fix": [raw("s", "t1", 0.5, "orphan_fix")],
        "cluster_cross_link": [raw("s", "t1", 0.9), raw("s", "t2", 0.8)],
    }

    _, candidates, _ = _select(engine_config, _profile(), outputs)

    winner, second, loser = candidates
    assert (winner.target_id, winner.scenario, winner.status) == ("t1", "cluster_cross_link", ACCEPTED)
    assert second.target_id == "t2"
    assert loser.scenario == "orphan_fix"
    assert loser.rejection_reason == DUPLICATE
    assert loser.metadata["duplicate_of"] == "cluster_cross_link"


def test_equal_scores_follow_scenario_priority():
    graph = _graph()
    outputs = {
        "cluster_cross_link": [raw("s", "t1", 0.6)],
        "freshness_push": [raw("s", "t2", 0.6, "freshness_push")],
        "orphan_fix": [raw("s", "t3", 0.6, "orphan_fix")],
    }

    ranked, duplicates = merge_candidates(outputs, graph)

    assert [candidate.scenario for candidate in ranked] == ["orphan_fix", "freshness_push", "cluster_cross_link"]
    assert duplicates == []


def test_existing_links_count_as_duplicates(engine_config):
    outputs = {"cluster_cross_link": [raw("s", "t1", 0.9)]}

    _, _, by_target = _select(engine_config, _profile(), outputs, links=[link("s", "t1")])
    assert by_target["t1"].rejection_reason == DUPLICATE

    _, _, by_target = _select(engine_config, _profile(remove_duplicates=False), outputs, links=[link("s", "t1")])
    assert by_target["t1"].status == ACCEPTED


def test_pending_ai_anchor_keeps_its_slot(engine_config):
    outputs = {"cluster_cross_link": [raw("s", "t4", 0.95), raw("s", "t1", 0.9)]}
    service = FakeAnchorService(error=ExternalServiceError("down"))

    selector, _, by_target = _select(engine_config, _profile(max_links_per_page=1), outputs, service=service)

    assert by_target["t4"].rejection_reason == NO_ANCHOR
    assert "unavailable" in by_target["t4"].metadata["anchor_error"]
    assert by_target["t1"].status == ACCEPTED
    assert selector.passes == 2


def test_ai_anchor_is_used_when_no_phrase_exists(engine_config):
    outputs = {"cluster_cross_link": [raw("s", "t4", 0.9)]}
    service = FakeAnchorService({"delta gadgets": AnchorSuggestion("existing", "three four five")})

    _, _, by_target = _select(engine_config, _profile(), outputs, service=service)

    candidate = by_target["t4"]
    assert candidate.status == ACCEPTED
    assert candidate.anchor_source == ANCHOR_AI_REWRITE
    assert candidate.anchor_text == "three four five"
    assert candidate.position == 6
    assert candidate.confidence == 0.81


def test_dead_target_is_deleted(engine_config):
    checker = FakeLivenessChecker(dead=["https://example.com/t1"])

    selector, _, by_target = _select(
        engine_config,
        _profile(max_links_per_page=1, broken_links_policy="delete"),
        _three(),
        checker=checker,
    )

    assert by_target["t1"].rejection_reason == BROKEN_TARGET
    assert by_target["t2"].rejection_reason == LIMIT_EXCEEDED
    assert selector.dead_urls == {"https://example.com/t1"}


def test_dead_target_is_replaced_by_next_candidate(engine_config):
    checker = FakeLivenessChecker(dead=["https://example.com/t1"])

    selector, _, by_target = _select(
        engine_config,
        _profile(max_links_per_page=1, broken_links_policy="replace"),
        _three(),
        checker=checker,
    )

    assert by_target["t1"].rejection_reason == BROKEN_TARGET
    assert by_target["t2"].status == ACCEPTED
    assert by_target["t3"].rejection_reason == LIMIT_EXCEEDED
    assert sorted(checker.checked) == ["https://example.com/t1", "https://example.com/t2"]


def test_unreachable_target_is_flagged(engine_config):
    checker = FakeLivenessChecker(unreachable=["https://example.com/t1"])

    selector, _, by_target = _select(
        engine_config, _profile(max_links_per_page=1), _three(), checker=checker
    )

    assert by_target["t1"].status == FLAGGED
    assert by_target["t1"].metadata["liveness"] == "inconclusive"
    assert selector.inconclusive_urls == {"https://example.com/t1"}
    # one retry by default
    assert checker.checked.count("https://example.com/t1") == 2


def test_ignore_policy_skips_liveness_checks(engine_config):
    checker = FakeLivenessChecker(dead=["https://example.com/t1"])

    _, _, by_target = _select(engine_config, _profile(broken_links_policy="ignore"), _three(), checker=checker)

    assert by_target["t1"].status == ACCEPTED
    assert checker.checked == []


def test_audit_policy_flags_every_selected_link(engine_config):
    _, candidates, _ = _select(engine_config, _profile(max_links_per_page=2, old_links_policy="audit"), _three())

    statuses = [candidate.status for candidate in candidates]
    assert statuses == [FLAGGED, FLAGGED, REJECTED]
    assert candidates[0].metadata["audit"] is True


def test_selection_is_deterministic(engine_config):
    outputs = {
        "orphan_fix": [raw("s", "t2", 0.8, "orphan_fix")],
        "cluster_cross_link": [raw("s", "t1", 0.8), raw("s", "t3", 0.8), raw("s", "t2", 0.8)],
    }

    _, first, _ = _select(engine_config, _profile(min_word_gap=3, max_links_per_page=2), outputs)
    _, second, _ = _select(engine_config, _profile(min_word_gap=3, max_links_per_page=2), outputs)

    assert [candidate.to_dict() for candidate in first] == [candidate.to_dict() for candidate in second]
    accepted = sorted(candidate.position for candidate in first if candidate.status == ACCEPTED)
    assert all(b - a >= 3 for a, b in zip(accepted, accepted[1:]))
