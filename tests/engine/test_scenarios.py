"""Scenario generator tests."""

from __future__ import annotations

from datetime import timedelta

import pytest

from linkplanner.engine.errors import RunCanceled
from linkplanner.engine.profile import SEOProfile, profile_from_dict
from linkplanner.engine.progress import RunControl
from linkplanner.engine.scenarios import (
    SCENARIOS,
    CandidateGenerator,
    ClusterCrossLink,
    CommercialRouting,
    DepthLift,
    FreshnessPush,
    HeadConsolidation,
    OrphanFix,
    ScenarioOutput,
    enabled_generators,
    run_generators,
)
from linkplanner.engine.signals import classify_pages
from linkplanner.engine.similarity import build_page_index

from .conftest import AS_OF, build_source, link, load_graph, make_block, make_page, only


def _context(engine_config, pages, *, blocks=(), links=(), embeddings=None, profile=None):
    graph = load_graph(build_source(pages, blocks=blocks, links=links, embeddings=embeddings))
    index = build_page_index({page.id: graph.page_vector(page.id) for page in graph.pages})
    profile = profile or SEOProfile()
    signals = classify_pages(graph, index, profile, engine_config, AS_OF)
    return graph, signals, index, profile


def _pairs(output: ScenarioOutput):
    return [(candidate.source_id, candidate.target_id) for candidate in output.candidates]


def test_registry_holds_all_scenarios_in_order():
    assert list(SCENARIOS) == [
        "orphan_fix",
        "head_consolidation",
        "cluster_cross_link",
        "commercial_routing",
        "depth_lift",
        "freshness_push",
    ]


def test_enabled_generators_follow_profile(engine_config):
    names = [generator.name for generator in enabled_generators(SEOProfile(), engine_config, AS_OF)]
    # commercial routing needs priority pages
    assert "commercial_routing" not in names
    assert names[0] == "orphan_fix"

    profile = profile_from_dict({"scenarios": only("depth_lift"), "priority_pages": ["x"]})
    assert [generator.name for generator in enabled_generators(profile, engine_config, AS_OF)] == ["depth_lift"]


def test_orphan_fix_links_orphan_from_closest_linked_page(engine_config):
    pages = [make_page("a", "Trail Running Shoes"), make_page("b", "Running Gear"), make_page("c", "Marathon Plans")]
    graph, signals, index, profile = _context(
        engine_config,
        pages,
        links=[link("b", "c"), link("c", "b")],
        embeddings={"a": [1.0, 0.0], "b": [0.91, 0.414608], "c": [0.62, 0.784857]},
    )

    output = OrphanFix(engine_config, AS_OF).generate(graph, signals, index, profile)

    assert output.scanned == 1
    assert _pairs(output) == [("b", "a")]
    assert output.candidates[0].scenario == "orphan_fix"
    assert output.candidates[0].similarity == pytest.approx(0.91, abs=1e-4)


def test_orphan_fix_respects_donor_count_and_similarity_floor(engine_config):
    engine_config.raw["orphan_fix"]["donors"] = 3
    pages = [make_page("a", "A"), make_page("b", "B"), make_page("c", "C"), make_page("d", "D")]
    graph, signals, index, profile = _context(
        engine_config,
        pages,
        links=[link("b", "c"), link("c", "d"), link("d", "b")],
        embeddings={"a": [1.0, 0.0], "b": [0.91, 0.414608], "c": [0.62, 0.784857], "d": [0.0, 1.0]},
    )

    output = OrphanFix(engine_config, AS_OF).generate(graph, signals, index, profile)

    assert _pairs(output) == [("b", "a"), ("c", "a")]


def test_head_consolidation_points_cluster_pages_at_hub(engine_config):
    pages = [
        make_page("h", "Espresso Machines Guide", headings=["Espresso Machines", "Grinders"]),
        make_page("p1", "Espresso Machines Under 500"),
        make_page("p2", "Cleaning Espresso Machines"),
        make_page("z", "Tea Brewing"),
    ]
    graph, signals, index, profile = _context(
        engine_config,
        pages,
        embeddings={"h": [1.0, 0.0], "p1": [0.95, 0.1], "p2": [0.9, 0.2], "z": [0.0, 1.0]},
        profile=SEOProfile(hub_pages=("h",)),
    )

    output = HeadConsolidation(engine_config, AS_OF).generate(graph, signals, index, profile)

    assert output.scanned == 1
    assert _pairs(output) == [("p1", "h"), ("p2", "h")]
    assert [candidate.score for candidate in output.candidates] == [pytest.approx(2 / 6), pytest.approx(2 / 5)]


def test_cluster_cross_link_skips_existing_links(engine_config):
    pages = [make_page("a", "A"), make_page("b", "B"), make_page("c", "C")]
    graph, signals, index, profile = _context(
        engine_config,
        pages,
        links=[link("a", "b")],
        embeddings={"a": [1.0, 0.0], "b": [0.99, 0.1], "c": [0.95, 0.3]},
    )

    output = ClusterCrossLink(engine_config, AS_OF).generate(graph, signals, index, profile)
    pairs = _pairs(output)

    assert ("a", "b") not in pairs
    assert ("a", "c") in pairs
    assert pairs[1:3] == [("b", "a"), ("b", "c")]
    assert output.scanned == 3


def test_commercial_routing_weights_buying_intent(engine_config):
    pages = [make_page("buyer", "Buyer"), make_page("reader", "Reader"), make_page("shop", "Shop")]
    blocks = [
        make_block("buyer", "Where to buy the best boots at a fair price."),
        make_block("reader", "A long history of boot making."),
        make_block("shop", "Our boots."),
    ]
    graph, signals, index, profile = _context(
        engine_config,
        pages,
        blocks=blocks,
        embeddings={"buyer": [0.8, 0.6], "reader": [0.8, 0.6], "shop": [1.0, 0.0]},
        profile=SEOProfile(priority_pages=("https://example.com/shop",)),
    )

    output = CommercialRouting(engine_config, AS_OF).generate(graph, signals, index, profile)
    scores = {candidate.source_id: candidate.score for candidate in output.candidates}

    assert {candidate.target_id for candidate in output.candidates} == {"shop"}
    assert scores["buyer"] == pytest.approx(0.8)
    assert scores["reader"] == pytest.approx(0.8 * 0.8)


def test_depth_lift_prefers_shallow_sources(engine_config):
    pages = [make_page("e", "Entry", is_entry=True), make_page("m", "Middle"), make_page("t", "Deep")]
    graph, signals, index, profile = _context(
        engine_config,
        pages,
        links=[link("e", "m")],
        embeddings={"e": [1.0, 0.0], "m": [1.0, 0.0], "t": [1.0, 0.0]},
    )

    output = DepthLift(engine_config, AS_OF).generate(graph, signals, index, profile)

    assert output.scanned == 1
    assert _pairs(output) == [("e", "t"), ("m", "t")]
    assert [candidate.score for candidate in output.candidates] == [pytest.approx(1.0), pytest.approx(0.8)]


def test_freshness_push_links_from_older_pages(engine_config):
    pages = [
        make_page("f", "Fresh", updated_at=AS_OF - timedelta(days=5)),
        make_page("n", "Newest", updated_at=AS_OF - timedelta(days=1)),
        make_page("o", "Old", updated_at=AS_OF - timedelta(days=300)),
    ]
    graph, signals, index, profile = _context(
        engine_config,
        pages,
        embeddings={"f": [1.0, 0.0], "n": [1.0, 0.0], "o": [0.8, 0.6]},
    )

    output = FreshnessPush(engine_config, AS_OF).generate(graph, signals, index, profile)

    assert output.scanned == 2
    assert _pairs(output) == [("o", "f"), ("f", "n")]
    assert output.candidates[0].score == pytest.approx(0.8 * (1 - 5 / 30))
    assert output.candidates[1].score == pytest.approx(1 - 1 / 30)


class _Exploding(CandidateGenerator):
    name = "exploding"

    def generate(self, graph, signals, index, profile):
        raise RuntimeError("kaboom")


def test_failing_generator_does_not_affect_others(engine_config):
    pages = [make_page("a", "A"), make_page("b", "B"), make_page("c", "C")]
    graph, signals, index, profile = _context(
        engine_config,
        pages,
        links=[link("b", "c"), link("c", "b")],
        embeddings={"a": [1.0, 0.0], "b": [0.9, 0.1], "c": [0.0, 1.0]},
    )
    seen = []

    results = run_generators(
        [_Exploding(engine_config, AS_OF), OrphanFix(engine_config, AS_OF)],
        graph,
        signals,
        index,
        profile,
        workers=2,
        checkpoint=lambda name, done, total: seen.append((name, done, total)),
    )

    assert list(results) == ["exploding", "orphan_fix"]
    assert results["exploding"].candidates == []
    assert results["exploding"].error == "exploding: kaboom"
    assert _pairs(results["orphan_fix"]) == [("b", "a")]
    assert results["orphan_fix"].error is None
    assert seen == [("exploding", 1, 2), ("orphan_fix", 2, 2)]


def test_generators_stop_between_pages_once_canceled(engine_config):
    pages = [make_page("a", "A"), make_page("b", "B"), make_page("c", "C")]
    graph, signals, index, profile = _context(
        engine_config,
        pages,
        links=[link("b", "c"), link("c", "b")],
        embeddings={"a": [1.0, 0.0], "b": [0.9, 0.1], "c": [0.0, 1.0]},
    )
    control = RunControl("r1")
    generator = ClusterCrossLink(engine_config, AS_OF, control)
    visited = []

    def scan(graph):
        for page in CandidateGenerator.scan(generator, graph):
            visited.append(page.id)
            control.cancel()
            yield page

    generator.scan = scan

    with pytest.raises(RunCanceled):
        generator.generate(graph, signals, index, profile)
    assert visited == ["a"]


def test_cancellation_is_not_reported_as_scenario_error(engine_config):
    pages = [make_page("a", "A"), make_page("b", "B")]
    graph, signals, index, profile = _context(engine_config, pages, embeddings={"a": [1.0, 0.0], "b": [0.9, 0.1]})
    control = RunControl("r1")
    control.cancel()

    with pytest.raises(RunCanceled):
        run_generators(enabled_generators(profile, engine_config, AS_OF, control), graph, signals, index, profile)
