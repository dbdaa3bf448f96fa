"""Anchor resolution tests: local phrase search and the AI fallback."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from linkplanner.engine.ai import AnchorSuggestion, OpenAIAnchorService, parse_suggestion
from linkplanner.engine.anchors import AnchorResolver
from linkplanner.engine.errors import AnchorResolutionFailure, ExternalServiceError
from linkplanner.engine.types import ANCHOR_AI_REWRITE, LinkCandidate

from .conftest import FakeAnchorService, build_source, load_graph, make_block, make_page

REWRITE_BLOCK = "Our team tested many models. Comfort matters on long runs."


def _graph(*texts, keyword="trail running shoes", headings=()):
    pages = [
        make_page("s", "Source"),
        make_page("t", "Trail Running Shoes", keyword=keyword, headings=headings),
    ]
    blocks = [make_block("s", text, position) for position, text in enumerate(texts)]
    return load_graph(build_source(pages, blocks=blocks))


def _candidate(target_id="t", block_id=None):
    return LinkCandidate(
        source_id="s",
        target_id=target_id,
        source_url="https://example.com/s",
        target_url=f"https://example.com/{target_id}",
        scenario="orphan_fix",
        score=0.8,
        similarity_score=0.8,
        rationale="",
        order=0,
        source_block_id=block_id,
    )


def test_local_search_prefers_longest_phrase_then_block_order(engine_config):
    graph = _graph("Running shoes wear out.", "Good trail running shoes grip.")
    resolver = AnchorResolver(graph, engine_config)

    resolution = resolver.resolve_local(_candidate())

    assert resolution.ok
    assert resolution.primary.text == "trail running shoes"
    assert resolution.primary.is_exact
    assert resolution.primary.block_id == "s-b1"
    assert resolution.primary.position == 5
    assert [(anchor.text, anchor.position) for anchor in resolution.alternatives] == [
        ("Running shoes", 0),
        ("trail running", 5),
        ("running shoes", 6),
    ]
    assert not any(anchor.is_exact for anchor in resolution.alternatives)


def test_local_search_ranks_preferred_block_first(engine_config):
    graph = _graph("Running shoes wear out.", "New running shoes feel stiff.")
    resolver = AnchorResolver(graph, engine_config)

    resolution = resolver.resolve_local(_candidate(block_id="s-b1"))

    assert resolution.primary.block_id == "s-b1"
    assert resolution.primary.position == 5


def test_local_search_reports_missing_phrase(engine_config):
    graph = _graph("Nothing relevant in this paragraph.")
    resolver = AnchorResolver(graph, engine_config)

    resolution = resolver.resolve_local(_candidate())

    assert not resolution.ok
    assert resolution.options() == ()
    assert "No target phrase" in resolution.error


def test_remote_existing_phrase_is_placed_in_block(engine_config):
    graph = _graph(REWRITE_BLOCK)
    service = FakeAnchorService({"trail running shoes": AnchorSuggestion("existing", "long runs")})
    resolver = AnchorResolver(graph, engine_config, service=service)

    results = resolver.resolve_remote([_candidate()])

    anchor = results[("s", "t")].primary
    assert anchor.source == ANCHOR_AI_REWRITE
    assert anchor.text == "long runs"
    assert anchor.position == 8
    assert anchor.modified_sentence is None


def test_remote_rewrite_keeps_sentence_separately(engine_config):
    graph = _graph(REWRITE_BLOCK)
    sentence = "Comfort matters on long runs in trail running shoes."
    service = FakeAnchorService(
        {"trail running shoes": AnchorSuggestion("rewrite", "trail running shoes", sentence)}
    )
    resolver = AnchorResolver(graph, engine_config, service=service)

    anchor = resolver.resolve_remote([_candidate()])[("s", "t")].primary

    assert anchor.modified_sentence == sentence
    assert anchor.position == 5
    assert anchor.is_exact
    assert graph.blocks_of("s")[0].text == REWRITE_BLOCK


def test_remote_rejects_unusable_suggestions(engine_config):
    graph = _graph(REWRITE_BLOCK)
    service = FakeAnchorService(
        {
            "trail running shoes": AnchorSuggestion("existing", "not in the text"),
            "hiking boots": AnchorSuggestion("rewrite", "hiking boots", "A sentence without it."),
        }
    )
    resolver = AnchorResolver(graph, engine_config, service=service)

    results = resolver.resolve_remote([_candidate()])
    assert not results[("s", "t")].ok
    assert "does not occur" in results[("s", "t")].error

    graph = _graph(REWRITE_BLOCK, keyword="hiking boots")
    resolver = AnchorResolver(graph, engine_config, service=service)
    results = resolver.resolve_remote([_candidate()])
    assert "does not contain" in results[("s", "t")].error


def test_remote_retries_transient_failures(engine_config):
    graph = _graph(REWRITE_BLOCK)
    service = FakeAnchorService(
        {"trail running shoes": AnchorSuggestion("existing", "long runs")},
        fail_times=2,
    )
    resolver = AnchorResolver(graph, engine_config, service=service)

    results = resolver.resolve_remote([_candidate()])

    assert results[("s", "t")].ok
    assert len(service.calls) == 3
    assert resolver.calls == 1
    assert resolver.failures == 0


def test_remote_failure_after_retries(engine_config):
    engine_config.raw["ai"]["retries"] = 1
    graph = _graph(REWRITE_BLOCK)
    service = FakeAnchorService(error=TimeoutError("read timed out"))
    resolver = AnchorResolver(graph, engine_config, service=service)

    resolution = resolver.resolve_remote([_candidate()])[("s", "t")]

    assert not resolution.ok
    assert "read timed out" in resolution.error
    assert len(service.calls) == 2
    assert resolver.failures == 1


def test_failure_rate_limit_aborts(engine_config):
    engine_config.raw["ai"].update({"retries": 0, "max_failure_rate": 0.5, "min_failure_sample": 1})
    graph = _graph(REWRITE_BLOCK)
    resolver = AnchorResolver(graph, engine_config, service=FakeAnchorService(error=ExternalServiceError("down")))

    with pytest.raises(ExternalServiceError):
        resolver.resolve_remote([_candidate()])


def test_remote_without_service_fails_every_candidate(engine_config):
    resolver = AnchorResolver(_graph(REWRITE_BLOCK), engine_config)

    results = resolver.resolve_remote([_candidate()])

    assert results[("s", "t")].error == "No AI anchor service configured."


def test_parse_suggestion_accepts_fenced_json():
    reply = 'Sure:\n```json\n{"type": "Rewrite", "anchor": " trail  shoes ", "sentence": "Buy trail shoes."}\n```'

    suggestion = parse_suggestion(reply)

    assert suggestion == AnchorSuggestion("rewrite", "trail shoes", "Buy trail shoes.")
    assert parse_suggestion({"type": "existing", "anchor": "x y", "sentence": "ignored"}).sentence is None


@pytest.mark.parametrize(
    "payload",
    [
        "not json at all",
        '["a list"]',
        '{"type": "generic", "anchor": "click here"}',
        '{"type": "existing", "anchor": ""}',
        '{"type": "rewrite", "anchor": "trail shoes"}',
    ],
)
def test_parse_suggestion_rejects_malformed_replies(payload):
    with pytest.raises(AnchorResolutionFailure):
        parse_suggestion(payload)


def test_openai_service_uses_chat_completions():
    captured = {}

    def create(**kwargs):
        captured.update(kwargs)
        message = SimpleNamespace(content='{"type": "existing", "anchor": "long runs"}')
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    service = OpenAIAnchorService(api_key="test", model="gpt-test", timeout=5.0, client=client)

    suggestion = service.rewrite_or_find_anchor(REWRITE_BLOCK, "trail running shoes")

    assert suggestion == AnchorSuggestion("existing", "long runs")
    assert captured["model"] == "gpt-test"
    assert captured["timeout"] == 5.0
    assert "trail running shoes" in captured["messages"][1]["content"]


def test_single_word_keyword_is_an_exact_existing_anchor(engine_config):
    pages = [make_page("s", "Source"), make_page("t", "Espresso", keyword="espresso")]
    graph = load_graph(build_source(pages, blocks=[make_block("s", "A good espresso needs fresh beans.")]))
    resolver = AnchorResolver(graph, engine_config)

    resolution = resolver.resolve_local(_candidate())

    assert resolution.ok
    assert resolution.primary.text == "espresso"
    assert resolution.primary.position == 2
    assert resolution.primary.is_exact


def test_stopword_title_is_not_an_anchor(engine_config):
    pages = [make_page("s", "Source"), make_page("t", "The", keyword="the")]
    graph = load_graph(build_source(pages, blocks=[make_block("s", "The beans are fresh.")]))

    resolution = AnchorResolver(graph, engine_config).resolve_local(_candidate())

    assert not resolution.ok


def test_unexpected_service_error_fails_only_the_candidate(engine_config):
    graph = _graph(REWRITE_BLOCK)
    service = FakeAnchorService(error=RuntimeError("unexpected payload shape"))
    resolver = AnchorResolver(graph, engine_config, service=service)

    resolution = resolver.resolve_remote([_candidate()])[("s", "t")]

    assert not resolution.ok
    assert "unexpected payload shape" in resolution.error
    assert len(service.calls) == 1
    assert resolver.failures == 1


def test_openai_service_rejects_reply_without_choices():
    client = SimpleNamespace(
        chat=SimpleNamespace(completions=SimpleNamespace(create=lambda **kwargs: SimpleNamespace(choices=[])))
    )
    service = OpenAIAnchorService(api_key="test", client=client)

    with pytest.raises(AnchorResolutionFailure):
        service.rewrite_or_find_anchor(REWRITE_BLOCK, "trail running shoes")
