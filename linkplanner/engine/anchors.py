"""Anchor resolution: existing phrases first, AI rewrite as fallback."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .ai import AnchorService, AnchorSuggestion
from .config import EngineConfig
from .errors import AnchorResolutionFailure, ExternalServiceError, RunCanceled
from .graph import ContentGraph
from .profile import normalize_anchor
from .progress import RunControl
from .text import STOPWORDS, jaccard, ngrams, phrase_pattern, split_sentences, tokenize, word_index_at, word_starts
from .types import ANCHOR_AI_REWRITE, ANCHOR_EXISTING, AnchorMatch, AnchorResolution, Block, LinkCandidate

logger = logging.getLogger(__name__)

Pair = Tuple[str, str]
Checkpoint = Callable[[int, int], None]


class AnchorResolver:
    """Find natural anchor text for candidates of a single run."""

    def __init__(
        self,
        graph: ContentGraph,
        config: EngineConfig,
        service: Optional[AnchorService] = None,
        control: Optional[RunControl] = None,
    ) -> None:
        self.graph = graph
        self.service = service
        self.control = control

        anchors = config.section("anchors")
        self.min_words = int(anchors.get("min_words", 2))
        self.max_words = int(anchors.get("max_words", 8))
        self.max_chars = int(anchors.get("max_chars", 80))
        self.alternatives = int(anchors.get("alternatives", 3))

        ai = config.section("ai")
        self.concurrency = max(1, int(ai.get("concurrency", 4)))
        self.retries = max(0, int(ai.get("retries", 2)))
        self.backoff = float(ai.get("backoff", 0.5))
        self.context_chars = int(ai.get("context_chars", 1500))
        rate = ai.get("max_failure_rate")
        self.max_failure_rate = None if rate is None else float(rate)
        self.min_failure_sample = int(ai.get("min_failure_sample", 10))

        self._local: Dict[Pair, AnchorResolution] = {}
        self._phrases: Dict[str, List[str]] = {}
        self._lock = threading.Lock()
        self.calls = 0
        self.failures = 0

    # Existing phrases -----------------------------------------------------

    def resolve_local(self, candidate: LinkCandidate) -> AnchorResolution:
        """Search the source page for n-grams of the target's keyword, title and headings."""

        cached = self._local.get(candidate.pair)
        if cached is None:
            cached = self._search(candidate)
            self._local[candidate.pair] = cached
        return cached

    def _target_phrases(self, target_id: str) -> List[str]:
        phrases = self._phrases.get(target_id)
        if phrases is not None:
            return phrases
        page = self.graph.page(target_id)
        seen = set()
        phrases = []
        for index, text in enumerate((page.primary_keyword, page.title) + tuple(page.headings)):
            tokens = tokenize(text)
            grams = ngrams(tokens, self.min_words, self.max_words)
            # Keyword and title always count as a whole, even when shorter than min_words.
            if index < 2 and 0 < len(tokens) < self.min_words:
                grams.insert(0, tuple(tokens))
            for gram in grams:
                if all(token in STOPWORDS for token in gram):
                    continue
                phrase = " ".join(gram)
                if len(phrase) > self.max_chars or phrase in seen:
                    continue
                seen.add(phrase)
                phrases.append(phrase)
        self._phrases[target_id] = phrases
        return phrases

    def _ordered_blocks(self, candidate: LinkCandidate) -> List[Block]:
        blocks = list(self.graph.blocks_of(candidate.source_id))
        preferred = [block for block in blocks if block.id == candidate.source_block_id]
        return preferred + [block for block in blocks if block.id != candidate.source_block_id]

    def _search(self, candidate: LinkCandidate) -> AnchorResolution:
        phrases = self._target_phrases(candidate.target_id)
        if not phrases:
            return AnchorResolution(None, error="Target has no keyword, title or heading phrases.")

        keyword = normalize_anchor(self.graph.page(candidate.target_id).primary_keyword)
        found: List[Tuple[Tuple[int, int, int], AnchorMatch]] = []
        for rank, block in enumerate(self._ordered_blocks(candidate)):
            starts = word_starts(block.text)
            for phrase in phrases:
                for match in phrase_pattern(phrase).finditer(block.text):
                    text = match.group(0)
                    anchor = AnchorMatch(
                        text=" ".join(text.split()),
                        block_id=block.id,
                        position=(block.word_offset or 0) + word_index_at(starts, match.start()),
                        source=ANCHOR_EXISTING,
                        is_exact=normalize_anchor(text) == keyword,
                    )
                    found.append(((-len(phrase.split()), rank, match.start()), anchor))

        if not found:
            return AnchorResolution(None, error="No target phrase occurs in the source page.")

        found.sort(key=lambda item: item[0])
        primary = found[0][1]
        alternatives: List[AnchorMatch] = []
        seen = {(normalize_anchor(primary.text), primary.position)}
        for _, anchor in found[1:]:
            if len(alternatives) >= self.alternatives:
                break
            key = (normalize_anchor(anchor.text), anchor.position)
            if key in seen:
                continue
            seen.add(key)
            alternatives.append(anchor)
        return AnchorResolution(primary, tuple(alternatives))

    # AI fallback ----------------------------------------------------------

    def resolve_remote(
        self,
        candidates: Sequence[LinkCandidate],
        checkpoint: Checkpoint | None = None,
    ) -> Dict[Pair, AnchorResolution]:
        """Ask the AI service for every candidate concurrently.

        Results are keyed by (source, target). Cancellation raises
        :class:`RunCanceled` and discards whatever finished meanwhile.
        """

        results: Dict[Pair, AnchorResolution] = {}
        if not candidates:
            return results
        if self.service is None:
            for candidate in candidates:
                results[candidate.pair] = AnchorResolution(None, error="No AI anchor service configured.")
            return results

        total = len(candidates)
        with ThreadPoolExecutor(
            max_workers=min(self.concurrency, total),
            thread_name_prefix="linkplanner-anchor",
        ) as pool:
            futures = {pool.submit(self._resolve_remote_one, candidate): candidate.pair for candidate in candidates}
            for done, future in enumerate(as_completed(futures), start=1):
                results[futures[future]] = future.result()
                if checkpoint is not None:
                    checkpoint(done, total)

        self._check_failure_rate()
        return results

    def _resolve_remote_one(self, candidate: LinkCandidate) -> AnchorResolution:
        block = self._context_block(candidate)
        if block is None:
            return AnchorResolution(None, error="Source page has no text blocks.")

        target = self.graph.page(candidate.target_id)
        source_text = block.text[: self.context_chars]
        try:
            suggestion = self._call(source_text, target.primary_keyword)
        except (AnchorResolutionFailure, ExternalServiceError) as exc:
            return AnchorResolution(None, error=str(exc))

        try:
            anchor = self._place(suggestion, block, normalize_anchor(target.primary_keyword))
        except AnchorResolutionFailure as exc:
            return AnchorResolution(None, error=str(exc))
        return AnchorResolution(anchor)

    def _context_block(self, candidate: LinkCandidate) -> Optional[Block]:
        blocks = self._ordered_blocks(candidate)
        if candidate.source_block_id is None:
            blocks.sort(key=lambda block: -len(block.text))
        for block in blocks:
            if block.text.strip():
                return block
        return None

    def _call(self, source_text: str, target_topic: str) -> AnchorSuggestion:
        attempts = self.retries + 1
        last_error: Optional[Exception] = None
        with self._lock:
            self.calls += 1
        for attempt in range(attempts):
            if self.control is not None:
                self.control.raise_if_canceled()
            try:
                return self.service.rewrite_or_find_anchor(source_text, target_topic)
            except (ExternalServiceError, TimeoutError, OSError) as exc:
                last_error = exc
                logger.warning(
                    "Anchor service call failed (attempt %s/%s): %s", attempt + 1, attempts, exc
                )
            except (AnchorResolutionFailure, RunCanceled):
                raise
            except Exception as exc:
                # Unexpected collaborator errors are not retried but never abort the run.
                logger.warning("Anchor service raised %s", type(exc).__name__, exc_info=True)
                with self._lock:
                    self.failures += 1
                raise ExternalServiceError(f"Anchor service error: {exc}") from exc
            if attempt + 1 < attempts:
                delay = self.backoff * (2 ** attempt)
                if self.control is not None:
                    self.control.wait(delay)
                else:
                    time.sleep(delay)
        with self._lock:
            self.failures += 1
        raise ExternalServiceError(f"Anchor service unavailable: {last_error}")

    def _place(self, suggestion: AnchorSuggestion, block: Block, keyword: str) -> AnchorMatch:
        anchor_text = " ".join(suggestion.anchor.split())
        if len(anchor_text) > self.max_chars or len(anchor_text.split()) > self.max_words:
            raise AnchorResolutionFailure("Suggested anchor is too long.")
        pattern = phrase_pattern(anchor_text)
        offset = block.word_offset or 0

        if suggestion.type == "existing":
            match = pattern.search(block.text)
            if match is None:
                raise AnchorResolutionFailure("Suggested anchor does not occur in the source block.")
            return AnchorMatch(
                text=" ".join(match.group(0).split()),
                block_id=block.id,
                position=offset + word_index_at(word_starts(block.text), match.start()),
                source=ANCHOR_AI_REWRITE,
                is_exact=normalize_anchor(anchor_text) == keyword,
            )

        sentence = suggestion.sentence or ""
        if pattern.search(sentence) is None:
            raise AnchorResolutionFailure("Rewritten sentence does not contain the anchor.")
        originals = split_sentences(block.text)
        if not originals:
            raise AnchorResolutionFailure("Source block has no sentences to rewrite.")
        rewritten = tokenize(sentence)
        char_offset, _ = max(
            originals,
            key=lambda item: (jaccard(tokenize(item[1]), rewritten), -item[0]),
        )
        return AnchorMatch(
            text=anchor_text,
            block_id=block.id,
            position=offset + word_index_at(word_starts(block.text), char_offset),
            source=ANCHOR_AI_REWRITE,
            is_exact=normalize_anchor(anchor_text) == keyword,
            modified_sentence=sentence,
        )

    def _check_failure_rate(self) -> None:
        if self.max_failure_rate is None:
            return
        with self._lock:
            calls, failures = self.calls, self.failures
        if calls < self.min_failure_sample:
            return
        rate = failures / calls
        if rate > self.max_failure_rate:
            raise ExternalServiceError(
                f"Anchor service failure rate {rate:.0%} exceeds {self.max_failure_rate:.0%}."
            )
