"""AI text service used to find or rewrite anchors the source page lacks."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from openai import OpenAI, OpenAIError

from .errors import AnchorResolutionFailure, ExternalServiceError

SUGGESTION_TYPES = ("existing", "rewrite")

_CODEBLOCK_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.S)

SYSTEM_PROMPT = (
    "You help editors add internal links. Given a passage from a source page and the "
    "topic of a target page, either pick a short phrase that already appears verbatim in "
    "the passage and describes the target topic, or rewrite one sentence of the passage "
    "so it naturally contains such a phrase. Never invent generic anchors such as "
    "'click here' or 'read more'. Reply with JSON only: "
    '{"type": "existing" | "rewrite", "anchor": "...", "sentence": "..."}. '
    "The sentence field is required for rewrites and must contain the anchor."
)


@dataclass(frozen=True)
class AnchorSuggestion:
    type: str
    anchor: str
    sentence: Optional[str] = None


class AnchorService(Protocol):
    """Contract of the AI anchor collaborator."""

    def rewrite_or_find_anchor(self, source_text: str, target_topic: str) -> AnchorSuggestion:
        ...


def parse_suggestion(payload: Any) -> AnchorSuggestion:
    """Validate the service reply; raise :class:`AnchorResolutionFailure` when malformed."""

    if isinstance(payload, str):
        text = payload
        match = _CODEBLOCK_RE.search(text)
        if match:
            text = match.group(1)
        if "{" in text and "}" in text:
            text = text[text.index("{"): text.rindex("}") + 1]
        try:
            payload = json.loads(text)
        except ValueError as exc:
            raise AnchorResolutionFailure("AI reply is not valid JSON.") from exc

    if not isinstance(payload, dict):
        raise AnchorResolutionFailure("AI reply is not a JSON object.")

    kind = str(payload.get("type") or "").strip().lower()
    anchor = " ".join(str(payload.get("anchor") or "").split())
    sentence = payload.get("sentence")
    sentence = " ".join(str(sentence).split()) if sentence else None

    if kind not in SUGGESTION_TYPES:
        raise AnchorResolutionFailure(f"Unknown suggestion type: {kind or 'missing'}")
    if not anchor:
        raise AnchorResolutionFailure("AI reply contains no anchor.")
    if kind == "rewrite" and not sentence:
        raise AnchorResolutionFailure("Rewrite suggestion without a sentence.")
    return AnchorSuggestion(type=kind, anchor=anchor, sentence=sentence if kind == "rewrite" else None)


class OpenAIAnchorService:
    """:class:`AnchorService` backed by the OpenAI chat completions API."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        timeout: float = 20.0,
        client: Optional[OpenAI] = None,
    ) -> None:
        self.model = model
        self.timeout = timeout
        # Retries are handled by the anchor resolver.
        self.client = client or OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def rewrite_or_find_anchor(self, source_text: str, target_topic: str) -> AnchorSuggestion:
        prompt = f"Target topic: {target_topic}\n-----\n{source_text}\n-----"
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.0,
                max_tokens=300,
                response_format={"type": "json_object"},
                timeout=self.timeout,
            )
        except OpenAIError as exc:
            raise ExternalServiceError(f"OpenAI request failed: {exc}") from exc

        if not getattr(response, "choices", None):
            raise AnchorResolutionFailure("OpenAI reply has no choices.")
        content = (response.choices[0].message.content or "").strip()
        return parse_suggestion(content)
