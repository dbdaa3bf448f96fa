"""Service functions for turning reviewed candidates into link markup.

These helpers are used when a draft is published: they serialise
candidates for the JSON endpoints and render the source block HTML with
the new anchor inserted, applying the profile's HTML attribute
preferences. They are deliberately free of request handling so they can
be unit tested and reused from the orchestrator and the views.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from bs4 import BeautifulSoup, NavigableString  # type: ignore
from django.utils.html import escape

from .content import BLOCK_PREFIX
from .engine.profile import HtmlAttributes
from .engine.text import phrase_pattern
from .models import ContentBlock, GenerationRun, LinkCandidate

# Tags inside which links should never be inserted
SKIP_TAGS: set[str] = {"a", "code", "pre", "h1", "h2", "h3", "script", "style"}

DEFAULT_ANCHOR_CLASS = 'linkplanner-anchor'


def anchor_class(html: HtmlAttributes) -> str:
    """Return the class attribute for inserted anchors.

    ``append`` keeps the default marker class and adds the configured one;
    ``replace`` uses the configured class alone.
    """

    custom = html.class_name.split()
    if html.class_mode == 'replace' and custom:
        return ' '.join(custom)
    classes = [DEFAULT_ANCHOR_CLASS]
    classes.extend(name for name in custom if name != DEFAULT_ANCHOR_CLASS)
    return ' '.join(classes)


def _parse(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, 'lxml')


def _should_skip(node: NavigableString) -> bool:
    """Return ``True`` when the text node sits inside a tag listed in ``SKIP_TAGS``."""

    parent = node.parent
    while parent is not None and getattr(parent, 'name', None):
        if parent.name and parent.name.lower() in SKIP_TAGS:
            return True
        parent = parent.parent
    return False


def _body_html(soup: BeautifulSoup) -> str:
    body = soup.body
    if body is None:
        return str(soup)
    return ''.join(str(child) for child in body.contents)


def render_link_html(
    html: str,
    anchor_text: str,
    url: str,
    *,
    css_class: str = DEFAULT_ANCHOR_CLASS,
    rel: str = '',
    target: str = '',
    modified_sentence: Optional[str] = None,
) -> Optional[str]:
    """Insert one anchor for ``anchor_text`` into ``html``.

    Parameters
    ----------
    html:
        Markup (or plain text) of the source block.
    anchor_text:
        The phrase to link; matched case-insensitively on word boundaries.
    url:
        The link target.
    css_class, rel, target:
        Attribute values for the new ``<a>`` tag; empty values are omitted.
    modified_sentence:
        When the anchor comes from an AI rewrite, the rewritten sentence is
        rendered as its own paragraph and linked instead of the original
        block text.

    Returns
    -------
    str or None
        The enriched markup, or ``None`` when the anchor text could not be
        found outside headings, code blocks and existing links.
    """

    if modified_sentence:
        html = f"<p>{escape(modified_sentence)}</p>"
    elif not html:
        return None
    elif '<' not in html:
        html = f"<p>{escape(html)}</p>"

    soup = _parse(html)
    pattern = phrase_pattern(anchor_text)

    for text_node in list(soup.find_all(string=True)):
        if not isinstance(text_node, NavigableString) or _should_skip(text_node):
            continue
        original = str(text_node)
        match = pattern.search(original)
        if not match:
            continue

        after = original[match.end():]
        if after:
            text_node.insert_after(after)

        anchor = soup.new_tag('a', href=url)
        if css_class:
            anchor['class'] = css_class.split()
        if rel:
            anchor['rel'] = rel
        if target:
            anchor['target'] = target
        anchor.string = match.group(0)
        text_node.insert_after(anchor)

        before = original[:match.start()]
        if before:
            text_node.replace_with(before)
        else:
            text_node.extract()
        return _body_html(soup)

    return None


def _block_markup(candidate: LinkCandidate) -> str:
    block_id = candidate.source_block_id or ''
    if not block_id.startswith(BLOCK_PREFIX):
        return ''
    block = ContentBlock.objects.filter(pk=int(block_id[len(BLOCK_PREFIX):])).first()
    if block is None:
        return ''
    return block.html or block.text


def candidate_payload(candidate: LinkCandidate) -> Dict[str, Any]:
    """Serialise a persisted candidate for the JSON endpoints."""

    return {
        'id': candidate.pk,
        'order': candidate.order,
        'source_id': candidate.source_id,
        'target_id': candidate.target_id,
        'source_url': candidate.source_url,
        'target_url': candidate.target_url,
        'scenario': candidate.scenario,
        'score': candidate.score,
        'similarity_score': candidate.similarity_score,
        'confidence': candidate.confidence,
        'rationale': candidate.rationale,
        'anchor_text': candidate.anchor_text,
        'anchor_source': candidate.anchor_source or None,
        'source_block_id': candidate.source_block_id or None,
        'position': candidate.position,
        'modified_sentence': candidate.modified_sentence or None,
        'is_exact_anchor': candidate.is_exact_anchor,
        'status': candidate.status,
        'rejection_reason': candidate.rejection_reason or None,
        'html_attributes': {
            'class': candidate.css_class,
            'rel': candidate.rel_attribute,
            'target': candidate.target_attribute,
        },
        'metadata': candidate.metadata,
    }


def run_payload(run: GenerationRun) -> Dict[str, Any]:
    return {
        'run_id': str(run.run_id),
        'project_id': run.project_id,
        'status': run.status,
        'phase': run.phase,
        'percent': run.percent,
        'scenario_progress': run.scenario_progress,
        'generated': run.generated,
        'accepted': run.accepted,
        'rejected': run.rejected,
        'flagged': run.flagged,
        'profile': run.profile,
        'metrics': run.metrics,
        'error_message': run.error_message or None,
        'message': run.message or None,
        'cancel_requested': run.cancel_requested,
        'started_at': run.started_at.isoformat() if run.started_at else None,
        'finished_at': run.finished_at.isoformat() if run.finished_at else None,
        'published_at': run.published_at.isoformat() if run.published_at else None,
    }


def render_candidate(candidate: LinkCandidate) -> Dict[str, Any]:
    """Payload of an accepted candidate plus the rendered link markup."""

    payload = candidate_payload(candidate)
    payload['html'] = render_link_html(
        _block_markup(candidate),
        candidate.anchor_text,
        candidate.target_url,
        css_class=candidate.css_class,
        rel=candidate.rel_attribute,
        target=candidate.target_attribute,
        modified_sentence=candidate.modified_sentence or None,
    )
    return payload


def default_publisher(run: GenerationRun, candidates) -> list[Dict[str, Any]]:
    """Render every accepted candidate; the content system consumes the result."""

    return [render_candidate(candidate) for candidate in candidates]
