"""Content source reading the imported site from the database."""

from __future__ import annotations

from typing import List, Optional, Sequence

from .engine.errors import ImportNotReady
from .engine.types import Block, ExistingLink, Page
from .models import ContentBlock, ContentImport, InternalLink, SitePage

BLOCK_PREFIX = 'block-'


def page_key(page: SitePage) -> str:
    return str(page.pk)


def block_key(block: ContentBlock) -> str:
    return f"{BLOCK_PREFIX}{block.pk}"


class ModelContentSource:
    """:class:`~linkplanner.engine.graph.ContentSource` over the content models.

    Page ids are the ``SitePage`` primary keys; block ids carry a prefix so
    embeddings of pages and blocks can share one lookup.
    """

    def ensure_ready(self, project_id: str) -> None:
        ready = ContentImport.objects.filter(
            project_id=project_id,
            status=ContentImport.STATUS_COMPLETED,
        ).exists()
        if not ready:
            raise ImportNotReady(f"Project {project_id} has no completed content import.")

    def pages(self, project_id: str) -> Sequence[Page]:
        self.ensure_ready(project_id)
        return [
            Page(
                id=page_key(page),
                url=page.url,
                title=page.title,
                word_count=page.word_count,
                keyword=page.keyword or None,
                headings=tuple(str(heading) for heading in (page.headings or [])),
                published_at=page.published_at,
                updated_at=page.modified_at,
                is_entry=page.is_entry,
            )
            for page in SitePage.objects.filter(project_id=project_id)
        ]

    def blocks_of(self, page_id: str) -> Sequence[Block]:
        return [
            Block(
                id=block_key(block),
                page_id=page_id,
                text=block.text,
                position=block.position,
                word_offset=block.word_offset,
                html=block.html or None,
            )
            for block in ContentBlock.objects.filter(page_id=int(page_id))
        ]

    def existing_links(self, project_id: str) -> Sequence[ExistingLink]:
        self.ensure_ready(project_id)
        links = InternalLink.objects.filter(source__project_id=project_id).values_list(
            'source_id', 'target_id', 'anchor_text', 'position'
        )
        return [
            ExistingLink(
                source_id=str(source_id),
                target_id=str(target_id),
                anchor_text=anchor_text,
                position=position,
            )
            for source_id, target_id, anchor_text, position in links
        ]

    def embedding_of(self, item_id: str) -> Optional[List[float]]:
        if item_id.startswith(BLOCK_PREFIX):
            value = (
                ContentBlock.objects.filter(pk=int(item_id[len(BLOCK_PREFIX):]))
                .values_list('embedding', flat=True)
                .first()
            )
        else:
            value = SitePage.objects.filter(pk=int(item_id)).values_list('embedding', flat=True).first()
        return list(value) if value else None
