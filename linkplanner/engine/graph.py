"""Read-only content graph for a project: pages, blocks, links and embeddings.

Pages are stored in an arena (a plain list) and addressed by integer index;
adjacency lists hold indices rather than page references.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from .errors import ImportNotReady
from .text import word_count
from .types import Block, ExistingLink, Page

logger = logging.getLogger(__name__)

Checkpoint = Callable[[int, int], None]
Vector = Sequence[float]


class ContentSource(Protocol):
    """Contract of the content/import collaborator."""

    def pages(self, project_id: str) -> Sequence[Page]:
        ...

    def blocks_of(self, page_id: str) -> Sequence[Block]:
        ...

    def existing_links(self, project_id: str) -> Sequence[ExistingLink]:
        ...

    def embedding_of(self, item_id: str) -> Optional[Vector]:
        ...


@dataclass
class InMemoryContentSource:
    """Content source backed by dictionaries, keyed by project id."""

    projects: Dict[str, List[Page]] = field(default_factory=dict)
    blocks: Dict[str, List[Block]] = field(default_factory=dict)
    links: Dict[str, List[ExistingLink]] = field(default_factory=dict)
    embeddings: Dict[str, List[float]] = field(default_factory=dict)

    def add_project(
        self,
        project_id: str,
        pages: Sequence[Page],
        blocks: Sequence[Block] = (),
        links: Sequence[ExistingLink] = (),
        embeddings: Mapping[str, Vector] | None = None,
    ) -> None:
        self.projects[project_id] = list(pages)
        for block in blocks:
            self.blocks.setdefault(block.page_id, []).append(block)
        self.links[project_id] = list(links)
        for item_id, vector in (embeddings or {}).items():
            self.embeddings[item_id] = list(vector)

    def pages(self, project_id: str) -> Sequence[Page]:
        if project_id not in self.projects:
            raise ImportNotReady(f"Project {project_id} has no completed import.")
        return list(self.projects[project_id])

    def blocks_of(self, page_id: str) -> Sequence[Block]:
        return list(self.blocks.get(page_id, []))

    def existing_links(self, project_id: str) -> Sequence[ExistingLink]:
        if project_id not in self.projects:
            raise ImportNotReady(f"Project {project_id} has no completed import.")
        return list(self.links.get(project_id, []))

    def embedding_of(self, item_id: str) -> Optional[Vector]:
        return self.embeddings.get(item_id)


@dataclass
class ContentGraph:
    """Arena of pages plus adjacency lists over existing internal links."""

    project_id: str
    pages: List[Page]
    index_of: Dict[str, int]
    outgoing: List[List[int]]
    incoming: List[List[int]]
    blocks: List[List[Block]]
    link_positions: List[List[int]]
    page_vectors: List[Optional[List[float]]]
    block_vectors: Dict[str, List[float]]

    @classmethod
    def load(
        cls,
        source: ContentSource,
        project_id: str,
        checkpoint: Checkpoint | None = None,
    ) -> "ContentGraph":
        """Read everything the engine needs for ``project_id`` from ``source``."""

        pages = sorted(source.pages(project_id), key=lambda page: page.id)
        if not pages:
            raise ImportNotReady(f"Project {project_id} import contains no pages.")

        index_of: Dict[str, int] = {}
        for idx, page in enumerate(pages):
            index_of[page.id] = idx

        total = len(pages)
        blocks: List[List[Block]] = []
        page_vectors: List[Optional[List[float]]] = []
        block_vectors: Dict[str, List[float]] = {}
        for idx, page in enumerate(pages):
            page_blocks = _with_offsets(source.blocks_of(page.id))
            blocks.append(page_blocks)
            for block in page_blocks:
                vector = source.embedding_of(block.id)
                if vector:
                    block_vectors[block.id] = [float(value) for value in vector]
            page_vectors.append(_page_vector(source.embedding_of(page.id), page_blocks, block_vectors))
            if checkpoint is not None:
                checkpoint(idx + 1, total)

        outgoing: List[List[int]] = [[] for _ in pages]
        incoming: List[List[int]] = [[] for _ in pages]
        link_positions: List[List[int]] = [[] for _ in pages]
        skipped = 0
        for link in source.existing_links(project_id):
            src = index_of.get(link.source_id)
            dst = index_of.get(link.target_id)
            if src is None or dst is None or src == dst:
                skipped += 1
                continue
            if dst not in outgoing[src]:
                outgoing[src].append(dst)
                incoming[dst].append(src)
            if link.position is not None:
                link_positions[src].append(int(link.position))

        if skipped:
            logger.debug("Ignored %s links to unknown pages or self links in %s", skipped, project_id)

        for positions in link_positions:
            positions.sort()

        return cls(
            project_id=project_id,
            pages=pages,
            index_of=index_of,
            outgoing=outgoing,
            incoming=incoming,
            blocks=blocks,
            link_positions=link_positions,
            page_vectors=page_vectors,
            block_vectors=block_vectors,
        )

    def __len__(self) -> int:
        return len(self.pages)

    def page(self, page_id: str) -> Page:
        return self.pages[self.index_of[page_id]]

    def blocks_of(self, page_id: str) -> List[Block]:
        return self.blocks[self.index_of[page_id]]

    def block(self, page_id: str, block_id: str) -> Optional[Block]:
        for block in self.blocks_of(page_id):
            if block.id == block_id:
                return block
        return None

    def has_link(self, source_id: str, target_id: str) -> bool:
        return self.index_of[target_id] in self.outgoing[self.index_of[source_id]]

    def existing_positions(self, page_id: str) -> List[int]:
        return self.link_positions[self.index_of[page_id]]

    def page_vector(self, page_id: str) -> Optional[List[float]]:
        return self.page_vectors[self.index_of[page_id]]

    def page_text(self, page_id: str) -> str:
        return "\n\n".join(block.text for block in self.blocks_of(page_id))

    def edges(self) -> List[Tuple[int, int]]:
        return [(src, dst) for src, targets in enumerate(self.outgoing) for dst in targets]


def _with_offsets(blocks: Sequence[Block]) -> List[Block]:
    """Sort blocks by position and fill missing word offsets cumulatively."""

    ordered = sorted(blocks, key=lambda block: (block.position, block.id))
    result: List[Block] = []
    running = 0
    for block in ordered:
        if block.word_offset is None:
            block = replace(block, word_offset=running)
        running = block.word_offset + word_count(block.text)
        result.append(block)
    return result


def _page_vector(
    own: Optional[Vector],
    blocks: Sequence[Block],
    block_vectors: Mapping[str, List[float]],
) -> Optional[List[float]]:
    if own:
        return [float(value) for value in own]
    vectors = [block_vectors[block.id] for block in blocks if block.id in block_vectors]
    if not vectors:
        return None
    size = len(vectors[0])
    vectors = [vector for vector in vectors if len(vector) == size]
    return [sum(vector[dim] for vector in vectors) / len(vectors) for dim in range(size)]
