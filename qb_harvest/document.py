"""Assemble harvested items into a page-oriented document description."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union

from .config import (
    CHOICE_ANALYSIS,
    FULL_SECTION_LABELS,
    IMAGE_DIAGNOSIS,
    LayoutConfig,
)
from .models import ImageEntry, Item, ProblemRecord, ReferenceRecord, ResolvedImage

logger = logging.getLogger("qb_harvest")

EXPLANATION_HEADING = "解説"
CORRECT_ANSWER_HEADING = "正解"
REFERENCE_HEADING = "基本事項など"
PROBLEM_IMAGE_ERROR = "問題画像読み込みエラー"
EXPLANATION_IMAGE_ERROR = "解説画像読み込みエラー"
REFERENCE_IMAGE_ERROR = "基本事項画像読み込みエラー"
IMAGE_ERROR = "画像読み込みエラー"


@dataclass(frozen=True)
class TextBlock:
    text: str
    style: str


@dataclass(frozen=True)
class ImageBlock:
    data_url: str
    width: float
    natural_width: Optional[int] = None
    natural_height: Optional[int] = None
    error_text: str = IMAGE_ERROR


@dataclass(frozen=True)
class LinkBlock:
    url: str


@dataclass(frozen=True)
class ErrorBlock:
    message: str


@dataclass(frozen=True)
class EmptyCell:
    pass


Cell = Union[ImageBlock, LinkBlock, ErrorBlock, EmptyCell]


@dataclass(frozen=True)
class ImageGrid:
    """Borderless table of image cells; every row has the same length."""

    rows: List[List[Cell]]


@dataclass(frozen=True)
class BulletList:
    items: List[str]
    style: str = "choices"


@dataclass(frozen=True)
class PageBreak:
    pass


Block = Union[TextBlock, ImageBlock, LinkBlock, ErrorBlock, ImageGrid, BulletList, PageBreak]


@dataclass
class ItemPages:
    """All blocks generated for one item, in page order."""

    ordinal: int
    blocks: List[Block] = field(default_factory=list)


@dataclass
class DocumentDescription:
    items: List[ItemPages] = field(default_factory=list)

    @property
    def blocks(self) -> List[Block]:
        return [block for pages in self.items for block in pages.blocks]


@dataclass
class AssemblyOptions:
    """Which optional parts of an item the document shows."""

    section_labels: Sequence[str] = FULL_SECTION_LABELS
    include_image_heading: bool = False


def render_width(
    image: ResolvedImage, max_width: float, max_height: Optional[float] = None
) -> float:
    """Clamp the natural width to ``max_width``; unknown widths use the maximum.

    With ``max_height`` and known dimensions, the width is also reduced so the
    scaled height stays within it.
    """
    width = min(float(image.width), max_width) if image.width else max_width
    if max_height is not None and image.width and image.height:
        width = min(width, max_height * image.width / image.height)
    return width


def _as_resolved(entry: ImageEntry) -> ResolvedImage:
    if isinstance(entry, ResolvedImage):
        return entry
    logger.debug("Image %s reached assembly unresolved", entry[:80])
    return ResolvedImage(source=entry)


def image_cell(
    entry: ImageEntry,
    max_width: float,
    error_text: str,
    max_height: Optional[float] = None,
) -> Cell:
    image = _as_resolved(entry)
    if image.is_inline:
        assert image.embeddable is not None
        return ImageBlock(
            data_url=image.embeddable,
            width=render_width(image, max_width, max_height),
            natural_width=image.width,
            natural_height=image.height,
            error_text=error_text,
        )
    if image.is_link:
        assert image.embeddable is not None
        return LinkBlock(url=image.embeddable)
    return ErrorBlock(message=error_text)


def layout_images(
    entries: Sequence[ImageEntry],
    max_width: float,
    error_text: str,
    *,
    max_height: Optional[float] = None,
    row_width: Optional[float] = None,
    cell_padding: float = 0.0,
) -> List[Block]:
    """Lay out one logical image slot: a single block, or a two-row grid.

    Grid cells share ``row_width`` evenly and each row gets half of
    ``max_height`` less its vertical ``cell_padding``.
    """
    total = len(entries)
    if total == 0:
        return []
    if total == 1:
        return [image_cell(entries[0], max_width, error_text, max_height)]

    first_row_count = math.ceil(total / 2)
    cell_width = max_width
    if row_width is not None:
        cell_width = min(max_width, row_width / first_row_count)
    cell_height = None
    if max_height is not None:
        cell_height = max_height / 2 - 2 * cell_padding
    cells = [image_cell(entry, cell_width, error_text, cell_height) for entry in entries]
    rows: List[List[Cell]] = [cells[:first_row_count]]
    second_row: List[Cell] = cells[first_row_count:]
    if second_row:
        second_row.extend(EmptyCell() for _ in range(first_row_count - len(second_row)))
        rows.append(second_row)
    return [ImageGrid(rows=rows)]


class DocumentAssembler:
    """Turn harvested items into page blocks, one problem/explanation pair per item."""

    def __init__(
        self,
        layout: Optional[LayoutConfig] = None,
        options: Optional[AssemblyOptions] = None,
    ) -> None:
        self.layout = layout or LayoutConfig()
        self.options = options or AssemblyOptions()

    @property
    def max_width(self) -> float:
        return self.layout.max_image_width

    def images(self, entries: Sequence[ImageEntry], error_text: str) -> List[Block]:
        return layout_images(
            entries,
            self.max_width,
            error_text,
            max_height=self.layout.max_image_height,
            row_width=self.layout.usable_width,
            cell_padding=self.layout.cell_padding,
        )

    def problem_blocks(self, problem: ProblemRecord) -> List[Block]:
        blocks: List[Block] = [
            TextBlock(f"問題番号: {problem.number}", "header"),
            TextBlock(f"問題ID: {problem.problem_id}", "header"),
            TextBlock(problem.question_text, "question"),
        ]
        blocks.extend(self.images(problem.images, PROBLEM_IMAGE_ERROR))
        if problem.choices:
            blocks.append(BulletList(items=list(problem.choices)))
        blocks.append(PageBreak())
        return blocks

    def reference_blocks(self, reference: ReferenceRecord) -> List[Block]:
        blocks: List[Block] = [
            TextBlock(reference.title or REFERENCE_HEADING, "explanationHeader"),
            TextBlock(reference.text, "analysis"),
        ]
        blocks.extend(self.images(reference.images, REFERENCE_IMAGE_ERROR))
        return blocks

    def explanation_blocks(self, item: Item) -> List[Block]:
        explanation = item.explanation
        blocks: List[Block] = [TextBlock(EXPLANATION_HEADING, "explanationHeader")]
        if self.options.include_image_heading:
            blocks.append(TextBlock(IMAGE_DIAGNOSIS, "explanationHeader"))

        diagnosis = explanation.section(IMAGE_DIAGNOSIS)
        blocks.extend(self.images(diagnosis.images, EXPLANATION_IMAGE_ERROR))
        if diagnosis.caption:
            blocks.append(TextBlock(diagnosis.caption, "analysis"))

        answer_blocks: List[Block] = []
        if explanation.correct_answer:
            answer_blocks = [
                TextBlock(CORRECT_ANSWER_HEADING, "explanationHeader"),
                TextBlock(explanation.correct_answer, "correctAnswer"),
            ]
        for label in self.options.section_labels:
            blocks.append(TextBlock(label, "explanationHeader"))
            blocks.append(TextBlock(explanation.section(label).text, "analysis"))
            if label == CHOICE_ANALYSIS:
                blocks.extend(answer_blocks)
                answer_blocks = []
        blocks.extend(answer_blocks)

        if item.reference is not None:
            blocks.extend(self.reference_blocks(item.reference))
        blocks.append(PageBreak())
        return blocks

    def item_pages(self, item: Item) -> ItemPages:
        pages = ItemPages(ordinal=item.ordinal)
        if item.problem is not None:
            pages.blocks.extend(self.problem_blocks(item.problem))
        pages.blocks.extend(self.explanation_blocks(item))
        return pages

    def assemble(self, items: Sequence[Item]) -> DocumentDescription:
        return DocumentDescription(items=[self.item_pages(item) for item in items])


def assemble(
    items: Sequence[Item],
    layout: Optional[LayoutConfig] = None,
    options: Optional[AssemblyOptions] = None,
) -> DocumentDescription:
    """Build the document description for ``items`` in harvest order."""
    return DocumentAssembler(layout, options).assemble(items)
