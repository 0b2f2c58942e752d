"""Encode a document description as PDF bytes with reportlab."""

from __future__ import annotations

import binascii
import io
import logging
from typing import Dict, List, Optional, Sequence
from xml.sax.saxutils import escape, quoteattr

from reportlab.lib import colors
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.cidfonts import UnicodeCIDFont
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.platypus import (
    BaseDocTemplate,
    Flowable,
    Frame,
    Image,
    ListFlowable,
    ListItem,
    PageBreak as PageBreakFlowable,
    PageTemplate,
    Paragraph,
    Spacer,
    Table,
    TableStyle,
)

from .config import LayoutConfig
from .document import (
    Block,
    BulletList,
    Cell,
    EmptyCell,
    ErrorBlock,
    ImageBlock,
    ImageGrid,
    LinkBlock,
    PageBreak,
    TextBlock,
)
from .images import decode_data_url, measure

logger = logging.getLogger("qb_harvest")

CUSTOM_FONT_NAME = "QbHarvestBody"

# (space_before, space_after, left_indent) per style, in points.
_STYLE_SPACING: Dict[str, tuple] = {
    "header": (0, 10, 0),
    "question": (5, 5, 0),
    "choices": (2, 2, 15),
    "explanationHeader": (15, 5, 0),
    "analysis": (0, 5, 15),
    "correctAnswer": (5, 5, 0),
    "error": (5, 5, 0),
}
_HEADING_STYLES = {"header", "explanationHeader", "correctAnswer"}


class RenderError(RuntimeError):
    """Raised when the PDF encoder cannot produce a document."""


def _register_font(name: str, font_path=None) -> str:
    if name in pdfmetrics.getRegisteredFontNames():
        return name
    if font_path is not None:
        pdfmetrics.registerFont(TTFont(name, str(font_path)))
    else:
        pdfmetrics.registerFont(UnicodeCIDFont(name))
    return name


def paragraph_markup(text: str) -> str:
    return escape(text).replace("\n", "<br/>")


class PdfRenderer:
    """Turn description blocks into reportlab flowables and build a PDF."""

    def __init__(self, layout: Optional[LayoutConfig] = None) -> None:
        self.layout = layout or LayoutConfig()
        self._styles: Optional[Dict[str, ParagraphStyle]] = None

    def _fonts(self) -> tuple:
        if self.layout.font_path is not None:
            name = _register_font(CUSTOM_FONT_NAME, self.layout.font_path)
            return name, name
        heading = _register_font(self.layout.heading_font)
        body = _register_font(self.layout.body_font)
        return heading, body

    @property
    def styles(self) -> Dict[str, ParagraphStyle]:
        if self._styles is None:
            heading_font, body_font = self._fonts()
            base = getSampleStyleSheet()["Normal"]
            styles: Dict[str, ParagraphStyle] = {}
            for name, size in self.layout.font_sizes.items():
                before, after, indent = _STYLE_SPACING.get(name, (0, 5, 0))
                styles[name] = ParagraphStyle(
                    name,
                    parent=base,
                    fontName=heading_font if name in _HEADING_STYLES else body_font,
                    fontSize=size,
                    leading=size * 1.4,
                    spaceBefore=before,
                    spaceAfter=after,
                    leftIndent=indent,
                    wordWrap="CJK",
                    textColor=colors.red if name == "error" else colors.black,
                )
            self._styles = styles
        return self._styles

    def _style(self, name: str) -> ParagraphStyle:
        return self.styles.get(name) or self.styles["analysis"]

    def image(
        self,
        block: ImageBlock,
        max_width: Optional[float] = None,
        max_height: Optional[float] = None,
    ) -> Flowable:
        """Scale ``block`` to fit ``max_width`` and ``max_height``, keeping its aspect ratio."""
        width = block.width
        if max_width is not None:
            width = min(width, max_width)
        try:
            data = decode_data_url(block.data_url)
            natural_width, natural_height = measure(data)
        except (ValueError, binascii.Error, OSError) as exc:
            logger.warning("Embedding image failed: %s", exc)
            return Paragraph(paragraph_markup(block.error_text), self._style("error"))
        height = width * natural_height / natural_width
        if max_height is not None and height > max_height:
            width = width * max_height / height
            height = max_height
        flowable = Image(io.BytesIO(data), width=width, height=height)
        flowable.hAlign = "LEFT"
        return flowable

    def cell(self, cell: Cell, max_width: float, max_height: Optional[float] = None) -> Flowable:
        if isinstance(cell, ImageBlock):
            return self.image(cell, max_width, max_height)
        if isinstance(cell, LinkBlock):
            return self.link(cell)
        if isinstance(cell, ErrorBlock):
            return Paragraph(paragraph_markup(cell.message), self._style("error"))
        return Spacer(1, 0)

    def link(self, block: LinkBlock) -> Flowable:
        markup = f"<link href={quoteattr(block.url)}>{escape(block.url)}</link>"
        return Paragraph(markup, self._style("error"))

    def grid(self, block: ImageGrid) -> Flowable:
        columns = len(block.rows[0])
        column_width = self.layout.usable_width / columns
        padding = self.layout.cell_padding
        cell_height = self.layout.max_image_height / len(block.rows) - 2 * padding
        data = [
            [self.cell(cell, column_width, cell_height) for cell in row]
            for row in block.rows
        ]
        table = Table(data, colWidths=[column_width] * columns, hAlign="LEFT")
        table.setStyle(
            TableStyle(
                [
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                    ("LEFTPADDING", (0, 0), (-1, -1), 0),
                    ("RIGHTPADDING", (0, 0), (-1, -1), 0),
                    ("TOPPADDING", (0, 0), (-1, -1), padding),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), padding),
                ]
            )
        )
        return table

    def bullets(self, block: BulletList) -> Flowable:
        style = self._style(block.style)
        items = [ListItem(Paragraph(paragraph_markup(text), style)) for text in block.items]
        return ListFlowable(items, bulletType="bullet", leftIndent=style.leftIndent + 10)

    def flowables(self, blocks: Sequence[Block]) -> List[Flowable]:
        story: List[Flowable] = []
        for block in blocks:
            if isinstance(block, TextBlock):
                story.append(Paragraph(paragraph_markup(block.text), self._style(block.style)))
            elif isinstance(block, ImageBlock):
                story.append(
                    self.image(block, self.layout.usable_width, self.layout.max_image_height)
                )
                story.append(Spacer(1, self.layout.image_spacing))
            elif isinstance(block, ImageGrid):
                story.append(self.grid(block))
                story.append(Spacer(1, self.layout.image_spacing))
            elif isinstance(block, BulletList):
                story.append(self.bullets(block))
            elif isinstance(block, PageBreak):
                story.append(PageBreakFlowable())
            elif isinstance(block, EmptyCell):
                continue
            else:
                story.append(self.cell(block, self.layout.usable_width))
        # A break after the last item would only produce an empty page.
        while story and isinstance(story[-1], PageBreakFlowable):
            story.pop()
        return story

    def render(self, blocks: Sequence[Block]) -> bytes:
        """Encode ``blocks`` into a PDF; raises RenderError on encoder failure."""
        buffer = io.BytesIO()
        margin = self.layout.margin
        doc = BaseDocTemplate(
            buffer,
            pagesize=(self.layout.page_width, self.layout.page_height),
            leftMargin=margin,
            rightMargin=margin,
            topMargin=margin,
            bottomMargin=margin,
        )
        # Unpadded frame: its size is exactly the usable area images are capped to.
        frame = Frame(
            doc.leftMargin,
            doc.bottomMargin,
            doc.width,
            doc.height,
            id="normal",
            leftPadding=0,
            rightPadding=0,
            topPadding=0,
            bottomPadding=0,
        )
        doc.addPageTemplates([PageTemplate(id="page", frames=[frame])])
        try:
            story = self.flowables(blocks)
            if not story:
                story = [Spacer(1, 0)]
            doc.build(story)
        except Exception as exc:  # pylint: disable=broad-except
            raise RenderError(f"PDF generation failed: {exc}") from exc
        return buffer.getvalue()
