"""HTML extraction of problem, explanation and reference fields."""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional, Sequence

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from .config import FULL_SECTION_LABELS, IMAGE_DIAGNOSIS, Selectors
from .models import ExplanationRecord, ProblemRecord, ReferenceRecord, Section
from .utils import dedupe, normalize_lines, strip_index_token

PROBLEM_ID_PATTERN = re.compile(r"ID\s*:\s*(\d+)")

_BLOCK_TAGS = {
    "address",
    "article",
    "aside",
    "blockquote",
    "dd",
    "div",
    "dl",
    "dt",
    "figcaption",
    "figure",
    "footer",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    "header",
    "li",
    "ol",
    "p",
    "section",
    "table",
    "tr",
    "ul",
}
_WHITESPACE = re.compile(r"[ \t\r\f\v\n]+")


def parse(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def inner_text(tag: Optional[Tag]) -> str:
    """Approximate the browser's ``innerText``: block elements and ``<br>`` break lines."""
    if tag is None:
        return ""
    parts: List[str] = []
    for node in tag.descendants:
        if isinstance(node, NavigableString):
            if isinstance(node, Comment):
                continue
            if node.parent is not None and node.parent.name in ("script", "style"):
                continue
            parts.append(_WHITESPACE.sub(" ", str(node)))
        elif isinstance(node, Tag):
            if node.name == "br":
                parts.append("\n")
            elif node.name in _BLOCK_TAGS:
                parts.append("\n")
    return normalize_lines("".join(parts))


def select_first(root: Tag, selectors: Iterable[str]) -> Optional[Tag]:
    """Return the first match of the first selector that matches anything."""
    for selector in selectors:
        found = root.select_one(selector)
        if found is not None:
            return found
    return None


def image_sources(root: Optional[Tag], selector: str = "img") -> List[str]:
    """Collect ``src`` (falling back to ``data-src``) of every image under ``root``."""
    if root is None:
        return []
    sources: List[str] = []
    for img in root.select(selector):
        src = (img.get("src") or "").strip() or (img.get("data-src") or "").strip()
        if src:
            sources.append(src)
    return sources


def scan_sections(soup: Tag, selectors: Selectors) -> Dict[str, Tag]:
    """Map each section block's trimmed title text to the block itself."""
    blocks: Dict[str, Tag] = {}
    for block in soup.select(selectors.section_block):
        title = block.select_one(selectors.section_title)
        if title is None:
            continue
        label = inner_text(title)
        if label and label not in blocks:
            blocks[label] = block
    return blocks


def section_text(block: Optional[Tag], selectors: Selectors) -> str:
    if block is None:
        return ""
    details = block.select(selectors.section_detail)
    return "\n".join(inner_text(detail) for detail in details)


def _image_section(block: Optional[Tag], selectors: Selectors) -> Section:
    section = Section(label=IMAGE_DIAGNOSIS)
    if block is None:
        return section
    if block.select(selectors.section_images):
        section.images = image_sources(block, selectors.section_images)
        section.caption = inner_text(block.select_one(selectors.figure_caption))
    else:
        # Caption-only block: the detail text carries an index prefix.
        detail = block.select_one(selectors.section_detail)
        section.caption = strip_index_token(inner_text(detail))
    return section


def extract_explanation(
    html: str,
    selectors: Selectors,
    labels: Sequence[str] = FULL_SECTION_LABELS,
) -> ExplanationRecord:
    """Read every labelled explanation section from a revealed answer page."""
    soup = parse(html)
    blocks = scan_sections(soup, selectors)
    sections: Dict[str, Section] = {}
    for label in labels:
        block = blocks.get(label)
        sections[label] = Section(label=label, text=section_text(block, selectors))
    sections[IMAGE_DIAGNOSIS] = _image_section(blocks.get(IMAGE_DIAGNOSIS), selectors)
    correct_answer = inner_text(soup.select_one(selectors.correct_answer))
    return ExplanationRecord(sections=sections, correct_answer=correct_answer)


def extract_question_text(html: str, selectors: Selectors) -> str:
    container = select_first(parse(html), selectors.question_container)
    if container is None:
        return ""
    return inner_text(container.select_one(selectors.question_text))


def extract_choices(soup: Tag, selectors: Selectors) -> List[str]:
    texts = (inner_text(el) for el in soup.select(selectors.choices))
    return dedupe(text for text in texts if text)


def extract_problem(
    html: str,
    selectors: Selectors,
    ordinal: int,
    question_text: Optional[str] = None,
) -> ProblemRecord:
    """Read the question-side fields; ``question_text`` overrides the snapshot value."""
    soup = parse(html)

    number = ""
    header = select_first(soup, selectors.header)
    if header is not None:
        number = inner_text(header.select_one(selectors.problem_number))

    container = select_first(soup, selectors.question_container)
    if question_text is None:
        question_text = (
            inner_text(container.select_one(selectors.question_text))
            if container is not None
            else ""
        )

    problem_id = ""
    footer = soup.select_one(selectors.problem_footer)
    if footer is not None:
        match = PROBLEM_ID_PATTERN.search(inner_text(footer))
        if match:
            problem_id = match.group(1)

    return ProblemRecord(
        ordinal=ordinal,
        number=number,
        problem_id=problem_id,
        question_text=question_text,
        images=image_sources(container, selectors.question_images),
        choices=extract_choices(soup, selectors),
    )


def extract_reference(html: str, selectors: Selectors) -> Optional[ReferenceRecord]:
    """Read the supplementary reference block, or ``None`` when the page has none."""
    block = parse(html).select_one(selectors.reference_block)
    if block is None:
        return None
    detail = block.select_one(selectors.reference_detail)
    return ReferenceRecord(
        title=inner_text(block.select_one(selectors.reference_title)),
        text=inner_text(detail),
        images=image_sources(detail),
    )


def control_label(html: str, selector: str) -> str:
    """Visible label of the first control matching ``selector``; empty when absent."""
    return inner_text(parse(html).select_one(selector))


def has_element(html: str, selector: str) -> bool:
    return parse(html).select_one(selector) is not None
