"""Interleave generated item pages with page groups of a reference PDF."""

from __future__ import annotations

import io
import logging
from typing import List, Sequence

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError

logger = logging.getLogger("qb_harvest")


class MergeError(RuntimeError):
    """Raised when an input PDF cannot be read or the output cannot be written."""


def reference_page_groups(page_count: int, item_count: int, group_size: int) -> List[range]:
    """Reference pages copied ahead of each item; groups past the end are empty."""
    groups = []
    for index in range(item_count):
        start = min(index * group_size, page_count)
        stop = min(start + group_size, page_count)
        groups.append(range(start, stop))
    return groups


def _reader(data: bytes, label: str) -> PdfReader:
    try:
        return PdfReader(io.BytesIO(data))
    except (PdfReadError, ValueError, OSError) as exc:
        raise MergeError(f"Could not read {label}: {exc}") from exc


def merge_with_reference(
    reference_pdf: bytes,
    item_pdfs: Sequence[bytes],
    group_size: int = 4,
) -> bytes:
    """Copy ``group_size`` reference pages, then one item's pages, for each item.

    Pages are copied as-is; a reference document shorter than
    ``len(item_pdfs) * group_size`` simply contributes fewer pages.
    """
    reference = _reader(reference_pdf, "reference document")
    page_count = len(reference.pages)
    groups = reference_page_groups(page_count, len(item_pdfs), group_size)
    if len(item_pdfs) * group_size > page_count:
        logger.info(
            "Reference document has %d pages; groups beyond it are left empty",
            page_count,
        )

    writer = PdfWriter()
    for index, (group, item_pdf) in enumerate(zip(groups, item_pdfs), start=1):
        for page_index in group:
            writer.add_page(reference.pages[page_index])
        item_reader = _reader(item_pdf, f"pages for item {index}")
        for page in item_reader.pages:
            writer.add_page(page)

    buffer = io.BytesIO()
    try:
        writer.write(buffer)
    except (OSError, ValueError) as exc:
        raise MergeError(f"Could not write merged document: {exc}") from exc
    return buffer.getvalue()
