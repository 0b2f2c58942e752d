"""Data models used throughout the harvest pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Union

ImageRef = str


@dataclass(frozen=True)
class ResolvedImage:
    """An image reference turned into something the document can embed.

    ``embeddable`` is a ``data:`` URL when resolution succeeded, the original
    URL when only a degraded link could be produced, and ``None`` when the
    image could not be resolved at all.
    """

    source: ImageRef
    embeddable: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def is_inline(self) -> bool:
        return bool(self.embeddable) and self.embeddable.startswith("data:")

    @property
    def is_link(self) -> bool:
        return bool(self.embeddable) and not self.is_inline


ImageEntry = Union[ImageRef, ResolvedImage]


@dataclass
class Section:
    """A labelled text block from the explanation panel."""

    label: str
    text: str = ""
    images: List[ImageEntry] = field(default_factory=list)
    caption: str = ""

    def is_empty(self) -> bool:
        return not self.text and not self.caption and not self.images


@dataclass
class ExplanationRecord:
    """All sections of one revealed explanation, keyed by label."""

    sections: Dict[str, Section] = field(default_factory=dict)
    correct_answer: str = ""

    def section(self, label: str) -> Section:
        return self.sections.get(label) or Section(label=label)

    def is_empty(self) -> bool:
        if self.correct_answer:
            return False
        return all(section.is_empty() for section in self.sections.values())


@dataclass
class ProblemRecord:
    """Question-side fields captured before the answer is revealed."""

    ordinal: int
    number: str = ""
    problem_id: str = ""
    question_text: str = ""
    images: List[ImageEntry] = field(default_factory=list)
    choices: List[str] = field(default_factory=list)


@dataclass
class ReferenceRecord:
    """Supplementary reference material shown next to some explanations."""

    title: str = ""
    text: str = ""
    images: List[ImageEntry] = field(default_factory=list)


@dataclass
class Item:
    """One harvested unit: explanation plus optional problem and reference."""

    ordinal: int
    explanation: ExplanationRecord
    problem: Optional[ProblemRecord] = None
    reference: Optional[ReferenceRecord] = None

    def image_lists(self) -> Iterator[List[ImageEntry]]:
        """Yield every mutable image list carried by this item."""
        if self.problem is not None:
            yield self.problem.images
        for section in self.explanation.sections.values():
            yield section.images
        if self.reference is not None:
            yield self.reference.images
