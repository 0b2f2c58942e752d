"""Configuration objects, selector defaults and pipeline variant presets."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .utils import safe_filename

DEFAULT_LOGIN_URL = "https://login.medilink-study.com/login"
DEFAULT_REFERER = "https://cbt.medilink-study.com"

KEYWORD = "KEYWORD"
KEY_POINTS = "解法の要点"
DIAGNOSIS = "診断"
CHOICE_ANALYSIS = "選択肢解説"
GUIDELINE = "ガイドライン"
IMAGE_DIAGNOSIS = "画像診断"

FULL_SECTION_LABELS: Tuple[str, ...] = (
    KEYWORD,
    KEY_POINTS,
    DIAGNOSIS,
    CHOICE_ANALYSIS,
    GUIDELINE,
)
SHORT_SECTION_LABELS: Tuple[str, ...] = (KEY_POINTS, CHOICE_ANALYSIS, GUIDELINE)

REVEAL_LABEL = "解答を確認する"
NO_QUESTION_TEXT = "【問題文なし】"

IMAGE_STRATEGIES = ("fetch", "screenshot")


@dataclass
class Selectors:
    """CSS selectors for every element the harvester reads or clicks."""

    content_ready: str = "div.header, [data-v-1e8b4a81].header"
    header: Tuple[str, ...] = ("div.header", "[data-v-1e8b4a81].header")
    problem_number: str = "span"
    question_container: Tuple[str, ...] = (
        "div.question-content",
        "[data-v-3fb3fcc8] .question-content",
    )
    question_text: str = ".body p"
    question_images: str = "div.figure img"
    choices: str = "ul.multiple-answer-options li div.ans"
    problem_footer: str = "div.question-footer"
    answer_section: str = "div#answerCbtSection"
    sub_advance_button: str = "div#answerCbtSection > div.btn"
    sub_view_ready: str = "div.question-content"
    reveal_button: str = "div#answerCbtSection .btn"
    answer_marker: str = "div.questionResult .resultContent--currentCorrectAnswer"
    correct_answer: str = (
        "div.resultContent--currentCorrect span.resultContent--currentCorrectAnswer"
    )
    section_block: str = "div.descContent"
    section_title: str = ".descContent--title"
    section_detail: str = ".descContent--detail"
    section_images: str = "img"
    figure_caption: str = "div.figure p"
    reference_block: str = "div.basic"
    reference_title: str = ".basic--title span"
    reference_detail: str = ".basicsContent--detail"
    next_button: str = "div.toNextWrapper--btn"
    login_username: str = 'input[name="username"]'
    login_password: str = 'input[name="password"]'
    login_submit: str = 'button[type="submit"]'


@dataclass
class Timings:
    """Delays and bounded-wait ceilings, all in seconds."""

    settle_delay: float = 10.0
    poll_interval: float = 0.5
    ready_timeout: float = 30.0
    control_timeout: float = 5.0
    sub_view_timeout: float = 10.0
    explanation_timeout: float = 15.0
    advance_timeout: float = 10.0
    after_click_delay: float = 2.0
    question_text_attempts: int = 60
    question_text_interval: float = 0.5
    image_load_timeout: float = 5.0
    fetch_timeout: float = 15.0
    navigation_timeout: float = 30.0


@dataclass
class LayoutConfig:
    """Page geometry, fonts and typography for the assembled document."""

    page_width: float = 595.28
    page_height: float = 841.89
    margin: float = 40.0
    image_columns: int = 3
    cell_padding: float = 2.0
    image_spacing: float = 5.0
    heading_font: str = "HeiseiKakuGo-W5"
    body_font: str = "HeiseiMin-W3"
    font_path: Optional[Path] = None
    font_sizes: Dict[str, float] = field(
        default_factory=lambda: {
            "header": 12,
            "question": 12,
            "choices": 12,
            "explanationHeader": 12,
            "analysis": 10.5,
            "correctAnswer": 12,
            "error": 10,
        }
    )

    @property
    def usable_width(self) -> float:
        return self.page_width - 2 * self.margin

    @property
    def usable_height(self) -> float:
        return self.page_height - 2 * self.margin

    @property
    def max_image_width(self) -> float:
        return self.usable_width / self.image_columns

    @property
    def max_image_height(self) -> float:
        """Tallest image that still fits on a page together with its trailing spacer."""
        return self.usable_height - self.image_spacing


@dataclass
class HarvestConfig:
    """Top-level settings for one harvest-and-assemble run."""

    start_location: str
    item_count: int
    output_name: str
    merge_with_reference: bool = False
    reference_document_path: Optional[Path] = None
    output_root: Path = Path("output")
    login_url: str = DEFAULT_LOGIN_URL
    referer: str = DEFAULT_REFERER
    headless: bool = True
    include_problem: bool = True
    include_reference: bool = False
    carry_reference_forward: bool = False
    pre_reveal_advances: int = 0
    reveal_label: Optional[str] = None
    section_labels: Tuple[str, ...] = FULL_SECTION_LABELS
    include_image_heading: bool = False
    image_strategy: str = "fetch"
    fallback_to_source: bool = False
    merge_group_size: int = 4
    selectors: Selectors = field(default_factory=Selectors)
    timings: Timings = field(default_factory=Timings)
    layout: LayoutConfig = field(default_factory=LayoutConfig)

    def __post_init__(self) -> None:
        if self.image_strategy not in IMAGE_STRATEGIES:
            raise ValueError(
                f"Unknown image strategy {self.image_strategy!r}; "
                f"expected one of {', '.join(IMAGE_STRATEGIES)}"
            )
        if self.item_count < 0:
            raise ValueError("item_count must not be negative")
        if self.merge_group_size < 1:
            raise ValueError("merge_group_size must be at least 1")

    @property
    def output_path(self) -> Path:
        suffix = "_merged" if self.merge_with_reference else ""
        return self.output_root / f"{safe_filename(self.output_name)}{suffix}.pdf"


# Site revisions differ in which blocks exist and which marker signals the answer.
VARIANTS: Dict[str, Dict[str, Any]] = {
    "standard": {
        "include_problem": True,
        "section_labels": SHORT_SECTION_LABELS,
        "image_strategy": "screenshot",
        "fallback_to_source": True,
        "answer_marker": "div.resultContent--currentCorrect",
        "reveal_button": "div#answerCbtSection div.btn",
        "settle_delay": 3.0,
        "explanation_timeout": 10.0,
    },
    "reference": {
        "include_problem": True,
        "include_reference": True,
        "section_labels": SHORT_SECTION_LABELS,
        "image_strategy": "screenshot",
        "fallback_to_source": True,
        "answer_marker": "div.resultContent--currentCorrect",
        "reveal_button": "div#answerCbtSection div.btn",
        "explanation_timeout": 10.0,
    },
    "continuous": {
        "include_problem": False,
        "pre_reveal_advances": 3,
        "reveal_label": REVEAL_LABEL,
        "image_strategy": "fetch",
    },
    "merge": {
        "include_problem": False,
        "pre_reveal_advances": 3,
        "reveal_label": REVEAL_LABEL,
        "image_strategy": "screenshot",
        "include_image_heading": True,
        "merge_with_reference": True,
    },
}

_SELECTOR_KEYS = {"answer_marker", "reveal_button"}
_TIMING_KEYS = {"settle_delay", "explanation_timeout"}


def build_config(variant: str, **overrides: Any) -> HarvestConfig:
    """Create a HarvestConfig from a named preset plus explicit overrides."""
    try:
        preset = dict(VARIANTS[variant])
    except KeyError as exc:
        raise ValueError(
            f"Unknown variant {variant!r}; expected one of {', '.join(VARIANTS)}"
        ) from exc

    selector_values = {k: preset.pop(k) for k in list(preset) if k in _SELECTOR_KEYS}
    timing_values = {k: preset.pop(k) for k in list(preset) if k in _TIMING_KEYS}
    preset.update(overrides)

    # Explicit selector or timing objects replace the preset values wholesale.
    selectors = preset.pop("selectors", None) or Selectors(**selector_values)
    timings = preset.pop("timings", None) or Timings(**timing_values)
    return HarvestConfig(selectors=selectors, timings=timings, **preset)
