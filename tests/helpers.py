"""Page builders and fakes shared by the test modules."""

from __future__ import annotations

import base64
import io
from typing import Dict, List, Optional, Sequence

import requests
from bs4 import BeautifulSoup
from PIL import Image

from qb_harvest.config import Selectors, Timings


def png_bytes(width: int = 40, height: int = 20, color: str = "red") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def png_data_url(width: int = 40, height: int = 20) -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes(width, height)).decode()


def question_page(
    number: str = "1",
    text: str = "問題文",
    images: Sequence[str] = (),
    choices: Sequence[str] = (),
    problem_id: str = "100",
    reveal_label: str = "解答を確認する",
    next_button: bool = False,
) -> str:
    figures = "".join(f'<div class="figure"><img src="{src}"></div>' for src in images)
    options = "".join(f'<li><div class="ans">{choice}</div></li>' for choice in choices)
    nxt = '<div class="toNextWrapper--btn">次の問題へ</div>' if next_button else ""
    return f"""
    <html><body>
      <div class="header"><span>{number}</span></div>
      <div class="question-content"><div class="body"><p>{text}</p></div>{figures}</div>
      <ul class="multiple-answer-options">{options}</ul>
      <div class="question-footer">ID : {problem_id}</div>
      <div id="answerCbtSection"><div class="btn">{reveal_label}</div></div>
      {nxt}
    </body></html>
    """


def answer_page(
    sections: Optional[Dict[str, str]] = None,
    images: Sequence[str] = (),
    caption: str = "",
    correct: str = "",
    next_button: bool = True,
    reference: Optional[Dict[str, str]] = None,
) -> str:
    blocks = "".join(
        f'<div class="descContent"><div class="descContent--title">{label}</div>'
        f'<div class="descContent--detail">{text}</div></div>'
        for label, text in (sections or {}).items()
    )
    if images:
        figures = "".join(f'<img src="{src}">' for src in images)
        blocks += (
            '<div class="descContent"><div class="descContent--title">画像診断</div>'
            f'<div class="figure">{figures}<p>{caption}</p></div></div>'
        )
    basic = ""
    if reference is not None:
        basic = (
            '<div class="basic"><div class="basic--title"><span>'
            f'{reference.get("title", "")}</span></div>'
            f'<div class="basicsContent--detail">{reference.get("text", "")}</div></div>'
        )
    nxt = '<div class="toNextWrapper--btn">次の問題へ</div>' if next_button else ""
    return f"""
    <html><body>
      <div class="header"><span>header</span></div>
      <div class="questionResult"><div class="resultContent--currentCorrect">
        <span class="resultContent--currentCorrectAnswer">{correct}</span>
      </div></div>
      {blocks}{basic}{nxt}
    </body></html>
    """


class FakeSession:
    """Scripted BrowserSession: each item is a question page and an answer page.

    An answer page of ``None`` models an explanation that never appears.
    """

    def __init__(
        self,
        items: List[tuple],
        selectors: Optional[Selectors] = None,
        images: Optional[Dict[str, bytes]] = None,
    ) -> None:
        self.items = items
        self.selectors = selectors or Selectors()
        self.images = images or {}
        self.index = 0
        self.revealed = False
        self.clicks: List[str] = []
        self.scrolls = 0
        self.pauses: List[float] = []
        self.captured: List[str] = []

    @property
    def html(self) -> str:
        if self.index >= len(self.items):
            return "<html><body></body></html>"
        question, answer = self.items[self.index]
        if self.revealed and answer is not None:
            return answer
        return question

    async def snapshot(self) -> str:
        return self.html

    async def click(self, selector: str) -> None:
        self.clicks.append(selector)
        if selector == self.selectors.reveal_button:
            self.revealed = True
        elif selector == self.selectors.next_button:
            self.index += 1
            self.revealed = False

    async def wait_visible(self, selector: str, timeout: float) -> bool:
        return BeautifulSoup(self.html, "html.parser").select_one(selector) is not None

    async def scroll_to_bottom(self) -> None:
        self.scrolls += 1

    async def screenshot_image(self, src: str, timeout: float) -> bytes:
        self.captured.append(src)
        if src not in self.images:
            raise TimeoutError(f"image {src} never loaded")
        return self.images[src]

    async def cookies(self):
        return [("session", "abc"), ("csrf", "xyz")]

    async def location(self):
        return f"https://app.example/q/{self.index + 1}"

    async def pause(self, seconds: float) -> None:
        self.pauses.append(seconds)


class FakeResponse:
    def __init__(self, content: bytes, status_code: int = 200, content_type: str = "image/png"):
        self.content = content
        self.status_code = status_code
        self.headers = {"Content-Type": content_type}

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeHttp:
    """Stands in for requests.Session; unknown URLs fail like an unreachable host."""

    def __init__(self, responses: Optional[Dict[str, FakeResponse]] = None) -> None:
        self.responses = responses or {}
        self.calls: List[tuple] = []

    def get(self, url, headers=None, timeout=None):
        self.calls.append((url, headers, timeout))
        if url not in self.responses:
            raise requests.ConnectionError(f"cannot reach {url}")
        return self.responses[url]


def fast_timings() -> Timings:
    return Timings(
        settle_delay=0,
        poll_interval=0,
        ready_timeout=0,
        control_timeout=0,
        sub_view_timeout=0,
        explanation_timeout=0,
        advance_timeout=0,
        after_click_delay=0,
        question_text_attempts=3,
        question_text_interval=0,
        image_load_timeout=0,
        fetch_timeout=1,
    )
