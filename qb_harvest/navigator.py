"""State machine that walks one question page through its lifecycle."""

from __future__ import annotations

import enum
import logging

from .browser import BrowserSession
from .config import NO_QUESTION_TEXT, HarvestConfig
from .content import control_label, extract_question_text, has_element
from .waits import poll

logger = logging.getLogger("qb_harvest")


class NavState(enum.Enum):
    AWAITING_CONTENT = "awaiting_content"
    CHOICES_VISIBLE = "choices_visible"
    ANSWER_REVEALED = "answer_revealed"
    EXPLANATION_READY = "explanation_ready"
    ADVANCING = "advancing"
    END = "end"


class ItemNavigator:
    """Drive the page from "question shown" to "next question shown".

    Every wait is bounded and every click is preceded by a visibility check.
    Methods report failure through return values; the harvest loop decides
    whether a failure skips the item or ends the run.
    """

    def __init__(self, session: BrowserSession, config: HarvestConfig) -> None:
        self.session = session
        self.config = config
        self.selectors = config.selectors
        self.timings = config.timings
        self.state = NavState.AWAITING_CONTENT
        self.position = 0

    def _label(self) -> str:
        return f"問題 {self.position + 1}"

    async def await_content(self) -> bool:
        """Scroll and poll until the readiness marker is visible.

        A timeout is logged and reported but not fatal: the item still goes
        through the reveal and explanation stages, and the explanation wait
        decides whether it is usable.
        """
        self.state = NavState.AWAITING_CONTENT
        await self.session.pause(self.timings.settle_delay)

        async def check() -> bool:
            await self.session.scroll_to_bottom()
            return await self.session.wait_visible(
                self.selectors.content_ready, self.timings.poll_interval
            )

        result = await poll(
            check,
            interval=self.timings.poll_interval,
            timeout=self.timings.ready_timeout,
            sleep=self.session.pause,
        )
        if not result:
            logger.warning(
                "%s: content not ready within %.0fs; continuing",
                self._label(),
                self.timings.ready_timeout,
            )
            return False
        self.state = NavState.CHOICES_VISIBLE
        return True

    async def read_question_text(self) -> str:
        """Poll the question body; missing text usually means it is still rendering."""

        async def check() -> str:
            return extract_question_text(await self.session.snapshot(), self.selectors)

        result = await poll(
            check,
            attempts=self.timings.question_text_attempts,
            interval=self.timings.question_text_interval,
            accept=lambda text: bool(text.strip()),
            sleep=self.session.pause,
        )
        if not result:
            logger.warning("%s: question text not found", self._label())
            return NO_QUESTION_TEXT
        return result.value or NO_QUESTION_TEXT

    async def _sub_advance(self, step: int) -> None:
        await self.session.pause(self.timings.settle_delay)
        await self.session.scroll_to_bottom()
        if not await self.session.wait_visible(
            self.selectors.answer_section, self.timings.sub_view_timeout
        ):
            logger.error("%s: sub-view %d controls not visible", self._label(), step)
            return
        html = await self.session.snapshot()
        if not has_element(html, self.selectors.sub_advance_button):
            logger.error("%s: sub-view %d advance control missing", self._label(), step)
            return
        await self.session.click(self.selectors.sub_advance_button)
        if not await self.session.wait_visible(
            self.selectors.sub_view_ready, self.timings.sub_view_timeout
        ):
            logger.error("%s: sub-view %d did not load", self._label(), step)

    async def advance_sub_views(self) -> None:
        """Step through the intermediate views of a multi-part question."""
        for step in range(1, self.config.pre_reveal_advances + 1):
            try:
                await self._sub_advance(step)
            except Exception as exc:  # pylint: disable=broad-except
                logger.error("%s: sub-view %d advance failed: %s", self._label(), step, exc)
            await self.session.pause(self.timings.after_click_delay)
        if self.config.pre_reveal_advances:
            await self.session.scroll_to_bottom()
            await self.session.wait_visible(
                self.selectors.answer_section, self.timings.sub_view_timeout
            )

    async def reveal_answer(self) -> bool:
        """Click the reveal control when it is present and correctly labelled."""
        self.state = NavState.ANSWER_REVEALED
        button = self.selectors.reveal_button
        if not await self.session.wait_visible(button, self.timings.control_timeout):
            logger.error("%s: reveal control not visible", self._label())
            return False
        expected = self.config.reveal_label
        if expected:
            label = control_label(await self.session.snapshot(), button)
            if expected not in label:
                logger.error(
                    "%s: reveal control label mismatch: %r", self._label(), label
                )
                return False
        try:
            await self.session.click(button)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("%s: reveal click failed: %s", self._label(), exc)
            return False
        await self.session.pause(self.timings.after_click_delay)
        return True

    async def await_explanation(self) -> bool:
        ready = await self.session.wait_visible(
            self.selectors.answer_marker, self.timings.explanation_timeout
        )
        if not ready:
            logger.error("%s: explanation did not appear", self._label())
            return False
        self.state = NavState.EXPLANATION_READY
        logger.info("%s: explanation is visible", self._label())
        return True

    async def skip_unavailable(self) -> None:
        """Best-effort move past an item whose explanation never appeared."""
        self.state = NavState.ADVANCING
        try:
            html = await self.session.snapshot()
            if has_element(html, self.selectors.next_button):
                await self.session.click(self.selectors.next_button)
                await self.session.pause(self.timings.after_click_delay)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("%s: could not skip to the next item: %s", self._label(), exc)
        self.position += 1
        self.state = NavState.AWAITING_CONTENT

    async def advance(self) -> bool:
        """Move to the next item; a failure here ends the harvest."""
        self.state = NavState.ADVANCING
        try:
            if not await self.session.wait_visible(
                self.selectors.next_button, self.timings.advance_timeout
            ):
                raise LookupError("next-item control not visible")
            await self.session.click(self.selectors.next_button)
            await self.session.pause(self.timings.after_click_delay)
            if not await self.session.wait_visible(
                self.selectors.content_ready, self.timings.advance_timeout
            ):
                raise TimeoutError("next item did not load")
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("%s: advancing to the next item failed: %s", self._label(), exc)
            self.state = NavState.END
            return False
        self.position += 1
        self.state = NavState.AWAITING_CONTENT
        return True

    def finish(self) -> None:
        self.state = NavState.END
