"""High-level orchestration: harvest items, resolve images, build the PDF."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .browser import BrowserSession, launch_session
from .config import HarvestConfig
from .content import extract_explanation, extract_problem, extract_reference
from .document import AssemblyOptions, DocumentDescription, assemble
from .images import (
    AuthContext,
    HttpImageFetcher,
    ImageResolver,
    ScreenshotCapturer,
    resolve_entries,
    resolve_item_images,
)
from .merge import MergeError, merge_with_reference
from .models import Item, ReferenceRecord
from .navigator import ItemNavigator
from .render import PdfRenderer, RenderError

logger = logging.getLogger("qb_harvest")


@dataclass
class HarvestState:
    """Per-run accumulator; a fresh instance is created for every harvest."""

    items: List[Item] = field(default_factory=list)
    last_reference: Optional[ReferenceRecord] = None
    skipped: int = 0
    ended_early: bool = False

    def append(self, item: Item) -> None:
        self.items.append(item)


@dataclass
class RunMetrics:
    """Timing details for a completed run."""

    output_path: Optional[Path]
    item_count: int
    skipped: int
    harvest_seconds: float
    total_seconds: float


def build_resolver(session: BrowserSession, config: HarvestConfig) -> ImageResolver:
    if config.image_strategy == "screenshot":
        return ImageResolver(
            capturer=ScreenshotCapturer(
                session,
                timeout=config.timings.image_load_timeout,
                fallback_to_source=config.fallback_to_source,
            )
        )
    return ImageResolver(
        fetcher=HttpImageFetcher(
            referer=config.referer,
            timeout=config.timings.fetch_timeout,
            fallback_to_source=config.fallback_to_source,
        )
    )


async def _auth(session: BrowserSession) -> AuthContext:
    return AuthContext.from_cookies(await session.cookies(), await session.location())


async def _harvest_items(
    session: BrowserSession,
    config: HarvestConfig,
    resolver: Optional[ImageResolver],
    navigator: ItemNavigator,
    state: HarvestState,
) -> None:
    selectors = config.selectors
    for index in range(config.item_count):
        ordinal = index + 1
        logger.info("--- 問題 %d のスクレイピング開始 ---", ordinal)
        await navigator.await_content()

        problem = None
        if config.include_problem:
            question_text = await navigator.read_question_text()
            problem = extract_problem(
                await session.snapshot(), selectors, ordinal, question_text
            )
            if resolver is not None:
                # Question figures may be replaced once the answer is revealed.
                await resolve_entries(problem.images, resolver, await _auth(session))

        await navigator.advance_sub_views()
        await navigator.reveal_answer()
        if not await navigator.await_explanation():
            state.skipped += 1
            await navigator.skip_unavailable()
            continue

        html = await session.snapshot()
        explanation = extract_explanation(html, selectors, config.section_labels)
        if explanation.is_empty():
            logger.info("問題 %d: no explanation content; treating as end of content", ordinal)
            return

        reference = None
        if config.include_reference:
            reference = extract_reference(html, selectors)
            if reference is not None:
                state.last_reference = reference
            elif config.carry_reference_forward:
                reference = state.last_reference

        item = Item(
            ordinal=ordinal,
            explanation=explanation,
            problem=problem,
            reference=reference,
        )
        if resolver is not None:
            await resolve_item_images(item, resolver, await _auth(session))
        state.append(item)
        logger.debug("問題 %d のデータ: %s", ordinal, item)

        if ordinal < config.item_count and not await navigator.advance():
            state.ended_early = True
            return


async def harvest(
    session: BrowserSession,
    config: HarvestConfig,
    resolver: Optional[ImageResolver] = None,
) -> HarvestState:
    """Walk up to ``config.item_count`` items and return everything collected.

    Faults are handled at the smallest scope: a missing explanation skips the
    item, a failed navigation ends the loop, and an empty explanation marks
    the end of the content. Items gathered before any of these are kept.
    """
    state = HarvestState()
    navigator = ItemNavigator(session, config)

    try:
        await _harvest_items(session, config, resolver, navigator, state)
    except Exception:  # pylint: disable=broad-except
        logger.exception("Harvest stopped by an unexpected error")
        state.ended_early = True

    navigator.finish()
    logger.info(
        "Harvested %d item(s), skipped %d", len(state.items), state.skipped
    )
    return state


def assemble_document(items: List[Item], config: HarvestConfig) -> DocumentDescription:
    options = AssemblyOptions(
        section_labels=config.section_labels,
        include_image_heading=config.include_image_heading,
    )
    return assemble(items, config.layout, options)


def encode_document(
    description: DocumentDescription,
    config: HarvestConfig,
    renderer: Optional[PdfRenderer] = None,
) -> bytes:
    """Render the description, interleaving the reference PDF when configured."""
    renderer = renderer or PdfRenderer(config.layout)
    if not config.merge_with_reference:
        return renderer.render(description.blocks)

    if config.reference_document_path is None:
        raise MergeError("merge_with_reference requires reference_document_path")
    try:
        reference_bytes = Path(config.reference_document_path).read_bytes()
    except OSError as exc:
        raise MergeError(f"Could not read {config.reference_document_path}: {exc}") from exc
    item_pdfs = [renderer.render(pages.blocks) for pages in description.items]
    return merge_with_reference(reference_bytes, item_pdfs, config.merge_group_size)


def write_document(items: List[Item], config: HarvestConfig) -> Optional[Path]:
    """Assemble, encode and save; encoder failures are logged and nothing is written."""
    if not items:
        logger.warning("No items were harvested; skipping document generation")
        return None
    description = assemble_document(items, config)
    try:
        data = encode_document(description, config)
    except (RenderError, MergeError) as exc:
        logger.error("Document generation failed: %s", exc)
        return None

    output_path = config.output_path
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(data)
    logger.info("Saved PDF to %s", output_path)
    return output_path


async def run_pipeline(
    config: HarvestConfig,
    username: str,
    password: str,
) -> RunMetrics:
    """Log in, harvest from ``config.start_location`` and write the final PDF."""
    overall_start = time.perf_counter()
    async with launch_session(
        headless=config.headless,
        navigation_timeout=config.timings.navigation_timeout,
    ) as session:
        await session.login(config.login_url, username, password, config.selectors)
        await session.open(config.start_location)
        resolver = build_resolver(session, config)
        harvest_start = time.perf_counter()
        state = await harvest(session, config, resolver)
        harvest_elapsed = time.perf_counter() - harvest_start

    output_path = write_document(state.items, config)
    return RunMetrics(
        output_path=output_path,
        item_count=len(state.items),
        skipped=state.skipped,
        harvest_seconds=harvest_elapsed,
        total_seconds=time.perf_counter() - overall_start,
    )
