"""Image resolution: inline decoding, authenticated fetch and element capture."""

from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence, Tuple
from urllib.parse import urljoin

import requests
from filetype import guess
from PIL import Image, UnidentifiedImageError

from .models import ImageEntry, ImageRef, Item, ResolvedImage

logger = logging.getLogger("qb_harvest")

MAX_IMAGE_BYTES = 10 * 1024 * 1024
ALLOWED_IMAGE_TYPES = {"png", "jpg", "jpeg", "gif", "webp", "bmp", "tiff"}

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/102.0.5005.63 Safari/537.36"
    ),
    "Accept-Language": "ja,en-US;q=0.9,en;q=0.8",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}


@dataclass(frozen=True)
class AuthContext:
    """Session credentials and page location forwarded with image requests."""

    cookie_header: str = ""
    page_url: str = ""

    @classmethod
    def from_cookies(
        cls, cookies: Sequence[Tuple[str, str]], page_url: str = ""
    ) -> "AuthContext":
        return cls("; ".join(f"{name}={value}" for name, value in cookies), page_url)


def detect_image_format(data: bytes) -> Optional[str]:
    """Detect image type using filetype; returns lowercase extension."""
    kind = guess(data)
    if kind and kind.mime.startswith("image/"):
        ext = kind.extension.lower()
        if ext == "jpeg":
            return "jpg"
        return ext
    return None


def infer_mime_type(content_type: Optional[str], data: bytes) -> Optional[str]:
    """Guess an image MIME type from the file signature or HTTP metadata."""
    detected = detect_image_format(data)
    if detected:
        return "image/jpeg" if detected == "jpg" else f"image/{detected}"
    if not content_type:
        return None
    mime = content_type.split(";")[0].strip().lower()
    if mime.startswith("image/"):
        return mime
    return None


def measure(data: bytes) -> Tuple[int, int]:
    """Return the natural pixel size of encoded image bytes."""
    with Image.open(io.BytesIO(data)) as image:
        return image.size


def to_data_url(mime: str, data: bytes) -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def decode_data_url(ref: ImageRef) -> bytes:
    header, _, payload = ref.partition(",")
    if not header.startswith("data:") or not payload:
        raise ValueError("not a data URL")
    if ";base64" not in header:
        raise ValueError("only base64 data URLs carry image bytes")
    return base64.b64decode(payload)


def resolve_inline(ref: ImageRef) -> ResolvedImage:
    """Measure an inline payload; the payload itself is kept as-is."""
    try:
        width, height = measure(decode_data_url(ref))
    except (ValueError, binascii.Error, OSError, UnidentifiedImageError) as exc:
        logger.warning("Could not measure inline image: %s", exc)
        return ResolvedImage(source=ref, embeddable=ref)
    return ResolvedImage(source=ref, embeddable=ref, width=width, height=height)


def unresolved(
    ref: ImageRef, fallback_to_source: bool, link: Optional[str] = None
) -> ResolvedImage:
    return ResolvedImage(source=ref, embeddable=(link or ref) if fallback_to_source else None)


class HttpImageFetcher:
    """Fetch remote images over HTTP with a browser-like header set."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        referer: Optional[str] = None,
        timeout: float = 15.0,
        fallback_to_source: bool = False,
    ) -> None:
        self.session = session or requests.Session()
        self.referer = referer
        self.timeout = timeout
        self.fallback_to_source = fallback_to_source

    def headers(self, auth: Optional[AuthContext]) -> Dict[str, str]:
        headers = dict(BROWSER_HEADERS)
        if self.referer:
            headers["Referer"] = self.referer
        if auth and auth.cookie_header:
            headers["Cookie"] = auth.cookie_header
        return headers

    def fetch(self, url: str, auth: Optional[AuthContext] = None) -> ResolvedImage:
        """Download ``url``; relative sources are joined to the page they came from."""
        target = urljoin(auth.page_url, url) if auth and auth.page_url else url
        try:
            resp = self.session.get(target, headers=self.headers(auth), timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Failed to fetch image %s: %s", target, exc)
            return unresolved(url, self.fallback_to_source, target)

        data = resp.content
        if len(data) > MAX_IMAGE_BYTES:
            logger.warning("Skipping %s: image larger than %s bytes", target, MAX_IMAGE_BYTES)
            return unresolved(url, self.fallback_to_source, target)

        content_type = resp.headers.get("Content-Type", "")
        mime = infer_mime_type(content_type, data)
        if not mime or mime.split("/")[1] not in ALLOWED_IMAGE_TYPES:
            logger.warning(
                "Skipping %s: unsupported image type (Content-Type=%s)",
                target,
                content_type,
            )
            return unresolved(url, self.fallback_to_source, target)

        try:
            width, height = measure(data)
        except (OSError, UnidentifiedImageError) as exc:
            logger.warning("Could not decode image %s: %s", target, exc)
            return unresolved(url, self.fallback_to_source, target)
        return ResolvedImage(
            source=url,
            embeddable=to_data_url(mime, data),
            width=width,
            height=height,
        )


class ImageCaptureSession(Protocol):
    async def screenshot_image(self, src: str, timeout: float) -> bytes: ...


class ScreenshotCapturer:
    """Capture the rendered image element from the live page instead of fetching it."""

    def __init__(
        self,
        session: ImageCaptureSession,
        timeout: float = 5.0,
        fallback_to_source: bool = True,
    ) -> None:
        self.session = session
        self.timeout = timeout
        self.fallback_to_source = fallback_to_source

    async def capture(self, url: str) -> ResolvedImage:
        try:
            data = await self.session.screenshot_image(url, self.timeout)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Image capture failed for %s: %s", url, exc)
            return unresolved(url, self.fallback_to_source)
        try:
            width, height = measure(data)
        except (OSError, UnidentifiedImageError) as exc:
            logger.error("Captured image for %s is not decodable: %s", url, exc)
            return unresolved(url, self.fallback_to_source)
        return ResolvedImage(
            source=url,
            embeddable=to_data_url("image/png", data),
            width=width,
            height=height,
        )


class ImageResolver:
    """Resolve image references once per run, using one remote strategy.

    Inline ``data:`` references are always decoded locally. Remote references
    go through either the HTTP fetcher or the screenshot capturer. Fetches for
    a single item run concurrently; captures share the browser page and stay
    sequential.
    """

    def __init__(
        self,
        fetcher: Optional[HttpImageFetcher] = None,
        capturer: Optional[ScreenshotCapturer] = None,
    ) -> None:
        if (fetcher is None) == (capturer is None):
            raise ValueError("Provide exactly one of fetcher or capturer")
        self.fetcher = fetcher
        self.capturer = capturer
        self._cache: Dict[ImageRef, ResolvedImage] = {}

    @property
    def concurrent(self) -> bool:
        return self.fetcher is not None

    def cached(self, ref: ImageRef) -> Optional[ResolvedImage]:
        return self._cache.get(ref)

    async def _resolve_uncached(
        self, ref: ImageRef, auth: Optional[AuthContext]
    ) -> ResolvedImage:
        if ref.startswith("data:"):
            return resolve_inline(ref)
        if self.capturer is not None:
            return await self.capturer.capture(ref)
        assert self.fetcher is not None
        return await asyncio.to_thread(self.fetcher.fetch, ref, auth)

    async def resolve(
        self, ref: ImageRef, auth: Optional[AuthContext] = None
    ) -> ResolvedImage:
        hit = self._cache.get(ref)
        if hit is not None:
            return hit
        resolved = await self._resolve_uncached(ref, auth)
        return self._cache.setdefault(ref, resolved)

    async def resolve_many(
        self, refs: Sequence[ImageRef], auth: Optional[AuthContext] = None
    ) -> List[ResolvedImage]:
        """Resolve ``refs`` preserving order; duplicates are resolved once."""
        pending = [ref for ref in dict.fromkeys(refs) if ref not in self._cache]
        if self.concurrent and len(pending) > 1:
            await asyncio.gather(*(self.resolve(ref, auth) for ref in pending))
        else:
            for ref in pending:
                await self.resolve(ref, auth)
        return [self._cache[ref] for ref in refs]


async def resolve_entries(
    entries: List[ImageEntry],
    resolver: ImageResolver,
    auth: Optional[AuthContext] = None,
) -> None:
    """Replace every raw reference in ``entries`` with its resolved image, in place."""
    positions = [idx for idx, entry in enumerate(entries) if isinstance(entry, str)]
    if not positions:
        return
    resolved = await resolver.resolve_many([entries[idx] for idx in positions], auth)
    for idx, image in zip(positions, resolved):
        entries[idx] = image


async def resolve_item_images(
    item: Item,
    resolver: ImageResolver,
    auth: Optional[AuthContext] = None,
) -> None:
    for entries in item.image_lists():
        await resolve_entries(entries, resolver, auth)
