"""QR image rendering and caching for short links.

Flow Diagram — get_qr_image()
=============================
::
    ┌─────────────┐
    │ GET qr:code │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ render  │  │ return  │
│ PNG     │  │ bytes   │
└────┬────┘  └─────────┘
     ▼
┌─────────┐
│ PTTL    │
│url:code │
└────┬────┘
 > 0?│
┌────┴─────┐
│ YES       │ NO
▼           ▼
SET qr:code  return uncached
PX = PTTL

Key Behaviours
===============
- The image encodes the canonical short URL ``{BASE_URL}/{short_code}``.
- Rendering is deterministic: the same short code always yields the same bytes.
- The QR entry's TTL is the remaining TTL of the link entry, so it can never
  outlive the link. With no link entry to borrow from, nothing is cached.
- Rendering failure raises RenderFailed; cache failures are absorbed.
"""

import asyncio
import io
import logging

import qrcode
from qrcode.constants import ERROR_CORRECT_M

from shortlink.cache import ResolutionCache
from shortlink.errors import RenderFailed

__all__ = ["QRRenderer", "QRImageCache"]

logger = logging.getLogger(__name__)


class QRRenderer:
    def __init__(self, box_size: int = 8, border: int = 4) -> None:
        self.box_size = box_size
        self.border = border

    def render(self, data: str) -> bytes:
        qr = qrcode.QRCode(
            version=None,
            error_correction=ERROR_CORRECT_M,
            box_size=self.box_size,
            border=self.border,
        )
        qr.add_data(data)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")
        buffered = io.BytesIO()
        img.save(buffered, format="PNG")
        return buffered.getvalue()


class QRImageCache:
    def __init__(self, cache: ResolutionCache, renderer: QRRenderer, base_url: str) -> None:
        self._cache = cache
        self._renderer = renderer
        self._base_url = base_url.rstrip("/")

    def short_url(self, short_code: str) -> str:
        return f"{self._base_url}/{short_code}"

    async def get_qr_image(self, short_code: str) -> bytes:
        """Return PNG bytes for ``short_code``, rendering and caching on a miss.

        Raises:
            RenderFailed: the QR image could not be produced.
        """
        cached = await self._cache.get_qr(short_code)
        if cached:
            return cached

        try:
            png = await asyncio.to_thread(self._renderer.render, self.short_url(short_code))
        except Exception as exc:
            logger.error(f"QR render failed for {short_code}: {exc}")
            raise RenderFailed(short_code) from exc

        ttl_ms = await self._cache.link_ttl_ms(short_code)
        if ttl_ms is None:
            logger.debug(f"No link TTL for {short_code}; QR image left uncached")
            return png

        await self._cache.set_qr(short_code, png, ttl_ms)
        return png
