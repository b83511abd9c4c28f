"""Image optimizer service.

Wraps Pillow to shrink and recompress uploads before they are stored:

- images wider than `max_width` are resized to that width, keeping the
  aspect ratio (never enlarged);
- JPEG and WebP are re-encoded at the configured quality, PNG with the
  configured zlib compression level;
- GIF is only re-encoded when it had to be resized.

Optimization is best effort. Any failure is logged and the original bytes
are returned unchanged, so an upload is never rejected because of it.

Example:
    optimizer = ImageOptimizer(max_width=1920)
    data = optimizer.optimize(raw_bytes, "image/png")
"""
from __future__ import annotations

import io
import logging

from PIL import Image

logger = logging.getLogger(__name__)

_PIL_FORMATS = {
    "image/jpeg": "JPEG",
    "image/png": "PNG",
    "image/webp": "WEBP",
    "image/gif": "GIF",
}


class ImageOptimizer:
    """Resize and recompress image bytes.

    Args:
        max_width: Maximum output width in pixels.
        jpeg_quality: Quality used when re-encoding JPEG.
        webp_quality: Quality used when re-encoding WebP.
        png_compress_level: zlib level (0-9) used when re-encoding PNG.
    """

    def __init__(
        self,
        max_width: int = 1920,
        jpeg_quality: int = 85,
        webp_quality: int = 85,
        png_compress_level: int = 8,
    ):
        self.max_width = max_width
        self.jpeg_quality = jpeg_quality
        self.webp_quality = webp_quality
        self.png_compress_level = png_compress_level

    def optimize(self, data: bytes, content_type: str) -> bytes:
        """Return optimized bytes for `data`, or `data` itself on failure."""
        try:
            return self._optimize(data, content_type)
        except Exception as exc:
            logger.warning(f"Image optimization failed for {content_type}, storing original: {exc}")
            return data

    def _optimize(self, data: bytes, content_type: str) -> bytes:
        fmt = _PIL_FORMATS.get(content_type)
        if fmt is None:
            return data

        img = Image.open(io.BytesIO(data))
        img.load()

        resized = False
        if img.width > self.max_width:
            height = max(1, round(img.height * self.max_width / img.width))
            img = img.resize((self.max_width, height), Image.LANCZOS)
            resized = True

        out = io.BytesIO()
        if fmt == "JPEG":
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            img.save(out, format="JPEG", quality=self.jpeg_quality, optimize=True)
        elif fmt == "PNG":
            img.save(out, format="PNG", compress_level=self.png_compress_level)
        elif fmt == "WEBP":
            img.save(out, format="WEBP", quality=self.webp_quality)
        else:
            if not resized:
                return data
            img.save(out, format="GIF")
        return out.getvalue()
