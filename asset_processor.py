"""Binary fetch and thumbnail preview utilities"""

import base64
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Dict, Optional, Tuple

import requests
from PIL import Image, ImageOps

from errors import FetchError

logger = logging.getLogger("AssetProcessor")

# Simple in-memory cache for processed previews
_preview_cache: Dict[str, "EncodedImage"] = {}
_PREVIEW_CACHE_SIZE = 100


def fetch_asset_bytes(asset_url: str, timeout: Optional[float] = 60) -> bytes:
    """Fetch raw bytes with a plain GET. Any non-success is a FetchError."""
    try:
        response = requests.get(asset_url, timeout=timeout)
    except requests.RequestException as e:
        logger.error(f"Failed to fetch asset from {asset_url}: {e}")
        raise FetchError(f"Failed to fetch {asset_url}: {e}")
    if not response.ok:
        logger.error(f"Failed to fetch asset from {asset_url}: HTTP {response.status_code}")
        raise FetchError(f"Failed to fetch asset: {response.status_code}", status_code=response.status_code)
    return response.content


@dataclass(frozen=True)
class EncodedImage:
    """Encoded preview with the metrics callers log"""
    b64: str  # Base64 string (without data URI prefix)
    mime_type: str
    size_px: Tuple[int, int]
    bytes_len: int
    raw_bytes: bytes

    @property
    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.b64}"


def get_cache_key(source: str, max_dim: int, quality: int) -> str:
    return f"{source}:{max_dim}:webp:{quality}"


def _cache_preview(cache_key: str, encoded: EncodedImage):
    if len(_preview_cache) >= _PREVIEW_CACHE_SIZE:
        _preview_cache.pop(next(iter(_preview_cache)))
    _preview_cache[cache_key] = encoded


def encode_thumbnail(
    image_bytes: bytes,
    *,
    max_dim: int = 256,
    max_b64_chars: int = 100_000,
    quality: int = 70,
    cache_key: Optional[str] = None,
) -> EncodedImage:
    """Downscale a thumbnail and re-encode it as WebP within a base64 budget.

    Tries the starting quality and then lower ones until the encoded payload
    fits.

    Raises:
        ValueError: If the image cannot be decoded or still exceeds the budget
    """
    if cache_key and cache_key in _preview_cache:
        logger.debug(f"Cache hit for {cache_key}")
        return _preview_cache[cache_key]

    try:
        with Image.open(BytesIO(image_bytes)) as loaded:
            im = ImageOps.exif_transpose(loaded)
            if im.mode not in ("RGB", "RGBA", "L", "LA"):
                im = im.convert("RGB")
            im.load()
    except (OSError, Image.DecompressionBombError) as e:
        raise ValueError(f"Thumbnail is not a readable image: {e}")

    w, h = im.size
    if max(w, h) > max_dim:
        scale = max_dim / max(w, h)
        im = im.resize((max(1, int(w * scale)), max(1, int(h * scale))), Image.Resampling.LANCZOS)

    prefix_len = len("data:image/webp;base64,")
    for q in (quality, 55, 40):
        buf = BytesIO()
        im.save(buf, format="WEBP", quality=q, method=5)
        encoded_bytes = buf.getvalue()
        b64_string = base64.b64encode(encoded_bytes).decode("ascii")
        if len(b64_string) + prefix_len <= max_b64_chars:
            result = EncodedImage(
                b64=b64_string,
                mime_type="image/webp",
                size_px=im.size,
                bytes_len=len(encoded_bytes),
                raw_bytes=encoded_bytes,
            )
            if cache_key:
                _cache_preview(cache_key, result)
            logger.info(
                f"thumbnail encoding: src={len(image_bytes)}B src_dims={w}x{h} "
                f"preview_dims={im.size[0]}x{im.size[1]} quality={q} b64_chars={len(b64_string)}"
            )
            return result

    raise ValueError(f"Thumbnail exceeds base64 budget of {max_b64_chars} chars even at quality=40")
