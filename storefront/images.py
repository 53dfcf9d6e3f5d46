# storefront/images.py
import json
import os
import re
from typing import Any, Iterable, List
from urllib.parse import urlparse

from .logger import get_logger

logger = get_logger(__name__)

APP_ORIGIN = os.getenv("APP_ORIGIN", "http://flores.local").rstrip("/")
FALLBACK_IMAGE = os.getenv(
    "NO_IMAGE_PATH", "/wp-content/themes/FloresInc/assets/img/no-image.svg"
)
DEFAULT_SCHEME = os.getenv("IMAGE_DEFAULT_SCHEME", "http")

# Different code paths store "no image" differently; all of these mean the same.
_SENTINEL_STRINGS = {"", "false", "null", "undefined", "none"}
_PASSTHROUGH_SCHEMES = {"data", "blob"}
_ARRAY_LITERAL_RE = re.compile(r'^\s*\[(.*)\]\s*$', re.DOTALL)


def is_fallback(url: str) -> bool:
    return url == FALLBACK_IMAGE


def resolve_image(raw: Any) -> str:
    """
    Turn any stored image reference into a usable URL.

    Accepts None / False / "false" sentinels, absolute URLs, site-relative
    paths, bare "host/path" strings and legacy {"src": ...} objects.
    Never raises: unrecognized input degrades to a best-effort string or
    the fallback image.
    """
    if raw is None or raw is False:
        return FALLBACK_IMAGE
    if isinstance(raw, dict):
        return resolve_image(raw.get("src"))
    if not isinstance(raw, str):
        src = getattr(raw, "src", None)
        if src is not None:
            return resolve_image(src)
        logger.debug("Unrecognized image value %r; using fallback.", raw)
        return FALLBACK_IMAGE

    s = raw.strip()
    if s.lower() in _SENTINEL_STRINGS:
        return FALLBACK_IMAGE

    if s.startswith("//"):
        return f"{DEFAULT_SCHEME}:{s}"
    if s.startswith("/"):
        return f"{APP_ORIGIN}{s}"

    try:
        parsed = urlparse(s)
    except ValueError:
        logger.debug("Unparseable image URL %r; returning as-is.", s)
        return s

    if parsed.scheme and (parsed.netloc or parsed.scheme in _PASSTHROUGH_SCHEMES):
        return s
    if "." in s:
        return f"{DEFAULT_SCHEME}://{s}"
    return s


def _unwrap_array_string(s: str) -> List[Any]:
    """
    Decode an image field persisted as a JSON array string, e.g.
    '["http:\\\\/\\\\/example.com\\\\/a.jpg"]' (backslashes doubled on the way in).
    """
    cleaned = s.replace("\\\\", "\\")
    try:
        decoded = json.loads(cleaned)
    except ValueError:
        decoded = None
    if isinstance(decoded, list):
        return decoded

    # Not valid JSON; strip the brackets, quotes and escapes by hand.
    m = _ARRAY_LITERAL_RE.match(s)
    inner = m.group(1) if m else s
    out = []
    for part in inner.split(","):
        part = part.replace("\\", "").strip().strip('"').strip("'").strip()
        if part:
            out.append(part)
    return out


def image_list(raw: Any) -> List[Any]:
    """Image-list field as a Python list, whether stored as a list or an array string."""
    if raw is None or raw is False:
        return []
    if isinstance(raw, (list, tuple)):
        return list(raw)
    if isinstance(raw, str):
        if _ARRAY_LITERAL_RE.match(raw):
            return _unwrap_array_string(raw)
        return [raw] if raw.strip() else []
    return [raw]


def resolve_image_field(raw: Any) -> str:
    """
    resolve_image for fields that may hold either a bare URL or an
    array-as-string ('["url"]'); the first entry of an array wins.
    """
    if isinstance(raw, (list, tuple)) or (
        isinstance(raw, str) and _ARRAY_LITERAL_RE.match(raw)
    ):
        entries = image_list(raw)
        for entry in entries:
            url = resolve_image(entry)
            if not is_fallback(url):
                return url
        return FALLBACK_IMAGE
    return resolve_image(raw)


def normalize_image_urls(values: Iterable[Any]) -> List[str]:
    """Resolve every entry, dropping the ones that mean "no image"."""
    out: List[str] = []
    for value in values or []:
        url = resolve_image_field(value)
        if not is_fallback(url):
            out.append(url)
    return out
