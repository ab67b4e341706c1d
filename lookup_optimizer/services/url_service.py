"""Path normalization and URL derivation for attachment files."""

from __future__ import annotations

import json
import posixpath
from typing import TYPE_CHECKING
from urllib.parse import unquote, urlsplit

if TYPE_CHECKING:
    from lookup_optimizer.models.attachment import Attachment


def normalize_path(path: str) -> str:
    """Return the canonical stored form of a relative file path.

    Backslashes become ``/`` and the leading separator is removed. This is the
    only form written to the lookup index.
    """
    return path.strip().replace("\\", "/").lstrip("/")


def path_variants(path: str) -> list[str]:
    """Lookup candidates in priority order: exact, with leading ``/``, without.

    Rows written before paths were normalized may carry either form.
    Duplicates are dropped, keeping the first occurrence.
    """
    stripped = path.lstrip("/")
    return list(dict.fromkeys([path, f"/{stripped}", stripped]))


def url_to_path(url_or_path: str, base_url: str) -> str:
    """Strip the uploads base URL, query and fragment from a URL.

    Plain relative paths are returned unchanged. URLs on another host, or
    outside the uploads prefix, keep their URL path so that a lookup simply
    misses rather than failing.
    """
    value = url_or_path.strip()
    parts = urlsplit(value)
    if not parts.scheme and not parts.netloc:
        return unquote(parts.path)

    base = urlsplit(base_url.rstrip("/"))
    path = unquote(parts.path)
    base_path = base.path.rstrip("/")
    if parts.netloc == base.netloc and path.startswith(f"{base_path}/"):
        return path[len(base_path) + 1 :]
    return path


def path_to_url(path: str, base_url: str) -> str:
    return f"{base_url.rstrip('/')}/{normalize_path(path)}"


def size_variants(attachment: Attachment) -> list[str]:
    """Derivative file names recorded for an attachment."""
    try:
        sizes = json.loads(attachment.sizes or "[]")
    except json.JSONDecodeError:
        return []
    return [str(name) for name in sizes if isinstance(name, str) and name]


def variant_paths(file_path: str, sizes: list[str]) -> list[str]:
    """Relative paths of the derivatives, which live next to the main file."""
    directory = posixpath.dirname(normalize_path(file_path))
    return [posixpath.join(directory, name) if directory else name for name in sizes]


def attachment_paths(attachment: Attachment) -> list[str]:
    """Main path followed by every derivative path."""
    if not attachment.file_path:
        return []
    main = normalize_path(attachment.file_path)
    return [main, *variant_paths(main, size_variants(attachment))]


def attachment_urls(attachment: Attachment, base_url: str) -> list[str]:
    """Every URL that may resolve to this attachment, main URL first."""
    urls = [path_to_url(path, base_url) for path in attachment_paths(attachment)]
    if attachment.remote_url:
        urls.append(attachment.remote_url)
    return urls
