"""Mapping between hierarchical user paths and flat object keys.

User paths look like ``/reports/2024/q1.csv``. Object keys drop the leading
separator (``reports/2024/q1.csv``) and directory prefixes keep a trailing one
(``reports/2024/``). The bucket root is the empty key. ``.`` and ``..`` are kept
as ordinary segments: the backend has no working directory to resolve them
against.
"""

from __future__ import annotations

from bucketfs.domain import MAX_KEY_BYTES, ROOT_DIRECTORY, SEPARATOR
from bucketfs.domain.errors import InvalidPathError
from bucketfs.domain.models import ObjectKey

_ALT_SEPARATOR = "\\"


def _check_characters(path: str) -> None:
    if not isinstance(path, str):
        raise InvalidPathError(f"Path must be a string, got {type(path).__name__}")
    for char in path:
        if ord(char) < 32 or ord(char) == 127:
            raise InvalidPathError(
                "Path contains a control character", path=repr(path)
            )


def _segments(path: str) -> list[str]:
    _check_characters(path)
    return [seg for seg in path.replace(_ALT_SEPARATOR, SEPARATOR).split(SEPARATOR) if seg]


def _check_length(key: str, path: str) -> None:
    if len(key.encode("utf-8")) > MAX_KEY_BYTES:
        raise InvalidPathError(
            f"Path exceeds the {MAX_KEY_BYTES}-byte key limit", path=path
        )


def normalize(path: str) -> ObjectKey:
    """Return the object key for ``path``; the root maps to ``""``."""
    key = SEPARATOR.join(_segments(path))
    _check_length(key, path)
    return ObjectKey(key)


def file_key(path: str) -> ObjectKey:
    """Return the key of a file, rejecting paths that can only name a directory."""
    _check_characters(path)
    if path.endswith((SEPARATOR, _ALT_SEPARATOR)):
        raise InvalidPathError(
            "File path ends with a separator and would address a directory marker",
            path=path,
        )
    key = normalize(path)
    if not key:
        raise InvalidPathError("The root directory is not a file", path=path)
    return key


def directory_prefix(path: str) -> ObjectKey:
    """Return the listing prefix of a directory, always ending in the separator."""
    key = normalize(path)
    if not key:
        return ObjectKey("")
    prefix = key + SEPARATOR
    _check_length(prefix, path)
    return ObjectKey(prefix)


def is_marker(key: str) -> bool:
    return key.endswith(SEPARATOR)


def to_path(key: str) -> str:
    """Return the rooted user path for a key or prefix."""
    return ROOT_DIRECTORY + key.strip(SEPARATOR)


def is_rooted(path: str) -> bool:
    return path.startswith((SEPARATOR, _ALT_SEPARATOR))


def join(*segments: str) -> str:
    """Combine path segments; a rooted segment discards everything before it."""
    combined = ""
    for segment in segments:
        if is_rooted(segment) or not combined:
            combined = segment
        else:
            combined = combined + SEPARATOR + segment
    cleaned = SEPARATOR.join(_segments(combined))
    if is_rooted(combined):
        return ROOT_DIRECTORY + cleaned
    return cleaned


def parent_of(path: str) -> str:
    """Return the parent directory of ``path``.

    The root is its own parent; a single relative segment has the empty parent.
    """
    segments = _segments(path)
    prefix = ROOT_DIRECTORY if is_rooted(path) else ""
    return prefix + SEPARATOR.join(segments[:-1])


def leaf_name(path: str) -> str:
    segments = _segments(path)
    return segments[-1] if segments else ""
