"""Object key utilities shared by the entry operations and the reconciler.

Rules:
- A room owns every object under ``{room}/``; keys never start with '/'.
- A logical path is a tuple of folder names, root first; ``()`` is the room root.
- Marker objects (``.keep`` placeholders, or keys ending with '/') keep an
  otherwise empty prefix visible and never become file entries.
"""

from __future__ import annotations

from typing import Iterable, Optional

from app.packages.sharebox.core.constants import KEEP_MARKER_NAME, KEY_SEPARATOR, MARKER_NAMES
from app.packages.sharebox.core.exceptions import InvalidNameError


def norm_name(raw: Optional[str], *, what: str = "名称") -> str:
    """Trim a user supplied entry name; empty names and separators are rejected."""
    name = (raw or "").strip()
    if not name:
        raise InvalidNameError(f"{what}不能为空")
    if KEY_SEPARATOR in name:
        raise InvalidNameError(f"{what}不能包含 '{KEY_SEPARATOR}'")
    if name in {".", ".."}:
        raise InvalidNameError(f"{what}不合法")
    return name


def room_prefix(room_name: str) -> str:
    return f"{room_name}{KEY_SEPARATOR}"


def join_key(*segments: str) -> str:
    return KEY_SEPARATOR.join(s.strip(KEY_SEPARATOR) for s in segments if s and s.strip(KEY_SEPARATOR))


def path_prefix(room_name: str, path: Iterable[str]) -> str:
    """Prefix (with trailing '/') under which everything in ``path`` lives."""
    return join_key(room_name, *path) + KEY_SEPARATOR


def object_key(room_name: str, path: Iterable[str], name: str) -> str:
    return join_key(room_name, *path, name)


def marker_key(room_name: str, path: Iterable[str]) -> str:
    return object_key(room_name, path, KEEP_MARKER_NAME)


def relative_key(room_name: str, key: Optional[str]) -> Optional[str]:
    """Strip the room prefix; keys outside the room yield ``None``."""
    if not key:
        return None
    prefix = room_prefix(room_name)
    if not key.startswith(prefix):
        return None
    return key[len(prefix):]


def split_key(rel_key: str) -> tuple[tuple[str, ...], str]:
    """``"a/b/c.txt"`` -> ``(("a", "b"), "c.txt")``; empty segments are dropped."""
    parts = [p for p in rel_key.split(KEY_SEPARATOR) if p]
    if not parts:
        return (), ""
    if rel_key.endswith(KEY_SEPARATOR):
        return tuple(parts), ""
    return tuple(parts[:-1]), parts[-1]


def key_dirname(key: str) -> str:
    head, sep, _ = key.rpartition(KEY_SEPARATOR)
    return head if sep else ""


def replace_basename(key: str, new_name: str) -> str:
    head = key_dirname(key)
    return f"{head}{KEY_SEPARATOR}{new_name}" if head else new_name


def is_marker_key(key: str) -> bool:
    if key.endswith(KEY_SEPARATOR):
        return True
    return key.rsplit(KEY_SEPARATOR, 1)[-1] in MARKER_NAMES


def strip_root_prefix(key: Optional[str], root_prefix: Optional[str]) -> Optional[str]:
    """Full bucket key (``{root}/{room}/...``) -> backend-relative key; other keys pass through."""
    if not key:
        return None
    root = (root_prefix or "").strip(KEY_SEPARATOR)
    if root and key.startswith(root + KEY_SEPARATOR):
        return key[len(root) + 1 :]
    return key
