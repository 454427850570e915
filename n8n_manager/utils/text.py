"""
Text and key normalization helpers.

Every comparison the reconciliation engine makes between names, folder
paths and identifiers goes through one of these functions, so two values
that differ only in case, whitespace or slash noise compare equal.
"""

import re
from typing import Iterable, Optional

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_WHITESPACE = re.compile(r"\s+")
_SLUG_DISALLOWED = re.compile(r"[^A-Za-z0-9._-]")
_FILENAME_DISALLOWED = re.compile(r'[\\/:*?"<>|]')

FILENAME_MAX_LENGTH = 152
EMPTY_IDENTIFIERS = {"", "null", "0", "root"}


def sanitize_text(value: Optional[str]) -> str:
    """
    Strip control characters and collapse whitespace.

    Carriage returns are dropped, newlines and tabs become spaces, any other
    control character is removed and runs of whitespace collapse to one space.
    """
    if not value:
        return ""
    text = str(value).replace("\r", "")
    text = text.replace("\n", " ").replace("\t", " ")
    text = _CONTROL_CHARS.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def normalize_folder_path(path: Optional[str]) -> str:
    """
    Normalize a slash separated folder path.

    Empty and whitespace-only segments are dropped, so ``"A//B/"``,
    ``"A/B"`` and ``" A / B "`` all normalize to ``"A/B"``.
    """
    if not path:
        return ""
    segments = [sanitize_text(segment) for segment in str(path).split("/")]
    return "/".join(segment for segment in segments if segment)


def normalize_name_key(value: Optional[str]) -> str:
    """Case and whitespace insensitive key for project and workflow names."""
    return sanitize_text(value).lower()


def normalize_lookup_key(value: Optional[str]) -> str:
    """
    Normalize a path-like value for manifest and mapping lookups.

    Args:
        value: A relative path or display path, possibly with backslashes,
            padded separators or mixed case.

    Returns:
        str: Lowercased path with single ``/`` separators and no leading
        or trailing slash. Empty input yields an empty string.
    """
    if not value:
        return ""
    normalized = str(value)
    for char in ("\r", "\n", "\t"):
        normalized = normalized.replace(char, "")
    normalized = normalized.replace("\\", "/")
    normalized = re.sub(r" +", " ", normalized).strip()
    normalized = re.sub(r"\s*/\s*", "/", normalized)
    normalized = re.sub(r"/{2,}", "/", normalized)
    return normalized.lower().strip("/")


def lookup_path_matches(candidate: str, expected: str, project_prefix: str = "") -> bool:
    """
    Compare two normalized lookup keys, tolerating a leading project segment.

    A path recorded with its project slug (``personal/clients``) matches the
    same path recorded without it (``clients``). The configured project
    prefix is tried first, then ``personal``.
    """
    if not candidate or not expected:
        return False
    if candidate == expected:
        return True

    prefixes = []
    if project_prefix:
        prefixes.append(project_prefix)
    if project_prefix != "personal":
        prefixes.append("personal")

    for prefix in prefixes:
        head, _, rest = candidate.partition("/")
        if head == prefix and candidate != prefix and rest == expected:
            return True
        head, _, rest = expected.partition("/")
        if head == prefix and expected != prefix and rest == candidate:
            return True
    return False


def normalize_id_key(value: Optional[str]) -> str:
    """Whitespace-free, lowercased identifier key."""
    if not value:
        return ""
    return _WHITESPACE.sub("", str(value)).lower()


def normalize_entry_identifier(value: Optional[str]) -> str:
    """Treat placeholder identifiers such as ``null`` or ``root`` as absent."""
    if value is None:
        return ""
    text = str(value).strip()
    if text.lower() in EMPTY_IDENTIFIERS:
        return ""
    return text


def sanitize_slug(value: Optional[str]) -> str:
    """Turn a display name into a filesystem and URL safe slug."""
    if not value:
        return ""
    slug = str(value)
    for char in ("\r", "\n", "\t"):
        slug = slug.replace(char, "")
    slug = slug.replace(" ", "_").replace("/", "_")
    return _SLUG_DISALLOWED.sub("", slug)


def unslug_to_title(value: Optional[str]) -> str:
    """Best-effort display name for a slug; falls back to ``Folder``."""
    if not value or str(value).strip().lower() == "null":
        return "Folder"
    title = re.sub(r"[_.\-]", " ", str(value))
    title = _WHITESPACE.sub(" ", title).strip()
    return title or "Folder"


def append_note(existing: Optional[str], note: Optional[str]) -> str:
    """Append a note to a ``;`` separated note list without duplicates."""
    notes = [part for part in (existing or "").split(";") if part]
    if note and note not in notes:
        notes.append(note)
    return ";".join(notes)


def sanitize_filename_component(name: Optional[str], fallback_id: str = "") -> str:
    """
    Turn a workflow name into a safe filename stem.

    Args:
        name: The workflow display name.
        fallback_id: Workflow id used for the ``Workflow <id>`` fallback.

    Returns:
        str: A name without path separators or reserved characters, no
        longer than ``FILENAME_MAX_LENGTH`` characters.
    """
    cleaned = _FILENAME_DISALLOWED.sub("-", sanitize_text(name))
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    if len(cleaned) > FILENAME_MAX_LENGTH:
        cleaned = cleaned[:FILENAME_MAX_LENGTH]
    cleaned = cleaned.rstrip(" .")
    if not cleaned:
        cleaned = f"Workflow {fallback_id}".strip()
    return cleaned


def unique_values(values: Iterable[str]) -> list:
    """Return the non-empty values in first-seen order."""
    seen = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen
