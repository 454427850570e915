"""
Target placement derived from a backup's directory layout.

A workflow file's location below the backup root decides which project
and folder it is restored into. File content never influences placement.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from n8n_manager.utils.text import sanitize_slug, unslug_to_title

DEFAULT_PROJECT_SLUG = "personal"


@dataclass
class TargetContext:
    """Where a staged workflow should end up."""

    project_slug: str
    project_name: str
    folder_slugs: List[str] = field(default_factory=list)
    folder_names: List[str] = field(default_factory=list)

    @property
    def display_path(self) -> str:
        return " / ".join(self.folder_names)

    @property
    def folder_slug_path(self) -> str:
        return "/".join(self.folder_slugs)

    @property
    def folder_display_path(self) -> str:
        return "/".join(self.folder_names)


def split_relative_dir(relative_dir: Optional[str]) -> List[str]:
    """Split a relative directory into trimmed, non-empty segments."""
    if not relative_dir:
        return []
    normalized = relative_dir.replace("\\", "/")
    normalized = re.sub(r"\s+", " ", normalized).strip()
    return [segment.strip() for segment in normalized.split("/") if segment.strip()]


def compute_target_context(
    relative_dir: Optional[str],
    project_name: str = "",
    project_slug: str = "",
    base_path: str = "",
) -> TargetContext:
    """
    Compute the target project and folder chain for a workflow file.

    Args:
        relative_dir: Directory of the file relative to the backup root,
            for example ``Personal/Clients/Acme``.
        project_name: Configured target project name, if any.
        project_slug: Configured target project slug; derived from the name
            when empty, and ``personal`` when both are empty.
        base_path: Folder path inside the project that every restored
            folder chain is placed under.

    Returns:
        TargetContext: Project slug and display name, folder slugs and
        folder display names in root-to-leaf order.
    """
    project_slug = sanitize_slug(project_slug) or sanitize_slug(project_name) or DEFAULT_PROJECT_SLUG
    project_display = project_name or unslug_to_title(project_slug)
    project_key = project_slug.lower()

    segments = split_relative_dir(relative_dir)
    if segments and sanitize_slug(segments[0]).lower() == project_key:
        segments = segments[1:]

    context = TargetContext(project_slug=project_slug, project_name=project_display)

    for base_segment in (base_path or "").strip("/").split("/"):
        base_slug = sanitize_slug(base_segment)
        if not base_slug or base_slug.lower() == project_key:
            continue
        context.folder_slugs.append(base_slug)
        context.folder_names.append(unslug_to_title(base_slug))

    base_count = len(context.folder_slugs)
    index = 0
    for segment in segments:
        slug = sanitize_slug(segment) or sanitize_slug(unslug_to_title(segment))
        if not slug:
            continue
        # the backup may already contain the base path
        if index < base_count and context.folder_slugs[index].lower() == slug.lower():
            index += 1
            continue
        context.folder_slugs.append(slug)
        context.folder_names.append(segment)
        index += 1

    return context
