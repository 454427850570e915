"""
Canonical shapes for data read from the n8n REST API and export commands.

The API is inconsistent about where it puts a folder's parent or a
workflow's project, and about whether list endpoints wrap their items in
``{"data": [...]}``. All of that is resolved here, once, so the rest of the
package only ever sees the dataclasses below.
"""

import enum
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from n8n_manager.exceptions import N8NConfigurationError

# Ordered source paths for each canonical field, first non-empty value wins
API_SCHEMAS = {
    "projects": {
        "id": ["id"],
        "name": ["name"],
        "kind": ["type"],
    },
    "folders": {
        "id": ["id"],
        "name": ["name"],
        "parent_id": ["parentFolderId", "parentFolder.id"],
        "project_id": ["projectId", "homeProject.id", "homeProjectId"],
    },
    "workflows": {
        "id": ["id"],
        "name": ["name"],
        "folder_id": ["parentFolderId", "parentFolder.id"],
        "project_id": ["homeProject.id", "homeProjectId"],
        "version_id": ["versionId", "version.id"],
        "updated_at": ["updatedAt"],
    },
    "snapshot": {
        "id": ["id"],
        "name": ["name"],
        "instance_marker": ["meta.instanceId"],
        "relative_path": ["relativePath"],
        "updated_at": ["updatedAt"],
    },
}


def get_schema(resource_type: str) -> Dict[str, List[str]]:
    """
    Get the field fallback definition for a specific resource type.

    Args:
        resource_type: The type of resource to get the schema for.

    Returns:
        Dict[str, List[str]]: Canonical field name to ordered source paths.
    """
    return API_SCHEMAS.get(resource_type, {})


class StorageMode(enum.Enum):
    """Where a backup artifact is kept."""

    DISABLED = 0
    LOCAL = 1
    REMOTE = 2

    @classmethod
    def parse(cls, value: Any) -> "StorageMode":
        """
        Parse a configured storage mode.

        Accepts the numeric codes 0/1/2, their string forms, or the names
        ``disabled``, ``local`` and ``remote`` in any case.

        Raises:
            N8NConfigurationError: If the value is not a known mode.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise N8NConfigurationError(f"Invalid storage mode: {value!r}")
        text = str(value).strip().lower()
        for mode in cls:
            if text in (str(mode.value), mode.name.lower()):
                return mode
        raise N8NConfigurationError(
            f"Invalid storage mode: {value!r}. Use 0/disabled, 1/local or 2/remote."
        )

    @property
    def enabled(self) -> bool:
        return self is not StorageMode.DISABLED


class MatchType(str, enum.Enum):
    """How a staged workflow was tied to an existing remote workflow."""

    ID = "id"
    INSTANCE_ID = "instanceId"
    NAME = "name"
    PATH = "path"
    PATH_NEWEST = "path-newest"
    NAME_NEWEST = "name-newest"
    NONE = ""


class ProjectKind(str, enum.Enum):
    PERSONAL = "personal"
    TEAM = "team"


def extract_items(payload: Any) -> List[Dict[str, Any]]:
    """
    Reduce a list response to its items.

    Args:
        payload: A bare JSON array, an object with a ``data`` array, or
            anything else (treated as empty).

    Returns:
        List[Dict]: The item objects; non-object items are dropped.
    """
    if isinstance(payload, dict):
        payload = payload.get("data")
    if not isinstance(payload, list):
        return []
    return [item for item in payload if isinstance(item, dict)]


def resolve_path(data: Dict[str, Any], path: str) -> Any:
    """Follow a dotted path such as ``parentFolder.id`` through nested dicts."""
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def first_value(data: Dict[str, Any], paths: List[str]) -> str:
    """Return the first non-empty value found at any of the paths, as a string."""
    for path in paths:
        value = resolve_path(data, path)
        if value is not None and str(value) != "":
            return str(value)
    return ""


def _fields(resource_type: str, data: Dict[str, Any]) -> Dict[str, str]:
    return {
        field_name: first_value(data, paths)
        for field_name, paths in get_schema(resource_type).items()
    }


@dataclass
class Project:
    id: str
    name: str
    kind: ProjectKind = ProjectKind.TEAM

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Project":
        fields = _fields("projects", data)
        kind = ProjectKind.PERSONAL if fields["kind"].lower() == "personal" else ProjectKind.TEAM
        return cls(id=fields["id"], name=fields["name"], kind=kind)


@dataclass
class Folder:
    id: str
    name: str
    parent_id: str = ""
    project_id: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Folder":
        return cls(**_fields("folders", data))


@dataclass
class RemoteWorkflow:
    id: str
    name: str = ""
    folder_id: str = ""
    project_id: str = ""
    version_id: str = ""
    updated_at: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RemoteWorkflow":
        return cls(**_fields("workflows", data))


@dataclass(frozen=True)
class WorkflowSummary:
    """One row of a point-in-time snapshot of remote workflows."""

    id: str
    name: str = ""
    instance_marker: str = ""
    relative_path: str = ""
    updated_at: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "WorkflowSummary":
        return cls(**_fields("snapshot", data))

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "id": self.id,
            "name": self.name,
            "meta": {"instanceId": self.instance_marker} if self.instance_marker else None,
            "relativePath": self.relative_path or None,
            "updatedAt": self.updated_at or None,
        }
