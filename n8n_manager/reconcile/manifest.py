"""
Restore manifest and prior-run folder mapping.

The manifest is the audit trail of a restore: one entry per staged workflow
recording what id it was staged with, why, and where it belongs. It is kept
in memory and persisted as NDJSON at checkpoints.

The prior mapping (``.n8n-folder-structure.json``) is written by a backup and
records where each workflow lived at that time. It is the strongest identity
signal available on the next restore.
"""

import json
import logging
import os
import shutil
import tempfile
from collections import OrderedDict
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Iterator, List, Optional, Tuple

from n8n_manager.schemas import MatchType
from n8n_manager.utils.helpers import parse_timestamp
from n8n_manager.utils.text import normalize_lookup_key, normalize_name_key

logger = logging.getLogger(__name__)

MAPPING_FILENAME = ".n8n-folder-structure.json"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


@dataclass
class ManifestEntry:
    """One staged workflow and every identity decision made about it."""

    filename: str = ""
    id: str = ""
    name: str = ""
    description: str = ""
    meta_instance_id: str = ""
    duplicate_match_type: str = ""
    match_note: str = ""
    existing_workflow_id: str = ""
    original_workflow_id: str = ""
    relative_path: str = ""
    storage_path: str = ""
    existing_storage_path: str = ""
    existing_display_path: str = ""
    id_resolution_source: str = ""
    sanitized_id_note: str = ""
    preserve_ids: bool = False
    no_overwrite: bool = False
    name_match_workflow_id: str = ""
    name_match_relative_path: str = ""
    name_match_type: str = ""
    id_aligned_by_name_match: bool = False
    target_project_slug: str = ""
    target_project_name: str = ""
    target_display_path: str = ""
    target_folder_slug_path: str = ""
    target_folder_display_path: str = ""
    actual_imported_id: Optional[str] = None
    id_reconciled: Optional[bool] = None
    id_resolution_strategy: str = ""
    id_resolution_note: str = ""
    id_reconciliation_warning: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.storage_path, self.filename)

    @property
    def target_folder_names(self) -> List[str]:
        return [name for name in self.target_folder_display_path.split("/") if name]

    @property
    def target_folder_slugs(self) -> List[str]:
        return [slug for slug in self.target_folder_slug_path.split("/") if slug]

    @property
    def workflow_id(self) -> str:
        """The id the workflow has on the server, once known."""
        return self.actual_imported_id or self.id

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with camelCase keys, omitting null and empty values."""
        data = dict(self.extra)
        for item in fields(self):
            if item.name == "extra":
                continue
            value = getattr(self, item.name)
            if value is None or value == "":
                continue
            data[_camel(item.name)] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ManifestEntry":
        """Build an entry from a manifest line; unknown keys are kept in ``extra``."""
        known = {_camel(item.name): item.name for item in fields(cls) if item.name != "extra"}
        nullable = {"actual_imported_id", "id_reconciled"}
        values: Dict[str, Any] = {}
        extra: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                extra[key] = value
                continue
            attr = known[key]
            if value is None and attr not in nullable:
                value = ""
            values[attr] = value
        return cls(extra=extra, **values)


class ManifestStore:
    """
    Ordered, in-memory collection of manifest entries.

    Entries are keyed on storage path plus filename, so upserting an entry
    for the same staged file replaces it in place.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._entries: "OrderedDict[Tuple[str, str], ManifestEntry]" = OrderedDict()
        self.logger = logging.getLogger(f"n8n_manager.{self.__class__.__name__}")

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ManifestEntry]:
        return iter(list(self._entries.values()))

    def entries(self) -> List[ManifestEntry]:
        return list(self._entries.values())

    def upsert(self, entry: ManifestEntry) -> ManifestEntry:
        self._entries[entry.key] = entry
        return entry

    def get(self, storage_path: str, filename: str) -> Optional[ManifestEntry]:
        return self._entries.get((storage_path, filename))

    @classmethod
    def load(cls, path: str) -> "ManifestStore":
        """
        Read an NDJSON manifest.

        Blank lines are ignored. Lines that are not JSON objects are logged
        and skipped.

        Args:
            path: Manifest file path.

        Returns:
            ManifestStore: The loaded store, bound to path.
        """
        store = cls(path)
        with open(path, "r", encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except ValueError as e:
                    store.logger.warning(f"Skipping malformed manifest line {line_number} in {path}: {str(e)}")
                    continue
                if not isinstance(data, dict):
                    store.logger.warning(f"Skipping non-object manifest line {line_number} in {path}")
                    continue
                store.upsert(ManifestEntry.from_dict(data))
        return store

    def flush(self, path: Optional[str] = None) -> str:
        """
        Persist all entries as NDJSON, replacing the file atomically.

        Args:
            path: Target path; defaults to the path the store was created with.

        Returns:
            str: The written path.
        """
        target = path or self.path
        if not target:
            raise ValueError("Manifest store has no path to flush to")
        directory = os.path.dirname(os.path.abspath(target))
        fd, tmp_path = tempfile.mkstemp(prefix=".manifest-", suffix=".ndjson", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                for entry in self._entries.values():
                    f.write(json.dumps(entry.to_dict(), ensure_ascii=False, sort_keys=False))
                    f.write("\n")
            os.replace(tmp_path, target)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        self.path = target
        self.logger.debug(f"Flushed {len(self)} manifest entr{'y' if len(self) == 1 else 'ies'} to {target}")
        return target

    def copy_to(self, destination: str) -> str:
        """Copy the last flushed manifest, for debugging."""
        if not self.path:
            raise ValueError("Manifest store has not been flushed yet")
        shutil.copyfile(self.path, destination)
        return destination


@dataclass
class MappingRecord:
    """Where a workflow lived when the backup was taken."""

    id: str = ""
    name: str = ""
    relative_path: str = ""
    display_path: str = ""
    project_slug: str = ""
    project_name: str = ""
    folder_names: List[str] = field(default_factory=list)
    updated_at: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MappingRecord":
        project = data.get("project") if isinstance(data.get("project"), dict) else {}
        folders = data.get("folders") if isinstance(data.get("folders"), list) else []
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            relative_path=str(data.get("relativePath") or data.get("storagePath") or ""),
            display_path=str(data.get("displayPath") or ""),
            project_slug=str(project.get("slug") or ""),
            project_name=str(project.get("name") or ""),
            folder_names=[
                str(folder.get("name"))
                for folder in folders
                if isinstance(folder, dict) and folder.get("name")
            ],
            updated_at=str(data.get("updatedAt") or ""),
        )

    def sort_key(self):
        parsed = parse_timestamp(self.updated_at)
        return (parsed is not None, parsed.timestamp() if parsed else 0.0)


class PriorMapping:
    """Lookup over the workflow mapping saved by the previous backup."""

    def __init__(self, records: Optional[List[MappingRecord]] = None):
        self.records = list(records or [])

    def __len__(self) -> int:
        return len(self.records)

    @classmethod
    def load(cls, path: str) -> "PriorMapping":
        """
        Read a mapping file. A missing or unreadable file yields an empty mapping.

        Args:
            path: Path to ``.n8n-folder-structure.json``.
        """
        if not path or not os.path.isfile(path):
            return cls()
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable folder mapping {path}: {str(e)}")
            return cls()
        workflows = data.get("workflows") if isinstance(data, dict) else None
        if not isinstance(workflows, list):
            return cls()
        return cls([MappingRecord.from_dict(item) for item in workflows if isinstance(item, dict)])

    def find_by_id(self, workflow_id: str) -> Optional[MappingRecord]:
        if not workflow_id:
            return None
        for record in self.records:
            if record.id == workflow_id:
                return record
        return None

    def in_path(self, storage_path: str) -> List[MappingRecord]:
        """Records whose relative path equals storage_path, case-insensitively."""
        key = normalize_lookup_key(storage_path)
        if not key:
            return []
        return [record for record in self.records if normalize_lookup_key(record.relative_path) == key]

    def lookup(self, storage_path: str, name: str) -> Tuple[Optional[MappingRecord], MatchType, str]:
        """
        Find the prior record for a staged workflow.

        Records in the same folder with the same name win; when several do,
        the most recently updated one is chosen. Otherwise a unique name match
        anywhere is used, or the newest of several name matches when they all
        share one folder. Any other ambiguity is no match.

        Args:
            storage_path: The staged file's directory relative to the backup root.
            name: The staged workflow name.

        Returns:
            Tuple: (record or None, match type, tie-break note).
        """
        name_key = normalize_name_key(name)
        if not name_key:
            return None, MatchType.NONE, ""

        named = [record for record in self.records if normalize_name_key(record.name) == name_key]
        path_matches = [record for record in self.in_path(storage_path) if record in named]

        if len(path_matches) == 1:
            return path_matches[0], MatchType.PATH, ""
        if len(path_matches) > 1:
            newest = max(path_matches, key=MappingRecord.sort_key)
            return newest, MatchType.PATH_NEWEST, "multiple path matches resolved via newest updatedAt"

        if len(named) == 1:
            return named[0], MatchType.NAME, ""
        if len(named) > 1:
            distinct_paths = {normalize_lookup_key(record.relative_path) for record in named}
            if len(distinct_paths) == 1:
                newest = max(named, key=MappingRecord.sort_key)
                return newest, MatchType.NAME_NEWEST, "multiple name matches sharing relativePath resolved via newest updatedAt"
        return None, MatchType.NONE, ""
