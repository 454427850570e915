"""
Point-in-time snapshots of remote workflows.

A snapshot is taken before and after an import so the reconciler can see
which workflows the import actually created and which ids n8n assigned.
"""

import glob
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Tuple

from n8n_manager.exceptions import N8NError, N8NStateError
from n8n_manager.schemas import WorkflowSummary, extract_items
from n8n_manager.utils.helpers import read_json, temp_path

SOURCE_API = "api"
SOURCE_EXPORT = "export"
SOURCE_NONE = "none"


@dataclass(frozen=True)
class Snapshot:
    """Immutable list of remote workflow summaries."""

    workflows: Tuple[WorkflowSummary, ...] = ()
    source: str = SOURCE_NONE

    @classmethod
    def from_payload(cls, payload: Any, source: str) -> "Snapshot":
        """
        Build a snapshot from an API or export payload.

        Args:
            payload: A bare array or ``{"data": [...]}``; anything else is empty.
            source: Where the payload came from.
        """
        rows = [
            WorkflowSummary.from_api(item)
            for item in extract_items(payload)
            if item.get("resource") != "folder"
        ]
        return cls(workflows=tuple(row for row in rows if row.id), source=source)

    @classmethod
    def from_path(cls, path: str, source: str = SOURCE_EXPORT) -> "Snapshot":
        """
        Read an export from disk.

        Args:
            path: A JSON array file, or a directory holding one JSON file per workflow.
            source: Recorded snapshot source.
        """
        if os.path.isdir(path):
            items = []
            for file_path in sorted(glob.glob(os.path.join(path, "**", "*.json"), recursive=True)):
                data = read_json(file_path)
                if isinstance(data, dict) and "id" in data:
                    items.append(data)
                else:
                    items.extend(extract_items(data))
            return cls.from_payload(items, source)
        return cls.from_payload(read_json(path), source)

    def __iter__(self) -> Iterator[WorkflowSummary]:
        return iter(self.workflows)

    def __len__(self) -> int:
        return len(self.workflows)

    def ids(self) -> set:
        return {workflow.id for workflow in self.workflows}

    def by_id(self) -> Dict[str, WorkflowSummary]:
        return {workflow.id: workflow for workflow in self.workflows}

    def get(self, workflow_id: str) -> Optional[WorkflowSummary]:
        for workflow in self.workflows:
            if workflow.id == workflow_id:
                return workflow
        return None


class SnapshotService:
    """
    Captures snapshots through the API, falling back to the export command.

    The API can be unavailable (for example a stale session) while the
    n8n CLI in the container still works, so both are tried.
    """

    def __init__(self, client=None, runner=None):
        """
        Initialize the service.

        Args:
            client: N8NClient, or None to skip the API.
            runner: N8NCommandRunner, or None to skip the export fallback.
        """
        self.client = client
        self.runner = runner
        self.logger = logging.getLogger(f"n8n_manager.{self.__class__.__name__}")

    def capture(self, required: bool = False) -> Tuple[Snapshot, str]:
        """
        Capture the current list of remote workflows.

        Args:
            required: Raise instead of returning an empty snapshot when both
                sources fail.

        Returns:
            Tuple[Snapshot, str]: The snapshot and its source, ``api``,
            ``export`` or ``none``.

        Raises:
            N8NStateError: If required and no source produced a snapshot.
        """
        if self.client is not None:
            try:
                payload = self.client.workflows.list_raw()
                snapshot = Snapshot.from_payload(payload, SOURCE_API)
                self.logger.debug(f"Captured snapshot of {len(snapshot)} workflow(s) via API")
                return snapshot, SOURCE_API
            except N8NError as e:
                self.logger.info(f"API snapshot unavailable, trying export command: {str(e)}")

        if self.runner is not None:
            try:
                with temp_path(prefix="n8n-snapshot-") as export_file:
                    self.runner.export_workflows(export_file)
                    snapshot = Snapshot.from_path(export_file, SOURCE_EXPORT)
                self.logger.debug(f"Captured snapshot of {len(snapshot)} workflow(s) via export")
                return snapshot, SOURCE_EXPORT
            except (N8NError, ValueError, OSError) as e:
                self.logger.info(f"Export snapshot unavailable: {str(e)}")

        if required:
            raise N8NStateError("Unable to capture a workflow snapshot from the API or the export command")
        self.logger.info("No workflow snapshot available; continuing without one")
        return Snapshot(), SOURCE_NONE

    def save(self, snapshot: Snapshot, file_path: str) -> str:
        """Write a snapshot as a JSON array, for debugging."""
        with open(file_path, "w", encoding="utf-8") as f:
            json.dump([row.to_dict() for row in snapshot], f, indent=2)
        return file_path
