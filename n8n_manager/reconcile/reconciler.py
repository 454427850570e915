"""
Post-import reconciliation.

n8n may keep, replace or reject the id a staged workflow was imported with.
Comparing snapshots taken before and after the import tells which id each
manifest entry actually ended up with.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from n8n_manager.reconcile.manifest import ManifestEntry, ManifestStore
from n8n_manager.reconcile.snapshot import Snapshot
from n8n_manager.reconcile.state import RemoteStateCache
from n8n_manager.schemas import WorkflowSummary
from n8n_manager.utils.text import lookup_path_matches, normalize_lookup_key, normalize_name_key, sanitize_slug

STRATEGY_NAME_PATH = 'name-path'
STRATEGY_MANIFEST_ID = 'manifest-id'
STRATEGY_EXISTING_ID = 'existing-workflow-id'
STRATEGY_ORIGINAL_ID = 'original-workflow-id'
STRATEGY_META_INSTANCE = 'meta-instance'
STRATEGY_NAME_ONLY = 'name-only'
STRATEGY_UNRESOLVED = 'unresolved'


@dataclass
class ReconcileResult:
	"""Counters derived from the pre/post import diff."""

	created: int = 0
	updated: int = 0
	unresolved: int = 0
	strategies: Dict[str, int] = field(default_factory=dict)
	warnings: List[str] = field(default_factory=list)

	def to_dict(self) -> Dict[str, Any]:
		return {
			'created': self.created,
			'updated': self.updated,
			'unresolved': self.unresolved,
			'strategies': dict(self.strategies),
			'warnings': list(self.warnings),
		}


class PostImportReconciler:
	"""
	Writes the ids n8n actually assigned back into the manifest.

	Entries are matched to post-import rows by name and target folder first,
	since the id is exactly what may have changed, and then by progressively
	weaker signals. An entry no signal resolves is marked unresolved.
	"""

	def __init__(self, pre_snapshot: Snapshot, post_snapshot: Snapshot, cache: Optional[RemoteStateCache] = None):
		"""
		Initialize the reconciler.

		Args:
		    pre_snapshot: Remote workflows before the import.
		    post_snapshot: Remote workflows after the import.
		    cache: Remote state loaded before the import, used to locate
		        workflows that existed already.

		"""
		self.pre = pre_snapshot
		self.post = post_snapshot
		self.cache = cache
		self.logger = logging.getLogger(f'n8n_manager.{self.__class__.__name__}')

		self.pre_ids = pre_snapshot.ids()
		self.post_by_id = post_snapshot.by_id()
		self.post_by_instance: Dict[str, List[WorkflowSummary]] = {}
		self.post_by_name: Dict[str, List[WorkflowSummary]] = {}
		self.new_by_name: Dict[str, List[WorkflowSummary]] = {}
		for row in post_snapshot:
			if row.instance_marker:
				self.post_by_instance.setdefault(row.instance_marker.lower(), []).append(row)
			name_key = normalize_name_key(row.name)
			if name_key:
				self.post_by_name.setdefault(name_key, []).append(row)
				if row.id not in self.pre_ids:
					self.new_by_name.setdefault(name_key, []).append(row)

	def _located_in_target(self, row: WorkflowSummary, entry: ManifestEntry) -> bool:
		project_key = normalize_lookup_key(entry.target_project_slug)
		if row.relative_path:
			return lookup_path_matches(
				normalize_lookup_key(row.relative_path),
				normalize_lookup_key(entry.storage_path),
				project_key,
			)
		if self.cache is None:
			return False
		workflow = self.cache.get_workflow(row.id)
		if workflow is None:
			return False
		names = self.cache.folder_path(workflow.folder_id) if workflow.folder_id else []
		return [sanitize_slug(name).lower() for name in names] == [slug.lower() for slug in entry.target_folder_slugs]

	def _unique(self, rows: List[WorkflowSummary], claimed: set, label: str, entry: ManifestEntry) -> Optional[str]:
		candidates = [row for row in rows if row.id not in claimed]
		if len(candidates) == 1:
			return candidates[0].id
		if len(candidates) > 1:
			self.logger.warning(
				f'{len(candidates)} workflows match {entry.name!r} by {label}; not reconciling by {label}'
			)
		return None

	def _resolve(self, entry: ManifestEntry, claimed: set):
		name_key = normalize_name_key(entry.name)

		if name_key:
			located = [
				row
				for row in self.post_by_name.get(name_key, [])
				if row.id not in claimed and self._located_in_target(row, entry)
			]
			if len(located) == 1:
				return located[0].id, STRATEGY_NAME_PATH

		if entry.id and entry.id in self.post_by_id:
			return entry.id, STRATEGY_MANIFEST_ID

		# ids the staging phase cleared must not come back through these
		if not entry.sanitized_id_note:
			if entry.existing_workflow_id and entry.existing_workflow_id in self.post_by_id:
				return entry.existing_workflow_id, STRATEGY_EXISTING_ID
			if entry.original_workflow_id and entry.original_workflow_id in self.post_by_id:
				return entry.original_workflow_id, STRATEGY_ORIGINAL_ID

		if entry.meta_instance_id:
			rows = self.post_by_instance.get(entry.meta_instance_id.lower(), [])
			workflow_id = self._unique(rows, claimed, 'instance marker', entry)
			if workflow_id:
				return workflow_id, STRATEGY_META_INSTANCE

		if name_key:
			workflow_id = self._unique(self.new_by_name.get(name_key, []), claimed, 'name', entry)
			if workflow_id:
				return workflow_id, STRATEGY_NAME_ONLY

		return None, STRATEGY_UNRESOLVED

	def reconcile(self, manifest: ManifestStore) -> ReconcileResult:
		"""
		Update every manifest entry with the id it has after the import.

		Args:
		    manifest: Store filled by the staging phase; updated in place.

		Returns:
		    ReconcileResult: Created/updated/unresolved counters.

		"""
		result = ReconcileResult()
		result.created = len(set(self.post_by_id) - self.pre_ids)
		claimed: set = set()

		for entry in manifest:
			workflow_id, strategy = self._resolve(entry, claimed)
			entry.id_resolution_strategy = strategy
			result.strategies[strategy] = result.strategies.get(strategy, 0) + 1

			if workflow_id is None:
				entry.id_reconciled = False
				entry.id_reconciliation_warning = 'no post-import workflow matched this entry'
				result.unresolved += 1
				message = f'Could not determine the imported id of {entry.relative_path} ({entry.name!r})'
				result.warnings.append(message)
				self.logger.warning(message)
				manifest.upsert(entry)
				continue

			claimed.add(workflow_id)
			if entry.id and entry.id != workflow_id:
				self.logger.info(f'n8n assigned {workflow_id} to {entry.relative_path} (staged as {entry.id})')
			entry.id = workflow_id
			entry.actual_imported_id = workflow_id
			entry.id_reconciled = True
			entry.id_resolution_note = entry.sanitized_id_note
			if workflow_id in self.pre_ids:
				result.updated += 1
			manifest.upsert(entry)

		self.logger.info(
			f'Reconciled import: {result.created} created, {result.updated} updated, {result.unresolved} unresolved'
		)
		return result
