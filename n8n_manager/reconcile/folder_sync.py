"""
Folder and project synchronization after an import.

Makes the remote project/folder tree match the directory layout of the
backup and moves every restored workflow into its folder. Running it a
second time against an instance that already matches changes nothing.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from n8n_manager.exceptions import N8NAPIError, N8NError
from n8n_manager.reconcile.manifest import ManifestEntry, ManifestStore
from n8n_manager.reconcile.state import RemoteStateCache, folder_cache_key
from n8n_manager.schemas import Folder
from n8n_manager.utils.text import append_note, normalize_name_key, sanitize_slug, unslug_to_title

STATUS_SUCCESS = 'success'
STATUS_UNCHANGED = 'unchanged'
STATUS_FAILED = 'failed'
STATUS_SKIPPED = 'skipped'
STATUS_LICENSE_BLOCKED = 'license-blocked'
STATUS_DRY_RUN = 'dry-run'

LICENSE_BLOCK_MARKER = 'plan lacks license'


def is_license_block(error: N8NError) -> bool:
	"""True if n8n refused a folder or project operation because of the plan."""
	if not isinstance(error, N8NAPIError) or error.status_code != 403:
		return False
	body = getattr(error.response, 'text', '') or ''
	return LICENSE_BLOCK_MARKER in f'{error!s} {body}'.lower()


@dataclass
class SyncResult:
	"""What the synchronizer changed, plus one audit record per entry."""

	folders_created: int = 0
	folders_repositioned: int = 0
	projects_created: int = 0
	workflows_reassigned: int = 0
	failed: int = 0
	license_blocked: bool = False
	audit: List[Dict[str, Any]] = field(default_factory=list)

	def count(self, status: str) -> int:
		return sum(1 for record in self.audit if record['status'] == status)

	def to_dict(self) -> Dict[str, Any]:
		return {
			'folders_created': self.folders_created,
			'folders_repositioned': self.folders_repositioned,
			'projects_created': self.projects_created,
			'workflows_reassigned': self.workflows_reassigned,
			'failed': self.failed,
			'license_blocked': self.license_blocked,
			'audit': list(self.audit),
		}


class FolderSynchronizer:
	"""
	Creates missing projects and folders and reassigns workflows.

	Folders are resolved one level at a time, parent before child. At each
	level an existing folder is looked up by its path, then among the
	parent's children by slug and by name, and only created when none of
	those find one.
	"""

	def __init__(
		self,
		client,
		cache: RemoteStateCache,
		dry_run: bool = False,
		project_name: str = '',
	):
		"""
		Initialize the synchronizer.

		Args:
		    client: N8NClient used for creates and moves.
		    cache: Remote state loaded before the import; kept up to date here.
		    dry_run: Log the changes that would be made without making them.
		    project_name: Configured target project, used when an entry's own
		        project cannot be resolved.

		"""
		self.client = client
		self.cache = cache
		self.dry_run = dry_run
		self.project_name = project_name
		self.logger = logging.getLogger(f'n8n_manager.{self.__class__.__name__}')
		self._license_notice_emitted = False
		self._placed_folders: Set[str] = set()

	def _block(self, result: SyncResult, what: str) -> None:
		result.license_blocked = True
		if not self._license_notice_emitted:
			self.logger.info(
				f'Skipping n8n {what} because the current plan lacks Projects & Folders access. '
				'Folder operations will be skipped for the remaining workflows.'
			)
			self._license_notice_emitted = True

	def sync(self, manifest: ManifestStore) -> SyncResult:
		"""
		Place every manifest entry's workflow in its target folder.

		Args:
		    manifest: Reconciled manifest; read only.

		Returns:
		    SyncResult: Counts of created projects and folders, moved
		    workflows, failures, and the audit trail.

		"""
		result = SyncResult()
		for entry in manifest:
			record = self.sync_entry(entry, result)
			result.audit.append(record)
			if record['status'] == STATUS_FAILED:
				result.failed += 1

		total = len(result.audit)
		if total:
			self.logger.info(
				f'Folder assignment summary: {result.count(STATUS_SUCCESS)}/{total} successful, {result.failed} failed'
			)
		else:
			self.logger.info('No folder assignments recorded')
		self.logger.info(
			f'Folder synchronization summary: {result.projects_created} project(s) created, '
			f'{result.folders_created} folder(s) created, {result.folders_repositioned} folder(s) repositioned, '
			f'{result.workflows_reassigned} workflow(s) reassigned.'
		)
		return result

	def sync_entry(self, entry: ManifestEntry, result: SyncResult) -> Dict[str, Any]:
		"""Resolve, create and assign for one entry; returns its audit record."""
		record = {
			'workflowId': entry.workflow_id,
			'workflowName': entry.name,
			'projectId': '',
			'folderId': '',
			'displayPath': entry.target_display_path,
			'status': STATUS_SKIPPED,
			'note': '',
		}
		if not entry.workflow_id:
			record['note'] = 'missing-workflow-id'
			self.logger.warning(f'Skipping folder assignment for {entry.relative_path}: workflow id unknown')
			return record
		if not entry.storage_path:
			record['note'] = 'missing-storage-path'
			return record
		if result.license_blocked:
			record['status'] = STATUS_LICENSE_BLOCKED
			record['note'] = 'license-blocked'
			return record

		try:
			project_id = self.resolve_project(entry, result)
			record['projectId'] = project_id
			folder_id = self.ensure_folder_path(project_id, entry, result)
		except N8NError as e:
			if is_license_block(e):
				self._block(result, 'folder creation')
				record['status'] = STATUS_LICENSE_BLOCKED
				record['note'] = 'license-blocked'
				return record
			self.logger.error(f'Failed to prepare folders for {entry.name!r} ({entry.workflow_id}): {e!s}')
			record['status'] = STATUS_FAILED
			record['note'] = 'folder-create-failed'
			return record

		record['folderId'] = folder_id or ''
		if folder_id is None and self.dry_run and entry.target_folder_slugs:
			record['status'] = STATUS_DRY_RUN
			record['note'] = 'folders-pending'
			return record

		return self.assign(entry, project_id, folder_id or '', record, result)

	def resolve_project(self, entry: ManifestEntry, result: SyncResult) -> str:
		"""
		Find, or create, the project an entry belongs to.

		Falls back to the default project, with a WARNING, when the
		project neither exists nor can be created.
		"""
		for candidate in (entry.target_project_slug, entry.target_project_name, self.project_name):
			project_id = self.cache.get_project_id(candidate)
			if project_id:
				return project_id

		name = entry.target_project_name or self.project_name
		if name and normalize_name_key(name) != 'personal':
			if self.dry_run:
				self.logger.info(f'[dry run] Would create project {name!r}')
			else:
				try:
					project = self.client.projects.create_project(name)
				except N8NError as e:
					self.logger.warning(f'Could not create project {name!r}, using the default project: {e!s}')
					return self.cache.default_project_id
				else:
					if project.id:
						self.cache.add_project(project)
						result.projects_created += 1
						return project.id

		wanted = entry.target_project_slug or name
		if wanted:
			self.logger.warning(f'Project {wanted!r} not found; using the default project for {entry.name!r}')
		else:
			self.logger.debug(f'No target project for {entry.name!r}; using the default project')
		return self.cache.default_project_id

	@staticmethod
	def _match_folder(folders: List[Folder], name: str, slug: str) -> Optional[str]:
		"""First folder whose slug matches, else the first whose name matches."""
		slug_key = slug.lower()
		name_key = normalize_name_key(name)
		for folder in folders:
			if sanitize_slug(folder.name).lower() == slug_key:
				return folder.id
		for folder in folders:
			if normalize_name_key(folder.name) == name_key:
				return folder.id
		return None

	def _find_child(self, project_id: str, parent_id: str, name: str, slug: str) -> Optional[str]:
		children = [
			folder
			for folder in self.cache.folders.values()
			if folder.project_id == project_id and (folder.parent_id or '') == parent_id
		]
		return self._match_folder(children, name, slug)

	def _find_elsewhere(self, project_id: str, parent_id: str, name: str, slug: str) -> Optional[str]:
		"""
		Find a same-named folder of the project under some other parent.

		Folders already placed by this run, their ancestors and the ancestors
		of ``parent_id`` are never candidates, so a move cannot break a path
		resolved earlier or create a cycle. Shallower folders win, then lower ids.
		"""
		pinned = set(self.cache.ancestor_ids(parent_id))
		for folder_id in self._placed_folders:
			pinned.update(self.cache.ancestor_ids(folder_id))
		candidates = sorted(
			(
				folder
				for folder in self.cache.folders.values()
				if folder.project_id == project_id
				and folder.id not in pinned
				and (folder.parent_id or '') != parent_id
			),
			key=lambda folder: (len(self.cache.folder_path(folder.id)), folder.id),
		)
		return self._match_folder(candidates, name, slug)

	def ensure_folder_path(self, project_id: str, entry: ManifestEntry, result: SyncResult) -> Optional[str]:
		"""
		Make sure every folder on the entry's target path exists.

		A level that is missing reuses a folder of the same name found
		elsewhere in the project by moving it under the expected parent, and
		only creates a new folder when there is none.

		Args:
		    project_id: Project that owns the path.
		    entry: Manifest entry with target folder slugs and names.
		    result: Receives the folders_created and folders_repositioned counts.

		Returns:
		    str: The leaf folder id, an empty string for the project root, or
		    None in a dry run when a folder on the path does not exist yet.

		Raises:
		    N8NError: If a folder cannot be created or moved.

		"""
		slugs = entry.target_folder_slugs
		names = entry.target_folder_names
		parent_id = ''
		path_names: List[str] = []

		for index, slug in enumerate(slugs):
			name = names[index] if index < len(names) else unslug_to_title(slug)
			path_names.append(name)
			path = '/'.join(path_names)

			folder_id = self.cache.resolve_folder_path(project_id, path)
			if not folder_id:
				folder_id = self._find_child(project_id, parent_id, name, slug)
			if not folder_id:
				folder_id = self._find_elsewhere(project_id, parent_id, name, slug)
				if folder_id:
					old_path = '/'.join(self.cache.folder_path(folder_id))
					if self.dry_run:
						self.logger.info(f'[dry run] Would move folder {old_path!r} to {path!r}')
						return None
					self.client.folders.move_folder(folder_id, project_id, parent_id or None)
					self.cache.move_folder(folder_id, parent_id)
					result.folders_repositioned += 1
					self.logger.info(f'Moved existing folder {old_path!r} to {path!r} ({folder_id})')
			if not folder_id:
				if self.dry_run:
					self.logger.info(f'[dry run] Would create folder {folder_cache_key(project_id, path)!r}')
					return None
				folder_id = self.client.folders.create_folder(name, project_id, parent_id or None)
				self.cache.set_folder(folder_id, name, project_id, parent_id)
				result.folders_created += 1
				self.logger.info(
					f'Created folder {path!r} ({folder_id}) in project {self.cache.project_name(project_id)!r}'
				)
			self._placed_folders.add(folder_id)
			parent_id = folder_id

		return parent_id

	def assign(
		self,
		entry: ManifestEntry,
		project_id: str,
		folder_id: str,
		record: Dict[str, Any],
		result: SyncResult,
	) -> Dict[str, Any]:
		"""Move the entry's workflow unless it already sits in the target folder."""
		workflow_id = entry.workflow_id
		current = self.cache.get_workflow(workflow_id)
		if current is not None and current.project_id == project_id and (current.folder_id or '') == folder_id:
			record['status'] = STATUS_UNCHANGED
			record['note'] = 'already-in-place'
			return record
		if current is None and not folder_id and project_id == self.cache.default_project_id:
			# fresh imports land in the default project's root
			record['status'] = STATUS_UNCHANGED
			record['note'] = 'imported-at-root'
			return record

		if self.dry_run:
			self.logger.info(
				f'[dry run] Would move {entry.name!r} ({workflow_id}) to {entry.target_display_path or "<root>"!r}'
			)
			record['status'] = STATUS_DRY_RUN
			return record

		version_id = current.version_id if current is not None else ''
		if not version_id:
			try:
				version_id = self.client.workflows.get_workflow(workflow_id).version_id
			except N8NError as e:
				self.logger.debug(f'Could not fetch versionId of {workflow_id}: {e!s}')

		try:
			self.client.workflows.assign(workflow_id, project_id, folder_id or None, version_id or None)
		except N8NError as e:
			if is_license_block(e):
				self._block(result, 'workflow folder reassignments')
				record['status'] = STATUS_LICENSE_BLOCKED
				record['note'] = append_note(record['note'], 'license-blocked')
				return record
			if isinstance(e, N8NAPIError) and e.status_code == 400:
				self.logger.warning(
					f'Failed to assign {entry.name!r} ({workflow_id}), possible version conflict: {e!s}'
				)
				record['note'] = append_note(record['note'], 'version-conflict')
			else:
				self.logger.warning(f'Failed to assign {entry.name!r} ({workflow_id}) to its target folder: {e!s}')
				record['note'] = append_note(record['note'], 'api-update-failed')
			record['status'] = STATUS_FAILED
			return record

		self.cache.set_workflow_assignment(workflow_id, project_id, folder_id, version_id or None)
		result.workflows_reassigned += 1
		record['status'] = STATUS_SUCCESS
		self.logger.debug(f'Assigned {entry.name!r} ({workflow_id}) to {entry.target_display_path or "<root>"!r}')
		return record
