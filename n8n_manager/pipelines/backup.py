"""
Backup pipeline for the n8n manager package.

Exports every workflow through the n8n CLI and lays the files out on disk
in a tree that mirrors the remote project/folder hierarchy, next to a
folder mapping that the next restore uses as its strongest identity signal.
"""

import datetime
import os
import posixpath
import shutil
from typing import Any, Dict, List, Optional

from n8n_manager.exceptions import N8NError
from n8n_manager.pipelines.base import BasePipeline, PipelineResult
from n8n_manager.reconcile.manifest import MAPPING_FILENAME
from n8n_manager.reconcile.staging import discover_workflow_files
from n8n_manager.reconcile.state import RemoteStateCache
from n8n_manager.schemas import ProjectKind
from n8n_manager.utils.helpers import (
	ensure_directory_exists,
	files_identical,
	format_date,
	read_json,
	remove_empty_directories,
	temp_directory,
	temp_path,
	write_json,
)
from n8n_manager.utils.text import FILENAME_MAX_LENGTH, sanitize_filename_component, sanitize_slug

DEFAULT_RELATIVE_PATH = 'Personal'


def unique_filename_stem(stem: str, taken: set) -> str:
	"""
	Pick a filename stem not in taken, adding `` (N)`` on collision.

	The suffix counts towards the length limit.

	Args:
	    stem: Sanitized stem.
	    taken: Lowercased stems already used in the same directory.

	Returns:
	    str: A free stem.

	"""
	if stem.lower() not in taken:
		return stem
	counter = 2
	while True:
		suffix = f' ({counter})'
		candidate = stem[: FILENAME_MAX_LENGTH - len(suffix)].rstrip() + suffix
		if candidate.lower() not in taken:
			return candidate
		counter += 1


class BackupPipeline(BasePipeline):
	"""
	Pipeline for backing up n8n workflows and credentials.

	The layout of a backup root is ``<project>/<folder>/.../<workflow>.json``
	plus ``.n8n-folder-structure.json`` and, when enabled, the credentials
	folder. Git mechanics for remote storage are left to the caller.
	"""

	def execute(self, *args, **kwargs) -> PipelineResult:
		"""
		Execute the specified backup operation.

		Args:
		    operation: ``backup`` (default), ``workflows`` or ``credentials``.
		    **kwargs: Additional arguments specific to the operation.

		Returns:
		    PipelineResult: The pipeline execution result.

		"""
		operation = kwargs.pop('operation', 'backup')

		if operation == 'backup':
			return self.backup(**kwargs)
		if operation == 'workflows':
			return self.backup_workflows(**kwargs)
		if operation == 'credentials':
			return self.backup_credentials(**kwargs)
		result = PipelineResult(success=False, message=f'Unknown backup operation: {operation}')
		result.add_error(f'Unknown operation: {operation}')
		return result

	def _target_directory(self, backup_dir: Optional[str]) -> str:
		root = backup_dir or self.config.local_backup_path
		if self.config.dated_backups:
			root = os.path.join(root, format_date(datetime.datetime.now()))
		return ensure_directory_exists(root)

	def backup(self, backup_dir: Optional[str] = None) -> PipelineResult:
		"""
		Back up workflows and credentials according to the storage modes.

		Args:
		    backup_dir: Backup root. Defaults to the configured local_backup_path.

		Returns:
		    PipelineResult: Counts of new, updated, unchanged and deleted files.

		"""
		result = PipelineResult()
		target_dir = self._target_directory(backup_dir)
		result.details['backup_dir'] = target_dir

		if not self.config.workflows_mode.enabled and not self.config.credentials_mode.enabled:
			result.message = 'Workflows and credentials storage are both disabled; nothing to back up'
			self.logger.info(result.message)
			return result

		if self.config.workflows_mode.enabled:
			result.merge(self.backup_workflows(target_dir=target_dir))
		if self.config.credentials_mode.enabled:
			self.execute_safely(
				self.backup_credentials,
				'Failed to back up credentials',
				result=result,
				target_dir=target_dir,
			)

		if result.success:
			result.message = f'Backup written to {target_dir}'
		return result

	def build_folder_mapping(self, cache: RemoteStateCache) -> Dict[str, Any]:
		"""
		Describe where every remote workflow currently lives.

		Args:
		    cache: Loaded remote state.

		Returns:
		    Dict: ``{fetchedAt, workflows: [...], workflowsById: {...}}``.

		"""
		workflows: List[Dict[str, Any]] = []
		for workflow in sorted(cache.workflows.values(), key=lambda item: (item.name.lower(), item.id)):
			project_id = workflow.project_id or cache.default_project_id
			project = cache.projects.get(project_id)
			if project is None or project.kind is ProjectKind.PERSONAL or project_id == cache.default_project_id:
				project_name = DEFAULT_RELATIVE_PATH
			else:
				project_name = project.name
			project_slug = sanitize_slug(project_name) or DEFAULT_RELATIVE_PATH

			folder_names = cache.folder_path(workflow.folder_id) if workflow.folder_id else []
			folders = [{'name': name, 'slug': sanitize_slug(name)} for name in folder_names]

			workflows.append({
				'id': workflow.id,
				'name': workflow.name,
				'updatedAt': workflow.updated_at or None,
				'project': {'id': project_id, 'name': project_name, 'slug': project_slug},
				'folders': folders,
				'relativePath': '/'.join([project_slug] + [folder['slug'] for folder in folders if folder['slug']]),
				'displayPath': '/'.join([project_name] + folder_names),
			})

		return {
			'fetchedAt': datetime.datetime.now(datetime.timezone.utc).isoformat(),
			'workflows': workflows,
			'workflowsById': {item['id']: item for item in workflows},
		}

	def _existing_files_by_id(self, target_dir: str) -> Dict[str, str]:
		existing = {}
		for file_path, relative in discover_workflow_files(target_dir, self.config.credentials_folder_name):
			try:
				data = read_json(file_path)
			except (ValueError, OSError) as e:
				self.logger.warning(f'Ignoring unreadable backup file {relative}: {e!s}')
				continue
			if isinstance(data, dict) and data.get('id'):
				existing.setdefault(str(data['id']), relative)
		return existing

	def backup_workflows(self, target_dir: Optional[str] = None) -> PipelineResult:
		"""
		Export workflows and update the backup tree in place.

		An exported workflow keeps the filename it already had in the tree.
		Files of workflows that no longer exist are removed, and so are
		directories left empty.

		Args:
		    target_dir: Backup root.

		Returns:
		    PipelineResult: new/updated/unchanged/deleted counts.

		"""
		result = PipelineResult()
		target_dir = ensure_directory_exists(target_dir or self._target_directory(None))

		cache = RemoteStateCache(self.client).load()
		mapping = self.build_folder_mapping(cache)
		by_id = mapping['workflowsById']
		existing = self._existing_files_by_id(target_dir)

		stats = {'new': 0, 'updated': 0, 'unchanged': 0, 'deleted': 0, 'failed': 0}
		taken: Dict[str, set] = {}
		for relative in existing.values():
			stem = posixpath.splitext(posixpath.basename(relative))[0]
			taken.setdefault(posixpath.dirname(relative), set()).add(stem.lower())
		written: set = set()

		with temp_directory(prefix='n8n-export-') as export_dir:
			self.runner.export_workflows_separate(export_dir)
			exported = discover_workflow_files(export_dir)
			self.logger.info(f'Exported {len(exported)} workflow file(s)')

			for file_path, relative in exported:
				try:
					data = read_json(file_path)
				except (ValueError, OSError) as e:
					self.logger.error(f'Failed to read exported workflow {relative}: {e!s}')
					result.add_error(f'Failed to read exported workflow {relative}', e)
					stats['failed'] += 1
					continue
				if not isinstance(data, dict) or not data.get('id'):
					self.logger.warning(f'Skipping exported file without a workflow id: {relative}')
					continue

				workflow_id = str(data['id'])
				entry = by_id.get(workflow_id)
				directory = ''
				if self.config.folder_structure:
					directory = entry['relativePath'] if entry else DEFAULT_RELATIVE_PATH

				previous = existing.get(workflow_id)
				if previous is not None and posixpath.dirname(previous) == directory:
					filename = posixpath.basename(previous)
				else:
					stem = sanitize_filename_component(data.get('name'), workflow_id)
					stem = unique_filename_stem(stem, taken.setdefault(directory, set()))
					filename = f'{stem}.json'
				taken.setdefault(directory, set()).add(posixpath.splitext(filename)[0].lower())

				relative_target = posixpath.join(directory, filename) if directory else filename
				destination = os.path.join(target_dir, *relative_target.split('/'))
				ensure_directory_exists(os.path.dirname(destination))

				with temp_path(prefix='n8n-workflow-') as rendered:
					write_json(rendered, data)
					if files_identical(rendered, destination):
						stats['unchanged'] += 1
					else:
						stats['new' if previous is None else 'updated'] += 1
						shutil.copyfile(rendered, destination)

				if previous is not None and previous != relative_target:
					old_path = os.path.join(target_dir, *previous.split('/'))
					if os.path.exists(old_path):
						os.remove(old_path)
						self.logger.debug(f'Moved {previous} to {relative_target}')
				written.add(relative_target)
				result.add_resource('workflows', workflow_id, {'path': relative_target})

		for workflow_id, relative in existing.items():
			if relative in written or workflow_id in result.resources.get('workflows', {}):
				continue
			os.remove(os.path.join(target_dir, *relative.split('/')))
			stats['deleted'] += 1
			self.logger.info(f'Removed backup of deleted workflow {relative}')

		removed_dirs = remove_empty_directories(target_dir)
		write_json(os.path.join(target_dir, MAPPING_FILENAME), mapping)

		self.logger.info(
			f'Workflow backup: {stats["new"]} new, {stats["updated"]} updated, '
			f'{stats["unchanged"]} unchanged, {stats["deleted"]} deleted'
		)
		result.details.update(stats)
		result.details['removed_directories'] = removed_dirs
		return result

	def backup_credentials(self, target_dir: Optional[str] = None) -> PipelineResult:
		"""
		Export credentials into the credentials folder.

		Args:
		    target_dir: Backup root.

		Returns:
		    PipelineResult: The path of the credentials file.

		"""
		result = PipelineResult()
		target_dir = target_dir or self._target_directory(None)
		credentials_dir = ensure_directory_exists(os.path.join(target_dir, self.config.credentials_folder_name))
		destination = os.path.join(credentials_dir, 'credentials.json')

		decrypted = not self.config.credentials_encrypted
		if decrypted:
			self.logger.warning('Exporting credentials decrypted; the backup contains secrets in clear text')
		try:
			self.runner.export_credentials(destination, decrypted=decrypted)
		except N8NError as e:
			self.logger.error(f'Failed to export credentials: {e!s}')
			result.add_error('Failed to export credentials', e)
			return result

		result.details['credentials_file'] = destination
		self.logger.info(f'Credentials exported to {destination}')
		return result
