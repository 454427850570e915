"""
Restore pipeline for the n8n manager package.

Runs the reconciliation engine end to end: load remote state, snapshot,
stage, import, snapshot again, reconcile ids and put every workflow into
its folder.
"""

import datetime
import glob
import os
from typing import Optional

from n8n_manager.exceptions import N8NCommandError, N8NValidationError
from n8n_manager.pipelines.base import BasePipeline, PipelineResult
from n8n_manager.reconcile.folder_sync import STATUS_UNCHANGED, FolderSynchronizer
from n8n_manager.reconcile.manifest import MAPPING_FILENAME, ManifestStore, PriorMapping
from n8n_manager.reconcile.reconciler import PostImportReconciler
from n8n_manager.reconcile.snapshot import SnapshotService
from n8n_manager.reconcile.staging import StagingNormalizer, StagingOptions
from n8n_manager.reconcile.state import RemoteStateCache
from n8n_manager.utils.helpers import format_date, temp_directory


class RestorePipeline(BasePipeline):
	"""
	Pipeline for restoring a backup into a live n8n instance.

	Fatal problems (no projects on the instance, n8n CLI unreachable, nothing
	to stage, import failure) raise. Problems with single files or single
	workflows are logged, counted and reported in the result.
	"""

	def execute(self, *args, **kwargs) -> PipelineResult:
		"""
		Execute the specified restore operation.

		Args:
		    operation: ``restore`` (default) or ``credentials``.
		    **kwargs: Additional arguments specific to the operation.

		Returns:
		    PipelineResult: The pipeline execution result.

		"""
		operation = kwargs.pop('operation', 'restore')

		if operation == 'restore':
			return self.restore(**kwargs)
		if operation == 'credentials':
			return self.restore_credentials(**kwargs)
		result = PipelineResult(success=False, message=f'Unknown restore operation: {operation}')
		result.add_error(f'Unknown operation: {operation}')
		return result

	def staging_options(self) -> StagingOptions:
		return StagingOptions(
			preserve_ids=self.config.preserve_ids,
			no_overwrite=self.config.no_overwrite,
			allow_unlocated_name_match=self.config.allow_unlocated_name_match,
			project_name=self.config.project_name,
			base_path=self.config.n8n_path,
			credentials_folder_name=self.config.credentials_folder_name,
		)

	def restore(self, source_dir: Optional[str] = None) -> PipelineResult:
		"""
		Restore workflows (and credentials, when enabled) from a backup root.

		Args:
		    source_dir: Backup root. Defaults to the configured local_backup_path.

		Returns:
		    PipelineResult: Counters for created, updated and unresolved
		    workflows, created folders and projects, reassignments, the
		    snapshot source and the folder assignment audit.

		Raises:
		    N8NValidationError: If the source directory does not exist or holds
		        no stageable workflow.
		    N8NStateError: If the remote state cannot be loaded.
		    N8NCommandError: If the n8n CLI is unreachable or the import fails.

		"""
		source_dir = source_dir or self.config.local_backup_path
		if not os.path.isdir(source_dir):
			raise N8NValidationError(f'Backup directory not found: {source_dir}')

		result = PipelineResult()
		dry_run = self.config.dry_run

		if self.config.workflows_mode.enabled:
			self.restore_workflows(source_dir, dry_run, result)
		else:
			self.logger.info('Workflow storage is disabled; skipping workflow restore')

		if self.config.credentials_mode.enabled:
			result.merge(self.restore_credentials(source_dir=source_dir))

		summary = (
			f"Restore {'planned' if dry_run else 'finished'}: "
			f"{result.details.get('created', 0)} created, {result.details.get('updated', 0)} updated, "
			f"{result.details.get('unchanged', 0)} unchanged, "
			f"{result.details.get('unresolved', 0)} unresolved, "
			f"{result.details.get('folders_created', 0)} folder(s) created, "
			f"{result.details.get('folders_repositioned', 0)} folder(s) repositioned, "
			f"{result.details.get('workflows_reassigned', 0)} workflow(s) reassigned"
		)
		self.logger.info(summary)
		if result.warnings:
			self.logger.warning(f'Restore finished with {len(result.warnings)} warning(s)')
		result.message = summary
		return result

	def restore_workflows(self, source_dir: str, dry_run: bool, result: PipelineResult) -> None:
		"""Run the stage, import, reconcile and folder sync phases."""
		if not self.runner.is_reachable():
			raise N8NCommandError('The n8n CLI is not reachable; cannot import workflows')

		cache = RemoteStateCache(self.client).load()
		snapshots = SnapshotService(self.client, self.runner)
		pre_snapshot, source = snapshots.capture()
		result.details['snapshot_source'] = source

		mapping = PriorMapping.load(os.path.join(source_dir, MAPPING_FILENAME))
		if len(mapping):
			self.logger.info(f'Loaded folder mapping with {len(mapping)} workflow(s) from the backup')

		try:
			with temp_directory(prefix='n8n-restore-') as work_dir:
				manifest = ManifestStore(os.path.join(work_dir, 'manifest.ndjson'))
				staging_dir = os.path.join(work_dir, 'staged')

				normalizer = StagingNormalizer(cache, pre_snapshot, mapping, self.staging_options())
				staging = normalizer.stage_directory(source_dir, staging_dir, manifest)
				manifest.flush()
				result.details['staged'] = staging.staged
				result.details['skipped'] = staging.skipped
				result.details['permissive_name_matches'] = staging.permissive_name_matches
				for skipped in staging.skipped:
					result.add_warning(f"Skipped {skipped['path']}: {skipped['error']}")

				if dry_run:
					self.logger.info(f'[dry run] Would import {staging.staged} workflow(s) from {source_dir}')
				else:
					self.runner.import_workflows(staging_dir)
					self.logger.info(f'Imported {staging.staged} workflow(s)')

					post_snapshot, _ = snapshots.capture()
					reconciled = PostImportReconciler(pre_snapshot, post_snapshot, cache).reconcile(manifest)
					manifest.flush()
					result.details.update({
						'created': reconciled.created,
						'updated': reconciled.updated,
						'unresolved': reconciled.unresolved,
					})
					for warning in reconciled.warnings:
						result.add_warning(warning)
					cache.refresh_workflows()

				synchronizer = FolderSynchronizer(
					self.client, cache, dry_run=dry_run, project_name=self.config.project_name
				)
				synced = synchronizer.sync(manifest)
				pre_ids = pre_snapshot.ids()
				kept_in_place = [
					record for record in synced.audit
					if record['status'] == STATUS_UNCHANGED and record['workflowId'] in pre_ids
				]
				result.details.update({
					'unchanged': len(kept_in_place),
					'folders_created': synced.folders_created,
					'folders_repositioned': synced.folders_repositioned,
					'projects_created': synced.projects_created,
					'workflows_reassigned': synced.workflows_reassigned,
					'audit': synced.audit,
				})
				if synced.failed:
					result.add_warning(f'{synced.failed} workflow(s) could not be moved to their folder')

				for entry in manifest:
					result.add_resource('workflows', entry.workflow_id or entry.relative_path, entry.to_dict())

				if self.config.keep_manifest:
					kept = os.path.join(
						source_dir, f'.n8n-restore-manifest-{format_date(datetime.datetime.now())}.ndjson'
					)
					manifest.flush()
					manifest.copy_to(kept)
					result.details['manifest'] = kept
					self.logger.info(f'Manifest kept at {kept}')
		finally:
			cache.invalidate()

	def restore_credentials(self, source_dir: Optional[str] = None) -> PipelineResult:
		"""
		Import every credentials file from the backup's credentials folder.

		A file that fails to import is recorded and the rest are still imported.

		Args:
		    source_dir: Backup root.

		Returns:
		    PipelineResult: Imported files, and errors for the failed ones.

		"""
		result = PipelineResult()
		source_dir = source_dir or self.config.local_backup_path
		credentials_dir = os.path.join(source_dir, self.config.credentials_folder_name)
		files = sorted(glob.glob(os.path.join(credentials_dir, '*.json')))
		if not files:
			self.logger.info(f'No credentials to restore in {credentials_dir}')
			return result

		imported = []
		for file_path in files:
			before = len(result.errors)
			self.execute_safely(
				self.runner.import_credentials,
				f'Failed to import credentials from {os.path.basename(file_path)}',
				resource_id=file_path,
				result=result,
				source=file_path,
			)
			if len(result.errors) == before:
				imported.append(file_path)

		result.details['credentials_imported'] = len(imported)
		self.logger.info(f'Imported {len(imported)} of {len(files)} credentials file(s)')
		return result
