"""
Staging normalizer for restores.

Copies every workflow file of a backup into a flat staging directory and,
on the way, decides which id each staged workflow is imported with. The
decision and its reason end up in the manifest entry for that file.
"""

import datetime
import logging
import os
import posixpath
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from n8n_manager.exceptions import N8NError, N8NValidationError
from n8n_manager.reconcile.layout import TargetContext, compute_target_context
from n8n_manager.reconcile.manifest import (
	MAPPING_FILENAME,
	ManifestEntry,
	ManifestStore,
	MappingRecord,
	PriorMapping,
)
from n8n_manager.reconcile.snapshot import Snapshot
from n8n_manager.reconcile.state import RemoteStateCache
from n8n_manager.schemas import MatchType, WorkflowSummary
from n8n_manager.utils.helpers import ensure_directory_exists, parse_timestamp, read_json, write_json
from n8n_manager.utils.text import (
	append_note,
	lookup_path_matches,
	normalize_folder_path,
	normalize_lookup_key,
	normalize_name_key,
	sanitize_slug,
	sanitize_text,
)
from n8n_manager.utils.validators import is_valid_workflow_id, validate_workflow_payload

EXCLUDED_FILENAMES = {'credentials.json', MAPPING_FILENAME}
EXCLUDED_DIRECTORIES = {'archive', '.git'}
OLDEST = datetime.datetime.min.replace(tzinfo=datetime.timezone.utc)


@dataclass
class StagingOptions:
	"""
	Knobs for id handling during staging.

	Attributes:
	    preserve_ids: Force staged ids to the matched existing id.
	    no_overwrite: Always import as new workflows. Turns preserve_ids off.
	    allow_unlocated_name_match: Accept a name match when neither side
	        carries any folder information.
	    project_name: Configured target project name.
	    project_slug: Configured target project slug.
	    base_path: Folder path prepended inside the target project.
	    credentials_folder_name: Directory skipped during discovery.

	"""

	preserve_ids: bool = False
	no_overwrite: bool = False
	allow_unlocated_name_match: bool = True
	project_name: str = ''
	project_slug: str = ''
	base_path: str = ''
	credentials_folder_name: str = '.credentials'

	def __post_init__(self):
		if self.no_overwrite:
			self.preserve_ids = False


@dataclass
class IdentityMatch:
	"""An existing remote workflow a staged file was tied to."""

	match_type: MatchType
	workflow_id: str
	name: str = ''
	storage_path: str = ''
	display_path: str = ''
	folder_names: List[str] = field(default_factory=list)
	note: str = ''

	@classmethod
	def from_record(cls, record: MappingRecord, match_type: MatchType, note: str = '') -> 'IdentityMatch':
		return cls(
			match_type=match_type,
			workflow_id=record.id,
			name=record.name,
			storage_path=record.relative_path,
			display_path=record.display_path,
			folder_names=list(record.folder_names),
			note=note,
		)

	@classmethod
	def from_summary(cls, row: WorkflowSummary, match_type: MatchType, note: str = '') -> 'IdentityMatch':
		return cls(
			match_type=match_type,
			workflow_id=row.id,
			name=row.name,
			storage_path=row.relative_path,
			note=note,
		)


@dataclass
class StagingResult:
	"""Outcome of staging a backup directory."""

	staging_dir: str = ''
	staged: int = 0
	skipped: List[Dict[str, str]] = field(default_factory=list)
	permissive_name_matches: int = 0

	def to_dict(self) -> Dict[str, Any]:
		return {
			'staging_dir': self.staging_dir,
			'staged': self.staged,
			'skipped': self.skipped,
			'permissive_name_matches': self.permissive_name_matches,
		}


def discover_workflow_files(root: str, credentials_folder_name: str = '.credentials') -> List[Tuple[str, str]]:
	"""
	Find workflow files below a backup root.

	Credentials, archives, git metadata and the folder mapping are skipped.

	Args:
	    root: Backup root directory.
	    credentials_folder_name: Credentials directory to skip.

	Returns:
	    List[Tuple[str, str]]: (absolute path, posix path relative to the root),
	    sorted by relative path.

	"""
	excluded_dirs = EXCLUDED_DIRECTORIES | {credentials_folder_name}
	found = []
	for dirpath, dirnames, filenames in os.walk(root):
		dirnames[:] = sorted(d for d in dirnames if d not in excluded_dirs)
		for filename in sorted(filenames):
			if not filename.lower().endswith('.json') or filename in EXCLUDED_FILENAMES:
				continue
			file_path = os.path.join(dirpath, filename)
			relative = os.path.relpath(file_path, root).replace(os.sep, '/')
			found.append((file_path, relative))
	return sorted(found, key=lambda item: item[1])


def sanitize_workflow(data: Dict[str, Any]) -> Dict[str, Any]:
	"""
	Normalize fields n8n is strict about on import.

	``active`` becomes a boolean (false unless it already was true) and
	``tags`` becomes a list of unique ``{"name": ...}`` objects.

	Args:
	    data: Parsed workflow document; modified in place.

	Returns:
	    Dict: The same document.

	"""
	data['active'] = data.get('active') is True

	tags = data.get('tags')
	names: List[str] = []
	if isinstance(tags, list):
		for tag in tags:
			if isinstance(tag, dict):
				name = tag.get('name') or tag.get('label') or tag.get('value')
				if not name and tag.get('id'):
					name = f'tag-{tag["id"]}'
			else:
				name = tag
			name = sanitize_text(str(name)) if name is not None else ''
			if name and name not in names:
				names.append(name)
	data['tags'] = [{'name': name} for name in names]
	return data


def recency_key(row: WorkflowSummary) -> Tuple[datetime.datetime, str]:
	"""Order snapshot rows by updatedAt, then id; rows without a timestamp sort first."""
	return parse_timestamp(row.updated_at) or OLDEST, row.id


class StagingNormalizer:
	"""
	Stages backup files and resolves each one's identity.

	Identity signals are consulted in a fixed priority order: the prior
	backup's folder mapping, then the pre-import snapshot by id, instance
	marker and name. A name match is only trusted when the existing
	workflow's location agrees with where the file says it belongs.
	"""

	def __init__(
		self,
		cache: RemoteStateCache,
		snapshot: Snapshot,
		mapping: Optional[PriorMapping] = None,
		options: Optional[StagingOptions] = None,
	):
		"""
		Initialize the normalizer.

		Args:
		    cache: Loaded remote state cache.
		    snapshot: Pre-import snapshot of remote workflows.
		    mapping: Folder mapping from the previous backup, if any.
		    options: Id handling options.

		"""
		self.cache = cache
		self.snapshot = snapshot
		self.mapping = mapping or PriorMapping()
		self.options = options or StagingOptions()
		self.logger = logging.getLogger(f'n8n_manager.{self.__class__.__name__}')
		self.permissive_name_matches = 0
		self._snapshot_by_id = snapshot.by_id()
		# staged id -> normalized storage path that claimed it
		self._claimed_ids: Dict[str, str] = {}
		self._used_filenames: set = set()

	def discover(self, source_dir: str) -> List[Tuple[str, str]]:
		return discover_workflow_files(source_dir, self.options.credentials_folder_name)

	def stage_directory(self, source_dir: str, staging_dir: str, manifest: ManifestStore) -> StagingResult:
		"""
		Stage every workflow file below source_dir.

		A file that cannot be read or staged is logged and skipped.

		Args:
		    source_dir: Backup root directory.
		    staging_dir: Flat output directory.
		    manifest: Store that receives one entry per staged file.

		Returns:
		    StagingResult: Counts and skipped files.

		Raises:
		    N8NValidationError: If no file could be staged.

		"""
		ensure_directory_exists(staging_dir)
		result = StagingResult(staging_dir=staging_dir)

		for file_path, relative_path in self.discover(source_dir):
			try:
				entry = self.stage_file(file_path, relative_path, staging_dir)
			except (N8NError, ValueError, OSError) as e:
				self.logger.error(f'Failed to stage {relative_path}: {e!s}')
				result.skipped.append({'path': relative_path, 'error': str(e)})
				continue
			manifest.upsert(entry)
			result.staged += 1

		result.permissive_name_matches = self.permissive_name_matches
		if result.staged == 0:
			raise N8NValidationError(f'No workflow files could be staged from {source_dir}')
		self.logger.info(f'Staged {result.staged} workflow file(s), skipped {len(result.skipped)}')
		return result

	def _destination_filename(self, staging_dir: str, filename: str) -> str:
		base, extension = os.path.splitext(filename)
		candidate = filename
		suffix = 1
		while candidate in self._used_filenames or os.path.exists(os.path.join(staging_dir, candidate)):
			candidate = f'{base}_{suffix}{extension}'
			suffix += 1
		self._used_filenames.add(candidate)
		return candidate

	def stage_file(self, file_path: str, relative_path: str, staging_dir: str) -> ManifestEntry:
		"""
		Stage one workflow file and decide the id it is imported with.

		Args:
		    file_path: Absolute path of the backup file.
		    relative_path: Posix path of the file relative to the backup root.
		    staging_dir: Flat output directory.

		Returns:
		    ManifestEntry: The staging decision for this file.

		"""
		data = sanitize_workflow(validate_workflow_payload(read_json(file_path), relative_path))
		opts = self.options

		storage_path = normalize_folder_path(posixpath.dirname(relative_path))
		context = compute_target_context(
			storage_path,
			project_name=opts.project_name,
			project_slug=opts.project_slug,
			base_path=opts.base_path,
		)

		name = str(data.get('name') or '')
		meta = data.get('meta') if isinstance(data.get('meta'), dict) else {}
		instance = str(meta.get('instanceId') or '')
		original_id = '' if data.get('id') is None else str(data.get('id'))
		staged_id = original_id
		note = ''

		if staged_id and not is_valid_workflow_id(staged_id):
			self.logger.debug(f'Removed invalid workflow id {staged_id!r} from {relative_path}')
			data.pop('id', None)
			staged_id = ''
			note = 'sanitized-invalid-format'

		# prior mapping first, then the snapshot
		duplicate: Optional[IdentityMatch] = None
		resolved_source = ''
		record, record_type, tie_note = self.mapping.lookup(storage_path, name)
		if record is not None and record.id:
			duplicate = IdentityMatch.from_record(record, record_type, tie_note)
			resolved_source = record_type.value
			# backup directories hold slugs; the mapping keeps the real folder names
			if (
				normalize_lookup_key(record.relative_path) == normalize_lookup_key(storage_path)
				and len(record.folder_names) == len(context.folder_names)
			):
				context.folder_names = list(record.folder_names) or context.folder_names
		if duplicate is None:
			duplicate = self._match_existing(storage_path, context, staged_id, instance, name)

		existing_id = duplicate.workflow_id if duplicate else ''
		existing_storage = duplicate.storage_path if duplicate else ''
		existing_display = duplicate.display_path if duplicate else ''
		if duplicate and not resolved_source:
			resolved_source = duplicate.match_type.value

		name_match = self._match_existing(storage_path, context, '', instance, name) if name else None
		name_allowed = False
		aligned = False
		if name_match is not None:
			name_allowed = self._name_match_allowed(name_match, context, storage_path, relative_path)
			if name_allowed:
				existing_storage = existing_storage or self._candidate_location(name_match)[0]
				existing_display = existing_display or context.display_path
				if duplicate is None:
					duplicate = name_match
					existing_id = name_match.workflow_id
					resolved_source = name_match.match_type.value

		if not opts.preserve_ids and not opts.no_overwrite and name_allowed:
			if is_valid_workflow_id(name_match.workflow_id):
				if staged_id != name_match.workflow_id:
					self.logger.debug(
						f'Aligning {relative_path} to existing workflow {name_match.workflow_id} by name'
					)
				data['id'] = name_match.workflow_id
				staged_id = name_match.workflow_id
				existing_id = name_match.workflow_id
				resolved_source = 'name-match'
				aligned = True
			else:
				self.logger.debug(
					f'Name-matched workflow id {name_match.workflow_id!r} for {relative_path} is invalid; not aligning'
				)

		id_exists_in_target = bool(staged_id) and (
			staged_id == existing_id
			or (duplicate is not None and duplicate.match_type is MatchType.ID)
			or staged_id in self._snapshot_by_id
		)

		if opts.preserve_ids and existing_id and staged_id != existing_id:
			if is_valid_workflow_id(existing_id):
				data['id'] = existing_id
				staged_id = existing_id
			else:
				data.pop('id', None)
				staged_id = ''
				note = append_note(note, 'sanitized-existing-invalid')

		if not opts.preserve_ids and staged_id:
			clear_reason = ''
			if name_match is not None and not name_allowed:
				clear_reason = 'folder-name-mismatch'
			elif opts.no_overwrite:
				clear_reason = 'no-overwrite'
			elif id_exists_in_target and not aligned:
				clear_reason = 'id-conflict'
			elif not self._claim_id(staged_id, storage_path):
				clear_reason = 'staged-duplicate-conflict'

			if clear_reason:
				self.logger.debug(f'Cleared workflow id {staged_id} for {relative_path} ({clear_reason})')
				data.pop('id', None)
				staged_id = ''
				note = append_note(note, clear_reason)

		if opts.preserve_ids and not existing_id and staged_id and not is_valid_workflow_id(staged_id):
			data.pop('id', None)
			staged_id = ''
			note = note or 'sanitized-orphan-invalid'

		if staged_id:
			self.logger.debug(f'Importing {relative_path} with id {staged_id}')
		else:
			self.logger.debug(f'Importing {relative_path} with a new n8n-assigned id')

		filename = self._destination_filename(staging_dir, posixpath.basename(relative_path))
		write_json(os.path.join(staging_dir, filename), data)

		return ManifestEntry(
			filename=filename,
			id=staged_id,
			name=name,
			description=str(data.get('description') or ''),
			meta_instance_id=instance,
			duplicate_match_type=duplicate.match_type.value if duplicate else '',
			match_note=duplicate.note if duplicate else '',
			existing_workflow_id=existing_id,
			original_workflow_id=original_id,
			relative_path=relative_path,
			storage_path=storage_path,
			existing_storage_path=existing_storage,
			existing_display_path=existing_display,
			id_resolution_source=resolved_source,
			sanitized_id_note=note,
			preserve_ids=opts.preserve_ids,
			no_overwrite=opts.no_overwrite,
			name_match_workflow_id=name_match.workflow_id if name_match else '',
			name_match_relative_path=name_match.storage_path if name_match else '',
			name_match_type=name_match.match_type.value if name_match else '',
			id_aligned_by_name_match=aligned,
			target_project_slug=context.project_slug,
			target_project_name=context.project_name,
			target_display_path=context.display_path,
			target_folder_slug_path=context.folder_slug_path,
			target_folder_display_path=context.folder_display_path,
		)

	def _claim_id(self, staged_id: str, storage_path: str) -> bool:
		"""Register staged_id for a folder; False if another folder already holds it."""
		folder_key = normalize_lookup_key(storage_path)
		prior = self._claimed_ids.get(staged_id)
		if prior is not None and prior != folder_key:
			return False
		self._claimed_ids[staged_id] = folder_key
		return True

	def _match_existing(
		self,
		storage_path: str,
		context: TargetContext,
		workflow_id: str,
		instance: str,
		name: str,
	) -> Optional[IdentityMatch]:
		"""
		Look for an existing workflow by id, then instance marker, then name.

		The prior mapping is searched within the file's folder first.
		"""
		candidates = self.mapping.in_path(storage_path) if storage_path else self.mapping.records
		if workflow_id:
			for record in candidates:
				if record.id == workflow_id:
					return IdentityMatch.from_record(record, MatchType.ID)
		elif name:
			name_key = normalize_name_key(name)
			for record in candidates:
				if record.id and normalize_name_key(record.name) == name_key:
					return IdentityMatch.from_record(record, MatchType.NAME)

		if workflow_id and workflow_id in self._snapshot_by_id:
			return IdentityMatch.from_summary(self._snapshot_by_id[workflow_id], MatchType.ID)

		tie_note = ''
		if instance:
			rows = [row for row in self.snapshot if row.instance_marker == instance]
			if len(rows) == 1:
				return IdentityMatch.from_summary(rows[0], MatchType.INSTANCE_ID)
			if len(rows) > 1:
				located = [row for row in rows if self._cache_location_matches(row.id, context)]
				if len(located) == 1:
					return IdentityMatch.from_summary(
						located[0], MatchType.INSTANCE_ID, 'shared instance marker resolved via target folder'
					)
				tie_note = 'shared instance marker ignored'

		if name:
			name_key = name.lower()
			rows = [row for row in self.snapshot if row.name.lower() == name_key]
			if len(rows) == 1:
				return IdentityMatch.from_summary(rows[0], MatchType.NAME, tie_note)
			if len(rows) > 1:
				located = [row for row in rows if self._cache_location_matches(row.id, context)]
				if len(located) == 1:
					note = 'multiple name matches resolved via target folder'
					return IdentityMatch.from_summary(located[0], MatchType.NAME, append_note(tie_note, note))
				note = 'multiple name matches resolved via newest updatedAt'
				newest = max(located or rows, key=recency_key)
				return IdentityMatch.from_summary(newest, MatchType.NAME, append_note(tie_note, note))
		return None

	def _target_project_id(self, context: TargetContext) -> str:
		return (
			self.cache.get_project_id(context.project_name)
			or self.cache.get_project_id(context.project_slug)
			or self.cache.default_project_id
		)

	def _cache_location_matches(self, workflow_id: str, context: TargetContext) -> bool:
		workflow = self.cache.get_workflow(workflow_id)
		if workflow is None:
			return False
		target_project = self._target_project_id(context)
		if workflow.project_id and target_project and workflow.project_id != target_project:
			return False
		names = self.cache.folder_path(workflow.folder_id) if workflow.folder_id else []
		slugs = [sanitize_slug(name).lower() for name in names]
		return slugs == [slug.lower() for slug in context.folder_slugs]

	def _candidate_location(self, match: IdentityMatch) -> Tuple[str, str]:
		"""Best known (storage path, folder display path) of a matched workflow."""
		record = self.mapping.find_by_id(match.workflow_id)
		if record is not None and record.relative_path:
			return record.relative_path, '/'.join(record.folder_names)
		path = match.storage_path
		if path.lower().endswith('.json'):
			path = posixpath.dirname(path)
		return path.strip('/'), '/'.join(match.folder_names)

	def _name_match_allowed(
		self,
		match: IdentityMatch,
		context: TargetContext,
		storage_path: str,
		relative_path: str,
	) -> bool:
		"""
		Decide whether a name match is in the folder the file belongs to.

		The matched workflow's location comes from the prior mapping, the
		snapshot, or the live remote state, in that order. Without any of
		those, acceptance is governed by allow_unlocated_name_match.
		"""
		project_key = normalize_lookup_key(context.project_slug)
		candidate_path, candidate_display = self._candidate_location(match)
		candidate_path_norm = normalize_lookup_key(candidate_path)
		candidate_display_norm = normalize_lookup_key(candidate_display or candidate_path)

		if candidate_path_norm or candidate_display_norm:
			expected_storage = normalize_lookup_key(storage_path)
			expected_display = normalize_lookup_key(context.folder_display_path)
			expected_slugs = normalize_lookup_key(context.folder_slug_path)
			if lookup_path_matches(candidate_path_norm, expected_storage, project_key):
				return True
			if lookup_path_matches(candidate_display_norm, expected_display, project_key):
				return True
			if lookup_path_matches(candidate_path_norm, expected_slugs, project_key):
				return True
			# a project-root workflow recorded only by its project segment
			if not context.folder_slugs and candidate_path_norm in (project_key, 'personal'):
				return True
			self.logger.debug(
				f'Skipping name match for {relative_path}: existing workflow {match.workflow_id} lives in '
				f'{candidate_display or candidate_path!r}, expected {context.folder_display_path or "<root>"!r}'
			)
			return False

		if self.cache.get_workflow(match.workflow_id) is not None:
			if self._cache_location_matches(match.workflow_id, context):
				return True
			self.logger.debug(
				f'Skipping name match for {relative_path}: existing workflow {match.workflow_id} '
				f'is in a different folder on the server'
			)
			return False

		if self.options.allow_unlocated_name_match:
			self.permissive_name_matches += 1
			self.logger.debug(
				f'Allowing name match for {relative_path} to workflow {match.workflow_id} '
				f'without any folder information'
			)
			return True
		self.logger.debug(f'Rejecting unlocated name match for {relative_path} (allow_unlocated_name_match is off)')
		return False
