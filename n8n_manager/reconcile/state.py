"""
Remote state cache for the restore reconciliation engine.

Holds the projects, folders and workflows of the target n8n instance in
memory for the duration of one restore, and answers the questions the
staging and folder synchronization phases ask: which project does a name
refer to, which folder sits at a path, and where does a workflow live now.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from n8n_manager.exceptions import N8NError, N8NStateError
from n8n_manager.schemas import (
	Folder,
	Project,
	ProjectKind,
	RemoteWorkflow,
	extract_items,
)
from n8n_manager.utils.text import (
	normalize_entry_identifier,
	normalize_folder_path,
	normalize_name_key,
	sanitize_slug,
)

# Upper bound on parent hops when resolving a folder path
MAX_FOLDER_DEPTH = 50


def folder_cache_key(project_id: str, path: str) -> str:
	"""Build the ``project/path`` key used in logs and audit records."""
	path = normalize_folder_path(path)
	if not project_id:
		return path
	if not path:
		return project_id
	return f'{project_id}/{path}'


def slug_path_key(path: str) -> str:
	"""Slugged, lowercased form of a folder path for tolerant lookups."""
	segments = normalize_folder_path(path).split('/')
	return '/'.join(sanitize_slug(segment).lower() for segment in segments if segment)


class RemoteStateCache:
	"""
	In-memory index of a remote n8n instance.

	Lifecycle is load, query, then invalidate. Mutations made by the folder
	synchronizer are written back with set_folder and set_workflow_assignment
	so the cache stays coherent without reloading.
	"""

	def __init__(self, client=None):
		"""
		Initialize the cache.

		Args:
		    client: Optional N8NClient used when load() is called without payloads.

		"""
		self.client = client
		self.logger = logging.getLogger(f'n8n_manager.{self.__class__.__name__}')
		self.invalidate()

	def invalidate(self) -> None:
		"""Drop everything loaded so far."""
		self.projects: Dict[str, Project] = {}
		self.project_ids_by_name: Dict[str, str] = {}
		self.default_project_id = ''
		self.folders: Dict[str, Folder] = {}
		self.folder_paths: Dict[str, List[str]] = {}
		self.folder_ids_by_path: Dict[Tuple[str, str], str] = {}
		self.folder_ids_by_slug_path: Dict[Tuple[str, str], str] = {}
		self.workflows: Dict[str, RemoteWorkflow] = {}
		self.fallback_folder_count = 0
		self.skipped_folder_count = 0
		self.truncated_folder_count = 0
		self.loaded = False

	def load(
		self,
		projects: Any = None,
		folders: Any = None,
		workflows: Any = None,
	) -> 'RemoteStateCache':
		"""
		Load projects, folders and workflows.

		Each payload may be a bare JSON array or a ``{"data": [...]}`` object.
		A payload left as None is fetched through the client.

		Args:
		    projects: Projects payload.
		    folders: Folders payload.
		    workflows: Workflows payload.

		Returns:
		    RemoteStateCache: This cache.

		Raises:
		    N8NStateError: If no project can be loaded.

		"""
		self.invalidate()
		self.load_projects(projects)
		self.load_folders(folders)
		self.load_workflows(workflows)
		self.loaded = True
		return self

	def _fetch(self, resource_name: str, required: bool) -> Any:
		if self.client is None:
			if required:
				raise N8NStateError(f'No {resource_name} payload given and no client to fetch it')
			return []
		try:
			return getattr(self.client, resource_name).list_raw()
		except N8NError as e:
			if required:
				raise N8NStateError(f'Unable to load {resource_name} from n8n: {e!s}') from e
			self.logger.warning(f'Unable to load {resource_name} from n8n, continuing without them: {e!s}')
			return []

	def load_projects(self, payload: Any = None) -> None:
		"""
		Index projects by id and by normalized name.

		The personal project, or else the first project seen, becomes the
		default, and ``personal`` always resolves to it.

		Raises:
		    N8NStateError: If there are no projects.

		"""
		if payload is None:
			payload = self._fetch('projects', required=True)

		personal_id = ''
		first_id = ''
		for item in extract_items(payload):
			project = Project.from_api(item)
			if not project.id:
				continue
			self.projects[project.id] = project
			first_id = first_id or project.id

			name_key = normalize_name_key(project.name)
			if name_key and name_key not in self.project_ids_by_name:
				self.project_ids_by_name[name_key] = project.id
			if not personal_id and (project.kind is ProjectKind.PERSONAL or name_key == 'personal'):
				personal_id = project.id

		if not self.projects:
			raise N8NStateError('No projects found on the n8n instance; cannot place workflows')

		self.default_project_id = personal_id or first_id
		self.project_ids_by_name['personal'] = self.default_project_id
		self.logger.info(f'Loaded {len(self.projects)} project(s)')

	def load_folders(self, payload: Any = None) -> None:
		"""
		Index folders and resolve their full paths.

		Folders without a project inherit their parent's project or, failing
		that, the default project. Missing folder data yields an empty index.
		"""
		if payload is None:
			payload = self._fetch('folders', required=False)

		raw = {}
		for item in extract_items(payload):
			folder = Folder.from_api(item)
			folder.parent_id = normalize_entry_identifier(folder.parent_id)
			folder.project_id = normalize_entry_identifier(folder.project_id)
			if folder.id:
				raw[folder.id] = folder

		for folder in raw.values():
			if not folder.project_id:
				folder.project_id = self._inherited_project(folder, raw)
			if not folder.project_id:
				if self.default_project_id:
					folder.project_id = self.default_project_id
					self.fallback_folder_count += 1
				else:
					self.skipped_folder_count += 1
					self.logger.warning(f'Skipping folder {folder.name!r} ({folder.id}): no project and no default project')
					continue
			self.folders[folder.id] = folder

		for folder in self.folders.values():
			names = self._walk_path(folder, raw)
			self.folder_paths[folder.id] = names
			self._index_folder(folder.id, folder.project_id, '/'.join(names))

		if self.fallback_folder_count:
			self.logger.info(
				f'{self.fallback_folder_count} folder(s) had no project reference; assigned to the default project'
			)
		if not self.folders:
			self.logger.info('No folders found on the n8n instance')
		else:
			self.logger.info(f'Loaded {len(self.folders)} folder(s)')

	def _inherited_project(self, folder: Folder, raw: Dict[str, Folder]) -> str:
		current = folder
		for _ in range(MAX_FOLDER_DEPTH):
			parent = raw.get(current.parent_id) if current.parent_id else None
			if parent is None:
				return ''
			if parent.project_id:
				return parent.project_id
			current = parent
		return ''

	def _walk_path(self, folder: Folder, raw: Dict[str, Folder]) -> List[str]:
		names = [folder.name]
		seen = {folder.id}
		current = folder
		hops = 0
		while current.parent_id:
			if hops >= MAX_FOLDER_DEPTH or current.parent_id in seen:
				self.truncated_folder_count += 1
				self.logger.warning(
					f'Detected potential cycle in folder hierarchy at {folder.name!r} ({folder.id}); path truncated'
				)
				break
			parent = raw.get(current.parent_id)
			if parent is None or not parent.name:
				break
			names.insert(0, parent.name)
			seen.add(parent.id)
			current = parent
			hops += 1
		return names

	def _index_folder(self, folder_id: str, project_id: str, path: str) -> None:
		normalized = normalize_folder_path(path)
		self.folder_ids_by_path.setdefault((project_id, normalized), folder_id)
		self.folder_ids_by_slug_path.setdefault((project_id, slug_path_key(normalized)), folder_id)

	def load_workflows(self, payload: Any = None) -> None:
		"""Index workflows by id with their current folder, project and version."""
		if payload is None:
			payload = self._fetch('workflows', required=False)

		for item in extract_items(payload):
			if item.get('resource') == 'folder':
				continue
			workflow = RemoteWorkflow.from_api(item)
			if not workflow.id:
				continue
			workflow.folder_id = normalize_entry_identifier(workflow.folder_id)
			self.workflows[workflow.id] = workflow

		if not self.workflows:
			self.logger.info('No workflows found on the n8n instance (fresh instance)')
		else:
			self.logger.info(f'Loaded {len(self.workflows)} workflow(s)')

	def refresh_workflows(self, payload: Any = None) -> None:
		"""Re-read workflows after an import changed their versions."""
		self.workflows = {}
		self.load_workflows(payload)

	def get_project_id(self, name: Optional[str]) -> str:
		"""
		Resolve a project by id, name or slug.

		Args:
		    name: Project id, display name or slug. ``personal`` is the default project.

		Returns:
		    str: The project id, or an empty string if unknown.

		"""
		if not name:
			return ''
		if name in self.projects:
			return name
		project_id = self.project_ids_by_name.get(normalize_name_key(name))
		if project_id:
			return project_id
		slug_key = sanitize_slug(name).lower()
		for project in self.projects.values():
			if slug_key and sanitize_slug(project.name).lower() == slug_key:
				return project.id
		return ''

	def project_name(self, project_id: str) -> str:
		project = self.projects.get(project_id)
		return project.name if project else ''

	def add_project(self, project: Project) -> None:
		self.projects[project.id] = project
		name_key = normalize_name_key(project.name)
		if name_key:
			self.project_ids_by_name.setdefault(name_key, project.id)

	def resolve_folder_path(self, project_id: str, path: str) -> Optional[str]:
		"""
		Find the folder at a path inside a project.

		Args:
		    project_id: Owning project.
		    path: Slash separated folder names; whitespace and empty segments are ignored.

		Returns:
		    str: The folder id, or None if no such folder is cached.

		"""
		normalized = normalize_folder_path(path)
		if not normalized:
			return None
		folder_id = self.folder_ids_by_path.get((project_id, normalized))
		if folder_id:
			return folder_id
		return self.folder_ids_by_slug_path.get((project_id, slug_path_key(normalized)))

	def folder_path(self, folder_id: str) -> List[str]:
		"""Ordered folder names from the project root down to folder_id."""
		return list(self.folder_paths.get(folder_id, []))

	def set_folder(self, folder_id: str, name: str, project_id: str, parent_id: str = '') -> None:
		"""Record a folder created during this run."""
		folder = Folder(id=folder_id, name=name, parent_id=parent_id, project_id=project_id)
		self.folders[folder_id] = folder
		names = self.folder_path(parent_id) + [name] if parent_id else [name]
		self.folder_paths[folder_id] = names
		self._index_folder(folder_id, project_id, '/'.join(names))

	def move_folder(self, folder_id: str, parent_id: str = '') -> None:
		"""Record a folder's new parent and re-index it and everything below it."""
		folder = self.folders[folder_id]
		folder.parent_id = parent_id or ''
		subtree = [folder_id]
		for current in subtree:
			subtree.extend(
				child.id for child in self.folders.values() if child.parent_id == current and child.id not in subtree
			)

		moved = set(subtree)
		for index in (self.folder_ids_by_path, self.folder_ids_by_slug_path):
			for key in [key for key, value in index.items() if value in moved]:
				del index[key]
		for current in subtree:
			child = self.folders[current]
			names = self.folder_path(child.parent_id) + [child.name] if child.parent_id else [child.name]
			self.folder_paths[current] = names
			self._index_folder(current, child.project_id, '/'.join(names))

	def ancestor_ids(self, folder_id: str) -> List[str]:
		"""Ids of folder_id and its parents, nearest first."""
		ids = []
		current = folder_id
		while current and current not in ids and len(ids) <= MAX_FOLDER_DEPTH:
			ids.append(current)
			folder = self.folders.get(current)
			current = folder.parent_id if folder else ''
		return ids

	def get_workflow(self, workflow_id: str) -> Optional[RemoteWorkflow]:
		return self.workflows.get(workflow_id)

	def set_workflow_assignment(
		self,
		workflow_id: str,
		project_id: str,
		folder_id: str = '',
		version_id: Optional[str] = None,
	) -> None:
		"""Record a workflow's new placement after a successful move."""
		workflow = self.workflows.get(workflow_id)
		if workflow is None:
			workflow = RemoteWorkflow(id=workflow_id)
			self.workflows[workflow_id] = workflow
		workflow.project_id = project_id
		workflow.folder_id = folder_id or ''
		if version_id:
			workflow.version_id = version_id
