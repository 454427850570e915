"""
Folders resource module for the n8n manager package.

This module provides functionality for listing and creating n8n folders.
"""

from typing import Any, Dict, List, Optional

from n8n_manager.exceptions import N8NAPIError
from n8n_manager.resources.base import BaseResource
from n8n_manager.schemas import Folder, first_value


class FoldersResource(BaseResource):
	"""Class for managing n8n folders."""

	base_path = '/folders'
	default_params = {'skip': 0, 'take': 1000}

	def list(self, params: Optional[Dict[str, Any]] = None) -> List[Folder]:
		"""
		List all folders across projects.

		Args:
		    params: Optional query parameters.

		Returns:
		    List[Folder]: Folders, normalized. Items without an id are dropped.

		"""
		folders = [Folder.from_api(item) for item in self.list_raw(params)]
		return [folder for folder in folders if folder.id]

	def create_folder(
		self, name: str, project_id: str, parent_id: Optional[str] = None
	) -> str:
		"""
		Create a folder inside a project.

		Args:
		    name: Display name of the folder.
		    project_id: Project that owns the folder.
		    parent_id: Parent folder id, or None for a top-level folder.

		Returns:
		    str: The id of the created folder.

		Raises:
		    N8NAPIError: If the API does not return an id for the new folder.

		"""
		payload = {
			'name': name,
			'projectId': project_id,
			'parentFolderId': parent_id or None,
		}
		response = self.client.post(self._get_endpoint(), data=payload)
		folder_id = first_value(response if isinstance(response, dict) else {}, ['data.id', 'id'])
		if not folder_id:
			raise N8NAPIError(f'Folder creation for {name!r} returned no id')
		return folder_id

	def move_folder(self, folder_id: str, project_id: str, parent_id: Optional[str] = None) -> Dict[str, Any]:
		"""
		Move a folder under another parent inside its project.

		Args:
		    folder_id: Folder to move.
		    project_id: Project that owns the folder.
		    parent_id: New parent folder id, or None for the project root.

		Returns:
		    Dict: The API response.

		"""
		return self.client.patch(
			f'/projects/{project_id}/folders/{folder_id}',
			data={'parentFolderId': parent_id or None},
		)
