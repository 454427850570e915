"""
Workflows resource module for the n8n manager package.

This module provides functionality for listing workflows with their folder
placement and for moving workflows between projects and folders.
"""

from typing import Any, Dict, List, Optional

from n8n_manager.resources.base import BaseResource
from n8n_manager.schemas import RemoteWorkflow


class WorkflowsResource(BaseResource):
	"""
	Class for managing n8n workflows.

	Listings request folder information so every workflow carries its
	parent folder and home project.
	"""

	base_path = '/workflows'
	default_params = {
		'includeScopes': 'true',
		'includeFolders': 'true',
		'sortBy': 'updatedAt:desc',
		'skip': 0,
		'take': 1000,
	}

	def list_items(self, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
		"""
		List workflow objects as returned by the API, without folder rows.

		Args:
		    params: Optional query parameters.

		Returns:
		    List[Dict]: Raw workflow objects.

		"""
		return [
			item
			for item in self.list_raw(params)
			if item.get('resource') != 'folder'
		]

	def list(self, params: Optional[Dict[str, Any]] = None) -> List[RemoteWorkflow]:
		"""
		List all workflows with their folder placement.

		Returns:
		    List[RemoteWorkflow]: Workflows, normalized. Items without an id are dropped.

		"""
		workflows = [RemoteWorkflow.from_api(item) for item in self.list_items(params)]
		return [workflow for workflow in workflows if workflow.id]

	def get_workflow(self, workflow_id: str) -> RemoteWorkflow:
		"""
		Get a single workflow.

		Args:
		    workflow_id: ID of the workflow.

		Returns:
		    RemoteWorkflow: The workflow, normalized.

		"""
		return RemoteWorkflow.from_api(self.get(workflow_id))

	def assign(
		self,
		workflow_id: str,
		project_id: str,
		folder_id: Optional[str] = None,
		version_id: Optional[str] = None,
	) -> Dict[str, Any]:
		"""
		Move a workflow to a project and folder.

		Args:
		    workflow_id: ID of the workflow to move.
		    project_id: Target project.
		    folder_id: Target folder, or None for the project root.
		    version_id: Current version id; n8n rejects stale versions with HTTP 400.

		Returns:
		    Dict: The API response.

		"""
		payload = {
			'homeProject': {'id': project_id},
			'parentFolderId': folder_id or None,
		}
		if version_id:
			payload['versionId'] = version_id
		return self.update(workflow_id, payload)
