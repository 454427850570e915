"""
Projects resource module for the n8n manager package.

This module provides functionality for listing and creating n8n projects.
"""

from typing import Any, Dict, List, Optional

from n8n_manager.resources.base import BaseResource
from n8n_manager.schemas import Project


class ProjectsResource(BaseResource):
	"""Class for managing n8n projects."""

	base_path = '/projects'
	default_params = {'skip': 0, 'take': 250}

	def list(self, params: Optional[Dict[str, Any]] = None) -> List[Project]:
		"""
		List all projects visible to the authenticated user.

		Args:
		    params: Optional query parameters.

		Returns:
		    List[Project]: Projects, normalized. Items without an id are dropped.

		"""
		projects = [Project.from_api(item) for item in self.list_raw(params)]
		return [project for project in projects if project.id]

	def create_project(self, name: str) -> Project:
		"""
		Create a team project.

		Args:
		    name: Display name of the project.

		Returns:
		    Project: The created project.

		"""
		self.logger.info(f'Creating project {name}')
		return Project.from_api(self.create({'name': name}))
