"""
Resources package for the n8n manager package.

This package contains resource-specific classes for interacting with
n8n projects, folders and workflows.
"""

from n8n_manager.resources.folders import FoldersResource
from n8n_manager.resources.projects import ProjectsResource
from n8n_manager.resources.workflows import WorkflowsResource

__all__ = [
	'FoldersResource',
	'ProjectsResource',
	'WorkflowsResource',
]
