"""
n8n manager - backup and restore for n8n workflow automation instances.

This package exports workflows into a directory tree that mirrors the
remote project and folder hierarchy, and restores such a tree into a live
instance without duplicating workflows or drifting their ids.
"""

__version__ = '0.1.0'

from n8n_manager.client import N8NClient
from n8n_manager.config import N8NConfig
from n8n_manager.exceptions import (
	N8NAPIError,
	N8NAuthenticationError,
	N8NCommandError,
	N8NConfigurationError,
	N8NError,
	N8NResourceNotFoundError,
	N8NStateError,
	N8NValidationError,
)

__all__ = [
	'N8NAPIError',
	'N8NAuthenticationError',
	'N8NClient',
	'N8NCommandError',
	'N8NConfig',
	'N8NConfigurationError',
	'N8NError',
	'N8NResourceNotFoundError',
	'N8NStateError',
	'N8NValidationError',
]
