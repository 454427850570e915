"""
Utilities package for the n8n manager package.

This package contains text normalization, validation and filesystem helpers.
"""

from n8n_manager.utils.helpers import (
	ensure_directory_exists,
	parse_timestamp,
	read_json,
	temp_directory,
	temp_path,
	write_json,
)
from n8n_manager.utils.text import (
	append_note,
	lookup_path_matches,
	normalize_folder_path,
	normalize_lookup_key,
	sanitize_slug,
	sanitize_text,
)
from n8n_manager.utils.validators import is_valid_workflow_id, validate_workflow_id

__all__ = [
	'append_note',
	'ensure_directory_exists',
	'is_valid_workflow_id',
	'lookup_path_matches',
	'normalize_folder_path',
	'normalize_lookup_key',
	'parse_timestamp',
	'read_json',
	'sanitize_slug',
	'sanitize_text',
	'temp_directory',
	'temp_path',
	'validate_workflow_id',
	'write_json',
]
