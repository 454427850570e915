"""
Helpers module for the n8n manager package.

This module provides filesystem, JSON and date helper functions used
throughout the package.
"""

import contextlib
import datetime
import filecmp
import json
import os
import shutil
import tempfile
from typing import Any, Iterator, Optional

from dateutil import parser as date_parser


def format_date(
	date_obj: datetime.datetime, format_str: str = '%Y-%m-%d_%H-%M-%S'
) -> str:
	"""
	Format a datetime object as a string.

	Args:
	    date_obj: The datetime object to format.
	    format_str: The format string to use.

	Returns:
	    str: The formatted date string.

	"""
	return date_obj.strftime(format_str)


def parse_timestamp(value: Optional[str]) -> Optional[datetime.datetime]:
	"""
	Parse an ISO-8601 style timestamp, returning None when it cannot be parsed.

	Naive values are treated as UTC so they compare against aware ones.

	Args:
	    value: The timestamp string.

	Returns:
	    datetime.datetime: The parsed, timezone aware timestamp, or None.

	"""
	if not value:
		return None
	try:
		parsed = date_parser.isoparse(str(value))
	except (ValueError, OverflowError):
		return None
	if parsed.tzinfo is None:
		parsed = parsed.replace(tzinfo=datetime.timezone.utc)
	return parsed


def ensure_directory_exists(directory_path: str) -> str:
	"""
	Ensure that a directory exists, creating it if necessary.

	Args:
	    directory_path: The path to the directory.

	Returns:
	    str: The path to the directory.

	"""
	if not os.path.exists(directory_path):
		os.makedirs(directory_path)
	return directory_path


@contextlib.contextmanager
def temp_path(suffix: str = '.json', prefix: str = 'n8n-manager-') -> Iterator[str]:
	"""
	Yield a temporary file path that is removed on every exit path.

	Args:
	    suffix: File suffix.
	    prefix: File prefix.

	"""
	fd, path = tempfile.mkstemp(suffix=suffix, prefix=prefix)
	os.close(fd)
	try:
		yield path
	finally:
		if os.path.exists(path):
			os.remove(path)


@contextlib.contextmanager
def temp_directory(prefix: str = 'n8n-manager-') -> Iterator[str]:
	"""Yield a temporary directory that is removed with its contents on exit."""
	path = tempfile.mkdtemp(prefix=prefix)
	try:
		yield path
	finally:
		shutil.rmtree(path, ignore_errors=True)


def read_json(file_path: str) -> Any:
	"""
	Read a JSON document from disk.

	Args:
	    file_path: The path to the file.

	Returns:
	    The parsed document.

	Raises:
	    ValueError: If the file does not contain valid JSON.

	"""
	with open(file_path, 'r', encoding='utf-8') as f:
		return json.load(f)


def write_json(file_path: str, data: Any) -> str:
	"""
	Write a JSON document with stable, readable formatting.

	Args:
	    file_path: The path to write.
	    data: The data to serialize.

	Returns:
	    str: The file path.

	"""
	with open(file_path, 'w', encoding='utf-8') as f:
		json.dump(data, f, indent=2, ensure_ascii=False)
		f.write('\n')
	return file_path


def files_identical(first: str, second: str) -> bool:
	"""Return True if both files exist and have identical content."""
	if not (os.path.isfile(first) and os.path.isfile(second)):
		return False
	return filecmp.cmp(first, second, shallow=False)


def remove_empty_directories(root: str) -> int:
	"""
	Remove empty directories below root, deepest first. Root itself is kept.

	Returns:
	    int: Number of directories removed.

	"""
	removed = 0
	for dirpath, dirnames, filenames in os.walk(root, topdown=False):
		if dirpath == root or '.git' in dirpath.split(os.sep):
			continue
		if not os.listdir(dirpath):
			os.rmdir(dirpath)
			removed += 1
	return removed
