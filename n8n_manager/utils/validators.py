"""
Validators module for the n8n manager package.

This module provides validation functions for identifiers and workflow payloads.
"""

import re
from typing import Any, Dict, Optional

from n8n_manager.exceptions import N8NValidationError

# n8n workflow ids are 16 character alphanumeric tokens
WORKFLOW_ID_PATTERN = re.compile(r"^[A-Za-z0-9]{16}$")


def is_valid_workflow_id(workflow_id: Optional[str]) -> bool:
    """
    Check whether a value is a well-formed workflow id.

    Args:
        workflow_id: The candidate id.

    Returns:
        bool: True if the id matches the fixed-length alphanumeric format.
    """
    if not workflow_id or not isinstance(workflow_id, str):
        return False
    return bool(WORKFLOW_ID_PATTERN.fullmatch(workflow_id))


def validate_workflow_id(workflow_id: str) -> bool:
    """
    Validate a workflow id.

    Args:
        workflow_id: The id to validate.

    Returns:
        bool: True if the id is valid.

    Raises:
        N8NValidationError: If the id is malformed.
    """
    if not is_valid_workflow_id(workflow_id):
        raise N8NValidationError(
            f"Invalid workflow id '{workflow_id}'. Ids must be 16 letters or digits."
        )
    return True


def validate_workflow_payload(data: Any, source: str = "") -> Dict[str, Any]:
    """
    Validate that a parsed workflow file is a JSON object.

    Args:
        data: The parsed JSON document.
        source: Where the document came from, for error messages.

    Returns:
        Dict: The document, unchanged.

    Raises:
        N8NValidationError: If the document is not an object.
    """
    if not isinstance(data, dict):
        raise N8NValidationError(
            f"Workflow file {source or '<unknown>'} is not a JSON object "
            f"(got {type(data).__name__})."
        )
    return data
