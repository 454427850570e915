"""
Common base of the REST resource wrappers.

Every n8n ``/rest`` collection is addressed as ``base_path`` with an
optional id and sub-action, and answers either bare JSON or a
``{"data": ...}`` envelope.
"""

import logging
from typing import Dict, Any, Optional, List

from n8n_manager.schemas import extract_items


def unwrap(response: Any) -> Any:
    """Return the object inside a ``data`` envelope, or the response itself."""
    if isinstance(response, dict) and isinstance(response.get("data"), dict):
        return response["data"]
    return response


class BaseResource:
    """
    One REST collection of the n8n instance behind ``client``.

    Attributes:
        base_path: Collection path below ``/rest``, set by subclasses.
        default_params: Query values sent with every list call.
    """

    base_path = ""
    default_params: Dict[str, Any] = {}

    def __init__(self, client):
        self.client = client
        self.logger = logging.getLogger(f"n8n_manager.{self.__class__.__name__}")

    def _get_endpoint(self, resource_id: Optional[str] = None, action: Optional[str] = None) -> str:
        return "/".join(part for part in (self.base_path, resource_id, action) if part)

    def list_raw(self, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Fetch the whole collection as plain dicts.

        Args:
            params: Query values layered over ``default_params``.

        Returns:
            List[Dict]: The items, from a bare array or a ``data`` envelope.
        """
        query = {**self.default_params, **(params or {})}
        response = self.client.get(self._get_endpoint(), params=query or None)
        if not isinstance(response, (list, dict)):
            self.logger.warning(f"{self.base_path} answered with {type(response).__name__}, expected JSON")
        return extract_items(response)

    def get(self, resource_id: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return unwrap(self.client.get(self._get_endpoint(resource_id), params=params))

    def create(self, data: Dict[str, Any], params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return unwrap(self.client.post(self._get_endpoint(), data=data, params=params))

    def update(self, resource_id: str, data: Dict[str, Any], params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """PATCH the given fields of one item and return n8n's answer."""
        return self.client.patch(self._get_endpoint(resource_id), data=data, params=params)
