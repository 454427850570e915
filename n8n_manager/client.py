"""
n8n REST API client module for the n8n manager package.

This module provides the main client class for interacting with the n8n
``/rest`` API, using either an API key or a browser-style session login.
"""

import logging
from typing import Any, Dict, Optional

import requests
from requests.exceptions import RequestException

from n8n_manager.config import N8NConfig
from n8n_manager.exceptions import (
	N8NAPIError,
	N8NAuthenticationError,
	N8NResourceNotFoundError,
)
from n8n_manager.resources.folders import FoldersResource
from n8n_manager.resources.projects import ProjectsResource
from n8n_manager.resources.workflows import WorkflowsResource

API_KEY_HEADER = 'X-N8N-API-KEY'


def describe_error(response: requests.Response) -> str:
	"""Pull n8n's error text out of a failed response."""
	try:
		body = response.json()
	except ValueError:
		return response.text
	if isinstance(body, dict):
		for key in ('message', 'detail', 'hint'):
			if body.get(key):
				return str(body[key])
	return response.text


class N8NClient:
	"""
	Session against one n8n instance's internal REST API.

	Exposes the ``projects``, ``folders`` and ``workflows`` resources and
	renews an expired session login transparently.
	"""

	def __init__(
		self,
		config: Optional[N8NConfig] = None,
		config_file: Optional[str] = None,
		profile: str = 'default',
		session: Optional[requests.Session] = None,
	):
		"""
		Args:
		    config: Loaded configuration; read from config_file and profile when omitted.
		    config_file: YAML file passed on to N8NConfig.
		    profile: Profile name passed on to N8NConfig.
		    session: A prepared requests session, mainly for tests.

		"""
		self.logger = logging.getLogger('n8n_manager.N8NClient')
		self.config = config or N8NConfig(config_file=config_file, profile=profile)

		self.session = session or requests.Session()
		self.session.verify = self.config.verify_ssl
		self.session.headers.update({'Accept': 'application/json'})
		self.auth_mode = None
		self.authenticate()
		self.logger.info(f'Connected to {self.config.base_url} ({self.auth_mode})')

		self.projects = ProjectsResource(self)
		self.folders = FoldersResource(self)
		self.workflows = WorkflowsResource(self)

	def authenticate(self) -> str:
		"""
		Authenticate with the n8n REST API.

		An API key is sent as a header on every request. Without one, the
		client logs in with email and password and keeps the session cookie.

		Returns:
		    str: The authentication mode in use, ``api_key`` or ``session``.

		Raises:
		    N8NAuthenticationError: If authentication fails.

		"""
		if self.config.api_key:
			self.session.headers.update({API_KEY_HEADER: self.config.api_key})
			self.auth_mode = 'api_key'
			self.logger.debug('Using API key authentication')
			return self.auth_mode

		self.logger.debug('Authenticating with n8n session login')
		try:
			response = self.session.post(
				f'{self.config.base_url}/rest/login',
				json={
					'emailOrLdapLoginId': self.config.email,
					'password': self.config.password,
				},
				timeout=self.config.timeout,
			)
		except RequestException as e:
			raise N8NAuthenticationError(f'Login request failed: {e!s}')

		if response.status_code == 200:
			self.auth_mode = 'session'
			self.logger.debug('Session login successful')
			return self.auth_mode

		if response.status_code == 401:
			raise N8NAuthenticationError('Invalid credentials (HTTP 401)')
		if response.status_code == 403:
			raise N8NAuthenticationError(
				'Access forbidden (HTTP 403), account may be locked or disabled'
			)
		if response.status_code == 429:
			raise N8NAuthenticationError(
				'Too many login attempts (HTTP 429), wait before trying again'
			)
		raise N8NAuthenticationError(
			f'Login failed with status code {response.status_code}: {response.text}'
		)

	def request(
		self,
		method: str,
		endpoint: str,
		params: Optional[Dict[str, Any]] = None,
		data: Optional[Dict[str, Any]] = None,
		headers: Optional[Dict[str, str]] = None,
		retry_auth: bool = True,
	) -> Any:
		"""
		Send one request to the n8n REST API and decode the JSON answer.

		Args:
		    method: HTTP verb.
		    endpoint: Path below ``/rest``, or an absolute URL.
		    params: Query string values.
		    data: JSON body.
		    headers: Extra headers for this request only.
		    retry_auth: Log in again and retry once when a session cookie has expired.

		Returns:
		    The decoded body, ``{}`` when it is empty.

		Raises:
		    N8NAuthenticationError: HTTP 401 that a fresh login did not fix.
		    N8NResourceNotFoundError: HTTP 404.
		    N8NAPIError: Any other failure status, a transport error or a non-JSON body.

		"""
		url = endpoint if endpoint.startswith('http') else f'{self.config.base_url}/rest{endpoint}'
		self.logger.debug(f'{method} {url}')
		try:
			response = self.session.request(
				method,
				url,
				params=params,
				json=data,
				headers=headers,
				timeout=self.config.timeout,
			)
		except RequestException as e:
			raise N8NAPIError(f'{method} {url} failed: {e!s}')

		status = response.status_code
		if status == 401 and retry_auth and self.auth_mode == 'session':
			self.logger.debug('Session cookie rejected, logging in again')
			self.authenticate()
			return self.request(method, endpoint, params=params, data=data, headers=headers, retry_auth=False)
		if status == 401:
			raise N8NAuthenticationError(f'Not authorized for {method} {endpoint}')
		if status == 404:
			raise N8NResourceNotFoundError(f'Resource not found: {url}')
		if status >= 400:
			raise N8NAPIError(
				f'{method} {endpoint} returned HTTP {status}: {describe_error(response)}',
				status_code=status,
				response=response,
			)

		if status == 204 or not response.content:
			return {}
		try:
			return response.json()
		except ValueError:
			raise N8NAPIError(
				f'Response from {endpoint} is not valid JSON',
				status_code=status,
				response=response,
			)

	def get(
		self,
		endpoint: str,
		params: Optional[Dict[str, Any]] = None,
	) -> Any:
		"""
		Make a GET request to the n8n REST API.

		Args:
		    endpoint: API endpoint to call.
		    params: Query parameters to include.

		Returns:
		    Response data.

		"""
		return self.request('GET', endpoint, params=params)

	def post(
		self,
		endpoint: str,
		data: Optional[Dict[str, Any]] = None,
		params: Optional[Dict[str, Any]] = None,
	) -> Any:
		"""Make a POST request to the n8n REST API."""
		return self.request('POST', endpoint, params=params, data=data)

	def patch(
		self,
		endpoint: str,
		data: Optional[Dict[str, Any]] = None,
		params: Optional[Dict[str, Any]] = None,
	) -> Any:
		"""Make a PATCH request to the n8n REST API."""
		return self.request('PATCH', endpoint, params=params, data=data)
