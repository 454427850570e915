"""
Exceptions module for the n8n manager package.

This module defines custom exceptions used throughout the package.
"""


class N8NError(Exception):
	"""Base exception for all n8n manager errors."""


class N8NAuthenticationError(N8NError):
	"""Exception raised for authentication failures."""


class N8NResourceNotFoundError(N8NError):
	"""Exception raised when a resource is not found."""


class N8NConfigurationError(N8NError):
	"""Exception raised for configuration errors."""


class N8NValidationError(N8NError):
	"""Exception raised for validation errors."""


class N8NStateError(N8NError):
	"""Exception raised when remote state cannot be loaded into a usable cache."""


class N8NAPIError(N8NError):
	"""Exception raised for API errors."""

	def __init__(self, message, status_code=None, response=None):
		"""
		Initialize N8NAPIError.

		Args:
		    message: Error message.
		    status_code: HTTP status code of the error.
		    response: Full response object.

		"""
		self.status_code = status_code
		self.response = response
		super().__init__(message)


class N8NCommandError(N8NError):
	"""Exception raised when an external n8n or docker command fails."""

	def __init__(self, message, command=None, returncode=None, output=None):
		"""
		Initialize N8NCommandError.

		Args:
		    message: Error message.
		    command: The command line that failed.
		    returncode: Exit status of the command, if it ran at all.
		    output: Captured stdout/stderr of the command.

		"""
		self.command = command
		self.returncode = returncode
		self.output = output
		super().__init__(message)
