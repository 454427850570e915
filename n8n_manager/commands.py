"""
External command runner for the n8n manager package.

The n8n CLI owns the actual export and import of workflows. This module runs
it either inside a docker container (``docker exec``/``docker cp``) or as a
local binary, and makes sure every temporary artifact it creates inside the
container is removed again.
"""

import logging
import os
import shlex
import subprocess
import uuid
from typing import List, Optional

from n8n_manager.exceptions import N8NCommandError


class N8NCommandRunner:
	"""
	Runs n8n CLI commands locally or in a docker container.

	Failures raise N8NCommandError. A missing docker or n8n binary also
	raises, with returncode None, and callers treat that as fatal.
	"""

	def __init__(
		self,
		container: str = '',
		dry_run: bool = False,
		n8n_binary: str = 'n8n',
		docker_binary: str = 'docker',
	):
		"""
		Initialize the runner.

		Args:
		    container: Docker container id or name. Empty runs n8n locally.
		    dry_run: Log mutating commands instead of running them.
		    n8n_binary: Name or path of the n8n executable.
		    docker_binary: Name or path of the docker executable.

		"""
		self.container = container
		self.dry_run = dry_run
		self.n8n_binary = n8n_binary
		self.docker_binary = docker_binary
		self.logger = logging.getLogger(f'n8n_manager.{self.__class__.__name__}')

	def _run(self, args: List[str], mutating: bool = False) -> str:
		"""
		Run a command and return its combined output.

		Args:
		    args: The command line.
		    mutating: Whether the command changes n8n state; skipped in dry run.

		Returns:
		    str: stdout followed by stderr.

		Raises:
		    N8NCommandError: If the binary is missing or the command fails.

		"""
		command = ' '.join(shlex.quote(arg) for arg in args)
		if mutating and self.dry_run:
			self.logger.info(f'[dry run] Would run: {command}')
			return ''

		self.logger.debug(f'Running: {command}')
		try:
			completed = subprocess.run(args, capture_output=True, text=True, check=False)
		except FileNotFoundError as e:
			raise N8NCommandError(f'Command not found: {args[0]}', command=command) from e

		output = (completed.stdout or '') + (completed.stderr or '')
		if completed.returncode != 0:
			raise N8NCommandError(
				f'Command failed with exit code {completed.returncode}: {command}\n{output.strip()}',
				command=command,
				returncode=completed.returncode,
				output=output,
			)
		return output

	def _n8n(self, *args: str, mutating: bool = False) -> str:
		if self.container:
			return self._run(
				[self.docker_binary, 'exec', self.container, self.n8n_binary, *args],
				mutating=mutating,
			)
		return self._run([self.n8n_binary, *args], mutating=mutating)

	def _container_temp(self, kind: str) -> str:
		return f'/tmp/n8n-manager-{kind}-{uuid.uuid4().hex[:12]}'

	def _container_cleanup(self, path: str) -> None:
		try:
			self._run([self.docker_binary, 'exec', self.container, 'rm', '-rf', path])
		except N8NCommandError as e:
			self.logger.warning(f'Failed to remove {path} in container {self.container}: {e!s}')

	def is_reachable(self) -> bool:
		"""
		Check that the n8n CLI can be executed.

		Returns:
		    bool: True if ``n8n --version`` succeeds.

		"""
		try:
			self._n8n('--version')
		except N8NCommandError as e:
			self.logger.debug(f'n8n CLI not reachable: {e!s}')
			return False
		return True

	def export_workflows(self, destination_file: str) -> str:
		"""
		Export all workflows into a single JSON array file.

		Args:
		    destination_file: Local path to write.

		Returns:
		    str: The destination path.

		"""
		if not self.container:
			self._n8n('export:workflow', '--all', f'--output={destination_file}')
			return destination_file

		remote_path = self._container_temp('export') + '.json'
		try:
			self._n8n('export:workflow', '--all', f'--output={remote_path}')
			self._run([self.docker_binary, 'cp', f'{self.container}:{remote_path}', destination_file])
		finally:
			self._container_cleanup(remote_path)
		return destination_file

	def export_workflows_separate(self, destination_dir: str) -> str:
		"""
		Export all workflows, one file per workflow, into a directory.

		Args:
		    destination_dir: Existing local directory to fill.

		Returns:
		    str: The destination directory.

		"""
		if not self.container:
			self._n8n('export:workflow', '--all', '--separate', f'--output={destination_dir}/')
			return destination_dir

		remote_dir = self._container_temp('export-dir')
		try:
			self._n8n('export:workflow', '--all', '--separate', f'--output={remote_dir}/')
			self._run([self.docker_binary, 'cp', f'{self.container}:{remote_dir}/.', destination_dir])
		finally:
			self._container_cleanup(remote_dir)
		return destination_dir

	def export_credentials(self, destination_file: str, decrypted: bool = False) -> str:
		"""
		Export all credentials into a single JSON file.

		Args:
		    destination_file: Local path to write.
		    decrypted: Export secrets in clear text.

		Returns:
		    str: The destination path.

		"""
		args = ['export:credentials', '--all']
		if decrypted:
			args.append('--decrypted')

		if not self.container:
			self._n8n(*args, f'--output={destination_file}')
			return destination_file

		remote_path = self._container_temp('credentials') + '.json'
		try:
			self._n8n(*args, f'--output={remote_path}')
			self._run([self.docker_binary, 'cp', f'{self.container}:{remote_path}', destination_file])
		finally:
			self._container_cleanup(remote_path)
		return destination_file

	def _import(self, kind: str, source: str) -> str:
		separate = os.path.isdir(source)
		args = [f'import:{kind}']
		if separate:
			args.append('--separate')

		if not self.container:
			return self._n8n(*args, f'--input={source}', mutating=True)

		if self.dry_run:
			self.logger.info(f'[dry run] Would import {kind} from {source} into {self.container}')
			return ''

		remote_path = self._container_temp('import')
		try:
			if separate:
				self._run([self.docker_binary, 'exec', self.container, 'mkdir', '-p', remote_path])
				self._run([self.docker_binary, 'cp', f'{source}/.', f'{self.container}:{remote_path}/'])
			else:
				self._run([self.docker_binary, 'cp', source, f'{self.container}:{remote_path}'])
			return self._n8n(*args, f'--input={remote_path}', mutating=True)
		finally:
			self._container_cleanup(remote_path)

	def import_workflows(self, source: str) -> str:
		"""
		Import workflows from a single JSON file or a directory of files.

		Args:
		    source: Local file or directory.

		Returns:
		    str: Command output.

		"""
		return self._import('workflow', source)

	def import_credentials(self, source: str) -> Optional[str]:
		"""Import credentials from a single JSON file or a directory of files."""
		return self._import('credentials', source)
