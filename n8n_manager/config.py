"""
Connection profiles for the n8n manager package.

A YAML file maps profile names to the settings of one n8n instance: how
to reach its REST API and CLI, where backups live, and the restore policy
flags. Command-line flags are layered on top with ``N8NConfig.override``.
"""

import os
import yaml
import jsonschema
from typing import Dict, Any, Optional

from n8n_manager.exceptions import N8NConfigurationError
from n8n_manager.schemas import StorageMode

STORAGE_MODE_SCHEMA = {
    "anyOf": [
        {"type": "integer", "enum": [0, 1, 2]},
        {"type": "string"},
    ]
}

PROFILE_SCHEMA = {
    "type": "object",
    "required": ["base_url"],
    "properties": {
        "base_url": {"type": "string", "format": "uri"},
        "api_key": {"type": "string"},
        "email": {"type": "string"},
        "password": {"type": "string"},
        "container": {"type": "string"},
        "workflows": STORAGE_MODE_SCHEMA,
        "credentials": STORAGE_MODE_SCHEMA,
        "local_backup_path": {"type": "string"},
        "credentials_folder_name": {"type": "string", "minLength": 1},
        "folder_structure": {"type": "boolean"},
        "dated_backups": {"type": "boolean"},
        "credentials_encrypted": {"type": "boolean"},
        "project_name": {"type": "string"},
        "n8n_path": {"type": "string"},
        "dry_run": {"type": "boolean"},
        "verbose": {"type": "boolean"},
        "timeout": {"type": "integer", "minimum": 1},
        "verify_ssl": {"type": "boolean"},
        "preserve_ids": {"type": "boolean"},
        "no_overwrite": {"type": "boolean"},
        "allow_unlocated_name_match": {"type": "boolean"},
        "keep_manifest": {"type": "boolean"},
    },
    "additionalProperties": False,
}

CONFIG_SCHEMA = {
    "type": "object",
    "additionalProperties": PROFILE_SCHEMA,
}

CONFIG_FILENAME = ".n8n_manager.yaml"


def candidate_config_paths():
    """Files searched, in order, when no configuration file is given."""
    return [
        os.path.join(os.path.expanduser("~"), CONFIG_FILENAME),
        os.path.join(os.getcwd(), CONFIG_FILENAME),
    ]


class N8NConfig:
    """
    Settings of one profile, with command-line overrides on top.

    Attributes:
        config: Every profile in the loaded file, keyed by name.
        profile_config: The raw settings of the selected profile.
    """

    def __init__(
        self,
        config_file: Optional[str] = None,
        profile: str = "default",
        config: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            config_file: YAML file to read; searched for when omitted.
            profile: Name of the profile to select.
            config: Already parsed profiles; skips reading a file when given.

        Raises:
            N8NConfigurationError: The file is missing or invalid, the profile
                is unknown, or it has no usable credentials.
        """
        self.config_file = config_file
        self.profile = profile
        if config is None:
            config = self._read_file(self._locate_file())
        else:
            self._validate_config(config)
        self.config = config

        if profile not in config:
            raise N8NConfigurationError(
                f"Profile '{profile}' not found in config. Available profiles: {sorted(config)}"
            )
        self.profile_config = config[profile]
        self._overrides: Dict[str, Any] = {}

        if not self.api_key and not (self.email and self.password):
            raise N8NConfigurationError(
                f"Profile '{profile}' needs either api_key or email and password."
            )

    def _locate_file(self) -> str:
        if self.config_file:
            if not os.path.isfile(self.config_file):
                raise N8NConfigurationError(f"Configuration file not found: {self.config_file}")
            return self.config_file

        for path in candidate_config_paths():
            if os.path.isfile(path):
                return path

        template_path = os.path.join(os.path.dirname(__file__), "config-template.yaml")
        raise N8NConfigurationError(
            f"No {CONFIG_FILENAME} in the home or working directory; "
            f"copy {template_path} there or pass --config-file."
        )

    def _read_file(self, path: str) -> Dict[str, Any]:
        try:
            with open(path, "r") as f:
                config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise N8NConfigurationError(f"Cannot read configuration file {path}: {e}")
        self._validate_config(config)
        return config

    @staticmethod
    def _validate_config(config: Dict[str, Any]) -> None:
        """
        Check every profile against the schema and parse its storage modes.

        Raises:
            N8NConfigurationError: On the first violation found.
        """
        try:
            jsonschema.validate(config, CONFIG_SCHEMA)
        except jsonschema.exceptions.ValidationError as e:
            where = "/".join(str(part) for part in e.absolute_path)
            raise N8NConfigurationError(f"Invalid configuration at '{where}': {e.message}")

        for profile_name, profile in config.items():
            for key in ("workflows", "credentials"):
                if key in profile:
                    try:
                        StorageMode.parse(profile[key])
                    except N8NConfigurationError as e:
                        raise N8NConfigurationError(f"Profile '{profile_name}', {key}: {e}")

    def override(self, **values: Any) -> "N8NConfig":
        """
        Apply command-line overrides on top of the profile.

        Values that are None are ignored, so unset CLI flags keep the
        profile's setting.

        Returns:
            N8NConfig: This configuration, for chaining.
        """
        self._overrides.update({k: v for k, v in values.items() if v is not None})
        return self

    def get(self, key: str, default: Any = None) -> Any:
        """Look up ``key``, preferring a command-line override to the profile value."""
        if key in self._overrides:
            return self._overrides[key]
        return self.profile_config.get(key, default)

    def get_available_profiles(self) -> list:
        return sorted(self.config)

    @property
    def base_url(self) -> str:
        """Get the n8n base URL for the current profile, without a trailing slash."""
        return self.get("base_url").rstrip("/")

    @property
    def api_key(self) -> Optional[str]:
        """Get the API key for the current profile, if specified."""
        return self.get("api_key")

    @property
    def email(self) -> Optional[str]:
        return self.get("email")

    @property
    def password(self) -> Optional[str]:
        return self.get("password")

    @property
    def container(self) -> str:
        """Get the docker container id or name; empty means a local n8n binary."""
        return self.get("container", "")

    @property
    def workflows_mode(self) -> StorageMode:
        return StorageMode.parse(self.get("workflows", 1))

    @property
    def credentials_mode(self) -> StorageMode:
        return StorageMode.parse(self.get("credentials", 1))

    @property
    def local_backup_path(self) -> str:
        """Get the backup root directory, defaults to ~/n8n-backup."""
        return os.path.expanduser(self.get("local_backup_path", os.path.join("~", "n8n-backup")))

    @property
    def credentials_folder_name(self) -> str:
        return self.get("credentials_folder_name", ".credentials")

    @property
    def folder_structure(self) -> bool:
        return self.get("folder_structure", True)

    @property
    def dated_backups(self) -> bool:
        return self.get("dated_backups", False)

    @property
    def credentials_encrypted(self) -> bool:
        return self.get("credentials_encrypted", True)

    @property
    def project_name(self) -> str:
        return self.get("project_name", "")

    @property
    def n8n_path(self) -> str:
        return self.get("n8n_path", "")

    @property
    def dry_run(self) -> bool:
        return self.get("dry_run", False)

    @property
    def timeout(self) -> int:
        """Get the timeout for the current profile, defaults to 60 seconds."""
        return self.get("timeout", 60)

    @property
    def verify_ssl(self) -> bool:
        """Get whether to verify SSL certificates, defaults to True."""
        return self.get("verify_ssl", True)

    @property
    def preserve_ids(self) -> bool:
        return self.get("preserve_ids", False)

    @property
    def no_overwrite(self) -> bool:
        return self.get("no_overwrite", False)

    @property
    def allow_unlocated_name_match(self) -> bool:
        """Whether a name match without any folder signal may be accepted, defaults to True."""
        return self.get("allow_unlocated_name_match", True)

    @property
    def keep_manifest(self) -> bool:
        return self.get("keep_manifest", False)
