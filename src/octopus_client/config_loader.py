"""
ConfigLoader module for loading and validating client configuration files (TOML or YAML)
"""

import os
import tomllib
import yaml
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, Any

from .outcomes import OctopusClientError


class ConfigurationError(OctopusClientError):
    """Raised when configuration is invalid or incomplete"""
    pass


class EnvironmentVariableError(OctopusClientError):
    """Raised when required environment variables are missing"""
    pass


@dataclass
class ClientConfig:
    """Configuration data class for a client session"""
    base_url: str
    authentication: Dict[str, Any]
    root_path: str = "/api"
    timeout_seconds: float = 30.0
    requests_per_second: float = 0.0
    verify_ssl: bool = True
    retries: Dict[str, Any] = field(default_factory=dict)
    concurrency: Dict[str, Any] = field(default_factory=dict)
    pagination: Dict[str, Any] = field(default_factory=dict)
    concurrency_control: Dict[str, Any] = field(default_factory=dict)

    @property
    def max_concurrency(self) -> int:
        return int(self.concurrency.get('max_concurrency', 4))

    @property
    def enforce_concurrency_tokens(self) -> bool:
        return bool(self.concurrency_control.get('enforce_tokens', False))

    @property
    def bulk_chunk_size(self) -> int:
        return int(self.pagination.get('bulk_chunk_size', 100))


class ConfigLoader:
    """Loads and validates TOML or YAML configuration files"""

    # Required configuration sections and their mandatory keys
    REQUIRED_SECTIONS = {
        'server': ['base_url'],
        'authentication': ['type']
    }

    # Optional sections that can have default empty values
    OPTIONAL_SECTIONS = [
        'retries',
        'concurrency',
        'pagination',
        'concurrency_control'
    ]

    SUPPORTED_AUTH_TYPES = {'api_key', 'bearer_token', 'none'}
    SUPPORTED_PAGINATION_STRATEGIES = {'next_link', 'offset_limit'}

    @staticmethod
    def load_config(config_path: Path) -> ClientConfig:
        """
        Load client configuration from a TOML or YAML file

        Args:
            config_path: Path to the configuration file (.toml, .yml or .yaml)

        Returns:
            ClientConfig object with all configuration data

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigurationError: If the file is unparsable or required configuration is missing
        """
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        if config_path.suffix.lower() in ('.yml', '.yaml'):
            config_data = ConfigLoader._load_yaml(config_path)
        else:
            config_data = ConfigLoader._load_toml(config_path)

        return ConfigLoader.from_dict(config_data)

    @staticmethod
    def from_dict(config_data: Dict[str, Any]) -> ClientConfig:
        """Build and validate a ClientConfig from already-parsed data"""
        ConfigLoader._validate_required_sections(config_data)

        # Absent or empty optional sections (e.g. a bare 'retries:' in YAML) become {}
        config_data = dict(config_data)
        for section_name in ConfigLoader.OPTIONAL_SECTIONS:
            section_data = config_data.get(section_name) or {}
            if not isinstance(section_data, dict):
                raise ConfigurationError(f"Section [{section_name}] must be a table of settings")
            config_data[section_name] = section_data

        ConfigLoader._validate_values(config_data)

        server = config_data['server']
        return ClientConfig(
            base_url=server['base_url'],
            authentication=config_data['authentication'],
            root_path=server.get('root_path', '/api'),
            timeout_seconds=float(server.get('timeout_seconds', 30.0)),
            requests_per_second=float(server.get('requests_per_second', 0.0)),
            verify_ssl=bool(server.get('verify_ssl', True)),
            retries=config_data['retries'],
            concurrency=config_data['concurrency'],
            pagination=config_data['pagination'],
            concurrency_control=config_data['concurrency_control']
        )

    @staticmethod
    def _load_toml(config_path: Path) -> Dict[str, Any]:
        try:
            with open(config_path, 'rb') as f:
                return tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML syntax in {config_path}: {e}")

    @staticmethod
    def _load_yaml(config_path: Path) -> Dict[str, Any]:
        try:
            with open(config_path, 'r') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}")
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration in {config_path} must be a mapping")
        return data

    @staticmethod
    def _validate_required_sections(config_data: Dict[str, Any]) -> None:
        """
        Validate that all required configuration sections and keys are present

        Raises:
            ConfigurationError: If any required section or key is missing
        """
        missing_items = []

        for section_name, required_keys in ConfigLoader.REQUIRED_SECTIONS.items():
            if section_name not in config_data:
                missing_items.append(f"Section [{section_name}]")
            else:
                section_data = config_data[section_name]
                for key in required_keys:
                    if key not in section_data:
                        missing_items.append(f"Key '{key}' in section [{section_name}]")

        if missing_items:
            raise ConfigurationError(
                f"Missing required configuration items: {', '.join(missing_items)}"
            )

    @staticmethod
    def _validate_values(config_data: Dict[str, Any]) -> None:
        auth_type = config_data['authentication']['type']
        if auth_type not in ConfigLoader.SUPPORTED_AUTH_TYPES:
            raise ConfigurationError(f"Unsupported authentication type: {auth_type}")

        strategy = config_data['pagination'].get('strategy', 'next_link')
        if strategy not in ConfigLoader.SUPPORTED_PAGINATION_STRATEGIES:
            raise ConfigurationError(f"Unsupported pagination strategy: {strategy}")

        max_attempts = config_data['retries'].get('max_attempts', 3)
        if not isinstance(max_attempts, int) or max_attempts < 1:
            raise ConfigurationError("retries.max_attempts must be a positive integer")

        max_concurrency = config_data['concurrency'].get('max_concurrency', 4)
        if not isinstance(max_concurrency, int) or max_concurrency < 1:
            raise ConfigurationError("concurrency.max_concurrency must be a positive integer")

    @staticmethod
    def validate_environment_variables(config: ClientConfig) -> bool:
        """
        Validate that all environment variables referenced by the authentication section are set

        Returns:
            True if all environment variables are present

        Raises:
            EnvironmentVariableError: If any required environment variables are missing
        """
        missing_vars = []

        for key, value in config.authentication.items():
            if key.endswith('_env') and isinstance(value, str):
                # This is an environment variable reference
                if not os.getenv(value):
                    missing_vars.append(value)

        if missing_vars:
            raise EnvironmentVariableError(
                f"Missing required environment variables: {', '.join(missing_vars)}"
            )

        return True

    @staticmethod
    def resolve_credentials(config: ClientConfig) -> Dict[str, Any]:
        """
        Replace '<name>_env' references with the environment values under '<name>'

        Raises:
            EnvironmentVariableError: If a referenced variable is not set
        """
        ConfigLoader.validate_environment_variables(config)

        credentials = {}
        for key, value in config.authentication.items():
            if key.endswith('_env') and isinstance(value, str):
                credentials[key[:-len('_env')]] = ConfigLoader.get_environment_value(value)
            else:
                credentials[key] = value
        return credentials

    @staticmethod
    def get_environment_value(env_var_name: str) -> str:
        """
        Get environment variable value with proper error handling

        Raises:
            EnvironmentVariableError: If environment variable is not set
        """
        value = os.getenv(env_var_name)
        if value is None:
            raise EnvironmentVariableError(f"Environment variable '{env_var_name}' is not set")
        return value
