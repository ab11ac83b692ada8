"""
OctopusClient: session object wiring transport, retry policy, root document cache and repositories
"""

import logging
import threading
from pathlib import Path
from typing import Dict, Optional, Union

from .config_loader import ConfigLoader, ClientConfig
from .http_client import RequestExecutor, RequestsTransport, Transport, AuthProvider, build_auth
from .outcomes import Outcome
from .repository import ResourceRepository
from .resources import ResourceType, get_resource_type
from .retry_policy import RetryPolicy
from .root_document_cache import RootDocumentCache


class OctopusClient:
    """
    One client session against a deployment server

    The root document is fetched at most once per session and shared by
    every repository the session hands out.
    """

    def __init__(self, base_url: str, auth: Optional[AuthProvider] = None,
                 transport: Optional[Transport] = None, config: Optional[ClientConfig] = None,
                 retry_policy: Optional[RetryPolicy] = None,
                 root_cache: Optional[RootDocumentCache] = None):
        self.config = config or ClientConfig(base_url=base_url, authentication={'type': 'none'})
        self.transport = transport or RequestsTransport(
            timeout=self.config.timeout_seconds,
            requests_per_second=self.config.requests_per_second or None,
            verify=self.config.verify_ssl
        )
        self.executor = RequestExecutor(self.transport, base_url, auth)
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config.retries)
        self.root_cache = root_cache or RootDocumentCache(self._fetch_root)
        self.logger = logging.getLogger(__name__)
        self._repositories: Dict[str, ResourceRepository] = {}
        self._lock = threading.Lock()
        self.logger.debug(f"Client session created for {base_url}")

    @classmethod
    def from_config(cls, config_path: Union[str, Path], transport: Optional[Transport] = None) -> 'OctopusClient':
        """
        Build a client from a TOML or YAML configuration file

        Raises:
            ConfigurationError: If the configuration is invalid
            EnvironmentVariableError: If referenced credentials are not set
        """
        config = ConfigLoader.load_config(Path(config_path))
        auth = build_auth(ConfigLoader.resolve_credentials(config))
        return cls(config.base_url, auth=auth, transport=transport, config=config)

    def __enter__(self) -> 'OctopusClient':
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def close(self) -> None:
        close = getattr(self.transport, 'close', None)
        if close:
            close()

    # Root document

    def _fetch_root(self) -> Outcome:
        root_path = self.config.root_path
        return self.retry_policy.with_retry(lambda: self.executor.execute('GET', root_path), 'GET')

    def root(self) -> Outcome:
        """Current root document, fetched on first use"""
        return self.root_cache.get()

    def refresh_root(self) -> Outcome:
        return self.root_cache.refresh()

    # Repositories

    def repository(self, resource_type: Union[ResourceType, str]) -> ResourceRepository:
        """
        Return the session's repository for a resource type

        Args:
            resource_type: ResourceType contract, or the name/collection relation
                of a built-in type such as 'Projects'

        Raises:
            KeyError: If a name does not match a built-in resource type
        """
        if isinstance(resource_type, str):
            resource_type = get_resource_type(resource_type)

        key = resource_type.collection_relation.lower()
        with self._lock:
            if key not in self._repositories:
                self._repositories[key] = ResourceRepository(
                    resource_type,
                    self.executor,
                    self.retry_policy,
                    self.root_cache,
                    max_concurrency=self.config.max_concurrency,
                    pagination=self.config.pagination,
                    bulk_chunk_size=self.config.bulk_chunk_size,
                    enforce_concurrency_tokens=self.config.enforce_concurrency_tokens
                )
            return self._repositories[key]

    @property
    def projects(self) -> ResourceRepository:
        return self.repository('Projects')

    @property
    def releases(self) -> ResourceRepository:
        return self.repository('Releases')

    @property
    def environments(self) -> ResourceRepository:
        return self.repository('Environments')

    @property
    def feeds(self) -> ResourceRepository:
        return self.repository('Feeds')

    @property
    def machines(self) -> ResourceRepository:
        return self.repository('Machines')

    @property
    def lifecycles(self) -> ResourceRepository:
        return self.repository('Lifecycles')

    @property
    def tenants(self) -> ResourceRepository:
        return self.repository('Tenants')

    @property
    def deployments(self) -> ResourceRepository:
        return self.repository('Deployments')

    @property
    def channels(self) -> ResourceRepository:
        return self.repository('Channels')

    @property
    def teams(self) -> ResourceRepository:
        return self.repository('Teams')

    @property
    def users(self) -> ResourceRepository:
        return self.repository('Users')

    @property
    def spaces(self) -> ResourceRepository:
        return self.repository('Spaces')
