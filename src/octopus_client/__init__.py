"""
Typed client for a deployment server's hypermedia REST API
Provides generic resource repositories, link resolution, pagination, batch lookup and retries
"""

from .outcomes import (
    Outcome, OutcomeKind, CallState, OctopusClientError, LinkResolutionError,
    TransportError, PaginationError, OutcomeError
)
from .cancellation import CancellationToken
from .link_resolver import LinkResolver, LinkCollection, expand
from .resources import Resource, ResourceType, FeedType, FeedResource, BUILTIN_RESOURCE_TYPES
from .http_client import (
    RequestExecutor, RequestsTransport, TransportResponse, APIRequest,
    ApiKeyAuth, BearerTokenAuth, NoAuth, build_auth
)
from .retry_policy import RetryPolicy
from .pagination_strategy import Page, PageIterator, PaginationFactory
from .root_document_cache import RootDocument, RootDocumentCache
from .batch_resolver import BatchIdentifierResolver
from .repository import ResourceRepository
from .config_loader import ConfigLoader, ClientConfig, ConfigurationError, EnvironmentVariableError
from .client import OctopusClient

__all__ = [
    'Outcome',
    'OutcomeKind',
    'CallState',
    'OctopusClientError',
    'LinkResolutionError',
    'TransportError',
    'PaginationError',
    'OutcomeError',
    'CancellationToken',
    'LinkResolver',
    'LinkCollection',
    'expand',
    'Resource',
    'ResourceType',
    'FeedType',
    'FeedResource',
    'BUILTIN_RESOURCE_TYPES',
    'RequestExecutor',
    'RequestsTransport',
    'TransportResponse',
    'APIRequest',
    'ApiKeyAuth',
    'BearerTokenAuth',
    'NoAuth',
    'build_auth',
    'RetryPolicy',
    'Page',
    'PageIterator',
    'PaginationFactory',
    'RootDocument',
    'RootDocumentCache',
    'BatchIdentifierResolver',
    'ResourceRepository',
    'ConfigLoader',
    'ClientConfig',
    'ConfigurationError',
    'EnvironmentVariableError',
    'OctopusClient'
]
