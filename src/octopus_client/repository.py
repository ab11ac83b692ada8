"""
Repository module: one generic implementation of get/list/create/modify/delete
serving every resource type through its capability contract
"""

import itertools
import logging
from typing import Dict, Any, Optional, Callable, List, Tuple, Iterable, Generic, TypeVar

from .batch_resolver import BatchIdentifierResolver, PerItemLookup, BulkQueryLookup, BULK_QUERY_PARAMETER
from .cancellation import CancellationToken
from .http_client import RequestExecutor
from .link_resolver import is_link
from .outcomes import Outcome, OutcomeKind, CallState, LinkResolutionError, PaginationError
from .pagination_strategy import PageIterator, PaginationFactory
from .resources import Resource, ResourceType
from .retry_policy import RetryPolicy
from .root_document_cache import RootDocumentCache


R = TypeVar('R', bound=Resource)

_call_ids = itertools.count(1)


class _RootUnavailable(Exception):
    """Internal signal that the root document could not be obtained"""

    def __init__(self, outcome: Outcome):
        self.outcome = outcome
        super().__init__(outcome.message)


class ResourceRepository(Generic[R]):
    """
    Typed access to one server resource collection

    Every operation returns an Outcome; expected failure kinds (not found,
    conflict, validation, transient, cancelled) are never raised.
    """

    def __init__(self, resource_type: ResourceType, executor: RequestExecutor,
                 retry_policy: RetryPolicy, root_cache: RootDocumentCache,
                 max_concurrency: int = 4, pagination: Optional[Dict[str, Any]] = None,
                 bulk_chunk_size: int = 100, enforce_concurrency_tokens: bool = False):
        self.resource_type = resource_type
        self.executor = executor
        self.retry_policy = retry_policy
        self.root_cache = root_cache
        self.max_concurrency = max_concurrency
        self.pagination = dict(pagination or {'strategy': 'next_link', 'items_per_page': 30})
        self.pagination.setdefault('items_per_page', 30)
        self.bulk_chunk_size = bulk_chunk_size
        self.enforce_concurrency_tokens = enforce_concurrency_tokens
        self.logger = logging.getLogger(__name__)
        self._batch_resolver: Optional[BatchIdentifierResolver] = None

    @property
    def relation(self) -> str:
        return self.resource_type.collection_relation

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get(self, id_or_link: str, cancellation: Optional[CancellationToken] = None) -> Outcome:
        """
        Fetch one resource by collection-scoped ID or by direct link

        Args:
            id_or_link: Raw ID (e.g. 'Projects-1') or a link such as '/api/projects/Projects-1'
            cancellation: Optional cancellation signal

        Returns:
            Success carrying the resource; NotFound is a normal outcome
        """
        if not id_or_link:
            return Outcome.fatal(f"An identifier is required to get a {self.resource_type.name}")

        if is_link(id_or_link):
            resolve = lambda: id_or_link
        else:
            resolve = lambda: self._collection_uri({'id': id_or_link})

        return self._run('GET', resolve, resource_type=self.resource_type, cancellation=cancellation)

    def get_many(self, identifiers: Iterable[str],
                 cancellation: Optional[CancellationToken] = None) -> List[Tuple[str, Outcome]]:
        """
        Fetch several resources, one outcome per requested identifier

        Returns:
            (identifier, outcome) pairs in input order; missing resources
            appear as NotFound without failing the rest
        """
        identifiers = list(identifiers)
        if not identifiers:
            return []

        resolver = self._get_batch_resolver()
        if isinstance(resolver, Outcome):
            return [(identifier, resolver) for identifier in identifiers]

        return resolver.resolve_many(identifiers, cancellation)

    def list(self, cancellation: Optional[CancellationToken] = None, **search_parameters) -> PageIterator:
        """
        Start a lazy listing of the collection

        Args:
            cancellation: Stops the listing before the next page fetch
            **search_parameters: Template parameters such as partialName or skip

        Returns:
            PageIterator; nothing is fetched until it is consumed
        """
        parameters = {'take': self.pagination['items_per_page']}
        parameters.update(search_parameters)
        cancellation = cancellation or CancellationToken()
        strategy = PaginationFactory.create_strategy(self.pagination)

        try:
            first_uri = self._collection_uri(parameters)
        except _RootUnavailable as e:
            return PageIterator.failed(e.outcome, self.resource_type)
        except LinkResolutionError as e:
            self.logger.error(f"Cannot list {self.relation}: {e}")
            return PageIterator.failed(Outcome.fatal(str(e)), self.resource_type)

        return PageIterator(
            fetch_page=lambda uri: self._fetch_page(uri, cancellation),
            first_uri=first_uri,
            resource_type=self.resource_type,
            strategy=strategy,
            cancellation=cancellation
        )

    def find_all(self, cancellation: Optional[CancellationToken] = None, **search_parameters) -> Outcome:
        """Collect every resource in the collection into one list"""
        return self.list(cancellation, **search_parameters).collect()

    def find_many(self, predicate: Callable[[R], bool],
                  cancellation: Optional[CancellationToken] = None, **search_parameters) -> Outcome:
        """Collect the resources matching predicate across all pages"""
        outcome = self.find_all(cancellation, **search_parameters)
        if not outcome.succeeded:
            return outcome
        return Outcome.success([resource for resource in outcome.value if predicate(resource)])

    def find_one(self, predicate: Callable[[R], bool],
                 cancellation: Optional[CancellationToken] = None, **search_parameters) -> Outcome:
        """
        Return the first matching resource, stopping the listing as soon as it is found

        Returns:
            Success with the resource, NotFound if no page contains a match,
            or the failure that interrupted the listing
        """
        pages = self.list(cancellation, **search_parameters)
        try:
            for resource in pages.items():
                if predicate(resource):
                    pages.close()
                    return Outcome.success(resource)
        except PaginationError as e:
            return e.outcome

        if pages.outcome is not None and not pages.outcome.succeeded:
            return pages.outcome
        return Outcome.not_found(f"No matching {self.resource_type.name}")

    def find_by_name(self, name: str, cancellation: Optional[CancellationToken] = None) -> Outcome:
        """Exact, case-insensitive name match using the server's partialName filter"""
        wanted = name.casefold()
        name_field = self.resource_type.name_field
        return self.find_one(
            lambda resource: str(resource.get(name_field, '')).casefold() == wanted,
            cancellation,
            partialName=name
        )

    def refresh(self, resource: R, cancellation: Optional[CancellationToken] = None) -> Outcome:
        """
        Re-fetch a resource through its own embedded Self link

        The link carried by the snapshot is used as-is, so refresh keeps
        working even if the root document's templates change.
        """
        self_link = resource.self_link
        if not self_link:
            return Outcome.fatal(f"{self.resource_type.name} {resource.id} carries no Self link")

        return self._run('GET', lambda: self_link, resource_type=self.resource_type,
                         cancellation=cancellation)

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def create(self, draft: R, idempotency_key: Optional[str] = None,
               cancellation: Optional[CancellationToken] = None) -> Outcome:
        """
        POST a new resource to the collection

        Args:
            draft: Unsaved resource (see Resource.draft)
            idempotency_key: Opt in to retries of the POST; sent as Idempotency-Key
            cancellation: Optional cancellation signal

        Returns:
            Success carrying the created resource as returned by the server
        """
        headers = {'Idempotency-Key': idempotency_key} if idempotency_key else None
        return self._run(
            'POST',
            lambda: self._collection_uri({}),
            body=draft,
            resource_type=self.resource_type,
            headers=headers,
            idempotency_key=idempotency_key,
            cancellation=cancellation
        )

    def modify(self, resource: R, cancellation: Optional[CancellationToken] = None) -> Outcome:
        """
        PUT the resource back to its Self link

        A resource carrying a concurrency token sends it as If-Match; a
        server-side mismatch comes back as Conflict and is never overwritten.
        """
        self_link = resource.self_link
        if not self_link:
            return Outcome.fatal(f"{self.resource_type.name} {resource.id} carries no Self link")

        if self.enforce_concurrency_tokens and resource.concurrency_token is None:
            return Outcome.fatal(
                f"{self.resource_type.name} {resource.id} has no concurrency token "
                f"({self.resource_type.concurrency_field}); re-fetch before modifying",
                attempts=0
            )

        headers = None
        if resource.concurrency_token is not None:
            headers = {'If-Match': resource.concurrency_token}

        return self._run('PUT', lambda: self_link, body=resource, resource_type=self.resource_type,
                         headers=headers, cancellation=cancellation)

    def delete(self, resource: R, cancellation: Optional[CancellationToken] = None) -> Outcome:
        """DELETE the resource through its Self link"""
        self_link = resource.self_link
        if not self_link:
            return Outcome.fatal(f"{self.resource_type.name} {resource.id} carries no Self link")

        return self._run('DELETE', lambda: self_link, cancellation=cancellation)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _collection_uri(self, parameters: Dict[str, Any]) -> str:
        root = self.root_cache.get()
        if not root.succeeded:
            raise _RootUnavailable(root)
        return root.value.links.resolve(self.relation, parameters)

    def _run(self, method: str, resolve: Callable[[], str], body: Any = None,
             resource_type: Optional[ResourceType] = None, headers: Optional[Dict[str, str]] = None,
             idempotency_key: Optional[str] = None,
             cancellation: Optional[CancellationToken] = None) -> Outcome:
        """Drive one call through Pending, ResolvingLink, Executing/Retrying to a terminal state"""
        call_id = next(_call_ids)
        self._transition(call_id, CallState.PENDING, method)

        if cancellation is not None and cancellation.cancelled:
            return self._finish(call_id, method, Outcome.cancelled(attempts=0))

        self._transition(call_id, CallState.RESOLVING_LINK, method)
        try:
            uri = resolve()
        except _RootUnavailable as e:
            return self._finish(call_id, method, e.outcome)
        except LinkResolutionError as e:
            return self._finish(call_id, method, Outcome.fatal(str(e), attempts=0))

        self._transition(call_id, CallState.EXECUTING, method, uri)
        outcome = self.retry_policy.with_retry(
            lambda: self.executor.execute(method, uri, body, resource_type, headers),
            method=method,
            idempotency_key=idempotency_key,
            cancellation=cancellation,
            on_retry=lambda attempt, failed, delay: self._transition(call_id, CallState.RETRYING, method, uri)
        )
        return self._finish(call_id, method, outcome)

    def _finish(self, call_id: int, method: str, outcome: Outcome) -> Outcome:
        self._transition(call_id, outcome.terminal_state, method, outcome.uri)

        if outcome.kind is OutcomeKind.NOT_FOUND:
            self.logger.debug(f"{method} {outcome.uri}: {self.resource_type.name} not found")
        elif outcome.kind is OutcomeKind.FATAL:
            self.logger.error(f"{method} {outcome.uri or self.relation} failed: {outcome.message}")
        return outcome

    def _transition(self, call_id: int, state: CallState, method: str, uri: Optional[str] = None) -> None:
        self.logger.debug(f"[call {call_id}] {method} {uri or self.relation} -> {state.value}")

    def _fetch_page(self, uri: str, cancellation: CancellationToken) -> Outcome:
        return self._run('GET', lambda: uri, cancellation=cancellation)

    def _get_one(self, identifier: str, cancellation: CancellationToken) -> Outcome:
        return self.get(identifier, cancellation)

    def _fetch_bulk_chunk(self, ids: List[str], cancellation: CancellationToken) -> Outcome:
        parameters = {BULK_QUERY_PARAMETER: ids, 'take': len(ids)}
        try:
            first_uri = self._collection_uri(parameters)
        except _RootUnavailable as e:
            return e.outcome
        except LinkResolutionError as e:
            return Outcome.fatal(str(e), attempts=0)

        pages = PageIterator(
            fetch_page=lambda uri: self._fetch_page(uri, cancellation),
            first_uri=first_uri,
            resource_type=self.resource_type,
            cancellation=cancellation
        )
        outcome = pages.collect()
        outcome.uri = outcome.uri or first_uri
        return outcome

    def _get_batch_resolver(self):
        """Select the batch strategy once, from the relations the server advertises"""
        if self._batch_resolver is not None:
            return self._batch_resolver

        root = self.root_cache.get()
        if not root.succeeded:
            return root

        per_item = PerItemLookup(self._get_one, self.max_concurrency)
        self._batch_resolver = BatchIdentifierResolver.select(
            root.value.links,
            self.relation,
            per_item,
            lambda: BulkQueryLookup(self._fetch_bulk_chunk, per_item, self.bulk_chunk_size)
        )
        return self._batch_resolver
