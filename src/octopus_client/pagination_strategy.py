"""
PaginationStrategy module for lazily walking paged collection listings
"""

import logging
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode
from typing import Dict, Any, Optional, Protocol, Callable, List, Iterator
from dataclasses import dataclass, field

from .cancellation import CancellationToken
from .link_resolver import LinkCollection
from .outcomes import Outcome, OutcomeKind, PaginationError
from .resources import Resource, ResourceType


NEXT_PAGE_RELATION = "Page.Next"

logger = logging.getLogger(__name__)


@dataclass
class Page:
    """One chunk of a collection listing"""
    items: List[Resource]
    uri: str
    number: int
    links: LinkCollection = field(default_factory=LinkCollection)
    total_results: Optional[int] = None
    items_per_page: Optional[int] = None

    @property
    def next_link(self) -> Optional[str]:
        return self.links.get(NEXT_PAGE_RELATION)

    @classmethod
    def from_wire(cls, body: Any, uri: str, number: int, resource_type: ResourceType) -> 'Page':
        """
        Build a page from a decoded collection body

        Raises:
            ValueError: If the body is not a collection object
        """
        if not isinstance(body, dict) or not isinstance(body.get('Items', []), list):
            raise ValueError(f"Expected a collection object from {uri}")

        links = body.get('Links') or {}
        return cls(
            items=[resource_type.from_wire(item) for item in body.get('Items', [])],
            uri=uri,
            number=number,
            links=LinkCollection(links if isinstance(links, dict) else {}),
            total_results=_optional_int(body.get('TotalResults')),
            items_per_page=_optional_int(body.get('ItemsPerPage'))
        )


def _optional_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class PaginationStrategy(Protocol):
    """Protocol for deciding which page to fetch after the current one"""

    def get_next_page_uri(self, page: Page) -> Optional[str]:
        """Return the URI of the next page, or None if the listing is exhausted"""
        ...


class NextLinkPagination:
    """Follows the server-supplied 'Page.Next' link until a page carries none"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.next_relation = (config or {}).get('next_relation', NEXT_PAGE_RELATION)

    def get_next_page_uri(self, page: Page) -> Optional[str]:
        return page.links.get(self.next_relation)


class OffsetLimitPagination:
    """Skip/take pagination for collections that advertise no 'Page.Next' link"""

    def __init__(self, config: Dict[str, Any]):
        self.items_per_page = config['items_per_page']
        self.skip_param = config.get('skip_param', 'skip')
        self.take_param = config.get('take_param', 'take')

    def get_next_page_uri(self, page: Page) -> Optional[str]:
        """
        Advance skip by the number of items received

        The server may cap the page size below items_per_page, so a short
        page only ends the listing when no total is reported.
        """
        received = len(page.items)
        if received == 0:
            return None

        scheme, netloc, path, query, fragment = urlsplit(page.uri)
        params = dict(parse_qsl(query, keep_blank_values=True))
        next_skip = int(params.get(self.skip_param, 0) or 0) + received

        if page.total_results is not None:
            # Check if we've reached the server-reported total
            if next_skip >= page.total_results:
                return None
        elif received < self.items_per_page:
            return None

        params[self.skip_param] = str(next_skip)
        params[self.take_param] = str(self.items_per_page)
        return urlunsplit((scheme, netloc, path, urlencode(params, safe=','), fragment))


class PaginationFactory:
    """Factory for creating appropriate pagination strategy based on config"""

    STRATEGIES = {
        'next_link': NextLinkPagination,
        'offset_limit': OffsetLimitPagination
    }

    @classmethod
    def create_strategy(cls, pagination_config: Dict[str, Any]) -> PaginationStrategy:
        """Create pagination strategy instance based on configuration"""
        strategy_type = pagination_config.get('strategy', 'next_link')

        if strategy_type not in cls.STRATEGIES:
            raise ValueError(f"Unsupported pagination strategy: {strategy_type}")

        strategy_class = cls.STRATEGIES[strategy_type]
        return strategy_class(pagination_config)


class PageIterator:
    """
    Lazy, single-pass iterator over the pages of one listing

    No page is requested until the consumer asks for it. Each fetch goes
    through fetch_page (which applies the retry policy on its own), so a
    transient failure mid-listing only repeats the current page. To start
    again, call the repository's list() again.
    """

    def __init__(self, fetch_page: Callable[[str], Outcome], first_uri: Optional[str],
                 resource_type: ResourceType, strategy: Optional[PaginationStrategy] = None,
                 cancellation: Optional[CancellationToken] = None):
        self.fetch_page = fetch_page
        self.resource_type = resource_type
        self.strategy = strategy or NextLinkPagination()
        self.cancellation = cancellation or CancellationToken()
        self.pages_fetched = 0
        self.outcome: Optional[Outcome] = None
        self._next_uri: Optional[str] = first_uri
        self._closed = False
        self._pending_error: Optional[Outcome] = None

    @classmethod
    def failed(cls, outcome: Outcome, resource_type: ResourceType) -> 'PageIterator':
        """Iterator that reports outcome as soon as it is consumed, without any fetch"""
        iterator = cls(lambda uri: outcome, None, resource_type)
        iterator._pending_error = outcome
        return iterator

    def __iter__(self) -> 'PageIterator':
        return self

    def __next__(self) -> Page:
        if self._pending_error is not None:
            self.outcome, self._pending_error = self._pending_error, None
            self._closed = True
            if self.outcome.kind is OutcomeKind.CANCELLED:
                raise StopIteration
            raise PaginationError(self.outcome)

        if self._closed or self._next_uri is None:
            self._finish()
            raise StopIteration

        if self.cancellation.cancelled:
            self.outcome = Outcome.cancelled(uri=self._next_uri)
            self._closed = True
            raise StopIteration

        uri = self._next_uri
        outcome = self.fetch_page(uri)
        self.pages_fetched += 1

        if outcome.kind is OutcomeKind.CANCELLED:
            self.outcome = outcome
            self._closed = True
            raise StopIteration

        if not outcome.succeeded:
            self.outcome = outcome
            self._closed = True
            raise PaginationError(outcome)

        try:
            page = Page.from_wire(outcome.value, uri, self.pages_fetched, self.resource_type)
        except ValueError as e:
            self.outcome = Outcome.fatal(str(e), uri=uri, status_code=outcome.status_code)
            self._closed = True
            raise PaginationError(self.outcome) from e

        self._next_uri = self.strategy.get_next_page_uri(page)
        logger.debug(
            f"Fetched page {page.number} of {self.resource_type.name} listing "
            f"({len(page.items)} items, more={self._next_uri is not None})"
        )
        return page

    def _finish(self) -> None:
        if self.outcome is None:
            self.outcome = Outcome.success(None)
        self._closed = True

    def close(self) -> None:
        """Stop the traversal; no further page is fetched"""
        self._closed = True

    def items(self) -> Iterator[Resource]:
        """Flatten the remaining pages into their resources"""
        for page in self:
            yield from page.items

    def collect(self) -> Outcome:
        """
        Consume the remaining pages

        Returns:
            Success with the list of resources, or the outcome that stopped
            the traversal (failure or Cancelled)
        """
        resources = []
        try:
            for page in self:
                resources.extend(page.items)
        except PaginationError as e:
            return e.outcome

        if self.outcome is not None and not self.outcome.succeeded:
            return self.outcome
        return Outcome.success(resources)
