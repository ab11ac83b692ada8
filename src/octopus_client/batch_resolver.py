"""
BatchResolver module for fetching many resources by identifier with the fewest requests
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Protocol, Callable, Tuple, Iterable

from .cancellation import CancellationToken
from .link_resolver import LinkCollection, is_link
from .outcomes import Outcome, LinkResolutionError


logger = logging.getLogger(__name__)

BULK_QUERY_PARAMETER = "ids"


class BatchStrategy(Protocol):
    """Protocol for turning a set of unique identifiers into per-identifier outcomes"""

    def fetch(self, identifiers: List[str], cancellation: CancellationToken) -> Dict[str, Outcome]:
        ...


class PerItemLookup:
    """One GET per identifier, with a bounded number in flight"""

    def __init__(self, get_one: Callable[[str, CancellationToken], Outcome], max_concurrency: int = 4):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.get_one = get_one
        self.max_concurrency = max_concurrency

    def fetch(self, identifiers: List[str], cancellation: CancellationToken) -> Dict[str, Outcome]:
        if not identifiers:
            return {}

        def lookup(identifier: str) -> Outcome:
            # Work queued behind the concurrency limit is skipped once cancelled
            if cancellation.cancelled:
                return Outcome.cancelled(attempts=0)
            return self.get_one(identifier, cancellation)

        workers = min(self.max_concurrency, len(identifiers))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            outcomes = list(executor.map(lookup, identifiers))

        return dict(zip(identifiers, outcomes))


class BulkQueryLookup:
    """Fetches raw IDs through the collection's bulk 'ids' query, in chunks"""

    def __init__(self, fetch_chunk: Callable[[List[str], CancellationToken], Outcome],
                 per_item: PerItemLookup, chunk_size: int = 100):
        """
        Args:
            fetch_chunk: Returns Success with every resource found for the given IDs
            per_item: Used for identifiers that are direct links
            chunk_size: Maximum IDs per bulk request
        """
        self.fetch_chunk = fetch_chunk
        self.per_item = per_item
        self.chunk_size = max(1, chunk_size)

    def fetch(self, identifiers: List[str], cancellation: CancellationToken) -> Dict[str, Outcome]:
        links = [identifier for identifier in identifiers if is_link(identifier)]
        raw_ids = [identifier for identifier in identifiers if not is_link(identifier)]

        results = self.per_item.fetch(links, cancellation) if links else {}

        for start in range(0, len(raw_ids), self.chunk_size):
            chunk = raw_ids[start:start + self.chunk_size]

            if cancellation.cancelled:
                results.update({identifier: Outcome.cancelled(attempts=0) for identifier in chunk})
                continue

            outcome = self.fetch_chunk(chunk, cancellation)
            results.update(self._demultiplex(chunk, outcome))

        return results

    @staticmethod
    def _demultiplex(chunk: List[str], outcome: Outcome) -> Dict[str, Outcome]:
        if not outcome.succeeded:
            # The whole chunk shares the failure
            return {identifier: outcome for identifier in chunk}

        found = {resource.id: resource for resource in outcome.value or []}
        results = {}
        for identifier in chunk:
            if identifier in found:
                results[identifier] = Outcome.success(
                    found[identifier],
                    status_code=outcome.status_code,
                    uri=outcome.uri,
                    attempts=outcome.attempts
                )
            else:
                results[identifier] = Outcome.not_found(
                    f"No resource with id {identifier}",
                    uri=outcome.uri,
                    attempts=outcome.attempts
                )
        return results


def supports_bulk_query(links: LinkCollection, relation: str) -> bool:
    """True when the relation's template accepts the bulk 'ids' parameter"""
    try:
        return BULK_QUERY_PARAMETER in links.template_variables(relation)
    except LinkResolutionError:
        return False


class BatchIdentifierResolver:
    """Resolves an ordered identifier set into (identifier, outcome) pairs"""

    def __init__(self, strategy: BatchStrategy):
        self.strategy = strategy

    @classmethod
    def select(cls, links: LinkCollection, relation: str, per_item: PerItemLookup,
               bulk_factory: Callable[[], BulkQueryLookup]) -> 'BatchIdentifierResolver':
        """
        Choose the lookup strategy from the relations the server advertises

        Args:
            links: Root document links
            relation: Collection relation the identifiers belong to
            per_item: Default per-identifier strategy
            bulk_factory: Builds the bulk strategy if the server supports it

        Returns:
            Resolver bound to the chosen strategy
        """
        if supports_bulk_query(links, relation):
            logger.info(f"Using bulk '{BULK_QUERY_PARAMETER}' lookup for {relation}")
            return cls(bulk_factory())

        logger.info(f"Using per-item lookup for {relation}")
        return cls(per_item)

    def resolve_many(self, identifiers: Iterable[str],
                     cancellation: Optional[CancellationToken] = None) -> List[Tuple[str, Outcome]]:
        """
        Fetch every identifier, tolerating partial failure

        Args:
            identifiers: Raw IDs and/or direct links, possibly with duplicates
            cancellation: Stops lookups that have not started yet

        Returns:
            One (identifier, outcome) pair per input identifier, in input order
        """
        identifiers = list(identifiers)
        unique = list(dict.fromkeys(identifiers))
        cancellation = cancellation or CancellationToken()

        results = self.strategy.fetch(unique, cancellation)
        return [(identifier, results[identifier]) for identifier in identifiers]
