"""
RootDocumentCache module holding the server's entry-point link document for a client session
"""

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, Callable

from .link_resolver import LinkCollection
from .outcomes import Outcome


@dataclass(frozen=True)
class RootDocument:
    """Immutable snapshot of the API entry point"""
    links: LinkCollection
    version: Optional[str] = None
    application: Optional[str] = None
    raw: Mapping = field(default_factory=dict)

    @classmethod
    def from_wire(cls, body: Any) -> 'RootDocument':
        """
        Parse either a flat {relation: template} object or the server form
        with the relations nested under 'Links'

        Raises:
            ValueError: If the body is not a JSON object
        """
        if not isinstance(body, Mapping):
            raise ValueError("Root document must be a JSON object")

        links = body.get('Links')
        if not isinstance(links, Mapping):
            links = body

        return cls(
            links=LinkCollection(links),
            version=body.get('Version'),
            application=body.get('Application'),
            raw=dict(body)
        )


class RootDocumentCache:
    """Fetches the root document at most once per session and shares it read-only"""

    def __init__(self, fetch: Optional[Callable[[], Outcome]] = None,
                 document: Optional[RootDocument] = None):
        """
        Args:
            fetch: Performs the root GET (already wrapped in the retry policy)
            document: Pre-populated snapshot, used for tests and offline sessions
        """
        if fetch is None and document is None:
            raise ValueError("RootDocumentCache needs a fetch callable or a document")
        self._fetch = fetch
        self._document = document
        self._lock = threading.Lock()
        self.fetch_count = 0
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'RootDocumentCache':
        """Create a cache around a fixed document without network access"""
        return cls(document=RootDocument.from_wire(document))

    def get(self) -> Outcome:
        """
        Return the cached root document, fetching it on first use

        Returns:
            Success carrying a RootDocument, or the failed fetch outcome
            (nothing is cached on failure)
        """
        document = self._document
        if document is not None:
            return Outcome.success(document)

        with self._lock:
            # Another caller may have fetched while we waited
            if self._document is not None:
                return Outcome.success(self._document)
            return self._load()

    def refresh(self) -> Outcome:
        """
        Re-fetch the root document and atomically replace the snapshot

        Callers already holding the previous RootDocument keep using it.
        On failure the previous snapshot stays in place.
        """
        if self._fetch is None:
            return Outcome.success(self._document)

        with self._lock:
            return self._load()

    def invalidate(self) -> None:
        """Drop the snapshot so the next get() fetches again"""
        if self._fetch is None:
            return
        with self._lock:
            self._document = None

    def replace(self, document: Dict[str, Any]) -> None:
        """Swap in a new snapshot directly"""
        snapshot = RootDocument.from_wire(document)
        with self._lock:
            self._document = snapshot

    def _load(self) -> Outcome:
        outcome = self._fetch()
        self.fetch_count += 1

        if not outcome.succeeded:
            self.logger.warning(f"Root document fetch failed: {outcome.kind.value} {outcome.message}")
            return outcome

        try:
            document = RootDocument.from_wire(outcome.value)
        except ValueError as e:
            return Outcome.fatal(str(e), uri=outcome.uri, status_code=outcome.status_code,
                                 attempts=outcome.attempts)

        self._document = document
        self.logger.info(
            f"Loaded root document with {len(document.links)} relations"
            + (f" (server version {document.version})" if document.version else "")
        )
        return Outcome.success(document, uri=outcome.uri, status_code=outcome.status_code,
                               attempts=outcome.attempts)
