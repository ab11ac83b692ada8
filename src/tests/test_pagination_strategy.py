"""
Test suite for PaginationStrategy and PageIterator components
Following AAA pattern and descriptive naming
"""

import pytest
from unittest.mock import Mock

from octopus_client.cancellation import CancellationToken
from octopus_client.link_resolver import LinkCollection
from octopus_client.outcomes import Outcome, OutcomeKind, PaginationError
from octopus_client.pagination_strategy import (
    Page, PageIterator, PaginationFactory, NextLinkPagination, OffsetLimitPagination
)

from conftest import PROJECT_TYPE, project


def collection_pages(total_items: int, page_size: int):
    """Build a server-style 'Page.Next' chain of collection bodies keyed by URI"""
    pages = {}
    page_count = (total_items + page_size - 1) // page_size
    for index in range(page_count):
        uri = f"/api/projects?skip={index * page_size}&take={page_size}"
        items = [project(f"P-{n}") for n in range(index * page_size, min(total_items, (index + 1) * page_size))]
        links = {"Self": uri}
        if index + 1 < page_count:
            links["Page.Next"] = f"/api/projects?skip={(index + 1) * page_size}&take={page_size}"
        pages[uri] = {"Items": items, "TotalResults": total_items, "ItemsPerPage": page_size, "Links": links}
    return pages


def fetcher_for(pages):
    return Mock(side_effect=lambda uri: Outcome.success(pages[uri], uri=uri))


class TestPage:
    """Test suite for collection body parsing"""

    def test_from_wire_with_collection_body_builds_typed_items(self):
        # Arrange
        body = {"Items": [project("P-1")], "TotalResults": 1, "ItemsPerPage": 30,
                "Links": {"Page.Next": "/api/projects?skip=30"}}

        # Act
        page = Page.from_wire(body, "/api/projects", 1, PROJECT_TYPE)

        # Assert
        assert [item.id for item in page.items] == ["P-1"]
        assert page.total_results == 1
        assert page.next_link == "/api/projects?skip=30"

    def test_from_wire_with_non_collection_body_raises_value_error(self):
        with pytest.raises(ValueError):
            Page.from_wire(["P-1"], "/api/projects", 1, PROJECT_TYPE)


class TestPageIterator:
    """Test suite for lazy page traversal"""

    def test_iterating_all_pages_yields_every_item_with_one_fetch_per_page(self):
        """
        Test that N items over P pages yield N items with exactly P fetches
        """
        # Arrange
        pages = collection_pages(total_items=7, page_size=3)
        fetch = fetcher_for(pages)
        iterator = PageIterator(fetch, "/api/projects?skip=0&take=3", PROJECT_TYPE)

        # Act
        items = list(iterator.items())

        # Assert
        assert len(items) == 7
        assert [item.id for item in items] == [f"P-{n}" for n in range(7)]
        assert fetch.call_count == 3
        assert iterator.outcome.succeeded

    def test_iterating_exact_multiple_makes_no_trailing_empty_fetch(self):
        # Arrange
        pages = collection_pages(total_items=6, page_size=3)
        fetch = fetcher_for(pages)

        # Act
        result = list(PageIterator(fetch, "/api/projects?skip=0&take=3", PROJECT_TYPE))

        # Assert
        assert len(result) == 2
        assert fetch.call_count == 2

    def test_creating_iterator_fetches_nothing_until_consumed(self):
        # Arrange
        fetch = fetcher_for(collection_pages(5, 2))

        # Act
        iterator = PageIterator(fetch, "/api/projects?skip=0&take=2", PROJECT_TYPE)

        # Assert
        fetch.assert_not_called()
        next(iterator)
        assert fetch.call_count == 1

    def test_cancelling_after_second_page_stops_further_fetches(self):
        """
        Test that cancelling mid-listing delivers exactly the pages already fetched
        """
        # Arrange
        pages = collection_pages(total_items=10, page_size=2)
        fetch = fetcher_for(pages)
        token = CancellationToken()
        iterator = PageIterator(fetch, "/api/projects?skip=0&take=2", PROJECT_TYPE, cancellation=token)
        delivered = []

        # Act
        for page in iterator:
            delivered.append(page)
            if len(delivered) == 2:
                token.cancel()

        # Assert
        assert len(delivered) == 2
        assert fetch.call_count == 2
        assert iterator.outcome.kind is OutcomeKind.CANCELLED
        assert [item.id for item in delivered[0].items] == ["P-0", "P-1"]

    def test_breaking_out_of_iteration_fetches_no_more_pages(self):
        # Arrange
        fetch = fetcher_for(collection_pages(10, 2))
        iterator = PageIterator(fetch, "/api/projects?skip=0&take=2", PROJECT_TYPE)

        # Act
        for page in iterator:
            iterator.close()
            break
        remaining = list(iterator)

        # Assert
        assert remaining == []
        assert fetch.call_count == 1

    def test_iterator_is_single_pass(self):
        # Arrange
        fetch = fetcher_for(collection_pages(4, 2))
        iterator = PageIterator(fetch, "/api/projects?skip=0&take=2", PROJECT_TYPE)

        # Act
        first = list(iterator)
        second = list(iterator)

        # Assert
        assert len(first) == 2
        assert second == []
        assert fetch.call_count == 2

    def test_failed_page_fetch_raises_pagination_error_with_outcome(self):
        # Arrange
        pages = collection_pages(6, 2)
        failure = Outcome.transient_failure("HTTP 503", attempts=3)

        def fetch(uri):
            if uri.startswith("/api/projects?skip=2"):
                return failure
            return Outcome.success(pages[uri])

        iterator = PageIterator(fetch, "/api/projects?skip=0&take=2", PROJECT_TYPE)

        # Act
        first = next(iterator)
        with pytest.raises(PaginationError) as exc_info:
            next(iterator)

        # Assert
        assert len(first.items) == 2
        assert exc_info.value.outcome is failure
        assert iterator.outcome is failure

    def test_collect_returns_failure_outcome_instead_of_raising(self):
        # Arrange
        fetch = Mock(return_value=Outcome.not_found())
        iterator = PageIterator(fetch, "/api/projects", PROJECT_TYPE)

        # Act
        outcome = iterator.collect()

        # Assert
        assert outcome.kind is OutcomeKind.NOT_FOUND

    def test_collect_with_all_pages_returns_success_list(self):
        # Arrange
        iterator = PageIterator(fetcher_for(collection_pages(5, 2)), "/api/projects?skip=0&take=2", PROJECT_TYPE)

        # Act
        outcome = iterator.collect()

        # Assert
        assert outcome.succeeded
        assert len(outcome.value) == 5

    def test_failed_iterator_raises_without_fetching(self):
        # Arrange
        failure = Outcome.fatal("Unknown link relation")

        # Act
        iterator = PageIterator.failed(failure, PROJECT_TYPE)

        # Assert
        with pytest.raises(PaginationError):
            next(iterator)
        assert iterator.outcome is failure


class TestPaginationStrategies:
    """Test suite for next-page selection strategies"""

    def test_next_link_pagination_returns_page_next_link(self):
        # Arrange
        page = Page(items=[], uri="/api/projects", number=1,
                    links=LinkCollection({"Page.Next": "/api/projects?skip=30&take=30"}))

        # Act
        result = NextLinkPagination().get_next_page_uri(page)

        # Assert
        assert result == "/api/projects?skip=30&take=30"

    def test_next_link_pagination_without_next_link_returns_none(self):
        # Arrange
        page = Page(items=[], uri="/api/projects", number=1)

        # Assert
        assert NextLinkPagination().get_next_page_uri(page) is None

    def test_offset_limit_pagination_advances_skip_by_received_items(self):
        # Arrange
        strategy = OffsetLimitPagination({'items_per_page': 2})
        items = [PROJECT_TYPE.from_wire(project("P-1")), PROJECT_TYPE.from_wire(project("P-2"))]
        page = Page(items=items, uri="/api/projects?skip=4&take=2", number=3, total_results=10)

        # Act
        result = strategy.get_next_page_uri(page)

        # Assert
        assert result == "/api/projects?skip=6&take=2"

    def test_offset_limit_pagination_stops_at_server_total(self):
        # Arrange
        strategy = OffsetLimitPagination({'items_per_page': 2})
        items = [PROJECT_TYPE.from_wire(project("P-1")), PROJECT_TYPE.from_wire(project("P-2"))]
        page = Page(items=items, uri="/api/projects?skip=2&take=2", number=2, total_results=4)

        # Assert
        assert strategy.get_next_page_uri(page) is None

    def test_offset_limit_pagination_stops_on_short_page(self):
        # Arrange
        strategy = OffsetLimitPagination({'items_per_page': 2})
        page = Page(items=[PROJECT_TYPE.from_wire(project("P-1"))], uri="/api/projects?take=2", number=1)

        # Assert
        assert strategy.get_next_page_uri(page) is None

    def test_offset_limit_pagination_with_server_capped_page_size_reaches_total(self):
        """
        Test that a server returning fewer items than requested per page is still read to its total
        """
        # Arrange
        all_items = [project(f"P-{n}") for n in range(6)]

        def fetch(uri):
            skip = int(uri.split("skip=")[1].split("&")[0]) if "skip=" in uri else 0
            return Outcome.success({"Items": all_items[skip:skip + 2], "TotalResults": 6}, uri=uri)

        fetch_page = Mock(side_effect=fetch)
        strategy = OffsetLimitPagination({'items_per_page': 5})
        iterator = PageIterator(fetch_page, "/api/projects?take=5", PROJECT_TYPE, strategy=strategy)

        # Act
        outcome = iterator.collect()

        # Assert
        assert [item.id for item in outcome.value] == [f"P-{n}" for n in range(6)]
        assert fetch_page.call_count == 3
        assert [call[0][0] for call in fetch_page.call_args_list][1:] == [
            "/api/projects?take=5&skip=2", "/api/projects?take=5&skip=4"
        ]

    def test_offset_limit_pagination_with_empty_page_stops_despite_total(self):
        # Arrange
        strategy = OffsetLimitPagination({'items_per_page': 5})
        page = Page(items=[], uri="/api/projects?skip=4&take=5", number=2, total_results=10)

        # Assert
        assert strategy.get_next_page_uri(page) is None

    def test_create_strategy_with_known_types_returns_instances(self):
        # Act
        next_link = PaginationFactory.create_strategy({'strategy': 'next_link'})
        offset = PaginationFactory.create_strategy({'strategy': 'offset_limit', 'items_per_page': 30})

        # Assert
        assert isinstance(next_link, NextLinkPagination)
        assert isinstance(offset, OffsetLimitPagination)

    def test_create_strategy_with_unsupported_type_raises_value_error(self):
        with pytest.raises(ValueError) as exc_info:
            PaginationFactory.create_strategy({'strategy': 'cursor'})

        assert "Unsupported pagination strategy" in str(exc_info.value)
