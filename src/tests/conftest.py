"""
Shared fixtures: a scripted in-memory transport standing in for the network
"""

import json
import pytest
from typing import Dict, Any, List, Optional, Union, Callable

from octopus_client.http_client import RequestExecutor, TransportResponse
from octopus_client.outcomes import TransportError
from octopus_client.retry_policy import RetryPolicy
from octopus_client.root_document_cache import RootDocumentCache
from octopus_client.repository import ResourceRepository
from octopus_client.resources import ResourceType


BASE_URL = "https://octopus.test"


def json_response(status_code: int, body: Any = None,
                  headers: Optional[Dict[str, str]] = None) -> TransportResponse:
    return TransportResponse(
        status_code=status_code,
        headers=headers or {'Content-Type': 'application/json'},
        body=json.dumps(body).encode('utf-8') if body is not None else b''
    )


ScriptedReply = Union[TransportResponse, Exception, Callable[[str, str, Dict[str, str], Optional[str]], TransportResponse]]


class FakeTransport:
    """Replays scripted replies per (method, url) and records every call"""

    def __init__(self):
        self.routes: Dict[tuple, List[ScriptedReply]] = {}
        self.calls: List[Dict[str, Any]] = []

    def add(self, method: str, path: str, *replies: ScriptedReply) -> None:
        url = path if path.startswith('http') else BASE_URL + path
        self.routes.setdefault((method.upper(), url), []).extend(replies)

    def send(self, method, url, headers, body):
        self.calls.append({'method': method, 'url': url, 'headers': dict(headers), 'body': body})
        replies = self.routes.get((method, url))
        if not replies:
            return json_response(599, {'ErrorMessage': f'No scripted reply for {method} {url}'})

        # The last reply repeats once the script runs out
        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if isinstance(reply, Exception):
            raise reply
        # Response-like objects (e.g. a Mock with status_code) are replies, not factories
        if callable(reply) and not hasattr(reply, 'status_code'):
            return reply(method, url, headers, body)
        return reply

    def calls_to(self, path: str) -> List[Dict[str, Any]]:
        url = path if path.startswith('http') else BASE_URL + path
        return [call for call in self.calls if call['url'] == url]


def network_error(message: str = "connection reset") -> TransportError:
    return TransportError(message)


ROOT_DOCUMENT = {
    "Application": "Octopus Deploy",
    "Version": "2024.1.0",
    "Links": {
        "Self": "/api",
        "Projects": "/api/projects{/id}{?skip,take,ids,partialName}",
        "Environments": "/api/environments{/id}{?skip,take,partialName}",
        "Feeds": "/api/feeds{/id}{?skip,take,ids,partialName,feedType}",
    }
}

PROJECT_TYPE = ResourceType(name="Project", collection_relation="Projects",
                            concurrency_field="LastModifiedOn")
ENVIRONMENT_TYPE = ResourceType(name="Environment", collection_relation="Environments")


def project(identifier: str, name: str = "", **extra) -> Dict[str, Any]:
    body = {
        "Id": identifier,
        "Name": name or identifier,
        "Links": {"Self": f"/api/projects/{identifier}"}
    }
    body.update(extra)
    return body


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def executor(transport):
    return RequestExecutor(transport, BASE_URL)


@pytest.fixture
def retry_policy():
    # Zero delays keep the suite fast; backoff maths is tested separately
    return RetryPolicy(max_attempts=3, base_delay=0.0, jitter=False)


@pytest.fixture
def root_cache():
    return RootDocumentCache.from_document(ROOT_DOCUMENT)


@pytest.fixture
def projects(executor, retry_policy, root_cache):
    return ResourceRepository(PROJECT_TYPE, executor, retry_policy, root_cache,
                              pagination={'strategy': 'next_link', 'items_per_page': 2})


@pytest.fixture
def environments(executor, retry_policy, root_cache):
    return ResourceRepository(ENVIRONMENT_TYPE, executor, retry_policy, root_cache,
                              pagination={'strategy': 'next_link', 'items_per_page': 2})
