"""
HTTP module: transport and authentication collaborators plus the request executor
that classifies raw responses into operation outcomes
"""

import json
import time
import logging
import threading
import requests
from typing import Dict, Any, Optional, Protocol, Mapping
from datetime import datetime
from dataclasses import dataclass, field

from .outcomes import Outcome, TransportError
from .resources import Resource, ResourceType


@dataclass
class APIRequest:
    """Represents a single outgoing API request"""
    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[str] = None


@dataclass
class TransportResponse:
    """Raw response handed back by a transport"""
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    request_timestamp: datetime = field(default_factory=datetime.now)


class Transport(Protocol):
    """Network collaborator: sends one request and returns the raw response"""

    def send(self, method: str, url: str, headers: Mapping[str, str],
             body: Optional[str]) -> TransportResponse:
        """Send a request; raise TransportError if no HTTP response was received"""
        ...


class AuthProvider(Protocol):
    """Supplies opaque authentication headers for every request"""

    def headers(self) -> Dict[str, str]:
        ...


class NoAuth:
    def headers(self) -> Dict[str, str]:
        return {}


class ApiKeyAuth:
    """API key sent in a dedicated header"""

    def __init__(self, api_key: str, header_name: str = "X-Octopus-ApiKey"):
        self.api_key = api_key
        self.header_name = header_name

    def headers(self) -> Dict[str, str]:
        return {self.header_name: self.api_key}

    def __repr__(self) -> str:
        return f"ApiKeyAuth(header_name={self.header_name!r})"


class BearerTokenAuth:
    """Pre-acquired bearer token"""

    def __init__(self, token: str):
        self.token = token

    def headers(self) -> Dict[str, str]:
        return {'Authorization': f"Bearer {self.token}"}

    def __repr__(self) -> str:
        return "BearerTokenAuth()"


def build_auth(credentials: Dict[str, Any]) -> AuthProvider:
    """
    Create an auth provider based on credential type

    Args:
        credentials: Dictionary containing 'type' and the matching secret

    Returns:
        AuthProvider instance

    Raises:
        ValueError: If authentication type is not supported
    """
    auth_type = credentials.get('type')

    if auth_type == 'api_key':
        return ApiKeyAuth(
            credentials['api_key'],
            credentials.get('header_name', 'X-Octopus-ApiKey')
        )

    elif auth_type == 'bearer_token':
        return BearerTokenAuth(credentials['token'])

    elif auth_type in ('none', None):
        return NoAuth()

    else:
        raise ValueError(f"Unsupported authentication type: {auth_type}")


class RequestsTransport:
    """Transport backed by a requests.Session with client-side rate limiting"""

    def __init__(self, timeout: float = 30.0, requests_per_second: Optional[float] = None,
                 verify: bool = True):
        self.timeout = timeout
        self.requests_per_second = requests_per_second
        self.verify = verify
        self.session: Optional[requests.Session] = None
        self.last_request_time: Optional[float] = None
        self._lock = threading.Lock()

    def send(self, method: str, url: str, headers: Mapping[str, str],
             body: Optional[str]) -> TransportResponse:
        """
        Send one HTTP request

        Args:
            method: HTTP verb
            url: Absolute URL
            headers: Complete request headers
            body: Encoded request body, if any

        Returns:
            TransportResponse with the raw status, headers and body

        Raises:
            TransportError: For connection, timeout and other network-level failures
        """
        self.apply_rate_limit()
        session = self._get_session()

        request_timestamp = datetime.now()
        try:
            response = session.request(
                method.upper(),
                url,
                headers=dict(headers),
                data=body.encode('utf-8') if body is not None else None,
                timeout=self.timeout,
                verify=self.verify
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(f"{method.upper()} {url} failed: {e}") from e

        return TransportResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.content,
            request_timestamp=request_timestamp
        )

    def _get_session(self) -> requests.Session:
        # Concurrent first calls must share one session
        with self._lock:
            if self.session is None:
                self.session = requests.Session()
            return self.session

    def apply_rate_limit(self) -> None:
        """
        Apply rate limiting delay to respect the server's capacity

        Each caller reserves the next free start slot under the lock and
        then sleeps until it, so concurrent senders are spaced out as well.
        """
        if not self.requests_per_second:
            return

        min_delay = 1.0 / self.requests_per_second
        with self._lock:
            now = time.time()
            if self.last_request_time is None:
                # First request, no delay needed
                self.last_request_time = now
                return

            slot = max(now, self.last_request_time + min_delay)
            self.last_request_time = slot

        if slot > now:
            time.sleep(slot - now)

    def close(self) -> None:
        """
        Close HTTP session and release resources
        """
        if self.session:
            self.session.close()
            self.session = None


def _parse_retry_after(headers: Mapping[str, str]) -> Optional[float]:
    for name, value in headers.items():
        if name.lower() == 'retry-after':
            try:
                return max(0.0, float(value))
            except (TypeError, ValueError):
                # HTTP-date form is not honoured
                return None
    return None


def _parse_error_body(data: Any) -> tuple:
    """Extract the server's error message and field-level errors"""
    if not isinstance(data, dict):
        return "", {}

    message = str(data.get('ErrorMessage') or data.get('message') or "")
    errors: Dict[str, list] = {}

    general = data.get('Errors') or []
    if isinstance(general, str):
        general = [general]
    if general:
        errors[''] = [str(item) for item in general]

    details = data.get('Details') or {}
    if isinstance(details, dict):
        for field_name, messages in details.items():
            if messages is None:
                messages = []
            elif not isinstance(messages, (list, tuple)):
                messages = [messages]
            errors[str(field_name)] = [str(item) for item in messages]

    return message, errors


class RequestExecutor:
    """Issues single HTTP operations and classifies responses into outcomes"""

    # HTTP status codes mapped to failure kinds
    NOT_FOUND_STATUS_CODES = {404}
    CONFLICT_STATUS_CODES = {409, 412}
    VALIDATION_STATUS_CODES = {400, 422}
    TRANSIENT_STATUS_CODES = {408, 429}

    def __init__(self, transport: Transport, base_url: str,
                 auth: Optional[AuthProvider] = None):
        self.transport = transport
        self.base_url = base_url.rstrip('/')
        self.auth = auth or NoAuth()
        self.logger = logging.getLogger(__name__)

    def build_url(self, uri: str) -> str:
        """Turn a server link into an absolute URL"""
        if uri.startswith(('http://', 'https://')):
            return uri
        if uri.startswith('~/'):
            uri = uri[1:]
        if not uri.startswith('/'):
            uri = '/' + uri
        return self.base_url + uri

    def build_request(self, method: str, uri: str, body: Any = None,
                      resource_type: Optional[ResourceType] = None,
                      headers: Optional[Dict[str, str]] = None) -> APIRequest:
        combined_headers = {
            'Accept': 'application/json',
            **self.auth.headers()
        }

        encoded_body = None
        if body is not None:
            if isinstance(body, Resource):
                body = resource_type.to_wire(body) if resource_type else body.to_wire()
            encoded_body = json.dumps(body)
            combined_headers['Content-Type'] = 'application/json'

        combined_headers.update(headers or {})
        return APIRequest(
            url=self.build_url(uri),
            method=method.upper(),
            headers=combined_headers,
            body=encoded_body
        )

    def execute(self, method: str, uri: str, body: Any = None,
                resource_type: Optional[ResourceType] = None,
                headers: Optional[Dict[str, str]] = None) -> Outcome:
        """
        Perform one network call and classify the result

        Args:
            method: HTTP verb
            uri: Resolved link (relative, ~/-rooted or absolute)
            body: Resource or JSON-serialisable body for POST/PUT
            resource_type: Type to deserialise a successful body into;
                None returns the decoded JSON as-is
            headers: Extra headers overriding the defaults

        Returns:
            Outcome classified from the HTTP status or network failure
        """
        request = self.build_request(method, uri, body, resource_type, headers)
        self.logger.debug(f"{request.method} {request.url}")

        try:
            response = self.transport.send(request.method, request.url, request.headers, request.body)
        except TransportError as e:
            return Outcome.transient_failure(str(e), uri=uri)

        return self.classify(response, uri, resource_type)

    def classify(self, response: TransportResponse, uri: str,
                 resource_type: Optional[ResourceType] = None) -> Outcome:
        status = response.status_code

        try:
            data = self._decode(response.body)
        except ValueError as e:
            if 200 <= status < 300:
                return Outcome.fatal(f"Unparsable response body: {e}", status_code=status, uri=uri)
            # Error pages from proxies are often HTML
            data = None

        if 200 <= status < 300:
            if resource_type is None or data is None:
                return Outcome.success(data, status_code=status, uri=uri)
            try:
                return Outcome.success(resource_type.from_wire(data), status_code=status, uri=uri)
            except ValueError as e:
                return Outcome.fatal(str(e), status_code=status, uri=uri)

        message, errors = _parse_error_body(data)
        common = {'status_code': status, 'uri': uri, 'errors': errors}

        if status in self.NOT_FOUND_STATUS_CODES:
            return Outcome.not_found(message or f"Not found: {uri}", **common)

        if status in self.CONFLICT_STATUS_CODES:
            return Outcome.conflict(message or f"Conflict on {uri}", **common)

        if status in self.VALIDATION_STATUS_CODES:
            return Outcome.validation_failure(message or f"Request rejected by server: {uri}", **common)

        if status in self.TRANSIENT_STATUS_CODES or 500 <= status < 600:
            return Outcome.transient_failure(
                message or f"HTTP {status} from {uri}",
                retry_after=_parse_retry_after(response.headers),
                **common
            )

        return Outcome.fatal(message or f"Unexpected HTTP {status} from {uri}", **common)

    @staticmethod
    def _decode(body: Optional[bytes]) -> Any:
        if not body:
            return None
        if isinstance(body, bytes):
            body = body.decode('utf-8')
        if not body.strip():
            return None
        return json.loads(body)
