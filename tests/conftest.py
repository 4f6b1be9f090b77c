import json
import pytest
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock

import httpx

from jira_bridge.config import Settings
from jira_bridge.field_resolver import FieldResolver
from jira_bridge.jira_client import JiraClient
from jira_bridge.transport import RetryPolicy, Transport

HOST = "https://example.atlassian.net"


def json_response(status: int, body: Any, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
    """A response with a JSON body and matching content-type."""
    return httpx.Response(status, json=body, headers=headers)


class RecordingHandler:
    """
    MockTransport handler that replays queued responses and records requests.

    Each queued item is an httpx.Response, an exception instance to raise,
    or a callable taking the request.
    """

    def __init__(self, *responses):
        self.responses: List[Any] = list(responses)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError(f"Unexpected request: {request.method} {request.url}")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(request)
        return item

    def json_body(self, index: int = -1) -> Any:
        return json.loads(self.requests[index].content)


@pytest.fixture
def mock_sleep():
    """Replaces retry sleeps so tests never wait."""
    return AsyncMock()


@pytest.fixture
def make_transport(mock_sleep) -> Callable[..., Transport]:
    def _make(handler: Callable, policy: Optional[RetryPolicy] = None) -> Transport:
        return Transport(
            HOST,
            "jane.doe@example.com",
            "secret-token",
            policy=policy or RetryPolicy(max_attempts=3, initial_delay=1.0, backoff_multiplier=2.0, max_delay=10.0),
            http_transport=httpx.MockTransport(handler),
            sleep=mock_sleep,
        )
    return _make


@pytest.fixture
def make_client(make_transport) -> Callable[..., JiraClient]:
    def _make(*responses) -> JiraClient:
        handler = RecordingHandler(*responses)
        client = JiraClient(make_transport(handler))
        client.handler = handler
        return client
    return _make


@pytest.fixture
def mock_client():
    """A JiraClient double whose coroutine methods are AsyncMocks."""
    client = AsyncMock(spec=JiraClient)
    client.host = HOST
    return client


@pytest.fixture
def test_settings():
    """Settings with test values, ignoring any .env file or process environment."""
    return Settings(
        _env_file=None,
        JIRA_HOST=HOST,
        JIRA_EMAIL="jane.doe@example.com",
        JIRA_API_TOKEN="secret-token",
        JIRA_DEFAULT_PROJECT="PROJ",
    )


@pytest.fixture
def create_meta():
    """Create metadata for project PROJ with a Story and localized Task and subtask types."""
    return {
        "projects": [{
            "key": "PROJ",
            "issuetypes": [
                {
                    "name": "Story",
                    "fields": {
                        "summary": {"name": "Summary", "required": True, "schema": {"type": "string"}},
                        "customfield_10016": {"name": "Story Points", "required": False,
                                              "schema": {"type": "number"}},
                        "customfield_10014": {"name": "Epic Link", "required": False,
                                              "schema": {"type": "any"}},
                        "customfield_10020": {"name": "Acceptance Criteria", "required": False,
                                              "schema": {"type": "string"}},
                    },
                },
                {
                    "name": "Úkol",
                    "fields": {
                        "summary": {"name": "Summary", "required": True, "schema": {"type": "string"}},
                        "customfield_10030": {"name": "Tým", "required": False,
                                              "schema": {"type": "string"}},
                        "customfield_10015": {"name": "Datum zahájení", "required": False,
                                              "schema": {"type": "date"}},
                    },
                },
                {
                    "name": "Dílčí úkol",
                    "subtask": True,
                    "fields": {
                        "summary": {"name": "Summary", "required": True, "schema": {"type": "string"}},
                    },
                },
            ],
        }]
    }
