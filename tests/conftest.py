"""
Pytest configuration and shared fixtures for all tests.

This module provides shared fixtures and configuration for the test suite,
including:
- A temporary SQLite BlogStore per test
- A stub credential resolver that never touches the network
- Scriptable in-memory publishers for orchestrator tests
- Factories for stored blogs, failed results and mocked HTTP responses
"""
from typing import Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from blog.models import Blog, BlogStatus
from blog.storage import BlogStore
from social.base_client import ErrorKind, OperationResult, PostContent, SocialMediaPublisher
from social.credentials import CredentialResult
from social.formatter import ContentFormatter
from syndicator.orchestrator import PublishOrchestrator


SITE_URL = "https://example.com"


class StubResolver:
    """CredentialResolver stand-in returning fixed results per platform."""

    def __init__(self, results: Optional[Dict[str, CredentialResult]] = None):
        self.results = results or {}
        self.config: Dict = {}
        self.resolved: List[str] = []
        self.invalidated: List[str] = []

    def resolve_token(self, platform: str) -> CredentialResult:
        self.resolved.append(platform)
        return self.results.get(
            platform,
            CredentialResult(success=True, token=f"{platform}-token", target_id=f"{platform}-target"),
        )

    def invalidate(self, platform: str) -> None:
        self.invalidated.append(platform)


class ScriptedPublisher(SocialMediaPublisher):
    """Publisher whose results are queued by the test.

    Each call to ``publish``/``delete`` pops the next queued result, or
    succeeds with an id derived from the platform name when none is queued.
    """

    def __init__(self, platform: str, resolver: StubResolver, max_post_length: Optional[int] = None):
        self.PLATFORM = platform
        super().__init__(resolver, max_post_length=max_post_length)
        self.publish_results: List[OperationResult] = []
        self.delete_results: List[OperationResult] = []
        self.published: List[PostContent] = []
        self.deleted: List[str] = []

    def publish(self, content: PostContent) -> OperationResult:
        self.published.append(content)
        if self.publish_results:
            return self.publish_results.pop(0)
        return OperationResult.ok(remote_id=f"{self.PLATFORM}-post-{len(self.published)}")

    def delete(self, post_id: str) -> OperationResult:
        self.deleted.append(post_id)
        if self.delete_results:
            return self.delete_results.pop(0)
        return OperationResult.ok(data={"success": True})


def _failure(message: str = "HTTP 500: boom", kind: str = ErrorKind.REMOTE) -> OperationResult:
    return OperationResult.fail(message, kind, response={"error": {"message": message}}, status_code=500)


def _mock_response(status_code: int = 200, body=None, headers=None):
    """Build a MagicMock shaped like requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.json.return_value = body if body is not None else {}
    response.content = b"{}" if body is not None else b""
    response.text = str(body)
    response.headers = headers or {}
    return response


@pytest.fixture
def store(tmp_path):
    """Fresh BlogStore backed by a temporary database file."""
    return BlogStore(str(tmp_path / "blogs.db"))


@pytest.fixture
def resolver():
    return StubResolver()


@pytest.fixture
def publishers(resolver):
    """Facebook and LinkedIn scripted publishers sharing one resolver."""
    return {
        "facebook": ScriptedPublisher("facebook", resolver, max_post_length=63000),
        "linkedin": ScriptedPublisher("linkedin", resolver, max_post_length=3000),
    }


@pytest.fixture
def notifier():
    mock = MagicMock()
    mock.enabled = False
    return mock


@pytest.fixture
def orchestrator(store, publishers, notifier):
    return PublishOrchestrator(
        store=store,
        publishers=publishers,
        formatter=ContentFormatter(site_url=SITE_URL),
        notifier=notifier,
        publish_timeout=5,
        site_url=SITE_URL,
    )


@pytest.fixture
def make_blog(store):
    """Factory creating a stored blog with complete content."""

    def _make(status: str = BlogStatus.ACTIVE, platforms=None, **fields) -> Blog:
        blog = Blog(
            title=fields.pop("title", "Launch Day"),
            short_description=fields.pop("short_description", "We shipped it"),
            long_description=fields.pop("long_description", "<p>Full story here.</p>"),
            status=status,
            platforms=list(platforms if platforms is not None else ["facebook"]),
            **fields,
        )
        return store.create(blog)

    return _make


@pytest.fixture
def stub_resolver():
    """StubResolver class, for tests that need their own credential results."""
    return StubResolver


@pytest.fixture
def scripted_publisher():
    return ScriptedPublisher


@pytest.fixture
def failure():
    """Factory for failed OperationResults."""
    return _failure


@pytest.fixture
def mock_response():
    """Factory for MagicMocks shaped like requests.Response."""
    return _mock_response
