"""
Base Social Media Publisher.

This module provides the abstract publisher every platform implementation
inherits from. It defines the shared capability set:

    publish, update_message, delete, comment, boost, share,
    list_posts, get_post, verify_credentials

Platforms implement the subset they support. Anything left unimplemented
returns an ``unsupported`` OperationResult instead of silently succeeding,
so callers can tell "attempted and failed" from "not available".

Every remote call goes through ``_call()`` which applies a finite timeout,
converts network and HTTP failures into OperationResults and evicts the
cached credential when the platform reports an authentication error.
Exceptions never escape a publisher.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, TYPE_CHECKING

import requests

from config import DEFAULT_REQUEST_TIMEOUT

if TYPE_CHECKING:
    from social.credentials import CredentialResolver, CredentialResult


logger = logging.getLogger(__name__)


class ErrorKind:
    """Failure categories carried by OperationResult."""

    CREDENTIAL = "credential"
    REMOTE = "remote"
    UNSUPPORTED = "unsupported"
    TIMEOUT = "timeout"
    VALIDATION = "validation"


@dataclass
class PostContent:
    """Payload handed to ``publish()``.

    Attributes:
        message: Formatted post body, already within the platform limit
        image_url: Optional public image URL
        link: Optional canonical article URL
    """
    message: str
    image_url: Optional[str] = None
    link: Optional[str] = None


@dataclass
class OperationResult:
    """Typed result of a publisher operation.

    Attributes:
        success: Whether the platform accepted the operation
        remote_id: Identifier returned by the platform (post, comment, container)
        data: Parsed response payload for read operations
        error: Failure reason when success is False
        error_kind: One of the ErrorKind values
        response: Raw JSON response body, kept for the audit log
        status_code: HTTP status of the last remote call (0 when none was made)
    """
    success: bool
    remote_id: Optional[str] = None
    data: Optional[Any] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    response: Optional[Dict[str, Any]] = None
    status_code: int = 0

    @classmethod
    def ok(cls, remote_id: Optional[str] = None, data: Any = None,
           response: Optional[Dict[str, Any]] = None, status_code: int = 200) -> "OperationResult":
        return cls(success=True, remote_id=remote_id, data=data, response=response, status_code=status_code)

    @classmethod
    def fail(cls, error: str, error_kind: str = ErrorKind.REMOTE,
             response: Optional[Dict[str, Any]] = None, status_code: int = 0) -> "OperationResult":
        return cls(success=False, error=error, error_kind=error_kind, response=response, status_code=status_code)

    @property
    def unsupported(self) -> bool:
        return self.error_kind == ErrorKind.UNSUPPORTED


class SocialMediaPublisher(ABC):
    """Abstract base class for platform publishers.

    Attributes:
        resolver: CredentialResolver supplying access tokens
        enabled: Whether publishing is enabled for this platform
        timeout: Timeout in seconds for each remote call
        max_post_length: Platform character limit used by the formatter

    Example:
        >>> class MyPublisher(SocialMediaPublisher):
        ...     PLATFORM = "example"
        ...     def publish(self, content):
        ...         return OperationResult.ok(remote_id="1")
    """

    PLATFORM = "generic"

    # Platform-specific character limit (default, override in subclasses)
    MAX_POST_LENGTH = 63000

    # Error codes in the response body that mean the token is no longer valid
    AUTH_ERROR_CODES: tuple = ()

    def __init__(
        self,
        resolver: "CredentialResolver",
        config_enabled: bool = True,
        timeout: Optional[float] = None,
        max_post_length: Optional[int] = None,
    ):
        """Initialize the publisher.

        Args:
            resolver: CredentialResolver used for every authenticated call
            config_enabled: Whether the platform is enabled in config.yml
            timeout: Per-request timeout in seconds
            max_post_length: Optional override of the platform character limit
        """
        self.resolver = resolver
        self.enabled = bool(config_enabled)
        self.timeout = timeout or DEFAULT_REQUEST_TIMEOUT
        self.max_post_length = max_post_length or self.__class__.MAX_POST_LENGTH

        if not self.enabled:
            logger.info(f"{self.__class__.__name__} publishing disabled via config.yml")

    @classmethod
    def from_config(cls, config: Dict[str, Any], resolver: "CredentialResolver") -> "SocialMediaPublisher":
        """Create a publisher from the platform's section of config.yml.

        Configuration Format:
            facebook:
              enabled: true
              access_token_file: "/run/secrets/facebook_access_token"
              page_id: "1234567890"
              max_post_length: 63000
        """
        platform_config = config.get(cls.PLATFORM) or {}
        return cls(
            resolver=resolver,
            config_enabled=platform_config.get("enabled", True),
            timeout=config.get("request_timeout_seconds", DEFAULT_REQUEST_TIMEOUT),
            max_post_length=platform_config.get("max_post_length"),
        )

    # -------------------------------------------------------------------------
    # Capability set
    # -------------------------------------------------------------------------

    @abstractmethod
    def publish(self, content: PostContent) -> OperationResult:
        """Publish a post and return its remote id."""
        pass

    def update_message(self, post_id: str, text: str) -> OperationResult:
        return self._unsupported("update_message")

    def delete(self, post_id: str) -> OperationResult:
        return self._unsupported("delete")

    def comment(self, post_id: str, text: str) -> OperationResult:
        return self._unsupported("comment")

    def boost(self, post_id: str) -> OperationResult:
        return self._unsupported("boost")

    def share(self, post_id: str, text: Optional[str] = None) -> OperationResult:
        return self._unsupported("share")

    def list_posts(self, limit: int = 25, cursor: Optional[str] = None) -> OperationResult:
        return self._unsupported("list_posts")

    def get_post(self, post_id: str) -> OperationResult:
        return self._unsupported("get_post")

    def verify_credentials(self) -> OperationResult:
        """Resolve the credential and report the publishing target."""
        credential = self._credentials()
        if not credential.success:
            return OperationResult.fail(credential.error, ErrorKind.CREDENTIAL)
        return OperationResult.ok(remote_id=credential.target_id, data={"target_id": credential.target_id})

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _unsupported(self, operation: str) -> OperationResult:
        message = f"{operation} is not supported for platform {self.PLATFORM}"
        logger.info(message)
        return OperationResult.fail(message, ErrorKind.UNSUPPORTED)

    def _credentials(self) -> "CredentialResult":
        return self.resolver.resolve_token(self.PLATFORM)

    def _credential_failure(self, credential: "CredentialResult") -> OperationResult:
        return OperationResult.fail(credential.error or "Credential unavailable", ErrorKind.CREDENTIAL)

    def _disabled(self) -> Optional[OperationResult]:
        if self.enabled:
            return None
        logger.warning(f"Cannot call {self.PLATFORM}: publisher not enabled")
        return OperationResult.fail(f"{self.PLATFORM} publishing is disabled", ErrorKind.CREDENTIAL)

    def _is_auth_error(self, status_code: int, body: Dict[str, Any]) -> bool:
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("code") in self.AUTH_ERROR_CODES:
            return True
        return False

    def _remote_id(self, response: requests.Response, body: Dict[str, Any]) -> Optional[str]:
        return str(body["id"]) if body.get("id") is not None else None

    @staticmethod
    def _error_message(response: requests.Response, body: Dict[str, Any]) -> str:
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return f"HTTP {response.status_code}: {error['message']}"
        if isinstance(body, dict) and body.get("message"):
            return f"HTTP {response.status_code}: {body['message']}"
        return f"HTTP {response.status_code}: {response.text[:500]}"

    def _call(self, method: str, url: str, operation: str, **kwargs) -> OperationResult:
        """Perform one remote call and convert the response into an OperationResult.

        Success requires a 2xx status and a body without an ``error`` object.
        Authentication errors evict the cached credential.
        """
        try:
            response = requests.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            logger.error(f"{self.PLATFORM} {operation} timed out after {self.timeout}s: {e}")
            return OperationResult.fail(f"{operation} timed out", ErrorKind.TIMEOUT)
        except requests.RequestException as e:
            logger.error(f"{self.PLATFORM} {operation} request failed: {e}")
            return OperationResult.fail(f"{operation} request failed: {e}", ErrorKind.REMOTE)

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {"raw": response.text}
        if not isinstance(body, dict):
            body = {"data": body}

        if response.ok and "error" not in body:
            return OperationResult.ok(
                remote_id=self._remote_id(response, body),
                data=body,
                response=body,
                status_code=response.status_code,
            )

        message = self._error_message(response, body)
        if self._is_auth_error(response.status_code, body):
            logger.error(f"{self.PLATFORM} {operation} rejected credential: {message}")
            self.resolver.invalidate(self.PLATFORM)
            return OperationResult.fail(message, ErrorKind.CREDENTIAL, response=body,
                                        status_code=response.status_code)

        logger.error(f"{self.PLATFORM} {operation} failed: {message}")
        return OperationResult.fail(message, ErrorKind.REMOTE, response=body, status_code=response.status_code)

    @staticmethod
    def _merge_responses(*results: OperationResult) -> Dict[str, Any]:
        """Combine the raw responses of a multi-step sequence for the audit log."""
        merged: Dict[str, Any] = {}
        for index, result in enumerate(results):
            if result is None:
                continue
            merged[f"step_{index + 1}"] = result.response if result.response is not None else {"error": result.error}
        return merged


def supported_operations(publisher) -> List[str]:
    """List the capability names a publisher instance or class overrides."""
    publisher_class = publisher if isinstance(publisher, type) else type(publisher)
    operations = ["publish", "update_message", "delete", "comment", "boost", "share", "list_posts", "get_post"]
    return [
        name for name in operations
        if getattr(publisher_class, name) is not getattr(SocialMediaPublisher, name)
    ]
