"""
Blog Domain Models.

This module defines the blog aggregate, its status state machine, the
per-platform publish attempt record and the error hierarchy shared by the
publishing pipeline.

Status Machine:
    inactive -> active -> published

    Nothing leaves ``published`` through a direct update. The only way out is
    the reconciler demoting a blog to ``deactivated`` after its remote post
    was deleted.
"""
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


MAX_SHORT_DESCRIPTION_LENGTH = 500
MAX_LONG_DESCRIPTION_LENGTH = 63000


class BlogStatus:
    """Lifecycle status values for a blog."""

    INACTIVE = "inactive"
    ACTIVE = "active"
    PUBLISHED = "published"
    DEACTIVATED = "deactivated"

    ALL = (INACTIVE, ACTIVE, PUBLISHED, DEACTIVATED)


# Allowed direct transitions; deactivation is only reachable through reconciliation
STATUS_TRANSITIONS: Dict[str, List[str]] = {
    BlogStatus.INACTIVE: [BlogStatus.ACTIVE],
    BlogStatus.ACTIVE: [BlogStatus.PUBLISHED],
    BlogStatus.PUBLISHED: [],
    BlogStatus.DEACTIVATED: [],
}


def is_valid_transition(current: str, new: str) -> bool:
    """Return True if a direct update may move a blog from ``current`` to ``new``."""
    if current == new:
        return True
    return new in STATUS_TRANSITIONS.get(current, [])


def allowed_transitions(current: str) -> List[str]:
    return list(STATUS_TRANSITIONS.get(current, []))


def slugify(text: str) -> str:
    """Convert a title into a URL slug.

    Example:
        >>> slugify("Launch Day: We Shipped!")
        'launch-day-we-shipped'
    """
    normalized = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")
    return slug or "blog"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Errors
# =============================================================================

class SyndicatorError(Exception):
    """Base class for errors raised by the publishing pipeline."""

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ContentValidationError(SyndicatorError):
    """Blog content is missing fields required for social publishing.

    Attributes:
        errors: Mapping of field name to list of messages
    """

    kind = "validation_error"

    def __init__(self, errors: Dict[str, List[str]], message: str = "Content validation failed"):
        super().__init__(message)
        self.errors = errors


class CredentialError(SyndicatorError):
    kind = "credential_error"


class RemoteAPIError(SyndicatorError):
    kind = "remote_error"


class PublishFailedError(SyndicatorError):
    """Publishing failed on every requested platform.

    Attributes:
        outcome: The PublishOutcome that led to the failure
    """

    kind = "publish_failed"

    def __init__(self, message: str, outcome: "PublishOutcome"):
        super().__init__(message)
        self.outcome = outcome


class UnsupportedOperationError(SyndicatorError):
    """The platform does not offer the requested operation."""

    kind = "unsupported"


class InvalidStatusTransitionError(SyndicatorError):
    kind = "invalid_status_transition"


class RetryNotAllowedError(SyndicatorError):
    kind = "retry_not_allowed"


class ReconciliationError(SyndicatorError):
    """Local persistence failed around a remote action."""

    kind = "reconciliation_error"


class BlogNotFoundError(SyndicatorError):
    kind = "not_found"


# =============================================================================
# Records
# =============================================================================

@dataclass
class Blog:
    """A blog article and its social-media publishing state.

    Attributes:
        id: Database identifier (None until stored)
        title: Article title
        type: Free-form type tag (e.g. "news", "tutorial")
        short_description: Summary, at most 500 characters
        long_description: Rich-text body (HTML), at most 63000 characters
        image_url: Optional feature image URL
        video_url: Optional video URL
        document: Optional uploaded document path or external URL
        status: One of BlogStatus.ALL
        slug: Unique URL slug
        platforms: Platforms this blog should be published to
        published_at: Time of the first successful publish
        social_media_published: True iff at least one platform post exists
        platform_post_ids: Platform name to remote post id
        post_ids: Deduplicated list of every remote post id
        scheduled_at: Optional due time for the scheduled sweep
    """

    title: str
    type: str = ""
    short_description: str = ""
    long_description: str = ""
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    document: Optional[str] = None
    status: str = BlogStatus.INACTIVE
    slug: str = ""
    platforms: List[str] = field(default_factory=list)
    published_at: Optional[datetime] = None
    social_media_published: bool = False
    platform_post_ids: Dict[str, str] = field(default_factory=dict)
    post_ids: List[str] = field(default_factory=list)
    scheduled_at: Optional[datetime] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON responses."""
        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "title": self.title,
            "type": self.type,
            "short_description": self.short_description,
            "long_description": self.long_description,
            "image_url": self.image_url,
            "video_url": self.video_url,
            "document": self.document,
            "status": self.status,
            "slug": self.slug,
            "platforms": list(self.platforms),
            "published_at": _iso(self.published_at),
            "social_media_published": self.social_media_published,
            "platform_post_ids": dict(self.platform_post_ids),
            "post_ids": list(self.post_ids),
            "scheduled_at": _iso(self.scheduled_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class PublishAttempt:
    """Result of publishing one blog to one platform.

    The token is kept for diagnostics inside the process only; it is never
    serialized or logged.
    """

    platform: str
    success: bool
    remote_id: Optional[str] = None
    payload: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    response: Optional[Dict[str, Any]] = None
    token: Optional[str] = field(default=None, repr=False)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform,
            "success": self.success,
            "remote_id": self.remote_id,
            "error": self.error,
            "error_kind": self.error_kind,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class PublishOutcome:
    """Per-platform attempts of one orchestrator invocation."""

    attempts: Dict[str, PublishAttempt] = field(default_factory=dict)

    def add(self, attempt: PublishAttempt) -> None:
        self.attempts[attempt.platform] = attempt

    @property
    def succeeded(self) -> Dict[str, PublishAttempt]:
        return {p: a for p, a in self.attempts.items() if a.success}

    @property
    def failed(self) -> Dict[str, PublishAttempt]:
        return {p: a for p, a in self.attempts.items() if not a.success}

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def any_succeeded(self) -> bool:
        return self.success_count > 0

    @property
    def all_failed(self) -> bool:
        return bool(self.attempts) and self.success_count == 0

    @property
    def is_partial(self) -> bool:
        return 0 < self.success_count < len(self.attempts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.any_succeeded,
            "partial": self.is_partial,
            "platforms": {p: a.to_dict() for p, a in self.attempts.items()},
        }
