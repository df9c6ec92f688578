"""
Instagram Business Publisher.

Instagram content publishing is a two-step protocol on the Graph API:

    1. POST /{ig-user}/media          create a media container (image_url, caption)
    2. wait                           the container needs time to process
    3. POST /{ig-user}/media_publish  publish the container

Only image posts are supported; a blog without an image fails with a
validation error before any remote call. Reading media (``get_post``,
``list_posts``) is supported, every other operation reports ``unsupported``.

Instagram Configuration:
    Configure via config.yml:
    - instagram.enabled: Set to true to enable Instagram publishing
    - instagram.account_id: Instagram Business account id (looked up via the page otherwise)
    - instagram.access_token_file: Optional dedicated token, the Facebook page token is used otherwise
    - instagram.container_delay_seconds: Wait between container creation and publish (default 5)
"""
import logging
import time
from typing import Any, Callable, Dict, Optional

from config import DEFAULT_REQUEST_TIMEOUT
from social.base_client import ErrorKind, OperationResult, PostContent, SocialMediaPublisher
from social.credentials import GRAPH_API_BASE

logger = logging.getLogger(__name__)

DEFAULT_CONTAINER_DELAY = 5
MEDIA_FIELDS = "id,caption,media_type,media_url,permalink,timestamp,like_count,comments_count"


class InstagramPublisher(SocialMediaPublisher):
    """Publisher for an Instagram Business account.

    Attributes:
        container_delay: Seconds to wait before publishing a created container
    """

    PLATFORM = "instagram"
    MAX_POST_LENGTH = 2200
    AUTH_ERROR_CODES = (190,)

    def __init__(self, resolver, config_enabled: bool = True, timeout: Optional[float] = None,
                 max_post_length: Optional[int] = None, container_delay: float = DEFAULT_CONTAINER_DELAY,
                 sleep: Callable[[float], None] = time.sleep):
        super().__init__(resolver, config_enabled, timeout, max_post_length)
        self.container_delay = container_delay
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: Dict[str, Any], resolver) -> "InstagramPublisher":
        platform_config = config.get(cls.PLATFORM) or {}
        return cls(
            resolver=resolver,
            config_enabled=platform_config.get("enabled", True),
            timeout=config.get("request_timeout_seconds", DEFAULT_REQUEST_TIMEOUT),
            max_post_length=platform_config.get("max_post_length"),
            container_delay=platform_config.get("container_delay_seconds", DEFAULT_CONTAINER_DELAY),
        )

    def publish(self, content: PostContent) -> OperationResult:
        disabled = self._disabled()
        if disabled:
            return disabled

        if not content.image_url:
            logger.warning("Instagram post skipped: an image is required")
            return OperationResult.fail("Instagram requires an image", ErrorKind.VALIDATION)

        credential = self._credentials()
        if not credential.success:
            return self._credential_failure(credential)

        account_id = credential.target_id
        container = self._call(
            "POST", f"{GRAPH_API_BASE}/{account_id}/media", "create container",
            data={"image_url": content.image_url, "caption": content.message, "access_token": credential.token},
        )
        if not container.success or not container.remote_id:
            return OperationResult.fail(
                container.error or "Instagram container response has no id",
                container.error_kind or ErrorKind.REMOTE,
                response=self._merge_responses(container),
                status_code=container.status_code,
            )

        logger.debug(f"Waiting {self.container_delay}s for Instagram container {container.remote_id}")
        self._sleep(self.container_delay)

        published = self._call(
            "POST", f"{GRAPH_API_BASE}/{account_id}/media_publish", "publish container",
            data={"creation_id": container.remote_id, "access_token": credential.token},
        )
        if published.success and published.remote_id:
            logger.info(f"Published Instagram media {published.remote_id}")
            return OperationResult.ok(
                remote_id=published.remote_id,
                response=self._merge_responses(container, published),
            )

        return OperationResult.fail(
            published.error or "Instagram publish response has no id",
            published.error_kind or ErrorKind.REMOTE,
            response=self._merge_responses(container, published),
            status_code=published.status_code,
        )

    def get_post(self, post_id: str) -> OperationResult:
        disabled = self._disabled()
        if disabled:
            return disabled
        credential = self._credentials()
        if not credential.success:
            return self._credential_failure(credential)
        return self._call(
            "GET", f"{GRAPH_API_BASE}/{post_id}", "get media",
            params={"access_token": credential.token, "fields": MEDIA_FIELDS},
        )

    def list_posts(self, limit: int = 25, cursor: Optional[str] = None) -> OperationResult:
        disabled = self._disabled()
        if disabled:
            return disabled
        credential = self._credentials()
        if not credential.success:
            return self._credential_failure(credential)

        params: Dict[str, Any] = {
            "access_token": credential.token,
            "fields": MEDIA_FIELDS,
            "limit": max(1, min(int(limit), 100)),
        }
        if cursor:
            params["after"] = cursor
        result = self._call("GET", f"{GRAPH_API_BASE}/{credential.target_id}/media", "list media", params=params)
        if not result.success:
            return result

        body = result.data or {}
        paging = body.get("paging") or {}
        next_cursor = (paging.get("cursors") or {}).get("after") if paging.get("next") else None
        return OperationResult.ok(
            data={"posts": body.get("data", []), "next_cursor": next_cursor},
            response=result.response,
            status_code=result.status_code,
        )
