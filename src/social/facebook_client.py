"""
Facebook Page Publisher.

This module publishes blog posts to a Facebook Page through the Graph API
and exposes the page-post management operations (edit, delete, comment,
boost, share, list, get).

Facebook Configuration:
    Configure via config.yml:
    - facebook.enabled: Set to true to enable Facebook publishing
    - facebook.page_id: Page to publish to (optional, first page otherwise)
    - facebook.access_token_file: Path to Docker secret for the user or page token

Publishing Sequence:
    With an image:
        1. POST /{page}/photos (published=false)   upload unpublished photo
        2. POST /{page}/feed (attached_media)      feed entry referencing it
       On any failure in 1-2:
        3. POST /{page}/photos (caption)           photo post with caption
       On failure of 3, or without an image:
        4. POST /{page}/feed (message, link)       text/link post

    Each step runs only after the previous one returned, and a failing step
    never stops the chain from moving on to the next fallback.

Authentication:
    Every call uses the page token supplied by CredentialResolver. Graph API
    error code 190 (invalid or expired token) evicts the cached token.

API Reference:
    Graph API: https://developers.facebook.com/docs/graph-api/
"""
import json
import logging
from typing import Any, Dict, List, Optional

from config import get_platform_setting
from social.base_client import ErrorKind, OperationResult, PostContent, SocialMediaPublisher
from social.credentials import GRAPH_API_BASE
from social.formatter import is_public_url

logger = logging.getLogger(__name__)

POST_FIELDS = (
    "id,message,created_time,updated_time,permalink_url,"
    "likes.summary(true),comments.summary(true),shares"
)


class FacebookPublisher(SocialMediaPublisher):
    """Publisher for a Facebook Page.

    Example:
        >>> publisher = FacebookPublisher(resolver=resolver)
        >>> result = publisher.publish(PostContent(message="Hello Facebook!"))
        >>> if result.success:
        ...     print(result.remote_id)
    """

    PLATFORM = "facebook"
    MAX_POST_LENGTH = 63000
    AUTH_ERROR_CODES = (190,)

    def publish(self, content: PostContent) -> OperationResult:
        """Publish a page post, falling back from photo to text as needed.

        Args:
            content: Formatted message plus optional image and link

        Returns:
            OperationResult whose remote_id is the page post id
        """
        disabled = self._disabled()
        if disabled:
            return disabled

        credential = self._credentials()
        if not credential.success:
            return self._credential_failure(credential)

        token = credential.token
        page_id = credential.target_id
        steps: List[OperationResult] = []

        if content.image_url:
            result = self._publish_with_attached_photo(page_id, token, content, steps)
            if result:
                return result

            photo = self._call(
                "POST", f"{GRAPH_API_BASE}/{page_id}/photos", "photo post",
                data={"url": content.image_url, "caption": content.message, "access_token": token},
            )
            steps.append(photo)
            if photo.success:
                post_id = (photo.data or {}).get("post_id") or photo.remote_id
                logger.info(f"Published photo post {post_id} to Facebook page {page_id}")
                return OperationResult.ok(remote_id=post_id, response=self._merge_responses(*steps))
            logger.warning(f"Facebook photo post failed, falling back to text post: {photo.error}")

        data = {"message": content.message, "access_token": token}
        if content.link and is_public_url(content.link):
            data["link"] = content.link

        feed = self._call("POST", f"{GRAPH_API_BASE}/{page_id}/feed", "feed post", data=data)
        steps.append(feed)
        if feed.success and feed.remote_id:
            logger.info(f"Published feed post {feed.remote_id} to Facebook page {page_id}")
            return OperationResult.ok(remote_id=feed.remote_id, response=self._merge_responses(*steps))

        error = feed.error or "Facebook feed post returned no id"
        return OperationResult.fail(
            error,
            feed.error_kind or ErrorKind.REMOTE,
            response=self._merge_responses(*steps),
            status_code=feed.status_code,
        )

    def _publish_with_attached_photo(self, page_id: str, token: str, content: PostContent,
                                     steps: List[OperationResult]) -> Optional[OperationResult]:
        """Upload an unpublished photo, then create a feed entry referencing it."""
        upload = self._call(
            "POST", f"{GRAPH_API_BASE}/{page_id}/photos", "unpublished photo upload",
            data={"url": content.image_url, "published": "false", "access_token": token},
        )
        steps.append(upload)
        if not upload.success or not upload.remote_id:
            logger.warning(f"Facebook photo upload failed, trying direct photo post: {upload.error}")
            return None

        feed = self._call(
            "POST", f"{GRAPH_API_BASE}/{page_id}/feed", "feed post with photo",
            data={
                "message": content.message,
                "attached_media[0]": json.dumps({"media_fbid": upload.remote_id}),
                "access_token": token,
            },
        )
        steps.append(feed)
        if feed.success and feed.remote_id:
            logger.info(f"Published feed post {feed.remote_id} with photo {upload.remote_id}")
            return OperationResult.ok(remote_id=feed.remote_id, response=self._merge_responses(*steps))

        logger.warning(f"Facebook feed post with photo failed, trying direct photo post: {feed.error}")
        return None

    def _authenticated(self):
        disabled = self._disabled()
        if disabled:
            return None, disabled
        credential = self._credentials()
        if not credential.success:
            return None, self._credential_failure(credential)
        return credential, None

    @staticmethod
    def _confirmed(result: OperationResult) -> OperationResult:
        """Graph mutations answer ``{"success": true}``; anything else is a failure."""
        if result.success and (result.data or {}).get("success", True) is False:
            return OperationResult.fail("Facebook reported success=false", ErrorKind.REMOTE,
                                        response=result.response, status_code=result.status_code)
        return result

    def update_message(self, post_id: str, text: str) -> OperationResult:
        credential, failure = self._authenticated()
        if failure:
            return failure
        result = self._call(
            "POST", f"{GRAPH_API_BASE}/{post_id}", "update message",
            data={"message": text, "access_token": credential.token},
        )
        return self._confirmed(result)

    def delete(self, post_id: str) -> OperationResult:
        credential, failure = self._authenticated()
        if failure:
            return failure
        result = self._call(
            "DELETE", f"{GRAPH_API_BASE}/{post_id}", "delete",
            params={"access_token": credential.token},
        )
        return self._confirmed(result)

    def comment(self, post_id: str, text: str) -> OperationResult:
        credential, failure = self._authenticated()
        if failure:
            return failure
        return self._call(
            "POST", f"{GRAPH_API_BASE}/{post_id}/comments", "comment",
            data={"message": text, "access_token": credential.token},
        )

    def boost(self, post_id: str) -> OperationResult:
        """Pin the post to the top of the page."""
        credential, failure = self._authenticated()
        if failure:
            return failure
        result = self._call(
            "POST", f"{GRAPH_API_BASE}/{post_id}", "boost",
            data={"is_pinned": "true", "access_token": credential.token},
        )
        return self._confirmed(result)

    def share(self, post_id: str, text: Optional[str] = None) -> OperationResult:
        """Re-share an existing post on the page feed."""
        credential, failure = self._authenticated()
        if failure:
            return failure
        data = {"link": f"https://www.facebook.com/{post_id}", "access_token": credential.token}
        if text:
            data["message"] = text
        return self._call("POST", f"{GRAPH_API_BASE}/{credential.target_id}/feed", "share", data=data)

    def list_posts(self, limit: int = 25, cursor: Optional[str] = None) -> OperationResult:
        """List page posts, cursor paginated.

        Returns:
            OperationResult with data ``{"posts": [...], "next_cursor": str|None}``
        """
        credential, failure = self._authenticated()
        if failure:
            return failure
        params: Dict[str, Any] = {
            "access_token": credential.token,
            "fields": POST_FIELDS,
            "limit": max(1, min(int(limit), 100)),
        }
        if cursor:
            params["after"] = cursor
        result = self._call("GET", f"{GRAPH_API_BASE}/{credential.target_id}/posts", "list posts", params=params)
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

    def get_post(self, post_id: str) -> OperationResult:
        credential, failure = self._authenticated()
        if failure:
            return failure
        return self._call(
            "GET", f"{GRAPH_API_BASE}/{post_id}", "get post",
            params={"access_token": credential.token, "fields": POST_FIELDS},
        )

    def verify_credentials(self) -> OperationResult:
        credential, failure = self._authenticated()
        if failure:
            return failure
        return self._call(
            "GET", f"{GRAPH_API_BASE}/me", "verify credentials",
            params={"access_token": credential.token, "fields": "id,name"},
        )

    def list_pages(self) -> OperationResult:
        """List the pages the configured user token can manage, tokens removed."""
        user_token = get_platform_setting(self.resolver.config, "facebook", "access_token")
        if not user_token:
            return OperationResult.fail("Facebook access token not configured", ErrorKind.CREDENTIAL)
        result = self._call(
            "GET", f"{GRAPH_API_BASE}/me/accounts", "list pages",
            params={"access_token": user_token, "fields": "id,name,category,tasks"},
        )
        if not result.success:
            return result
        pages = [
            {key: value for key, value in page.items() if key != "access_token"}
            for page in (result.data or {}).get("data", [])
        ]
        return OperationResult.ok(data=pages, status_code=result.status_code)
