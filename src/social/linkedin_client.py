"""
LinkedIn Publisher.

Publishes a text share on the member's profile through the v2 UGC Posts API.
The author URN is resolved by CredentialResolver (configured user id or
``GET /v2/me``). Only ``publish`` is available; every other operation
reports ``unsupported``.

LinkedIn Configuration:
    Configure via config.yml:
    - linkedin.enabled: Set to true to enable LinkedIn publishing
    - linkedin.access_token_file: Path to Docker secret for the bearer token
    - linkedin.user_id: Optional member id, looked up via /v2/me otherwise
"""
import logging
from typing import Any, Dict, Optional

from social.base_client import ErrorKind, OperationResult, PostContent, SocialMediaPublisher
from social.credentials import LINKEDIN_API_BASE
from social.formatter import is_public_url

logger = logging.getLogger(__name__)


class LinkedInPublisher(SocialMediaPublisher):
    """Publisher for a LinkedIn member profile."""

    PLATFORM = "linkedin"
    MAX_POST_LENGTH = 3000

    def _is_auth_error(self, status_code: int, body: Dict[str, Any]) -> bool:
        return status_code == 401

    def _remote_id(self, response, body: Dict[str, Any]) -> Optional[str]:
        # The created post URN is returned in a header when the body has no id
        if body.get("id"):
            return str(body["id"])
        return response.headers.get("X-RestLi-Id")

    def _build_share(self, author: str, content: PostContent) -> Dict[str, Any]:
        share_content: Dict[str, Any] = {
            "shareCommentary": {"text": content.message},
            "shareMediaCategory": "NONE",
        }
        if content.link and is_public_url(content.link):
            share_content["shareMediaCategory"] = "ARTICLE"
            share_content["media"] = [{"status": "READY", "originalUrl": content.link}]

        return {
            "author": author,
            "lifecycleState": "PUBLISHED",
            "specificContent": {"com.linkedin.ugc.ShareContent": share_content},
            "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": "PUBLIC"},
        }

    def publish(self, content: PostContent) -> OperationResult:
        disabled = self._disabled()
        if disabled:
            return disabled

        credential = self._credentials()
        if not credential.success:
            return self._credential_failure(credential)

        result = self._call(
            "POST", f"{LINKEDIN_API_BASE}/ugcPosts", "publish",
            json=self._build_share(credential.target_id, content),
            headers={
                "Authorization": f"Bearer {credential.token}",
                "X-Restli-Protocol-Version": "2.0.0",
            },
        )
        if not result.success:
            return result
        if not result.remote_id:
            return OperationResult.fail("LinkedIn response has no post id", ErrorKind.REMOTE,
                                        response=result.response, status_code=result.status_code)

        logger.info(f"Published LinkedIn post {result.remote_id}")
        return result
