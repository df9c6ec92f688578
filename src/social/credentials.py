"""
Credential Resolver for social media platforms.

Resolves a usable access token per platform and caches it for a fixed
time-to-live in an injected TokenCache.

Facebook Resolution:
    1. Cache hit returns immediately without any remote call.
    2. Fast path: if the configured token already belongs to the configured
       page (``GET /me?fields=id`` returns the page id) it is used directly.
    3. Exchange: ``GET /me/accounts`` lists the pages the user token can
       manage; the configured page is picked, else the first page.

    A missing token fails without calling the Graph API. A failed remote
    call or an empty page list fails and caches nothing. Publishers call
    ``invalidate()`` when the Graph API reports error code 190 so the next
    resolution derives a fresh token.

Concurrent resolutions during a cache miss are not coalesced; each may hit
the remote API once.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import requests

from config import DEFAULT_REQUEST_TIMEOUT, DEFAULT_TOKEN_CACHE_TTL, get_platform_setting

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com/v23.0"
LINKEDIN_API_BASE = "https://api.linkedin.com/v2"

# Placeholder shipped in example configuration files
PLACEHOLDER_TOKENS = {"your_linkedin_access_token", "your_facebook_access_token", "changeme"}


@dataclass
class CredentialResult:
    """Outcome of a token resolution.

    Attributes:
        success: Whether a token is available
        token: Access token to authenticate platform calls
        target_id: Publishing target (page id, Instagram account id, author URN)
        error: Failure reason when success is False
        misconfigured: True when the failure is a local configuration problem
    """
    success: bool
    token: Optional[str] = None
    target_id: Optional[str] = None
    error: Optional[str] = None
    misconfigured: bool = False

    @classmethod
    def failure(cls, error: str, misconfigured: bool = False) -> "CredentialResult":
        return cls(success=False, error=error, misconfigured=misconfigured)


class TokenCache:
    """Process-wide token cache with per-entry expiry.

    Entries are keyed by platform and expire ``ttl`` seconds after being set.
    Access is guarded by a lock so the cache can be shared across threads.
    """

    def __init__(self, default_ttl: int = DEFAULT_TOKEN_CACHE_TTL,
                 clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    def invalidate(self, key: str) -> bool:
        """Evict an entry. Returns True if something was removed."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


class CredentialResolver:
    """Resolve and cache platform access tokens.

    Attributes:
        config: Configuration dictionary from load_config()
        cache: Shared TokenCache
        timeout: Timeout in seconds for each remote call

    Example:
        >>> resolver = CredentialResolver(config, TokenCache())
        >>> result = resolver.resolve_token("facebook")
        >>> if result.success:
        ...     print(result.target_id)
    """

    def __init__(self, config: Dict[str, Any], cache: Optional[TokenCache] = None,
                 timeout: Optional[float] = None):
        self.config = config
        self.cache = cache or TokenCache(config.get("token_cache_ttl_seconds", DEFAULT_TOKEN_CACHE_TTL))
        self.timeout = timeout or config.get("request_timeout_seconds", DEFAULT_REQUEST_TIMEOUT)

    @staticmethod
    def cache_key(platform: str) -> str:
        return f"{platform}_page_token" if platform == "facebook" else f"{platform}_token"

    def resolve_token(self, platform: str) -> CredentialResult:
        """Return a token for ``platform``, from cache when possible."""
        cached = self.cache.get(self.cache_key(platform))
        if cached is not None:
            logger.debug(f"Using cached {platform} credential")
            return CredentialResult(success=True, token=cached["token"], target_id=cached.get("target_id"))

        if platform == "facebook":
            result = self._resolve_facebook()
        elif platform == "instagram":
            result = self._resolve_instagram()
        elif platform == "linkedin":
            result = self._resolve_linkedin()
        else:
            logger.warning(f"No credential resolution available for platform: {platform}")
            return CredentialResult.failure(f"Unsupported platform: {platform}", misconfigured=True)

        if result.success:
            self.cache.set(self.cache_key(platform), {"token": result.token, "target_id": result.target_id})
            logger.info(f"Resolved {platform} credential for target {result.target_id}")
        elif result.misconfigured:
            logger.error(f"{platform} credential misconfigured: {result.error}")
        else:
            logger.error(f"{platform} credential resolution failed: {result.error}")
        return result

    def invalidate(self, platform: str) -> None:
        """Evict the cached credential so the next call re-resolves it."""
        evicted = self.cache.invalidate(self.cache_key(platform))
        if platform == "facebook":
            # Instagram publishing borrows the Facebook page token
            evicted = self.cache.invalidate(self.cache_key("instagram")) or evicted
        if evicted:
            logger.warning(f"Invalidated cached {platform} credential")

    # -------------------------------------------------------------------------
    # Facebook
    # -------------------------------------------------------------------------

    def _resolve_facebook(self) -> CredentialResult:
        user_token = get_platform_setting(self.config, "facebook", "access_token")
        if not user_token or user_token in PLACEHOLDER_TOKENS:
            return CredentialResult.failure("Facebook access token not configured", misconfigured=True)

        page_id = get_platform_setting(self.config, "facebook", "page_id")

        if page_id and self._is_page_token(user_token, page_id):
            logger.debug("Configured Facebook token is already a page token")
            return CredentialResult(success=True, token=user_token, target_id=page_id)

        try:
            response = requests.get(
                f"{GRAPH_API_BASE}/me/accounts",
                params={"access_token": user_token, "fields": "id,name,access_token"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            return CredentialResult.failure(f"Failed to fetch Facebook pages: {e}")

        if not response.ok:
            return CredentialResult.failure(f"Failed to fetch Facebook pages: {response.text}")

        try:
            pages = response.json().get("data") or []
        except ValueError:
            return CredentialResult.failure("Facebook pages response was not valid JSON")

        if not pages:
            return CredentialResult.failure("No Facebook pages found for this user")

        selected = None
        if page_id:
            selected = next((page for page in pages if str(page.get("id")) == str(page_id)), None)
            if selected is None:
                logger.warning(f"Configured Facebook page {page_id} not found, falling back to first page")
        if selected is None:
            selected = pages[0]

        token = selected.get("access_token")
        if not token:
            return CredentialResult.failure(f"Facebook page {selected.get('id')} has no access token")

        return CredentialResult(success=True, token=token, target_id=str(selected.get("id")))

    def _is_page_token(self, token: str, page_id: str) -> bool:
        """Check whether ``token`` identifies as the configured page."""
        try:
            response = requests.get(
                f"{GRAPH_API_BASE}/me",
                params={"access_token": token, "fields": "id"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.debug(f"Facebook identity lookup failed: {e}")
            return False
        if not response.ok:
            return False
        try:
            return str(response.json().get("id")) == str(page_id)
        except ValueError:
            return False

    # -------------------------------------------------------------------------
    # Instagram
    # -------------------------------------------------------------------------

    def _resolve_instagram(self) -> CredentialResult:
        token = get_platform_setting(self.config, "instagram", "access_token")
        account_id = get_platform_setting(self.config, "instagram", "account_id")
        page_id = get_platform_setting(self.config, "facebook", "page_id")

        if not token:
            page = self.resolve_token("facebook")
            if not page.success:
                return CredentialResult.failure(
                    f"Instagram requires a Facebook page token: {page.error}",
                    misconfigured=page.misconfigured,
                )
            token = page.token
            page_id = page_id or page.target_id

        if account_id:
            return CredentialResult(success=True, token=token, target_id=account_id)

        if not page_id:
            return CredentialResult.failure("Instagram publishing requires a Facebook Page ID", misconfigured=True)

        try:
            response = requests.get(
                f"{GRAPH_API_BASE}/{page_id}",
                params={"access_token": token, "fields": "instagram_business_account"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            return CredentialResult.failure(f"Failed to fetch Instagram business account: {e}")

        if not response.ok:
            return CredentialResult.failure(f"Failed to fetch Instagram business account: {response.text}")

        try:
            account = (response.json() or {}).get("instagram_business_account") or {}
        except ValueError:
            return CredentialResult.failure("Instagram business account response was not valid JSON")
        if not account.get("id"):
            return CredentialResult.failure("No Instagram Business account connected to this Facebook Page")

        return CredentialResult(success=True, token=token, target_id=str(account["id"]))

    # -------------------------------------------------------------------------
    # LinkedIn
    # -------------------------------------------------------------------------

    def _resolve_linkedin(self) -> CredentialResult:
        token = get_platform_setting(self.config, "linkedin", "access_token")
        if not token or token in PLACEHOLDER_TOKENS:
            return CredentialResult.failure("LinkedIn access token not configured", misconfigured=True)

        user_id = get_platform_setting(self.config, "linkedin", "user_id")
        if user_id:
            return CredentialResult(success=True, token=token, target_id=f"urn:li:person:{user_id}")

        try:
            response = requests.get(
                f"{LINKEDIN_API_BASE}/me",
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            return CredentialResult.failure(f"LinkedIn profile fetch failed: {e}")

        if not response.ok:
            return CredentialResult.failure(f"LinkedIn profile fetch failed: {response.text}")

        try:
            profile_id = (response.json() or {}).get("id")
        except ValueError:
            return CredentialResult.failure("LinkedIn profile response was not valid JSON")
        if not profile_id:
            return CredentialResult.failure("LinkedIn profile response has no id")

        return CredentialResult(success=True, token=token, target_id=f"urn:li:person:{profile_id}")
