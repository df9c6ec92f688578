"""
Pushover Notification Client for the Blog Syndicator.

This module sends push notifications via Pushover for important events in
the publishing pipeline, such as:
- A blog published to a social media platform
- A platform rejecting a publish attempt
- A cached platform credential being invalidated
- The scheduled publishing sweep failing
- Error-level log messages (via PushoverLoggingHandler)

Pushover Configuration:
    Configure via config.yml:
    - pushover.enabled: Set to true to enable notifications
    - pushover.app_token_file: Path to Docker secret for app token
    - pushover.user_key_file: Path to Docker secret for user key

Usage:
    >>> from config import load_config
    >>> config = load_config()
    >>> notifier = PushoverNotifier.from_config(config)
    >>> notifier.notify_publish_success("Launch Day", "facebook", "123_456")

    For logging integration:
    >>> handler = PushoverLoggingHandler(notifier)
    >>> logging.getLogger().addHandler(handler)

API Reference:
    Pushover API: https://pushover.net/api

Security:
    - Credentials are loaded from Docker secrets
    - No credentials are logged or stored in code
"""
import os
import logging
import time
from typing import Optional, Dict, Any
import requests


logger = logging.getLogger(__name__)

PLATFORM_NAMES = {
    "facebook": "Facebook",
    "instagram": "Instagram",
    "linkedin": "LinkedIn",
}


class PushoverNotifier:
    """Client for sending push notifications via Pushover service.

    Attributes:
        app_token: Pushover application API token
        user_key: Pushover user/group key
        enabled: Whether notifications are enabled (both credentials must be set)

    Example:
        >>> notifier = PushoverNotifier()
        >>> if notifier.enabled:
        ...     notifier.notify_publish_failure("Launch Day", "facebook", "HTTP 500")
    """

    # Pushover API endpoint
    PUSHOVER_API_URL = "https://api.pushover.net/1/messages.json"

    # Pushover field length limits
    MAX_TITLE_LENGTH = 250
    MAX_MESSAGE_LENGTH = 1024
    MAX_URL_LENGTH = 512
    MAX_URL_TITLE_LENGTH = 100

    def __init__(self, app_token: Optional[str] = None, user_key: Optional[str] = None,
                 config_enabled: bool = True):
        """Initialize Pushover notifier with credentials.

        Args:
            app_token: Pushover application API token. If None, reads from
                      PUSHOVER_APP_TOKEN environment variable.
            user_key: Pushover user/group key. If None, reads from
                     PUSHOVER_USER_KEY environment variable.
            config_enabled: Whether Pushover is enabled in config.yml (default: True)

        Note:
            Notifications will be disabled if config_enabled is False or
            either credential is missing.
        """
        self.app_token = app_token or os.environ.get("PUSHOVER_APP_TOKEN")
        self.user_key = user_key or os.environ.get("PUSHOVER_USER_KEY")
        self.enabled = (config_enabled and
                        self.app_token is not None and
                        self.user_key is not None)

        if not config_enabled:
            logger.info("Pushover notifications disabled via config.yml")
        elif not self.enabled:
            logger.warning(
                "Pushover notifications disabled: missing credentials"
            )
        else:
            logger.info("Pushover notifications enabled")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "PushoverNotifier":
        """Create PushoverNotifier from configuration dictionary.

        Args:
            config: Configuration dictionary from config.yml

        Returns:
            Initialized PushoverNotifier instance
        """
        from config import read_secret_file

        pushover_config = config.get("pushover", {})
        enabled = pushover_config.get("enabled", False)

        if not enabled:
            return cls(config_enabled=False)

        app_token_file = pushover_config.get("app_token_file", "/run/secrets/pushover_app_token")
        user_key_file = pushover_config.get("user_key_file", "/run/secrets/pushover_user_key")

        app_token = read_secret_file(app_token_file)
        user_key = read_secret_file(user_key_file)

        return cls(app_token=app_token, user_key=user_key, config_enabled=True)

    def _send_notification(
        self,
        title: str,
        message: str,
        priority: int = 0,
        url: Optional[str] = None,
        url_title: Optional[str] = None
    ) -> bool:
        """Send a push notification via Pushover API.

        Args:
            title: Notification title (up to 250 characters)
            message: Notification message (up to 1024 characters)
            priority: Priority level (-2 to 2):
                     -1: Low priority (no sound)
                      0: Normal priority (default)
                      1: High priority (bypasses quiet hours)
            url: Optional URL to include in notification
            url_title: Optional title for the URL

        Returns:
            True if notification sent successfully, False otherwise

        Raises:
            Does not raise exceptions - logs errors and returns False
        """
        if not self.enabled:
            logger.debug(
                f"Pushover notification skipped (disabled): {title} - {message}"
            )
            return False

        try:
            payload = {
                "token": self.app_token,
                "user": self.user_key,
                "title": title[:self.MAX_TITLE_LENGTH],
                "message": message[:self.MAX_MESSAGE_LENGTH],
                "priority": priority,
            }

            if url:
                payload["url"] = url[:self.MAX_URL_LENGTH]
                if url_title:
                    payload["url_title"] = url_title[:self.MAX_URL_TITLE_LENGTH]

            response = requests.post(
                self.PUSHOVER_API_URL,
                data=payload,
                timeout=10
            )

            response.raise_for_status()

            logger.info(f"Pushover notification sent: {title}")
            return True

        except requests.exceptions.RequestException as e:
            # Logged below ERROR so PushoverLoggingHandler cannot recurse on its own failures
            logger.warning(f"Failed to send Pushover notification: {e}")
            return False

    def notify_publish_success(self, blog_title: str, platform: str, remote_id: Optional[str] = None,
                               post_url: Optional[str] = None) -> bool:
        """Send notification when a blog is published to a platform.

        Args:
            blog_title: Title of the blog
            platform: Platform name ("facebook", "instagram", "linkedin")
            remote_id: Identifier of the created post
            post_url: URL of the published article (optional)

        Example:
            >>> notifier.notify_publish_success("Launch Day", "facebook", "123_456")
        """
        name = PLATFORM_NAMES.get(platform, platform)
        message = f"Published to {name}:\n{blog_title}"
        if remote_id:
            message += f"\n\nPost ID: {remote_id}"
        return self._send_notification(
            title=f"✅ Posted to {name}",
            message=message,
            priority=0,
            url=post_url,
            url_title="View article" if post_url else None
        )

    def notify_publish_failure(self, blog_title: str, platform: str, error: str) -> bool:
        """Send notification when publishing to a platform fails."""
        name = PLATFORM_NAMES.get(platform, platform)
        return self._send_notification(
            title=f"❌ Failed to post to {name}",
            message=f"Failed to publish to {name}:\n{blog_title}\n\nError: {error}",
            priority=1
        )

    def notify_token_invalidated(self, platform: str, reason: str) -> bool:
        """Send notification when a platform rejects the cached credential."""
        name = PLATFORM_NAMES.get(platform, platform)
        return self._send_notification(
            title=f"🔑 {name} token invalidated",
            message=f"The cached {name} credential was rejected and evicted:\n{reason}",
            priority=1
        )

    def notify_post_deleted(self, blog_title: str, platform: str, post_id: str) -> bool:
        name = PLATFORM_NAMES.get(platform, platform)
        return self._send_notification(
            title=f"🗑️ Deleted {name} post",
            message=f"Deleted post {post_id} for:\n{blog_title}\n\nThe blog is now deactivated.",
            priority=-1
        )

    def notify_scheduler_error(self, error: str) -> bool:
        return self._send_notification(
            title="⚠️ Scheduled publishing failed",
            message=f"The scheduled publishing sweep failed:\n{error}",
            priority=1
        )

    def send_test_notification(self) -> bool:
        """Send a low-priority test notification, used by the health endpoint."""
        return self._send_notification(
            title="Blog Syndicator health check",
            message="Pushover notifications are working.",
            priority=-1
        )

    def notify_log_error(self, logger_name: str, message: str, level: str = "ERROR") -> bool:
        """Send notification for error-level log messages.

        Args:
            logger_name: Name of the logger that produced the message
            message: The log message content
            level: Log level (ERROR, CRITICAL, etc.)

        Returns:
            True if notification sent successfully, False otherwise
        """
        return self._send_notification(
            title=f"🚨 Syndicator {level}",
            message=f"[{logger_name}]\n{message}",
            priority=1
        )


class PushoverLoggingHandler(logging.Handler):
    """Custom logging handler that sends ERROR and CRITICAL logs to Pushover.

    Includes rate limiting to prevent notification spam during error storms.

    Attributes:
        notifier: PushoverNotifier instance used to send notifications
        rate_limit_seconds: Minimum seconds between notifications (default: 60)

    Example:
        >>> notifier = PushoverNotifier.from_config(config)
        >>> handler = PushoverLoggingHandler(notifier, rate_limit_seconds=30)
        >>> logging.getLogger().addHandler(handler)
    """

    def __init__(self, notifier: PushoverNotifier, rate_limit_seconds: int = 60):
        super().__init__()
        self.notifier = notifier
        self.rate_limit_seconds = rate_limit_seconds
        self._last_notification_time: float = 0.0
        self.setLevel(logging.ERROR)

    def emit(self, record: logging.LogRecord) -> None:
        """Send the record to Pushover unless rate limited."""
        if not self.notifier.enabled:
            return

        current_time = time.time()
        if current_time - self._last_notification_time < self.rate_limit_seconds:
            return

        try:
            message = self.format(record)
            success = self.notifier.notify_log_error(
                logger_name=record.name,
                message=message,
                level=record.levelname
            )
            if success:
                self._last_notification_time = current_time

        except Exception:
            # Don't let notification failures break logging
            self.handleError(record)
