"""
Social Media Integration Module.

This module provides the publisher abstraction, the platform publishers and
a small registry that builds every configured publisher from config.yml.
"""
import logging
from typing import Any, Dict

from .base_client import ErrorKind, OperationResult, PostContent, SocialMediaPublisher, supported_operations
from .credentials import CredentialResolver, CredentialResult, TokenCache
from .facebook_client import FacebookPublisher
from .formatter import BlogContent, ContentFormatter
from .instagram_client import InstagramPublisher
from .linkedin_client import LinkedInPublisher

logger = logging.getLogger(__name__)

PUBLISHER_CLASSES = {
    FacebookPublisher.PLATFORM: FacebookPublisher,
    InstagramPublisher.PLATFORM: InstagramPublisher,
    LinkedInPublisher.PLATFORM: LinkedInPublisher,
}


def build_publishers(config: Dict[str, Any], resolver: CredentialResolver) -> Dict[str, SocialMediaPublisher]:
    """Create a publisher for every platform enabled in config.yml.

    Platforms whose section is missing or has ``enabled: false`` are left
    out, so publishing to them is reported as a credential failure.

    Args:
        config: Configuration dictionary from load_config()
        resolver: Shared CredentialResolver

    Returns:
        Dictionary mapping platform name to publisher
    """
    publishers: Dict[str, SocialMediaPublisher] = {}
    for platform, publisher_class in PUBLISHER_CLASSES.items():
        platform_config = config.get(platform) or {}
        if not platform_config.get("enabled", False):
            logger.debug(f"Platform {platform} not enabled, skipping")
            continue
        publishers[platform] = publisher_class.from_config(config, resolver)
        logger.info(f"Initialized {publisher_class.__name__}")
    return publishers


__all__ = [
    "BlogContent",
    "ContentFormatter",
    "CredentialResolver",
    "CredentialResult",
    "ErrorKind",
    "FacebookPublisher",
    "InstagramPublisher",
    "LinkedInPublisher",
    "OperationResult",
    "PostContent",
    "PUBLISHER_CLASSES",
    "SocialMediaPublisher",
    "TokenCache",
    "build_publishers",
    "supported_operations",
]
