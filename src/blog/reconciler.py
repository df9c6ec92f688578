"""
Blog Status Reconciler.

Applies the outcome of remote publish and delete actions to the local blog
record. This is the only code that touches ``platform_post_ids``,
``post_ids``, ``social_media_published`` and ``published_at``.
"""
import logging
from typing import Optional

from blog.models import Blog, BlogStatus, PublishOutcome, utcnow

logger = logging.getLogger(__name__)


class BlogStatusReconciler:
    """Merge publish/delete results into a blog's persisted state."""

    def apply_outcome(self, blog: Blog, outcome: PublishOutcome, first_publish: bool = False) -> Blog:
        """Merge successful remote post ids into the blog.

        Args:
            blog: Blog to update in place
            outcome: Per-platform publish attempts
            first_publish: True when the blog is transitioning into ``published``

        Returns:
            The updated blog. On a first publish where every platform failed
            the status is left at (or reverted to) ``active``.
        """
        was_published = blog.social_media_published

        for platform, attempt in outcome.succeeded.items():
            if not attempt.remote_id:
                continue
            previous = blog.platform_post_ids.get(platform)
            if previous and previous != attempt.remote_id:
                logger.info(f"Blog {blog.id}: replacing {platform} post id {previous} with {attempt.remote_id}")
            blog.platform_post_ids[platform] = attempt.remote_id
            if attempt.remote_id not in blog.post_ids:
                blog.post_ids.append(attempt.remote_id)

        blog.social_media_published = bool(blog.platform_post_ids)

        if first_publish:
            if outcome.attempts and not outcome.any_succeeded:
                logger.warning(f"Blog {blog.id}: all platforms failed, keeping status '{BlogStatus.ACTIVE}'")
                blog.status = BlogStatus.ACTIVE
            else:
                blog.status = BlogStatus.PUBLISHED

        if not was_published and blog.social_media_published:
            blog.published_at = utcnow()
        elif first_publish and not outcome.attempts and blog.published_at is None:
            # Publishing with no platforms requested still marks the publish time
            blog.published_at = utcnow()

        logger.info(
            f"Blog {blog.id}: reconciled {outcome.success_count}/{len(outcome.attempts)} platforms, "
            f"status={blog.status}, social_media_published={blog.social_media_published}"
        )
        return blog

    def apply_republish(self, blog: Blog, outcome: PublishOutcome) -> Blog:
        """Merge a republish outcome; a successful republish restores ``published``."""
        self.apply_outcome(blog, outcome)
        if outcome.any_succeeded and blog.status != BlogStatus.PUBLISHED:
            logger.info(f"Blog {blog.id}: republished, status {blog.status} -> {BlogStatus.PUBLISHED}")
            blog.status = BlogStatus.PUBLISHED
        return blog

    def apply_remote_deletion(self, blog: Blog, platform: str, post_id: Optional[str] = None) -> Blog:
        """Remove a deleted remote post from the blog and demote it.

        Args:
            blog: Blog to update in place
            platform: Platform the post was deleted from
            post_id: Remote id that was deleted (defaults to the platform's recorded id)

        Returns:
            The updated blog with status ``deactivated``
        """
        recorded = blog.platform_post_ids.get(platform)
        removed_id = post_id or recorded

        if recorded and (post_id is None or recorded == post_id):
            del blog.platform_post_ids[platform]
        elif post_id:
            # The id may be recorded under another platform key
            for key, value in list(blog.platform_post_ids.items()):
                if value == post_id:
                    del blog.platform_post_ids[key]

        if removed_id:
            blog.post_ids = [pid for pid in blog.post_ids if pid != removed_id]

        blog.status = BlogStatus.DEACTIVATED
        blog.social_media_published = bool(blog.platform_post_ids)

        logger.info(
            f"Blog {blog.id}: removed {platform} post {removed_id}, status={blog.status}, "
            f"social_media_published={blog.social_media_published}"
        )
        return blog
