"""
Publish Orchestrator.

Coordinates one publishing run for a blog:

    Validating -> CredentialCheck -> Formatting -> Publishing -> Reconciling -> Done

1. Validate: title, short description and the long body with markup
   stripped must be non-blank (plus the length limits of the blog content
   schema). Failure raises ContentValidationError before any remote call.
2. For each requested platform, independently and concurrently: resolve the
   credential, format the body for the platform's limit and publish it.
   One platform's failure never blocks the others.
3. Wait for every platform, bounded by ``publish_timeout``. Platforms that
   did not finish in time are recorded as ``timeout`` failures.
4. Hand the complete outcome to BlogStatusReconciler, persist the blog and
   append every attempt to the audit log.

Publishing success gates the status transition into ``published``: when
every requested platform fails the blog stays ``active``. The same rule is
applied to the HTTP update path and to the scheduled sweep.

Remote post management (delete, edit, comment, boost, share, list, get) is
routed through here too so that deletions are reconciled atomically with
the local record.
"""
import copy
import logging
import sqlite3
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError, as_completed
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from jsonschema import Draft7Validator

from blog.models import (
    Blog,
    BlogNotFoundError,
    BlogStatus,
    ContentValidationError,
    CredentialError,
    InvalidStatusTransitionError,
    PublishAttempt,
    PublishFailedError,
    PublishOutcome,
    ReconciliationError,
    RemoteAPIError,
    RetryNotAllowedError,
    UnsupportedOperationError,
    allowed_transitions,
    is_valid_transition,
    utcnow,
)
from blog.reconciler import BlogStatusReconciler
from blog.storage import BlogStore
from config import DEFAULT_PUBLISH_TIMEOUT
from notifications.pushover import PushoverNotifier
from schema import BLOG_CONTENT_SCHEMA
from social import build_publishers
from social.base_client import ErrorKind, OperationResult, PostContent, SocialMediaPublisher
from social.credentials import CredentialResolver, TokenCache
from social.formatter import BlogContent, ContentFormatter, absolute_url, html_to_text

logger = logging.getLogger(__name__)

# Maximum number of platforms published to in parallel
MAX_WORKERS = 10

TEXT_FIELDS = ("title", "type", "short_description", "long_description")
URL_FIELDS = ("image_url", "video_url", "document")

content_validator = Draft7Validator(BLOG_CONTENT_SCHEMA)


def _unique(platforms: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for platform in platforms or []:
        platform = (platform or "").strip().lower()
        if platform and platform not in seen:
            seen.append(platform)
    return seen


def validate_blog_content(blog: Blog) -> None:
    """Check that a blog carries everything a social post is built from.

    Raises:
        ContentValidationError: With field-level messages, before any remote call
    """
    fields = {
        "title": blog.title,
        "type": blog.type,
        "short_description": blog.short_description,
        "long_description": blog.long_description,
        "image_url": blog.image_url,
        "video_url": blog.video_url,
        "document": blog.document,
    }
    errors: Dict[str, List[str]] = {}

    for error in content_validator.iter_errors(fields):
        field = error.path[0] if error.path else "blog"
        if error.validator == "required":
            field = error.message.split("'")[1]
        errors.setdefault(str(field), []).append(error.message)

    if not (blog.title or "").strip():
        errors.setdefault("title", []).append("Title must not be blank")
    if not (blog.short_description or "").strip():
        errors.setdefault("short_description", []).append("Short description must not be blank")
    if not html_to_text(blog.long_description):
        errors.setdefault("long_description", []).append("Long description must contain text")

    if errors:
        logger.warning(f"Blog {blog.id} failed content validation: {sorted(errors)}")
        raise ContentValidationError(errors)


class PublishOrchestrator:
    """Run publish, retry, republish and delete flows for blogs.

    Attributes:
        store: BlogStore holding blogs and the audit log
        publishers: Platform name to SocialMediaPublisher
        formatter: ContentFormatter building per-platform bodies
        reconciler: BlogStatusReconciler applying outcomes to blogs
        notifier: PushoverNotifier for publish events
        publish_timeout: Seconds to wait for every platform of one run

    Example:
        >>> orchestrator = PublishOrchestrator.from_config(config, store)
        >>> outcome = orchestrator.publish_blog_to_platforms(blog, ["facebook"])
        >>> outcome.success_count
        1
    """

    def __init__(
        self,
        store: BlogStore,
        publishers: Dict[str, SocialMediaPublisher],
        formatter: ContentFormatter,
        reconciler: Optional[BlogStatusReconciler] = None,
        notifier: Optional[PushoverNotifier] = None,
        publish_timeout: float = DEFAULT_PUBLISH_TIMEOUT,
        site_url: Optional[str] = None,
    ):
        self.store = store
        self.publishers = publishers
        self.formatter = formatter
        self.reconciler = reconciler or BlogStatusReconciler()
        self.notifier = notifier or PushoverNotifier(config_enabled=False)
        self.publish_timeout = publish_timeout
        self.site_url = (site_url or formatter.site_url or "").rstrip("/")

    @classmethod
    def from_config(cls, config: Dict[str, Any], store: BlogStore,
                    notifier: Optional[PushoverNotifier] = None,
                    cache: Optional[TokenCache] = None) -> "PublishOrchestrator":
        """Wire resolver, publishers and formatter from config.yml."""
        resolver = CredentialResolver(config, cache)
        site_url = config.get("site_url")
        return cls(
            store=store,
            publishers=build_publishers(config, resolver),
            formatter=ContentFormatter(site_url=site_url),
            notifier=notifier,
            publish_timeout=config.get("publish_timeout_seconds", DEFAULT_PUBLISH_TIMEOUT),
            site_url=site_url,
        )

    # -------------------------------------------------------------------------
    # Content
    # -------------------------------------------------------------------------

    def article_url(self, blog: Blog) -> Optional[str]:
        if not blog.slug or not self.site_url:
            return None
        return f"{self.site_url}/blog/{blog.slug}"

    def blog_content(self, blog: Blog) -> BlogContent:
        return BlogContent(
            title=blog.title,
            type=blog.type,
            short_description=blog.short_description,
            long_description=blog.long_description,
            video_url=blog.video_url,
            document_url=blog.document,
            article_url=self.article_url(blog),
            image_url=absolute_url(blog.image_url, self.site_url),
        )

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    def _publish_one(self, platform: str, content: BlogContent) -> PublishAttempt:
        """Credential check, formatting and publish for one platform."""
        publisher = self.publishers.get(platform)
        if publisher is None:
            logger.error(f"Platform {platform} is not configured")
            return PublishAttempt(
                platform=platform,
                success=False,
                error=f"Platform {platform} is not configured",
                error_kind=ErrorKind.CREDENTIAL,
            )

        credential = publisher.resolver.resolve_token(platform)
        if not credential.success:
            return PublishAttempt(
                platform=platform,
                success=False,
                error=credential.error,
                error_kind=ErrorKind.CREDENTIAL,
            )

        body = self.formatter.format(content, publisher.max_post_length)
        post = PostContent(message=body, image_url=content.image_url, link=content.article_url)

        try:
            result = publisher.publish(post)
        except Exception as e:
            # Publishers convert remote failures themselves; this is a programming error
            logger.exception(f"Unexpected error publishing to {platform}: {e}")
            result = OperationResult.fail(f"Unexpected error: {e}", ErrorKind.REMOTE)

        if result.error_kind == ErrorKind.CREDENTIAL and result.status_code:
            self.notifier.notify_token_invalidated(platform, result.error or "credential rejected")

        return PublishAttempt(
            platform=platform,
            success=result.success,
            remote_id=result.remote_id,
            payload=body,
            error=result.error,
            error_kind=result.error_kind,
            response=result.response,
            token=credential.token,
        )

    def _run_platforms(self, blog: Blog, platforms: List[str]) -> PublishOutcome:
        """Publish to every platform concurrently and collect a complete outcome."""
        outcome = PublishOutcome()
        if not platforms:
            return outcome

        content = self.blog_content(blog)
        executor = ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(platforms)))
        futures = {executor.submit(self._publish_one, platform, content): platform for platform in platforms}
        try:
            for future in as_completed(futures, timeout=self.publish_timeout):
                platform = futures[future]
                try:
                    outcome.add(future.result())
                except Exception as e:
                    logger.error(f"Publishing to {platform} failed unexpectedly: {e}", exc_info=True)
                    outcome.add(PublishAttempt(platform=platform, success=False, error=str(e),
                                               error_kind=ErrorKind.REMOTE))
        except FuturesTimeoutError:
            for future, platform in futures.items():
                if platform not in outcome.attempts:
                    future.cancel()
                    logger.error(f"Publishing to {platform} did not finish within {self.publish_timeout}s")
                    outcome.add(PublishAttempt(
                        platform=platform,
                        success=False,
                        error=f"Timed out after {self.publish_timeout}s",
                        error_kind=ErrorKind.TIMEOUT,
                    ))
        finally:
            executor.shutdown(wait=False)

        # Keep the requested order for reporting
        outcome.attempts = {p: outcome.attempts[p] for p in platforms if p in outcome.attempts}
        return outcome

    def _record(self, blog: Blog, outcome: PublishOutcome) -> None:
        """Persist the reconciled blog and append every attempt to the audit log."""
        with self.store.transaction() as conn:
            self.store.save(blog, conn=conn)
            for attempt in outcome.attempts.values():
                self.store.append_log(blog.id, attempt, conn=conn)

    def _persist_outcome(self, blog: Blog, outcome: PublishOutcome) -> None:
        """Record a publish run, reapplying it once when the first commit fails.

        Raises:
            ReconciliationError: Remote posts exist that the blog could not be updated to reference
        """
        try:
            self._record(blog, outcome)
            return
        except sqlite3.Error as e:
            logger.error(f"Recording publish run of blog {blog.id} failed, reapplying: {e}")

        try:
            self._record(blog, outcome)
        except sqlite3.Error as e:
            orphaned = {platform: attempt.remote_id for platform, attempt in outcome.succeeded.items()}
            reconciliation = ReconciliationError(
                f"Blog {blog.id} could not be updated after publishing; "
                f"unreferenced remote posts: {orphaned or 'none'}: {e}"
            )
            logger.critical(reconciliation.message)
            raise reconciliation from e

    def _notify(self, blog: Blog, outcome: PublishOutcome) -> None:
        for platform, attempt in outcome.attempts.items():
            if attempt.success:
                self.notifier.notify_publish_success(blog.title, platform, attempt.remote_id,
                                                     self.article_url(blog))
            else:
                self.notifier.notify_publish_failure(blog.title, platform, attempt.error or "unknown error")

    def publish_blog_to_platforms(self, blog: Blog, platforms: Iterable[str],
                                  first_publish: bool = False) -> PublishOutcome:
        """Publish a blog to the given platforms and reconcile the result.

        Args:
            blog: Stored blog to publish
            platforms: Platform names, in the order results are reported
            first_publish: True when the blog is transitioning into ``published``

        Returns:
            PublishOutcome with one attempt per requested platform

        Raises:
            ContentValidationError: Content is incomplete; no remote call was made
        """
        validate_blog_content(blog)
        platforms = _unique(platforms)

        logger.info(f"Publishing blog {blog.id} '{blog.title}' to {platforms or 'no platforms'}")
        outcome = self._run_platforms(blog, platforms)

        self.reconciler.apply_outcome(blog, outcome, first_publish=first_publish)
        self._persist_outcome(blog, outcome)
        self._notify(blog, outcome)

        if outcome.is_partial:
            logger.warning(
                f"Blog {blog.id} partially published: succeeded={list(outcome.succeeded)}, "
                f"failed={list(outcome.failed)}"
            )
        return outcome

    # -------------------------------------------------------------------------
    # Status transitions
    # -------------------------------------------------------------------------

    def transition_status(self, blog: Blog, new_status: str,
                          platforms: Optional[Iterable[str]] = None) -> PublishOutcome:
        """Move a blog to ``new_status``, publishing when it enters ``published``.

        Args:
            blog: Stored blog
            new_status: Target status
            platforms: Platforms to publish to (defaults to the blog's own list)

        Returns:
            PublishOutcome of the publish run, empty when nothing was published

        Raises:
            InvalidStatusTransitionError: The state machine forbids the move
            ContentValidationError: Publishing was requested with incomplete content
            PublishFailedError: Every requested platform failed; the blog stays ``active``
        """
        if new_status not in BlogStatus.ALL:
            raise InvalidStatusTransitionError(f"Unknown status '{new_status}'")
        if not is_valid_transition(blog.status, new_status):
            raise InvalidStatusTransitionError(
                f"Cannot change status from '{blog.status}' to '{new_status}'; "
                f"allowed: {allowed_transitions(blog.status) or 'none'}"
            )

        if new_status == blog.status:
            return PublishOutcome()

        if new_status != BlogStatus.PUBLISHED:
            logger.info(f"Blog {blog.id}: status {blog.status} -> {new_status}")
            blog.status = new_status
            self.store.save(blog)
            return PublishOutcome()

        targets = _unique(blog.platforms if platforms is None else platforms)
        if not targets:
            # Publishing is optional; without platforms the transition is unconditional
            outcome = PublishOutcome()
            self.reconciler.apply_outcome(blog, outcome, first_publish=True)
            self.store.save(blog)
            return outcome

        outcome = self.publish_blog_to_platforms(blog, targets, first_publish=True)
        if outcome.all_failed:
            raise PublishFailedError(
                f"Publishing failed on every platform ({', '.join(targets)}); blog remains '{blog.status}'",
                outcome,
            )
        return outcome

    def update_blog(self, blog_id: int, changes: Dict[str, Any]) -> PublishOutcome:
        """Apply field changes and an optional status change to a stored blog.

        Changes are checked before anything is written: an invalid transition
        or incomplete content for publishing leaves the stored blog untouched.
        """
        blog = self.get_blog(blog_id)
        new_status = changes.get("status", blog.status)
        if not is_valid_transition(blog.status, new_status):
            raise InvalidStatusTransitionError(
                f"Cannot change status from '{blog.status}' to '{new_status}'; "
                f"allowed: {allowed_transitions(blog.status) or 'none'}"
            )

        updated = copy.deepcopy(blog)
        for key in TEXT_FIELDS:
            if key in changes:
                setattr(updated, key, changes[key] or "")
        for key in URL_FIELDS:
            if key in changes:
                setattr(updated, key, changes[key] or None)
        if "platforms" in changes:
            updated.platforms = _unique(changes["platforms"])
        if "scheduled_at" in changes:
            try:
                updated.scheduled_at = _parse_datetime(changes["scheduled_at"])
            except ValueError as e:
                raise ContentValidationError({"scheduled_at": [f"Invalid ISO 8601 timestamp: {e}"]}) from e
        if "title" in changes and updated.title != blog.title:
            updated.slug = self.store.unique_slug(updated.title, exclude_id=blog.id)
            logger.info(f"Blog {blog.id}: slug regenerated as '{updated.slug}'")

        entering_published = new_status == BlogStatus.PUBLISHED and blog.status != BlogStatus.PUBLISHED
        if entering_published and updated.platforms:
            validate_blog_content(updated)

        self.store.save(updated)
        return self.transition_status(updated, new_status)

    # -------------------------------------------------------------------------
    # Retry and republish
    # -------------------------------------------------------------------------

    def retry(self, blog: Blog, platforms: Optional[Iterable[str]] = None) -> PublishOutcome:
        """Re-attempt the requested platforms that have no recorded post id.

        Raises:
            RetryNotAllowedError: The blog is not published or nothing is left to retry
        """
        if blog.status != BlogStatus.PUBLISHED:
            raise RetryNotAllowedError(f"Blog {blog.id} is '{blog.status}', only published blogs can be retried")

        requested = _unique(blog.platforms if platforms is None else platforms)
        pending = [p for p in requested if p not in blog.platform_post_ids]
        if not pending:
            raise RetryNotAllowedError(f"Blog {blog.id} is already published on every requested platform")

        logger.info(f"Retrying blog {blog.id} on {pending}")
        return self.publish_blog_to_platforms(blog, pending)

    def republish(self, blog: Blog, platform: str = "facebook") -> PublishOutcome:
        """Publish a published or deactivated blog to one platform again.

        Raises:
            InvalidStatusTransitionError: The blog was never published
            PublishFailedError: The platform rejected the post
        """
        if blog.status not in (BlogStatus.PUBLISHED, BlogStatus.DEACTIVATED):
            raise InvalidStatusTransitionError(
                f"Blog {blog.id} is '{blog.status}'; only published or deactivated blogs can be republished"
            )
        validate_blog_content(blog)

        outcome = self._run_platforms(blog, _unique([platform]))
        self.reconciler.apply_republish(blog, outcome)
        self._record(blog, outcome)
        self._notify(blog, outcome)

        if not outcome.any_succeeded:
            raise PublishFailedError(f"Republish to {platform} failed", outcome)
        return outcome

    def publish_due_blogs(self, now: Optional[datetime] = None) -> Dict[int, PublishOutcome]:
        """Publish every active blog whose scheduled time has passed.

        Each blog is handled independently; a failing blog is logged and the
        sweep continues. Status follows the same gating as the update path.

        Returns:
            Blog id to PublishOutcome for every blog that was attempted
        """
        now = now or utcnow()
        results: Dict[int, PublishOutcome] = {}
        due = self.store.list_due(now)
        if due:
            logger.info(f"Found {len(due)} scheduled blog(s) due for publishing")

        for blog in due:
            try:
                results[blog.id] = self.transition_status(blog, BlogStatus.PUBLISHED)
            except PublishFailedError as e:
                results[blog.id] = e.outcome
                logger.error(f"Scheduled publish of blog {blog.id} failed: {e.message}")
            except ContentValidationError as e:
                logger.error(f"Scheduled blog {blog.id} has incomplete content: {e.errors}")
        return results

    # -------------------------------------------------------------------------
    # Remote post management
    # -------------------------------------------------------------------------

    def get_blog(self, blog_id: int) -> Blog:
        blog = self.store.get(blog_id)
        if blog is None:
            raise BlogNotFoundError(f"Blog {blog_id} not found")
        return blog

    def publisher_for(self, platform: str) -> SocialMediaPublisher:
        publisher = self.publishers.get(platform)
        if publisher is None:
            raise CredentialError(f"Platform {platform} is not configured")
        return publisher

    @staticmethod
    def _require(result: OperationResult, operation: str, platform: str) -> OperationResult:
        """Turn a failed OperationResult into the matching error."""
        if result.success:
            return result
        message = f"{operation} on {platform} failed: {result.error}"
        if result.error_kind == ErrorKind.UNSUPPORTED:
            raise UnsupportedOperationError(result.error)
        if result.error_kind == ErrorKind.CREDENTIAL:
            raise CredentialError(message)
        raise RemoteAPIError(message)

    def delete_remote_post(self, platform: str, post_id: str) -> Optional[Blog]:
        """Delete a remote post and reconcile the owning blog as one unit.

        The remote delete runs first, outside any write lock. Only after it
        succeeded is the owning blog re-read and updated in a short
        transaction, so a failed remote delete leaves the blog untouched. A
        failed commit is compensated by reapplying the update once more.

        Returns:
            The updated blog, or None when no blog references the post

        Raises:
            RemoteAPIError, CredentialError, UnsupportedOperationError: The remote delete failed
            ReconciliationError: The post was deleted but the blog could not be updated
        """
        publisher = self.publisher_for(platform)
        result = publisher.delete(post_id)
        self._require(result, "delete", platform)

        try:
            blog = self._apply_deletion(platform, post_id)
        except sqlite3.Error as e:
            blog = self._compensate_deletion(platform, post_id, e)

        logger.info(f"Deleted {platform} post {post_id}" + (f" of blog {blog.id}" if blog else ""))
        if blog is not None:
            self.notifier.notify_post_deleted(blog.title, platform, post_id)
        return blog

    def _apply_deletion(self, platform: str, post_id: str) -> Optional[Blog]:
        with self.store.transaction() as conn:
            stored = self.store.find_by_post_id(post_id, conn)
            if stored is None:
                return None
            blog = self.reconciler.apply_remote_deletion(stored, platform, post_id)
            self.store.save(blog, conn=conn)
            return blog

    def _compensate_deletion(self, platform: str, post_id: str, error: Exception) -> Optional[Blog]:
        """Reapply the local deletion after the commit failed on a deleted remote post."""
        logger.error(f"Commit failed after deleting {platform} post {post_id}, reapplying local update: {error}")
        try:
            return self._apply_deletion(platform, post_id)
        except sqlite3.Error as e:
            reconciliation = ReconciliationError(
                f"{platform} post {post_id} was deleted remotely but the blog still references it: {e}"
            )
            logger.critical(reconciliation.message)
            raise reconciliation from e

    def list_posts(self, platform: str, limit: int = 25, cursor: Optional[str] = None) -> Any:
        result = self.publisher_for(platform).list_posts(limit, cursor)
        return self._require(result, "list posts", platform).data

    def get_post(self, platform: str, post_id: str) -> Any:
        result = self.publisher_for(platform).get_post(post_id)
        return self._require(result, "get post", platform).data

    def update_post(self, platform: str, post_id: str, text: str) -> OperationResult:
        result = self.publisher_for(platform).update_message(post_id, text)
        return self._require(result, "update", platform)

    def comment(self, platform: str, post_id: str, text: str) -> OperationResult:
        result = self.publisher_for(platform).comment(post_id, text)
        return self._require(result, "comment", platform)

    def boost(self, platform: str, post_id: str) -> OperationResult:
        result = self.publisher_for(platform).boost(post_id)
        return self._require(result, "boost", platform)

    def share(self, platform: str, post_id: str, text: Optional[str] = None) -> OperationResult:
        result = self.publisher_for(platform).share(post_id, text)
        return self._require(result, "share", platform)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
