"""
Unit Tests for the Publish Orchestrator.

This test suite exercises the publishing pipeline end to end against a
temporary SQLite database and scripted in-memory publishers.

Test Coverage:
    - Partial success: one platform succeeds, another fails
    - Status gating: total failure keeps the blog ``active``
    - Retry re-attempts only platforms without a post id
    - State machine enforcement on direct updates
    - Content validation before any remote call
    - Atomic remote deletion (rollback and compensation)
    - Per-platform timeouts
    - Scheduled sweep and republish
"""
import sqlite3
import threading
from contextlib import contextmanager
from datetime import timedelta
from unittest.mock import patch

import pytest

from blog.models import (
    BlogStatus,
    ContentValidationError,
    InvalidStatusTransitionError,
    PublishFailedError,
    ReconciliationError,
    RemoteAPIError,
    RetryNotAllowedError,
    UnsupportedOperationError,
    utcnow,
)
from social.base_client import ErrorKind, OperationResult


LAUNCH_DAY_BODY = (
    "Launch Day\n\nWe shipped it\n\nFull story here.\n\n"
    "Read full article: https://example.com/blog/launch-day"
)


class TestPublishing:
    def test_formatted_body_reaches_publisher(self, orchestrator, publishers, make_blog):
        blog = make_blog()

        orchestrator.transition_status(blog, BlogStatus.PUBLISHED)

        assert publishers["facebook"].published[0].message == LAUNCH_DAY_BODY
        assert publishers["facebook"].published[0].link == "https://example.com/blog/launch-day"

    def test_partial_success(self, orchestrator, publishers, store, make_blog, failure):
        blog = make_blog(platforms=["facebook", "linkedin"])
        publishers["linkedin"].publish_results = [failure()]

        outcome = orchestrator.transition_status(blog, BlogStatus.PUBLISHED)

        assert outcome.is_partial is True
        assert list(outcome.attempts) == ["facebook", "linkedin"]
        stored = store.get(blog.id)
        assert stored.status == BlogStatus.PUBLISHED
        assert stored.platform_post_ids == {"facebook": "facebook-post-1"}
        assert stored.social_media_published is True
        assert stored.published_at is not None

        logs = store.get_logs(blog.id)
        assert sorted((log["platform"], log["success"]) for log in logs) == [
            ("facebook", True), ("linkedin", False),
        ]

    def test_all_platforms_fail_keeps_active(self, orchestrator, publishers, store, make_blog, failure):
        blog = make_blog(platforms=["facebook", "linkedin"])
        publishers["facebook"].publish_results = [failure()]
        publishers["linkedin"].publish_results = [failure()]

        with pytest.raises(PublishFailedError) as exc_info:
            orchestrator.transition_status(blog, BlogStatus.PUBLISHED)

        assert exc_info.value.outcome.all_failed is True
        stored = store.get(blog.id)
        assert stored.status == BlogStatus.ACTIVE
        assert stored.social_media_published is False
        assert stored.published_at is None
        assert len(store.get_logs(blog.id)) == 2

    def test_one_failure_does_not_block_others(self, orchestrator, publishers, make_blog, failure):
        blog = make_blog(platforms=["facebook", "linkedin"])
        publishers["facebook"].publish_results = [failure()]

        outcome = orchestrator.transition_status(blog, BlogStatus.PUBLISHED)

        assert len(publishers["linkedin"].published) == 1
        assert list(outcome.succeeded) == ["linkedin"]

    def test_unconfigured_platform_is_credential_failure(self, orchestrator, make_blog):
        blog = make_blog(platforms=["instagram"])

        with pytest.raises(PublishFailedError) as exc_info:
            orchestrator.transition_status(blog, BlogStatus.PUBLISHED)

        assert exc_info.value.outcome.attempts["instagram"].error_kind == ErrorKind.CREDENTIAL

    def test_rejected_token_notifies(self, orchestrator, publishers, notifier, make_blog):
        blog = make_blog()
        publishers["facebook"].publish_results = [
            OperationResult.fail("HTTP 400: token expired", ErrorKind.CREDENTIAL, status_code=400)
        ]

        with pytest.raises(PublishFailedError):
            orchestrator.transition_status(blog, BlogStatus.PUBLISHED)

        notifier.notify_token_invalidated.assert_called_once_with("facebook", "HTTP 400: token expired")
        notifier.notify_publish_failure.assert_called_once()

    def test_success_notifies(self, orchestrator, notifier, make_blog):
        orchestrator.transition_status(make_blog(), BlogStatus.PUBLISHED)

        notifier.notify_publish_success.assert_called_once_with(
            "Launch Day", "facebook", "facebook-post-1", "https://example.com/blog/launch-day"
        )

    def test_no_platforms_publishes_unconditionally(self, orchestrator, publishers, store, make_blog):
        blog = make_blog(platforms=[])

        outcome = orchestrator.transition_status(blog, BlogStatus.PUBLISHED)

        assert outcome.attempts == {}
        assert store.get(blog.id).status == BlogStatus.PUBLISHED
        assert publishers["facebook"].published == []

    def test_slow_platform_times_out(self, orchestrator, resolver, store, make_blog, scripted_publisher):
        release = threading.Event()

        class SlowPublisher(scripted_publisher):
            def publish(self, content):
                release.wait(5)
                return OperationResult.ok(remote_id="late")

        orchestrator.publishers["linkedin"] = SlowPublisher("linkedin", resolver)
        orchestrator.publish_timeout = 0.2
        blog = make_blog(platforms=["facebook", "linkedin"])

        try:
            outcome = orchestrator.transition_status(blog, BlogStatus.PUBLISHED)
        finally:
            release.set()

        assert outcome.attempts["linkedin"].error_kind == ErrorKind.TIMEOUT
        assert outcome.attempts["facebook"].success is True
        assert store.get(blog.id).platform_post_ids == {"facebook": "facebook-post-1"}


class TestRecordingFailures:
    def _failing_save(self, store, failures):
        """Make ``store.save`` raise inside a transaction for the first ``failures`` calls."""
        original = store.save
        calls = []

        def save(blog, conn=None):
            if conn is not None:
                calls.append(blog.id)
                if len(calls) <= failures:
                    raise sqlite3.OperationalError("database is locked")
            return original(blog, conn=conn)

        return patch.object(store, "save", side_effect=save)

    def test_failed_commit_is_reapplied(self, orchestrator, publishers, store, make_blog):
        blog = make_blog()

        with self._failing_save(store, failures=1):
            outcome = orchestrator.transition_status(blog, BlogStatus.PUBLISHED)

        assert outcome.success_count == 1
        stored = store.get(blog.id)
        assert stored.status == BlogStatus.PUBLISHED
        assert stored.platform_post_ids == {"facebook": "facebook-post-1"}
        assert len(store.get_logs(blog.id)) == 1
        assert len(publishers["facebook"].published) == 1

    def test_unrecoverable_commit_raises_with_orphaned_ids(self, orchestrator, store, notifier, make_blog, caplog):
        blog = make_blog(platforms=["facebook", "linkedin"])

        with self._failing_save(store, failures=2):
            with pytest.raises(ReconciliationError) as exc_info:
                orchestrator.transition_status(blog, BlogStatus.PUBLISHED)

        assert "facebook-post-1" in exc_info.value.message
        assert "linkedin-post-1" in exc_info.value.message
        assert any(r.levelname == "CRITICAL" for r in caplog.records)
        assert store.get(blog.id).status == BlogStatus.ACTIVE
        notifier.notify_publish_success.assert_not_called()


class TestValidation:
    def test_blank_fields_rejected_before_remote_calls(self, orchestrator, publishers, store, make_blog):
        blog = make_blog(short_description="   ", long_description="<p></p>")

        with pytest.raises(ContentValidationError) as exc_info:
            orchestrator.transition_status(blog, BlogStatus.PUBLISHED)

        assert set(exc_info.value.errors) == {"short_description", "long_description"}
        assert publishers["facebook"].published == []
        assert store.get(blog.id).status == BlogStatus.ACTIVE

    def test_update_with_incomplete_content_writes_nothing(self, orchestrator, store, make_blog):
        blog = make_blog()

        with pytest.raises(ContentValidationError):
            orchestrator.update_blog(blog.id, {"status": "published", "title": " "})

        stored = store.get(blog.id)
        assert stored.title == "Launch Day"
        assert stored.status == BlogStatus.ACTIVE


class TestStatusTransitions:
    @pytest.mark.parametrize("target", ["active", "inactive", "deactivated"])
    def test_published_cannot_change_directly(self, orchestrator, store, make_blog, target):
        blog = make_blog(status=BlogStatus.PUBLISHED)

        with pytest.raises(InvalidStatusTransitionError):
            orchestrator.update_blog(blog.id, {"status": target})

        assert store.get(blog.id).status == BlogStatus.PUBLISHED

    def test_inactive_cannot_skip_to_published(self, orchestrator, publishers, store, make_blog):
        blog = make_blog(status=BlogStatus.INACTIVE)

        with pytest.raises(InvalidStatusTransitionError):
            orchestrator.update_blog(blog.id, {"status": "published", "title": "Changed"})

        assert store.get(blog.id).title == "Launch Day"
        assert publishers["facebook"].published == []

    def test_inactive_to_active(self, orchestrator, store, make_blog):
        blog = make_blog(status=BlogStatus.INACTIVE)

        orchestrator.update_blog(blog.id, {"status": "active"})

        assert store.get(blog.id).status == BlogStatus.ACTIVE

    def test_title_change_regenerates_slug(self, orchestrator, store, make_blog):
        blog = make_blog()

        orchestrator.update_blog(blog.id, {"title": "Second Launch"})

        assert store.get(blog.id).slug == "second-launch"

    def test_update_publishes_with_new_platforms(self, orchestrator, publishers, store, make_blog):
        blog = make_blog(platforms=[])

        orchestrator.update_blog(blog.id, {"status": "published", "platforms": ["LinkedIn", "linkedin"]})

        stored = store.get(blog.id)
        assert stored.platforms == ["linkedin"]
        assert stored.platform_post_ids == {"linkedin": "linkedin-post-1"}


class TestRetry:
    def test_retry_only_missing_platforms(self, orchestrator, publishers, store, make_blog, failure):
        blog = make_blog(platforms=["facebook", "linkedin"])
        publishers["linkedin"].publish_results = [failure()]
        orchestrator.transition_status(blog, BlogStatus.PUBLISHED)

        outcome = orchestrator.retry(store.get(blog.id))

        assert list(outcome.attempts) == ["linkedin"]
        assert len(publishers["facebook"].published) == 1
        assert store.get(blog.id).platform_post_ids == {
            "facebook": "facebook-post-1",
            "linkedin": "linkedin-post-2",
        }

    def test_retry_requires_published(self, orchestrator, make_blog):
        with pytest.raises(RetryNotAllowedError):
            orchestrator.retry(make_blog(status=BlogStatus.ACTIVE))

    def test_retry_with_nothing_missing(self, orchestrator, store, make_blog):
        blog = make_blog()
        orchestrator.transition_status(blog, BlogStatus.PUBLISHED)

        with pytest.raises(RetryNotAllowedError):
            orchestrator.retry(store.get(blog.id))


class TestRepublish:
    def test_republish_deactivated_blog(self, orchestrator, publishers, store, make_blog):
        blog = make_blog(status=BlogStatus.DEACTIVATED)

        outcome = orchestrator.republish(blog)

        assert outcome.attempts["facebook"].remote_id == "facebook-post-1"
        stored = store.get(blog.id)
        assert stored.status == BlogStatus.PUBLISHED
        assert stored.platform_post_ids == {"facebook": "facebook-post-1"}

    def test_republish_failure(self, orchestrator, publishers, store, make_blog, failure):
        blog = make_blog(status=BlogStatus.DEACTIVATED)
        publishers["facebook"].publish_results = [failure()]

        with pytest.raises(PublishFailedError):
            orchestrator.republish(blog, "facebook")

        assert store.get(blog.id).status == BlogStatus.DEACTIVATED

    def test_republish_requires_prior_publish(self, orchestrator, make_blog):
        with pytest.raises(InvalidStatusTransitionError):
            orchestrator.republish(make_blog(status=BlogStatus.ACTIVE))


class TestScheduledSweep:
    def test_due_blogs_are_published(self, orchestrator, publishers, store, make_blog):
        now = utcnow()
        due = make_blog(scheduled_at=now - timedelta(minutes=5))
        later = make_blog(title="Later", scheduled_at=now + timedelta(hours=1))

        results = orchestrator.publish_due_blogs(now)

        assert list(results) == [due.id]
        assert store.get(due.id).status == BlogStatus.PUBLISHED
        assert store.get(later.id).status == BlogStatus.ACTIVE

    def test_failing_blog_stays_active_and_sweep_continues(self, orchestrator, publishers, store, make_blog, failure):
        now = utcnow()
        failing = make_blog(title="Failing", scheduled_at=now - timedelta(minutes=10))
        succeeding = make_blog(title="Succeeding", scheduled_at=now - timedelta(minutes=5))
        publishers["facebook"].publish_results = [failure()]

        results = orchestrator.publish_due_blogs(now)

        assert results[failing.id].all_failed is True
        assert store.get(failing.id).status == BlogStatus.ACTIVE
        assert store.get(succeeding.id).status == BlogStatus.PUBLISHED

    def test_incomplete_blog_is_skipped(self, orchestrator, store, make_blog):
        now = utcnow()
        blog = make_blog(short_description="", scheduled_at=now - timedelta(minutes=1))

        assert orchestrator.publish_due_blogs(now) == {}
        assert store.get(blog.id).status == BlogStatus.ACTIVE


class TestRemoteDeletion:
    def _published(self, orchestrator, make_blog):
        blog = make_blog()
        orchestrator.transition_status(blog, BlogStatus.PUBLISHED)
        return blog

    def test_delete_only_post_deactivates_blog(self, orchestrator, publishers, store, notifier, make_blog):
        blog = self._published(orchestrator, make_blog)

        updated = orchestrator.delete_remote_post("facebook", "facebook-post-1")

        assert updated.id == blog.id
        stored = store.get(blog.id)
        assert stored.status == BlogStatus.DEACTIVATED
        assert stored.platform_post_ids == {}
        assert stored.post_ids == []
        assert stored.social_media_published is False
        assert publishers["facebook"].deleted == ["facebook-post-1"]
        notifier.notify_post_deleted.assert_called_once_with("Launch Day", "facebook", "facebook-post-1")

    def test_failed_remote_delete_leaves_blog_unchanged(self, orchestrator, publishers, store, make_blog, failure):
        blog = self._published(orchestrator, make_blog)
        before = store.get(blog.id)
        publishers["facebook"].delete_results = [failure()]

        with pytest.raises(RemoteAPIError):
            orchestrator.delete_remote_post("facebook", "facebook-post-1")

        after = store.get(blog.id)
        assert after.status == BlogStatus.PUBLISHED
        assert after.platform_post_ids == before.platform_post_ids
        assert after.social_media_published is True

    def test_remote_delete_runs_without_write_lock(self, orchestrator, publishers, store, make_blog):
        blog = self._published(orchestrator, make_blog)
        original_delete = publishers["facebook"].delete
        lock_states = []

        def delete(post_id):
            conn = sqlite3.connect(store.db_path, timeout=0.1)
            try:
                conn.execute("BEGIN IMMEDIATE")
                conn.rollback()
                lock_states.append("free")
            except sqlite3.OperationalError:
                lock_states.append("locked")
            finally:
                conn.close()
            return original_delete(post_id)

        with patch.object(publishers["facebook"], "delete", side_effect=delete):
            orchestrator.delete_remote_post("facebook", "facebook-post-1")

        assert lock_states == ["free"]
        assert store.get(blog.id).status == BlogStatus.DEACTIVATED

    def test_delete_unknown_post(self, orchestrator, publishers):
        assert orchestrator.delete_remote_post("facebook", "not-ours") is None
        assert publishers["facebook"].deleted == ["not-ours"]

    def test_commit_failure_is_compensated(self, orchestrator, store, make_blog):
        blog = self._published(orchestrator, make_blog)
        original = store.transaction
        failed = []

        @contextmanager
        def flaky_transaction():
            with original() as conn:
                yield conn
                if not failed:
                    failed.append(True)
                    raise sqlite3.OperationalError("disk I/O error")

        with patch.object(store, "transaction", flaky_transaction):
            orchestrator.delete_remote_post("facebook", "facebook-post-1")

        assert store.get(blog.id).status == BlogStatus.DEACTIVATED

    def test_uncompensated_failure_raises(self, orchestrator, store, make_blog):
        self._published(orchestrator, make_blog)
        original = store.transaction

        @contextmanager
        def broken_transaction():
            with original() as conn:
                yield conn
                raise sqlite3.OperationalError("disk I/O error")

        with patch.object(store, "transaction", broken_transaction):
            with pytest.raises(ReconciliationError):
                orchestrator.delete_remote_post("facebook", "facebook-post-1")

    def test_unsupported_operation(self, orchestrator):
        with pytest.raises(UnsupportedOperationError):
            orchestrator.comment("linkedin", "urn:li:share:1", "hi")
