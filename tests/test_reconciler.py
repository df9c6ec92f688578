"""
Unit Tests for BlogStatusReconciler.

Test Coverage:
    - Merging successful post ids and deduplicating post_ids
    - Status gating on first publish
    - published_at set once on the first successful publish
    - Remote deletion demoting the blog
"""
from datetime import datetime, timezone

import pytest

from blog.models import Blog, BlogStatus, PublishAttempt, PublishOutcome
from blog.reconciler import BlogStatusReconciler


@pytest.fixture
def reconciler():
    return BlogStatusReconciler()


def _outcome(**results):
    outcome = PublishOutcome()
    for platform, remote_id in results.items():
        outcome.add(PublishAttempt(platform=platform, success=remote_id is not None, remote_id=remote_id,
                                   error=None if remote_id else "failed"))
    return outcome


def test_partial_success(reconciler):
    blog = Blog(title="t", status=BlogStatus.ACTIVE, platforms=["facebook", "linkedin"])

    reconciler.apply_outcome(blog, _outcome(facebook="111_1", linkedin=None), first_publish=True)

    assert blog.status == BlogStatus.PUBLISHED
    assert blog.platform_post_ids == {"facebook": "111_1"}
    assert blog.post_ids == ["111_1"]
    assert blog.social_media_published is True
    assert blog.published_at is not None


def test_all_failed_keeps_active(reconciler):
    blog = Blog(title="t", status=BlogStatus.ACTIVE)

    reconciler.apply_outcome(blog, _outcome(facebook=None), first_publish=True)

    assert blog.status == BlogStatus.ACTIVE
    assert blog.social_media_published is False
    assert blog.published_at is None


def test_no_platforms_publishes_unconditionally(reconciler):
    blog = Blog(title="t", status=BlogStatus.ACTIVE)

    reconciler.apply_outcome(blog, PublishOutcome(), first_publish=True)

    assert blog.status == BlogStatus.PUBLISHED
    assert blog.social_media_published is False
    assert blog.published_at is not None


def test_published_at_not_overwritten(reconciler):
    first = datetime(2026, 1, 1, tzinfo=timezone.utc)
    blog = Blog(title="t", status=BlogStatus.PUBLISHED, platform_post_ids={"facebook": "1"},
                post_ids=["1"], social_media_published=True, published_at=first)

    reconciler.apply_outcome(blog, _outcome(linkedin="urn:li:share:2"))

    assert blog.published_at == first
    assert blog.post_ids == ["1", "urn:li:share:2"]


def test_post_ids_deduplicated(reconciler):
    blog = Blog(title="t", platform_post_ids={"facebook": "1"}, post_ids=["1"])

    reconciler.apply_outcome(blog, _outcome(facebook="1"))

    assert blog.post_ids == ["1"]


def test_remote_deletion_of_only_post(reconciler):
    blog = Blog(title="t", status=BlogStatus.PUBLISHED, platform_post_ids={"facebook": "1"},
                post_ids=["1"], social_media_published=True)

    reconciler.apply_remote_deletion(blog, "facebook", "1")

    assert blog.status == BlogStatus.DEACTIVATED
    assert blog.platform_post_ids == {}
    assert blog.post_ids == []
    assert blog.social_media_published is False


def test_remote_deletion_keeps_other_platforms(reconciler):
    blog = Blog(title="t", status=BlogStatus.PUBLISHED,
                platform_post_ids={"facebook": "1", "linkedin": "urn:li:share:2"},
                post_ids=["1", "urn:li:share:2"], social_media_published=True)

    reconciler.apply_remote_deletion(blog, "facebook", "1")

    assert blog.status == BlogStatus.DEACTIVATED
    assert blog.platform_post_ids == {"linkedin": "urn:li:share:2"}
    assert blog.social_media_published is True


def test_successful_republish_restores_published(reconciler):
    blog = Blog(title="t", status=BlogStatus.DEACTIVATED)

    reconciler.apply_republish(blog, _outcome(facebook="111_9"))

    assert blog.status == BlogStatus.PUBLISHED
    assert blog.platform_post_ids == {"facebook": "111_9"}


def test_failed_republish_keeps_status(reconciler):
    blog = Blog(title="t", status=BlogStatus.DEACTIVATED)

    reconciler.apply_republish(blog, _outcome(facebook=None))

    assert blog.status == BlogStatus.DEACTIVATED
