"""
Blog Package.

Domain models, SQLite persistence and the status reconciler for blogs that
are republished to social media.
"""
from .models import Blog, BlogStatus, PublishAttempt, PublishOutcome
from .reconciler import BlogStatusReconciler
from .storage import BlogStore

__all__ = [
    "Blog",
    "BlogStatus",
    "PublishAttempt",
    "PublishOutcome",
    "BlogStatusReconciler",
    "BlogStore",
]
