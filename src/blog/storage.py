"""SQLite-backed storage for blogs and the social media audit log."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from blog.models import Blog, BlogNotFoundError, BlogStatus, PublishAttempt, slugify, utcnow

logger = logging.getLogger(__name__)


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    # Naive timestamps are stored as UTC
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _row_to_blog(row: sqlite3.Row) -> Blog:
    return Blog(
        id=row["id"],
        title=row["title"],
        type=row["type"],
        short_description=row["short_description"],
        long_description=row["long_description"],
        image_url=row["image_url"],
        video_url=row["video_url"],
        document=row["document"],
        status=row["status"],
        slug=row["slug"],
        platforms=json.loads(row["platforms"] or "[]"),
        published_at=_from_iso(row["published_at"]),
        social_media_published=bool(row["social_media_published"]),
        platform_post_ids=json.loads(row["platform_post_ids"] or "{}"),
        post_ids=json.loads(row["post_ids"] or "[]"),
        scheduled_at=_from_iso(row["scheduled_at"]),
        created_at=_from_iso(row["created_at"]),
        updated_at=_from_iso(row["updated_at"]),
    )


class BlogStore:
    """Persistent blog storage backed by SQLite.

    All platform post-id bookkeeping goes through ``save()``; callers that
    need several writes to succeed or fail together use ``transaction()``
    and pass the yielded connection to each call.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        db_dir = os.path.dirname(os.path.abspath(self.db_path))
        os.makedirs(db_dir, mode=0o755, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS blogs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    type TEXT NOT NULL DEFAULT '',
                    short_description TEXT NOT NULL DEFAULT '',
                    long_description TEXT NOT NULL DEFAULT '',
                    image_url TEXT,
                    video_url TEXT,
                    document TEXT,
                    status TEXT NOT NULL DEFAULT 'inactive',
                    slug TEXT NOT NULL UNIQUE,
                    platforms TEXT,
                    published_at TEXT,
                    social_media_published INTEGER NOT NULL DEFAULT 0,
                    platform_post_ids TEXT,
                    post_ids TEXT,
                    scheduled_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_blogs_status_scheduled "
                "ON blogs(status, scheduled_at)"
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS social_media_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    blog_id INTEGER NOT NULL REFERENCES blogs(id) ON DELETE CASCADE,
                    platform TEXT NOT NULL,
                    platform_post_id TEXT,
                    success INTEGER NOT NULL,
                    response TEXT,
                    error TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_logs_blog_id "
                "ON social_media_logs(blog_id)"
            )

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction that commits only if the block completes.

        Example:
            >>> with store.transaction() as conn:
            ...     store.save(blog, conn=conn)
            ...     if not remote_call_succeeded:
            ...         raise RuntimeError("rollback")
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    # -------------------------------------------------------------------------
    # Blogs
    # -------------------------------------------------------------------------

    def unique_slug(self, title: str, exclude_id: Optional[int] = None,
                    conn: Optional[sqlite3.Connection] = None) -> str:
        """Return a slug for ``title`` not used by any other blog."""
        base = slugify(title)
        slug = base
        counter = 1
        while self._slug_taken(slug, exclude_id, conn):
            slug = f"{base}-{counter}"
            counter += 1
        return slug

    def _slug_taken(self, slug: str, exclude_id: Optional[int],
                    conn: Optional[sqlite3.Connection]) -> bool:
        query = "SELECT 1 FROM blogs WHERE slug = ?"
        params: List[Any] = [slug]
        if exclude_id is not None:
            query += " AND id != ?"
            params.append(exclude_id)
        if conn is not None:
            return conn.execute(query, params).fetchone() is not None
        with self._connect() as own:
            return own.execute(query, params).fetchone() is not None

    def create(self, blog: Blog) -> Blog:
        """Insert a new blog, assigning its slug and timestamps."""
        now = utcnow()
        blog.slug = self.unique_slug(blog.title)
        blog.created_at = now
        blog.updated_at = now
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO blogs (
                    title, type, short_description, long_description, image_url,
                    video_url, document, status, slug, platforms, published_at,
                    social_media_published, platform_post_ids, post_ids,
                    scheduled_at, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                self._values(blog),
            )
            blog.id = cursor.lastrowid
        logger.info(f"Created blog {blog.id} with slug '{blog.slug}'")
        return blog

    def save(self, blog: Blog, conn: Optional[sqlite3.Connection] = None) -> Blog:
        """Write every field of an existing blog.

        Raises:
            BlogNotFoundError: If the blog has no id or no longer exists
        """
        if blog.id is None:
            raise BlogNotFoundError("Cannot save a blog that has not been created")

        blog.updated_at = utcnow()
        params = self._values(blog)[:-2] + (_to_iso(blog.updated_at), blog.id)
        query = """
            UPDATE blogs SET
                title = ?, type = ?, short_description = ?, long_description = ?,
                image_url = ?, video_url = ?, document = ?, status = ?, slug = ?,
                platforms = ?, published_at = ?, social_media_published = ?,
                platform_post_ids = ?, post_ids = ?, scheduled_at = ?, updated_at = ?
            WHERE id = ?
        """
        if conn is not None:
            cursor = conn.execute(query, params)
        else:
            with self._connect() as own:
                cursor = own.execute(query, params)
        if cursor.rowcount == 0:
            raise BlogNotFoundError(f"Blog {blog.id} not found")
        return blog

    @staticmethod
    def _values(blog: Blog) -> tuple:
        return (
            blog.title,
            blog.type,
            blog.short_description,
            blog.long_description,
            blog.image_url,
            blog.video_url,
            blog.document,
            blog.status,
            blog.slug,
            json.dumps(list(blog.platforms)),
            _to_iso(blog.published_at),
            int(blog.social_media_published),
            json.dumps(dict(blog.platform_post_ids)),
            json.dumps(list(blog.post_ids)),
            _to_iso(blog.scheduled_at),
            _to_iso(blog.created_at),
            _to_iso(blog.updated_at),
        )

    def get(self, blog_id: int, conn: Optional[sqlite3.Connection] = None) -> Optional[Blog]:
        query = "SELECT * FROM blogs WHERE id = ?"
        if conn is not None:
            row = conn.execute(query, (blog_id,)).fetchone()
        else:
            with self._connect() as own:
                row = own.execute(query, (blog_id,)).fetchone()
        return _row_to_blog(row) if row else None

    def find_by_post_id(self, post_id: str,
                        conn: Optional[sqlite3.Connection] = None) -> Optional[Blog]:
        """Find the blog that references a remote post id."""
        query = (
            "SELECT blogs.* FROM blogs, json_each(blogs.post_ids) "
            "WHERE json_each.value = ? LIMIT 1"
        )
        if conn is not None:
            row = conn.execute(query, (post_id,)).fetchone()
        else:
            with self._connect() as own:
                row = own.execute(query, (post_id,)).fetchone()
        return _row_to_blog(row) if row else None

    def list_due(self, now: datetime) -> List[Blog]:
        """Return active blogs whose scheduled time has passed."""
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM blogs WHERE status = ? AND scheduled_at IS NOT NULL "
                "ORDER BY scheduled_at",
                (BlogStatus.ACTIVE,),
            ).fetchall()
        blogs = [_row_to_blog(row) for row in rows]
        return [blog for blog in blogs if blog.scheduled_at and blog.scheduled_at <= now]

    def list(self, status: Optional[str] = None) -> List[Blog]:
        with self._connect() as conn:
            if status:
                rows = conn.execute(
                    "SELECT * FROM blogs WHERE status = ? ORDER BY created_at DESC", (status,)
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM blogs ORDER BY created_at DESC").fetchall()
        return [_row_to_blog(row) for row in rows]

    # -------------------------------------------------------------------------
    # Audit log
    # -------------------------------------------------------------------------

    def append_log(self, blog_id: int, attempt: PublishAttempt,
                   conn: Optional[sqlite3.Connection] = None) -> None:
        """Append one publish attempt to the audit log. Rows are never updated."""
        params = (
            blog_id,
            attempt.platform,
            attempt.remote_id,
            int(attempt.success),
            json.dumps(attempt.response) if attempt.response is not None else None,
            attempt.error,
            _to_iso(attempt.timestamp),
        )
        query = (
            "INSERT INTO social_media_logs "
            "(blog_id, platform, platform_post_id, success, response, error, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)"
        )
        try:
            if conn is not None:
                conn.execute(query, params)
            else:
                with self._connect() as own:
                    own.execute(query, params)
        except sqlite3.Error as e:
            logger.error(f"Failed to write audit log for blog {blog_id} ({attempt.platform}): {e}")

    def get_logs(self, blog_id: int) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM social_media_logs WHERE blog_id = ? ORDER BY id",
                (blog_id,),
            ).fetchall()
        logs = []
        for row in rows:
            entry = dict(row)
            entry["success"] = bool(entry["success"])
            entry["response"] = json.loads(entry["response"]) if entry["response"] else None
            logs.append(entry)
        return logs
