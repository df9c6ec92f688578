"""Schema Package - JSON Schema Loading and Validation.

This package provides centralized loading and access to the JSON schemas
used to validate blog content before publishing and the request bodies of
the HTTP surface.

Schemas are loaded once at import time and exposed as module-level
constants.

Available Schemas:
    BLOG_CONTENT_SCHEMA: Fields required before a blog is published
    BLOG_UPDATE_SCHEMA: Body of PUT /blogs/<id>
    SOCIAL_POST_MESSAGE_SCHEMA: Body of the edit and comment endpoints
    SOCIAL_POST_SHARE_SCHEMA: Optional body of the share endpoint

Usage Patterns:
    from schema import BLOG_CONTENT_SCHEMA
    Draft7Validator(BLOG_CONTENT_SCHEMA).iter_errors(fields)
"""
from .schema import (
    BLOG_CONTENT_SCHEMA,
    BLOG_UPDATE_SCHEMA,
    SOCIAL_POST_MESSAGE_SCHEMA,
    SOCIAL_POST_SHARE_SCHEMA,
    get_blog_content_schema,
)

__all__ = [
    "BLOG_CONTENT_SCHEMA",
    "BLOG_UPDATE_SCHEMA",
    "SOCIAL_POST_MESSAGE_SCHEMA",
    "SOCIAL_POST_SHARE_SCHEMA",
    "get_blog_content_schema",
]
