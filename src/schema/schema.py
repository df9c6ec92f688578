"""
Centralized JSON Schema Loading Module.

This module is responsible for loading JSON schema files from disk and
exposing them as module-level constants for use throughout the application.

Design Principles:
    1. Load Once: Schemas are loaded at module import time, not on every use
    2. Fail Fast: Missing or invalid schemas cause immediate import failure
    3. Clear Errors: File location and parse errors are clearly reported

File Location:
    Schemas are expected to be in the same directory as this module
    (src/schema/). The path is resolved using __file__ so it works
    regardless of the current working directory.

Error Handling:
    - FileNotFoundError: Schema file doesn't exist at expected path
    - json.JSONDecodeError: Schema file contains invalid JSON syntax
"""
import json
from pathlib import Path
from typing import Any, Dict

SCHEMA_DIR = Path(__file__).parent


def _load_schema(schema_filename: str) -> Dict[str, Any]:
    """
    Load a JSON schema file from the schema directory.

    Args:
        schema_filename: Name of the JSON schema file (e.g., "blog_content_schema.json")

    Returns:
        Parsed schema dictionary

    Raises:
        FileNotFoundError: If the schema file doesn't exist
        json.JSONDecodeError: If the schema file contains invalid JSON
    """
    schema_path = SCHEMA_DIR / schema_filename

    if not schema_path.exists():
        raise FileNotFoundError(
            f"Schema file not found: {schema_path}. "
            f"Expected location: {SCHEMA_DIR}"
        )

    try:
        with open(schema_path, "r") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise json.JSONDecodeError(
            f"Invalid JSON in schema file {schema_filename}: {e.msg}",
            e.doc,
            e.pos
        ) from e


# Fields a blog must carry before any remote publish call
BLOG_CONTENT_SCHEMA = _load_schema("blog_content_schema.json")

# Body of PUT /blogs/<id>
BLOG_UPDATE_SCHEMA = _load_schema("blog_update_schema.json")

# Body of the edit and comment endpoints
SOCIAL_POST_MESSAGE_SCHEMA = _load_schema("social_post_message_schema.json")

# Optional body of the share endpoint
SOCIAL_POST_SHARE_SCHEMA = _load_schema("social_post_share_schema.json")


def get_blog_content_schema() -> Dict[str, Any]:
    """
    Get the blog content JSON schema.

    Returns the same object as BLOG_CONTENT_SCHEMA; useful for mocking in
    tests and for dynamic schema selection.

    Example:
        >>> schema = get_blog_content_schema()
        >>> "title" in schema["required"]
        True
    """
    return BLOG_CONTENT_SCHEMA
