"""Blog Syndicator Package.

This package publishes CMS blog posts to social media platforms
(Facebook, Instagram, LinkedIn) and keeps the blog's publishing state
consistent with what actually happened on each platform.

Exported Functions:
    main: Entry point for the syndicator console command
"""
from .syndicator import main

__all__ = ["main"]
