"""Syndicator HTTP API Package.

This package provides the Flask application the CMS admin talks to:
blog status changes (which publish synchronously), remote post
management and health checks.

Key Components:
    create_app: Factory building the Flask app around a PublishOrchestrator

Usage:
    Start the API server:
        $ syndicator
"""
from .app import create_app, RequestValidationError, validate_request

__all__ = ["create_app", "RequestValidationError", "validate_request"]
