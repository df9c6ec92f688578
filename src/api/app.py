"""
Blog Syndicator HTTP API - Flask Application.

Thin HTTP layer over PublishOrchestrator. It validates request bodies
against JSON schemas, calls the orchestrator and maps its errors to JSON
responses.

Endpoints:
    PUT    /blogs/<id>                               Update fields and/or status
    POST   /blogs/<id>/retry                         Retry platforms without a post id
    POST   /social-posts/republish/<blog_id>         Publish again to one platform
    GET    /social-posts                             List remote posts (cursor paginated)
    GET    /social-posts/<platform>/<post_id>        Show one remote post
    PUT    /social-posts/<platform>/<post_id>        Edit a remote post's message
    DELETE /social-posts/<platform>/<post_id>        Delete a remote post and deactivate its blog
    POST   /social-posts/comment/<platform>/<id>     Comment on a remote post
    POST   /social-posts/boost/<platform>/<id>       Boost a remote post
    POST   /social-posts/share/<platform>/<id>       Share a remote post
    GET    /social-media-platforms                   Platforms and their capabilities
    GET    /health                                   Liveness
    POST   /healthcheck                              Verify every enabled service
    GET    /debug/facebook-pages                     Pages the Facebook token manages

Error Handling:
    Every error response has the shape
        {"status": "error", "error": "<kind>", "message": "..."}
    - 400: Malformed request or unknown platform
    - 404: Blog not found
    - 422: Validation failure, forbidden status change, or the platform
           rejected the operation (every platform for a publish)
    - 500: Local reconciliation failure or unexpected error

    A publish where only some platforms succeeded is a 200 with a
    per-platform breakdown.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask import Flask, request, jsonify, current_app
from flask_cors import CORS
from jsonschema import validate, ValidationError

from blog.models import (
    BlogNotFoundError,
    PublishFailedError,
    ReconciliationError,
    ContentValidationError,
    SyndicatorError,
)
from config import load_config
from notifications.pushover import PushoverNotifier
from schema import BLOG_UPDATE_SCHEMA, SOCIAL_POST_MESSAGE_SCHEMA, SOCIAL_POST_SHARE_SCHEMA
from social import PUBLISHER_CLASSES, supported_operations

# Logging is configured in syndicator.main() - this module uses the configured logger
logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 25
MAX_LIST_LIMIT = 100


class RequestValidationError(Exception):
    """Raised when a request is malformed or fails schema validation.

    Attributes:
        message: Human-readable error description including field path
        status_code: HTTP status to answer with
    """

    def __init__(self, message: str, status_code: int = 422):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def validate_request(payload: Any, schema: Dict[str, Any]) -> None:
    """Validate a request body against a JSON schema.

    Raises:
        RequestValidationError: With the failing path and constraint
    """
    try:
        validate(instance=payload, schema=schema)
    except ValidationError as e:
        path_str = ".".join(str(p) for p in e.path)
        raise RequestValidationError(f"Schema validation failed: {e.message} at path: {path_str}") from e


def _json_body(required: bool = True) -> Dict[str, Any]:
    if not request.data and not required:
        return {}
    if not request.is_json:
        raise RequestValidationError("Content-Type must be application/json", 400)
    payload = request.get_json(silent=True)
    if payload is None:
        raise RequestValidationError("Request body must be valid JSON", 400)
    return payload


def _check_platform(platform: str) -> str:
    platform = (platform or "").strip().lower()
    if platform not in PUBLISHER_CLASSES:
        raise RequestValidationError(f"Invalid platform: {platform}", 400)
    return platform


def _error_status(error: SyndicatorError) -> int:
    if isinstance(error, BlogNotFoundError):
        return 404
    if isinstance(error, ReconciliationError):
        return 500
    return 422


def create_app(orchestrator, config: Optional[Dict[str, Any]] = None,
               notifier: Optional[PushoverNotifier] = None, scheduler=None) -> Flask:
    """Factory function to create and configure the Flask application.

    Args:
        orchestrator: PublishOrchestrator handling every publish and post operation
        config: Optional configuration dictionary (loaded from config.yml if None)
        notifier: Optional PushoverNotifier (created from config if None)
        scheduler: Optional ScheduledPublisher reported by the health endpoint

    Returns:
        Configured Flask application instance

    Example:
        >>> app = create_app(orchestrator, config)
        >>> client = app.test_client()
    """
    app = Flask(__name__)

    if config is None:
        config = load_config()

    # Configure CORS for the admin front-end
    cors_config = config.get("cors", {})
    if cors_config.get("enabled", False):
        cors_origins = cors_config.get("origins", [])
        if cors_origins:
            CORS(app, origins=cors_origins)
            logger.info(f"CORS enabled for origins: {cors_origins}")
        else:
            logger.warning("CORS enabled but no origins configured")
    else:
        logger.info("CORS is disabled in configuration")

    if notifier is None:
        notifier = PushoverNotifier.from_config(config)
    app.config["ORCHESTRATOR"] = orchestrator
    app.config["PUSHOVER_NOTIFIER"] = notifier
    app.config["SCHEDULER"] = scheduler

    # =================================================================
    # Error handlers
    # =================================================================

    @app.errorhandler(RequestValidationError)
    def handle_request_error(e: RequestValidationError):
        logger.warning(f"Rejected request {request.method} {request.path}: {e.message}")
        return jsonify({"status": "error", "error": "invalid_request", "message": e.message}), e.status_code

    @app.errorhandler(SyndicatorError)
    def handle_syndicator_error(e: SyndicatorError):
        status = _error_status(e)
        body: Dict[str, Any] = {"status": "error", "error": e.kind, "message": e.message}
        if isinstance(e, ContentValidationError):
            body["errors"] = e.errors
        if isinstance(e, PublishFailedError):
            body["outcome"] = e.outcome.to_dict()
        if status >= 500:
            logger.error(f"{request.method} {request.path} failed: {e.message}")
        else:
            logger.warning(f"{request.method} {request.path} rejected: {e.message}")
        return jsonify(body), status

    @app.errorhandler(Exception)
    def handle_unexpected_error(e: Exception):
        # Let Flask render its own HTTP errors (404 for unknown routes, 405, ...)
        code = getattr(e, "code", None)
        if isinstance(code, int) and code < 500:
            return jsonify({"status": "error", "error": "http_error", "message": str(e)}), code
        logger.error(f"Unexpected error processing {request.method} {request.path}: {e}", exc_info=True)
        return jsonify({"status": "error", "error": "internal_error", "message": "Internal server error"}), 500

    # =================================================================
    # Blogs
    # =================================================================

    @app.route("/blogs/<int:blog_id>", methods=["PUT"])
    def update_blog(blog_id: int):
        """Update a blog; entering ``published`` publishes it synchronously.

        Request Format:
            PUT /blogs/7
            {"status": "published", "platforms": ["facebook"]}

        Success Response (200):
            {"status": "success", "blog": {...}, "publish": {"success": true, "partial": false, ...}}
        """
        payload = _json_body()
        validate_request(payload, BLOG_UPDATE_SCHEMA)

        orchestrator = current_app.config["ORCHESTRATOR"]
        outcome = orchestrator.update_blog(blog_id, payload)
        blog = orchestrator.get_blog(blog_id)

        logger.info(f"Updated blog {blog_id}: status={blog.status}")
        return jsonify({
            "status": "success",
            "message": "Blog updated successfully",
            "blog": blog.to_dict(),
            "publish": outcome.to_dict() if outcome.attempts else None,
        }), 200

    @app.route("/blogs/<int:blog_id>/retry", methods=["POST"])
    def retry_blog(blog_id: int):
        """Retry the platforms of a published blog that have no post id yet."""
        payload = _json_body(required=False)
        platforms = payload.get("platforms") if isinstance(payload, dict) else None
        if platforms is not None and not isinstance(platforms, list):
            raise RequestValidationError("platforms must be a list")

        orchestrator = current_app.config["ORCHESTRATOR"]
        blog = orchestrator.get_blog(blog_id)
        outcome = orchestrator.retry(blog, platforms)
        if outcome.all_failed:
            raise PublishFailedError(f"Retry of blog {blog_id} failed on every platform", outcome)

        return jsonify({
            "status": "success",
            "blog": orchestrator.get_blog(blog_id).to_dict(),
            "publish": outcome.to_dict(),
        }), 200

    @app.route("/social-posts/republish/<int:blog_id>", methods=["POST"])
    def republish_blog(blog_id: int):
        """Publish a blog again to one platform (default facebook)."""
        payload = _json_body(required=False)
        platform = request.args.get("platform") or payload.get("platform") or "facebook"
        platform = _check_platform(platform)

        orchestrator = current_app.config["ORCHESTRATOR"]
        blog = orchestrator.get_blog(blog_id)
        outcome = orchestrator.republish(blog, platform)

        return jsonify({
            "status": "success",
            "message": "Blog republished successfully",
            "post_id": outcome.attempts[platform].remote_id,
        }), 200

    # =================================================================
    # Remote posts
    # =================================================================

    @app.route("/social-posts", methods=["GET"])
    def list_social_posts():
        """List recent posts on a platform.

        Query Parameters:
            platform: facebook (default), instagram, linkedin
            limit: 1-100 (default 25)
            after: Cursor from a previous page's next_cursor
        """
        platform = _check_platform(request.args.get("platform", "facebook"))
        try:
            limit = int(request.args.get("limit", DEFAULT_LIST_LIMIT))
        except ValueError:
            raise RequestValidationError("limit must be an integer")
        if not 1 <= limit <= MAX_LIST_LIMIT:
            raise RequestValidationError(f"limit must be between 1 and {MAX_LIST_LIMIT}")

        data = current_app.config["ORCHESTRATOR"].list_posts(platform, limit, request.args.get("after"))
        return jsonify(data), 200

    @app.route("/social-posts/<platform>/<post_id>", methods=["GET"])
    def show_social_post(platform: str, post_id: str):
        platform = _check_platform(platform)
        data = current_app.config["ORCHESTRATOR"].get_post(platform, post_id)
        return jsonify(data), 200

    @app.route("/social-posts/<platform>/<post_id>", methods=["PUT"])
    def update_social_post(platform: str, post_id: str):
        platform = _check_platform(platform)
        payload = _json_body()
        validate_request(payload, SOCIAL_POST_MESSAGE_SCHEMA)

        current_app.config["ORCHESTRATOR"].update_post(platform, post_id, payload["message"])
        return jsonify({"status": "success", "message": "Post updated successfully"}), 200

    @app.route("/social-posts/<platform>/<post_id>", methods=["DELETE"])
    def delete_social_post(platform: str, post_id: str):
        """Delete a remote post and deactivate the blog that referenced it."""
        platform = _check_platform(platform)
        blog = current_app.config["ORCHESTRATOR"].delete_remote_post(platform, post_id)
        return jsonify({
            "status": "success",
            "message": "Post deleted successfully and database updated",
            "blog_updated": blog is not None,
            "blog_id": blog.id if blog else None,
        }), 200

    @app.route("/social-posts/comment/<platform>/<post_id>", methods=["POST"])
    def comment_social_post(platform: str, post_id: str):
        platform = _check_platform(platform)
        payload = _json_body()
        validate_request(payload, SOCIAL_POST_MESSAGE_SCHEMA)

        result = current_app.config["ORCHESTRATOR"].comment(platform, post_id, payload["message"])
        return jsonify({"status": "success", "message": "Comment posted", "comment_id": result.remote_id}), 200

    @app.route("/social-posts/boost/<platform>/<post_id>", methods=["POST"])
    def boost_social_post(platform: str, post_id: str):
        platform = _check_platform(platform)
        current_app.config["ORCHESTRATOR"].boost(platform, post_id)
        return jsonify({"status": "success", "message": "Post boosted"}), 200

    @app.route("/social-posts/share/<platform>/<post_id>", methods=["POST"])
    def share_social_post(platform: str, post_id: str):
        platform = _check_platform(platform)
        payload = _json_body(required=False)
        validate_request(payload, SOCIAL_POST_SHARE_SCHEMA)

        result = current_app.config["ORCHESTRATOR"].share(platform, post_id, payload.get("message"))
        return jsonify({"status": "success", "message": "Post shared", "post_id": result.remote_id}), 200

    # =================================================================
    # Platforms and health
    # =================================================================

    @app.route("/social-media-platforms", methods=["GET"])
    def list_platforms():
        """Report every known platform, whether it is enabled and what it supports."""
        publishers = current_app.config["ORCHESTRATOR"].publishers
        platforms = []
        for name, publisher_class in PUBLISHER_CLASSES.items():
            publisher = publishers.get(name)
            platforms.append({
                "name": name,
                "enabled": publisher is not None,
                "max_post_length": publisher.max_post_length if publisher else publisher_class.MAX_POST_LENGTH,
                "operations": supported_operations(publisher or publisher_class),
            })
        return jsonify({"platforms": platforms}), 200

    @app.route("/health", methods=["GET"])
    def health_check():
        """Health check endpoint for monitoring and load balancers.

        Example:
            $ curl http://localhost:5000/health
            {"status": "healthy"}
        """
        response: Dict[str, Any] = {"status": "healthy"}
        scheduler = current_app.config.get("SCHEDULER")
        if scheduler is not None:
            response["scheduler"] = "running" if scheduler.running else "stopped"
        return jsonify(response), 200

    @app.route("/healthcheck", methods=["POST"])
    def comprehensive_healthcheck():
        """Verify the credentials of every enabled platform and Pushover.

        Success Response (200):
            {
              "status": "healthy",   // or "unhealthy" if any service fails
              "timestamp": "...",
              "services": {
                "facebook": {"status": "healthy", "target_id": "123"},
                "pushover": {"enabled": true, "status": "healthy"}
              }
            }
        """
        orchestrator = current_app.config["ORCHESTRATOR"]
        pushover = current_app.config.get("PUSHOVER_NOTIFIER")

        response: Dict[str, Any] = {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "services": {},
        }
        overall_healthy = True

        for name, publisher in orchestrator.publishers.items():
            result = publisher.verify_credentials()
            if result.success:
                response["services"][name] = {"status": "healthy", "target_id": result.remote_id}
                logger.info(f"Healthcheck: {name} is healthy")
            else:
                response["services"][name] = {"status": "unhealthy", "error": result.error_kind}
                overall_healthy = False
                logger.warning(f"Healthcheck: {name} failed credential verification: {result.error}")

        if pushover is not None and pushover.enabled:
            sent = pushover.send_test_notification()
            response["services"]["pushover"] = {"enabled": True, "status": "healthy" if sent else "unhealthy"}
            overall_healthy = overall_healthy and sent
        else:
            response["services"]["pushover"] = {"enabled": False}

        if not overall_healthy:
            response["status"] = "unhealthy"
        return jsonify(response), 200

    @app.route("/debug/facebook-pages", methods=["GET"])
    def debug_facebook_pages():
        """List the pages the configured Facebook token can manage (tokens removed)."""
        orchestrator = current_app.config["ORCHESTRATOR"]
        publisher = orchestrator.publisher_for("facebook")
        result = orchestrator._require(publisher.list_pages(), "list pages", "facebook")
        return jsonify({"pages": result.data}), 200

    return app


# Note: Do not create a module-level app instance.
# Always use create_app(orchestrator) so dependencies are injected.
