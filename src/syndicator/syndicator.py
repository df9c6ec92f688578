"""
Blog Syndicator entry point.

The syndicator entry point embeds Gunicorn to run the HTTP API as a
production-ready WSGI application, which:
1. Accepts blog status changes from the CMS admin (PUT /blogs/<id>)
2. Publishes blogs entering ``published`` to their social media platforms
3. Manages the remote posts afterwards (edit, delete, comment, boost, share)
4. Runs the scheduled publisher sweep in a background thread

Functions:
    configure_logging(debug, notifier) -> None:
        Root logger setup with a rotating file and stdout
    build_services(config, notifier) -> (store, orchestrator, scheduler):
        Wire the storage, publishers and scheduler from config.yml
    main() -> None:
        Entry point for the console script. Starts Gunicorn on port 5000.

Example:
    Run via console script:
        $ syndicator
        Gunicorn server is ready to accept connections
"""
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional, Tuple

from blog.storage import BlogStore
from config import DEFAULT_TOKEN_CACHE_TTL, load_config
from notifications.pushover import PushoverLoggingHandler, PushoverNotifier
from social.credentials import TokenCache
from syndicator.orchestrator import PublishOrchestrator
from syndicator.scheduler import ScheduledPublisher

logger = logging.getLogger(__name__)

LOG_FILE = "syndicator.log"


def configure_logging(debug: bool = False, notifier: Optional[PushoverNotifier] = None) -> None:
    """Configure global logging with a 10MB rotating file and stdout.

    Args:
        debug: Log at DEBUG instead of INFO
        notifier: When enabled, ERROR and CRITICAL records are also pushed via Pushover
    """
    log_level = logging.DEBUG if debug else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear any existing handlers to avoid duplicates (e.g., from gunicorn)
    root_logger.handlers.clear()

    log_handler = RotatingFileHandler(
        LOG_FILE,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=3
    )
    log_handler.setLevel(log_level)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    log_handler.setFormatter(formatter)
    root_logger.addHandler(log_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if notifier is not None and notifier.enabled:
        pushover_handler = PushoverLoggingHandler(notifier)
        pushover_handler.setFormatter(formatter)
        root_logger.addHandler(pushover_handler)


def build_services(config: Dict[str, Any],
                   notifier: PushoverNotifier) -> Tuple[BlogStore, PublishOrchestrator, ScheduledPublisher]:
    """Create the blog store, orchestrator and scheduler from configuration."""
    database_path = config.get("database_path", "./data/blogs.db")
    logger.info(f"Opening blog database at {database_path}")
    store = BlogStore(database_path)

    cache = TokenCache(default_ttl=config.get("token_cache_ttl_seconds", DEFAULT_TOKEN_CACHE_TTL))
    orchestrator = PublishOrchestrator.from_config(config, store, notifier=notifier, cache=cache)
    logger.info(f"Initialized {len(orchestrator.publishers)} publisher(s)")
    for name, publisher in orchestrator.publishers.items():
        logger.info(f"  - {name} enabled (max {publisher.max_post_length} characters)")

    scheduler_config = config.get("scheduler", {})
    scheduler = ScheduledPublisher(
        orchestrator,
        interval_seconds=scheduler_config.get("interval_seconds", 60),
        enabled=scheduler_config.get("enabled", False),
        notifier=notifier,
        timezone_name=config.get("timezone", "UTC"),
    )
    return store, orchestrator, scheduler


def main(debug: bool = False) -> None:
    """Main entry point for the syndicator console command.

    Args:
        debug: Enable debug mode with infinite timeout for breakpoint debugging.
               Can be set via --debug flag or SYNDICATOR_DEBUG environment variable.

    Architecture:
        syndicator main() -> Gunicorn -> Flask app -> PublishOrchestrator

    Gunicorn Configuration (src/api/gunicorn_config.py):
        - Single worker so the token cache and scheduler live in one process
        - All logs to stdout/stderr for Docker visibility
        - The scheduler is started by a post_worker_init hook
    """
    from gunicorn.app.base import BaseApplication
    from api.app import create_app

    if not debug:
        debug = os.environ.get("SYNDICATOR_DEBUG", "").lower() in ("true", "1", "yes")
        if len(sys.argv) > 1 and "--debug" in sys.argv:
            debug = True

    configure_logging(debug)
    if debug:
        logger.info("Debug mode enabled: verbose logging and worker timeout disabled for breakpoint debugging")

    logger.info("Loading configuration from config.yml")
    config = load_config()

    notifier = PushoverNotifier.from_config(config)
    # Reconfigure now that the notifier is known
    configure_logging(debug, notifier)

    store, orchestrator, scheduler = build_services(config, notifier)
    app = create_app(orchestrator, config=config, notifier=notifier, scheduler=scheduler)

    config_path = os.path.join(os.path.dirname(__file__), "..", "api", "gunicorn_config.py")

    class StandaloneApplication(BaseApplication):
        """Custom Gunicorn application for embedding within the syndicator entry point."""

        def __init__(self, app, options=None):
            self.options = options or {}
            self.application = app
            super().__init__()

        def load_config(self):
            config_file = self.options.get("config")
            if config_file:
                self.cfg.set("config", config_file)
                # Execute the config file to load settings
                with open(config_file, "r") as f:
                    config_code = f.read()
                config_namespace = {}
                exec(config_code, config_namespace)
                for key, value in config_namespace.items():
                    if key in self.cfg.settings and value is not None:
                        self.cfg.set(key.lower(), value)

                def post_worker_init_hook(worker):
                    """Start the scheduled publisher after worker initialization."""
                    worker.log.info(f"Starting scheduled publisher in worker {worker.pid}")
                    self.options["scheduler"].start()

                self.cfg.set("post_worker_init", post_worker_init_hook)

                if self.options.get("debug"):
                    self.cfg.set("timeout", 0)

        def load(self):
            return self.application

    options = {
        "config": config_path,
        "debug": debug,
        "scheduler": scheduler,
    }
    StandaloneApplication(app, options).run()


# Allow running as a script for development/testing
if __name__ == "__main__":
    main()
