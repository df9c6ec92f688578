"""Gunicorn configuration for the syndicator HTTP API.

All logs are sent to stdout/stderr for Docker visibility via
`docker compose logs`.
"""

import sys

# Bind to all interfaces on port 5000
bind = "0.0.0.0:5000"

# A single sync worker keeps the token cache and the scheduler in one process
workers = 1
worker_class = "sync"
worker_connections = 1000
# Publishing waits for every platform, so allow more than one request timeout
timeout = 180
keepalive = 2

accesslog = "-"
errorlog = "-"
loglevel = "info"

# %(h)s remote IP, %(r)s request line, %(s)s status, %(D)s request time in microseconds
access_log_format = (
    '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s '
    '"%(f)s" "%(a)s" %(D)s %(p)s'
)

capture_output = True
enable_stdio_inheritance = True


def on_starting(server):
    """Called just before the master process is initialized."""
    server.log.info("Starting Gunicorn for the blog syndicator")


def when_ready(server):
    """Called just after the server is started."""
    server.log.info("Gunicorn server is ready to accept connections")


def on_exit(server):
    """Called just before exiting Gunicorn."""
    server.log.info("Shutting down Gunicorn")


def worker_abort(worker):
    """Called when a worker receives a SIGABRT signal."""
    worker.log.error("Worker received SIGABRT signal - likely timeout")


preload_app = False
reload = False
daemon = False
pidfile = None

# Request limits
limit_request_line = 4096
limit_request_fields = 100
limit_request_field_size = 8190

logconfig_dict = {
    'version': 1,
    'disable_existing_loggers': False,
    'root': {
        'level': 'INFO',
        'handlers': ['console']
    },
    'loggers': {
        'gunicorn.error': {
            'level': 'INFO',
            'handlers': ['error_console'],
            'propagate': False,
            'qualname': 'gunicorn.error'
        },
        'gunicorn.access': {
            'level': 'INFO',
            'handlers': ['console'],
            'propagate': False,
            'qualname': 'gunicorn.access'
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'generic',
            'stream': sys.stdout
        },
        'error_console': {
            'class': 'logging.StreamHandler',
            'formatter': 'generic',
            'stream': sys.stderr
        },
    },
    'formatters': {
        'generic': {
            'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            'datefmt': '%Y-%m-%d %H:%M:%S',
            'class': 'logging.Formatter'
        }
    }
}
