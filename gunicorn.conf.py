import os


def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, "") or "").strip() or default)
    except Exception:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = str(os.getenv(name, "") or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


wsgi_app = "app:create_app()"
bind = f"{os.getenv('HOST', '0.0.0.0').strip() or '0.0.0.0'}:{_env_int('PORT', 5002)}"

# Grid queries and inline event pipelines are I/O bound (DB, notify webhook).
worker_class = os.getenv("GUNICORN_WORKER_CLASS", "gthread").strip() or "gthread"
workers = max(1, _env_int("WEB_CONCURRENCY", 2))
threads = max(1, _env_int("PYTHON_THREADS", 4))

preload_app = _env_bool("GUNICORN_PRELOAD_APP", False)

# Inline (EVENTS_ASYNC=0) batches of events can take a while.
timeout = max(10, _env_int("GUNICORN_TIMEOUT", 120))
graceful_timeout = max(5, _env_int("GUNICORN_GRACEFUL_TIMEOUT", 30))
keepalive = max(1, _env_int("GUNICORN_KEEPALIVE", 30))

accesslog = "-"
errorlog = "-"
loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info").strip().lower()

max_requests = max(0, _env_int("GUNICORN_MAX_REQUESTS", 1000))
max_requests_jitter = max(0, _env_int("GUNICORN_MAX_REQUESTS_JITTER", 50))


def post_fork(server, worker):
    # A preloaded app opened its pool in the master; workers must not share those sockets.
    if not preload_app:
        return
    import db

    if db.engine is not None:
        db.engine.dispose(close=False)
