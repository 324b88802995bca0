import logging
import threading

logger = logging.getLogger(__name__)


def start_daemon_thread(target, args=(), kwargs=None, name=None):
    """Start a daemon thread with a consistent helper API."""
    thread = threading.Thread(target=target, args=args, kwargs=kwargs or {}, name=name, daemon=True)
    thread.start()
    return thread


def start_guarded_job(target, args=(), kwargs=None, on_error=None, name=None):
    """
    Run a callable in a daemon thread, routing any exception to ``on_error``
    (or the log when no handler is given).
    """

    def _run():
        try:
            target(*args, **(kwargs or {}))
        except Exception as exc:
            if on_error:
                on_error(exc)
            else:
                logger.exception("Background job %s failed", name or getattr(target, '__name__', target))

    return start_daemon_thread(_run, name=name)
