import logging
import threading

logger = logging.getLogger(__name__)

_jobs_lock = threading.Lock()
_cancel_events = {}


def start_daemon_thread(target, args=(), kwargs=None):
    """Start a daemon thread with a consistent helper API."""
    thread = threading.Thread(target=target, args=args, kwargs=kwargs or {}, daemon=True)
    thread.start()
    return thread


def start_app_context_job(app, target, args=(), kwargs=None, on_error=None):
    """
    Run a callable in a daemon thread inside the provided Flask app context.
    """

    def _run():
        with app.app_context():
            try:
                target(*args, **(kwargs or {}))
            except Exception as exc:
                if on_error:
                    on_error(exc)
                else:
                    logger.exception("Background job %s failed", getattr(target, '__name__', target))

    return start_daemon_thread(_run)


def start_cancellable_job(app, key, target, args=(), kwargs=None, on_error=None):
    """
    Like start_app_context_job, but the target receives a ``cancel_event``
    keyword. Starting a job under a key already running cancels the old one.
    """
    event = threading.Event()
    with _jobs_lock:
        previous = _cancel_events.get(key)
        if previous is not None:
            previous.set()
        _cancel_events[key] = event

    def _target(*a, **kw):
        try:
            target(*a, cancel_event=event, **kw)
        finally:
            with _jobs_lock:
                if _cancel_events.get(key) is event:
                    del _cancel_events[key]

    return start_app_context_job(app, _target, args=args, kwargs=kwargs, on_error=on_error)


def cancel_job(key):
    """Signal a running cancellable job to stop. Returns False when none is running."""
    with _jobs_lock:
        event = _cancel_events.pop(key, None)
    if event is None:
        return False
    event.set()
    return True


def job_running(key):
    with _jobs_lock:
        return key in _cancel_events
