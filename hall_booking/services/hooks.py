"""
Fire-and-forget side effects (notifications, loyalty).

Hooks run on a background pool after the core transaction committed. A failing
hook is logged and dropped; it never reaches the caller.
"""
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable

from hall_booking.core.logging_config import get_logger

logger = get_logger()

BOOKING_CREATED = "BOOKING_CREATED"
BOOKING_CANCELLED = "BOOKING_CANCELLED"
BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
PAYMENT_REFUNDED = "PAYMENT_REFUNDED"

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="hooks")
_pending = set()
_pending_lock = threading.Lock()

_notifiers: list[Callable[[str, int, dict], None]] = []
_loyalty: list[Callable[[int, object, int], None]] = []


def log_notifier(event_type: str, user_id: int, data: dict):
    logger.info(f"NOTIFY {event_type} | User={user_id} | Data={data}")


def register_notifier(fn: Callable[[str, int, dict], None]):
    _notifiers.append(fn)


def register_loyalty(fn: Callable[[int, object, int], None]):
    _loyalty.append(fn)


def reset_hooks():
    _notifiers.clear()
    _loyalty.clear()
    _notifiers.append(log_notifier)


def _run_safely(name: str, fn: Callable, *args):
    try:
        fn(*args)
    except Exception:
        logger.opt(exception=True).error(f"Side effect failed (suppressed) | Hook={name}")


def _submit(name: str, fn: Callable, *args):
    try:
        future = _executor.submit(_run_safely, name, fn, *args)
    except RuntimeError:
        # pool shut down during interpreter exit
        logger.warning(f"Side effect dropped | Hook={name}")
        return
    with _pending_lock:
        _pending.add(future)
    future.add_done_callback(_forget)


def _forget(future):
    with _pending_lock:
        _pending.discard(future)


def notify(event_type: str, user_id: int, data: dict | None = None):
    for fn in list(_notifiers):
        _submit(event_type, fn, event_type, user_id, data or {})


def award_points(user_id: int, amount, booking_id: int):
    for fn in list(_loyalty):
        _submit("loyalty", fn, user_id, amount, booking_id)


def flush(timeout: float = 5.0):
    """Wait for queued side effects (shutdown and tests)."""
    with _pending_lock:
        pending = list(_pending)
    wait(pending, timeout=timeout)


reset_hooks()
