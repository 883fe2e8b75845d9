"""
Timeout utilities.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as _FuturesTimeout
from typing import Any, Callable, List, Optional

from image_sanitizer.utils.logger import setup_logger

logger = setup_logger(__name__)

_abandoned_lock = threading.Lock()
_abandoned: List[Future] = []


def with_timeout(fn: Callable[..., Any], seconds: Optional[float], *args, **kwargs) -> Any:
    """
    Run ``fn`` and raise ``TimeoutError`` if it does not return within ``seconds``.

    The helper thread is abandoned on timeout, not joined; callers must treat
    anything it was writing as garbage. Abandoned calls are logged and
    counted by ``abandoned_count`` until they return.
    """
    if seconds is None or seconds <= 0:
        return fn(*args, **kwargs)
    ex = ThreadPoolExecutor(max_workers=1, thread_name_prefix="timeout")
    try:
        fut = ex.submit(fn, *args, **kwargs)
        try:
            return fut.result(timeout=seconds)
        except _FuturesTimeout as e:
            with _abandoned_lock:
                _abandoned.append(fut)
            name = getattr(fn, "__qualname__", repr(fn))
            logger.warning(f"Abandoned {name} after {seconds} seconds; its thread keeps running")
            raise TimeoutError(f"Operation exceeded {seconds} seconds") from e
    finally:
        ex.shutdown(wait=False)


def abandoned_count() -> int:
    """Number of timed-out calls whose threads are still running."""
    with _abandoned_lock:
        _abandoned[:] = [fut for fut in _abandoned if not fut.done()]
        return len(_abandoned)
