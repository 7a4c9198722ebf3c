"""
Structured fan-out for independent sub-fetches

Every call owns its own thread pool and joins before returning, so nested
fan-out never starves an outer pool.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from config import config

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def _width(count: int, max_workers: Optional[int]) -> int:
    limit = max_workers or config.FANOUT_MAX_WORKERS
    return max(1, min(limit, count))


def run_concurrently(
    tasks: Dict[str, Callable[[], Any]], max_workers: Optional[int] = None
) -> Dict[str, Any]:
    """Run named callables concurrently and join

    The first exception raised by any task is re-raised here after all tasks
    have finished.
    """
    if not tasks:
        return {}

    with ThreadPoolExecutor(
        max_workers=_width(len(tasks), max_workers), thread_name_prefix="fanout"
    ) as executor:
        futures = {name: executor.submit(task) for name, task in tasks.items()}

    return {name: future.result() for name, future in futures.items()}


def map_concurrently(
    func: Callable[[T], R], items: Iterable[T], max_workers: Optional[int] = None
) -> List[R]:
    """Apply ``func`` to every item concurrently, preserving input order"""
    items = list(items)
    if not items:
        return []

    with ThreadPoolExecutor(
        max_workers=_width(len(items), max_workers), thread_name_prefix="fanout"
    ) as executor:
        return list(executor.map(func, items))


def optional(func: Callable[[], T], default: Any = None, label: str = "") -> Callable[[], T]:
    """Wrap an optional sub-fetch so a failure yields ``default``"""

    def wrapper():
        try:
            return func()
        except Exception as e:
            logger.warning(f"Optional fetch {label or func} failed: {e}")
            return default

    return wrapper
