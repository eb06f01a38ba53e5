"""Bounded worker pool with per-item failure isolation."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional

from tqdm import tqdm

logger = logging.getLogger("vram_pack.parallel")


@dataclass
class TaskOutcome:
    """Result of one unit of work. Exactly one of result / error is meaningful."""

    item: Any
    result: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_bounded(items: Iterable[Any], fn: Callable[[Any], Any], workers: int,
                desc: str = "", label: Callable[[Any], str] = str) -> List[TaskOutcome]:
    """Apply ``fn`` to every item with at most ``workers`` running at once.

    An exception raised by ``fn`` is logged and recorded on that item's
    outcome; the remaining items keep running. Outcomes are returned in
    input order. KeyboardInterrupt cancels queued work and propagates.
    """
    items = list(items)
    if not items:
        return []
    outcomes = [TaskOutcome(item) for item in items]
    workers = max(1, min(int(workers), len(items)))

    if workers == 1:
        for outcome in tqdm(outcomes, desc=desc, disable=None, leave=False):
            _run_one(outcome, fn, label)
        return outcomes

    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="vrampack")
    try:
        futures = {
            executor.submit(fn, outcome.item): outcome for outcome in outcomes
        }
        with tqdm(total=len(futures), desc=desc, disable=None, leave=False) as pbar:
            for future in as_completed(futures):
                outcome = futures[future]
                try:
                    outcome.result = future.result()
                except Exception as exc:
                    outcome.error = exc
                    logger.error("Failed %s: %s", label(outcome.item), exc)
                    logger.debug("Traceback for %s", label(outcome.item), exc_info=exc)
                pbar.update(1)
    except KeyboardInterrupt:
        executor.shutdown(wait=False, cancel_futures=True)
        raise
    executor.shutdown(wait=True)
    return outcomes


def _run_one(outcome: TaskOutcome, fn, label) -> None:
    try:
        outcome.result = fn(outcome.item)
    except Exception as exc:
        outcome.error = exc
        logger.error("Failed %s: %s", label(outcome.item), exc)
        logger.debug("Traceback for %s", label(outcome.item), exc_info=exc)
