"""
Post-commit hooks -- best-effort side effects of a committed invoice write.

Contract:
    The invoice service returns ``PostCommitHook`` values describing side
    effects (today: product catalog upserts). ``HookDispatcher.dispatch``
    runs them only after the invoice transaction has committed, on a
    thread pool. A failing hook is logged with its traceback and never
    propagates to the caller that created the invoice.

Architecture: billing_services.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from billing_kernel.logging_config import get_logger

logger = get_logger("services.hooks")


@dataclass(frozen=True)
class PostCommitHook:
    name: str
    action: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)

    def run(self) -> Any:
        return self.action(*self.args, **self.kwargs)


class HookDispatcher:
    """
    Runs hooks on a worker pool.

    Only unfinished hooks are tracked; each future drops itself from the
    pending set when it completes. ``synchronous=True`` runs hooks inline
    on the calling thread, which tests use to observe side effects
    deterministically. Failures are logged either way.
    """

    def __init__(self, max_workers: int = 4, synchronous: bool = False):
        self._executor = (
            None
            if synchronous
            else ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="billing-hook")
        )
        self._guard = threading.Lock()
        self._pending: set[Future] = set()

    def _run(self, hook: PostCommitHook) -> None:
        try:
            hook.run()
        except Exception:
            logger.warning(
                "post_commit_hook_failed",
                extra={"hook": hook.name},
                exc_info=True,
            )

    def _finished(self, future: Future) -> None:
        with self._guard:
            self._pending.discard(future)

    def dispatch(self, hooks: Sequence[PostCommitHook]) -> None:
        for hook in hooks:
            if self._executor is None:
                self._run(hook)
                continue
            future = self._executor.submit(self._run, hook)
            with self._guard:
                self._pending.add(future)
            # runs immediately if the hook already finished
            future.add_done_callback(self._finished)
        if hooks:
            logger.debug("post_commit_hooks_dispatched", extra={"count": len(hooks)})

    @property
    def pending_count(self) -> int:
        with self._guard:
            return len(self._pending)

    def drain(self, timeout: float | None = None) -> None:
        """Wait for every hook still running."""
        with self._guard:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        self.drain()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
