"""
Reconciler: apply a ChangeSet against an IamService.

- Ranks run strictly in order; every rank-N operation settles before any
  rank N+1 operation is dispatched.
- Inside a rank, operations run on a bounded thread pool.
- Each operation owns one outcome slot, written exactly once.
- Operations depending on a CREATE_USER that did not apply are recorded
  DEPENDENCY_SKIPPED and never attempted.
- Retryable RemoteCallFailed errors are retried with capped exponential
  backoff.
- Each attempt runs on its own daemon thread and the per-call timeout
  starts when that thread starts; a call exceeding it is recorded FAILED
  and abandoned. An abandoned call never delays other operations.
- Setting the cancel event stops dispatching; unstarted operations are
  recorded CANCELLED, in-flight ones settle normally.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

from .errors import DependencySkipped, RemoteCallFailed
from .models import ChangeSet, Operation, Outcome, Secret
from .service import IamService

Logger = Union[logging.Logger, logging.LoggerAdapter]


@dataclass
class ReconcileOptions:
    concurrency: int = 4
    call_timeout_sec: float = 30.0
    max_attempts: int = 3
    backoff_base_sec: float = 0.2
    backoff_max_sec: float = 5.0

    def __post_init__(self) -> None:
        if int(self.concurrency) < 1:
            raise ValueError("concurrency must be >= 1")
        if int(self.max_attempts) < 1:
            raise ValueError("max_attempts must be >= 1")
        if float(self.call_timeout_sec) <= 0:
            raise ValueError("call_timeout_sec must be > 0")

    def backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return min(float(self.backoff_max_sec), float(self.backoff_base_sec) * (2 ** (attempt - 1)))


class CallTimeout(Exception):
    """A single remote call exceeded the per-call timeout."""


class _Slots:
    """One outcome slot per operation; first write wins."""

    def __init__(self, size: int) -> None:
        self._items: List[Optional[Outcome]] = [None] * size
        self._lock = threading.Lock()

    def settle(self, index: int, outcome: Outcome) -> bool:
        with self._lock:
            if self._items[index] is not None:
                return False
            self._items[index] = outcome
            return True

    def get(self, index: int) -> Optional[Outcome]:
        with self._lock:
            return self._items[index]

    def snapshot(self) -> List[Optional[Outcome]]:
        with self._lock:
            return list(self._items)


class Reconciler:
    def __init__(
        self,
        service: IamService,
        options: Optional[ReconcileOptions] = None,
        *,
        logger: Optional[Logger] = None,
    ) -> None:
        self.service = service
        self.options = options or ReconcileOptions()
        self.log = logger or logging.getLogger(__name__)
        self._secrets: Dict[str, Secret] = {}
        self._secrets_lock = threading.Lock()

    # ------------- public -------------

    def apply(
        self,
        changeset: ChangeSet,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> Tuple[List[Outcome], Dict[str, Secret]]:
        """Apply ``changeset``; return outcomes (changeset order, then no-ops) and secrets."""
        cancel = cancel or threading.Event()
        ops = list(changeset.operations)
        slots = _Slots(len(ops))
        self._secrets = {}
        not_applied: Set[str] = set()

        workers = int(self.options.concurrency)
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="iamsync-op")
        try:
            for rank in changeset.ranks():
                batch = [(i, op) for i, op in enumerate(ops) if op.rank == rank]
                self.log.debug("Rank %d: %d operation(s)", rank, len(batch))
                futures: List[Future] = []
                for i, op in batch:
                    missing = tuple(sorted(op.depends_on & not_applied))
                    if missing:
                        reason = str(DependencySkipped(missing))
                        slots.settle(i, Outcome(op.kind, op.resource, "DEPENDENCY_SKIPPED", reason, 0, op))
                        self.log.warning("Skipped %s: %s", op.describe(), reason)
                        continue
                    if cancel.is_set():
                        slots.settle(i, Outcome(op.kind, op.resource, "CANCELLED", "run cancelled", 0, op))
                        continue
                    futures.append(pool.submit(self._run_one, i, op, slots, cancel))
                wait(futures)

                for i, op in batch:
                    if op.kind == "CREATE_USER":
                        out = slots.get(i)
                        if out is None or out.status != "APPLIED":
                            not_applied.add(op.resource)
        finally:
            pool.shutdown(wait=True)

        outcomes: List[Outcome] = []
        for i, out in enumerate(slots.snapshot()):
            if out is None:  # pragma: no cover (every path settles)
                op = ops[i]
                out = Outcome(op.kind, op.resource, "FAILED", "no outcome recorded", 0, op)
            outcomes.append(out)
        for item in changeset.unchanged:
            outcomes.append(Outcome(item.kind, item.resource, "SKIPPED", "no-op"))

        with self._secrets_lock:
            secrets = dict(self._secrets)
        return outcomes, secrets

    # ------------- internal -------------

    def _target(self, op: Operation) -> Tuple[Callable[..., Any], Tuple[Any, ...]]:
        svc = self.service
        if op.kind == "CREATE_GROUP":
            return svc.create_group, (op.resource,)
        if op.kind == "CREATE_USER":
            return svc.create_user, (op.resource, dict(op.tags))
        if op.kind == "UPDATE_USER_TAGS":
            return svc.update_user_tags, (op.resource, dict(op.tags))
        if op.kind == "ENABLE_CONSOLE_ACCESS":
            return svc.enable_console_access, (op.resource,)
        if op.kind == "SET_GROUP_MEMBERSHIP":
            return svc.set_group_membership, (op.resource, sorted(op.members))
        raise ValueError(f"Unknown operation kind: {op.kind}")

    def _call(self, op: Operation) -> Any:
        """Run one attempt on a fresh daemon thread; raise CallTimeout if it outlives the timeout."""
        fn, args = self._target(op)
        box: Dict[str, Any] = {}

        def attempt() -> None:
            try:
                box["result"] = fn(*args)
            except Exception as e:  # re-raised on the worker thread below
                box["error"] = e

        t = threading.Thread(target=attempt, name=f"iamsync-call-{op.resource}", daemon=True)
        t.start()
        t.join(float(self.options.call_timeout_sec))
        if t.is_alive():
            raise CallTimeout(f"timeout after {self.options.call_timeout_sec}s")
        if "error" in box:
            raise box["error"]
        return box.get("result")

    def _run_one(
        self,
        index: int,
        op: Operation,
        slots: _Slots,
        cancel: threading.Event,
    ) -> None:
        if cancel.is_set():
            slots.settle(index, Outcome(op.kind, op.resource, "CANCELLED", "run cancelled", 0, op))
            return

        attempt = 0
        while True:
            attempt += 1
            try:
                result = self._call(op)
            except RemoteCallFailed as e:
                if e.retryable and attempt < int(self.options.max_attempts):
                    delay = self.options.backoff(attempt)
                    self.log.warning(
                        "%s attempt %d/%d failed (%s); retrying in %.2fs",
                        op.describe(), attempt, self.options.max_attempts, e.code or e.message, delay,
                    )
                    if cancel.wait(delay):
                        reason = f"{e.message} (cancelled before retry)"
                        slots.settle(index, Outcome(op.kind, op.resource, "FAILED", reason, attempt, op))
                        return
                    continue
                self.log.error("%s failed after %d attempt(s): %s", op.describe(), attempt, e)
                slots.settle(index, Outcome(op.kind, op.resource, "FAILED", e.message, attempt, op))
                return
            except CallTimeout as e:
                self.log.error("%s failed: %s", op.describe(), e)
                slots.settle(index, Outcome(op.kind, op.resource, "FAILED", str(e), attempt, op))
                return
            except Exception as e:
                self.log.exception("%s raised unexpectedly: %s", op.describe(), e)
                reason = f"{type(e).__name__}: {e}"
                slots.settle(index, Outcome(op.kind, op.resource, "FAILED", reason, attempt, op))
                return

            if op.kind == "ENABLE_CONSOLE_ACCESS" and isinstance(result, Secret):
                with self._secrets_lock:
                    self._secrets[op.resource] = result
            slots.settle(index, Outcome(op.kind, op.resource, "APPLIED", "", attempt, op))
            self.log.info("Applied %s", op.describe())
            return
