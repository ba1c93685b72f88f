"""
Schedule regeneration.

`regenerate_schedule` runs the whole pipeline for one user: fresh priority
scores, weekly allocation, greedy packing, then a full replacement of the
stored blocks. It never raises; callers get a RegenerationResult.

`RegenerationQueue` is what mutation endpoints talk to. It keeps at most one
run per user in flight and folds requests that arrive meanwhile into a
single follow-up run. `run_now` takes the same per-user slot for callers
that need the result in hand.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Any, Callable, Optional

from scheduler import calculate_priority_score, allocate_weekly_time, generate_schedule, should_regenerate

logger = logging.getLogger(__name__)


@dataclass
class RegenerationResult:
    success: bool
    message: str
    skipped: bool = False
    blocks_created: int = 0
    blocks: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self):
        return {
            "success": self.success,
            "skipped": self.skipped,
            "message": self.message,
            "blocks_created": self.blocks_created,
        }


def regenerate_schedule(store, user_id: int, reason: str, now: Optional[datetime] = None) -> RegenerationResult:
    logger.info("Regenerating schedule for user %s (reason: %s)", user_id, reason)
    try:
        week_config = store.get_week_config(user_id)
        if not week_config or not week_config.get("free_time_blocks"):
            logger.info("Skipping regeneration for user %s: week config not set", user_id)
            return RegenerationResult(success=False, skipped=True, message="Week config not set")

        subjects = store.get_subjects(user_id)
        if not subjects:
            logger.info("Skipping regeneration for user %s: no subjects found", user_id)
            return RegenerationResult(success=False, skipped=True, message="No subjects found")

        now = now or datetime.now()
        scored = []
        for subject in subjects:
            score = calculate_priority_score(subject, now)
            store.save_priority(subject["id"], score)
            scored.append(dict(subject, priority_score=score))

        allocated = allocate_weekly_time(scored, week_config["total_available_hours"])
        store.save_allocations({s["id"]: s.get("allocated_time", 0.0) for s in allocated})

        blocks = generate_schedule(allocated, week_config["free_time_blocks"])
        created = store.replace_schedule(user_id, blocks, week_config.get("week_start_date"))

        logger.info("Schedule regenerated for user %s: %d blocks", user_id, created)
        return RegenerationResult(
            success=True,
            message="Schedule regenerated",
            blocks_created=created,
            blocks=blocks,
        )
    except Exception as e:
        logger.exception("Regeneration failed for user %s", user_id)
        return RegenerationResult(success=False, message=str(e))


class RegenerationQueue:

    def __init__(self, runner: Callable[[int, str], Any], run_async: bool = True):
        self._runner = runner
        self._run_async = run_async
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._active = set()
        self._pending: Dict[int, str] = {}
        self._workers: Dict[int, threading.Thread] = {}

    def submit(self, user_id: int, reason: str) -> bool:
        """Request a regeneration; returns False when the event is not a trigger."""
        if not should_regenerate(reason):
            logger.debug("Event %r does not trigger regeneration", reason)
            return False

        with self._lock:
            if user_id in self._active:
                self._pending[user_id] = reason
                logger.debug("Coalesced regeneration for user %s (%s)", user_id, reason)
                return True
            self._active.add(user_id)

        self._start(user_id, reason)
        return True

    def run_now(self, user_id: int, reason: str):
        """
        Run the regeneration in the calling thread and return the runner's
        result. Blocks while another run for the same user is in flight;
        requests submitted meanwhile are run afterwards as usual.
        """
        with self._idle:
            while user_id in self._active:
                self._idle.wait()
            self._active.add(user_id)

        try:
            return self._runner(user_id, reason)
        finally:
            follow_up = self._next(user_id)
            if follow_up is not None:
                self._start(user_id, follow_up)

    def _start(self, user_id: int, reason: str) -> None:
        # caller already holds the user's slot in _active
        if not self._run_async:
            self._drain(user_id, reason)
            return
        worker = threading.Thread(
            target=self._drain, args=(user_id, reason),
            name=f"regenerate-{user_id}", daemon=True,
        )
        with self._lock:
            self._workers[user_id] = worker
        worker.start()

    def _next(self, user_id: int) -> Optional[str]:
        """Pop the coalesced follow-up, or release the user's slot when there is none."""
        with self._lock:
            reason = self._pending.pop(user_id, None)
            if reason is None:
                self._active.discard(user_id)
                self._workers.pop(user_id, None)
                self._idle.notify_all()
            return reason

    def _drain(self, user_id: int, reason: Optional[str]) -> None:
        while reason is not None:
            try:
                self._runner(user_id, reason)
            except Exception:
                logger.exception("Regeneration runner crashed for user %s", user_id)
            reason = self._next(user_id)

    def is_active(self, user_id: int) -> bool:
        with self._lock:
            return user_id in self._active

    def wait(self, user_id: int, timeout: Optional[float] = None) -> None:
        with self._lock:
            worker = self._workers.get(user_id)
        if worker is not None:
            worker.join(timeout)
