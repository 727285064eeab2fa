"""
Detached achievement pass.

Reviews and skips hand the user id to AchievementQueue after their own
transaction committed. The pass runs on a worker thread with its own
session, so it can neither block nor roll back the triggering request.
Failures are logged once here and go no further. Dropping a pending pass
(e.g. on shutdown) loses nothing: the next event re-evaluates everything.
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from academy.core.config import ACHIEVEMENT_WORKERS
from academy.db.base import SessionLocal
from academy.db.session import session_scope
from academy.notifications.service import notify_achievements
from academy.progression.achievements import evaluate

logger = logging.getLogger(__name__)

Notifier = Callable[[Session, int, List[str]], object]


class AchievementQueue:
    def __init__(
        self,
        session_factory=SessionLocal,
        notifier: Optional[Notifier] = notify_achievements,
        max_workers: int = ACHIEVEMENT_WORKERS,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="achievements")

    def submit(self, user_id: int) -> Future:
        return self._executor.submit(self.run, user_id)

    def run(self, user_id: int) -> List[str]:
        """Evaluate and notify. Never raises."""
        try:
            with session_scope(self.session_factory) as db:
                unlocked = evaluate(db, user_id)
        except Exception:
            logger.exception("[ACHIEVEMENT] evaluation failed user=%s", user_id)
            return []

        if unlocked and self.notifier is not None:
            try:
                with session_scope(self.session_factory) as db:
                    self.notifier(db, user_id, unlocked)
            except Exception:
                logger.exception("[NOTIFY] delivery failed user=%s ids=%s", user_id, unlocked)
        return unlocked

    def shutdown(self, wait: bool = True, cancel_pending: bool = False) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=cancel_pending)


_default_queue: Optional[AchievementQueue] = None
_lock = threading.Lock()


def default_queue() -> AchievementQueue:
    global _default_queue
    with _lock:
        if _default_queue is None:
            _default_queue = AchievementQueue()
        return _default_queue


def shutdown_default_queue(wait: bool = True) -> None:
    global _default_queue
    with _lock:
        if _default_queue is not None:
            _default_queue.shutdown(wait=wait, cancel_pending=not wait)
            _default_queue = None
