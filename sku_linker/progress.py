"""
Publish/subscribe channel for incremental scan progress
"""
import logging
import threading
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

STATUS_INITIALIZING = 'initializing'
STATUS_SCANNING = 'scanning'
STATUS_PROCESSING = 'processing'
STATUS_COMPLETED = 'completed'
STATUS_STOPPED = 'stopped'
STATUS_ERROR = 'error'

TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_STOPPED, STATUS_ERROR)


@dataclass
class ScanSnapshot:
    """Full scan state at one point in time (replaces earlier snapshots)"""
    status: str
    current_step: str = ''
    processed: int = 0
    successful: int = 0
    failed: int = 0
    total: int = 0
    current_file: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def progress(self) -> int:
        if self.total <= 0:
            return 100 if self.is_terminal else 0
        return min(100, int(self.processed / self.total * 100))

    def to_dict(self) -> dict:
        data = asdict(self)
        data['progress'] = self.progress
        return data


Subscriber = Callable[[ScanSnapshot], None]


class _Session:
    def __init__(self):
        self.subscribers: List[Subscriber] = []
        self.latest: Optional[ScanSnapshot] = None
        self.stop_requested = False
        self.closed = False


class ProgressChannel:
    """
    Per-session snapshot fan-out with a cooperative stop flag.

    Delivery is fire-and-forget: a failing subscriber is logged and skipped.
    A terminal snapshot closes the session; the last snapshot stays readable
    through ``latest``. Only the ``retain_closed`` most recently closed
    sessions are kept.
    """

    def __init__(self, retain_closed: int = 20):
        self._lock = threading.Lock()
        self._sessions: Dict[str, _Session] = {}
        self._closed = deque()
        self.retain_closed = retain_closed

    def open_session(self) -> str:
        session_id = uuid.uuid4().hex
        with self._lock:
            self._sessions[session_id] = _Session()
        logger.info(f"Opened progress session {session_id}")
        return session_id

    def publish(self, session_id: str, snapshot: ScanSnapshot) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.closed:
                return
            session.latest = snapshot
            subscribers = list(session.subscribers)
            if snapshot.is_terminal:
                session.closed = True
                session.subscribers = []
                self._closed.append(session_id)
                while len(self._closed) > self.retain_closed:
                    del self._sessions[self._closed.popleft()]

        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception as e:
                logger.warning(f"Progress subscriber failed for session {session_id}: {str(e)}")

        if snapshot.is_terminal:
            logger.info(f"Progress session {session_id} closed with status '{snapshot.status}'")

    def subscribe(self, session_id: str, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback for the session's snapshots.

        Returns:
            A function that removes the callback again
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None and not session.closed:
                session.subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                current = self._sessions.get(session_id)
                if current is not None and callback in current.subscribers:
                    current.subscribers.remove(callback)

        return unsubscribe

    def latest(self, session_id: str) -> Optional[ScanSnapshot]:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.latest if session else None

    def request_stop(self, session_id: str) -> bool:
        """Ask a running scan to stop; False if the session is not active."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.closed:
                return False
            session.stop_requested = True
        logger.info(f"Stop requested for session {session_id}")
        return True

    def is_stop_requested(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            return bool(session and session.stop_requested)

    def is_active(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            return bool(session and not session.closed)
