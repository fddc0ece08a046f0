"""
File-backed session persistence.

One JSON document per session under <session_dir>/sessions/<id>.json,
written atomically (temp file + os.replace) so a crash never leaves a
half-written session behind. Generated artifacts (manifests) live beside it
in <session_dir>/<id>/.
"""

import logging
import os
import tempfile
import threading
import time
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import ValidationError

from . import config
from .errors import OpsAgentError, SessionExpiredError, SessionNotFoundError
from .state import ExecutionMode, Phase, Session, SessionContext, WorkflowKind, utcnow

logger = logging.getLogger(__name__)

SESSION_PREFIXES = {
    WorkflowKind.RECOMMENDATION: "rec",
    WorkflowKind.REMEDIATION: "rem",
}


def generate_session_id(kind: WorkflowKind) -> str:
    return f"{SESSION_PREFIXES[kind]}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


class SessionStore:
    def __init__(self, session_dir: str = config.SESSION_DIR, ttl_minutes: int = config.SESSION_TTL_MINUTES):
        self.session_dir = session_dir
        self.ttl = timedelta(minutes=ttl_minutes)
        self._records_dir = os.path.join(session_dir, "sessions")
        self._lock = threading.RLock()
        os.makedirs(self._records_dir, exist_ok=True)

    def _path(self, session_id: str) -> str:
        # Session IDs come from clients; keep them inside the store
        if not session_id or os.sep in session_id or session_id.startswith('.'):
            raise SessionNotFoundError(f"Session '{session_id}' not found")
        return os.path.join(self._records_dir, f"{session_id}.json")

    def artifact_dir(self, session_id: str) -> str:
        """Directory for a session's generated files (created on demand)."""
        path = os.path.join(self.session_dir, session_id)
        os.makedirs(path, exist_ok=True)
        return path

    def create(
        self,
        kind: WorkflowKind,
        intent: str,
        initial_phase: Phase,
        mode: ExecutionMode = ExecutionMode.MANUAL,
        confidence_threshold: float = config.DEFAULT_CONFIDENCE_THRESHOLD,
    ) -> Session:
        now = utcnow()
        session = Session(
            id=generate_session_id(kind),
            kind=kind,
            phase=initial_phase,
            mode=mode,
            confidence_threshold=confidence_threshold,
            context=SessionContext(intent=intent),
            created_at=now,
            updated_at=now,
            expires_at=now + self.ttl,
        )
        self._write(session)
        logger.info(f"[sessions] Created {session.id} ({kind.value}, {mode.value})")
        return session

    def get(self, session_id: str, allow_expired: bool = False) -> Session:
        path = self._path(session_id)
        try:
            with open(path, encoding="utf-8") as f:
                raw = f.read()
        except FileNotFoundError:
            raise SessionNotFoundError(f"Session '{session_id}' not found") from None
        try:
            session = Session.model_validate_json(raw)
        except ValidationError as e:
            raise OpsAgentError(f"Session '{session_id}' is corrupt: {e.error_count()} error(s)") from e

        if not allow_expired and session.is_expired():
            raise SessionExpiredError(
                f"Session '{session_id}' expired at {session.expires_at.isoformat()}",
                detail={"expired_at": session.expires_at.isoformat()},
            )
        return session

    def save(self, session: Session, touch: bool = True) -> Session:
        """Persist a session; `touch` slides its expiry forward."""
        now = utcnow()
        session.updated_at = now
        if touch:
            session.expires_at = now + self.ttl
        self._write(session)
        return session

    def _write(self, session: Session):
        path = self._path(session.id)
        data = session.model_dump_json(indent=2)
        with self._lock:
            fd, tmp_path = tempfile.mkstemp(dir=self._records_dir, prefix=f".{session.id}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(data)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise

    def delete(self, session_id: str) -> bool:
        path = self._path(session_id)
        with self._lock:
            try:
                os.unlink(path)
            except FileNotFoundError:
                return False
        logger.info(f"[sessions] Deleted {session_id}")
        return True

    def list_ids(self) -> List[str]:
        return sorted(
            name[:-len(".json")]
            for name in os.listdir(self._records_dir)
            if name.endswith(".json") and not name.startswith(".")
        )

    def prune_expired(self, now: Optional[datetime] = None) -> List[str]:
        """Delete every expired session; returns the pruned IDs."""
        now = now or utcnow()
        pruned = []
        for session_id in self.list_ids():
            try:
                session = self.get(session_id, allow_expired=True)
            except OpsAgentError as e:
                logger.warning(f"[sessions] Skipping unreadable session {session_id}: {e}")
                continue
            if session.is_expired(now) and self.delete(session_id):
                pruned.append(session_id)
        if pruned:
            logger.info(f"[sessions] Pruned {len(pruned)} expired sessions")
        return pruned
