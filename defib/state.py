"""
State store - durable watchdog state in a single JSON document

The file is created owner-only (0600) inside an owner-only (0700)
directory. Writes go through a temp file and os.replace so a crash never
leaves a truncated document behind.
"""

import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Optional

from defib.errors import InvalidPidError, StateError
from defib.models import IssueType, WatchdogState

logger = logging.getLogger(__name__)

STATE_FILE_MODE = 0o600
STATE_DIR_MODE = 0o700


class StateStore:
    """Loads and persists WatchdogState for one state file"""

    def __init__(self, state_file: str):
        self.path = Path(state_file)

    def load(self) -> WatchdogState:
        """Load state, falling back to fresh defaults if missing or unreadable"""
        if not self.path.exists():
            logger.debug(f"No state file at {self.path}, starting fresh")
            return WatchdogState()

        try:
            with open(self.path) as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("state document is not a JSON object")
            return WatchdogState.from_dict(data)
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"⚠️  Ignoring unreadable state file {self.path}: {e}")
            return WatchdogState()

    def save(self, state: WatchdogState) -> None:
        """
        Persist state atomically

        Raises:
            StateError: If the document cannot be written. Losing backoff
                and dedup state risks restart thrashing, so this is fatal.
        """
        self._ensure_directory()

        payload = json.dumps(state.to_dict(), indent=2)
        tmp_path: Optional[str] = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
            with os.fdopen(fd, "w") as f:
                f.write(payload)
            self._chmod(tmp_path, STATE_FILE_MODE)
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as e:
            raise StateError(f"Could not write state file {self.path}: {e}") from e
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)

        logger.debug(f"State saved to {self.path}")

    def dismiss(self, pid: str, now: Optional[float] = None) -> WatchdogState:
        """
        Mark every issue type for a pid as already seen, and persist now.

        Suppresses re-alerting until the pid disappears and gets recycled.
        """
        if not str(pid).isdigit():
            raise InvalidPidError(f"Invalid PID: {pid!r}")

        state = self.load()
        seen_at = now if now is not None else time.time()
        for issue_type in IssueType:
            state.known_issues[f"{issue_type.value}:{pid}"] = seen_at
        self.save(state)
        logger.info(f"Dismissed alerts for PID {pid}")
        return state

    def _ensure_directory(self) -> None:
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True, mode=STATE_DIR_MODE)
        except OSError as e:
            raise StateError(f"Could not create state directory {directory}: {e}") from e
        self._chmod(str(directory), STATE_DIR_MODE)

    @staticmethod
    def _chmod(path: str, mode: int) -> None:
        # Not critical: some filesystems do not support it
        try:
            os.chmod(path, mode)
        except OSError as e:
            logger.debug(f"Could not chmod {path} to {oct(mode)}: {e}")
