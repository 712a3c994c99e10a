"""
State: the persisted record of what the last apply converged.

The snapshot is an externally-owned, versioned document. Writers must hold
the backend lock and pass the serial they read; a stale serial is rejected
instead of overwriting someone else's run.
"""

import json
import os
import socket
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

import structlog
from pydantic import BaseModel, Field

from cairn.errors import StateConflictError, StateLockError

logger = structlog.get_logger(__name__)

STATE_FORMAT_VERSION = 1


class ResourceState(BaseModel):
    """Recorded state of one node after it was applied."""

    type: str
    name: str
    attributes: dict[str, Any] = Field(
        default_factory=dict, description="Declared attributes, references kept symbolic"
    )
    resolved: dict[str, Any] = Field(
        default_factory=dict, description="Attributes as sent to the provider"
    )
    outputs: dict[str, Any] = Field(default_factory=dict, description="Provider-computed outputs")
    dependencies: list[str] = Field(default_factory=list)
    deposed: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Outputs of superseded objects still awaiting deletion",
    )

    @property
    def key(self) -> str:
        return f"{self.type}.{self.name}"


class StateSnapshot(BaseModel):
    """The whole state document."""

    version: int = STATE_FORMAT_VERSION
    serial: int = 0
    lineage: str = Field(default_factory=lambda: uuid.uuid4().hex)
    resources: dict[str, ResourceState] = Field(default_factory=dict)
    outputs: dict[str, Any] = Field(default_factory=dict)

    def get(self, key: str) -> ResourceState | None:
        return self.resources.get(key)


class StateBackend(ABC):
    """Storage for the state document with locking and serial checks."""

    @abstractmethod
    def read(self) -> StateSnapshot:
        """Return the current snapshot (an empty one if none was written)."""
        pass

    @abstractmethod
    def write(self, snapshot: StateSnapshot, expected_serial: int) -> StateSnapshot:
        """
        Persist `snapshot` if the stored serial still equals `expected_serial`.

        Returns:
            The stored snapshot, with its serial incremented

        Raises:
            StateConflictError: If the document changed since it was read
        """
        pass

    @abstractmethod
    def lock(self, operation: str = "apply") -> Any:
        """Context manager holding exclusive access for one run."""
        pass


class MemoryStateBackend(StateBackend):
    """State kept in process memory, for tests and one-shot runs."""

    def __init__(self, snapshot: StateSnapshot | None = None):
        self._snapshot = snapshot or StateSnapshot()
        self._lock = threading.Lock()

    def read(self) -> StateSnapshot:
        return self._snapshot.model_copy(deep=True)

    def write(self, snapshot: StateSnapshot, expected_serial: int) -> StateSnapshot:
        if self._snapshot.serial != expected_serial:
            raise StateConflictError(
                f"State serial is {self._snapshot.serial}, expected {expected_serial}"
            )
        self._snapshot = snapshot.model_copy(update={"serial": expected_serial + 1}, deep=True)
        return self.read()

    @contextmanager
    def lock(self, operation: str = "apply") -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise StateLockError(f"State is locked by another {operation} in this process")
        try:
            yield
        finally:
            self._lock.release()


class LocalStateBackend(StateBackend):
    """
    State stored as a JSON file, locked with an exclusive lock file.

    Example:
        backend = LocalStateBackend(".cairn/state.json")
        with backend.lock("apply"):
            snapshot = backend.read()
            ...
            backend.write(snapshot, expected_serial=snapshot.serial)
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        # Until the first write, every read must agree on one lineage
        self._initial_lineage = uuid.uuid4().hex

    def read(self) -> StateSnapshot:
        if not self.path.exists():
            return StateSnapshot(lineage=self._initial_lineage)
        with open(self.path) as f:
            return StateSnapshot.model_validate(json.load(f))

    def write(self, snapshot: StateSnapshot, expected_serial: int) -> StateSnapshot:
        current = self.read()
        if self.path.exists() and current.lineage != snapshot.lineage:
            raise StateConflictError(
                f"State lineage {snapshot.lineage} does not match stored {current.lineage}"
            )
        if current.serial != expected_serial:
            raise StateConflictError(
                f"State serial is {current.serial}, expected {expected_serial}"
            )

        stored = snapshot.model_copy(update={"serial": expected_serial + 1}, deep=True)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w") as f:
            f.write(stored.model_dump_json(indent=2))
        os.replace(tmp_path, self.path)

        logger.debug("state_written", path=str(self.path), serial=stored.serial)
        return stored

    @contextmanager
    def lock(self, operation: str = "apply") -> Iterator[dict[str, Any]]:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        info = {
            "id": uuid.uuid4().hex,
            "operation": operation,
            "who": f"{os.getpid()}@{socket.gethostname()}",
            "created": datetime.now(timezone.utc).isoformat(),
        }
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            raise StateLockError(
                f"State {self.path} is locked: {self._describe_holder()}"
            ) from None

        with os.fdopen(fd, "w") as f:
            json.dump(info, f)
        logger.debug("state_locked", path=str(self.path), lock_id=info["id"])

        try:
            yield info
        finally:
            self.lock_path.unlink(missing_ok=True)
            logger.debug("state_unlocked", path=str(self.path), lock_id=info["id"])

    def force_unlock(self) -> bool:
        """Remove a stale lock file. Returns True if one was removed."""
        if self.lock_path.exists():
            self.lock_path.unlink()
            return True
        return False

    def _describe_holder(self) -> str:
        try:
            with open(self.lock_path) as f:
                holder = json.load(f)
        except (OSError, ValueError):
            return "unknown holder"
        return f"{holder.get('operation')} by {holder.get('who')} since {holder.get('created')}"
