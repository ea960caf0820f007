"""
StatusStore - Persist the reconcile status between ticks.

The status is the only state the operator keeps across restarts. It is
loaded at the start of every tick and written back once at the end.

Storage backends:
- In-memory (for testing)
- File-based (JSON document, replaced atomically)
"""

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from obsconverge.errors import PermanentError
from obsconverge.schemas import ObservabilityStatus


class StatusStore(ABC):
    """
    Abstract base class for status persistence.

    Implementations must return a fresh ObservabilityStatus when nothing has
    been saved yet.
    """

    @abstractmethod
    def load(self) -> ObservabilityStatus:
        """
        Load the last saved status.

        Returns:
            The saved status, or an empty one if none exists
        """
        pass

    @abstractmethod
    def save(self, status: ObservabilityStatus) -> None:
        """
        Persist the status, replacing the previous one.

        Args:
            status: Status to persist
        """
        pass


class InMemoryStatusStore(StatusStore):
    """
    In-memory implementation of StatusStore for testing.

    Every save is recorded in `saves` so tests can assert one write per tick.
    """

    def __init__(self, initial: ObservabilityStatus | None = None):
        self._status = initial.copy() if initial else None
        self.saves: list[ObservabilityStatus] = []

    def load(self) -> ObservabilityStatus:
        return self._status.copy() if self._status else ObservabilityStatus()

    def save(self, status: ObservabilityStatus) -> None:
        self._status = status.copy()
        self.saves.append(status.copy())

    def clear(self) -> None:
        """Clear all stored data (for testing)."""
        self._status = None
        self.saves.clear()


class FileStatusStore(StatusStore):
    """
    File-based implementation of StatusStore.

    The status is written to a temporary file in the same directory and moved
    into place with os.replace, so readers never see a partial document.
    """

    def __init__(self, path: Path | str):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> ObservabilityStatus:
        if not self._path.exists():
            return ObservabilityStatus()
        try:
            with open(self._path) as f:
                data = json.load(f)
            return ObservabilityStatus.from_dict(data)
        except (json.JSONDecodeError, ValueError, AttributeError) as e:
            raise PermanentError(f"Status file {self._path} is corrupt: {e}") from e

    def save(self, status: ObservabilityStatus) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(status.to_dict(), f, indent=2)
            os.replace(tmp_path, self._path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
