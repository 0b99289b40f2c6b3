from __future__ import annotations

from dataclasses import asdict, dataclass
import json
import logging
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger("movienight.session")

SESSION_KEYS = ("player_id", "lobby_id", "lobby_code")


class SessionStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def clear(self) -> None: ...


class MemoryStorage:
    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def clear(self) -> None:
        self._values.clear()


class FileStorage:
    """Keeps session identifiers in a small JSON file (used by the CLI)."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning(
                "Ignoring unreadable session file",
                extra={"event": "session_file_unreadable", "path": str(self.path)},
            )
            return {}
        if not isinstance(payload, dict):
            return {}
        return {str(key): str(value) for key, value in payload.items() if value is not None}

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        values = self._read()
        values[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(values, indent=2, sort_keys=True), encoding="utf-8")

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()


@dataclass(frozen=True)
class SessionIdentity:
    player_id: str
    lobby_id: str
    lobby_code: str


class SessionContext:
    """Current player/lobby identifiers, read through an injectable storage."""

    def __init__(self, storage: SessionStorage | None = None) -> None:
        self.storage: SessionStorage = storage if storage is not None else MemoryStorage()

    def save(self, identity: SessionIdentity) -> None:
        for key, value in asdict(identity).items():
            self.storage.set(key, value)

    def load(self) -> Optional[SessionIdentity]:
        values = {key: self.storage.get(key) for key in SESSION_KEYS}
        if not all(values.values()):
            return None
        return SessionIdentity(**values)

    def clear(self) -> None:
        self.storage.clear()
