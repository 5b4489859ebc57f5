import json
import threading
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .database import Setting, init_database, get_session_factory
from .errors import StoreError
from .models import Endpoint

SERVER_URL_KEY = "server_url"
MANUAL_SERVER_KEY = "manual_server"
HOST_HISTORY_KEY = "host_history"
HOST_HISTORY_LIMIT = 10


class KeyValueStore:
    """Durable string get/set/remove."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    """Process-local store; nothing survives a restart."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


def load_store(path: Path) -> Dict[str, str]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            content = f.read().strip()
            if not content:
                return {}
            data = json.loads(content)
    except (ValueError, OSError):
        # Undecodable bytes or broken JSON read as an empty store
        return {}
    if not isinstance(data, dict):
        return {}
    return {k: v for k, v in data.items() if isinstance(v, str)}


def save_store(path: Path, store: Dict[str, str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(store, f, indent=2, ensure_ascii=False)
    tmp.replace(path)


class JsonFileStore(KeyValueStore):
    """Key-value pairs kept in a single JSON object on disk."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return load_store(self.path).get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = load_store(self.path)
            data[key] = value
            self._save(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = load_store(self.path)
            if key in data:
                del data[key]
                self._save(data)

    def _save(self, data: Dict[str, str]) -> None:
        try:
            save_store(self.path, data)
        except OSError as e:
            raise StoreError(f"Could not write {self.path}: {e}") from e


class SqlStore(KeyValueStore):
    """Key-value pairs kept in the ``settings`` table of a SQLite database."""

    def __init__(self, target: str):
        self.engine = init_database(target)
        self.Session = get_session_factory(self.engine)

    def get(self, key: str) -> Optional[str]:
        session = self.Session()
        try:
            row = session.get(Setting, key)
            return row.value if row is not None else None
        except SQLAlchemyError as e:
            raise StoreError(f"Could not read setting '{key}': {e}") from e
        finally:
            session.close()

    def set(self, key: str, value: str) -> None:
        session = self.Session()
        try:
            row = session.get(Setting, key)
            if row is None:
                session.add(Setting(key=key, value=value))
            else:
                row.value = value
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(f"Could not write setting '{key}': {e}") from e
        finally:
            session.close()

    def remove(self, key: str) -> None:
        session = self.Session()
        try:
            session.query(Setting).filter(Setting.key == key).delete()
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(f"Could not remove setting '{key}': {e}") from e
        finally:
            session.close()


def open_store(target: str) -> KeyValueStore:
    """Pick a backend: ``sqlite:///...`` or ``*.db`` means SQLite, ``:memory:`` means process-local, anything else is a JSON file."""
    if target == ":memory:":
        return MemoryStore()
    if target.startswith("sqlite://") or target.endswith((".db", ".sqlite", ".sqlite3")):
        return SqlStore(target)
    return JsonFileStore(Path(target))


class EndpointCache:
    """
    The last known-good endpoint plus the manual override and host history.

    No TTL: a cached endpoint is trusted until an override, a reset, or a
    newer probe-confirmed endpoint replaces it.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    def get(self) -> Optional[Endpoint]:
        raw = self.store.get(SERVER_URL_KEY)
        if not raw:
            return None
        try:
            return Endpoint.from_url(raw)
        except ValueError:
            # Unparseable leftovers are treated as absent
            return None

    def set(self, endpoint: Endpoint) -> None:
        self.store.set(SERVER_URL_KEY, endpoint.base_url)

    def clear(self) -> None:
        self.store.remove(SERVER_URL_KEY)

    def get_manual(self) -> Optional[str]:
        return self.store.get(MANUAL_SERVER_KEY) or None

    def set_manual(self, value: str) -> None:
        self.store.set(MANUAL_SERVER_KEY, value)

    def clear_manual(self) -> None:
        self.store.remove(MANUAL_SERVER_KEY)

    def host_history(self) -> List[str]:
        """Hosts that answered a health check, most recent first."""
        raw = self.store.get(HOST_HISTORY_KEY)
        if not raw:
            return []
        try:
            hosts = json.loads(raw)
        except json.JSONDecodeError:
            return []
        if not isinstance(hosts, list):
            return []
        return [h for h in hosts if isinstance(h, str)]

    def record_host(self, host: str) -> None:
        hosts = [h for h in self.host_history() if h != host]
        hosts.insert(0, host)
        self.store.set(HOST_HISTORY_KEY, json.dumps(hosts[:HOST_HISTORY_LIMIT]))

    def clear_history(self) -> None:
        self.store.remove(HOST_HISTORY_KEY)
