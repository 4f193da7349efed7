import json
import logging
import os
from typing import Protocol, Union, runtime_checkable

from .types import AuthConfig, Session

ACCESS_TOKEN = "access_token"
LEGACY_TOKEN = "token"
REFRESH_TOKEN = "refresh_token"
ISSUED_AT = "token_issued_at"
EXPIRES_IN = "token_expires_in"

SESSION_KEYS = (ACCESS_TOKEN, LEGACY_TOKEN, REFRESH_TOKEN, ISSUED_AT, EXPIRES_IN)


@runtime_checkable
class KeyValueStore(Protocol):
    def get(self, key: str) -> Union[str, None]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """Process-local store; one instance per client acts as its private scope."""

    def __init__(self, initial: Union[dict[str, str], None] = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Union[str, None]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def delete_many(self, keys) -> None:
        for key in keys:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileStore:
    """Persist string values in a single JSON document on disk.

    Writes go through a temp file + os.replace so a crash never leaves a
    truncated document behind.
    """

    def __init__(self, path: str):
        self.path = path

    def _read(self) -> dict[str, str]:
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, str]) -> None:
        tmp = f"{self.path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp, self.path)

    def get(self, key: str) -> Union[str, None]:
        value = self._read().get(key)
        return None if value is None else str(value)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def delete(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def delete_many(self, keys) -> None:
        """Remove several keys with at most one rewrite of the document."""
        data = self._read()
        removed = [key for key in keys if key in data]
        for key in removed:
            del data[key]
        if removed:
            self._write(data)


class SessionStore:
    """Owns the current Session. All mutation goes through persist()."""

    def __init__(self, store: Union[KeyValueStore, None] = None, namespace: str = "backstop"):
        self.store = store if store is not None else MemoryStore()
        self.namespace = namespace
        self._logger = logging.getLogger("backstop")
        self._session: Union[Session, None] = None

    def _key(self, name: str) -> str:
        return f"{self.namespace}:{name}" if self.namespace else name

    @property
    def session(self) -> Union[Session, None]:
        return self._session

    def load(self) -> Union[Session, None]:
        try:
            token = self.store.get(self._key(ACCESS_TOKEN)) or self.store.get(
                self._key(LEGACY_TOKEN)
            )
            if not token:
                self._session = None
                return None
            expires_raw = self.store.get(self._key(EXPIRES_IN))
            self._session = Session(
                access_token=token,
                refresh_token=self.store.get(self._key(REFRESH_TOKEN)) or None,
                issued_at=self.store.get(self._key(ISSUED_AT)) or None,
                expires_in=int(expires_raw) if expires_raw else None,
            )
        except Exception as e:
            self._logger.warning(f"failed to load auth session: {e}")
            self._session = None
        return self._session

    def persist(self, session: Union[Session, None]) -> None:
        # memory state always follows the request, even if storage fails
        self._session = session
        try:
            if session is None:
                keys = [self._key(name) for name in SESSION_KEYS]
                delete_many = getattr(self.store, "delete_many", None)
                if delete_many is not None:
                    delete_many(keys)
                else:
                    for key in keys:
                        self.store.delete(key)
                return
            self.store.set(self._key(ACCESS_TOKEN), session.access_token)
            self.store.set(self._key(LEGACY_TOKEN), session.access_token)
            if session.refresh_token:
                self.store.set(self._key(REFRESH_TOKEN), session.refresh_token)
            else:
                self.store.delete(self._key(REFRESH_TOKEN))
            if session.issued_at:
                self.store.set(self._key(ISSUED_AT), session.issued_at)
            else:
                self.store.delete(self._key(ISSUED_AT))
            if session.expires_in is not None:
                self.store.set(self._key(EXPIRES_IN), str(session.expires_in))
            else:
                self.store.delete(self._key(EXPIRES_IN))
        except Exception as e:
            self._logger.warning(f"failed to persist auth session: {e}")

    def authorization_header(self, auth: Union[AuthConfig, None] = None) -> dict[str, str]:
        if self._session is None or not self._session.access_token:
            return {}
        ac = auth or AuthConfig()
        return {ac.header: f"{ac.scheme} {self._session.access_token}".strip()}
