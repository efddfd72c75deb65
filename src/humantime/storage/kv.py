"""SQLite-backed key-value store."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from ..config import MIB, HumantimeSettings
from ..errors import (
    ErrorCode,
    HumantimeError,
    KeyNotFoundError,
    RecoverableError,
    SystemLevelError,
)
from .safety import DiskSpaceGuard, DiskUsageFn, SpaceReport

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

DB_FILENAME = "humantime.db"
INTEGRITY_SAMPLE_SIZE = 100

_SCHEMA = "CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value BLOB NOT NULL)"


class KeyedModel(Protocol):
    key: str

    def model_dump_json(self) -> str:
        ...


@dataclass(slots=True)
class StoreOptions:
    """How to open a :class:`KeyValueStore`.

    ``in_memory`` (or an empty ``path``) wins over ``path`` and never touches disk.
    """

    path: Path | None = None
    in_memory: bool = False
    busy_timeout: float = 5.0
    min_free_space: int = 10 * MIB
    min_free_space_warning: int = 50 * MIB
    disk_usage: DiskUsageFn | None = None

    @classmethod
    def from_settings(cls, settings: HumantimeSettings) -> StoreOptions:
        return cls(
            path=settings.db_path,
            in_memory=settings.in_memory,
            busy_timeout=settings.store_busy_timeout,
            min_free_space=settings.min_free_space,
            min_free_space_warning=settings.min_free_space_warning,
        )

    @property
    def persistent(self) -> bool:
        return not self.in_memory and bool(self.path and str(self.path))


@dataclass(slots=True)
class IntegrityReport:
    """Result of :meth:`KeyValueStore.check_integrity`."""

    ok: bool
    engine_messages: list[str] = field(default_factory=list)
    keys_sampled: int = 0
    corrupt_keys: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {
            "ok": self.ok,
            "engine_messages": list(self.engine_messages),
            "keys_sampled": self.keys_sampled,
            "corrupt_keys": list(self.corrupt_keys),
        }


def _map_sqlite_error(exc: sqlite3.Error, op: str) -> HumantimeError:
    text = str(exc).lower()
    if "locked" in text or "busy" in text:
        return RecoverableError(
            "database locked by another process", code=ErrorCode.LOCK_HELD, cause=exc
        )
    if "disk is full" in text or "disk full" in text:
        return SystemLevelError("disk full", code=ErrorCode.DISK_FULL, op=op, cause=exc)
    if "malformed" in text or "not a database" in text:
        return SystemLevelError(
            "database corrupted", code=ErrorCode.DATABASE_CORRUPTED, op=op, cause=exc
        )
    return SystemLevelError(
        f"storage error: {exc}", code=ErrorCode.STORAGE_UNAVAILABLE, op=op, cause=exc
    )


@contextmanager
def _translate_errors(op: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise _map_sqlite_error(exc, op) from exc


class KeyValueStore:
    """Durable key/value engine over a single SQLite table.

    Keys sort lexicographically. A re-entrant lock guards the connection so one store
    can be shared by the event loop and worker threads of a process; other processes
    coordinate through SQLite's own locking.
    """

    def __init__(
        self,
        connection: sqlite3.Connection,
        options: StoreOptions,
        *,
        guard: DiskSpaceGuard | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._conn: sqlite3.Connection | None = connection
        self._options = options
        self._guard = guard
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()
        self._tx_depth = 0

    @classmethod
    def open(
        cls,
        options: StoreOptions,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> KeyValueStore:
        if not options.persistent:
            with _translate_errors("open"):
                connection = cls._connect(":memory:", options.busy_timeout)
                connection.execute(_SCHEMA)
            logger.debug("Opened in-memory store")
            return cls(connection, options, clock=clock)

        db_path = Path(options.path).expanduser()  # type: ignore[arg-type]
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise SystemLevelError(
                f"cannot create data directory {db_path.parent}",
                code=ErrorCode.STORAGE_UNAVAILABLE,
                op="open",
                cause=exc,
            ) from exc

        try:
            connection = cls._connect(str(db_path), options.busy_timeout)
            connection.execute("PRAGMA journal_mode=WAL")
            connection.execute(f"PRAGMA busy_timeout={int(options.busy_timeout * 1000)}")
            connection.execute(_SCHEMA)
        except sqlite3.Error as exc:
            raise SystemLevelError(
                f"failed to open database at {db_path}: {exc}",
                code=ErrorCode.STORAGE_UNAVAILABLE,
                op="open",
                cause=exc,
            ) from exc

        guard = DiskSpaceGuard(
            db_path.parent,
            minimum=options.min_free_space,
            warning=options.min_free_space_warning,
            disk_usage=options.disk_usage,
        )
        logger.info("Opened store", extra={"path": str(db_path)})
        return cls(connection, options, guard=guard, clock=clock)

    @staticmethod
    def _connect(target: str, busy_timeout: float) -> sqlite3.Connection:
        return sqlite3.connect(
            target,
            timeout=busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )

    @property
    def path(self) -> Path | None:
        if not self._options.persistent:
            return None
        return Path(self._options.path).expanduser()  # type: ignore[arg-type]

    @property
    def in_memory(self) -> bool:
        return not self._options.persistent

    @property
    def closed(self) -> bool:
        return self._conn is None

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            connection, self._conn = self._conn, None
            with _translate_errors("close"):
                connection.close()
        logger.debug("Closed store", extra={"path": str(self.path) if self.path else ":memory:"})

    def __enter__(self) -> KeyValueStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _connection(self, op: str) -> sqlite3.Connection:
        if self._conn is None:
            raise SystemLevelError(
                "store is closed", code=ErrorCode.STORAGE_UNAVAILABLE, op=op
            )
        return self._conn

    def _check_space(self, op: str) -> None:
        if self._guard is not None and self._tx_depth == 0:
            self._guard.check(op)

    def disk_report(self) -> SpaceReport | None:
        """Measure free space at the data directory (``None`` for in-memory stores)."""

        if self._guard is None:
            return None
        return self._guard.measure()

    @contextmanager
    def transaction(self) -> Iterator[KeyValueStore]:
        """Run the enclosed store calls in one ``BEGIN IMMEDIATE`` transaction.

        Nested use joins the outer transaction.
        """

        with self._lock:
            connection = self._connection("transaction")
            if self._tx_depth > 0:
                self._tx_depth += 1
                try:
                    yield self
                finally:
                    self._tx_depth -= 1
                return

            self._check_space("transaction")
            with _translate_errors("begin"):
                connection.execute("BEGIN IMMEDIATE")
            self._tx_depth = 1
            try:
                yield self
            except BaseException:
                self._tx_depth = 0
                try:
                    connection.execute("ROLLBACK")
                except sqlite3.Error:
                    logger.exception("Rollback failed")
                raise
            else:
                self._tx_depth = 0
                with _translate_errors("commit"):
                    connection.execute("COMMIT")

    def get(self, key: str) -> bytes:
        with self._lock, _translate_errors("get"):
            row = self._connection("get").execute(
                "SELECT value FROM kv WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            raise KeyNotFoundError(key)
        return bytes(row[0])

    def set(self, key: str, value: bytes) -> None:
        if not key:
            raise ValueError("key must not be empty")
        with self._lock:
            self._check_space("set")
            with _translate_errors("set"):
                self._connection("set").execute(
                    "INSERT INTO kv (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                    (key, sqlite3.Binary(value)),
                )

    def delete(self, key: str) -> None:
        with self._lock:
            self._check_space("delete")
            with _translate_errors("delete"):
                self._connection("delete").execute("DELETE FROM kv WHERE key = ?", (key,))

    def exists(self, key: str) -> bool:
        with self._lock, _translate_errors("exists"):
            row = self._connection("exists").execute(
                "SELECT 1 FROM kv WHERE key = ?", (key,)
            ).fetchone()
        return row is not None

    def list_by_prefix(self, prefix: str) -> list[str]:
        with self._lock, _translate_errors("list"):
            rows = self._connection("list").execute(
                "SELECT key FROM kv WHERE substr(key, 1, length(?)) = ? ORDER BY key",
                (prefix, prefix),
            ).fetchall()
        return [row[0] for row in rows]

    def items_by_prefix(self, prefix: str) -> list[tuple[str, bytes]]:
        with self._lock, _translate_errors("list"):
            rows = self._connection("list").execute(
                "SELECT key, value FROM kv WHERE substr(key, 1, length(?)) = ? ORDER BY key",
                (prefix, prefix),
            ).fetchall()
        return [(row[0], bytes(row[1])) for row in rows]

    def get_model(self, key: str, model_cls: type[ModelT]) -> ModelT:
        return decode_model(key, self.get(key), model_cls)

    def set_model(self, model: KeyedModel) -> None:
        self.set(model.key, model.model_dump_json().encode("utf-8"))

    def check_integrity(self) -> IntegrityReport:
        """Run ``PRAGMA quick_check`` and try to decode a sample of stored values."""

        with self._lock, _translate_errors("integrity"):
            connection = self._connection("integrity")
            messages = [row[0] for row in connection.execute("PRAGMA quick_check").fetchall()]
            sample = connection.execute(
                "SELECT key, value FROM kv ORDER BY key LIMIT ?", (INTEGRITY_SAMPLE_SIZE,)
            ).fetchall()

        corrupt: list[str] = []
        for key, value in sample:
            try:
                json.loads(bytes(value))
            except (ValueError, UnicodeDecodeError):
                corrupt.append(key)

        engine_ok = messages == ["ok"]
        report = IntegrityReport(
            ok=engine_ok and not corrupt,
            engine_messages=[] if engine_ok else messages,
            keys_sampled=len(sample),
            corrupt_keys=corrupt,
        )
        if not report.ok:
            logger.warning("Integrity check failed", extra=report.as_dict())
        return report

    def backup(self, dest_dir: Path) -> Path:
        """Copy the database into ``dest_dir`` using the SQLite online backup API."""

        dest_dir = Path(dest_dir).expanduser()
        dest_dir.mkdir(parents=True, exist_ok=True)
        stamp = self._clock().strftime("%Y%m%dT%H%M%SZ")
        destination = dest_dir / f"humantime-backup-{stamp}.db"

        with self._lock, _translate_errors("backup"):
            target = sqlite3.connect(str(destination))
            try:
                self._connection("backup").backup(target)
            finally:
                target.close()
        logger.info("Wrote store backup", extra={"destination": str(destination)})
        return destination


def decode_model(key: str, raw: bytes, model_cls: type[ModelT]) -> ModelT:
    # entity validators raise UserError directly; a stored value breaking them is corrupt
    try:
        return model_cls.model_validate_json(raw)
    except (ValidationError, HumantimeError) as exc:
        raise SystemLevelError(
            f"corrupted value at {key}",
            code=ErrorCode.DATABASE_CORRUPTED,
            op="decode",
            cause=exc,
        ) from exc


__all__ = [
    "DB_FILENAME",
    "IntegrityReport",
    "KeyValueStore",
    "StoreOptions",
    "decode_model",
]
