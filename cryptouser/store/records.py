"""File-backed record store: one JSON file per identity.

Layout (under the configured directory, created on first use):

    <id>.json       committed record
    <id>.json~      staging file for an in-flight replace
    .<id>.<rand>~   staging file for an in-flight create

Guarantees:
  - create() writes and fsyncs a uniquely named staging file, then publishes
    it with os.link(), which fails if <id>.json already exists. The record
    appears complete or not at all, and a concurrent create of the same id
    fails instead of overwriting.
  - write()/update() stage into <id>.json~, fsync, then os.replace() onto
    <id>.json. Readers see either the old or the new record, never a
    partial one.
  - Ids are validated against ID_PATTERN before any path is built, so no id
    can escape the directory or collide with a staging file.

Non-guarantee: update() is a plain read-modify-write. Two concurrent updates
of the same id both succeed and the later rename wins.

All public methods are coroutines; blocking filesystem calls run in a worker
thread via asyncio.to_thread.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Optional, Union

from cryptouser.constants import ID_PATTERN, RECORD_EXTENSION, TEMP_SUFFIX
from cryptouser.utils.logger import get_logger, store_timer

logger = get_logger(__name__)

Record = dict[str, Any]
Mutator = Callable[[Record], Record]


# ─── Exceptions ───────────────────────────────────────────────────────────────


class InvalidIdError(ValueError):
    """Raised when an id does not match ID_PATTERN.

    HTTP mapping: 400 Bad Request
    """

    def __init__(self, record_id: object) -> None:
        super().__init__(f"Invalid id: {record_id!r}")
        self.record_id = record_id


class RecordExistsError(Exception):
    """Raised by create() when a record for the id is already present.

    HTTP mapping: 409 Conflict
    """

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Record already exists: {record_id}")
        self.record_id = record_id


class RecordNotFoundError(Exception):
    """Raised by update()/delete() when no record exists for the id.

    HTTP mapping: 404 Not Found
    """

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Record not found: {record_id}")
        self.record_id = record_id


# ─── Encoding ─────────────────────────────────────────────────────────────────


def is_valid_id(record_id: object) -> bool:
    return isinstance(record_id, str) and ID_PATTERN.fullmatch(record_id) is not None


def encode_filename(record_id: str) -> str:
    """Map an id to its record filename.

    Raises:
        InvalidIdError: If the id is empty or contains characters outside [a-z0-9].
    """
    if not is_valid_id(record_id):
        raise InvalidIdError(record_id)
    return f"{record_id}{RECORD_EXTENSION}"


def decode_filename(filename: str) -> Optional[str]:
    """Map a directory entry back to an id, or None if it is not a record file."""
    if not filename.endswith(RECORD_EXTENSION):
        return None
    record_id = filename[: -len(RECORD_EXTENSION)]
    return record_id if is_valid_id(record_id) else None


def _serialize(record: Record) -> str:
    return json.dumps(record, indent=2, ensure_ascii=False) + "\n"


def _parse(text: str) -> Record:
    return json.loads(text)


# ─── Store ────────────────────────────────────────────────────────────────────


class RecordStore:
    """Durable id → record mapping backed by a directory of JSON files."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path).expanduser()

    def __repr__(self) -> str:
        return f"RecordStore({str(self.path)!r})"

    # ── Paths ──────────────────────────────────────────────────────────────

    def _filename(self, record_id: str) -> Path:
        return self.path / encode_filename(record_id)

    def _temp_filename(self, record_id: str) -> Path:
        target = self._filename(record_id)
        return target.with_name(target.name + TEMP_SUFFIX)

    def _mkdir(self) -> None:
        self.path.mkdir(parents=True, exist_ok=True)

    # ── Blocking primitives (run in a worker thread) ───────────────────────

    def _create_sync(self, record_id: str, record: Record) -> None:
        filename = self._filename(record_id)
        self._mkdir()
        data = _serialize(record)
        fd, staging = tempfile.mkstemp(dir=self.path, prefix=f".{record_id}.", suffix=TEMP_SUFFIX)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            try:
                os.link(staging, filename)
            except FileExistsError:
                raise RecordExistsError(record_id) from None
        finally:
            os.unlink(staging)

    def _read_sync(self, record_id: str) -> Optional[Record]:
        filename = self._filename(record_id)
        self._mkdir()
        try:
            text = filename.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return _parse(text)

    def _replace_sync(self, record_id: str, record: Record) -> None:
        filename = self._filename(record_id)
        temp = self._temp_filename(record_id)
        data = _serialize(record)
        try:
            with open(temp, "w", encoding="utf-8") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(temp, filename)
        except BaseException:
            temp.unlink(missing_ok=True)
            raise

    def _write_sync(self, record_id: str, record: Record) -> None:
        encode_filename(record_id)
        self._mkdir()
        self._replace_sync(record_id, record)

    def _update_sync(self, record_id: str, mutator: Mutator) -> Record:
        current = self._read_sync(record_id)
        if current is None:
            raise RecordNotFoundError(record_id)
        updated = mutator(current)
        self._replace_sync(record_id, updated)
        return updated

    def _delete_sync(self, record_id: str) -> None:
        filename = self._filename(record_id)
        self._mkdir()
        try:
            filename.unlink()
        except FileNotFoundError:
            raise RecordNotFoundError(record_id) from None

    def _list_sync(self) -> list[str]:
        self._mkdir()
        ids = []
        for entry in os.listdir(self.path):
            record_id = decode_filename(entry)
            if record_id is not None:
                ids.append(record_id)
        return ids

    # ── Public API ─────────────────────────────────────────────────────────

    async def create(self, record_id: str, record: Record) -> None:
        """Store a new record.

        Raises:
            InvalidIdError:    Malformed id.
            RecordExistsError: A record for the id is already present.
        """
        with store_timer("create", logger, record_id, expected=(RecordExistsError,)):
            await asyncio.to_thread(self._create_sync, record_id, record)
        logger.info("Record created", record_id=record_id)

    async def read(self, record_id: str) -> Optional[Record]:
        """Return the record for ``record_id``, or None if there is none.

        Raises:
            InvalidIdError: Malformed id.
        """
        with store_timer("read", logger, record_id):
            return await asyncio.to_thread(self._read_sync, record_id)

    async def write(self, record_id: str, record: Record) -> None:
        """Create or atomically replace the record for ``record_id``.

        Raises:
            InvalidIdError: Malformed id.
        """
        with store_timer("write", logger, record_id):
            await asyncio.to_thread(self._write_sync, record_id, record)
        logger.info("Record written", record_id=record_id)

    async def update(self, record_id: str, mutator: Mutator) -> Record:
        """Read, transform with ``mutator``, and atomically replace a record.

        No locking: a concurrent update of the same id may be silently lost.

        Returns:
            The record as written.

        Raises:
            InvalidIdError:      Malformed id.
            RecordNotFoundError: No record for the id.
        """
        with store_timer("update", logger, record_id, expected=(RecordNotFoundError,)):
            updated = await asyncio.to_thread(self._update_sync, record_id, mutator)
        logger.info("Record updated", record_id=record_id)
        return updated

    async def delete(self, record_id: str) -> None:
        """Remove a record.

        Raises:
            InvalidIdError:      Malformed id.
            RecordNotFoundError: No record for the id.
        """
        with store_timer("delete", logger, record_id, expected=(RecordNotFoundError,)):
            await asyncio.to_thread(self._delete_sync, record_id)
        logger.info("Record deleted", record_id=record_id)

    async def list(self) -> list[str]:
        """Ids of all stored records, in directory order."""
        with store_timer("list", logger):
            return await asyncio.to_thread(self._list_sync)
