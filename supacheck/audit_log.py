from __future__ import annotations

import asyncio
import json
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import CorruptLogStore

CheckType = Literal["RLS", "MFA", "PITR"]


class LogEntry(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    timestamp: str
    action: str
    result: Any = None
    check_type: CheckType = Field(alias="type")

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


class AccountLog(BaseModel):
    account: str
    logs: list[LogEntry] = Field(default_factory=list)


_STORE_ADAPTER = TypeAdapter(list[AccountLog])


def new_entry(check_type: str, action: str, result: Any) -> LogEntry:
    return LogEntry(
        timestamp=datetime.now(timezone.utc).isoformat(),
        action=action,
        result=result,
        type=check_type,
    )


def audit_account(project_ref: str, user: str | None = None) -> str:
    if user:
        return f"{project_ref}:{user}"
    return project_ref


def format_logs(entries: list[LogEntry]) -> str:
    return "".join(
        f"[{entry.timestamp}]\n"
        f"Action: {entry.action}\n"
        f"Type: {entry.check_type}\n"
        f"Result: {json.dumps(entry.result, indent=2)}\n\n"
        for entry in entries
    )


def _filter(entries: list[LogEntry], check_type: str | None) -> list[LogEntry]:
    if check_type is None:
        return list(entries)
    return [entry for entry in entries if entry.check_type == check_type]


class AuditLogStore(ABC):
    @abstractmethod
    async def append(self, account: str, entries: list[LogEntry]) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list(self, account: str, check_type: str | None = None) -> list[LogEntry]:
        raise NotImplementedError


class MemoryAuditLogStore(AuditLogStore):
    def __init__(self) -> None:
        self._logs: dict[str, list[LogEntry]] = {}
        self._lock = asyncio.Lock()

    async def append(self, account: str, entries: list[LogEntry]) -> None:
        async with self._lock:
            self._logs.setdefault(account, []).extend(entries)

    async def list(self, account: str, check_type: str | None = None) -> list[LogEntry]:
        return _filter(self._logs.get(account, []), check_type)


class FileAuditLogStore(AuditLogStore):
    """JSON file holding every account's log, rewritten in full on append.

    One lock serializes the whole read-modify-write cycle. All partitions live
    in the same file, so this also keeps appends for different accounts from
    overwriting each other.
    """

    def __init__(self, path: str | Path = ".audit_logs.json") -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    async def append(self, account: str, entries: list[LogEntry]) -> None:
        if not entries:
            return
        async with self._lock:
            await asyncio.to_thread(self._append_sync, account, entries)

    async def list(self, account: str, check_type: str | None = None) -> list[LogEntry]:
        records = await asyncio.to_thread(self._read_all)
        for record in records:
            if record.account == account:
                return _filter(record.logs, check_type)
        return []

    def _append_sync(self, account: str, entries: list[LogEntry]) -> None:
        records = self._read_all()
        for record in records:
            if record.account == account:
                record.logs.extend(entries)
                break
        else:
            records.append(AccountLog(account=account, logs=list(entries)))
        self._write_all(records)

    def _read_all(self) -> list[AccountLog]:
        if not self._path.exists():
            return []

        raw = self._path.read_bytes()
        if not raw.strip():
            return []
        try:
            return _STORE_ADAPTER.validate_json(raw.decode("utf-8"))
        except UnicodeDecodeError as error:
            raise CorruptLogStore(
                f"Audit log store {self._path} is not valid UTF-8.",
                details={"position": error.start},
            ) from error
        except ValidationError as error:
            raise CorruptLogStore(
                f"Audit log store {self._path} is unreadable.",
                details=error.errors(include_url=False, include_context=False),
            ) from error

    def _write_all(self, records: list[AccountLog]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(_STORE_ADAPTER.dump_json(records, by_alias=True, indent=2).decode())
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
