"""Remote protocol, wire record and backends.

Records are whole-entry JSON documents keyed by entry id. Attachment blobs are
stored under content-addressed keys ``<entry_id>/<sha256><suffix>`` so an
unchanged attachment is detected as already present and never re-uploaded.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Protocol, runtime_checkable

import aiohttp

from remember.errors import RemoteUnavailable, StorageUnavailable
from remember.journal.entry import Entry, MemoryQuestion, format_timestamp, parse_timestamp
from remember.storage import atomic_write_bytes

logger = logging.getLogger(__name__)


def content_id(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def blob_key(entry_id: str, data: bytes, suffix: str = "") -> str:
    return f"{entry_id}/{content_id(data)}{suffix}"


@dataclass
class RemoteEntry:
    """An entry as stored remotely. ``attachments`` maps attachment id → blob key."""

    id: str
    title: str
    content: str
    created_at: Any
    modified_at: Any
    restored_at: Any = None
    decay_level: int = 0
    tags: list[str] = field(default_factory=list)
    attachments: dict[str, str] = field(default_factory=dict)
    questions: list[dict[str, str]] = field(default_factory=list)
    user_id: str | None = None

    def __post_init__(self) -> None:
        self.created_at = parse_timestamp(self.created_at)
        self.modified_at = parse_timestamp(self.modified_at) or self.created_at
        self.restored_at = parse_timestamp(self.restored_at)

    @classmethod
    def from_entry(
        cls, entry: Entry, attachment_keys: dict[str, str], user_id: str | None = None
    ) -> RemoteEntry:
        return cls(
            id=entry.id,
            title=entry.title,
            content=entry.content,
            created_at=entry.created_at,
            modified_at=entry.modified_at,
            restored_at=entry.restored_at,
            decay_level=entry.decay_level,
            tags=sorted(entry.tags),
            attachments=dict(attachment_keys),
            questions=[{"question": q.question, "answer": q.answer} for q in entry.questions],
            user_id=user_id,
        )

    def to_entry(self, attachments: dict[str, Path]) -> Entry:
        return Entry(
            id=self.id,
            title=self.title,
            content=self.content,
            created_at=self.created_at,
            modified_at=self.modified_at,
            restored_at=self.restored_at,
            decay_level=self.decay_level,
            tags=frozenset(self.tags),
            attachments=dict(attachments),
            questions=tuple(MemoryQuestion(q["question"], q["answer"]) for q in self.questions),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "created_at": format_timestamp(self.created_at),
            "modified_at": format_timestamp(self.modified_at),
            "restored_at": format_timestamp(self.restored_at) if self.restored_at else None,
            "decay_level": self.decay_level,
            "tags": list(self.tags),
            "attachments": dict(self.attachments),
            "questions": list(self.questions),
            "user_id": self.user_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteEntry:
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            content=str(data.get("content", "")),
            created_at=data["created_at"],
            modified_at=data.get("modified_at"),
            restored_at=data.get("restored_at"),
            decay_level=int(data.get("decay_level", 0)),
            tags=[str(t) for t in data.get("tags") or []],
            attachments={str(k): str(v) for k, v in (data.get("attachments") or {}).items()},
            questions=[
                {"question": str(q["question"]), "answer": str(q["answer"])}
                for q in data.get("questions") or []
            ],
            user_id=data.get("user_id"),
        )


@runtime_checkable
class Remote(Protocol):
    """Protocol that all remote backends must implement. Deletes are idempotent."""

    @property
    def name(self) -> str: ...

    async def fetch_records(self, user_id: str) -> list[dict]:
        """Return every record owned by ``user_id``."""
        ...

    async def get_record(self, user_id: str, entry_id: str) -> dict | None: ...

    async def put_record(self, user_id: str, record: dict) -> None: ...

    async def delete_record(self, user_id: str, entry_id: str) -> None: ...

    async def has_blob(self, user_id: str, key: str) -> bool: ...

    async def put_blob(self, user_id: str, key: str, data: bytes) -> None: ...

    async def get_blob(self, user_id: str, key: str) -> bytes: ...

    async def delete_blob(self, user_id: str, key: str) -> None: ...


def _safe_key(key: str) -> PurePosixPath:
    path = PurePosixPath(key)
    if path.is_absolute() or ".." in path.parts or not path.parts:
        raise ValueError(f"Invalid blob key: {key!r}")
    return path


class DirectoryRemote:
    """Remote kept in a shared directory (network mount, synced folder).

    Layout: ``<root>/<user_id>/entries/<id>.json`` and
    ``<root>/<user_id>/blobs/<entry_id>/<sha256><suffix>``.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    @property
    def name(self) -> str:
        return "directory"

    def _user_dir(self, user_id: str) -> Path:
        return self.root / _safe_key(user_id).name

    def _record_path(self, user_id: str, entry_id: str) -> Path:
        return self._user_dir(user_id) / "entries" / f"{_safe_key(entry_id).name}.json"

    def _blob_path(self, user_id: str, key: str) -> Path:
        return self._user_dir(user_id) / "blobs" / Path(*_safe_key(key).parts)

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except (OSError, ValueError) as e:
            raise RemoteUnavailable(f"{self.name} remote: {e}") from e

    async def fetch_records(self, user_id: str) -> list[dict]:
        def _fetch() -> list[dict]:
            records = []
            entries_dir = self._user_dir(user_id) / "entries"
            if not entries_dir.is_dir():
                return records
            for path in sorted(entries_dir.glob("*.json")):
                try:
                    records.append(json.loads(path.read_text(encoding="utf-8")))
                except ValueError as e:
                    logger.warning("Skipping corrupt remote record %s: %s", path.name, e)
            return records

        return await self._run(_fetch)

    async def get_record(self, user_id: str, entry_id: str) -> dict | None:
        def _get() -> dict | None:
            path = self._record_path(user_id, entry_id)
            if not path.exists():
                return None
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except ValueError as e:
                logger.warning("Ignoring corrupt remote record %s: %s", path.name, e)
                return None
            return data if isinstance(data, dict) else None

        return await self._run(_get)

    async def put_record(self, user_id: str, record: dict) -> None:
        path = self._record_path(user_id, record["id"])
        data = json.dumps(record, ensure_ascii=False).encode("utf-8")
        await self._run(_write_or_raise, path, data)

    async def delete_record(self, user_id: str, entry_id: str) -> None:
        await self._run(self._record_path(user_id, entry_id).unlink, True)

    async def has_blob(self, user_id: str, key: str) -> bool:
        return await self._run(self._blob_path(user_id, key).exists)

    async def put_blob(self, user_id: str, key: str, data: bytes) -> None:
        await self._run(_write_or_raise, self._blob_path(user_id, key), data)

    async def get_blob(self, user_id: str, key: str) -> bytes:
        return await self._run(self._blob_path(user_id, key).read_bytes)

    async def delete_blob(self, user_id: str, key: str) -> None:
        await self._run(self._blob_path(user_id, key).unlink, True)


def _write_or_raise(path: Path, data: bytes) -> None:
    try:
        atomic_write_bytes(path, data)
    except StorageUnavailable as e:
        raise OSError(str(e)) from e


def _decode(body: bytes, url: str, expected: type) -> Any:
    """Parse a JSON response body; anything unexpected is a remote failure."""
    try:
        data = json.loads(body)
    except ValueError as e:
        raise RemoteUnavailable(f"GET {url}: malformed response: {e}") from e
    if not isinstance(data, expected):
        raise RemoteUnavailable(f"GET {url}: expected a JSON {expected.__name__}")
    return data


class HttpRemote:
    """REST remote over aiohttp.

    Routes, relative to ``base_url``::

        GET    /users/{uid}/entries
        GET    /users/{uid}/entries/{id}
        PUT    /users/{uid}/entries/{id}
        DELETE /users/{uid}/entries/{id}
        HEAD   /users/{uid}/blobs/{key}
        PUT    /users/{uid}/blobs/{key}
        GET    /users/{uid}/blobs/{key}
        DELETE /users/{uid}/blobs/{key}
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._session = session
        self._owns_session = session is None

    @property
    def name(self) -> str:
        return "http"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
            self._session = aiohttp.ClientSession(headers=headers)
            self._owns_session = True
        return self._session

    def _url(self, user_id: str, *parts: str) -> str:
        return "/".join([self.base_url, "users", user_id, *parts])

    async def _request(
        self, method: str, url: str, *, ok_missing: bool = False, **kwargs
    ) -> tuple[int, bytes]:
        try:
            async with self._get_session().request(method, url, **kwargs) as resp:
                body = await resp.read()
                if resp.status == 404 and ok_missing:
                    return resp.status, body
                if resp.status >= 400:
                    raise RemoteUnavailable(f"{method} {url} -> HTTP {resp.status}")
                return resp.status, body
        except aiohttp.ClientError as e:
            raise RemoteUnavailable(f"{method} {url}: {e}") from e

    async def fetch_records(self, user_id: str) -> list[dict]:
        url = self._url(user_id, "entries")
        _, body = await self._request("GET", url)
        return _decode(body or b"[]", url, list)

    async def get_record(self, user_id: str, entry_id: str) -> dict | None:
        url = self._url(user_id, "entries", entry_id)
        status, body = await self._request("GET", url, ok_missing=True)
        if status == 404:
            return None
        return _decode(body, url, dict)

    async def put_record(self, user_id: str, record: dict) -> None:
        await self._request("PUT", self._url(user_id, "entries", record["id"]), json=record)

    async def delete_record(self, user_id: str, entry_id: str) -> None:
        await self._request("DELETE", self._url(user_id, "entries", entry_id), ok_missing=True)

    async def has_blob(self, user_id: str, key: str) -> bool:
        status, _ = await self._request("HEAD", self._url(user_id, "blobs", key), ok_missing=True)
        return status != 404

    async def put_blob(self, user_id: str, key: str, data: bytes) -> None:
        await self._request(
            "PUT",
            self._url(user_id, "blobs", key),
            data=data,
            headers={"Content-Type": "application/octet-stream"},
        )

    async def get_blob(self, user_id: str, key: str) -> bytes:
        _, body = await self._request("GET", self._url(user_id, "blobs", key))
        return body

    async def delete_blob(self, user_id: str, key: str) -> None:
        await self._request("DELETE", self._url(user_id, "blobs", key), ok_missing=True)

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
