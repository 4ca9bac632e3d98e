# Copyright 2025 Verdict Service Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Key-object job store used as both work queue and append log.

The store is treated as at-least-once visible and eventually consistent; no
transactional guarantee is assumed across keys. Three backends: in-memory
(tests, single process), a directory of JSON files (several agent processes
on one host) and Redis (shared across hosts).
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Protocol

from .logging_utils import get_logger

logger = get_logger(__name__)

QUESTIONS_PREFIX = "questions/"
ANSWERS_PREFIX = "answers/"
ERRORS_PREFIX = "errors/"
TIMELOCK_REVEALS_PREFIX = "timelock_reveals/"
EVENTS_PREFIX = "events/"


def question_key(request_context: str) -> str:
    return f"{QUESTIONS_PREFIX}{request_context}.json"


def answer_key(request_context: str, agent_identity: str) -> str:
    """Deterministic per-(request, agent) record key; its existence is the idempotency guard."""
    return f"{ANSWERS_PREFIX}{request_context}/{agent_identity}.json"


class JobStore(Protocol):
    async def put(self, key: str, value: dict[str, Any]) -> None: ...
    async def get(self, key: str) -> dict[str, Any] | None: ...
    async def list_by_prefix(self, prefix: str) -> list[str]: ...
    async def close(self) -> None: ...


class MemoryJobStore:
    def __init__(self) -> None:
        self.objects: dict[str, str] = {}

    async def put(self, key: str, value: dict[str, Any]) -> None:
        self.objects[key] = json.dumps(value)

    async def get(self, key: str) -> dict[str, Any] | None:
        raw = self.objects.get(key)
        return _decode(key, raw) if raw is not None else None

    async def list_by_prefix(self, prefix: str) -> list[str]:
        return sorted(k for k in self.objects if k.startswith(prefix))

    async def close(self) -> None:
        return None


class FileJobStore:
    """Directory-backed store: one JSON file per key, key path segments become directories."""

    def __init__(self, root: str) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Key escapes store root: {key}")
        return path

    def _write(self, key: str, value: dict[str, Any]) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + f".{os.getpid()}.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(value, f, separators=(",", ":"))
        os.replace(tmp, path)

    def _read(self, key: str) -> dict[str, Any] | None:
        try:
            with open(self._path(key), encoding="utf-8") as f:
                raw = f.read()
        except FileNotFoundError:
            return None
        return _decode(key, raw)

    def _list(self, prefix: str) -> list[str]:
        keys = []
        for path in self.root.rglob("*"):
            if not path.is_file() or path.name.endswith(".tmp"):
                continue
            key = path.relative_to(self.root).as_posix()
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)

    async def put(self, key: str, value: dict[str, Any]) -> None:
        await asyncio.to_thread(self._write, key, value)

    async def get(self, key: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._read, key)

    async def list_by_prefix(self, prefix: str) -> list[str]:
        return await asyncio.to_thread(self._list, prefix)

    async def close(self) -> None:
        return None


class RedisJobStore:
    def __init__(self, url: str, key_prefix: str = "verdict:", socket_timeout: float = 5.0) -> None:
        import redis.asyncio as redis

        # Initialize Redis connection and key namespace
        self.r = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self.key_prefix = key_prefix

    def _make_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def put(self, key: str, value: dict[str, Any]) -> None:
        await self.r.set(self._make_key(key), json.dumps(value))

    async def get(self, key: str) -> dict[str, Any] | None:
        raw = await self.r.get(self._make_key(key))
        return _decode(key, raw) if raw is not None else None

    async def list_by_prefix(self, prefix: str) -> list[str]:
        keys = []
        strip = len(self.key_prefix)
        async for k in self.r.scan_iter(match=self._make_key(prefix) + "*"):
            keys.append(k[strip:])
        return sorted(keys)

    async def close(self) -> None:
        await self.r.aclose()


def _decode(key: str, raw: str) -> dict[str, Any] | None:
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning("job_store.decode_failed", key=key, error=str(e))
        return None
    if not isinstance(value, dict):
        logger.warning("job_store.not_an_object", key=key)
        return None
    return value


def build_job_store(settings: Any) -> JobStore:
    backend = getattr(settings, "job_store_backend", "memory")
    if backend == "redis":
        return RedisJobStore(settings.redis_url)
    if backend == "file":
        return FileJobStore(settings.job_store_path)
    return MemoryJobStore()
