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

"""Audit log sink backed by the job store."""

from __future__ import annotations

import re
from typing import Any, Protocol

from .job_store import ERRORS_PREFIX, EVENTS_PREFIX, TIMELOCK_REVEALS_PREFIX, JobStore
from .logging_utils import get_logger
from .models import AuditEntry

logger = get_logger(__name__)

TIMELOCK_REVEAL_RECEIVED = "TIMELOCK_REVEAL_RECEIVED"
TIMELOCK_COMMITTED = "TIMELOCK_COMMITTED"
VERIFICATION_ERROR = "VERIFICATION_ERROR"
ERROR_EVENT = "ERROR_EVENT"

UNKNOWN_CONTEXT = "unknownContext"

_ERROR_TYPES = {VERIFICATION_ERROR, ERROR_EVENT}


class AuditLog(Protocol):
    async def append(self, event_type: str, details: dict[str, Any], request_context: str | None) -> str: ...


def _key_suffix(timestamp: str) -> str:
    return re.sub(r"[:.]", "-", timestamp).replace("T", "_").replace("Z", "")


class StoreAuditLog:
    """Writes each audit event as its own object; keys never collide so nothing is overwritten."""

    def __init__(self, store: JobStore):
        self.store = store

    def key_for(self, entry: AuditEntry) -> str:
        ctx = entry.request_context or UNKNOWN_CONTEXT
        if entry.type == TIMELOCK_REVEAL_RECEIVED and entry.details.get("protocolRequestId"):
            return f"{TIMELOCK_REVEALS_PREFIX}{ctx}/{entry.details['protocolRequestId']}.json"
        suffix = _key_suffix(entry.timestamp)
        if entry.type in _ERROR_TYPES:
            stage = entry.details.get("stage") or "Unknown"
            return f"{ERRORS_PREFIX}{ctx}/{stage}_{suffix}.json"
        return f"{EVENTS_PREFIX}{ctx}/{entry.type}_{suffix}.json"

    async def append(self, event_type: str, details: dict[str, Any], request_context: str | None) -> str:
        entry = AuditEntry(type=event_type, details=details, request_context=request_context)
        key = self.key_for(entry)
        await self.store.put(key, entry.to_store())
        logger.info("audit.appended", event_type=event_type, key=key, request_context=request_context)
        return key

    async def error(self, stage: str, error: str, request_context: str | None, **details: Any) -> str:
        return await self.append(ERROR_EVENT, {"stage": stage, "error": error, **details}, request_context)
