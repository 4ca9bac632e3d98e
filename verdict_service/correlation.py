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

"""Bounded protocol-request-id to request-context table with FIFO eviction."""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass

from .logging_utils import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_SIZE = 1000


@dataclass
class CorrelationEntry:
    protocol_request_id: str
    request_context: str
    created_at: float


class CorrelationTable:
    """Thread-safe bounded mapping used to route reveal events.

    When full, inserting evicts the single oldest entry by insertion order,
    even if its reveal is still pending. A reveal for an evicted id becomes
    unroutable.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self._entries: OrderedDict[str, CorrelationEntry] = OrderedDict()
        self._lock = threading.Lock()
        self.evictions = 0

    def insert(self, protocol_request_id: str, request_context: str) -> CorrelationEntry | None:
        """Map an id to its request context; returns the evicted entry, if any."""
        evicted = None
        with self._lock:
            if protocol_request_id in self._entries:
                self._entries[protocol_request_id].request_context = request_context
                return None
            if len(self._entries) >= self.max_size:
                _, evicted = self._entries.popitem(last=False)
                self.evictions += 1
            self._entries[protocol_request_id] = CorrelationEntry(protocol_request_id, request_context, time.time())

        if evicted is not None:
            logger.warning(
                "correlation.evicted",
                protocol_request_id=evicted.protocol_request_id,
                request_context=evicted.request_context,
                age_s=round(time.time() - evicted.created_at, 3),
                max_size=self.max_size,
            )
        return evicted

    def pop(self, protocol_request_id: str) -> str | None:
        """Atomically look up and remove; a second pop for the same id returns None."""
        with self._lock:
            entry = self._entries.pop(protocol_request_id, None)
        return entry.request_context if entry is not None else None

    def get(self, protocol_request_id: str) -> str | None:
        with self._lock:
            entry = self._entries.get(protocol_request_id)
        return entry.request_context if entry is not None else None

    def __contains__(self, protocol_request_id: object) -> bool:
        with self._lock:
            return protocol_request_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return {k: e.request_context for k, e in self._entries.items()}
