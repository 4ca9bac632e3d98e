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

"""Listener for VerdictRevealed events.

Each reveal is routed back to its request context through the correlation
table and recorded in the audit log. The correlation entry is popped before
anything is written, so a re-delivered event finds nothing and is dropped.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping

from .audit import TIMELOCK_REVEAL_RECEIVED, VERIFICATION_ERROR, AuditLog
from .chain import ChainClient, SubscriptionHandle
from .codec import decode_verdict
from .commitment import VerdictCommitter
from .correlation import CorrelationTable
from .errors import RevealDecodeFailed
from .events import LogDecodeError, decode_reveal_log
from .logging_utils import get_logger, truncate
from .models import RevealEvent

logger = get_logger(__name__)

REVEAL_EVENT_NAME = "VerdictRevealed"
REVEAL_DECODE_STAGE = "TimelockRevealDecode"


class ListenerState(str, Enum):
    DETACHED = "detached"
    ATTACHING = "attaching"
    ATTACHED = "attached"
    ATTACH_FAILED = "attach_failed"


class RevealListener:
    def __init__(self, chain: ChainClient, committer: VerdictCommitter, correlation: CorrelationTable, audit: AuditLog):
        self.chain = chain
        self.committer = committer
        self.correlation = correlation
        self.audit = audit

        self.state = ListenerState.DETACHED
        self.handle: SubscriptionHandle | None = None
        self.stats = {"received": 0, "routed": 0, "unroutable": 0, "decode_failed": 0, "malformed": 0}

    @property
    def attached(self) -> bool:
        return self.state is ListenerState.ATTACHED

    async def attach(self) -> bool:
        """Subscribe to reveal events. Returns False without subscribing until the committer is ready."""
        if self.state is ListenerState.ATTACHED:
            return True
        if not self.committer.ready:
            logger.info("reveal.attach_deferred", committer_state=self.committer.state.value)
            return False

        self.state = ListenerState.ATTACHING
        try:
            self.handle = await self.chain.subscribe(REVEAL_EVENT_NAME, self.handle_log)
        except Exception as e:  # noqa: BLE001
            self.state = ListenerState.ATTACH_FAILED
            logger.error("reveal.attach_failed", error=str(e))
            return False

        self.state = ListenerState.ATTACHED
        logger.info("reveal.attached", handle_id=self.handle.handle_id, contract=self.chain.contract_address)
        return True

    async def detach(self) -> None:
        if self.handle is None:
            self.state = ListenerState.DETACHED
            return
        handle, self.handle = self.handle, None
        try:
            await self.chain.unsubscribe(handle)
        finally:
            self.state = ListenerState.DETACHED
        logger.info("reveal.detached", handle_id=handle.handle_id)

    async def handle_log(self, log: Mapping[str, Any]) -> None:
        """Subscription callback for a raw VerdictRevealed log."""
        self.stats["received"] += 1
        try:
            event = decode_reveal_log(log)
        except LogDecodeError as e:
            self.stats["malformed"] += 1
            logger.error("reveal.malformed_log", error=str(e), tx_hash=str(log.get("transactionHash")))
            return
        await self.handle_event(event)

    async def handle_event(self, event: RevealEvent) -> None:
        request_context = self.correlation.pop(event.protocol_request_id)
        if request_context is None:
            self.stats["unroutable"] += 1
            logger.warning(
                "reveal.unroutable",
                protocol_request_id=event.protocol_request_id,
                tx_hash=event.transaction_hash,
                requester=event.requester,
            )
            return

        try:
            verdict = decode_verdict(event.payload)
        except RevealDecodeFailed as e:
            self.stats["decode_failed"] += 1
            logger.error("reveal.decode_failed", protocol_request_id=event.protocol_request_id, request_context=request_context)
            await self._audit(
                VERIFICATION_ERROR,
                {
                    "stage": REVEAL_DECODE_STAGE,
                    "error": e.message,
                    "protocolRequestId": event.protocol_request_id,
                    "rawBytes": "0x" + e.raw_payload.hex(),
                },
                request_context,
            )
            return

        self.stats["routed"] += 1
        logger.info(
            "reveal.received",
            protocol_request_id=event.protocol_request_id,
            request_context=request_context,
            verdict=truncate(verdict, 40),
        )
        await self._audit(
            TIMELOCK_REVEAL_RECEIVED,
            {
                "protocolRequestId": event.protocol_request_id,
                "revealedVerdict": verdict,
                "sourceTransactionHash": event.transaction_hash,
                "requester": event.requester,
            },
            request_context,
        )

    async def _audit(self, event_type: str, details: dict[str, Any], request_context: str) -> None:
        try:
            await self.audit.append(event_type, details, request_context)
        except Exception as e:  # noqa: BLE001
            # A failing sink must not end the subscription
            logger.error("reveal.audit_failed", event_type=event_type, request_context=request_context, error=str(e))
