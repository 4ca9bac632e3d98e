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

"""Verdict encryption and on-chain commitment.

A verdict is ABI-encoded, timelock-encrypted for ``current height + delay``,
and committed to the commitment contract. The protocol request id assigned by
the contract is read back from the receipt and mapped to the caller's request
context so the later reveal event can be routed.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any

from .audit import TIMELOCK_COMMITTED, AuditLog
from .chain import ChainClient
from .codec import encode_verdict
from .correlation import CorrelationTable
from .errors import (
    ChainConnectivityFailure,
    ChainTimeout,
    CommitmentEventMissing,
    CommitTransactionFailed,
    InvalidCommitRequest,
    NotInitialized,
    VerdictServiceError,
)
from .events import VERDICT_COMMITTED_TOPIC, LogDecodeError, decode_commitment_request_id, find_event_log
from .logging_utils import get_logger, truncate
from .models import CommitmentRecord, CommitResult
from .timelock import TimelockEncryptor

logger = get_logger(__name__)

COMMIT_FUNCTION = "commitVerdict"
DEFAULT_REVEAL_DELAY = 5
RECEIPT_CONFIRMATIONS = 1


class CommitterState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class VerdictCommitter:
    """Owns the commit-side state machine and the correlation table writes."""

    def __init__(
        self,
        chain: ChainClient,
        encryptor: TimelockEncryptor,
        correlation: CorrelationTable,
        default_delay: int = DEFAULT_REVEAL_DELAY,
        receipt_timeout: float = 120.0,
        audit: AuditLog | None = None,
    ):
        """Initialize the committer.

        Args:
            chain: Chain client bound to the commitment contract
            encryptor: Timelock encryption capability
            correlation: Table that routes reveal events back to request contexts
            default_delay: Reveal delay in blocks when the caller gives none
            receipt_timeout: Seconds to wait for the commit transaction receipt
            audit: Optional sink that also records each successful commitment
        """
        self.chain = chain
        self.encryptor = encryptor
        self.correlation = correlation
        self.default_delay = default_delay
        self.receipt_timeout = receipt_timeout
        self.audit = audit

        self.state = CommitterState.UNINITIALIZED
        self.last_error: VerdictServiceError | None = None
        self.network: dict[str, Any] = {}
        self._init_task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def ready(self) -> bool:
        return self.state is CommitterState.READY

    async def initialize(self) -> bool:
        """Run connectivity checks and move to READY; idempotent once ready.

        Concurrent callers share one in-flight attempt. Returns True when ready,
        False when the attempt failed (state FAILED, ``last_error`` set).
        """
        if self.state is CommitterState.READY:
            return True
        if self._init_task is None or self._init_task.done():
            self._init_task = asyncio.create_task(self._initialize())
        return await asyncio.shield(self._init_task)

    async def _initialize(self) -> bool:
        self.state = CommitterState.INITIALIZING
        logger.info("committer.initializing", contract=self.chain.contract_address)
        try:
            self.network = await self.chain.connect()
            if not await self.chain.contract_reachable():
                raise ChainConnectivityFailure(
                    f"No contract code at {self.chain.contract_address}",
                    details={"contract": self.chain.contract_address},
                )
        except ChainConnectivityFailure as e:
            return self._fail(e)
        except ChainTimeout as e:
            return self._fail(ChainConnectivityFailure(f"Chain connectivity check timed out: {e.message}"))
        except Exception as e:  # noqa: BLE001
            return self._fail(ChainConnectivityFailure(f"Chain connectivity check failed: {e}"))

        self.state = CommitterState.READY
        self.last_error = None
        logger.info("committer.ready", contract=self.chain.contract_address, **self.network)
        return True

    def _fail(self, error: ChainConnectivityFailure) -> bool:
        self.state = CommitterState.FAILED
        self.last_error = error
        logger.error("committer.init_failed", error=error.message, contract=self.chain.contract_address)
        return False

    async def commit(self, verdict: str, delay: int | None = None, request_context: str | None = None) -> CommitResult:
        """Encrypt and commit a verdict.

        Args:
            verdict: Verdict plaintext
            delay: Blocks from the current height until the verdict may be revealed
            request_context: Request to route the reveal back to

        Returns:
            CommitResult with the protocol request id, tx hash and ciphertext hash

        Raises:
            NotInitialized: the committer is not READY
            InvalidCommitRequest: the reveal delay is not a positive block count
            CommitTransactionFailed: submission failed, reverted, or timed out
            CommitmentEventMissing: confirmed receipt has no decodable commitment event
        """
        if self.state is not CommitterState.READY:
            raise NotInitialized(f"Verdict committer is {self.state.value}; cannot commit", details={"state": self.state.value})

        task = asyncio.current_task()
        if task is not None:
            self._inflight.add(task)
        try:
            return await self._commit(verdict, self.default_delay if delay is None else delay, request_context)
        finally:
            if task is not None:
                self._inflight.discard(task)

    async def _commit(self, verdict: str, delay: int, request_context: str | None) -> CommitResult:
        if delay <= 0:
            raise InvalidCommitRequest(f"Reveal delay must be a positive number of blocks, got {delay}", details={"delay": delay})
        ctx = request_context or "unknownContext"

        try:
            current_height = await self.chain.get_height()
        except Exception as e:  # noqa: BLE001
            raise CommitTransactionFailed(f"Could not read chain height: {e}")
        reveal_height = current_height + delay
        logger.info("commit.target", request_context=ctx, current_height=current_height, reveal_height=reveal_height)

        payload = encode_verdict(verdict)
        try:
            ciphertext = self.encryptor.encrypt(payload, reveal_height)
        except Exception as e:  # noqa: BLE001
            raise CommitTransactionFailed(f"Timelock encryption for height {reveal_height} failed: {e}")
        ciphertext_hash = ciphertext.hash
        logger.info("commit.encrypted", request_context=ctx, verdict=truncate(verdict, 40), ciphertext_hash=ciphertext_hash)

        tx_hash = None
        try:
            tx_hash = await self.chain.send_transaction(COMMIT_FUNCTION, reveal_height, ciphertext.to_solidity())
            logger.info("commit.sent", request_context=ctx, tx_hash=tx_hash)
            receipt = await self.chain.wait_for_receipt(tx_hash, RECEIPT_CONFIRMATIONS, self.receipt_timeout)
        except ChainTimeout as e:
            logger.error("commit.timeout", request_context=ctx, tx_hash=tx_hash, error=e.message)
            raise CommitTransactionFailed(f"Commit transaction not confirmed: {e.message}", tx_hash=tx_hash)
        except Exception as e:  # noqa: BLE001
            logger.error("commit.send_failed", request_context=ctx, tx_hash=tx_hash, error=str(e))
            raise CommitTransactionFailed(f"Commit transaction failed: {e}", tx_hash=tx_hash)

        if receipt is None:
            raise CommitTransactionFailed(f"No receipt for commit transaction {tx_hash}", tx_hash=tx_hash)
        if receipt.get("status") != 1:
            logger.error("commit.reverted", request_context=ctx, tx_hash=tx_hash, block=receipt.get("blockNumber"))
            raise CommitTransactionFailed(f"Commit transaction {tx_hash} reverted on-chain", tx_hash=tx_hash)
        logger.info("commit.confirmed", request_context=ctx, tx_hash=tx_hash, block=receipt.get("blockNumber"))

        log = find_event_log(receipt.get("logs", []), VERDICT_COMMITTED_TOPIC, self.chain.contract_address)
        if log is None:
            logger.error("commit.event_missing", request_context=ctx, tx_hash=tx_hash, contract=self.chain.contract_address)
            raise CommitmentEventMissing(f"No VerdictCommitted event in receipt for {tx_hash}", tx_hash=tx_hash)
        try:
            protocol_request_id = decode_commitment_request_id(log)
        except LogDecodeError as e:
            logger.error("commit.event_undecodable", request_context=ctx, tx_hash=tx_hash, error=str(e))
            raise CommitmentEventMissing(f"Cannot decode request id from VerdictCommitted: {e}", tx_hash=tx_hash)

        if request_context:
            self.correlation.insert(protocol_request_id, request_context)
            logger.info("commit.correlated", protocol_request_id=protocol_request_id, request_context=request_context)
        else:
            logger.warning("commit.uncorrelated", protocol_request_id=protocol_request_id, tx_hash=tx_hash)

        record = CommitmentRecord(
            verdict_plaintext=verdict,
            reveal_height=reveal_height,
            ciphertext=ciphertext,
            protocol_request_id=protocol_request_id,
            transaction_hash=tx_hash,
            ciphertext_hash=ciphertext_hash,
        )
        result = CommitResult(
            protocol_request_id=protocol_request_id,
            transaction_hash=tx_hash,
            ciphertext_hash=ciphertext_hash,
            record=record,
        )
        if self.audit is not None:
            await self._record_commit(result, reveal_height, request_context)
        return result

    async def _record_commit(self, result: CommitResult, reveal_height: int, request_context: str | None) -> None:
        try:
            await self.audit.append(TIMELOCK_COMMITTED, {**result.to_dict(), "revealHeight": reveal_height}, request_context)
        except Exception as e:  # noqa: BLE001
            # The commitment is on-chain; a lost audit line must not turn it into a failure
            logger.error("commit.audit_failed", protocol_request_id=result.protocol_request_id, error=str(e))

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def drain(self, timeout: float) -> int:
        """Wait up to ``timeout`` for in-flight commits, then cancel the rest. Returns the number cancelled."""
        pending = {t for t in self._inflight if not t.done() and t is not asyncio.current_task()}
        if not pending:
            return 0
        logger.info("committer.draining", inflight=len(pending), timeout=timeout)
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        for t in still_pending:
            t.cancel()
        if still_pending:
            logger.warning("committer.drain_cancelled", cancelled=len(still_pending))
        return len(still_pending)
