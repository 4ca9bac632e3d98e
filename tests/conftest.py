"""Pytest configuration and shared fakes for the verdict service tests."""

# Ensure project root on sys.path for imports
import asyncio
import os
import sys

root = os.path.dirname(os.path.abspath(__file__))
proj = os.path.abspath(os.path.join(root, ".."))
for path in (proj, root):
    if path not in sys.path:
        sys.path.insert(0, path)

import pytest
from eth_abi import encode

from verdict_service.audit import StoreAuditLog
from verdict_service.chain import SubscriptionHandle
from verdict_service.commitment import VerdictCommitter
from verdict_service.correlation import CorrelationTable
from verdict_service.errors import ChainConnectivityFailure, ChainTimeout
from verdict_service.events import VERDICT_COMMITTED_TOPIC, VERDICT_REVEALED_TOPIC
from verdict_service.job_store import MemoryJobStore
from verdict_service.timelock import Ciphertext

CONTRACT_ADDRESS = "0x" + "ab" * 20
REQUESTER_ADDRESS = "0x" + "cd" * 20
TX_HASH = "0x" + "11" * 32


def topic_int(value: int) -> str:
    return "0x" + value.to_bytes(32, "big").hex()


def topic_address(address: str) -> str:
    return "0x" + "00" * 12 + address[2:].lower()


def commitment_log(request_id: int, address: str = CONTRACT_ADDRESS) -> dict:
    return {
        "address": address,
        "topics": [VERDICT_COMMITTED_TOPIC, topic_int(request_id), topic_address(REQUESTER_ADDRESS)],
        "data": "0x" + encode(["uint256", "bytes32"], [105, b"\x00" * 32]).hex(),
        "transactionHash": TX_HASH,
    }


def reveal_log(request_id: int, payload: bytes, tx_hash: str = "0x" + "22" * 32) -> dict:
    return {
        "address": CONTRACT_ADDRESS,
        "topics": [VERDICT_REVEALED_TOPIC, topic_int(request_id), topic_address(REQUESTER_ADDRESS)],
        "data": "0x" + encode(["bytes"], [payload]).hex(),
        "transactionHash": tx_hash,
        "blockNumber": 106,
    }


class FakeEncryptor:
    """Identity 'encryption' that records what it was asked to encrypt."""

    def __init__(self):
        self.calls = []

    def encrypt(self, payload: bytes, reveal_height: int) -> Ciphertext:
        self.calls.append((payload, reveal_height))
        return Ciphertext(u_x=(1, 2), u_y=(3, 4), v=payload, w=reveal_height.to_bytes(32, "big"))


class FakeChain:
    """In-memory chain client with scriptable failures."""

    def __init__(self, height: int = 100, request_id: int = 7):
        self.contract_address = CONTRACT_ADDRESS
        self.height = height
        self.request_id = request_id
        self.receipt_status = 1
        self.receipt_logs = None
        self.receipt_delay = 0.0
        self.receipt_timeout = False
        self.send_error = None
        self.connect_error = None
        self.reachable = True
        self.subscribe_failures = 0

        self.connect_calls = 0
        self.sent = []
        self.handles = []
        self.callbacks = {}

    async def connect(self):
        self.connect_calls += 1
        await asyncio.sleep(0)
        if self.connect_error is not None:
            raise self.connect_error
        return {"chain_id": 1337, "height": self.height}

    async def get_height(self):
        return self.height

    async def contract_reachable(self):
        return self.reachable

    async def send_transaction(self, function_name, *args):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((function_name, args))
        return TX_HASH

    async def wait_for_receipt(self, tx_hash, confirmations=1, timeout=None):
        if self.receipt_delay:
            await asyncio.sleep(self.receipt_delay)
        if self.receipt_timeout:
            raise ChainTimeout(f"No receipt for {tx_hash}", timeout=timeout)
        logs = self.receipt_logs if self.receipt_logs is not None else [commitment_log(self.request_id)]
        return {"status": self.receipt_status, "transactionHash": tx_hash, "blockNumber": self.height + 1, "logs": logs}

    async def subscribe(self, event_name, callback):
        if self.subscribe_failures:
            self.subscribe_failures -= 1
            raise ConnectionError("subscription refused")
        handle = SubscriptionHandle(event_name=event_name)
        self.handles.append(handle)
        self.callbacks[handle.handle_id] = callback
        return handle

    async def unsubscribe(self, handle):
        handle.active = False
        self.callbacks.pop(handle.handle_id, None)

    async def emit(self, log):
        for callback in list(self.callbacks.values()):
            await callback(log)

    async def close(self):
        for handle in list(self.handles):
            await self.unsubscribe(handle)


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def encryptor():
    return FakeEncryptor()


@pytest.fixture
def correlation():
    return CorrelationTable(max_size=1000)


@pytest.fixture
def store():
    return MemoryJobStore()


@pytest.fixture
def audit(store):
    return StoreAuditLog(store)


@pytest.fixture
def committer(chain, encryptor, correlation, audit):
    return VerdictCommitter(chain, encryptor, correlation, default_delay=5, receipt_timeout=1.0, audit=audit)


@pytest.fixture
def unreachable_chain():
    fake = FakeChain()
    fake.connect_error = ChainConnectivityFailure("connection refused")
    return fake
