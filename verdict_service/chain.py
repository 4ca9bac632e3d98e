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

"""Chain client contract and its web3.py implementation.

Every RPC call carries an explicit timeout. Event subscriptions are explicit
handles backed by an ``eth_getLogs`` polling task, so a subscription exists
exactly as long as its handle has not been unsubscribed.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

from .errors import ChainConnectivityFailure, ChainTimeout
from .events import COMMITMENT_ABI, EVENT_TOPICS
from .logging_utils import get_logger

logger = get_logger(__name__)

LogCallback = Callable[[dict[str, Any]], Awaitable[None]]

_handle_ids = itertools.count(1)


@dataclass
class SubscriptionHandle:
    event_name: str
    handle_id: int = field(default_factory=lambda: next(_handle_ids))
    task: asyncio.Task | None = None
    active: bool = True


class ChainClient(Protocol):
    contract_address: str

    async def connect(self) -> dict[str, Any]: ...
    async def get_height(self) -> int: ...
    async def contract_reachable(self) -> bool: ...
    async def send_transaction(self, function_name: str, *args: Any) -> str: ...
    async def wait_for_receipt(self, tx_hash: str, confirmations: int = 1, timeout: float | None = None) -> dict[str, Any]: ...
    async def subscribe(self, event_name: str, callback: LogCallback) -> SubscriptionHandle: ...
    async def unsubscribe(self, handle: SubscriptionHandle) -> None: ...
    async def close(self) -> None: ...


class Web3ChainClient:
    """ChainClient backed by ``AsyncWeb3`` over HTTP with a local signing key."""

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        contract_address: str,
        abi: list[dict[str, Any]] | None = None,
        rpc_timeout: float = 30.0,
        event_poll_interval: float = 2.0,
        gas_bump_percent: int = 120,
    ):
        from web3 import AsyncWeb3

        self.rpc_timeout = rpc_timeout
        self.event_poll_interval = event_poll_interval
        self.gas_bump_percent = gas_bump_percent

        self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        key = private_key if private_key.startswith("0x") else f"0x{private_key}"
        self.account = self.w3.eth.account.from_key(key)
        self.contract_address = AsyncWeb3.to_checksum_address(contract_address)
        self.contract = self.w3.eth.contract(address=self.contract_address, abi=abi or COMMITMENT_ABI)

        # One signer, one nonce sequence
        self._send_lock = asyncio.Lock()
        self._subscriptions: dict[int, SubscriptionHandle] = {}

    async def _call(self, awaitable: Awaitable[Any], what: str, timeout: float | None = None) -> Any:
        limit = timeout or self.rpc_timeout
        try:
            return await asyncio.wait_for(awaitable, timeout=limit)
        except asyncio.TimeoutError:
            raise ChainTimeout(f"{what} timed out after {limit}s", timeout=limit)

    async def connect(self) -> dict[str, Any]:
        try:
            chain_id = await self._call(self.w3.eth.chain_id, "eth_chainId")
            height = await self._call(self.w3.eth.block_number, "eth_blockNumber")
        except ChainTimeout:
            raise
        except Exception as e:
            raise ChainConnectivityFailure(f"Cannot reach chain RPC: {e}")
        logger.info("chain.connected", chain_id=chain_id, height=height, signer=self.account.address)
        return {"chain_id": chain_id, "height": height, "signer": self.account.address}

    async def get_height(self) -> int:
        return int(await self._call(self.w3.eth.block_number, "eth_blockNumber"))

    async def contract_reachable(self) -> bool:
        code = await self._call(self.w3.eth.get_code(self.contract_address), "eth_getCode")
        return bool(code) and len(code) > 0

    async def send_transaction(self, function_name: str, *args: Any) -> str:
        fn = getattr(self.contract.functions, function_name)(*args)
        async with self._send_lock:
            sender = self.account.address
            gas = await self._call(fn.estimate_gas({"from": sender}), f"estimateGas({function_name})")
            nonce = await self._call(self.w3.eth.get_transaction_count(sender, "pending"), "eth_getTransactionCount")
            tx = await self._call(
                fn.build_transaction({"from": sender, "nonce": nonce, "gas": gas * self.gas_bump_percent // 100}),
                f"buildTransaction({function_name})",
            )
            signed = self.account.sign_transaction(tx)
            tx_hash = await self._call(self.w3.eth.send_raw_transaction(signed.raw_transaction), "eth_sendRawTransaction")
        return self.w3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, confirmations: int = 1, timeout: float | None = None) -> dict[str, Any]:
        from web3.exceptions import TimeExhausted

        limit = timeout or self.rpc_timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + limit
        try:
            receipt = await self._call(
                self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=limit, poll_latency=self.event_poll_interval),
                f"receipt {tx_hash}",
                timeout=limit + self.rpc_timeout,
            )
        except TimeExhausted:
            raise ChainTimeout(f"No receipt for {tx_hash} within {limit}s", timeout=limit)

        # wait_for_transaction_receipt returns at one confirmation
        while confirmations > 1:
            height = await self.get_height()
            if height - receipt["blockNumber"] + 1 >= confirmations:
                break
            if loop.time() >= deadline:
                raise ChainTimeout(f"{tx_hash} did not reach {confirmations} confirmations within {limit}s", timeout=limit)
            await asyncio.sleep(self.event_poll_interval)

        result = dict(receipt)
        result["logs"] = [dict(log) for log in receipt.get("logs", [])]
        return result

    async def subscribe(self, event_name: str, callback: LogCallback) -> SubscriptionHandle:
        if event_name not in EVENT_TOPICS:
            raise ValueError(f"Unknown commitment contract event: {event_name}")
        from_block = await self.get_height() + 1
        handle = SubscriptionHandle(event_name=event_name)
        handle.task = asyncio.create_task(self._poll_logs(handle, EVENT_TOPICS[event_name], from_block, callback))
        self._subscriptions[handle.handle_id] = handle
        logger.info("chain.subscribed", event_name=event_name, handle_id=handle.handle_id, from_block=from_block)
        return handle

    async def _poll_logs(self, handle: SubscriptionHandle, topic: str, from_block: int, callback: LogCallback) -> None:
        while handle.active:
            try:
                await asyncio.sleep(self.event_poll_interval)
                latest = await self.get_height()
                if latest < from_block:
                    continue
                logs = await self._call(
                    self.w3.eth.get_logs(
                        {"address": self.contract_address, "topics": [topic], "fromBlock": from_block, "toBlock": latest}
                    ),
                    "eth_getLogs",
                )
                for log in logs:
                    if not handle.active:
                        break
                    try:
                        await callback(dict(log))
                    except Exception as e:  # noqa: BLE001
                        logger.error("chain.callback_failed", handle_id=handle.handle_id, error=str(e))
                from_block = latest + 1
            except asyncio.CancelledError:
                break
            except Exception as e:  # noqa: BLE001
                # Transient RPC trouble must not end the subscription
                logger.warning("chain.log_poll_failed", handle_id=handle.handle_id, from_block=from_block, error=str(e))

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        handle.active = False
        self._subscriptions.pop(handle.handle_id, None)
        if handle.task is not None and not handle.task.done():
            handle.task.cancel()
            try:
                await handle.task
            except asyncio.CancelledError:
                pass
        logger.info("chain.unsubscribed", event_name=handle.event_name, handle_id=handle.handle_id)

    async def close(self) -> None:
        for handle in list(self._subscriptions.values()):
            await self.unsubscribe(handle)
        provider = self.w3.provider
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
