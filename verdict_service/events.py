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

"""Commitment contract ABI and raw log decoding.

Logs are handled as plain mappings (``address``, ``topics``, ``data``,
``transactionHash``) so receipts from web3 and hand-built test receipts go
through the same code.
"""

from __future__ import annotations

from typing import Any, Mapping

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak, to_checksum_address, to_hex

from .models import RevealEvent

VERDICT_COMMITTED_SIGNATURE = "VerdictCommitted(uint256,address,uint256,bytes32)"
VERDICT_REVEALED_SIGNATURE = "VerdictRevealed(uint256,address,bytes)"

COMMITMENT_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "commitVerdict",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "decryptionBlockNumber", "type": "uint256"},
            {
                "name": "encryptedVerdict",
                "type": "tuple",
                "components": [
                    {
                        "name": "u",
                        "type": "tuple",
                        "components": [
                            {"name": "x", "type": "uint256[2]"},
                            {"name": "y", "type": "uint256[2]"},
                        ],
                    },
                    {"name": "v", "type": "bytes"},
                    {"name": "w", "type": "bytes"},
                ],
            },
        ],
        "outputs": [{"name": "blocklockRequestId", "type": "uint256"}],
    },
    {
        "type": "event",
        "name": "VerdictCommitted",
        "anonymous": False,
        "inputs": [
            {"name": "blocklockRequestId", "type": "uint256", "indexed": True},
            {"name": "requester", "type": "address", "indexed": True},
            {"name": "decryptionBlockNumber", "type": "uint256", "indexed": False},
            {"name": "ciphertextHash", "type": "bytes32", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "VerdictRevealed",
        "anonymous": False,
        "inputs": [
            {"name": "requestId", "type": "uint256", "indexed": True},
            {"name": "requester", "type": "address", "indexed": True},
            {"name": "revealedVerdict", "type": "bytes", "indexed": False},
        ],
    },
]


class LogDecodeError(ValueError):
    """Raised when a raw log does not have the expected event layout."""


def event_topic(signature: str) -> str:
    return to_hex(keccak(text=signature))


VERDICT_COMMITTED_TOPIC = event_topic(VERDICT_COMMITTED_SIGNATURE)
VERDICT_REVEALED_TOPIC = event_topic(VERDICT_REVEALED_SIGNATURE)

EVENT_TOPICS = {
    "VerdictCommitted": VERDICT_COMMITTED_TOPIC,
    "VerdictRevealed": VERDICT_REVEALED_TOPIC,
}


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return to_hex(bytes(value))
    return str(value).lower() if value is not None else ""


def _bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return bytes.fromhex(value[2:] if value.startswith("0x") else value)
    raise LogDecodeError(f"Unsupported log field type: {type(value).__name__}")


def _topic_int(topic: Any) -> int:
    return int.from_bytes(_bytes(topic), "big")


def _topic_address(topic: Any) -> str:
    raw = _bytes(topic)
    return to_checksum_address(raw[-20:])


def log_matches(log: Mapping[str, Any], topic: str, address: str) -> bool:
    topics = log.get("topics") or []
    if not topics:
        return False
    return _hex(topics[0]) == topic.lower() and _hex(log.get("address")) == address.lower()


def find_event_log(logs: list[Mapping[str, Any]], topic: str, address: str) -> Mapping[str, Any] | None:
    """Return the first log matching both topic0 and emitting address."""
    for log in logs or []:
        if log_matches(log, topic, address):
            return log
    return None


def decode_commitment_request_id(log: Mapping[str, Any]) -> str:
    topics = log.get("topics") or []
    if len(topics) < 2:
        raise LogDecodeError("VerdictCommitted log is missing the request id topic")
    try:
        return str(_topic_int(topics[1]))
    except ValueError as e:
        raise LogDecodeError(f"Bad request id topic: {e}")


def decode_reveal_log(log: Mapping[str, Any]) -> RevealEvent:
    topics = log.get("topics") or []
    if len(topics) < 3:
        raise LogDecodeError("VerdictRevealed log is missing indexed topics")
    try:
        request_id = str(_topic_int(topics[1]))
        requester = _topic_address(topics[2])
        (payload,) = decode(["bytes"], _bytes(log.get("data", b"")))
    except (DecodingError, ValueError) as e:
        raise LogDecodeError(f"Malformed VerdictRevealed log: {e}")
    tx_hash = log.get("transactionHash")
    return RevealEvent(
        protocol_request_id=request_id,
        requester=requester,
        payload=payload,
        transaction_hash=_hex(tx_hash) if tx_hash is not None else None,
        block_number=log.get("blockNumber"),
    )
