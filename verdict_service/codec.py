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

"""Canonical verdict encoding: a single ABI ``string`` (offset, length, UTF-8 bytes).

The commitment contract hands the decrypted bytes back unchanged in the
reveal event, so the listener decodes with the exact inverse.
"""

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak, to_hex

from .errors import RevealDecodeFailed


def encode_verdict(verdict: str) -> bytes:
    if not isinstance(verdict, str):
        raise TypeError(f"verdict must be a string, got {type(verdict).__name__}")
    return encode(["string"], [verdict])


def decode_verdict(payload: bytes) -> str:
    try:
        (verdict,) = decode(["string"], bytes(payload))
    except (DecodingError, UnicodeDecodeError, ValueError, TypeError) as e:
        raise RevealDecodeFailed(f"Revealed payload is not an encoded verdict: {e}", raw_payload=bytes(payload or b""))
    return verdict


def keccak_hex(data: bytes) -> str:
    return to_hex(keccak(data))
