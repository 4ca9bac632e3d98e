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

"""Agent identity derived from the long-lived signing key.

The identity must be stable across restarts; the answer deduplication key is
built from it, so a process-local random id would let a restarted agent
answer the same request twice.
"""

from __future__ import annotations

from dataclasses import dataclass

from eth_account import Account
from eth_utils import to_checksum_address

from .errors import ConfigurationMissing


@dataclass(frozen=True)
class AgentIdentity:
    address: str

    @classmethod
    def from_private_key(cls, private_key: str | None) -> "AgentIdentity":
        if not private_key:
            raise ConfigurationMissing("A signing key is required to derive the agent identity.", missing=["signing_key"])
        key = private_key if private_key.startswith("0x") else f"0x{private_key}"
        try:
            account = Account.from_key(key)
        except (ValueError, TypeError) as e:
            raise ConfigurationMissing(f"Signing key is not a valid private key: {e}")
        return cls(address=to_checksum_address(account.address))

    @classmethod
    def from_address(cls, address: str) -> "AgentIdentity":
        return cls(address=to_checksum_address(address))

    @property
    def short(self) -> str:
        return self.address[:10]

    def __str__(self) -> str:
        return self.address
