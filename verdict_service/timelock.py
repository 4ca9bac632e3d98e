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

"""Timelock encryption seam.

The encryption primitive itself is an external capability: anything with an
``encrypt(payload, reveal_height) -> Ciphertext`` method. This module only
fixes the ciphertext shape the commitment contract expects and how it is
hashed for audit logs.
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass
from typing import Any, Protocol

from .codec import keccak_hex
from .errors import ConfigurationMissing

# Solidity: struct Ciphertext { BLS.PointG2 u; bytes v; bytes w; }
CIPHERTEXT_ABI_TYPE = "((uint256[2],uint256[2]),bytes,bytes)"


@dataclass(frozen=True)
class Ciphertext:
    """Timelock ciphertext: G2 point ``u`` plus the masked payload ``v`` and tag ``w``."""

    u_x: tuple[int, int]
    u_y: tuple[int, int]
    v: bytes
    w: bytes

    def to_solidity(self) -> tuple[Any, ...]:
        return ((list(self.u_x), list(self.u_y)), self.v, self.w)

    @property
    def hash(self) -> str:
        # v is the component that changes with the plaintext
        return keccak_hex(self.v)


class TimelockEncryptor(Protocol):
    def encrypt(self, payload: bytes, reveal_height: int) -> Ciphertext: ...


def load_encryptor(target_path: str, **kwargs: Any) -> TimelockEncryptor:
    """Instantiate an encryptor from a ``package.module:attribute`` path.

    A class or factory is called with ``kwargs``; any other object is returned as is.
    """
    module_name, _, attr = target_path.partition(":")
    if not module_name or not attr:
        raise ConfigurationMissing(f"Encryptor must be given as module:attribute, got {target_path!r}")
    try:
        target = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationMissing(f"Cannot load timelock encryptor {target_path!r}: {e}")
    if isinstance(target, type) or (callable(target) and not hasattr(target, "encrypt")):
        encryptor = target(**kwargs)
    else:
        encryptor = target
    if not hasattr(encryptor, "encrypt"):
        raise ConfigurationMissing(f"{target_path!r} does not provide an encrypt() method")
    return encryptor
