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

"""
Verdict Service Data Models

Pydantic models for the records exchanged through the job store, plus the
immutable commitment types produced by the commit module.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

ANSWER_STATUS_SUBMITTED = "Submitted"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class QuestionJob(BaseModel):
    """A question waiting to be answered by every agent."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    request_context: str = Field(..., alias="requestContext", description="End-to-end request identifier")
    question: str = Field(..., description="Question text")
    knowledge_base_reference: str = Field(
        ...,
        alias="knowledgeBaseReference",
        # Older intake wrote the content identifier as "cid"
        validation_alias=AliasChoices("knowledgeBaseReference", "knowledge_base_reference", "cid"),
        description="Content identifier of the knowledge source",
    )

    @field_validator("request_context", "question", "knowledge_base_reference")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("must be a non-empty string")
        return v.strip()


class AgentAnswerRecord(BaseModel):
    """One agent's answer to one request. Written once, never updated."""

    model_config = ConfigDict(populate_by_name=True)

    request_context: str = Field(..., alias="requestContext")
    agent_identity: str = Field(..., alias="agentIdentity")
    answer_text: str = Field(..., alias="answerText")
    status: str = Field(ANSWER_STATUS_SUBMITTED)
    timestamp: str = Field(default_factory=utc_now_iso)

    def to_store(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class AuditEntry(BaseModel):
    """An event appended to the audit log."""

    model_config = ConfigDict(populate_by_name=True)

    timestamp: str = Field(default_factory=utc_now_iso)
    type: str
    details: dict[str, Any] = Field(default_factory=dict)
    request_context: str | None = Field(None, alias="requestContext")

    def to_store(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


@dataclass(frozen=True)
class CommitmentRecord:
    """Everything known about one successful on-chain commitment."""

    verdict_plaintext: str
    reveal_height: int
    ciphertext: Any
    protocol_request_id: str
    transaction_hash: str
    ciphertext_hash: str


@dataclass(frozen=True)
class CommitResult:
    protocol_request_id: str
    transaction_hash: str
    ciphertext_hash: str
    record: CommitmentRecord | None = None

    def to_dict(self) -> dict[str, str]:
        return {
            "protocolRequestId": self.protocol_request_id,
            "transactionHash": self.transaction_hash,
            "ciphertextHash": self.ciphertext_hash,
        }


@dataclass(frozen=True)
class RevealEvent:
    """A decoded VerdictRevealed log."""

    protocol_request_id: str
    requester: str
    payload: bytes
    transaction_hash: str | None = None
    block_number: int | None = None


@dataclass
class PollSummary:
    """Counters for one coordinator poll cycle."""

    discovered: int = 0
    answered: int = 0
    skipped: int = 0
    invalid: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "discovered": self.discovered,
            "answered": self.answered,
            "skipped": self.skipped,
            "invalid": self.invalid,
            "failed": self.failed,
        }
