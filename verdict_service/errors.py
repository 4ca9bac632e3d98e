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

"""Structured error codes and exception types for the verdict service."""

from enum import Enum
from typing import Any, TypedDict


class ErrorCode(str, Enum):
    CONFIGURATION_MISSING = "configuration_missing"
    NOT_INITIALIZED = "not_initialized"
    CHAIN_CONNECTIVITY_FAILURE = "chain_connectivity_failure"
    CHAIN_TIMEOUT = "chain_timeout"
    COMMIT_TRANSACTION_FAILED = "commit_transaction_failed"
    COMMITMENT_EVENT_MISSING = "commitment_event_missing"
    INVALID_COMMIT_REQUEST = "invalid_commit_request"
    JOB_DATA_INVALID = "job_data_invalid"
    CONTENT_FETCH_FAILED = "content_fetch_failed"
    ANSWER_GENERATION_FAILED = "answer_generation_failed"
    REVEAL_DECODE_FAILED = "reveal_decode_failed"
    INTERNAL = "internal_error"


class ErrorPayload(TypedDict):
    error: str
    detail: str


class VerdictServiceError(Exception):
    """Base exception for verdict service errors."""

    code: ErrorCode = ErrorCode.INTERNAL

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationMissing(VerdictServiceError):
    """Raised when required configuration is absent or invalid. Fatal at startup."""

    code = ErrorCode.CONFIGURATION_MISSING

    def __init__(self, message: str, missing: list[str] | None = None, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.missing = missing or []


class NotInitialized(VerdictServiceError):
    """Raised when an operation needs the commit module in the ready state."""

    code = ErrorCode.NOT_INITIALIZED


class ChainConnectivityFailure(VerdictServiceError):
    """Raised when the chain or the commitment contract cannot be reached."""

    code = ErrorCode.CHAIN_CONNECTIVITY_FAILURE


class ChainTimeout(VerdictServiceError):
    """Raised by chain clients when an RPC call or receipt wait exceeds its timeout."""

    code = ErrorCode.CHAIN_TIMEOUT

    def __init__(self, message: str, timeout: float | None = None, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.timeout = timeout


class CommitTransactionFailed(VerdictServiceError):
    """Raised when the commit transaction reverts, times out, or cannot be sent.

    A timeout does not prove the transaction was dropped; reconciliation is
    up to the caller.
    """

    code = ErrorCode.COMMIT_TRANSACTION_FAILED

    def __init__(self, message: str, tx_hash: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.tx_hash = tx_hash


class InvalidCommitRequest(VerdictServiceError):
    """Raised when commit arguments are rejected before anything is sent."""

    code = ErrorCode.INVALID_COMMIT_REQUEST


class CommitmentEventMissing(VerdictServiceError):
    """Raised when a confirmed receipt carries no decodable commitment event.

    Usually an ABI mismatch or the wrong contract address; needs an operator.
    """

    code = ErrorCode.COMMITMENT_EVENT_MISSING

    def __init__(self, message: str, tx_hash: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.tx_hash = tx_hash


class JobDataInvalid(VerdictServiceError):
    """Raised when a question job payload is absent or malformed."""

    code = ErrorCode.JOB_DATA_INVALID

    def __init__(self, message: str, job_key: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.job_key = job_key


class ContentFetchFailed(VerdictServiceError):
    """Raised when knowledge base content cannot be fetched."""

    code = ErrorCode.CONTENT_FETCH_FAILED

    def __init__(self, message: str, reference: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.reference = reference


class AnswerGenerationFailed(VerdictServiceError):
    """Raised when the generator returns no usable answer."""

    code = ErrorCode.ANSWER_GENERATION_FAILED


class RevealDecodeFailed(VerdictServiceError):
    """Raised when a revealed payload does not decode as a verdict string."""

    code = ErrorCode.REVEAL_DECODE_FAILED

    def __init__(self, message: str, raw_payload: bytes = b"", details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.raw_payload = raw_payload


def error_payload(exc: BaseException) -> ErrorPayload:
    code = exc.code if isinstance(exc, VerdictServiceError) else ErrorCode.INTERNAL
    message = exc.message if isinstance(exc, VerdictServiceError) else str(exc)
    return {"error": code.value, "detail": message}
