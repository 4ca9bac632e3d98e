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
Verdict Service

Timelock-encrypted verdict commitment with reveal routing, and deduplicated
answer submission for independent answering agents sharing a job store.
"""

from .audit import AuditLog, StoreAuditLog
from .chain import ChainClient, SubscriptionHandle, Web3ChainClient
from .commitment import CommitterState, VerdictCommitter
from .config import VerdictServiceConfig
from .content import ContentFetcher, GatewayContentFetcher
from .coordinator import AnswerCoordinator
from .correlation import CorrelationTable
from .errors import (
    AnswerGenerationFailed,
    ChainConnectivityFailure,
    ChainTimeout,
    CommitmentEventMissing,
    CommitTransactionFailed,
    ConfigurationMissing,
    ContentFetchFailed,
    ErrorCode,
    InvalidCommitRequest,
    JobDataInvalid,
    NotInitialized,
    RevealDecodeFailed,
    VerdictServiceError,
)
from .generator import AnswerGenerator, OpenRouterGenerator
from .identity import AgentIdentity
from .job_store import FileJobStore, JobStore, MemoryJobStore, RedisJobStore, build_job_store
from .lifecycle import LifecycleController
from .models import AgentAnswerRecord, CommitmentRecord, CommitResult, PollSummary, QuestionJob, RevealEvent
from .reveal_listener import ListenerState, RevealListener
from .timelock import Ciphertext, TimelockEncryptor

__version__ = "0.1.0"
__author__ = "Verdict Service Contributors"

__all__ = [
    # Components
    "AnswerCoordinator",
    "VerdictCommitter",
    "CommitterState",
    "CorrelationTable",
    "RevealListener",
    "ListenerState",
    "LifecycleController",
    # Capabilities
    "AuditLog",
    "StoreAuditLog",
    "ChainClient",
    "SubscriptionHandle",
    "Web3ChainClient",
    "ContentFetcher",
    "GatewayContentFetcher",
    "AnswerGenerator",
    "OpenRouterGenerator",
    "JobStore",
    "MemoryJobStore",
    "FileJobStore",
    "RedisJobStore",
    "build_job_store",
    "TimelockEncryptor",
    "Ciphertext",
    # Models
    "AgentIdentity",
    "AgentAnswerRecord",
    "QuestionJob",
    "CommitmentRecord",
    "CommitResult",
    "RevealEvent",
    "PollSummary",
    "VerdictServiceConfig",
    # Exceptions
    "VerdictServiceError",
    "ErrorCode",
    "ConfigurationMissing",
    "NotInitialized",
    "ChainConnectivityFailure",
    "ChainTimeout",
    "CommitTransactionFailed",
    "CommitmentEventMissing",
    "InvalidCommitRequest",
    "JobDataInvalid",
    "ContentFetchFailed",
    "AnswerGenerationFailed",
    "RevealDecodeFailed",
]
