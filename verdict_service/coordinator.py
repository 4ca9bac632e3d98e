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

"""Answer deduplication coordinator.

Each agent process polls the question prefix of the job store and writes at
most one answer per request context under a key derived from its own stable
identity. The existence of that key is the only deduplication guard: a
check-then-write race between two processes of the *same* identity can still
double-write, which is accepted.
"""

from __future__ import annotations

import asyncio
import contextlib

from pydantic import ValidationError

from .audit import ERROR_EVENT, AuditLog
from .content import ContentFetcher
from .errors import AnswerGenerationFailed, ContentFetchFailed, JobDataInvalid, error_payload
from .generator import AnswerGenerator
from .identity import AgentIdentity
from .job_store import QUESTIONS_PREFIX, JobStore, answer_key
from .logging_utils import get_logger, truncate
from .models import AgentAnswerRecord, PollSummary, QuestionJob

logger = get_logger(__name__)

STAGE_FETCH = "FetchContent"
STAGE_GENERATE = "GenerateAnswer"
STAGE_STORE = "StoreAnswer"

ANSWERED = "answered"
SKIPPED = "skipped"
INVALID = "invalid"
FAILED = "failed"


class AnswerCoordinator:
    def __init__(
        self,
        store: JobStore,
        identity: AgentIdentity,
        fetcher: ContentFetcher,
        generator: AnswerGenerator,
        audit: AuditLog | None = None,
        poll_interval: float = 15.0,
        max_concurrent_jobs: int = 4,
    ):
        self.store = store
        self.identity = identity
        self.fetcher = fetcher
        self.generator = generator
        self.audit = audit
        self.poll_interval = poll_interval
        self._semaphore = asyncio.Semaphore(max_concurrent_jobs)
        self.cycles = 0

    async def load_job(self, key: str) -> QuestionJob:
        payload = await self.store.get(key)
        if payload is None:
            raise JobDataInvalid(f"Job payload missing or unreadable at {key}", job_key=key)
        try:
            return QuestionJob.model_validate(payload)
        except ValidationError as e:
            fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
            raise JobDataInvalid(f"Malformed job at {key}", job_key=key, details={"fields": fields})

    async def process_job(self, key: str) -> str:
        """Run one job through check, fetch, generate and write. Returns the outcome label."""
        try:
            job = await self.load_job(key)
        except JobDataInvalid as e:
            logger.error("poll.job_invalid", job_key=key, error=e.message, **e.details)
            return INVALID

        ctx = job.request_context
        record_key = answer_key(ctx, self.identity.address)
        if await self.store.get(record_key) is not None:
            logger.debug("poll.job_already_answered", request_context=ctx, agent=self.identity.short)
            return SKIPPED

        stage = STAGE_FETCH
        try:
            content = await self.fetcher.fetch(job.knowledge_base_reference)

            stage = STAGE_GENERATE
            answer = await self.generator.generate_answer(job.question, content, ctx)
            if not answer or not answer.strip() or answer.strip().lower().startswith("error"):
                raise AnswerGenerationFailed(f"Generator produced no usable answer: {truncate(answer, 60)!r}")

            stage = STAGE_STORE
            record = AgentAnswerRecord(request_context=ctx, agent_identity=self.identity.address, answer_text=answer.strip())
            await self.store.put(record_key, record.to_store())
        except (ContentFetchFailed, AnswerGenerationFailed) as e:
            await self._job_failed(stage, ctx, e)
            return FAILED
        except Exception as e:  # noqa: BLE001
            # Store or unexpected errors stay contained to this job
            await self._job_failed(stage, ctx, e)
            return FAILED

        logger.info("poll.answer_stored", request_context=ctx, agent=self.identity.short, key=record_key, answer=truncate(answer, 80))
        return ANSWERED

    async def _job_failed(self, stage: str, request_context: str, error: BaseException) -> None:
        payload = error_payload(error)
        logger.error("poll.job_failed", stage=stage, request_context=request_context, agent=self.identity.short, **payload)
        if self.audit is None:
            return
        try:
            await self.audit.append(
                ERROR_EVENT,
                {"stage": stage, "agent": self.identity.address, **payload},
                request_context,
            )
        except Exception as e:  # noqa: BLE001
            logger.error("poll.audit_failed", request_context=request_context, error=str(e))

    async def _guarded(self, key: str) -> str:
        async with self._semaphore:
            return await self.process_job(key)

    async def poll_once(self) -> PollSummary:
        """One poll cycle over every question job. Never raises for a single job's failure."""
        summary = PollSummary()
        self.cycles += 1
        try:
            keys = await self.store.list_by_prefix(QUESTIONS_PREFIX)
        except Exception as e:  # noqa: BLE001
            logger.error("poll.list_failed", prefix=QUESTIONS_PREFIX, error=str(e))
            return summary

        summary.discovered = len(keys)
        if not keys:
            return summary

        outcomes = await asyncio.gather(*(self._guarded(k) for k in keys), return_exceptions=True)
        for key, outcome in zip(keys, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("poll.job_crashed", job_key=key, error=str(outcome))
                summary.failed += 1
            else:
                setattr(summary, outcome, getattr(summary, outcome) + 1)

        logger.info("poll.cycle_complete", cycle=self.cycles, agent=self.identity.short, **summary.to_dict())
        return summary

    async def run(self, stop_event: asyncio.Event) -> None:
        """Poll at a fixed interval until ``stop_event`` is set; the wait is cut short by the event."""
        logger.info("poll.loop_started", agent=self.identity.address, interval_s=self.poll_interval)
        while not stop_event.is_set():
            await self.poll_once()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
        logger.info("poll.loop_stopped", agent=self.identity.address, cycles=self.cycles)
