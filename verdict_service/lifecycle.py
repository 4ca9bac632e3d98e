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

"""Startup and shutdown ordering for a verdict service process.

Startup: validate configuration, initialize the committer (chain connection
and contract reachability), attach the reveal listener, then start the answer
poll loop. Shutdown runs the other way round: detach the listener, stop the
poll loop, give in-flight commits a bounded grace period, close resources.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
from typing import Any, Awaitable, Callable

from .audit import StoreAuditLog
from .config import AGENT_REQUIRED, COMMITTER_REQUIRED, VerdictServiceConfig
from .coordinator import AnswerCoordinator
from .commitment import VerdictCommitter
from .correlation import CorrelationTable
from .errors import ChainConnectivityFailure
from .logging_utils import get_logger
from .reveal_listener import RevealListener
from .timelock import TimelockEncryptor

logger = get_logger(__name__)

Closer = Callable[[], Awaitable[Any]]


class LifecycleController:
    def __init__(
        self,
        config: VerdictServiceConfig,
        committer: VerdictCommitter | None = None,
        listener: RevealListener | None = None,
        coordinator: AnswerCoordinator | None = None,
        closers: list[Closer] | None = None,
    ):
        self.config = config
        self.committer = committer
        self.listener = listener
        self.coordinator = coordinator
        self.closers = closers or []

        self.stop_event = asyncio.Event()
        self.started = False
        self._poll_task: asyncio.Task | None = None
        self._attach_task: asyncio.Task | None = None

    @classmethod
    def from_config(
        cls,
        config: VerdictServiceConfig,
        encryptor: TimelockEncryptor | None = None,
        run_agent: bool = False,
    ) -> "LifecycleController":
        """Wire the real components for the roles requested.

        The commit role is enabled when an encryptor is supplied; the answering
        agent role when ``run_agent`` is set. Both roles share one job store.
        """
        from .chain import Web3ChainClient
        from .content import GatewayContentFetcher
        from .generator import OpenRouterGenerator
        from .identity import AgentIdentity
        from .job_store import build_job_store

        if encryptor is not None:
            config.require(*COMMITTER_REQUIRED)
        if run_agent:
            config.require(*AGENT_REQUIRED)
            if config.job_store_backend == "memory":
                logger.warning(
                    "lifecycle.memory_job_store",
                    detail="jobs written by other processes are not visible to this agent",
                )

        store = build_job_store(config)
        audit = StoreAuditLog(store)
        closers: list[Closer] = []
        committer = listener = coordinator = None

        if encryptor is not None:
            chain = Web3ChainClient(
                config.rpc_url,
                config.signing_key,
                config.commitment_contract_address,
                rpc_timeout=config.rpc_timeout,
                event_poll_interval=config.event_poll_interval,
            )
            correlation = CorrelationTable(config.correlation_max_size)
            committer = VerdictCommitter(
                chain,
                encryptor,
                correlation,
                default_delay=config.reveal_delay_blocks,
                receipt_timeout=config.receipt_timeout,
                audit=audit,
            )
            listener = RevealListener(chain, committer, correlation, audit)
            closers.append(chain.close)

        if run_agent:
            fetcher = GatewayContentFetcher(config.content_gateway_url, timeout=config.content_timeout)
            generator = OpenRouterGenerator(
                config.generator_api_key,
                model=config.generator_model,
                url=config.generator_url,
                timeout=config.generator_timeout,
            )
            coordinator = AnswerCoordinator(
                store,
                AgentIdentity.from_private_key(config.signing_key),
                fetcher,
                generator,
                audit=audit,
                poll_interval=config.poll_interval,
                max_concurrent_jobs=config.max_concurrent_jobs,
            )
            closers.extend([fetcher.close, generator.close])

        closers.append(store.close)
        return cls(config, committer=committer, listener=listener, coordinator=coordinator, closers=closers)

    async def start(self) -> None:
        """Bring the process up in order.

        Raises:
            ConfigurationMissing: a required option for an enabled role is absent
            ChainConnectivityFailure: the committer could not reach the chain or contract
        """
        if self.committer is not None:
            self.config.require(*COMMITTER_REQUIRED)
        if self.coordinator is not None:
            self.config.require(*AGENT_REQUIRED)
        logger.info("lifecycle.starting", committer=self.committer is not None, agent=self.coordinator is not None)

        if self.committer is not None:
            if not await self.committer.initialize():
                raise self.committer.last_error or ChainConnectivityFailure("Committer initialization failed")

        if self.listener is not None and not await self.listener.attach():
            logger.warning("lifecycle.listener_not_attached", retry_interval_s=self.config.attach_retry_interval)
            self._attach_task = asyncio.create_task(self._retry_attach())

        if self.coordinator is not None:
            self._poll_task = asyncio.create_task(self.coordinator.run(self.stop_event))

        self.started = True
        logger.info("lifecycle.started")

    async def _retry_attach(self) -> None:
        while not self.stop_event.is_set():
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self.stop_event.wait(), timeout=self.config.attach_retry_interval)
            if self.stop_event.is_set():
                return
            if await self.listener.attach():
                logger.info("lifecycle.listener_attached_on_retry")
                return

    async def shutdown(self) -> None:
        """Stop everything within the configured grace period; idempotent."""
        if self.stop_event.is_set() and not self.started:
            return
        grace = self.config.shutdown_grace_period
        loop = asyncio.get_running_loop()
        # One deadline covers the poll loop and in-flight commits together
        deadline = loop.time() + grace
        logger.info("lifecycle.shutting_down", grace_s=grace)
        self.stop_event.set()

        if self._attach_task is not None:
            self._attach_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._attach_task
            self._attach_task = None

        if self.listener is not None:
            try:
                await self.listener.detach()
            except Exception as e:  # noqa: BLE001
                logger.error("lifecycle.detach_failed", error=str(e))

        if self._poll_task is not None:
            done, _ = await asyncio.wait({self._poll_task}, timeout=max(0.0, deadline - loop.time()))
            if not done:
                self._poll_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._poll_task
                logger.warning("lifecycle.poll_loop_cancelled")
            self._poll_task = None

        if self.committer is not None:
            await self.committer.drain(max(0.0, deadline - loop.time()))

        for close in self.closers:
            try:
                await close()
            except Exception as e:  # noqa: BLE001
                logger.error("lifecycle.close_failed", error=str(e))
        self.closers = []
        self.started = False
        logger.info("lifecycle.stopped")

    async def run_until_signalled(self) -> None:
        """Start, block until SIGINT or SIGTERM, then shut down."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, self._on_signal, sig)
        try:
            await self.start()
            await self.stop_event.wait()
        finally:
            await self.shutdown()
            for sig in (signal.SIGINT, signal.SIGTERM):
                with contextlib.suppress(NotImplementedError):
                    loop.remove_signal_handler(sig)

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info("lifecycle.signal", signal=sig.name)
        self.stop_event.set()
