"""Orchestrator: drives one aggregation run end to end.

Partition entries, acquire one worker per chunk, run one Executor per
(chunk, worker) pair concurrently, aggregate the chunk roots in chunk
order, release every worker. The first executor failure sets the shared
cancellation event, the remaining executors get a bounded grace period
to unwind, and the run fails with that first error. Workers are released
exactly once per run, whatever the outcome.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Callable, Sequence

import httpx

from merkle_aggregation.aggregation import Aggregator
from merkle_aggregation.config import OrchestratorConfig
from merkle_aggregation.exceptions import (
    CleanupError,
    ExecutorError,
    OrchestrationError,
    ProvisioningError,
    RunCancelledError,
)
from merkle_aggregation.executor import Executor
from merkle_aggregation.orchestrator.models import AggregationResult, OrchestratorState
from merkle_aggregation.orchestrator.partition import partition
from merkle_aggregation.spawners import create_spawner

if TYPE_CHECKING:
    from merkle_aggregation.config import SpawnerConfig
    from merkle_aggregation.models import AggregateTree, Entry, MiniTree, WorkerHandle
    from merkle_aggregation.spawners import Spawner

logger = logging.getLogger(__name__)


class Orchestrator:
    """Runs one aggregation over a spawner.

    One instance per run: after reaching a terminal state the instance
    cannot be reused.

    Usage::

        orchestrator = Orchestrator(MockSpawner())
        result = await orchestrator.run(entries, executor_count=4)
        print(result.root.balances)
    """

    def __init__(
        self,
        spawner: Spawner,
        config: OrchestratorConfig | None = None,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            spawner: Creates and destroys the run's workers.
            config: Timeouts and tree conventions. Defaults to
                OrchestratorConfig().
            client_factory: Builds the HTTP client shared by the run's
                executors. Defaults to a plain ``httpx.AsyncClient``.
        """
        self._spawner = spawner
        self._config = config or OrchestratorConfig()
        self._client_factory = client_factory or httpx.AsyncClient
        self._aggregator = Aggregator(
            hasher=self._config.hasher,
            odd_node_policy=self._config.odd_node_policy,
            max_balance_bytes=self._config.max_balance_bytes,
        )
        self._state = OrchestratorState.IDLE
        self._cancel: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._cancel_requested = False

    @property
    def state(self) -> OrchestratorState:
        """Current run state."""
        return self._state

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    def cancel(self) -> None:
        """Request cancellation of the run.

        Safe to call from any thread. Has an effect only before the run
        reaches AGGREGATING; workers are still released. A no-op once the
        run has finished.
        """
        if self._state.is_terminal:
            return
        self._cancel_requested = True
        loop = self._loop
        if self._cancel is None or loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._cancel.set)
        except RuntimeError:
            # The loop closed between the check and the call: the run is over.
            logger.debug("Cancel requested after the event loop closed")

    async def run(self, entries: Sequence[Entry], executor_count: int) -> AggregationResult:
        """Aggregate ``entries`` using ``executor_count`` workers.

        Returns:
            AggregationResult with the aggregate tree.

        Raises:
            EntryValidationError: Invalid entries or executor count.
            ProvisioningError: The spawner could not provide the workers.
            ExecutorError: A worker call failed or the run was cancelled;
                ``chunk_index`` names the chunk that caused it.
            AggregationError: Chunk roots could not be combined.
        """
        if self._state != OrchestratorState.IDLE:
            raise OrchestrationError(
                f"Orchestrator already used (state: {self._state.value})"
            )
        self._loop = asyncio.get_running_loop()
        self._cancel = asyncio.Event()
        if self._cancel_requested:
            self._cancel.set()

        try:
            chunks = partition(entries, executor_count)
        except OrchestrationError:
            self._transition(OrchestratorState.FAILED)
            raise

        self._transition(OrchestratorState.PROVISIONING)
        try:
            handles = await self._spawner.acquire(len(chunks))
        except OrchestrationError as exc:
            self._transition(OrchestratorState.FAILED)
            logger.error("Run failed: %s", exc)
            raise
        except Exception as exc:
            self._transition(OrchestratorState.FAILED)
            error = ProvisioningError(len(chunks), f"{type(exc).__name__}: {exc}")
            logger.error("Run failed: %s", error)
            raise error from exc

        try:
            tree = await self._execute(chunks, handles)
        except asyncio.CancelledError:
            self._cancel.set()
            self._transition(OrchestratorState.CANCELLED)
            await self._release(handles)
            raise
        except OrchestrationError as exc:
            exc.cleanup_error = await self._release(handles)
            if isinstance(exc, RunCancelledError):
                self._transition(OrchestratorState.CANCELLED)
            else:
                self._transition(OrchestratorState.FAILED)
            logger.error("Run failed: %s", exc)
            raise

        cleanup_error = await self._release(handles)
        self._transition(OrchestratorState.COMPLETED)
        return AggregationResult(
            tree=tree, chunk_count=len(chunks), cleanup_error=cleanup_error
        )

    async def _execute(
        self, chunks: list[list[Entry]], handles: list[WorkerHandle]
    ) -> AggregateTree:
        if self._cancel.is_set():
            raise RunCancelledError("Run cancelled before distribution")
        self._transition(OrchestratorState.DISTRIBUTING)
        async with self._client_factory() as client:
            mini_trees = await self._distribute(chunks, handles, client)
        self._transition(OrchestratorState.AGGREGATING)
        return self._aggregator.build_from_mini_trees(mini_trees)

    async def _distribute(
        self,
        chunks: list[list[Entry]],
        handles: list[WorkerHandle],
        client: httpx.AsyncClient,
    ) -> list[MiniTree]:
        tasks: dict[asyncio.Task, Executor] = {}
        for index, (chunk, handle) in enumerate(zip(chunks, handles)):
            executor = Executor(
                handle,
                client,
                chunk_index=index,
                timeout=self._config.request_timeout,
            )
            tasks[asyncio.create_task(executor.run(chunk, self._cancel))] = executor
        self._transition(OrchestratorState.AWAITING)

        results: list[MiniTree | None] = [None] * len(chunks)
        pending = set(tasks)
        cancel_waiter = asyncio.create_task(self._cancel.wait())
        failure: OrchestrationError | None = None
        try:
            while pending and failure is None:
                done, _ = await asyncio.wait(
                    pending | {cancel_waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                finished = sorted(
                    (t for t in done if t is not cancel_waiter),
                    key=lambda t: tasks[t].chunk_index,
                )
                for task in finished:
                    pending.discard(task)
                    executor = tasks[task]
                    exc = task.exception()
                    if exc is None:
                        results[executor.chunk_index] = task.result()
                        logger.debug("Chunk %d finished", executor.chunk_index)
                    elif failure is None:
                        failure = _as_orchestration_error(exc, executor)
                if failure is None and cancel_waiter in done:
                    failure = RunCancelledError("Run cancelled by caller")
        except asyncio.CancelledError:
            self._cancel.set()
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            raise
        finally:
            cancel_waiter.cancel()

        if failure is not None:
            self._cancel.set()
            if pending:
                logger.warning(
                    "Cancelling %d executor(s) after: %s", len(pending), failure
                )
                await self._drain(pending)
            raise failure
        return results

    async def _drain(self, pending: set[asyncio.Task]) -> None:
        """Give cancelled executors the grace period, then abandon them."""
        grace = self._config.cancel_grace_period
        _, stragglers = await asyncio.wait(pending, timeout=grace)
        if stragglers:
            logger.warning(
                "%d executor(s) still running after %.1fs, aborting them",
                len(stragglers),
                grace,
            )
            for task in stragglers:
                task.cancel()
        # Outcomes of cancelled executors are ignored.
        await asyncio.gather(*pending, return_exceptions=True)

    async def _release(self, handles: list[WorkerHandle]) -> CleanupError | None:
        try:
            await self._spawner.release(handles)
        except CleanupError as exc:
            logger.warning("%s", exc)
            return exc
        except Exception as exc:
            logger.warning("Worker release failed: %s", exc)
            return CleanupError(
                [(handle, f"{type(exc).__name__}: {exc}") for handle in handles]
            )
        return None

    def _transition(self, state: OrchestratorState) -> None:
        logger.info("Orchestrator %s -> %s", self._state.value, state.value)
        self._state = state


def _as_orchestration_error(exc: BaseException, executor: Executor) -> OrchestrationError:
    if isinstance(exc, OrchestrationError):
        return exc
    error = ExecutorError(
        f"{type(exc).__name__}: {exc}",
        chunk_index=executor.chunk_index,
        address=executor.handle.address,
    )
    error.__cause__ = exc
    return error


async def run_aggregation(
    entries: Sequence[Entry],
    executor_count: int,
    spawner_config: SpawnerConfig,
    config: OrchestratorConfig | None = None,
) -> AggregationResult:
    """Run one aggregation with a spawner built from ``spawner_config``.

    Raises:
        OrchestrationError: The run's single terminal error. Teardown
            failures are attached as ``cleanup_error``.
    """
    config = config or OrchestratorConfig()
    spawner = create_spawner(spawner_config, hasher=config.hasher)
    return await Orchestrator(spawner, config).run(entries, executor_count)
