"""Spawner capability and shared handle bookkeeping.

The orchestrator is written against the Spawner protocol only. Concrete
spawners derive from BaseSpawner, which serializes ``acquire``/``release``
behind one lock, tracks which handles are live, and implements best-effort
release: every handle is attempted, failures are collected into a single
CleanupError.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from typing import TYPE_CHECKING, Any, Protocol, Sequence, runtime_checkable

from merkle_aggregation.exceptions import CleanupError, ProvisioningError

if TYPE_CHECKING:
    from merkle_aggregation.models import WorkerHandle, WorkerKind

logger = logging.getLogger(__name__)


@runtime_checkable
class Spawner(Protocol):
    """Creates and destroys worker handles."""

    async def acquire(self, count: int) -> list[WorkerHandle]:
        """Return exactly ``count`` ready handles or raise ProvisioningError.

        On failure, any partially created resources are already cleaned up.
        """
        ...

    async def release(self, handles: Sequence[WorkerHandle]) -> None:
        """Tear down every handle; raise CleanupError listing failures."""
        ...


class BaseSpawner(abc.ABC):
    """Shared acquire/release flow for the concrete spawners.

    Subclasses implement ``_provision`` (which must clean up after itself
    before raising ProvisioningError) and ``_teardown``. ``_finish_release``
    runs after the per-handle teardowns for spawners that own a shared
    resource (a swarm service, say) in addition to the handles.
    """

    kind: WorkerKind

    def __init__(self) -> None:
        self._lock: asyncio.Lock | None = None
        self._live: dict[Any, WorkerHandle] = {}

    @property
    def live_handles(self) -> list[WorkerHandle]:
        """Handles acquired and not yet released."""
        return list(self._live.values())

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def acquire(self, count: int) -> list[WorkerHandle]:
        if count < 1:
            raise ProvisioningError(count, "worker count must be at least 1")
        async with self._get_lock():
            logger.info("Provisioning %d %s worker(s)", count, self.kind.value)
            handles = await self._provision(count)
            if len(handles) != count:
                await self._discard(handles)
                raise ProvisioningError(
                    count, f"spawner produced {len(handles)} handle(s)"
                )
            for handle in handles:
                self._live[handle.token] = handle
            logger.debug(
                "Provisioned workers: %s", ", ".join(h.address for h in handles)
            )
            return handles

    async def release(self, handles: Sequence[WorkerHandle]) -> None:
        async with self._get_lock():
            failures: list[tuple[WorkerHandle, str]] = []
            released: list[WorkerHandle] = []
            for handle in handles:
                if self._live.get(handle.token) != handle:
                    failures.append((handle, "not live (already released or unknown)"))
                    continue
                try:
                    await self._teardown(handle)
                except Exception as exc:
                    logger.warning(
                        "Failed to tear down worker %s: %s", handle.address, exc
                    )
                    failures.append((handle, f"{type(exc).__name__}: {exc}"))
                else:
                    del self._live[handle.token]
                    released.append(handle)
            if released:
                failures.extend(await self._finish_release(released))
            logger.info(
                "Released %d of %d worker(s)", len(released), len(handles)
            )
            if failures:
                raise CleanupError(failures)

    async def _discard(self, handles: Sequence[WorkerHandle]) -> None:
        """Best-effort teardown of handles that never became live."""
        for handle in handles:
            try:
                await self._teardown(handle)
            except Exception as exc:
                logger.warning(
                    "Failed to clean up worker %s after provisioning error: %s",
                    handle.address,
                    exc,
                )

    @abc.abstractmethod
    async def _provision(self, count: int) -> list[WorkerHandle]:
        ...

    @abc.abstractmethod
    async def _teardown(self, handle: WorkerHandle) -> None:
        ...

    async def _finish_release(
        self, released: Sequence[WorkerHandle]
    ) -> list[tuple[WorkerHandle, str]]:
        return []
