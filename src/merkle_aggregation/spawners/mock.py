"""In-process mock spawner.

Each handle is an aiohttp listener on an ephemeral loopback port serving
the reference worker application. A per-index FailureMode makes the
listener misbehave on its first request, which is how tests exercise the
fail-fast path.

With ``addresses`` configured, no listeners are started and the given
addresses are handed out as-is (bring your own workers).
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from aiohttp import web

from merkle_aggregation.config import FailureMode, MockSpawnerConfig
from merkle_aggregation.exceptions import ProvisioningError
from merkle_aggregation.models import WorkerHandle, WorkerKind
from merkle_aggregation.spawners.base import BaseSpawner
from merkle_aggregation.worker import create_app

if TYPE_CHECKING:
    from merkle_aggregation.hashing import NodeHasher

logger = logging.getLogger(__name__)


@dataclass
class _Listener:
    runner: web.AppRunner | None
    failure: Optional[FailureMode] = None
    requests: int = 0
    stopping: asyncio.Event = field(default_factory=asyncio.Event)


def _failure_middleware(listener: _Listener):
    @web.middleware
    async def inject(request: web.Request, handler):
        listener.requests += 1
        if listener.failure is None or listener.requests > 1:
            return await handler(request)
        logger.debug("Injecting %s failure", listener.failure.value)
        if listener.failure == FailureMode.REJECT:
            return web.json_response({"error": "injected failure"}, status=500)
        if listener.failure == FailureMode.MALFORMED:
            return web.json_response({"unexpected": "shape"})
        await listener.stopping.wait()
        return web.json_response({"error": "shutting down"}, status=503)

    return inject


def _normalize_address(address: str) -> str:
    if "://" not in address:
        address = f"http://{address}"
    return address.rstrip("/")


class MockSpawner(BaseSpawner):
    """Spawner backed by in-process aiohttp listeners.

    Usage::

        spawner = MockSpawner(MockSpawnerConfig(failures={1: "reject"}))
        handles = await spawner.acquire(2)
        ...
        await spawner.release(handles)
    """

    kind = WorkerKind.MOCK

    def __init__(
        self,
        config: MockSpawnerConfig | None = None,
        hasher: NodeHasher | None = None,
    ) -> None:
        super().__init__()
        self._config = config or MockSpawnerConfig()
        self._hasher = hasher
        self._serial = itertools.count()
        self._listeners: dict[str, _Listener] = {}
        self.teardowns: list[WorkerHandle] = []

    def request_count(self, handle: WorkerHandle) -> int:
        """Requests received by a live handle's listener (0 once torn down)."""
        listener = self._listeners.get(handle.token)
        return listener.requests if listener else 0

    async def _provision(self, count: int) -> list[WorkerHandle]:
        if self._config.addresses is not None:
            return self._external_handles(count)

        handles: list[WorkerHandle] = []
        try:
            for index in range(count):
                handles.append(await self._start_listener(index))
        except OSError as exc:
            await self._discard(handles)
            raise ProvisioningError(count, f"cannot start mock listener: {exc}") from exc
        return handles

    def _external_handles(self, count: int) -> list[WorkerHandle]:
        addresses = self._config.addresses or []
        if len(addresses) != count:
            raise ProvisioningError(
                count, f"{len(addresses)} worker address(es) configured"
            )
        handles = []
        for index, address in enumerate(addresses):
            token = f"external-{next(self._serial)}"
            self._listeners[token] = _Listener(runner=None)
            handles.append(
                WorkerHandle(
                    address=_normalize_address(address),
                    kind=self.kind,
                    token=token,
                    index=index,
                )
            )
        return handles

    async def _start_listener(self, index: int) -> WorkerHandle:
        listener = _Listener(runner=None, failure=self._config.failures.get(index))
        app = create_app(
            hasher=self._hasher,
            odd_node_policy=self._config.odd_node_policy,
            middlewares=(_failure_middleware(listener),),
        )
        runner = web.AppRunner(app)
        await runner.setup()
        try:
            site = web.TCPSite(runner, self._config.host, 0)
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        listener.runner = runner
        port = runner.addresses[0][1]
        token = f"mock-{next(self._serial)}"
        self._listeners[token] = listener
        return WorkerHandle(
            address=f"http://{self._config.host}:{port}",
            kind=self.kind,
            token=token,
            index=index,
        )

    async def _teardown(self, handle: WorkerHandle) -> None:
        listener = self._listeners.pop(handle.token)
        self.teardowns.append(handle)
        if listener.runner is None:
            return
        listener.stopping.set()
        await listener.runner.cleanup()
