"""Local container spawner.

One container per worker on the local docker engine. Each container's
worker port is published on a free loopback port; the container id is the
handle's teardown token.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING

import docker
from docker.errors import DockerException

from merkle_aggregation.config import LocalSpawnerConfig
from merkle_aggregation.exceptions import ProvisioningError
from merkle_aggregation.models import WorkerHandle, WorkerKind
from merkle_aggregation.spawners.base import BaseSpawner
from merkle_aggregation.spawners.readiness import find_unused_port, wait_until_reachable

if TYPE_CHECKING:
    from docker import DockerClient

logger = logging.getLogger(__name__)


class LocalSpawner(BaseSpawner):
    """Spawner that runs workers as local docker containers."""

    kind = WorkerKind.LOCAL_CONTAINER

    def __init__(
        self,
        config: LocalSpawnerConfig | None = None,
        client: DockerClient | None = None,
    ) -> None:
        """Initialize the spawner.

        Args:
            config: Image, naming and readiness settings.
            client: Docker client. Defaults to ``docker.from_env()``,
                created on first use.
        """
        super().__init__()
        self._config = config or LocalSpawnerConfig()
        self._client = client

    @property
    def client(self) -> DockerClient:
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    async def _provision(self, count: int) -> list[WorkerHandle]:
        run_tag = uuid.uuid4().hex[:8]
        handles: list[WorkerHandle] = []
        try:
            for index in range(count):
                handles.append(await asyncio.to_thread(self._start, run_tag, index))
            await asyncio.gather(
                *(
                    wait_until_reachable(
                        h.address,
                        self._config.readiness_timeout,
                        self._config.readiness_interval,
                    )
                    for h in handles
                )
            )
        except (DockerException, OSError) as exc:
            logger.warning(
                "Provisioning failed after %d container(s), cleaning up", len(handles)
            )
            await self._discard(handles)
            raise ProvisioningError(count, f"{type(exc).__name__}: {exc}") from exc
        return handles

    def _start(self, run_tag: str, index: int) -> WorkerHandle:
        cfg = self._config
        port = find_unused_port(cfg.host)
        name = f"{cfg.container_prefix}_{run_tag}_{index}"
        container = self.client.containers.run(
            cfg.image,
            detach=True,
            name=name,
            ports={f"{cfg.container_port}/tcp": (cfg.host, port)},
        )
        logger.debug("Started container %s (%s) on port %d", name, container.id, port)
        return WorkerHandle(
            address=f"http://{cfg.host}:{port}",
            kind=self.kind,
            token=container.id,
            index=index,
        )

    async def _teardown(self, handle: WorkerHandle) -> None:
        await asyncio.to_thread(self._remove, handle.token)

    def _remove(self, container_id: str) -> None:
        container = self.client.containers.get(container_id)
        container.stop(timeout=5)
        container.remove(force=True)
        logger.debug("Removed container %s", container_id)
