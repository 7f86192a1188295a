"""Cloud spawner: a replicated docker swarm service.

The swarm (manager plus worker nodes) is prepared out of band. Each
configured worker node yields one handle, ``http://<node>:<port>``, and the
swarm's ingress routing delivers requests to the service replicas.

When ``service_name`` is set, the spawner owns the service lifecycle:

1. Read image, placement, ports and network from the compose file.
2. Create the overlay network if it does not exist.
3. Create the service with ``count`` replicas, or scale an existing one.
4. Wait for ``count`` running tasks, then for every endpoint to accept
   connections.

Release removes a service the spawner created (a pre-existing one is
scaled to zero) and removes a network it created.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Any, Sequence

import docker
from docker.errors import DockerException
from docker.types import EndpointSpec, ServiceMode
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from merkle_aggregation.config import DEFAULT_WORKER_PORT, CloudSpawnerConfig
from merkle_aggregation.exceptions import ProvisioningError
from merkle_aggregation.models import WorkerHandle, WorkerKind
from merkle_aggregation.spawners.base import BaseSpawner
from merkle_aggregation.spawners.compose import (
    ComposeSpecError,
    PortMapping,
    ServiceSpec,
    load_service_spec,
)
from merkle_aggregation.spawners.readiness import wait_until_reachable

if TYPE_CHECKING:
    from docker import DockerClient

logger = logging.getLogger(__name__)


class ReplicasPendingError(Exception):
    """Fewer service tasks are running than requested."""


class CloudSpawner(BaseSpawner):
    """Spawner backed by a swarm service spread over prepared nodes."""

    kind = WorkerKind.CLOUD_SERVICE

    def __init__(
        self,
        config: CloudSpawnerConfig,
        client: DockerClient | None = None,
    ) -> None:
        super().__init__()
        self._config = config
        self._client = client
        self._service: Any = None
        self._created_service = False
        self._network: Any = None

    @property
    def client(self) -> DockerClient:
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    async def _provision(self, count: int) -> list[WorkerHandle]:
        cfg = self._config
        if len(cfg.worker_nodes) != count:
            raise ProvisioningError(
                count, f"{len(cfg.worker_nodes)} worker node(s) configured"
            )

        run_tag = uuid.uuid4().hex[:8]
        handles = [
            WorkerHandle(
                address=f"http://{node}:{cfg.port}",
                kind=self.kind,
                token=f"{cfg.service_name or 'static'}:{run_tag}:{index}",
                index=index,
            )
            for index, node in enumerate(cfg.worker_nodes)
        ]

        try:
            if cfg.service_name:
                spec = self._service_spec()
                await asyncio.to_thread(self._deploy, spec, count)
                await self._wait_for_replicas(count)
            await asyncio.gather(
                *(
                    wait_until_reachable(
                        h.address, cfg.readiness_timeout, cfg.readiness_interval
                    )
                    for h in handles
                )
            )
        except (
            DockerException,
            ComposeSpecError,
            ReplicasPendingError,
            OSError,
        ) as exc:
            if cfg.service_name:
                await self._cleanup_after_failure()
            raise ProvisioningError(count, f"{type(exc).__name__}: {exc}") from exc
        return handles

    def _service_spec(self) -> ServiceSpec:
        cfg = self._config
        if cfg.compose_path:
            return load_service_spec(cfg.compose_path, cfg.service_name)
        return ServiceSpec(
            name=cfg.service_name,
            image=cfg.image,
            ports=(PortMapping(published=cfg.port, target=DEFAULT_WORKER_PORT),),
            network=cfg.service_name,
        )

    def _deploy(self, spec: ServiceSpec, count: int) -> None:
        self._ensure_network(spec)
        existing = [
            s for s in self.client.services.list(filters={"name": spec.name})
            if s.name == spec.name
        ]
        if existing:
            self._service = existing[0]
            self._created_service = False
            logger.info("Scaling existing service %s to %d replicas", spec.name, count)
            self._service.scale(count)
            return

        logger.info("Creating service %s with %d replicas", spec.name, count)
        self._service = self.client.services.create(
            spec.image,
            name=spec.name,
            mode=ServiceMode("replicated", replicas=count),
            endpoint_spec=EndpointSpec(
                ports={p.published: p.target for p in spec.ports}
            ),
            networks=[spec.network] if spec.network else None,
            constraints=list(spec.constraints) or None,
        )
        self._created_service = True

    def _ensure_network(self, spec: ServiceSpec) -> None:
        if not spec.network:
            return
        if self.client.networks.list(names=[spec.network]):
            return
        logger.info("Creating %s network %s", spec.network_driver, spec.network)
        self._network = self.client.networks.create(
            spec.network, driver=spec.network_driver, attachable=True
        )

    def _running_tasks(self) -> int:
        self._service.reload()
        tasks = self._service.tasks(filters={"desired-state": "running"})
        return sum(1 for t in tasks if t.get("Status", {}).get("State") == "running")

    async def _wait_for_replicas(self, count: int) -> None:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(ReplicasPendingError),
            wait=wait_fixed(self._config.readiness_interval),
            stop=stop_after_delay(self._config.readiness_timeout),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                running = await asyncio.to_thread(self._running_tasks)
                if running < count:
                    raise ReplicasPendingError(
                        f"{running} of {count} replicas running"
                    )

    async def _teardown(self, handle: WorkerHandle) -> None:
        # Replicas are owned by the service, removed in _finish_release.
        return None

    async def _finish_release(
        self, released: Sequence[WorkerHandle]
    ) -> list[tuple[WorkerHandle, str]]:
        if self._service is None or self.live_handles:
            return []
        try:
            await asyncio.to_thread(self._retire)
        except DockerException as exc:
            logger.warning("Failed to retire service: %s", exc)
            reason = f"{type(exc).__name__}: {exc}"
            return [(handle, reason) for handle in released]
        return []

    def _retire(self) -> None:
        service, self._service = self._service, None
        if self._created_service:
            logger.info("Removing service %s", service.name)
            service.remove()
        else:
            logger.info("Scaling service %s to zero", service.name)
            service.scale(0)
        network, self._network = self._network, None
        if network is not None:
            logger.info("Removing network %s", network.name)
            network.remove()

    async def _cleanup_after_failure(self) -> None:
        if self._service is None and self._network is None:
            return
        try:
            if self._service is not None:
                await asyncio.to_thread(self._retire)
            else:
                network, self._network = self._network, None
                await asyncio.to_thread(network.remove)
        except DockerException as exc:
            logger.warning("Cleanup after failed provisioning failed: %s", exc)
