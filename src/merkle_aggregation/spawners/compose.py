"""Read a swarm service definition out of a docker-compose file."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml


class ComposeSpecError(ValueError):
    """The compose file does not describe a usable service."""


@dataclass(frozen=True)
class PortMapping:
    published: int
    target: int


@dataclass(frozen=True)
class ServiceSpec:
    """The subset of a compose service the cloud spawner deploys."""

    name: str
    image: str
    constraints: tuple[str, ...] = ()
    ports: tuple[PortMapping, ...] = ()
    network: str = ""
    network_driver: str = "overlay"


def _parse_port(raw: Any) -> PortMapping:
    if isinstance(raw, dict):
        try:
            return PortMapping(published=int(raw["published"]), target=int(raw["target"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise ComposeSpecError(f"Invalid port entry {raw!r}") from exc
    if isinstance(raw, (str, int)):
        text = str(raw).split("/", 1)[0]
        published, sep, target = text.rpartition(":")
        try:
            if not sep:
                return PortMapping(published=int(target), target=int(target))
            return PortMapping(published=int(published.rsplit(":", 1)[-1]), target=int(target))
        except ValueError as exc:
            raise ComposeSpecError(f"Invalid port entry {raw!r}") from exc
    raise ComposeSpecError(f"Invalid port entry {raw!r}")


def _mapping(value: Any, what: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ComposeSpecError(f"{what} must be a mapping, got {type(value).__name__}")
    return value


def parse_service_spec(compose: dict, service_name: str) -> ServiceSpec:
    """Extract ``service_name`` from an already-parsed compose document.

    The replica count is not read: the cloud spawner always deploys as
    many replicas as it was asked to acquire.
    """
    compose = _mapping(compose, "Compose document")
    services = _mapping(compose.get("services"), "services")
    service = services.get(service_name)
    if not isinstance(service, dict):
        raise ComposeSpecError(f"Service {service_name!r} not found in compose file")

    image = service.get("image")
    if not image:
        raise ComposeSpecError(f"Service {service_name!r} has no image")

    deploy = _mapping(service.get("deploy"), f"{service_name}.deploy")
    placement = _mapping(deploy.get("placement"), f"{service_name}.deploy.placement")
    constraints = placement.get("constraints") or ()
    if not isinstance(constraints, (list, tuple)):
        raise ComposeSpecError(f"{service_name}: placement constraints must be a list")

    ports = service.get("ports") or ()
    if not isinstance(ports, (list, tuple)):
        raise ComposeSpecError(f"{service_name}: ports must be a list")

    networks = service.get("networks") or []
    if isinstance(networks, dict):
        networks = list(networks)
    if not isinstance(networks, list):
        raise ComposeSpecError(f"{service_name}: networks must be a list or mapping")
    network = str(networks[0]) if networks else service_name
    network_defs = _mapping(compose.get("networks"), "networks")
    network_def = _mapping(network_defs.get(network), f"networks.{network}")

    return ServiceSpec(
        name=service_name,
        image=str(image),
        constraints=tuple(str(c) for c in constraints),
        ports=tuple(_parse_port(p) for p in ports),
        network=network,
        network_driver=str(network_def.get("driver", "overlay")),
    )


def load_service_spec(path: str | Path, service_name: str) -> ServiceSpec:
    """Load ``service_name`` from the compose file at ``path``.

    Raises:
        ComposeSpecError: If the file cannot be parsed or the service is
            missing or incomplete.
    """
    try:
        with open(path, encoding="utf-8") as fh:
            compose = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        raise ComposeSpecError(f"Cannot read compose file {path}: {exc}") from exc
    return parse_service_spec(compose, service_name)
