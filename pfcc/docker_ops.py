from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

import docker
from docker.errors import DockerException, NotFound

from .log import get_logger


log = get_logger(__name__)

EVENT_START = "start"
EVENT_STOP = "stop"
EVENT_DESTROY = "destroy"
EVENT_UPDATE = "update"

WATCHED_ACTIONS = {EVENT_START, EVENT_STOP, EVENT_DESTROY, EVENT_UPDATE}


@dataclass(frozen=True)
class ContainerInfo:
    id: str
    name: str
    image: str = ""
    state: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    # network name -> IP address
    networks: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ContainerEvent:
    type: str
    container: ContainerInfo
    timestamp: datetime


def container_ip(info: ContainerInfo) -> str:
    """Primary address of a container: the first network with an IP."""
    for ip in info.networks.values():
        if ip:
            return ip
    return ""


def _networks_from_attrs(attrs: dict[str, Any]) -> dict[str, str]:
    nets = (attrs.get("NetworkSettings") or {}).get("Networks") or {}
    return {name: (n or {}).get("IPAddress") or "" for name, n in nets.items()}


def to_container_info(container: Any) -> ContainerInfo:
    attrs = container.attrs or {}
    image = (attrs.get("Config") or {}).get("Image") or ""
    return ContainerInfo(
        id=container.id,
        name=(container.name or "").lstrip("/"),
        image=image,
        state=container.status,
        labels=dict(container.labels or {}),
        networks=_networks_from_attrs(attrs),
    )


class DockerRuntime:
    """Container source backed by the local Docker daemon."""

    name = "docker"

    def __init__(self, client: docker.DockerClient | None = None):
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def is_available(self) -> bool:
        try:
            self.client.ping()
            return True
        except DockerException:
            return False

    def list_containers(self, label: str | None = None) -> list[ContainerInfo]:
        filters: dict[str, Any] = {}
        if label:
            filters["label"] = [label]
        out: list[ContainerInfo] = []
        for c in self.client.containers.list(all=True, filters=filters):
            try:
                out.append(to_container_info(c))
            except (KeyError, TypeError) as e:
                log.error("Failed to convert container %s: %s", getattr(c, "id", "?"), e)
        return out

    def get_container(self, container_id: str) -> ContainerInfo | None:
        try:
            return to_container_info(self.client.containers.get(container_id))
        except NotFound:
            return None

    def _event_to_container(self, event: dict[str, Any]) -> ContainerInfo:
        actor = event.get("Actor") or {}
        cid = actor.get("ID") or event.get("id") or ""
        info = self.get_container(cid)
        if info is not None:
            return info
        # Destroyed containers can no longer be inspected; fall back to event attributes.
        attributes = dict(actor.get("Attributes") or {})
        name = attributes.pop("name", cid)
        image = attributes.pop("image", "")
        return ContainerInfo(id=cid, name=name, image=image, state="exited", labels=attributes)

    def watch(self, stop: threading.Event, emit: Callable[[ContainerEvent], None]) -> None:
        """Forward container events to ``emit`` until ``stop`` is set or the stream ends."""
        stream = self.client.events(decode=True, filters={"type": "container"})
        try:
            for event in stream:
                if stop.is_set():
                    break
                action = (event.get("Action") or event.get("status") or "").split(":")[0]
                if action not in WATCHED_ACTIONS:
                    continue
                try:
                    container = self._event_to_container(event)
                except DockerException as e:
                    log.error("Failed to get container info for %s event: %s", action, e)
                    continue
                ts = datetime.fromtimestamp(int(event.get("time") or 0), tz=timezone.utc)
                emit(ContainerEvent(type=action, container=container, timestamp=ts))
        finally:
            close = getattr(stream, "close", None)
            if close:
                close()
