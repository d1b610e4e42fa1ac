from __future__ import annotations

from typing import Generic, Iterable, Iterator, TypeVar

from .log import get_logger


log = get_logger(__name__)

C = TypeVar("C")


class RoutingError(LookupError):
    pass


class EndpointRouter(Generic[C]):
    """Named pfSense clients; the first one configured is the default.

    The mapping is fixed at construction and only read afterwards.
    """

    def __init__(self, clients: Iterable[tuple[str, C]]):
        self._clients: dict[str, C] = {}
        self._default: str | None = None
        for name, client in clients:
            if name in self._clients:
                raise ValueError(f"duplicate endpoint name: {name}")
            self._clients[name] = client
            if self._default is None:
                self._default = name

    def items(self) -> Iterator[tuple[str, C]]:
        return iter(list(self._clients.items()))

    def resolve(self, name: str) -> tuple[str, C]:
        """Return ``(resolved_name, client)``; falls back to the default endpoint."""
        if name in self._clients:
            return name, self._clients[name]
        if self._default is not None:
            log.warning("Endpoint '%s' not found, using default endpoint '%s'", name, self._default)
            return self._default, self._clients[self._default]
        raise RoutingError(f"pfSense endpoint '{name}' not found and no default endpoint configured")
