from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Mapping

from .docker_ops import ContainerInfo, container_ip
from .rules import RuleParseError, name_from_rule, parse_rule, sanitize_name


ENABLE_LABEL = "pfsense-controller.enable"
ENDPOINT_LABEL = "pfsense-controller.endpoint"
BACKEND_NAME_LABEL = "pfsense-controller.backend.name"
BACKEND_PORT_LABEL = "pfsense-controller.backend.port"
BACKEND_CHECK_TYPE_LABEL = "pfsense-controller.backend.check_type"
BACKEND_HEALTH_PATH_LABEL = "pfsense-controller.backend.health_check_path"
BACKEND_HEALTH_METHOD_LABEL = "pfsense-controller.backend.health_check_method"
BACKEND_SERVER_NAME_LABEL = "pfsense-controller.backend.server_name"
FRONTEND_NAME_LABEL = "pfsense-controller.frontend.name"
FRONTEND_RULE_LABEL = "pfsense-controller.frontend.rule"
FRONTEND_ACL_NAME_LABEL = "pfsense-controller.frontend.acl_name"

TRAEFIK_ENABLE_LABEL = "traefik.enable"
# <prefix>.http.services.<service>.loadbalancer.server.port
TRAEFIK_SERVICE_PORT_RE = re.compile(r"^[^.]+\.http\.services\.([^.]+)\.loadbalancer\.server\.port$")
_PORT_RE = re.compile(r"[0-9]+")

MODE_CONTROLLER = "controller"
MODE_TRAEFIK = "traefik"

CHECK_NONE = "none"
CHECK_BASIC = "basic"
CHECK_HTTP = "http"
CHECK_TYPES = (CHECK_NONE, CHECK_BASIC, CHECK_HTTP)

DEFAULT_ENDPOINT = "default"
DEFAULT_HEALTH_METHOD = "OPTIONS"


class LabelError(ValueError):
    """A strategy could not build a configuration from the labels."""

    def __init__(self, message: str, opted_in: bool = True):
        super().__init__(message)
        self.opted_in = opted_in


class NoApplicableConfig(Exception):
    """No strategy produced a configuration for the container.

    ``reasons`` holds the failures of strategies whose enable flag was set;
    it is empty for containers that never opted in.
    """

    def __init__(self, container_name: str, reasons: list[str] | None = None):
        self.container_name = container_name
        self.reasons = reasons or []
        detail = "; ".join(self.reasons) if self.reasons else "no enable label"
        super().__init__(f"no valid pfSense labels found for container {container_name}: {detail}")

    @property
    def invalid(self) -> bool:
        return bool(self.reasons)


@dataclass
class BackendSpec:
    name: str = ""
    server_name: str = ""
    port: str = ""
    address: str = ""
    check_type: str = CHECK_BASIC
    health_check_path: str = ""
    health_check_method: str = ""
    health_check_version: str = ""
    pass_through: str = ""


@dataclass
class FrontendSpec:
    name: str = ""
    rule: str = ""
    acl_name: str = ""


@dataclass
class ContainerConfig:
    enabled: bool = False
    parse_mode: str = MODE_CONTROLLER
    endpoint_name: str = DEFAULT_ENDPOINT
    backend: BackendSpec = field(default_factory=BackendSpec)
    frontend: FrontendSpec = field(default_factory=FrontendSpec)


Strategy = Callable[[ContainerInfo], ContainerConfig]


def _label(labels: Mapping[str, str], key: str, default: str = "") -> str:
    value = labels.get(key)
    return default if value is None else value


def _validate_port(port: str, what: str) -> None:
    # ASCII digits only; the label value is sent to pfSense verbatim.
    if not _PORT_RE.fullmatch(port) or int(port) <= 0:
        raise LabelError(f"invalid {what}: {port}")


def _require_address(backend: BackendSpec, info: ContainerInfo) -> None:
    backend.address = container_ip(info)
    if not backend.address:
        raise LabelError("could not determine container IP address")


def configure_health_check(backend: BackendSpec, labels: Mapping[str, str]) -> None:
    """Fill health check fields according to ``backend.check_type``.

    none/basic clear path, method and version; http requires a path.
    """
    check_type = backend.check_type.lower()
    if check_type in (CHECK_NONE, CHECK_BASIC):
        backend.health_check_path = ""
        backend.health_check_method = ""
        backend.health_check_version = ""
    elif check_type == CHECK_HTTP:
        backend.health_check_path = _label(labels, BACKEND_HEALTH_PATH_LABEL)
        if not backend.health_check_path:
            raise LabelError(
                f"health check path is required for HTTP check type ({BACKEND_HEALTH_PATH_LABEL})"
            )
        backend.health_check_method = _label(labels, BACKEND_HEALTH_METHOD_LABEL, DEFAULT_HEALTH_METHOD)
        # pfSense puts this straight after the method on the check line, so the escapes stay literal.
        backend.health_check_version = f"HTTP/1.1\\r\\nHost:\\ {backend.address}"
    else:
        raise LabelError(
            f"invalid check type '{backend.check_type}', must be one of: {', '.join(CHECK_TYPES)}"
        )
    backend.check_type = check_type


def _pass_through(address: str) -> str:
    return f"http-request set-header Host {address}"


def parse_frontend_labels(labels: Mapping[str, str]) -> FrontendSpec:
    rule = _label(labels, FRONTEND_RULE_LABEL)
    if not rule:
        raise LabelError(f"frontend rule is required ({FRONTEND_RULE_LABEL})")
    slug = name_from_rule(rule)
    return FrontendSpec(
        name=_label(labels, FRONTEND_NAME_LABEL) or f"auto-frontend-{slug}",
        rule=rule,
        acl_name=_label(labels, FRONTEND_ACL_NAME_LABEL) or f"auto-acl-{slug}",
    )


def validate_config(cfg: ContainerConfig) -> None:
    b, f = cfg.backend, cfg.frontend
    if not b.name:
        raise LabelError("backend name cannot be empty")
    if not b.port:
        raise LabelError("backend port cannot be empty")
    if not b.address:
        raise LabelError("backend address cannot be empty")
    if not f.rule:
        raise LabelError("frontend rule cannot be empty")
    if b.check_type == CHECK_HTTP and not b.health_check_path:
        raise LabelError("health check path is required for HTTP check type")
    try:
        parse_rule(f.rule)
    except RuleParseError as e:
        raise LabelError(str(e)) from e


def parse_controller_labels(info: ContainerInfo) -> ContainerConfig:
    """Native ``pfsense-controller.*`` labels."""
    labels = info.labels or {}
    if _label(labels, ENABLE_LABEL) != "true":
        raise LabelError("controller not enabled for container", opted_in=False)

    port = _label(labels, BACKEND_PORT_LABEL)
    if not port:
        raise LabelError(f"backend port is required ({BACKEND_PORT_LABEL})")
    frontend = parse_frontend_labels(labels)

    container_slug = sanitize_name(info.name)
    backend = BackendSpec(
        name=_label(labels, BACKEND_NAME_LABEL) or f"{container_slug}-backend",
        server_name=_label(labels, BACKEND_SERVER_NAME_LABEL, container_slug),
        port=port,
        check_type=_label(labels, BACKEND_CHECK_TYPE_LABEL, CHECK_BASIC),
    )
    _validate_port(backend.port, "backend port")
    _require_address(backend, info)
    configure_health_check(backend, labels)
    backend.pass_through = _pass_through(backend.address)

    cfg = ContainerConfig(
        enabled=True,
        parse_mode=MODE_CONTROLLER,
        endpoint_name=_label(labels, ENDPOINT_LABEL, DEFAULT_ENDPOINT),
        backend=backend,
        frontend=frontend,
    )
    validate_config(cfg)
    return cfg


def find_traefik_service_port(labels: Mapping[str, str]) -> tuple[str, str] | None:
    """Scan for ``<prefix>.http.services.<service>.loadbalancer.server.port``.

    Keys are scanned in sorted order so the result does not depend on label
    ordering. Returns ``(service, port)`` or None.
    """
    for key in sorted(labels):
        m = TRAEFIK_SERVICE_PORT_RE.match(key)
        if m:
            return m.group(1), labels[key]
    return None


def parse_traefik_labels(info: ContainerInfo) -> ContainerConfig:
    """Traefik labels for the backend, native labels for the frontend."""
    labels = info.labels or {}
    if _label(labels, TRAEFIK_ENABLE_LABEL) != "true":
        raise LabelError("traefik not enabled for container", opted_in=False)

    found = find_traefik_service_port(labels)
    if found is None:
        raise LabelError(
            "Traefik service port is required (traefik.http.services.{service}.loadbalancer.server.port)"
        )
    service, port = found
    frontend = parse_frontend_labels(labels)

    container_slug = sanitize_name(info.name)
    service_slug = sanitize_name(service)
    backend = BackendSpec(
        name=f"{service_slug}-backend" if service_slug else f"{container_slug}-backend",
        server_name=container_slug,
        port=port,
        check_type=_label(labels, BACKEND_CHECK_TYPE_LABEL, CHECK_BASIC),
    )
    _validate_port(backend.port, "traefik service port")
    _require_address(backend, info)
    configure_health_check(backend, labels)
    backend.pass_through = _pass_through(backend.address)

    cfg = ContainerConfig(
        enabled=True,
        parse_mode=MODE_TRAEFIK,
        endpoint_name=DEFAULT_ENDPOINT,
        backend=backend,
        frontend=frontend,
    )
    validate_config(cfg)
    return cfg


class LabelParser:
    """Applies the label strategies in order and keeps the first success."""

    def __init__(self, traefik_compat_mode: bool = False):
        self.traefik_compat_mode = traefik_compat_mode
        self.strategies: list[tuple[str, Strategy]] = [(MODE_CONTROLLER, parse_controller_labels)]
        if traefik_compat_mode:
            self.strategies.append((MODE_TRAEFIK, parse_traefik_labels))

    def parse_container(self, info: ContainerInfo) -> ContainerConfig:
        reasons: list[str] = []
        for mode, strategy in self.strategies:
            try:
                return strategy(info)
            except LabelError as e:
                if e.opted_in:
                    reasons.append(f"{mode}: {e}")
        raise NoApplicableConfig(info.name, reasons)

    def is_candidate(self, labels: Mapping[str, str] | None) -> bool:
        """Cheap pre-filter: does the container carry any enable label we read?"""
        labels = labels or {}
        if labels.get(ENABLE_LABEL) == "true":
            return True
        return self.traefik_compat_mode and labels.get(TRAEFIK_ENABLE_LABEL) == "true"
