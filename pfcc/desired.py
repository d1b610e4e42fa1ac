from __future__ import annotations

import base64

from .api_models import ACL, Action, Backend, BackendServer, Frontend
from .labels import CHECK_BASIC, CHECK_HTTP, CHECK_NONE, ContainerConfig
from .rules import parse_rule


USE_BACKEND = "use_backend"

# check_type label value -> pfSense backend check_type
PFSENSE_CHECK_TYPES = {
    CHECK_NONE: "",
    CHECK_BASIC: "Basic",
    CHECK_HTTP: "HTTP",
}


def to_backend(cfg: ContainerConfig) -> Backend:
    spec = cfg.backend
    backend = Backend(
        name=spec.name,
        servers=[BackendServer(name=spec.server_name, address=spec.address, port=spec.port)],
        advanced_backend=base64.b64encode(spec.pass_through.encode()).decode(),
        check_type=PFSENSE_CHECK_TYPES.get(spec.check_type.lower(), ""),
    )
    if spec.check_type.lower() == CHECK_HTTP:
        backend.monitor_uri = spec.health_check_path
        backend.monitor_httpversion = spec.health_check_version
    return backend


def to_frontend(cfg: ContainerConfig) -> Frontend:
    """Frontend with a single ACL and the ``use_backend`` action bound to it.

    Raises RuleParseError when the rule is not one of the supported forms.
    """
    expression, value = parse_rule(cfg.frontend.rule)
    acl_name = cfg.frontend.acl_name
    return Frontend(
        name=cfg.frontend.name,
        acls=[ACL(name=acl_name, expression=expression, value=value)],
        actions=[Action(action=USE_BACKEND, acl=acl_name, backend=cfg.backend.name)],
    )
