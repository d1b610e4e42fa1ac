from __future__ import annotations

import threading
from typing import Any, Iterable

import httpx

from .api_models import Backend, Frontend
from .desired import to_backend, to_frontend
from .docker_ops import ContainerInfo
from .endpoints import EndpointRouter
from .labels import DEFAULT_ENDPOINT, ENDPOINT_LABEL, LabelParser, NoApplicableConfig
from .log import get_logger
from .pfsense import PfSenseAPIError, PfSenseClient
from .retry import RetryError, RetryPolicy, retry_call
from .rules import RuleParseError
from .settings import Config


log = get_logger(__name__)

# Errors a retry can plausibly fix.
REMOTE_ERRORS: tuple[type[BaseException], ...] = (httpx.HTTPError, PfSenseAPIError)
# What a failed step can end with once retries are spent; cancellation is not among them.
STEP_ERRORS: tuple[type[BaseException], ...] = (RetryError, PfSenseAPIError, ValueError)
# health_check and get_stats report these per endpoint instead of raising.
REPORT_ERRORS: tuple[type[BaseException], ...] = REMOTE_ERRORS + (ValueError,)


class SyncError(Exception):
    """A container could not be synced; ``__cause__`` holds the underlying error."""


class ValidationFailed(SyncError):
    pass


def build_clients(config: Config) -> list[tuple[str, PfSenseClient]]:
    return [
        (
            ep.name,
            PfSenseClient(
                name=ep.name,
                base_url=ep.url,
                api_key=ep.api_key,
                timeout_s=ep.request_timeout,
                insecure_tls=ep.insecure_tls,
            ),
        )
        for ep in config.endpoints
    ]


class HAProxyManager:
    """Converges pfSense HAProxy objects with one container's labels at a time.

    Order per container: backend create/update -> frontend create/append -> apply.
    Nothing is kept between calls; the remote API is the only state.
    """

    def __init__(
        self,
        clients: Iterable[tuple[str, Any]],
        parser: LabelParser,
        policy: RetryPolicy,
        stop: threading.Event | None = None,
    ):
        self.router: EndpointRouter[Any] = EndpointRouter(clients)
        self.parser = parser
        self.policy = policy
        self.stop = stop or threading.Event()

    @classmethod
    def from_config(cls, config: Config, stop: threading.Event | None = None) -> "HAProxyManager":
        g = config.global_
        return cls(
            build_clients(config),
            LabelParser(traefik_compat_mode=g.traefik_compat_mode),
            RetryPolicy(attempts=g.retry_attempts, delay_s=g.retry_delay),
            stop=stop,
        )

    def close(self) -> None:
        for _, client in self.router.items():
            close = getattr(client, "close", None)
            if close:
                close()

    def _retry(self, what: str, fn):
        return retry_call(fn, self.policy, stop=self.stop, retry_on=REMOTE_ERRORS, what=what)

    def sync_container(self, info: ContainerInfo) -> bool:
        """Sync one container. Returns False when it has no applicable labels.

        Raises ValidationFailed for opted-in containers with bad labels,
        RoutingError when no endpoint can be resolved and SyncError when the
        remote calls keep failing.
        """
        try:
            cfg = self.parser.parse_container(info)
        except NoApplicableConfig as e:
            if e.invalid:
                raise ValidationFailed(str(e)) from e
            log.debug("Container %s not eligible for HAProxy sync: %s", info.name, e)
            return False

        endpoint, client = self.router.resolve(cfg.endpoint_name)
        log.info(
            "Syncing container %s to pfSense endpoint %s (%s labels)", info.name, endpoint, cfg.parse_mode
        )

        try:
            desired_backend = to_backend(cfg)
            desired_frontend = to_frontend(cfg)
        except RuleParseError as e:
            raise ValidationFailed(f"container {info.name}: {e}") from e

        try:
            self._sync_backend(client, desired_backend)
        except STEP_ERRORS as e:
            raise SyncError(f"failed to sync backend {desired_backend.name}: {e}") from e
        try:
            self._sync_frontend(client, desired_frontend)
        except STEP_ERRORS as e:
            raise SyncError(f"failed to sync frontend {desired_frontend.name}: {e}") from e
        try:
            self._retry("apply", client.apply)
        except STEP_ERRORS as e:
            raise SyncError(f"failed to apply HAProxy changes: {e}") from e

        log.info("Successfully synced container %s", info.name)
        return True

    def _sync_backend(self, client: Any, desired: Backend) -> None:
        existing = self._retry(f"lookup backend {desired.name}", lambda: client.find_backend(desired.name))
        if existing is None:
            log.info("Creating new HAProxy backend: %s", desired.name)
            self._retry(f"create backend {desired.name}", lambda: client.create_backend(desired))
            return

        log.info("Updating existing HAProxy backend: %s", desired.name)
        desired.id = existing.id
        self._retry(f"update backend {desired.name}", lambda: client.update_backend(desired))

    def _sync_frontend(self, client: Any, desired: Frontend) -> None:
        existing = self._retry(f"lookup frontend {desired.name}", lambda: client.find_frontend(desired.name))
        if existing is None:
            log.info("Creating new HAProxy frontend: %s", desired.name)
            self._retry(f"create frontend {desired.name}", lambda: client.create_frontend(desired))
            return

        if not desired.acls or not desired.actions:
            raise ValueError("missing ACL or action in frontend configuration")
        if existing.id is None:
            raise PfSenseAPIError(f"frontend {existing.name} has no id")
        acl, action = desired.acls[0], desired.actions[0]

        # Shared frontend: only ever add rules, never touch the ones already there.
        if existing.has_acl(acl):
            log.debug("Frontend %s already has ACL %s", existing.name, acl.name)
        else:
            log.info("Frontend %s already exists, adding ACL %s", existing.name, acl.name)
            self._retry(f"add ACL {acl.name}", lambda: client.add_acl(existing.id, acl))

        if existing.has_action(action):
            log.debug("Frontend %s already routes ACL %s to %s", existing.name, action.acl, action.backend)
        else:
            log.info("Adding %s action %s -> %s to frontend %s", action.action, action.acl, action.backend, existing.name)
            self._retry(f"add action for {action.acl}", lambda: client.add_action(existing.id, action))

    def remove_container(self, info: ContainerInfo) -> None:
        """Stopped/destroyed containers: remote objects are left in place.

        Frontends may be shared with other containers, so nothing is deleted.
        """
        # Stopped containers have no address any more, so only the enable labels are checked.
        if not self.parser.is_candidate(info.labels):
            log.debug("Container %s was not managed by controller", info.name)
            return
        endpoint, _ = self.router.resolve(info.labels.get(ENDPOINT_LABEL, DEFAULT_ENDPOINT))
        log.warning(
            "HAProxy configuration removal not implemented - manual cleanup required for container %s (endpoint %s)",
            info.name,
            endpoint,
        )

    def health_check(self) -> dict[str, Exception | None]:
        results: dict[str, Exception | None] = {}
        for name, client in self.router.items():
            try:
                client.list_backends()
                results[name] = None
            except REPORT_ERRORS as e:
                log.error("Health check failed for endpoint %s: %s", name, e)
                results[name] = e
        return results

    def get_stats(self) -> dict[str, dict[str, Any]]:
        stats: dict[str, dict[str, Any]] = {}
        for name, client in self.router.items():
            ep: dict[str, Any] = {}
            try:
                ep["backend_count"] = len(client.list_backends())
            except REPORT_ERRORS as e:
                ep["backend_count"] = -1
                ep["error"] = str(e)
            try:
                ep["frontend_count"] = len(client.list_frontends())
            except REPORT_ERRORS as e:
                ep["frontend_count"] = -1
                ep.setdefault("error", str(e))
            stats[name] = ep
        return stats
