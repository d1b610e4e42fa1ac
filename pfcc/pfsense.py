from __future__ import annotations

from typing import Any, TypeVar

import httpx
from pydantic import ValidationError

from .api_models import ACL, Action, APIResponse, Backend, Frontend, PfSenseModel
from .log import get_logger


log = get_logger(__name__)

M = TypeVar("M", bound=PfSenseModel)

BACKENDS_PATH = "/services/haproxy/backends"
BACKEND_PATH = "/services/haproxy/backend"
FRONTENDS_PATH = "/services/haproxy/frontends"
FRONTEND_PATH = "/services/haproxy/frontend"
FRONTEND_ACL_PATH = "/services/haproxy/frontend/acl"
FRONTEND_ACTION_PATH = "/services/haproxy/frontend/action"
APPLY_PATH = "/services/haproxy/apply"

# limit=0 asks the API for every page at once.
LIST_PARAMS = {"limit": 0, "offset": 0}


class PfSenseAPIError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PfSenseClient:
    """Minimal client for the pfSense REST API (HAProxy package endpoints).

    Authentication is the ``X-API-Key`` header. Any HTTP status >= 400, or an
    envelope ``code`` >= 400, raises PfSenseAPIError.
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        api_key: str,
        timeout_s: float = 30.0,
        insecure_tls: bool = False,
        transport: httpx.BaseTransport | None = None,
    ):
        self.name = name
        self.base_url = base_url.rstrip("/")
        self._http = httpx.Client(
            base_url=self.base_url,
            headers={"Accept": "application/json", "X-API-Key": api_key},
            timeout=timeout_s,
            verify=not insecure_tls,
            follow_redirects=False,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __repr__(self) -> str:
        return f"PfSenseClient(name={self.name!r}, base_url={self.base_url!r})"

    def _request(self, method: str, path: str, body: Any = None, params: dict[str, Any] | None = None) -> APIResponse:
        log.debug("[%s] %s %s%s", self.name, method, self.base_url, path)
        resp = self._http.request(method, path, json=body, params=params)

        if resp.status_code >= 400:
            log.error("[%s] API request failed with status %s: %s", self.name, resp.status_code, resp.text)
            raise PfSenseAPIError(
                f"API request failed with status {resp.status_code}: {resp.text}", resp.status_code
            )

        try:
            api_resp = APIResponse.model_validate(resp.json())
        except (ValueError, ValidationError):
            # Not a JSON envelope; keep the raw body as the message.
            api_resp = APIResponse(code=resp.status_code, status=resp.reason_phrase, message=resp.text)

        if api_resp.code >= 400:
            raise PfSenseAPIError(api_resp.message or f"API error code {api_resp.code}", api_resp.code)
        return api_resp

    def _parse_list(self, model: type[M], resp: APIResponse) -> list[M]:
        data = resp.data or []
        if not isinstance(data, list):
            raise PfSenseAPIError(f"expected a list of {model.__name__} objects, got {type(data).__name__}")
        try:
            return [model.model_validate(x) for x in data]
        except ValidationError as e:
            raise PfSenseAPIError(f"invalid {model.__name__} object in API response: {e}") from e

    # ---- backends ----

    def list_backends(self) -> list[Backend]:
        resp = self._request("GET", BACKENDS_PATH, params=LIST_PARAMS)
        return self._parse_list(Backend, resp)

    def find_backend(self, name: str) -> Backend | None:
        for b in self.list_backends():
            if b.name == name:
                return b
        return None

    def create_backend(self, backend: Backend) -> None:
        self._request("POST", BACKEND_PATH, backend.to_payload())
        log.info("[%s] Created HAProxy backend: %s", self.name, backend.name)

    def update_backend(self, backend: Backend) -> None:
        if backend.id is None:
            raise ValueError(f"backend {backend.name} has no id; cannot update")
        self._request("PATCH", BACKEND_PATH, backend.to_payload())
        log.info("[%s] Updated HAProxy backend: %s", self.name, backend.name)

    # ---- frontends ----

    def list_frontends(self) -> list[Frontend]:
        resp = self._request("GET", FRONTENDS_PATH, params=LIST_PARAMS)
        return self._parse_list(Frontend, resp)

    def find_frontend(self, name: str) -> Frontend | None:
        for f in self.list_frontends():
            if f.name == name:
                return f
        return None

    def create_frontend(self, frontend: Frontend) -> None:
        self._request("POST", FRONTEND_PATH, frontend.to_payload())
        log.info("[%s] Created HAProxy frontend: %s", self.name, frontend.name)

    def add_acl(self, frontend_id: int, acl: ACL) -> None:
        self._request(
            "POST",
            FRONTEND_ACL_PATH,
            {"parent_id": frontend_id, "name": acl.name, "expression": acl.expression, "value": acl.value},
        )
        log.info("[%s] Added ACL '%s' to frontend ID %s", self.name, acl.name, frontend_id)

    def add_action(self, frontend_id: int, action: Action) -> None:
        self._request(
            "POST",
            FRONTEND_ACTION_PATH,
            {"parent_id": frontend_id, "action": action.action, "acl": action.acl, "backend": action.backend},
        )
        log.info("[%s] Added action '%s' to frontend ID %s", self.name, action.action, frontend_id)

    # ---- commit ----

    def apply(self) -> None:
        self._request("POST", APPLY_PATH, {})
        log.info("[%s] Applied HAProxy configuration changes", self.name)
