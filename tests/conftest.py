import os as _os
import sys
import threading

import pytest

# Ensure project root is importable (so `import main` / `import cli` work without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from pfcc.api_models import ACL, Action, Backend, Frontend  # noqa: E402
from pfcc.docker_ops import ContainerInfo  # noqa: E402
from pfcc.pfsense import PfSenseAPIError  # noqa: E402


class FakePfSense:
    """In-memory stand-in for PfSenseClient keyed by object name."""

    def __init__(self, name="default"):
        self.name = name
        self.backends: dict[str, Backend] = {}
        self.frontends: dict[str, Frontend] = {}
        self.calls: list[tuple] = []
        self.failures: dict[str, int] = {}  # method -> remaining failures
        self._next_id = 0
        self.closed = False

    def _maybe_fail(self, op):
        left = self.failures.get(op, 0)
        if left:
            self.failures[op] = left - 1
            raise PfSenseAPIError(f"{op} failed", 500)

    def _id(self):
        nid = self._next_id
        self._next_id += 1
        return nid

    def list_backends(self):
        self.calls.append(("list_backends",))
        self._maybe_fail("list_backends")
        return [b.model_copy(deep=True) for b in self.backends.values()]

    def find_backend(self, name):
        for b in self.list_backends():
            if b.name == name:
                return b
        return None

    def create_backend(self, backend):
        self.calls.append(("create_backend", backend.name))
        self._maybe_fail("create_backend")
        stored = backend.model_copy(deep=True)
        stored.id = self._id()
        self.backends[backend.name] = stored

    def update_backend(self, backend):
        self.calls.append(("update_backend", backend.name, backend.id))
        self._maybe_fail("update_backend")
        assert backend.id == self.backends[backend.name].id
        self.backends[backend.name] = backend.model_copy(deep=True)

    def list_frontends(self):
        self.calls.append(("list_frontends",))
        self._maybe_fail("list_frontends")
        return [f.model_copy(deep=True) for f in self.frontends.values()]

    def find_frontend(self, name):
        for f in self.list_frontends():
            if f.name == name:
                return f
        return None

    def create_frontend(self, frontend):
        self.calls.append(("create_frontend", frontend.name))
        self._maybe_fail("create_frontend")
        stored = frontend.model_copy(deep=True)
        stored.id = self._id()
        self.frontends[frontend.name] = stored

    def _frontend_by_id(self, frontend_id):
        for f in self.frontends.values():
            if f.id == frontend_id:
                return f
        raise PfSenseAPIError(f"frontend {frontend_id} not found", 404)

    def add_acl(self, frontend_id, acl):
        self.calls.append(("add_acl", frontend_id, acl.name))
        self._maybe_fail("add_acl")
        self._frontend_by_id(frontend_id).acls.append(ACL(name=acl.name, expression=acl.expression, value=acl.value))

    def add_action(self, frontend_id, action):
        self.calls.append(("add_action", frontend_id, action.acl, action.backend))
        self._maybe_fail("add_action")
        self._frontend_by_id(frontend_id).actions.append(
            Action(action=action.action, acl=action.acl, backend=action.backend)
        )

    def apply(self):
        self.calls.append(("apply",))
        self._maybe_fail("apply")

    def close(self):
        self.closed = True

    def ops(self):
        return [c[0] for c in self.calls if not c[0].startswith("list_")]


class FakeRuntime:
    name = "fake"

    def __init__(self, containers=None, available=True):
        self.containers = list(containers or [])
        self.available = available
        self.list_error = None
        self.labels_requested = []

    def is_available(self):
        return self.available

    def list_containers(self, label=None):
        self.labels_requested.append(label)
        if self.list_error:
            raise self.list_error
        return list(self.containers)

    def watch(self, stop, emit):
        stop.wait()


class NoWait:
    """Stop-event double that records retry waits instead of sleeping."""

    def __init__(self):
        self.waits = []
        self._flag = threading.Event()

    def wait(self, timeout=None):
        self.waits.append(timeout)
        return self._flag.is_set()

    def is_set(self):
        return self._flag.is_set()

    def set(self):
        self._flag.set()


@pytest.fixture
def make_container():
    def _make(name="web", labels=None, ip="172.17.0.2", state="running"):
        networks = {"bridge": ip} if ip is not None else {}
        return ContainerInfo(id=f"id-{name}", name=name, image="nginx:latest", state=state, labels=labels or {}, networks=networks)

    return _make


@pytest.fixture
def native_labels():
    return {
        "pfsense-controller.enable": "true",
        "pfsense-controller.backend.port": "8080",
        "pfsense-controller.frontend.rule": "Host(`test.example.com`)",
    }


@pytest.fixture
def fake_pfsense():
    return FakePfSense()
