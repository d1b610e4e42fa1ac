import threading
import types

from docker.errors import DockerException, NotFound

from pfcc.docker_ops import DockerRuntime, to_container_info


def _container(cid="abc", name="/web", status="running", labels=None, ip="172.18.0.4"):
    return types.SimpleNamespace(
        id=cid,
        name=name,
        status=status,
        labels=labels or {"pfsense-controller.enable": "true"},
        attrs={
            "Config": {"Image": "nginx:1.25"},
            "NetworkSettings": {"Networks": {"app": {"IPAddress": ip}}},
        },
    )


class FakeContainers:
    def __init__(self, items):
        self.items = {c.id: c for c in items}
        self.list_calls = []

    def list(self, all=False, filters=None):
        self.list_calls.append((all, filters))
        return list(self.items.values())

    def get(self, cid):
        if cid not in self.items:
            raise NotFound(f"no such container: {cid}")
        return self.items[cid]


class FakeDockerClient:
    def __init__(self, items=(), events=(), ping_error=None):
        self.containers = FakeContainers(items)
        self._events = list(events)
        self.ping_error = ping_error

    def ping(self):
        if self.ping_error:
            raise self.ping_error
        return True

    def events(self, decode=False, filters=None):
        return iter(self._events)


def test_to_container_info():
    info = to_container_info(_container())
    assert info.id == "abc"
    assert info.name == "web"
    assert info.image == "nginx:1.25"
    assert info.state == "running"
    assert info.networks == {"app": "172.18.0.4"}


def test_availability():
    assert DockerRuntime(FakeDockerClient()).is_available()
    assert not DockerRuntime(FakeDockerClient(ping_error=DockerException("no socket"))).is_available()


def test_list_containers_passes_label_filter():
    client = FakeDockerClient([_container()])
    rt = DockerRuntime(client)

    infos = rt.list_containers("pfsense-controller.enable=true")

    assert [i.name for i in infos] == ["web"]
    assert client.containers.list_calls == [(True, {"label": ["pfsense-controller.enable=true"]})]


def test_watch_emits_lifecycle_events_only():
    events = [
        {"Type": "container", "Action": "start", "Actor": {"ID": "abc"}, "time": 1700000000},
        {"Type": "container", "Action": "exec_start: sh", "Actor": {"ID": "abc"}, "time": 1700000001},
        {
            "Type": "container",
            "Action": "destroy",
            "Actor": {"ID": "gone", "Attributes": {"name": "old", "image": "x", "pfsense-controller.enable": "true"}},
            "time": 1700000002,
        },
    ]
    rt = DockerRuntime(FakeDockerClient([_container()], events=events))
    seen = []

    rt.watch(threading.Event(), seen.append)

    assert [e.type for e in seen] == ["start", "destroy"]
    assert seen[0].container.name == "web"
    assert seen[0].timestamp.timestamp() == 1700000000
    gone = seen[1].container
    assert (gone.id, gone.name, gone.state) == ("gone", "old", "exited")
    assert gone.labels == {"pfsense-controller.enable": "true"}
