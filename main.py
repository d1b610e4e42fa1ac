from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from pfcc.reconciler import Controller


def _metric(lines: list[str], name: str, kind: str, help_text: str, samples: list[tuple[str, int]]) -> None:
    if not samples:
        return
    lines.append(f"# HELP {name} {help_text}")
    lines.append(f"# TYPE {name} {kind}")
    for labels, value in samples:
        lines.append(f"{name}{labels} {value}")


def render_metrics(controller: Controller) -> str:
    snap = controller.state.snapshot()
    stats = controller.manager.get_stats()

    lines: list[str] = []
    _metric(lines, "pfsense_controller_syncs_total", "counter", "Total number of sync operations", [("", snap.sync_count)])
    _metric(lines, "pfsense_controller_errors_total", "counter", "Total number of errors", [("", snap.error_count)])
    _metric(
        lines,
        "pfsense_controller_container_syncs_total",
        "counter",
        "Total number of successful container syncs",
        [("", snap.container_syncs)],
    )
    if snap.last_sync is not None:
        _metric(
            lines,
            "pfsense_controller_last_sync_timestamp",
            "gauge",
            "Last sync timestamp",
            [("", int(snap.last_sync.timestamp()))],
        )

    backends = [(f'{{endpoint="{ep}"}}', s["backend_count"]) for ep, s in stats.items() if s.get("backend_count", -1) >= 0]
    frontends = [(f'{{endpoint="{ep}"}}', s["frontend_count"]) for ep, s in stats.items() if s.get("frontend_count", -1) >= 0]
    _metric(lines, "pfsense_haproxy_backends", "gauge", "Number of HAProxy backends", backends)
    _metric(lines, "pfsense_haproxy_frontends", "gauge", "Number of HAProxy frontends", frontends)
    return "\n".join(lines) + "\n"


def create_app(controller: Controller, manage_lifecycle: bool = False) -> FastAPI:
    """Operational endpoints for a controller.

    With ``manage_lifecycle`` the controller loop is started and stopped with the app.
    """
    app = FastAPI(title="pfSense Container Controller")
    app.state.controller = controller

    if manage_lifecycle:

        @app.on_event("startup")
        def startup() -> None:
            controller.start()

        @app.on_event("shutdown")
        def shutdown() -> None:
            controller.stop()

    @app.get("/health", response_class=PlainTextResponse)
    def health(request: Request) -> PlainTextResponse:
        ctl: Controller = request.app.state.controller
        results = ctl.manager.health_check()
        if all(err is None for err in results.values()):
            return PlainTextResponse("OK\n", status_code=200)
        return PlainTextResponse("Service Unavailable\n", status_code=503)

    @app.get("/ready", response_class=PlainTextResponse)
    def ready(request: Request) -> PlainTextResponse:
        ctl: Controller = request.app.state.controller
        if ctl.available_runtimes():
            return PlainTextResponse("Ready\n", status_code=200)
        return PlainTextResponse("Not Ready - No container runtimes available\n", status_code=503)

    @app.get("/metrics", response_class=PlainTextResponse)
    def metrics(request: Request) -> PlainTextResponse:
        return PlainTextResponse(render_metrics(request.app.state.controller))

    return app
