from __future__ import annotations

import argparse
import json
import logging
import sys

import requests

from pfcc import log as pfcc_log
from pfcc.desired import to_backend, to_frontend
from pfcc.docker_ops import ContainerInfo
from pfcc.labels import LabelParser, NoApplicableConfig
from pfcc.rules import RuleParseError
from pfcc.settings import DEFAULT_CONFIG_PATH, ConfigError, load_config


logger = logging.getLogger("pfcc.cli")


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _parse_labels(items: list[str]) -> dict[str, str]:
    labels: dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep:
            raise ValueError(f"label must be KEY=VALUE: {item}")
        labels[key] = value
    return labels


def cmd_run(args: argparse.Namespace) -> int:
    import uvicorn

    from main import create_app
    from pfcc.docker_ops import DockerRuntime
    from pfcc.manager import HAProxyManager
    from pfcc.reconciler import Controller

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        pfcc_log.configure(args.log_level or "info")
        logger.error("Failed to load configuration: %s", e)
        return 1

    try:
        pfcc_log.configure(args.log_level or cfg.global_.log_level)
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 1

    logger.info("Starting pfSense Container Controller")
    manager = HAProxyManager.from_config(cfg)
    controller = Controller(manager, [DockerRuntime()], poll_interval_s=cfg.global_.poll_interval)
    if not controller.available_runtimes():
        logger.error("Controller failed: no container runtimes available")
        manager.close()
        return 1

    app = create_app(controller, manage_lifecycle=True)
    port = args.port or cfg.global_.health_port
    logger.info("Starting health server on port %d", port)
    uvicorn.run(app, host=args.host, port=port, log_config=None)
    logger.info("pfSense Container Controller stopped")
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    try:
        labels = _parse_labels(args.labels)
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 2

    info = ContainerInfo(id=args.name, name=args.name, state="running", labels=labels, networks={"cli": args.ip})
    parser = LabelParser(traefik_compat_mode=args.traefik)
    try:
        cfg = parser.parse_container(info)
        backend = to_backend(cfg)
        frontend = to_frontend(cfg)
    except (NoApplicableConfig, RuleParseError) as e:
        _print({"ok": False, "error": str(e)})
        return 1

    _print(
        {
            "ok": True,
            "parse_mode": cfg.parse_mode,
            "endpoint": cfg.endpoint_name,
            "backend": backend.to_payload(),
            "frontend": frontend.to_payload(),
        }
    )
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    base = args.api.rstrip("/")
    try:
        health = requests.get(f"{base}/health", timeout=10)
        metrics = requests.get(f"{base}/metrics", timeout=30)
    except requests.RequestException as e:
        print(f"controller not reachable at {base}: {e}", file=sys.stderr)
        return 1
    print(f"health: {health.status_code} {health.text.strip()}")
    print(metrics.text, end="")
    return 0 if health.ok else 1


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(
        description="A container controller that manages pfSense HAProxy configurations based on container labels"
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    s_run = sub.add_parser("run", help="Run the controller and its health server")
    s_run.add_argument("-c", "--config", default=DEFAULT_CONFIG_PATH, help="Configuration file path")
    s_run.add_argument("-l", "--log-level", default=None, help="Log level (debug, info, warn, error)")
    s_run.add_argument("--host", default="0.0.0.0")
    s_run.add_argument("--port", type=int, default=None, help="Health server port (default: global.health_port)")

    s_check = sub.add_parser("check", help="Show what a set of labels would configure, without calling pfSense")
    s_check.add_argument("--labels", nargs="+", default=[], metavar="KEY=VALUE")
    s_check.add_argument("--name", default="container")
    s_check.add_argument("--ip", default="172.17.0.2", help="Container address to assume")
    s_check.add_argument("--traefik", action="store_true", help="Enable Traefik compatibility mode")

    s_status = sub.add_parser("status", help="Query a running controller")
    s_status.add_argument("--api", default="http://localhost:8080", help="Health server base URL")

    args = p.parse_args(argv)

    if args.cmd == "run":
        return cmd_run(args)
    if args.cmd == "check":
        return cmd_check(args)
    if args.cmd == "status":
        return cmd_status(args)
    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
