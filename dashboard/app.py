"""
goal: flask JSON API for Sentinel. exposes the backend operations (process list and details, kill, startup
entries, services, analysis, history, export) to whatever front end is polling it. runs entirely locally.

what this app is responsible for:
- translating HTTP requests into SentinelService calls and their results into camelCase JSON
- refusing state-changing requests that are not JSON or come from a foreign Origin (a plain cross-site form post
  must never reach kill/toggle/service actions)
- mapping SentinelError kinds onto status codes (400 invalid request, 403 forbidden, 501 unsupported platform,
  500 otherwise)
- returning user-action failures (kill/toggle/service action) as 200 with success=false, never as errors
- serving through waitress when run from the console launcher
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlsplit

from flask import Flask, jsonify, request
from waitress import serve

from agent.errors import ErrorKind, SentinelError
from agent.services import SERVICE_ACTIONS
from algorithm.analyzer import AnalysisPersistenceError
from dashboard.config import Config
from dashboard.service import SentinelService

log = logging.getLogger("sentinel.api")

_STATUS = {
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.UNSUPPORTED_PLATFORM: 501,
}


def _error_body(exc: SentinelError) -> dict[str, Any]:
    return {"error": exc.message, "kind": exc.kind.value}


_SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
_LOOPBACK_HOSTS = frozenset({"127.0.0.1", "localhost", "::1"})


def _origin_allowed(origin: str | None, host: str) -> bool:
    # no Origin header means a non-browser client (curl, the console, tests)
    if not origin:
        return True
    try:
        hostname = urlsplit(origin).hostname
    except ValueError:
        return False
    if not hostname:
        return False  # "null" origins from sandboxed frames and file: pages
    return hostname in _LOOPBACK_HOSTS or hostname == urlsplit(f"//{host}").hostname


def build_app(service: SentinelService) -> Flask:
    app = Flask(__name__)
    app.json.sort_keys = False  # keep payload keys in model order

    @app.before_request
    def guard_state_changes():
        if request.method in _SAFE_METHODS:
            return None
        # a cross-site form can only send form or text bodies, never application/json without a preflight
        if not request.is_json:
            raise SentinelError("state-changing requests must send a JSON body", ErrorKind.FORBIDDEN)
        if not _origin_allowed(request.headers.get("Origin"), request.host):
            raise SentinelError("cross-origin request refused", ErrorKind.FORBIDDEN)
        return None

    @app.errorhandler(SentinelError)
    def handle_sentinel_error(exc: SentinelError):
        status = _STATUS.get(exc.kind, 500)
        log.error("%s %s failed: %s", request.method, request.path, exc)
        body = _error_body(exc)
        # the analysis itself finished, only writing it out failed
        if isinstance(exc, AnalysisPersistenceError):
            body["report"] = exc.report.to_dict()
        return jsonify(body), status

    # ping endpoint: lets the front end know the backend is alive
    @app.get("/api/ping")
    def ping():
        return jsonify({"ok": True})

    # processes

    @app.get("/api/processes")
    def list_processes():
        procs = service.list_processes()
        return jsonify({"processes": [p.to_dict() for p in procs]})

    @app.get("/api/processes/<int:pid>")
    def process_details(pid: int):
        proc = service.get_process_details(pid)
        return jsonify({"process": proc.to_dict() if proc else None})

    @app.post("/api/processes/<int:pid>/kill")
    def kill_process(pid: int):
        return jsonify(service.kill_process(pid).to_dict())

    # startup entries

    @app.get("/api/startup")
    def list_startup():
        items = service.list_startup_items()
        return jsonify({"items": [i.to_dict() for i in items]})

    @app.post("/api/startup/toggle")
    def toggle_startup():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            data = {}
        item_id = data.get("id")
        enabled = data.get("enabled")
        if not isinstance(item_id, str) or not item_id or not isinstance(enabled, bool):
            raise SentinelError("expected JSON body {id: string, enabled: bool}", ErrorKind.INVALID_REQUEST)
        return jsonify(service.toggle_startup_item(item_id, enabled).to_dict())

    # services

    @app.get("/api/services")
    def list_services():
        services = service.list_services()
        return jsonify({"services": [s.to_dict() for s in services]})

    @app.post("/api/services/<name>/<action>")
    def service_action(name: str, action: str):
        return jsonify(service.service_action(name, action).to_dict())

    @app.get("/api/services/actions")
    def service_actions():
        return jsonify({"actions": list(SERVICE_ACTIONS)})

    # analysis, history, export

    @app.post("/api/analyze")
    def analyze():
        return jsonify(service.analyze_system().to_dict())

    @app.get("/api/history")
    def history():
        days = request.args.get("days")
        try:
            days_back = int(days) if days not in (None, "") else None
        except ValueError:
            raise SentinelError(f"days must be an integer, got {days!r}", ErrorKind.INVALID_REQUEST) from None
        return jsonify(service.get_spike_events(days_back).to_dict())

    @app.post("/api/export")
    def export():
        return jsonify({"exportPath": str(service.export_report())})

    return app


# run the dashboard API under waitress
def run_dashboard(service: SentinelService, cfg: Config) -> None:
    app = build_app(service)
    log.info("serving Sentinel API on http://%s:%s", cfg.host, cfg.port)
    try:
        serve(app, host=cfg.host, port=cfg.port, threads=max(cfg.workers, 4))
    except KeyboardInterrupt:
        pass  # expected when shutting down
    finally:
        service.shutdown()
