"""Flask application serving the remote key/value handlers and summaries."""
from __future__ import annotations

import argparse
import os
import signal
import threading
import time
from pathlib import Path
from typing import List, Optional

from flask import Flask, jsonify, request

from . import models
from .config import DEFAULT_SERVER_PORT, load_settings
from .errors import SummaryError, ValidationError
from .log import get_logger, setup_logging
from .migration import StorageKeys, migrate
from .store import KeyValueStore
from .summary import AnthropicSummarizer, build_prompt, parse_request

logger = get_logger(__name__)

app = Flask(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _configure() -> None:
    """Fill in any config key not set by ``main`` or a test from the environment."""
    if all(key in app.config for key in ("STORE_PATH", "DEFAULT_NAMESPACE", "SUMMARIZER")):
        return
    settings = load_settings()
    app.config.setdefault("STORE_PATH", str(settings.store_path))
    app.config.setdefault("DEFAULT_NAMESPACE", settings.namespace)
    app.config.setdefault(
        "SUMMARIZER",
        AnthropicSummarizer(settings.anthropic_api_key, settings.summary_model, timeout=settings.timeout_seconds),
    )


def _store() -> KeyValueStore:
    _configure()
    return KeyValueStore(Path(app.config["STORE_PATH"]))


def _namespace() -> str:
    _configure()
    return (request.args.get("user") or "").strip() or app.config["DEFAULT_NAMESPACE"]


def _error(message: str, status: int):
    return jsonify({"error": message}), status


@app.after_request
def _cors(response):
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return response


@app.errorhandler(405)
def _method_not_allowed(_exc):
    return _error("Method not allowed", 405)


# ---------------------------------------------------------------------------
# API Endpoints
# ---------------------------------------------------------------------------

@app.route("/api/milestones", methods=["GET", "POST", "OPTIONS"])
def api_milestones():
    if request.method == "OPTIONS":
        return ("", 200)

    namespace = _namespace()
    store = _store()
    keys = StorageKeys(namespace)

    if request.method == "GET":
        result = migrate(store, namespace)
        return jsonify(
            {
                "milestones": result.milestones,
                "lastView": result.last_view,
            }
        )

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return _error("Request body must be a JSON object", 400)
    milestones = payload.get("milestones")
    last_view = payload.get("lastView")
    if milestones is not None and not isinstance(milestones, list):
        return _error("milestones must be a list", 400)
    # Each field is stored on its own; an omitted field keeps its stored value.
    if milestones is not None:
        store.set(keys.milestones, milestones)
    if last_view is not None:
        store.set(keys.last_view, models.ViewState.from_dict(last_view).to_dict())
    logger.debug("Stored document for namespace '%s'", namespace)
    return jsonify({"success": True})


@app.post("/api/summary")
def api_summary():
    try:
        tasks, notes, goal = parse_request(request.get_json(silent=True))
    except ValidationError as exc:
        return _error(str(exc), 400)
    prompt = build_prompt(tasks, notes, goal)
    _configure()
    try:
        text = app.config["SUMMARIZER"](prompt)
    except SummaryError as exc:
        logger.error("Summary generation failed: %s", exc)
        return _error(str(exc), 500)
    return jsonify({"summary": text})


@app.post("/__stop")
def shutdown_server() -> dict:
    def _shutdown():
        time.sleep(1)
        os.kill(os.getpid(), signal.SIGTERM)

    threading.Thread(target=_shutdown, daemon=True).start()
    return {"status": "stopping"}


@app.get("/__health")
def healthcheck() -> dict:
    return {"status": "ok"}


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Goalpost sync server")
    parser.add_argument("--port", type=int, default=DEFAULT_SERVER_PORT, help="Port to bind")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind")
    parser.add_argument("--store", default=None, help="SQLite file for the key/value store")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    parser.add_argument("--log-file", default=None, help="Also write JSON-lines logs to this file")
    args = parser.parse_args(argv)

    setup_logging(args.log_level.upper(), Path(args.log_file) if args.log_file else None)
    if args.store:
        app.config["STORE_PATH"] = args.store
    _configure()
    logger.info("Serving on %s:%s with store %s", args.host, args.port, app.config["STORE_PATH"])
    app.run(host=args.host, port=args.port)


if __name__ == "__main__":  # pragma: no cover
    main()
