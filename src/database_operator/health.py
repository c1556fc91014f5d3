"""Health, readiness, conversion and metrics endpoints for the operator."""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Callable

from prometheus_client import REGISTRY, CollectorRegistry, make_wsgi_app
from werkzeug.serving import BaseWSGIServer, make_server
from werkzeug.wrappers import Request, Response

logger = logging.getLogger(__name__)


def _json_response(payload: dict[str, Any], status: int = 200) -> Response:
    return Response(json.dumps(payload), mimetype="application/json", status=status)


def create_combined_wsgi_app(
    registry: CollectorRegistry = REGISTRY,
    readiness: Callable[[], bool] | None = None,
    conversion_handler: Callable[[dict[str, Any]], dict[str, Any]] | None = None,
) -> Any:
    """Create a WSGI app that combines health, conversion and metrics endpoints.

    Args:
        registry: Registry exposed for every path not handled here
        readiness: Returns True once the operator can reconcile; /readyz
            answers 503 until then
        conversion_handler: ConversionReview handler served at /convert

    Returns:
        Combined WSGI application
    """
    metrics_app = make_wsgi_app(registry)

    def combined_app(environ: dict[str, Any], start_response: Any) -> list[bytes]:
        """WSGI app that routes /healthz, /readyz and /convert, delegates the rest to prometheus."""
        path = environ.get("PATH_INFO", "")

        if path == "/healthz":
            response = _json_response({"status": "ok"})
        elif path == "/readyz":
            if readiness is None or readiness():
                response = _json_response({"status": "ready"})
            else:
                response = _json_response({"status": "not ready"}, status=503)
        elif path == "/convert" and conversion_handler is not None:
            response = _convert(Request(environ), conversion_handler)
        else:
            return metrics_app(environ, start_response)

        return response(environ, start_response)

    return combined_app


def _convert(
    request: Request, handler: Callable[[dict[str, Any]], dict[str, Any]]
) -> Response:
    if request.method != "POST":
        return _json_response({"error": "method not allowed"}, status=405)
    review = request.get_json(silent=True)
    if not isinstance(review, dict):
        return _json_response({"error": "request body must be a ConversionReview"}, status=400)
    return _json_response(handler(review))


def start_http_server(port: int, app: Any, host: str = "") -> BaseWSGIServer:
    """Serve ``app`` from a daemon thread.

    Returns:
        The running server; call ``shutdown()`` to stop it
    """
    server = make_server(host, port, app, threaded=True)
    thread = threading.Thread(target=server.serve_forever, name="http-server", daemon=True)
    thread.start()
    logger.info(f"Serving health, conversion and metrics endpoints on port {port}")
    return server
