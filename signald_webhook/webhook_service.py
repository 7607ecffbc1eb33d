#!/usr/bin/env python3
"""
=====================================================================
signald-webhook Service
=====================================================================
Receives Prometheus Alertmanager webhook notifications and relays
them to Signal recipients through a local signald daemon.

Endpoints:
- POST /alert    Alertmanager webhook (JSON)
- GET  /metrics  Prometheus metrics
- GET  /health   signald connectivity
- GET  /         Service information

Usage:
    signald-webhook -config /etc/signald-webhook/config.yml \\
        [-listen :9716] [-signald /var/run/signald/signald.sock]

Under gunicorn (configuration from environment variables):
    WEBHOOK_CONFIG=/etc/signald-webhook/config.yml \\
    gunicorn --bind 0.0.0.0:9716 --workers 1 --threads 8 \\
        'signald_webhook.webhook_service:create_app()'
=====================================================================
"""

import sys
import json
import uuid
import signal
import logging
import argparse
from dataclasses import dataclass
from typing import List, Optional

from flask import Flask, Response, g, jsonify, request
from prometheus_flask_exporter import PrometheusMetrics
from werkzeug.serving import make_server

from signald_webhook import __version__
from signald_webhook.config import (
    DEFAULT_LISTEN,
    DEFAULT_SOCKET_PATH,
    ServiceConfig,
    WebhookConfig,
    load_config,
)
from signald_webhook.dispatcher import AlertDispatcher
from signald_webhook.errors import ConfigError, DecodeError, DispatchError
from signald_webhook.logging_utils import setup_json_logging
from signald_webhook.metrics import METRIC_ALERT_ERRORS, METRIC_ALERTS_RECEIVED
from signald_webhook.models import AlertMessage
from signald_webhook.supervisor import Backoff, ConnectionSupervisor
from signald_webhook.templates import TemplateSet

SERVICE_NAME = "signald-webhook"

logger = logging.getLogger(__name__)


# =====================================================================
# APPLICATION CONTEXT
# =====================================================================

@dataclass
class AppContext:
    """Everything built once at startup and shared by request handlers."""

    service_config: Optional[ServiceConfig]
    webhook_config: WebhookConfig
    templates: TemplateSet
    supervisor: ConnectionSupervisor
    dispatcher: AlertDispatcher


def build_context(service_config: ServiceConfig) -> AppContext:
    """
    Load receivers and templates and wire the supervisor and dispatcher.

    Raises:
        ConfigError: receivers file or templates are invalid
    """
    webhook_config = load_config(service_config.CONFIG_PATH)
    templates = TemplateSet.from_globs(webhook_config.templates)
    supervisor = ConnectionSupervisor(
        service_config.SIGNALD_SOCKET,
        backoff=Backoff(
            base=service_config.BACKOFF_BASE,
            cap=service_config.BACKOFF_MAX,
            factor=service_config.BACKOFF_FACTOR,
        ),
        submit_timeout=service_config.SUBMIT_TIMEOUT,
    )
    dispatcher = AlertDispatcher(webhook_config, templates, supervisor)
    return AppContext(service_config, webhook_config, templates, supervisor, dispatcher)


# =====================================================================
# FLASK APPLICATION FACTORY
# =====================================================================

def _text_response(text: str, status: int) -> Response:
    return Response(text + "\n", status=status, mimetype="text/plain")


def create_app(context: Optional[AppContext] = None) -> Flask:
    """
    Creates and configures the Flask application.

    Without a context (gunicorn factory use) configuration is read from
    the environment and the signald supervisor is started here.
    """
    if context is None:
        setup_json_logging(service_name=SERVICE_NAME, version=__version__)
        try:
            context = build_context(ServiceConfig())
        except ConfigError as e:
            logger.error(f"FATAL: {e}")
            sys.exit(1)
        context.supervisor.start()

    app = Flask(__name__)
    app.config["CONTEXT"] = context

    PrometheusMetrics(app)
    logger.info("Prometheus metrics endpoint initialized at /metrics")

    # ================================================================
    # REQUEST HANDLERS
    # ================================================================

    @app.before_request
    def assign_correlation_id():
        g.correlation_id = request.headers.get('X-Correlation-ID') or str(uuid.uuid4())

    @app.after_request
    def echo_correlation_id(response):
        correlation_id = getattr(g, "correlation_id", None)
        if correlation_id:
            response.headers['X-Correlation-ID'] = correlation_id
        return response

    @app.route('/alert', methods=['POST'])
    def hook():
        """Alertmanager webhook endpoint."""
        METRIC_ALERTS_RECEIVED.inc()

        try:
            payload = json.loads(request.get_data(as_text=True))
            message = AlertMessage.from_dict(payload)
        except (ValueError, RecursionError, DecodeError) as e:
            # JSONDecodeError is a ValueError; deep nesting raises RecursionError
            logger.warning(f"Decoding /alert failed: {e}")
            METRIC_ALERT_ERRORS.labels(type='decode').inc()
            return _text_response("Decode failed", 400)

        try:
            context.dispatcher.dispatch(message)
        except DispatchError as e:
            logger.error(f"{e}")
            METRIC_ALERT_ERRORS.labels(type='handle').inc()
            return _text_response("Handling alert failed", 500)
        except Exception as e:
            logger.error(f"Unhandled exception: {e}", exc_info=True)
            METRIC_ALERT_ERRORS.labels(type='handle').inc()
            return _text_response("Handling alert failed", 500)

        return _text_response("ok", 200)

    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint for load balancers and orchestrators."""
        supervisor = context.supervisor
        body = {
            "service": SERVICE_NAME,
            "version": __version__,
            "signald": "connected" if supervisor.connected else "disconnected",
        }
        if supervisor.identity:
            body["signald_name"], body["signald_version"] = supervisor.identity
        if supervisor.connected:
            body["status"] = "healthy"
            return jsonify(body), 200
        body["status"] = "degraded"
        return jsonify(body), 503

    @app.route('/', methods=['GET'])
    def index():
        """Service information endpoint."""
        return jsonify({
            "service": SERVICE_NAME,
            "version": __version__,
            "description": "Relays Alertmanager notifications to Signal via signald",
            "receivers": [r.name for r in context.webhook_config.receivers],
            "endpoints": {
                "alert": "POST /alert",
                "health": "GET /health",
                "metrics": "GET /metrics",
                "info": "GET /"
            }
        }), 200

    return app


# =====================================================================
# GRACEFUL SHUTDOWN HANDLING
# =====================================================================

def setup_signal_handlers(context: AppContext, server=None):
    """Set up signal handlers for graceful shutdown."""

    def shutdown_handler(signum, frame):
        sig_name = 'SIGTERM' if signum == signal.SIGTERM else 'SIGINT'
        logger.info(f"Received {sig_name}, initiating graceful shutdown...")

        context.supervisor.stop()
        if server is not None:
            server.server_close()

        logger.info("Graceful shutdown complete")
        sys.exit(0)

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)


# =====================================================================
# MAIN ENTRY POINT
# =====================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=SERVICE_NAME,
        description="Relay Prometheus Alertmanager webhooks to Signal via signald",
    )
    # Unset flags fall back to the environment in ServiceConfig
    parser.add_argument(
        '-listen',
        default=None,
        help=f"[ip]:port to listen on for HTTP (env WEBHOOK_LISTEN, default: {DEFAULT_LISTEN})",
    )
    parser.add_argument(
        '-signald',
        default=None,
        help=f"UNIX socket to connect to signald on (env SIGNALD_SOCKET, default: {DEFAULT_SOCKET_PATH})",
    )
    parser.add_argument(
        '-config',
        default=None,
        help="YAML configuration filename (env WEBHOOK_CONFIG, required)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        service_config = ServiceConfig(
            listen=args.listen,
            socket_path=args.signald,
            config_path=args.config,
        )
    except ConfigError as e:
        # Exits 2 with usage
        parser.error(str(e))

    setup_json_logging(service_name=SERVICE_NAME, version=__version__)

    try:
        context = build_context(service_config)
    except ConfigError as e:
        logger.error(f"FATAL: {e}")
        sys.exit(1)

    context.supervisor.start()
    app = create_app(context)

    server = make_server(service_config.HOST, service_config.PORT, app, threaded=True)
    setup_signal_handlers(context, server)

    logger.info("=" * 70)
    logger.info(f"signald-webhook {__version__}")
    logger.info("=" * 70)
    logger.info(f"Listening on {service_config.LISTEN}")
    logger.info(f"signald socket: {service_config.SIGNALD_SOCKET}")
    logger.info(f"Receivers: {', '.join(r.name for r in context.webhook_config.receivers)}")
    logger.info("=" * 70)

    server.serve_forever()


if __name__ == '__main__':
    main()
