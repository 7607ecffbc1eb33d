"""
=====================================================================
PROMETHEUS METRICS
=====================================================================
Collectors live on the default registry and are exposed on /metrics
by prometheus_flask_exporter (see webhook_service.create_app).
=====================================================================
"""

from prometheus_client import Counter, Gauge

ERROR_TYPES = ("decode", "handle")

METRIC_ALERTS_RECEIVED = Counter(
    'signald_webhook_alerts_received_total',
    'Total alert notifications posted to /alert'
)

METRIC_ALERT_ERRORS = Counter(
    'signald_webhook_alerts_errors_total',
    'Alert notifications that failed',
    ['type']  # decode|handle
)

METRIC_SIGNAL_CONNECTED = Gauge(
    'signald_webhook_signal_connected',
    'True if connected to signald.'
)

METRIC_SIGNAL_INFO = Gauge(
    'signald_webhook_signal_info',
    'signald daemon identity reported on connect',
    ['name', 'version']
)

METRIC_MESSAGES_SENT = Counter(
    'signald_webhook_messages_sent_total',
    'Send requests submitted to signald',
    ['status']  # success|fail
)


def init_error_metrics():
    """Export every error type at 0 so rate() works before the first error."""
    for error_type in ERROR_TYPES:
        METRIC_ALERT_ERRORS.labels(type=error_type)


def set_signal_info(name: str, version: str):
    METRIC_SIGNAL_INFO.clear()
    METRIC_SIGNAL_INFO.labels(name=name, version=version).set(1)


init_error_metrics()
