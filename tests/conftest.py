# =====================================================================
# signald-webhook Pytest Configuration and Fixtures
# =====================================================================
# Shared fixtures: sample Alertmanager payloads, a fake signald
# connection, receiver configs and a Flask test client.
# =====================================================================

import pytest
from prometheus_client import REGISTRY

from signald_webhook.config import parse_config
from signald_webhook.dispatcher import AlertDispatcher
from signald_webhook.errors import SubmitError
from signald_webhook.supervisor import Backoff, ConnectionSupervisor
from signald_webhook.templates import TemplateSet
from signald_webhook.webhook_service import AppContext, create_app


# --- Prometheus Metrics Cleanup ---

@pytest.fixture(autouse=True, scope="function")
def cleanup_prometheus_metrics():
    """
    Unregister the per-app HTTP metrics after each test.

    PrometheusMetrics registers its flask_* collectors every time an app
    is created, which would raise 'Duplicated timeseries in
    CollectorRegistry' on the next create_app(). The signald_webhook_*
    collectors are module level and stay registered.
    """
    yield

    collectors_to_remove = []
    for collector in list(REGISTRY._collector_to_names.keys()):
        names = REGISTRY._collector_to_names.get(collector, set())
        if any(name.startswith('flask_') for name in names):
            collectors_to_remove.append(collector)

    for collector in collectors_to_remove:
        try:
            REGISTRY.unregister(collector)
        except KeyError:
            pass


# --- Fake signald ---

class FakeConnection:
    """Stands in for SignaldConnection; records submitted requests."""

    def __init__(self, fail_for=()):
        self.submitted = []
        self.fail_for = set(fail_for)
        self.closed = False

    def submit(self, request):
        if str(request.recipient) in self.fail_for:
            raise SubmitError(f"signald rejected {request.recipient}")
        self.submitted.append(request)
        return {"type": "send", "data": {"results": []}}

    def close(self):
        self.closed = True


@pytest.fixture
def fake_connection():
    return FakeConnection()


@pytest.fixture
def connected_supervisor(fake_connection):
    """Supervisor that looks connected without a background thread."""
    supervisor = ConnectionSupervisor("/nonexistent/signald.sock", backoff=Backoff(base=0.001, cap=0.01))
    supervisor._connection = fake_connection
    supervisor.connected = True
    return supervisor


# --- Configuration ---

@pytest.fixture
def template_dir(tmp_path):
    """Directory holding one shared template file."""
    (tmp_path / "default.tmpl").write_text(
        "[{{ status | toUpper }}] {{ groupLabels.alertname }}\n"
        "{% for alert in alerts %}- {{ alert.annotations.summary }}\n{% endfor %}"
    )
    return tmp_path


@pytest.fixture
def receivers_document(template_dir):
    return {
        "templates": [str(template_dir / "*.tmpl")],
        "receivers": [
            {
                "name": "ops",
                "sender": "+15550000000",
                "to": [
                    "tel:+15551234567",
                    "group:{{ commonLabels.team }}",
                ],
                "template": '{% include "default.tmpl" %}',
            },
            {
                "name": "broken-body",
                "sender": "+15550000000",
                "to": ["tel:+15551234567"],
                "template": "{{ commonLabels.does_not_exist }}",
            },
            {
                "name": "mixed",
                "sender": "+15550000000",
                "to": [
                    "tel:+15551234567",
                    "foo:bar",
                    "{{ nope.missing }}",
                    "group:abc123",
                ],
                "template": "{{ groupLabels.alertname }} is {{ status }}",
            },
        ],
    }


@pytest.fixture
def webhook_config(receivers_document):
    return parse_config(receivers_document)


@pytest.fixture
def template_set(webhook_config):
    return TemplateSet.from_globs(webhook_config.templates)


@pytest.fixture
def dispatcher(webhook_config, template_set, connected_supervisor):
    return AlertDispatcher(webhook_config, template_set, connected_supervisor)


@pytest.fixture
def app_context(webhook_config, template_set, connected_supervisor, dispatcher):
    return AppContext(
        service_config=None,
        webhook_config=webhook_config,
        templates=template_set,
        supervisor=connected_supervisor,
        dispatcher=dispatcher,
    )


@pytest.fixture
def client(app_context):
    """Flask test client wired to a fake signald connection"""
    app = create_app(app_context)
    app.testing = True
    return app.test_client()


# --- Sample Data Fixtures ---

@pytest.fixture
def sample_alert_payload():
    """Alertmanager webhook payload (version 4)"""
    return {
        "version": "4",
        "groupKey": "{}:{alertname=\"DiskFull\"}",
        "truncatedAlerts": 0,
        "status": "firing",
        "receiver": "ops",
        "groupLabels": {"alertname": "DiskFull"},
        "commonLabels": {"alertname": "DiskFull", "team": "storage-team", "severity": "critical"},
        "commonAnnotations": {"summary": "Disk almost full"},
        "externalURL": "http://alertmanager.example.com:9093",
        "alerts": [
            {
                "status": "firing",
                "labels": {"alertname": "DiskFull", "instance": "db-01"},
                "annotations": {"summary": "db-01 disk at 97%"},
                "startsAt": "2025-11-08T12:00:00Z",
                "endsAt": "0001-01-01T00:00:00Z",
                "generatorURL": "http://prometheus.example.com/graph",
                "fingerprint": "a1b2c3",
            },
            {
                "status": "resolved",
                "labels": {"alertname": "DiskFull", "instance": "db-02"},
                "annotations": {"summary": "db-02 disk back to 60%"},
                "startsAt": "2025-11-08T11:00:00Z",
                "endsAt": "2025-11-08T11:30:00Z",
                "generatorURL": "http://prometheus.example.com/graph",
                "fingerprint": "d4e5f6",
            },
        ],
    }


# --- Pytest Configuration ---

def pytest_configure(config):
    """Pytest configuration hook"""
    config.addinivalue_line(
        "markers", "unit: Unit tests (no signald required)"
    )


# --- Helper Functions ---

def metric_value(name, labels=None):
    """Current value of a sample on the default registry (0 if absent)."""
    value = REGISTRY.get_sample_value(name, labels or {})
    return value or 0.0


def assert_log_contains(caplog, level, message_fragment):
    """Assert that logs contain a specific message"""
    for record in caplog.records:
        if record.levelname == level and message_fragment in record.message:
            return True
    raise AssertionError(
        f"Log message containing '{message_fragment}' at level '{level}' not found"
    )
