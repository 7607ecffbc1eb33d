"""Relay Prometheus Alertmanager notifications to Signal via signald."""

__version__ = "1.0.0"
