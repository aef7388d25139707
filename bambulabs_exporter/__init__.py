"""Prometheus exporter for Bambu Lab printers, fed by the printer's MQTT reports."""

__version__ = "1.0.0"
