"""tikstat - Prometheus exporter for RouterOS devices."""

__version__ = "0.3.0"
