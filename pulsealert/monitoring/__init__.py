"""Monitoring subsystem: metric-driven alert rules and notification fan-out."""
