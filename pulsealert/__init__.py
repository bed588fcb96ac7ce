"""PulseAlert: rule-based metric monitoring and alert dispatch."""

__version__ = "0.1.0"
