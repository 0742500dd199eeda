"""Job scheduling building blocks: local execution, plugins, SLA checks, alerts and replay protection."""

__version__ = "0.1.0"