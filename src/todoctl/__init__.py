"""todoctl — command router and validation engine for agent-driven todo lists."""

__version__ = "1.0.0"
