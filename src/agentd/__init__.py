"""agentd - local daemon that runs tool-calling agents on demand or on a schedule."""

__version__ = "0.1.0"
