"""clawpen: declarative policy, secret injection and sandboxing for one agent service."""

__version__ = "0.1.0"
