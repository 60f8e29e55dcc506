"""Media stack — health checks and post-start setup for a self-hosted media stack."""

__version__ = "0.1.0"
