"""Periodic reachability and remote-process health checker."""

__version__ = "0.1.0"
