"""Sandpool: lease orchestration for pooled sandbox cloud accounts."""

__version__ = "0.1.0"
