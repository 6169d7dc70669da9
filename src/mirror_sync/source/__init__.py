"""Source content system access: REST adapter and media reference helpers."""

from .client import HttpSourceAdapter

__all__ = ["HttpSourceAdapter"]
