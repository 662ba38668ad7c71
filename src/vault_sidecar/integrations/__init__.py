"""Clients for platforms the sidecar runs on."""

from .kubernetes import ConfigMapTokenSource

__all__ = ["ConfigMapTokenSource"]
