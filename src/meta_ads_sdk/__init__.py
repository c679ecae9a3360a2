"""Thin client SDK for the Meta Ads MCP server."""

from __future__ import annotations

from importlib import metadata as _metadata

from .broker import BrokerClient, BrokerError
from .client import MetaAdsSdk, ToolExecutionError, ToolResponseError

try:
    __version__ = _metadata.version("meta-ads-mcp")
except _metadata.PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"

__all__ = ["BrokerClient", "BrokerError", "MetaAdsSdk", "ToolExecutionError", "ToolResponseError", "__version__"]
