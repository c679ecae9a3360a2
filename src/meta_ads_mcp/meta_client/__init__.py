"""Marketing API client, token inspection and tool IO models."""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__: list[str] = []

for _module_name in ("client", "auth", "models"):
    _module = import_module(f"{__name__}.{_module_name}")
    for _name in getattr(_module, "__all__", ()):
        globals()[_name] = getattr(_module, _name)
        __all__.append(_name)


def __getattr__(name: str) -> Any:  # pragma: no cover - fallback access
    if name in globals():
        return globals()[name]
    raise AttributeError(name)


__all__ = tuple(__all__)
