"""Persistence layer: token cache tables and session key-value stores."""

from .db import dispose_engine, get_engine, get_session_factory, init_models, session_scope
from .kv import (
    DatabaseKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
    RedisKeyValueStore,
    build_kv_store,
)
from .models import Base, KeyValueEntry, Token, TokenType, as_utc

__all__ = [
    "Base",
    "DatabaseKeyValueStore",
    "KeyValueEntry",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "RedisKeyValueStore",
    "Token",
    "TokenType",
    "as_utc",
    "build_kv_store",
    "dispose_engine",
    "get_engine",
    "get_session_factory",
    "init_models",
    "session_scope",
]
