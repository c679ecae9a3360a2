"""Authentication helpers for Meta OAuth flows."""

from .oauth import MetaOAuthClient, OAuthStateStore, generate_state

__all__ = ["MetaOAuthClient", "OAuthStateStore", "generate_state"]
