"""Persistent storage backends for tokens and device identity."""

from .secure_store import KeyringSecureStore, MemorySecureStore, SecureStore

__all__ = ["SecureStore", "MemorySecureStore", "KeyringSecureStore"]
