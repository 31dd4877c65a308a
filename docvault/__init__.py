"""
DocVault

Encrypted, multi-backend document storage with a metadata catalog,
hot cache, orphan reconciliation and batched notifications.
"""

__version__ = "0.1.0"
