"""
exactfetch — authenticated, paginated retrieval of Exact Online transactions.
"""

__version__ = "0.1.0"
__all__ = ["ExactFetch"]

from exactfetch.client import ExactFetch  # noqa: E402
