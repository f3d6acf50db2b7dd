"""Core module: logging, metrics and tracing plumbing shared by every layer.

Nothing here imports the chain machinery, so any module may depend on it.
"""

from taintchain.core.logging import correlation_scope, get_correlation_context, setup_logging

__all__ = ["correlation_scope", "get_correlation_context", "setup_logging"]
