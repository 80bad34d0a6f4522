"""
Adapters package for the fetch proxy.

Contains the HTTP client for the Chrome update service. The adapter
encapsulates:

- The upstream URL template and request shape
- The fetch deadline and size ceilings
- Error handling that maps transport failures to the proxy's errors

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .webstore_client import FetchBudget, SizeGuardedStream, UpstreamPayload, WebStoreClient

__all__ = [
    "FetchBudget",
    "SizeGuardedStream",
    "UpstreamPayload",
    "WebStoreClient",
]
