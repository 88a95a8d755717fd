"""
Adapters package for the Gateway Service.

Everything that talks to adapter backends lives here:

- Model name to base URL resolution
- The transparent reverse proxy used by ``/v1/adapter-{a,b}/*``
- The completion client used by ``/v1/ai/complete``

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .completion_client import CompletionClient
from .proxy import ReverseProxyForwarder
from .resolver import AdapterResolver, AdapterTarget

__all__ = [
    "AdapterResolver",
    "AdapterTarget",
    "CompletionClient",
    "ReverseProxyForwarder",
]
