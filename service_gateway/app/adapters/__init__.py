"""
Adapters package for the Gateway Service.

HTTP clients for the external services the gateway talks to: the chat
completion providers, the astrology data API and the geocoder. Adapters map
transport and status failures onto shared errors and leave reshaping of
completion bodies to the provider router.
"""

from .claude_client import ClaudeClient
from .geocode_client import GeocodeClient
from .prokerala_client import ProkeralaClient
from .provider_base import CompletionProviderClient
from .together_client import TogetherClient

__all__ = [
    "ClaudeClient",
    "CompletionProviderClient",
    "GeocodeClient",
    "ProkeralaClient",
    "TogetherClient",
]
