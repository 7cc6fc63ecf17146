"""Public API surface for HTTP serving and Python-first interfaces."""

from tale_graph.api.app import create_app
from tale_graph.api.contracts import TaleCreateRequest, TaleResponse, TaleUpdateRequest
from tale_graph.api.python_interface import AuthSession, TaleApiClient

__all__ = [
    "AuthSession",
    "TaleApiClient",
    "TaleCreateRequest",
    "TaleResponse",
    "TaleUpdateRequest",
    "create_app",
]
