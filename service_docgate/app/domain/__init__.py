"""
Domain utilities for the docgate service.

Includes the inbound bearer gate and the proxy gateway that turns
authorized calls into backend requests.
"""

from .auth_middleware import BearerAuthGate
from .proxy import ProxyGateway

__all__ = [
    "BearerAuthGate",
    "ProxyGateway",
]
