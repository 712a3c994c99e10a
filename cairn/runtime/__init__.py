"""Local runtime of the API proxy-integration contract."""

from cairn.runtime.gateway import HttpRequest, HttpResponse, LocalGateway

__all__ = [
    "HttpRequest",
    "HttpResponse",
    "LocalGateway",
]
