"""Resource type schemas, permission bindings and API routing."""

from cairn.resources.types import ResourceType, RESOURCE_TYPES, get_resource_type
from cairn.resources.bindings import grant_api_invoke, validate_bindings
from cairn.resources.routing import Route, add_proxy_route, declare_deployment, route_fingerprint

__all__ = [
    "ResourceType",
    "RESOURCE_TYPES",
    "get_resource_type",
    "grant_api_invoke",
    "validate_bindings",
    "Route",
    "add_proxy_route",
    "declare_deployment",
    "route_fingerprint",
]
