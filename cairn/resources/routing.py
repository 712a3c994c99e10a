"""
Routing: HTTP verb + path routes integrated with functions by proxy.

Each route declares the API resource path, the method, an AWS_PROXY
integration to the function's invoke ARN, and the invoke permission.
The deployment snapshot is keyed on a fingerprint of the declared route
tree, so any route or integration change produces a new snapshot.
"""

import hashlib
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cairn.core.node import ResourceNode
from cairn.core.references import NodeKey
from cairn.resources.bindings import grant_api_invoke
from cairn.resources.types import (
    API_DEPLOYMENT,
    API_INTEGRATION,
    API_METHOD,
    API_RESOURCE,
    API_STAGE,
)

if TYPE_CHECKING:
    from cairn.core.stack import Stack

PROXY_INTEGRATION = "AWS_PROXY"


@dataclass
class Route:
    """A declared proxy route and the nodes that implement it."""

    method: str
    path: str
    function: NodeKey
    resource: ResourceNode
    method_node: ResourceNode
    integration: ResourceNode
    permission: ResourceNode

    def describe(self) -> dict[str, str]:
        """The parts of a route that define the live routing table."""
        return {
            "method": self.method,
            "path": self.path,
            "integration": PROXY_INTEGRATION,
            "target": str(self.function),
            "authorization": self.method_node.attributes.get("authorization", "NONE"),
        }


def add_proxy_route(
    stack: "Stack",
    api: ResourceNode,
    method: str,
    path: str,
    function: ResourceNode,
) -> Route:
    """
    Declare `method path` on `api`, forwarded verbatim to `function`.

    Args:
        stack: Stack to declare the nodes in
        api: The aws:apigateway:RestApi node
        method: HTTP verb, e.g. "POST"
        path: Route path, e.g. "/subscribers"
        function: The aws:lambda:Function node to invoke

    Returns:
        The declared Route
    """
    method = method.upper()
    segments = [segment for segment in path.strip("/").split("/") if segment]
    if not segments:
        raise ValueError("Proxy routes must have at least one path segment")

    parent_id = api.output("root_resource_id")
    resource = None
    for depth in range(1, len(segments) + 1):
        resource_name = "-".join(segments[:depth])
        resource = stack.get(API_RESOURCE, resource_name)
        if resource is None:
            resource = stack.add(
                API_RESOURCE,
                resource_name,
                rest_api=api.output("id"),
                parent_id=parent_id,
                path_part=segments[depth - 1],
            )
        parent_id = resource.output("id")

    route_name = f"{'-'.join(segments)}-{method.lower()}"
    method_node = stack.add(
        API_METHOD,
        route_name,
        rest_api=api.output("id"),
        resource_id=resource.output("id"),
        http_method=method,
        authorization="NONE",
    )
    integration = stack.add(
        API_INTEGRATION,
        route_name,
        depends_on=[method_node],
        rest_api=api.output("id"),
        resource_id=resource.output("id"),
        http_method=method,
        type=PROXY_INTEGRATION,
        integration_http_method="POST",
        uri=function.output("invoke_arn"),
    )
    permission = grant_api_invoke(stack, function, api, method, path)

    return Route(
        method=method,
        path="/" + "/".join(segments),
        function=function.key,
        resource=resource,
        method_node=method_node,
        integration=integration,
        permission=permission,
    )


def route_fingerprint(routes: list[Route]) -> str:
    """sha256 over the declared route tree, independent of declaration order."""
    table = sorted((route.describe() for route in routes), key=lambda r: (r["path"], r["method"]))
    payload = json.dumps(table, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def declare_deployment(
    stack: "Stack",
    api: ResourceNode,
    routes: list[Route],
    stage_name: str = "prod",
) -> tuple[ResourceNode, ResourceNode]:
    """
    Declare the deployment snapshot and the stage pointing at it.

    The snapshot is immutable and triggered by the route fingerprint; the
    stage is updated in place to point at each new snapshot.

    Returns:
        (deployment, stage) nodes
    """
    deployment = stack.add(
        API_DEPLOYMENT,
        api.name,
        depends_on=[node for route in routes for node in (route.method_node, route.integration)],
        rest_api=api.output("id"),
        triggers={"redeployment": route_fingerprint(routes)},
        description=f"Snapshot of {len(routes)} route(s)",
    )
    stage = stack.add(
        API_STAGE,
        stage_name,
        rest_api=api.output("id"),
        deployment_id=deployment.output("id"),
        stage_name=stage_name,
    )
    return deployment, stage
