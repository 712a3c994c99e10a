"""
Permission bindings between the API surface and compute nodes.

A function may only be invoked by the API gateway principal, and only from
source ARNs derived from the owning API's execution ARN. Grants with a
literal or wildcard source are rejected when the graph is built.
"""

from typing import TYPE_CHECKING

from cairn.core.node import ResourceNode
from cairn.core.references import Join, NodeKey, Reference
from cairn.errors import ValidationError
from cairn.resources.types import FUNCTION, PERMISSION, REST_API

if TYPE_CHECKING:
    from cairn.core.stack import Stack

API_GATEWAY_PRINCIPAL = "apigateway.amazonaws.com"
INVOKE_ACTION = "lambda:InvokeFunction"


def source_pattern(api: ResourceNode, method: str, path: str) -> Join:
    """Execution-ARN pattern for one route of `api`, any stage."""
    return Join((api.output("execution_arn"), f"/*/{method.upper()}/{path.strip('/')}"))


def grant_api_invoke(
    stack: "Stack",
    function: ResourceNode,
    api: ResourceNode,
    method: str,
    path: str,
    name: str | None = None,
) -> ResourceNode:
    """
    Allow `api` to invoke `function` for one route.

    Args:
        stack: Stack to declare the permission in
        function: The aws:lambda:Function node being invoked
        api: The aws:apigateway:RestApi node calling it
        method: HTTP verb of the route
        path: Route path (e.g. "/subscribers")
        name: Logical name; defaults to "<function>-<method>-<path>"

    Returns:
        The aws:lambda:Permission node
    """
    route = path.strip("/").replace("/", "-")
    name = name or f"{function.name}-{method.lower()}-{route}"
    return stack.add(
        PERMISSION,
        name,
        statement_id=f"AllowAPIGatewayInvoke-{method.upper()}-{route}",
        action=INVOKE_ACTION,
        function=function.output("function_name"),
        principal=API_GATEWAY_PRINCIPAL,
        source_arn=source_pattern(api, method, path),
    )


def validate_bindings(nodes: list[ResourceNode], declared: dict[NodeKey, ResourceNode]) -> None:
    """
    Check every invoke permission is scoped to one function and one API.

    Raises:
        ValidationError: If a grant names no concrete function, uses a
            literal or wildcard source, is not derived from a REST API,
            or is granted to a principal other than the API gateway
    """
    for node in nodes:
        if node.type != PERMISSION:
            continue
        key = str(node.key)
        attrs = node.attributes

        function = attrs.get("function")
        if not isinstance(function, Reference) or _type_of(function, declared) != FUNCTION:
            raise ValidationError(
                "Invoke permission must reference a declared function", [key]
            )

        if attrs.get("action") != INVOKE_ACTION:
            raise ValidationError(
                f"Invoke permission action must be {INVOKE_ACTION!r}", [key]
            )

        source = attrs.get("source_arn")
        if not isinstance(source, (Reference, Join)):
            raise ValidationError(
                "Invoke permission source_arn must derive from the calling resource, "
                "not a literal",
                [key],
            )

        if attrs.get("principal") != API_GATEWAY_PRINCIPAL:
            raise ValidationError(
                f"Invoke permission principal must be {API_GATEWAY_PRINCIPAL!r}", [key]
            )

        _check_api_source(key, source, declared)


def _check_api_source(key: str, source: Reference | Join, declared: dict[NodeKey, ResourceNode]) -> None:
    parts = source.parts if isinstance(source, Join) else (source,)
    if not parts:
        raise ValidationError("API invoke permission source_arn is empty", [key])
    head, rest = parts[0], parts[1:]

    if (
        not isinstance(head, Reference)
        or head.output != "execution_arn"
        or _type_of(head, declared) != REST_API
    ):
        raise ValidationError(
            "API invoke permission source_arn must start with the API's execution_arn",
            [key],
        )

    for part in rest:
        if not isinstance(part, str):
            raise ValidationError(
                "API invoke permission source_arn may only reference one API", [key]
            )

    suffix = "".join(rest)
    segments = suffix.strip("/").split("/") if suffix else []
    # stage/method/path; a bare or trailing "*" would open every route
    if len(segments) < 3 or segments[-1] == "*" or segments[1] == "*":
        raise ValidationError(
            f"API invoke permission source pattern {suffix!r} is broader than one route",
            [key],
        )


def _type_of(ref: Reference, declared: dict[NodeKey, ResourceNode]) -> str | None:
    producer = declared.get(ref.producer)
    return producer.type if producer else None
