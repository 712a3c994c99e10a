"""
Local gateway: the proxy-integration contract without a cloud.

A request is matched on verb + path only, handed to the function as an API
Gateway proxy event, and the function's response is returned verbatim.
Nothing is validated or transformed on the way through.
"""

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from cairn.resources.routing import Route

logger = structlog.get_logger(__name__)

Handler = Callable[[dict[str, Any], Any], Any]

MISSING_TOKEN = {"message": "Missing Authentication Token"}
INTERNAL_ERROR = {"message": "Internal server error"}


@dataclass
class HttpRequest:
    """An incoming HTTP request."""

    method: str
    path: str
    body: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    query: dict[str, str] = field(default_factory=dict)


@dataclass
class HttpResponse:
    """The response the caller sees."""

    status: int
    body: str | None = None
    headers: dict[str, str] = field(default_factory=dict)

    def json(self) -> Any:
        return json.loads(self.body) if self.body else None


@dataclass
class InvocationContext:
    """Minimal stand-in for the function runtime's context object."""

    function_name: str
    aws_request_id: str = field(default_factory=lambda: str(uuid.uuid4()))


class LocalGateway:
    """
    Routes requests to handler callables the way a proxy integration does.

    Example:
        gateway = LocalGateway()
        gateway.add_route("POST", "/subscribers", subscribers.handler)

        response = gateway.handle(HttpRequest("POST", "/subscribers", body='{"email": "a@b.com"}'))
        response.status  # whatever the handler returned
    """

    def __init__(self, stage: str = "prod"):
        self.stage = stage
        self._routes: dict[tuple[str, str], tuple[str, Handler]] = {}

    @classmethod
    def from_routes(cls, routes: list[Route], handlers: dict[str, Handler], stage: str = "prod") -> "LocalGateway":
        """
        Build a gateway from declared routes.

        Args:
            routes: Routes returned by add_proxy_route
            handlers: Function logical name -> handler callable
            stage: Stage name reported in the request context
        """
        gateway = cls(stage=stage)
        for route in routes:
            name = route.function.name
            if name not in handlers:
                raise KeyError(f"No handler for function {name!r} (route {route.method} {route.path})")
            gateway.add_route(route.method, route.path, handlers[name], function_name=name)
        return gateway

    def add_route(self, method: str, path: str, handler: Handler, function_name: str | None = None) -> None:
        path = "/" + path.strip("/")
        self._routes[(method.upper(), path)] = (function_name or getattr(handler, "__name__", "handler"), handler)

    def routes(self) -> list[tuple[str, str]]:
        return sorted(self._routes)

    def handle(self, request: HttpRequest) -> HttpResponse:
        """Dispatch one request; 403 on no match, 502 on a broken handler."""
        method = request.method.upper()
        path = "/" + request.path.strip("/")

        target = self._routes.get((method, path))
        if target is None:
            logger.info("gateway_no_route", method=method, path=path)
            return _error(403, MISSING_TOKEN)

        function_name, handler = target
        event = self._event(method, path, request)
        try:
            result = handler(event, InvocationContext(function_name))
        except Exception as e:
            logger.error("gateway_handler_raised", function=function_name, error=str(e))
            return _error(502, INTERNAL_ERROR)

        response = _proxy_response(result)
        if response is None:
            logger.error("gateway_malformed_response", function=function_name)
            return _error(502, INTERNAL_ERROR)

        logger.info("gateway_request", method=method, path=path, status=response.status)
        return response

    def _event(self, method: str, path: str, request: HttpRequest) -> dict[str, Any]:
        headers = dict(request.headers)
        query = dict(request.query)
        return {
            "resource": path,
            "path": path,
            "httpMethod": method,
            "headers": headers or None,
            "multiValueHeaders": {k: [v] for k, v in headers.items()} or None,
            "queryStringParameters": query or None,
            "multiValueQueryStringParameters": {k: [v] for k, v in query.items()} or None,
            "pathParameters": None,
            "stageVariables": None,
            "requestContext": {
                "resourcePath": path,
                "httpMethod": method,
                "path": f"/{self.stage}{path}",
                "stage": self.stage,
                "requestId": str(uuid.uuid4()),
                "identity": {"sourceIp": "127.0.0.1"},
            },
            "body": request.body,
            "isBase64Encoded": False,
        }


def _proxy_response(result: Any) -> HttpResponse | None:
    """Read a proxy-integration response; None if it does not follow the format."""
    if not isinstance(result, dict):
        return None
    status = result.get("statusCode")
    if not isinstance(status, int) or isinstance(status, bool):
        return None
    headers = result.get("headers") or {}
    body = result.get("body")
    if not isinstance(headers, dict) or not (body is None or isinstance(body, str)):
        return None
    return HttpResponse(status=status, body=body, headers=dict(headers))


def _error(status: int, payload: dict[str, str]) -> HttpResponse:
    return HttpResponse(
        status=status,
        body=json.dumps(payload),
        headers={"Content-Type": "application/json"},
    )
