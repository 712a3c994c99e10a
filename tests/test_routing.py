"""
Tests for proxy routes and the deployment fingerprint.
"""

import pytest

from cairn.resources import types as t
from cairn.resources.routing import add_proxy_route, route_fingerprint


def _routes(declared):
    return {route.path: route for route in declared.routes}


class TestProxyRoutes:
    """Tests for add_proxy_route."""

    def test_route_nodes(self, declared):
        """Test that each route declares resource, method, integration and permission."""
        route = _routes(declared)["/subscribers"]

        assert route.method == "POST"
        assert route.function == declared.functions["subscribers"].key
        assert route.resource.attributes["path_part"] == "subscribers"
        assert route.method_node.attributes["authorization"] == "NONE"
        assert route.integration.attributes["type"] == "AWS_PROXY"
        assert route.integration.attributes["integration_http_method"] == "POST"
        assert route.integration.attributes["uri"] == declared.functions["subscribers"].output("invoke_arn")
        assert route.integration.depends_on == [route.method_node.key]
        assert route.permission.type == t.PERMISSION

    def test_nested_path_reuses_resources(self, declared):
        """Test that nested paths share parent resources."""
        stack = declared.stack
        api = stack.get(t.REST_API, "api")
        function = declared.functions["new-events"]

        first = add_proxy_route(stack, api, "POST", "/events/import", function)
        second = add_proxy_route(stack, api, "PUT", "/events/import", function)

        assert first.resource is second.resource
        assert stack.get(t.API_RESOURCE, "events") is not None
        stack.build()

    def test_empty_path_rejected(self, declared):
        """Test that the root path cannot be a proxy route."""
        api = declared.stack.get(t.REST_API, "api")

        with pytest.raises(ValueError):
            add_proxy_route(declared.stack, api, "POST", "/", declared.functions["subscribers"])


class TestRouteFingerprint:
    """Tests for route_fingerprint."""

    def test_order_independent(self, declared):
        """Test that the fingerprint ignores declaration order."""
        assert route_fingerprint(declared.routes) == route_fingerprint(list(reversed(declared.routes)))

    def test_target_change_changes_fingerprint(self, config, packages, declared):
        """Test that re-targeting a route changes the snapshot trigger."""
        from cairn.stacks.notifier import declare_event_notices

        swapped = declare_event_notices(
            config, packages, routes={"/subscribers": "new-events", "/new-events": "subscribers"}
        )

        assert route_fingerprint(swapped.routes) != route_fingerprint(declared.routes)

    def test_package_change_keeps_fingerprint(self, config, package_factory, declared):
        """Test that new function code does not change the route tree."""
        from cairn.stacks.notifier import declare_event_notices

        rebuilt = declare_event_notices(config, package_factory(new_events_hash="djI="))

        assert route_fingerprint(rebuilt.routes) == route_fingerprint(declared.routes)

    def test_deployment_trigger(self, declared):
        """Test that the deployment carries the fingerprint as its trigger."""
        deployment = declared.stack.get(t.API_DEPLOYMENT, "api")

        assert deployment.attributes["triggers"] == {"redeployment": route_fingerprint(declared.routes)}
        assert declared.stack.get(t.API_STAGE, "prod").attributes["deployment_id"] == deployment.output("id")
