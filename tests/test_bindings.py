"""
Tests for invoke-permission bindings.
"""

import pytest

from cairn.core.references import join
from cairn.core.stack import Stack
from cairn.errors import ValidationError
from cairn.resources import types as t
from cairn.resources.bindings import (
    API_GATEWAY_PRINCIPAL,
    INVOKE_ACTION,
    grant_api_invoke,
    source_pattern,
)


@pytest.fixture
def stack():
    stack = Stack(name="test")
    role = stack.add(
        t.ROLE,
        "exec",
        name="exec",
        assume_role_policy={
            "Version": "2012-10-17",
            "Statement": [
                {"Effect": "Allow", "Principal": {"Service": "lambda.amazonaws.com"}, "Action": "sts:AssumeRole"}
            ],
        },
    )
    stack.add(
        t.FUNCTION,
        "subscribers",
        function_name="subscribers",
        role=role.output("arn"),
        handler="handler.lambda_handler",
        runtime="python3.11",
        filename="build/subscribers.zip",
        source_code_hash="aGFzaA==",
    )
    stack.add(t.REST_API, "api", name="api")
    return stack


def _function(stack):
    return stack.get(t.FUNCTION, "subscribers")


def _api(stack):
    return stack.get(t.REST_API, "api")


class TestGrantApiInvoke:
    """Tests for grant_api_invoke."""

    def test_declares_scoped_permission(self, stack):
        """Test the declared permission's attributes."""
        permission = grant_api_invoke(stack, _function(stack), _api(stack), "post", "/subscribers")

        assert permission.name == "subscribers-post-subscribers"
        assert permission.attributes["action"] == INVOKE_ACTION
        assert permission.attributes["principal"] == API_GATEWAY_PRINCIPAL
        assert permission.attributes["function"] == _function(stack).output("function_name")
        assert permission.attributes["statement_id"] == "AllowAPIGatewayInvoke-POST-subscribers"
        assert permission.attributes["source_arn"] == source_pattern(_api(stack), "POST", "/subscribers")

        stack.build()

    def test_source_pattern(self, stack):
        """Test the execution-ARN pattern for one route."""
        pattern = source_pattern(_api(stack), "post", "/new-events")

        assert pattern.parts == (_api(stack).output("execution_arn"), "/*/POST/new-events")


class TestValidateBindings:
    """Tests for binding rules enforced by the graph builder."""

    def _permission(self, stack, **overrides):
        attributes = {
            "statement_id": "AllowInvoke",
            "action": INVOKE_ACTION,
            "function": _function(stack).output("function_name"),
            "principal": API_GATEWAY_PRINCIPAL,
            "source_arn": source_pattern(_api(stack), "POST", "/subscribers"),
        }
        attributes.update(overrides)
        return stack.add(t.PERMISSION, "invoke", **attributes)

    def test_literal_source_rejected(self, stack):
        """Test that a hard-coded source ARN is rejected."""
        self._permission(stack, source_arn="arn:aws:execute-api:us-east-1:123456789012:abc/*/POST/subscribers")

        with pytest.raises(ValidationError, match="not a literal"):
            stack.build()

    def test_bare_wildcard_rejected(self, stack):
        """Test that opening every route of the API is rejected."""
        self._permission(stack, source_arn=join(_api(stack).output("execution_arn"), "/*"))

        with pytest.raises(ValidationError, match="broader than one route"):
            stack.build()

    def test_wildcard_method_rejected(self, stack):
        """Test that a wildcard verb is rejected."""
        self._permission(stack, source_arn=join(_api(stack).output("execution_arn"), "/*/*/subscribers"))

        with pytest.raises(ValidationError, match="broader than one route"):
            stack.build()

    def test_empty_source_rejected(self, stack):
        """Test that an empty joined source ARN is a declaration error."""
        self._permission(stack, source_arn=join())

        with pytest.raises(ValidationError, match="empty"):
            stack.build()

    def test_source_must_derive_from_api(self, stack):
        """Test that the source must start with a REST API execution ARN."""
        self._permission(stack, source_arn=join(_function(stack).output("arn"), "/*/POST/subscribers"))

        with pytest.raises(ValidationError, match="execution_arn"):
            stack.build()

    def test_function_must_be_reference(self, stack):
        """Test that the permission must target a declared function."""
        self._permission(stack, function="subscribers")

        with pytest.raises(ValidationError, match="declared function"):
            stack.build()

    def test_action_must_be_invoke(self, stack):
        """Test that only the invoke action can be granted."""
        self._permission(stack, action="lambda:*")

        with pytest.raises(ValidationError, match="lambda:InvokeFunction"):
            stack.build()

    def test_principal_must_be_api_gateway(self, stack):
        """Test that invoke rights can only go to the API gateway service."""
        self._permission(stack, principal="events.amazonaws.com")

        with pytest.raises(ValidationError, match="principal"):
            stack.build()
