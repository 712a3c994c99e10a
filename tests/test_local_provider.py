"""
Tests for the local simulated provider.
"""

import pytest

from cairn.core.references import UNKNOWN
from cairn.engine.local import LocalCloudProvider
from cairn.errors import ProviderApplyError
from cairn.resources import types as t


class TestLocalCloudProvider:
    """Tests for LocalCloudProvider."""

    def test_realistic_outputs(self, provider):
        """Test that ARNs and URLs follow the real formats."""
        function = provider.create(
            "aws:lambda:Function.a", t.FUNCTION, {"function_name": "a", "runtime": "python3.11"}
        )
        api = provider.create("aws:apigateway:RestApi.api", t.REST_API, {"name": "api"})

        assert function["arn"] == "arn:aws:lambda:us-east-1:123456789012:function:a"
        assert function["invoke_arn"] == (
            "arn:aws:apigateway:us-east-1:lambda:path/2015-03-31/functions/"
            "arn:aws:lambda:us-east-1:123456789012:function:a/invocations"
        )
        assert len(api["id"]) == 10
        assert api["execution_arn"] == f"arn:aws:execute-api:us-east-1:123456789012:{api['id']}"

    def test_nested_resource_path(self, provider):
        """Test that an API resource path includes every parent segment."""
        api = provider.create("aws:apigateway:RestApi.api", t.REST_API, {"name": "api"})
        events = provider.create(
            "aws:apigateway:Resource.events",
            t.API_RESOURCE,
            {"rest_api": api["id"], "parent_id": api["root_resource_id"], "path_part": "events"},
        )
        latest = provider.create(
            "aws:apigateway:Resource.events-latest",
            t.API_RESOURCE,
            {"rest_api": api["id"], "parent_id": events["id"], "path_part": "latest"},
        )

        assert events["path"] == "/events"
        assert latest["path"] == "/events/latest"

    def test_name_collision(self, provider):
        """Test that creating a second topic with the same name is rejected."""
        provider.create("aws:sns:Topic.a", t.TOPIC, {"name": "notices"})

        with pytest.raises(ProviderApplyError, match="already exists"):
            provider.create("aws:sns:Topic.b", t.TOPIC, {"name": "notices"})

    def test_predict_skips_unknown_inputs(self, provider):
        """Test that predictions leave out outputs whose inputs are unknown."""
        assert provider.predict_outputs(t.TOPIC, {"name": UNKNOWN}) == {}
        assert provider.predict_outputs(t.TOPIC, {"name": "n"})["arn"].endswith(":n")
        assert provider.predict_outputs(t.REST_API, {"name": "api"}) == {}

    def test_update_and_read(self, provider):
        """Test that read returns the attributes last written."""
        outputs = provider.create("aws:sns:Topic.a", t.TOPIC, {"name": "n", "tags": {}})

        provider.update("aws:sns:Topic.a", t.TOPIC, outputs, {"name": "n", "tags": {"team": "x"}})

        assert provider.read(t.TOPIC, outputs) == {"name": "n", "tags": {"team": "x"}}

    def test_update_missing_object(self, provider):
        """Test that updating a vanished object fails."""
        with pytest.raises(ProviderApplyError, match="not found"):
            provider.update("aws:sns:Topic.a", t.TOPIC, {"id": "gone"}, {"name": "n"})

    def test_delete_is_idempotent(self, provider):
        """Test that deleting twice succeeds."""
        outputs = provider.create("aws:sns:Topic.a", t.TOPIC, {"name": "n"})

        provider.delete("aws:sns:Topic.a", t.TOPIC, outputs)
        provider.delete("aws:sns:Topic.a", t.TOPIC, outputs)

        assert provider.read(t.TOPIC, outputs) is None
        assert provider.mutations == [
            ("create", "aws:sns:Topic.a"),
            ("delete", "aws:sns:Topic.a"),
            ("delete", "aws:sns:Topic.a"),
        ]

    def test_fault_injection(self):
        """Test that fail_on rejects any mutating call for the node."""
        provider = LocalCloudProvider(fail_on={"aws:sns:Topic.a": "Throttling"})

        with pytest.raises(ProviderApplyError) as exc_info:
            provider.create("aws:sns:Topic.a", t.TOPIC, {"name": "n"})

        assert exc_info.value.operation == "create"
        assert provider.count() == 0

    def test_persisted_account(self, tmp_path):
        """Test that a file-backed account is shared between instances."""
        path = tmp_path / "cloud.json"
        outputs = LocalCloudProvider(path=path).create("aws:sns:Topic.a", t.TOPIC, {"name": "n"})

        reopened = LocalCloudProvider(path=path)

        assert reopened.read(t.TOPIC, outputs) == {"name": "n"}
        assert reopened.count(t.TOPIC) == 1
