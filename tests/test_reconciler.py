"""
Tests for the reconciler: apply, failures, drift and resumability.
"""

import pytest

from cairn.core.stack import Stack
from cairn.engine.local import LocalCloudProvider
from cairn.engine.reconciler import Reconciler
from cairn.engine.state import LocalStateBackend
from cairn.errors import DriftError, StateConflictError, StateLockError
from cairn.resources import types as t

RESOURCE_COUNT = 20


class InterruptingProvider(LocalCloudProvider):
    """Local provider that raises KeyboardInterrupt when creating one node."""

    def __init__(self, interrupt_on: str, **kwargs):
        super().__init__(**kwargs)
        self.interrupt_on = interrupt_on

    def create(self, key, type, attributes):
        if key == self.interrupt_on:
            raise KeyboardInterrupt
        return super().create(key, type, attributes)


class TestApply:
    """Tests for Reconciler.apply."""

    def test_apply_creates_everything(self, reconciler, declared, provider, backend):
        """Test that a first apply creates one object per node and records outputs."""
        result = reconciler.apply(declared.build())

        assert result.ok
        assert result.count("create") == RESOURCE_COUNT
        assert provider.count() == RESOURCE_COUNT
        assert len(backend.read().resources) == RESOURCE_COUNT
        assert result.outputs["sns_topic_arn"] == "arn:aws:sns:us-east-1:123456789012:event-notices-notices"

    def test_api_url_output(self, reconciler, declared, provider):
        """Test that the API URL is built from the created API id."""
        result = reconciler.apply(declared.build())

        api_id = reconciler.backend.read().resources["aws:apigateway:RestApi.api"].outputs["id"]
        assert result.outputs["api_url"] == f"https://{api_id}.execute-api.us-east-1.amazonaws.com/prod"

    def test_reapply_is_idempotent(self, reconciler, declared, provider):
        """Test that re-applying a converged declaration issues zero mutating calls."""
        graph = declared.build()
        reconciler.apply(graph)
        provider.mutations.clear()

        result = reconciler.apply(graph)

        assert provider.mutations == []
        assert result.ok
        assert result.count("no-op") == RESOURCE_COUNT

    def test_state_persisted_per_level(self, reconciler, declared, backend):
        """Test that the state serial advances once per level plus the final write."""
        graph = declared.build()

        reconciler.apply(graph)

        assert backend.read().serial == len(graph.levels()) + 1

    def test_failure_skips_dependents_only(self, config, declared, backend):
        """Test that a failed node blocks its dependents while other branches continue."""
        provider = LocalCloudProvider(fail_on={"aws:sns:Topic.notices": "AuthorizationError"})
        reconciler = Reconciler(provider, backend)

        result = reconciler.apply(declared.build())

        assert not result.ok
        assert list(result.failed) == ["aws:sns:Topic.notices"]
        assert result.failed["aws:sns:Topic.notices"].reason == "AuthorizationError"
        assert "aws:lambda:Function.subscribers" in result.skipped
        assert "aws:lambda:Function.new-events" in result.skipped
        assert "aws:apigateway:Stage.prod" in result.skipped
        # Independent branches still converged
        assert result.applied["aws:s3:BucketPolicy.site"] == "create"
        assert result.applied["aws:apigateway:Method.subscribers-post"] == "create"
        assert "sns_topic_arn" not in result.outputs
        assert "website_url" in result.outputs

    def test_retry_after_failure_converges(self, config, declared, backend):
        """Test that re-applying after a fixed failure only touches what is missing."""
        provider = LocalCloudProvider(fail_on={"aws:sns:Topic.notices": "AuthorizationError"})
        reconciler = Reconciler(provider, backend)
        graph = declared.build()
        first = reconciler.apply(graph)

        provider.fail_on.clear()
        provider.mutations.clear()
        second = reconciler.apply(graph)

        assert second.ok
        touched = {key for _, key in provider.mutations}
        assert touched == {"aws:sns:Topic.notices", *first.skipped}
        assert provider.count() == RESOURCE_COUNT

    def test_interrupted_apply_resumes(self, config, declared, backend):
        """Test that an interrupted apply keeps finished nodes and resumes cleanly."""
        provider = InterruptingProvider("aws:lambda:Function.new-events")
        graph = declared.build()

        with pytest.raises(KeyboardInterrupt):
            Reconciler(provider, backend).apply(graph)

        recorded = backend.read().resources
        assert "aws:sns:Topic.notices" in recorded
        assert "aws:lambda:Function.new-events" not in recorded

        # Same account, no interruption this time
        provider.interrupt_on = None
        result = Reconciler(provider, backend).apply(graph)

        assert result.ok
        assert provider.count() == RESOURCE_COUNT
        assert result.count("no-op") >= len(graph.levels()[0])

    def test_stale_plan_rejected(self, reconciler, declared):
        """Test that a plan computed before someone else's apply is refused."""
        graph = declared.build()
        plan = reconciler.plan(graph)
        reconciler.apply(graph)

        with pytest.raises(StateConflictError):
            reconciler.apply(graph, plan)

    def test_plan_then_apply_on_fresh_state(self, declared, provider, tmp_path):
        """Test that a plan made before the first apply is accepted by it."""
        reconciler = Reconciler(provider, LocalStateBackend(tmp_path / "state.json"))
        graph = declared.build()
        plan = reconciler.plan(graph)

        result = reconciler.apply(graph, plan)

        assert result.ok
        assert result.count("create") == RESOURCE_COUNT

    def test_plan_from_other_state_rejected(self, reconciler, declared, tmp_path):
        """Test that a plan computed against another state history is refused."""
        graph = declared.build()
        plan = Reconciler(reconciler.provider, LocalStateBackend(tmp_path / "state.json")).plan(graph)

        with pytest.raises(StateConflictError, match="lineage"):
            reconciler.apply(graph, plan)

    def test_apply_requires_lock(self, reconciler, declared, backend):
        """Test that a concurrent run holding the lock blocks apply."""
        with backend.lock("apply"):
            with pytest.raises(StateLockError):
                reconciler.apply(declared.build())

    def test_destroy(self, reconciler, declared, provider, backend):
        """Test that destroy removes every recorded object."""
        reconciler.apply(declared.build())

        result = reconciler.destroy()

        assert result.ok
        assert result.count("destroy") == RESOURCE_COUNT
        assert provider.count() == 0
        assert backend.read().resources == {}
        assert backend.read().outputs == {}


class TestCreateBeforeDestroy:
    """Tests for immutable create-before-destroy replacement."""

    def _stack(self, description: str) -> Stack:
        stack = Stack(name="test")
        api = stack.add(t.REST_API, "api", name="api")
        deployment = stack.add(
            t.API_DEPLOYMENT,
            "api",
            rest_api=api.output("id"),
            triggers={"redeployment": description},
        )
        stack.add(
            t.API_STAGE,
            "prod",
            rest_api=api.output("id"),
            deployment_id=deployment.output("id"),
            stage_name="prod",
        )
        return stack

    def test_new_snapshot_before_old_is_deleted(self, reconciler, provider, backend):
        """Test that the stage moves to the new snapshot before the old one goes."""
        reconciler.apply(self._stack("v1").build())
        old_id = backend.read().resources["aws:apigateway:Deployment.api"].outputs["id"]
        provider.mutations.clear()

        result = reconciler.apply(self._stack("v2").build())

        assert result.applied["aws:apigateway:Deployment.api"] == "replace"
        assert result.applied["aws:apigateway:Stage.prod"] == "update"
        assert provider.mutations == [
            ("create", "aws:apigateway:Deployment.api"),
            ("update", "aws:apigateway:Stage.prod"),
            ("delete", "aws:apigateway:Deployment.api"),
        ]
        record = backend.read().resources["aws:apigateway:Deployment.api"]
        assert record.outputs["id"] != old_id
        assert record.deposed == []
        assert provider.read(t.API_DEPLOYMENT, {"id": old_id}) is None

    def test_old_snapshot_kept_when_stage_fails(self, reconciler, provider, backend):
        """Test that a failed repoint leaves the old snapshot in place and recorded."""
        reconciler.apply(self._stack("v1").build())
        old_id = backend.read().resources["aws:apigateway:Deployment.api"].outputs["id"]
        provider.fail_on["aws:apigateway:Stage.prod"] = "TooManyRequests"

        result = reconciler.apply(self._stack("v2").build())

        assert "aws:apigateway:Stage.prod" in result.failed
        record = backend.read().resources["aws:apigateway:Deployment.api"]
        assert [deposed["id"] for deposed in record.deposed] == [old_id]
        assert provider.read(t.API_DEPLOYMENT, {"id": old_id}) is not None

        # Once the stage can be updated the superseded snapshot is cleaned up
        provider.fail_on.clear()
        reconciler.apply(self._stack("v2").build())

        assert backend.read().resources["aws:apigateway:Deployment.api"].deposed == []
        assert provider.read(t.API_DEPLOYMENT, {"id": old_id}) is None


class TestDrift:
    """Tests for drift detection."""

    def test_out_of_band_change_reported(self, reconciler, declared, provider):
        """Test that an attribute changed outside cairn raises DriftError."""
        graph = declared.build()
        reconciler.apply(graph)
        provider.modify_out_of_band(t.FUNCTION, "event-notices-subscribers", runtime="python3.9")

        with pytest.raises(DriftError) as exc_info:
            reconciler.plan(graph)

        drift = exc_info.value.drifts[0]
        assert drift["node"] == "aws:lambda:Function.subscribers"
        assert drift["changes"]["runtime"] == ("python3.11", "python3.9")
        assert "~ aws:lambda:Function.subscribers" in str(exc_info.value)

    def test_deleted_object_reported(self, reconciler, declared, provider):
        """Test that an object deleted outside cairn is reported as drift."""
        graph = declared.build()
        reconciler.apply(graph)
        provider.remove_out_of_band(t.TOPIC, "arn:aws:sns:us-east-1:123456789012:event-notices-notices")

        with pytest.raises(DriftError) as exc_info:
            reconciler.refresh()

        assert exc_info.value.drifts == [
            {"node": "aws:sns:Topic.notices", "changes": {"<exists>": (True, False)}}
        ]

    def test_drift_not_auto_resolved(self, reconciler, declared, provider):
        """Test that apply refuses to run over drift and changes nothing."""
        graph = declared.build()
        reconciler.apply(graph)
        provider.modify_out_of_band(t.FUNCTION, "event-notices-subscribers", runtime="python3.9")
        provider.mutations.clear()

        with pytest.raises(DriftError):
            reconciler.apply(graph)

        assert provider.mutations == []

    def test_no_drift(self, reconciler, declared):
        """Test that refresh is silent for a converged account."""
        reconciler.apply(declared.build())

        assert reconciler.detect_drift() == []
        reconciler.refresh()
