"""
Tests for planning (dry run).
"""

from cairn.core.references import UNKNOWN
from cairn.core.stack import Stack
from cairn.engine.plan import ChangeAction, Planner
from cairn.engine.state import StateSnapshot
from cairn.resources import types as t
from cairn.stacks.notifier import declare_event_notices

RESOURCE_COUNT = 20


class TestPlanner:
    """Tests for Planner and Plan."""

    def test_initial_plan_creates_everything(self, declared, provider):
        """Test that an empty state plans one create per node."""
        plan = Planner(provider).plan(declared.build(), StateSnapshot())

        assert plan.summary()["create"] == RESOURCE_COUNT
        assert plan.has_changes
        assert "Plan: 20 to add, 0 to change, 0 to replace, 0 to destroy." in plan.render()

    def test_plan_issues_no_mutating_calls(self, reconciler, declared, provider):
        """Test that a dry run never mutates the account."""
        reconciler.plan(declared.build())

        assert provider.mutations == []
        assert provider.count() == 0

    def test_predicted_outputs_flow_into_consumers(self, declared, provider):
        """Test that outputs computable from attributes are shown before apply."""
        plan = Planner(provider).plan(declared.build(), StateSnapshot())

        function = plan.get("aws:lambda:Function.subscribers")
        assert function.after["role"] == "arn:aws:iam::123456789012:role/event-notices-lambda-exec"
        assert function.after["environment"]["variables"]["SNS_TOPIC_ARN"] == (
            "arn:aws:sns:us-east-1:123456789012:event-notices-notices"
        )

        stage = plan.get("aws:apigateway:Stage.prod")
        assert stage.after["rest_api"] is UNKNOWN
        assert "(known after apply)" in plan.render()

    def test_plan_outputs(self, declared, provider):
        """Test that stack outputs are resolved as far as possible."""
        plan = Planner(provider).plan(declared.build(), StateSnapshot())

        assert plan.outputs["sns_topic_arn"] == "arn:aws:sns:us-east-1:123456789012:event-notices-notices"
        assert plan.outputs["website_url"] == "http://event-notices-site.s3-website-us-east-1.amazonaws.com"
        assert plan.outputs["api_url"] is UNKNOWN

    def test_converged_plan_is_empty(self, reconciler, declared):
        """Test that planning against converged state shows no changes."""
        graph = declared.build()
        reconciler.apply(graph)

        plan = reconciler.plan(graph)

        assert not plan.has_changes
        assert plan.summary()["no-op"] == RESOURCE_COUNT
        assert plan.render() == "No changes. Infrastructure matches the declaration."

    def test_update_in_place(self, reconciler, config, packages, declared):
        """Test that a non force-new attribute change is an update."""
        reconciler.apply(declared.build())
        declared.stack.get(t.FUNCTION, "subscribers").attributes["runtime"] = "python3.12"

        plan = reconciler.plan(declared.build())

        change = plan.get("aws:lambda:Function.subscribers")
        assert change.action == ChangeAction.UPDATE
        assert change.changed == ["runtime"]
        assert plan.summary()["update"] == 1

    def test_force_new_attribute_replaces(self, reconciler, config, package_factory, declared):
        """Test that a force-new attribute change is a replacement."""
        reconciler.apply(declared.build())
        rebuilt = declare_event_notices(config, package_factory(new_events_hash="djI="))

        plan = reconciler.plan(rebuilt.build())

        change = plan.get("aws:lambda:Function.new-events")
        assert change.action == ChangeAction.REPLACE
        assert change.replaced_by == ["source_code_hash"]
        assert "forces replacement: source_code_hash" in plan.render()

    def test_removed_nodes_destroyed_in_reverse_order(self, reconciler, config, packages, declared):
        """Test that undeclared nodes are destroyed dependents first."""
        reconciler.apply(declared.build())

        plan = reconciler.plan(Stack(name="empty").build())

        destroys = [change.key for change in plan.by_action(ChangeAction.DESTROY)]
        assert len(destroys) == RESOURCE_COUNT
        assert destroys.index("aws:apigateway:Stage.prod") < destroys.index("aws:apigateway:Deployment.api")
        assert destroys.index("aws:lambda:Function.subscribers") < destroys.index("aws:iam:Role.lambda-exec")
        assert destroys.index("aws:s3:BucketPolicy.site") < destroys.index("aws:s3:Bucket.site")
