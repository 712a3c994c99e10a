"""
Planner: diff the declared graph against recorded state.

Planning is the evaluate half of evaluate-then-apply. It walks the graph in
dependency order and resolves references against outputs that are already
known (recorded, or predictable from attributes). Anything else becomes
UNKNOWN, and an unknown value counts as a change.
"""

import enum
from dataclasses import dataclass, field
from typing import Any

import structlog

from cairn.core.dag import DAG
from cairn.core.graph import ResourceGraph
from cairn.core.references import UNKNOWN, contains_unknown, resolve, symbolic
from cairn.engine.provider import Provider
from cairn.engine.state import ResourceState, StateSnapshot
from cairn.resources.types import get_resource_type

logger = structlog.get_logger(__name__)


class ChangeAction(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DESTROY = "destroy"
    NOOP = "no-op"


_SYMBOLS = {
    ChangeAction.CREATE: "+",
    ChangeAction.UPDATE: "~",
    ChangeAction.REPLACE: "-/+",
    ChangeAction.DESTROY: "-",
    ChangeAction.NOOP: " ",
}


@dataclass
class Change:
    """Planned action for one node."""

    key: str
    type: str
    name: str
    action: ChangeAction
    changed: list[str] = field(default_factory=list)
    before: dict[str, Any] = field(default_factory=dict)
    after: dict[str, Any] = field(default_factory=dict)
    replaced_by: list[str] = field(default_factory=list)
    """Changed attributes that force the replacement"""
    deposed: bool = False
    """Destroys a superseded object left over from an earlier replacement"""

    @property
    def is_mutating(self) -> bool:
        return self.action != ChangeAction.NOOP

    def render(self) -> list[str]:
        header = f"{_SYMBOLS[self.action]} {self.key}"
        if self.deposed:
            header += " (deposed object)"
        if self.action == ChangeAction.REPLACE:
            header += f" (forces replacement: {', '.join(self.replaced_by)})"
        lines = [header]

        if self.action == ChangeAction.CREATE:
            for attribute in sorted(self.after):
                lines.append(f"      {attribute}: {_show(self.after[attribute])}")
        elif self.action in (ChangeAction.UPDATE, ChangeAction.REPLACE):
            for attribute in self.changed:
                lines.append(
                    f"      {attribute}: {_show(self.before.get(attribute))} => "
                    f"{_show(self.after.get(attribute))}"
                )
        return lines


def _show(value: Any) -> str:
    if value is UNKNOWN:
        return repr(UNKNOWN)
    if contains_unknown(value):
        return f"{symbolic_unknown(value)}"
    return repr(value)


def symbolic_unknown(value: Any) -> Any:
    """Render a value with nested UNKNOWNs replaced by their display text."""
    if value is UNKNOWN:
        return repr(UNKNOWN)
    if isinstance(value, dict):
        return {k: symbolic_unknown(v) for k, v in value.items()}
    if isinstance(value, list):
        return [symbolic_unknown(v) for v in value]
    return value


@dataclass
class Plan:
    """
    The full planned diff for one apply.

    `changes` lists declared nodes in dependency order (including no-ops),
    followed by destroys in reverse dependency order.
    """

    changes: list[Change]
    serial: int
    lineage: str
    outputs: dict[str, Any] = field(default_factory=dict)

    @property
    def has_changes(self) -> bool:
        return any(change.is_mutating for change in self.changes)

    def get(self, key: str) -> Change | None:
        for change in self.changes:
            if change.key == key and not change.deposed:
                return change
        return None

    def by_action(self, action: ChangeAction) -> list[Change]:
        return [change for change in self.changes if change.action == action]

    def summary(self) -> dict[str, int]:
        counts = {action.value: 0 for action in ChangeAction}
        for change in self.changes:
            counts[change.action.value] += 1
        return counts

    def render(self) -> str:
        if not self.has_changes:
            return "No changes. Infrastructure matches the declaration."

        lines = []
        for change in self.changes:
            if change.is_mutating:
                lines.extend(change.render())
        counts = self.summary()
        lines.append("")
        lines.append(
            f"Plan: {counts['create']} to add, {counts['update']} to change, "
            f"{counts['replace']} to replace, {counts['destroy']} to destroy."
        )
        return "\n".join(lines)


class Planner:
    """
    Computes a Plan from a graph, the prior snapshot and a provider.

    Example:
        plan = Planner(provider).plan(graph, backend.read())
        print(plan.render())
    """

    def __init__(self, provider: Provider):
        self.provider = provider

    def plan(self, graph: ResourceGraph, snapshot: StateSnapshot) -> Plan:
        known: dict[str, dict[str, Any]] = {}
        changes: list[Change] = []

        for node in graph.order():
            key = str(node.key)
            prior = snapshot.get(key)
            desired = resolve(node.attributes, known)
            change = diff_node(key, node.type, node.name, desired, prior)
            changes.append(change)
            known[key] = self._expected_outputs(node.type, desired, prior, change.action)

        changes.extend(self._destroys(graph, snapshot))

        outputs = {name: resolve(value, known) for name, value in graph.outputs.items()}
        plan = Plan(changes=changes, serial=snapshot.serial, lineage=snapshot.lineage, outputs=outputs)
        logger.info("plan_computed", **plan.summary())
        return plan

    def _expected_outputs(
        self,
        type: str,
        desired: dict[str, Any],
        prior: ResourceState | None,
        action: ChangeAction,
    ) -> dict[str, Any]:
        predicted = self.provider.predict_outputs(type, desired)
        if action == ChangeAction.NOOP and prior is not None:
            return dict(prior.outputs)
        if action == ChangeAction.UPDATE and prior is not None:
            return {**prior.outputs, **predicted}
        return predicted

    def _destroys(self, graph: ResourceGraph, snapshot: StateSnapshot) -> list[Change]:
        removed = [key for key in snapshot.resources if key not in graph]

        dag = DAG()
        for key in removed:
            dag.add_node(key, snapshot.resources[key])
        for key in removed:
            for dependency in snapshot.resources[key].dependencies:
                if dependency in dag.nodes:
                    dag.add_edge(dependency, key)

        changes = []
        for key in reversed(dag.topological_sort()):
            record = snapshot.resources[key]
            changes.append(
                Change(
                    key=key,
                    type=record.type,
                    name=record.name,
                    action=ChangeAction.DESTROY,
                    before=dict(record.resolved),
                )
            )

        for key, record in snapshot.resources.items():
            for outputs in record.deposed:
                changes.append(
                    Change(
                        key=key,
                        type=record.type,
                        name=record.name,
                        action=ChangeAction.DESTROY,
                        before=dict(outputs),
                        deposed=True,
                    )
                )
        return changes


def diff_node(
    key: str,
    type: str,
    name: str,
    desired: dict[str, Any],
    prior: ResourceState | None,
) -> Change:
    """Classify one node's change from its resolved desired attributes."""
    if prior is None:
        return Change(key, type, name, ChangeAction.CREATE, changed=sorted(desired), after=desired)

    before = prior.resolved
    changed = [
        attribute
        for attribute in sorted(set(desired) | set(before))
        if contains_unknown(desired.get(attribute)) or desired.get(attribute) != before.get(attribute)
    ]
    if not changed:
        return Change(key, type, name, ChangeAction.NOOP, before=before, after=desired)

    schema = get_resource_type(type)
    replaced_by = [attribute for attribute in changed if schema is not None and schema.forces_replacement(attribute)]
    action = ChangeAction.REPLACE if replaced_by else ChangeAction.UPDATE
    return Change(
        key,
        type,
        name,
        action,
        changed=changed,
        before=before,
        after=desired,
        replaced_by=replaced_by,
    )


def record_for(node: Any, resolved: dict[str, Any], outputs: dict[str, Any]) -> ResourceState:
    """State record for a node applied with `resolved` attributes."""
    return ResourceState(
        type=node.type,
        name=node.name,
        attributes=symbolic(node.attributes),
        resolved=resolved,
        outputs=outputs,
        dependencies=[str(key) for key in node.dependencies()],
    )
