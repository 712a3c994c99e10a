"""
Reconciler: converges real state to the declared graph.

The apply pass walks the graph level by level. Nodes inside a level are
independent and run on a bounded thread pool; a node is only submitted once
every producer it references has finished, so it always sees fresh outputs.
Only the reconciler writes the state snapshot, once per level, which makes
an interrupted apply resumable.
"""

from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any

import structlog

from cairn.core.graph import GraphBuilder, ResourceGraph
from cairn.core.node import ResourceNode
from cairn.core.references import contains_unknown, resolve
from cairn.engine.plan import ChangeAction, Plan, Planner, diff_node, record_for
from cairn.engine.provider import Provider
from cairn.engine.state import ResourceState, StateBackend, StateSnapshot
from cairn.errors import DriftError, ProviderApplyError, StateConflictError
from cairn.resources.types import get_resource_type

logger = structlog.get_logger(__name__)


@dataclass
class ApplyResult:
    """Per-node outcome of an apply or destroy."""

    applied: dict[str, str] = field(default_factory=dict)
    """Node key -> action actually taken (no-ops included)"""
    failed: dict[str, ProviderApplyError] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    """Nodes not attempted because a producer failed"""
    outputs: dict[str, Any] = field(default_factory=dict)
    serial: int = 0

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped

    def count(self, action: str) -> int:
        return sum(1 for taken in self.applied.values() if taken == action)


@dataclass
class _NodeOutcome:
    key: str
    action: str
    record: ResourceState


class Reconciler:
    """
    Plans and applies a resource graph against a provider.

    Example:
        reconciler = Reconciler(LocalCloudProvider(), LocalStateBackend(".cairn/state.json"))
        plan = reconciler.plan(graph)          # dry run, no mutating calls
        result = reconciler.apply(graph, plan)
    """

    def __init__(self, provider: Provider, backend: StateBackend, parallelism: int = 10):
        self.provider = provider
        self.backend = backend
        self.parallelism = max(1, parallelism)
        self.planner = Planner(provider)

    # Drift

    def detect_drift(self, snapshot: StateSnapshot | None = None) -> list[dict[str, Any]]:
        """
        Compare every recorded node with what the provider reports.

        Returns:
            One entry per drifted node: {"node": key, "changes": {attr: (recorded, actual)}}
        """
        snapshot = snapshot or self.backend.read()
        drifts = []
        for key, record in snapshot.resources.items():
            actual = self.provider.read(record.type, record.outputs)
            if actual is None:
                drifts.append({"node": key, "changes": {"<exists>": (True, False)}})
                continue
            changes = {
                attribute: (record.resolved.get(attribute), actual.get(attribute))
                for attribute in sorted(set(record.resolved) | set(actual))
                if record.resolved.get(attribute) != actual.get(attribute)
            }
            if changes:
                drifts.append({"node": key, "changes": changes})

        if drifts:
            logger.warning("drift_detected", nodes=[drift["node"] for drift in drifts])
        return drifts

    def refresh(self) -> None:
        """Raise DriftError if actual state diverged from the recorded state."""
        drifts = self.detect_drift()
        if drifts:
            raise DriftError(drifts)

    # Plan / apply

    def plan(self, graph: ResourceGraph, refresh: bool = True) -> Plan:
        """
        Dry run: compute the full diff without any mutating provider call.

        Raises:
            DriftError: If refresh is on and actual state diverged
        """
        snapshot = self.backend.read()
        if refresh:
            drifts = self.detect_drift(snapshot)
            if drifts:
                raise DriftError(drifts)
        return self.planner.plan(graph, snapshot)

    def apply(self, graph: ResourceGraph, plan: Plan | None = None, refresh: bool = True) -> ApplyResult:
        """
        Converge the provider to `graph`.

        Args:
            graph: Validated resource graph
            plan: A plan computed earlier; rejected if state moved since
            refresh: Check for drift before planning

        Returns:
            ApplyResult with per-node outcomes
        """
        with self.backend.lock("apply"):
            snapshot = self.backend.read()
            if plan is None:
                if refresh:
                    drifts = self.detect_drift(snapshot)
                    if drifts:
                        raise DriftError(drifts)
                plan = self.planner.plan(graph, snapshot)
            elif plan.lineage != snapshot.lineage:
                raise StateConflictError(
                    f"Plan was computed against state lineage {plan.lineage}, "
                    f"state has lineage {snapshot.lineage}"
                )
            elif plan.serial != snapshot.serial:
                raise StateConflictError(
                    f"Plan was computed against serial {plan.serial}, state is at {snapshot.serial}"
                )

            return self._execute(graph, plan, snapshot)

    def destroy(self) -> ApplyResult:
        """Destroy everything recorded in state, dependents first."""
        empty = GraphBuilder([]).build()
        return self.apply(empty, refresh=False)

    # Internals

    def _execute(self, graph: ResourceGraph, plan: Plan, snapshot: StateSnapshot) -> ApplyResult:
        result = ApplyResult()
        working = snapshot.model_copy(deep=True)
        known: dict[str, dict[str, Any]] = {
            key: dict(record.outputs) for key, record in working.resources.items()
        }
        blocked: set[str] = set()
        removed_first = self._removed_before_replacement(plan, working)

        logger.info("apply_started", nodes=len(graph), **plan.summary())
        try:
            for level in graph.levels():
                runnable: list[ResourceNode] = []
                for node in level:
                    key = str(node.key)
                    if any(dep in blocked for dep in graph.dependencies(key)):
                        result.skipped.append(key)
                        blocked.add(key)
                        logger.warning("node_skipped", node=key)
                    elif not self._destroy_removed(removed_first.get(key, []), working, result):
                        result.skipped.append(key)
                        blocked.add(key)
                        logger.warning("node_skipped", node=key, reason="removed dependency not destroyed")
                    else:
                        runnable.append(node)

                self._apply_level(runnable, known, working, result, blocked)
                working = self._persist(working)

            self._destroy_pending(graph, plan, working, result)
            working.outputs = {
                name: value
                for name, value in resolve(graph.outputs, known).items()
                if not contains_unknown(value)
            }
            working = self._persist(working)
        except KeyboardInterrupt:
            logger.warning("apply_interrupted", applied=len(result.applied))
            self._persist(working)
            raise

        result.outputs = dict(working.outputs)
        result.serial = working.serial
        logger.info(
            "apply_finished",
            applied=len(result.applied),
            failed=len(result.failed),
            skipped=len(result.skipped),
        )
        return result

    def _apply_level(
        self,
        nodes: list[ResourceNode],
        known: dict[str, dict[str, Any]],
        working: StateSnapshot,
        result: ApplyResult,
        blocked: set[str],
    ) -> None:
        """Apply independent nodes concurrently; results are recorded on this thread."""
        if not nodes:
            return

        workers = min(self.parallelism, len(nodes))
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cairn-apply")
        futures = {
            pool.submit(self._apply_node, node, dict(known), working.get(str(node.key))): str(node.key)
            for node in nodes
        }
        collected: set[str] = set()

        def collect(future: Future) -> None:
            key = futures[future]
            collected.add(key)
            try:
                outcome = future.result()
            except ProviderApplyError as e:
                result.failed[key] = e
                blocked.add(key)
                if e.object_deleted:
                    working.resources.pop(key, None)
                logger.error("node_apply_failed", node=key, operation=e.operation, reason=e.reason)
                return
            working.resources[key] = outcome.record
            known[key] = dict(outcome.record.outputs)
            result.applied[key] = outcome.action

        try:
            for future in as_completed(futures):
                collect(future)
        except KeyboardInterrupt:
            # Stop queued nodes, but keep whatever already reached the provider
            pool.shutdown(wait=True, cancel_futures=True)
            for future, key in futures.items():
                if key not in collected and future.done() and not future.cancelled():
                    collect(future)
            raise
        finally:
            pool.shutdown(wait=True)

    def _apply_node(
        self,
        node: ResourceNode,
        known: dict[str, dict[str, Any]],
        prior: ResourceState | None,
    ) -> _NodeOutcome:
        """Apply one node. Runs on a worker thread and never touches the snapshot."""
        key = str(node.key)
        resolved = resolve(node.attributes, known)
        if contains_unknown(resolved):
            raise ProviderApplyError(key, "resolve", "references still unresolved at apply time")

        change = diff_node(key, node.type, node.name, resolved, prior)
        record = record_for(node, resolved, {})

        if change.action == ChangeAction.NOOP:
            record.outputs = dict(prior.outputs)
            record.deposed = list(prior.deposed)
            return _NodeOutcome(key, change.action.value, record)

        logger.info("node_apply_started", node=key, action=change.action.value, changed=change.changed)

        schema = get_resource_type(node.type)
        if change.action == ChangeAction.CREATE:
            record.outputs = self.provider.create(key, node.type, resolved)
        elif change.action == ChangeAction.UPDATE:
            record.outputs = self.provider.update(key, node.type, prior.outputs, resolved)
            record.deposed = list(prior.deposed)
        elif schema is not None and schema.create_before_destroy:
            record.outputs = self.provider.create(key, node.type, resolved)
            record.deposed = list(prior.deposed) + [dict(prior.outputs)]
        else:
            self.provider.delete(key, node.type, prior.outputs)
            try:
                record.outputs = self.provider.create(key, node.type, resolved)
            except ProviderApplyError as e:
                raise ProviderApplyError(key, e.operation, e.reason, object_deleted=True) from e
            record.deposed = list(prior.deposed)

        logger.info("node_apply_finished", node=key, action=change.action.value)
        return _NodeOutcome(key, change.action.value, record)

    def _destroy_pending(
        self,
        graph: ResourceGraph,
        plan: Plan,
        working: StateSnapshot,
        result: ApplyResult,
    ) -> None:
        """Delete removed nodes, then superseded objects, recording each in state."""
        self._destroy_removed(
            [change.key for change in plan.by_action(ChangeAction.DESTROY) if not change.deposed],
            working,
            result,
        )

        # Superseded objects go last, once every dependent has been repointed
        unfinished = set(result.failed) | set(result.skipped)
        for key, record in working.resources.items():
            if not record.deposed:
                continue
            if key in unfinished or unfinished.intersection(graph.descendants(key)):
                logger.warning("deposed_object_kept", node=key)
                continue
            remaining = []
            for outputs in record.deposed:
                try:
                    self.provider.delete(key, record.type, outputs)
                    logger.info("deposed_object_destroyed", node=key, id=outputs.get("id"))
                except ProviderApplyError as e:
                    result.failed[key] = e
                    remaining.append(outputs)
            record.deposed = remaining

    def _persist(self, working: StateSnapshot) -> StateSnapshot:
        return self.backend.write(working, expected_serial=working.serial)

    def _destroy_removed(self, keys: list[str], working: StateSnapshot, result: ApplyResult) -> bool:
        """
        Delete removed nodes in the given order, skipping ones already gone.

        Returns:
            True if every node in `keys` is gone afterwards
        """
        ok = True
        for key in keys:
            record = working.get(key)
            if record is None:
                continue
            try:
                for outputs in record.deposed:
                    self.provider.delete(key, record.type, outputs)
                self.provider.delete(key, record.type, record.outputs)
            except ProviderApplyError as e:
                result.failed[key] = e
                logger.error("node_destroy_failed", node=key, reason=e.reason)
                ok = False
                continue
            del working.resources[key]
            result.applied[key] = ChangeAction.DESTROY.value
            logger.info("node_destroyed", node=key)
        return ok

    def _removed_before_replacement(self, plan: Plan, snapshot: StateSnapshot) -> dict[str, list[str]]:
        """
        Removed nodes that must be gone before a replacement is created.

        A replacement such as a deployment snapshot captures what it was
        built over, so removed nodes its prior object depended on (and any
        removed node linked to them) are destroyed first.

        Returns:
            Replaced node key -> removed keys, dependents first
        """
        destroys = [change.key for change in plan.by_action(ChangeAction.DESTROY) if not change.deposed]
        linked: dict[str, set[str]] = {key: set() for key in destroys}
        for key in destroys:
            for dependency in snapshot.resources[key].dependencies:
                if dependency in linked:
                    linked[key].add(dependency)
                    linked[dependency].add(key)

        groups = {}
        for change in plan.by_action(ChangeAction.REPLACE):
            prior = snapshot.get(change.key)
            pending = [dep for dep in prior.dependencies if dep in linked] if prior else []
            group: set[str] = set()
            while pending:
                key = pending.pop()
                if key not in group:
                    group.add(key)
                    pending.extend(linked[key])
            if group:
                groups[change.key] = [key for key in destroys if key in group]
        return groups
