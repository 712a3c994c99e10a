"""
Policy documents: the structured access-statement grammar.

Policies are declared as plain dicts on node attributes (with References
allowed wherever a string is expected) and validated against these models
when the graph is built.
"""

from typing import Any, Literal, Union

import pydantic
from pydantic import BaseModel, Field, field_validator, model_validator

from cairn.core.references import Join, Reference
from cairn.errors import ValidationError

PolicyValue = Union[Reference, Join, str]
PolicyKind = Literal["resource", "trust", "identity"]


class PolicyStatement(BaseModel):
    """A single policy statement."""

    Sid: str | None = None
    Effect: Literal["Allow", "Deny"]
    Principal: Union[Literal["*"], dict[str, PolicyValue | list[PolicyValue]], None] = None
    Action: PolicyValue | list[PolicyValue] | None = None
    NotAction: PolicyValue | list[PolicyValue] | None = None
    Resource: PolicyValue | list[PolicyValue] | None = None
    NotResource: PolicyValue | list[PolicyValue] | None = None
    Condition: dict[str, dict[str, Any]] | None = None

    class Config:
        arbitrary_types_allowed = True
        extra = "forbid"

    @model_validator(mode="after")
    def _check_actions(self) -> "PolicyStatement":
        if (self.Action is None) == (self.NotAction is None):
            raise ValueError("statement needs exactly one of Action or NotAction")
        if self.Resource is not None and self.NotResource is not None:
            raise ValueError("statement cannot set both Resource and NotResource")
        for actions in (self.Action, self.NotAction):
            for action in _as_list(actions):
                if isinstance(action, str) and action != "*" and ":" not in action:
                    raise ValueError(f"action {action!r} is not of the form service:Action")
        return self

    def actions(self) -> list[PolicyValue]:
        return _as_list(self.Action)


class PolicyDocument(BaseModel):
    """A policy document: version plus one or more statements."""

    Version: Literal["2012-10-17", "2008-10-17"]
    Id: str | None = None
    Statement: list[PolicyStatement] = Field(..., min_length=1)

    class Config:
        arbitrary_types_allowed = True
        extra = "forbid"

    @field_validator("Statement", mode="before")
    @classmethod
    def _single_statement(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return [value]
        return value


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def parse_policy(document: Any, kind: PolicyKind, node: str | None = None) -> PolicyDocument:
    """
    Validate a policy document for the place it is attached.

    Args:
        document: Policy as a dict (References allowed in string positions)
        kind: "resource" (bucket policy), "trust" (role assume policy)
            or "identity" (inline role policy)
        node: Node key used in error messages

    Returns:
        The parsed PolicyDocument

    Raises:
        ValidationError: If the document does not follow the grammar
    """
    nodes = [node] if node else []
    if not isinstance(document, dict):
        raise ValidationError(
            f"Policy document must be a mapping, got {type(document).__name__}", nodes
        )

    try:
        policy = PolicyDocument.model_validate(document)
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or '<root>'}: {error['msg']}"
            for error in e.errors()
        )
        raise ValidationError(f"Invalid {kind} policy: {problems}", nodes) from e

    for index, statement in enumerate(policy.Statement):
        where = f"Statement.{index}"
        has_resource = statement.Resource is not None or statement.NotResource is not None
        if kind in ("resource", "trust") and statement.Principal is None:
            raise ValidationError(f"Invalid {kind} policy: {where} requires a Principal", nodes)
        if kind == "identity" and statement.Principal is not None:
            raise ValidationError(f"Invalid {kind} policy: {where} must not set a Principal", nodes)
        if kind == "trust" and has_resource:
            raise ValidationError(f"Invalid {kind} policy: {where} must not set a Resource", nodes)
        if kind in ("resource", "identity") and not has_resource:
            raise ValidationError(f"Invalid {kind} policy: {where} requires a Resource", nodes)

    return policy


def grants_public_read(document: dict[str, Any]) -> bool:
    """True if any statement allows anonymous s3:GetObject without a condition."""
    policy = PolicyDocument.model_validate(document)
    for statement in policy.Statement:
        if statement.Effect != "Allow" or statement.Condition:
            continue
        principal = statement.Principal
        anonymous = principal == "*" or (
            isinstance(principal, dict) and _as_list(principal.get("AWS")) == ["*"]
        )
        if anonymous and any(a in ("s3:GetObject", "s3:*", "*") for a in statement.actions()):
            return True
    return False
