"""
References: typed edges from a consuming attribute to a producer's output.

Attribute values may be plain data (str, int, bool, dict, list) or contain
References and Joins anywhere inside them. Resolution is a separate pass
run by the planner and the reconciler once producer outputs are known.
"""

from dataclasses import dataclass
from typing import Any, Iterator, Mapping


@dataclass(frozen=True, order=True)
class NodeKey:
    """Identity of a node: its resource type token and logical name."""

    type: str
    name: str

    def __str__(self) -> str:
        return f"{self.type}.{self.name}"

    @classmethod
    def parse(cls, value: str) -> "NodeKey":
        """Parse "<type>.<name>" back into a key."""
        type_, _, name = value.partition(".")
        if not type_ or not name:
            raise ValueError(f"Invalid node key: {value!r}")
        return cls(type_, name)


@dataclass(frozen=True)
class Reference:
    """A dependency on one computed output of another node."""

    producer: NodeKey
    output: str

    def __str__(self) -> str:
        return f"{self.producer}.{self.output}"


@dataclass(frozen=True)
class Join:
    """
    Concatenation of literal strings and References.

    Example:
        Join((bucket.output("arn"), "/*"))
    """

    parts: tuple

    def references(self) -> list[Reference]:
        return [part for part in self.parts if isinstance(part, Reference)]


def join(*parts: Any) -> Join:
    """Build a Join from positional parts."""
    return Join(tuple(parts))


class _Unknown:
    """Placeholder for a value that only exists after apply."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "(known after apply)"

    def __bool__(self) -> bool:
        return False


UNKNOWN = _Unknown()


def iter_references(value: Any) -> Iterator[Reference]:
    """Yield every Reference nested inside an attribute value."""
    if isinstance(value, Reference):
        yield value
    elif isinstance(value, Join):
        for part in value.parts:
            yield from iter_references(part)
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_references(item)


def resolve(value: Any, outputs: Mapping[str, Mapping[str, Any]]) -> Any:
    """
    Substitute References with concrete output values.

    Args:
        value: Attribute value, possibly containing References
        outputs: Producer outputs keyed by str(NodeKey)

    Returns:
        The resolved value. Missing outputs resolve to UNKNOWN, and a Join
        with any unknown part is UNKNOWN as a whole.
    """
    if isinstance(value, Reference):
        producer_outputs = outputs.get(str(value.producer))
        if producer_outputs is None:
            return UNKNOWN
        return producer_outputs.get(value.output, UNKNOWN)
    if isinstance(value, Join):
        parts = [resolve(part, outputs) for part in value.parts]
        if any(part is UNKNOWN for part in parts):
            return UNKNOWN
        return "".join(str(part) for part in parts)
    if isinstance(value, Mapping):
        return {key: resolve(item, outputs) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve(item, outputs) for item in value]
    return value


def contains_unknown(value: Any) -> bool:
    """True if any part of a resolved value is still UNKNOWN."""
    if value is UNKNOWN:
        return True
    if isinstance(value, Mapping):
        return any(contains_unknown(item) for item in value.values())
    if isinstance(value, (list, tuple)):
        return any(contains_unknown(item) for item in value)
    return False


def symbolic(value: Any) -> Any:
    """
    Render a value as JSON-compatible data with references kept symbolic.

    References become {"$ref": "<type>.<name>.<output>"} and Joins become
    {"$join": [...]}. Used for state records, plans and fingerprints.
    """
    if isinstance(value, Reference):
        return {"$ref": str(value)}
    if isinstance(value, Join):
        return {"$join": [symbolic(part) for part in value.parts]}
    if isinstance(value, Mapping):
        return {key: symbolic(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [symbolic(item) for item in value]
    return value
