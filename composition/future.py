"""Future values flowing between nodes of the resource graph.

An ``AttributeRef`` names an attribute that another node only produces once
the control plane has realized it (a database hostname, a file system id, a
load balancer DNS name). Specs hold references rather than values; the
realization context swaps them for concrete values right before the consuming
node is created. ``SecretReference`` is never swapped: it stays opaque all the
way to the container runtime.
"""
from typing import Any, Callable, Iterator, Mapping, Union

import attrs
from attrs import define


@define(slots=True, frozen=True)
class AttributeRef:
    node_id: str
    attribute: str

    def __str__(self) -> str:
        return f"${{{self.node_id}.{self.attribute}}}"


@define(slots=True, frozen=True)
class SecretReference:
    secret: AttributeRef
    field: str

    @property
    def node_id(self) -> str:
        return self.secret.node_id

    def __str__(self) -> str:
        return f"secret:{self.secret.node_id}:{self.field}"


Reference = Union[AttributeRef, SecretReference]


def walk_references(value: Any) -> Iterator[Reference]:
    """Yield every reference held by a spec, depth first, in field order."""
    if isinstance(value, (AttributeRef, SecretReference)):
        yield value
    elif attrs.has(type(value)):
        for attribute in attrs.fields(type(value)):
            yield from walk_references(getattr(value, attribute.name))
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from walk_references(item)
    elif isinstance(value, (list, tuple, set, frozenset)):
        for item in value:
            yield from walk_references(item)


def iter_attribute_refs(value: Any) -> Iterator[AttributeRef]:
    for reference in walk_references(value):
        if isinstance(reference, SecretReference):
            yield reference.secret
        else:
            yield reference


def resolve_references(value: Any, lookup: Callable[[AttributeRef], Any]) -> Any:
    """Return a copy of ``value`` with every ``AttributeRef`` replaced by its value.

    Secret references are looked up (so an unrealized secret still fails) but
    are returned unchanged.
    """
    if isinstance(value, AttributeRef):
        return lookup(value)
    if isinstance(value, SecretReference):
        lookup(value.secret)
        return value
    if attrs.has(type(value)):
        changes = {
            attribute.alias: resolve_references(getattr(value, attribute.name), lookup)
            for attribute in attrs.fields(type(value))
            if attribute.init
        }
        return attrs.evolve(value, **changes)
    if isinstance(value, Mapping):
        return {key: resolve_references(item, lookup) for key, item in value.items()}
    if isinstance(value, tuple):
        return tuple(resolve_references(item, lookup) for item in value)
    if isinstance(value, list):
        return [resolve_references(item, lookup) for item in value]
    return value
