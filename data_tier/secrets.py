from typing import ClassVar, Mapping

from attrs import define

import common.constants as constants
from common.errors import ResourceReferenceError
from composition.future import AttributeRef, SecretReference
from composition.graph import NodeKind, ResourceGraph


@define(slots=True, frozen=True)
class CredentialSecret:
    """Credentials generated alongside a database cluster."""

    kind: ClassVar[NodeKind] = NodeKind.SECRET
    attributes: ClassVar[tuple] = ("secret_arn",)

    owner: AttributeRef
    fields: tuple = constants.CREDENTIAL_SECRET_FIELDS


@define(slots=True, frozen=True)
class Secret:
    node_id: str
    spec: CredentialSecret

    @property
    def secret_arn(self) -> AttributeRef:
        return AttributeRef(self.node_id, "secret_arn")


class SecretReferenceResolver:
    """Hands out opaque references to fields of generated secrets.

    The plaintext never passes through here: a reference only names the
    secret and the field, and the container runtime reads the value itself.
    """

    def __init__(self, graph: ResourceGraph) -> None:
        self.graph = graph

    def reference(self, secret: Secret, field: str) -> SecretReference:
        if secret.node_id not in self.graph:
            raise ResourceReferenceError(
                f"Secret {secret.node_id} does not exist; declare its data tier first"
            )
        declared = self.graph.node(secret.node_id).spec
        if not isinstance(declared, CredentialSecret):
            raise ResourceReferenceError(f"{secret.node_id} is not a credential secret")
        if field not in declared.fields:
            raise ResourceReferenceError(
                f"Secret {secret.node_id} has no field {field!r}; "
                f"known fields: {', '.join(declared.fields)}"
            )
        return SecretReference(secret.secret_arn, field)

    def references(self, secret: Secret, fields: Mapping[str, str]) -> dict[str, SecretReference]:
        """Map environment variable names to secret fields."""
        return {name: self.reference(secret, field) for name, field in fields.items()}
