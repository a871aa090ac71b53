from typing import Optional


class CompositionError(Exception):
    """Base class for everything the composition core raises."""


class ConfigurationError(CompositionError):
    """The declaration is internally inconsistent.

    Raised while the graph is being built, before any control plane call.
    Never retried.
    """


class ResourceReferenceError(CompositionError):
    """A node references an attribute, node or secret field that does not exist
    or is not available yet."""


class ProvisioningError(CompositionError):
    """The control plane rejected or failed a create/delete call for one node."""

    def __init__(self, node_id: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{node_id}: {message}")
        self.node_id = node_id
        self.message = message
        self.cause = cause
