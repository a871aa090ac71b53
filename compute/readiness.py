from enum import Enum

from compute.containers import ComputeUnit, DependencyCondition


class ContainerState(str, Enum):
    PENDING = "pending"
    HEALTHY = "healthy"
    FAILED = "failed"


TRANSITIONS = {
    ContainerState.PENDING: frozenset({ContainerState.HEALTHY, ContainerState.FAILED}),
    ContainerState.HEALTHY: frozenset({ContainerState.FAILED}),
    ContainerState.FAILED: frozenset(),
}


class UnitReadiness:
    """Health of the containers of one running task.

    A container is ready only once it is healthy and everything it starts
    after is ready as well, whatever order the health reports arrive in.
    """

    def __init__(self, unit: ComputeUnit) -> None:
        unit.start_order()
        self.unit = unit
        self._states = {container.name: ContainerState.PENDING for container in unit.containers}

    def state(self, container: str) -> ContainerState:
        self.unit.container(container)
        return self._states[container]

    def report(self, container: str, state: ContainerState) -> None:
        current = self.state(container)
        state = ContainerState(state)
        if state == current:
            return
        if state not in TRANSITIONS[current]:
            raise ValueError(f"{container} cannot go from {current.value} to {state.value}")
        self._states[container] = state

    def can_start(self, container: str) -> bool:
        for dependency in self.unit.container(container).depends_on:
            if dependency.condition == DependencyCondition.HEALTHY:
                if self._states[dependency.container] != ContainerState.HEALTHY:
                    return False
            elif not self.can_start(dependency.container) or self.is_blocked(dependency.container):
                return False
        return True

    def is_ready(self, container: str) -> bool:
        if self.state(container) != ContainerState.HEALTHY:
            return False
        return all(
            self.is_ready(dependency.container)
            for dependency in self.unit.container(container).depends_on
        )

    def is_blocked(self, container: str) -> bool:
        """True when the container or something it waits for has failed."""
        if self.state(container) == ContainerState.FAILED:
            return True
        return any(
            self.is_blocked(dependency.container)
            for dependency in self.unit.container(container).depends_on
        )

    @property
    def ready(self) -> bool:
        return all(self.is_ready(name) for name in self._states)

    def snapshot(self) -> dict:
        return {
            name: "ready" if self.is_ready(name) else self._states[name].value
            for name in self.unit.start_order()
        }
