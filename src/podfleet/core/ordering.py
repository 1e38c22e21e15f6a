"""Dependency ordering for declared resources and plan operations."""

from typing import Dict, Iterable, List


class CycleError(ValueError):
    """Raised when a dependency graph contains a cycle."""

    def __init__(self, members: List[str]):
        self.members = members
        super().__init__(f"Dependency cycle between: {', '.join(members)}")


def topological_order(nodes: List[str], dependencies: Dict[str, Iterable[str]]) -> List[str]:
    """
    Order nodes so that every node comes after its dependencies.

    Rules:
        - Base order: the order of ``nodes``.
        - A node is emitted as soon as all of its dependencies have been
          emitted; ties keep the base order so that unrelated nodes stay
          in declaration order.
        - Dependencies that are not in ``nodes`` are ignored.

    Raises:
        CycleError: if some nodes can never be emitted.
    """
    position = {node: index for index, node in enumerate(nodes)}
    pending: Dict[str, set] = {
        node: {dep for dep in dependencies.get(node, ()) if dep in position and dep != node}
        for node in nodes
    }
    for node in nodes:
        if node in set(dependencies.get(node, ())):
            raise CycleError([node])

    ordered: List[str] = []
    emitted: set = set()
    while len(ordered) < len(nodes):
        ready = [
            node for node in nodes
            if node not in emitted and pending[node] <= emitted
        ]
        if not ready:
            remaining = [node for node in nodes if node not in emitted]
            raise CycleError(remaining)
        # Emit one node at a time so later-declared nodes unblocked by it
        # do not jump ahead of earlier ready ones.
        node = min(ready, key=position.__getitem__)
        ordered.append(node)
        emitted.add(node)

    return ordered
