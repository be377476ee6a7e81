"""
The dependency graph of a world: producer -> consumer edges, annotated with the resource and the offset.

The graph may well be cyclic -- a task consuming its own previous interval is legit -- so it is not
toposorted but rather consulted lazily by `scheduler.resolve` against the ledger. The only cycles
rejected are those which can never be satisfied, ie, where no edge reaches into the past.
"""

import logging

import networkx as nx

from sluice.low.core import ResourceName, TaskName, WorldDefinition
from sluice.low.errors import ConfigError
from sluice.low.func import Either
from sluice.schedule.api import build_schedules
from sluice.schedule.core import Schedule

logger = logging.getLogger(__name__)


class DependencyGraph:
    def __init__(self, world: WorldDefinition) -> None:
        self.producers: dict[ResourceName, TaskName] = {}
        self.graph = nx.MultiDiGraph()
        self.graph.add_nodes_from(world.tasks.keys())
        for name, task in world.tasks.items():
            for resource in task.provides:
                self.producers.setdefault(resource, name)
        for name, task in world.tasks.items():
            for requirement in task.requires:
                if (producer := self.producers.get(requirement.resource)) is not None:
                    self.graph.add_edge(
                        producer, name, resource=requirement.resource, offset=requirement.offset
                    )

    def producer_of(self, resource: ResourceName) -> TaskName:
        return self.producers[resource]

    def consumers_of(self, task: TaskName) -> set[TaskName]:
        return set(self.graph.successors(task))

    def upstream_of(self, task: TaskName) -> set[TaskName]:
        return set(self.graph.predecessors(task))

    def deadlocks(self) -> list[list[TaskName]]:
        """Cycles consisting solely of edges with non-negative offset"""
        present = nx.DiGraph()
        present.add_edges_from(
            (u, v) for u, v, offset in self.graph.edges(data="offset") if offset >= 0
        )
        return [sorted(cycle) for cycle in nx.simple_cycles(present)]


def validate(world: WorldDefinition) -> Either[tuple[DependencyGraph, dict[TaskName, Schedule]], list[str]]:
    errors: list[str] = []

    producers: dict[ResourceName, list[TaskName]] = {}
    for name, task in world.tasks.items():
        for resource in task.provides:
            producers.setdefault(resource, []).append(name)
        for command_name, command in task.commands().items():
            try:
                if not command.argv():
                    errors.append(f"{name}: empty {command_name} command")
            except ValueError as e:
                errors.append(f"{name}: malformed {command_name} command: {e}")
            if command.timeout < 0:
                errors.append(f"{name}: negative timeout of {command_name}")
    for resource, tasks in producers.items():
        if len(tasks) > 1:
            errors.append(f"resource {resource} produced by more than one task: {sorted(tasks)}")
    for name, task in world.tasks.items():
        for requirement in task.requires:
            if requirement.resource not in producers:
                errors.append(f"{name}: required resource {requirement.resource} not provided by any task")

    graph = DependencyGraph(world)
    for cycle in graph.deadlocks():
        errors.append(f"tasks {cycle} depend on each other without offset, would never run")

    schedules = build_schedules(world)
    rv: Either[tuple[DependencyGraph, dict[TaskName, Schedule]], list[str]] = schedules.chain(
        lambda s: Either.ok((graph, s))
    )
    return rv.append(errors)


def build(world: WorldDefinition) -> tuple[DependencyGraph, dict[TaskName, Schedule]]:
    """Graph & schedules of a world, raising ConfigError on any problem found"""
    return validate(world).get_or_raise(lambda errors: ConfigError("; ".join(errors)))
