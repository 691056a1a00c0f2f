import dataclasses
import logging
import typing

from infragraph import diagnostics, errors, resources, schemas

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class DependencyEdge:
    """``dependent`` may only be created once ``dependency`` is ready."""

    dependent: str
    dependency: str


class DependencyGraph:
    def __init__(self, nodes: typing.Mapping[str, typing.Sequence[str]]):
        # Insertion order of ``nodes`` is the tie-breaking order
        self.nodes: typing.Dict[str, typing.List[str]] = {
            address: list(dict.fromkeys(dependencies))
            for address, dependencies in nodes.items()
        }
        self._dependents: typing.Dict[str, typing.List[str]] = {
            address: [] for address in self.nodes
        }
        for address, dependencies in self.nodes.items():
            for dependency in dependencies:
                if dependency not in self.nodes:
                    raise errors.ConfigurationError(
                        f"{address} depends on undeclared resource {dependency}",
                        identifiers=[address, dependency],
                    )
                self._dependents[dependency].append(address)

    def __contains__(self, address: str) -> bool:
        return address in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def edges(self) -> typing.List[DependencyEdge]:
        return [
            DependencyEdge(dependent=address, dependency=dependency)
            for address, dependencies in self.nodes.items()
            for dependency in dependencies
        ]

    def dependencies(self, address: str) -> typing.List[str]:
        return list(self.nodes[address])

    def dependents(self, address: str) -> typing.List[str]:
        return list(self._dependents[address])

    def transitive_dependents(self, address: str) -> typing.List[str]:
        seen: typing.Dict[str, None] = {}
        stack = list(reversed(self._dependents[address]))
        while stack:
            item = stack.pop()
            if item in seen:
                continue
            seen[item] = None
            stack.extend(reversed(self._dependents[item]))
        return list(seen)

    def apply_order(self) -> typing.List[str]:
        """
        Depth-first topological sort.

        Roots and dependencies are visited in declaration order so the same
        plan always yields the same order. A cycle raises
        :class:`~infragraph.errors.ConfigurationError` naming its members.
        """
        order: typing.List[str] = []
        done: typing.Set[str] = set()

        for root in self.nodes:
            if root in done:
                continue

            # Each entry is an address on the current path and its unvisited
            # dependencies
            stack = [(root, iter(self.nodes[root]))]
            on_path = {root}
            while stack:
                address, dependencies = stack[-1]
                for dependency in dependencies:
                    if dependency in done:
                        continue
                    if dependency in on_path:
                        path = [item[0] for item in stack]
                        cycle = path[path.index(dependency) :]
                        raise errors.ConfigurationError(
                            "Dependency cycle: " + " -> ".join(cycle + [dependency]),
                            identifiers=cycle,
                        )
                    stack.append((dependency, iter(self.nodes[dependency])))
                    on_path.add(dependency)
                    break
                else:
                    stack.pop()
                    on_path.remove(address)
                    done.add(address)
                    order.append(address)

        return order

    def destroy_order(self) -> typing.List[str]:
        return list(reversed(self.apply_order()))

    @classmethod
    def from_plan(
        cls,
        plan: resources.Plan,
        *,
        provider: typing.Optional[schemas.Provider] = None,
    ) -> "DependencyGraph":
        """
        Build the graph of a plan, checking every reference first.

        With a ``provider``, referenced attributes are also checked against
        the target resource type's schema.
        """
        problems: typing.List[diagnostics.Diagnostic] = []
        identifiers: typing.List[str] = []
        nodes: typing.Dict[str, typing.List[str]] = {}

        def problem(address: str, summary: str, *offending: str):
            problems.append(
                diagnostics.Diagnostic(
                    severity=diagnostics.Severity.ERROR,
                    summary=summary,
                    address=address,
                )
            )
            identifiers.extend(offending)

        def check_reference(address: str, reference):
            try:
                targets = plan.addresses_for(reference)
            except KeyError:
                if reference.index is None and reference.resource in plan.groups:
                    problem(
                        address,
                        f"{reference.resource} has count set; "
                        "reference an index or use [*]",
                        address,
                        reference.resource,
                    )
                else:
                    problem(
                        address,
                        f"Reference to undeclared resource {reference}",
                        address,
                        reference.address,
                    )
                return []

            if provider is not None and reference.type_name in provider.resources:
                resource = provider.resources[reference.type_name]
                if not resource.has_attribute(reference.attribute):
                    problem(
                        address,
                        f"{reference.type_name} has no attribute "
                        f"{reference.attribute!r}",
                        address,
                        reference.resource,
                    )
            return targets

        for address, declaration in plan.declarations.items():
            dependencies: typing.List[str] = []

            for identifier in declaration.depends_on:
                try:
                    dependencies.extend(plan.expand(identifier))
                except KeyError:
                    problem(
                        address,
                        f"depends_on names undeclared resource {identifier}",
                        address,
                        identifier,
                    )

            for reference in declaration.references:
                dependencies.extend(check_reference(address, reference))

            nodes[address] = dependencies

        for name, output in plan.outputs.items():
            for reference in output.references:
                check_reference(f"output.{name}", reference)

        if problems:
            raise errors.ConfigurationError(
                "Invalid references in plan",
                identifiers=list(dict.fromkeys(identifiers)),
                diagnostics=diagnostics.Diagnostics(diagnostics=problems),
            )

        graph = cls(nodes)
        graph.apply_order()
        logger.debug("Resolved %d resources, %d edges", len(graph), len(graph.edges))
        return graph

    @classmethod
    def from_dependencies(
        cls, nodes: typing.Mapping[str, typing.Sequence[str]]
    ) -> "DependencyGraph":
        """Build a graph from recorded dependencies, ignoring vanished ones."""
        return cls(
            {
                address: [item for item in dependencies if item in nodes]
                for address, dependencies in nodes.items()
            }
        )


def resolve(
    plan: resources.Plan, *, provider: typing.Optional[schemas.Provider] = None
) -> typing.List[str]:
    return DependencyGraph.from_plan(plan, provider=provider).apply_order()
