"""
tierstack/deployment/graph.py

The module graph evaluator.

Modules are registered with a template (declared input and output names + a
pure render function), input bindings and declared dependencies. A binding is
either a literal or an OutputRef, the typed handle to another module's output.
Handles are only turned into values when the consuming module is applied.

  - ModuleGraph.resolve_order(): Kahn's algorithm, ties broken by declaration
    order, CyclicDependencyError on cycles.
  - ModuleGraph.plan(): all configuration-time validation, then a Plan.
  - Plan.execute(): applies every module exactly once, strictly serialized.
  - Plan.destroy(): deletes in the exact reverse of the successful apply order.
"""

from __future__ import annotations

import heapq
import logging
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    NamedTuple,
    Optional,
    Set,
    Tuple,
    Type,
    TypeVar,
)

from pydantic import BaseModel, ConfigDict

from tierstack.models.resources import (
    AttrRef,
    ModuleRender,
    ProviderResource,
    QueryRef,
    ResourceKind,
)
from tierstack.models.validator import validate_type
from tierstack.providers.base import ProviderAdapter, ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConfigurationError(Exception):
    """Base class for errors detected before any resource is created."""


class UnresolvedInputError(ConfigurationError):
    """A declared input has no bound value, or a reference cannot be resolved."""


class CyclicDependencyError(ConfigurationError):
    """The module dependency graph contains a cycle.

    Attributes:
        cycle: Module names along one cycle, first name repeated at the end.
    """

    def __init__(self, message: str, cycle: List[str]) -> None:
        super().__init__(message)
        self.cycle = cycle


class AlreadyAppliedError(ConfigurationError):
    """A module (or plan) was applied a second time."""


class UndeclaredDependencyError(ConfigurationError):
    """A binding references a module that is not a declared dependency."""


class OutputRef(BaseModel):
    """Typed handle to an output slot of another module."""

    model_config = ConfigDict(frozen=True)

    module: str
    output: str

    def __str__(self) -> str:
        return f"{self.module}.{self.output}"


class ModuleTemplate(NamedTuple):
    """A parameterized module: the inputs it takes, the outputs it produces and
    its pure render function."""

    input_names: Tuple[str, ...]
    output_names: Tuple[str, ...]
    render: Callable[[Dict[str, Any]], ModuleRender]


class AppliedResource(BaseModel):
    """A resource created for a module, keyed by its logical name."""

    name: str
    kind: ResourceKind
    id: str
    attributes: Dict[str, Any]


class Module:
    """A named module in the graph: bindings in, output record out."""

    def __init__(
        self,
        name: str,
        template: ModuleTemplate,
        bindings: Dict[str, Any],
        depends_on: Tuple[str, ...],
    ) -> None:
        self.name = name
        self.template = template
        self.bindings = bindings
        self.depends_on = depends_on
        self.resources: List[AppliedResource] = []
        self._outputs: Optional[Dict[str, Any]] = None

    @property
    def applied(self) -> bool:
        return self._outputs is not None

    @property
    def outputs(self) -> Dict[str, Any]:
        if self._outputs is None:
            raise UnresolvedInputError(f"Module '{self.name}' has not been applied.")
        return dict(self._outputs)

    def output(self, key: str) -> OutputRef:
        return OutputRef(module=self.name, output=key)

    def references(self) -> Set[OutputRef]:
        refs: Set[OutputRef] = set()
        for value in self.bindings.values():
            _collect_output_refs(value, refs)
        return refs

    def referenced_modules(self) -> Set[str]:
        return {ref.module for ref in self.references()}

    def _record_outputs(self, outputs: Dict[str, Any]) -> None:
        if self._outputs is not None:
            raise AlreadyAppliedError(f"Module '{self.name}' was already applied.")
        self._outputs = outputs


def _collect_output_refs(value: Any, into: Set[OutputRef]) -> None:
    if isinstance(value, OutputRef):
        into.add(value)
    elif isinstance(value, dict):
        for item in value.values():
            _collect_output_refs(item, into)
    elif isinstance(value, (list, tuple)):
        for item in value:
            _collect_output_refs(item, into)


def _substitute(value: Any, resolve: Callable[[Any], Any], kinds: Tuple[type, ...]) -> Any:
    """Rebuild `value`, replacing every instance of `kinds` by `resolve(instance)`."""
    if isinstance(value, kinds):
        return resolve(value)
    if isinstance(value, dict):
        return {k: _substitute(v, resolve, kinds) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute(v, resolve, kinds) for v in value]
    if isinstance(value, tuple):
        return tuple(_substitute(v, resolve, kinds) for v in value)
    return value


def topological_order(dependencies: Dict[str, Tuple[str, ...]]) -> List[str]:
    """Kahn's algorithm over a name -> dependencies mapping.

    Ties are broken by the mapping's insertion order.

    Raises:
        UnresolvedInputError: a dependency names an unknown module.
        CyclicDependencyError: the dependency graph has a cycle.
    """
    position = {name: index for index, name in enumerate(dependencies)}
    dependents: Dict[str, List[str]] = {name: [] for name in dependencies}
    indegree: Dict[str, int] = {name: 0 for name in dependencies}

    for name, deps in dependencies.items():
        for dep in deps:
            if dep not in dependencies:
                raise UnresolvedInputError(
                    f"Module '{name}' depends on unknown module '{dep}'."
                )
            dependents[dep].append(name)
            indegree[name] += 1

    ready = [(position[name], name) for name in dependencies if indegree[name] == 0]
    heapq.heapify(ready)
    order: List[str] = []

    while ready:
        _, name = heapq.heappop(ready)
        order.append(name)
        for child in dependents[name]:
            indegree[child] -= 1
            if indegree[child] == 0:
                heapq.heappush(ready, (position[child], child))

    if len(order) != len(dependencies):
        sorted_names = set(order)
        remaining = [n for n in dependencies if n not in sorted_names]
        cycle = _find_cycle(dependencies, remaining)
        raise CyclicDependencyError(
            f"Cyclic module dependency: {' -> '.join(cycle)}", cycle
        )
    return order


def _find_cycle(
    dependencies: Dict[str, Tuple[str, ...]], remaining: List[str]
) -> List[str]:
    """Walk dependencies inside the unsorted remainder until a name repeats."""
    pending = set(remaining)
    path: List[str] = [remaining[0]]
    while True:
        nxt = next(d for d in dependencies[path[-1]] if d in pending)
        if nxt in path:
            return path[path.index(nxt):] + [nxt]
        path.append(nxt)


class ModuleGraph:
    """An arena of modules. No module exists outside the graph that owns it."""

    def __init__(self) -> None:
        self._modules: Dict[str, Module] = {}
        self._checks: List[Tuple[str, Callable[[], None]]] = []

    def __contains__(self, name: str) -> bool:
        return name in self._modules

    @property
    def names(self) -> List[str]:
        return list(self._modules)

    def module(self, name: str) -> Module:
        try:
            return self._modules[name]
        except KeyError:
            raise UnresolvedInputError(f"Unknown module '{name}'.") from None

    def register(
        self,
        name: str,
        template: ModuleTemplate,
        inputs: Optional[Dict[str, Any]] = None,
        depends_on: Iterable[str] = (),
    ) -> Module:
        """Declare a module.

        Dependencies may name modules registered later; they are checked when
        the order is resolved. Every OutputRef in `inputs` must point at a
        module listed in `depends_on`.

        Raises:
            ConfigurationError: duplicate module name or an undeclared input name.
            UndeclaredDependencyError: a binding references a module outside `depends_on`.
        """
        if name in self._modules:
            raise ConfigurationError(f"Module '{name}' is already registered.")

        bindings = dict(inputs or {})
        unknown = [key for key in bindings if key not in template.input_names]
        if unknown:
            raise ConfigurationError(
                f"Module '{name}' does not declare input(s): {', '.join(unknown)}"
            )

        deps = tuple(dict.fromkeys(depends_on))
        module = Module(name, template, bindings, deps)

        undeclared = sorted(module.referenced_modules() - set(deps))
        if undeclared:
            raise UndeclaredDependencyError(
                f"Module '{name}' references output(s) of {', '.join(undeclared)} "
                "without declaring them as dependencies."
            )

        self._modules[name] = module
        return module

    def add_check(self, label: str, check: Callable[[], None]) -> None:
        """Register a pre-flight check run by `plan()` before anything is created."""
        self._checks.append((label, check))

    def output_value(self, module: str, key: str, expected_type: Type[T]) -> T:
        """Typed read of an applied module's output."""
        outputs = self.module(module).outputs
        if key not in outputs:
            raise KeyError(f"Output '{key}' not found on module '{module}'.")
        return validate_type(outputs[key], expected_type, f"output {module}.{key}")

    def resolve_order(self) -> List[str]:
        """Return module names in a valid apply order.

        Raises:
            UnresolvedInputError: a dependency names an unknown module.
            CyclicDependencyError: the dependency graph has a cycle.
        """
        return topological_order(
            {name: module.depends_on for name, module in self._modules.items()}
        )

    def validate(self) -> List[str]:
        """Run all configuration-time validation and return the apply order.

        Besides ordering, every declared input must be bound and every bound
        OutputRef must name an output its producer declares.
        """
        order = self.resolve_order()
        for name in order:
            module = self._modules[name]
            missing = [k for k in module.template.input_names if k not in module.bindings]
            if missing:
                raise UnresolvedInputError(
                    f"Module '{name}' has unbound input(s): {', '.join(missing)}"
                )
            for ref in sorted(module.references(), key=str):
                producer = self._modules[ref.module]
                if ref.output not in producer.template.output_names:
                    raise UnresolvedInputError(
                        f"Module '{name}' references {ref}, but module "
                        f"'{ref.module}' declares no output '{ref.output}'."
                    )
        for label, check in self._checks:
            logger.debug("Running pre-flight check: %s", label)
            check()
        return order

    def plan(self) -> Plan:
        return Plan(self, self.validate())

    def _resolve_inputs(self, module: Module) -> Dict[str, Any]:
        missing = [k for k in module.template.input_names if k not in module.bindings]
        if missing:
            raise UnresolvedInputError(
                f"Module '{module.name}' has unbound input(s): {', '.join(missing)}"
            )

        def resolve(ref: OutputRef) -> Any:
            producer = self.module(ref.module)
            if not producer.applied:
                raise UnresolvedInputError(
                    f"Input {ref} of module '{module.name}' is not available: "
                    f"module '{ref.module}' has not been applied."
                )
            outputs = producer.outputs
            if ref.output not in outputs:
                raise UnresolvedInputError(
                    f"Module '{ref.module}' produced no output '{ref.output}'."
                )
            return outputs[ref.output]

        return {
            key: _substitute(module.bindings[key], resolve, (OutputRef,))
            for key in module.template.input_names
        }

    async def apply(self, name: str, provider: ProviderAdapter) -> Dict[str, Any]:
        """Render a module from its resolved inputs, create its resources, record outputs.

        Raises:
            AlreadyAppliedError: the module was applied before.
            UnresolvedInputError: an input or intra-module reference cannot be resolved.
            ConfigurationError: the render produced outputs other than the declared ones.
            ProviderError: surfaced unchanged from the adapter.
        """
        module = self.module(name)
        if module.applied:
            raise AlreadyAppliedError(f"Module '{name}' was already applied.")

        inputs = self._resolve_inputs(module)
        rendered = module.template.render(inputs)
        if set(rendered.outputs) != set(module.template.output_names):
            raise ConfigurationError(
                f"Module '{name}' rendered outputs {sorted(rendered.outputs)}, "
                f"but declares {sorted(module.template.output_names)}."
            )
        created: Dict[str, ProviderResource] = {}

        def resolve_attr(ref: AttrRef) -> Any:
            resource = created.get(ref.resource)
            if resource is None:
                raise UnresolvedInputError(
                    f"Module '{name}' references resource '{ref.resource}' "
                    "before it is declared."
                )
            if ref.attribute not in resource.attributes:
                raise UnresolvedInputError(
                    f"Resource '{ref.resource}' of module '{name}' has no "
                    f"attribute '{ref.attribute}'."
                )
            return resource.attributes[ref.attribute]

        for decl in rendered.resources:
            attributes = _substitute(decl.attributes, resolve_attr, (AttrRef,))
            try:
                resource = await provider.create(decl.kind, attributes, decl.tags)
            except ProviderError:
                logger.error(
                    "Module '%s' left partially applied; created: %s",
                    name,
                    [r.id for r in module.resources] or "nothing",
                )
                raise
            created[decl.name] = resource
            module.resources.append(
                AppliedResource(
                    name=decl.name,
                    kind=decl.kind,
                    id=resource.id,
                    attributes=resource.attributes,
                )
            )

        outputs: Dict[str, Any] = {}
        for key, expr in rendered.outputs.items():
            value = _substitute(expr, resolve_attr, (AttrRef,))
            if isinstance(value, QueryRef):
                value = await self._run_query(value, provider)
            outputs[key] = value

        module._record_outputs(outputs)
        logger.info("Applied module '%s' (%d resources)", name, len(module.resources))
        return dict(outputs)

    async def _run_query(
        self, query: QueryRef, provider: ProviderAdapter
    ) -> List[Dict[str, Any]]:
        found = await provider.query(query.kind, query.tags)
        return [
            {"id": r.id, **{a: r.attributes.get(a) for a in query.attributes}}
            for r in found
        ]

    async def destroy_module(self, name: str, provider: ProviderAdapter) -> None:
        """Delete a module's resources in reverse creation order."""
        module = self.module(name)
        for resource in reversed(module.resources):
            await provider.delete(resource.id)
        logger.info("Destroyed module '%s' (%d resources)", name, len(module.resources))
        module.resources = []


class Plan:
    """A resolved, ordered list of module applications; executed at most once."""

    def __init__(self, graph: ModuleGraph, order: List[str]) -> None:
        self.graph = graph
        self.order: Tuple[str, ...] = tuple(order)
        self.applied: List[str] = []
        self._executed = False

    async def execute(self, provider: ProviderAdapter) -> Dict[str, Dict[str, Any]]:
        """Apply every module in order. A provider error aborts the run.

        Returns:
            Mapping of module name to its output record.
        """
        if self._executed:
            raise AlreadyAppliedError("This plan has already been executed.")
        self._executed = True

        for name in self.order:
            logger.info("Applying module '%s'", name)
            await self.graph.apply(name, provider)
            self.applied.append(name)

        return {name: self.graph.module(name).outputs for name in self.applied}

    async def destroy(self, provider: ProviderAdapter) -> List[str]:
        """Destroy applied modules in the exact reverse of the apply order."""
        destroyed: List[str] = []
        for name in reversed(self.applied):
            await self.graph.destroy_module(name, provider)
            destroyed.append(name)
        self.applied = []
        return destroyed
