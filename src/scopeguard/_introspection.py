from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Protocol

from ._container import Container, Registration, ResolutionContext
from ._errors import IntrospectionError, PlanningError
from ._planning import Planner


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Collection, Iterable, Iterator, Mapping, Sequence


class IntrospectionProvider(Protocol):
    """Read-only view of a DI container's bindings, as needed for scope validation."""

    def create_context(self) -> Any: ...

    def enumerate_registrations(self, context: Any) -> Iterable[tuple[Any, Any]]:
        """All (service type, binding) pairs, including ones the container synthesized."""
        ...

    def resolve_scope(self, binding: Any, context: Any) -> Any: ...

    def constructor_dependency_types(self, service_type: Any, binding: Any) -> Collection[Any]:
        """Distinct constructor dependency types; raises IntrospectionError when unplannable."""
        ...

    def default_scope(self, context: Any) -> Any: ...


class _NotBoundProbe:
    """Never registered anywhere, so looking it up always consults every binding resolver."""


@contextmanager
def tracking_binding_resolver(container: Container, captured: dict[Any, list[Registration]]) -> Iterator[None]:
    """Temporarily install a binding resolver that copies the binding multimap into ``captured``.

    The resolver is removed on exit, whether or not the probe inside the block raised.
    """

    def track(bindings: Mapping[Any, Sequence[Registration]], token: Any) -> list[Registration]:
        captured.update((key, list(registrations)) for key, registrations in bindings.items())
        return []

    container.add_binding_resolver(track)
    try:
        yield
    finally:
        container.remove_binding_resolver(track)


class ContainerIntrospector:
    """IntrospectionProvider for ``scopeguard.Container`` and its scopes.

    - bindings come from a one-off probe through a tracking binding resolver
    - scopes come from each registration's lifetime or scope callback
    - dependencies come from the constructor plan of the implementation type;
      factory and instance bindings have no constructor to plan.
    """

    def __init__(self, container: Container) -> None:
        self._container = container
        self._planner = Planner(container)

    def create_context(self) -> ResolutionContext:
        return ResolutionContext(container=self._container, token=Container)

    def enumerate_registrations(self, context: ResolutionContext) -> list[tuple[Any, Registration]]:
        captured: dict[Any, list[Registration]] = {}
        with tracking_binding_resolver(self._container, captured):
            self._container.bindings_for(_NotBoundProbe)

        registrations = [(token, registration) for token, bindings in captured.items() for registration in bindings]
        logger.debug("Captured %d binding(s) for %d service type(s)", len(registrations), len(captured))
        return registrations

    def resolve_scope(self, binding: Registration, context: ResolutionContext) -> Any:
        try:
            return binding.get_scope(context)
        except Exception as e:
            msg = f"Cannot determine the scope of a binding to {binding.impl or binding.factory!r}: {e}"
            raise IntrospectionError(msg) from e

    def constructor_dependency_types(self, service_type: Any, binding: Registration) -> list[Any]:
        if binding.impl is None:
            return []

        try:
            plan = self._planner.get_plan(binding.impl)
        except PlanningError as e:
            msg = f"Cannot determine constructor dependencies of {service_type!r}: {e}"
            raise IntrospectionError(msg) from e

        return plan.dependency_types()

    def default_scope(self, context: ResolutionContext) -> Any:
        return self._container.default_scope(context)
