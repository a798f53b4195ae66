"""Captive dependency detection.

A captive dependency is a dependency whose lifetime is stretched because a
longer-lived service keeps the single instance it was given. Validation walks
every registered service once, looks at its direct constructor dependencies
and asks a caller-supplied predicate whether the pair of scopes is invalid.
Which scopes outlive which is entirely up to the predicate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ._container import Container
from ._errors import ScopeViolationError
from ._introspection import ContainerIntrospector
from ._planning import is_deferred_factory


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable, Collection, Sequence

    from ._introspection import IntrospectionProvider

    ScopePredicate = Callable[[Any, Any], bool]


TRANSIENT_LABEL = "transient"


@dataclass(frozen=True)
class RegisteredService:
    scope: Any
    dependency_types: tuple[Any, ...]


@dataclass(frozen=True)
class Violation:
    service_type: Any
    dependency_type: Any
    service_scope: Any
    dependency_scope: Any

    def describe(self) -> str:
        return (
            f"Service {describe_service_type(self.service_type)} with scope {describe_scope(self.service_scope)} "
            f"depends on {describe_service_type(self.dependency_type)} with scope {describe_scope(self.dependency_scope)}"
        )


def describe_service_type(service_type: Any) -> str:
    if isinstance(service_type, type):
        return f"{service_type.__module__}.{service_type.__qualname__}"
    return str(service_type)


def describe_scope(scope: Any) -> str:
    return TRANSIENT_LABEL if scope is None else str(scope)


def is_ignored_service_type(service_type: Any, ignored_prefixes: Sequence[str] = ()) -> bool:
    """Deferred factories (``Callable[[], X]``) produce an X on demand; they are not an X.

    Callables that take arguments, such as ``Callable[[Request], Response]``, are
    ordinary shared services and are kept.

    ``ignored_prefixes`` adds name-based conventions, matched against the dotted name.
    """
    if is_deferred_factory(service_type):
        return True

    if ignored_prefixes:
        return describe_service_type(service_type).startswith(tuple(ignored_prefixes))

    return False


def build_dependency_map(
    provider: IntrospectionProvider,
    context: Any,
    *,
    ignored_prefixes: Sequence[str] = (),
) -> dict[Any, RegisteredService]:
    """Map every non-ignored service type to its scope and direct constructor dependencies.

    When a type has several bindings the last one wins. Providers list a child
    scope's bindings after its parent's, so a child override is scored for
    every service that depends on the type, including services the parent
    builds with its own binding. Such reports are conservative.
    """
    registered: dict[Any, RegisteredService] = {}
    ignored: dict[Any, bool] = {}

    def is_ignored(service_type: Any) -> bool:
        if service_type not in ignored:
            ignored[service_type] = is_ignored_service_type(service_type, ignored_prefixes)
            if ignored[service_type]:
                logger.debug("Ignoring %s", describe_service_type(service_type))
        return ignored[service_type]

    for service_type, binding in provider.enumerate_registrations(context):
        if is_ignored(service_type):
            continue

        scope = provider.resolve_scope(binding, context)
        dependency_types = tuple(
            dependency_type
            for dependency_type in dict.fromkeys(provider.constructor_dependency_types(service_type, binding))
            if not is_ignored(dependency_type)
        )

        if service_type in registered:
            logger.debug(
                "Binding for %s with scope %s shadows an earlier binding with scope %s",
                describe_service_type(service_type),
                describe_scope(scope),
                describe_scope(registered[service_type].scope),
            )

        registered[service_type] = RegisteredService(scope=scope, dependency_types=dependency_types)

    return registered


def scan_violations(
    registered: dict[Any, RegisteredService],
    predicate: ScopePredicate,
    default_scope: Callable[[], Any],
) -> list[Violation]:
    """Check every direct (service, dependency) edge; unregistered dependencies get ``default_scope()``."""
    result: list[Violation] = []

    for service_type, service in registered.items():
        for dependency_type in service.dependency_types:
            dependency = registered.get(dependency_type)
            dependency_scope = dependency.scope if dependency is not None else default_scope()

            if predicate(service.scope, dependency_scope):
                result.append(Violation(service_type, dependency_type, service.scope, dependency_scope))

    return result


def forbid_scopes(service_scopes: Collection[Any], dependency_scopes: Collection[Any]) -> ScopePredicate:
    """Build a predicate flagging services in ``service_scopes`` that depend on ``dependency_scopes``.

    Example:
      forbid_scopes([Lifetime.SINGLETON], [Lifetime.SCOPED, Lifetime.TRANSIENT, None])

    """
    service_scopes = tuple(service_scopes)
    dependency_scopes = tuple(dependency_scopes)

    def predicate(service_scope: Any, dependency_scope: Any) -> bool:
        return service_scope in service_scopes and dependency_scope in dependency_scopes

    return predicate


class ScopeValidator:
    """Validate a fully configured container for captive dependencies.

    Run once, after all registrations are complete:

      ScopeValidator(container, forbid_scopes([Lifetime.SINGLETON], [Lifetime.TRANSIENT])).validate()

    ``container`` is either a ``scopeguard.Container`` or any ``IntrospectionProvider``.
    """

    def __init__(
        self,
        container: Container | IntrospectionProvider,
        predicate: ScopePredicate,
        *,
        ignored_prefixes: Sequence[str] = (),
    ) -> None:
        self._provider: IntrospectionProvider = (
            ContainerIntrospector(container) if isinstance(container, Container) else container
        )
        self._predicate = predicate
        self._ignored_prefixes = tuple(ignored_prefixes)

    def find_violations(self) -> list[Violation]:
        context = self._provider.create_context()
        registered = build_dependency_map(self._provider, context, ignored_prefixes=self._ignored_prefixes)
        violations = scan_violations(registered, self._predicate, lambda: self._provider.default_scope(context))

        logger.info("Checked %d service(s), found %d scope violation(s)", len(registered), len(violations))
        return violations

    def validate(self) -> None:
        """Raise ScopeViolationError listing every violation; return silently otherwise."""
        violations = self.find_violations()
        if violations:
            raise ScopeViolationError(violations)


def validate_scopes(
    container: Container | IntrospectionProvider,
    predicate: ScopePredicate,
    *,
    ignored_prefixes: Sequence[str] = (),
) -> None:
    ScopeValidator(container, predicate, ignored_prefixes=ignored_prefixes).validate()
