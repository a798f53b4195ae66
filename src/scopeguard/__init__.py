"""Captive dependency validation for dependency injection containers.

A service registered with a long lifetime that receives a shorter-lived
dependency keeps that one instance alive for its own lifetime. This package
inspects a fully configured container and reports every such pair at once.

Exports:
- `ScopeValidator` / `validate_scopes`: run the check with a caller-supplied
  predicate deciding which (service scope, dependency scope) pairs are invalid.
- `forbid_scopes`: helper building such a predicate.
- `ScopeViolationError`: raised with the full list of `Violation` records.
- `IntrospectionProvider`: protocol to plug in other containers;
  `ContainerIntrospector` implements it for the bundled `Container`.
- `Container`, `Scope`, `Lifetime`: the bundled constructor-injection container.
"""

from ._container import Container, Lifetime, Registration, ResolutionContext, Scope
from ._errors import (
    IntrospectionError,
    PlanningError,
    ResolutionError,
    ScopeValidationError,
    ScopeViolationError,
)
from ._introspection import ContainerIntrospector, IntrospectionProvider
from ._planning import Plan, Planner
from ._validation import (
    RegisteredService,
    ScopeValidator,
    Violation,
    build_dependency_map,
    forbid_scopes,
    is_ignored_service_type,
    scan_violations,
    validate_scopes,
)


__all__ = [
    "Container",
    "ContainerIntrospector",
    "IntrospectionError",
    "IntrospectionProvider",
    "Lifetime",
    "Plan",
    "Planner",
    "PlanningError",
    "RegisteredService",
    "Registration",
    "ResolutionContext",
    "ResolutionError",
    "Scope",
    "ScopeValidationError",
    "ScopeValidator",
    "ScopeViolationError",
    "Violation",
    "build_dependency_map",
    "forbid_scopes",
    "is_ignored_service_type",
    "scan_violations",
    "validate_scopes",
]
