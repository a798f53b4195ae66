from __future__ import annotations

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from collections.abc import Sequence

    from ._validation import Violation


class ResolutionError(RuntimeError):
    """Raised when the container cannot satisfy a resolution."""


class PlanningError(ResolutionError):
    """Raised when no construction plan can be produced for a type."""


class ScopeValidationError(RuntimeError):
    """Base class for scope validation failures."""


class IntrospectionError(ScopeValidationError):
    """The container could not describe a registered, non-ignored service."""


class ScopeViolationError(ScopeValidationError):
    """One or more services depend on dependencies with an invalid scope.

    All violations found in a validation run are carried together in
    ``violations`` (in discovery order); the message lists one per line.
    """

    def __init__(self, violations: Sequence[Violation]) -> None:
        self.violations = tuple(violations)
        super().__init__(_build_message(self.violations))


def _build_message(violations: Sequence[Violation]) -> str:
    lines = ["Combination of service and dependency scope is not valid"]
    lines.extend(violation.describe() for violation in violations)
    return "\n".join(lines)
