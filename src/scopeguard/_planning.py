from __future__ import annotations

import collections.abc
import inspect
import logging
import typing
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, get_args, get_origin, get_type_hints

from ._errors import PlanningError


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from ._container import Container


@dataclass(frozen=True)
class Target:
    name: str
    service_type: Any


@dataclass(frozen=True)
class ConstructorInjectionDirective:
    constructor: type
    targets: tuple[Target, ...]


@dataclass(frozen=True)
class Plan:
    type: type
    directives: tuple[ConstructorInjectionDirective, ...]

    def dependency_types(self) -> list[Any]:
        """Distinct service types required by all constructor directives, in parameter order."""
        return list(dict.fromkeys(target.service_type for directive in self.directives for target in directive.targets))


def deferred_factory_target(tp: object) -> Any | None:
    """Return ``X`` for a zero-argument ``Callable[[], X]`` annotation, else None."""
    if get_origin(tp) is not collections.abc.Callable:
        return None

    args = get_args(tp)
    if len(args) != 2 or args[0] != []:  # noqa: PLR2004
        return None

    return args[1]


def is_deferred_factory(tp: object) -> bool:
    return deferred_factory_target(tp) is not None


def is_injectable_type(tp: object) -> bool:
    """Classes outside ``builtins`` are auto-wired; ``int``/``str`` and friends are not."""
    return inspect.isclass(tp) and get_origin(tp) is None and getattr(tp, "__module__", "") != "builtins"


class Planner:
    """Computes constructor injection plans without building anything.

    The plan follows the same precedence the container uses when it resolves a
    constructor parameter:
    1. type-based registration (or an auto-wirable class, or a deferred factory)
    2. name-based registration
    3. default (no dependency)
    4. error.
    """

    def __init__(self, container: Container) -> None:
        self._container = container

    def get_plan(self, cls: type) -> Plan:
        if not inspect.isclass(cls):
            msg = f"Cannot plan construction of {cls!r}: not a class"
            raise PlanningError(msg)

        if cls.__init__ is object.__init__:  # type: ignore[misc]
            return Plan(type=cls, directives=())

        try:
            sig = inspect.signature(cls)
        except (TypeError, ValueError) as e:
            msg = f"Cannot plan construction of {cls.__name__}: no inspectable constructor ({e})"
            raise PlanningError(msg) from e

        hints = _get_init_type_hints(cls)

        targets: list[Target] = []
        for name, p in sig.parameters.items():
            if p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD):
                continue

            service_type = self._target_type(cls, name, p, hints)
            if service_type is not None:
                targets.append(Target(name=name, service_type=service_type))

        logger.debug("Planned %s with %d constructor target(s)", cls.__qualname__, len(targets))
        return Plan(type=cls, directives=(ConstructorInjectionDirective(constructor=cls, targets=tuple(targets)),))

    def _target_type(self, cls: type, name: str, p: inspect.Parameter, hints: dict[str, Any]) -> Any | None:
        ann = hints.get(name, inspect.Signature.empty)
        if ann is not inspect.Signature.empty:  # noqa: SIM102
            if (
                self._container.is_registered(ann)
                or is_injectable_type(ann)
                or deferred_factory_target(ann) is not None
            ):
                return ann

        if self._container.is_registered(name):
            return name

        if p.default is not inspect.Parameter.empty:
            return None

        ann_repr = getattr(ann, "__name__", repr(ann)) if ann is not inspect.Signature.empty else "no-annotation"
        msg = (
            f"Cannot plan constructor parameter '{name}' for {cls.__name__}. "
            f"No registration/default found (annotation: {ann_repr})."
        )
        raise PlanningError(msg)


def _get_init_type_hints(cls: type) -> dict[str, Any]:
    try:
        init = inspect.getattr_static(cls, "__init__")
        hints = get_type_hints(init)
    except TypeError:
        hints = {}
    except NameError as exc:
        msg = f"'{exc.name}' name error retrieving {cls.__name__} ({cls.__qualname__}) type hints"
        raise PlanningError(msg) from exc

    return hints


def get_resolvable_type_hints(cls: type) -> dict[str, Any]:
    """Lenient variant used at resolution time: unresolvable hints are logged and ignored."""
    try:
        return _get_init_type_hints(cls)
    except PlanningError as exc:
        logger.warning("%s", exc)
        return {}


if hasattr(typing, "is_protocol"):
    # https://docs.python.org/3/library/typing.html#typing.is_protocol
    def is_protocol(tp: object) -> bool:
        return inspect.isclass(tp) and typing.is_protocol(tp)

else:

    def is_protocol(tp: object) -> bool:
        """Detect whether 'tp' is a typing.Protocol subclass (safe)."""
        return inspect.isclass(tp) and bool(getattr(tp, "_is_protocol", False))
