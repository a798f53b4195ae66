from __future__ import annotations

import inspect
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar, overload

from ._errors import ResolutionError
from ._planning import deferred_factory_target, get_resolvable_type_hints, is_injectable_type, is_protocol


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    T = TypeVar("T")

    Token = type[T] | str
    ScopeCallback = Callable[["ResolutionContext"], Any]
    BindingResolver = Callable[[Mapping[Any, Sequence["Registration"]], Any], Sequence["Registration"]]


class Lifetime(Enum):
    SINGLETON = "singleton"
    SCOPED = "scoped"
    TRANSIENT = "transient"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ResolutionContext:
    """Passed to scope callbacks: the container asking and the token being asked for."""

    container: Container
    token: Any


@dataclass
class Registration:
    factory: Callable[..., object] | None
    impl: type | None
    lifetime: Any
    cached_instance: object | None = None  # cached singleton
    scope_callback: ScopeCallback | None = None
    implicit: bool = False  # auto-wired or synthesized by the container itself

    def get_scope(self, context: ResolutionContext) -> Any:
        if self.scope_callback is not None:
            return self.scope_callback(context)
        return self.lifetime


def registered_bindings(bindings: Mapping[Any, Sequence[Registration]], token: Any) -> list[Registration]:
    """Standard binding resolver: whatever was recorded for the token, parent bindings first."""
    return list(bindings.get(token, ()))


class Container:
    """Constructor-injection container.

    - register types or factories
    - resolve with constructor injection
    - lifetimes: singleton / scoped / transient, or any custom scope token
    - optional scoping
    - pluggable binding resolvers.
    """

    def __init__(self, *, default_scope: ScopeCallback | None = None) -> None:
        self._registrations: dict[Any, Registration] = {}
        self._scoped_instances: dict[Any, object] = {}
        self._binding_resolvers: list[BindingResolver] = [registered_bindings]
        self._default_scope = default_scope
        self._lock = threading.RLock()

        # The container can always be injected into the services it builds.
        self._registrations[Container] = Registration(
            factory=None,
            impl=None,
            lifetime=Lifetime.SINGLETON,
            cached_instance=self,
            implicit=True,
        )

    def register(
        self,
        token: Token[T],
        impl: type | None = None,
        *,
        factory: Callable[..., Any] | None = None,
        lifetime: Any = Lifetime.SINGLETON,
        scope_callback: ScopeCallback | None = None,
    ) -> None:
        """Register a concrete type or a factory for a token.

        Example:
          container.register(IFoo, FooImpl)
          container.register("db", factory=create_db, lifetime=Lifetime.SINGLETON)
          container.register(Session, lifetime=Lifetime.SCOPED, impl=DbSession)

        ``lifetime`` may be any scope token; ``None`` behaves as transient.
        ``scope_callback`` computes the scope from a ``ResolutionContext`` and
        takes precedence over ``lifetime`` when bindings are inspected.
        """
        if impl is not None and factory is not None:
            msg = "Provide either `impl` or `factory`, not both."
            raise ValueError(msg)

        if impl is None and factory is None:
            msg = "Either `impl` or `factory` must be provided."
            raise ValueError(msg)

        if impl is not None and inspect.isclass(token):
            self._validate_impl(cls=token, impl=impl)

        with self._lock:
            self._registrations[token] = Registration(
                factory=factory,
                impl=impl,
                lifetime=lifetime,
                scope_callback=scope_callback,
            )
            self._scoped_instances.pop(token, None)

        logger.debug("Registered %r with lifetime %s", token, lifetime)

    def register_instance(
        self,
        token: Token[T],
        instance: object,
        *,
        replace: bool = False,
    ) -> None:
        """Register a pre-built instance (always singleton)."""
        # Non-type tokens (like strings): cannot validate statically.
        if inspect.isclass(token):
            self._check_instance(token, instance)

        with self._lock:
            existing = self._registrations.get(token)
            if existing is not None and not existing.implicit and not replace:
                msg = f"Token {token!r} is already registered. Pass replace=True to overwrite."
                raise KeyError(msg)
            self._registrations[token] = Registration(
                factory=None,
                impl=None,
                lifetime=Lifetime.SINGLETON,
                cached_instance=instance,
            )

    def add_binding_resolver(self, resolver: BindingResolver) -> None:
        with self._lock:
            self._binding_resolvers.append(resolver)

    def remove_binding_resolver(self, resolver: BindingResolver) -> None:
        with self._lock:
            self._binding_resolvers.remove(resolver)

    def bindings_for(self, token: Any) -> list[Registration]:
        """Ask every binding resolver which registrations apply to ``token``.

        Resolvers receive the full binding multimap visible from this container
        (parent bindings before this container's own) and the requested token.
        """
        with self._lock:
            bindings = self._binding_multimap()
            resolvers = list(self._binding_resolvers)

        return [registration for resolver in resolvers for registration in resolver(bindings, token)]

    def is_registered(self, token: Any) -> bool:
        return bool(self.bindings_for(token))

    def default_scope(self, context: ResolutionContext) -> Any:
        """Scope given to auto-wired types; None when no default is configured."""
        if self._default_scope is None:
            return None
        return self._default_scope(context)

    @overload
    def resolve(self, token: type[T], **overrides: Any) -> T: ...

    @overload
    def resolve(self, token: str, **overrides: Any) -> object: ...

    def resolve(self, token: Token[T], **overrides: Any) -> object:
        """Resolve the token to an instance.

        - If a registration exists: use it (factory/impl/instance).
        - If no registration and token is a concrete class: auto-wire it by type hints
          and record it as an implicit binding carrying the default scope.
        `overrides` lets you explicitly supply constructor args.
        """
        with self._lock:
            reg = self._lookup(token)
            implicit = reg is None

            if reg is None:
                if not inspect.isclass(token):
                    msg = f"No registration found for token: {token!r}"
                    raise KeyError(msg)
                reg = Registration(
                    factory=None,
                    impl=token,
                    lifetime=self.default_scope(ResolutionContext(container=self, token=token)),
                    implicit=True,
                )

            if reg.lifetime is Lifetime.SINGLETON and reg.cached_instance is not None:
                return reg.cached_instance

            if reg.lifetime is Lifetime.SCOPED and token in self._scoped_instances:
                return self._scoped_instances[token]

            if reg.factory:
                instance = reg.factory(self, **overrides)
                self._check_instance(token, instance)
            elif reg.impl:
                instance = self._construct(reg.impl, **overrides)
            else:
                instance = reg.cached_instance

            if implicit:
                self._registrations[token] = reg
                logger.debug("Auto-wired %r with default scope %s", token, reg.lifetime)

            if reg.lifetime is Lifetime.SINGLETON:
                reg.cached_instance = instance
            elif reg.lifetime is Lifetime.SCOPED:
                self._scoped_instances[token] = instance

            return instance

    def resolve_param(
        self,
        cls: type[T],
        name: str,
        p: inspect.Parameter,
        bound: inspect.BoundArguments,
        hints: dict[str, Any],
    ) -> Any:
        """Resolving param.

        Resolution precedence:
        1. explicit override
        2. type-based registration
        3. deferred factory (``Callable[[], X]``)
        4. name-based registration
        5. default
        6. error.
        """
        # Skip var-positional/var-keyword here; filled only by explicit extras
        if p.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            return inspect.Signature.empty

        if name in bound.arguments:
            return bound.arguments[name]

        ann = hints.get(name, inspect.Signature.empty)
        if ann is not inspect.Signature.empty:
            if self.is_registered(ann) or is_injectable_type(ann):
                try:
                    return self.resolve(ann)
                except KeyError:
                    if self.is_registered(name):
                        return self.resolve(name)

            if deferred_factory_target(ann) is not None:
                return self._deferred_factory(ann)

        if self.is_registered(name):
            return self.resolve(name)

        if p.default is not inspect.Parameter.empty:
            return p.default

        ann_repr = getattr(ann, "__name__", repr(ann)) if ann is not inspect.Signature.empty else "no-annotation"
        msg = (
            f"Cannot satisfy constructor parameter '{name}' for {cls.__name__}'. "
            f"No override/registration/default found (annotation: {ann_repr})."
        )
        raise ResolutionError(msg)

    def create_scope(self) -> Scope:
        """Create a scope that prefers its own registrations/instances, falls back to parent."""
        return Scope(self, _from_parent=True)

    def _lookup(self, token: Any) -> Registration | None:
        bindings = self.bindings_for(token)
        return bindings[-1] if bindings else None

    def _binding_multimap(self) -> dict[Any, list[Registration]]:
        with self._lock:
            return {token: [reg] for token, reg in self._registrations.items()}

    def _deferred_factory(self, ann: Any) -> Any:
        """Synthesize a transient binding producing ``lambda: container.resolve(X)``."""
        target = deferred_factory_target(ann)
        with self._lock:
            if ann not in self._registrations:
                self._registrations[ann] = Registration(
                    factory=lambda c: lambda: c.resolve(target),
                    impl=None,
                    lifetime=Lifetime.TRANSIENT,
                    implicit=True,
                )
                logger.debug("Synthesized deferred factory binding for %r", ann)

        return self.resolve(ann)

    def _construct(self, cls: type[T], **overrides: Any) -> T:
        return Constructor(self).construct(cls, **overrides)

    def _check_instance(self, token: Any, instance: object) -> None:
        if not inspect.isclass(token):
            return

        if is_protocol(token):
            if _is_runtime_checkable(token) and not isinstance(instance, token):
                msg = f"Resolved instance {type(instance).__name__} does not implement runtime protocol {token.__name__}"
                raise TypeError(msg)
            return

        if not isinstance(instance, token):
            msg = f"Resolved instance {type(instance).__name__} is not an instance of {token.__name__}"
            raise TypeError(msg)

    def _validate_impl(self, cls: type, impl: type) -> None:
        """Validate that 'impl' implements 'cls'.

        Normal classes and ABCs require issubclass(impl, cls). Protocol tokens
        are only checked nominally when runtime-checkable.
        """
        if is_protocol(cls):
            if _is_runtime_checkable(cls) and cls not in getattr(impl, "__mro__", ()):
                missing = [name for name in _protocol_members(cls) if not hasattr(impl, name)]
                if missing:
                    msg = f"Implementation {impl.__name__} is missing members of {cls.__name__}: {', '.join(missing)}"
                    raise TypeError(msg)
            return

        if not issubclass(impl, cls):
            msg = f"Implementation {impl.__name__} must be a subclass of {cls.__name__}"
            raise TypeError(msg)


class Scope(Container):
    """A scoped container that looks up in itself first, then falls back to a parent container.

    ``Lifetime.SCOPED`` registrations inherited from the parent are built and cached
    once per scope. Useful for per-request/per-test lifetimes without altering root
    registrations.
    """

    def __init__(self, parent: Container, *, _from_parent: bool = False) -> None:
        if not _from_parent:
            msg = "Scope instances must be created via Container.create_scope()"
            raise RuntimeError(msg)
        super().__init__(default_scope=parent.default_scope)
        self._parent = parent

    @overload
    def resolve(self, token: type[T], **overrides: Any) -> T: ...

    @overload
    def resolve(self, token: str, **overrides: Any) -> object: ...

    def resolve(self, token: Token[T], **overrides: Any) -> object:
        """Resolve the token to an instance.

        Resolves the token using registrations in this scope. If the token is not
        registered locally, resolution falls back to the parent container, except for
        scoped registrations which always get an instance owned by this scope.
        """
        with self._lock:
            if token in self._registrations:
                return super().resolve(token, **overrides)

            reg = self._lookup(token)
            if reg is not None and reg.lifetime is Lifetime.SCOPED:
                return super().resolve(token, **overrides)

        # Fallback to parent
        return self._parent.resolve(token, **overrides)

    def _binding_multimap(self) -> dict[Any, list[Registration]]:
        bindings = self._parent._binding_multimap()  # noqa: SLF001
        with self._lock:
            for token, reg in self._registrations.items():
                bindings.setdefault(token, []).append(reg)
        return bindings


class Constructor:
    def __init__(self, resolver: Container) -> None:
        self._resolver = resolver

    def construct(self, cls: type[T], **overrides: Any) -> T:
        if cls.__init__ is object.__init__:  # type: ignore[misc]
            return cls()

        sig = inspect.signature(cls)
        overrides.pop("self", None)  # never allow passing 'self'

        pos_only = {name for name, p in sig.parameters.items() if p.kind is inspect.Parameter.POSITIONAL_ONLY}
        bound = self._bind_explicit(sig, {k: v for k, v in overrides.items() if k not in pos_only}, cls)
        for name in pos_only & overrides.keys():
            bound.arguments[name] = overrides[name]

        hints = get_resolvable_type_hints(cls)
        for name, p in sig.parameters.items():
            if p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD) or name in bound.arguments:
                continue
            bound.arguments[name] = self._resolver.resolve_param(cls, name, p, bound, hints)

        return cls(*bound.args, **bound.kwargs)

    def _bind_explicit(self, sig: inspect.Signature, kw: dict[str, Any], cls: type[T]) -> inspect.BoundArguments:
        try:
            return sig.bind_partial(**kw)
        except TypeError as e:
            msg = f"Overrides don't match {cls.__name__} signature: {e}"
            raise TypeError(msg) from e


def _is_runtime_checkable(tp: type) -> bool:
    return bool(getattr(tp, "_is_runtime_protocol", False))


def _protocol_members(proto_cls: type) -> list[str]:
    return [
        name
        for name, attr in proto_cls.__dict__.items()
        if not name.startswith("_") and inspect.isfunction(attr)
    ]
