import unittest
from collections.abc import Callable

import pytest

from scopeguard import (
    Container,
    IntrospectionError,
    Lifetime,
    RegisteredService,
    ScopeValidator,
    ScopeViolationError,
    Violation,
    build_dependency_map,
    forbid_scopes,
    is_ignored_service_type,
    scan_violations,
    validate_scopes,
)


SINGLETON = "singleton"
REQUEST = "request"


def singleton_on_transient(service_scope, dependency_scope):
    return service_scope == SINGLETON and dependency_scope is None


class A: ...


class B: ...


class C: ...


class D: ...


class E: ...


class StubProvider:
    """IntrospectionProvider over plain data: {type: [(scope, [dependency types])]}."""

    def __init__(self, registrations, default_scope=None, failing=()):
        self.registrations = registrations
        self._default_scope = default_scope
        self.failing = set(failing)
        self.planned = []

    def create_context(self):
        return "context"

    def enumerate_registrations(self, context):
        assert context == "context"
        return [(service_type, binding) for service_type, bindings in self.registrations.items() for binding in bindings]

    def resolve_scope(self, binding, context):
        assert context == "context"
        return binding[0]

    def constructor_dependency_types(self, service_type, binding):
        self.planned.append(service_type)
        if service_type in self.failing:
            msg = f"no plan for {service_type!r}"
            raise IntrospectionError(msg)
        return list(binding[1])

    def default_scope(self, context):
        assert context == "context"
        return self._default_scope


class TestScopeValidatorScenarios(unittest.TestCase):
    def test_singleton_depending_on_transient_fails_with_one_violation(self):
        provider = StubProvider({A: [(SINGLETON, [B])], B: [(None, [])]})

        with pytest.raises(ScopeViolationError) as ctx:
            ScopeValidator(provider, singleton_on_transient).validate()

        assert ctx.value.violations == (Violation(A, B, SINGLETON, None),)

    def test_singleton_depending_on_singleton_succeeds(self):
        provider = StubProvider({A: [(SINGLETON, [C])], C: [(SINGLETON, [])]})

        ScopeValidator(provider, singleton_on_transient).validate()

    def test_unregistered_dependency_is_scored_with_default_scope(self):
        provider = StubProvider({D: [(SINGLETON, [E])]}, default_scope=None)

        with pytest.raises(ScopeViolationError) as ctx:
            ScopeValidator(provider, singleton_on_transient).validate()

        assert ctx.value.violations == (Violation(D, E, SINGLETON, None),)

    def test_unregistered_dependency_with_compatible_default_scope_succeeds(self):
        provider = StubProvider({D: [(SINGLETON, [E])]}, default_scope=SINGLETON)

        ScopeValidator(provider, singleton_on_transient).validate()

    def test_empty_container_succeeds(self):
        ScopeValidator(StubProvider({}), lambda s, d: True).validate()

    def test_every_flagged_edge_is_reported_exactly_once(self):
        provider = StubProvider(
            {
                A: [(SINGLETON, [B, C, E])],
                B: [(REQUEST, [])],
                C: [(REQUEST, [B])],
                D: [(REQUEST, [B])],
            },
            default_scope=REQUEST,
        )

        violations = ScopeValidator(provider, forbid_scopes([SINGLETON], [REQUEST])).find_violations()

        assert violations == [
            Violation(A, B, SINGLETON, REQUEST),
            Violation(A, C, SINGLETON, REQUEST),
            Violation(A, E, SINGLETON, REQUEST),
        ]

    def test_scan_is_not_transitive(self):
        # A -> C -> B: only the direct edge C -> B is inspected for C.
        provider = StubProvider({A: [(SINGLETON, [C])], C: [(SINGLETON, [B])], B: [(REQUEST, [])]})

        violations = ScopeValidator(provider, forbid_scopes([SINGLETON], [REQUEST])).find_violations()

        assert violations == [Violation(C, B, SINGLETON, REQUEST)]

    def test_validate_twice_yields_identical_violations(self):
        provider = StubProvider({A: [(SINGLETON, [B, D])], B: [(None, [])], D: [(None, [])]})
        validator = ScopeValidator(provider, singleton_on_transient)

        first = validator.find_violations()
        second = validator.find_violations()

        assert first == second
        assert len(first) == 2

    def test_predicate_receives_service_scope_then_dependency_scope(self):
        calls = []
        provider = StubProvider({A: [(SINGLETON, [B])], B: [(REQUEST, [])]})

        def predicate(service_scope, dependency_scope):
            calls.append((service_scope, dependency_scope))
            return False

        validate_scopes(provider, predicate)

        assert calls == [(SINGLETON, REQUEST)]

    def test_introspection_failure_propagates(self):
        provider = StubProvider({A: [(SINGLETON, [])], B: [(None, [])]}, failing=[B])

        with pytest.raises(IntrospectionError):
            ScopeValidator(provider, lambda s, d: False).validate()


class TestViolationReport(unittest.TestCase):
    def test_message_lists_summary_then_one_line_per_violation(self):
        error = ScopeViolationError(
            [
                Violation(A, B, SINGLETON, None),
                Violation("repo", "db", None, Lifetime.SCOPED),
            ]
        )

        lines = str(error).splitlines()

        assert lines == [
            "Combination of service and dependency scope is not valid",
            f"Service {A.__module__}.A with scope singleton depends on {B.__module__}.B with scope transient",
            "Service repo with scope transient depends on db with scope scoped",
        ]

    def test_error_carries_structured_violations(self):
        violation = Violation(A, B, SINGLETON, None)
        error = ScopeViolationError([violation])

        assert error.violations[0].service_type is A
        assert error.violations[0].dependency_type is B
        assert error.violations[0].service_scope == SINGLETON
        assert error.violations[0].dependency_scope is None


class TestDependencyMapBuilder(unittest.TestCase):
    def test_last_binding_for_a_type_wins(self):
        provider = StubProvider({A: [(SINGLETON, [B]), (REQUEST, [C])]})

        registered = build_dependency_map(provider, "context")

        assert registered == {A: RegisteredService(scope=REQUEST, dependency_types=(C,))}

    def test_dependency_types_are_distinct(self):
        class ListingProvider(StubProvider):
            def constructor_dependency_types(self, service_type, binding):
                return [B, C, B]

        registered = build_dependency_map(ListingProvider({A: [(SINGLETON, [])]}), "context")

        assert registered[A].dependency_types == (B, C)

    def test_deferred_factory_types_are_never_keys_nor_planned(self):
        factory_type = Callable[[], B]
        provider = StubProvider({A: [(SINGLETON, [factory_type, C])], factory_type: [(None, [D])]})

        registered = build_dependency_map(provider, "context")

        assert factory_type not in registered
        assert factory_type not in provider.planned
        assert registered[A].dependency_types == (C,)

    def test_callables_taking_arguments_are_registered_services(self):
        handler_type = Callable[[A], B]
        provider = StubProvider({C: [(SINGLETON, [handler_type])], handler_type: [(REQUEST, [])]})

        registered = build_dependency_map(provider, "context")

        assert registered[handler_type] == RegisteredService(scope=REQUEST, dependency_types=())
        assert registered[C].dependency_types == (handler_type,)

    def test_ignored_prefix_excludes_matching_types(self):
        provider = StubProvider({"legacy.Thing": [(SINGLETON, [B])], A: [(SINGLETON, [])]})

        registered = build_dependency_map(provider, "context", ignored_prefixes=["legacy."])

        assert list(registered) == [A]

    def test_ignored_type_failing_to_plan_does_not_abort(self):
        factory_type = Callable[[], B]
        provider = StubProvider({factory_type: [(None, [])]}, failing=[factory_type])

        assert build_dependency_map(provider, "context") == {}


class TestScanViolations(unittest.TestCase):
    def test_default_scope_is_only_consulted_for_unregistered_dependencies(self):
        consulted = []

        def default_scope():
            consulted.append(True)
            return None

        registered = {
            A: RegisteredService(scope=SINGLETON, dependency_types=(B, E)),
            B: RegisteredService(scope=SINGLETON, dependency_types=()),
        }

        violations = scan_violations(registered, singleton_on_transient, default_scope)

        assert violations == [Violation(A, E, SINGLETON, None)]
        assert len(consulted) == 1

    def test_scan_does_not_mutate_the_map(self):
        registered = {A: RegisteredService(scope=SINGLETON, dependency_types=(E,))}
        snapshot = dict(registered)

        scan_violations(registered, lambda s, d: True, lambda: None)

        assert registered == snapshot


def test_is_ignored_service_type():
    assert is_ignored_service_type(Callable[[], A])
    assert not is_ignored_service_type(Callable[[A], B])
    assert not is_ignored_service_type(A)
    assert not is_ignored_service_type("db")
    assert is_ignored_service_type(A, ignored_prefixes=[A.__module__])


def test_forbid_scopes_predicate():
    predicate = forbid_scopes([Lifetime.SINGLETON], [Lifetime.SCOPED, None])

    assert predicate(Lifetime.SINGLETON, Lifetime.SCOPED)
    assert predicate(Lifetime.SINGLETON, None)
    assert not predicate(Lifetime.SINGLETON, Lifetime.SINGLETON)
    assert not predicate(Lifetime.SCOPED, None)


def test_validator_wraps_container_in_introspector():
    c = Container()

    class Clock: ...

    class Cache:
        def __init__(self, clock: Clock):
            self.clock = clock

    c.register(Cache, Cache, lifetime=Lifetime.SINGLETON)
    c.register(Clock, Clock, lifetime=Lifetime.TRANSIENT)

    with pytest.raises(ScopeViolationError) as ctx:
        validate_scopes(c, forbid_scopes([Lifetime.SINGLETON], [Lifetime.TRANSIENT]))

    assert ctx.value.violations == (Violation(Cache, Clock, Lifetime.SINGLETON, Lifetime.TRANSIENT),)
