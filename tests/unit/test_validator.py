"""Tests for graph validation."""

import pytest

from compositor.graph import GraphBuilder
from compositor.models import (
    Compatibility,
    ComponentKey,
    Dependency,
    DependencyStrategy,
    DiagnosticCode,
    ResolutionContext,
    Severity,
)
from compositor.predicates import Equals
from compositor.validator import Validator


@pytest.fixture
def validate(store_of):
    """Build a graph from descriptors and validate it."""
    def run(*descriptors, selection=None, context=None, **kwargs):
        context = context or ResolutionContext()
        selection = selection or [descriptors[0].key]
        graph, _ = GraphBuilder(store_of(*descriptors)).build(selection, (), context)
        return Validator(**kwargs).validate(graph, context)
    return run


class TestCompatibility:
    """Test framework, platform and context checks."""

    def test_mismatch_is_warning_by_default(self, descriptor, validate, web_only):
        auth = descriptor("auth", "x", compatibility=web_only)
        diagnostics = validate(auth, context=ResolutionContext(framework="remix"))

        assert [(d.severity, d.code) for d in diagnostics] == [
            (Severity.WARNING, DiagnosticCode.FRAMEWORK_INCOMPATIBLE)
        ]

    def test_mismatch_is_error_when_strict(self, descriptor, validate, web_only):
        auth = descriptor("auth", "x", compatibility=web_only)
        diagnostics = validate(
            auth,
            context=ResolutionContext(framework="remix", context="native"),
            strict_compatibility=True,
        )

        assert [(d.severity, d.code) for d in diagnostics] == [
            (Severity.ERROR, DiagnosticCode.FRAMEWORK_INCOMPATIBLE),
            (Severity.ERROR, DiagnosticCode.CONTEXT_INCOMPATIBLE),
        ]

    def test_empty_set_means_any(self, descriptor, validate):
        auth = descriptor("auth", "x", compatibility=Compatibility())
        assert validate(auth, context=ResolutionContext(framework="remix", platform="fly")) == []

    def test_unset_context_field_passes(self, descriptor, validate, web_only):
        auth = descriptor("auth", "x", compatibility=web_only)
        assert validate(auth) == []

    def test_platform_mismatch(self, descriptor, validate):
        auth = descriptor("auth", "x", compatibility=Compatibility(platforms=frozenset({"vercel"})))
        diagnostics = validate(auth, context=ResolutionContext(platform="fly"))
        assert diagnostics[0].code is DiagnosticCode.PLATFORM_INCOMPATIBLE

    def test_checks_disabled(self, descriptor, validate, web_only):
        auth = descriptor("auth", "x", compatibility=web_only)
        diagnostics = validate(
            auth,
            context=ResolutionContext(framework="remix"),
            enable_compatibility_checks=False,
        )
        assert diagnostics == []


class TestConflicts:
    """Test pairwise conflict detection."""

    def test_conflict_reported_once_per_pair(self, descriptor, validate):
        """Should report one diagnostic even when both sides declare the conflict."""
        clerk_key = ComponentKey.service("auth", "clerk")
        better = descriptor("auth", "better-auth", conflicts=[clerk_key])
        clerk = descriptor("auth", "clerk", conflicts=[better.key])
        diagnostics = validate(better, clerk, selection=[better.key, clerk.key])

        assert [(d.severity, d.code) for d in diagnostics] == [
            (Severity.ERROR, DiagnosticCode.COMPONENT_CONFLICT)
        ]
        assert diagnostics[0].affected_keys == (better.key, clerk_key)

    def test_one_sided_conflict(self, descriptor, validate):
        better = descriptor("auth", "better-auth")
        clerk = descriptor("auth", "clerk", conflicts=[better.key])
        diagnostics = validate(better, clerk, selection=[better.key, clerk.key])
        assert [d.code for d in diagnostics] == [DiagnosticCode.COMPONENT_CONFLICT]

    def test_conflict_with_absent_component(self, descriptor, validate):
        better = descriptor("auth", "better-auth", conflicts=[ComponentKey.service("auth", "clerk")])
        assert validate(better) == []


class TestVersions:
    """Test version requirement checks."""

    @pytest.mark.parametrize(
        "requirement,ok",
        [("^16.0.0", True), ("~16.2.0", True), ("16.2.0", True), ("^15.0.0", False), ("16.1.0", False)],
    )
    def test_requirement(self, descriptor, validate, requirement, ok):
        pg = descriptor("database", "postgresql", "16.2.0")
        auth = descriptor("auth", "x", requires=[Dependency(pg.key, requirement)])
        diagnostics = validate(auth, pg)

        if ok:
            assert diagnostics == []
        else:
            assert [(d.severity, d.code) for d in diagnostics] == [
                (Severity.ERROR, DiagnosticCode.VERSION_INCOMPATIBLE)
            ]
            assert "16.2.0" in diagnostics[0].message

    def test_version_checks_disabled(self, descriptor, validate):
        pg = descriptor("database", "postgresql", "16.2.0")
        auth = descriptor("auth", "x", requires=[Dependency(pg.key, "^15.0.0")])
        assert validate(auth, pg, enable_version_checks=False) == []

    def test_malformed_version(self, descriptor, validate):
        auth = descriptor("auth", "x", "not-a-version")
        diagnostics = validate(auth)
        assert [(d.severity, d.code) for d in diagnostics] == [
            (Severity.ERROR, DiagnosticCode.MALFORMED_DESCRIPTOR)
        ]

    def test_malformed_requirement(self, descriptor, validate):
        pg = descriptor("database", "postgresql", "16.2.0")
        auth = descriptor("auth", "x", requires=[Dependency(pg.key, "^banana")])
        diagnostics = validate(auth, pg)
        assert [d.code for d in diagnostics] == [DiagnosticCode.MALFORMED_DESCRIPTOR]


class TestUnresolvedDependencies:
    """Test required edges whose target never made it into the graph."""

    def test_skipped_target_strict(self, descriptor, validate):
        bankid = descriptor("identity", "bankid", condition=Equals("region", "norway"))
        login = descriptor("login", "page", requires=[bankid.key])
        diagnostics = validate(login, bankid, context=ResolutionContext(region="sweden"))

        assert [(d.severity, d.code) for d in diagnostics] == [
            (Severity.ERROR, DiagnosticCode.UNRESOLVED_REQUIRED_DEPENDENCY)
        ]

    def test_skipped_target_lenient(self, descriptor, validate):
        bankid = descriptor("identity", "bankid", condition=Equals("region", "norway"))
        login = descriptor("login", "page", requires=[bankid.key])
        diagnostics = validate(
            login,
            bankid,
            context=ResolutionContext(region="sweden"),
            strategy=DependencyStrategy.LENIENT,
        )
        assert diagnostics[0].severity is Severity.WARNING

    def test_missing_target_not_reported_again(self, descriptor, validate):
        login = descriptor("login", "page", requires=[ComponentKey.service("identity", "bankid")])
        assert validate(login) == []


def test_validation_does_not_modify_graph(descriptor, store_of):
    pg = descriptor("database", "postgresql", "16.2.0")
    auth = descriptor("auth", "x", requires=[Dependency(pg.key, "^15.0.0")])
    context = ResolutionContext()
    graph, _ = GraphBuilder(store_of(auth, pg)).build([auth.key], (), context)
    before = [(node.key, node.required, list(node.resolved_dependencies)) for node in graph.ordered()]

    Validator().validate(graph, context)

    assert [(node.key, node.required, list(node.resolved_dependencies)) for node in graph.ordered()] == before
