"""Pytest configuration and fixtures."""

import asyncio
import json

import pytest

from compositor.graph import GraphBuilder
from compositor.models import (
    Compatibility,
    ComponentDescriptor,
    ComponentKey,
    ComponentKind,
    Dependency,
    ProduceOutcome,
    ResolutionContext,
)
from compositor.planner import Planner
from compositor.store import InMemoryComponentStore


class RecordingProducer:
    """Artifact producer double that records calls and can fail on demand."""

    def __init__(self, failures=(), raises=(), delays=None):
        self.failures = set(failures)
        self.raises = set(raises)
        self.delays = delays or {}
        self.calls = []
        self.finished = []
        self.active = 0
        self.max_active = 0

    async def produce(self, descriptor, context, dry_run):
        key = descriptor.key
        self.calls.append(key)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delays.get(key, 0))
        finally:
            self.active -= 1
        self.finished.append(key)

        if key in self.raises:
            raise RuntimeError(f"{key.provider} exploded")
        if key in self.failures:
            return ProduceOutcome(success=False, error="template missing")
        return ProduceOutcome(
            success=True,
            files_affected=[f"{key.type}/{key.provider}.txt"],
            dependencies_added=[f"{key.provider}@{descriptor.version}"],
        )


def make_descriptor(
    type_,
    provider,
    version="1.0.0",
    kind=ComponentKind.SERVICE,
    requires=(),
    conflicts=(),
    **kwargs,
):
    """Build a descriptor; ``requires`` accepts keys or Dependency objects."""
    return ComponentDescriptor(
        key=ComponentKey(kind, type_, provider),
        version=version,
        requires=tuple(
            dep if isinstance(dep, Dependency) else Dependency(dep) for dep in requires
        ),
        conflicts=tuple(conflicts),
        **kwargs,
    )


@pytest.fixture
def descriptor():
    """Factory for component descriptors."""
    return make_descriptor


@pytest.fixture
def store_of():
    """Factory building an in-memory store from descriptors."""
    def build(*descriptors):
        return InMemoryComponentStore(descriptors)
    return build


@pytest.fixture
def context():
    """A typical web resolution context."""
    return ResolutionContext(
        framework="next",
        platform="vercel",
        context="web",
        environment="production",
        region="norway",
    )


@pytest.fixture
def producer():
    """A producer that succeeds for every component."""
    return RecordingProducer()


@pytest.fixture
def producer_factory():
    """Factory for producers with scripted failures and delays."""
    return RecordingProducer


@pytest.fixture
def plan_for():
    """Build and plan a selection against a store in one step."""
    def build(store, selection, optional=(), context=None):
        graph, _ = GraphBuilder(store).build(selection, optional, context or ResolutionContext())
        plan, _ = Planner().plan(graph)
        return plan
    return build


@pytest.fixture
def auth_catalog():
    """Catalog entries for an auth service that needs a database."""
    return [
        {
            "kind": "service",
            "type": "auth",
            "provider": "better-auth",
            "version": "1.2.0",
            "requires": [{"type": "database", "provider": "postgresql", "version": "^16.0.0"}],
            "compatibility": {"frameworks": ["next", "remix"]},
            "config": {"session_ttl": 3600},
            "env_vars": ["AUTH_SECRET"],
            "payload": {
                "files": {"lib/auth.ts": "export const auth = {};"},
                "dependencies": {"better-auth": "1.2.0"},
            },
        },
        {
            "kind": "service",
            "type": "database",
            "provider": "postgresql",
            "version": "16.2.0",
            "env_vars": ["DATABASE_URL"],
            "payload": {
                "files": {"db/schema.sql": "-- schema"},
                "dependencies": {"pg": "8.11.0"},
            },
        },
        {
            "kind": "service",
            "type": "auth",
            "provider": "clerk",
            "version": "5.0.0",
            "conflicts": ["service:auth:better-auth"],
        },
        {
            "kind": "service",
            "type": "identity",
            "provider": "bankid",
            "version": "2.0.0",
            "condition": {"eq": ["region", "norway"]},
        },
    ]


@pytest.fixture
def catalog_file(tmp_path, auth_catalog):
    """Write the auth catalog to a temporary JSON file."""
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({"components": auth_catalog}))
    return path


@pytest.fixture
def diamond(descriptor):
    """app -> (api, ui) -> core."""
    core = descriptor("core", "base")
    api = descriptor("api", "rest", requires=[core.key])
    ui = descriptor("ui", "react", kind=ComponentKind.FRAGMENT, requires=[core.key])
    app = descriptor("app", "web", kind=ComponentKind.FRAGMENT, requires=[api.key, ui.key])
    return app, api, ui, core


@pytest.fixture
def web_only():
    """Compatibility restricted to web contexts on next."""
    return Compatibility(frameworks=frozenset({"next"}), contexts=frozenset({"web"}))
