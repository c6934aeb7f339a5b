"""Component store interface, in-memory store and catalog loading."""

import json
import logging
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

import httpx
from packaging.version import InvalidVersion
from pydantic import BaseModel, Field, StrictBool, StrictInt, ValidationError

from .errors import CatalogError, MalformedDescriptorError
from .models import (
    DEFAULT_PRIORITY,
    Compatibility,
    ComponentDescriptor,
    ComponentKey,
    ComponentKind,
    Dependency,
)
from .predicates import parse_predicate
from .versions import parse_version

logger = logging.getLogger(__name__)

DescriptorFilter = Callable[[ComponentDescriptor], bool]


class ComponentStore(Protocol):
    """Read-only view of component descriptors used by the graph builder."""

    def get(self, key: ComponentKey, version: str | None = None) -> ComponentDescriptor | None: ...

    def list(self, filter: DescriptorFilter | None = None) -> list[ComponentDescriptor]: ...


def _version_sort_key(descriptor: ComponentDescriptor) -> tuple:
    try:
        return (1, parse_version(descriptor.version))
    except InvalidVersion:
        return (0, descriptor.version)


class InMemoryComponentStore:
    """Component store holding descriptors in memory.

    Several versions of one component may be registered; ``get`` without a
    version serves the highest one.
    """

    def __init__(self, descriptors: Iterable[ComponentDescriptor] = ()):
        self._descriptors: dict[ComponentKey, dict[str, ComponentDescriptor]] = {}
        for descriptor in descriptors:
            self.register(descriptor)

    def register(self, descriptor: ComponentDescriptor) -> None:
        """Add a descriptor.

        Raises:
            MalformedDescriptorError: If the same key and version is already registered.
        """
        versions = self._descriptors.setdefault(descriptor.key, {})
        if descriptor.version in versions:
            raise MalformedDescriptorError(
                f"Duplicate descriptor {descriptor.key}@{descriptor.version}"
            )
        versions[descriptor.version] = descriptor

    def get(self, key: ComponentKey, version: str | None = None) -> ComponentDescriptor | None:
        versions = self._descriptors.get(key)
        if not versions:
            return None
        if version is not None:
            return versions.get(version)
        return max(versions.values(), key=_version_sort_key)

    def list(self, filter: DescriptorFilter | None = None) -> list[ComponentDescriptor]:
        descriptors = [
            descriptor
            for versions in self._descriptors.values()
            for descriptor in versions.values()
        ]
        if filter is None:
            return descriptors
        return [descriptor for descriptor in descriptors if filter(descriptor)]

    def __len__(self) -> int:
        return sum(len(versions) for versions in self._descriptors.values())

    def __contains__(self, key: ComponentKey) -> bool:
        return key in self._descriptors


class _KeyEntry(BaseModel):
    """A component key given as ``key: "kind:type:provider"`` or as separate fields."""

    key: str | None = None
    kind: ComponentKind = ComponentKind.SERVICE
    type: str | None = None
    provider: str | None = None

    def component_key(self) -> ComponentKey:
        if self.key is not None:
            try:
                return ComponentKey.parse(self.key)
            except ValueError as e:
                raise MalformedDescriptorError(str(e)) from e
        if not self.type or not self.provider:
            raise MalformedDescriptorError(
                f"Component key needs 'key' or both 'type' and 'provider', got {self.model_dump()!r}"
            )
        return ComponentKey(self.kind, self.type, self.provider)


class _DependencyEntry(_KeyEntry):
    version: str | None = None
    required: StrictBool = True


class _CompatibilityEntry(BaseModel):
    frameworks: list[str] = Field(default_factory=list)
    platforms: list[str] = Field(default_factory=list)
    contexts: list[str] = Field(default_factory=list)

    model_config = {"extra": "forbid"}


class CatalogEntry(_KeyEntry):
    """Schema of one component in a JSON catalog."""

    version: str = Field(pattern=r"\S")
    requires: list[str | _DependencyEntry] = Field(default_factory=list)
    conflicts: list[str | _KeyEntry] = Field(default_factory=list)
    compatibility: _CompatibilityEntry = Field(default_factory=_CompatibilityEntry)
    condition: dict[str, Any] | None = None
    priority: StrictInt = DEFAULT_PRIORITY
    payload: dict[str, Any] = Field(default_factory=dict)
    description: str = ""
    config: dict[str, Any] = Field(default_factory=dict)
    env_vars: list[str] = Field(default_factory=list)
    estimated_time: float | None = Field(default=None, ge=0)
    post_install_steps: list[str] = Field(default_factory=list)
    verification_steps: list[str] = Field(default_factory=list)


def _entry_key(entry: str | _KeyEntry) -> ComponentKey:
    if isinstance(entry, str):
        return _KeyEntry(key=entry).component_key()
    return entry.component_key()


def _dependency(entry: str | _DependencyEntry) -> Dependency:
    if isinstance(entry, str):
        return Dependency(_entry_key(entry))
    return Dependency(entry.component_key(), entry.version, entry.required)


def descriptor_from_data(data: Any) -> ComponentDescriptor:
    """Build a descriptor from one catalog entry.

    Args:
        data: Mapping with at least ``kind``/``type``/``provider`` (or ``key``)
            and ``version``.

    Returns:
        The parsed descriptor.

    Raises:
        MalformedDescriptorError: If the entry does not match :class:`CatalogEntry`.
    """
    try:
        entry = CatalogEntry.model_validate(data)
    except ValidationError as e:
        raise MalformedDescriptorError(f"Invalid catalog entry: {e}") from e

    key = entry.component_key()
    try:
        requires = tuple(_dependency(dep) for dep in entry.requires)
        conflicts = tuple(_entry_key(other) for other in entry.conflicts)
        condition = parse_predicate(entry.condition) if entry.condition is not None else None
    except (MalformedDescriptorError, ValueError) as e:
        raise MalformedDescriptorError(f"{key}: {e}") from e

    return ComponentDescriptor(
        key=key,
        version=entry.version,
        requires=requires,
        conflicts=conflicts,
        compatibility=Compatibility(
            frameworks=frozenset(entry.compatibility.frameworks),
            platforms=frozenset(entry.compatibility.platforms),
            contexts=frozenset(entry.compatibility.contexts),
        ),
        condition=condition,
        priority=entry.priority,
        payload=entry.payload,
        description=entry.description,
        default_config=entry.config,
        env_vars=tuple(entry.env_vars),
        estimated_time=entry.estimated_time,
        post_install_steps=tuple(entry.post_install_steps),
        verification_steps=tuple(entry.verification_steps),
    )


def catalog_from_data(data: Any) -> InMemoryComponentStore:
    """Build a store from a parsed catalog document.

    The document is either a list of entries or an object with a
    ``components`` list.
    """
    entries = data.get("components") if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise CatalogError("Catalog must be a list of components or contain a 'components' list")
    store = InMemoryComponentStore(descriptor_from_data(entry) for entry in entries)
    logger.debug("Loaded %d component descriptors", len(store))
    return store


def load_catalog(path: str | Path) -> InMemoryComponentStore:
    """Load a JSON catalog file into an in-memory store."""
    path_obj = Path(path)
    if not path_obj.exists():
        raise CatalogError(f"Catalog file {path} not found")
    try:
        data = json.loads(path_obj.read_text())
    except json.JSONDecodeError as e:
        raise CatalogError(f"Catalog file {path} is not valid JSON: {e}") from e
    return catalog_from_data(data)


def fetch_catalog(url: str, timeout: float = 30.0) -> InMemoryComponentStore:
    """Fetch a JSON catalog over HTTP into an in-memory store.

    The whole catalog is fetched up front so graph building never waits on I/O.

    Raises:
        CatalogError: On timeouts, HTTP errors or an invalid document.
    """
    try:
        with httpx.Client(timeout=timeout) as client:
            response = client.get(url)
            if response.status_code == 404:
                raise CatalogError(f"Catalog not found at {url}")
            response.raise_for_status()
            data = response.json()
    except httpx.TimeoutException as e:
        raise CatalogError(f"Timeout fetching catalog from {url}") from e
    except httpx.HTTPStatusError as e:
        raise CatalogError(f"HTTP error fetching catalog from {url}: {e}") from e
    except httpx.HTTPError as e:
        raise CatalogError(f"Network error fetching catalog from {url}: {e}") from e
    except ValueError as e:
        raise CatalogError(f"Catalog at {url} is not valid JSON: {e}") from e

    return catalog_from_data(data)
