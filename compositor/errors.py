"""Exceptions raised by the composition engine."""

__all__ = [
    "CompositionError",
    "InvalidSelectionError",
    "MalformedDescriptorError",
    "CatalogError",
]


class CompositionError(Exception):
    """Base class for errors raised by the composition engine."""

    pass


class InvalidSelectionError(CompositionError):
    """Raised when resolve() is called with an empty or malformed selection."""

    pass


class MalformedDescriptorError(CompositionError):
    """Raised when a catalog entry cannot be turned into a descriptor."""

    pass


class CatalogError(CompositionError):
    """Raised when a component catalog cannot be read or fetched."""

    pass
