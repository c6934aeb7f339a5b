"""Version requirement matching for component dependencies."""

from packaging.version import InvalidVersion, Version

ANY_VERSION = ("", "*", "any", "latest")


def parse_version(text: str) -> Version:
    """Parse a component version.

    Raises:
        InvalidVersion: If the text is not a valid version.
    """
    return Version(text.strip().lstrip("vV"))


def is_valid_requirement(requirement: str | None) -> bool:
    """Check that a requirement string can be compared against versions."""
    if requirement is None or requirement.strip() in ANY_VERSION:
        return True
    try:
        parse_version(requirement.strip().lstrip("^~="))
    except InvalidVersion:
        return False
    return True


def satisfies(available: str, requirement: str | None) -> bool:
    """Check an available version against a requirement.

    Caret requirements (``^1.2.0``) accept any version with the same major,
    tilde requirements (``~1.2.0``) any version with the same major and minor,
    anything else must match exactly. Pre-release and build metadata are not
    considered by caret and tilde.

    Args:
        available: Version served by the component store.
        requirement: Requirement declared on a dependency edge.

    Returns:
        True if the available version satisfies the requirement.

    Raises:
        InvalidVersion: If either side cannot be parsed.
    """
    if requirement is None or requirement.strip() in ANY_VERSION:
        return True

    requirement = requirement.strip()
    available_version = parse_version(available)

    if requirement.startswith("^"):
        required = parse_version(requirement[1:])
        return available_version.major == required.major

    if requirement.startswith("~"):
        required = parse_version(requirement[1:].lstrip("="))
        return (
            available_version.major == required.major
            and available_version.minor == required.minor
        )

    return available_version == parse_version(requirement.lstrip("="))
