"""
Version parsing and comparison utilities for operator and product versions.
Handles semantic versions, operator API versions and image tags.
"""
import re
from typing import Iterable, Optional, Tuple

Version = Tuple[int, int, int]

_SEMVER_RE = re.compile(r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:[-+].*)?$")


def parse_version(version: str) -> Version:
    """
    Parse a version string into (major, minor, patch) tuple.

    Supports:
    - "1.12" -> (1, 12, 0)
    - "1.12.0" -> (1, 12, 0)
    - "v1.11.0" -> (1, 11, 0)
    - "8.0.27-18.1" -> (8, 0, 27)  # Ignores pre-release suffix

    Args:
        version: Version string to parse

    Returns:
        Tuple of (major, minor, patch) as integers

    Raises:
        ValueError: If version string cannot be parsed
    """
    match = _SEMVER_RE.match(version.strip()) if version else None
    if not match:
        raise ValueError(f"Cannot parse version: {version}")

    major = int(match.group(1))
    minor = int(match.group(2)) if match.group(2) else 0
    patch = int(match.group(3)) if match.group(3) else 0

    return (major, minor, patch)


def format_version(version: Version) -> str:
    return "{}.{}.{}".format(*version)


def compare_versions(version1: str, version2: str) -> int:
    """
    Compare two version strings.

    Returns:
        -1 if version1 < version2
         0 if version1 == version2
         1 if version1 > version2

    Raises:
        ValueError: If versions cannot be parsed
    """
    try:
        v1 = parse_version(version1)
        v2 = parse_version(version2)
    except ValueError as e:
        raise ValueError(f"Error comparing versions '{version1}' and '{version2}': {str(e)}")

    if v1 < v2:
        return -1
    elif v1 > v2:
        return 1
    return 0


def operator_api_version(group: str, version: str) -> str:
    """
    Build the API version an operator release serves its CRDs under.

    Example:
        operator_api_version("pxc.percona.com", "1.11.0") -> "pxc.percona.com/v1-11-0"
    """
    return f"{group}/v{version.replace('.', '-')}"


def latest_api_version(api_versions: Iterable[str], group: str) -> Optional[str]:
    """
    Find the newest operator release among installed API versions of a group.

    Only dashed versions of the form "<group>/v1-12-0" identify a release;
    plain "v1" entries are ignored. Returns None when the group is absent.

    Example:
        latest_api_version(["psmdb.percona.com/v1", "psmdb.percona.com/v1-12-0"], "psmdb.percona.com")
        -> "1.12.0"
    """
    latest: Version = (0, 0, 0)
    found = False

    for api_version in api_versions:
        if not api_version.startswith(group + "/"):
            continue
        parts = api_version.split("/", 1)[1].lstrip("v").split("-")
        if len(parts) != 3:
            continue
        try:
            candidate = parse_version(".".join(parts))
        except ValueError:
            continue
        if candidate > latest:
            latest = candidate
            found = True

    return format_version(latest) if found else None


def split_image(image: str) -> Tuple[str, Optional[str]]:
    """
    Split an image reference into repository and tag.

    The tag separator is the last colon after the last slash, so registry
    ports ("registry:5000/repo:tag") are kept in the repository part.
    """
    slash = image.rfind("/")
    colon = image.rfind(":")
    if colon > slash:
        return image[:colon], image[colon + 1:]
    return image, None
