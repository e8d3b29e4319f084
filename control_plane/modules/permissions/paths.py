"""
Resource path algebra.

A resource path looks like /<tenant>/<workspace>/<seg>...; the first two
segments scope every assignment and request to a workspace.
"""

from typing import List, Tuple

from control_plane.core.errors import InvalidPath

SEPARATOR = "/"
DEPARTMENT_ROOT = "org"


def split(path: str) -> List[str]:
    """Split a resource path into its segments."""
    if not path or not path.startswith(SEPARATOR):
        raise InvalidPath(f"Resource path must start with '/': {path!r}")
    if path != SEPARATOR and path.endswith(SEPARATOR):
        raise InvalidPath(f"Resource path must not end with '/': {path!r}")
    segments = path[1:].split(SEPARATOR)
    if any(not segment for segment in segments):
        raise InvalidPath(f"Resource path has an empty segment: {path!r}")
    return segments


def join(segments: List[str]) -> str:
    return SEPARATOR + SEPARATOR.join(segments)


def tenant_app(path: str) -> Tuple[str, str]:
    """Return (tenant, workspace) owning the path."""
    segments = split(path)
    if len(segments) < 2:
        raise InvalidPath(f"Resource path has no workspace scope: {path!r}")
    return segments[0], segments[1]


def app_path(tenant: str, workspace: str) -> str:
    return join([tenant, workspace])


def ancestors(path: str) -> List[str]:
    """
    Strict prefixes of the path that still carry the tenant/workspace scope,
    ordered from the direct parent outward:
    /t/w/a/b/c -> [/t/w/a/b, /t/w/a, /t/w]
    """
    segments = split(path)
    return [join(segments[:i]) for i in range(len(segments) - 1, 1, -1)]


def is_ancestor_of(ancestor: str, path: str) -> bool:
    """True when path equals ancestor or lies below it."""
    return path == ancestor or path.startswith(ancestor + SEPARATOR)


def department_chain(department_path: str) -> List[str]:
    """
    The department itself followed by every parent department:
    /org/x/y/z -> [/org/x/y/z, /org/x/y, /org/x]
    The bare /org root is never part of the chain.
    """
    segments = split(department_path)
    floor = 2 if segments[0] == DEPARTMENT_ROOT else 1
    return [join(segments[:i]) for i in range(len(segments), floor - 1, -1)]
