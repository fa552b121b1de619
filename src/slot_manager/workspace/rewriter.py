"""Pure text rewrites applied to a slot's copied configuration.

Every function takes file content and returns new content; callers decide
whether to write. Applying a rewrite twice with the same arguments yields the
same text as applying it once, because slot ports are never main ports.
"""

import re
from typing import Mapping

from ..core.naming import sanitize_resource_name

COMPOSE_PROJECT_VAR = "COMPOSE_PROJECT_NAME"

_COMPOSE_PROJECT_LINE_RE = re.compile(rf"^{COMPOSE_PROJECT_VAR}=.*$", re.MULTILINE)

# =3000, ="3000", ='3000', localhost:3000, never a prefix of a longer number
_PORT_REFERENCE_RE = re.compile(r"""(=["']?|localhost:)(\d+)(?!\d)""")
_LOCALHOST_PORT_RE = re.compile(r"(localhost:)(\d+)(?!\d)")
_CLI_PORT_FLAG_RE = re.compile(r"""((?:^|(?<=[\s"']))(?:-p|--port)[ \t=]+)(\d+)(?!\d)""", re.MULTILINE)

_CONTAINER_NAME_RE = re.compile(r"""^([ \t]*container_name:[ \t]*)(["']?)([A-Za-z0-9_.-]+)\2[ \t]*$""", re.MULTILINE)


def _port_substitution(port_map: Mapping[int, int]):
    def _replace(match: re.Match) -> str:
        port = int(match.group(2))
        if port not in port_map:
            return match.group(0)
        return f"{match.group(1)}{port_map[port]}"
    return _replace


def rewrite_env_content(content: str, port_map: Mapping[int, int], slot_name: str) -> str:
    """Point an env file at the slot's ports and container namespace."""
    resource_name = sanitize_resource_name(slot_name)
    project_line = f"{COMPOSE_PROJECT_VAR}={resource_name}"

    if _COMPOSE_PROJECT_LINE_RE.search(content):
        updated = _COMPOSE_PROJECT_LINE_RE.sub(project_line, content)
    else:
        updated = f"{project_line}\n{content}"

    if port_map:
        updated = rewrite_port_references(updated, port_map)
    return updated


def rewrite_port_references(content: str, port_map: Mapping[int, int]) -> str:
    """Replace every main-port reference in one pass, so mappings never chain."""
    return _PORT_REFERENCE_RE.sub(_port_substitution(port_map), content)


def rewrite_manifest_content(content: str, port_map: Mapping[int, int]) -> str:
    """Port rewrite for package.json / Procfile: ``-p``/``--port`` flags and localhost URLs."""
    if not port_map:
        return content
    replace = _port_substitution(port_map)
    updated = _CLI_PORT_FLAG_RE.sub(replace, content)
    return _LOCALHOST_PORT_RE.sub(replace, updated)


def rewrite_compose_content(content: str, slot_name: str) -> str:
    """Make hard-coded ``container_name`` values follow COMPOSE_PROJECT_NAME.

    ``container_name: app-db`` becomes
    ``container_name: ${COMPOSE_PROJECT_NAME:-app-3}-app-db``. Lines that
    already reference a variable are left alone.
    """
    default = sanitize_resource_name(slot_name)

    def _replace(match: re.Match) -> str:
        prefix, quote, name = match.group(1), match.group(2), match.group(3)
        return f"{prefix}{quote}${{{COMPOSE_PROJECT_VAR}:-{default}}}-{name}{quote}"

    return _CONTAINER_NAME_RE.sub(_replace, content)
