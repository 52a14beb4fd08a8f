"""
Role -> agent mapping.

Roles are configured in the store document (config.agentRoles), then
environment variables, then fall back to the role name itself so custom
roles work without setup.
"""

import os
from typing import Optional

from .models import Document

DEFAULT_AGENT = "main"
DEFAULT_PM_SESSION = "agent:main:main"


def get_default_roles() -> dict[str, str]:
    return {
        "pm": os.environ.get("CLAWCONDOS_PM_AGENT", "main"),
        "frontend": os.environ.get("CLAWCONDOS_FRONTEND_AGENT", "frontend"),
        "backend": os.environ.get("CLAWCONDOS_BACKEND_AGENT", "backend"),
        "designer": os.environ.get("CLAWCONDOS_DESIGNER_AGENT", "designer"),
        "tester": os.environ.get("CLAWCONDOS_TESTER_AGENT", "tester"),
        "devops": os.environ.get("CLAWCONDOS_DEVOPS_AGENT", "devops"),
        "qa": os.environ.get("CLAWCONDOS_QA_AGENT", "qa"),
    }


def get_agent_for_role(document: Document, role: str) -> str:
    roles = document.config.get("agentRoles") or {}
    if roles.get(role):
        return roles[role]
    defaults = get_default_roles()
    if role in defaults:
        return defaults[role]
    return role


def resolve_agent(document: Document, spec: Optional[str]) -> Optional[str]:
    """Resolve a role name or a direct agent id. Empty spec resolves to None."""
    if not spec:
        return None
    configured = document.config.get("agentRoles") or {}
    role = spec.lower()
    if role in get_default_roles() or role in configured:
        return get_agent_for_role(document, role)
    return spec


def build_session_key(agent_id: str, session_type: str = "main", sub_id: Optional[str] = None) -> str:
    base = f"agent:{agent_id}:{session_type}"
    return f"{base}:{sub_id}" if sub_id else base


def get_pm_session(document: Document, condo_id: Optional[str] = None) -> str:
    if condo_id:
        condo = document.get_condo(condo_id)
        if condo and condo.pm_session:
            return condo.pm_session
    return (
        document.config.get("pmSession")
        or os.environ.get("CLAWCONDOS_PM_SESSION")
        or DEFAULT_PM_SESSION
    )


DEFAULT_AGENT_EMOJI = "🤖"


def get_agent_label(document: Document, agent_id: str) -> dict:
    """Display label for an agent: configured emoji/name, else a generated one."""
    configured = (document.config.get("agentLabels") or {}).get(agent_id) or {}
    emoji = configured.get("emoji") or DEFAULT_AGENT_EMOJI
    name = configured.get("name") or agent_id[:1].upper() + agent_id[1:]
    return {"emoji": emoji, "name": name, "label": f"{name} {emoji}"}


def list_role_assignments(document: Document) -> dict[str, dict]:
    """Every known role with its resolved agent, custom mapping and default."""
    configured = document.config.get("agentRoles") or {}
    defaults = get_default_roles()
    roles = {}
    for role in list(dict.fromkeys([*defaults, *configured])):
        roles[role] = {
            "agentId": get_agent_for_role(document, role),
            "configured": configured.get(role),
            "default": defaults.get(role, role),
        }
    return roles


def list_agents(document: Document) -> list[dict]:
    """Agents grouped with the roles they currently fill."""
    configured = document.config.get("agentRoles") or {}
    agents: dict[str, dict] = {}
    for role, info in list_role_assignments(document).items():
        agent_id = info["agentId"]
        entry = agents.setdefault(agent_id, {
            "id": agent_id,
            "roles": [],
            "isConfigured": False,
            **get_agent_label(document, agent_id),
        })
        entry["roles"].append(role)
        if role in configured:
            entry["isConfigured"] = True
    return list(agents.values())
