"""
Permissions and Roles Configuration
Defines the "<resource>:<action>" permission matrix for the orchestration
modules and the roles built from it. app/scripts/seed_permissions_roles.py
writes this into the permissions, roles and role_permissions tables.
"""

# Resources and the actions their routes check
MODULES = {
    "webhooks": {
        "resource": "webhooks",
        "actions": ["create", "read", "update", "delete", "deliver", "retry"],
        "description": "Webhook endpoints and inbound event log"
    },
    "workflows": {
        "resource": "workflows",
        "actions": ["create", "read", "update", "delete", "transition", "trigger"],
        "description": "Workflow state machine and triggers"
    },
    "executions": {
        "resource": "executions",
        "actions": ["create", "read", "update"],
        "description": "Workflow execution records"
    },
    "monitoring": {
        "resource": "monitoring",
        "actions": ["create", "read", "update", "delete", "acknowledge"],
        "description": "Execution logs, errors, performance metrics and alerts"
    },
    "performance": {
        "resource": "performance",
        "actions": ["read"],
        "description": "Service request metrics"
    }
}

# Non-CRUD actions with their own wording
ACTION_DESCRIPTIONS = {
    "webhooks:deliver": "Send payloads to outgoing webhook endpoints",
    "webhooks:retry": "Reprocess failed webhook events",
    "workflows:transition": "Change workflow state",
    "workflows:trigger": "Fire workflow triggers",
    "monitoring:acknowledge": "Acknowledge and resolve monitoring alerts",
}

# Per-module role templates. "all" expands to every action of the module.
# OPERATOR is the on-call role: read, retry events, move workflow state,
# fire triggers, handle alerts and errors. It cannot create or delete.
ROLE_TYPES = {
    "ADMIN": {
        "actions": "all",
        "description": "Full administrative access to"
    },
    "OPERATOR": {
        "actions": ["read", "retry", "transition", "trigger", "acknowledge", "update"],
        "description": "Operational access to"
    },
    "VIEWER": {
        "actions": ["read"],
        "description": "Read-only access to"
    }
}


def _describe(resource: str, action: str) -> str:
    return ACTION_DESCRIPTIONS.get(f"{resource}:{action}", f"{action.capitalize()} {resource}")


def get_permission_matrix():
    """
    Returns {"permissions": [...], "roles": [...]}:

        permissions: {"name": "webhooks:retry", "resource": "webhooks", "action": "retry", "description": ...}
        roles:       {"name": "webhooks_operator", "description": ..., "permissions": ["webhooks:read", ...]}

    Role names are "<resource>_<role type>" in lower case. A role type that
    grants none of a module's actions produces no role for that module.
    """
    permissions = [
        {
            "name": f"{config['resource']}:{action}",
            "resource": config["resource"],
            "action": action,
            "description": _describe(config["resource"], action),
        }
        for config in MODULES.values()
        for action in config["actions"]
    ]

    roles = []
    for config in MODULES.values():
        resource = config["resource"]
        for role_type, role_config in ROLE_TYPES.items():
            wanted = config["actions"] if role_config["actions"] == "all" else role_config["actions"]
            granted = [action for action in config["actions"] if action in wanted]
            if not granted:
                continue
            roles.append({
                "name": f"{resource}_{role_type.lower()}",
                "description": f"{role_config['description']} {config['description'].lower()}",
                "permissions": sorted(f"{resource}:{action}" for action in granted),
            })

    return {
        "permissions": permissions,
        "roles": roles
    }


PERMISSION_MATRIX = get_permission_matrix()
