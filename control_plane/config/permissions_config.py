"""
Permissions and Roles Configuration
This config defines the action matrix for every resource type of the service tree
and the system roles seeded on startup.
Used by the action/role seeders and the seed script to populate/update the catalog.
"""

# Resource types and the actions valid on each of them
RESOURCE_TYPES = {
    "directory": {
        "actions": ["read", "write", "update", "delete", "admin"],
        "label": "Directory",
        "description": "Package node of the service tree"
    },
    "table": {
        "actions": ["read", "write", "update", "delete", "admin"],
        "label": "Table",
        "description": "Function node rendered from the table template"
    },
    "form": {
        "actions": ["read", "write", "admin"],
        "label": "Form",
        "description": "Function node rendered from the form template"
    },
    "chart": {
        "actions": ["read", "admin"],
        "label": "Chart",
        "description": "Function node rendered from the chart template"
    },
    "app": {
        "actions": ["read", "write", "update", "delete", "admin"],
        "label": "Workspace",
        "description": "Workspace root"
    }
}

ACTION_TYPES = ["read", "write", "update", "delete", "admin"]

# Per-action descriptions where the generic "<Action> <label>" is not precise enough
ACTION_SPECIFIC_DESCRIPTIONS = {
    "directory": {
        "write": "Create sub-directories and functions",
        "update": "Edit directory metadata",
        "admin": "Directory administrator (every directory action)"
    },
    "table": {
        "write": "Create table records",
        "update": "Update table records",
        "delete": "Delete table records",
        "admin": "Table administrator (every table action)"
    },
    "form": {
        "write": "Submit the form",
        "admin": "Form administrator (every form action)"
    },
    "chart": {
        "admin": "Chart administrator (every chart action)"
    },
    "app": {
        "write": "Create workspace content",
        "admin": "Workspace administrator (every action on every node)"
    }
}

# System roles, grouped by their primary resource type.
# The first role flagged "default" is recommended when a permission request is filed.
SYSTEM_ROLES = {
    "directory": [
        {
            "code": "viewer",
            "name": "Viewer",
            "description": "Can browse the directory",
            "default": True,
            "permissions": ["directory:read"]
        },
        {
            "code": "developer",
            "name": "Developer",
            "description": "Can browse, create and edit directories and the functions below them",
            "permissions": [
                "directory:read", "directory:write", "directory:update",
                "table:read", "table:write", "table:update",
                "form:read", "form:write",
                "chart:read"
            ]
        },
        {
            "code": "admin",
            "name": "Administrator",
            "description": "Full control of the directory and everything below it",
            "permissions": ["directory:admin", "table:admin", "form:admin", "chart:admin"]
        }
    ],
    "table": [
        {
            "code": "viewer",
            "name": "Viewer",
            "description": "Can read table records",
            "default": True,
            "permissions": ["table:read"]
        },
        {
            "code": "developer",
            "name": "Developer",
            "description": "Can read, create, update and delete table records",
            "permissions": ["table:read", "table:write", "table:update", "table:delete"]
        },
        {
            "code": "admin",
            "name": "Administrator",
            "description": "Full control of the table",
            "permissions": ["table:admin"]
        }
    ],
    "form": [
        {
            "code": "viewer",
            "name": "Viewer",
            "description": "Can open the form",
            "default": True,
            "permissions": ["form:read"]
        },
        {
            "code": "developer",
            "name": "Developer",
            "description": "Can open and submit the form",
            "permissions": ["form:read", "form:write"]
        },
        {
            "code": "admin",
            "name": "Administrator",
            "description": "Full control of the form",
            "permissions": ["form:admin"]
        }
    ],
    "chart": [
        {
            "code": "viewer",
            "name": "Viewer",
            "description": "Can view the chart",
            "default": True,
            "permissions": ["chart:read"]
        },
        {
            "code": "admin",
            "name": "Administrator",
            "description": "Full control of the chart",
            "permissions": ["chart:admin"]
        }
    ],
    "app": [
        {
            "code": "admin",
            "name": "Workspace administrator",
            "description": "Full control of every node in the workspace",
            "default": True,
            "permissions": ["app:admin"]
        }
    ]
}


# Generate permission matrix
def get_permission_matrix():
    """
    Returns a dictionary with all action points and the system roles
    Format: {
        "actions": [
            {"code": "table:read", "resource_type": "table", "action_type": "read",
             "name": "Read table", "description": "..."},
            ...
        ],
        "roles": [
            {
                "code": "developer",
                "resource_type": "directory",
                "name": "Developer",
                "description": "...",
                "is_default": False,
                "permissions": ["directory:read", "table:read", ...]
            },
            ...
        ]
    }
    """
    actions = []
    roles = []

    # Generate action points for each resource type
    for resource_type, config in RESOURCE_TYPES.items():
        for action_type in config["actions"]:
            code = f"{resource_type}:{action_type}"
            description = f"{action_type.capitalize()} {config['label'].lower()}"

            # Add resource-specific description if available
            specific = ACTION_SPECIFIC_DESCRIPTIONS.get(resource_type, {})
            if action_type in specific:
                description = specific[action_type]

            actions.append({
                "code": code,
                "resource_type": resource_type,
                "action_type": action_type,
                "name": f"{config['label']} {action_type}",
                "description": description
            })

    # Flatten system roles
    for resource_type, role_configs in SYSTEM_ROLES.items():
        for role in role_configs:
            roles.append({
                "code": role["code"],
                "resource_type": resource_type,
                "name": role["name"],
                "description": role["description"],
                "is_default": role.get("default", False),
                "permissions": list(role["permissions"])
            })

    return {
        "actions": actions,
        "roles": roles
    }


# Pre-generate the matrix
PERMISSION_MATRIX = get_permission_matrix()
