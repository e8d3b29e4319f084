"""
Seed Actions and System Roles Script
This script populates the actions, roles and role_permissions tables using the config.
Can be run manually or as part of a nightly job; the application runs the same
seeding on startup when SEED_ON_STARTUP is enabled.
"""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from control_plane.modules.permissions.repository import get_permission_store, PermissionStore
from control_plane.modules.permissions.service import PermissionService
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def seed(store: PermissionStore) -> dict:
    """Seed action points then system roles (roles reference actions)"""
    service = PermissionService(store)

    logger.info("Seeding action points...")
    action_count = service.actions.init_default_actions()

    logger.info("Seeding system roles...")
    role_count = service.roles.seed_system_roles()

    return {
        "actions_created": action_count,
        "actions_total": store.count_actions(),
        "roles_created": role_count,
        "roles_total": len(service.cache.list_roles())
    }


def main():
    """Main function to seed actions and roles"""
    try:
        logger.info("Starting actions and roles seeding...")
        summary = seed(get_permission_store())
        logger.info("Seeding completed successfully!")
        logger.info(
            f"Total: {summary['actions_total']} actions ({summary['actions_created']} new), "
            f"{summary['roles_total']} roles ({summary['roles_created']} new)"
        )
    except Exception as e:
        logger.error(f"Error during seeding: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
