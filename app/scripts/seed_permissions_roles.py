"""
Seed Permissions and Roles Script
Upserts the permission matrix from app/config/permissions_config.py into the
permissions, roles and role_permissions tables, and optionally grants a role
to a user through user_roles.

    python app/scripts/seed_permissions_roles.py
    python app/scripts/seed_permissions_roles.py --grant <user_id> webhooks_admin
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from app.config.permissions_config import PERMISSION_MATRIX
from app.database.supabase_client import SupabaseClient
from supabase import Client
from typing import Dict, List
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def upsert_permissions(supabase: Client) -> Dict[str, str]:
    """Upsert every permission by name; returns name -> id"""
    rows = [
        {
            "name": perm["name"],
            "resource": perm["resource"],
            "action": perm["action"],
            "description": perm["description"],
        }
        for perm in PERMISSION_MATRIX["permissions"]
    ]
    result = supabase.table("permissions").upsert(rows, on_conflict="name").execute()
    ids = {row["name"]: row["id"] for row in result.data or []}
    logger.info(f"Upserted {len(ids)} permissions")
    return ids


def upsert_roles(supabase: Client) -> Dict[str, str]:
    """Upsert every role by name; returns name -> id"""
    rows = [
        {"name": role["name"], "description": role["description"]}
        for role in PERMISSION_MATRIX["roles"]
    ]
    result = supabase.table("roles").upsert(rows, on_conflict="name").execute()
    ids = {row["name"]: row["id"] for row in result.data or []}
    logger.info(f"Upserted {len(ids)} roles")
    return ids


def sync_role_permissions(supabase: Client, role_id: str, role_name: str, permission_ids: List[str]) -> None:
    """Make role_permissions for role_id match permission_ids exactly"""
    existing = supabase.table("role_permissions")\
        .select("permission_id")\
        .eq("role_id", role_id)\
        .execute()
    current = {row["permission_id"] for row in existing.data or []}
    wanted = set(permission_ids)

    missing = wanted - current
    if missing:
        supabase.table("role_permissions")\
            .insert([{"role_id": role_id, "permission_id": pid} for pid in sorted(missing)])\
            .execute()
    stale = current - wanted
    if stale:
        supabase.table("role_permissions")\
            .delete()\
            .eq("role_id", role_id)\
            .in_("permission_id", sorted(stale))\
            .execute()
    if missing or stale:
        logger.info(f"Role {role_name}: +{len(missing)} / -{len(stale)} permissions")


def seed(supabase: Client) -> None:
    permission_ids = upsert_permissions(supabase)
    role_ids = upsert_roles(supabase)
    for role in PERMISSION_MATRIX["roles"]:
        role_id = role_ids.get(role["name"])
        if not role_id:
            logger.warning(f"Role {role['name']} was not returned by upsert; skipping its permissions")
            continue
        ids = [permission_ids[name] for name in role["permissions"] if name in permission_ids]
        sync_role_permissions(supabase, role_id, role["name"], ids)


def grant_role(supabase: Client, user_id: str, role_name: str) -> None:
    role = supabase.table("roles").select("id").eq("name", role_name).limit(1).execute()
    if not role.data:
        raise SystemExit(f"Unknown role: {role_name}")
    supabase.table("user_roles")\
        .upsert({"user_id": user_id, "role_id": role.data[0]["id"]}, on_conflict="user_id,role_id")\
        .execute()
    logger.info(f"Granted {role_name} to user {user_id}")


def main():
    parser = argparse.ArgumentParser(description="Seed orchestration permissions and roles")
    parser.add_argument("--grant", nargs=2, metavar=("USER_ID", "ROLE_NAME"), help="also grant a role to a user")
    args = parser.parse_args()

    try:
        supabase = SupabaseClient.get_service_client()
        seed(supabase)
        if args.grant:
            grant_role(supabase, *args.grant)
        logger.info("Seeding completed")
    except Exception as e:
        logger.error(f"Error during seeding: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
