"""
Route protection.

Dashboard routes take a Supabase JWT (HTTP Bearer) and check a
"<resource>:<action>" permission resolved through
user_roles -> role_permissions -> permissions. Super users
(app_metadata.type == "super_user") pass every check. The n8n intake route
does not use these; it is authenticated by webhook signature.
"""

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from app.config.permissions_config import PERMISSION_MATRIX
from app.database.supabase_client import get_supabase
from app.modules.auth.service import AuthService
from supabase import Client
from typing import List, Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)

security = HTTPBearer()

ALL_PERMISSIONS = sorted(p["name"] for p in PERMISSION_MATRIX["permissions"])


def get_auth_service(supabase: Client = Depends(get_supabase)) -> AuthService:
    return AuthService(supabase)


def get_bearer_token(credentials: HTTPAuthorizationCredentials = Security(security)) -> str:
    return credentials.credentials


def get_current_user_id(
    token: str = Depends(get_bearer_token),
    auth_service: AuthService = Depends(get_auth_service)
) -> dict:
    """Supabase user (id, email, metadata) behind the bearer token"""
    return auth_service.get_current_user(token)


def is_super_user(user_data: dict) -> bool:
    # app_metadata is writable only through the service-role admin API
    return (user_data.get("app_metadata") or {}).get("type") == "super_user"


def _ids(rows: Optional[List[Dict[str, Any]]], column: str) -> List[str]:
    return sorted({row[column] for row in rows or [] if row.get(column)})


def load_user_permissions(user_id: str, supabase: Client) -> List[str]:
    """Permission names granted to user_id through any of their roles"""
    try:
        role_ids = _ids(
            supabase.table("user_roles").select("role_id").eq("user_id", user_id).execute().data,
            "role_id",
        )
        if not role_ids:
            return []
        permission_ids = _ids(
            supabase.table("role_permissions").select("permission_id").in_("role_id", role_ids).execute().data,
            "permission_id",
        )
        if not permission_ids:
            return []
        return _ids(
            supabase.table("permissions").select("name").in_("id", permission_ids).execute().data,
            "name",
        )
    except Exception as e:
        logger.error(f"Error loading permissions for user {user_id}: {e}")
        return []


def effective_permissions(user_data: dict, supabase: Client, request: Optional[Request] = None) -> List[str]:
    """
    All permissions for a super user, otherwise the role grants. With a request the
    result is memoised on request.state so several checks in one request query once.
    """
    if is_super_user(user_data):
        return list(ALL_PERMISSIONS)
    if request is None:
        return load_user_permissions(user_data["id"], supabase)
    cached = getattr(request.state, "permission_names", None)
    if cached is None:
        cached = load_user_permissions(user_data["id"], supabase)
        request.state.permission_names = cached
    return cached


def require_permission(required_permission: str):
    """Dependency factory: 403 unless the current user holds required_permission"""
    def check_permission(
        request: Request,
        user_data: dict = Depends(get_current_user_id),
        supabase: Client = Depends(get_supabase)
    ) -> dict:
        if required_permission not in effective_permissions(user_data, supabase, request):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required: {required_permission}"
            )
        return user_data
    return check_permission


def require_super_user(user_data: dict = Depends(get_current_user_id)) -> dict:
    if not is_super_user(user_data):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only super users can perform this action"
        )
    return user_data
