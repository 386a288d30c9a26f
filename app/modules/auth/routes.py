from fastapi import APIRouter, Depends, Request
from app.database.supabase_client import get_supabase, get_service_supabase
from app.modules.auth.schemas import (
    LoginRequest, RegisterRequest, TokenResponse, RegisterResponse,
    SetSuperUserRequest, CurrentUserResponse
)
from app.modules.auth.service import AuthService
from app.core.dependencies import (
    get_auth_service, get_bearer_token, get_current_user_id, effective_permissions, is_super_user,
    require_super_user
)
from supabase import Client
from typing import Dict

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=RegisterResponse, status_code=201)
async def register(
    register_data: RegisterRequest,
    service: AuthService = Depends(get_auth_service)
):
    """Create a dashboard operator account"""
    return service.register(register_data)


@router.post("/login", response_model=TokenResponse)
async def login(
    login_data: LoginRequest,
    service: AuthService = Depends(get_auth_service)
):
    return service.login(login_data)


@router.post("/logout", status_code=200)
async def logout(
    token: str = Depends(get_bearer_token),
    service: AuthService = Depends(get_auth_service)
):
    service.logout(token)
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=CurrentUserResponse)
async def get_me(
    request: Request,
    current_user: Dict = Depends(get_current_user_id),
    supabase: Client = Depends(get_supabase),
):
    """Current operator plus the permissions the dashboard should enable"""
    permissions = effective_permissions(current_user, supabase, request)
    return CurrentUserResponse(
        **current_user,
        is_super_user=is_super_user(current_user),
        permissions=permissions
    )


@router.post("/set-super-user", status_code=200)
async def set_super_user(
    body: SetSuperUserRequest,
    current_user: Dict = Depends(require_super_user),
    service: AuthService = Depends(get_auth_service),
    admin_client: Client = Depends(get_service_supabase),
):
    service.set_super_user(admin_client, body.user_id, body.is_super_user)
    return {
        "message": f"User {body.user_id} super_user status set to {body.is_super_user}",
        "user_id": body.user_id,
        "is_super_user": body.is_super_user
    }
