import hashlib
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import HTTPException
from supabase import Client

from app.config import settings
from app.database.supabase_client import SupabaseClient
from app.modules.auth.schemas import LoginRequest, RegisterRequest, TokenResponse, RegisterResponse

logger = logging.getLogger(__name__)

DUPLICATE_SIGNUP_MARKERS = ("already registered", "already exists")
BAD_TOKEN_MARKERS = ("jwt", "expired", "invalid")


class TokenCache:
    """
    Bounded token -> user map with a TTL, keyed by the token's SHA-256.
    When full, expired entries are dropped first, then the oldest.
    """

    def __init__(self, ttl_seconds: float = 60, max_size: int = 500):
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._entries: Dict[str, Tuple[Dict[str, Any], float]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key(token: str) -> str:
        return hashlib.sha256(token.encode()).hexdigest()

    def get(self, token: str) -> Optional[Dict[str, Any]]:
        key = self.key(token)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            user_data, expires_at = entry
            if time.monotonic() >= expires_at:
                del self._entries[key]
                return None
            return user_data

    def put(self, token: str, user_data: Dict[str, Any]) -> None:
        key = self.key(token)
        now = time.monotonic()
        with self._lock:
            self._entries.pop(key, None)
            if len(self._entries) >= self.max_size:
                self._entries = {k: v for k, v in self._entries.items() if v[1] > now}
            while self._entries and len(self._entries) >= self.max_size:
                # Insertion order: the first entry is the oldest
                del self._entries[next(iter(self._entries))]
            self._entries[key] = (user_data, now + self.ttl_seconds)

    def discard(self, token: str) -> None:
        with self._lock:
            self._entries.pop(self.key(token), None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


token_cache = TokenCache()


def clear_auth_cache() -> None:
    token_cache.clear()


def _user_payload(user: Any) -> Dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "user_metadata": user.user_metadata or {},
        "app_metadata": user.app_metadata or {},
    }


def _mentions(error: Exception, markers) -> bool:
    text = str(error).lower()
    return any(marker in text for marker in markers)


class AuthService:
    """Dashboard operator accounts on Supabase Auth. n8n itself authenticates by webhook signature."""

    def __init__(self, supabase: Client, session_client: Callable[[], Client] = SupabaseClient.new_auth_client):
        self.supabase = supabase
        self.session_client = session_client

    def register(self, register_data: RegisterRequest) -> RegisterResponse:
        credentials: Dict[str, Any] = {"email": register_data.email, "password": register_data.password}
        if register_data.full_name:
            credentials["options"] = {"data": {"full_name": register_data.full_name}}
        try:
            auth_response = self.session_client().auth.sign_up(credentials)
        except Exception as e:
            if _mentions(e, DUPLICATE_SIGNUP_MARKERS):
                raise HTTPException(status_code=400, detail="User already exists")
            logger.error(f"Registration of {register_data.email} failed: {e}")
            raise HTTPException(status_code=500, detail=f"Registration failed: {e}")

        if not auth_response.user:
            raise HTTPException(status_code=400, detail="Failed to register user")
        logger.info(f"Registered operator {auth_response.user.id}")
        return RegisterResponse(
            user_id=auth_response.user.id,
            email=auth_response.user.email or register_data.email,
            message="User registered successfully"
        )

    def login(self, login_data: LoginRequest) -> TokenResponse:
        try:
            auth_response = self.session_client().auth.sign_in_with_password({
                "email": login_data.email,
                "password": login_data.password
            })
        except Exception as e:
            if _mentions(e, ("invalid", "credentials")):
                raise HTTPException(status_code=401, detail="Invalid email or password")
            logger.error(f"Login for {login_data.email} failed: {e}")
            raise HTTPException(status_code=500, detail=f"Login failed: {e}")

        if not auth_response.user or not auth_response.session:
            raise HTTPException(status_code=401, detail="Invalid credentials")
        return TokenResponse(
            access_token=auth_response.session.access_token,
            user_id=auth_response.user.id,
            email=auth_response.user.email or login_data.email
        )

    def get_current_user(self, token: str) -> Dict[str, Any]:
        """Resolve a bearer token to the Supabase user; lookups are cached briefly"""
        cached = token_cache.get(token)
        if cached is not None:
            return cached
        try:
            user_response = self.supabase.auth.get_user(jwt=token)
        except Exception as e:
            detail = "Invalid or expired token" if _mentions(e, BAD_TOKEN_MARKERS) else "Authentication failed"
            raise HTTPException(status_code=401, detail=detail)
        if not user_response or not user_response.user:
            raise HTTPException(status_code=401, detail="Invalid or expired token")

        user_data = _user_payload(user_response.user)
        token_cache.put(token, user_data)
        return user_data

    def logout(self, token: str) -> bool:
        """Revoke the token's session; the shared client holds no session to clear"""
        token_cache.discard(token)
        try:
            self.supabase.auth.admin.sign_out(token)
        except Exception as e:
            logger.warning(f"Supabase sign_out failed: {e}")
            return False
        return True

    def set_super_user(self, admin_client: Client, user_id: str, is_super_user: bool = True) -> bool:
        """Write app_metadata.type; admin_client must carry the service role key"""
        if not settings.supabase_service_role_key:
            raise HTTPException(
                status_code=500,
                detail="Service role key not configured. Cannot update app_metadata."
            )
        try:
            response = admin_client.auth.admin.update_user_by_id(
                user_id,
                {"app_metadata": {"type": "super_user"} if is_super_user else {}}
            )
        except Exception as e:
            logger.error(f"Updating super_user flag for {user_id} failed: {e}")
            raise HTTPException(status_code=500, detail=f"Failed to update super_user status: {e}")
        if not response.user:
            raise HTTPException(status_code=404, detail="User not found")
        # Cached lookups would keep serving the old app_metadata
        token_cache.clear()
        logger.info(f"User {user_id} super_user={is_super_user}")
        return True
