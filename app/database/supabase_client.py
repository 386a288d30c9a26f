import logging
from typing import Optional

from supabase import create_client, Client, ClientOptions
from app.config import settings

logger = logging.getLogger(__name__)


class SupabaseClient:
    """
    Process-wide Supabase clients.

    The anon client serves request handlers (RLS applies to the caller's JWT).
    It never holds a user session (a stored session would become the PostgREST
    Authorization header of every later query); sign-up and sign-in run on a
    throwaway client from new_auth_client.
    The service client uses the service_role key and is meant for work that has
    no request user: the webhook retry scheduler, seeding, admin auth calls.
    """
    _client: Optional[Client] = None
    _service_client: Optional[Client] = None

    @staticmethod
    def _connect(key: Optional[str], label: str) -> Client:
        if not settings.supabase_url or not key:
            raise RuntimeError(f"Supabase {label} client is not configured (SUPABASE_URL and key required)")
        logger.info(f"Connecting {label} Supabase client to {settings.supabase_url}")
        return create_client(settings.supabase_url, key)

    @classmethod
    def get_client(cls) -> Client:
        if cls._client is None:
            cls._client = cls._connect(settings.supabase_key, "anon")
        return cls._client

    @classmethod
    def get_service_client(cls) -> Client:
        """Falls back to the anon client when no service_role key is set (local development)."""
        if not settings.supabase_service_role_key:
            return cls.get_client()
        if cls._service_client is None:
            cls._service_client = cls._connect(settings.supabase_service_role_key, "service")
        return cls._service_client

    @staticmethod
    def new_auth_client() -> Client:
        """Unshared anon client for calls that store a session (sign-up, sign-in)"""
        if not settings.supabase_url or not settings.supabase_key:
            raise RuntimeError("Supabase anon client is not configured (SUPABASE_URL and key required)")
        return create_client(
            settings.supabase_url,
            settings.supabase_key,
            options=ClientOptions(auto_refresh_token=False, persist_session=False),
        )

    @classmethod
    def reset_client(cls):
        cls._client = cls._service_client = None


def get_supabase() -> Client:
    return SupabaseClient.get_client()


def get_service_supabase() -> Client:
    return SupabaseClient.get_service_client()
