from supabase import create_client, Client, ClientOptions
from control_plane.config import settings


class SupabaseClient:
    """Process-wide Supabase clients, created on first use."""

    _client: Client = None
    _service_client: Client = None

    @classmethod
    def _options(cls) -> ClientOptions:
        return ClientOptions(postgrest_client_timeout=settings.storage_timeout_seconds)

    @classmethod
    def get_client(cls) -> Client:
        if cls._client is None:
            cls._client = create_client(settings.supabase_url, settings.supabase_key, options=cls._options())
        return cls._client

    @classmethod
    def get_service_client(cls) -> Client:
        """Client with service_role key; bypasses RLS. Used by the permission store and seeding."""
        if cls._service_client is None and settings.supabase_service_role_key:
            cls._service_client = create_client(
                settings.supabase_url, settings.supabase_service_role_key, options=cls._options()
            )
        return cls._service_client or cls.get_client()

    @classmethod
    def reset_client(cls):
        """Drop cached clients so the next call picks up changed settings"""
        cls._client = None
        cls._service_client = None
