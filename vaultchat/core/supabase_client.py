import os
from dotenv import load_dotenv
from supabase import acreate_client, AsyncClient


load_dotenv()


supabase_url = os.getenv("PUBLIC_SUPABASE_URL")
supabase_key = os.getenv("SECRET_API_KEY")

_client: AsyncClient | None = None


async def get_supabase() -> AsyncClient:
    """Shared async Supabase client, created on first use."""
    global _client

    if _client is None:
        if not supabase_url or not supabase_key:
            raise RuntimeError(
                "PUBLIC_SUPABASE_URL and SECRET_API_KEY must be set to use the Supabase store."
            )
        _client = await acreate_client(supabase_url, supabase_key)
    return _client
