import os
import jwt
import logging
from dotenv import load_dotenv
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from vaultchat.auth.session import StaticSession, principal_from_claims
from vaultchat.chat.service import ChatService
from vaultchat.core.memory_store import MemoryStore
from vaultchat.core.store import DocumentStore
from vaultchat.core.supabase_client import get_supabase
from vaultchat.core.supabase_store import SupabaseStore
from vaultchat.utils.env_helper import env_none_or_str

load_dotenv()
logger = logging.getLogger(__name__)

security = HTTPBearer()

_store: DocumentStore | None = None


def decode_token(token: str) -> dict:
    """Verify a Supabase access token and return its claims."""
    try:
        payload = jwt.decode(
            token,
            os.getenv("SUPABASE_JWT_SECRET"),
            algorithms=["HS256"],
            issuer=f"{os.getenv('PUBLIC_SUPABASE_URL')}/auth/v1",
            options={"verify_aud": False},
            leeway=60,
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")

    except jwt.InvalidTokenError as e:
        logger.warning(f"jwt_verification_failed error={e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    if not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token")
    return payload


def verify_token(credentials: HTTPAuthorizationCredentials = Depends(security)):
    return decode_token(credentials.credentials)


async def get_store() -> DocumentStore:
    global _store

    if _store is None:
        if env_none_or_str("CHAT_STORE", "supabase").lower() == "memory":
            _store = MemoryStore()
        else:
            client = await get_supabase()
            _store = SupabaseStore(client, table=env_none_or_str("DOCUMENTS_TABLE", "documents"))
        logger.info(f"document_store_ready store={type(_store).__name__}")
    return _store


def build_chat_service(store: DocumentStore, claims: dict) -> ChatService:
    return ChatService(store, StaticSession(principal_from_claims(claims)))


async def get_chat_service(
    user=Depends(verify_token), store: DocumentStore = Depends(get_store)
):
    service = build_chat_service(store, user)
    try:
        yield service
    finally:
        await service.close()
