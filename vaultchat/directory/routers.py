import logging

from fastapi import APIRouter, HTTPException, Depends, Query

from vaultchat.chat.service import ChatService
from vaultchat.core.dependencies import get_chat_service
from vaultchat.core.exceptions import ChatError

from .schemas import (
    UserSearchResponseModel,
    UserProfileResponseModel,
    EnsureDirectoryEntryResponseModel,
)


logger = logging.getLogger(__name__)
router = APIRouter()


@router.put("/me", response_model=EnsureDirectoryEntryResponseModel, status_code=200)
async def ensure_directory_entry(service: ChatService = Depends(get_chat_service)):
    """
    Make sure the authenticated user is listed in the user directory.

    Clients call this after every sign-in. An existing entry with an email is
    left untouched; otherwise email, name and their lowercase search fields
    are merged into the user's record and their chat list is initialised.

    **Returns**
    - `directory_entry_ready`: Whether the entry is in place

    **Errors**
    - 401: Invalid or expired token
    - 503: Directory could not be updated
    """
    try:
        ready = await service.ensure_directory_entry()
    except ChatError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    if not ready:
        raise HTTPException(status_code=503, detail="Failed to update the user directory.")

    return {"directory_entry_ready": True}


@router.get("/search", response_model=UserSearchResponseModel, status_code=200)
async def search_users(
    q: str = Query(default=""),
    service: ChatService = Depends(get_chat_service),
):
    """
    Search other users by email or name.

    Tries an exact email match, then a case-insensitive email match, then a
    case-insensitive name prefix and finally a case-sensitive name prefix.
    The first strategy that finds anybody wins. The caller never appears in
    the results and a blank query returns an empty list.

    **Input**
    - `q`: Email address or the beginning of a name

    **Returns**
    - `users`: List of `{id, name, email}`

    **Errors**
    - 401: Invalid or expired token
    - 503: Directory unavailable
    """
    try:
        users = await service.search_users(q)
        return {"users": [user.model_dump() for user in users]}

    except ChatError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    except Exception:
        logger.exception("user_search_error")
        raise HTTPException(status_code=500, detail="Failed to search users.")


@router.get("/users/{user_id}", response_model=UserProfileResponseModel, status_code=200)
async def get_user(user_id: str, service: ChatService = Depends(get_chat_service)):
    """
    Directory profile of a single user.

    **Errors**
    - 401: Invalid or expired token
    - 404: No such user
    """
    try:
        profile = await service.get_profile(user_id)
        return {"user": profile.model_dump()}

    except ChatError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
