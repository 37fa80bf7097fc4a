import asyncio
import logging

from fastapi import (
    APIRouter,
    HTTPException,
    Depends,
    WebSocket,
    WebSocketDisconnect,
    status,
)

from vaultchat.chat.service import ChatService
from vaultchat.core.dependencies import build_chat_service, decode_token, get_chat_service, get_store
from vaultchat.core.exceptions import ChatError
from vaultchat.core.store import DocumentStore
from vaultchat.core.subscriptions import Subscription

from .schemas import (
    SendMessageModel,
    SendMessageResponseModel,
    CreateDirectConversationModel,
    CreateDirectConversationResponseModel,
    GetConversationsResponseModel,
    GetConversationResponseModel,
    GetMessagesResponseModel,
)


logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "/conversations/direct",
    response_model=CreateDirectConversationResponseModel,
    status_code=200,
)
async def get_or_create_direct_conversation(
    data: CreateDirectConversationModel,
    service: ChatService = Depends(get_chat_service),
):
    """
    Get or create a direct (1-on-1) conversation with another user.

    If the caller already has a chat with the user, its id is returned.
    Otherwise the conversation and both users' chat list entries are created
    together.

    **Input**
    - `receiver_id`: Id of the user to chat with
    - `receiver_name`: Name to show for them (looked up in the directory when omitted)

    **Returns**
    - `conversation_id`: Id of the direct conversation

    **Errors**
    - 400: Trying to chat with yourself
    - 401: Unauthorized
    - 500: Database error
    """
    try:
        receiver_name = data.receiver_name or await service.resolve_display_name(data.receiver_id)
        conversation_id = await service.find_or_create_chat(data.receiver_id, receiver_name)
        return {"conversation_id": conversation_id}

    except ChatError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    except Exception:
        logger.exception("create_conversation_error")
        raise HTTPException(
            status_code=500,
            detail="Failed to create or fetch conversation.",
        )


@router.get(
    "/conversations",
    response_model=GetConversationsResponseModel,
    status_code=200,
)
async def get_conversations(service: ChatService = Depends(get_chat_service)):
    """
    Retrieve the authenticated user's chat list, most recent activity first.

    **Returns**
    - `conversations`: List of chats
        - `id`, `participants`, `participant_names`
        - `last_message`, `last_message_timestamp`
        - `unread_count`: Messages the user has not opened yet

    **Errors**
    - 401: Invalid or expired JWT
    - 500: Database or unexpected server error
    """
    try:
        chats = await service.list_chats()
        return {"conversations": [chat.model_dump() for chat in chats]}

    except ChatError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    except Exception:
        logger.exception("list_conversations_error")
        raise HTTPException(status_code=500, detail="Failed to fetch conversations")


@router.get(
    "/conversations/{conversation_id}",
    response_model=GetConversationResponseModel,
    status_code=200,
)
async def get_conversation(conversation_id: str, service: ChatService = Depends(get_chat_service)):
    """
    Retrieve one conversation the authenticated user takes part in.

    **Errors**
    - 401: Invalid or expired JWT
    - 404: Conversation does not exist or the user is not a participant
    """
    try:
        conversation = await service.get_conversation(conversation_id)
        return {"conversation": {**conversation.model_dump(), "id": conversation.id}}

    except ChatError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    except Exception:
        logger.exception("get_conversation_error")
        raise HTTPException(status_code=500, detail="Failed to fetch conversation")


@router.get(
    "/messages/{conversation_id}",
    response_model=GetMessagesResponseModel,
    status_code=200,
)
async def get_messages(conversation_id: str, service: ChatService = Depends(get_chat_service)):
    """
    Retrieve all messages of a conversation, oldest first.

    Reading the history also resets the caller's unread count for it.

    **Errors**
    - 401: Invalid or expired authentication token
    - 404: Conversation does not exist or the user is not a participant
    - 500: Database or unexpected server error
    """
    try:
        messages = await service.fetch_messages(conversation_id)
        return {"messages": [message.model_dump() for message in messages]}

    except ChatError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    except Exception:
        logger.exception("get_messages_error")
        raise HTTPException(status_code=500, detail="Failed to retrieve messages")


@router.post(
    "/messages",
    response_model=SendMessageResponseModel,
    status_code=201,
)
async def send_message(data: SendMessageModel, service: ChatService = Depends(get_chat_service)):
    """
    Send a message to an existing conversation.

    **Input**
    - `conversation_id`: Id of the conversation
    - `receiver_id`: Id of the other participant
    - `content`: Message text (must not be blank)

    **Returns**
    - The newly created message

    **Errors**
    - 400: Blank message, or the receiver is not the other participant
    - 401: Unauthorized
    - 404: Conversation not found or the sender is not a participant
    - 500: The message could not be (fully) stored
    - 503: Database unavailable
    """
    try:
        message = await service.send_message(data.conversation_id, data.receiver_id, data.content)
        return {"message": message.model_dump()}

    except ChatError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    except Exception:
        logger.exception("send_message_error")
        raise HTTPException(status_code=500, detail="Failed to send message.")


async def _stream(websocket: WebSocket, subscription: Subscription, render):
    """Forward every snapshot to the socket until either side goes away."""

    async def watch_disconnect():
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            subscription.close()

    watcher = asyncio.create_task(watch_disconnect())
    try:
        async for snapshot in subscription:
            await websocket.send_json(render(snapshot))
    except WebSocketDisconnect:
        pass
    finally:
        watcher.cancel()
        subscription.close()


async def _open_service(websocket: WebSocket, token: str, store: DocumentStore):
    try:
        claims = decode_token(token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return None

    await websocket.accept()
    return build_chat_service(store, claims)


@router.websocket("/ws/conversations")
async def stream_conversations(
    websocket: WebSocket, token: str = "", store: DocumentStore = Depends(get_store)
):
    """Live chat list: one JSON frame `{"conversations": [...]}` per change."""
    service = await _open_service(websocket, token, store)
    if service is None:
        return

    try:
        subscription = service.watch_chats()
        await _stream(
            websocket,
            subscription,
            lambda chats: {"conversations": [chat.model_dump() for chat in chats]},
        )
    finally:
        await service.close()


@router.websocket("/ws/messages/{conversation_id}")
async def stream_messages(
    websocket: WebSocket,
    conversation_id: str,
    token: str = "",
    store: DocumentStore = Depends(get_store),
):
    """Live message list of a conversation: one JSON frame `{"messages": [...]}` per change."""
    service = await _open_service(websocket, token, store)
    if service is None:
        return

    try:
        try:
            subscription = await service.subscribe_messages(conversation_id)
        except ChatError as e:
            logger.info(f"message_stream_refused conversation_id={conversation_id} error={e.message}")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
            return

        await _stream(
            websocket,
            subscription,
            lambda messages: {"messages": [message.model_dump() for message in messages]},
        )
    finally:
        await service.close()
