import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from carelink.api.routes.auth import get_current_user
from carelink.db.database import SessionLocal
from carelink.models.user import Profile, UserRole
from carelink.schemas.conversation import (
    Conversation as ConversationSchema,
    ConversationStart,
    ConversationSummary,
    MessagePage,
    UnreadCount,
)
from carelink.services.chat_store import ChatStore, SqlChatStore

router = APIRouter()


def get_chat_store() -> ChatStore:
    return SqlChatStore(SessionLocal)


async def _require_conversation(store: ChatStore, conversation_id: str, current_user: Profile) -> ConversationSchema:
    conversation = await store.get_conversation(conversation_id, current_user.id)
    if conversation is None:
        # Same answer for "absent" and "not yours"
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found or access denied")
    return conversation


@router.post("", response_model=ConversationSchema, status_code=status.HTTP_201_CREATED)
async def start_conversation(
    conversation_in: ConversationStart,
    current_user: Profile = Depends(get_current_user),
    store: ChatStore = Depends(get_chat_store),
):
    if current_user.role != UserRole.student:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Student access required")
    counsellor = await store.get_profile(conversation_in.counsellor_id)
    if (
        counsellor is None
        or counsellor.role != UserRole.counsellor
        or not counsellor.is_active
        or counsellor.college_id != current_user.college_id
    ):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Counsellor not found")

    conv = await store.get_or_create_conversation(current_user.id, counsellor.id, current_user.college_id)
    logging.info("[conversations] student=%s counsellor=%s conversation=%s", current_user.id, counsellor.id, conv.id)
    return conv


@router.get("", response_model=List[ConversationSummary])
async def list_conversations(
    current_user: Profile = Depends(get_current_user),
    store: ChatStore = Depends(get_chat_store),
):
    return await store.list_conversations_for(current_user.id, current_user.college_id)


@router.get("/unread-count", response_model=UnreadCount)
async def unread_count(
    current_user: Profile = Depends(get_current_user),
    store: ChatStore = Depends(get_chat_store),
):
    return UnreadCount(total_unread=await store.unread_count(current_user.id))


@router.get("/{conversation_id}", response_model=ConversationSchema)
async def get_conversation(
    conversation_id: str,
    current_user: Profile = Depends(get_current_user),
    store: ChatStore = Depends(get_chat_store),
):
    return await _require_conversation(store, conversation_id, current_user)


@router.get("/{conversation_id}/messages", response_model=MessagePage)
async def list_conversation_messages(
    conversation_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    current_user: Profile = Depends(get_current_user),
    store: ChatStore = Depends(get_chat_store),
):
    await _require_conversation(store, conversation_id, current_user)
    return await store.list_messages(conversation_id, page=page, limit=limit)


@router.delete("/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    current_user: Profile = Depends(get_current_user),
    store: ChatStore = Depends(get_chat_store),
):
    if not await store.delete_conversation(conversation_id, current_user.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found or access denied")
    logging.info("[conversations] %s deleted by %s", conversation_id, current_user.id)
    return {"ok": True, "conversation_id": conversation_id}
