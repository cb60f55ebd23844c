"""
Chat Endpoints

Direct messages between two members of the same tenant. Clients poll
GET /messages/{key}?since=... for new messages.

A conversation key is the two user ids sorted and joined with "_". Every
key-based route checks that:
- the key is well formed (two distinct ids, sorted)
- the caller is one of the two users
- the other user is an active member of the caller's tenant

Typing indicators live in the KV store and expire after a few seconds.
"""
from datetime import datetime
import time
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import and_, exists, or_
from sqlalchemy.orm import Session

from finops_api.api.deps import get_current_tenant, get_current_user
from finops_api.core.exceptions import InvalidInputError, MessageNotFoundError, UserNotFoundError
from finops_api.core.kv import KVStore, get_kv_store
from finops_api.core.permissions import PermissionDenied
from finops_api.database import get_db
from finops_api.models.chat import Conversation, Message, MessageRead, Reaction, conversation_key
from finops_api.models.tenant import Tenant
from finops_api.models.user import User, UserStatus
from finops_api.schemas.chat import (
    ConversationDetail,
    ConversationListResponse,
    ConversationSummary,
    MessageCreate,
    MessageListResponse,
    MessageResponse,
    ParticipantResponse,
    ReactionRequest,
    ReactionResponse,
    ReactionToggleResponse,
    ReadReceiptResponse,
    TypingRequest,
    TypingResponse,
)
from finops_api.utils.dates import naive_utc
from finops_api.utils.logging import get_logger

logger = get_logger(__name__)

conversations_router = APIRouter(prefix="/conversations", tags=["chat"])
messages_router = APIRouter(prefix="/messages", tags=["chat"])

TYPING_TTL_SECONDS = 5


def resolve_conversation_key(db: Session, key: str, current_user: User, tenant: Tenant) -> User:
    """Validate a conversation key and return the other participant."""
    parts = key.split("_")
    if len(parts) != 2 or not all(parts) or parts[0] == parts[1] or conversation_key(*parts) != key:
        raise InvalidInputError("Invalid conversation key")

    if current_user.id not in parts:
        logger.warning(f"User {current_user.id} tried to access conversation {key}")
        raise PermissionDenied(detail="Not a participant in this conversation")

    other_id = parts[1] if parts[0] == current_user.id else parts[0]
    other = db.query(User).filter(
        User.id == other_id,
        User.tenant_id == tenant.id,  # CRITICAL: no cross-tenant chat
        User.status == UserStatus.ACTIVE
    ).first()
    if not other:
        raise UserNotFoundError(other_id)
    return other


def _find_conversation(db: Session, tenant: Tenant, key: str) -> Optional[Conversation]:
    return db.query(Conversation).filter(
        Conversation.key == key,
        Conversation.tenant_id == tenant.id
    ).first()


def _message_payload(message: Message) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        content=message.content,
        image_url=message.image_url,
        created_at=message.created_at,
        reactions=[ReactionResponse.model_validate(r) for r in message.reactions],
        read_by=[r.user_id for r in message.reads],
    )


def _unread_filter(user_id: str):
    return and_(
        Message.sender_id != user_id,
        ~exists().where(and_(MessageRead.message_id == Message.id, MessageRead.user_id == user_id))
    )


# ============================================================================
# CONVERSATIONS
# ============================================================================

@conversations_router.get("/participants", response_model=List[ParticipantResponse])
async def list_participants(
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Active members of the tenant the caller can message."""
    return db.query(User).filter(
        User.tenant_id == tenant.id,
        User.id != current_user.id,
        User.status == UserStatus.ACTIVE
    ).order_by(User.name, User.email).all()


@conversations_router.get("", response_model=ConversationListResponse)
async def list_conversations(
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """My conversations, most recently active first."""
    conversations = db.query(Conversation).filter(
        Conversation.tenant_id == tenant.id,
        or_(
            Conversation.participant_a == current_user.id,
            Conversation.participant_b == current_user.id
        )
    ).all()

    summaries = []
    for conversation in conversations:
        other = db.query(User).filter(
            User.id == conversation.other_participant(current_user.id)
        ).first()
        if not other:
            continue

        last_message = db.query(Message).filter(
            Message.conversation_id == conversation.id
        ).order_by(Message.created_at.desc()).first()

        unread_count = db.query(Message).filter(
            Message.conversation_id == conversation.id,
            _unread_filter(current_user.id)
        ).count()

        summaries.append(ConversationSummary(
            id=conversation.id,
            key=conversation.key,
            other_user=ParticipantResponse.model_validate(other),
            last_message=_message_payload(last_message) if last_message else None,
            unread_count=unread_count,
            updated_at=last_message.created_at if last_message else conversation.updated_at
        ))

    summaries.sort(key=lambda s: s.updated_at, reverse=True)
    return ConversationListResponse(conversations=summaries)


@conversations_router.get("/key/{key}", response_model=ConversationDetail)
async def get_conversation(
    key: str,
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Conversation with all its messages. id is None before the first message."""
    other = resolve_conversation_key(db, key, current_user, tenant)
    conversation = _find_conversation(db, tenant, key)

    return ConversationDetail(
        id=conversation.id if conversation else None,
        key=key,
        other_user=ParticipantResponse.model_validate(other),
        messages=[_message_payload(m) for m in conversation.messages] if conversation else []
    )


@conversations_router.post("/key/{key}/read", response_model=ReadReceiptResponse)
async def mark_conversation_read(
    key: str,
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Mark every unread message from the other participant as read."""
    resolve_conversation_key(db, key, current_user, tenant)
    conversation = _find_conversation(db, tenant, key)
    if not conversation:
        return ReadReceiptResponse(marked=0)

    unread = db.query(Message).filter(
        Message.conversation_id == conversation.id,
        _unread_filter(current_user.id)
    ).all()

    for message in unread:
        db.add(MessageRead(message_id=message.id, user_id=current_user.id))
    db.commit()

    return ReadReceiptResponse(marked=len(unread))


@conversations_router.post("/{key}/typing", response_model=TypingResponse)
async def set_typing(
    key: str,
    typing_data: TypingRequest,
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
    kv: KVStore = Depends(get_kv_store)
):
    resolve_conversation_key(db, key, current_user, tenant)

    now = time.time()
    typing = {
        user_id: expires_at
        for user_id, expires_at in (kv.get_json(f"typing:{key}") or {}).items()
        if expires_at > now
    }
    if typing_data.is_typing:
        typing[current_user.id] = now + TYPING_TTL_SECONDS
    else:
        typing.pop(current_user.id, None)

    if typing:
        kv.put_json(f"typing:{key}", typing, ttl=TYPING_TTL_SECONDS)
    else:
        kv.delete(f"typing:{key}")

    return TypingResponse(typing=[user_id for user_id in typing if user_id != current_user.id])


@conversations_router.get("/{key}/typing", response_model=TypingResponse)
async def get_typing(
    key: str,
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
    kv: KVStore = Depends(get_kv_store)
):
    """Users other than me typing in this conversation right now."""
    resolve_conversation_key(db, key, current_user, tenant)

    now = time.time()
    typing = kv.get_json(f"typing:{key}") or {}
    return TypingResponse(typing=[
        user_id for user_id, expires_at in typing.items()
        if expires_at > now and user_id != current_user.id
    ])


@conversations_router.post("/messages/{message_id}/reactions", response_model=ReactionToggleResponse)
async def toggle_reaction(
    message_id: str,
    reaction_data: ReactionRequest,
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Add the reaction, or remove it if I already reacted with this emoji."""
    message = db.query(Message).join(Conversation).filter(
        Message.id == message_id,
        Conversation.tenant_id == tenant.id,
        or_(
            Conversation.participant_a == current_user.id,
            Conversation.participant_b == current_user.id
        )
    ).first()
    if not message:
        raise MessageNotFoundError(message_id)

    existing = db.query(Reaction).filter(
        Reaction.message_id == message.id,
        Reaction.user_id == current_user.id,
        Reaction.emoji == reaction_data.emoji
    ).first()

    if existing:
        payload = ReactionResponse.model_validate(existing)
        db.delete(existing)
        db.commit()
        return ReactionToggleResponse(action="removed", reaction=payload)

    reaction = Reaction(message_id=message.id, user_id=current_user.id, emoji=reaction_data.emoji)
    db.add(reaction)
    db.commit()
    db.refresh(reaction)

    return ReactionToggleResponse(action="added", reaction=ReactionResponse.model_validate(reaction))


# ============================================================================
# MESSAGES
# ============================================================================

@messages_router.get("/{key}", response_model=MessageListResponse)
async def list_messages(
    key: str,
    since: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """
    Messages in ascending created_at order.

    With since: up to limit messages created after it (polling).
    Without: the latest limit messages.
    """
    resolve_conversation_key(db, key, current_user, tenant)
    conversation = _find_conversation(db, tenant, key)
    if not conversation:
        return MessageListResponse(messages=[])

    query = db.query(Message).filter(Message.conversation_id == conversation.id)
    if since:
        messages = query.filter(
            Message.created_at > naive_utc(since)
        ).order_by(Message.created_at).limit(limit).all()
    else:
        messages = list(reversed(query.order_by(Message.created_at.desc()).limit(limit).all()))

    return MessageListResponse(messages=[_message_payload(m) for m in messages])


@messages_router.post("/{key}", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    key: str,
    message_data: MessageCreate,
    current_user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
):
    """Send a message. The first message creates the conversation."""
    other = resolve_conversation_key(db, key, current_user, tenant)

    conversation = _find_conversation(db, tenant, key)
    if not conversation:
        first, second = sorted([current_user.id, other.id])
        conversation = Conversation(
            tenant_id=tenant.id,
            key=key,
            participant_a=first,
            participant_b=second
        )
        db.add(conversation)
        db.flush()
        logger.info(f"Conversation created: {key} in tenant {tenant.id}")

    message = Message(
        conversation_id=conversation.id,
        sender_id=current_user.id,
        content=message_data.content.strip(),
        image_url=message_data.image_url
    )
    db.add(message)
    conversation.updated_at = datetime.utcnow()

    db.commit()
    db.refresh(message)

    return _message_payload(message)
