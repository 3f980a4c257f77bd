"""Folding a user's message history into per-counterpart conversations."""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .models import Ad, Message
from .schemas import AdPreview, ConversationOut, MessageOut, UserBrief


def conversation_key(user_id: int, other_user_id: int) -> str:
    """Key shared by both directions of a pair: (A, B) and (B, A) collide."""
    low, high = sorted((user_id, other_user_id))
    return f"{low}-{high}"


@dataclass
class ConversationDraft:
    key: str
    other_user: Any
    ad: Optional[Any]
    last_message: Any
    unread_count: int = 0


def group_conversations(messages: Iterable[Any], user_id: int) -> List[ConversationDraft]:
    """Group ``messages`` (newest first) by counterpart.

    The first message seen for a pair becomes its ``last_message``; the
    counterpart and the linked ad are taken from that same message. Output
    keeps first-sighting order, so the most recently active pair comes first.
    Messages for different ads between the same two users share a single
    conversation.
    """
    grouped: Dict[str, ConversationDraft] = {}
    for message in messages:
        if message.sender_id == user_id:
            other_id, other_user = message.receiver_id, message.receiver
        else:
            other_id, other_user = message.sender_id, message.sender
        key = conversation_key(user_id, other_id)
        if key not in grouped:
            grouped[key] = ConversationDraft(
                key=key,
                other_user=other_user,
                ad=message.ad,
                last_message=message,
            )
    return list(grouped.values())


def message_options():
    return (
        selectinload(Message.sender),
        selectinload(Message.receiver),
        selectinload(Message.ad).selectinload(Ad.images),
    )


def ad_preview(ad: Optional[Ad]) -> Optional[AdPreview]:
    if ad is None:
        return None
    main_image = next((image.url for image in ad.images if image.is_main), None)
    return AdPreview(
        id=ad.id,
        title=ad.title,
        price=ad.price,
        is_active=ad.is_active,
        main_image=main_image,
    )


def message_out(message: Message) -> MessageOut:
    return MessageOut(
        id=message.id,
        content=message.content,
        sender_id=message.sender_id,
        receiver_id=message.receiver_id,
        ad_id=message.ad_id,
        is_read=message.is_read,
        created_at=message.created_at,
        sender=UserBrief.model_validate(message.sender),
        receiver=UserBrief.model_validate(message.receiver),
        ad=ad_preview(message.ad),
    )


async def count_unread(db: AsyncSession, receiver_id: int, sender_id: Optional[int] = None) -> int:
    stmt = select(func.count(Message.id)).where(
        Message.receiver_id == receiver_id,
        Message.is_read.is_(False),
    )
    if sender_id is not None:
        stmt = stmt.where(Message.sender_id == sender_id)
    result = await db.execute(stmt)
    return result.scalar_one()


async def load_conversations(db: AsyncSession, user_id: int) -> List[ConversationOut]:
    result = await db.execute(
        select(Message)
        .options(*message_options())
        .where(or_(Message.sender_id == user_id, Message.receiver_id == user_id))
        .order_by(Message.created_at.desc(), Message.id.desc())
    )
    drafts = group_conversations(result.scalars().all(), user_id)

    # Counts are taken one pair at a time and may already be stale on return.
    for draft in drafts:
        draft.unread_count = await count_unread(db, user_id, draft.other_user.id)

    return [
        ConversationOut(
            id=draft.key,
            other_user=UserBrief.model_validate(draft.other_user),
            ad=ad_preview(draft.ad),
            last_message=message_out(draft.last_message),
            unread_count=draft.unread_count,
        )
        for draft in drafts
    ]
