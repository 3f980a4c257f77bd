from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..auth import get_current_user
from ..conversations import count_unread, load_conversations, message_options, message_out
from ..database import get_db, get_sessionmaker
from ..errors import Forbidden, NotFound, ValidationFailed
from ..models import Ad, Message, User
from ..queries import PageParams, build_pagination, contains, fetch_page, parse_int
from ..schemas import MessageCreate, ok

router = APIRouter(prefix="/messages", tags=["messages"])

SEARCH_LIMIT = 50


def between(user_id: int, other_user_id: int):
    return or_(
        and_(Message.sender_id == user_id, Message.receiver_id == other_user_id),
        and_(Message.sender_id == other_user_id, Message.receiver_id == user_id),
    )


async def mark_read(db: AsyncSession, sender_id: int, receiver_id: int) -> int:
    result = await db.execute(
        update(Message)
        .where(
            Message.sender_id == sender_id,
            Message.receiver_id == receiver_id,
            Message.is_read.is_(False),
        )
        .values(is_read=True)
    )
    await db.commit()
    return result.rowcount


@router.get("/conversations")
async def get_conversations(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return ok({"conversations": await load_conversations(db, current_user.id)})


@router.get("/unread-count")
async def get_unread_count(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return ok({"unreadCount": await count_unread(db, current_user.id)})


@router.get("/search")
async def search_messages(
    query: Optional[str] = None,
    userId: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not query or len(query) < 2:
        raise ValidationFailed("Search query must be at least 2 characters long")

    other_user_id = parse_int(userId)
    if other_user_id is not None:
        participants = between(current_user.id, other_user_id)
    else:
        participants = or_(
            Message.sender_id == current_user.id,
            Message.receiver_id == current_user.id,
        )

    result = await db.execute(
        select(Message)
        .options(*message_options())
        .where(contains(Message.content, query), participants)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(SEARCH_LIMIT)
    )
    return ok({"messages": [message_out(message) for message in result.scalars().all()]})


@router.get("/{user_id}")
async def get_messages(
    user_id: int,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    sessionmaker: async_sessionmaker[AsyncSession] = Depends(get_sessionmaker),
):
    params = PageParams.from_query(page, limit, default_limit=50)
    thread = between(current_user.id, user_id)
    page_stmt = (
        select(Message)
        .options(*message_options())
        .where(thread)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .offset(params.offset)
        .limit(params.limit)
    )
    count_stmt = select(func.count(Message.id)).where(thread)
    rows, total = await fetch_page(sessionmaker, page_stmt, count_stmt)

    # Viewing a thread clears its unread messages for the viewer.
    await mark_read(db, sender_id=user_id, receiver_id=current_user.id)

    messages = [message_out(message) for (message,) in reversed(rows)]
    return ok({
        "messages": messages,
        "pagination": build_pagination(params, total),
    })


@router.post("", status_code=status.HTTP_201_CREATED)
async def send_message(
    body: MessageCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    receiver = await db.get(User, body.receiver_id)
    if not receiver or not receiver.is_active:
        raise NotFound("Receiver not found or inactive")

    if body.receiver_id == current_user.id:
        raise ValidationFailed("Cannot send message to yourself")

    if body.ad_id is not None:
        ad = await db.get(Ad, body.ad_id)
        if not ad or not ad.is_active:
            raise NotFound("Ad not found or inactive")

    message = Message(
        content=body.content,
        sender_id=current_user.id,
        receiver_id=body.receiver_id,
        ad_id=body.ad_id,
    )
    db.add(message)
    await db.commit()

    result = await db.execute(
        select(Message)
        .options(*message_options())
        .where(Message.id == message.id)
        .execution_options(populate_existing=True)
    )
    return ok({"message": message_out(result.scalar_one())}, "Message sent successfully")


@router.put("/{user_id}/read")
async def mark_as_read(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    updated = await mark_read(db, sender_id=user_id, receiver_id=current_user.id)
    return ok({"updatedCount": updated}, "Messages marked as read")


@router.delete("/{message_id}")
async def delete_message(
    message_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    message = await db.get(Message, message_id)
    if not message:
        raise NotFound("Message not found")
    if message.sender_id != current_user.id:
        raise Forbidden("Not authorized to delete this message")

    await db.delete(message)
    await db.commit()
    return ok(message="Message deleted successfully")
