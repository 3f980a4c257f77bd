from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

Role = Literal["USER", "ADMIN"]
Condition = Literal["NEW", "LIKE_NEW", "GOOD", "FAIR", "USED"]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# Requests

class RegisterRequest(CamelModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None


class LoginRequest(CamelModel):
    email: EmailStr
    password: str


class ProfileUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    phone: Optional[str] = None


class PasswordChange(CamelModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class PasswordReset(CamelModel):
    new_password: str = Field(..., min_length=6)


class UserUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    role: Optional[Role] = None
    is_active: Optional[bool] = None


class ImageIn(CamelModel):
    url: str = Field(..., min_length=1)
    is_main: bool = False


class AdCreate(CamelModel):
    title: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=10, max_length=2000)
    price: float = Field(..., ge=0)
    category_id: int
    location: str = Field(..., min_length=2, max_length=100)
    condition: Condition
    images: List[ImageIn] = Field(default_factory=list)


class AdUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, min_length=10, max_length=2000)
    price: Optional[float] = Field(None, ge=0)
    category_id: Optional[int] = None
    location: Optional[str] = Field(None, min_length=2, max_length=100)
    condition: Optional[Condition] = None
    is_active: Optional[bool] = None


class CategoryCreate(CamelModel):
    name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = None
    parent_id: Optional[int] = None
    icon: Optional[str] = None


class CategoryUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = None
    parent_id: Optional[int] = None
    icon: Optional[str] = None
    is_active: Optional[bool] = None


class MessageCreate(CamelModel):
    content: str = Field(..., min_length=1, max_length=1000)
    receiver_id: int
    ad_id: Optional[int] = None


# Projections

class Pagination(CamelModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    has_next: bool
    has_prev: bool


class UserBrief(CamelModel):
    id: int
    name: str


class UserContact(UserBrief):
    phone: Optional[str] = None


class UserPublic(UserContact):
    created_at: datetime
    active_ads: int = 0


class UserAccount(CamelModel):
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    role: str
    is_active: bool
    created_at: datetime
    last_login: Optional[datetime] = None


class UserCounts(CamelModel):
    ads: int = 0
    sent_messages: int = 0
    received_messages: int = 0


class UserAdmin(UserAccount):
    counts: UserCounts


class CategoryRef(CamelModel):
    id: int
    name: str


class CategoryNode(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    parent_id: Optional[int] = None
    is_active: bool
    active_ads: int = 0
    parent: Optional[CategoryRef] = None
    subcategories: Optional[List["CategoryNode"]] = None


class CategoryStat(CamelModel):
    id: int
    name: str
    parent_id: Optional[int] = None
    active_ads: int
    active_subcategories: int


class ImageOut(CamelModel):
    id: int
    url: str
    is_main: bool


class AdCounts(CamelModel):
    favorites: int = 0
    views: int = 0


class AdSummary(CamelModel):
    id: int
    title: str
    description: str
    price: float
    location: str
    condition: str
    category_id: int
    user_id: int
    is_active: bool
    created_at: datetime
    user: UserContact
    category: CategoryRef
    images: List[ImageOut]
    counts: AdCounts


class AdOwner(UserContact):
    created_at: datetime
    total_ads: int = 0


class CategoryWithParent(CategoryRef):
    parent: Optional[CategoryRef] = None


class AdDetail(AdSummary):
    user: AdOwner
    category: CategoryWithParent


class AdPreview(CamelModel):
    id: int
    title: str
    price: float
    is_active: bool
    main_image: Optional[str] = None


class MessageOut(CamelModel):
    id: int
    content: str
    sender_id: int
    receiver_id: int
    ad_id: Optional[int] = None
    is_read: bool
    created_at: datetime
    sender: UserBrief
    receiver: UserBrief
    ad: Optional[AdPreview] = None


class ConversationOut(CamelModel):
    id: str
    other_user: UserBrief
    ad: Optional[AdPreview] = None
    last_message: MessageOut
    unread_count: int


def ok(data=None, message: Optional[str] = None) -> dict:
    body = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body
