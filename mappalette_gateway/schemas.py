"""
Payload shapes accepted by the user, post, interaction and follow routes.

Fields are snake_case in Python and camelCase on the wire. Unknown keys are
dropped during validation.
"""
from typing import Annotated, List, Literal
from uuid import UUID

from pydantic import (
    AfterValidator,
    AnyUrl,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    StrictBool,
    TypeAdapter,
    ValidationError,
)
from pydantic.alias_generators import to_camel

_url_adapter = TypeAdapter(AnyUrl)


def _check_url(value: str) -> str:
    try:
        _url_adapter.validate_python(value)
    except ValidationError:
        raise ValueError("Invalid url") from None
    return value


# Validated as a URL but handed back exactly as the caller sent it
UrlString = Annotated[str, AfterValidator(_check_url)]

Username = Annotated[str, Field(min_length=3, max_length=30, pattern=r"^[a-zA-Z0-9_]+$")]
PostTitle = Annotated[str, Field(min_length=1, max_length=200)]
PostDescription = Annotated[str, Field(max_length=2000)]
HexColor = Annotated[str, Field(pattern=r"^#[0-9A-Fa-f]{6}$")]


class Schema(BaseModel):
    """
    Base for request payload schemas.

    Optional fields default to None but reject an explicit null. Non-finite
    numbers are rejected.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        allow_inf_nan=False,
    )


# =============================================================================
# Users
# =============================================================================

class CreateUserSchema(Schema):
    email: EmailStr
    username: Username
    birthday: str
    gender: str
    profile_picture: UrlString = None


class UpdateUserSchema(Schema):
    email: EmailStr = None
    username: Username = None
    profile_picture: UrlString = None
    is_profile_private: StrictBool = None
    is_post_private: StrictBool = None
    birthday: str = None
    gender: str = None


class UserIdParams(Schema):
    user_id: UUID


# =============================================================================
# Posts
# =============================================================================

class WaypointSchema(Schema):
    lat: float = Field(strict=True, ge=-90, le=90)
    lng: float = Field(strict=True, ge=-180, le=180)


class CreatePostSchema(Schema):
    title: PostTitle
    description: PostDescription = None
    waypoints: List[WaypointSchema] = Field(min_length=2)
    color: HexColor = None
    region: str = Field(min_length=1)
    distance: float = Field(strict=True, gt=0)
    image_url: UrlString = None


class UpdatePostSchema(Schema):
    title: PostTitle = None
    description: PostDescription = None
    image_url: UrlString = None


# =============================================================================
# Interactions and follows
# =============================================================================

class CreateCommentSchema(Schema):
    content: str = Field(min_length=1, max_length=500)


class FollowSchema(Schema):
    follower_user_id: UUID
    following_user_id: UUID


# =============================================================================
# Query strings
# =============================================================================
# Query values always arrive as strings, so these keep lax coercion.

class PaginationQuery(Schema):
    cursor: str = None
    limit: int = Field(default=20, ge=1, le=100)


class SearchQuery(PaginationQuery):
    q: str = Field(min_length=1, max_length=100)
    search_type: Literal["users", "posts", "all"] = Field(default="all", alias="type")


class SortQuery(Schema):
    sort_by: Literal["createdAt", "likes", "comments", "popular"] = "createdAt"
    order: Literal["asc", "desc"] = "desc"
