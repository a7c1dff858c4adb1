"""Result schemas for the admin API.

Each payload shape is a frozen pydantic model whose fields carry the
server's camelCase names as aliases. Absent or null optional fields fall
back to the model defaults; a missing required field or a wrong type is
reported as ParseError by the ``parse_*`` functions.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Annotated, Any, TypeVar

from pydantic import AliasChoices, BaseModel, BeforeValidator, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from admincache.errors import ParseError
from admincache.pagination import Page, describe

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


def _id_text(value: Any) -> Any:
    # Ids may arrive as ints
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


Id = Annotated[str, BeforeValidator(_id_text), Field(min_length=1)]
Count = Annotated[int, Field(ge=0, strict=True)]


class _Payload(BaseModel):
    model_config = {"frozen": True, "populate_by_name": True}

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        # null means "use the default", same as an absent field
        if isinstance(data, Mapping):
            return {k: v for k, v in data.items() if v is not None}
        return data


def _describe_errors(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(part) for part in error["loc"])
        parts.append(f"{loc}: {error['msg']}" if loc else error["msg"])
    return "; ".join(parts)


def _validate(model: type[M], raw: Any, what: str) -> M:
    try:
        return model.model_validate(raw)
    except PydanticValidationError as exc:
        raise ParseError(f"{what}: {_describe_errors(exc)}") from exc


def _unwrap(raw: Any, key: str) -> Any:
    """Some deployments wrap a single object as ``{key: {...}}``."""
    if isinstance(raw, Mapping) and isinstance(raw.get(key), Mapping):
        return raw[key]
    return raw


# =============================================================================
# Moderation
# =============================================================================


class Person(_Payload):
    """A user as embedded in reports, posts and block records."""

    uid: Id | None = Field(None, validation_alias=AliasChoices("uid", "id"))
    email: str | None = None
    first_name: str | None = Field(None, alias="firstName")
    last_name: str | None = Field(None, alias="lastName")
    profile_picture: str | None = Field(None, alias="profilePicture")

    @property
    def display_name(self) -> str:
        full = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full or self.email or "Unknown User"


def parse_person(raw: Any) -> Person | None:
    if raw is None:
        return None
    return _validate(Person, raw, "person")


class ReportedPost(_Payload):
    content: str = ""
    image_url: str | None = Field(None, alias="imageUrl")
    likes: Count = 0
    comments: Count = 0
    created_at: str | None = Field(None, alias="createdAt")


class Report(_Payload):
    """A user report against a post. ``status`` defaults to "pending"."""

    id: Id
    post_id: Id | None = Field(None, alias="postId")
    post_author_user_id: Id | None = Field(None, alias="postAuthorUserId")
    status: str = "pending"
    reason: str = ""
    created_at: str | None = Field(None, alias="createdAt")
    reporter: Person | None = None
    post_author: Person | None = Field(None, alias="postAuthor")
    post: ReportedPost | None = None


def parse_report(raw: Any) -> Report:
    return _validate(Report, raw, "report")


class BlockedUser(_Payload):
    """A block relation between two users."""

    id: Id
    blocked_user_id: Id | None = Field(None, alias="blockedUserId")
    blocker: Person | None = None
    blocked: Person | None = None
    created_at: str | None = Field(None, alias="createdAt")


def parse_blocked_user(raw: Any) -> BlockedUser:
    return _validate(BlockedUser, raw, "blockedUser")


class ModerationStats(_Payload):
    """Aggregate moderation counters. Missing counters are 0."""

    pending_reports: Count = Field(0, alias="pendingReports")
    resolved_reports: Count = Field(0, alias="resolvedReports")
    blocked_users: Count = Field(0, alias="blockedUsers")

    @property
    def total_reports(self) -> int:
        return self.pending_reports + self.resolved_reports


def parse_moderation_stats(raw: Any) -> ModerationStats:
    return _validate(ModerationStats, _unwrap(raw, "stats"), "stats")


# =============================================================================
# Posts and users
# =============================================================================


class Post(_Payload):
    id: Id
    title: str = ""
    content: str = ""
    image_url: str | None = Field(None, alias="imageUrl")
    likes: Count = 0
    comments: Count = 0
    created_at: str | None = Field(None, alias="createdAt")
    author: Person | None = None


def parse_post(raw: Any) -> Post:
    return _validate(Post, raw, "post")


class User(_Payload):
    """A user account. ``is_active`` is True unless the server sends false."""

    uid: Id = Field(validation_alias=AliasChoices("uid", "id"))
    email: str | None = None
    first_name: str | None = Field(None, alias="firstName")
    last_name: str | None = Field(None, alias="lastName")
    phone: str | None = None
    role: str | None = None
    is_active: bool = Field(True, alias="isActive", strict=True)
    country: str | None = None
    state: str | None = None
    city: str | None = None
    business_category: str | None = Field(None, alias="businessCategory")
    profile_picture: str | None = Field(None, alias="profilePicture")
    created_at: str | None = Field(None, alias="createdAt")

    @property
    def is_admin(self) -> bool:
        return (self.role or "").lower() == "admin"


def parse_user(raw: Any) -> User:
    return _validate(User, raw, "user")


class RegisteredUser(_Payload):
    user: User
    email_sent: bool = Field(False, alias="emailSent", strict=True)


def parse_registered_user(raw: Any) -> RegisteredUser:
    return _validate(RegisteredUser, raw, "registerUser")


class UserStats(_Payload):
    total_users: Count = Field(0, alias="totalUsers")
    active_users: Count = Field(0, alias="activeUsers")
    inactive_users: Count = Field(0, alias="inactiveUsers")


def parse_user_stats(raw: Any) -> UserStats:
    return _validate(UserStats, _unwrap(raw, "stats"), "userStats")


# =============================================================================
# Packages
# =============================================================================


class Package(_Payload):
    id: Id
    name: str = ""
    description: str = ""
    price: float = Field(0.0, strict=True)
    duration_days: Count = Field(0, alias="durationDays")
    is_active: bool = Field(True, alias="isActive", strict=True)


def parse_package(raw: Any) -> Package:
    return _validate(Package, _unwrap(raw, "package"), "package")


class PackageStats(_Payload):
    total_packages: Count = Field(0, alias="totalPackages")
    active_packages: Count = Field(0, alias="activePackages")


def parse_package_stats(raw: Any) -> PackageStats:
    return _validate(PackageStats, _unwrap(raw, "stats"), "packageStats")


# =============================================================================
# Lists and acknowledgements
# =============================================================================


def _items(raw: Any, items_key: str) -> list[Any]:
    if not isinstance(raw, Mapping):
        raise ParseError(f"{items_key}: expected an object, got {type(raw).__name__}")
    value = raw.get(items_key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ParseError(f"{items_key}: expected a list, got {type(value).__name__}")
    return value


def parse_page(
    raw: Any,
    items_key: str,
    parse_item: Callable[[Any], T],
    *,
    limit: int | None = None,
) -> Page[T]:
    """Parse ``{items_key: [...], pagination: {...}}`` into a Page."""
    items = [parse_item(item) for item in _items(raw, items_key)]
    return Page(
        items=items,
        pagination=describe(raw, items_key=items_key, requested_limit=limit),
    )


def parse_list(raw: Any, items_key: str, parse_item: Callable[[Any], T]) -> list[T]:
    """Parse an unpaginated list, bare or wrapped as ``{items_key: [...]}``."""
    if isinstance(raw, list):
        return [parse_item(item) for item in raw]
    return [parse_item(item) for item in _items(raw, items_key)]


class Acknowledgement(_Payload):
    """Body of a write that returns no resource. Empty bodies are success."""

    success: bool = Field(True, strict=True)
    message: str | None = None


def parse_ack(raw: Any) -> Acknowledgement:
    if raw is None:
        return Acknowledgement()
    return _validate(Acknowledgement, raw, "response")
