"""Endpoint resolver - logical resources to concrete request descriptors.

Everything here is data: one table of queries, one of mutations, and the
invalidation and identity tables the mutation dispatcher reads. The
functions at the bottom only look things up and fill in templates.
"""

from __future__ import annotations

import string
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

from admincache import schemas
from admincache.errors import ValidationError
from admincache.pagination import validate_page_params
from admincache.tags import LIST, collection_tags, tag
from admincache.types import RequestDescriptor, Tag

DEFAULT_PAGE_SIZE = 10

# Tag categories
REPORTS = "Reports"
BLOCKED_USERS = "BlockedUsers"
STATS = "Stats"
POSTS = "Posts"
USERS = "Users"
PACKAGES = "Packages"

TAG_TYPES = (REPORTS, BLOCKED_USERS, STATS, POSTS, USERS, PACKAGES)


@dataclass(frozen=True, slots=True)
class TagTemplate:
    """A tag whose instance may come from an operation parameter.

    ``TagTemplate("Users")`` is the bare category, ``TagTemplate("Users",
    instance=LIST)`` the collection and ``TagTemplate("Users", param="user_id")``
    the instance named by the ``user_id`` parameter.
    """

    category: str
    param: str | None = None
    instance: str | None = None

    def expand(self, params: Mapping[str, Any]) -> Tag:
        if self.param is not None:
            return tag(self.category, params[self.param])
        return tag(self.category, self.instance)


@dataclass(frozen=True, slots=True)
class QueryEndpoint:
    """A read. ``items_key`` names the list a paginated result carries."""

    name: str
    path: str
    category: str
    parse: Callable[..., Any]
    paginated: bool = False
    items_key: str | None = None
    id_attr: str = "id"
    instance_param: str | None = None

    @property
    def path_params(self) -> tuple[str, ...]:
        return _template_fields(self.path)


@dataclass(frozen=True, slots=True)
class MutationEndpoint:
    """A write.

    ``query`` maps parameter names to query-string names. ``body`` builds the
    JSON body from the parameters left after path and query are filled.
    """

    name: str
    method: str
    path: str
    parse: Callable[[Any], Any]
    required: tuple[str, ...] = ()
    query: Mapping[str, str] = field(default_factory=dict)
    body: Callable[[Mapping[str, Any]], Any] | None = None

    @property
    def path_params(self) -> tuple[str, ...]:
        return _template_fields(self.path)


@dataclass(frozen=True, slots=True)
class Operation:
    """A mutation request from the view layer."""

    kind: str
    params: Mapping[str, Any] = field(default_factory=dict)


def _template_fields(path: str) -> tuple[str, ...]:
    return tuple(f for _, f, _, _ in string.Formatter().parse(path) if f)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _camel_body(params: Mapping[str, Any]) -> dict[str, Any]:
    return {_camel(k): v for k, v in params.items() if v is not None}


def _status_body(params: Mapping[str, Any]) -> dict[str, Any]:
    is_active = params["is_active"]
    if not isinstance(is_active, bool):
        raise ValidationError(f"is_active must be a boolean, got {is_active!r}")
    return {"isActive": is_active}


# =============================================================================
# Queries
# =============================================================================


def _page_of(items_key: str, parse_item: Callable[[Any], Any]) -> Callable[..., Any]:
    def parse(raw: Any, params: Mapping[str, Any]) -> Any:
        return schemas.parse_page(raw, items_key, parse_item, limit=params.get("limit"))

    return parse


def _one(parse_item: Callable[[Any], Any]) -> Callable[..., Any]:
    def parse(raw: Any, params: Mapping[str, Any]) -> Any:
        return parse_item(raw)

    return parse


def _many(items_key: str, parse_item: Callable[[Any], Any]) -> Callable[..., Any]:
    def parse(raw: Any, params: Mapping[str, Any]) -> Any:
        return schemas.parse_list(raw, items_key, parse_item)

    return parse


QUERIES: dict[str, QueryEndpoint] = {
    q.name: q
    for q in (
        QueryEndpoint(
            name="admin_reports",
            path="/api/posts/admin/reports",
            category=REPORTS,
            parse=_page_of("reports", schemas.parse_report),
            paginated=True,
            items_key="reports",
        ),
        QueryEndpoint(
            name="admin_blocked_users",
            path="/api/posts/admin/blocked-users",
            category=BLOCKED_USERS,
            parse=_page_of("blockedUsers", schemas.parse_blocked_user),
            paginated=True,
            items_key="blockedUsers",
        ),
        QueryEndpoint(
            name="admin_stats",
            path="/api/posts/admin/stats",
            category=STATS,
            parse=_one(schemas.parse_moderation_stats),
        ),
        QueryEndpoint(
            name="admin_posts",
            path="/api/posts/admin/all",
            category=POSTS,
            parse=_page_of("posts", schemas.parse_post),
            paginated=True,
            items_key="posts",
        ),
        QueryEndpoint(
            name="users",
            path="/api/auth/users",
            category=USERS,
            parse=_page_of("users", schemas.parse_user),
            paginated=True,
            items_key="users",
            id_attr="uid",
        ),
        QueryEndpoint(
            name="user_stats",
            path="/api/auth/users/stats",
            category=STATS,
            parse=_one(schemas.parse_user_stats),
        ),
        QueryEndpoint(
            name="packages",
            path="/api/packages",
            category=PACKAGES,
            parse=_page_of("packages", schemas.parse_package),
            paginated=True,
            items_key="packages",
        ),
        QueryEndpoint(
            name="active_packages",
            path="/api/packages/active/list",
            category=PACKAGES,
            parse=_many("packages", schemas.parse_package),
            items_key="packages",
        ),
        QueryEndpoint(
            name="package",
            path="/api/packages/{package_id}",
            category=PACKAGES,
            parse=_one(schemas.parse_package),
            instance_param="package_id",
        ),
        QueryEndpoint(
            name="package_stats",
            path="/api/packages/stats/overview",
            category=STATS,
            parse=_one(schemas.parse_package_stats),
        ),
    )
}


# =============================================================================
# Mutations
# =============================================================================

MUTATIONS: dict[str, MutationEndpoint] = {
    m.name: m
    for m in (
        MutationEndpoint(
            name="delete_post",
            method="DELETE",
            path="/api/posts/admin/posts/{post_id}",
            parse=schemas.parse_ack,
            query={"post_author_user_id": "postAuthorUserId"},
        ),
        MutationEndpoint(
            name="block_user",
            method="POST",
            path="/api/posts/admin/users/{user_id}/block",
            parse=schemas.parse_ack,
            body=lambda params: {"blockerUserId": "ADMIN_ACTION"},
        ),
        MutationEndpoint(
            name="unblock_user",
            method="DELETE",
            path="/api/posts/admin/users/{user_id}/unblock",
            parse=schemas.parse_ack,
        ),
        MutationEndpoint(
            name="register_user",
            method="POST",
            path="/api/auth/admin/register-user",
            parse=schemas.parse_registered_user,
            required=("email", "password"),
            body=_camel_body,
        ),
        MutationEndpoint(
            name="update_user",
            method="PUT",
            path="/api/auth/users/{user_id}",
            parse=schemas.parse_ack,
            body=_camel_body,
        ),
        MutationEndpoint(
            name="delete_user",
            method="DELETE",
            path="/api/auth/users/{user_id}",
            parse=schemas.parse_ack,
        ),
        MutationEndpoint(
            name="update_user_status",
            method="PUT",
            path="/api/auth/users/{user_id}/status",
            parse=schemas.parse_ack,
            required=("is_active",),
            body=_status_body,
        ),
        MutationEndpoint(
            name="create_package",
            method="POST",
            path="/api/packages",
            parse=schemas.parse_package,
            required=("name",),
            body=_camel_body,
        ),
        MutationEndpoint(
            name="update_package",
            method="PUT",
            path="/api/packages/{package_id}",
            parse=schemas.parse_package,
            body=_camel_body,
        ),
        MutationEndpoint(
            name="delete_package",
            method="DELETE",
            path="/api/packages/{package_id}",
            parse=schemas.parse_ack,
        ),
    )
}

# Tags each mutation invalidates once the server confirms it
INVALIDATES: dict[str, tuple[TagTemplate, ...]] = {
    "delete_post": (
        TagTemplate(REPORTS),
        TagTemplate(STATS),
        TagTemplate(POSTS, param="post_id"),
        TagTemplate(POSTS, instance=LIST),
    ),
    "block_user": (
        TagTemplate(REPORTS),
        TagTemplate(BLOCKED_USERS),
        TagTemplate(STATS),
    ),
    "unblock_user": (
        TagTemplate(BLOCKED_USERS),
        TagTemplate(STATS),
    ),
    "register_user": (
        TagTemplate(USERS),
        TagTemplate(STATS),
    ),
    "update_user": (
        TagTemplate(USERS, param="user_id"),
        TagTemplate(USERS, instance=LIST),
    ),
    "delete_user": (
        TagTemplate(USERS),
        TagTemplate(STATS),
    ),
    "update_user_status": (
        TagTemplate(USERS, param="user_id"),
        TagTemplate(USERS, instance=LIST),
    ),
    "create_package": (
        TagTemplate(PACKAGES),
        TagTemplate(STATS),
    ),
    "update_package": (
        TagTemplate(PACKAGES, param="package_id"),
        TagTemplate(PACKAGES, instance=LIST),
        TagTemplate(STATS),
    ),
    "delete_package": (
        TagTemplate(PACKAGES),
        TagTemplate(STATS),
    ),
}

# The resource instance a mutation writes to; two mutations sharing one
# never run at the same time
IDENTITY: dict[str, TagTemplate] = {
    "delete_post": TagTemplate(POSTS, param="post_id"),
    "block_user": TagTemplate(USERS, param="user_id"),
    "unblock_user": TagTemplate(USERS, param="user_id"),
    "update_user": TagTemplate(USERS, param="user_id"),
    "delete_user": TagTemplate(USERS, param="user_id"),
    "update_user_status": TagTemplate(USERS, param="user_id"),
    "update_package": TagTemplate(PACKAGES, param="package_id"),
    "delete_package": TagTemplate(PACKAGES, param="package_id"),
}


# =============================================================================
# Resolution
# =============================================================================


def _fill_path(path: str, params: Mapping[str, Any]) -> str:
    return path.format(**{k: quote(str(params[k]), safe="") for k in _template_fields(path)})


def _require(name: str, params: Mapping[str, Any], required: tuple[str, ...]) -> None:
    for param in required:
        value = params.get(param)
        if value is None or value == "":
            raise ValidationError(f"{name}: missing required parameter {param!r}")


def query_endpoint(name: str) -> QueryEndpoint:
    try:
        return QUERIES[name]
    except KeyError:
        raise ValidationError(f"Unknown query endpoint: {name!r}") from None


def mutation_endpoint(kind: str) -> MutationEndpoint:
    try:
        return MUTATIONS[kind]
    except KeyError:
        raise ValidationError(f"Unknown mutation: {kind!r}") from None


def normalize_query_params(
    name: str,
    params: Mapping[str, Any] | None = None,
    *,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> dict[str, Any]:
    """Apply defaults and shape checks; the result is what the cache key hashes."""
    endpoint = query_endpoint(name)
    given = {k: v for k, v in (params or {}).items() if v is not None}
    allowed = set(endpoint.path_params)
    normalized: dict[str, Any] = {}

    if endpoint.paginated:
        allowed |= {"page", "limit"}
        page, limit = validate_page_params(
            given.get("page", 1), given.get("limit", page_size)
        )
        normalized.update(page=page, limit=limit)

    unknown = set(given) - allowed
    if unknown:
        raise ValidationError(f"{name}: unknown parameters {sorted(unknown)}")

    _require(name, given, endpoint.path_params)
    for param in endpoint.path_params:
        normalized[param] = given[param]
    return normalized


def resolve_query(name: str, params: Mapping[str, Any]) -> RequestDescriptor:
    """Build the GET request for already-normalized query params."""
    endpoint = query_endpoint(name)
    query = {k: v for k, v in params.items() if k not in endpoint.path_params}
    return RequestDescriptor(
        method="GET",
        path=_fill_path(endpoint.path, params),
        params=query,
    )


def resolve_mutation(operation: Operation) -> RequestDescriptor:
    endpoint = mutation_endpoint(operation.kind)
    params = {k: v for k, v in operation.params.items() if v is not None}
    _require(operation.kind, params, endpoint.path_params + endpoint.required)

    query = {
        wire: params[name] for name, wire in endpoint.query.items() if name in params
    }
    rest = {
        k: v
        for k, v in params.items()
        if k not in endpoint.path_params and k not in endpoint.query
    }
    if endpoint.body is None and rest:
        raise ValidationError(
            f"{operation.kind}: unexpected parameters {sorted(rest)}"
        )
    return RequestDescriptor(
        method=endpoint.method,
        path=_fill_path(endpoint.path, params),
        params=query,
        body=endpoint.body(rest) if endpoint.body is not None else None,
    )


def provided_tags(name: str, params: Mapping[str, Any]) -> Callable[[Any], list[Tag]]:
    """Tags a query result depends on, as a function of the parsed result.

    Lists provide one tag per item plus ``LIST``; a failed list fetch (result
    None) still provides ``LIST`` so a later invalidation reaches it.
    """
    endpoint = query_endpoint(name)

    def provides(result: Any) -> list[Tag]:
        if endpoint.instance_param is not None:
            return [tag(endpoint.category, params[endpoint.instance_param])]
        if endpoint.items_key is None:
            return [tag(endpoint.category)]
        items = getattr(result, "items", result)
        return collection_tags(endpoint.category, items, endpoint.id_attr)

    return provides


def invalidation_tags(operation: Operation) -> list[Tag]:
    return [t.expand(operation.params) for t in INVALIDATES.get(operation.kind, ())]


def identity_tag(operation: Operation) -> Tag | None:
    template = IDENTITY.get(operation.kind)
    if template is None:
        return None
    return template.expand(operation.params)


__all__ = [
    "IDENTITY",
    "INVALIDATES",
    "MUTATIONS",
    "QUERIES",
    "TAG_TYPES",
    "MutationEndpoint",
    "Operation",
    "QueryEndpoint",
    "TagTemplate",
    "identity_tag",
    "invalidation_tags",
    "normalize_query_params",
    "provided_tags",
    "query_endpoint",
    "resolve_mutation",
    "resolve_query",
]
