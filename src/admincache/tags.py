"""Tag construction and matching.

A tag is a tuple: ``("Stats",)`` names a whole category, ``("Users", "42")``
one instance of it and ``("Users", "LIST")`` the collection as a whole.
Invalidating a tag reaches every entry tag it is a prefix of, so a bare
category reaches all of its instances including ``LIST``.
"""

from collections.abc import Iterable

from admincache.types import Tag

LIST = "LIST"

_ESCAPE_MAP = {"\\": "\\\\", ":": "\\:"}


def tag(category: str, instance: object | None = None) -> Tag:
    """Build a category tag, or an instance tag when ``instance`` is given.

    Example:
        tag("Stats")          # ("Stats",)
        tag("Users", 42)      # ("Users", "42")
        tag("Users", LIST)    # ("Users", "LIST")
    """
    if not category:
        raise ValueError("Tag category must be a non-empty string")
    if instance is None:
        return Tag((category,))
    return Tag((category, str(instance)))


def list_tag(category: str) -> Tag:
    return tag(category, LIST)


def collection_tags(
    category: str,
    items: Iterable[object] | None,
    id_attr: str = "id",
) -> list[Tag]:
    """Tags provided by a list query: one per item plus the ``LIST`` tag."""
    result: list[Tag] = []
    for item in items or ():
        instance = getattr(item, id_attr, None)
        if instance is not None and instance != "":
            result.append(tag(category, instance))
    result.append(list_tag(category))
    return result


def serialize_tag(t: Tag) -> str:
    """Render a tag as ``Category:instance`` for logs and error messages."""

    def escape(part: str) -> str:
        result = part
        for char, escaped in _ESCAPE_MAP.items():
            result = result.replace(char, escaped)
        return result

    return ":".join(escape(str(p)) for p in t)


def tag_prefixes(t: Tag) -> list[Tag]:
    """All non-empty prefixes of a tag, shortest first, the tag included."""
    return [Tag(t[:i]) for i in range(1, len(t) + 1)]
