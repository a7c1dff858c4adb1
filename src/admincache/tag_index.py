"""Inverted index from tags to the cache keys that depend on them."""

from collections.abc import Iterable

from admincache.tags import tag_prefixes
from admincache.types import CacheKey, Tag


class TagIndex:
    """Maps every prefix of every declared tag to the keys that declared it.

    Indexing ``("Users", "42")`` files the key under ``("Users",)`` and
    ``("Users", "42")``, so a lookup is one dict access per queried tag.
    """

    def __init__(self) -> None:
        self._keys_by_tag: dict[Tag, set[CacheKey]] = {}
        self._tags_by_key: dict[CacheKey, frozenset[Tag]] = {}

    def index(self, key: CacheKey, tags: Iterable[Tag]) -> frozenset[Tag]:
        """Record that ``key`` depends on ``tags``, replacing its old tag set."""
        new_tags = frozenset(tags)
        if self._tags_by_key.get(key) == new_tags:
            return new_tags
        self.remove(key)
        self._tags_by_key[key] = new_tags
        for t in new_tags:
            for prefix in tag_prefixes(t):
                self._keys_by_tag.setdefault(prefix, set()).add(key)
        return new_tags

    def remove(self, key: CacheKey) -> None:
        """Deregister a key from all tags it was indexed under."""
        old_tags = self._tags_by_key.pop(key, None)
        if not old_tags:
            return
        for t in old_tags:
            for prefix in tag_prefixes(t):
                keys = self._keys_by_tag.get(prefix)
                if keys is None:
                    continue
                keys.discard(key)
                if not keys:
                    del self._keys_by_tag[prefix]

    def keys_for_tags(self, tags: Iterable[Tag]) -> set[CacheKey]:
        """Keys whose tag set is reached by any of ``tags``."""
        result: set[CacheKey] = set()
        for t in tags:
            result.update(self._keys_by_tag.get(tuple(t), ()))
        return result

    def tags_for(self, key: CacheKey) -> frozenset[Tag]:
        return self._tags_by_key.get(key, frozenset())

    def clear(self) -> None:
        self._keys_by_tag.clear()
        self._tags_by_key.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._tags_by_key

    def __len__(self) -> int:
        return len(self._tags_by_key)
