"""Mutation dispatcher - pessimistic writes followed by tag invalidation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any

from admincache.endpoints import (
    Operation,
    identity_tag,
    invalidation_tags,
    mutation_endpoint,
    resolve_mutation,
)
from admincache.errors import ConflictError, ParseError
from admincache.store import CacheStore
from admincache.tags import serialize_tag
from admincache.transport import Transport
from admincache.types import MutationResult, RequestDescriptor, Tag

logger = logging.getLogger(__name__)


class ConflictPolicy(Enum):
    """What happens to a write for a resource that already has one pending."""

    QUEUE = "queue"  # wait behind it, first come first served
    REJECT = "reject"  # raise ConflictError


class MutationDispatcher:
    """Runs writes against the API and invalidates what they touched.

    The cache only changes after the server confirms a write. Writes that
    share an identity tag (e.g. block then unblock of the same user) never
    overlap; the policy decides whether the later one waits or fails.
    """

    def __init__(
        self,
        store: CacheStore,
        transport: Transport,
        *,
        policy: ConflictPolicy = ConflictPolicy.QUEUE,
    ) -> None:
        self._store = store
        self._transport = transport
        self._policy = policy
        self._locks: dict[Tag, asyncio.Lock] = {}
        self._claims: dict[Tag, int] = {}

    @property
    def policy(self) -> ConflictPolicy:
        return self._policy

    def in_progress(self, identity: Tag) -> bool:
        return identity in self._claims

    async def mutate(self, operation: Operation) -> MutationResult[Any]:
        """Execute ``operation`` and invalidate its tags on success.

        Raises:
            ValidationError: bad parameters, nothing was sent
            ConflictError: REJECT policy and the resource has a write pending
            NetworkError, ServerError: the write failed, the cache is untouched
            ParseError: the write succeeded but its response was malformed;
                invalidation still happens
        """
        request = resolve_mutation(operation)
        identity = identity_tag(operation)
        if identity is None:
            return await self._execute(operation, request)
        async with self._claim(identity, operation):
            return await self._execute(operation, request)

    @asynccontextmanager
    async def _claim(self, identity: Tag, operation: Operation) -> AsyncIterator[None]:
        lock = self._locks.get(identity)
        if lock is None:
            lock = self._locks[identity] = asyncio.Lock()
        elif self._policy is ConflictPolicy.REJECT:
            raise ConflictError(
                f"{operation.kind}: conflicting operation in progress for "
                f"{serialize_tag(identity)}"
            )
        else:
            logger.debug(
                "%s queued behind pending write to %s",
                operation.kind,
                serialize_tag(identity),
            )

        self._claims[identity] = self._claims.get(identity, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._claims[identity] -= 1
            if not self._claims[identity]:
                del self._claims[identity]
                del self._locks[identity]

    async def _execute(
        self, operation: Operation, request: RequestDescriptor
    ) -> MutationResult[Any]:
        endpoint = mutation_endpoint(operation.kind)
        logger.debug("Mutation %s: %s %s", operation.kind, request.method, request.path)
        raw = await self._transport.send(request)

        tags = invalidation_tags(operation)
        try:
            result = endpoint.parse(raw)
        except ParseError:
            logger.error("Malformed response for mutation %s", operation.kind)
            self._store.invalidate(tags)
            raise
        self._store.invalidate(tags)
        return MutationResult(result=result, invalidated=tags)


__all__ = ["ConflictPolicy", "MutationDispatcher"]
