"""End-to-end tests for QueryClient over an in-process transport."""

import asyncio

import pytest

from admincache import (
    ConflictError,
    ConflictPolicy,
    NetworkError,
    QueryClient,
    ServerError,
    Settings,
    Status,
    ValidationError,
    tag,
)
from admincache.schemas import ModerationStats, Report

from conftest import FakeTransport

REPORTS = "/api/posts/admin/reports"
STATS = "/api/posts/admin/stats"
BLOCKED = "/api/posts/admin/blocked-users"


class FakeModerationApi:
    """Server-side state for the moderation endpoints."""

    def __init__(self, transport: FakeTransport) -> None:
        self.reports = [
            {"id": f"r{i}", "postId": "p1" if i <= 2 else f"p{i}", "reason": "spam"}
            for i in range(1, 26)
        ]
        self.blocked: set[str] = set()
        transport.route("GET", REPORTS, self.list_reports)
        transport.route("GET", STATS, self.stats)
        transport.route("GET", BLOCKED, self.list_blocked)
        transport.route("DELETE", "/api/posts/admin/posts/p1", self.delete_p1)

    def list_reports(self, request) -> dict:
        page, limit = request.params["page"], request.params["limit"]
        total_pages = max(1, -(-len(self.reports) // limit))
        return {
            "reports": self.reports[(page - 1) * limit : page * limit],
            "pagination": {
                "currentPage": page,
                "totalPages": total_pages,
                "totalReports": len(self.reports),
            },
        }

    def stats(self, request) -> dict:
        return {"pendingReports": len(self.reports), "blockedUsers": len(self.blocked)}

    def list_blocked(self, request) -> dict:
        return {"blockedUsers": [{"id": f"b-{uid}", "blockedUserId": uid} for uid in sorted(self.blocked)]}

    def delete_p1(self, request) -> dict:
        self.reports = [r for r in self.reports if r["postId"] != "p1"]
        return {"success": True, "message": "Post deleted"}


@pytest.fixture
def api(transport: FakeTransport) -> FakeModerationApi:
    return FakeModerationApi(transport)


class TestQuery:
    async def test_typed_page(self, client: QueryClient, api: FakeModerationApi) -> None:
        """Test that a paginated query returns typed items and page metadata."""
        page = await client.query("admin_reports", page=1)
        assert len(page) == 10
        assert isinstance(page.items[0], Report)
        assert page.pagination.total_pages == 3
        assert page.pagination.items_per_page == 10
        assert page.pagination.has_next_page is True

    async def test_second_query_served_from_cache(
        self, client: QueryClient, api: FakeModerationApi, transport: FakeTransport
    ) -> None:
        """Test that a repeated query is served from cache without a request."""
        first = await client.query("admin_stats")
        second = await client.query("admin_stats")
        assert first is second
        assert isinstance(first, ModerationStats)
        assert transport.count("GET", STATS) == 1

    async def test_concurrent_queries_share_one_request(
        self, client: QueryClient, api: FakeModerationApi, transport: FakeTransport
    ) -> None:
        """Test that concurrent equivalent queries send one request."""
        await asyncio.gather(
            client.query("admin_reports", page=1, limit=10),
            client.query("admin_reports", limit=10, page=1),
            client.query("admin_reports"),
        )
        assert transport.count("GET", REPORTS) == 1

    def test_cache_key_ignores_param_order(self, client: QueryClient) -> None:
        """Test that parameter order and defaults do not change the cache key."""
        assert client.cache_key("admin_reports", page=2, limit=5) == client.cache_key(
            "admin_reports", limit=5, page=2
        )
        assert client.cache_key("admin_reports") == client.cache_key(
            "admin_reports", page=1, limit=10
        )

    async def test_invalid_params_send_nothing(
        self, client: QueryClient, transport: FakeTransport
    ) -> None:
        """Test that invalid parameters fail before anything is sent."""
        with pytest.raises(ValidationError):
            await client.query("admin_reports", page=0)
        with pytest.raises(ValidationError):
            await client.query("admin_stats", status="pending")
        assert transport.calls == []


class TestDeletePostScenario:
    """Deleting a post refetches the reports page and the stats."""

    async def test_affected_queries_refetch(
        self, client: QueryClient, api: FakeModerationApi, transport: FakeTransport
    ) -> None:
        """Test that deleting a post refetches reports and stats."""
        reports = client.subscribe("admin_reports", {"page": 1})
        stats = client.subscribe("admin_stats")
        await client.store.wait_idle()

        assert reports.status is Status.SUCCESS
        assert len(reports.data.items) == 10
        assert reports.pagination is not None
        assert reports.pagination.total_pages == 3

        await client.mutate("delete_post", post_id="p1")
        await client.store.wait_idle()

        assert transport.count("GET", REPORTS) == 2
        assert transport.count("GET", STATS) == 2
        assert all(r.post_id != "p1" for r in reports.data.items)
        assert stats.data.pending_reports == 23
        assert reports.status is Status.SUCCESS

    async def test_unrelated_queries_untouched(
        self, client: QueryClient, api: FakeModerationApi, transport: FakeTransport
    ) -> None:
        """Test that queries without a matching tag are not refetched."""
        client.subscribe("admin_blocked_users")
        await client.store.wait_idle()

        await client.mutate("delete_post", post_id="p1")
        await client.store.wait_idle()

        assert transport.count("GET", BLOCKED) == 1


async def test_error_isolation(
    client: QueryClient, api: FakeModerationApi, transport: FakeTransport
) -> None:
    """Test that one failing query does not affect another."""
    transport.route("GET", BLOCKED, ServerError(500, "boom"))

    await client.query("admin_reports", page=1)
    with pytest.raises(ServerError):
        await client.query("admin_blocked_users", page=1)

    reports = client.store.get(client.cache_key("admin_reports", page=1))
    blocked = client.store.get(client.cache_key("admin_blocked_users", page=1))
    assert reports is not None and reports.status is Status.SUCCESS
    assert blocked is not None and blocked.status is Status.ERROR
    assert blocked.error.status == 500  # type: ignore[union-attr]


class TestBlockUnblockConflict:
    """block_user("u1") immediately followed by unblock_user("u1")."""

    def _routes(self, api: FakeModerationApi, transport: FakeTransport) -> asyncio.Event:
        release = asyncio.Event()

        async def block(request) -> dict:
            await release.wait()
            api.blocked.add("u1")
            return {"success": True}

        def unblock(request) -> dict:
            api.blocked.discard("u1")
            return {"success": True}

        transport.route("POST", "/api/posts/admin/users/u1/block", block)
        transport.route("DELETE", "/api/posts/admin/users/u1/unblock", unblock)
        return release

    async def test_queue_applies_both_in_order(
        self, client: QueryClient, api: FakeModerationApi, transport: FakeTransport
    ) -> None:
        """Test that queued writes on one user run in submission order."""
        release = self._routes(api, transport)
        blocked = client.subscribe("admin_blocked_users")
        await client.store.wait_idle()

        first = asyncio.create_task(client.mutate("block_user", user_id="u1"))
        second = asyncio.create_task(client.mutate("unblock_user", user_id="u1"))
        await asyncio.sleep(0.01)
        release.set()
        await asyncio.gather(first, second)
        await client.store.wait_idle()

        assert [c.method for c in transport.calls if "/users/u1/" in c.path] == [
            "POST",
            "DELETE",
        ]
        assert blocked.data.items == []
        assert blocked.entry.stale is False

    async def test_reject_keeps_first(
        self, settings: Settings, api: FakeModerationApi, transport: FakeTransport
    ) -> None:
        """Test that a rejected write leaves the first write's effect."""
        client = QueryClient(
            settings=settings, transport=transport, policy=ConflictPolicy.REJECT
        )
        release = self._routes(api, transport)
        blocked = client.subscribe("admin_blocked_users")
        await client.store.wait_idle()

        first = asyncio.create_task(client.mutate("block_user", user_id="u1"))
        await asyncio.sleep(0.01)
        with pytest.raises(ConflictError):
            await client.mutate("unblock_user", user_id="u1")
        release.set()
        await first
        await client.store.wait_idle()

        assert [b.blocked_user_id for b in blocked.data.items] == ["u1"]
        await client.aclose()


class TestSubscription:
    async def test_refreshing_keeps_previous_data(
        self, client: QueryClient, transport: FakeTransport
    ) -> None:
        """Test that a refetch keeps showing the previous data."""
        release = asyncio.Event()
        calls = 0

        async def stats(request) -> dict:
            nonlocal calls
            calls += 1
            if calls > 1:
                await release.wait()
            return {"pendingReports": calls}

        transport.route("GET", STATS, stats)
        sub = client.subscribe("admin_stats")
        await client.store.wait_idle()
        assert sub.data.pending_reports == 1

        client.invalidate("Stats")
        await asyncio.sleep(0.01)
        assert sub.is_refreshing
        assert not sub.is_loading
        assert sub.data.pending_reports == 1

        release.set()
        await client.store.wait_idle()
        assert sub.data.pending_reports == 2
        assert sub.status is Status.SUCCESS

    async def test_loading_before_first_result(
        self, client: QueryClient, transport: FakeTransport
    ) -> None:
        """Test that a subscription is loading until its first result."""
        release = asyncio.Event()

        async def stats(request) -> dict:
            await release.wait()
            return {}

        transport.route("GET", STATS, stats)
        sub = client.subscribe("admin_stats")
        await asyncio.sleep(0.01)
        assert sub.is_loading
        assert sub.data is None

        release.set()
        await client.store.wait_idle()
        assert not sub.is_loading
        assert sub.data == ModerationStats()

    async def test_callback_receives_snapshots(
        self, client: QueryClient, api: FakeModerationApi
    ) -> None:
        """Test that the callback sees each status change."""
        seen: list[Status] = []
        client.subscribe("admin_stats", callback=lambda entry: seen.append(entry.status))
        await client.store.wait_idle()
        assert seen == [Status.LOADING, Status.SUCCESS]

    async def test_refetch(
        self, client: QueryClient, api: FakeModerationApi, transport: FakeTransport
    ) -> None:
        """Test that refetch sends a new request for a fresh entry."""
        sub = client.subscribe("admin_stats")
        await client.store.wait_idle()
        await sub.refetch()
        assert transport.count("GET", STATS) == 2

    async def test_unsubscribe(self, client: QueryClient, api: FakeModerationApi) -> None:
        """Test that unsubscribe drops the subscriber count."""
        sub = client.subscribe("admin_stats")
        await client.store.wait_idle()
        sub.unsubscribe()
        assert sub.entry.subscriber_count == 0
        assert "SUCCESS" in repr(sub).upper()


class TestPaginator:
    async def test_clamped_navigation(
        self, client: QueryClient, api: FakeModerationApi, transport: FakeTransport
    ) -> None:
        """Test that navigation stays inside the page range."""
        pages = client.paginator("admin_reports")
        first = await pages.load()
        assert first.total_pages == 3

        assert await pages.go_to(0) is first
        assert await pages.go_to(4) is first
        assert transport.count("GET", REPORTS) == 1

        assert (await pages.next_page()).current_page == 2
        assert [r.id for r in pages.items][:1] == ["r11"]
        # Back to a page that is still fresh in the cache
        await pages.prev_page()
        assert transport.count("GET", REPORTS) == 2

    async def test_failed_page_keeps_position(
        self, client: QueryClient, api: FakeModerationApi, transport: FakeTransport
    ) -> None:
        """Test that a page that fails to load can be retried from the same page."""
        failures = iter([NetworkError("connection reset")])

        def flaky_reports(request) -> dict:
            if request.params["page"] == 2:
                error = next(failures, None)
                if error is not None:
                    raise error
            return api.list_reports(request)

        transport.route("GET", REPORTS, flaky_reports)
        pages = client.paginator("admin_reports")
        first = await pages.load()

        with pytest.raises(NetworkError):
            await pages.next_page()
        assert pages.descriptor is first

        assert (await pages.next_page()).current_page == 2
        assert [c.params["page"] for c in transport.calls] == [1, 2, 2]

    def test_not_paginated(self, client: QueryClient) -> None:
        """Test that only paginated queries get a paginator."""
        with pytest.raises(ValueError):
            client.paginator("admin_stats")

    @pytest.mark.parametrize("limit", [0, -5])
    def test_invalid_limit(
        self, client: QueryClient, transport: FakeTransport, limit: int
    ) -> None:
        """Test that a non-positive limit is rejected before any request."""
        with pytest.raises(ValidationError):
            client.paginator("admin_reports", limit=limit)
        assert transport.calls == []

    def test_invalid_start_page(self, client: QueryClient) -> None:
        """Test that the start page is validated when the paginator is built."""
        with pytest.raises(ValidationError):
            client.paginator("admin_reports", page=0)


class TestInvalidateAndClose:
    async def test_invalidate_by_category_name(
        self, client: QueryClient, api: FakeModerationApi
    ) -> None:
        """Test that a bare category name invalidates only that category."""
        await client.query("admin_stats")
        await client.query("admin_reports")
        keys = client.invalidate("Stats")
        assert keys == {client.cache_key("admin_stats")}

    async def test_invalidate_by_tag(self, client: QueryClient, api: FakeModerationApi) -> None:
        """Test that an item tag invalidates the page containing it."""
        page = await client.query("admin_reports")
        keys = client.invalidate(tag("Reports", page.items[0].id))
        assert keys == {client.cache_key("admin_reports")}

    async def test_context_manager_closes_transport(
        self, settings: Settings, transport: FakeTransport
    ) -> None:
        """Test that leaving the context closes the transport."""
        async with QueryClient(settings=settings, transport=transport) as client:
            assert len(client.store) == 0
        assert transport.closed
