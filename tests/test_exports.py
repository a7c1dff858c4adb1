"""Tests for package exports."""


def test_client_exports_available() -> None:
    """Test that the view-layer API is importable from the package root."""
    from admincache import (
        ConflictPolicy,
        Operation,
        Paginator,
        QueryClient,
        QuerySubscription,
        Settings,
        get_settings,
    )

    # Just verify they're importable
    assert QueryClient is not None
    assert QuerySubscription is not None
    assert Paginator is not None
    assert Operation is not None
    assert ConflictPolicy is not None
    assert Settings is not None
    assert get_settings is not None


def test_building_blocks_exported() -> None:
    """Test that the lower-level pieces are importable."""
    from admincache import (
        CacheStore,
        HttpTransport,
        MutationDispatcher,
        RequestDeduplicator,
        TagIndex,
        describe,
        make_cache_key,
        tag,
    )

    assert CacheStore is not None
    assert TagIndex is not None
    assert RequestDeduplicator is not None
    assert MutationDispatcher is not None
    assert HttpTransport is not None
    assert describe is not None
    assert make_cache_key is not None
    assert tag is not None


def test_error_hierarchy() -> None:
    from admincache import (
        AdminCacheError,
        ConflictError,
        NetworkError,
        ParseError,
        ServerError,
        ValidationError,
    )

    for error in (NetworkError, ServerError, ParseError, ConflictError, ValidationError):
        assert issubclass(error, AdminCacheError)
    assert issubclass(ValidationError, ValueError)


def test_all_names_resolve() -> None:
    import admincache

    for name in admincache.__all__:
        assert hasattr(admincache, name), name
