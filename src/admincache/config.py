import os
from dataclasses import dataclass, field
from functools import lru_cache

from dotenv import load_dotenv

from admincache.duration import parse_duration

load_dotenv()

_CONFLICT_POLICIES = ("queue", "reject")


@dataclass(frozen=True)
class Settings:
    """Client settings loaded from environment variables."""

    # API
    api_url: str = field(
        default_factory=lambda: os.getenv("ADMIN_API_URL", "http://localhost:3000")
    )
    api_timeout: float = field(
        default_factory=lambda: float(os.getenv("ADMIN_API_TIMEOUT", "10"))
    )
    api_token: str | None = field(default_factory=lambda: os.getenv("ADMIN_API_TOKEN"))

    # Cache
    keep_unused_for: str = field(
        default_factory=lambda: os.getenv("ADMIN_CACHE_KEEP_UNUSED", "60s")
    )
    page_size: int = field(
        default_factory=lambda: int(os.getenv("ADMIN_CACHE_PAGE_SIZE", "10"))
    )
    conflict_policy: str = field(
        default_factory=lambda: os.getenv("ADMIN_CACHE_CONFLICT_POLICY", "queue").lower()
    )

    def __post_init__(self) -> None:
        """Validate settings after initialization."""
        if not self.api_url.startswith(("http://", "https://")):
            raise ValueError(f"ADMIN_API_URL must be an http(s) URL, got {self.api_url!r}")

        if self.api_timeout <= 0:
            raise ValueError("ADMIN_API_TIMEOUT must be positive")

        # Raises ValueError on a malformed duration
        parse_duration(self.keep_unused_for)

        if self.page_size < 1:
            raise ValueError("ADMIN_CACHE_PAGE_SIZE must be at least 1")

        if self.conflict_policy not in _CONFLICT_POLICIES:
            raise ValueError(
                f"ADMIN_CACHE_CONFLICT_POLICY must be one of {list(_CONFLICT_POLICIES)}, "
                f"got {self.conflict_policy!r}"
            )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
