"""Block sync service configuration models.

See Also:
    [BlockSync][chainsync.services.block_sync.BlockSync]: The service class
        that consumes these configurations.
    [BaseServiceConfig][chainsync.core.base_service.BaseServiceConfig]:
        Base class providing ``interval``, ``max_consecutive_failures`` and
        ``metrics``.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

from chainsync.core.base_service import BaseServiceConfig
from chainsync.node import NodeConfig


class SyncConfig(BaseModel):
    """Cursor, batching and watch-mode settings.

    Note:
        ``offset`` is the number of blocks requested per window and
        ``limit`` the number of heights covered by one planning round, so a
        round plans at most ``ceil(limit / offset)`` windows.
    """

    cursor: int = Field(default=0, ge=0, description="Starting height (exclusive lower bound)")
    offset: int = Field(default=100, ge=1, le=10_000, description="Blocks per window")
    limit: int = Field(default=10_000, ge=1, description="Heights covered by one round")
    watch: bool = Field(default=True, description="Keep polling the head once caught up")
    watch_interval: float = Field(
        default=1.0, gt=0.0, le=3600.0, description="Seconds between watch ticks"
    )
    sequential: bool = Field(
        default=False,
        description="Run the windows of a round one at a time (rate-limited nodes)",
    )
    max_concurrency: int = Field(
        default=0,
        ge=0,
        description="Parallel windows per round (0 = all at once)",
    )

    @model_validator(mode="after")
    def validate_offset_within_limit(self) -> SyncConfig:
        if self.offset > self.limit:
            raise ValueError(f"offset ({self.offset}) must not exceed limit ({self.limit})")
        return self


class BlockSyncConfig(BaseServiceConfig):
    """Block sync service configuration.

    Example:
        ```yaml
        interval: 30.0
        node:
          url: http://fuel-core:4000/v1/graphql
        sync:
          offset: 100
          limit: 10000
          watch: true
        ```
    """

    node: NodeConfig = Field(default_factory=NodeConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)


class SyncJob(BaseModel):
    """Parameters of one sync job. Missing fields fall back to ``SyncConfig``.

    ``limit`` is not part of a job; it always comes from configuration.
    """

    cursor: int | None = Field(default=None, ge=0)
    offset: int | None = Field(default=None, ge=1, le=10_000)
    watch: bool | None = None
