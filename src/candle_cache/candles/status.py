"""Read-only status projections over the live builder and the rebuild orchestrator."""

from __future__ import annotations

from candle_cache.candles.builder import CandleCacheBuilder
from candle_cache.candles.rebuild import RebuildOrchestrator
from candle_cache.models.status import (
    AllBuildersStatus,
    BuilderStatus,
    RebuilderStatus,
)


class CandleCacheStatusReporter:
    def __init__(
        self,
        orchestrator: RebuildOrchestrator,
        builder: CandleCacheBuilder | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.builder = builder

    def get_rebuilder_status(self) -> RebuilderStatus:
        return self.orchestrator.status()

    def get_builder_status(self) -> BuilderStatus:
        if self.builder is None:
            return BuilderStatus(description="Live builder is not running in this process")
        return self.builder.status

    def get_all_builders_status(self) -> AllBuildersStatus:
        return AllBuildersStatus(
            builder=self.get_builder_status(),
            rebuilder=self.get_rebuilder_status(),
        )
