"""Step 1: fetch live ticker snapshots for the configured assets."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ...constants import DEFAULT_ASSETS
from ...errors import StepError
from ...market import BasePriceSource
from ...models import PriceData, get_current_timestamp_ms
from ..context import ExecutionContext, StepDefinition
from ..names import StepName


class PriceFetchMetadata(BaseModel):
    source: str
    timestamp: int = Field(default_factory=get_current_timestamp_ms)
    assets_requested: int = 0
    assets_received: int = 0
    missing_assets: List[str] = Field(default_factory=list)
    has_24h_stats: bool = False


class PriceFetchResult(BaseModel):
    """Output of the fetch step: symbol -> PriceData plus fetch metadata."""

    prices: Dict[str, PriceData] = Field(default_factory=dict)
    metadata: PriceFetchMetadata


def resolve_assets(ctx: ExecutionContext, default_assets: Optional[List[str]] = None) -> List[str]:
    """Assets from the caller's config, else the configured defaults."""
    assets = ctx.input.config.assets or default_assets or DEFAULT_ASSETS
    # 去重并保持顺序
    return list(dict.fromkeys(a.strip().upper() for a in assets if a and a.strip()))


def create_fetch_prices_step(
    price_source: BasePriceSource,
    default_assets: Optional[List[str]] = None,
    timeout_ms: int = 15_000,
    max_retries: int = 2,
    optional: bool = False,
) -> StepDefinition:
    """Build the price fetch step around a price source."""

    async def fetch_prices(ctx: ExecutionContext) -> PriceFetchResult:
        assets = resolve_assets(ctx, default_assets)
        ctx.record("debug", "Fetching prices for assets", {
            "assets_count": len(assets),
            "assets": assets[:5],
        })

        prices = await price_source.fetch_prices(assets)
        if not prices:
            raise StepError(
                f"No prices returned by {price_source.name} for {len(assets)} assets",
                step=StepName.FETCH_PRICES.value,
            )

        missing = [a for a in assets if a not in prices]
        ctx.record("info", f"Fetched {len(prices)} prices", {
            "fetched_count": len(prices),
            "requested_count": len(assets),
        })
        if missing:
            ctx.record("warn", "Some assets have no price", {"missing_assets": missing})

        return PriceFetchResult(
            prices=prices,
            metadata=PriceFetchMetadata(
                source=price_source.name,
                assets_requested=len(assets),
                assets_received=len(prices),
                missing_assets=missing,
                has_24h_stats=any(p.price_change_percent is not None for p in prices.values()),
            ),
        )

    return StepDefinition(
        name=StepName.FETCH_PRICES.value,
        run=fetch_prices,
        description=f"Fetches real-time prices from {price_source.name}",
        optional=optional,
        timeout_ms=timeout_ms,
        max_retries=max_retries,
    )
