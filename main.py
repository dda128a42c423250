"""
Prompt Hatcher - trade generation CLI

Runs the trade generation pipeline once for a natural-language strategy.

    python main.py "Buy oversold large caps near 24h support" --provider anthropic
    python main.py --strategy-file my_strategy.txt --num-results 2 --output run.json
"""

import argparse
import asyncio
import json
from pathlib import Path
from typing import Optional

from termcolor import cprint

from hatchery.config import get_settings, load_dotenv, reload_settings
from hatchery.core.event import PipelineEventType
from hatchery.pipeline import ExecutionContext, StepName, TradePipeline, create_trade_pipeline
from hatchery.pipeline.steps import EnrichmentResult, GenerationOutcome
from hatchery.utils import setup_logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate AI trade proposals from a strategy prompt")
    parser.add_argument("strategy", nargs="?", default="", help="Strategy text")
    parser.add_argument("--strategy-file", help="Read strategy text from a file")
    parser.add_argument("--name", default="Custom Strategy", help="Strategy name")
    parser.add_argument("--provider", help="AI provider (anthropic, openai, google, xai)")
    parser.add_argument("--execution-time", default="intraday", choices=["target", "scalping", "intraday", "swing"])
    parser.add_argument("--num-results", type=int, default=3)
    parser.add_argument("--capital", type=float, default=1000.0)
    parser.add_argument("--leverage", type=float, default=1.0)
    parser.add_argument("--assets", nargs="*", help="Symbols, e.g. BTC/USDT ETH/USDT")
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--output", help="Write the telemetry export and trades as JSON")
    parser.add_argument("--cancel-after", type=float, help="Cancel the run after N seconds")
    return parser.parse_args()


def attach_progress(pipeline: TradePipeline) -> None:
    """控制台进度输出"""

    @pipeline.on(PipelineEventType.PIPELINE_START)
    def on_start(event):
        cprint(f"▶ {event.execution_id}: {event.steps_count} steps", "cyan")

    @pipeline.on(PipelineEventType.STEP_START)
    def on_step_start(event):
        cprint(f"  [{event.index + 1}] {event.step}...", "white")

    @pipeline.on(PipelineEventType.STEP_COMPLETE)
    def on_step_complete(event):
        cprint(f"      ✓ {event.step} ({event.duration_ms}ms)", "green")

    @pipeline.on(PipelineEventType.STEP_RETRY)
    def on_step_retry(event):
        cprint(
            f"      ↻ {event.step} retry {event.attempt}/{event.max_attempts - 1} "
            f"in {event.delay_ms}ms: {event.error}",
            "yellow",
        )

    @pipeline.on(PipelineEventType.STEP_ERROR)
    def on_step_error(event):
        color = "yellow" if event.optional else "red"
        cprint(f"      ✗ {event.step}: {event.error}", color)

    @pipeline.on(PipelineEventType.PIPELINE_ERROR)
    def on_pipeline_error(event):
        verb = "cancelled" if event.aborted else "failed"
        cprint(f"■ Pipeline {verb} at {event.step}: {event.error}", "red", attrs=["bold"])


def print_result(ctx: ExecutionContext) -> None:
    cprint("=" * 60, "cyan")
    cprint(f"Status: {ctx.status.upper()}  ({ctx.duration_ms}ms)", "cyan", attrs=["bold"])

    result: Optional[EnrichmentResult] = ctx.maybe_result(StepName.ENRICH_GLASS_BOX.value, EnrichmentResult)
    if result is not None:
        summary = result.summary
        color = "green" if summary.outcome == GenerationOutcome.OK else "yellow"
        cprint(
            f"Requested {summary.requested} | generated {summary.generated} | "
            f"valid {summary.valid} | invalid {summary.invalid}",
            color,
        )
        cprint(summary.message, color)

        for i, trade in enumerate(result.trades, 1):
            side_color = "green" if trade.is_long else "red"
            cprint(f"\n  [{i}] {trade.asset} {trade.direction.value}", side_color, attrs=["bold"])
            cprint(
                f"      entry {trade.entry:g}  TP {trade.take_profit:g}  SL {trade.stop_loss:g}  "
                f"R:R {trade.risk_reward_ratio:g}  confidence {trade.confidence:g}",
                "white",
            )
            if trade.summary:
                cprint(f"      {trade.summary}", "white")

        for invalid in result.invalid_trades:
            cprint(f"\n  ✗ {invalid.trade.asset}: {invalid.reason}", "yellow")

    if ctx.telemetry is not None:
        t = ctx.telemetry.get_summary()
        cprint(
            f"\nTelemetry: {len(t['steps_executed'])} steps, "
            f"{t['error_count']} errors, {t['warning_count']} warnings",
            "white",
        )
    cprint("=" * 60, "cyan")


def write_output(ctx: ExecutionContext, path: str) -> None:
    result = ctx.maybe_result(StepName.ENRICH_GLASS_BOX.value, EnrichmentResult)
    payload = {
        "execution": ctx.summary(),
        "telemetry": ctx.telemetry.export() if ctx.telemetry else None,
        "result": result.model_dump(mode="json") if result else None,
    }
    Path(path).write_text(json.dumps(payload, indent=2, ensure_ascii=False, default=str), encoding="utf-8")
    cprint(f"Wrote {path}", "white")


async def main():
    args = parse_args()
    load_dotenv()

    # 显式指定配置文件时重新加载，避免沿用已缓存的设置
    settings = reload_settings(args.config) if args.config else get_settings()
    setup_logger(settings.logging_config)

    strategy_text = args.strategy
    if args.strategy_file:
        strategy_text = Path(args.strategy_file).read_text(encoding="utf-8")

    config = {
        "execution_time": args.execution_time,
        "num_results": args.num_results,
        "capital": args.capital,
        "leverage": args.leverage,
        "ai_provider": args.provider or settings.providers.default,
    }
    if args.assets:
        config["assets"] = args.assets

    pipeline = create_trade_pipeline(settings=settings)
    attach_progress(pipeline)

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    if args.cancel_after:
        loop.call_later(args.cancel_after, cancel_event.set)

    try:
        ctx = await pipeline.execute(
            {"strategy": {"name": args.name, "content": strategy_text}, "config": config},
            cancel_event=cancel_event,
        )
    except KeyboardInterrupt:
        cprint("Interrupted", "yellow")
        return

    print_result(ctx)
    if args.output:
        write_output(ctx, args.output)


if __name__ == "__main__":
    asyncio.run(main())
