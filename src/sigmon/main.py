# src/sigmon/main.py
import asyncio
import signal
import sys
from contextlib import suppress

import structlog
from dotenv import load_dotenv

from sigmon.alerts.dispatcher import AlertDispatcher
from sigmon.alerts.formatting import format_signal_message
from sigmon.alerts.notifiers import ConsoleNotifier
from sigmon.alerts.store import JsonRuleStore, PostgresRuleStore, RuleCache, StaticRuleStore
from sigmon.config import Settings, load_settings
from sigmon.data.mirror_redis import RedisMirror
from sigmon.indicators.engine import IndicatorsConfig
from sigmon.ingest.feed_ws import FeedConfig, FeedConnector
from sigmon.ingest.historical import HistoricalClient, HistoricalConfig
from sigmon.notify.telegram import TelegramConfig, TelegramNotifier
from sigmon.pipeline import SymbolPipeline
from sigmon.utils.errors import ConfigError
from sigmon.utils.logsetup import configure_logging
from sigmon.utils.types import Tick

log = structlog.get_logger("main")


# ---------------------------
# Wiring
# ---------------------------

def build_rule_store(settings: Settings):
    if settings.database_url:
        log.info("rule_store", kind="postgres")
        return PostgresRuleStore(settings.database_url)
    if settings.rules_file:
        log.info("rule_store", kind="json", path=settings.rules_file)
        return JsonRuleStore(settings.rules_file)
    log.warning("rule_store_unconfigured", hint="set DATABASE_URL or RULES_FILE")
    return StaticRuleStore()


def build_sinks(settings: Settings) -> list:
    sinks: list = [ConsoleNotifier()]
    if settings.telegram_enabled:
        sinks.append(TelegramNotifier(TelegramConfig(
            bot_token=settings.telegram_bot_token,
            chat_id=settings.telegram_chat_id,
        )))
        log.info("telegram_enabled")
    else:
        log.info("telegram_disabled_missing_env")
    return sinks


def build_pipelines(settings: Settings, rules: RuleCache, sinks: list) -> dict[str, SymbolPipeline]:
    ind_cfg = IndicatorsConfig(
        rsi_period=settings.rsi_period,
        macd=settings.macd,
        stochastic=settings.stochastic,
        bollinger=settings.bollinger,
        max_history=settings.max_points,
    )
    pipelines: dict[str, SymbolPipeline] = {}
    for sym in settings.symbols:
        # one ledger per symbol: a rule watches every symbol independently
        dispatcher = AlertDispatcher(
            sinks,
            format_fn=lambda s, p, tz=settings.alert_tz: format_signal_message(s, p, tz),
        )
        pipelines[sym] = SymbolPipeline(
            sym,
            capacity=settings.max_points,
            granularity_s=settings.granularity_s,
            indicators=ind_cfg,
            rules=rules,
            dispatcher=dispatcher,
        )
    return pipelines


def make_router(pipelines: dict[str, SymbolPipeline]):
    async def route(tick: Tick) -> None:
        p = pipelines.get(tick.symbol.upper())
        if p is None:
            log.debug("tick_unknown_symbol", symbol=tick.symbol)
            return
        await p.on_tick(tick)
    return route


def make_backfill(settings: Settings, client: HistoricalClient, pipelines: dict[str, SymbolPipeline]):
    async def fetch() -> dict:
        syms = list(pipelines)
        results = await asyncio.gather(
            *(client.fetch_bars(s, settings.interval, outputsize=settings.max_points) for s in syms),
            return_exceptions=True,
        )
        out = {}
        for sym, res in zip(syms, results):
            if isinstance(res, BaseException):
                log.warning("backfill_symbol_failed", symbol=sym, err=str(res))
                continue
            out[sym] = res
        return out

    async def apply(bars_by_symbol: dict) -> None:
        for sym, bars in bars_by_symbol.items():
            await pipelines[sym].load_history(bars)

    return fetch, apply


# ---------------------------
# Main
# ---------------------------

async def main(settings: Settings) -> None:
    stop = asyncio.Event()

    store = build_rule_store(settings)
    rules = RuleCache(store, refresh_s=settings.rules_refresh_s)
    await rules.refresh()

    sinks = build_sinks(settings)
    pipelines = build_pipelines(settings, rules, sinks)

    mirror = RedisMirror(settings.redis_url, enabled=settings.redis_mirror)
    if mirror.enabled:
        for p in pipelines.values():
            p.ticks.subscribe(mirror.on_tick)
            p.indicator_sets.subscribe(mirror.on_indicators)
    await mirror.start()

    historical = HistoricalClient(HistoricalConfig(api_key=settings.api_key, rest_url=settings.rest_url))
    fetch, apply = make_backfill(settings, historical, pipelines)

    feed = FeedConnector(
        FeedConfig(
            ws_url=settings.ws_url,
            api_key=settings.api_key,
            symbols=list(settings.symbols),
            reconnect_base_s=settings.reconnect_base_s,
            reconnect_factor=settings.reconnect_factor,
            reconnect_max_s=settings.reconnect_max_s,
            max_reconnect_attempts=settings.reconnect_max_attempts,
        ),
        on_tick=make_router(pipelines),
        backfill_fetch=fetch,
        backfill_apply=apply,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    refresher = asyncio.create_task(rules.run(stop), name="rules-refresh")
    feed_task = asyncio.create_task(feed.start(), name="feed")
    stop_task = asyncio.create_task(stop.wait(), name="stop-wait")
    log.info("sigmon_started", symbols=list(settings.symbols), interval=settings.interval)

    try:
        await asyncio.wait({feed_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        # graceful shutdown to avoid unclosed sessions
        stop.set()
        await feed.stop()
        for t in (feed_task, refresher, stop_task):
            t.cancel()
            with suppress(asyncio.CancelledError):
                await t
        await historical.stop()
        await mirror.stop()
        for s in sinks:
            if hasattr(s, "stop"):
                await s.stop()
        if isinstance(store, PostgresRuleStore):
            await store.close()
        log.info("sigmon_stopped", feed=feed.status())


def run() -> None:
    load_dotenv()
    try:
        settings = load_settings()
    except ConfigError as e:
        configure_logging()
        log.error("config_error", err=str(e))
        sys.exit(2)
    configure_logging(settings.log_level, json=settings.log_json)
    try:
        asyncio.run(main(settings))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
