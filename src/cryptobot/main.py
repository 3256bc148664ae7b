# src/cryptobot/main.py
from __future__ import annotations

import asyncio
import logging
import signal

import structlog

from cryptobot.alerts.evaluator import EngineConfig, RuleEngine
from cryptobot.alerts.notifiers import ConsoleNotifier, Notifier, SlackNotifier
from cryptobot.assets.catalog import SymbolCatalog
from cryptobot.charts.quickchart import ChartConfig, ChartService
from cryptobot.commands.router import CommandRouter
from cryptobot.config import Settings
from cryptobot.prices.cex import CexConfig, CexPriceSource
from cryptobot.scheduler import PassScheduler, SchedulerConfig
from cryptobot.slack.socket_mode import SocketModeClient
from cryptobot.slack.web import SlackConfig, SlackWebClient
from cryptobot.utils.time import formatted_now
from cryptobot.utils.types import MentionEvent, Reply
from storage.rule_store import RuleStore

log = structlog.get_logger()


def configure_logging(level: str) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level, logging.INFO)),
    )


# ---------------------------
# Inbound mentions
# ---------------------------

async def handle_event(evt: MentionEvent, router: CommandRouter, web: SlackWebClient) -> None:
    try:
        reply = await router.handle(evt)
    except Exception:
        log.exception("command_crashed", user=evt.user, text=evt.text[:200])
        return
    try:
        await web.post_message(evt.channel, reply)
    except Exception as e:
        log.warning("reply_failed", channel=evt.channel, err=str(e))


async def events_loop(q_events: asyncio.Queue, router: CommandRouter, web: SlackWebClient) -> None:
    """
    One task per mention so a slow chart does not hold up other users.
    Each task logs its own failures; the set only keeps them referenced.
    """
    inflight: set[asyncio.Task] = set()
    try:
        while True:
            evt = await q_events.get()
            t = asyncio.create_task(handle_event(evt, router, web), name="mention")
            inflight.add(t)
            t.add_done_callback(inflight.discard)
    finally:
        if inflight:
            await asyncio.gather(*inflight, return_exceptions=True)


async def startup_ping(web: SlackWebClient, channel: str) -> None:
    reply = Reply(
        text="Hi! I'm on! Type help after tagging me to know what I can do!",
        pretext="Howdy!",
        color="#4af030",
        fields=[{"title": "Date", "value": formatted_now(), "short": True}],
    )
    try:
        await web.post_message(channel, reply)
    except Exception as e:
        log.warning("startup_ping_failed", err=str(e))


# ---------------------------
# Main
# ---------------------------

async def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    store = RuleStore(settings.alerts_file)
    catalog = SymbolCatalog()
    prices = CexPriceSource(CexConfig(base_url=settings.price_api_url, timeout_s=settings.http_timeout_s))
    charts = ChartService(ChartConfig(
        coingecko_url=settings.coingecko_url,
        quickchart_url=settings.quickchart_url,
        timeout_s=settings.http_timeout_s,
    ))
    await prices.start()
    await charts.start()

    notifiers: list[Notifier] = [ConsoleNotifier()]
    web = None
    socket_client = None
    q_events: asyncio.Queue = asyncio.Queue(maxsize=1_000)

    if settings.slack_enabled:
        web = SlackWebClient(SlackConfig(
            bot_token=settings.slack_bot_token,
            app_token=settings.slack_app_token,
            timeout_s=settings.http_timeout_s,
        ))
        await web.start()
        notifiers.append(SlackNotifier(web, settings.slack_channel_id))
        socket_client = SocketModeClient(web.open_socket_url, q_events)
        log.info("slack_enabled", channel=settings.slack_channel_id)
    else:
        log.info("slack_disabled_missing_env")

    engine = RuleEngine(store, prices, notifiers, EngineConfig(quote=settings.quote_currency))
    scheduler = PassScheduler(engine.evaluate_pass, SchedulerConfig(interval_s=settings.check_interval_s))

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass

    tasks: list[asyncio.Task] = []
    try:
        await scheduler.start()
        if web is not None and socket_client is not None:
            router = CommandRouter(
                store, catalog, prices,
                charts=charts,
                user_name=web.user_name,
                quote=settings.quote_currency,
            )
            tasks.append(asyncio.create_task(socket_client.start(), name="socket_mode"))
            tasks.append(asyncio.create_task(events_loop(q_events, router, web), name="events"))
            if settings.startup_ping:
                await startup_ping(web, settings.slack_channel_id)
        log.info("bot_started", alerts_file=settings.alerts_file, interval_s=settings.check_interval_s)
        await stop.wait()
    finally:
        log.info("shutting_down")
        # let an in-flight pass finish its rewrite first
        await scheduler.stop()
        if socket_client is not None:
            await socket_client.stop()
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for client in (web, charts, prices):
            if client is not None:
                await client.stop()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
