import pytest

from cryptobot.alerts.evaluator import RuleEngine
from cryptobot.alerts.rules import Direction, RuleRecord
from cryptobot.assets.catalog import SymbolCatalog
from cryptobot.commands.router import CommandRouter
from cryptobot.errors import PriceFetchError, RuleParseError
from cryptobot.utils.types import MentionEvent
from storage.rule_store import RuleStore
from tests.helpers.fakes import FakeNotifier, FakePrices

LINE = "Active|alice|2024-01-01|BTC|50000.000000|Above\n"


def _engine(tmp_path, text, prices, notifier=None):
    path = tmp_path / "alarms.txt"
    if text is not None:
        path.write_text(text)
    store = RuleStore(path)
    notifier = notifier or FakeNotifier()
    return RuleEngine(store, FakePrices(prices) if isinstance(prices, dict) else prices, [notifier]), path, notifier


@pytest.mark.asyncio
async def test_crossing_closes_rule_and_notifies_once(tmp_path):
    engine, path, notifier = _engine(tmp_path, LINE, {"BTC": 51000.0})

    report = await engine.evaluate_pass()

    assert path.read_text() == "Closed|alice|2024-01-01|BTC|50000.000000|Above\n"
    assert len(notifier.sent) == 1
    n = notifier.sent[0]
    assert (n.owner, n.asset, n.price) == ("alice", "BTC", 51000.0)
    assert report.closed == 1 and report.notified == 1


@pytest.mark.asyncio
async def test_no_cross_leaves_rule_active(tmp_path):
    engine, path, notifier = _engine(tmp_path, LINE, {"BTC": 49000.0})

    report = await engine.evaluate_pass()

    assert path.read_text() == LINE
    assert notifier.sent == []
    assert report.active == 1 and report.closed == 0


@pytest.mark.asyncio
async def test_price_equal_to_threshold_does_not_fire(tmp_path):
    text = LINE + "Active|bob|2024-01-01|BTC|50000.000000|Below\n"
    engine, path, notifier = _engine(tmp_path, text, {"BTC": 50000.0})
    await engine.evaluate_pass()
    assert path.read_text() == text
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_closed_rules_are_never_renotified(tmp_path):
    engine, path, notifier = _engine(tmp_path, LINE, {"BTC": 51000.0})

    for _ in range(3):
        await engine.evaluate_pass()

    assert len(notifier.sent) == 1
    assert path.read_text().startswith("Closed|")


@pytest.mark.asyncio
async def test_one_price_call_per_asset_per_pass(tmp_path):
    text = "".join(
        f"Active|u{i}|2024-01-01|BTC|{60000 + i}.000000|Above\n" for i in range(25)
    ) + "Active|x|2024-01-01|ETH|100.000000|Below\n"
    prices = FakePrices({"BTC": 50000.0, "ETH": 3000.0}, delay=0.01)
    engine, _, _ = _engine(tmp_path, text, prices)

    report = await engine.evaluate_pass()

    assert sorted(prices.calls) == [("BTC", "USD"), ("ETH", "USD")]
    assert report.price_calls == 2
    assert report.visited == 26


@pytest.mark.asyncio
async def test_closed_records_do_not_trigger_price_fetch(tmp_path):
    prices = FakePrices({"BTC": 51000.0})
    engine, _, _ = _engine(tmp_path, "Closed|alice|2024-01-01|BTC|50000.000000|Above\n", prices)
    await engine.evaluate_pass()
    assert prices.calls == []


@pytest.mark.asyncio
async def test_price_failure_isolated_to_its_asset(tmp_path):
    text = (
        "Active|a|2024-01-01|BTC|100.000000|Above\n"
        "Active|b|2024-01-01|ETH|100.000000|Above\n"
        "Active|c|2024-01-01|BTC|50.000000|Above\n"
        "Active|d|2024-01-01|ETH|5000.000000|Below\n"
    )
    prices = {"BTC": PriceFetchError("BTC", "http 503"), "ETH": 3000.0}
    engine, path, notifier = _engine(tmp_path, text, prices)

    report = await engine.evaluate_pass()

    lines = path.read_text().splitlines()
    assert lines[0].startswith("Active|a|")
    assert lines[1].startswith("Closed|b|")
    assert lines[2].startswith("Active|c|")
    assert lines[3].startswith("Closed|d|")
    assert sorted(n.owner for n in notifier.sent) == ["b", "d"]
    assert report.skipped_assets == ["BTC"]


@pytest.mark.asyncio
async def test_unexpected_price_exception_is_contained(tmp_path):
    engine, path, notifier = _engine(tmp_path, LINE, {"BTC": RuntimeError("boom")})
    report = await engine.evaluate_pass()
    assert path.read_text() == LINE
    assert report.skipped_assets == ["BTC"]


@pytest.mark.asyncio
async def test_duplicate_rules_close_independently(tmp_path):
    engine, path, notifier = _engine(tmp_path, LINE + LINE, {"BTC": 51000.0})
    await engine.evaluate_pass()
    assert path.read_text() == "Closed|alice|2024-01-01|BTC|50000.000000|Above\n" * 2
    assert len(notifier.sent) == 2


@pytest.mark.asyncio
async def test_notification_failure_keeps_rule_closed(tmp_path):
    engine, path, notifier = _engine(tmp_path, LINE, {"BTC": 51000.0}, notifier=FakeNotifier(fail=True))

    report = await engine.evaluate_pass()

    assert path.read_text().startswith("Closed|")
    assert report.failed_notifications == 1 and report.notified == 0


@pytest.mark.asyncio
async def test_malformed_store_fails_pass_without_notifying(tmp_path):
    text = LINE + "this line is broken\n"
    engine, path, notifier = _engine(tmp_path, text, {"BTC": 51000.0})

    with pytest.raises(RuleParseError):
        await engine.evaluate_pass()

    assert path.read_text() == text
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_appended_rule_is_evaluated_next_pass(tmp_path):
    engine, path, notifier = _engine(tmp_path, None, {"SOL": 10.0})
    assert (await engine.evaluate_pass()).visited == 0

    await engine.store.append(RuleRecord.new("erin", "2024-01-02", "SOL", 20.0, Direction.BELOW))
    report = await engine.evaluate_pass()

    assert report.visited == 1 and report.closed == 1
    assert notifier.sent[0].owner == "erin"


@pytest.mark.asyncio
async def test_sub_precision_threshold_never_reaches_the_store(tmp_path):
    store = RuleStore(tmp_path / "alarms.txt")
    router = CommandRouter(store, SymbolCatalog(), FakePrices())
    reply = await router.handle(MentionEvent(user="U1", text="<@B> sethigh btc 0.0000004", channel="C1"))
    assert reply.pretext == "Try again!"

    notifier = FakeNotifier()
    report = await RuleEngine(store, FakePrices({"BTC": 1e-7}), [notifier]).evaluate_pass()
    assert report.visited == 0
    assert notifier.sent == []
