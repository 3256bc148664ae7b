import asyncio

import pytest

from cryptobot.slack.socket_mode import SocketModeClient, SocketModeConfig, parse_mention
from cryptobot.utils.types import MentionEvent


def _mention(env_id, text="<@UBOT> price btc", event_id="Ev1"):
    return {
        "envelope_id": env_id,
        "type": "events_api",
        "accepts_response_payload": False,
        "payload": {
            "event_id": event_id,
            "event": {"type": "app_mention", "user": "U1", "text": text, "channel": "C1", "ts": "1.0"},
        },
    }


# ---- monkeypatch ws_connect to our FakeWS ----
@pytest.fixture
def fake_connect(monkeypatch):
    """
    Patch the exact symbol used inside socket_mode.py; each connect pops
    the next scripted FakeWS.
    """
    from tests.helpers.fake_ws import FakeWS
    import cryptobot.slack.socket_mode as socket_mode

    holder = {"sockets": [], "urls": []}

    def _connect(url, **kwargs):   # not async: used as `async with`
        holder["urls"].append(url)
        if holder["sockets"]:
            return holder["sockets"].pop(0)
        return FakeWS()

    monkeypatch.setattr(socket_mode, "ws_connect", _connect)
    return holder


async def _opener():
    return "wss://example.test/link"


@pytest.mark.asyncio
async def test_mention_is_acked_and_enqueued(fake_connect):
    from tests.helpers.fake_ws import FakeWS
    ws = FakeWS(scripted=[{"type": "hello", "num_connections": 1}, _mention("env-1")])
    fake_connect["sockets"].append(ws)

    q = asyncio.Queue()
    client = SocketModeClient(_opener, q)
    task = asyncio.create_task(client.start())

    evt = await asyncio.wait_for(q.get(), timeout=2.0)
    assert evt == MentionEvent(user="U1", text="<@UBOT> price btc", channel="C1", ts="1.0")
    assert ws.outbound == [{"envelope_id": "env-1"}]

    await client.stop()
    await asyncio.wait_for(task, timeout=2.0)


@pytest.mark.asyncio
async def test_redelivered_event_is_dropped(fake_connect):
    from tests.helpers.fake_ws import FakeWS
    ws = FakeWS(scripted=[_mention("env-1", event_id="Ev9"), _mention("env-2", event_id="Ev9"),
                          _mention("env-3", text="hello", event_id="Ev10")])
    fake_connect["sockets"].append(ws)

    q = asyncio.Queue()
    client = SocketModeClient(_opener, q)
    task = asyncio.create_task(client.start())

    first = await asyncio.wait_for(q.get(), timeout=2.0)
    second = await asyncio.wait_for(q.get(), timeout=2.0)
    assert first.text == "<@UBOT> price btc"
    assert second.text == "hello"
    # every envelope is acked, duplicates included
    assert [m["envelope_id"] for m in ws.outbound] == ["env-1", "env-2", "env-3"]

    await client.stop()
    await asyncio.wait_for(task, timeout=2.0)


@pytest.mark.asyncio
async def test_disconnect_envelope_reconnects(fake_connect):
    from tests.helpers.fake_ws import FakeWS
    first = FakeWS(scripted=[{"type": "disconnect", "reason": "refresh_requested"}])
    second = FakeWS(scripted=[_mention("env-7")])
    fake_connect["sockets"].extend([first, second])

    q = asyncio.Queue()
    client = SocketModeClient(_opener, q, SocketModeConfig(initial_backoff_s=0.01))
    task = asyncio.create_task(client.start())

    evt = await asyncio.wait_for(q.get(), timeout=2.0)
    assert evt.channel == "C1"
    assert len(fake_connect["urls"]) == 2
    assert client.connects == 2

    await client.stop()
    await asyncio.wait_for(task, timeout=2.0)


@pytest.mark.asyncio
async def test_non_mention_events_are_ignored(fake_connect):
    from tests.helpers.fake_ws import FakeWS
    reaction = {
        "envelope_id": "env-r",
        "type": "events_api",
        "payload": {"event_id": "EvR", "event": {"type": "reaction_added", "user": "U1"}},
    }
    ws = FakeWS(scripted=[reaction, {"type": "slash_commands", "envelope_id": "env-s"}, _mention("env-m")])
    fake_connect["sockets"].append(ws)

    q = asyncio.Queue()
    client = SocketModeClient(_opener, q)
    task = asyncio.create_task(client.start())

    evt = await asyncio.wait_for(q.get(), timeout=2.0)
    assert evt.text == "<@UBOT> price btc"
    assert q.empty()

    await client.stop()
    await asyncio.wait_for(task, timeout=2.0)


@pytest.mark.asyncio
async def test_url_open_failure_backs_off_and_retries(fake_connect):
    from tests.helpers.fake_ws import FakeWS
    fake_connect["sockets"].append(FakeWS(scripted=[_mention("env-1")]))
    calls = {"n": 0}

    async def flaky_opener():
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("apps.connections.open failed")
        return "wss://example.test/ok"

    q = asyncio.Queue()
    client = SocketModeClient(flaky_opener, q, SocketModeConfig(initial_backoff_s=0.01))
    task = asyncio.create_task(client.start())

    await asyncio.wait_for(q.get(), timeout=2.0)
    assert calls["n"] == 2

    await client.stop()
    await asyncio.wait_for(task, timeout=2.0)


@pytest.mark.asyncio
async def test_stop_graceful(fake_connect):
    q = asyncio.Queue()
    client = SocketModeClient(_opener, q)

    task = asyncio.create_task(client.start())
    await asyncio.sleep(0.1)
    assert client.connects == 1
    await client.stop()
    await asyncio.wait_for(task, timeout=2.0)


def test_parse_mention_requires_user_and_channel():
    assert parse_mention({"type": "app_mention", "text": "hi", "channel": "C1"}) is None
    assert parse_mention({"type": "message", "user": "U", "channel": "C"}) is None
    evt = parse_mention({"type": "app_mention", "user": "U", "channel": "C"})
    assert evt is not None and evt.text == ""
