"""Tests for gateway event handling in the WebSocket client."""

from handsign.message import CountdownMessage, ScoresMessage
from handsign_client.ws_client import WebSocketClient


def test_incoming_events_are_parsed():
    received = []
    client = WebSocketClient("ws://127.0.0.1:1/session", "t", on_message=received.append)

    client._handle_incoming('{"type": "countdown", "value": 2}')
    client._handle_incoming('{"type": "scores", "scores": {"a": 0.75, "b": 0.25}}')

    assert received == [CountdownMessage(2), ScoresMessage({"a": 0.75, "b": 0.25})]
    assert client.get_stats()["messages_received"] == 2


def test_invalid_events_are_counted():
    received = []
    client = WebSocketClient("ws://127.0.0.1:1/session", "t", on_message=received.append)

    client._handle_incoming("not json")
    client._handle_incoming('{"type": "countdown"}')

    assert received == []
    assert client.get_stats()["messages_invalid"] == 2


def test_send_requires_queue_space():
    client = WebSocketClient("ws://127.0.0.1:1/session", "t")
    for _ in range(100):
        assert client.send(CountdownMessage(1))
    assert not client.send(CountdownMessage(1))
    assert client.get_stats()["messages_failed"] == 1
