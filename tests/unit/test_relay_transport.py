import json
import sys
from pathlib import Path
import unittest

import httpx

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from questlog.domain.models.sync import MessageType, SyncMessage
from questlog.infrastructure.relay_transport import HttpRelayTransport

TOKENS = {"Bearer token-gm": "gm", "Bearer token-alice": "alice"}


class _FakeRelay:
    """Minimal relay: an append-only message list per channel with integer cursors.

    Posts are attributed to the client behind the bearer token, as a real relay would.
    """

    def __init__(self) -> None:
        self.messages: list[dict] = []
        self.fail_posts = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            if self.fail_posts:
                return httpx.Response(500)
            sender = TOKENS.get(request.headers.get("Authorization", ""))
            if sender is None:
                return httpx.Response(401)
            self.messages.append({"sender": sender, "message": json.loads(request.content)})
            return httpx.Response(201, json={"cursor": len(self.messages)})
        after = int(request.url.params.get("after", "0"))
        return httpx.Response(200, json={"messages": self.messages[after:], "cursor": len(self.messages)})


def _transport(relay: _FakeRelay, token: str = "token-gm") -> HttpRelayTransport:
    client = httpx.Client(base_url="https://relay.invalid", transport=httpx.MockTransport(relay.handler))
    return HttpRelayTransport(
        "https://relay.invalid",
        token=token,
        retries=0,
        backoff_seconds=0.0,
        http_client=client,
    )


def _message(revision: int, sender: str = "gm") -> SyncMessage:
    return SyncMessage(type=MessageType.APPLY, quest_id="q1", revision=revision, payload={"sender": sender})


class HttpRelayTransportTests(unittest.TestCase):
    def test_send_then_poll_delivers_each_message_once(self) -> None:
        relay = _FakeRelay()
        sender = _transport(relay)
        receiver = _transport(relay, "token-alice")
        received: list[SyncMessage] = []
        receiver.on_message(received.append)

        sender.send(_message(1))
        sender.send(_message(2))

        self.assertEqual(2, receiver.poll())
        self.assertEqual(0, receiver.poll())
        self.assertEqual([1, 2], [message.revision for message in received])
        self.assertEqual(["gm", "gm"], [message.sender for message in received])
        self.assertEqual(2, receiver.cursor)

    def test_sender_claimed_in_payload_is_replaced_by_relay_identity(self) -> None:
        relay = _FakeRelay()
        impostor = _transport(relay, "token-alice")
        receiver = _transport(relay)
        received: list[SyncMessage] = []
        receiver.on_message(received.append)

        impostor.send(_message(1, sender="gm"))
        receiver.poll()

        self.assertEqual("alice", received[0].sender)

    def test_rows_without_relay_sender_are_skipped(self) -> None:
        relay = _FakeRelay()
        relay.messages = [{"message": _message(1).to_wire()}, {"sender": "gm", "message": _message(2).to_wire()}]
        receiver = _transport(relay)
        received: list[SyncMessage] = []
        receiver.on_message(received.append)

        with self.assertLogs("questlog.infrastructure.relay_transport", level="WARNING"):
            delivered = receiver.poll()

        self.assertEqual(1, delivered)
        self.assertEqual([2], [message.revision for message in received])

    def test_failed_send_is_logged_and_dropped(self) -> None:
        relay = _FakeRelay()
        relay.fail_posts = True
        sender = _transport(relay)

        with self.assertLogs("questlog.infrastructure.relay_transport", level="WARNING"):
            sender.send(_message(1))

        self.assertEqual([], relay.messages)

    def test_malformed_relay_rows_are_skipped(self) -> None:
        relay = _FakeRelay()
        relay.messages = [{"sender": "gm", "message": {"type": "bogus"}}, {"sender": "gm", "message": _message(1).to_wire()}]
        receiver = _transport(relay)
        received: list[SyncMessage] = []
        receiver.on_message(received.append)

        with self.assertLogs("questlog.infrastructure.relay_transport", level="WARNING"):
            delivered = receiver.poll()

        self.assertEqual(1, delivered)
        self.assertEqual(2, receiver.cursor)

    def test_closed_transport_stops_sending_and_polling(self) -> None:
        relay = _FakeRelay()
        transport = _transport(relay)

        transport.close()
        transport.send(_message(1))

        self.assertEqual([], relay.messages)
        self.assertEqual(0, transport.poll())


if __name__ == "__main__":
    unittest.main()
