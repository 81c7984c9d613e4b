import unittest

from partyline.broadcast import BroadcastEngine
from partyline.lines import PartyLine, Subscriber
from partyline.messages import User

from .bot_util import FakeClock


class TestBroadcastEngine(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.sent = []
        self.engine = BroadcastEngine(self.sent.append, now_func=self.clock.now)
        self.line = PartyLine("work", "p")
        self.alice = Subscriber(user=User("alice"), alias="al", bot_screen_name="work@bot")
        self.bob = Subscriber(user=User("bob"))
        self.carol = Subscriber(user=User("carol"))
        for subscriber in (self.alice, self.bob, self.carol):
            self.line._add(subscriber)

    def test_sender_is_skipped_and_name_prefixed(self):
        delivered = self.engine.broadcast(self.alice, self.line, "hi")

        self.assertEqual(delivered, 2)
        self.assertEqual([(m.recipient.name, m.content) for m in self.sent], [("bob", "[al] hi"), ("carol", "[al] hi")])

    def test_system_messages_are_not_prefixed(self):
        self.engine.broadcast(self.alice, self.line, "woot! cows -> 1", is_system=True)

        self.assertEqual({m.content for m in self.sent}, {"woot! cows -> 1"})

    def test_snoozing_members_are_skipped(self):
        self.bob.snooze(self.clock.now() + 60_000)

        delivered = self.engine.broadcast(self.alice, self.line, "hi")

        self.assertEqual(delivered, 1)
        self.assertEqual([m.recipient.name for m in self.sent], ["carol"])

    def test_persona_defaults_to_line_name(self):
        self.engine.announce(self.line, "restarting")

        personas = {m.recipient.name: m.sender.name for m in self.sent}
        self.assertEqual(personas, {"alice": "work@bot", "bob": "work", "carol": "work"})

    def test_announce_without_line_does_nothing(self):
        self.assertEqual(self.engine.announce(None, "hello"), 0)
        self.assertEqual(self.sent, [])

    def test_failed_delivery_does_not_stop_fan_out(self):
        def send(message):
            if message.recipient.name == "bob":
                raise ConnectionError("gone")
            self.sent.append(message)

        engine = BroadcastEngine(send, now_func=self.clock.now)
        with self.assertLogs("partyline.broadcast", level="ERROR"):
            delivered = engine.broadcast(None, self.line, "hello", is_system=True)

        self.assertEqual(delivered, 2)
        self.assertEqual([m.recipient.name for m in self.sent], ["alice", "carol"])


if __name__ == "__main__":
    unittest.main()
