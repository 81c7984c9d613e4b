import random
import unittest

from partyline.errors import AuthenticationError, ValidationError
from partyline.lines import LineDirectory, Subscriber
from partyline.messages import User

from .bot_util import FakeClock


class TestLineDirectory(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.directory = LineDirectory(now_func=self.clock.now)
        self.alice = User("alice@example.com")
        self.bob = User("bob@example.com")

    def test_first_join_creates_line(self):
        result = self.directory.start_or_join("work", "p", self.alice, "al")

        self.assertTrue(result.created)
        self.assertEqual(result.line.name, "work")
        self.assertEqual(result.line.password, "p")
        self.assertEqual(result.subscriber.alias, "al")
        self.assertEqual(result.subscriber.join_time_ms, self.clock.now())
        self.assertIs(self.directory.active_line(self.alice), result.line)
        self.assertIs(self.directory.subscriber_for(self.alice), result.subscriber)

    def test_wrong_password_is_rejected(self):
        self.directory.start_or_join("work", "p", self.alice)

        with self.assertRaises(AuthenticationError):
            self.directory.start_or_join("work", "nope", self.bob)
        self.assertIsNone(self.directory.active_line(self.bob))

    def test_joining_another_line_leaves_the_first(self):
        self.directory.start_or_join("work", "p", self.alice)
        first = self.directory.get_line("work")
        result = self.directory.start_or_join("play", "q", self.alice)

        self.assertIs(result.previous_line, first)
        self.assertIsNone(first.member(self.alice))
        self.assertEqual(self.directory.active_line(self.alice).name, "play")

    def test_rejoining_same_line_keeps_subscriber(self):
        first = self.directory.start_or_join("work", "p", self.alice).subscriber
        first.record_activity("one two", self.clock.now())

        again = self.directory.start_or_join("work", "p", self.alice, "al")

        self.assertTrue(again.already_member)
        self.assertIs(again.subscriber, first)
        self.assertEqual(first.alias, "al")
        self.assertEqual(first.word_count, 2)

    def test_leave_removes_membership_and_is_idempotent(self):
        self.directory.start_or_join("work", "p", self.alice)

        line, subscriber = self.directory.leave(self.alice)

        self.assertEqual(line.name, "work")
        self.assertEqual(subscriber.user, self.alice)
        self.assertEqual(line.members(), [])
        self.assertIsNone(self.directory.active_line(self.alice))
        self.assertIsNone(self.directory.leave(self.alice))

    def test_user_is_in_at_most_one_line(self):
        rng = random.Random(7)
        users = [User(f"user{i}") for i in range(6)]
        names = ["a", "b", "c"]
        for _ in range(500):
            user = rng.choice(users)
            if rng.random() < 0.7:
                self.directory.start_or_join(rng.choice(names), "pw", user)
            else:
                self.directory.leave(user)

            for candidate in users:
                memberships = [line.name for line in self.directory.lines() if line.member(candidate) is not None]
                self.assertLessEqual(len(memberships), 1)
                active = self.directory.active_line(candidate)
                self.assertEqual(memberships, [active.name] if active else [])

    def test_resolve_by_alias_or_name(self):
        line = self.directory.start_or_join("work", "p", self.alice, "al").line
        self.directory.start_or_join("work", "p", self.bob)

        self.assertEqual(self.directory.resolve_subscriber(line, "al").user, self.alice)
        self.assertEqual(self.directory.resolve_subscriber(line, "alice@example.com").user, self.alice)
        self.assertEqual(self.directory.resolve_subscriber(line, "bob@example.com").user, self.bob)
        self.assertIsNone(self.directory.resolve_subscriber(line, "carol"))

    def test_alias_must_be_unique_within_line(self):
        self.directory.start_or_join("work", "p", self.alice, "al")

        with self.assertRaises(ValidationError):
            self.directory.start_or_join("work", "p", self.bob, "al")
        with self.assertRaises(ValidationError):
            self.directory.start_or_join("work", "p", self.bob, "alice@example.com")

        bob = self.directory.start_or_join("work", "p", self.bob).subscriber
        with self.assertRaises(ValidationError):
            self.directory.set_alias(bob, "al")
        self.assertEqual(self.directory.set_alias(bob, "bobby"), "bob@example.com")
        self.assertEqual(bob.display_name, "bobby")

    def test_handle_matching_an_alias_cannot_join(self):
        line = self.directory.start_or_join("work", "p", self.alice, "bob@example.com").line

        with self.assertRaises(ValidationError):
            self.directory.start_or_join("work", "p", self.bob)

        self.assertIsNone(line.member(self.bob))
        self.assertIsNone(self.directory.active_line(self.bob))

    def test_snapshot_round_trip_keeps_every_field(self):
        alice = self.directory.start_or_join("work", "p", self.alice, "al", bot_screen_name="work@bot").subscriber
        alice.record_activity("hello there", self.clock.now() + 5)
        alice.snooze(self.clock.now() + 60_000)
        alice.remember("hello there")
        self.directory.start_or_join("play", "q", self.bob)

        snapshot = self.directory.snapshot()
        restored = LineDirectory.from_snapshot(snapshot, now_func=self.clock.now)

        self.assertEqual(restored.snapshot(), snapshot)
        copy = restored.subscriber_for(self.alice)
        self.assertEqual(copy.alias, "al")
        self.assertEqual(copy.bot_screen_name, "work@bot")
        self.assertEqual(copy.message_count, 1)
        self.assertEqual(copy.word_count, 2)
        self.assertEqual(copy.snooze_until_ms, self.clock.now() + 60_000)
        self.assertEqual(copy.last_message, "hello there")
        self.assertEqual(restored.get_line("play").password, "q")

    def test_restore_rejects_unknown_version(self):
        with self.assertRaises(ValueError):
            self.directory.restore({"version": 99, "lines": []})


    def test_restore_rejects_duplicate_line_names(self):
        snapshot = {
            "version": 1,
            "lines": [
                {"name": "work", "password": "p", "subscribers": [{"user": "alice@example.com"}]},
                {"name": "work", "password": "q", "subscribers": []},
            ],
        }

        with self.assertRaises(ValueError):
            self.directory.restore(snapshot)
        self.assertEqual(self.directory.lines(), [])

class TestSubscriber(unittest.TestCase):
    def test_snooze_window(self):
        subscriber = Subscriber(user=User("a"))
        self.assertFalse(subscriber.is_snoozing(100))

        subscriber.snooze(200)
        self.assertTrue(subscriber.is_snoozing(100))
        self.assertFalse(subscriber.is_snoozing(200))

        subscriber.snooze(None)
        self.assertFalse(subscriber.is_snoozing(100))

    def test_display_name_prefers_alias(self):
        self.assertEqual(Subscriber(user=User("a")).display_name, "a")
        self.assertEqual(Subscriber(user=User("a"), alias="x").display_name, "x")


if __name__ == "__main__":
    unittest.main()
