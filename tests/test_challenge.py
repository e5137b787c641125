import string
import unittest

from didauth.challenge import Challenge, ChallengeTracker, generate_challenge
from didauth.errors import DIDAuthError, ErrorKind

from fakes import DID, OTHER_DID, FakeClock


class TestGenerateChallenge(unittest.TestCase):
    def test_template(self) -> None:
        message = generate_challenge(DID, now_ms=1700000000123)
        lines = message.split("\n")
        self.assertEqual(len(lines), 4)
        self.assertEqual(lines[0], "DID Login Challenge")
        self.assertEqual(lines[1], f"DID: {DID}")
        self.assertEqual(lines[2], "Timestamp: 1700000000123")
        nonce = lines[3].split(": ", 1)[1]
        self.assertTrue(lines[3].startswith("Nonce: "))
        self.assertEqual(len(nonce), 13)
        self.assertTrue(set(nonce) <= set(string.digits + string.ascii_lowercase))

    def test_contains_identity(self) -> None:
        self.assertIn(DID, generate_challenge(DID))

    def test_every_call_is_distinct(self) -> None:
        challenges = {generate_challenge(DID, now_ms=1) for _ in range(200)}
        self.assertEqual(len(challenges), 200)

    def test_parse(self) -> None:
        parsed = Challenge.parse(generate_challenge(DID, now_ms=42))
        self.assertEqual(parsed.identity, DID)
        self.assertEqual(parsed.timestamp_ms, 42)
        self.assertEqual(parsed.render(), Challenge(DID, 42, parsed.nonce).render())

    def test_parse_rejects_other_text(self) -> None:
        for text in ["hello world", "DID Login Challenge\nDID: x\nTimestamp: soon\nNonce: n"]:
            with self.subTest(text=text):
                with self.assertRaises(DIDAuthError) as ctx:
                    Challenge.parse(text)
                self.assertIs(ctx.exception.kind, ErrorKind.CHALLENGE_REJECTED)


class TestChallengeTracker(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.tracker = ChallengeTracker(max_age=60, clock=self.clock)

    def _assert_rejected(self, func, *args) -> None:
        with self.assertRaises(DIDAuthError) as ctx:
            func(*args)
        self.assertIs(ctx.exception.kind, ErrorKind.CHALLENGE_REJECTED)

    def test_issue_uses_clock_timestamp(self) -> None:
        challenge = self.tracker.issue(DID)
        self.assertEqual(Challenge.parse(challenge).timestamp_ms, int(self.clock.now * 1000))

    def test_single_use(self) -> None:
        challenge = self.tracker.issue(DID)
        self.tracker.check(DID, challenge)
        self.tracker.consume(DID, challenge)
        self._assert_rejected(self.tracker.check, DID, challenge)
        self._assert_rejected(self.tracker.consume, DID, challenge)

    def test_unknown_challenge(self) -> None:
        self._assert_rejected(self.tracker.check, DID, generate_challenge(DID))

    def test_bound_to_identity(self) -> None:
        challenge = self.tracker.issue(DID)
        self._assert_rejected(self.tracker.check, OTHER_DID, challenge)

    def test_expires(self) -> None:
        challenge = self.tracker.issue(DID)
        self.clock.advance(61)
        self._assert_rejected(self.tracker.consume, DID, challenge)

    def test_stale_entries_are_pruned(self) -> None:
        self.tracker.issue(DID)
        self.clock.advance(120)
        self.tracker.issue(OTHER_DID)
        self.assertEqual(len(self.tracker), 1)

    def test_rejects_non_positive_age(self) -> None:
        with self.assertRaises(ValueError):
            ChallengeTracker(max_age=0)


if __name__ == "__main__":
    unittest.main()
