import tempfile
import threading
import time
import unittest
from pathlib import Path
from unittest import mock

from catalog import StaticCatalog
from errors import (
    AlreadyStartedError,
    NotFoundError,
    ParticipantNotFound,
    SessionFullError,
    SessionNotFound,
    UnknownError,
    ValidationError,
)
from sessions import SessionService
from settings import Settings
from storage import InMemorySessionStore, SqliteSessionStore
from voting import build_ballot


PREFS = {"mood": "funny", "energy": "chill", "runtime": "medium", "content_type": "both"}


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def _recommendations(*ids):
    return [{"id": rec_id, "title": rec_id, "match_score": 80, "match_reason": ""} for rec_id in ids]


class SessionTestCase(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.store = InMemorySessionStore()
        self.service = SessionService(self.store, Settings(recommendation_delay_seconds=0), clock=self.clock)
        self.session = self.service.create_session("Host")
        self.code = self.session["room_code"]
        self.host_id = self.session["host_id"]

    def join(self, name="Guest"):
        _, participant = self.service.join_session(self.code, name)
        return participant["id"]

    def open_voting(self, *participant_ids):
        for participant_id in (self.host_id,) + participant_ids:
            self.service.submit_preferences(self.code, participant_id, PREFS)
        self.service.set_recommendations(self.code, _recommendations("r1", "r2", "r3"))


class CreateAndLookupTests(SessionTestCase):
    def test_create_builds_waiting_session_with_host(self):
        self.assertEqual(self.session["status"], "waiting")
        self.assertEqual(len(self.session["participants"]), 1)
        host = self.session["participants"][0]
        self.assertEqual(host["id"], self.host_id)
        self.assertTrue(host["is_host"])
        self.assertFalse(host["has_submitted_preferences"])
        self.assertTrue(host["id"].startswith("p_"))
        self.assertTrue(self.session["id"].startswith("s_"))
        self.assertEqual(self.session["expires_at"] - self.session["created_at"], 60 * 60_000)

    def test_lookup_is_case_insensitive(self):
        self.assertEqual(self.service.get_session(self.code.lower())["id"], self.session["id"])
        self.assertIsNone(self.service.get_session("0000"))
        self.assertIsNone(self.service.get_session(None))

    def test_names_are_validated(self):
        for bad in ("", "   ", None, "x" * 21):
            with self.assertRaises(ValidationError):
                self.service.create_session(bad)
        session = self.service.create_session("  Ana  ")
        self.assertEqual(session["participants"][0]["name"], "Ana")

    def test_snapshots_do_not_leak_into_store(self):
        snapshot = self.service.get_session(self.code)
        snapshot["participants"].clear()
        self.assertEqual(len(self.service.get_session(self.code)["participants"]), 1)

    def test_room_code_collision_is_retried(self):
        with mock.patch("codes.generate_room_code", side_effect=[self.code, self.code, "ZZ99"]):
            session = self.service.create_session("Other")
        self.assertEqual(session["room_code"], "ZZ99")
        self.assertEqual(self.service.get_session(self.code)["host_id"], self.host_id)

    def test_gives_up_when_every_code_is_taken(self):
        service = SessionService(self.store, Settings(room_code_attempts=2), clock=self.clock)
        with mock.patch("codes.generate_room_code", return_value=self.code):
            with self.assertRaises(UnknownError):
                service.create_session("Other")

    def test_join_link(self):
        self.assertEqual(self.service.join_link(self.code.lower()), f"quickpick://join/{self.code}")


class SharedDatabaseTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(self.tmpdir.name) / "sessions.db"
        self.first = SessionService(SqliteSessionStore(db_path))
        self.second = SessionService(SqliteSessionStore(db_path))

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_concurrent_joins_through_two_services(self):
        code = self.first.create_session("Host")["room_code"]
        barrier = threading.Barrier(2)

        def join(service, name):
            barrier.wait()
            service.join_session(code, name)

        threads = [
            threading.Thread(target=join, args=(self.first, "One")),
            threading.Thread(target=join, args=(self.second, "Two")),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        names = sorted(p["name"] for p in self.first.get_session(code)["participants"])
        self.assertEqual(names, ["Host", "One", "Two"])


class ExpiryTests(SessionTestCase):
    def test_expired_session_is_not_found_and_removed(self):
        self.clock.advance(60 * 60 + 1)
        self.assertIsNone(self.service.get_session(self.code))
        self.assertEqual(self.store.room_codes(), [])
        with self.assertRaises(SessionNotFound):
            self.service.join_session(self.code, "Late")

    def test_session_alive_until_deadline(self):
        self.clock.advance(60 * 60)
        self.assertIsNotNone(self.service.get_session(self.code))

    def test_reap_expired(self):
        self.clock.advance(30 * 60)
        fresh = self.service.create_session("Fresh")
        self.clock.advance(31 * 60)
        self.assertEqual(self.service.reap_expired(), [self.code])
        self.assertEqual(self.store.room_codes(), [fresh["room_code"]])


class JoinTests(SessionTestCase):
    def test_join_appends_guest(self):
        session, participant = self.service.join_session(self.code.lower(), "Guest")
        self.assertFalse(participant["is_host"])
        self.assertEqual([p["id"] for p in session["participants"]], [self.host_id, participant["id"]])

    def test_ninth_join_is_full(self):
        for index in range(7):
            self.join(f"Guest {index}")
        self.assertEqual(len(self.service.get_session(self.code)["participants"]), 8)
        with self.assertRaises(SessionFullError) as ctx:
            self.service.join_session(self.code, "One too many")
        self.assertEqual(ctx.exception.kind, "full")

    def test_join_after_start(self):
        self.service.set_status(self.code, "voting")
        with self.assertRaises(AlreadyStartedError):
            self.service.join_session(self.code, "Late")

    def test_join_unknown_and_malformed_codes(self):
        unknown = "ZZZZ" if self.code != "ZZZZ" else "YYYY"
        with self.assertRaises(NotFoundError):
            self.service.join_session(unknown, "Guest")
        with self.assertRaises(ValidationError):
            self.service.join_session("00", "Guest")
        with self.assertRaises(ValidationError):
            self.service.join_session("23ßA", "Guest")

    def test_concurrent_joins_respect_capacity(self):
        outcomes = []
        barrier = threading.Barrier(20)

        def attempt(index):
            barrier.wait()
            try:
                self.service.join_session(self.code, f"Guest {index}")
                outcomes.append("joined")
            except SessionFullError:
                outcomes.append("full")

        threads = [threading.Thread(target=attempt, args=(index,)) for index in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(outcomes.count("joined"), 7)
        self.assertEqual(outcomes.count("full"), 13)
        self.assertEqual(len(self.service.get_session(self.code)["participants"]), 8)


class LeaveTests(SessionTestCase):
    def test_host_leaving_ends_session(self):
        self.join()
        self.service.leave_session(self.code, self.host_id)
        self.assertIsNone(self.service.get_session(self.code))

    def test_guest_leaving_is_removed(self):
        guest_id = self.join()
        self.service.leave_session(self.code, guest_id)
        participants = self.service.get_session(self.code)["participants"]
        self.assertEqual([p["id"] for p in participants], [self.host_id])

    def test_leave_is_idempotent(self):
        guest_id = self.join()
        self.service.leave_session(self.code, guest_id)
        self.service.leave_session(self.code, guest_id)
        self.service.leave_session(self.code, "p_missing")
        self.service.leave_session("ZZZZ", guest_id)
        self.service.leave_session("bad!", guest_id)
        self.assertIsNotNone(self.service.get_session(self.code))


class StatusTests(SessionTestCase):
    def test_forward_moves_are_allowed(self):
        for status in ("preferences", "processing", "processing", "voting", "complete"):
            session = self.service.set_status(self.code, status)
            self.assertEqual(session["status"], status)

    def test_backward_moves_are_rejected(self):
        self.service.set_status(self.code, "complete")
        with self.assertRaises(ValidationError):
            self.service.set_status(self.code, "waiting")
        self.assertEqual(self.service.get_session(self.code)["status"], "complete")

    def test_unknown_status_and_missing_session(self):
        with self.assertRaises(ValidationError):
            self.service.set_status(self.code, "paused")
        with self.assertRaises(SessionNotFound):
            self.service.set_status("ZZZZ" if self.code != "ZZZZ" else "YYYY", "voting")

    def test_voting_stamps_deadline(self):
        session = self.service.set_status(self.code, "voting")
        self.assertEqual(session["voting_ends_at"], int(self.clock.now * 1000) + 60_000)

    def test_start_preferences_needs_two_people(self):
        with self.assertRaises(ValidationError):
            self.service.start_preferences(self.code)
        self.join()
        self.assertEqual(self.service.start_preferences(self.code)["status"], "preferences")


class PreferenceTests(SessionTestCase):
    def test_submit_preferences(self):
        guest_id = self.join()
        self.assertFalse(self.service.all_preferences_submitted(self.code))
        self.service.submit_preferences(self.code, self.host_id, PREFS)
        self.assertFalse(self.service.all_preferences_submitted(self.code))
        self.service.submit_preferences(self.code, guest_id, dict(PREFS, mood="scary"))
        self.assertTrue(self.service.all_preferences_submitted(self.code))

        guest = self.service.get_session(self.code)["participants"][1]
        self.assertTrue(guest["has_submitted_preferences"])
        self.assertEqual(guest["preferences"]["mood"], "scary")

    def test_resubmission_replaces(self):
        self.service.submit_preferences(self.code, self.host_id, PREFS)
        self.service.submit_preferences(self.code, self.host_id, dict(PREFS, energy="intense"))
        host = self.service.get_session(self.code)["participants"][0]
        self.assertEqual(host["preferences"]["energy"], "intense")

    def test_content_type_defaults_to_both(self):
        prefs = {"mood": "happy", "energy": "moderate", "runtime": "short"}
        self.service.submit_preferences(self.code, self.host_id, prefs)
        host = self.service.get_session(self.code)["participants"][0]
        self.assertEqual(host["preferences"]["content_type"], "both")

    def test_errors(self):
        with self.assertRaises(ParticipantNotFound):
            self.service.submit_preferences(self.code, "p_missing", PREFS)
        with self.assertRaises(SessionNotFound):
            self.service.submit_preferences("ZZZZ" if self.code != "ZZZZ" else "YYYY", self.host_id, PREFS)
        with self.assertRaises(ValidationError):
            self.service.submit_preferences(self.code, self.host_id, dict(PREFS, mood="sleepy"))

    def test_all_submitted_is_false_for_missing_session(self):
        self.assertFalse(self.service.all_preferences_submitted("ZZZZ" if self.code != "ZZZZ" else "YYYY"))


class RecommendationTests(SessionTestCase):
    def test_set_recommendations_opens_voting(self):
        self.service.set_recommendations(self.code, _recommendations("r1", "r2", "r3"))
        session = self.service.get_session(self.code)
        self.assertEqual(session["status"], "voting")
        self.assertEqual([r["id"] for r in session["recommendations"]], ["r1", "r2", "r3"])

    def test_shortlist_cannot_be_replaced(self):
        self.service.set_recommendations(self.code, _recommendations("r1"))
        with self.assertRaises(ValidationError):
            self.service.set_recommendations(self.code, _recommendations("r2"))

    def test_empty_shortlist_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.service.set_recommendations(self.code, [])
        session = self.service.get_session(self.code)
        self.assertEqual(session["status"], "waiting")
        self.assertIsNone(session["recommendations"])

    def test_cannot_reopen_completed_session(self):
        self.service.set_status(self.code, "complete")
        with self.assertRaises(ValidationError):
            self.service.set_recommendations(self.code, _recommendations("r1"))


class GenerateShortlistTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.service = SessionService(settings=Settings(recommendation_delay_seconds=0))
        session = self.service.create_session("Host")
        self.code = session["room_code"]
        self.host_id = session["host_id"]
        self.service.submit_preferences(self.code, self.host_id, dict(PREFS, content_type="tv"))

    async def test_generate_shortlist_opens_voting(self):
        shortlist = await self.service.generate_shortlist(self.code, StaticCatalog())
        session = self.service.get_session(self.code)
        self.assertEqual(session["status"], "voting")
        self.assertEqual(len(shortlist), 3)
        self.assertEqual([r["id"] for r in session["recommendations"]], [r["id"] for r in shortlist])
        self.assertEqual(shortlist[0]["content_type"], "tv")

    async def test_session_torn_down_mid_flight(self):
        service = self.service
        code = self.code
        host_id = self.host_id

        class EndingCatalog(StaticCatalog):
            def discover_movies(self, params):
                service.leave_session(code, host_id)
                return super().discover_movies(params)

        with self.assertRaises(SessionNotFound):
            await self.service.generate_shortlist(self.code, EndingCatalog())
        self.assertIsNone(self.service.get_session(self.code))

    async def test_empty_catalog_keeps_session_retryable(self):
        with self.assertRaises(UnknownError):
            await self.service.generate_shortlist(self.code, StaticCatalog(movies=[], shows=[]))
        session = self.service.get_session(self.code)
        self.assertEqual(session["status"], "processing")
        self.assertIsNone(session["recommendations"])

        shortlist = await self.service.generate_shortlist(self.code, StaticCatalog())
        self.assertEqual(len(shortlist), 3)
        self.assertEqual(self.service.get_session(self.code)["status"], "voting")

    async def test_cannot_regenerate_after_voting_opens(self):
        await self.service.generate_shortlist(self.code, StaticCatalog())
        with self.assertRaises(ValidationError):
            await self.service.generate_shortlist(self.code, StaticCatalog())


class VotingTests(SessionTestCase):
    def test_votes_accumulate(self):
        guest_id = self.join()
        self.open_voting(guest_id)
        self.service.submit_votes(self.code, build_ballot(self.host_id, ["r1", "r2", "r3"]))
        self.assertFalse(self.service.all_votes_submitted(self.code))
        self.service.submit_votes(self.code, build_ballot(guest_id, ["r3", "r1", "r2"]))
        self.assertTrue(self.service.all_votes_submitted(self.code))

        votes = self.service.get_session(self.code)["votes"]
        self.assertEqual(len(votes), 6)
        self.assertEqual(votes[0]["participant_id"], self.host_id)
        self.assertEqual(votes[3]["participant_id"], guest_id)

    def test_second_ballot_is_rejected(self):
        self.open_voting()
        self.service.submit_votes(self.code, build_ballot(self.host_id, ["r1"]))
        with self.assertRaises(ValidationError):
            self.service.submit_votes(self.code, build_ballot(self.host_id, ["r2"]))

    def test_ballot_rules(self):
        self.open_voting()
        with self.assertRaises(ParticipantNotFound):
            self.service.submit_votes(self.code, build_ballot("p_stranger", ["r1"]))
        with self.assertRaises(ValidationError):
            self.service.submit_votes(self.code, build_ballot(self.host_id, ["r9"]))
        self.assertEqual(self.service.get_session(self.code)["votes"], [])

    def test_votes_need_open_voting(self):
        with self.assertRaises(ValidationError):
            self.service.submit_votes(self.code, build_ballot(self.host_id, ["r1"]))
        with self.assertRaises(SessionNotFound):
            self.service.submit_votes("ZZZZ" if self.code != "ZZZZ" else "YYYY", [])

    def test_voting_closes_on_deadline(self):
        self.join()
        self.open_voting()
        self.assertFalse(self.service.voting_closed(self.code))
        self.clock.advance(61)
        self.assertTrue(self.service.voting_closed(self.code))

    def test_finalize_uses_the_full_tally(self):
        guest_id = self.join()
        other_id = self.join("Other")
        self.open_voting(guest_id, other_id)
        # The host's own first choice loses.
        self.service.submit_votes(self.code, build_ballot(self.host_id, ["r1", "r2", "r3"]))
        self.service.submit_votes(self.code, build_ballot(guest_id, ["r2", "r3", "r1"]))
        self.service.submit_votes(self.code, build_ballot(other_id, ["r2", "r1", "r3"]))

        results = self.service.voting_results(self.code)
        self.assertEqual(results[0]["recommendation_id"], "r2")
        self.assertEqual(results[0]["total_points"], 8)

        winner = self.service.finalize_voting(self.code)
        self.assertEqual(winner["id"], "r2")
        session = self.service.get_session(self.code)
        self.assertEqual(session["status"], "complete")
        self.assertEqual(session["winner"]["id"], "r2")
        self.assertEqual(self.service.finalize_voting(self.code)["id"], "r2")

    def test_finalize_without_shortlist(self):
        with self.assertRaises(ValidationError):
            self.service.finalize_voting(self.code)

    def test_set_winner_completes(self):
        self.open_voting()
        self.service.set_winner(self.code, _recommendations("r3")[0])
        session = self.service.get_session(self.code)
        self.assertEqual(session["status"], "complete")
        self.assertEqual(session["winner"]["id"], "r3")


class SubscriptionTests(SessionTestCase):
    def test_subscribe_delivers_now_and_on_change(self):
        received = []
        subscription = self.service.subscribe(self.code, received.append)
        self.assertEqual(len(received), 1)
        self.assertEqual(received[0]["room_code"], self.code)

        self.join()
        self.assertEqual(len(received), 2)
        self.assertEqual(len(received[1]["participants"]), 2)

        subscription.unsubscribe()
        self.join("Another")
        self.assertEqual(len(received), 2)
        self.assertFalse(subscription.active)

    def test_teardown_delivers_none_and_closes(self):
        received = []
        subscription = self.service.subscribe(self.code, received.append)
        self.service.leave_session(self.code, self.host_id)
        self.assertIsNone(received[-1])
        self.assertFalse(subscription.active)

    def test_missing_room_delivers_none(self):
        received = []
        subscription = self.service.subscribe("ZZZZ" if self.code != "ZZZZ" else "YYYY", received.append)
        self.assertEqual(received, [None])
        self.assertFalse(subscription.active)

    def test_malformed_code_is_treated_as_missing(self):
        received = []
        subscription = self.service.subscribe("no!", received.append)
        self.assertEqual(received, [None])
        self.assertFalse(subscription.active)

    def test_poll_of_missing_room_delivers_none_and_stops(self):
        received = []
        delivered = threading.Event()

        def callback(session):
            received.append(session)
            delivered.set()

        subscription = self.service.poll("no!", callback, interval=0.01)
        self.assertTrue(delivered.wait(2))
        subscription._thread.join(2)
        self.assertEqual(received, [None])
        self.assertFalse(subscription.active)

    def test_failing_callback_does_not_break_updates(self):
        def explode(_session):
            raise RuntimeError("boom")

        self.service.subscribe(self.code, explode)
        self.join()
        self.assertEqual(len(self.service.get_session(self.code)["participants"]), 2)

    def test_poll_stops_after_unsubscribe(self):
        received = []
        delivered = threading.Event()

        def callback(session):
            received.append(session)
            if len(received) >= 2:
                delivered.set()

        subscription = self.service.poll(self.code, callback, interval=0.01)
        self.assertTrue(delivered.wait(2))
        subscription.unsubscribe()
        count = len(received)
        time.sleep(0.05)
        self.assertEqual(len(received), count)
        self.assertEqual(received[0]["room_code"], self.code)


if __name__ == "__main__":
    unittest.main()
