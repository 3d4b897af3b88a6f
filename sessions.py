"""
Session lifecycle.

A session moves forward through waiting -> preferences -> processing ->
voting -> complete. The service owns every read-modify-write on a session
and serializes them per room code, so concurrent joins, preference
submissions and ballots from different participants do not lose updates.
Sessions live in an injected store (see storage.py); the store's
`locked()` extends that to other processes sharing the same database.

Observers register with `subscribe` (pushed on every change) or `poll`
(fetched on an interval); both hand back a Subscription whose
`unsubscribe()` stops delivery immediately.
"""

import copy
import logging
import threading
import time
from contextlib import contextmanager

import codes
import recommender
import voting
from errors import (
    AlreadyStartedError,
    ParticipantNotFound,
    SessionFullError,
    SessionNotFound,
    UnknownError,
    ValidationError,
)
from preferences import make_preferences
from settings import Settings
from storage import InMemorySessionStore


logger = logging.getLogger(__name__)

STATUSES = ("waiting", "preferences", "processing", "voting", "complete")
_STATUS_ORDER = {status: index for index, status in enumerate(STATUSES)}

MAX_NAME_LENGTH = 20


class Subscription:
    def __init__(self, room_code, callback):
        self.room_code = room_code
        self._callback = callback
        self._active = True
        # Held while a delivery runs, so unsubscribe() waits out an in-flight one.
        self._lock = threading.RLock()

    @property
    def active(self):
        return self._active

    def deliver(self, session):
        with self._lock:
            if not self._active:
                return False
            try:
                self._callback(session)
            except Exception:
                logger.exception("Subscriber callback failed for %s", self.room_code)
            return True

    def unsubscribe(self):
        with self._lock:
            self._active = False

    def __call__(self):
        self.unsubscribe()


class PollingSubscription(Subscription):
    """Fetches the session on a fixed interval from a background thread."""

    def __init__(self, room_code, callback, fetch, interval):
        super().__init__(room_code, callback)
        self.interval = interval
        self._fetch = fetch
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, name=f"poll-{room_code}", daemon=True)

    def start(self):
        self._thread.start()
        return self

    def _run(self):
        while not self._stopped.is_set():
            session = self._fetch(self.room_code)
            self.deliver(session)
            if session is None:
                self.unsubscribe()
                break
            if self._stopped.wait(self.interval):
                break

    def unsubscribe(self):
        self._stopped.set()
        super().unsubscribe()


class SessionService:
    def __init__(self, store=None, settings=None, clock=None):
        self.store = store if store is not None else InMemorySessionStore()
        self.settings = settings or Settings()
        self._clock = clock or time.time
        self._room_locks = {}
        self._room_locks_guard = threading.Lock()
        self._subscriptions = {}
        self._subscriptions_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_session(self, host_name):
        name = _clean_name(host_name)
        now = self._now_ms()
        host = _new_participant(name, is_host=True, joined_at=now)

        for _ in range(self.settings.room_code_attempts):
            room_code = codes.generate_room_code()
            with self._locked(room_code):
                if self._load(room_code) is not None:
                    logger.debug("Room code %s is taken, retrying", room_code)
                    continue
                session = {
                    "id": codes.generate_session_id(),
                    "room_code": room_code,
                    "host_id": host["id"],
                    "status": "waiting",
                    "participants": [host],
                    "recommendations": None,
                    "votes": [],
                    "winner": None,
                    "created_at": now,
                    "expires_at": now + self.settings.session_timeout_minutes * 60 * 1000,
                    "voting_ends_at": None,
                }
                self.store.put(room_code, session)
            logger.info("Session %s created by %s", room_code, host["id"])
            return session

        raise UnknownError("Could not allocate a free room code. Please try again.")

    def get_session(self, room_code):
        code = codes.normalize_room_code(room_code)
        if code is None:
            return None
        with self._locked(code):
            return self._load(code)

    def join_session(self, room_code, name):
        name = _clean_name(name)
        code = codes.normalize_room_code(room_code)
        if code is None:
            raise ValidationError("Invalid room code. Please check and try again.")

        with self._locked(code):
            session = self._require(code)
            if session["status"] != "waiting":
                raise AlreadyStartedError()
            limit = self.settings.max_participants
            if len(session["participants"]) >= limit:
                raise SessionFullError(f"This session is full. Maximum {limit} participants allowed.")

            participant = _new_participant(name, is_host=False, joined_at=self._now_ms())
            session["participants"].append(participant)
            self._save(code, session)

        logger.info("%s joined session %s", participant["id"], code)
        return session, participant

    def leave_session(self, room_code, participant_id):
        code = codes.normalize_room_code(room_code)
        if code is None:
            return
        with self._locked(code):
            session = self._load(code)
            if session is None:
                return
            participant = _find_participant(session, participant_id)
            if participant is None:
                return

            if participant["is_host"]:
                self._teardown(code)
                logger.info("Host left, session %s ended", code)
                return

            session["participants"] = [p for p in session["participants"] if p["id"] != participant_id]
            self._save(code, session)
        logger.info("%s left session %s", participant_id, code)

    def set_status(self, room_code, status):
        if status not in _STATUS_ORDER:
            raise ValidationError(f"Unknown session status {status!r}")
        code = self._code(room_code)
        with self._locked(code):
            session = self._require(code)
            self._transition(session, status)
            self._save(code, session)
        return session

    def start_preferences(self, room_code):
        code = self._code(room_code)
        with self._locked(code):
            session = self._require(code)
            needed = self.settings.min_participants
            if len(session["participants"]) < needed:
                raise ValidationError(f"Need at least {needed} participants to start.")
            self._transition(session, "preferences")
            self._save(code, session)
        return session

    def reap_expired(self):
        """Remove every expired session; returns the room codes removed."""
        removed = []
        for code in self.store.room_codes():
            with self._locked(code):
                session = self.store.get(code)
                if session is not None and self._expire_if_due(code, session):
                    removed.append(code)
        return removed

    def join_link(self, room_code):
        return codes.build_join_link(room_code, self.settings.deep_link_scheme)

    # ------------------------------------------------------------------
    # Preferences and recommendations
    # ------------------------------------------------------------------

    def submit_preferences(self, room_code, participant_id, preferences):
        checked = make_preferences(
            preferences.get("mood"),
            preferences.get("energy"),
            preferences.get("runtime"),
            preferences.get("content_type", "both"),
        )
        code = self._code(room_code)
        with self._locked(code):
            session = self._require(code)
            participant = _find_participant(session, participant_id)
            if participant is None:
                raise ParticipantNotFound()
            participant["preferences"] = checked
            participant["has_submitted_preferences"] = True
            self._save(code, session)

    def all_preferences_submitted(self, room_code):
        session = self.get_session(room_code)
        if session is None:
            return False
        return all(p["has_submitted_preferences"] for p in session["participants"])

    def set_recommendations(self, room_code, recommendations):
        code = self._code(room_code)
        with self._locked(code):
            session = self._require(code)
            if session["recommendations"] is not None:
                raise ValidationError("Recommendations have already been shared.")
            if not recommendations:
                raise ValidationError("There is nothing to vote on yet.")
            self._transition(session, "voting")
            session["recommendations"] = [dict(recommendation) for recommendation in recommendations]
            self._save(code, session)

    async def generate_shortlist(self, room_code, catalog, openai_api_key=None):
        """
        Score the group's preferences against `catalog` and open voting.

        Raises SessionNotFound if the session disappears while the
        catalog is being queried; nothing is stored in that case. An
        empty catalog raises UnknownError and leaves the session in
        processing, so the host can try again.
        """
        code = self._code(room_code)
        with self._locked(code):
            session = self._require(code)
            self._transition(session, "processing")
            self._save(code, session)

        shortlist = await recommender.generate_recommendations(
            session["participants"],
            catalog,
            limit=self.settings.shortlist_size,
            min_delay=self.settings.recommendation_delay_seconds,
            openai_api_key=openai_api_key or self.settings.openai_api_key,
        )
        if not shortlist:
            logger.warning("Session %s: catalog returned no titles", code)
            raise UnknownError("No titles matched the group. Please try again.")
        self.set_recommendations(code, shortlist)
        return shortlist

    # ------------------------------------------------------------------
    # Voting
    # ------------------------------------------------------------------

    def submit_votes(self, room_code, votes):
        code = self._code(room_code)
        with self._locked(code):
            session = self._require(code)
            if session["status"] != "voting":
                raise ValidationError("Voting is not open for this session.")

            voting.validate_ballot(votes, _recommendation_ids(session))
            roster = {p["id"] for p in session["participants"]}
            ballot_voters = voting.voters(votes)
            if not ballot_voters <= roster:
                raise ParticipantNotFound()
            if ballot_voters & voting.voters(session["votes"]):
                raise ValidationError("You have already voted.")

            now = self._now_ms()
            session["votes"] = session["votes"] + [
                {
                    "participant_id": vote["participant_id"],
                    "recommendation_id": vote["recommendation_id"],
                    "rank": vote["rank"],
                    "cast_at": now,
                }
                for vote in votes
            ]
            self._save(code, session)

    def all_votes_submitted(self, room_code):
        session = self.get_session(room_code)
        if session is None:
            return False
        cast = voting.voters(session["votes"])
        return all(p["id"] in cast for p in session["participants"])

    def voting_closed(self, room_code):
        session = self.get_session(room_code)
        if session is None or session["status"] != "voting":
            return False
        cast = voting.voters(session["votes"])
        if all(p["id"] in cast for p in session["participants"]):
            return True
        deadline = session.get("voting_ends_at")
        return deadline is not None and self._now_ms() >= deadline

    def voting_results(self, room_code):
        code = self._code(room_code)
        with self._locked(code):
            session = self._require(code)
        return voting.calculate_voting_results(session["votes"], _recommendation_ids(session))

    def set_winner(self, room_code, recommendation):
        code = self._code(room_code)
        with self._locked(code):
            session = self._require(code)
            self._transition(session, "complete")
            session["winner"] = dict(recommendation)
            self._save(code, session)
        logger.info("Session %s complete: %s", code, recommendation["id"])

    def finalize_voting(self, room_code):
        """Tally every ballot, store the winner and complete the session."""
        code = self._code(room_code)
        with self._locked(code):
            session = self._require(code)
            if session["status"] == "complete" and session["winner"]:
                return session["winner"]

            recommendation_ids = _recommendation_ids(session)
            if not recommendation_ids:
                raise ValidationError("There is nothing to vote on yet.")
            winner_id = voting.pick_winner(session["votes"], recommendation_ids)
            winner = next(r for r in session["recommendations"] if r["id"] == winner_id)

            self._transition(session, "complete")
            session["winner"] = winner
            self._save(code, session)
        logger.info("Session %s complete: %s", code, winner_id)
        return winner

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, room_code, callback):
        """
        Push the current snapshot now and again after every change.

        The callback receives None once the session is gone, after which
        the subscription closes itself. A malformed code is treated as a
        missing session.
        """
        code = codes.normalize_room_code(room_code)
        if code is None:
            subscription = Subscription(room_code, callback)
            subscription.deliver(None)
            subscription.unsubscribe()
            return subscription

        subscription = Subscription(code, callback)
        with self._locked(code):
            session = self._load(code)
            subscription.deliver(session)
            if session is None:
                subscription.unsubscribe()
                return subscription
            with self._subscriptions_guard:
                self._subscriptions.setdefault(code, []).append(subscription)
        return subscription

    def poll(self, room_code, callback, interval=None):
        """Like `subscribe`, but fetched every `interval` seconds on a background thread."""
        code = codes.normalize_room_code(room_code) or room_code
        interval = interval if interval is not None else self.settings.poll_interval_seconds
        return PollingSubscription(code, callback, self.get_session, interval).start()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _now_ms(self):
        return int(self._clock() * 1000)

    @contextmanager
    def _locked(self, room_code):
        with self._room_locks_guard:
            lock = self._room_locks.setdefault(room_code, threading.RLock())
        with lock, self.store.locked(room_code):
            yield

    def _code(self, room_code):
        code = codes.normalize_room_code(room_code)
        if code is None:
            raise SessionNotFound()
        return code

    def _load(self, room_code):
        session = self.store.get(room_code)
        if session is None or self._expire_if_due(room_code, session):
            return None
        return session

    def _require(self, room_code):
        session = self._load(room_code)
        if session is None:
            raise SessionNotFound()
        return session

    def _expire_if_due(self, room_code, session):
        if self._now_ms() <= session["expires_at"]:
            return False
        self._teardown(room_code)
        logger.info("Session %s expired", room_code)
        return True

    def _save(self, room_code, session):
        self.store.put(room_code, session)
        self._notify(room_code, session)

    def _teardown(self, room_code):
        self.store.delete(room_code)
        self._notify(room_code, None)
        with self._subscriptions_guard:
            closed = self._subscriptions.pop(room_code, [])
        for subscription in closed:
            subscription.unsubscribe()

    def _notify(self, room_code, session):
        with self._subscriptions_guard:
            subscriptions = [s for s in self._subscriptions.get(room_code, []) if s.active]
            if subscriptions:
                self._subscriptions[room_code] = subscriptions
            else:
                self._subscriptions.pop(room_code, None)
        for subscription in subscriptions:
            subscription.deliver(copy.deepcopy(session))

    def _transition(self, session, status):
        current = session["status"]
        if _STATUS_ORDER[status] < _STATUS_ORDER[current]:
            raise ValidationError(f"Cannot move session from {current} to {status}.")
        if status == current:
            return
        if status == "voting":
            session["voting_ends_at"] = self._now_ms() + self.settings.voting_time_seconds * 1000
        session["status"] = status
        logger.info("Session %s: %s -> %s", session["room_code"], current, status)


def _new_participant(name, is_host, joined_at):
    return {
        "id": codes.generate_participant_id(),
        "name": name,
        "is_host": is_host,
        "has_submitted_preferences": False,
        "joined_at": joined_at,
        "preferences": None,
    }


def _find_participant(session, participant_id):
    return next((p for p in session["participants"] if p["id"] == participant_id), None)


def _recommendation_ids(session):
    return [r["id"] for r in session["recommendations"] or []]


def _clean_name(name):
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Please enter your name to continue.")
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Names can be at most {MAX_NAME_LENGTH} characters.")
    return name
