import asyncio
import time

import streamlit as st

import formatting
import preferences
import tmdb_client
from catalog import StaticCatalog
from codes import format_room_code, is_valid_room_code
from errors import QuickPickError
from sessions import SessionService
from settings import Settings, configure_logging
from storage import SqliteSessionStore
from voting import build_ballot


st.set_page_config(page_title="QuickPick", page_icon="🎬", layout="centered")

SETTINGS = Settings.from_env().with_keys(
    tmdb_api_key=st.secrets.get("TMDB_API_KEY"),
    openai_api_key=st.secrets.get("OPENAI_API_KEY"),
)


@st.cache_resource
def get_service():
    configure_logging(SETTINGS.log_level)
    return SessionService(SqliteSessionStore(SETTINGS.db_path), SETTINGS)


@st.cache_resource
def get_catalog():
    if SETTINGS.tmdb_api_key:
        return tmdb_client.TMDBCatalog(SETTINGS.tmdb_api_key, SETTINGS.language)
    return StaticCatalog()


service = get_service()

st.title("🎬 QuickPick")
st.caption("Pick something to watch together, fast.")

if not SETTINGS.tmdb_api_key:
    st.info("TMDB key not found. Recommending from the built-in catalog.")

st.session_state.setdefault("room_code", None)
st.session_state.setdefault("participant_id", None)
st.session_state.setdefault("flow", preferences.PreferenceFlow())


def forget_session():
    st.session_state.room_code = None
    st.session_state.participant_id = None
    st.session_state.flow.reset()


def run_action(action, *args):
    try:
        return action(*args), None
    except QuickPickError as exc:
        return None, exc.message


def render_home():
    create_tab, join_tab = st.tabs(["Start a session", "Join a session"])
    with create_tab:
        with st.form("create"):
            host_name = st.text_input("Your name", max_chars=20)
            submitted = st.form_submit_button("Create session")
        if submitted:
            session, error = run_action(service.create_session, host_name)
            if error:
                st.error(error)
            else:
                st.session_state.room_code = session["room_code"]
                st.session_state.participant_id = session["host_id"]
                st.rerun()

    with join_tab:
        with st.form("join"):
            room_code = st.text_input("Room code", max_chars=4).strip().upper()
            name = st.text_input("Your name", max_chars=20, key="join_name")
            submitted = st.form_submit_button("Join")
        if submitted:
            if not is_valid_room_code(room_code):
                st.error("Invalid room code. Please check and try again.")
                return
            result, error = run_action(service.join_session, room_code, name)
            if error:
                st.error(error)
            else:
                session, participant = result
                st.session_state.room_code = session["room_code"]
                st.session_state.participant_id = participant["id"]
                st.rerun()


def render_lobby(session, me):
    st.subheader(f"Room code: {format_room_code(session['room_code'])}")
    st.code(service.join_link(session["room_code"]))
    render_participants(session)

    if me["is_host"]:
        needed = SETTINGS.min_participants - len(session["participants"])
        label = "Start picking" if needed <= 0 else f"Need {needed} more"
        if st.button(label, disabled=needed > 0, type="primary"):
            _, error = run_action(service.start_preferences, session["room_code"])
            if error:
                st.error(error)
            else:
                st.rerun()
    else:
        st.info("Waiting for the host to start.")


def render_participants(session):
    for participant in session["participants"]:
        badge = " (host)" if participant["is_host"] else ""
        check = " ✅" if participant["has_submitted_preferences"] else ""
        st.write(f"• {participant['name']}{badge}{check}")


def render_preference_wizard(session, me):
    flow = st.session_state.flow
    st.progress((flow.step + 1) / (preferences.LAST_STEP + 1))

    if flow.step == preferences.STEP_MOOD:
        choice = st.radio(
            "What's the mood?",
            preferences.MOODS,
            format_func=preferences.MOOD_LABELS.get,
            index=preferences.MOODS.index(flow.mood) if flow.mood else None,
        )
        if choice:
            flow.set_mood(choice)
    elif flow.step == preferences.STEP_ENERGY:
        choice = st.radio(
            "How much energy?",
            preferences.ENERGY_LEVELS,
            format_func=preferences.ENERGY_LABELS.get,
            index=preferences.ENERGY_LEVELS.index(flow.energy) if flow.energy else None,
        )
        if choice:
            flow.set_energy(choice)
    else:
        choice = st.radio(
            "How long?",
            preferences.RUNTIMES,
            format_func=preferences.RUNTIME_LABELS.get,
            index=preferences.RUNTIMES.index(flow.runtime) if flow.runtime else None,
        )
        if choice:
            flow.set_runtime(choice)
        content_type = st.radio(
            "Movie or show?",
            preferences.CONTENT_TYPES,
            format_func=preferences.CONTENT_TYPE_LABELS.get,
            index=preferences.CONTENT_TYPES.index(flow.content_type),
            horizontal=True,
        )
        flow.set_content_type(content_type)

    back_col, next_col = st.columns(2)
    if back_col.button("Back", disabled=flow.step == preferences.STEP_MOOD):
        flow.prev_step()
        st.rerun()
    if flow.step < preferences.LAST_STEP:
        if next_col.button("Next", type="primary"):
            flow.next_step()
            st.rerun()
    elif next_col.button("Submit", type="primary", disabled=not flow.is_complete()):
        _, error = run_action(
            service.submit_preferences, session["room_code"], me["id"], flow.get_preferences()
        )
        if error:
            st.error(error)
        else:
            st.rerun()


def render_preferences(session, me):
    if not me["has_submitted_preferences"]:
        render_preference_wizard(session, me)
        return

    render_participants(session)
    all_in = all(p["has_submitted_preferences"] for p in session["participants"])
    if not me["is_host"]:
        st.info("Waiting for everyone's picks." if not all_in else "Waiting for the host.")
        return
    render_find_picks(session, "Find our picks", disabled=not all_in)


def render_processing(session, me):
    st.info("Finding picks for the group...")
    if me["is_host"]:
        # An empty catalog page leaves the session here; let the host retry.
        render_find_picks(session, "Try again")


def render_find_picks(session, label, disabled=False):
    if st.button(label, type="primary", disabled=disabled):
        with st.spinner("Finding picks for the group..."):
            _, error = run_action(
                lambda: asyncio.run(service.generate_shortlist(session["room_code"], get_catalog()))
            )
        if error:
            st.error(error)
        else:
            st.rerun()


def render_card(recommendation, poster_size="w342"):
    poster_url = tmdb_client.get_image_url(recommendation.get("poster_path"), poster_size)
    if poster_url:
        st.image(poster_url, use_container_width=True)
    year = formatting.get_year(recommendation.get("release_date", ""))
    st.subheader(f"{recommendation['title']} ({year})")
    if recommendation["content_type"] == "movie":
        st.caption(f"Runtime: {formatting.format_runtime(recommendation.get('runtime'))}")
    else:
        st.caption(formatting.format_seasons(recommendation.get("season_count")))
    genres = ", ".join(genre["name"] for genre in recommendation.get("genres", [])) or "—"
    st.caption(f"Genres: {genres}")
    st.caption(
        f"Match {recommendation['match_score']}% · "
        f"TMDB {formatting.format_rating(recommendation.get('vote_average', 0))}"
    )
    st.write(recommendation["match_reason"])
    st.write(formatting.truncate_text(recommendation.get("overview", ""), 160))


def render_voting(session, me):
    recommendations = session["recommendations"] or []
    cols = st.columns(max(len(recommendations), 1))
    for col, recommendation in zip(cols, recommendations):
        with col:
            render_card(recommendation)

    deadline = session.get("voting_ends_at")
    if deadline:
        remaining = (deadline - int(time.time() * 1000)) / 1000
        st.caption(f"Time left: {formatting.format_time_remaining(remaining)}")

    already_voted = any(vote["participant_id"] == me["id"] for vote in session["votes"])
    if not already_voted:
        titles = {r["id"]: r["title"] for r in recommendations}
        with st.form("ballot"):
            ranked = []
            for rank in range(1, len(recommendations) + 1):
                ranked.append(
                    st.selectbox(f"Choice #{rank}", list(titles), format_func=titles.get, key=f"rank-{rank}")
                )
            submitted = st.form_submit_button("Submit votes")
        if submitted:
            result, error = run_action(build_ballot, me["id"], ranked)
            if not error:
                _, error = run_action(service.submit_votes, session["room_code"], result)
            if error:
                st.error(error)
            else:
                st.rerun()
    else:
        st.info("Vote in! Waiting for the others.")

    if service.voting_closed(session["room_code"]):
        _, error = run_action(service.finalize_voting, session["room_code"])
        if error:
            st.error(error)
        else:
            st.rerun()
    elif me["is_host"] and st.button("Close voting now"):
        _, error = run_action(service.finalize_voting, session["room_code"])
        if error:
            st.error(error)
        else:
            st.rerun()


def render_result(session):
    winner = session["winner"]
    st.success("Tonight's pick")
    backdrop_url = tmdb_client.get_image_url(winner.get("backdrop_path"), "w780")
    if backdrop_url:
        st.image(backdrop_url, use_container_width=True)
    render_card(winner)

    results, _ = run_action(service.voting_results, session["room_code"])
    if results:
        titles = {r["id"]: r["title"] for r in session["recommendations"] or []}
        st.table(
            [
                {
                    "Title": titles.get(result["recommendation_id"], result["recommendation_id"]),
                    "Points": result["total_points"],
                    "Votes": result["vote_count"],
                }
                for result in results
            ]
        )


def render_session():
    session = service.get_session(st.session_state.room_code)
    if session is None:
        st.warning("This session has ended.")
        if st.button("Back to start"):
            forget_session()
            st.rerun()
        return

    me = next((p for p in session["participants"] if p["id"] == st.session_state.participant_id), None)
    if me is None:
        forget_session()
        st.rerun()

    status = session["status"]
    if status == "waiting":
        render_lobby(session, me)
    elif status == "preferences":
        render_preferences(session, me)
    elif status == "processing":
        render_processing(session, me)
    elif status == "voting":
        render_voting(session, me)
    else:
        render_result(session)

    st.divider()
    refresh_col, leave_col = st.columns(2)
    if refresh_col.button("🔄 Refresh"):
        st.rerun()
    leave_label = "End session" if me["is_host"] else "Leave session"
    if leave_col.button(leave_label):
        service.leave_session(session["room_code"], me["id"])
        forget_session()
        st.rerun()


if st.session_state.room_code:
    render_session()
else:
    render_home()


with st.sidebar:
    with st.expander("Diagnostics"):
        st.write(f"TMDB key loaded: {bool(SETTINGS.tmdb_api_key)}")
        st.write(f"OpenAI key loaded: {bool(SETTINGS.openai_api_key)}")
        st.write(f"Room: {st.session_state.room_code or '—'}")
        st.write(f"Expired sessions reaped: {len(service.reap_expired())}")
