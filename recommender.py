import asyncio
import logging

import openai_picker
from errors import UnknownError


logger = logging.getLogger(__name__)

# TMDB genre ids
MOOD_GENRES = {
    "happy": (35, 10751, 16),  # Comedy, Family, Animation
    "thrilling": (28, 53, 80),  # Action, Thriller, Crime
    "thoughtful": (18, 99, 36),  # Drama, Documentary, History
    "funny": (35, 16),  # Comedy, Animation
    "scary": (27, 53, 9648),  # Horror, Thriller, Mystery
    "romantic": (10749, 18, 35),  # Romance, Drama, Comedy
}
INTENSE_GENRES = frozenset({28, 53, 27})
CHILL_GENRES = frozenset({35, 10751, 10749})

BASE_SCORE = 70
GENRE_MATCH_POINTS = 5
ENERGY_MATCH_POINTS = 10
MAX_SCORE = 100
SHORTLIST_SIZE = 3
GENERATION_DELAY_SECONDS = 1.5

# (min, max) minutes; None means unbounded
RUNTIME_BOUNDS = {
    "short": (None, 90),
    "medium": (90, 120),
    "long": (120, None),
}


def aggregate_preferences(participants):
    moods = set()
    energies = set()
    runtimes = set()
    movie_count = 0
    tv_count = 0
    for participant in participants:
        preferences = participant.get("preferences")
        if not preferences:
            continue
        moods.add(preferences["mood"])
        energies.add(preferences["energy"])
        runtimes.add(preferences["runtime"])
        if preferences["content_type"] == "movie":
            movie_count += 1
        elif preferences["content_type"] == "tv":
            tv_count += 1
    return {
        "moods": moods,
        "energies": energies,
        "runtimes": runtimes,
        "prefer_movies": movie_count >= tv_count,
        "prefer_tv": tv_count > movie_count,
    }


def mood_genre_ids(moods):
    genre_ids = set()
    for mood in moods:
        genre_ids.update(MOOD_GENRES.get(mood, ()))
    return genre_ids


def build_discover_params(aggregated):
    params = {}
    genre_ids = mood_genre_ids(aggregated["moods"])
    if genre_ids:
        # "|" is TMDB's OR separator
        params["with_genres"] = "|".join(str(genre_id) for genre_id in sorted(genre_ids))

    runtimes = aggregated.get("runtimes") or set()
    if runtimes:
        lows = [RUNTIME_BOUNDS[runtime][0] for runtime in runtimes]
        highs = [RUNTIME_BOUNDS[runtime][1] for runtime in runtimes]
        if None not in lows:
            params["with_runtime.gte"] = min(lows)
        if None not in highs:
            params["with_runtime.lte"] = max(highs)
    return params


def match_score(candidate, aggregated):
    preferred = mood_genre_ids(aggregated["moods"])
    genre_ids = [genre["id"] for genre in candidate.get("genres", [])]

    score = BASE_SCORE
    score += GENRE_MATCH_POINTS * sum(1 for genre_id in genre_ids if genre_id in preferred)

    energies = aggregated["energies"]
    if "intense" in energies:
        if INTENSE_GENRES.intersection(genre_ids):
            score += ENERGY_MATCH_POINTS
    elif "chill" in energies:
        if CHILL_GENRES.intersection(genre_ids):
            score += ENERGY_MATCH_POINTS

    return min(score, MAX_SCORE)


def match_reason(candidate, aggregated):
    parts = []
    genres = candidate.get("genres") or []
    if genres:
        parts.append(f"Great {genres[0]['name'].lower()} pick")

    energies = aggregated["energies"]
    if "intense" in energies:
        parts.append("with intense moments")
    elif "chill" in energies:
        parts.append("for a relaxed watch")

    return " ".join(parts) or "Perfect match for your group"


def order_pool(movies, shows, aggregated):
    merged = shows + movies if aggregated["prefer_tv"] else movies + shows
    deduped = {}
    for candidate in merged:
        deduped.setdefault(candidate["id"], candidate)
    return list(deduped.values())


def score_candidates(pool, aggregated, limit=SHORTLIST_SIZE):
    scored = []
    for candidate in pool:
        rescored = dict(candidate)
        rescored["match_score"] = match_score(candidate, aggregated)
        rescored["match_reason"] = match_reason(candidate, aggregated)
        scored.append(rescored)
    # list.sort is stable, so ties keep pool order
    scored.sort(key=lambda candidate: candidate["match_score"], reverse=True)
    return scored[:limit]


async def generate_recommendations(
    participants,
    catalog,
    limit=SHORTLIST_SIZE,
    min_delay=GENERATION_DELAY_SECONDS,
    openai_api_key=None,
):
    """
    Build the group's ranked shortlist.

    Catalog calls run in worker threads; the whole call takes at least
    `min_delay` seconds. Any catalog failure surfaces as UnknownError.
    Cancelling the awaiting task abandons the run.
    """
    aggregated = aggregate_preferences(participants)
    params = build_discover_params(aggregated)

    try:
        movies, shows, _ = await asyncio.gather(
            asyncio.to_thread(catalog.discover_movies, params),
            asyncio.to_thread(catalog.discover_shows, params),
            asyncio.sleep(min_delay),
        )
    except Exception as exc:
        logger.exception("Catalog discovery failed")
        raise UnknownError("Could not load recommendations. Please try again.") from exc

    pool = order_pool(movies, shows, aggregated)
    shortlist = score_candidates(pool, aggregated, limit)
    shortlist = list(await asyncio.gather(*(_enrich(catalog, candidate) for candidate in shortlist)))

    if openai_api_key and shortlist:
        shortlist = await asyncio.to_thread(
            openai_picker.write_reasons, shortlist, aggregated, openai_api_key
        )

    logger.info(
        "Generated %d recommendations from a pool of %d (moods=%s, energies=%s)",
        len(shortlist),
        len(pool),
        sorted(aggregated["moods"]),
        sorted(aggregated["energies"]),
    )
    return shortlist


async def _enrich(catalog, candidate):
    try:
        return await asyncio.to_thread(catalog.details, candidate)
    except RuntimeError:
        logger.warning("Could not load details for %s", candidate["id"])
        return candidate
