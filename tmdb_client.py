import logging

import requests
import streamlit as st


logger = logging.getLogger(__name__)

BASE_URL = "https://api.themoviedb.org/3"
IMAGE_BASE = "https://image.tmdb.org/t/p"
IMAGE_SIZES = ("w92", "w154", "w185", "w342", "w500", "w780", "original")

MOVIE_GENRES = {
    28: "Action",
    12: "Adventure",
    16: "Animation",
    35: "Comedy",
    80: "Crime",
    99: "Documentary",
    18: "Drama",
    10751: "Family",
    14: "Fantasy",
    36: "History",
    27: "Horror",
    10402: "Music",
    9648: "Mystery",
    10749: "Romance",
    878: "Science Fiction",
    10770: "TV Movie",
    53: "Thriller",
    10752: "War",
    37: "Western",
}

TV_GENRES = {
    10759: "Action & Adventure",
    16: "Animation",
    35: "Comedy",
    80: "Crime",
    99: "Documentary",
    18: "Drama",
    10751: "Family",
    10762: "Kids",
    9648: "Mystery",
    10763: "News",
    10764: "Reality",
    10765: "Sci-Fi & Fantasy",
    10766: "Soap",
    10767: "Talk",
    10768: "War & Politics",
    37: "Western",
}


class TMDBError(RuntimeError):
    pass


def _get(url, params):
    try:
        response = requests.get(url, params=params, timeout=10)
    except requests.RequestException as exc:
        raise TMDBError(f"TMDB request failed: {exc}") from exc
    if response.status_code != 200:
        raise TMDBError(f"TMDB request failed: {response.status_code}")
    return response.json()


@st.cache_data(show_spinner=False, ttl=1800)
def discover_movies(api_key, language, params):
    url = f"{BASE_URL}/discover/movie"
    payload = {
        "api_key": api_key,
        "language": language,
        "include_adult": False,
        "sort_by": "popularity.desc",
        "vote_count.gte": 200,
    }
    payload.update(params)
    data = _get(url, payload)
    return [movie_to_candidate(movie) for movie in data.get("results", [])]


@st.cache_data(show_spinner=False, ttl=1800)
def discover_shows(api_key, language, params):
    url = f"{BASE_URL}/discover/tv"
    payload = {
        "api_key": api_key,
        "language": language,
        "include_adult": False,
        "sort_by": "popularity.desc",
        "vote_count.gte": 200,
    }
    # Runtime bounds only make sense for movies.
    payload.update({key: value for key, value in params.items() if not key.startswith("with_runtime")})
    data = _get(url, payload)
    return [show_to_candidate(show) for show in data.get("results", [])]


@st.cache_data(show_spinner=False, ttl=1800)
def search_movies(api_key, language, query, page=1):
    url = f"{BASE_URL}/search/movie"
    data = _get(url, {"api_key": api_key, "language": language, "query": query, "page": page})
    return [movie_to_candidate(movie) for movie in data.get("results", [])]


@st.cache_data(show_spinner=False, ttl=1800)
def search_shows(api_key, language, query, page=1):
    url = f"{BASE_URL}/search/tv"
    data = _get(url, {"api_key": api_key, "language": language, "query": query, "page": page})
    return [show_to_candidate(show) for show in data.get("results", [])]


@st.cache_data(show_spinner=False, ttl=1800)
def get_movie_details(api_key, movie_id, language):
    url = f"{BASE_URL}/movie/{movie_id}"
    data = _get(url, {"api_key": api_key, "language": language})
    data["genre_ids"] = [genre["id"] for genre in data.get("genres", [])]
    return movie_to_candidate(data)


@st.cache_data(show_spinner=False, ttl=1800)
def get_show_details(api_key, show_id, language):
    url = f"{BASE_URL}/tv/{show_id}"
    data = _get(url, {"api_key": api_key, "language": language})
    data["genre_ids"] = [genre["id"] for genre in data.get("genres", [])]
    return show_to_candidate(data)


def movie_to_candidate(movie):
    return {
        "id": f"movie_{movie['id']}",
        "source_id": movie["id"],
        "title": movie.get("title", ""),
        "overview": movie.get("overview") or "",
        "poster_path": movie.get("poster_path"),
        "backdrop_path": movie.get("backdrop_path"),
        "release_date": movie.get("release_date") or "",
        "vote_average": float(movie.get("vote_average") or 0),
        "genres": _map_genres(movie.get("genre_ids", []), MOVIE_GENRES),
        "runtime": movie.get("runtime") or None,
        "season_count": None,
        "content_type": "movie",
        "match_score": 0,
        "match_reason": "",
    }


def show_to_candidate(show):
    return {
        "id": f"tv_{show['id']}",
        "source_id": show["id"],
        "title": show.get("name", ""),
        "overview": show.get("overview") or "",
        "poster_path": show.get("poster_path"),
        "backdrop_path": show.get("backdrop_path"),
        "release_date": show.get("first_air_date") or "",
        "vote_average": float(show.get("vote_average") or 0),
        "genres": _map_genres(show.get("genre_ids", []), TV_GENRES),
        "runtime": None,
        "season_count": show.get("number_of_seasons"),
        "content_type": "tv",
        "match_score": 0,
        "match_reason": "",
    }


def _map_genres(genre_ids, genre_map):
    return [{"id": genre_id, "name": genre_map[genre_id]} for genre_id in genre_ids if genre_id in genre_map]


def get_image_url(path, size="w500"):
    if size not in IMAGE_SIZES:
        raise ValueError(f"Unknown image size {size!r}")
    if not path:
        return None
    return f"{IMAGE_BASE}/{size}{path}"


class TMDBCatalog:
    """Content catalog backed by the TMDB HTTP API."""

    def __init__(self, api_key, language="en-US"):
        self.api_key = api_key
        self.language = language

    def discover_movies(self, params):
        return discover_movies(self.api_key, self.language, params)

    def discover_shows(self, params):
        return discover_shows(self.api_key, self.language, params)

    def details(self, candidate):
        if candidate["content_type"] == "tv":
            details = get_show_details(self.api_key, candidate["source_id"], self.language)
        else:
            details = get_movie_details(self.api_key, candidate["source_id"], self.language)
        enriched = dict(candidate)
        enriched["runtime"] = details["runtime"]
        enriched["season_count"] = details["season_count"]
        return enriched
