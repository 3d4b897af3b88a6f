"""
Offline catalog.

A small fixed pool of well-known titles, used when no TMDB key is configured
and in tests. Items go through the same converters as live TMDB results.
"""

from tmdb_client import movie_to_candidate, show_to_candidate


FIXTURE_MOVIES = [
    {
        "id": 550,
        "title": "Fight Club",
        "overview": "An insomniac office worker and a soap maker form an underground fight club.",
        "poster_path": "/pB8BM7pdSp6B6Ih7QZ4DrQ3PmJK.jpg",
        "backdrop_path": "/hZkgoQYus5vegHoetLkCJzb17zJ.jpg",
        "release_date": "1999-10-15",
        "vote_average": 8.4,
        "genre_ids": [18, 53],
        "runtime": 139,
    },
    {
        "id": 238,
        "title": "The Godfather",
        "overview": "The aging patriarch of an organized crime dynasty transfers control to his son.",
        "poster_path": "/3bhkrj58Vtu7enYsRolD1fZdja1.jpg",
        "backdrop_path": "/tmU7GeKVybMWFButWEGl2M4GeiP.jpg",
        "release_date": "1972-03-14",
        "vote_average": 8.7,
        "genre_ids": [18, 80],
        "runtime": 175,
    },
    {
        "id": 27205,
        "title": "Inception",
        "overview": "A thief who steals secrets through dreams is offered a chance at redemption.",
        "poster_path": "/9gk7adHYeDvHkCSEqAvQNLV5Uge.jpg",
        "backdrop_path": "/s3TBrRGB1iav7gFOCNx3H31MoES.jpg",
        "release_date": "2010-07-15",
        "vote_average": 8.4,
        "genre_ids": [28, 878],
        "runtime": 148,
    },
    {
        "id": 680,
        "title": "Pulp Fiction",
        "overview": "Intersecting stories of crime and redemption in Los Angeles.",
        "poster_path": "/d5iIlFn5s0ImszYzBPb8JPIfbXD.jpg",
        "backdrop_path": "/suaEOtk1N1sgg2MTM7oZd2cfVp3.jpg",
        "release_date": "1994-09-10",
        "vote_average": 8.5,
        "genre_ids": [53, 80],
        "runtime": 154,
    },
    {
        "id": 155,
        "title": "The Dark Knight",
        "overview": "Batman faces the Joker in a battle for Gotham's soul.",
        "poster_path": "/qJ2tW6WMUDux911r6m7haRef0WH.jpg",
        "backdrop_path": "/hkBaDkMWbLaf8B1lsWsKX7Ew3Xq.jpg",
        "release_date": "2008-07-16",
        "vote_average": 8.5,
        "genre_ids": [28, 80, 18],
        "runtime": 152,
    },
    {
        "id": 13,
        "title": "Forrest Gump",
        "overview": "A slow-witted but kind man witnesses decades of American history.",
        "poster_path": "/arw2vcBveWOVZr6pxd9XTd1TdQa.jpg",
        "backdrop_path": "/3h1JZGDhZ8nzxdgvkxha0qBqi05.jpg",
        "release_date": "1994-06-23",
        "vote_average": 8.5,
        "genre_ids": [18, 35, 10749],
        "runtime": 142,
    },
    {
        "id": 120,
        "title": "The Lord of the Rings: The Fellowship of the Ring",
        "overview": "A hobbit embarks on an epic quest to destroy a powerful ring.",
        "poster_path": "/6oom5QYQ2yQTMJIbnvbkBL9cHo6.jpg",
        "backdrop_path": "/pIUvQ9Ed35wlWhY2oU6OmwEsmzG.jpg",
        "release_date": "2001-12-18",
        "vote_average": 8.4,
        "genre_ids": [12, 14, 28],
        "runtime": 178,
    },
    {
        "id": 496243,
        "title": "Parasite",
        "overview": "Greed and class discrimination threaten the symbiosis between two families.",
        "poster_path": "/7IiTTgloJzvGI1TAYymCfbfl3vT.jpg",
        "backdrop_path": "/TU9NIjwzjoKPwQHoHshkFcQUCG.jpg",
        "release_date": "2019-05-30",
        "vote_average": 8.5,
        "genre_ids": [35, 53, 18],
        "runtime": 132,
    },
]

FIXTURE_SHOWS = [
    {
        "id": 1396,
        "name": "Breaking Bad",
        "overview": "A high school chemistry teacher turned methamphetamine manufacturer.",
        "poster_path": "/ggFHVNu6YYI5L9pCfOacjizRGt.jpg",
        "backdrop_path": "/tsRy63Mu5cu8etL1X7ZLyf7UwLN.jpg",
        "first_air_date": "2008-01-20",
        "vote_average": 8.9,
        "genre_ids": [18],
        "number_of_seasons": 5,
    },
    {
        "id": 1399,
        "name": "Game of Thrones",
        "overview": "Noble families fight for control of the Iron Throne.",
        "poster_path": "/u3bZgnGQ9T01sWNhyveQz0wH0Hl.jpg",
        "backdrop_path": "/suopoADq0k8YZr4dQXcU6pToj6s.jpg",
        "first_air_date": "2011-04-17",
        "vote_average": 8.4,
        "genre_ids": [10765, 18],
        "number_of_seasons": 8,
    },
    {
        "id": 66732,
        "name": "Stranger Things",
        "overview": "Supernatural forces haunt a small town in the 1980s.",
        "poster_path": "/49WJfeN0moxb9IPfGn8AIqMGskD.jpg",
        "backdrop_path": "/56v2KjBlU4XaOv9rVYEQypROD7P.jpg",
        "first_air_date": "2016-07-15",
        "vote_average": 8.6,
        "genre_ids": [18, 9648, 10765],
        "number_of_seasons": 4,
    },
    {
        "id": 2316,
        "name": "The Office",
        "overview": "A mockumentary about the everyday lives of office employees.",
        "poster_path": "/qWnJzyZhyy74gjpSjIXWmuk0ifX.jpg",
        "backdrop_path": "/vNpuAxGTl9HsUbHqam3E9CzqCvX.jpg",
        "first_air_date": "2005-03-24",
        "vote_average": 8.6,
        "genre_ids": [35],
        "number_of_seasons": 9,
    },
]


class StaticCatalog:
    def __init__(self, movies=None, shows=None):
        self.movies = FIXTURE_MOVIES if movies is None else movies
        self.shows = FIXTURE_SHOWS if shows is None else shows

    def discover_movies(self, params):
        return [movie_to_candidate(movie) for movie in self.movies]

    def discover_shows(self, params):
        return [show_to_candidate(show) for show in self.shows]

    def details(self, candidate):
        return candidate
