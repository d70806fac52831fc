import unittest
from unittest.mock import patch

from album_tracker.config import ProviderSettings
from album_tracker.models import ExternalServiceError
from album_tracker.providers.musicbrainz import MusicBrainzService

ARTIST_KEY = "83d91898-7763-47d7-b03b-b92132375c47"


def _make_stub(**overrides):
    calls: dict[str, list] = {"browse": [], "search": [], "useragent": []}

    class _MBStub:
        class WebServiceError(Exception):
            pass

        class NetworkError(WebServiceError):
            pass

        class ResponseError(WebServiceError):
            def __init__(self, message="", cause=None):
                super().__init__(message)
                self.cause = cause

        @staticmethod
        def set_useragent(*args, **kwargs) -> None:
            calls["useragent"].append((args, kwargs))

        @staticmethod
        def set_rate_limit(*_args, **_kwargs) -> None:
            return None

        @staticmethod
        def search_artists(**kwargs):
            calls["search"].append(kwargs)
            if "search" in overrides:
                return overrides["search"](_MBStub)
            return {"artist-list": []}

        @staticmethod
        def browse_release_groups(**kwargs):
            calls["browse"].append(kwargs)
            if "browse" in overrides:
                return overrides["browse"](_MBStub)
            return {"release-group-list": []}

    return _MBStub, calls


class _HTTPCause:
    def __init__(self, code: int) -> None:
        self.code = code


class TestMusicBrainzService(unittest.TestCase):
    def setUp(self) -> None:
        self.settings = ProviderSettings(musicbrainz_useragent="me@example.org")

    def test_registers_user_agent(self) -> None:
        stub, calls = _make_stub()
        with patch("album_tracker.providers.musicbrainz.musicbrainzngs", stub):
            MusicBrainzService(self.settings)
        (args, kwargs), = calls["useragent"]
        self.assertEqual(args[0], "album-tracker")
        self.assertEqual(kwargs["contact"], "me@example.org")

    def test_search_results_are_sorted_by_score(self) -> None:
        stub, calls = _make_stub(
            search=lambda _mb: {
                "artist-list": [
                    {"id": "b", "name": "Pink Floyd Tribute", "ext:score": "61"},
                    {"id": ARTIST_KEY, "name": "Pink Floyd", "sort-name": "Pink Floyd", "ext:score": "100", "disambiguation": "UK rock band"},
                    {"name": "no id"},
                ]
            }
        )
        with patch("album_tracker.providers.musicbrainz.musicbrainzngs", stub):
            results = MusicBrainzService(self.settings).search_artists("Pink Floyd")

        self.assertEqual(calls["search"], [{"artist": "Pink Floyd"}])
        self.assertEqual([r.natural_key for r in results], [ARTIST_KEY, "b"])
        self.assertEqual(results[0].score, 100)
        self.assertEqual(results[0].disambiguation, "UK rock band")

    def test_fetch_releases_keeps_plain_albums_dated_first(self) -> None:
        stub, calls = _make_stub(
            browse=lambda _mb: {
                "release-group-list": [
                    {"id": "undated", "title": "Lost Album", "primary-type": "Album"},
                    {"id": "wall", "title": "The Wall", "primary-type": "Album", "first-release-date": "1979-11-30"},
                    {"id": "live", "title": "Pulse", "primary-type": "Album", "first-release-date": "1995", "secondary-type-list": ["Live"]},
                    {"id": "ep", "title": "Arnold Layne", "primary-type": "EP", "first-release-date": "1967"},
                    {"id": "dsotm", "title": "The Dark Side of the Moon", "type": "Album", "first-release-date": "1973-03-01"},
                ]
            }
        )
        with patch("album_tracker.providers.musicbrainz.musicbrainzngs", stub):
            releases = MusicBrainzService(self.settings).fetch_releases(ARTIST_KEY)

        self.assertEqual(
            calls["browse"],
            [{"artist": ARTIST_KEY, "release_type": ["album"], "limit": 100}],
        )
        self.assertEqual([r.natural_key for r in releases], ["dsotm", "wall", "undated"])
        self.assertEqual(releases[0].release_year, 1973)
        self.assertIsNone(releases[2].release_date)

    def test_network_errors_are_retryable(self) -> None:
        def _fail(mb):
            raise mb.NetworkError("dns")

        stub, _calls = _make_stub(browse=_fail)
        with patch("album_tracker.providers.musicbrainz.musicbrainzngs", stub):
            with self.assertRaises(ExternalServiceError) as ctx:
                MusicBrainzService(self.settings).fetch_releases(ARTIST_KEY)
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(str(ctx.exception), "metadata service unavailable")

    def test_response_errors_follow_status_code(self) -> None:
        for code, retryable in ((503, True), (429, True), (404, False), (400, False)):
            with self.subTest(code=code):

                def _fail(mb, code=code):
                    raise mb.ResponseError("http", cause=_HTTPCause(code))

                stub, _calls = _make_stub(browse=_fail)
                with patch("album_tracker.providers.musicbrainz.musicbrainzngs", stub):
                    with self.assertRaises(ExternalServiceError) as ctx:
                        MusicBrainzService(self.settings).fetch_releases(ARTIST_KEY)
                self.assertEqual(ctx.exception.retryable, retryable)
                self.assertEqual(ctx.exception.status, code)

    def test_timeouts_are_retryable(self) -> None:
        def _fail(_mb):
            raise TimeoutError("timed out")

        stub, _calls = _make_stub(search=_fail)
        with patch("album_tracker.providers.musicbrainz.musicbrainzngs", stub):
            with self.assertRaises(ExternalServiceError) as ctx:
                MusicBrainzService(self.settings).search_artists("x")
        self.assertTrue(ctx.exception.retryable)

    def test_other_service_errors_are_fatal(self) -> None:
        def _fail(mb):
            raise mb.WebServiceError("bad")

        stub, _calls = _make_stub(search=_fail)
        with patch("album_tracker.providers.musicbrainz.musicbrainzngs", stub):
            with self.assertRaises(ExternalServiceError) as ctx:
                MusicBrainzService(self.settings).search_artists("x")
        self.assertFalse(ctx.exception.retryable)


if __name__ == "__main__":
    unittest.main()
