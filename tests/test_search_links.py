import unittest

from album_tracker.config import SearchProviderSettings
from album_tracker.search_links import build_search_url, search_links, validate_url_template

DISCOGS = "https://www.discogs.com/search?q={artist}+{album}"


class TestBuildSearchUrl(unittest.TestCase):
    def test_placeholders_are_percent_encoded(self) -> None:
        self.assertEqual(
            build_search_url(DISCOGS, "Pink Floyd", "The Wall"),
            "https://www.discogs.com/search?q=Pink%20Floyd+The%20Wall",
        )
        self.assertEqual(
            build_search_url("https://example.com?q={artist}", "Beyoncé", "Lemonade"),
            "https://example.com?q=Beyonc%C3%A9",
        )
        self.assertEqual(
            build_search_url("https://example.com/{artist}/{album}", "AC/DC", "Rock & Roll?"),
            "https://example.com/AC%2FDC/Rock%20%26%20Roll%3F",
        )

    def test_every_placeholder_is_replaced(self) -> None:
        self.assertEqual(
            build_search_url("https://example.com/{artist}?a={artist}", "ABBA", ""),
            "https://example.com/ABBA?a=ABBA",
        )

    def test_blocked_schemes(self) -> None:
        for template in (
            "javascript:alert('{artist}')",
            "JavaScript:alert(1)",
            "data:text/html,{album}",
            "file:///etc/{artist}",
        ):
            with self.subTest(template=template):
                with self.assertLogs("album_tracker.search_links", level="WARNING"):
                    self.assertIsNone(build_search_url(template, "Pink Floyd", "The Wall"))

    def test_unparseable_results_are_rejected(self) -> None:
        with self.assertLogs("album_tracker.search_links", level="WARNING"):
            self.assertIsNone(build_search_url("not a url {artist}", "Pink Floyd", "The Wall"))
        with self.assertLogs("album_tracker.search_links", level="WARNING"):
            self.assertIsNone(build_search_url("https://", "Pink Floyd", "The Wall"))


class TestValidateUrlTemplate(unittest.TestCase):
    def test_valid_template(self) -> None:
        self.assertIsNone(validate_url_template(DISCOGS))

    def test_template_must_use_http(self) -> None:
        for template in ("ftp://example.com/{artist}", "javascript:alert(1)", "www.example.com"):
            with self.subTest(template=template):
                self.assertEqual(
                    validate_url_template(template),
                    "URL template must start with http:// or https://",
                )

    def test_template_must_produce_a_url(self) -> None:
        with self.assertLogs("album_tracker.search_links", level="WARNING"):
            self.assertEqual(validate_url_template("https://"), "URL template creates invalid URL")


class TestSearchLinks(unittest.TestCase):
    def test_links_follow_provider_order(self) -> None:
        providers = [
            SearchProviderSettings(name="Discogs", url_template=DISCOGS),
            SearchProviderSettings(
                name="Bandcamp", url_template="https://bandcamp.com/search?q={artist}%20{album}"
            ),
        ]
        links = search_links(providers, "Pink Floyd", "Animals")
        self.assertEqual([link.provider for link in links], ["Discogs", "Bandcamp"])
        self.assertEqual(links[1].url, "https://bandcamp.com/search?q=Pink%20Floyd%20Animals")


if __name__ == "__main__":
    unittest.main()
