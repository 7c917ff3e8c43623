"""Tests for image URL validation and placeholders."""

import pytest

from servers.event_discovery.images import (
    CATEGORY_PLACEHOLDERS,
    COMMUNITY_PLACEHOLDER,
    is_valid_image_url,
    placeholder_image,
    validated_image,
)


class TestImageValidation:
    """Tests for accepting and rejecting image URLs."""

    @pytest.mark.parametrize(
        "url",
        [
            "https://example.com/poster.jpg",
            "http://cdn.example.org/a/b/flyer.WEBP",
            "https://s1.ticketm.net/dam/a/123/abc_RETINA_PORTRAIT_16_9",
            "https://img.evbuc.com/https%3A%2F%2Fcdn.evbuc.com%2Fimages%2F1",
            "https://d3vhc53cl8e8km.cloudfront.net/artists/1",
        ],
    )
    def test_valid(self, url):
        """Absolute URLs with an image extension or a trusted host pass."""
        assert is_valid_image_url(url)

    @pytest.mark.parametrize(
        "url",
        [
            None,
            "",
            "/relative/poster.jpg",
            "ftp://example.com/poster.jpg",
            "https://example.com/event-page",
            "http://localhost/poster.jpg",
            "http://127.0.0.1/poster.jpg",
            "http://10.0.0.5/poster.png",
            "https://intranet/poster.png",
        ],
    )
    def test_invalid(self, url):
        """Relative, non-http, extensionless untrusted and private hosts fail."""
        assert not is_valid_image_url(url)

    def test_validated_image_strips_or_drops(self):
        """validated_image returns a cleaned URL or None."""
        assert validated_image("  https://example.com/a.png ") == "https://example.com/a.png"
        assert validated_image("https://example.com/page") is None


class TestPlaceholders:
    """Tests for category placeholders."""

    def test_deterministic(self):
        """The same key always gets the same placeholder."""
        assert placeholder_image("Music", "ticketmaster_1") == placeholder_image(
            "Music", "ticketmaster_1"
        )

    def test_category_set(self):
        """Placeholders come from the category's own set."""
        for key in ("a", "b", "c", "d"):
            assert placeholder_image("Sports", key) in CATEGORY_PLACEHOLDERS["Sports"]

    def test_unknown_category(self):
        """Unknown categories get the community image."""
        assert placeholder_image("Event") == COMMUNITY_PLACEHOLDER
        assert placeholder_image(None) == COMMUNITY_PLACEHOLDER
