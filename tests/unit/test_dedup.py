"""Tests for event deduplication logic."""

from datetime import timedelta

import pytest

from servers.event_discovery.dedup import (
    THRESHOLD,
    WEIGHTS,
    calculate_similarity,
    deduplicate,
    normalize_text,
    normalize_venue_name,
)
from servers.event_discovery.models import Coordinates, EventSource, TicketLink


class TestNormalization:
    """Tests for text normalization."""

    def test_removes_live_prefix(self):
        """Test removal of 'Live:' prefix."""
        assert normalize_text("Live: Concert Tonight") == "concert tonight"

    def test_removes_tonight_prefix(self):
        """Test removal of 'TONIGHT:' prefix."""
        assert normalize_text("TONIGHT: Jazz Show") == "jazz show"

    def test_collapses_whitespace_and_punctuation(self):
        """Punctuation becomes space and runs of whitespace collapse."""
        assert normalize_text("  Rock   &  Roll!! ") == "rock roll"

    def test_empty_and_none(self):
        """Empty input gives an empty string."""
        assert normalize_text("") == ""
        assert normalize_text(None) == ""

    def test_venue_name_strips_article_and_suffix(self):
        """"The Blue Note Club" and "Blue Note" normalize alike."""
        assert normalize_venue_name("The Blue Note Club") == "blue note"
        assert normalize_venue_name("Venue TBA") == ""


class TestWeights:
    """Tests for similarity weights configuration."""

    def test_weights_sum_to_one(self):
        """Weights should sum to 1.0 for proper scoring."""
        assert abs(sum(WEIGHTS.values()) - 1.0) < 0.001

    def test_threshold_in_range(self):
        """Threshold should be a probability."""
        assert 0 < THRESHOLD <= 1


class TestExactDeduplication:
    """Tests for external-id and content-key deduplication."""

    def test_empty_list(self):
        """Empty input gives an empty result."""
        result = deduplicate([])
        assert result.events == []
        assert result.original_count == 0
        assert result.dedup_rate == 0.0

    def test_same_external_id_keeps_first(self, make_event):
        """Exact duplicate ids collapse to the first occurrence."""
        first = make_event(native_id="A", title="First Title")
        second = make_event(native_id="B")
        repeat = make_event(native_id="A", title="Refetched Title")

        result = deduplicate([first, second, repeat])

        assert [e.external_id for e in result.events] == ["ticketmaster_A", "ticketmaster_B"]
        assert result.events[0].title == "First Title"
        assert result.duplicates_removed == 1
        assert result.audit_trail[0].reason == "same external id"

    def test_idempotent(self, make_event):
        """Running dedupe twice changes nothing the second time."""
        a, b, c = make_event(native_id="1"), make_event(native_id="2"), make_event(native_id="3")
        events = [a, b, a, c, b, a]

        once = deduplicate(events).events
        twice = deduplicate(once).events

        assert [e.external_id for e in once] == [
            "ticketmaster_1", "ticketmaster_2", "ticketmaster_3"
        ]
        assert [e.external_id for e in twice] == [e.external_id for e in once]

    def test_cross_provider_duplicate_by_content(self, make_event):
        """The same show from two providers collapses on title, day and venue."""
        tm = make_event(native_id="tm1", title="Jazz Night", location="Blue Note")
        rapid = make_event(
            native_id="r1",
            source=EventSource.RAPIDAPI,
            title="JAZZ NIGHT",
            location="Blue Note",
            start=tm.start + timedelta(minutes=30),
            ticket_links=[TicketLink(source="StubHub", link="https://stubhub.example/1")],
        )

        result = deduplicate([tm, rapid])

        assert len(result.events) == 1
        kept = result.events[0]
        assert kept.external_id == "ticketmaster_tm1"
        # the dropped copy contributes its ticket link
        assert {l.source for l in kept.ticket_links} == {"Ticketmaster", "StubHub"}

    def test_absorbs_missing_coordinates(self, make_event):
        """A kept event without coordinates takes them from its duplicate."""
        first = make_event(native_id="1", title="Show", location="Hall", coordinates=None)
        second = make_event(
            native_id="2",
            source=EventSource.EVENTBRITE,
            title="Show",
            location="Hall",
            coordinates=Coordinates(lat=40.75, lng=-73.99),
        )

        result = deduplicate([first, second])

        assert result.events[0].coordinates == Coordinates(lat=40.75, lng=-73.99)

    def test_different_days_are_kept(self, make_event):
        """Same title and venue on different days are different events."""
        first = make_event(native_id="1", title="Trivia", location="Pub")
        second = make_event(
            native_id="2", title="Trivia", location="Pub", start=first.start + timedelta(days=7)
        )

        assert len(deduplicate([first, second]).events) == 2


class TestFuzzyDeduplication:
    """Tests for the optional weighted similarity pass."""

    def test_similar_events_score_high(self, make_event):
        """Near-identical listings score above the threshold."""
        a = make_event(title="Reggae Night at The Camel", location="The Camel")
        b = make_event(
            source=EventSource.RAPIDAPI,
            title="Reggae Night @ The Camel",
            location="Camel",
            start=a.start + timedelta(minutes=15),
        )
        total, title_sim, venue_sim, time_sim = calculate_similarity(a, b)
        assert total >= THRESHOLD
        assert title_sim > 0.9
        assert time_sim == 1.0

    def test_fuzzy_pass_collapses_near_duplicates(self, make_event):
        """Fuzzy mode catches what the exact key misses."""
        a = make_event(title="Reggae Night at The Camel", location="The Camel")
        b = make_event(
            source=EventSource.RAPIDAPI,
            title="Reggae Night @ The Camel",
            location="Camel",
            start=a.start + timedelta(minutes=15),
        )

        assert len(deduplicate([a, b]).events) == 2
        result = deduplicate([a, b], fuzzy=True)
        assert len(result.events) == 1
        assert result.audit_trail[0].similarity_score >= THRESHOLD

    def test_different_events_score_low(self, make_event):
        """Unrelated events stay apart."""
        a = make_event(title="Jazz Brunch", location="Lemaire")
        b = make_event(
            title="Indie Rock Night",
            location="The Broadberry",
            start=a.start + timedelta(hours=9),
            coordinates=Coordinates(lat=40.80, lng=-73.95),
        )
        total, *_ = calculate_similarity(a, b)
        assert total < THRESHOLD

    @pytest.mark.parametrize("threshold", [0.5, 0.99])
    def test_threshold_is_respected(self, make_event, threshold):
        """Lower thresholds merge more aggressively."""
        a = make_event(title="Open Mic Comedy", location="Laugh Factory")
        b = make_event(
            source=EventSource.EVENTBRITE,
            title="Open Mic Comedy Night",
            location="Laugh Factory",
            start=a.start + timedelta(hours=1),
        )
        total, *_ = calculate_similarity(a, b)
        result = deduplicate([a, b], fuzzy=True, threshold=threshold)
        assert len(result.events) == (1 if total >= threshold else 2)
