"""Tests for knowledge-graph entity construction and serialization."""

import pytest

from cfp.core.models import Coordinates, Location, NotabilityReference, SourceType
from cfp.knowledge_graph.entity_builder import (
    BUSINESS_QID,
    PRECISION_DAY,
    PRECISION_MONTH,
    PRECISION_YEAR,
    EntityBuilder,
    build_description,
    parse_inception,
    serialize_entity,
    social_handle,
)
from cfp.knowledge_graph.qid_cache import InMemoryQidStore, QidResolutionCache
from fakes import make_business, make_crawled, run

YOUTUBE_CHANNEL = "UC" + "a" * 22


def build(business=None, crawled=None, references=()):
    builder = EntityBuilder(QidResolutionCache(store=InMemoryQidStore()))
    return run(builder.build(business or make_business(), crawled, references))


def values(draft, property_id):
    return [claim.value for claim in draft.claims.get(property_id, [])]


def news_reference(i):
    return NotabilityReference(
        title=f"Story {i}",
        url=f"https://www.statesman.com/story/{i}",
        source_type=SourceType.NEWS,
        is_serious=True,
        is_independent=True,
    )


class TestEntityBuilder:
    def test_full_claim_set(self):
        draft = build(crawled=make_crawled())

        assert draft.label == "Acme Plumbing"
        assert draft.description.startswith("Family-owned plumbing")
        assert values(draft, "P31") == [BUSINESS_QID]
        assert values(draft, "P856") == ["https://acmeplumbing.com"]
        assert values(draft, "P1448") == [{"text": "Acme Plumbing", "language": "en"}]
        assert values(draft, "P452") == ["Q385378"]
        assert values(draft, "P1454") == ["Q1269299"]
        assert values(draft, "P159") == ["Q16559"]
        assert values(draft, "P131") == ["Q1439"]
        assert values(draft, "P17") == ["Q30"]
        assert values(draft, "P1329") == ["+1 512-555-0100"]
        assert values(draft, "P968") == ["mailto:hello@acmeplumbing.com"]
        assert values(draft, "P6375") == [
            {"text": "100 Congress Ave, Austin, TX 78701", "language": "en"}
        ]
        assert values(draft, "P571") == [
            {"time": "+1998-00-00T00:00:00Z", "precision": PRECISION_YEAR}
        ]
        assert values(draft, "P1128") == [{"amount": "+12", "unit": "1"}]
        assert values(draft, "P2013") == ["acmeplumbing"]
        assert draft.claim_count == 14

    def test_minimal_claims_without_crawled_data(self):
        draft = build()

        assert set(draft.claims) == {"P31", "P856", "P1448", "P159", "P131", "P17"}
        assert draft.description == "Business in Austin, TX"

    def test_unresolved_attributes_are_dropped(self):
        business = make_business(location=Location(city="Smallville", region="Atlantis", country="US"))
        crawled = make_crawled(industry="underwater basket weaving", legal_form=None, location=None)
        draft = build(business, crawled)

        for property_id in ("P452", "P1454", "P159", "P131"):
            assert property_id not in draft.claims
        assert values(draft, "P17") == ["Q30"]

    def test_notability_references_cited_on_core_claims(self):
        draft = build(crawled=make_crawled(), references=[news_reference(1), news_reference(2)])

        instance_of = draft.claims["P31"][0]
        assert [r.url for r in instance_of.references] == [
            "https://acmeplumbing.com",
            "https://www.statesman.com/story/1",
            "https://www.statesman.com/story/2",
        ]
        assert len(draft.claims["P1448"][0].references) == 3
        assert len(draft.claims["P1329"][0].references) == 1

    def test_crawled_name_becomes_label_with_alias(self):
        draft = build(crawled=make_crawled(name="Acme Plumbing & Drain"))
        assert draft.label == "Acme Plumbing & Drain"
        assert draft.aliases == ["Acme Plumbing"]

    def test_coordinates_claim(self):
        location = Location(city="Austin", region="TX", coordinates=Coordinates(latitude=30.27, longitude=-97.74))
        draft = build(make_business(location=location))
        coordinate = values(draft, "P625")[0]
        assert coordinate["latitude"] == 30.27
        assert coordinate["globe"].endswith("/Q2")

    def test_one_claim_per_social_property(self):
        crawled = make_crawled(
            social_links={
                "twitter": "https://twitter.com/acme_plumb",
                "x": "https://x.com/acme_other",
                "youtube": "https://www.youtube.com/@acme",
                "facebook": "https://www.facebook.com/sharer/sharer.php",
            }
        )
        draft = build(crawled=crawled)
        assert values(draft, "P2002") == ["acme_plumb"]
        assert "P2397" not in draft.claims
        assert "P2013" not in draft.claims


class TestSocialHandle:
    @pytest.mark.parametrize(
        "platform,url,expected",
        [
            ("twitter", "https://twitter.com/acme_plumb", "acme_plumb"),
            ("x", "https://x.com/@acme", "acme"),
            ("facebook", "https://m.facebook.com/acmeplumbing/", "acmeplumbing"),
            ("facebook", "https://www.facebook.com/sharer/", None),
            ("instagram", "instagram.com/acme.plumbing", "acme.plumbing"),
            ("linkedin", "https://www.linkedin.com/company/acme-plumbing/", "acme-plumbing"),
            ("youtube", f"https://www.youtube.com/channel/{YOUTUBE_CHANNEL}", YOUTUBE_CHANNEL),
            ("youtube", "https://www.youtube.com/@acme", None),
            ("twitter", "https://example.com/acme", None),
            ("tiktok", "https://www.tiktok.com/@acme", None),
        ],
    )
    def test_handles(self, platform, url, expected):
        assert social_handle(platform, url) == expected


class TestParseInception:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("1998", {"time": "+1998-00-00T00:00:00Z", "precision": PRECISION_YEAR}),
            ("Founded in 1998", {"time": "+1998-00-00T00:00:00Z", "precision": PRECISION_YEAR}),
            ("March 1998", {"time": "+1998-03-00T00:00:00Z", "precision": PRECISION_MONTH}),
            ("1998-03-14", {"time": "+1998-03-14T00:00:00Z", "precision": PRECISION_DAY}),
        ],
    )
    def test_precision_follows_written_components(self, text, expected):
        assert parse_inception(text) == expected

    @pytest.mark.parametrize("text", [None, "", "unknown"])
    def test_unparseable(self, text):
        assert parse_inception(text) is None


class TestDescription:
    def test_truncated(self):
        crawled = make_crawled(description="word " * 100)
        description = build_description("Acme", crawled, Location())
        assert len(description) <= 250
        assert description.endswith("...")

    def test_label_echo_replaced(self):
        crawled = make_crawled(description="Acme Plumbing")
        assert build_description("Acme Plumbing", crawled, Location(city="Austin", region="TX")) == (
            "Business in Austin, TX"
        )


class TestSerializeEntity:
    def test_wbeditentity_payload(self):
        draft = build(crawled=make_crawled(), references=[news_reference(1)])
        payload = serialize_entity(draft)

        assert payload["labels"]["en"] == {"language": "en", "value": "Acme Plumbing"}
        assert "aliases" not in payload
        assert len(payload["claims"]) == draft.claim_count

        instance_of = next(c for c in payload["claims"] if c["mainsnak"]["property"] == "P31")
        datavalue = instance_of["mainsnak"]["datavalue"]
        assert datavalue["type"] == "wikibase-entityid"
        assert datavalue["value"]["numeric-id"] == 4830453

        cited = instance_of["references"][1]
        assert cited["snaks-order"] == ["P854", "P813", "P1476"]
        assert cited["snaks"]["P854"][0]["datavalue"]["value"] == "https://www.statesman.com/story/1"

        inception = next(c for c in payload["claims"] if c["mainsnak"]["property"] == "P571")
        time_value = inception["mainsnak"]["datavalue"]["value"]
        assert time_value["precision"] == PRECISION_YEAR
        assert time_value["calendarmodel"].endswith("Q1985727")

        website = next(c for c in payload["claims"] if c["mainsnak"]["property"] == "P856")
        assert "references" not in website
