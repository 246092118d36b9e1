"""Unit tests for scraper item normalization."""

from datetime import datetime, timezone

import pytest

from review_monitor.exceptions import IngestionError, InvalidRecordError
from review_monitor.processor import normalize_product, normalize_review
from review_monitor.processor.normalizer import (
    _extract_price,
    normalize_best_sellers_rank,
    normalize_stars_breakdown,
    normalize_variations,
    parse_helpful_votes,
    parse_reviewed_in,
    validate_result_items,
)
from tests.fixtures.sample_data import PRODUCT_ACTOR_REVIEW, PRODUCT_ITEM, REVIEW_ITEMS


class TestNormalizeProduct:

    def test_full_product_item(self):
        row = normalize_product(PRODUCT_ITEM)

        assert row["asin"] == "B000TEST01"
        assert row["title"] == "Stainless Steel Water Bottle"
        assert row["brand"] == "HydroMock"
        assert row["price"] == 24.99
        assert row["currency"] == "$"
        assert row["availability"] == "In Stock"
        assert row["status"] == "active"
        assert row["categories"] == ["Sports & Outdoors", "Water Bottles"]
        assert row["features"] == ["Keeps drinks cold for 24 hours", "Leak proof lid"]
        assert row["specifications"] == {"Material": "Stainless Steel"}
        assert row["best_sellers_rank"] == [
            {"rank": 1234, "category": "Sports & Outdoors"},
            {"rank": 12, "category": "Water Bottles"},
        ]
        assert row["variations"] == [
            {"asin": "B000TEST02", "title": "32 oz", "attributes": {"Size": "32 oz"}},
        ]

    def test_images_keep_only_http_urls(self):
        row = normalize_product(PRODUCT_ITEM)

        assert row["images"] == [
            "https://m.media-amazon.com/images/I/one.jpg",
            "https://m.media-amazon.com/images/I/two.jpg",
        ]

    def test_images_capped_at_ten(self):
        raw = {"asin": "B1", "images": [f"https://img/{i}.jpg" for i in range(15)]}

        assert len(normalize_product(raw)["images"]) == 10

    def test_rating_data_from_provider(self):
        rating_data = normalize_product(PRODUCT_ITEM)["rating_data"]

        assert rating_data["rating"] == 4.4
        assert rating_data["reviewCount"] == 1523
        assert rating_data["starsBreakdown"]["5star"] == 0.68
        assert rating_data["starsBreakdown"]["1star"] == 0.05
        assert "lastUpdated" in rating_data

    def test_minimal_item_uses_defaults(self):
        row = normalize_product({"asin": " B2 "})

        assert row["asin"] == "B2"
        assert row["title"] is None
        assert row["price"] is None
        assert row["availability"] is None
        assert row["images"] == []
        assert row["best_sellers_rank"] == []
        assert row["rating_data"]["rating"] == 0
        assert row["rating_data"]["reviewCount"] == 0

    def test_out_of_stock(self):
        assert normalize_product({"asin": "B3", "inStock": False})["availability"] == "Out of Stock"

    @pytest.mark.parametrize("raw", [{"title": "No asin"}, {"asin": "   "}, "B000TEST01", None])
    def test_invalid_items_rejected(self, raw):
        with pytest.raises(InvalidRecordError):
            normalize_product(raw)


@pytest.mark.parametrize("raw,expected", [
    ({"price": 19.99}, (19.99, None)),
    ({"price": "$1,299.99"}, (1299.99, None)),
    ({"price": {"value": 5, "currency": "EUR"}}, (5.0, "EUR")),
    ({"currentPrice": "12.5", "currency": "$"}, (12.5, "$")),
    ({"price": -3}, (None, None)),
    ({}, (None, None)),
])
def test_extract_price(raw, expected):
    assert _extract_price(raw) == expected


class TestBreakdownAndRanks:

    def test_fractions_kept(self):
        result = normalize_stars_breakdown({"5star": 0.7, "1star": 0.3})

        assert result == {"5star": 0.7, "4star": 0.0, "3star": 0.0, "2star": 0.0, "1star": 0.3}

    def test_percentages_converted(self):
        result = normalize_stars_breakdown({"5": 72, "four_star": "20%", "1star": "8 %"})

        assert result["5star"] == 0.72
        assert result["4star"] == 0.2
        assert result["1star"] == 0.08

    def test_non_dict_breakdown(self):
        assert set(normalize_stars_breakdown(None).values()) == {0.0}

    def test_rank_from_text(self):
        ranks = normalize_best_sellers_rank(
            "#1,234 in Kitchen & Dining (See Top 100) #12 in Water Bottles"
        )

        assert ranks == [
            {"rank": 1234, "category": "Kitchen & Dining"},
            {"rank": 12, "category": "Water Bottles"},
        ]

    def test_rank_from_single_dict(self):
        assert normalize_best_sellers_rank({"position": "7", "categoryName": "Toys"}) == [
            {"rank": 7, "category": "Toys"}
        ]

    def test_rank_entries_without_category_dropped(self):
        assert normalize_best_sellers_rank([{"rank": 3}]) == []

    def test_variations_from_asin_strings(self):
        assert normalize_variations(["B1", 5]) == [{"asin": "B1", "title": None, "attributes": {}}]


class TestNormalizeReview:

    def test_reviews_scraper_shape(self):
        row = normalize_review(REVIEW_ITEMS[0])

        assert row["review_id"] == "R1"
        assert row["rating"] == 5
        assert row["title"] == "Love it"
        assert row["content"].startswith("Got this as a free product")
        assert row["author_id"] == "AUSER1"
        assert row["author_profile"] == "https://www.amazon.com/gp/profile/AUSER1"
        assert row["verified_purchase"] is True
        assert row["helpful_votes"] == 12
        assert row["total_votes"] == 12
        assert row["country"] == "United States"
        assert row["review_date"] == datetime(2024, 1, 5, tzinfo=timezone.utc)
        assert row["variant"] == "Color: Blue"
        assert row["variant_attributes"] == {"Color": "Blue"}
        assert row["images"] == ["https://m.media-amazon.com/images/I/review1.jpg"]

    def test_one_person_found_helpful(self):
        row = normalize_review(REVIEW_ITEMS[1])

        assert row["helpful_votes"] == 1
        assert row["verified_purchase"] is False
        assert row["country"] == "Canada"
        assert row["variant_attributes"] is None

    def test_product_actor_shape(self):
        row = normalize_review(PRODUCT_ACTOR_REVIEW)

        assert row["review_id"] == "R3"
        assert row["rating"] == 4
        assert row["content"] == "Solid bottle."
        assert row["author"] == "Jamie"
        assert row["helpful_votes"] == 3
        assert row["total_votes"] == 4
        assert row["country"] == "Germany"
        assert row["review_date"] == datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)

    def test_date_falls_back_to_reviewed_in(self):
        row = normalize_review({
            "reviewId": "R4",
            "ratingScore": 2,
            "reviewedIn": "Reviewed in India on March 3, 2023",
        })

        assert row["country"] == "India"
        assert row["review_date"] == datetime(2023, 3, 3, tzinfo=timezone.utc)

    @pytest.mark.parametrize("raw", [
        {"ratingScore": 5},
        {"reviewId": "R5", "ratingScore": 0},
        {"reviewId": "R5", "ratingScore": 6},
        {"reviewId": "R5"},
        ["R5"],
    ])
    def test_invalid_reviews_rejected(self, raw):
        with pytest.raises(InvalidRecordError):
            normalize_review(raw)


@pytest.mark.parametrize("reaction,expected", [
    ("12 people found this helpful", 12),
    ("1,204 people found this helpful", 1204),
    ("One person found this helpful", 1),
    (7, 7),
    (None, 0),
    ("Helpful", 0),
])
def test_parse_helpful_votes(reaction, expected):
    assert parse_helpful_votes(reaction) == expected


def test_parse_reviewed_in_without_date():
    assert parse_reviewed_in("Reviewed in the United Kingdom") == ("United Kingdom", None)
    assert parse_reviewed_in(None) == ("Unknown", None)


class TestValidateResultItems:

    def test_filters_non_objects(self):
        assert validate_result_items([{"asin": "B1"}, "junk"]) == [{"asin": "B1"}]

    def test_empty_result_set(self):
        with pytest.raises(IngestionError, match="No results returned from scraper"):
            validate_result_items([])

    @pytest.mark.parametrize("items", [{"items": []}, None, ["a", 1]])
    def test_malformed_result_set(self, items):
        with pytest.raises(IngestionError, match="Invalid results format"):
            validate_result_items(items)
