"""Unit tests for the store repository against a temporary SQLite database."""

import asyncio

import pytest

from review_monitor.exceptions import IngestionError, PersistenceError
from review_monitor.models.data_models import ProductStatus, ViolationFinding
from tests.fixtures.sample_data import product_row, review_row


def finding(violation_type="Spam Content", severity="High"):
    return ViolationFinding(
        type=violation_type, severity=severity, user_benefit="Low",
        action="Remove", details="Links to a competitor",
    )


class TestProducts:

    @pytest.mark.asyncio
    async def test_upsert_is_keyed_by_asin(self, repository):
        first_id = await repository.upsert_product(product_row())
        second_id = await repository.upsert_product(product_row(title="Renamed Bottle"))

        assert first_id == second_id
        products = await repository.list_products()
        assert len(products) == 1
        assert products[0]["title"] == "Renamed Bottle"

    @pytest.mark.asyncio
    async def test_get_product_returns_stored_fields(self, repository):
        await repository.upsert_product(product_row())

        product = await repository.get_product("B000TEST01")

        assert product["price"] == 24.99
        assert product["rating_data"]["reviewCount"] == 1523
        assert product["status"] == "active"
        assert await repository.get_product("B000MISSING") is None

    @pytest.mark.asyncio
    async def test_history_recorded_only_on_tracked_changes(self, repository):
        await repository.upsert_product(product_row())
        # Insert alone does not write history
        assert await repository.list_history("B000TEST01") == []

        await repository.upsert_product(product_row(title="Same numbers"))
        assert await repository.list_history("B000TEST01") == []

        await repository.upsert_product(product_row(price=19.99))
        history = await repository.list_history("B000TEST01")

        assert len(history) == 1
        assert history[0]["price"] == 19.99
        assert history[0]["rating"] == 4.4
        assert history[0]["review_count"] == 1523
        assert history[0]["violation_count"] == 0

    @pytest.mark.asyncio
    async def test_status_round_trip(self, repository):
        await repository.upsert_product(product_row())
        await repository.upsert_product(product_row(asin="B000TEST02"))

        updated = await repository.set_product_status(
            ["B000TEST01", "B000TEST02", "B000MISSING"], ProductStatus.QUEUED
        )

        assert updated == 2
        assert await repository.get_product_status("B000TEST01") is ProductStatus.QUEUED
        assert await repository.get_product_status("B000MISSING") is None
        assert await repository.set_product_status([], ProductStatus.ERROR) == 0

    @pytest.mark.asyncio
    async def test_concurrent_upserts_resolve_last_write_wins(self, repository):
        results = await asyncio.gather(
            repository.upsert_product(product_row()),
            repository.upsert_product(product_row(title="Other")),
            return_exceptions=True,
        )

        assert not [r for r in results if isinstance(r, Exception)]
        assert results[0] == results[1]
        products = await repository.list_products()
        assert len(products) == 1
        assert products[0]["title"] in ("Stainless Steel Water Bottle", "Other")

    @pytest.mark.asyncio
    async def test_provider_rating_ignored_once_reviews_are_stored(self, repository):
        await repository.upsert_product(product_row())
        await repository.upsert_reviews("B000TEST01", [
            review_row("R1", rating=5),
            review_row("R2", rating=3),
        ])
        history_before = await repository.list_history("B000TEST01")

        # Same provider data again, carrying its own aggregate
        await repository.upsert_product(product_row())

        product = await repository.get_product("B000TEST01")
        assert product["rating_data"]["rating"] == 4.0
        assert product["rating_data"]["reviewCount"] == 2
        assert await repository.list_history("B000TEST01") == history_before


class TestReviews:

    @pytest.mark.asyncio
    async def test_reviews_need_parent_product(self, repository):
        with pytest.raises(IngestionError, match="not found"):
            await repository.upsert_reviews("B000MISSING", [review_row("R1")])

    @pytest.mark.asyncio
    async def test_aggregates_recomputed_from_stored_reviews(self, repository):
        await repository.upsert_product(product_row())

        written = await repository.upsert_reviews("B000TEST01", [
            review_row("R1", rating=5, verified=True),
            review_row("R2", rating=4, verified=False),
            review_row("R3", rating=1, verified=True),
        ])

        assert written == 3
        product = await repository.get_product("B000TEST01")
        assert product["rating_data"]["rating"] == 3.33
        assert product["rating_data"]["reviewCount"] == 3
        assert product["rating_data"]["starsBreakdown"]["5star"] == 0.3333
        assert product["review_summary"]["verifiedPurchases"] == 2

    @pytest.mark.asyncio
    async def test_review_upsert_is_idempotent(self, repository):
        await repository.upsert_product(product_row())
        await repository.upsert_reviews("B000TEST01", [review_row("R1", content="First")])

        await repository.upsert_reviews("B000TEST01", [review_row("R1", content="Edited")])

        reviews = await repository.list_reviews("B000TEST01")
        assert len(reviews) == 1
        assert reviews[0]["content"] == "Edited"
        assert reviews[0]["asin"] == "B000TEST01"

    @pytest.mark.asyncio
    async def test_concurrent_review_upserts_keep_one_row(self, repository):
        await repository.upsert_product(product_row())

        results = await asyncio.gather(
            repository.upsert_reviews("B000TEST01", [review_row("R1", content="First")]),
            repository.upsert_reviews("B000TEST01", [review_row("R1", content="Second")]),
            return_exceptions=True,
        )

        assert results == [1, 1]
        reviews = await repository.list_reviews("B000TEST01")
        assert len(reviews) == 1
        assert reviews[0]["content"] in ("First", "Second")

    @pytest.mark.asyncio
    async def test_failed_row_keeps_earlier_rows(self, repository):
        await repository.upsert_product(product_row())

        with pytest.raises(PersistenceError):
            await repository.upsert_reviews("B000TEST01", [
                review_row("R1", rating=4),
                review_row("R2", rating=9),
                review_row("R3", rating=5),
            ])

        reviews = await repository.list_reviews("B000TEST01")
        assert [r["review_id"] for r in reviews] == ["R1"]
        product = await repository.get_product("B000TEST01")
        assert product["rating_data"]["reviewCount"] == 1

    @pytest.mark.asyncio
    async def test_delete_review_recomputes(self, repository):
        await repository.upsert_product(product_row())
        await repository.upsert_reviews("B000TEST01", [
            review_row("R1", rating=5),
            review_row("R2", rating=1),
        ])

        assert await repository.delete_review("R2") is True
        assert await repository.delete_review("R2") is False

        product = await repository.get_product("B000TEST01")
        assert product["rating_data"]["rating"] == 5.0
        assert product["rating_data"]["reviewCount"] == 1

    @pytest.mark.asyncio
    async def test_recompute_unknown_product(self, repository):
        assert await repository.recompute_review_aggregates("B000MISSING") is None


class TestViolations:

    @pytest.mark.asyncio
    async def test_add_violation_copies_product_and_first_finding(self, repository):
        product_id = await repository.upsert_product(product_row())
        await repository.upsert_reviews("B000TEST01", [review_row("R1")])

        await repository.add_violation("R1", [finding(), finding("Fake Review", "Low")])

        violations = await repository.list_violations("B000TEST01")
        assert len(violations) == 1
        stored = violations[0]
        assert stored["review_id"] == "R1"
        assert stored["product_id"] == product_id
        assert stored["violation_type"] == "Spam Content"
        assert stored["severity"] == "High"
        assert stored["action"] == "Remove"
        assert [v["type"] for v in stored["violations"]] == ["Spam Content", "Fake Review"]
        assert stored["violations"][0]["userBenefit"] == "Low"
        assert stored["overridden"] is False

    @pytest.mark.asyncio
    async def test_add_violation_validation(self, repository):
        await repository.upsert_product(product_row())
        await repository.upsert_reviews("B000TEST01", [review_row("R1")])

        with pytest.raises(ValueError):
            await repository.add_violation("R1", [])
        with pytest.raises(PersistenceError, match="not found"):
            await repository.add_violation("R404", [finding()])

    @pytest.mark.asyncio
    async def test_override_excludes_from_active_counts(self, repository):
        await repository.upsert_product(product_row())
        await repository.upsert_reviews("B000TEST01", [review_row("R1"), review_row("R2")])
        await repository.add_violation("R1", [finding()])
        await repository.add_violation("R2", [finding()])
        assert await repository.count_active_violations("B000TEST01") == 2

        overridden = await repository.override_review_violations("R1", "Admin")

        assert overridden == 1
        assert await repository.count_active_violations("B000TEST01") == 1
        active = await repository.list_violations("B000TEST01")
        assert [v["review_id"] for v in active] == ["R2"]

        everything = await repository.list_violations("B000TEST01", include_overridden=True)
        r1 = next(v for v in everything if v["review_id"] == "R1")
        assert r1["overridden"] is True
        assert r1["overridden_by"] == "Admin"
        assert r1["overridden_at"] is not None

    @pytest.mark.asyncio
    async def test_override_is_not_repeated(self, repository):
        await repository.upsert_product(product_row())
        await repository.upsert_reviews("B000TEST01", [review_row("R1")])
        violation_id = await repository.add_violation("R1", [finding()])

        assert await repository.override_violation(violation_id, "Admin") is True
        assert await repository.override_violation(violation_id, "Someone") is False
        assert await repository.override_review_violations("R1", "Admin") == 0
        assert await repository.override_review_violations("R404", "Admin") == 0

    @pytest.mark.asyncio
    async def test_history_counts_active_violations(self, repository):
        await repository.upsert_product(product_row())
        await repository.upsert_reviews("B000TEST01", [review_row("R1", rating=5)])
        await repository.add_violation("R1", [finding()])

        await repository.upsert_product(product_row(price=9.99))

        history = await repository.list_history("B000TEST01")
        assert history[-1]["price"] == 9.99
        assert history[-1]["violation_count"] == 1


class TestCascade:

    @pytest.mark.asyncio
    async def test_delete_product_removes_dependents(self, repository):
        await repository.upsert_product(product_row())
        await repository.upsert_reviews("B000TEST01", [review_row("R1")])
        await repository.add_violation("R1", [finding()])

        assert await repository.delete_product("B000TEST01") is True

        assert await repository.get_product("B000TEST01") is None
        assert await repository.list_reviews("B000TEST01") == []
        assert await repository.list_violations("B000TEST01", include_overridden=True) == []
        assert await repository.delete_product("B000TEST01") is False

    @pytest.mark.asyncio
    async def test_delete_review_removes_its_violations(self, repository):
        await repository.upsert_product(product_row())
        await repository.upsert_reviews("B000TEST01", [review_row("R1"), review_row("R2")])
        await repository.add_violation("R1", [finding()])

        await repository.delete_review("R1")

        assert await repository.count_active_violations("B000TEST01") == 0
