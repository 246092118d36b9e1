"""Store repository: upserts, aggregates, violations and history.

Every write runs in its own session and commits on its own, so a failure
part-way through a batch leaves earlier rows committed. Derived columns
(``rating_data``, ``review_summary``, ``reviews.asin``,
``review_violations.product_id``) and ``product_history`` rows are written
here rather than by database triggers, so SQLite and Postgres behave alike.
"""

from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from review_monitor.exceptions import IngestionError, PersistenceError
from review_monitor.models.data_models import ProductStatus, ViolationFinding, utc_now
from review_monitor.processor.aggregator import compute_rating_data, compute_review_summary
from review_monitor.storage.database import Database
from review_monitor.storage.tables import Product, ProductHistory, Review, ReviewViolation


PRODUCT_FIELDS = (
    "title", "brand", "price", "currency", "availability", "dimensions",
    "specifications", "best_sellers_rank", "variations",
    "frequently_bought_together", "customer_questions", "images",
    "categories", "features", "description", "rating_data", "status",
)

REVIEW_FIELDS = (
    "title", "content", "rating", "author", "author_id", "author_profile",
    "verified_purchase", "helpful_votes", "total_votes", "review_date",
    "variant", "variant_attributes", "country", "images",
)


def _tracked_values(product: Product) -> tuple:
    rating_data = product.rating_data or {}
    return (
        product.price,
        rating_data.get("rating"),
        rating_data.get("reviewCount"),
        product.best_sellers_rank,
    )


def product_to_dict(product: Product) -> Dict[str, Any]:
    data = {"id": product.id, "asin": product.asin}
    for field in PRODUCT_FIELDS:
        data[field] = getattr(product, field)
    data["review_summary"] = product.review_summary
    data["updated_at"] = product.updated_at
    return data


def review_to_dict(review: Review) -> Dict[str, Any]:
    data = {
        "id": review.id,
        "review_id": review.review_id,
        "product_id": review.product_id,
        "asin": review.asin,
    }
    for field in REVIEW_FIELDS:
        data[field] = getattr(review, field)
    return data


def violation_to_dict(violation: ReviewViolation, review_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": violation.id,
        "review_id": review_id,
        "product_id": violation.product_id,
        "violations": violation.violations,
        "violation_type": violation.violation_type,
        "violation_category": violation.violation_category,
        "severity": violation.severity,
        "user_benefit": violation.user_benefit,
        "action": violation.action,
        "details": violation.details,
        "scanned_at": violation.scanned_at,
        "overridden": violation.overridden,
        "overridden_by": violation.overridden_by,
        "overridden_at": violation.overridden_at,
    }


class StoreRepository:
    """Application-side access to the products/reviews/violations store."""

    def __init__(self, database: Database):
        self.database = database

    # -- products -----------------------------------------------------------

    def _insert(self, table):
        """Dialect insert with ON CONFLICT support for the configured store."""
        if self.database.engine.dialect.name == "postgresql":
            return postgresql_insert(table)
        return sqlite_insert(table)

    async def _get_product(self, session: AsyncSession, asin: str, refresh: bool = False) -> Optional[Product]:
        query = select(Product).where(Product.asin == asin)
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def _has_reviews(self, session: AsyncSession, product_id: int) -> bool:
        result = await session.execute(select(Review.id).where(Review.product_id == product_id).limit(1))
        return result.scalar_one_or_none() is not None

    async def _count_active(self, session: AsyncSession, product_id: int) -> int:
        result = await session.execute(
            select(func.count(ReviewViolation.id)).where(
                ReviewViolation.product_id == product_id,
                ReviewViolation.overridden.is_(False),
            )
        )
        return result.scalar_one()

    async def _record_history_if_changed(
        self,
        session: AsyncSession,
        product: Product,
        previous: tuple
    ) -> None:
        if _tracked_values(product) == previous:
            return
        rating_data = product.rating_data or {}
        session.add(ProductHistory(
            product_id=product.id,
            price=product.price,
            rating=rating_data.get("rating"),
            review_count=rating_data.get("reviewCount"),
            best_sellers_rank=product.best_sellers_rank,
            violation_count=await self._count_active(session, product.id),
            captured_at=utc_now(),
        ))

    async def upsert_product(self, row: Dict[str, Any]) -> int:
        """
        Insert or update a product keyed by ASIN.

        The write is a single INSERT ... ON CONFLICT (asin) DO UPDATE, so
        concurrent ingestions of one ASIN resolve last-write-wins. Once a
        product has stored reviews its rating_data is derived from them and
        the provider's aggregate is ignored. Updates that change price,
        rating, review count or best-sellers rank append a product_history row.

        Returns:
            The product's primary key

        Raises:
            PersistenceError: If the write fails
        """
        asin = row["asin"]
        values = {k: row[k] for k in PRODUCT_FIELDS if k in row}
        try:
            async with self.database.session() as session:
                existing = await self._get_product(session, asin)
                previous = None
                if existing is not None:
                    previous = _tracked_values(existing)
                    if await self._has_reviews(session, existing.id):
                        values.pop("rating_data", None)

                stmt = self._insert(Product).values(asin=asin, **values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["asin"],
                    set_={**{k: stmt.excluded[k] for k in values}, "updated_at": utc_now()},
                )
                await session.execute(stmt)

                product = await self._get_product(session, asin, refresh=True)
                if previous is not None:
                    await self._record_history_if_changed(session, product, previous)
                await session.commit()
                return product.id
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to upsert product {asin}: {e}") from e

    async def get_product(self, asin: str) -> Optional[Dict[str, Any]]:
        async with self.database.session() as session:
            product = await self._get_product(session, asin)
            return product_to_dict(product) if product else None

    async def list_products(self) -> List[Dict[str, Any]]:
        async with self.database.session() as session:
            result = await session.execute(select(Product).order_by(Product.asin))
            return [product_to_dict(p) for p in result.scalars()]

    async def get_product_status(self, asin: str) -> Optional[ProductStatus]:
        async with self.database.session() as session:
            result = await session.execute(select(Product.status).where(Product.asin == asin))
            status = result.scalar_one_or_none()
            return ProductStatus(status) if status else None

    async def set_product_status(self, asins: Iterable[str], status: ProductStatus) -> int:
        """
        Set the lifecycle status of stored products.

        ASINs without a stored row are ignored.

        Returns:
            Number of rows updated
        """
        asins = list(asins)
        if not asins:
            return 0
        try:
            async with self.database.session() as session:
                result = await session.execute(
                    update(Product)
                    .where(Product.asin.in_(asins))
                    .values(status=status.value, updated_at=utc_now())
                )
                await session.commit()
                return result.rowcount
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to set status for {asins}: {e}") from e

    async def delete_product(self, asin: str) -> bool:
        """Delete a product; its reviews, violations and history cascade."""
        async with self.database.session() as session:
            result = await session.execute(delete(Product).where(Product.asin == asin))
            await session.commit()
            return result.rowcount > 0

    # -- reviews ------------------------------------------------------------

    async def _upsert_review(self, product_id: int, asin: str, row: Dict[str, Any]) -> None:
        review_id = row["review_id"]
        try:
            async with self.database.session() as session:
                values = {k: row[k] for k in REVIEW_FIELDS if k in row}
                values.update(product_id=product_id, asin=asin)
                stmt = self._insert(Review).values(review_id=review_id, **values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["review_id"],
                    set_={**{k: stmt.excluded[k] for k in values}, "updated_at": utc_now()},
                )
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to upsert review {review_id}: {e}") from e

    async def upsert_reviews(self, asin: str, rows: List[Dict[str, Any]]) -> int:
        """
        Insert or update reviews for a product, keyed by review_id.

        Each row commits on its own; the first failing row raises and stops the
        batch. Aggregates are recomputed once for whatever was written.

        Returns:
            Number of rows written

        Raises:
            IngestionError: If the parent product is missing
            PersistenceError: If a write fails
        """
        async with self.database.session() as session:
            product = await self._get_product(session, asin)
        if product is None:
            raise IngestionError(f"Product {asin} not found; reviews need a parent product")

        written = 0
        try:
            for row in rows:
                await self._upsert_review(product.id, asin, row)
                written += 1
        finally:
            if written:
                await self.recompute_review_aggregates(asin)
        return written

    async def recompute_review_aggregates(self, asin: str) -> Optional[Dict[str, Any]]:
        """
        Recompute rating_data and review_summary from the stored reviews.

        Returns:
            The new rating_data, or None if the product does not exist
        """
        try:
            async with self.database.session() as session:
                product = await self._get_product(session, asin)
                if product is None:
                    return None
                result = await session.execute(
                    select(Review.rating, Review.verified_purchase).where(Review.product_id == product.id)
                )
                rows = result.all()

                now = utc_now()
                previous = _tracked_values(product)
                product.rating_data = compute_rating_data([r.rating for r in rows], now=now)
                product.review_summary = compute_review_summary(
                    [r.verified_purchase for r in rows], now=now
                )
                product.updated_at = now
                await session.flush()
                await self._record_history_if_changed(session, product, previous)
                await session.commit()
                return product.rating_data
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to recompute aggregates for {asin}: {e}") from e

    async def delete_review(self, review_id: str) -> bool:
        async with self.database.session() as session:
            result = await session.execute(select(Review.asin).where(Review.review_id == review_id))
            asin = result.scalar_one_or_none()
            if asin is None:
                return False
            await session.execute(delete(Review).where(Review.review_id == review_id))
            await session.commit()
        await self.recompute_review_aggregates(asin)
        return True

    async def list_reviews(self, asin: str) -> List[Dict[str, Any]]:
        async with self.database.session() as session:
            result = await session.execute(
                select(Review)
                .where(Review.asin == asin)
                .order_by(Review.review_date.desc(), Review.id)
            )
            return [review_to_dict(r) for r in result.scalars()]

    # -- violations ---------------------------------------------------------

    async def add_violation(
        self,
        review_id: str,
        findings: List[ViolationFinding],
        scanned_at=None
    ) -> int:
        """
        Store one violation row for a review.

        product_id is copied from the review; the first finding is copied into
        the indexed columns.

        Returns:
            The violation row id

        Raises:
            PersistenceError: If the review does not exist or the write fails
        """
        if not findings:
            raise ValueError("add_violation requires at least one finding")
        first = findings[0]
        try:
            async with self.database.session() as session:
                result = await session.execute(select(Review).where(Review.review_id == review_id))
                review = result.scalar_one_or_none()
                if review is None:
                    raise PersistenceError(f"Review {review_id} not found")
                violation = ReviewViolation(
                    review_id=review.id,
                    product_id=review.product_id,
                    violations=[f.to_dict() for f in findings],
                    violation_type=first.type,
                    violation_category=first.category,
                    severity=first.severity,
                    user_benefit=first.user_benefit,
                    action=first.action,
                    details=first.details,
                    scanned_at=scanned_at or utc_now(),
                    overridden=False,
                )
                session.add(violation)
                await session.commit()
                return violation.id
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to store violation for review {review_id}: {e}") from e

    async def override_violation(self, violation_id: int, user: str) -> bool:
        """Mark one violation overridden by user. Returns False if already overridden or missing."""
        async with self.database.session() as session:
            result = await session.execute(
                update(ReviewViolation)
                .where(ReviewViolation.id == violation_id, ReviewViolation.overridden.is_(False))
                .values(overridden=True, overridden_by=user, overridden_at=utc_now())
            )
            await session.commit()
            return result.rowcount > 0

    async def override_review_violations(self, review_id: str, user: str) -> int:
        """
        Mark every active violation of a review overridden by user.

        Returns:
            Number of violation rows overridden
        """
        async with self.database.session() as session:
            review_pk = (await session.execute(
                select(Review.id).where(Review.review_id == review_id)
            )).scalar_one_or_none()
            if review_pk is None:
                return 0
            result = await session.execute(
                update(ReviewViolation)
                .where(ReviewViolation.review_id == review_pk, ReviewViolation.overridden.is_(False))
                .values(overridden=True, overridden_by=user, overridden_at=utc_now())
            )
            await session.commit()
            return result.rowcount

    async def count_active_violations(self, asin: str) -> int:
        """Count violation rows for a product that have not been overridden."""
        async with self.database.session() as session:
            product = await self._get_product(session, asin)
            if product is None:
                return 0
            return await self._count_active(session, product.id)

    async def list_violations(self, asin: str, include_overridden: bool = False) -> List[Dict[str, Any]]:
        async with self.database.session() as session:
            query = (
                select(ReviewViolation, Review.review_id)
                .join(Review, Review.id == ReviewViolation.review_id)
                .where(Review.asin == asin)
                .order_by(ReviewViolation.scanned_at.desc(), ReviewViolation.id)
            )
            if not include_overridden:
                query = query.where(ReviewViolation.overridden.is_(False))
            result = await session.execute(query)
            return [violation_to_dict(v, review_id) for v, review_id in result.all()]

    # -- history ------------------------------------------------------------

    async def list_history(self, asin: str) -> List[Dict[str, Any]]:
        async with self.database.session() as session:
            result = await session.execute(
                select(ProductHistory)
                .join(Product, Product.id == ProductHistory.product_id)
                .where(Product.asin == asin)
                .order_by(ProductHistory.captured_at, ProductHistory.id)
            )
            return [
                {
                    "price": h.price,
                    "rating": h.rating,
                    "review_count": h.review_count,
                    "best_sellers_rank": h.best_sellers_rank,
                    "violation_count": h.violation_count,
                    "captured_at": h.captured_at,
                }
                for h in result.scalars()
            ]
