"""Store tables: products, reviews, review violations and product history"""
from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.sql import func

from review_monitor.storage.database import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    asin = Column(String(20), unique=True, nullable=False, index=True)
    title = Column(Text)
    brand = Column(String(255))
    price = Column(Float)
    currency = Column(String(10))
    availability = Column(String(255))

    # Catalog details as scraped
    dimensions = Column(JSON)
    specifications = Column(JSON, default=dict)
    best_sellers_rank = Column(JSON, default=list)
    variations = Column(JSON, default=list)
    frequently_bought_together = Column(JSON)
    customer_questions = Column(JSON)
    images = Column(JSON, default=list)
    categories = Column(JSON, default=list)
    features = Column(JSON, default=list)
    description = Column(Text)

    # Derived aggregates, written by the repository only
    rating_data = Column(JSON, default=dict)
    review_summary = Column(JSON, default=dict)

    status = Column(String(20), nullable=False, default="active", index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'queued', 'refreshing', 'error')",
            name="ck_products_status",
        ),
    )


class Review(Base):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, index=True)
    review_id = Column(String(64), unique=True, nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    asin = Column(String(20), index=True)

    title = Column(Text)
    content = Column(Text)
    rating = Column(Integer, nullable=False)
    author = Column(String(255))
    author_id = Column(String(64))
    author_profile = Column(Text)
    verified_purchase = Column(Boolean, default=False)
    helpful_votes = Column(Integer, default=0)
    total_votes = Column(Integer, default=0)
    review_date = Column(DateTime(timezone=True))
    variant = Column(String(255))
    variant_attributes = Column(JSON)
    country = Column(String(100))
    images = Column(JSON, default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating"),
    )


class ReviewViolation(Base):
    __tablename__ = "review_violations"

    id = Column(Integer, primary_key=True, index=True)
    review_id = Column(Integer, ForeignKey("reviews.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)

    # Full findings list; the columns below copy the first finding
    violations = Column(JSON, nullable=False, default=list)
    violation_type = Column(String(100), index=True)
    violation_category = Column(String(255))
    severity = Column(String(10))
    user_benefit = Column(String(10))
    action = Column(String(10))
    details = Column(Text)

    scanned_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    overridden = Column(Boolean, nullable=False, default=False, index=True)
    overridden_by = Column(String(255))
    overridden_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ProductHistory(Base):
    __tablename__ = "product_history"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    price = Column(Float)
    rating = Column(Float)
    review_count = Column(Integer)
    best_sellers_rank = Column(JSON)
    violation_count = Column(Integer, default=0)
    captured_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_product_history_product_id_captured_at", "product_id", "captured_at"),
    )
