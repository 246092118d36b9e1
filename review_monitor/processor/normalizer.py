"""Normalizer for converting raw scraper items to store row schemas.

The scraper actors do not share one schema: product items from different
actor versions nest prices, breakdowns and ranks differently, and review
items come in two shapes (the reviews scraper's ``reviewId``/``ratingScore``
form and the product actor's ``id``/``rating``/``helpful`` form). The helpers
here try the known field names in turn and fall back to safe defaults.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from review_monitor.exceptions import IngestionError, InvalidRecordError


STAR_KEYS = ["5star", "4star", "3star", "2star", "1star"]
MAX_IMAGES = 10

_NUMBER_PATTERN = re.compile(r"-?\d[\d,]*(?:\.\d+)?")
_RANK_PATTERN = re.compile(r"#?\s*([\d,]+)\s+in\s+(.+?)(?:\s*\(|$)")
_HELPFUL_PATTERN = re.compile(r"(\d[\d,]*)")
_REVIEWED_IN_PATTERN = re.compile(r"Reviewed in (?:the )?(.+?)(?: on (.+))?$")


def _first(raw: Dict, fields: List[str]) -> Any:
    """Return the first non-empty value among fields."""
    for field in fields:
        value = raw.get(field)
        if value is not None and value != "":
            return value
    return None


def _to_float(value: Any) -> Optional[float]:
    """Coerce numbers and the first number in strings ("$1,299.99", "4.0 out of 5") to float."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = _NUMBER_PATTERN.search(value)
        return float(match.group(0).replace(",", "")) if match else None
    return None


def _to_int(value: Any, default: int = 0) -> int:
    number = _to_float(value)
    return int(number) if number is not None else default


def _parse_datetime(value: Any) -> Optional[datetime]:
    """Parse ISO timestamps and "January 5, 2024" style dates."""
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        parsed = None
        for fmt in ("%B %d, %Y", "%d %B %Y", "%b %d, %Y"):
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is not None and parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _extract_price(raw_product: Dict) -> tuple:
    """
    Extract price and currency.

    Handles flat numbers, price strings and nested objects such as
    {"value": 19.99, "currency": "$"}.

    Returns:
        Tuple of (price or None, currency or None)
    """
    value = _first(raw_product, ["price", "currentPrice", "listPrice"])
    currency = raw_product.get("currency")

    if isinstance(value, dict):
        currency = currency or value.get("currency")
        value = _first(value, ["value", "amount", "price"])

    price = _to_float(value)
    if price is not None and price < 0:
        price = None
    return (round(price, 2) if price is not None else None, currency)


def normalize_stars_breakdown(breakdown: Any) -> Dict[str, float]:
    """
    Normalize a star breakdown to fractions in [0, 1].

    Accepts fractions (0.72), percentages (72 or "72%") and the key spellings
    "5star", "5" and "five_star".
    """
    aliases = {
        "5star": ["5star", "5", "five_star", "fiveStar"],
        "4star": ["4star", "4", "four_star", "fourStar"],
        "3star": ["3star", "3", "three_star", "threeStar"],
        "2star": ["2star", "2", "two_star", "twoStar"],
        "1star": ["1star", "1", "one_star", "oneStar"],
    }
    result = {key: 0.0 for key in STAR_KEYS}
    if not isinstance(breakdown, dict):
        return result

    for key, names in aliases.items():
        raw_value = _first(breakdown, names)
        value = _to_float(raw_value)
        if value is None:
            continue
        is_percent = (isinstance(raw_value, str) and "%" in raw_value) or value > 1
        if is_percent:
            value = value / 100.0
        result[key] = round(min(max(value, 0.0), 1.0), 4)
    return result


def normalize_best_sellers_rank(value: Any) -> List[Dict[str, Any]]:
    """
    Reshape best-sellers rank data into a list of {"rank", "category"}.

    Accepts lists of dicts, a single dict, or text like "#1,234 in Kitchen".
    """
    if value is None:
        return []
    if isinstance(value, dict):
        value = [value]
    if isinstance(value, str):
        value = [part for part in re.split(r"[\n;]|(?=#\d)", value) if part.strip()]

    ranks = []
    for entry in value if isinstance(value, list) else []:
        if isinstance(entry, dict):
            rank = _to_int(_first(entry, ["rank", "position"]), default=-1)
            category = _first(entry, ["category", "categoryName", "name"])
            if rank >= 0 and category:
                ranks.append({"rank": rank, "category": str(category).strip()})
        elif isinstance(entry, str):
            match = _RANK_PATTERN.search(entry.strip())
            if match:
                ranks.append({
                    "rank": int(match.group(1).replace(",", "")),
                    "category": match.group(2).strip(),
                })
    return ranks


def normalize_variations(value: Any) -> List[Dict[str, Any]]:
    """Reshape variation data into a list of {"asin", "title", "attributes"}."""
    if not isinstance(value, list):
        return []
    variations = []
    for entry in value:
        if isinstance(entry, str):
            variations.append({"asin": entry, "title": None, "attributes": {}})
            continue
        if not isinstance(entry, dict):
            continue
        attributes = entry.get("attributes") or entry.get("dimensions") or {}
        if isinstance(attributes, list):
            attributes = {
                str(item.get("key") or item.get("name")): item.get("value")
                for item in attributes
                if isinstance(item, dict) and (item.get("key") or item.get("name"))
            }
        variations.append({
            "asin": _first(entry, ["asin", "variantAsin"]),
            "title": _first(entry, ["title", "name", "value"]),
            "attributes": attributes if isinstance(attributes, dict) else {},
        })
    return variations


def _extract_images(raw_product: Dict) -> List[str]:
    images = _first(raw_product, ["images", "highResolutionImages", "galleryThumbnails"])
    if isinstance(images, str):
        images = [images]
    if not isinstance(images, list):
        thumbnail = raw_product.get("thumbnailImage")
        images = [thumbnail] if thumbnail else []
    return [
        url for url in images
        if isinstance(url, str) and url.startswith("http")
    ][:MAX_IMAGES]


def _extract_categories(raw_product: Dict) -> List[str]:
    categories = _first(raw_product, ["categories", "breadCrumbs", "category"])
    if isinstance(categories, str):
        categories = [part.strip() for part in re.split(r"[>›]", categories)]
    if not isinstance(categories, list):
        return []
    return [str(c).strip() for c in categories if c and str(c).strip()]


def _extract_specifications(raw_product: Dict) -> Dict[str, Any]:
    specs = _first(raw_product, ["specifications", "attributes", "productOverview"])
    if isinstance(specs, list):
        return {
            str(item.get("key") or item.get("name")): item.get("value")
            for item in specs
            if isinstance(item, dict) and (item.get("key") or item.get("name"))
        }
    return specs if isinstance(specs, dict) else {}


def _extract_availability(raw_product: Dict) -> Optional[str]:
    availability = _first(raw_product, ["availability", "inStockText"])
    if availability is None and "inStock" in raw_product:
        availability = "In Stock" if raw_product["inStock"] else "Out of Stock"
    return str(availability).strip() if availability is not None else None


def build_rating_data(raw_product: Dict, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Build the provider-side rating aggregate stored with the product."""
    now = now or datetime.now(timezone.utc)
    return {
        "rating": _to_float(_first(raw_product, ["stars", "rating"])) or 0,
        "reviewCount": _to_int(_first(raw_product, ["reviewsCount", "reviewCount", "ratingsCount"])),
        "starsBreakdown": normalize_stars_breakdown(raw_product.get("starsBreakdown")),
        "lastUpdated": now.isoformat(),
    }


def normalize_product(raw_product: Dict) -> Dict[str, Any]:
    """
    Normalize one raw product item to the products row schema.

    Args:
        raw_product: Raw product item from the scraper

    Returns:
        Row values keyed by products column name, with status "active"

    Raises:
        InvalidRecordError: If the item is not an object or has no ASIN
    """
    if not isinstance(raw_product, dict):
        raise InvalidRecordError(f"Product item is not an object: {raw_product!r}")
    asin = _first(raw_product, ["asin", "originalAsin"])
    if not asin or not str(asin).strip():
        raise InvalidRecordError("Product item has no ASIN")

    price, currency = _extract_price(raw_product)
    title = _first(raw_product, ["title", "name"])

    return {
        "asin": str(asin).strip(),
        "title": str(title).strip() if title else None,
        "brand": _first(raw_product, ["brand", "manufacturer"]),
        "price": price,
        "currency": currency,
        "availability": _extract_availability(raw_product),
        "dimensions": raw_product.get("dimensions"),
        "specifications": _extract_specifications(raw_product),
        "best_sellers_rank": normalize_best_sellers_rank(
            _first(raw_product, ["bestSellersRank", "bestsellerRanks", "bestSellerRanks"])
        ),
        "variations": normalize_variations(
            _first(raw_product, ["variations", "variantDetails", "variantAsins"])
        ),
        "frequently_bought_together": raw_product.get("frequentlyBoughtTogether"),
        "customer_questions": raw_product.get("customerQuestions"),
        "images": _extract_images(raw_product),
        "categories": _extract_categories(raw_product),
        "features": [f for f in (raw_product.get("features") or []) if isinstance(f, str)],
        "description": raw_product.get("description"),
        "rating_data": build_rating_data(raw_product),
        "status": "active",
    }


def parse_helpful_votes(reaction: Any) -> int:
    """Parse "12 people found this helpful" / "One person found this helpful"."""
    if isinstance(reaction, (int, float)) and not isinstance(reaction, bool):
        return int(reaction)
    if not isinstance(reaction, str):
        return 0
    match = _HELPFUL_PATTERN.search(reaction)
    if match:
        return int(match.group(1).replace(",", ""))
    if reaction.strip().lower().startswith("one "):
        return 1
    return 0


def parse_reviewed_in(reviewed_in: Any) -> tuple:
    """
    Split "Reviewed in the United States on January 5, 2024".

    Returns:
        Tuple of (country or "Unknown", review date or None)
    """
    if not isinstance(reviewed_in, str):
        return ("Unknown", None)
    match = _REVIEWED_IN_PATTERN.search(reviewed_in.strip())
    if not match:
        return ("Unknown", None)
    country = match.group(1).strip() or "Unknown"
    return (country, _parse_datetime(match.group(2)) if match.group(2) else None)


def normalize_review(raw_review: Dict) -> Dict[str, Any]:
    """
    Normalize one raw review item to the reviews row schema.

    Args:
        raw_review: Raw review item from either scraper shape

    Returns:
        Row values keyed by reviews column name (without product_id)

    Raises:
        InvalidRecordError: If the id is missing or the rating is outside 1..5
    """
    if not isinstance(raw_review, dict):
        raise InvalidRecordError(f"Review item is not an object: {raw_review!r}")

    review_id = _first(raw_review, ["reviewId", "review_id", "id"])
    if not review_id or not str(review_id).strip():
        raise InvalidRecordError("Review item has no review id")
    review_id = str(review_id).strip()

    rating = _to_float(_first(raw_review, ["ratingScore", "rating", "stars"]))
    if rating is None or not 1 <= rating <= 5:
        raise InvalidRecordError(f"Review {review_id} has invalid rating: {rating!r}")

    country, reviewed_on = parse_reviewed_in(raw_review.get("reviewedIn"))
    country = raw_review.get("country") or country

    helpful = raw_review.get("helpful")
    if isinstance(helpful, dict):
        helpful_votes = _to_int(helpful.get("votes"))
        total_votes = _to_int(helpful.get("total"))
    else:
        helpful_votes = parse_helpful_votes(
            _first(raw_review, ["reviewReaction", "helpfulVotes", "helpful_votes"])
        )
        total_votes = _to_int(raw_review.get("totalVotes"))

    variant_attributes = _first(raw_review, ["variantAttributes", "attributes"])
    if isinstance(variant_attributes, list):
        variant_attributes = {
            str(item.get("key") or item.get("name")): item.get("value")
            for item in variant_attributes
            if isinstance(item, dict) and (item.get("key") or item.get("name"))
        }

    author_id = _first(raw_review, ["userId", "authorId", "author_id"])
    images = _first(raw_review, ["reviewImages", "images"]) or []

    return {
        "review_id": review_id,
        "title": _first(raw_review, ["reviewTitle", "title"]),
        "content": _first(raw_review, ["reviewDescription", "text", "content"]),
        "rating": int(round(rating)),
        "author": _first(raw_review, ["author", "userName", "userId"]),
        "author_id": str(author_id) if author_id is not None else None,
        "author_profile": _first(raw_review, ["userProfileLink", "authorProfile"]),
        "verified_purchase": bool(_first(raw_review, ["isVerified", "verified", "verified_purchase"])),
        "helpful_votes": helpful_votes,
        "total_votes": max(total_votes, helpful_votes),
        "review_date": _parse_datetime(raw_review.get("date")) or reviewed_on,
        "variant": raw_review.get("variant"),
        "variant_attributes": variant_attributes or None,
        "country": country,
        "images": [url for url in images if isinstance(url, str)],
    }


def validate_result_items(items: Any) -> List[Dict]:
    """
    Check that a scraper result set is a non-empty list of objects.

    Raises:
        IngestionError: If the result set is empty or malformed
    """
    if not isinstance(items, list):
        raise IngestionError(f"Invalid results format: expected a list, got {type(items).__name__}")
    if not items:
        raise IngestionError("No results returned from scraper")
    records = [item for item in items if isinstance(item, dict)]
    if not records:
        raise IngestionError("Invalid results format: no objects in result set")
    return records
