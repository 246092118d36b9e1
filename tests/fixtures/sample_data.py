"""Test fixtures with deterministic scraper and classifier data."""

PRODUCT_ITEM = {
    "asin": "B000TEST01",
    "title": "  Stainless Steel Water Bottle  ",
    "brand": "HydroMock",
    "price": {"value": 24.99, "currency": "$"},
    "inStock": True,
    "stars": 4.4,
    "reviewsCount": 1523,
    "starsBreakdown": {"5star": "68%", "4star": "17%", "3star": "7%", "2star": "3%", "1star": "5%"},
    "breadCrumbs": "Sports & Outdoors > Water Bottles",
    "features": ["Keeps drinks cold for 24 hours", "Leak proof lid"],
    "description": "Double-wall insulated bottle.",
    "highResolutionImages": [
        "https://m.media-amazon.com/images/I/one.jpg",
        "data:image/gif;base64,R0lGODlhAQABAAAAACw=",
        "https://m.media-amazon.com/images/I/two.jpg",
    ],
    "bestsellerRanks": [
        {"rank": 1234, "category": "Sports & Outdoors"},
        {"rank": 12, "category": "Water Bottles"},
    ],
    "variantDetails": [
        {"asin": "B000TEST02", "name": "32 oz", "attributes": [{"key": "Size", "value": "32 oz"}]},
    ],
    "attributes": [{"key": "Material", "value": "Stainless Steel"}],
}

# Reviews scraper output shape
REVIEW_ITEMS = [
    {
        "reviewId": "R1",
        "productAsin": "B000TEST01",
        "ratingScore": 5,
        "reviewTitle": "Love it",
        "reviewDescription": "Got this as a free product in exchange for my review.",
        "reviewReaction": "12 people found this helpful",
        "reviewedIn": "Reviewed in the United States on January 5, 2024",
        "date": "2024-01-05",
        "isVerified": True,
        "userId": "AUSER1",
        "userProfileLink": "https://www.amazon.com/gp/profile/AUSER1",
        "variant": "Color: Blue",
        "variantAttributes": [{"key": "Color", "value": "Blue"}],
        "reviewImages": ["https://m.media-amazon.com/images/I/review1.jpg"],
    },
    {
        "reviewId": "R2",
        "productAsin": "B000TEST01",
        "ratingScore": 3,
        "reviewTitle": "Okay",
        "reviewDescription": "Does the job, lid is a bit stiff.",
        "reviewReaction": "One person found this helpful",
        "reviewedIn": "Reviewed in Canada on February 1, 2024",
        "date": "2024-02-01",
        "isVerified": False,
        "userId": "AUSER2",
    },
]

# Product actor review shape
PRODUCT_ACTOR_REVIEW = {
    "id": "R3",
    "rating": "4.0 out of 5 stars",
    "title": "Solid",
    "text": "Solid bottle.",
    "author": "Jamie",
    "verified": True,
    "helpful": {"votes": 3, "total": 4},
    "date": "2024-03-10T12:00:00Z",
    "country": "Germany",
}


def product_row(asin="B000TEST01", **overrides):
    """Normalized products row."""
    row = {
        "asin": asin,
        "title": "Stainless Steel Water Bottle",
        "brand": "HydroMock",
        "price": 24.99,
        "currency": "$",
        "availability": "In Stock",
        "images": [],
        "categories": [],
        "features": [],
        "best_sellers_rank": [{"rank": 1234, "category": "Sports & Outdoors"}],
        "rating_data": {"rating": 4.4, "reviewCount": 1523},
        "status": "active",
    }
    row.update(overrides)
    return row


def review_row(review_id, rating=5, content="Great product", verified=True, **overrides):
    """Normalized reviews row."""
    row = {
        "review_id": review_id,
        "title": f"Review {review_id}",
        "content": content,
        "rating": rating,
        "author": "Tester",
        "verified_purchase": verified,
        "helpful_votes": 0,
        "total_votes": 0,
    }
    row.update(overrides)
    return row
