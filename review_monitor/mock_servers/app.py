"""FastAPI mock servers for the scraper API and the classifier webhook."""

import asyncio
import os
import uuid
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response


# Words that make the mock classifier flag a review, with the finding it returns
FLAG_WORDS = {
    "free product": ("Inauthentic Review", "High", "Remove"),
    "discount": ("Pricing/Availability Keywords", "Medium", "Edit"),
    "buy it at": ("Spam Content", "High", "Remove"),
    "visit my": ("Promotional Content", "Medium", "Remove"),
    "idiot": ("Policy Violation", "Medium", "Edit"),
    "fake": ("Fake Review", "High", "Remove"),
}


def _asin_from_url(url: str) -> Optional[str]:
    if "/dp/" not in url:
        return None
    return url.rsplit("/dp/", 1)[1].split("/")[0].split("?")[0] or None


def _input_asins(run_input: Dict[str, Any]) -> List[str]:
    urls = run_input.get("productUrls") or run_input.get("categoryOrProductUrls") or []
    asins = []
    for entry in urls:
        url = entry.get("url") if isinstance(entry, dict) else entry
        asin = _asin_from_url(url or "")
        if asin:
            asins.append(asin)
    return asins


def sample_product_item(asin: str) -> Dict[str, Any]:
    """Product item in the product crawler's output shape."""
    return {
        "asin": asin,
        "title": f"Mock Product {asin}",
        "brand": "MockBrand",
        "price": {"value": 24.99, "currency": "$"},
        "inStock": True,
        "stars": 4.3,
        "reviewsCount": 128,
        "starsBreakdown": {"5star": 0.62, "4star": 0.18, "3star": 0.08, "2star": 0.05, "1star": 0.07},
        "breadCrumbs": "Home & Kitchen > Kitchen & Dining",
        "features": ["Dishwasher safe", "BPA free"],
        "description": "A product served by the mock scraper.",
        "highResolutionImages": [
            f"https://m.media-amazon.com/images/I/{asin}-1.jpg",
            f"https://m.media-amazon.com/images/I/{asin}-2.jpg",
        ],
        "bestsellerRanks": [{"rank": 1234, "category": "Kitchen & Dining"}],
        "attributes": [{"key": "Material", "value": "Stainless Steel"}],
    }


def sample_review_items(asin: str, count: int = 3) -> List[Dict[str, Any]]:
    """Review items in the reviews scraper's output shape."""
    texts = [
        "Works great, exactly as described.",
        "Got this as a free product in exchange for this review.",
        "Stopped working after a week. Disappointed.",
        "Solid build quality, would buy again.",
        "Meh. It does the job.",
    ]
    return [
        {
            "reviewId": f"R{asin}{i:03d}",
            "productAsin": asin,
            "ratingScore": 5 - (i % 5),
            "reviewTitle": f"Review {i}",
            "reviewDescription": texts[i % len(texts)],
            "reviewReaction": f"{i} people found this helpful" if i else "",
            "reviewedIn": "Reviewed in the United States on January 5, 2024",
            "date": "2024-01-05",
            "isVerified": i % 2 == 0,
            "userId": f"user-{i}",
            "variant": None,
            "reviewImages": [],
        }
        for i in range(count)
    ]


def create_apify_app(
    products: Optional[Dict[str, Dict[str, Any]]] = None,
    reviews: Optional[Dict[str, List[Dict[str, Any]]]] = None,
    running_polls: int = 1,
    final_status: str = "SUCCEEDED",
    status_message: str = "Actor run failed",
    review_count: int = 3
) -> FastAPI:
    """
    Create a mock of the scraper provider's actor-run API.

    Each run reports READY on start, RUNNING for ``running_polls`` status
    polls, then ``final_status``. Dataset items come from ``products`` and
    ``reviews`` (keyed by ASIN) or are generated.

    Args:
        products: Product items by ASIN
        reviews: Review items by ASIN
        running_polls: Polls answered with RUNNING before the final status
        final_status: Terminal status reported (SUCCEEDED, FAILED, ...)
        status_message: statusMessage reported for failed runs
        review_count: Generated reviews per ASIN when none are given

    Returns:
        FastAPI application; ``app.state.runs`` records every run
    """
    app = FastAPI(title="Mock Apify API")
    app.state.runs = {}

    def dataset_for(actor_id: str, run_input: Dict[str, Any]) -> List[Dict[str, Any]]:
        asins = _input_asins(run_input)
        if "review" in actor_id:
            items = []
            for asin in asins:
                items.extend((reviews or {}).get(asin) or sample_review_items(asin, review_count))
            return items[: run_input.get("maxReviews") or None]
        return [(products or {}).get(asin) or sample_product_item(asin) for asin in asins]

    @app.post("/acts/{actor_id}/runs")
    async def start_run(actor_id: str, request: Request):
        run_input = await request.json()
        run_id = uuid.uuid4().hex[:17]
        app.state.runs[run_id] = {"actor_id": actor_id, "input": run_input, "polls": 0}
        return JSONResponse({"data": {"id": run_id, "actId": actor_id, "status": "READY"}}, status_code=201)

    @app.get("/acts/{actor_id}/runs/{run_id}")
    async def get_run(actor_id: str, run_id: str):
        run = app.state.runs.get(run_id)
        if run is None:
            raise HTTPException(status_code=404, detail="Run not found")
        run["polls"] += 1
        if run["polls"] <= running_polls:
            percent = round(run["polls"] / (running_polls + 1) * 100, 1)
            data = {"id": run_id, "status": "RUNNING", "progress": {"percent": percent}}
        else:
            data = {"id": run_id, "status": final_status, "progress": {"percent": 100}}
            if final_status != "SUCCEEDED":
                data["statusMessage"] = status_message
        return {"data": data}

    @app.get("/actor-runs/{run_id}/dataset/items")
    async def dataset_items(run_id: str):
        run = app.state.runs.get(run_id)
        if run is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return dataset_for(run["actor_id"], run["input"])

    @app.post("/acts/{actor_id}/run-sync-get-dataset-items")
    async def run_sync(actor_id: str, request: Request):
        run_input = await request.json()
        app.state.runs[f"sync-{len(app.state.runs)}"] = {"actor_id": actor_id, "input": run_input, "polls": 0}
        if final_status != "SUCCEEDED":
            raise HTTPException(status_code=400, detail=status_message)
        return dataset_for(actor_id, run_input)

    @app.get("/health")
    async def health():
        return {"status": "healthy", "server": "apify"}

    return app


def _verdict(review: Dict[str, Any], verdicts: Optional[Dict[str, List[Dict]]]) -> List[Dict[str, Any]]:
    review_id = str(review.get("id"))
    if verdicts is not None:
        return verdicts.get(review_id, [])
    content = str(review.get("content") or "").lower()
    findings = []
    for word, (violation_type, severity, action) in FLAG_WORDS.items():
        if word in content:
            findings.append({
                "type": violation_type,
                "severity": severity,
                "userBenefit": "Low",
                "action": action,
                "details": f"Review mentions '{word}'",
            })
    return findings


def create_classifier_app(
    envelope: str = "results",
    verdicts: Optional[Dict[str, List[Dict]]] = None,
    fail_first: int = 0,
    fail_status: int = 500,
    delay_seconds: float = 0.0
) -> FastAPI:
    """
    Create a mock of the violation classifier webhook.

    Args:
        envelope: Response shape: "single", "results", "keyed", "list", or
            "unknown" for a body no decoder accepts
        verdicts: Findings by review id; by default reviews are flagged by
            keywords in their content
        fail_first: Number of initial requests answered with ``fail_status``
        fail_status: HTTP status for scripted failures
        delay_seconds: Delay before every response

    Returns:
        FastAPI application; ``app.state.requests`` records every request body
    """
    app = FastAPI(title="Mock Violation Classifier")
    app.state.requests = []
    app.state.remaining_failures = fail_first

    @app.post("/webhook")
    async def classify(request: Request):
        body = await request.json()
        app.state.requests.append(body)
        if delay_seconds:
            await asyncio.sleep(delay_seconds)
        if app.state.remaining_failures > 0:
            app.state.remaining_failures -= 1
            return Response(status_code=fail_status)

        reviews = body.get("reviews") if "reviews" in body else [body.get("review") or {}]
        results = [
            {"reviewId": str(r.get("id")), "violations": _verdict(r, verdicts)}
            for r in reviews
        ]

        if envelope == "single" and len(results) == 1:
            return results[0]
        if envelope == "keyed":
            return {r["reviewId"]: {"violations": r["violations"]} for r in results}
        if envelope == "list":
            return results
        if envelope == "unknown":
            return {"status": "ok", "output": "no structured result"}
        return {"results": results}

    @app.get("/health")
    async def health():
        return {"status": "healthy", "server": "classifier"}

    return app


def create_app(kind: str) -> FastAPI:
    """
    Create a mock server configured from the environment.

    Environment: MOCK_RUNNING_POLLS, MOCK_FINAL_STATUS, MOCK_REVIEW_COUNT for
    the scraper; MOCK_ENVELOPE, MOCK_FAIL_FIRST, MOCK_DELAY_SECONDS for the
    classifier.
    """
    if kind == "apify":
        return create_apify_app(
            running_polls=int(os.getenv("MOCK_RUNNING_POLLS", 2)),
            final_status=os.getenv("MOCK_FINAL_STATUS", "SUCCEEDED"),
            review_count=int(os.getenv("MOCK_REVIEW_COUNT", 5)),
        )
    if kind == "classifier":
        return create_classifier_app(
            envelope=os.getenv("MOCK_ENVELOPE", "results"),
            fail_first=int(os.getenv("MOCK_FAIL_FIRST", 0)),
            delay_seconds=float(os.getenv("MOCK_DELAY_SECONDS", 0)),
        )
    raise ValueError(f"Unknown mock server kind: {kind}")
