"""Tests for the HTTP endpoints."""

import datetime

import pytest
from fastapi.testclient import TestClient

from book_finder.api.main import create_app
from book_finder.core.cache_manager import CacheError, CacheUnavailableError
from book_finder.core.catalog_api import CatalogApiError, CatalogSearchResult
from book_finder.schemas import BookResult


@pytest.fixture
def app(settings, database):
    return create_app(settings=settings, database=database)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def catalog_result(*titles):
    return CatalogSearchResult(
        books=[BookResult(title=title, author="Gabriela Mistral") for title in titles],
        search_url="https://catalog.example/search?query=mistral",
        total_rows=len(titles),
        response_time_ms=120
    )


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200


def test_search_requires_term(client):
    response = client.post("/books/search", json={"searchTerm": "   "})
    assert response.status_code == 400
    assert client.post("/books/search", json={}).status_code == 400


def test_search_miss_then_hit(client, mocker):
    """Test that the first search goes to the catalog and the second is served from cache."""
    mock_search = mocker.patch(
        "book_finder.api.books.search_catalog",
        return_value=catalog_result("Desolación", "Ternura")
    )

    first = client.post("/books/search", json={"searchTerm": "Mistral"})
    assert first.status_code == 200
    body = first.json()
    assert body["source"] == "external"
    assert body["cacheHit"] is False
    assert body["finalUrl"].startswith("https://catalog.example")
    assert [b["title"] for b in body["books"]] == ["Desolación", "Ternura"]

    second = client.post("/books/search", json={"searchTerm": "mistral"})
    body = second.json()
    assert body["source"] == "cache"
    assert body["cacheHit"] is True
    assert {b["title"] for b in body["books"]} == {"Desolación", "Ternura"}
    mock_search.assert_called_once()


def test_cache_hits_count_toward_popularity(client, mocker):
    """Test that searches answered from the cache still bump the search count."""
    mock_search = mocker.patch(
        "book_finder.api.books.search_catalog",
        return_value=catalog_result("Desolación", "Ternura")
    )

    sources = [
        client.post("/books/search", json={"searchTerm": "mistral"}).json()["source"]
        for _ in range(3)
    ]
    assert sources == ["external", "cache", "cache"]
    mock_search.assert_called_once()

    body = client.get("/cache/stats", params={"includePopular": "true"}).json()
    top = body["popularSearches"][0]
    assert top["query"] == "mistral"
    assert top["searchCount"] == 3
    assert top["resultCount"] == 6
    assert body["cache"]["totalBooks"] == 2


def test_search_term_too_long_is_rejected(client, mocker):
    mock_search = mocker.patch("book_finder.api.books.search_catalog")
    response = client.post("/books/search", json={"searchTerm": "a" * 300})
    assert response.status_code == 400
    mock_search.assert_not_called()


def test_search_without_results_is_not_found(client, mocker):
    mocker.patch("book_finder.api.books.search_catalog", return_value=catalog_result())
    response = client.post("/books/search", json={"searchTerm": "zzzz"})
    assert response.status_code == 404


def test_search_catalog_failure_is_bad_gateway(client, mocker):
    mocker.patch("book_finder.api.books.search_catalog", side_effect=CatalogApiError("down"))
    response = client.post("/books/search", json={"searchTerm": "mistral"})
    assert response.status_code == 502


def test_cache_unavailable_maps_to_503(client, app, mocker):
    mocker.patch.object(
        app.state.cache_manager, "get_cache_stats",
        side_effect=CacheUnavailableError("store down")
    )
    assert client.get("/cache/stats").status_code == 503
    assert client.get("/books/cache/cleanup").status_code == 503


def test_unexpected_error_maps_to_500(client, app, mocker):
    mocker.patch.object(app.state.cache_manager, "cleanup_cache", side_effect=RuntimeError("boom"))
    response = client.post("/cache/cleanup")
    assert response.status_code == 500
    assert "boom" not in response.json()["detail"]


def test_cache_failure_maps_to_500(client, app, mocker):
    """Test that store failures other than unavailability are internal errors."""
    mocker.patch.object(
        app.state.cache_manager, "get_cache_stats",
        side_effect=CacheError("value too long")
    )
    response = client.get("/cache/stats")
    assert response.status_code == 500
    assert "too long" not in response.json()["detail"]


def test_stats_empty_cache(client):
    """Test stats on an empty cache."""
    response = client.get("/cache/stats")
    assert response.status_code == 200
    cache = response.json()["cache"]
    assert cache["totalBooks"] == 0
    assert cache["uniqueSearchTerms"] == 0
    assert "oldestEntry" not in cache
    assert "newestEntry" not in cache
    assert cache["health"] == {"isHealthy": True, "needsCleanup": False, "utilizationPercentage": 0}
    assert "popularSearches" not in response.json()


def test_stats_with_popular_searches(client, cache_manager):
    for _ in range(3):
        cache_manager.record_search("neruda", [BookResult(title="Canto general")])
    cache_manager.record_search("mistral", [BookResult(title="Desolación"), BookResult(title="Tala")])

    response = client.get("/books/stats", params={"includePopular": "true", "popularLimit": "1"})
    body = response.json()

    assert body["cache"]["totalBooks"] == 3
    assert body["cache"]["uniqueSearchTerms"] == 2
    assert len(body["popularSearches"]) == 1
    top = body["popularSearches"][0]
    assert top["query"] == "neruda"
    assert top["searchCount"] == 3
    assert top["resultCount"] == 3
    assert top["avgResultsPerSearch"] == 1.0
    assert body["searchAnalytics"]["mostPopularQuery"] == "neruda"


def test_stats_invalid_popular_limit_uses_default(client, cache_manager):
    for i in range(12):
        cache_manager.record_search(f"term {i}", [])
    response = client.get("/cache/stats?includePopular=true&popularLimit=abc")
    assert len(response.json()["popularSearches"]) == 10


def test_stats_huge_popular_limit_is_capped(client, cache_manager):
    for i in range(3):
        cache_manager.record_search(f"term {i}", [])
    response = client.get("/cache/stats?includePopular=true&popularLimit=99999999999999999999")
    assert response.status_code == 200
    assert len(response.json()["popularSearches"]) == 3


def test_cleanup_status_flags(client, add_books):
    add_books([datetime.timedelta(minutes=1)] * 3)
    response = client.get("/cache/cleanup")
    assert response.status_code == 200
    info = response.json()["cacheInfo"]
    assert info["totalBooks"] == 3
    assert info["cacheHealthy"] is True
    assert info["needsCleanup"] is False


def test_run_cleanup_reports_before_and_after(client, add_books):
    add_books([datetime.timedelta(hours=48)] * 4, prefix="stale")
    add_books([datetime.timedelta(hours=1)] * 2, prefix="fresh")

    response = client.post("/books/cache/cleanup")

    assert response.status_code == 200
    body = response.json()
    assert body["statistics"]["before"]["totalBooks"] == 6
    assert body["statistics"]["removed"] == {"removed": 4, "oldRemoved": 0}
    assert body["statistics"]["after"]["totalBooks"] == 2
    assert body["cleanupSummary"]["totalRemoved"] == 4
    assert body["cleanupSummary"]["booksRemaining"] == 2


def test_debug_cache(client, cache_manager):
    cache_manager.record_search("neruda", [BookResult(title="Veinte poemas de amor")])
    body = client.get("/debug/cache").json()
    assert body["database"]["connection"] is True
    assert body["database"]["configured"] is True
    assert body["cache"]["totalBooks"] == 1
    assert body["cache"]["totalSearches"] == 1
    assert body["recommendations"] == ["Everything looks fine"]
