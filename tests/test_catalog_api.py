"""Tests for the library catalog client."""

import pytest
import requests
from unittest.mock import MagicMock

from book_finder.config import CacheSettings
from book_finder.core.catalog_api import (
    CatalogApiError,
    RawCatalogRow,
    build_detail_url,
    build_search_url,
    fetch_catalog_page,
    matches_search_words,
    normalize_text,
    parse_catalog_results,
    search_catalog,
)

CATALOG_HTML = """
<html><body>
<div class="results">
  <div class="row">
    <h3 class="title-book">Cien años de soledad</h3>
    <div class="autor"><span class="label">Autor:</span><span>García Márquez, Gabriel</span></div>
    <a class="availability" href="/disponibilidad?doc_number=12345">Disponibilidad</a>
  </div>
  <div class="row">
    <h3 class="title-book">El amor en los tiempos del cólera</h3>
    <div class="autor"><span class="label">Autor:</span><span>García Márquez, Gabriel</span></div>
  </div>
  <div class="row">
    <h3 class="title-book">Manual de jardinería</h3>
  </div>
  <div class="row"><p>Advertisement</p></div>
</div>
</body></html>
"""


def mock_response(status_code=200, text=CATALOG_HTML):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    return response


def test_parse_catalog_results():
    """Test extraction of title, author and availability link."""
    rows = parse_catalog_results(CATALOG_HTML)
    assert len(rows) == 3
    assert rows[0].title == "Cien años de soledad"
    assert rows[0].author == "García Márquez, Gabriel"
    assert rows[0].availability_href == "/disponibilidad?doc_number=12345"
    assert rows[1].availability_href is None
    assert rows[2].author == "Unknown author"


def test_normalize_text_strips_accents_and_punctuation():
    assert normalize_text("  Cólera,   AÑOS! ") == "colera anos"


def test_matches_search_words():
    row = RawCatalogRow(title="Cien años de soledad", author="García Márquez")
    assert matches_search_words(row, "SOLEDAD")
    assert matches_search_words(row, "marquez")
    assert matches_search_words(row, "anos perdidos")
    assert not matches_search_words(row, "jardineria")


def test_build_detail_url(settings):
    url = build_detail_url("/x?doc_number=12345", settings)
    assert "doc_number=000012345" in url
    assert url.endswith("sub_library=D207")
    assert build_detail_url("/x?other=1", settings) is None
    assert build_detail_url(None, settings) is None


def test_build_search_url(settings):
    url = build_search_url(" cien años ", settings)
    assert url.startswith(settings.catalog_search_url + "&query=")
    assert url.endswith("query=cien+a%C3%B1os")


def test_fetch_catalog_page_retries_then_succeeds(settings, mocker):
    """Test that a transient network error is retried."""
    mock_get = mocker.patch(
        'requests.get',
        side_effect=[requests.exceptions.ConnectionError('reset'), mock_response()]
    )
    html = fetch_catalog_page("http://catalog", settings)
    assert "title-book" in html
    assert mock_get.call_count == 2


def test_fetch_catalog_page_gives_up(settings, mocker):
    """Test that CatalogApiError is raised after the last attempt."""
    mock_get = mocker.patch('requests.get', return_value=mock_response(status_code=503))
    with pytest.raises(CatalogApiError) as exc_info:
        fetch_catalog_page("http://catalog", settings)
    assert "HTTP 503" in str(exc_info.value)
    assert mock_get.call_count == settings.catalog_max_retries


def test_search_catalog_filters_and_builds_books(settings, mocker):
    mocker.patch('requests.get', return_value=mock_response())
    result = search_catalog("garcia marquez", settings)

    assert result.total_rows == 3
    assert [b.title for b in result.books] == [
        "Cien años de soledad",
        "El amor en los tiempos del cólera",
    ]
    assert result.books[0].library == settings.library_name
    assert "doc_number=000012345" in result.books[0].detail_url
    assert result.books[1].detail_url is None


def test_search_catalog_truncates_to_max_results(mocker):
    settings = CacheSettings(max_results=1)
    mocker.patch('requests.get', return_value=mock_response())
    assert len(search_catalog("gabriel", settings).books) == 1
