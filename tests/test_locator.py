from urllib.parse import parse_qs, urlparse

import pytest

from errors import InvalidSourceUrl
from locator import data_endpoint_url, locate_set, set_page_url
from utils import TITLE_PLACEHOLDER, title_from_slug


@pytest.mark.parametrize(
    "url, set_id, title",
    [
        ("https://quizlet.com/123456789/biology-flash-cards/", "123456789", "Biology"),
        ("https://www.quizlet.com/42/spanish_verbs-flashcards", "42", "Spanish Verbs"),
        ("https://quizlet.com/gb/555/world-capitals/", "555", "World Capitals"),
        ("http://quizlet.com/777", "777", TITLE_PLACEHOLDER),
        ("  https://quizlet.com/9/  ", "9", TITLE_PLACEHOLDER),
        ("https://quizlet.com/123/organic-chemistry-flash-cards/?funnelUUID=abc", "123", "Organic Chemistry"),
        ("https://quizlet.com/123456789/biology-flash-cards/flashcards", "123456789", "Biology"),
        ("https://quizlet.com/gb/123456789/biology-flash-cards/learn/", "123456789", "Biology"),
    ],
)
def test_locate_set_accepts_set_urls(url, set_id, title):
    location = locate_set(url, host="quizlet.com")
    assert location.set_id == set_id
    assert location.title_guess == title


@pytest.mark.parametrize(
    "url",
    [
        "",
        "not a url",
        "ftp://quizlet.com/123/biology/",
        "https://example.com/123/biology/",
        "https://quizlet.com.evil.example/123/biology/",
        "https://quizlet.com/",
        "https://quizlet.com/biology-flash-cards/",
        "https://quizlet.com/eng/123/biology/",
        "https://quizlet.com/123abc/biology/",
    ],
)
def test_locate_set_rejects_other_urls(url):
    with pytest.raises(InvalidSourceUrl) as exc:
        locate_set(url, host="quizlet.com")
    assert exc.value.status_code == 400
    assert exc.value.details["source_url"] == url


def test_locate_set_uses_configured_host():
    location = locate_set("https://platform.example/123456789/biology-flash-cards/", host="platform.example")
    assert location == ("123456789", "Biology")

    with pytest.raises(InvalidSourceUrl):
        locate_set("https://quizlet.com/123456789/biology-flash-cards/", host="platform.example")


def test_title_from_slug():
    assert title_from_slug("biology-flash-cards") == "Biology"
    assert title_from_slug("us-history_1900s") == "Us History 1900s"
    assert title_from_slug("") == TITLE_PLACEHOLDER
    assert title_from_slug("-flashcards") == TITLE_PLACEHOLDER


def test_platform_urls():
    assert set_page_url("123", "quizlet.com") == "https://quizlet.com/123/"

    url = urlparse(data_endpoint_url("123", "quizlet.com"))
    assert url.netloc == "quizlet.com"
    assert url.path == "/webapi/3.4/studiable-item-documents"
    query = parse_qs(url.query)
    assert query["filters[studiableContainerId]"] == ["123"]
    assert query["filters[studiableContainerType]"] == ["1"]
    assert query["perPage"] == ["1000"]
