import pytest

from matabridge.config import DEFAULT_TAB_URL_PATTERNS
from matabridge.worker.tabs import TabError, TabRegistry, url_matches


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://app.mata-app.com/vault", True),
        ("https://mata-app.com/", True),
        ("https://matav3.replit.app/login", True),
        ("http://localhost:5173/", True),
        ("https://example.com/", False),
        ("chrome://extensions/", False),
    ],
)
def test_default_patterns(url: str, expected: bool) -> None:
    assert url_matches(url, DEFAULT_TAB_URL_PATTERNS) is expected


def test_wildcard_scheme_and_subdomains() -> None:
    assert url_matches("http://a.example.com/x", ["*://*.example.com/*"])
    assert url_matches("https://example.com/x", ["*://*.example.com/*"])
    assert not url_matches("ftp://example.com/x", ["*://*.example.com/*"])
    assert not url_matches("https://example.com/", ["not a pattern"])


def test_registry_query_and_messages() -> None:
    registry = TabRegistry()
    app_tab = registry.register("https://app.mata-app.com/", lambda m: {"success": True, **m})
    registry.register("https://example.com/", lambda m: {"success": True})

    assert registry.query(["https://app.mata-app.com/*"]) == [app_tab]
    assert registry.send_message(app_tab.tab_id, {"action": "ping"}) == {
        "success": True,
        "action": "ping",
    }

    registry.update_url(app_tab.tab_id, "https://example.org/")
    assert registry.query(["https://app.mata-app.com/*"]) == []

    registry.close(app_tab.tab_id)
    with pytest.raises(TabError):
        registry.send_message(app_tab.tab_id, {"action": "ping"})


def test_tab_returning_nothing_is_an_error() -> None:
    registry = TabRegistry()
    tab = registry.register("https://app.mata-app.com/", lambda m: None)  # type: ignore[arg-type,return-value]
    with pytest.raises(TabError, match="no response"):
        registry.send_message(tab.tab_id, {"action": "getAllLocalStorage"})
