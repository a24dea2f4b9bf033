"""Tests for hostname and domain-exclusion helpers."""

from history_engine.history.urls import hostname_of, is_excluded_domain, normalize_domain


def test_hostname_of():
    assert hostname_of("https://Mail.Example.com:8443/inbox?x=1") == "mail.example.com"
    assert hostname_of("about:blank") == ""
    assert hostname_of("") == ""


def test_normalize_domain():
    assert normalize_domain("  .Example.COM. ") == "example.com"
    assert normalize_domain("") == ""


def test_exact_and_subdomain_match():
    excluded = ["example.com"]
    assert is_excluded_domain("https://example.com/", excluded)
    assert is_excluded_domain("https://a.b.example.com/path", excluded)


def test_suffix_without_dot_is_not_a_match():
    assert not is_excluded_domain("https://notexample.com/", ["example.com"])
    assert not is_excluded_domain("https://example.com.evil.net/", ["example.com"])


def test_urls_without_host_are_never_excluded():
    assert not is_excluded_domain("file:///tmp/index.html", ["example.com"])
    assert not is_excluded_domain("https://example.com/", [""])
