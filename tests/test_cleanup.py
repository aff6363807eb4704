"""Tests for body text normalisation heuristics."""

from __future__ import annotations

from onebox.ingestion.cleanup import clean_text, strip_html


def test_strip_html_removes_tags_and_entities() -> None:
    assert strip_html("<p>Hello <b>world</b></p>&nbsp;test") == "Hello world test"


def test_strip_html_decodes_entity_set_and_drops_scripts() -> None:
    html = "<style>p {color: red}</style><p>Fish &amp; chips &copy; 2024</p><script>x()</script>"
    assert strip_html(html) == "Fish & chips © 2024"


def test_clean_text_drops_signature_block() -> None:
    assert clean_text("Great, thanks!\n--\nSent from my iPhone") == "Great, thanks!"


def test_clean_text_drops_client_footers_and_quote_headers() -> None:
    body = "\n".join(
        [
            "Sounds good,   let's talk.",
            "",
            "Get Outlook for iOS",
            "On Mon, Jan 6, 2025 at 10:00 AM Bob wrote:",
            "From: Bob",
            "Subject: Re: intro",
            "Earlier text",
        ]
    )
    assert clean_text(body) == "Sounds good, let's talk. Earlier text"


def test_clean_text_handles_empty_input() -> None:
    assert clean_text("") == ""
    assert strip_html("") == ""
