"""Parsing of model answers and the batched response runner"""

from unittest.mock import AsyncMock

import pytest

from snowball import brand_analysis, llm
from snowball.brand_analysis import (
    FALLBACK_COMPETITORS,
    clean_brand_name,
    drop_brand_mentions,
    normalize_categories,
    parse_competitors,
    parse_domain_info,
    parse_location,
)


@pytest.mark.parametrize("domain,expected", [
    ("https://www.example.com/about", "example.com"),
    ("HTTP://WWW.Example.com", "Example.com"),
    ("shop.example.co.uk", "shop.example.co.uk"),
])
def test_clean_brand_name(domain, expected):
    assert clean_brand_name(domain) == expected


class TestDomainInfo:
    def test_overview_and_description_sections(self):
        text = "OVERVIEW: Sells running shoes online.\nDESCRIPTION: Fast shoes for everyone."
        info = parse_domain_info(text, "shoes.com")
        assert info["domainInfo"] == "Sells running shoes online."
        assert info["description"] == "Fast shoes for everyone."
        assert info["fullResponse"] == text

    def test_description_derived_from_overview(self):
        info = parse_domain_info("OVERVIEW: " + "a" * 250, "x.com")
        assert info["description"] == "a" * 200 + "..."

    def test_unstructured_text_is_used_as_overview(self):
        info = parse_domain_info("Just some prose.", "x.com")
        assert info["domainInfo"] == "Just some prose."


@pytest.mark.parametrize("answer,expected", [
    ('"Austin, TX"', "Austin, TX"),
    ("null", None),
    ("None", None),
    ("", None),
])
def test_parse_location(answer, expected):
    assert parse_location(answer) == expected


class TestCategories:
    def test_keeps_first_four(self):
        raw = {"categories": ["A", "B", "C", "D", "E"]}
        assert normalize_categories(raw, "x.com") == ["A", "B", "C", "D"]

    def test_pads_from_domain(self):
        assert normalize_categories(["Shoes"], "x.com") == ["Shoes", "x.com Services", "x.com Platform", "x.com Tools"]

    def test_garbage_pads_everything(self):
        assert normalize_categories("nope", "x.com") == [
            "x.com Solutions", "x.com Services", "x.com Platform", "x.com Tools",
        ]


class TestCompetitors:
    def test_plain_array(self):
        assert parse_competitors('["Nike", "Adidas"]') == ["Nike", "Adidas"]

    def test_object_form(self):
        assert parse_competitors('{"competitors": ["Nike"]}') == ["Nike"]

    def test_wrapped_array_form(self):
        assert parse_competitors('[{"competitors": ["Puma", "Asics"]}]') == ["Puma", "Asics"]

    def test_fenced_json(self):
        assert parse_competitors('```json\n["Nike"]\n```') == ["Nike"]

    def test_caps_at_five(self):
        names = [f'"B{i}"' for i in range(8)]
        assert len(parse_competitors("[" + ", ".join(names) + "]")) == 5

    def test_quoted_strings_when_not_json(self):
        assert parse_competitors('Try "Nike" or "Reebok" maybe') == ["Nike", "Reebok"]

    def test_fallback_when_nothing_found(self):
        assert parse_competitors("no idea") == FALLBACK_COMPETITORS


def test_drop_brand_mentions():
    questions = ["Best shoes for running?", "Is acme.com legit?", "Acme vs Nike?"]
    assert drop_brand_mentions(questions, "acme.com") == ["Best shoes for running?"]


def test_parse_json_error_on_prose():
    with pytest.raises(llm.LLMResponseError):
        llm.parse_json("there is no json here")


async def test_run_prompts_batches_and_skips_failures(monkeypatch):
    monkeypatch.setattr(brand_analysis, "BATCH_DELAY_SECONDS", 0)
    calls = []

    async def fake_complete(prompt, **kwargs):
        calls.append(prompt)
        if "question 3" in prompt:
            raise RuntimeError("provider down")
        return "answer"

    monkeypatch.setattr(llm, "complete", fake_complete)
    prompts = [{"_id": str(i), "promptText": f"question {i}"} for i in range(7)]

    results = await brand_analysis.run_prompts(prompts)

    assert len(calls) == 7
    assert [r["_id"] for r in results] == ["0", "1", "2", "4", "5", "6"]
    assert all(r["responseText"] == "answer" for r in results)
    assert calls[0].endswith(brand_analysis.BRAND_MENTION_SUFFIX)


async def test_extract_categories_falls_back_when_model_fails(monkeypatch):
    monkeypatch.setattr(llm, "complete", AsyncMock(side_effect=RuntimeError("down")))
    categories = await brand_analysis.extract_categories("x.com", domain_info="info")
    assert categories == brand_analysis.FALLBACK_CATEGORIES


async def test_extract_competitors_uses_domain_info_and_categories(monkeypatch):
    complete = AsyncMock(return_value='["Globex", "Initech"]')
    monkeypatch.setattr(llm, "complete", complete)

    competitors = await brand_analysis.extract_competitors(
        "https://www.acme.com", "Acme sells anvils", ["Anvils", "Rockets"],
    )

    assert competitors == ["Globex", "Initech"]
    prompt = complete.call_args[0][0]
    assert "Brand Name: acme.com" in prompt
    assert "Brand Context: Acme sells anvils" in prompt
    assert "Categories: Anvils, Rockets" in prompt


async def test_extract_location_sends_domain_and_description(monkeypatch):
    complete = AsyncMock(return_value='"Austin, TX"')
    monkeypatch.setattr(llm, "complete", complete)

    assert await brand_analysis.extract_location("acme.com", "A bakery in Austin") == "Austin, TX"
    prompt = complete.call_args[0][0]
    assert "Domain: acme.com" in prompt
    assert "A bakery in Austin" in prompt
