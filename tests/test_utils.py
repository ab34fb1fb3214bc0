import pytest

from app.utils import (
    clean_image_url,
    extract_json_object,
    extract_slug_from_link,
    first_non_empty,
    slugify,
    strip_code_fence,
)


def test_slugify_basic():
    assert slugify("Kimetsu no Yaiba: Hashira Geiko-hen!") == "kimetsu-no-yaiba-hashira-geiko-hen"
    assert slugify("***") == ""


def test_strip_code_fence_variants():
    assert strip_code_fence('```json\n{"year": "2023"}\n```') == '{"year": "2023"}'
    assert strip_code_fence('```\n{"a": 1}```') == '{"a": 1}'
    assert strip_code_fence('{"a": 1}') == '{"a": 1}'


def test_extract_json_object_from_fenced_answer():
    payload = '```json\n{"year": "2019", "rating": "8.7"}\n```'
    assert extract_json_object(payload) == {"year": "2019", "rating": "8.7"}


def test_extract_json_object_after_lead_in_prose():
    payload = 'Here is the metadata:\n```json\n{"year": "2023"}\n```\nEnjoy!'
    assert extract_json_object(payload) == {"year": "2023"}


def test_extract_json_object_from_bare_object_in_text():
    payload = 'Sure. {"status": "Completed", "rating": "8.1"} Let me know if you need more.'
    assert extract_json_object(payload) == {"status": "Completed", "rating": "8.1"}


def test_extract_json_object_rejects_non_objects():
    with pytest.raises(ValueError):
        extract_json_object("not json at all")
    with pytest.raises(ValueError):
        extract_json_object("[1, 2, 3]")


def test_extract_slug_from_link():
    assert extract_slug_from_link("/manga/slug-name/") == "slug-name"
    assert extract_slug_from_link("https://site.example/komik/one-piece") == "one-piece"
    assert extract_slug_from_link("") == ""
    assert extract_slug_from_link("///") == ""


def test_clean_image_url_keeps_other_parameters():
    url = "https://img.example/cover.jpg?resize=300,400&token=a%20b&quality=75"
    assert clean_image_url(url) == "https://img.example/cover.jpg?token=a%20b"
    assert clean_image_url("https://img.example/cover.jpg") == "https://img.example/cover.jpg"
    assert clean_image_url("https://img.example/c.jpg?Quality=5") == "https://img.example/c.jpg"
    assert clean_image_url("") == ""


def test_first_non_empty():
    assert first_non_empty("", None, "b", "c") == "b"
    assert first_non_empty(None, "") == ""
