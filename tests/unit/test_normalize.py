from __future__ import annotations

from feedsync.services.normalize import (
    build_video_share_link,
    extract_account_name,
    normalize_account_key,
    normalize_url_key,
    pick_cover_url,
)


def test_normalize_url_key_drops_query_fragment_and_case() -> None:
    assert (
        normalize_url_key("https://www.TikTok.com/@Ada/video/123?lang=en#top")
        == "https://www.tiktok.com/@ada/video/123"
    )


def test_normalize_url_key_keeps_port_and_defaults_root_path() -> None:
    assert normalize_url_key("http://Example.com:8080") == "http://example.com:8080/"


def test_normalize_url_key_falls_back_to_trimmed_lowercase() -> None:
    assert normalize_url_key("  Not A URL  ") == "not a url"
    assert normalize_url_key("") == ""
    assert normalize_url_key(None) == ""


def test_normalize_account_key_equivalent_references_collapse() -> None:
    expected = "https://www.tiktok.com/@ada"
    assert normalize_account_key("Ada") == expected
    assert normalize_account_key("@Ada") == expected
    assert normalize_account_key("https://www.tiktok.com/@Ada?lang=en") == expected
    assert normalize_account_key("www.tiktok.com/@ada/video/1") == expected


def test_normalize_account_key_platform_link_without_handle_is_empty() -> None:
    assert normalize_account_key("https://www.tiktok.com/explore") == ""
    assert normalize_account_key("   ") == ""
    assert normalize_account_key("@") == ""


def test_normalize_account_key_honors_base_url() -> None:
    assert normalize_account_key("ada", base_url="https://m.example.com/") == "https://m.example.com/@ada"


def test_extract_account_name_returns_lowercase_handle() -> None:
    assert extract_account_name("https://www.tiktok.com/@Ada.Dev") == "ada.dev"
    assert extract_account_name("") == ""


def test_build_video_share_link_prefers_root_share_url() -> None:
    link = build_video_share_link(
        share_url="https://www.tiktok.com/@ada/video/1?u=2",
        share_info_url="https://www.tiktok.com/@ada/video/9",
        item_id="1",
        author_handle="ada",
    )
    assert link == "https://www.tiktok.com/@ada/video/1"


def test_build_video_share_link_synthesizes_from_ids() -> None:
    link = build_video_share_link(share_url="", share_info_url=None, item_id="77", author_handle="ada")
    assert link == "https://www.tiktok.com/@ada/video/77"
    assert build_video_share_link(share_url=None, share_info_url=None, item_id="77", author_handle="") == ""


def test_pick_cover_url_prefers_dynamic_cover() -> None:
    video = {
        "cover": {"url_list": ["https://cdn/static.jpg"]},
        "dynamic_cover": {"url_list": ["https://cdn/dynamic.webp"]},
    }
    assert pick_cover_url(video) == "https://cdn/dynamic.webp"
    assert pick_cover_url({"dynamic_cover": {"url_list": [""]}, "origin_cover": {"url_list": ["o.jpg"]}}) == "o.jpg"
    assert pick_cover_url(None) == ""
