"""Unit tests for linkpreview.services.preview_targets."""

from linkpreview.services.preview_targets import resolve_embed_iframe_url, resolve_preview_targets


def mention(url: str, kind: str = "link_preview") -> dict:
    key = "href" if kind == "link_mention" else "url"
    return {"type": "mention", "mention": {"type": kind, kind: {key: url}}}


def text(content: str) -> dict:
    return {"type": "text", "text": {"content": content}}


def doc(blocks: list[dict], root_id: str = "root") -> dict:
    return {"root_id": root_id, "blocks_by_id": {b["id"]: b for b in blocks}}


class TestResolvePreviewTargets:
    def test_collects_in_document_order(self):
        document = doc(
            [
                {"id": "root", "type": "page", "children": ["b1", "p1", "e1", "e2"]},
                {"id": "b1", "type": "bookmark", "bookmark": {"url": "https://a.example/"}},
                {
                    "id": "p1",
                    "type": "paragraph",
                    "paragraph": {"rich_text": [text("see "), mention("https://b.example/")]},
                },
                {"id": "e1", "type": "embed", "embed": {"url": "https://c.example/widget"}},
                {"id": "e2", "type": "embed", "embed": {"url": "https://www.youtube.com/watch?v=abc"}},
            ]
        )
        assert resolve_preview_targets(document) == [
            "https://a.example/",
            "https://b.example/",
            "https://c.example/widget",
        ]

    def test_nested_children_and_table_rows(self):
        document = doc(
            [
                {"id": "root", "type": "page", "children": ["toggle"]},
                {
                    "id": "toggle",
                    "type": "toggle",
                    "toggle": {"rich_text": []},
                    "children": ["table"],
                },
                {"id": "table", "type": "table", "table": {}, "children": ["row"]},
                {
                    "id": "row",
                    "type": "table_row",
                    "table_row": {
                        "cells": [
                            [text("x")],
                            [mention("https://d.example/", kind="link_mention")],
                        ]
                    },
                },
            ]
        )
        assert resolve_preview_targets(document) == ["https://d.example/"]

    def test_duplicates_collapse(self):
        document = doc(
            [
                {"id": "root", "type": "page", "children": ["b1", "b2"]},
                {"id": "b1", "type": "bookmark", "bookmark": {"url": "https://a.example/"}},
                {"id": "b2", "type": "bookmark", "bookmark": {"url": "https://a.example/"}},
            ]
        )
        assert resolve_preview_targets(document) == ["https://a.example/"]

    def test_cycles_terminate(self):
        document = doc(
            [
                {"id": "root", "type": "page", "children": ["a"]},
                {"id": "a", "type": "bookmark", "bookmark": {"url": "https://a.example/"}, "children": ["root"]},
            ]
        )
        assert resolve_preview_targets(document) == ["https://a.example/"]

    def test_deep_nesting(self):
        blocks = [{"id": "root", "type": "page", "children": ["n0"]}]
        for i in range(5000):
            blocks.append({"id": f"n{i}", "type": "toggle", "toggle": {}, "children": [f"n{i + 1}"]})
        blocks.append({"id": "n5000", "type": "bookmark", "bookmark": {"url": "https://deep.example/"}})
        assert resolve_preview_targets(doc(blocks)) == ["https://deep.example/"]

    def test_ignores_other_mentions_and_missing_blocks(self):
        document = doc(
            [
                {"id": "root", "type": "page", "children": ["p", "missing"]},
                {
                    "id": "p",
                    "type": "paragraph",
                    "paragraph": {
                        "rich_text": [{"type": "mention", "mention": {"type": "user", "user": {"id": "u"}}}]
                    },
                },
            ]
        )
        assert resolve_preview_targets(document) == []

    def test_without_root_walks_all_blocks(self):
        document = {
            "blocks_by_id": {
                "x": {"id": "x", "type": "bookmark", "bookmark": {"url": "https://x.example/"}},
            }
        }
        assert resolve_preview_targets(document) == ["https://x.example/"]

    def test_empty(self):
        assert resolve_preview_targets(None) == []
        assert resolve_preview_targets({}) == []


class TestResolveEmbedIframeUrl:
    def test_youtube_variants(self):
        assert resolve_embed_iframe_url("https://www.youtube.com/watch?v=abc") == "https://www.youtube.com/embed/abc"
        assert resolve_embed_iframe_url("https://youtu.be/abc") == "https://www.youtube.com/embed/abc"
        assert resolve_embed_iframe_url("https://www.youtube.com/embed/abc") == "https://www.youtube.com/embed/abc"

    def test_other_hosts(self):
        assert resolve_embed_iframe_url("https://vimeo.com/1") is None
        assert resolve_embed_iframe_url("") is None
        assert resolve_embed_iframe_url("https://youtube.com/") is None

    def test_lookalike_hosts_are_not_youtube(self):
        assert resolve_embed_iframe_url("https://evilyoutube.com/watch?v=abc") is None
        assert resolve_embed_iframe_url("https://youtube.com.evil.example/watch?v=abc") is None
        assert resolve_embed_iframe_url("https://m.youtube.com/watch?v=abc") == "https://www.youtube.com/embed/abc"

    def test_lookalike_embed_is_a_target(self):
        document = doc(
            [
                {"id": "root", "type": "page", "children": ["e"]},
                {"id": "e", "type": "embed", "embed": {"url": "https://evilyoutube.com/watch?v=abc"}},
            ]
        )
        assert resolve_preview_targets(document) == ["https://evilyoutube.com/watch?v=abc"]
