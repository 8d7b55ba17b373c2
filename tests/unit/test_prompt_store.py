"""Tests for nabd.core.prompt_store — prompt CRUD, listing and gallery.

Tests cover:
- Creating, fetching, updating and deleting prompts.
- Search, category and minimum-likes filters.
- The three sort orders.
- Page/limit clamping and the page-length property.
- Generated image persistence and cascade deletion.
- Default prompt seeding.
"""

from __future__ import annotations

import random

import pytest

from nabd.core.like_ledger import LikeLedger
from nabd.core.prompt_store import (
    MAX_PAGE,
    MAX_PAGE_SIZE,
    PromptFilters,
    PromptPage,
    PromptStore,
    build_where_clause,
    clamp_page,
    clamp_page_size,
)


def _titles(page: PromptPage) -> list[str]:
    return [p.title for p in page.items]


def _give_likes(ledger: LikeLedger, prompt_id: str, count: int) -> None:
    for i in range(count):
        assert ledger.like(prompt_id, f"session-{i}")


class TestCreateAndFetch:
    """Test single-prompt operations."""

    def test_create_sets_defaults(self, store: PromptStore):
        prompt = store.create_prompt("Test Scene", "a quiet lake at dawn, soft light", "calm lake view", "nature")
        assert prompt.id
        assert prompt.usage_count == 0
        assert prompt.likes_count == 0
        assert prompt.generated_image_url is None
        assert prompt.created_at

    def test_get_round_trip(self, store: PromptStore):
        created = store.create_prompt("Test Scene", "a quiet lake at dawn, soft light", "calm lake view", "nature")
        fetched = store.get_prompt(created.id)
        assert fetched == created

    def test_get_missing_returns_none(self, store: PromptStore):
        assert store.get_prompt("does-not-exist") is None

    def test_ids_are_unique(self, store: PromptStore):
        a = store.create_prompt("Scene A", "a quiet lake at dawn", "calm lake", "nature")
        b = store.create_prompt("Scene B", "a quiet lake at dusk", "calm lake", "nature")
        assert a.id != b.id

    def test_update_prompt(self, store: PromptStore, sample_prompts):
        updated = store.update_prompt(sample_prompts[0].id, title="Foggy Forest")
        assert updated.title == "Foggy Forest"
        assert store.get_prompt(sample_prompts[0].id).title == "Foggy Forest"

    def test_update_rejects_counters(self, store: PromptStore, sample_prompts):
        with pytest.raises(ValueError):
            store.update_prompt(sample_prompts[0].id, likes_count=99)

    def test_update_missing_returns_none(self, store: PromptStore):
        assert store.update_prompt("missing", title="Whatever") is None

    def test_increment_usage(self, store: PromptStore, sample_prompts):
        prompt = sample_prompts[0]
        assert store.increment_usage(prompt.id) is True
        assert store.get_prompt(prompt.id).usage_count == prompt.usage_count + 1

    def test_increment_usage_missing(self, store: PromptStore):
        assert store.increment_usage("missing") is False

    def test_delete(self, store: PromptStore, sample_prompts):
        assert store.delete_prompt(sample_prompts[0].id) is True
        assert store.get_prompt(sample_prompts[0].id) is None
        assert store.delete_prompt(sample_prompts[0].id) is False


class TestFilters:
    """Test search and filter behaviour."""

    def test_no_filters_returns_all(self, store: PromptStore, sample_prompts):
        page = store.list_prompts()
        assert page.total == 5
        assert len(page.items) == 5

    def test_query_matches_title(self, store: PromptStore, sample_prompts):
        page = store.list_prompts(PromptFilters(query="dragon"))
        assert _titles(page) == ["Golden Dragon"]

    def test_query_matches_prompt_text(self, store: PromptStore, sample_prompts):
        page = store.list_prompts(PromptFilters(query="cyberpunk"))
        assert _titles(page) == ["Neon Alley"]

    def test_query_matches_description(self, store: PromptStore, sample_prompts):
        page = store.list_prompts(PromptFilters(query="origami"))
        assert _titles(page) == ["Paper Portrait"]

    def test_query_is_case_insensitive(self, store: PromptStore, sample_prompts):
        page = store.list_prompts(PromptFilters(query="DESERT"))
        assert _titles(page) == ["Desert Dunes"]

    def test_query_wildcards_match_literally(self, store: PromptStore, sample_prompts):
        assert store.list_prompts(PromptFilters(query="%")).total == 0
        assert store.list_prompts(PromptFilters(query="_")).total == 0
        store.create_prompt("100% Pure", "A poster reading 100% pure joy", "literal percent", "design")
        assert _titles(store.list_prompts(PromptFilters(query="100%"))) == ["100% Pure"]

    def test_query_folds_unicode_case(self, store: PromptStore, sample_prompts):
        store.create_prompt("Été Scene", "A meadow in high summer, warm haze", "sommerliche Wiese", "nature")
        assert _titles(store.list_prompts(PromptFilters(query="été"))) == ["Été Scene"]
        assert _titles(store.list_prompts(PromptFilters(query="SOMMERLICHE"))) == ["Été Scene"]

    def test_query_matches_arabic_text(self, store: PromptStore, sample_prompts):
        store.create_prompt("غروب الشمس", "A breathtaking sunset over rolling mountains", "منظر طبيعي خلاب", "nature")
        assert _titles(store.list_prompts(PromptFilters(query="طبيعي"))) == ["غروب الشمس"]

    def test_category_filter(self, store: PromptStore, sample_prompts):
        page = store.list_prompts(PromptFilters(category="nature"))
        assert page.total == 2
        assert all(p.category == "nature" for p in page.items)

    def test_unknown_category_matches_nothing(self, store: PromptStore, sample_prompts):
        assert store.list_prompts(PromptFilters(category="cars")).total == 0

    def test_category_and_min_likes(self, store: PromptStore, ledger: LikeLedger, sample_prompts):
        forest, _, _, dunes, _ = sample_prompts
        _give_likes(ledger, forest.id, 2)
        _give_likes(ledger, dunes.id, 5)

        page = store.list_prompts(PromptFilters(category="nature", min_likes=5))
        assert _titles(page) == ["Desert Dunes"]
        assert all(p.category == "nature" and p.likes_count >= 5 for p in page.items)

    def test_min_likes_is_inclusive(self, store: PromptStore, ledger: LikeLedger, sample_prompts):
        _give_likes(ledger, sample_prompts[2].id, 3)
        assert _titles(store.list_prompts(PromptFilters(min_likes=3))) == ["Golden Dragon"]

    def test_huge_min_likes_matches_nothing(self, store: PromptStore, sample_prompts):
        page = store.list_prompts(PromptFilters(min_likes=10**20))
        assert page.total == 0
        assert page.items == []

    @pytest.mark.parametrize("min_likes", [0, -4, None])
    def test_non_positive_min_likes_ignored(self, store: PromptStore, sample_prompts, min_likes):
        assert store.list_prompts(PromptFilters(min_likes=min_likes)).total == 5

    def test_where_clause_empty_without_filters(self):
        clause, params = build_where_clause(PromptFilters())
        assert clause == ""
        assert params == []


class TestSorting:
    """Test the three sort orders."""

    def test_default_is_popular(self, store: PromptStore, sample_prompts):
        page = store.list_prompts()
        assert _titles(page) == ["Neon Alley", "Desert Dunes", "Golden Dragon", "Misty Forest", "Paper Portrait"]

    def test_recent(self, store: PromptStore, sample_prompts):
        page = store.list_prompts(PromptFilters(sort_by="recent"))
        assert _titles(page) == [p.title for p in reversed(sample_prompts)]

    def test_most_liked(self, store: PromptStore, ledger: LikeLedger, sample_prompts):
        _give_likes(ledger, sample_prompts[4].id, 3)
        _give_likes(ledger, sample_prompts[0].id, 1)
        page = store.list_prompts(PromptFilters(sort_by="mostLiked"))
        assert _titles(page)[:2] == ["Paper Portrait", "Misty Forest"]

    def test_unknown_sort_falls_back_to_popular(self, store: PromptStore, sample_prompts):
        page = store.list_prompts(PromptFilters(sort_by="random"))
        assert _titles(page)[0] == "Neon Alley"


class TestPagination:
    """Test page clamping and the page-length property."""

    @pytest.mark.parametrize(
        "value,expected",
        [(None, 1), (0, 1), (-3, 1), (1, 1), (7, 7), (10**30, MAX_PAGE)],
    )
    def test_clamp_page(self, value, expected):
        assert clamp_page(value) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [(None, 20), (0, 1), (-5, 1), (10, 10), (50, 50), (51, MAX_PAGE_SIZE), (1000, MAX_PAGE_SIZE)],
    )
    def test_clamp_page_size(self, value, expected):
        assert clamp_page_size(value) == expected

    @pytest.mark.parametrize("limit", [1, 2, 3, 5, 7])
    @pytest.mark.parametrize("page", [1, 2, 3, 6])
    def test_page_length(self, store: PromptStore, sample_prompts, page, limit):
        result = store.list_prompts(page=page, page_size=limit)
        total = result.total
        assert len(result.items) == min(limit, max(0, total - (page - 1) * limit))

    def test_pages_do_not_overlap(self, store: PromptStore, sample_prompts):
        first = store.list_prompts(page=1, page_size=2)
        second = store.list_prompts(page=2, page_size=2)
        third = store.list_prompts(page=3, page_size=2)
        ids = [p.id for p in first.items + second.items + third.items]
        assert len(ids) == len(set(ids)) == 5
        assert first.has_more and second.has_more
        assert not third.has_more
        assert third.total_pages == 3

    def test_out_of_range_page_is_empty_with_total(self, store: PromptStore, sample_prompts):
        result = store.list_prompts(page=10, page_size=2)
        assert result.items == []
        assert result.total == 5
        assert result.page == 10
        assert result.has_more is False

    def test_huge_page_is_clamped(self, store: PromptStore, sample_prompts):
        """The offset stays within SQLite's integer range."""
        result = store.list_prompts(page=10**18, page_size=50)
        assert result.items == []
        assert result.total == 5
        assert result.page == MAX_PAGE
        assert result.has_more is False

    def test_empty_store(self, store: PromptStore):
        result = store.list_prompts()
        assert result.total == 0
        assert result.items == []
        assert result.total_pages == 1


class TestGeneratedImages:
    """Test image persistence."""

    def test_save_updates_cached_url(self, store: PromptStore, sample_prompts):
        prompt = sample_prompts[0]
        image = store.save_generated_image(prompt.id, "data:image/png;base64,AAAA")
        assert image.prompt_id == prompt.id
        assert store.get_prompt(prompt.id).generated_image_url == "data:image/png;base64,AAAA"
        assert store.get_generated_image(image.id) == image

    def test_images_newest_first(self, store: PromptStore, sample_prompts):
        prompt = sample_prompts[0]
        first = store.save_generated_image(prompt.id, "data:image/png;base64,AAAA")
        second = store.save_generated_image(prompt.id, "data:image/png;base64,BBBB")
        images = store.list_generated_images(prompt.id)
        assert [img.id for img in images] == [second.id, first.id]
        assert store.get_prompt(prompt.id).generated_image_url == second.image_url

    def test_images_scoped_to_prompt(self, store: PromptStore, sample_prompts):
        store.save_generated_image(sample_prompts[0].id, "data:image/png;base64,AAAA")
        assert store.list_generated_images(sample_prompts[1].id) == []

    def test_delete_cascades(self, store: PromptStore, ledger: LikeLedger, sample_prompts):
        prompt = sample_prompts[0]
        image = store.save_generated_image(prompt.id, "data:image/png;base64,AAAA")
        ledger.like(prompt.id, "session-a")

        store.delete_prompt(prompt.id)

        assert store.list_generated_images(prompt.id) == []
        assert store.get_generated_image(image.id) is None
        assert ledger.has_liked(prompt.id, "session-a") is False
        assert ledger.liked_prompt_ids("session-a") == set()


class TestSeeding:
    """Test default prompt seeding."""

    def test_seeds_empty_database(self, store: PromptStore):
        inserted = store.seed_default_prompts(rng=random.Random(7))
        assert inserted == 8
        assert store.count_prompts() == 8

    def test_seed_is_noop_when_populated(self, store: PromptStore, sample_prompts):
        assert store.seed_default_prompts() == 0
        assert store.count_prompts() == 5

    def test_seeded_counters_in_range(self, store: PromptStore):
        store.seed_default_prompts(rng=random.Random(1))
        for prompt in store.list_prompts(page_size=50).items:
            assert 10 <= prompt.usage_count <= 59
            assert 5 <= prompt.likes_count <= 34

    def test_seeded_likes_match_like_rows(self, store: PromptStore):
        store.seed_default_prompts(rng=random.Random(3))
        with store.db.transaction() as conn:
            mismatches = conn.execute(
                """
                SELECT COUNT(*) FROM prompts p
                WHERE p.likes_count != (SELECT COUNT(*) FROM prompt_likes l WHERE l.prompt_id = p.id)
                """
            ).fetchone()[0]
        assert mismatches == 0
