"""Tests for paged frame curation."""

import pytest

from handsign.curator import CurationError, FrameCurator


@pytest.fixture
def frames(make_frame):
    return [make_frame(i) for i in range(12)]


class TestPaging:

    def test_page_count(self, frames):
        assert FrameCurator(frames, 10).page_count == 3
        assert FrameCurator(frames[:10], 10).page_count == 2
        assert FrameCurator([], 10).page_count == 1

    def test_visible_uses_original_indices(self, frames):
        curator = FrameCurator(frames, 10)
        curator.set_page(2)
        assert [i for i, _ in curator.visible()] == [10, 11]
        assert curator.visible()[0][1] is frames[10]

    def test_set_page_clamps(self, frames):
        curator = FrameCurator(frames, 10)
        assert curator.set_page(99) == 2
        assert curator.set_page(-4) == 0
        assert curator.next_page() == 1
        assert curator.prev_page() == 0
        assert curator.prev_page() == 0


class TestSelection:

    def test_commit_is_in_capture_order(self, frames):
        curator = FrameCurator(frames, 10)
        for index in (11, 0, 5, 2, 10, 3, 9, 4, 8, 6):
            assert curator.toggle(index)
        assert curator.selected == [0, 2, 3, 4, 5, 6, 8, 9, 10, 11]
        committed = curator.commit()
        assert committed == [frames[i] for i in (0, 2, 3, 4, 5, 6, 8, 9, 10, 11)]

    def test_selection_is_capped(self, frames):
        curator = FrameCurator(frames, 2)
        assert curator.toggle(0)
        assert curator.toggle(1)
        assert not curator.toggle(2)
        assert curator.selected == [0, 1]
        assert curator.remaining == 0

    def test_toggle_deselects(self, frames):
        curator = FrameCurator(frames, 2)
        curator.toggle(3)
        curator.toggle(3)
        assert curator.selected == []
        assert not curator.is_selected(3)

    def test_toggle_out_of_range(self, frames):
        curator = FrameCurator(frames, 2)
        with pytest.raises(IndexError):
            curator.toggle(12)
        with pytest.raises(IndexError):
            curator.toggle(-1)

    def test_commit_requires_exact_count(self, frames):
        curator = FrameCurator(frames, 3)
        curator.toggle(0)
        assert not curator.can_commit
        with pytest.raises(CurationError):
            curator.commit()

    def test_short_capture_cannot_commit(self, frames):
        curator = FrameCurator(frames[:3], 5)
        for i in range(3):
            curator.toggle(i)
        assert curator.remaining == 2
        with pytest.raises(CurationError):
            curator.commit()

    def test_clear(self, frames):
        curator = FrameCurator(frames, 3)
        curator.toggle(1)
        curator.clear()
        assert curator.selected == []

    def test_invalid_required(self, frames):
        with pytest.raises(ValueError):
            FrameCurator(frames, 0)
