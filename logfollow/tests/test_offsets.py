from __future__ import annotations

import pytest
from hypothesis import given, settings, strategies as st

from logfollow.offsets import UNSET, OffsetTracker, seek_position


def test_unset_offset_reads_from_start():
    assert seek_position(UNSET, 0) == 0
    assert seek_position(UNSET, 4096) == 0


def test_resumes_at_previous_offset():
    assert seek_position(120, 170) == 120
    assert seek_position(170, 170) == 170


def test_shrunk_file_reads_from_start():
    assert seek_position(500, 40) == 0


@given(
    previous=st.one_of(st.none(), st.integers(min_value=0, max_value=2**63)),
    size=st.integers(min_value=0, max_value=2**63),
)
@settings(max_examples=200)
def test_seek_never_past_observed_size(previous, size):
    seek = seek_position(previous, size)
    assert 0 <= seek <= size
    if previous is not None and previous <= size:
        assert seek == previous


def test_commit_uses_size_from_cycle_start():
    t = OffsetTracker()
    seek, truncated = t.begin_cycle(120)
    assert (seek, truncated) == (0, False)
    assert t.commit(120) == 120

    seek, truncated = t.begin_cycle(170)
    assert (seek, truncated) == (120, False)
    t.commit(170)
    assert t.offset == 170


def test_truncation_is_reported_once():
    t = OffsetTracker()
    t.begin_cycle(500)
    t.commit(500)

    assert t.begin_cycle(40) == (0, True)
    t.commit(40)
    assert t.begin_cycle(40) == (40, False)


def test_reset_behaves_like_new():
    t = OffsetTracker()
    t.begin_cycle(10)
    t.commit(10)
    t.reset()
    assert t.offset is UNSET
    assert t.begin_cycle(5) == (0, False)


def test_offsets_are_wide_integers():
    big = 5 * 2**32
    t = OffsetTracker()
    t.begin_cycle(big)
    assert t.commit(big) == big
    assert t.begin_cycle(big + 10) == (big, False)


def test_negative_sizes_rejected():
    t = OffsetTracker()
    with pytest.raises(ValueError):
        t.begin_cycle(-1)
    with pytest.raises(ValueError):
        t.commit(-1)
