import random
from collections import Counter

import pytest

from taunt_generator import (
    LINE1_SLOTS,
    LINE2_SLOTS,
    MODE_DOUBLE,
    MODE_SINGLE,
    LexiconNotReady,
    MessageState,
    randomize_state,
    resolve_state,
    slot_kind,
)


def test_every_slot_is_lexicon_valid(lexicon):
    rng = random.Random(1)
    for _ in range(50):
        state = randomize_state(lexicon, MODE_DOUBLE, rng=rng)
        for key, value in state.line1.as_dict().items():
            assert lexicon.has(slot_kind(key), value)
        for key, value in state.line2.as_dict().items():
            assert lexicon.has(slot_kind(key), value)
        assert resolve_state(state, lexicon) == state


def test_draws_cover_every_template(lexicon):
    rng = random.Random(2)
    seen = Counter(
        randomize_state(lexicon, MODE_SINGLE, rng=rng).line1.get("segment1.template")
        for _ in range(300)
    )
    assert set(seen) == {"t1", "t2", "t3"}


def test_single_mode_keeps_base_line2(lexicon):
    base = MessageState(mode=MODE_DOUBLE).with_slot(2, "segment1.template", "t3")
    state = randomize_state(lexicon, MODE_SINGLE, base=base, rng=random.Random(3))
    assert state.mode == MODE_SINGLE
    assert state.line2 == base.line2


def test_empty_kinds_stay_blank(tiny_lexicon):
    state = randomize_state(tiny_lexicon, MODE_DOUBLE, rng=random.Random(4))
    assert state.line1.get("segment1.lead") == ""
    assert state.line2.get("start.conjunction") == "而且"
    assert state.line1.schema == LINE1_SLOTS
    assert state.line2.schema == LINE2_SLOTS
    assert resolve_state(state, tiny_lexicon) == state


def test_randomize_checks_inputs(lexicon):
    with pytest.raises(LexiconNotReady):
        randomize_state(None, MODE_SINGLE)
    with pytest.raises(ValueError):
        randomize_state(lexicon, "triple")
