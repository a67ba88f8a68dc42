import random
import threading

import pytest

from taunt_generator import (
    CURRENT_KEY,
    HISTORY_KEY,
    MODE_DOUBLE,
    MODE_SINGLE,
    HistoryItem,
    LexiconNotReady,
    MemoryStorage,
    MessageState,
    TauntSession,
    decode_state,
    default_lexicon,
    encode_state,
    token_from_url,
)


def test_not_ready_until_a_lexicon_arrives(lexicon, storage):
    session = TauntSession(None, storage)

    assert not session.ready
    assert session.history == ()
    with pytest.raises(LexiconNotReady):
        session.text
    with pytest.raises(LexiconNotReady):
        session.generate()
    with pytest.raises(LexiconNotReady):
        session.randomize()
    with pytest.raises(LexiconNotReady):
        session.load_from_url("https://taunt.example/?s=zAbc")

    session.set_lexicon(lexicon)

    assert session.ready
    assert session.text == "就这？"


def test_derived_values_follow_the_state(session):
    session.set_slot(1, "segment1.lead", "ah")
    assert session.text == "啊这，就这？"
    assert session.lines == ("啊这，就这？",)

    session.set_mode(MODE_DOUBLE)
    assert session.lines == ("啊这，就这？", "而且就这？")
    assert session.rating == session.composition.rating


def test_subscribers_hear_every_change(session):
    calls = []
    unsubscribe = session.subscribe(lambda s: calls.append(s.state.mode))

    session.set_mode(MODE_DOUBLE)
    session.randomize()
    session.generate()
    unsubscribe()
    session.set_mode(MODE_SINGLE)

    assert calls == [MODE_DOUBLE, MODE_DOUBLE, MODE_DOUBLE]


def test_every_change_saves_the_current_token(session, storage, lexicon):
    session.randomize(MODE_DOUBLE)
    assert decode_state(storage.load(CURRENT_KEY), lexicon) == session.state

    session.set_slot(2, "segment1.template", "t3")
    assert decode_state(storage.load(CURRENT_KEY), lexicon) == session.state


def test_a_new_session_restores_the_saved_state(session, storage, lexicon):
    session.randomize(MODE_DOUBLE)
    session.generate()

    reopened = TauntSession(lexicon, storage)

    assert reopened.state == session.state
    assert reopened.history == session.history


def test_mode_switch_keeps_line2_edits(session):
    session.set_mode(MODE_DOUBLE)
    session.set_slot(2, "start.conjunction", "but")
    session.set_slot(2, "segment1.template", "t2")
    before = session.state.line2

    session.set_mode(MODE_SINGLE)
    session.randomize()
    session.set_mode(MODE_DOUBLE)

    assert session.state.line2 == before


def test_generate_records_the_resolved_state(session):
    item = session.generate()

    assert item.text == session.text
    assert item.state == session.composition.state
    assert session.history == (item,)


def test_share_link_loads_in_another_session(session, lexicon):
    session.randomize(MODE_DOUBLE)
    url = session.get_share_url()
    assert url.startswith("https://taunt.example/?s=")

    other = TauntSession(lexicon, MemoryStorage())

    assert other.load_from_url(url) is True
    assert other.state == session.state
    assert other.text == session.text


def test_fragment_and_bare_tokens_load(session, lexicon):
    session.randomize(MODE_DOUBLE)
    token = session.token

    for link in ("https://taunt.example/#s=" + token, token):
        other = TauntSession(lexicon, MemoryStorage())
        assert other.load_from_url(link) is True
        assert other.state == session.state


def test_bad_link_falls_back_to_saved_state(session):
    session.randomize(MODE_DOUBLE)
    saved = session.state

    assert session.load_from_url("https://taunt.example/?s=jgarbage") is False
    assert session.state == saved


def test_bad_link_without_saved_state_uses_defaults(lexicon):
    session = TauntSession(lexicon, MemoryStorage())

    assert session.load_from_url("https://taunt.example/?s=qq") is False
    assert session.state == MessageState()
    assert session.text == "就这？"


def test_load_from_history(session):
    session.set_slot(1, "segment1.template", "t2")
    item = session.generate()
    session.randomize(MODE_DOUBLE)

    session.load_from_history(item.id)
    assert session.state == item.state

    session.set_slot(1, "segment1.template", "t3")
    session.load_from_history(item)
    assert session.text == item.text

    with pytest.raises(KeyError):
        session.load_from_history("missing")


def test_history_share_url_and_delete(session, lexicon):
    session.set_slot(1, "segment1.template", "t2")
    item = session.generate()

    url = session.get_share_url(item)
    assert decode_state(token_from_url(url), lexicon) == item.state

    session.delete_history_item("missing")
    assert session.history == (item,)
    session.delete_history_item(item.id)
    assert session.history == ()


def test_history_is_bounded(session):
    for template in ("t1", "t2", "t3"):
        session.set_slot(1, "segment1.template", template)
        session.generate()
    session.set_slot(1, "segment1.lead", "ah")
    newest = session.generate()

    assert len(session.history) == 3
    assert session.history[0] is newest
    assert [item.text for item in session.history][-1] == "建议把键盘捐了"


def test_reload_after_one_edit_keeps_blank_slots(storage):
    lex = default_lexicon()
    session = TauntSession(lex, storage)
    session.set_slot(1, "segment1.template", "t02")

    reopened = TauntSession(lex, storage)

    assert reopened.state.line1.values == ("", "t02", "")
    assert reopened.state.line2.values == ("", "", "", "")
    assert reopened.state == session.state


def test_fallback_load_saves_the_current_state(lexicon, storage):
    session = TauntSession(lexicon, storage)

    session.load_from_url("https://taunt.example/?s=qq")

    assert decode_state(storage.load(CURRENT_KEY), lexicon) == MessageState()


def test_history_actions_need_a_lexicon(storage):
    session = TauntSession(None, storage)
    item = HistoryItem(id="a1", text="就这？", state=MessageState(), timestamp=1.0)

    with pytest.raises(LexiconNotReady):
        session.get_share_url(item)
    with pytest.raises(LexiconNotReady):
        session.load_from_history(item)
    session.delete_history_item("a1")


def test_concurrent_generates_lose_nothing(lexicon, storage):
    session = TauntSession(lexicon, storage, history_max=500, rng=random.Random(13))
    made = []

    def worker():
        for _ in range(10):
            session.randomize(MODE_DOUBLE)
            made.append(session.generate())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    kept = {encode_state(item.state) for item in session.history}
    assert len(made) == 80
    assert {encode_state(item.state) for item in made} == kept
    assert len(session.history) == len(kept)
    assert [r["id"] for r in storage.load(HISTORY_KEY)] == [item.id for item in session.history]
