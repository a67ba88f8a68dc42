import random

import pytest

from taunt_generator import Lexicon, MemoryStorage, TauntSession


@pytest.fixture
def tiny_lexicon():
    return Lexicon.from_dict({"templates": ["T1", "T2"], "conjunctions": ["而且"]})


@pytest.fixture
def lexicon():
    return Lexicon.from_dict({
        "templates": [
            {"id": "t1", "text": "就这？"},
            {"id": "t2", "text": "建议把键盘捐了"},
            {"id": "t3", "text": "菜得很有层次"},
        ],
        "leads": [{"id": "none", "text": ""}, {"id": "ah", "text": "啊这，"}],
        "tails": [{"id": "none", "text": ""}, {"id": "dot", "text": "。"}],
        "conjunctions": [{"id": "and", "text": "而且"}, {"id": "but", "text": "但是"}],
    })


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def session(lexicon, storage):
    return TauntSession(
        lexicon,
        storage,
        history_max=3,
        base_url="https://taunt.example/",
        rng=random.Random(7),
    )
