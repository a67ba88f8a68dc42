#!/usr/bin/env python3
"""
Taunt generator (phrase lexicon, shareable links, saved history)

Guarantees:
- Every slot resolves to a lexicon choice (empty or unknown -> first choice)
- One or two lines; line 2 is linked to line 1 by a conjunction
- The rating count is a pure function of the final text (int32 string hash)
- Share tokens are URL-safe and round-trip any lexicon-valid state
- Bad or stale tokens never raise; they decode to None or fall back to defaults
- History is bounded, newest first, deduplicated, and saved on every change

Notes:
- LINE_JOINER is "", so "T1" + "而且" + "T2" composes to "T1而且T2".
- The same token codec backs share links, the saved current state and history.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import random
import sys
import tempfile
import threading
import time
import uuid
import zlib
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import parse_qs, urlsplit

log = logging.getLogger("taunt_generator")


class TauntError(Exception):
    pass


class LexiconError(TauntError):
    """Lexicon data is missing or inconsistent."""


class LexiconNotReady(TauntError):
    """Composition was requested before a lexicon was loaded."""


# -----------------------------
# Slot schema
# -----------------------------

KIND_TEMPLATE = "template"
KIND_LEAD = "lead"
KIND_TAIL = "tail"
KIND_CONJUNCTION = "conjunction"
SLOT_KINDS: Tuple[str, ...] = (KIND_TEMPLATE, KIND_LEAD, KIND_TAIL, KIND_CONJUNCTION)

CONJUNCTION_SLOT = "start.conjunction"
LINE1_SLOTS: Tuple[str, ...] = ("segment1.lead", "segment1.template", "segment1.tail")
LINE2_SLOTS: Tuple[str, ...] = (CONJUNCTION_SLOT,) + LINE1_SLOTS

MODE_SINGLE = "single"
MODE_DOUBLE = "double"
MODES: Tuple[str, ...] = (MODE_SINGLE, MODE_DOUBLE)

# between line 1 and the conjunction that opens line 2
LINE_JOINER = ""


def slot_kind(key: str) -> str:
    return key.rsplit(".", 1)[-1]


# -----------------------------
# Lexicon
# -----------------------------

@dataclass(frozen=True)
class Choice:
    id: str
    text: str


def C(cid: str, text: str) -> Choice:
    return Choice(id=cid, text=text)


SECTION_KINDS: Dict[str, str] = {
    "templates": KIND_TEMPLATE,
    "leads": KIND_LEAD,
    "tails": KIND_TAIL,
    "conjunctions": KIND_CONJUNCTION,
}


def _parse_choice(section: str, entry: Any) -> Choice:
    if isinstance(entry, str):
        return Choice(id=entry, text=entry)
    if isinstance(entry, dict):
        cid = entry.get("id")
        text = entry.get("text", cid)
        if isinstance(cid, str) and isinstance(text, str):
            return Choice(id=cid, text=text)
    raise LexiconError(f"bad entry in {section!r}: {entry!r}")


class Lexicon:
    """Read-only catalog of choices, one ordered sequence per slot kind.

    The first choice of a kind is its default. Kinds other than templates
    may be empty; such slots resolve to "" and render nothing.
    """

    def __init__(self, choices: Dict[str, Sequence[Choice]]) -> None:
        unknown = set(choices) - set(SLOT_KINDS)
        if unknown:
            raise LexiconError(f"unknown slot kinds: {sorted(unknown)}")

        table: Dict[str, Tuple[Choice, ...]] = {}
        for kind in SLOT_KINDS:
            items = tuple(choices.get(kind, ()))
            seen = set()
            for ch in items:
                if not ch.id:
                    raise LexiconError(f"empty {kind} id")
                if ch.id in seen:
                    raise LexiconError(f"duplicate {kind} id: {ch.id!r}")
                seen.add(ch.id)
            table[kind] = items

        if not table[KIND_TEMPLATE]:
            raise LexiconError("lexicon has no templates")

        self._choices = table
        self._texts = {kind: {ch.id: ch.text for ch in items} for kind, items in table.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Lexicon":
        if not isinstance(data, dict):
            raise LexiconError("lexicon data must be an object")
        choices: Dict[str, List[Choice]] = {}
        for section, entries in data.items():
            kind = SECTION_KINDS.get(section)
            if kind is None:
                raise LexiconError(f"unknown lexicon section: {section!r}")
            if not isinstance(entries, list):
                raise LexiconError(f"section {section!r} must be a list")
            choices[kind] = [_parse_choice(section, e) for e in entries]
        return cls(choices)

    def to_dict(self) -> Dict[str, List[Dict[str, str]]]:
        return {
            section: [{"id": ch.id, "text": ch.text} for ch in self._choices[kind]]
            for section, kind in SECTION_KINDS.items()
        }

    def choices(self, kind: str) -> Tuple[Choice, ...]:
        return self._choices[kind]

    def ids(self, kind: str) -> List[str]:
        return [ch.id for ch in self._choices[kind]]

    def first(self, kind: str) -> str:
        items = self._choices[kind]
        return items[0].id if items else ""

    def has(self, kind: str, cid: str) -> bool:
        return cid in self._texts[kind]

    def text(self, kind: str, cid: str) -> str:
        return self._texts[kind].get(cid, "")

    @property
    def templates(self) -> Tuple[Choice, ...]:
        return self._choices[KIND_TEMPLATE]

    @property
    def conjunctions(self) -> Tuple[Choice, ...]:
        return self._choices[KIND_CONJUNCTION]

    def __repr__(self) -> str:
        sizes = ", ".join(f"{kind}={len(items)}" for kind, items in self._choices.items())
        return f"Lexicon({sizes})"


TEMPLATES: List[Choice] = [
    C("t01", "就这？"),
    C("t02", "你这操作真是让人眼前一黑"),
    C("t03", "建议你把键盘捐了"),
    C("t04", "菜得很有层次感"),
    C("t05", "你这脑回路属实清奇"),
    C("t06", "下次出门记得带上脑子"),
    C("t07", "人菜瘾还大说的就是你"),
    C("t08", "对面都不好意思赢你"),
    C("t09", "你是来搞笑的吧"),
    C("t10", "这波我愿称你为反向教学"),
    C("t11", "你的水平我是真的服气"),
    C("t12", "建议重开，别重开我"),
]

LEADS: List[Choice] = [
    C("l00", ""),
    C("l01", "啊这，"),
    C("l02", "笑死，"),
    C("l03", "不是吧，"),
    C("l04", "好家伙，"),
    C("l05", "说真的，"),
    C("l06", "兄弟，"),
]

TAILS: List[Choice] = [
    C("e00", ""),
    C("e01", "。"),
    C("e02", "！"),
    C("e03", "，懂？"),
    C("e04", "，真的。"),
    C("e05", "，谢谢。"),
]

CONJUNCTIONS: List[Choice] = [
    C("c01", "而且"),
    C("c02", "但是"),
    C("c03", "甚至"),
    C("c04", "不过"),
    C("c05", "毕竟"),
]


def default_lexicon() -> Lexicon:
    return Lexicon({
        KIND_TEMPLATE: TEMPLATES,
        KIND_LEAD: LEADS,
        KIND_TAIL: TAILS,
        KIND_CONJUNCTION: CONJUNCTIONS,
    })


def load_lexicon(path: str) -> Lexicon:
    try:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError) as exc:
        raise LexiconError(f"cannot read lexicon {path}: {exc}") from exc
    return Lexicon.from_dict(data)


# -----------------------------
# Compositions
# -----------------------------

@dataclass(frozen=True)
class LineComposition:
    schema: Tuple[str, ...]
    values: Tuple[str, ...]

    def __post_init__(self) -> None:
        if len(self.values) != len(self.schema):
            raise ValueError(f"expected {len(self.schema)} slot values, got {len(self.values)}")

    @classmethod
    def empty(cls, schema: Sequence[str]) -> "LineComposition":
        return cls(schema=tuple(schema), values=("",) * len(schema))

    @classmethod
    def from_dict(cls, schema: Sequence[str], mapping: Dict[str, str]) -> "LineComposition":
        line = cls.empty(schema)
        for key, value in mapping.items():
            line = line.with_value(key, value)
        return line

    def _index(self, key: str) -> int:
        try:
            return self.schema.index(key)
        except ValueError:
            raise KeyError(f"unknown slot: {key!r}") from None

    def get(self, key: str) -> str:
        return self.values[self._index(key)]

    def with_value(self, key: str, value: str) -> "LineComposition":
        if not isinstance(value, str):
            raise ValueError(f"slot {key!r} needs a string, got {value!r}")
        i = self._index(key)
        values = list(self.values)
        values[i] = value
        return replace(self, values=tuple(values))

    def as_dict(self) -> Dict[str, str]:
        return dict(zip(self.schema, self.values))


def _empty_line1() -> LineComposition:
    return LineComposition.empty(LINE1_SLOTS)


def _empty_line2() -> LineComposition:
    return LineComposition.empty(LINE2_SLOTS)


@dataclass(frozen=True)
class MessageState:
    """Mode plus both lines.

    line2 is kept in single mode too, so toggling the mode never loses edits.
    """

    mode: str = MODE_SINGLE
    line1: LineComposition = field(default_factory=_empty_line1)
    line2: LineComposition = field(default_factory=_empty_line2)

    def __post_init__(self) -> None:
        if self.mode not in MODES:
            raise ValueError(f"unknown mode: {self.mode!r}")
        if self.line1.schema != LINE1_SLOTS:
            raise ValueError(f"line1 schema must be {LINE1_SLOTS}")
        if self.line2.schema != LINE2_SLOTS:
            raise ValueError(f"line2 schema must be {LINE2_SLOTS}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MessageState":
        return cls(
            mode=data.get("mode", MODE_SINGLE),
            line1=LineComposition.from_dict(LINE1_SLOTS, data.get("line1") or {}),
            line2=LineComposition.from_dict(LINE2_SLOTS, data.get("line2") or {}),
        )

    def with_mode(self, mode: str) -> "MessageState":
        return replace(self, mode=mode)

    def with_slot(self, line: int, key: str, value: str) -> "MessageState":
        if line == 1:
            return replace(self, line1=self.line1.with_value(key, value))
        if line == 2:
            return replace(self, line2=self.line2.with_value(key, value))
        raise ValueError(f"unknown line: {line!r}")


@dataclass(frozen=True)
class HistoryItem:
    id: str
    text: str
    state: MessageState
    timestamp: float


# -----------------------------
# Resolver
# -----------------------------

def resolve_value(kind: str, value: str, lexicon: Lexicon) -> str:
    if value and lexicon.has(kind, value):
        return value
    return lexicon.first(kind)


def resolve_line(line: LineComposition, lexicon: Lexicon) -> LineComposition:
    resolved = tuple(
        resolve_value(slot_kind(key), value, lexicon)
        for key, value in zip(line.schema, line.values)
    )
    if resolved == line.values:
        return line
    return replace(line, values=resolved)


def resolve_state(state: MessageState, lexicon: Lexicon) -> MessageState:
    return MessageState(
        mode=state.mode,
        line1=resolve_line(state.line1, lexicon),
        line2=resolve_line(state.line2, lexicon),
    )


# -----------------------------
# Composer + rating
# -----------------------------

@dataclass(frozen=True)
class Composition:
    text: str
    lines: Tuple[str, ...]
    rating: int
    state: MessageState


def render_line(line: LineComposition, lexicon: Lexicon) -> str:
    return "".join(
        lexicon.text(slot_kind(key), value)
        for key, value in zip(line.schema, line.values)
    )


def compose(state: MessageState, lexicon: Optional[Lexicon]) -> Composition:
    if lexicon is None:
        raise LexiconNotReady("lexicon is not loaded")
    resolved = resolve_state(state, lexicon)
    lines: Tuple[str, ...] = (render_line(resolved.line1, lexicon),)
    if resolved.mode == MODE_DOUBLE:
        # line 2 starts with its conjunction slot
        lines += (render_line(resolved.line2, lexicon),)
    text = LINE_JOINER.join(lines)
    return Composition(text=text, lines=lines, rating=rating_count(text), state=resolved)


def format_taunt(comp: Composition) -> str:
    return "\n".join(comp.lines)


def _int32(n: int) -> int:
    n &= 0xFFFFFFFF
    return n - 0x100000000 if n & 0x80000000 else n


def text_hash(text: str) -> int:
    # UTF-16 code units, same as charCodeAt
    data = text.encode("utf-16-le", "surrogatepass")
    h = 0
    for i in range(0, len(data), 2):
        h = _int32(h * 31 + (data[i] | (data[i + 1] << 8)))
    return h


def rating_count(text: str) -> int:
    # abs(h) % 9000 == abs(h mod 9000) for a truncating mod
    return abs(text_hash(text)) % 9000 + 1000


# -----------------------------
# Randomizer
# -----------------------------

def random_line(schema: Sequence[str], lexicon: Lexicon, rng: Any = None) -> LineComposition:
    rng = rng or random
    values: List[str] = []
    for key in schema:
        ids = lexicon.ids(slot_kind(key))
        values.append(rng.choice(ids) if ids else "")
    return LineComposition(schema=tuple(schema), values=tuple(values))


def randomize_state(
    lexicon: Optional[Lexicon],
    mode: str,
    base: Optional[MessageState] = None,
    rng: Any = None,
) -> MessageState:
    if lexicon is None:
        raise LexiconNotReady("lexicon is not loaded")
    if mode not in MODES:
        raise ValueError(f"unknown mode: {mode!r}")
    base = base or MessageState()
    line1 = random_line(LINE1_SLOTS, lexicon, rng)
    line2 = random_line(LINE2_SLOTS, lexicon, rng) if mode == MODE_DOUBLE else base.line2
    return MessageState(mode=mode, line1=line1, line2=line2)


# -----------------------------
# State codec
# -----------------------------

TOKEN_PLAIN = "j"
TOKEN_ZLIB = "z"
TOKEN_PARAM = "s"
MAX_TOKEN_LENGTH = 2048
MAX_PAYLOAD_BYTES = 16384

MODE_CODES: Dict[str, str] = {MODE_SINGLE: "s", MODE_DOUBLE: "d"}
CODE_MODES: Dict[str, str] = {code: mode for mode, code in MODE_CODES.items()}


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(body: str) -> bytes:
    padded = body + "=" * (-len(body) % 4)
    return base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)


def encode_state(state: MessageState) -> str:
    payload = {
        "m": MODE_CODES[state.mode],
        "a": list(state.line1.values),
        "b": list(state.line2.values),
    }
    raw = json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    packed = zlib.compress(raw, 9)
    if len(packed) < len(raw):
        return TOKEN_ZLIB + _b64encode(packed)
    return TOKEN_PLAIN + _b64encode(raw)


def _unpack_token(token: Any) -> Any:
    if not isinstance(token, str) or not token or len(token) > MAX_TOKEN_LENGTH:
        log.debug("rejecting token: not a string, empty or too long")
        return None
    flag, body = token[0], token[1:]
    if flag not in (TOKEN_PLAIN, TOKEN_ZLIB):
        log.debug("rejecting token: unknown flag %r", flag)
        return None
    try:
        raw = _b64decode(body)
        if flag == TOKEN_ZLIB:
            inflater = zlib.decompressobj()
            raw = inflater.decompress(raw, MAX_PAYLOAD_BYTES)
            if inflater.unconsumed_tail or not inflater.eof:
                log.debug("rejecting token: payload truncated or too large")
                return None
        return json.loads(raw.decode("utf-8"))
    except (ValueError, RecursionError, zlib.error) as exc:
        log.debug("rejecting token %r: %s", token[:32], exc)
        return None


def _line_from_payload(schema: Tuple[str, ...], values: Any, lexicon: Lexicon) -> Optional[LineComposition]:
    if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
        return None
    padded = (values + [""] * len(schema))[: len(schema)]
    # blanks stay blank; compose() fills them in
    kept = tuple(
        value if not value else resolve_value(slot_kind(key), value, lexicon)
        for key, value in zip(schema, padded)
    )
    return LineComposition(schema=schema, values=kept)


def decode_state(token: Any, lexicon: Optional[Lexicon]) -> Optional[MessageState]:
    """Parse a token back into a state, or None when it is not a valid token.

    Empty slots stay empty. Ids the lexicon no longer knows resolve to the
    slot default.
    """
    if lexicon is None:
        raise LexiconNotReady("lexicon is not loaded")
    payload = _unpack_token(token)
    if not isinstance(payload, dict):
        return None

    code = payload.get("m")
    if not isinstance(code, str) or code not in CODE_MODES:
        log.debug("rejecting token: bad mode %r", code)
        return None
    line1 = _line_from_payload(LINE1_SLOTS, payload.get("a"), lexicon)
    line2 = _line_from_payload(LINE2_SLOTS, payload.get("b", []), lexicon)
    if line1 is None or line2 is None:
        log.debug("rejecting token: bad slot values")
        return None
    return MessageState(mode=CODE_MODES[code], line1=line1, line2=line2)


def token_from_url(url: str) -> Optional[str]:
    if not url:
        return None
    parts = urlsplit(url.strip())
    for query in (parts.query, parts.fragment):
        values = parse_qs(query).get(TOKEN_PARAM)
        if values:
            return values[0]
    # a bare token
    if not (parts.scheme or parts.netloc or parts.query or parts.fragment) and "/" not in parts.path:
        return parts.path or None
    return None


def share_url(base_url: str, token: str) -> str:
    sep = "&" if "?" in base_url else "?"
    return f"{base_url}{sep}{TOKEN_PARAM}={token}"


# -----------------------------
# Storage
# -----------------------------

CURRENT_KEY = "current"
HISTORY_KEY = "history"


class MemoryStorage:
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def load(self, key: str) -> Any:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def save(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value, ensure_ascii=False)


class JsonFileStorage:
    """One JSON file per key; every save replaces the file atomically."""

    def __init__(self, directory: str) -> None:
        self.directory = os.path.expanduser(directory)

    def path(self, key: str) -> str:
        return os.path.join(self.directory, f"{key}.json")

    def load(self, key: str) -> Any:
        path = self.path(key)
        try:
            with open(path, encoding="utf-8") as fh:
                return json.load(fh)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            log.warning("ignoring unreadable %s: %s", path, exc)
            return None

    def save(self, key: str, value: Any) -> None:
        os.makedirs(self.directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=self.directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(value, fh, ensure_ascii=False)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, self.path(key))
        except Exception:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise


Storage = Union[MemoryStorage, JsonFileStorage]


# -----------------------------
# History
# -----------------------------

DEFAULT_HISTORY_MAX = 50


class HistoryStore:
    """Bounded history, newest first.

    Persisted as a list of {"id", "text", "state", "timestamp"} records in the
    same newest-first order, where "state" is an encode_state() token.
    """

    def __init__(
        self,
        storage: Storage,
        lexicon: Lexicon,
        max_items: int = DEFAULT_HISTORY_MAX,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_items < 1:
            raise ValueError(f"max_items must be at least 1, got {max_items}")
        self._storage = storage
        self._lexicon = lexicon
        self._clock = clock
        self.max_items = max_items
        self._lock = threading.Lock()
        self._items: List[HistoryItem] = self._load()
        if len(self._items) > max_items:
            del self._items[max_items:]
            self._save()

    def _item_from_record(self, record: Any) -> Optional[HistoryItem]:
        if not isinstance(record, dict):
            return None
        item_id = record.get("id")
        text = record.get("text")
        ts = record.get("timestamp")
        if not isinstance(item_id, str) or not item_id or not isinstance(text, str):
            return None
        if isinstance(ts, bool) or not isinstance(ts, (int, float)):
            return None
        state = decode_state(record.get("state"), self._lexicon)
        if state is None:
            return None
        return HistoryItem(id=item_id, text=text, state=state, timestamp=float(ts))

    def _load(self) -> List[HistoryItem]:
        records = self._storage.load(HISTORY_KEY)
        if records is None:
            return []
        if not isinstance(records, list):
            log.warning("ignoring history: expected a list, got %s", type(records).__name__)
            return []
        items: List[HistoryItem] = []
        seen = set()
        for record in records:
            item = self._item_from_record(record)
            if item is None:
                log.warning("skipping unreadable history record: %r", record)
                continue
            if item.id in seen:
                continue
            seen.add(item.id)
            items.append(item)
        return items

    def _save(self) -> None:
        self._storage.save(HISTORY_KEY, [
            {"id": item.id, "text": item.text, "state": encode_state(item.state), "timestamp": item.timestamp}
            for item in self._items
        ])

    def append(self, state: MessageState, text: str) -> HistoryItem:
        item = HistoryItem(id=uuid.uuid4().hex, text=text, state=state, timestamp=self._clock())
        token = encode_state(state)
        with self._lock:
            self._items = [item] + [old for old in self._items if encode_state(old.state) != token]
            del self._items[self.max_items:]
            self._save()
        return item

    def remove(self, item_id: str) -> None:
        with self._lock:
            kept = [item for item in self._items if item.id != item_id]
            if len(kept) == len(self._items):
                return
            self._items = kept
            self._save()

    def clear(self) -> None:
        with self._lock:
            self._items = []
            self._save()

    def get(self, item_id: str) -> Optional[HistoryItem]:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def list(self) -> Tuple[HistoryItem, ...]:
        return tuple(self._items)

    def build_share_token(self, item: HistoryItem) -> str:
        return encode_state(item.state)

    def __len__(self) -> int:
        return len(self._items)


# -----------------------------
# Session
# -----------------------------

DEFAULT_DATA_DIR = "~/.taunt-generator"
DEFAULT_BASE_URL = "http://localhost:8000/"


class TauntSession:
    """Current composition, history and the actions a front end can call.

    Subscribers are called with the session after every change. The current
    state is saved through the token codec on every change, so a reload
    restores exactly what a share link would. Actions run one at a time
    under a lock, so one session can back a threaded server.
    """

    def __init__(
        self,
        lexicon: Optional[Lexicon],
        storage: Storage,
        history_max: int = DEFAULT_HISTORY_MAX,
        base_url: str = DEFAULT_BASE_URL,
        rng: Any = None,
    ) -> None:
        self._storage = storage
        self._history_max = history_max
        self._rng = rng
        self.base_url = base_url
        self._lexicon: Optional[Lexicon] = None
        self._history: Optional[HistoryStore] = None
        self._state = MessageState()
        self._subscribers: List[Callable[["TauntSession"], None]] = []
        self._lock = threading.RLock()
        if lexicon is not None:
            self.set_lexicon(lexicon)

    # --- readiness ---

    @property
    def ready(self) -> bool:
        return self._lexicon is not None

    @property
    def lexicon(self) -> Lexicon:
        return self._require_lexicon()

    def _require_lexicon(self) -> Lexicon:
        if self._lexicon is None:
            raise LexiconNotReady("lexicon is not loaded yet")
        return self._lexicon

    def _require_history(self) -> HistoryStore:
        if self._history is None:
            raise LexiconNotReady("lexicon is not loaded yet")
        return self._history

    def set_lexicon(self, lexicon: Lexicon) -> None:
        with self._lock:
            self._lexicon = lexicon
            self._history = HistoryStore(self._storage, lexicon, self._history_max)
            restored = self._restore_current()
            if restored is not None:
                self._state = restored
            self._notify()

    # --- observable values ---

    @property
    def state(self) -> MessageState:
        return self._state

    @property
    def composition(self) -> Composition:
        return compose(self._state, self._lexicon)

    @property
    def text(self) -> str:
        return self.composition.text

    @property
    def lines(self) -> Tuple[str, ...]:
        return self.composition.lines

    @property
    def rating(self) -> int:
        return self.composition.rating

    @property
    def token(self) -> str:
        return encode_state(self.composition.state)

    @property
    def history(self) -> Tuple[HistoryItem, ...]:
        if self._history is None:
            return ()
        return self._history.list()

    def find_history_item(self, item_id: str) -> Optional[HistoryItem]:
        if self._history is None:
            return None
        return self._history.get(item_id)

    def subscribe(self, callback: Callable[["TauntSession"], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            callback(self)

    # --- actions ---

    def _apply(self, state: MessageState) -> None:
        self._state = state
        self._storage.save(CURRENT_KEY, encode_state(state))
        self._notify()

    def _restore_current(self) -> Optional[MessageState]:
        return decode_state(self._storage.load(CURRENT_KEY), self._require_lexicon())

    def set_state(self, state: MessageState) -> None:
        with self._lock:
            self._apply(state)

    def set_mode(self, mode: str) -> None:
        with self._lock:
            self._apply(self._state.with_mode(mode))

    def set_slot(self, line: int, key: str, value: str) -> None:
        with self._lock:
            self._apply(self._state.with_slot(line, key, value))

    def randomize(self, mode: Optional[str] = None) -> MessageState:
        with self._lock:
            lexicon = self._require_lexicon()
            self._apply(randomize_state(lexicon, mode or self._state.mode, base=self._state, rng=self._rng))
            return self._state

    def generate(self) -> HistoryItem:
        with self._lock:
            comp = self.composition
            item = self._require_history().append(comp.state, comp.text)
            log.info("generated %s: %s", item.id, item.text)
            self._notify()
            return item

    def load_from_url(self, url: str) -> bool:
        """Apply the token in url; return False if it fell back instead.

        The fallback is the saved current state, then the default state,
        and it is saved as the current state either way.
        """
        with self._lock:
            lexicon = self._require_lexicon()
            token = token_from_url(url)
            state = decode_state(token, lexicon) if token else None
            if state is not None:
                self._apply(state)
                return True
            if token:
                log.info("ignoring unusable share token from %s", url)
            self._apply(self._restore_current() or MessageState())
            return False

    def load_from_history(self, item: Union[HistoryItem, str]) -> MessageState:
        with self._lock:
            self._require_lexicon()
            if isinstance(item, str):
                found = self.find_history_item(item)
                if found is None:
                    raise KeyError(f"no history item {item!r}")
                item = found
            self._apply(item.state)
            return self._state

    def get_share_url(self, item: Optional[HistoryItem] = None) -> str:
        if item is None:
            return share_url(self.base_url, self.token)
        return share_url(self.base_url, self._require_history().build_share_token(item))

    def delete_history_item(self, item_id: str) -> None:
        with self._lock:
            if self._history is None:
                return
            self._history.remove(item_id)
            self._notify()


# -----------------------------
# Configuration
# -----------------------------

@dataclass(frozen=True)
class Settings:
    data_dir: str = DEFAULT_DATA_DIR
    history_max: int = DEFAULT_HISTORY_MAX
    base_url: str = DEFAULT_BASE_URL
    lexicon_path: Optional[str] = None
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            data_dir=env.get("TAUNT_DATA_DIR", DEFAULT_DATA_DIR),
            history_max=int(env.get("TAUNT_HISTORY_MAX", str(DEFAULT_HISTORY_MAX))),
            base_url=env.get("TAUNT_BASE_URL", DEFAULT_BASE_URL),
            lexicon_path=env.get("TAUNT_LEXICON") or None,
            log_level=env.get("TAUNT_LOG_LEVEL", "WARNING").upper(),
        )


def build_lexicon(settings: Settings) -> Lexicon:
    if settings.lexicon_path:
        return load_lexicon(settings.lexicon_path)
    return default_lexicon()


def build_session(settings: Settings) -> TauntSession:
    return TauntSession(
        build_lexicon(settings),
        JsonFileStorage(settings.data_dir),
        history_max=settings.history_max,
        base_url=settings.base_url,
    )


# -----------------------------
# CLI
# -----------------------------

REPL_HELP = """commands:
  r            random single line
  rr           random double line
  m            toggle single/double
  g            generate (save to history)
  h            show history
  s            share link for the current taunt
  l <url>      load a share link or token
  d <id>       delete a history item
  q            quit"""


def show(session: TauntSession) -> None:
    print()
    print(format_taunt(session.composition))
    print(f"  ({session.rating} 人觉得很赞)")
    print()


def repl(session: TauntSession) -> None:
    print("Taunt generator. Type 'r' for a random taunt, '?' for help, 'q' to quit.\n")
    show(session)
    while True:
        try:
            line = input("taunt> ").strip()
        except EOFError:
            break
        if not line:
            continue
        cmd, _, arg = line.partition(" ")
        arg = arg.strip()
        if cmd in {"q", "quit", "exit"}:
            break
        if cmd == "r":
            session.randomize(MODE_SINGLE)
            show(session)
        elif cmd == "rr":
            session.randomize(MODE_DOUBLE)
            show(session)
        elif cmd == "m":
            session.set_mode(MODE_SINGLE if session.state.mode == MODE_DOUBLE else MODE_DOUBLE)
            show(session)
        elif cmd == "g":
            item = session.generate()
            print(f"saved {item.id}")
        elif cmd == "h":
            for item in session.history:
                stamp = time.strftime("%Y-%m-%d %H:%M", time.localtime(item.timestamp))
                print(f"{item.id}  {stamp}  {item.text}")
        elif cmd == "s":
            print(session.get_share_url())
        elif cmd == "l":
            if not session.load_from_url(arg):
                print("no valid taunt in that link")
            show(session)
        elif cmd == "d":
            session.delete_history_item(arg)
        else:
            print(REPL_HELP)


def main(argv: List[str]) -> int:
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level)
    if argv and argv[0] == "repl":
        repl(build_session(settings))
        return 0
    lexicon = build_lexicon(settings)
    mode = MODE_DOUBLE if argv and argv[0] == "double" else MODE_SINGLE
    print(format_taunt(compose(randomize_state(lexicon, mode), lexicon)))
    return 0


def cli() -> None:
    sys.exit(main(sys.argv[1:]))


if __name__ == "__main__":
    cli()
