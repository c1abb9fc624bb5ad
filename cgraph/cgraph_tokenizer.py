"""
The hand-written tokenizer for cgraph source text.

`tokenize` walks the source once with a small state machine and produces a
`TokenList`. Script bodies are cut out by `extract_script`, a balanced scanner
that understands quotes, template strings and nested brackets.
"""
import re
from enum import Enum, auto
from typing import Tuple

from cgraph.cgraph_datatypes import TokenKind, TokenList


EOL_CHARS = "\r\n"
WHITESPACE = " \t\r\n"
SCRIPT_SHORTHAND_END = "; \t\r\n"
GROUP_SCRIPT_SHORTHAND_END = ") \t\r\n"

_SIGIL_REF = re.compile(r"\$([a-zA-Z])")


class _State(Enum):
    UNKNOWN = auto()
    TEXT = auto()
    BOUNDARY = auto()
    LINE_CONTINUATION = auto()
    SCRIPT_SHORTHAND = auto()
    GROUP_SCRIPT_SHORTHAND = auto()
    GROUP = auto()
    STRING = auto()
    SCRIPT = auto()
    GROUP_SCRIPT = auto()
    INPUT_END = auto()


_STORED_KIND = {
    _State.TEXT: TokenKind.TEXT,
    _State.BOUNDARY: TokenKind.BOUNDARY,
    _State.GROUP: TokenKind.GROUP,
    _State.STRING: TokenKind.STRING,
    _State.SCRIPT: TokenKind.SCRIPT,
    _State.GROUP_SCRIPT: TokenKind.GROUP_SCRIPT,
}


def _char(source: str, i: int) -> str:
    # Out of range reads as "" so lookahead at the end never raises.
    return source[i] if 0 <= i < len(source) else ""


def _is_whitespace(ch: str) -> bool:
    return ch != "" and ch in WHITESPACE


# =================================================================
# Script extraction
# =================================================================

_CLOSERS = {"(": ")", "[": "]", "{": "}"}


class _Mode(Enum):
    CODE = auto()
    STRING = auto()
    TEMPLATE = auto()


def extract_script(source: str, start: int, end_chars: str, exclude_first: bool) -> Tuple[str, int]:
    """Scans a script body that begins at `start`.

    Returns the script text and the index where scanning stopped: either the
    position of an end character found outside every nested construct, or
    `len(source)` when the input ran out first. With `exclude_first`, the
    character at `start` (an opening brace) is not part of the script.

    Inside code, `$letter` is rewritten to `$.letter`; string and template
    literals are copied untouched.
    """
    segments = []
    saved = []
    mode, delim = _Mode.CODE, ""
    segment_start = start + 1 if exclude_first else start
    i = start + 1

    def flush(upto: int):
        nonlocal segment_start
        if segment_start < upto:
            part = source[segment_start:upto]
            if mode is _Mode.CODE:
                part = _SIGIL_REF.sub(r"$.\1", part)
            segments.append(part)
            segment_start = upto

    def push(new_mode: _Mode, new_delim: str):
        nonlocal mode, delim
        saved.append((mode, delim))
        if new_mode is not mode:
            flush(i)
        mode, delim = new_mode, new_delim

    def pop():
        nonlocal mode, delim
        outer_mode, outer_delim = saved.pop()
        if outer_mode is not mode:
            flush(i)
        mode, delim = outer_mode, outer_delim

    while True:
        ch = _char(source, i)
        if ch == "" or (not saved and ch in end_chars):
            break
        prev = _char(source, i - 1)

        if ch in "\"'`":
            if mode is _Mode.CODE:
                push(_Mode.TEMPLATE if ch == "`" else _Mode.STRING, ch)
            elif ch == delim and prev != "\\":
                pop()
        elif mode is _Mode.CODE:
            if ch in ")]}" and _CLOSERS.get(delim) == ch:
                pop()
            elif ch in "([{":
                push(_Mode.CODE, ch)
        elif mode is _Mode.TEMPLATE and ch == "$" and prev != "\\" and _char(source, i + 1) == "{":
            push(_Mode.CODE, "{")
            i += 1

        i += 1

    flush(i)
    return "".join(segments), i


# =================================================================
# Tokenizer
# =================================================================

def _store(tokens: TokenList, state: _State, text: str):
    if state is _State.LINE_CONTINUATION:
        tokens.append(TokenKind.TEXT, " ")
        return
    if state in (_State.SCRIPT_SHORTHAND, _State.GROUP_SCRIPT_SHORTHAND):
        if text.startswith("=") and len(text) > 1 and text[1].isascii() and text[1].isalpha():
            text = "=$." + text[1:]
        kind = TokenKind.SCRIPT if state is _State.SCRIPT_SHORTHAND else TokenKind.GROUP_SCRIPT
        tokens.append(kind, text)
        return
    tokens.append(_STORED_KIND[state], text)


def _is_shorthand_start(source: str, i: int, start: int, state: _State) -> bool:
    ch = source[i]
    if ch not in "$=":
        return False
    following = _char(source, i + 1)
    if _is_whitespace(following):
        return False
    if state is _State.GROUP:
        return i == start or _is_whitespace(_char(source, i - 1))
    return state is not _State.TEXT or _is_whitespace(_char(source, i - 1))


def _next_state(source: str, i: int, start: int, state: _State) -> _State:
    ch = source[i]

    if state is _State.GROUP:
        if ch == ")":
            return _State.UNKNOWN
        if ch == "{":
            return _State.GROUP_SCRIPT
        if _is_shorthand_start(source, i, start, state):
            return _State.GROUP_SCRIPT_SHORTHAND
        return state

    if state is _State.STRING:
        return _State.UNKNOWN if ch == '"' else state

    if state is _State.LINE_CONTINUATION and ch in EOL_CHARS:
        return state
    if ch == "(":
        return _State.GROUP
    if ch == '"':
        return _State.STRING
    if ch == "{":
        return _State.SCRIPT
    if ch in EOL_CHARS or ch == ";":
        return _State.BOUNDARY
    if ch == "\\" and _char(source, i + 1) != "" and _char(source, i + 1) in EOL_CHARS:
        return _State.LINE_CONTINUATION
    if _is_shorthand_start(source, i, start, state):
        return _State.SCRIPT_SHORTHAND
    return _State.TEXT


def tokenize(source: str) -> TokenList:
    """Splits source text into a TokenList.

    Empty input yields an empty list. Any other input yields a list whose last
    token is a Boundary (holding "" when the input did not end on a separator).
    Unclosed groups, strings and scripts are closed at the end of input.
    """
    tokens = TokenList()
    if not source:
        return tokens

    state = _State.UNKNOWN
    start = 0
    i = 0
    length = len(source)

    while i < length:
        new_state = _next_state(source, i, start, state)

        if new_state is not state:
            if state is not _State.UNKNOWN:
                _store(tokens, state, source[start:i])

            if new_state is _State.SCRIPT or new_state is _State.GROUP_SCRIPT:
                script, end = extract_script(source, i, "}", exclude_first=True)
                _store(tokens, new_state, script)
                start = end + 1
                i = end
                new_state = _State.UNKNOWN if new_state is _State.SCRIPT else _State.GROUP
            elif new_state is _State.SCRIPT_SHORTHAND or new_state is _State.GROUP_SCRIPT_SHORTHAND:
                end_chars = SCRIPT_SHORTHAND_END if new_state is _State.SCRIPT_SHORTHAND else GROUP_SCRIPT_SHORTHAND_END
                script, end = extract_script(source, i, end_chars, exclude_first=False)
                _store(tokens, new_state, script)
                start = end
                i = end - 1
                new_state = _State.UNKNOWN if new_state is _State.SCRIPT_SHORTHAND else _State.GROUP
            elif new_state is _State.GROUP or new_state is _State.STRING:
                start = i + 1
            else:
                start = i

            state = new_state

        i += 1

    if state is not _State.UNKNOWN:
        _store(tokens, state, source[start:])
    if state is not _State.BOUNDARY:
        tokens.append(TokenKind.BOUNDARY, "")
    return tokens
