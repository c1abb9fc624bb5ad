"""
Defines the core data types for the cgraph conversion pipeline.

This module provides the token model the tokenizer produces, the mutable
doubly-linked token list the processor rewrites in place, and the command
and result records that flow out of the processor.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional


# =================================================================
# Tokens
# =================================================================

class TokenKind(Enum):
    TEXT = "text"
    BOUNDARY = "boundary"
    GROUP = "group"
    STRING = "string"
    SCRIPT = "script"
    GROUP_SCRIPT = "group-script"


# Adjacent nodes of these kinds are always merged into one.
MERGEABLE_KINDS = frozenset({TokenKind.TEXT, TokenKind.BOUNDARY})


@dataclass(frozen=True)
class Token:
    """A classified span of source text."""
    kind: TokenKind
    text: str

    def __repr__(self) -> str:
        return f"Token({self.kind.name}, {self.text!r})"


class _Node:
    __slots__ = ("token", "prev", "next")

    def __init__(self, token: Token):
        self.token = token
        self.prev: Optional['_Node'] = None
        self.next: Optional['_Node'] = None


class TokenList:
    """A doubly-linked sequence of tokens with merge-aware mutation.

    The list never holds two adjacent Text nodes or two adjacent Boundary
    nodes: appends merge into the tail, and removals or splices that bring
    two such nodes together merge them. All mutation in the middle of the
    list goes through a `Cursor`.
    """

    def __init__(self, tokens: Optional[List[Token]] = None):
        self._head: Optional[_Node] = None
        self._tail: Optional[_Node] = None
        for token in tokens or []:
            self.append(token.kind, token.text)

    def append(self, kind: TokenKind, text: str):
        tail = self._tail
        if tail is None:
            self._head = self._tail = _Node(Token(kind, text))
            return
        if kind is tail.token.kind and kind in MERGEABLE_KINDS:
            tail.token = Token(kind, tail.token.text + text)
            return
        node = _Node(Token(kind, text))
        tail.next = node
        node.prev = tail
        self._tail = node

    def trim_end(self, kind: TokenKind):
        """Drops the last node if it has the given kind."""
        tail = self._tail
        if tail is None or tail.token.kind is not kind:
            return
        if tail.prev is None:
            self._head = self._tail = None
        else:
            tail.prev.next = None
            self._tail = tail.prev

    def copy(self, start: Optional['Cursor'] = None, end: Optional['Cursor'] = None) -> 'TokenList':
        """Returns an independent copy of the list.

        Copying starts at `start` (default: the head) and stops after `end`
        inclusive (default, or when `end` is at the end: the tail).
        """
        cursor = start.clone() if start is not None else self.cursor()
        stop = end._node if end is not None else None
        result = TokenList()
        while not cursor.at_end():
            token = cursor.token
            result.append(token.kind, token.text)
            if stop is not None and cursor._node is stop:
                break
            cursor.advance()
        return result

    def cursor(self) -> 'Cursor':
        return Cursor(self, self._head)

    def is_empty(self) -> bool:
        return self._head is None

    def clear(self):
        self._head = None
        self._tail = None

    @property
    def head(self) -> Optional[Token]:
        return self._head.token if self._head else None

    @property
    def tail(self) -> Optional[Token]:
        return self._tail.token if self._tail else None

    def __iter__(self) -> Iterator[Token]:
        node = self._head
        while node is not None:
            yield node.token
            node = node.next

    def __len__(self) -> int:
        count = 0
        node = self._head
        while node is not None:
            count += 1
            node = node.next
        return count

    def __repr__(self) -> str:
        lines = [f"\t{{kind:{t.kind.name}, text:{t.text!r}}}" for t in self]
        return "TokenList [\n" + "\n".join(lines) + ("\n]" if lines else "]")


class Cursor:
    """A position inside a TokenList.

    A cursor references a node without owning it; it is "at end" once it has
    moved past the tail. Two cursors are equal when they reference the same
    node, regardless of the node's contents.
    """
    __slots__ = ("_list", "_node")

    def __init__(self, token_list: TokenList, node: Optional[_Node]):
        self._list = token_list
        self._node = node

    @property
    def token(self) -> Token:
        if self._node is None:
            raise IndexError("cursor is at the end of the token list")
        return self._node.token

    def at_end(self) -> bool:
        return self._node is None

    def advance(self):
        if self._node is not None:
            self._node = self._node.next

    def clone(self) -> 'Cursor':
        return Cursor(self._list, self._node)

    def set_text(self, text: str):
        token = self.token
        self._node.token = Token(token.kind, text)

    def __eq__(self, other):
        if not isinstance(other, Cursor):
            return NotImplemented
        return self._node is other._node

    __hash__ = None

    def __repr__(self) -> str:
        where = "end" if self._node is None else repr(self._node.token)
        return f"<Cursor at {where}>"

    def remove(self):
        """Removes the current node and moves to the next one.

        When the removal leaves two mergeable nodes of the same kind next to
        each other, the later one is folded into the earlier one and the
        cursor moves past the merged node.
        """
        node = self._node
        if node is None:
            return
        owner = self._list
        if node.prev is None:
            owner._head = node.next
            if owner._tail is node:
                owner._tail = None
            else:
                owner._head.prev = None
            self._node = node.next
        elif node.next is None:
            owner._tail = node.prev
            owner._tail.next = None
            self._node = None
        else:
            node.prev.next = node.next
            node.next.prev = node.prev
            self._node = node.next
            self._merge_if_required()

    def replace_with(self, other: TokenList):
        """Replaces the current node with the contents of `other`.

        `other` is emptied. Both seams are merged with the Text/Boundary rule.
        The cursor lands on what was the head of `other`, or on the first
        node after it when that head was merged into the preceding node.
        """
        node = self._node
        if node is None:
            return
        if other.is_empty():
            self.remove()
            return

        owner = self._list
        following = node.next
        node.next = other._head
        other._head.prev = node
        other._tail.next = following

        if following is None:
            owner._tail = other._tail
        else:
            following.prev = other._tail
            Cursor(owner, following)._merge_if_required()

        self.remove()
        other.clear()

    def erase_to(self, end: 'Cursor'):
        """Unlinks the inclusive range from here to `end` in one step.

        An `end` cursor that is at the end erases through the tail. The cursor
        lands on the node after the range, with the seam merged.
        """
        first = self._node
        if first is None:
            return
        owner = self._list
        last = end._node if end._node is not None else owner._tail
        before = first.prev
        after = last.next

        if before is None:
            owner._head = after
        else:
            before.next = after
        if after is None:
            owner._tail = before
        else:
            after.prev = before

        self._node = after
        if before is not None and after is not None:
            self._merge_if_required()

    def _merge_if_required(self):
        node = self._node
        if node is None or node.prev is None:
            return
        prev = node.prev
        kind = node.token.kind
        if kind is prev.token.kind and kind in MERGEABLE_KINDS:
            prev.token = Token(kind, prev.token.text + node.token.text)
            self.remove()


# =================================================================
# Commands and results
# =================================================================

@dataclass
class Command:
    """A recognized command: its name and the arguments bound to each flag."""
    name: str
    args: Dict[str, List[str]] = field(default_factory=dict)

    def snapshot(self) -> 'Command':
        """Deep copy used as the "previous command"; `id` is never carried over."""
        return Command(self.name, {k: list(v) for k, v in self.args.items() if k != 'id'})


@dataclass
class Element:
    """A resolved drawing primitive: an SVG-style tag and its attributes."""
    tag: str
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"tag": self.tag, "attributes": dict(self.attributes)}


@dataclass
class CommandResult:
    """What a command handler returns to the processor."""
    command: str
    elements: List[Element] = field(default_factory=list)
    name: Optional[str] = None
    # Bound into the script namespace under `name` right after dispatch.
    script_interface: Any = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"command": self.command}
        if self.name:
            out["name"] = self.name
        out["elements"] = [e.to_dict() for e in self.elements]
        return out


@dataclass(frozen=True)
class Point:
    x: float
    y: float

    def __str__(self) -> str:
        return f"{to_text(self.x)} {to_text(self.y)}"


def to_text(value: Any) -> str:
    """Converts a script value into the text that gets spliced into the DSL."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return " ".join(to_text(v) for v in value)
    return str(value)
