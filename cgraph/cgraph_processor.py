"""
The cgraph command processor.

Walks a TokenList with two cursors. The lookahead cursor resolves everything up
to the next boundary (groups, scripts, macro definitions, loops) while the main
cursor trails behind and turns each resolved region into a dispatched command.
Scripts may emit new source text; it is tokenized and spliced into the list
being walked.
"""
import os
import re
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from cgraph.cgraph_datatypes import Command, CommandResult, Cursor, TokenKind, TokenList
from cgraph.cgraph_tokenizer import tokenize


MACRO_DEFINE = re.compile(r"^\s*_([a-zA-Z][0-9a-zA-Z]*)\s*")
MACRO_INVOKE = re.compile(r"\s*@([a-zA-Z][0-9a-zA-Z]*)\s*")
FOR_LOOP = re.compile(r"\s*\.for\s*")
MACRO_END = ";;"
REPEAT_COMMAND = "."
TRUE_SENTINEL = "true"

DEFAULT_MAX_LOOP_ITERATIONS = 100
DEFAULT_MAX_NESTING = 64
DEFAULT_MAX_EXPANSIONS = 10000
DEFAULT_INIT_COMMAND = "init"


@dataclass
class ProcessingState:
    """Everything one top-level conversion accumulates."""
    macros: Dict[str, TokenList] = field(default_factory=dict)
    results: List[CommandResult] = field(default_factory=list)
    previous_command: Optional[Command] = None
    dispatch_count: int = 0
    depth: int = 0
    # Macro and loop bodies processed so far.
    expansions: int = 0


# =================================================================
# Argument binding
# =================================================================

def bind_args(schema: Dict[str, int], raw_args: List[str]) -> Dict[str, List[str]]:
    """Binds raw argument words against a flag -> arity schema.

    A known flag takes the next `arity` words as its values; a flag with too
    few words left after it is dropped. Words that are not flags are skipped.
    """
    bound: Dict[str, List[str]] = {}
    i = 0
    while i < len(raw_args):
        word = raw_args[i]
        if word in schema:
            arity = schema[word]
            values = raw_args[i + 1:i + 1 + arity]
            if len(values) == arity:
                bound[word] = list(values)
            i += len(values)
        i += 1
    return bound


def merge_args(target: Command, source: Command, include_id: bool):
    """Overlays `source`'s arguments onto `target`, flag by flag."""
    for flag, values in source.args.items():
        if not include_id and flag == 'id':
            continue
        target.args[flag] = list(values)


def _is_whitespace_text(token) -> bool:
    return token.kind is TokenKind.TEXT and not token.text.strip()


def _is_macro_end(token) -> bool:
    return token.kind is TokenKind.BOUNDARY and MACRO_END in token.text


# =================================================================
# Processor
# =================================================================

class CommandProcessor:
    """Turns a token stream into dispatched command results."""

    def __init__(self, bridge, commands,
                 max_loop_iterations: int = DEFAULT_MAX_LOOP_ITERATIONS,
                 max_nesting: int = DEFAULT_MAX_NESTING,
                 max_expansions: int = DEFAULT_MAX_EXPANSIONS,
                 init_command: str = DEFAULT_INIT_COMMAND):
        self.bridge = bridge
        self.commands = commands
        self.max_loop_iterations = max_loop_iterations
        self.max_nesting = max_nesting
        self.max_expansions = max_expansions
        self.init_command = init_command

    def _dbg(self, *parts):
        if os.environ.get("CGRAPH_DEBUG"):
            print("[DBG]", *parts, file=sys.stderr)

    def process_input(self, source: str) -> List[CommandResult]:
        """Tokenizes and processes one document with fresh state."""
        state = ProcessingState()
        self.process_nodes(tokenize(source), state)
        return state.results

    def process_nodes(self, tokens: TokenList, state: ProcessingState):
        if state.depth >= self.max_nesting:
            self._dbg("nesting limit reached, skipping block")
            return
        if state.depth > 0:
            if state.expansions >= self.max_expansions:
                self._dbg("expansion limit reached, skipping block")
                return
            state.expansions += 1
        state.depth += 1
        try:
            self._process_nodes(tokens, state)
        finally:
            state.depth -= 1

    def _process_nodes(self, tokens: TokenList, state: ProcessingState):
        lookahead = tokens.cursor()
        main = tokens.cursor()

        while not main.at_end():
            while not lookahead.at_end():
                token = lookahead.token
                kind = token.kind

                if kind is TokenKind.BOUNDARY:
                    break
                elif kind is TokenKind.GROUP:
                    self._collapse_group(lookahead)
                    lookahead.advance()
                elif kind is TokenKind.SCRIPT:
                    track = main == lookahead
                    output = tokenize(self.bridge.evaluate(token.text))
                    if output.tail is not None and output.tail.kind is TokenKind.BOUNDARY \
                            and output.tail.text == "":
                        output.trim_end(TokenKind.BOUNDARY)
                    self._dbg("script", repr(token.text), "->", output)
                    lookahead.replace_with(output)
                    if track:
                        main = lookahead.clone()
                elif kind is TokenKind.TEXT and main == lookahead and MACRO_DEFINE.match(token.text):
                    self._extract_macro(main, state)
                    lookahead = main.clone()
                elif kind is TokenKind.TEXT and main == lookahead and self._is_for_loop(main):
                    main = self._unroll_for_loop(main, state)
                    lookahead = main.clone()
                else:
                    lookahead.advance()

            if main.at_end():
                break

            if self._is_macro_invocation(main):
                self._invoke_macro(main, state)
                lookahead = main.clone()
            else:
                command = self.process_command(main, state)
                if command is not None:
                    self._dispatch(command, state)
                main.advance()
                lookahead.advance()

    # --- Preprocessing ---

    def _collapse_group(self, cursor: Cursor):
        """Folds the Group/GroupScript run starting at `cursor` into one Group."""
        group_text = cursor.token.text
        walker = cursor.clone()
        walker.advance()
        prev_kind = TokenKind.GROUP

        while not walker.at_end():
            token = walker.token
            if token.kind is TokenKind.GROUP_SCRIPT:
                group_text += self.bridge.evaluate(token.text)
            elif token.kind is TokenKind.GROUP and prev_kind is TokenKind.GROUP_SCRIPT:
                group_text += token.text
            else:
                break
            walker.remove()
            prev_kind = token.kind

        cursor.set_text(group_text)

    def _extract_macro(self, cursor: Cursor, state: ProcessingState):
        """Stores the macro defined at `cursor` and erases its definition.

        The cursor is left on the first token after the definition.
        """
        token = cursor.token
        match = MACRO_DEFINE.match(token.text)
        name = match.group(1)

        body = TokenList()
        remainder = token.text[match.end():]
        if remainder:
            body.append(TokenKind.TEXT, remainder)

        end = cursor.clone()
        end.advance()
        while not end.at_end() and not _is_macro_end(end.token):
            body.append(end.token.kind, end.token.text)
            end.advance()
        body.append(TokenKind.BOUNDARY, "")

        state.macros[name] = body
        self._dbg("macro", name, body)
        cursor.erase_to(end)

    def _is_macro_invocation(self, cursor: Cursor) -> bool:
        token = cursor.token
        if token.kind is not TokenKind.TEXT or not MACRO_INVOKE.fullmatch(token.text):
            return False
        following = cursor.clone()
        following.advance()
        return not following.at_end() and following.token.kind is TokenKind.BOUNDARY

    def _invoke_macro(self, cursor: Cursor, state: ProcessingState):
        name = MACRO_INVOKE.fullmatch(cursor.token.text).group(1)
        macro = state.macros.get(name)
        if macro is not None:
            self._dbg("invoke", name)
            self.process_nodes(macro.copy(), state)
        cursor.advance()
        cursor.advance()

    def _is_for_loop(self, cursor: Cursor) -> bool:
        """True for `.for` followed by three scripts, whitespace and a boundary."""
        token = cursor.token
        if token.kind is not TokenKind.TEXT or not FOR_LOOP.fullmatch(token.text):
            return False

        walker = cursor.clone()
        walker.advance()
        scripts = 0
        while not walker.at_end() and scripts < 3:
            if walker.token.kind is TokenKind.SCRIPT:
                scripts += 1
            elif not _is_whitespace_text(walker.token):
                return False
            walker.advance()

        while not walker.at_end():
            if walker.token.kind is TokenKind.BOUNDARY:
                return True
            if not _is_whitespace_text(walker.token):
                return False
            walker.advance()
        return False

    def _unroll_for_loop(self, cursor: Cursor, state: ProcessingState) -> Cursor:
        """Runs the loop at `cursor`; returns a cursor past the loop body."""
        walker = cursor.clone()
        walker.advance()
        scripts = []
        while walker.token.kind is not TokenKind.BOUNDARY:
            if walker.token.kind is TokenKind.SCRIPT:
                scripts.append(walker.token.text)
            walker.advance()
        init, condition, step = scripts

        header_end = walker.token
        walker.advance()

        body = TokenList()
        if not _is_macro_end(header_end):
            while not walker.at_end() and not _is_macro_end(walker.token):
                body.append(walker.token.kind, walker.token.text)
                walker.advance()
            walker.advance()
        body.append(TokenKind.BOUNDARY, "")

        self.bridge.evaluate(init)
        for iteration in range(self.max_loop_iterations):
            if self.bridge.evaluate(condition) != TRUE_SENTINEL:
                break
            self._dbg("for iteration", iteration)
            self.process_nodes(body.copy(), state)
            self.bridge.evaluate(step)

        return walker

    # --- Command recognition and dispatch ---

    def process_command(self, cursor: Cursor, state: ProcessingState) -> Optional[Command]:
        """Reads one command from `cursor` up to the next boundary.

        The cursor is left on that boundary. Returns the bound command, or
        None when the region holds no command name.
        """
        name = ""
        raw_args: List[str] = []

        while not cursor.at_end() and cursor.token.kind is not TokenKind.BOUNDARY:
            token = cursor.token
            if token.kind is TokenKind.TEXT:
                words = token.text.split()
                if words and not name:
                    first = words.pop(0)
                    colon = first.rfind(":")
                    if colon > 0:
                        name = first[:colon]
                        ident = first[colon + 1:]
                        if ident:
                            raw_args.extend(['id', ident])
                    else:
                        name = first
                raw_args.extend(words)
            elif token.kind in (TokenKind.GROUP, TokenKind.STRING) and name:
                raw_args.append(token.text)
            cursor.advance()

        if not name:
            return None

        previous = state.previous_command
        if name == REPEAT_COMMAND and previous is not None:
            partial = Command(previous.name, bind_args(self._schema(previous.name), raw_args))
            merge_args(previous, partial, include_id=True)
            command = previous
        else:
            command = Command(name, bind_args(self._schema(name), raw_args))

        state.previous_command = command.snapshot()
        return command

    def _schema(self, name: str) -> Dict[str, int]:
        if self.commands.has_command(name):
            return self.commands.get_param_schema(name)
        return {}

    def _dispatch(self, command: Command, state: ProcessingState):
        if not self.commands.has_command(command.name):
            self._dbg("unknown command", command.name)
            return

        if state.dispatch_count == 0:
            if command.name != self.init_command and self.commands.has_command(self.init_command):
                self._emit(self.init_command, {}, state)
        elif command.name == self.init_command:
            self._dbg("ignoring repeated", command.name)
            return

        self._emit(command.name, command.args, state)

    def _emit(self, name: str, args: Dict[str, List[str]], state: ProcessingState):
        self._dbg("dispatch", name, args)
        result = self.commands.invoke(name, args)
        state.dispatch_count += 1
        if result is None:
            return
        state.results.append(result)
        if result.name and result.script_interface is not None:
            self.bridge.bind(result.name, result.script_interface)


def process_input(source: str, bridge, commands, **options: Any) -> List[CommandResult]:
    """Converts `source` into the ordered list of command results."""
    return CommandProcessor(bridge, commands, **options).process_input(source)
