# cgraph runtime: script hosting, configuration and the conversion entry point.

import ast
import builtins
import copy
import math
import re
import textwrap
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from cgraph.cgraph_commands import CommandLib, CommandRegistry
from cgraph.cgraph_datatypes import CommandResult, to_text
from cgraph.cgraph_processor import (
    DEFAULT_INIT_COMMAND, DEFAULT_MAX_EXPANSIONS, DEFAULT_MAX_LOOP_ITERATIONS, DEFAULT_MAX_NESTING,
    CommandProcessor
)
from cgraph.cgraph_serialize import deserialize

# ===================================================================
# 1. Script Bridge
# ===================================================================


class ScriptBridge(ABC):
    """The capability the processor uses to run embedded script fragments."""

    @abstractmethod
    def evaluate(self, code: str) -> str:
        """Runs a fragment and returns its result as text. Never raises."""

    @abstractmethod
    def bind(self, name: str, value: Any):
        ...

    @abstractmethod
    def unbind(self, name: str):
        ...

    @abstractmethod
    def reset(self):
        ...


# Triple-quoted first so they win over the single-quoted forms.
_STRING_LITERAL = re.compile(
    r"('''[\s\S]*?'''|\"\"\"[\s\S]*?\"\"\"|'(?:\\.|[^'\\\n])*'|\"(?:\\.|[^\"\\\n])*\")"
)

_FRAGMENT_NAME = "_cgraph_fragment"


def strip_sigils(code: str) -> str:
    """Rewrites `$.name` to `name` everywhere except inside string literals."""
    parts = _STRING_LITERAL.split(code)
    for i in range(0, len(parts), 2):
        parts[i] = parts[i].replace("$.", "")
    return "".join(parts)


def parse_fragment(source: str) -> ast.Module:
    """Parses a block as the body of a function named `_FRAGMENT_NAME`.

    The block is dedented as a whole. When that leaves an indentation error,
    as in `{a=1` followed by indented lines, the lines after the first are
    dedented on their own and the first line is stripped.
    """
    source = source.strip("\r\n")
    try:
        return _parse_body(textwrap.dedent(source))
    except IndentationError:
        first, _, rest = source.partition("\n")
        return _parse_body(first.strip() + "\n" + textwrap.dedent(rest))


def _parse_body(body: str) -> ast.Module:
    body = textwrap.indent(body, "    ")
    return ast.parse(f"def {_FRAGMENT_NAME}():\n{body}\n", "<cgraph>")


class _AssignedNames(ast.NodeVisitor):
    """Collects the names a block binds in its own scope."""

    def __init__(self):
        self.names = set()

    def visit_Name(self, node):
        if isinstance(node.ctx, (ast.Store, ast.Del)):
            self.names.add(node.id)

    def visit_FunctionDef(self, node):
        self.names.add(node.name)

    visit_AsyncFunctionDef = visit_FunctionDef
    visit_ClassDef = visit_FunctionDef

    def visit_Import(self, node):
        for alias in node.names:
            if alias.name != '*':
                self.names.add(alias.asname or alias.name.split('.')[0])

    visit_ImportFrom = visit_Import

    # Nested scopes keep their own bindings.
    def visit_Lambda(self, node):
        pass

    visit_ListComp = visit_SetComp = visit_DictComp = visit_GeneratorExp = visit_Lambda


class PythonScriptBridge(ScriptBridge):
    """Hosts script fragments as Python code in one persistent namespace.

    `=expr` fragments are evaluated as expressions. Anything else runs as the
    body of a throwaway function whose assignments are global, so variables
    survive between fragments, `return` works, and a trailing bare expression
    is the result.
    """

    def __init__(self, side_effects: Optional[List[Dict]] = None):
        self.side_effects = side_effects if side_effects is not None else []
        self.namespace: Dict[str, Any] = {}
        self.reset()

    def reset(self):
        self.namespace.clear()
        self.namespace['__builtins__'] = builtins
        self.namespace['math'] = math

    def bind(self, name: str, value: Any):
        self.namespace[name] = value

    def unbind(self, name: str):
        self.namespace.pop(name, None)

    def evaluate(self, code: str) -> str:
        try:
            value = self._run(code)
        except Exception as e:
            message = f"ScriptError: {type(e).__name__}: {e}\n  in {{{code}}}"
            self.side_effects.append({'topics': ['stderr'], 'message': message})
            return ""
        return to_text(value)

    def _run(self, code: str) -> Any:
        source = strip_sigils(code).strip()
        if not source:
            return None
        if source.startswith("="):
            return eval(compile(source[1:].strip(), "<cgraph>", "eval"), self.namespace)

        tree = parse_fragment(strip_sigils(code))
        func = tree.body[0]

        collector = _AssignedNames()
        for stmt in func.body:
            collector.visit(stmt)
        last = func.body[-1]
        if isinstance(last, ast.Expr):
            func.body[-1] = ast.copy_location(ast.Return(value=last.value), last)
        if collector.names:
            func.body.insert(0, ast.Global(names=sorted(collector.names)))
        ast.fix_missing_locations(tree)

        exec(compile(tree, "<cgraph>", "exec"), self.namespace)
        fragment = self.namespace.pop(_FRAGMENT_NAME)
        return fragment()


# ===================================================================
# 2. Configuration
# ===================================================================

_CONFIG_FORMATS = {'.yaml': 'yaml', '.yml': 'yaml', '.json': 'json', '.toml': 'toml'}

DEFAULT_CONFIG_PATH = Path(__file__).parent / "commands.yaml"


def load_config_file(path) -> Dict[str, Any]:
    """Reads a configuration mapping; the format follows the file extension."""
    p = Path(path)
    fmt = _CONFIG_FORMATS.get(p.suffix.lower())
    if fmt is None:
        raise ValueError(f"Unsupported configuration file type: {p.suffix or p.name}")
    data = deserialize(p.read_text(encoding="utf-8"), fmt=fmt)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration in {p} must be a mapping")
    for section in ('options', 'commands'):
        if not isinstance(data.get(section, {}), dict):
            raise ValueError(f"Configuration section '{section}' in {p} must be a mapping")
    return data


def merge_config(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Overlays `override` onto a copy of `base`.

    Options are merged key by key; a command schema in `override` replaces the
    whole schema of that command.
    """
    merged = copy.deepcopy(base)
    merged.setdefault('options', {}).update(override.get('options') or {})
    merged.setdefault('commands', {}).update(copy.deepcopy(override.get('commands') or {}))
    return merged


# ===================================================================
# 3. Conversion
# ===================================================================


@dataclass
class ExecutionResult:
    """The structured result of one conversion."""
    status: Literal['success', 'error']
    value: Optional[List[CommandResult]] = None
    error_message: Optional[str] = None
    side_effects: List[Dict] = field(default_factory=list)

    def format_error(self) -> str:
        if self.status != 'error':
            return ""
        return str(self.error_message or "Unknown error")


class ConversionRunner:
    """Converts cgraph source into resolved drawing commands."""

    _default_config: Optional[Dict[str, Any]] = None

    def __init__(self, config_path=None, bridge: Optional[ScriptBridge] = None):
        if ConversionRunner._default_config is None:
            ConversionRunner._default_config = load_config_file(DEFAULT_CONFIG_PATH)

        self.config = copy.deepcopy(ConversionRunner._default_config)
        if config_path is not None:
            self.config = merge_config(self.config, load_config_file(config_path))

        self.options: Dict[str, Any] = self.config.get('options', {})
        self.schemas: Dict[str, Dict] = self.config.get('commands', {})

        self.side_effects: List[Dict] = []
        self.bridge = bridge if bridge is not None else PythonScriptBridge(self.side_effects)

    def _build_processor(self) -> CommandProcessor:
        library = CommandLib(self.options)
        registry = CommandRegistry.from_library(library, self.schemas)
        return CommandProcessor(
            self.bridge,
            registry,
            max_loop_iterations=int(self.options.get('max_loop_iterations', DEFAULT_MAX_LOOP_ITERATIONS)),
            max_nesting=int(self.options.get('max_nesting', DEFAULT_MAX_NESTING)),
            max_expansions=int(self.options.get('max_expansions', DEFAULT_MAX_EXPANSIONS)),
            init_command=str(self.options.get('init_command', DEFAULT_INIT_COMMAND)),
        )

    def handle_source(self, source: str) -> ExecutionResult:
        """The main entry point to convert a document."""
        self.side_effects.clear()
        self.bridge.reset()
        try:
            results = self._build_processor().process_input(source)
        except Exception as e:
            msg = f"InternalError: {type(e).__name__}: {e}"
            self.side_effects.append({'topics': ['stderr'], 'message': msg})
            return ExecutionResult(status='error', error_message=msg, side_effects=list(self.side_effects))
        return ExecutionResult(status='success', value=results, side_effects=list(self.side_effects))
