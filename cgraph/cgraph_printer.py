"""
A pretty-printer for cgraph data structures.
"""
import collections.abc

from cgraph.cgraph_datatypes import (
    Command, CommandResult, Element, Point, Token, TokenKind, TokenList, to_text
)


class Printer:
    """Formats cgraph objects into readable text; token lists print as valid source."""

    def __init__(self, indent_width=2):
        self._indent_char = " " * indent_width
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point to format an object."""
        handler = self._get_handler(obj)
        return handler(obj, level)

    def _get_handler(self, obj):
        """Dispatcher to find the correct formatting method."""
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, collections.abc.Mapping): return self._pformat_dict
        if isinstance(obj, (list, tuple)): return self._pformat_list
        # Default to Python's repr for unknown types
        return lambda o, l: repr(o)

    def _create_handlers(self):
        return {
            str: self._pformat_primitive,
            int: self._pformat_primitive,
            float: self._pformat_primitive,
            bool: self._pformat_primitive,
            type(None): self._pformat_none,
            Point: self._pformat_primitive,
            Token: self._pformat_token,
            TokenList: self._pformat_token_list,
            Command: self._pformat_command,
            Element: self._pformat_element,
            CommandResult: self._pformat_result,
        }

    def _pformat_primitive(self, obj, level):
        return to_text(obj)

    def _pformat_none(self, obj, level):
        return 'none'

    # --- Tokens ---

    def _pformat_token(self, obj, level):
        kind = obj.kind
        if kind is TokenKind.GROUP:
            return f"({obj.text})"
        if kind is TokenKind.STRING:
            return f'"{obj.text}"'
        if kind is TokenKind.SCRIPT or kind is TokenKind.GROUP_SCRIPT:
            return f"{{{obj.text}}}"
        return obj.text

    def _pformat_token_list(self, obj, level):
        out = []
        tokens = list(obj)
        i = 0
        while i < len(tokens):
            token = tokens[i]
            if token.kind is TokenKind.GROUP:
                # A group and its embedded scripts print as one parenthesised run.
                parts = [token.text]
                while i + 1 < len(tokens) and tokens[i + 1].kind is TokenKind.GROUP_SCRIPT:
                    parts.append(f"{{{tokens[i + 1].text}}}")
                    i += 1
                    if i + 1 < len(tokens) and tokens[i + 1].kind is TokenKind.GROUP:
                        parts.append(tokens[i + 1].text)
                        i += 1
                out.append("(" + "".join(parts) + ")")
            else:
                out.append(self._pformat_token(token, level))
            i += 1
        return "".join(out)

    # --- Commands and results ---

    def _pformat_arg(self, value):
        value = to_text(value)
        if not value or any(ch.isspace() for ch in value):
            return f"({value})"
        return value

    def _pformat_command(self, obj, level):
        args = dict(obj.args)
        ident = args.pop('id', None)
        head = obj.name
        if ident:
            head = f"{head}:{ident[0]}"
        parts = [head]
        for flag, values in args.items():
            parts.append(flag)
            parts.extend(self._pformat_arg(v) for v in values)
        return " ".join(parts)

    def _pformat_element(self, obj, level):
        attrs = "".join(f' {k}="{to_text(v)}"' for k, v in obj.attributes.items())
        return f"<{obj.tag}{attrs}/>"

    def _pformat_result(self, obj, level):
        head = obj.command if not obj.name else f"{obj.command}:{obj.name}"
        if not obj.elements:
            return head
        indent = self._indent_char * (level + 1)
        lines = [head] + [f"{indent}{self.pformat(e, level + 1)}" for e in obj.elements]
        return "\n".join(lines)

    # --- Containers ---

    def _pformat_list(self, obj, level):
        return "\n".join(self.pformat(item, level) for item in obj)

    def _pformat_dict(self, obj, level):
        if not obj:
            return "{}"
        indent = self._indent_char * (level + 1)
        lines = [f"{indent}{k}: {self.pformat(v, level + 1)}" for k, v in obj.items()]
        return "{\n" + "\n".join(lines) + "\n" + self._indent_char * level + "}"
