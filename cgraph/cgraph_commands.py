"""
The command dispatch table and the default drawing command library.
"""
import inspect
import itertools
import math
import re
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional, Tuple

from cgraph.cgraph_datatypes import CommandResult, Element, Point, to_text


DEFAULT_SPACINGS = [0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 25, 50, 100]
# Grid lines drawn per direction, at most.
MAX_GRID_LINES = 1000

_LENGTH = re.compile(r"^((?:[0-9]*[.])?[0-9]+)(\D*)$")
_PLAIN_NUMBER = re.compile(r"^([0-9]*[.])?[0-9]+$")

_instance_ids = itertools.count()


# ===================================================================
# Dispatch table
# ===================================================================

class CommandRegistry:
    """Maps command names to a handler and a parameter schema.

    A schema maps each short flag to a spec dict with `name` (the long name,
    also used as the element attribute), `values` (how many argument words the
    flag takes, default 1) and `attribute` (whether the value is copied into
    element attributes).
    """

    def __init__(self):
        self._commands: Dict[str, Tuple[Callable, Dict[str, Dict]]] = {}

    def register(self, name: str, handler: Callable, params: Dict[str, Dict]):
        self._commands[name] = (handler, dict(params or {}))

    @classmethod
    def from_library(cls, library: Any, schemas: Dict[str, Dict]) -> 'CommandRegistry':
        """Registers every `_name` method of `library` that has a schema."""
        registry = cls()
        for attr, member in inspect.getmembers(library):
            if attr.startswith('_') and not attr.startswith('__') and callable(member):
                name = attr[1:].replace('_', '-')
                if name in schemas:
                    registry.register(name, member, schemas[name])
        return registry

    def has_command(self, name: str) -> bool:
        return name in self._commands

    def get_params(self, name: str) -> Dict[str, Dict]:
        return self._commands[name][1]

    def get_param_schema(self, name: str) -> Dict[str, int]:
        return {flag: int((spec or {}).get('values', 1)) for flag, spec in self.get_params(name).items()}

    def invoke(self, name: str, args: Dict[str, List[str]]) -> Optional[CommandResult]:
        handler, params = self._commands[name]
        return handler(args, params)

    def names(self) -> List[str]:
        return sorted(self._commands)


# ===================================================================
# Helpers
# ===================================================================

def parse_floats(values: List[str], count: int) -> Optional[List[float]]:
    """Parses exactly `count` finite floats, or returns None."""
    if values is None or len(values) < count:
        return None
    try:
        parsed = [float(v) for v in values[:count]]
    except (TypeError, ValueError):
        return None
    if not all(math.isfinite(v) for v in parsed):
        return None
    return parsed


def float_arg(args: Dict[str, List[str]], flag: str, default: float) -> float:
    parsed = parse_floats(args.get(flag), 1)
    return parsed[0] if parsed else default


def nearest_value(value: float, candidates: List[float]) -> float:
    return min(candidates, key=lambda c: abs(c - value))


def round_to_multiple(value: float, multiple: float) -> float:
    steps = value / multiple
    if not math.isfinite(steps):
        return value
    return round(steps) * multiple


def _num(value: float) -> str:
    # Trims float noise such as 0.30000000000000004.
    return to_text(round(value, 10))


def extract_attributes(args: Dict[str, List[str]], params: Dict[str, Dict]) -> Dict[str, str]:
    attributes = {}
    for flag, values in args.items():
        spec = params.get(flag) or {}
        if spec.get('attribute'):
            attributes[spec.get('name', flag)] = " ".join(values)
    return attributes


def derive_length(length: str, ratio: float) -> Optional[str]:
    """Scales a CSS length like `30em` by `ratio`, keeping its unit."""
    match = _LENGTH.match(length.strip())
    if not match:
        return None
    return _num(float(match.group(1)) * ratio) + match.group(2)


class GraphRange:
    """The visible coordinate window of a graph."""

    def __init__(self):
        self.xmin, self.ymin, self.xmax, self.ymax = -100.0, -100.0, 100.0, 100.0
        self.xrange = self.yrange = 200.0

    def update(self, values: Optional[List[str]] = None):
        parsed = parse_floats(values, 4)
        if parsed:
            self.xmin, self.ymin, self.xmax, self.ymax = parsed
        if self.xmin >= self.xmax:
            self.xmin, self.xmax = -100.0, 100.0
        if self.ymin >= self.ymax:
            self.ymin, self.ymax = -100.0, 100.0
        self.xrange = self.xmax - self.xmin
        self.yrange = self.ymax - self.ymin

    def bounds(self, args: Dict[str, List[str]]) -> Tuple[float, float, float, float]:
        """The `r` argument when it parses, otherwise the graph range."""
        parsed = parse_floats(args.get('r'), 4)
        if parsed:
            return tuple(parsed)
        return self.xmin, self.ymin, self.xmax, self.ymax


# ===================================================================
# Default command library
# ===================================================================

class CommandLib:
    """Python implementations of the default drawing commands.

    One instance holds the state of one graph: its range, the font-and-stroke
    scale and the ids of its arrow markers. Handlers are `_name(args, params)`
    methods and never raise on malformed values.
    """

    def __init__(self, options: Optional[Dict[str, Any]] = None):
        options = options or {}
        self.default_stroke_width = float(options.get('default_stroke_width', 1))
        self.default_font_size = float(options.get('default_font_size', 16))
        self.id_prefix = f"{options.get('id_prefix', 'cgraph')}_id_{next(_instance_ids)}_"
        self.arrow_start_id = self.id_prefix + "arrow_start"
        self.arrow_end_id = self.id_prefix + "arrow_end"
        self.graph_range = GraphRange()
        self.scale = 1.0

    def element(self, tag: str, attributes: Dict[str, Any]) -> Element:
        """Builds an element, applying the stroke scale to its stroke width."""
        attributes = {k: to_text(v) for k, v in attributes.items()}
        if 'stroke-width' in attributes:
            try:
                attributes['stroke-width'] = _num(float(attributes['stroke-width']) * self.scale)
            except ValueError:
                pass
        return Element(tag, attributes)

    def set_scale(self, value):
        parsed = parse_floats([value], 1)
        if parsed:
            self.scale = parsed[0]

    # --- Commands ---

    def _init(self, args, params):
        self.graph_range.update(args.get('r'))
        rng = self.graph_range

        attributes = extract_attributes(args, params)
        if 'width' not in attributes and 'height' not in attributes:
            attributes['width'] = "30em"
        if 'width' in attributes and 'height' not in attributes:
            height = derive_length(attributes['width'], rng.yrange / rng.xrange)
            if height is not None:
                attributes['height'] = height
        elif 'height' in attributes and 'width' not in attributes:
            width = derive_length(attributes['height'], rng.xrange / rng.yrange)
            if width is not None:
                attributes['width'] = width

        style = ""
        if 'bo' in args:
            border = " ".join(args['bo'])
            if _PLAIN_NUMBER.match(border):
                border += "px solid #00000033"
            style += f"border:{border};"
        if 'pad' in args:
            padding = " ".join(args['pad'])
            if _PLAIN_NUMBER.match(padding):
                padding += "px"
            style += f"padding:{padding};"
        if style:
            attributes['style'] = style

        self.scale = 1.0
        if 'fss' in args:
            self.set_scale(args['fss'][0])

        svg = dict(attributes)
        svg['class'] = 'cgraph-root'
        svg['viewBox'] = f"0 0 {_num(rng.xrange)} {_num(rng.yrange)}"
        svg['preserveAspectRatio'] = 'xMinYMin'

        group = {
            'stroke': "#000",
            'stroke-opacity': "1",
            'stroke-width': self.default_stroke_width,
            'font-size': self.default_font_size,
            'fill': "none",
            'transform': f"translate({_num(-rng.xmin)},{_num(rng.ymax)}) scale(1,-1)",
        }

        interface = SimpleNamespace(w=attributes.get('width'), h=attributes.get('height'), fss=self.scale)
        return CommandResult(
            command='init',
            elements=[Element('svg', {k: to_text(v) for k, v in svg.items()}), self.element('g', group)],
            name='init',
            script_interface=interface,
        )

    def _grid(self, args, params):
        xmin, ymin, xmax, ymax = self.graph_range.bounds(args)

        spacing = parse_floats(args.get('sp'), 2)
        if spacing and spacing[0] > 0 and spacing[1] > 0:
            xspacing, yspacing = spacing
        else:
            xspacing = nearest_value((xmax - xmin) / 10.0, DEFAULT_SPACINGS)
            yspacing = nearest_value((ymax - ymin) / 10.0, DEFAULT_SPACINGS)

        parts = []
        xstart = round_to_multiple(xmin, xspacing)
        for k in range(MAX_GRID_LINES):
            x = xstart + k * xspacing
            if x > xmax:
                break
            parts.append(f"M {_num(x)} {_num(ymin)} V {_num(ymax)}")
        ystart = round_to_multiple(ymin, yspacing)
        for k in range(MAX_GRID_LINES):
            y = ystart + k * yspacing
            if y > ymax:
                break
            parts.append(f"M {_num(xmin)} {_num(y)} H {_num(xmax)}")

        attributes = extract_attributes(args, params)
        attributes['d'] = " ".join(parts)
        if 'sw' not in args:
            attributes['stroke-width'] = "0.5"
        if 'so' not in args:
            attributes['stroke-opacity'] = "0.2"
        return CommandResult(command='grid', elements=[self.element('path', attributes)])

    def _axis(self, args, params):
        xmin, ymin, xmax, ymax = self.graph_range.bounds(args)

        attributes = extract_attributes(args, params)
        attributes['marker-start'] = f"url(#{self.arrow_start_id})"
        attributes['marker-end'] = f"url(#{self.arrow_end_id})"
        if 'sw' not in args:
            attributes['stroke-width'] = "1"
        if 'so' not in args:
            attributes['stroke-opacity'] = "0.6"

        x_axis = dict(attributes, d=f"M {_num(xmin)} 0 H {_num(xmax)}")
        y_axis = dict(attributes, d=f"M 0 {_num(ymin)} V {_num(ymax)}")
        return CommandResult(command='axis', elements=[self.element('path', x_axis), self.element('path', y_axis)])

    def _point(self, args, params):
        x, y = parse_floats(args.get('p'), 2) or (0.0, 0.0)

        attributes = extract_attributes(args, params)
        attributes['cx'] = x
        attributes['cy'] = y
        attributes.setdefault('stroke-width', 0)
        attributes.setdefault('fill', "#000")
        if 'r' in attributes:
            try:
                attributes['r'] = float(attributes['r']) * self.scale
            except ValueError:
                pass
        else:
            attributes['r'] = 3 * self.scale

        point = Point(x, y)
        name = args['id'][0] if args.get('id') else None
        return CommandResult(
            command='point',
            elements=[self.element('circle', attributes)],
            name=name,
            script_interface=SimpleNamespace(p=point),
        )
