import sys
from pathlib import Path

from cgraph.cgraph_runtime import ConversionRunner
from cgraph.cgraph_printer import Printer
from cgraph.cgraph_serialize import serialize

FORMATS = ('text', 'json', 'yaml', 'toml', 'xml')
USAGE = "usage: cgraph.py [FILE|-] [--format=text|json|yaml|toml|xml] [--config=PATH]"


def parse_args(argv):
    """Returns (source, format, config_path); exits on a bad option."""
    source, fmt, config = '-', 'text', None
    for arg in argv:
        if arg in ('-h', '--help'):
            print(USAGE)
            raise SystemExit(0)
        if arg.startswith('--format='):
            fmt = arg.split('=', 1)[1].lower()
            if fmt not in FORMATS:
                print(f"Error: unknown format: {fmt}\n{USAGE}", file=sys.stderr)
                raise SystemExit(1)
        elif arg.startswith('--config='):
            config = arg.split('=', 1)[1]
        elif arg == '-' or not arg.startswith('-'):
            source = arg
        else:
            print(f"Error: unknown option: {arg}\n{USAGE}", file=sys.stderr)
            raise SystemExit(1)
    return source, fmt, config


def read_source(source: str) -> str:
    if source == '-':
        return sys.stdin.read()
    try:
        return Path(source).read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {source}", file=sys.stderr)
        raise SystemExit(1)


def convert(text: str, fmt: str, config=None):
    """Convert a document and print the resolved commands; exit 1 on error."""
    try:
        runner = ConversionRunner(config_path=config)
    except (OSError, ValueError) as e:
        print(f"Error: bad configuration: {e}", file=sys.stderr)
        raise SystemExit(1)

    result = runner.handle_source(text)
    # Diagnostics go to stderr
    for effect in result.side_effects:
        if 'stderr' in (effect.get('topics') or []):
            print(effect.get('message', ''), file=sys.stderr)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        raise SystemExit(1)

    if fmt == 'text':
        if result.value:
            print(Printer().pformat(result.value))
    else:
        print(serialize({"commands": result.value}, fmt=fmt))


def main(argv=None):
    source, fmt, config = parse_args(sys.argv[1:] if argv is None else argv)
    convert(read_source(source), fmt, config)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nExiting.")
