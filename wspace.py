"""Whitespace interpreter entry point."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional, Tuple

from hooks import build_default_hooks
from interpreter import Interpreter, TracebackFormatter, WSRuntimeError
from lexer import Lexer, WSLexError


def _write_stderr(text: str) -> None:
    sys.stderr.write(text)
    sys.stderr.flush()


def _read_source(program: Optional[str], source_mode: bool) -> Tuple[str, str]:
    if source_mode:
        return program, "<string>"
    # Anything outside S/T/L is a comment, so undecodable bytes must not fail the read.
    if program is None or program == "-":
        return sys.stdin.buffer.read().decode("utf-8", errors="replace"), "<stdin>"
    with open(program, "r", encoding="utf-8", errors="replace", newline="") as handle:
        return handle.read(), program


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Whitespace interpreter")
    parser.add_argument("program", nargs="?", help="Source file path ('-' or omitted reads stdin), or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit stack, heap and step history in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--trace", action="store_true", help="Print each executed instruction to stderr")
    parser.add_argument("--max-steps", type=int, default=None, help="Abort after this many executed instructions")
    parser.add_argument("--history", type=int, default=16, help="Number of recent steps kept for tracebacks")
    args = parser.parse_args(argv)

    if args.source_mode and args.program is None:
        print("-source requires a program string", file=sys.stderr)
        return 1

    try:
        source_text, filename = _read_source(args.program, args.source_mode)
    except OSError as exc:
        print(f"Failed to read {args.program}: {exc}", file=sys.stderr)
        return 1

    try:
        instructions = Lexer(source_text, filename).tokenize()
    except WSLexError as error:
        print(f"LexError: {error}", file=sys.stderr)
        return 1

    hooks = build_default_hooks(trace_writer=_write_stderr if args.trace else None)
    interpreter = Interpreter(
        filename=filename,
        verbose=args.verbose,
        hooks=hooks,
        max_steps=args.max_steps,
        history=args.history,
    )
    try:
        interpreter.run(instructions)
    except WSRuntimeError as error:
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    return 0


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
