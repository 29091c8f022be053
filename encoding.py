"""Symbol-level helpers shared by the lexer and the interpreter."""

from __future__ import annotations
from typing import List, Tuple

SPACE = " "
TAB = "\t"
LINE_FEED = "\n"

SYMBOLS = frozenset((SPACE, TAB, LINE_FEED))

_VISIBLE = {SPACE: "S", TAB: "T", LINE_FEED: "L"}


def strip_comments(text: str) -> Tuple[str, List[Tuple[int, int]]]:
    """Drop every non-whitespace character.

    Returns the filtered symbols together with the original (line, column)
    of each kept symbol, so errors can point back into the source file.
    """
    kept: List[str] = []
    positions: List[Tuple[int, int]] = []
    line, column = 1, 1
    for ch in text:
        if ch in SYMBOLS:
            kept.append(ch)
            positions.append((line, column))
        if ch == "\n":
            line += 1
            column = 1
        else:
            column += 1
    return "".join(kept), positions


def decode_number(run: str) -> int:
    if not run or run[0] not in (SPACE, TAB):
        raise ValueError(f"Malformed number run {render_symbols(run)!r}")
    digits = run[1:]
    value = 0
    for ch in digits:
        if ch == SPACE:
            value <<= 1
        elif ch == TAB:
            value = (value << 1) | 1
        else:
            raise ValueError(f"Malformed number run {render_symbols(run)!r}")
    return -value if run[0] == TAB else value


def encode_number(value: int) -> str:
    # Zero is written as a bare sign symbol.
    sign = TAB if value < 0 else SPACE
    magnitude = abs(value)
    if magnitude == 0:
        return sign
    bits = format(magnitude, "b")
    return sign + bits.replace("0", SPACE).replace("1", TAB)


def render_symbols(symbols: str, sep: str = "") -> str:
    return sep.join(_VISIBLE.get(ch, ch) for ch in symbols)
