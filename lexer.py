from __future__ import annotations
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Pattern, Union

from encoding import LINE_FEED, SPACE, TAB, decode_number, render_symbols, strip_comments


class WSError(Exception):
    """Base class for interpreter errors."""


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


class WSLexError(WSError):
    """Raised when the symbol stream cannot be tokenized."""

    def __init__(
        self,
        message: str,
        *,
        position: int = 0,
        location: Optional[SourceLocation] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.position = position
        self.location = location

    def __str__(self) -> str:
        if self.location is None:
            return f"{self.message} (symbol {self.position})"
        loc = self.location
        return f"{self.message} at {loc.file}:{loc.line}:{loc.column}"


class InvalidGroup(WSLexError):
    pass


class InvalidOperation(WSLexError):
    def __init__(self, message: str, *, group: "InstructionGroup", **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.group = group


class InvalidParameter(WSLexError):
    pass


class InstructionGroup(Enum):
    STACK = "stack"
    ARITHMETIC = "arithmetic"
    HEAP = "heap"
    FLOW = "flow"
    IO = "io"


class Operation(Enum):
    PUSH = "push"
    DUPLICATE = "duplicate"
    DUPLICATE_N = "duplicate_n"
    SWAP = "swap"
    DISCARD = "discard"
    DISCARD_N = "discard_n"

    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"
    MOD = "mod"

    STORE = "store"
    RETRIEVE = "retrieve"

    LABEL = "label"
    CALL = "call"
    JUMP = "jump"
    JUMP_ZERO = "jump_zero"
    JUMP_NEGATIVE = "jump_negative"
    RETURN = "return"
    EXIT = "exit"

    PRINT_CHAR = "print_char"
    PRINT_NUM = "print_num"
    READ_CHAR = "read_char"
    READ_NUM = "read_num"


GROUPS: Dict[str, InstructionGroup] = {
    SPACE: InstructionGroup.STACK,
    TAB + SPACE: InstructionGroup.ARITHMETIC,
    TAB + TAB: InstructionGroup.HEAP,
    LINE_FEED: InstructionGroup.FLOW,
    TAB + LINE_FEED: InstructionGroup.IO,
}

OPERATIONS: Dict[InstructionGroup, Dict[str, Operation]] = {
    InstructionGroup.STACK: {
        SPACE: Operation.PUSH,
        LINE_FEED + SPACE: Operation.DUPLICATE,
        TAB + SPACE: Operation.DUPLICATE_N,
        LINE_FEED + TAB: Operation.SWAP,
        LINE_FEED + LINE_FEED: Operation.DISCARD,
        TAB + LINE_FEED: Operation.DISCARD_N,
    },
    InstructionGroup.ARITHMETIC: {
        SPACE + SPACE: Operation.ADD,
        SPACE + TAB: Operation.SUB,
        SPACE + LINE_FEED: Operation.MUL,
        TAB + SPACE: Operation.DIV,
        TAB + TAB: Operation.MOD,
    },
    InstructionGroup.HEAP: {
        SPACE: Operation.STORE,
        TAB: Operation.RETRIEVE,
    },
    InstructionGroup.FLOW: {
        SPACE + SPACE: Operation.LABEL,
        SPACE + TAB: Operation.CALL,
        SPACE + LINE_FEED: Operation.JUMP,
        TAB + SPACE: Operation.JUMP_ZERO,
        TAB + TAB: Operation.JUMP_NEGATIVE,
        TAB + LINE_FEED: Operation.RETURN,
        LINE_FEED + LINE_FEED: Operation.EXIT,
    },
    InstructionGroup.IO: {
        SPACE + SPACE: Operation.PRINT_CHAR,
        SPACE + TAB: Operation.PRINT_NUM,
        TAB + SPACE: Operation.READ_CHAR,
        TAB + TAB: Operation.READ_NUM,
    },
}

NUMBER_OPERATIONS = frozenset({Operation.PUSH, Operation.DUPLICATE_N, Operation.DISCARD_N})
LABEL_OPERATIONS = frozenset(
    {Operation.LABEL, Operation.CALL, Operation.JUMP, Operation.JUMP_ZERO, Operation.JUMP_NEGATIVE}
)

Parameter = Union[int, str, None]


@dataclass(frozen=True)
class Instruction:
    group: InstructionGroup
    operation: Operation
    parameter: Parameter = None
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)

    def render(self) -> str:
        text = f"{self.group.value} {self.operation.value}"
        if self.operation in NUMBER_OPERATIONS:
            text += f" {self.parameter}"
        elif self.operation in LABEL_OPERATIONS:
            text += f" {render_symbols(str(self.parameter))}"
        return text


def _alternation(codes) -> Pattern[str]:
    # The code tables are prefix-free, so alternation order never matters.
    return re.compile("|".join(re.escape(code) for code in codes))


_GROUP_PATTERN = _alternation(GROUPS)
_OPERATION_PATTERNS = {group: _alternation(table) for group, table in OPERATIONS.items()}
_PARAMETER_PATTERN = re.compile(r"[ \t]+\n")


class Scanner:
    def __init__(self, symbols: str) -> None:
        self.symbols = symbols
        self.position = 0

    def match(self, pattern: Pattern[str]) -> Optional[str]:
        m = pattern.match(self.symbols, self.position)
        if m is None:
            return None
        self.position = m.end()
        return m.group(0)

    def at_end(self) -> bool:
        return self.position >= len(self.symbols)

    def peek(self, count: int = 4) -> str:
        return self.symbols[self.position:self.position + count]


class Lexer:
    def __init__(self, text: str, filename: str = "<string>") -> None:
        self.text = text
        self.filename = filename
        self.symbols, self._positions = strip_comments(text)

    def tokenize(self) -> List[Instruction]:
        instructions: List[Instruction] = []
        append = instructions.append
        scanner = Scanner(self.symbols)

        while not scanner.at_end():
            start = scanner.position
            group = self._match_group(scanner)
            operation = self._match_operation(scanner, group)
            parameter = self._match_parameter(scanner, operation)
            append(Instruction(group, operation, parameter, self._location(start)))
        return instructions

    def _match_group(self, scanner: Scanner) -> InstructionGroup:
        start = scanner.position
        code = scanner.match(_GROUP_PATTERN)
        if code is None:
            raise InvalidGroup(
                f"Invalid instruction group {render_symbols(scanner.peek(2), ' ')!r}",
                position=start,
                location=self._location(start),
            )
        return GROUPS[code]

    def _match_operation(self, scanner: Scanner, group: InstructionGroup) -> Operation:
        start = scanner.position
        code = scanner.match(_OPERATION_PATTERNS[group])
        if code is None:
            found = render_symbols(scanner.peek(2), " ") or "end of input"
            raise InvalidOperation(
                f"Invalid {group.value} operation {found!r}",
                group=group,
                position=start,
                location=self._location(start),
            )
        return OPERATIONS[group][code]

    def _match_parameter(self, scanner: Scanner, operation: Operation) -> Parameter:
        if operation not in NUMBER_OPERATIONS and operation not in LABEL_OPERATIONS:
            return None
        start = scanner.position
        run = scanner.match(_PARAMETER_PATTERN)
        if run is None:
            raise InvalidParameter(
                f"Invalid parameter for {operation.value}: expected sign and digits terminated by L",
                position=start,
                location=self._location(start),
            )
        run = run[:-1]
        if operation in LABEL_OPERATIONS:
            return run
        return decode_number(run)

    def _location(self, position: int) -> SourceLocation:
        if position < len(self._positions):
            line, column = self._positions[position]
        elif self._positions:
            line, column = self._positions[-1]
        else:
            line, column = 1, 1
        statement = render_symbols(self.symbols[position:position + 8], " ")
        return SourceLocation(self.filename, line, column, statement)


def tokenize(text: str, filename: str = "<string>") -> List[Instruction]:
    return Lexer(text, filename).tokenize()
