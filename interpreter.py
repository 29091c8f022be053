from __future__ import annotations
import json
import sys
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, TextIO, Tuple

from encoding import render_symbols
from hooks import HookRegistry, StepContext
from lexer import (
    Instruction,
    InstructionGroup,
    Operation,
    SourceLocation,
    WSError,
)


class WSRuntimeError(WSError):
    """Raised for runtime faults."""

    def __init__(
        self,
        message: str,
        *,
        instruction: Optional[Instruction] = None,
        pc: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.instruction = instruction
        self.pc = pc
        self.step_index: Optional[int] = None

    @property
    def rule(self) -> str:
        if self.instruction is None:
            return "runtime"
        return f"{self.instruction.group.value}.{self.instruction.operation.value}"

    def __str__(self) -> str:
        if self.instruction is None or self.pc is None:
            return self.message
        return f"{self.message} (pc {self.pc}: {self.instruction.render()})"


class EmptyStack(WSRuntimeError):
    pass


class IndexOutOfRange(WSRuntimeError):
    pass


class DivisionByZero(WSRuntimeError):
    pass


class UndefinedHeapAddress(WSRuntimeError):
    pass


class UndefinedLabel(WSRuntimeError):
    pass


class CallStackUnderflow(WSRuntimeError):
    pass


class InvalidNumberInput(WSRuntimeError):
    pass


class InvalidCharacter(WSRuntimeError):
    pass


class EndOfInput(WSRuntimeError):
    pass


class StepLimitExceeded(WSRuntimeError):
    pass


@dataclass
class StateEntry:
    step_index: int
    pc: int
    instruction: Instruction


class StateLogger:
    def __init__(self, verbose: bool, history: int = 16) -> None:
        self.verbose = verbose
        # Only the tail is kept; programs may loop for millions of steps.
        self.entries: Deque[StateEntry] = deque(maxlen=max(1, history))
        self.next_step_index = 0

    def record(self, *, pc: int, instruction: Instruction) -> StateEntry:
        entry = StateEntry(step_index=self.next_step_index, pc=pc, instruction=instruction)
        self.entries.append(entry)
        self.next_step_index += 1
        return entry

    @property
    def steps(self) -> int:
        return self.next_step_index


def _write_stdout(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


class Interpreter:
    def __init__(
        self,
        *,
        filename: str = "<string>",
        verbose: bool = False,
        hooks: Optional[HookRegistry] = None,
        input_stream: Optional[TextIO] = None,
        output_sink: Optional[Callable[[str], None]] = None,
        max_steps: Optional[int] = None,
        history: int = 16,
    ) -> None:
        self.filename = filename
        self.verbose = verbose
        self.hooks = hooks or HookRegistry()
        self.input_stream = input_stream if input_stream is not None else sys.stdin
        self.output_sink = output_sink or _write_stdout
        self.max_steps = max_steps
        self.history = history

        self.instructions: Sequence[Instruction] = ()
        self.stack: List[int] = []
        self.heap: Dict[int, int] = {}
        self.call_stack: List[int] = []
        self.pc = 0
        self.labels: Dict[str, int] = {}
        self._labels_scanned = False
        self.halted = False
        self.logger = StateLogger(verbose=verbose, history=history)

        self._handlers: Dict[InstructionGroup, Callable[[Instruction], None]] = {
            InstructionGroup.STACK: self._execute_stack,
            InstructionGroup.ARITHMETIC: self._execute_arithmetic,
            InstructionGroup.HEAP: self._execute_heap,
            InstructionGroup.FLOW: self._execute_flow,
            InstructionGroup.IO: self._execute_io,
        }

    def _reset(self, instructions: Sequence[Instruction]) -> None:
        self.instructions = tuple(instructions)
        self.stack = []
        self.heap = {}
        self.call_stack = []
        self.pc = 0
        self.labels = {}
        self._labels_scanned = False
        self.halted = False
        self.logger = StateLogger(verbose=self.verbose, history=self.history)

    def run(self, instructions: Sequence[Instruction]) -> None:
        self._reset(instructions)
        self.hooks.emit("program_start", self, self.instructions)
        try:
            self._execute()
        except WSRuntimeError as error:
            self.hooks.emit("on_error", self, error)
            raise
        self.hooks.emit("program_end", self)

    def _execute(self) -> None:
        instructions = self.instructions
        count = len(instructions)
        handlers = self._handlers
        record = self.logger.record
        max_steps = self.max_steps
        stepping = self.hooks.has_step_rules()

        # Running off the end of the program is an implicit halt.
        while not self.halted and self.pc < count:
            index = self.pc
            instruction = instructions[index]
            if max_steps is not None and self.logger.steps >= max_steps:
                error = StepLimitExceeded(
                    f"Step limit of {max_steps} instructions exceeded",
                    instruction=instruction,
                    pc=index,
                )
                error.step_index = self.logger.steps
                raise error
            self.pc = index + 1
            entry = record(pc=index, instruction=instruction)
            try:
                handlers[instruction.group](instruction)
            except WSRuntimeError as error:
                if error.instruction is None:
                    error.instruction = instruction
                    error.pc = index
                error.step_index = entry.step_index
                raise
            except Exception as exc:
                # Surface Python-level faults as interpreter errors so the
                # CLI can format them with a whitespace traceback.
                wrapped = WSRuntimeError(
                    f"Internal interpreter error: {exc}", instruction=instruction, pc=index
                )
                wrapped.step_index = entry.step_index
                raise wrapped from exc
            if stepping:
                self._after_step(entry)

    def _after_step(self, entry: StateEntry) -> None:
        instruction = entry.instruction
        ctx = StepContext(
            step_index=entry.step_index,
            pc=entry.pc,
            rule=f"{instruction.group.value}.{instruction.operation.value}",
            instruction=instruction,
            location=instruction.location,
        )
        try:
            self.hooks.after_step(self, ctx)
        except WSRuntimeError:
            raise
        except Exception as exc:
            raise WSRuntimeError(
                f"Step hook failed: {exc}", instruction=instruction, pc=entry.pc
            ) from exc

    # Stack helpers
    def _pop(self, instruction: Instruction) -> int:
        if not self.stack:
            raise EmptyStack(f"{instruction.operation.value} on empty stack")
        return self.stack.pop()

    def _pop_operands(self, instruction: Instruction) -> Tuple[int, int]:
        if len(self.stack) < 2:
            raise EmptyStack(f"{instruction.operation.value} requires two operands")
        right, left = self.stack.pop(), self.stack.pop()
        return left, right

    def _execute_stack(self, instruction: Instruction) -> None:
        op = instruction.operation
        stack = self.stack
        if op is Operation.PUSH:
            stack.append(instruction.parameter)
        elif op is Operation.DUPLICATE:
            if not stack:
                raise EmptyStack("duplicate on empty stack")
            stack.append(stack[-1])
        elif op is Operation.DUPLICATE_N:
            depth = instruction.parameter
            if not stack:
                raise EmptyStack("duplicate_n on empty stack")
            if depth < 0 or depth >= len(stack):
                raise IndexOutOfRange(
                    f"duplicate_n {depth} outside stack of depth {len(stack)}"
                )
            stack.append(stack[-1 - depth])
        elif op is Operation.SWAP:
            if len(stack) < 2:
                raise EmptyStack("swap requires two values")
            stack[-1], stack[-2] = stack[-2], stack[-1]
        elif op is Operation.DISCARD:
            self._pop(instruction)
        elif op is Operation.DISCARD_N:
            count = instruction.parameter
            if not stack:
                raise EmptyStack("discard_n on empty stack")
            if count < 0 or count > len(stack) - 1:
                raise IndexOutOfRange(
                    f"discard_n {count} needs {count + 1} values, stack has {len(stack)}"
                )
            if count:
                del stack[-1 - count:-1]
        else:
            raise WSRuntimeError(f"Operation {op.value} is not a stack operation")

    def _execute_arithmetic(self, instruction: Instruction) -> None:
        op = instruction.operation
        left, right = self._pop_operands(instruction)
        if op is Operation.ADD:
            result = left + right
        elif op is Operation.SUB:
            result = left - right
        elif op is Operation.MUL:
            result = left * right
        elif op is Operation.DIV or op is Operation.MOD:
            if right == 0:
                # Leave the operands in place for the traceback snapshot.
                self.stack.extend((left, right))
                raise DivisionByZero(f"{op.value} by zero")
            # Floor division; the remainder takes the sign of the divisor.
            result = left // right if op is Operation.DIV else left % right
        else:
            self.stack.extend((left, right))
            raise WSRuntimeError(f"Operation {op.value} is not an arithmetic operation")
        self.stack.append(result)

    def _execute_heap(self, instruction: Instruction) -> None:
        op = instruction.operation
        if op is Operation.STORE:
            address, value = self._pop_operands(instruction)
            self.heap[address] = value
        elif op is Operation.RETRIEVE:
            address = self._pop(instruction)
            if address not in self.heap:
                raise UndefinedHeapAddress(f"Heap address {address} was never stored")
            self.stack.append(self.heap[address])
        else:
            raise WSRuntimeError(f"Operation {op.value} is not a heap operation")

    def _execute_flow(self, instruction: Instruction) -> None:
        op = instruction.operation
        if op is Operation.LABEL:
            self.labels.setdefault(instruction.parameter, self.pc - 1)
        elif op is Operation.CALL:
            target = self._resolve(instruction.parameter)
            self.call_stack.append(self.pc)
            self.pc = target
        elif op is Operation.JUMP:
            self.pc = self._resolve(instruction.parameter)
        elif op is Operation.JUMP_ZERO:
            if self._pop(instruction) == 0:
                self.pc = self._resolve(instruction.parameter)
        elif op is Operation.JUMP_NEGATIVE:
            if self._pop(instruction) < 0:
                self.pc = self._resolve(instruction.parameter)
        elif op is Operation.RETURN:
            if not self.call_stack:
                raise CallStackUnderflow("return outside of a subroutine")
            self.pc = self.call_stack.pop()
        elif op is Operation.EXIT:
            self.halted = True
        else:
            raise WSRuntimeError(f"Operation {op.value} is not a flow operation")

    def _execute_io(self, instruction: Instruction) -> None:
        op = instruction.operation
        if op is Operation.PRINT_CHAR:
            value = self._pop(instruction)
            try:
                text = chr(value)
            except (ValueError, OverflowError):
                raise InvalidCharacter(f"{value} is not a valid code point") from None
            if 0xD800 <= value <= 0xDFFF:
                raise InvalidCharacter(f"{value} is a surrogate, not a printable code point")
            self.output_sink(text)
        elif op is Operation.PRINT_NUM:
            self.output_sink(str(self._pop(instruction)))
        elif op is Operation.READ_CHAR:
            ch = self.input_stream.read(1)
            if ch == "":
                raise EndOfInput("read_char at end of input")
            self.stack.append(ord(ch))
        elif op is Operation.READ_NUM:
            line = self.input_stream.readline()
            if line == "":
                raise EndOfInput("read_num at end of input")
            try:
                value = int(line.strip())
            except ValueError:
                raise InvalidNumberInput(f"Cannot parse {line.rstrip()!r} as an integer") from None
            self.stack.append(value)
        else:
            raise WSRuntimeError(f"Operation {op.value} is not an io operation")

    def _resolve(self, label: str) -> int:
        target = self.labels.get(label)
        if target is None and not self._labels_scanned:
            self._scan_labels()
            target = self.labels.get(label)
        if target is None:
            raise UndefinedLabel(f"Undefined label {render_symbols(label) or '<empty>'}")
        return target

    def _scan_labels(self) -> None:
        for index, instruction in enumerate(self.instructions):
            if instruction.operation is Operation.LABEL:
                self.labels.setdefault(instruction.parameter, index)
        self._labels_scanned = True

    def snapshot(self) -> Dict[str, Any]:
        return {
            "stack": list(self.stack),
            "heap": dict(sorted(self.heap.items())),
            "call_stack": list(self.call_stack),
            "pc": self.pc,
        }


@dataclass
class TracebackFrame:
    name: str
    pc: Optional[int]
    instruction: Optional[Instruction]

    @property
    def location(self) -> Optional[SourceLocation]:
        return self.instruction.location if self.instruction is not None else None


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self, error: WSRuntimeError) -> List[TracebackFrame]:
        instructions = self.interpreter.instructions
        # Each return address sits right after the call that pushed it.
        sites = [address - 1 for address in self.interpreter.call_stack]
        names = ["<top-level>"]
        for site in sites:
            names.append(f"call {render_symbols(str(instructions[site].parameter))}")
        points: List[Optional[int]] = list(sites) + [error.pc]
        frames: List[TracebackFrame] = []
        for name, pc in zip(names, points):
            instruction = instructions[pc] if pc is not None and 0 <= pc < len(instructions) else None
            frames.append(TracebackFrame(name=name, pc=pc, instruction=instruction))
        return frames

    def format_text(self, error: WSRuntimeError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        for frame in self.build_frames(error):
            where = f"pc {frame.pc}" if frame.pc is not None else "pc ?"
            loc = frame.location
            if loc is not None:
                lines.append(f"  File \"{loc.file}\", line {loc.line}, column {loc.column}, {where}, in {frame.name}")
            else:
                lines.append(f"  File \"{self.interpreter.filename}\", {where}, in {frame.name}")
            if frame.instruction is not None:
                lines.append(f"    {frame.instruction.render()}")
        if verbose:
            snap = self.interpreter.snapshot()
            lines.append(f"  Stack (top last): {snap['stack']}")
            heap = ", ".join(f"{k}={v}" for k, v in snap["heap"].items())
            lines.append(f"  Heap: {{{heap}}}")
            lines.append(f"  Call stack: {snap['call_stack']}")
            lines.append("  Recent steps:")
            for entry in self.interpreter.logger.entries:
                lines.append(f"    #{entry.step_index} pc {entry.pc}: {entry.instruction.render()}")
        lines.append(f"{error.__class__.__name__}: {error.message} (rule: {error.rule})")
        return "\n".join(lines)

    def to_json(self, error: WSRuntimeError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames(error)):
            entry: Dict[str, Any] = {"frame_index": index, "name": frame.name, "pc": frame.pc}
            if frame.location is not None:
                entry["source_location"] = {
                    "file": frame.location.file,
                    "line": frame.location.line,
                    "column": frame.location.column,
                }
            if frame.instruction is not None:
                entry["instruction"] = frame.instruction.render()
            frames_json.append(entry)
        snap = self.interpreter.snapshot()
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "rule": error.rule,
                "failing_step_index": error.step_index,
            },
            "traceback": frames_json,
            "state": {
                "stack": snap["stack"],
                "heap": {str(k): v for k, v in snap["heap"].items()},
                "call_stack": snap["call_stack"],
            },
            "recent_steps": [
                {"step_index": e.step_index, "pc": e.pc, "instruction": e.instruction.render()}
                for e in self.interpreter.logger.entries
            ],
        }
        return json.dumps(data, indent=2)
