from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple


class HookError(Exception):
    pass


@dataclass(frozen=True)
class StepContext:
    step_index: int
    pc: int
    rule: str
    instruction: Any  # lexer.Instruction
    location: Any  # SourceLocation | None


StepHandler = Callable[[Any, StepContext], None]


@dataclass
class HookRegistry:
    # event -> list[(priority, handler, owner)]
    _events: Dict[str, List[Tuple[int, Callable[..., None], str]]] = field(default_factory=dict)
    # list[(every_n, handler, owner, name)]
    _step_rules: List[Tuple[int, StepHandler, str, str]] = field(default_factory=list)

    def on_event(self, event: str, handler: Callable[..., None], *, priority: int = 0, owner: str = "") -> None:
        self._events.setdefault(event, []).append((priority, handler, owner))
        self._events[event].sort(key=lambda t: t[0], reverse=True)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        for _priority, handler, _owner in self._events.get(event, []):
            handler(*args, **kwargs)

    def add_step_rule(self, *, name: str, every_n: int, handler: StepHandler, owner: str = "") -> None:
        if every_n <= 0:
            raise HookError("every_n must be >= 1")
        self._step_rules.append((every_n, handler, owner, name))

    def has_step_rules(self) -> bool:
        return bool(self._step_rules)

    def after_step(self, interpreter: Any, ctx: StepContext) -> None:
        for every_n, handler, _owner, _name in self._step_rules:
            if ctx.step_index % every_n == 0:
                handler(interpreter, ctx)


def trace_rule(write: Callable[[str], None]) -> StepHandler:
    """Build a step rule printing one line per executed instruction."""

    def _trace(_interpreter: Any, ctx: StepContext) -> None:
        write(f"{ctx.pc:>5} {ctx.instruction.render()}\n")

    return _trace


def build_default_hooks(trace_writer: Optional[Callable[[str], None]] = None) -> HookRegistry:
    hooks = HookRegistry()
    if trace_writer is not None:
        hooks.add_step_rule(name="trace", every_n=1, handler=trace_rule(trace_writer), owner="cli")
    return hooks
