from __future__ import annotations
import json
import random
import re
import sys
from collections import deque
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Deque, Dict, List, Optional, Tuple, Union

from commands import DIGITS, BefError, Command, Op, decode, encode
from extensions import HookRegistry, RuntimeServices, StepContext
from playfield import (
    PLAYFIELD_COLS,
    PLAYFIELD_ROWS,
    Direction,
    Playfield,
    ProgramCounter,
    Stack,
    wrap_i64,
)


I64_MIN = -(1 << 63)
I64_MAX = (1 << 63) - 1

_INT_LITERAL = re.compile(r"[+-]?[0-9]+")

# Order matters for seeded reproducibility of '?'.
_RAND_DIRECTIONS = (Direction.UP, Direction.DOWN, Direction.LEFT, Direction.RIGHT)


class BefRuntimeError(BefError):
    """Raised for runtime faults."""

    def __init__(
        self,
        message: str,
        *,
        rule: Optional[str] = None,
        position: Optional[Tuple[int, int]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.rule = rule
        self.position = position
        self.step_index: Optional[int] = None

    def __str__(self) -> str:
        if self.position is None:
            return self.message
        x, y = self.position
        return f"{self.message} (at ProgramCounter {{ x: {x}, y: {y} }})"


class BefIOError(BefRuntimeError):
    """Loading the playfield or reading program input failed."""


class BefInputError(BefRuntimeError):
    def __init__(self, text: str) -> None:
        super().__init__(f"Parsing '{text}' into a number", rule=Op.IN_I.value)
        self.text = text


class BefCoordinateError(BefRuntimeError):
    def __init__(self, command: str, axis: str, value: int) -> None:
        super().__init__(f"Invalid {axis} coordinate for {command} command: {value}", rule=command)
        self.command = command
        self.axis = axis
        self.value = value


class BefValueError(BefRuntimeError):
    def __init__(self, value: int) -> None:
        super().__init__(f"Failed to convert {value} into u8", rule=Op.PUT.value)
        self.value = value


class BefArithmeticError(BefRuntimeError):
    pass


class BefLiteralError(BefRuntimeError):
    pass


def _trunc_div(x: int, y: int) -> int:
    # Quotient rounds toward zero, as fixed-width integer division does.
    q = abs(x) // abs(y)
    return q if (x < 0) == (y < 0) else -q


def _trunc_mod(x: int, y: int) -> int:
    # Remainder takes the sign of the dividend.
    return x - y * _trunc_div(x, y)


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    rule: str
    position: Optional[Tuple[int, int]]
    glyph: Optional[str]
    direction: Optional[str]
    string_mode: bool
    stack_depth: int
    stack: Optional[List[int]]


class StateLogger:
    def __init__(self, verbose: bool, history: Optional[int] = 256) -> None:
        self.verbose = verbose
        self.entries: Deque[StateEntry] = deque(maxlen=history)
        self.next_state_index = 0
        self.last_state_id = "seed"

    def record(
        self,
        *,
        rule: str,
        position: Optional[Tuple[int, int]],
        glyph: Optional[str],
        direction: Optional[Direction],
        string_mode: bool,
        stack: Stack,
    ) -> StateEntry:
        step_index = self.next_state_index
        state_id = f"s_{step_index:06d}"
        entry = StateEntry(
            step_index=step_index,
            state_id=state_id,
            rule=rule,
            position=position,
            glyph=glyph,
            direction=direction.name if direction is not None else None,
            string_mode=string_mode,
            stack_depth=len(stack),
            stack=stack.to_list() if self.verbose else None,
        )
        self.entries.append(entry)
        self.last_state_id = state_id
        self.next_state_index += 1
        return entry

    def reset(self) -> None:
        self.entries.clear()
        self.next_state_index = 0
        self.last_state_id = "seed"

    def tail(self, count: int) -> List[StateEntry]:
        if count <= 0:
            return []
        return list(self.entries)[-count:]


ContinueFn = Callable[["Interpreter", int], bool]
Source = Union[bytes, bytearray, memoryview, str, BinaryIO]


class Interpreter:
    def __init__(
        self,
        *,
        input_stream: Optional[BinaryIO] = None,
        seed: Optional[int] = None,
        verbose: bool = False,
        services: Optional[RuntimeServices] = None,
        history: Optional[int] = 256,
    ) -> None:
        # The playfield acts as both code and data storage.
        self.playfield = Playfield()
        self.pc = ProgramCounter()
        self.direction = Direction.RIGHT
        self.stack = Stack()
        self.string_mode = False
        self.rng = random.Random(seed)
        self._output = ""
        self.input_stream = input_stream
        self.verbose = verbose
        self.services = services or RuntimeServices()
        self.hook_registry: HookRegistry = self.services.hook_registry
        self.logger = StateLogger(verbose=verbose, history=history)
        self.io_log: List[Dict[str, Any]] = []
        self.steps = 0
        self._seed_log()

        self._dispatch: Dict[Op, Callable[[Command], None]] = {
            Op.ADD: lambda _: self._binop(lambda x, y: x + y),
            Op.SUB: lambda _: self._binop(lambda x, y: x - y),
            Op.MUL: lambda _: self._binop(lambda x, y: x * y),
            Op.DIV: self._div,
            Op.MOD: self._mod,
            Op.NOT: self._not,
            Op.GT: lambda _: self._binop(lambda x, y: 1 if x > y else 0),
            Op.RIGHT: lambda _: self._turn(Direction.RIGHT),
            Op.LEFT: lambda _: self._turn(Direction.LEFT),
            Op.UP: lambda _: self._turn(Direction.UP),
            Op.DOWN: lambda _: self._turn(Direction.DOWN),
            Op.RAND: self._rand,
            Op.IF_H: self._if_h,
            Op.IF_V: self._if_v,
            Op.STR: self._toggle_string_mode,
            Op.DUP: lambda _: self.stack.push(self.stack.peek()),
            Op.SWAP: self._swap,
            Op.POP: lambda _: self.stack.pop(),
            Op.OUT_I: self._out_int,
            Op.OUT_C: self._out_char,
            Op.BRI: lambda _: self._advance_pc(),
            Op.GET: self._get,
            Op.PUT: self._put,
            Op.IN_I: self._in_int,
            Op.IN_C: self._in_char,
            Op.SPACE: lambda _: None,
            Op.NUM: lambda cmd: self.stack.push(int(cmd.arg)),  # type: ignore[arg-type]
            Op.CHAR: self._char_literal,
        }

    # ---- loading ----

    @staticmethod
    def _encode_text(text: str) -> bytes:
        # One character per cell; the playfield holds latin-1 bytes.
        try:
            return text.encode("latin-1")
        except UnicodeEncodeError as exc:
            raise BefIOError(
                f"Failed to load program: character {text[exc.start]!r} does not fit in a playfield cell",
                rule="load",
            ) from exc

    def load(self, source: Source) -> None:
        """Lay ``source`` out onto the playfield, row by row.

        Text sources are encoded latin-1. Cells not covered by the source
        keep their previous contents.
        """
        if isinstance(source, str):
            data = self._encode_text(source)
        elif isinstance(source, (bytes, bytearray, memoryview)):
            data = bytes(source)
        else:
            try:
                data = source.read()
            except OSError as exc:
                raise BefIOError(f"Failed to load program: {exc}", rule="load") from exc
            if isinstance(data, str):
                data = self._encode_text(data)
        self.playfield.load(data)

    def load_file(self, path: str) -> None:
        try:
            with open(path, "rb") as handle:
                self.load(handle)
        except OSError as exc:
            raise BefIOError(f"Failed to open '{path}': {exc}", rule="load") from exc

    # ---- inspection ----

    @property
    def output(self) -> str:
        return self._output

    @property
    def position(self) -> Tuple[int, int]:
        return self.pc.as_tuple()

    @property
    def current_command(self) -> Command:
        return self.playfield.get(self.pc.x, self.pc.y)

    def get_stack(self) -> Stack:
        return self.stack.copy()

    def render(self, *, color: bool = False) -> str:
        return self.playfield.render(self.pc, color=color)

    def __str__(self) -> str:
        return self.render()

    # ---- execution ----

    def step(self) -> bool:
        """Execute the command under the program counter.

        Returns False when ``@`` was reached, True otherwise.
        """
        cmd = self.current_command

        if self.string_mode:
            if cmd.op is Op.STR:
                self.string_mode = False
            else:
                self.stack.push(encode(cmd))
            self._advance_pc()
            return True

        if cmd.op is Op.END:
            return False

        self._dispatch[cmd.op](cmd)
        self._advance_pc()
        return True

    def run(self, should_continue: Optional[ContinueFn] = None, *, max_steps: Optional[int] = None) -> int:
        """Run from the origin until ``@``, a false ``should_continue``, or ``max_steps``.

        ``should_continue(interpreter, n)`` is called after every completed
        non-terminal step with the 1-based step count. Returns the number of
        steps executed.
        """
        self.reset()
        self._emit_event("program_start", self)
        hooks = self.hook_registry
        step_index = 0
        try:
            while max_steps is None or self.steps < max_steps:
                step_index = self.steps + 1
                if hooks.has_handlers("before_step"):
                    self._emit_event("before_step", self, step_index)
                position = self.pc.as_tuple()
                glyph = self.current_command.as_char()
                if not self.step():
                    break
                self.steps = step_index
                self._log_step(position=position, glyph=glyph)
                if should_continue is not None and not should_continue(self, self.steps):
                    break
        except BefRuntimeError as error:
            if error.position is None:
                error.position = self.pc.as_tuple()
            error.step_index = step_index
            self._emit_event("on_error", self, error)
            raise
        except BefError:
            raise
        except Exception as exc:
            # Convert unexpected Python-level exceptions so callers can format
            # them with a Befunge traceback.
            wrapped = BefRuntimeError(
                f"Internal interpreter error: {exc}",
                rule="internal",
                position=self.pc.as_tuple(),
            )
            wrapped.step_index = step_index
            self._emit_event("on_error", self, wrapped)
            raise wrapped from exc
        self._emit_event("program_end", self, self.steps)
        return self.steps

    def reset(self) -> None:
        """Return to the origin with an empty stack and output. The playfield is kept."""
        self.pc.reset()
        self.stack.reset()
        self._output = ""
        self.direction = Direction.RIGHT
        self.string_mode = False
        self.steps = 0
        self.io_log.clear()
        self.logger.reset()
        self._seed_log()

    def _advance_pc(self) -> None:
        self.pc.advance(self.direction)

    # ---- command implementations ----

    def _binop(self, fn: Callable[[int, int], int]) -> None:
        y = self.stack.pop()
        x = self.stack.pop()
        self.stack.push(fn(x, y))

    def _div(self, cmd: Command) -> None:
        y = self.stack.pop()
        x = self.stack.pop()
        if y == 0:
            raise BefArithmeticError("Division by zero", rule=cmd.as_char())
        self.stack.push(wrap_i64(_trunc_div(x, y)))

    def _mod(self, cmd: Command) -> None:
        y = self.stack.pop()
        x = self.stack.pop()
        if y == 0:
            raise BefArithmeticError("Modulo by zero", rule=cmd.as_char())
        self.stack.push(_trunc_mod(x, y))

    def _not(self, _: Command) -> None:
        x = self.stack.pop()
        self.stack.push(1 if x == 0 else 0)

    def _turn(self, direction: Direction) -> None:
        self.direction = direction

    def _rand(self, _: Command) -> None:
        self.direction = self.rng.choice(_RAND_DIRECTIONS)

    def _if_h(self, _: Command) -> None:
        x = self.stack.pop()
        self.direction = Direction.RIGHT if x == 0 else Direction.LEFT

    def _if_v(self, _: Command) -> None:
        x = self.stack.pop()
        self.direction = Direction.DOWN if x == 0 else Direction.UP

    def _toggle_string_mode(self, _: Command) -> None:
        self.string_mode = not self.string_mode

    def _swap(self, _: Command) -> None:
        x = self.stack.pop()
        y = self.stack.pop()
        self.stack.push(x)
        self.stack.push(y)

    def _out_int(self, cmd: Command) -> None:
        self._emit_output(f"{self.stack.pop()} ", cmd)

    def _out_char(self, cmd: Command) -> None:
        self._emit_output(chr(self.stack.pop() & 0xFF), cmd)

    def _emit_output(self, text: str, cmd: Command) -> None:
        self._output += text
        self.io_log.append({"event": "OUTPUT", "command": cmd.as_char(), "text": text})
        if self.hook_registry.has_handlers("output"):
            self._emit_event("output", self, text)

    def _check_coords(self, command: str, x: int, y: int) -> None:
        if not 0 <= x < PLAYFIELD_COLS:
            raise BefCoordinateError(command, "x", x)
        if not 0 <= y < PLAYFIELD_ROWS:
            raise BefCoordinateError(command, "y", y)

    def _get(self, cmd: Command) -> None:
        y = self.stack.pop()
        x = self.stack.pop()
        self._check_coords(cmd.as_char(), x, y)
        self.stack.push(self.playfield.get_byte(x, y))

    def _put(self, cmd: Command) -> None:
        y = self.stack.pop()
        x = self.stack.pop()
        self._check_coords(cmd.as_char(), x, y)
        value = self.stack.pop()
        if not 0 <= value <= 0xFF:
            raise BefValueError(value)
        self.playfield.put(x, y, decode(value))

    def _read_byte(self, rule: str) -> int:
        stream = self.input_stream if self.input_stream is not None else sys.stdin.buffer
        try:
            data = stream.read(1)
        except OSError as exc:
            raise BefIOError(f"Reading a byte: {exc}", rule=rule) from exc
        if not data:
            raise BefIOError("Reading a byte: unexpected end of input", rule=rule)
        return data[0]

    def _in_int(self, cmd: Command) -> None:
        rule = cmd.as_char()
        chars: List[str] = []
        while True:
            byte = self._read_byte(rule)
            if byte == 0x20:
                break
            chars.append(chr(byte))
        text = "".join(chars)
        if not _INT_LITERAL.fullmatch(text):
            raise BefInputError(text)
        value = int(text)
        if not I64_MIN <= value <= I64_MAX:
            raise BefInputError(text)
        self.io_log.append({"event": "INPUT", "command": rule, "text": text, "value": value})
        self.stack.push(value)

    def _in_char(self, cmd: Command) -> None:
        byte = self._read_byte(cmd.as_char())
        self.io_log.append({"event": "INPUT", "command": cmd.as_char(), "value": byte})
        self.stack.push(byte)

    def _char_literal(self, cmd: Command) -> None:
        # Only a digit literal has a numeric value outside string mode.
        c = str(cmd.arg)
        if c not in DIGITS:
            raise BefLiteralError(f"Cannot push non-digit literal {c!r} outside string mode", rule=c)
        self.stack.push(int(c))

    # ---- logging & hooks ----

    def _seed_log(self) -> None:
        self.logger.record(rule="SEED", position=None, glyph=None, direction=None, string_mode=False, stack=self.stack)

    def _emit_event(self, event: str, *args: Any, **kwargs: Any) -> None:
        try:
            self.hook_registry.emit(event, *args, **kwargs)
        except BefRuntimeError:
            raise
        except Exception as exc:
            raise BefRuntimeError(
                f"Extension hook '{event}' failed: {exc}",
                rule="EXT",
                position=self.pc.as_tuple(),
            ) from exc

    def _log_step(self, *, position: Tuple[int, int], glyph: str) -> None:
        entry = self.logger.record(
            rule="STEP",
            position=position,
            glyph=glyph,
            direction=self.direction,
            string_mode=self.string_mode,
            stack=self.stack,
        )
        extra = {"direction": self.direction.name, "string_mode": self.string_mode}
        ctx = StepContext(step_index=entry.step_index, glyph=glyph, position=position, extra=extra)
        if self.hook_registry.has_handlers("after_step"):
            self._emit_event("after_step", self, ctx)
        # Run extension step rules (every N steps) after recording.
        try:
            self.hook_registry.after_step(self, ctx)
        except BefRuntimeError:
            raise
        except Exception as exc:
            raise BefRuntimeError(
                f"Extension step rule failed: {exc}",
                rule="EXT",
                position=self.pc.as_tuple(),
            ) from exc


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter, *, history: int = 8) -> None:
        self.interpreter = interpreter
        self.history = history

    def format_text(self, error: BefRuntimeError, verbose: bool = False) -> str:
        lines = ["Traceback (most recent step last):"]
        for entry in self.interpreter.logger.tail(self.history):
            if entry.position is None:
                lines.append(f"  {entry.rule}  State id: {entry.state_id}")
                continue
            x, y = entry.position
            mode = "  [string mode]" if entry.string_mode else ""
            lines.append(
                f"  Step {entry.step_index} at ({x}, {y}): '{entry.glyph}' -> {entry.direction}{mode}"
            )
            if verbose and entry.stack is not None:
                lines.append(f"    Stack: {' '.join(str(v) for v in entry.stack)}")
        rule = error.rule or "runtime"
        lines.append(f"{error.__class__.__name__}: {error} (command: {rule})")
        lines.append(self.format_state())
        return "\n".join(lines)

    def format_state(self) -> str:
        interp = self.interpreter
        x, y = interp.position
        return "\n".join(
            [
                f"Position: ({x}, {y})  Direction: {interp.direction.name}  String mode: {interp.string_mode}",
                f"Stack: {interp.get_stack()}",
                f"Output: {interp.output!r}",
                "Playfield:",
                interp.render(),
            ]
        )

    def to_json(self, error: BefRuntimeError) -> str:
        steps: List[Dict[str, Any]] = []
        for entry in self.interpreter.logger.tail(self.history):
            record: Dict[str, Any] = {"step_index": entry.step_index, "state_id": entry.state_id, "rule": entry.rule}
            if entry.position is not None:
                record["position"] = list(entry.position)
                record["glyph"] = entry.glyph
                record["direction"] = entry.direction
                record["string_mode"] = entry.string_mode
                record["stack_depth"] = entry.stack_depth
            if entry.stack is not None:
                record["stack"] = entry.stack
            steps.append(record)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "rule": error.rule,
                "position": list(error.position) if error.position is not None else None,
                "failing_step_index": error.step_index,
            },
            "state": {
                "direction": self.interpreter.direction.name,
                "string_mode": self.interpreter.string_mode,
                "stack": self.interpreter.get_stack().to_list(),
                "output": self.interpreter.output,
                "playfield": self.interpreter.playfield.lines(),
            },
            "traceback": steps,
        }
        return json.dumps(data, indent=2)
