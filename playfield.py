from __future__ import annotations
from enum import Enum
from typing import Iterator, List, Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from commands import BefError, Command, decode, encode


PLAYFIELD_ROWS = 25
PLAYFIELD_COLS = 80

_I64_MASK = (1 << 64) - 1
_I64_SIGN = 1 << 63

# ANSI styles used by Playfield.render(color=True)
_YELLOW = "\x1b[33m"
_CURSOR = "\x1b[1;31;47m"  # bold red on white
_RESET = "\x1b[0m"


class BefBoundsError(BefError, IndexError):
    """A direct playfield access fell outside the grid."""

    def __init__(self, x: int, y: int) -> None:
        super().__init__(f"Cell ({x}, {y}) is outside the {PLAYFIELD_COLS}x{PLAYFIELD_ROWS} playfield")
        self.x = x
        self.y = y


def wrap_i64(value: int) -> int:
    """Reduce an arbitrary Python int to a signed 64-bit two's-complement value."""
    value &= _I64_MASK
    return value - (1 << 64) if value & _I64_SIGN else value


class Stack:
    def __init__(self, values: Optional[List[int]] = None) -> None:
        self._values: List[int] = [wrap_i64(v) for v in values] if values else []

    def reset(self) -> None:
        self._values.clear()

    def push(self, value: int) -> None:
        self._values.append(wrap_i64(int(value)))

    def pop(self) -> int:
        # Underflow yields 0 instead of failing.
        return self._values.pop() if self._values else 0

    def peek(self) -> int:
        return self._values[-1] if self._values else 0

    def copy(self) -> "Stack":
        clone = Stack()
        clone._values = list(self._values)
        return clone

    def to_list(self) -> List[int]:
        return list(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[int]:
        return iter(self._values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Stack):
            return self._values == other._values
        return NotImplemented

    def __str__(self) -> str:
        return "".join(f"{v} " for v in self._values)

    def __repr__(self) -> str:
        return f"Stack({self._values!r})"


class Direction(Enum):
    UP = (0, -1)
    DOWN = (0, 1)
    LEFT = (-1, 0)
    RIGHT = (1, 0)

    @property
    def dx(self) -> int:
        return self.value[0]

    @property
    def dy(self) -> int:
        return self.value[1]


class ProgramCounter:
    def __init__(self, x: int = 0, y: int = 0) -> None:
        self.x = x
        self.y = y

    def reset(self) -> None:
        self.x = 0
        self.y = 0

    # Movement is toroidal per axis: leaving a column never changes the row.
    def right(self) -> None:
        self.x = (self.x + 1) % PLAYFIELD_COLS

    def left(self) -> None:
        self.x = PLAYFIELD_COLS - 1 if self.x == 0 else self.x - 1

    def down(self) -> None:
        self.y = (self.y + 1) % PLAYFIELD_ROWS

    def up(self) -> None:
        self.y = PLAYFIELD_ROWS - 1 if self.y == 0 else self.y - 1

    def advance(self, direction: Direction) -> None:
        if direction is Direction.RIGHT:
            self.right()
        elif direction is Direction.LEFT:
            self.left()
        elif direction is Direction.UP:
            self.up()
        else:
            self.down()

    def as_tuple(self) -> Tuple[int, int]:
        return (self.x, self.y)

    def __repr__(self) -> str:
        return f"ProgramCounter {{ x: {self.x}, y: {self.y} }}"


class Playfield:
    """Fixed 25x80 grid of command bytes, used as both code and data storage.

    Cells are stored as raw bytes in a numpy array and exposed as ``Command``
    values through the codec. Direct access is bounds-checked; only the
    program counter wraps.
    """

    def __init__(self) -> None:
        self.cells: NDArray[np.uint8] = np.full((PLAYFIELD_ROWS, PLAYFIELD_COLS), ord(" "), dtype=np.uint8)

    @staticmethod
    def in_bounds(x: int, y: int) -> bool:
        return 0 <= x < PLAYFIELD_COLS and 0 <= y < PLAYFIELD_ROWS

    def _check(self, x: int, y: int) -> None:
        if not self.in_bounds(x, y):
            raise BefBoundsError(x, y)

    def get_byte(self, x: int, y: int) -> int:
        self._check(x, y)
        return int(self.cells[y, x])

    def put_byte(self, x: int, y: int, value: int) -> None:
        self._check(x, y)
        self.cells[y, x] = value

    def get(self, x: int, y: int) -> Command:
        return decode(self.get_byte(x, y))

    def put(self, x: int, y: int, cmd: Command) -> None:
        self.put_byte(x, y, encode(cmd))

    def load(self, data: bytes) -> None:
        x, y = 0, 0
        cells = self.cells
        for byte in data:
            if byte == 0x0A:
                x = 0
                y = (y + 1) % PLAYFIELD_ROWS
                continue
            cells[y, x] = byte
            x = (x + 1) % PLAYFIELD_COLS
            if x == 0:
                y = (y + 1) % PLAYFIELD_ROWS

    def snapshot(self) -> NDArray[np.uint8]:
        return self.cells.copy()

    def lines(self) -> List[str]:
        return [bytes(row).decode("latin-1") for row in self.cells]

    def render(self, pc: Optional[ProgramCounter] = None, *, color: bool = False) -> str:
        cur_x, cur_y = pc.as_tuple() if pc is not None else (-1, -1)
        if color:
            frame = lambda s: f"{_YELLOW}{s}{_RESET}"
        else:
            frame = lambda s: s

        top = "─" * PLAYFIELD_COLS
        if not color and 0 <= cur_x < PLAYFIELD_COLS:
            top = top[:cur_x] + "v" + top[cur_x + 1:]
        out = [frame("┌" + top + "┐")]
        for row_idx, row in enumerate(self.lines()):
            if row_idx != cur_y:
                out.append(frame("│") + row + frame("│"))
            elif color:
                cell = f"{_CURSOR}{row[cur_x]}{_RESET}"
                out.append(frame("│") + row[:cur_x] + cell + row[cur_x + 1:] + frame("│"))
            else:
                out.append(">" + row + "│")
        out.append(frame("└" + "─" * PLAYFIELD_COLS + "┘"))
        return "\n".join(out)
