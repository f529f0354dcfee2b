from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Union


class BefError(Exception):
    """Base class for interpreter errors."""


class Op(Enum):
    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"
    MOD = "%"
    NOT = "!"
    GT = "`"
    RIGHT = ">"
    LEFT = "<"
    UP = "^"
    DOWN = "v"
    RAND = "?"
    IF_H = "_"
    IF_V = "|"
    STR = '"'
    DUP = ":"
    SWAP = "\\"
    POP = "$"
    OUT_I = "."
    OUT_C = ","
    BRI = "#"
    GET = "g"
    PUT = "p"
    IN_I = "&"
    IN_C = "~"
    END = "@"
    SPACE = " "
    # Payload-carrying variants; their glyph comes from Command.arg.
    NUM = "<num>"
    CHAR = "<char>"


GLYPHS: Dict[str, Op] = {
    op.value: op for op in Op if op not in (Op.NUM, Op.CHAR)
}

DIGITS = "0123456789"


@dataclass(frozen=True)
class Command:
    op: Op
    arg: Optional[Union[int, str]] = None

    @classmethod
    def num(cls, n: int) -> "Command":
        if not 0 <= n <= 9:
            raise BefError(f"Digit literal out of range: {n}")
        return cls(Op.NUM, n)

    @classmethod
    def char(cls, c: str) -> "Command":
        if len(c) != 1:
            raise BefError(f"Literal must be a single character, got {c!r}")
        return cls(Op.CHAR, c)

    @classmethod
    def from_char(cls, c: str) -> "Command":
        op = GLYPHS.get(c)
        if op is not None:
            return cls(op)
        if len(c) == 1 and c in DIGITS:
            return cls.num(ord(c) - 48)
        return cls.char(c)

    def as_char(self) -> str:
        if self.op is Op.NUM:
            return chr(int(self.arg) + 48)  # type: ignore[arg-type]
        if self.op is Op.CHAR:
            return str(self.arg)
        return self.op.value

    def as_byte(self) -> int:
        return encode(self)

    def __str__(self) -> str:
        return self.as_char()

    def __repr__(self) -> str:
        if self.op is Op.NUM:
            return f"Num({self.arg})"
        if self.op is Op.CHAR:
            return f"Char({self.arg!r})"
        return self.op.name.title().replace("_", "")


# Bytes map to characters through latin-1, so every byte value is a code point.
_DECODE_TABLE: List[Command] = [Command.from_char(chr(b)) for b in range(256)]


def decode(byte: int) -> Command:
    return _DECODE_TABLE[byte & 0xFF]


def encode(cmd: Command) -> int:
    code = ord(cmd.as_char())
    if code > 0xFF:
        raise BefError(f"Command {cmd!r} has no single-byte encoding")
    return code
