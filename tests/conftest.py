from __future__ import annotations

import io
from pathlib import Path
from typing import Callable, Optional

import pytest

from extensions import RuntimeServices
from interpreter import Interpreter


REPO_ROOT = Path(__file__).resolve().parents[1]

HELLO_WORLD = (
    '>25*"!dlrow ,olleH":v\n'
    "                 v:,_@\n"
    "                 >  ^\n"
)


@pytest.fixture()
def hello_world() -> str:
    return HELLO_WORLD


@pytest.fixture()
def make_interpreter() -> Callable[..., Interpreter]:
    """Build a seeded interpreter with ``source`` loaded and ``stdin`` as its input."""

    def _make(
        source: str | bytes = b"",
        stdin: bytes = b"",
        *,
        seed: int = 0,
        services: Optional[RuntimeServices] = None,
        verbose: bool = False,
    ) -> Interpreter:
        interp = Interpreter(input_stream=io.BytesIO(stdin), seed=seed, services=services, verbose=verbose)
        interp.load(source)
        return interp

    return _make


@pytest.fixture()
def run_program(make_interpreter: Callable[..., Interpreter]) -> Callable[..., Interpreter]:
    """Load and run ``source`` to completion; returns the interpreter for inspection."""

    def _run(source: str | bytes, stdin: bytes = b"", **kwargs) -> Interpreter:
        interp = make_interpreter(source, stdin, **kwargs)
        interp.run(max_steps=100_000)
        return interp

    return _run
