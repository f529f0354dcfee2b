from __future__ import annotations

import io

import pytest

from commands import Command, Op
from interpreter import (
    BefArithmeticError,
    BefCoordinateError,
    BefInputError,
    BefIOError,
    BefLiteralError,
    BefValueError,
    Interpreter,
)
from playfield import Direction


def test_multiply_and_print(run_program) -> None:
    interp = run_program("94*.@")
    assert interp.output == "36 "
    assert interp.get_stack().to_list() == []


def test_hello_world(run_program, hello_world: str) -> None:
    assert run_program(hello_world).output == "Hello, world!\n"


def test_turns_follow_the_arrows(run_program) -> None:
    interp = run_program(">987v>.v\nv456<\n>.@")
    assert interp.output == "4 "
    assert interp.get_stack().to_list() == [9, 8, 7, 6, 5]


def test_bridge_skips_next_cell(run_program) -> None:
    assert run_program("1#2.@").output == "1 "


def test_moving_left_wraps_to_last_column(run_program) -> None:
    interp = run_program("1_@")
    assert interp.get_stack().to_list() == [1]
    assert interp.position == (2, 0)


@pytest.mark.parametrize(
    "source, expected",
    [
        ("73-.@", "4 "),
        ("73/.@", "2 "),
        ("73%.@", "1 "),
        ("07-2/.@", "-3 "),
        ("07-2%.@", "-1 "),
        ("72-3%.@", "2 "),
        ("34`.@", "0 "),
        ("43`.@", "1 "),
        ("0!.@", "1 "),
        ("5!.@", "0 "),
        ("88*1+,@", "A"),
        ("01-,@", "\xff"),
    ],
)
def test_arithmetic_and_output(run_program, source: str, expected: str) -> None:
    assert run_program(source).output == expected


def test_swap_is_self_inverse(run_program) -> None:
    assert run_program("12\\.@").output == "1 "
    assert run_program("12\\\\@").get_stack().to_list() == [1, 2]


def test_dup_then_pop_is_neutral(run_program) -> None:
    assert run_program("12:$@").get_stack().to_list() == [1, 2]


def test_dup_on_empty_stack_pushes_zero(run_program) -> None:
    assert run_program(":@").get_stack().to_list() == [0]


def test_string_mode_pushes_codes_instead_of_executing(run_program) -> None:
    interp = run_program('"AB"@')
    assert interp.get_stack().to_list() == [ord("A"), ord("B")]
    interp = run_program('"+@v"@')
    assert interp.get_stack().to_list() == [ord("+"), ord("@"), ord("v")]
    assert not interp.string_mode


def test_step_reports_end_without_advancing(make_interpreter) -> None:
    interp = make_interpreter("1@")
    assert interp.step() is True
    assert interp.position == (1, 0)
    assert interp.step() is False
    assert interp.position == (1, 0)
    assert interp.current_command.op is Op.END


@pytest.mark.parametrize(
    "source, direction",
    [
        (">", Direction.RIGHT),
        ("<", Direction.LEFT),
        ("^", Direction.UP),
        ("v", Direction.DOWN),
        ("0_", Direction.RIGHT),
        ("1_", Direction.LEFT),
        ("0|", Direction.DOWN),
        ("7|", Direction.UP),
    ],
)
def test_direction_commands(make_interpreter, source: str, direction: Direction) -> None:
    interp = make_interpreter(source)
    for _ in source:
        interp.step()
    assert interp.direction is direction


def test_random_direction_is_seeded(make_interpreter) -> None:
    def walk(seed: int):
        interp = make_interpreter("?", seed=seed)
        seen = []
        for _ in range(200):
            interp.pc.reset()
            interp.step()
            seen.append(interp.direction)
        return seen

    first = walk(1234)
    assert first == walk(1234)
    assert set(first) == set(Direction)


def test_put_then_get_round_trips(run_program) -> None:
    assert run_program('"A"55p55g.@').output == "65 "


def test_put_modifies_running_code(run_program) -> None:
    interp = run_program('"@"70p5.')
    assert interp.output == ""
    assert interp.get_stack().to_list() == [5]
    assert interp.playfield.get(7, 0).op is Op.END


@pytest.mark.parametrize("x, y", [(0, 0), (79, 24), (40, 12)])
@pytest.mark.parametrize("value", [0, 32, 64, 255])
def test_get_put_at_grid_extremes(make_interpreter, x: int, y: int, value: int) -> None:
    interp = make_interpreter("pg@")
    for v in (value, x, y):
        interp.stack.push(v)
    interp.step()
    for v in (x, y):
        interp.stack.push(v)
    interp.step()
    assert interp.get_stack().to_list() == [value]


@pytest.mark.parametrize(
    "source, axis, value",
    [
        ("45*4*0g@", "x", 80),
        ("055*g@", "y", 25),
        ("01-0g@", "x", -1),
    ],
)
def test_get_out_of_bounds_fails(run_program, source: str, axis: str, value: int) -> None:
    with pytest.raises(BefCoordinateError) as info:
        run_program(source)
    assert info.value.axis == axis
    assert info.value.value == value
    assert info.value.command == "g"
    assert f"Invalid {axis} coordinate for g command: {value}" in str(info.value)


def test_put_out_of_bounds_fails(run_program) -> None:
    with pytest.raises(BefCoordinateError) as info:
        run_program("145*4*0p@")
    assert info.value.command == "p"
    assert info.value.axis == "x"


@pytest.mark.parametrize("source, value", [("88*88**00p@", 4096), ("01-00p@", -1)])
def test_put_value_outside_byte_range_fails(run_program, source: str, value: int) -> None:
    with pytest.raises(BefValueError) as info:
        run_program(source)
    assert info.value.value == value
    assert f"Failed to convert {value} into u8" in str(info.value)


def test_division_by_zero_aborts_the_run(run_program) -> None:
    with pytest.raises(BefArithmeticError) as info:
        run_program("10/@")
    err = info.value
    assert err.position == (2, 0)
    assert err.step_index == 3
    assert str(err) == "Division by zero (at ProgramCounter { x: 2, y: 0 })"


def test_modulo_by_zero_aborts_the_run(run_program) -> None:
    with pytest.raises(BefArithmeticError, match="Modulo by zero"):
        run_program("30%@")


def test_non_digit_literal_outside_string_mode_fails(run_program) -> None:
    with pytest.raises(BefLiteralError) as info:
        run_program("a@")
    assert info.value.rule == "a"


def test_digit_literal_char_pushes_its_value(make_interpreter) -> None:
    interp = make_interpreter("@")
    interp._dispatch[Op.CHAR](Command.char("7"))
    assert interp.get_stack().to_list() == [7]


def test_digit_char_written_to_the_grid_executes_as_a_digit(make_interpreter) -> None:
    interp = make_interpreter(" @")
    interp.playfield.put(0, 0, Command.char("7"))
    assert interp.current_command == Command.num(7)
    assert interp.step() is True
    assert interp.get_stack().to_list() == [7]


def test_integer_input(run_program) -> None:
    interp = run_program("&&+.@", stdin=b"12 30 ")
    assert interp.output == "42 "
    assert interp.io_log[0] == {"event": "INPUT", "command": "&", "text": "12", "value": 12}
    assert run_program("&.@", stdin=b"-5 ").output == "-5 "


def test_character_input(run_program) -> None:
    assert run_program("~.~.@", stdin=b"AB").output == "65 66 "


@pytest.mark.parametrize("stdin", [b"abc ", b"12\n ", b" ", b"99999999999999999999 "])
def test_malformed_integer_input_fails(run_program, stdin: bytes) -> None:
    with pytest.raises(BefInputError) as info:
        run_program("&@", stdin=stdin)
    assert info.value.text == stdin[:-1].decode("latin-1")


def test_input_at_end_of_stream_fails(run_program) -> None:
    with pytest.raises(BefIOError, match="Reading a byte"):
        run_program("&@", stdin=b"12")
    with pytest.raises(BefIOError, match="Reading a byte"):
        run_program("~@", stdin=b"")


def test_load_accepts_readers_and_text() -> None:
    interp = Interpreter(input_stream=io.BytesIO())
    interp.load(io.BytesIO(b"94*.@"))
    assert interp.run() == 4
    assert interp.output == "36 "

    interp = Interpreter(input_stream=io.BytesIO())
    interp.load('"\xe9"@')
    interp.run()
    assert interp.get_stack().to_list() == [0xE9]
    assert interp.playfield.lines()[0].startswith('"\xe9"@')


def test_text_outside_latin1_cannot_be_loaded() -> None:
    with pytest.raises(BefIOError, match="does not fit in a playfield cell"):
        Interpreter().load("\u2603@")


def test_load_read_failure_is_an_io_error() -> None:
    class Broken:
        def read(self):
            raise OSError("disk on fire")

    with pytest.raises(BefIOError, match="Failed to load program"):
        Interpreter().load(Broken())


def test_load_file(tmp_path) -> None:
    path = tmp_path / "prog.bf"
    path.write_bytes(b"94*.@")
    interp = Interpreter()
    interp.load_file(str(path))
    interp.run()
    assert interp.output == "36 "
    with pytest.raises(BefIOError, match="Failed to open"):
        interp.load_file(str(tmp_path / "missing.bf"))
