"""Befunge-93 command-line driver."""

from __future__ import annotations
import argparse
import sys
import time
from typing import Callable, List, Optional

from extensions import BefExtensionError, RuntimeServices, load_runtime_services
from interpreter import BefIOError, BefRuntimeError, Interpreter, TracebackFormatter


CLEAR_SCREEN = "\x1b[2J\x1b[1;1H"


def _label(text: str, color: bool) -> str:
    return f"\x1b[32m{text}\033[0m" if color else text


def _wait_for_enter() -> None:
    sys.stdin.readline()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bef", description="A simple Befunge-93 interpreter.")
    parser.add_argument("program", help="Path to program file, or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-p", "--playfield", action="store_true", help="Print the playfield at each step")
    parser.add_argument("-s", "--stack", action="store_true", help="Print the stack at each step")
    parser.add_argument("-t", "--trace", action="store_true", help="Execute in trace mode")
    parser.add_argument("-d", "--delay", type=int, default=None, metavar="MS", help="Delay between steps (in milliseconds)")
    parser.add_argument("--debug", action="store_true", help="Run in debug mode; press enter to step")
    parser.add_argument("--seed", type=int, default=None, help="Seed for the '?' command")
    parser.add_argument("--max-steps", type=int, default=None, metavar="N", help="Stop after N steps")
    parser.add_argument("--ext", action="append", default=[], metavar="PATH", help="Load an extension module or .befx pointer file")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit stack snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    return parser


def make_step_callback(
    args: argparse.Namespace,
    *,
    color: bool,
    wait: Callable[[], None] = _wait_for_enter,
    sleep: Callable[[float], None] = time.sleep,
) -> Callable[[Interpreter, int], bool]:
    display = args.playfield or args.stack or args.debug or args.delay is not None

    def _callback(interp: Interpreter, iter_n: int) -> bool:
        if args.trace:
            print(
                f"[{iter_n}] Executing: {interp.current_command!r}\n"
                f"Stack: {interp.get_stack()}\n"
                f"Output: {interp.output}\n"
                f"{'-' * 60}"
            )
            if args.debug:
                wait()
            return True

        if not display:
            return True

        print(CLEAR_SCREEN, end="")
        if args.playfield:
            print(f"{_label('Playfield:', color)}\n{interp.render(color=color)}")
        if args.stack:
            print(f"{_label('Stack:', color)} {interp.get_stack()}")
        print(f"{_label('Output:', color)}\n{interp.output}", end="", flush=True)

        if args.debug:
            wait()
        if args.delay is not None:
            sleep(args.delay / 1000.0)
        return True

    return _callback


def run_cli(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    color = sys.stdout.isatty()
    chatty = args.trace or args.playfield or args.stack or args.debug or args.delay is not None

    try:
        services = load_runtime_services(args.ext) if args.ext else RuntimeServices()
    except BefExtensionError as exc:
        print(f"Failed to load extensions: {exc}", file=sys.stderr)
        return 1

    interpreter = Interpreter(seed=args.seed, verbose=args.verbose, services=services)
    try:
        if args.source_mode:
            interpreter.load(args.program)
        else:
            interpreter.load_file(args.program)
    except BefIOError as exc:
        print(f"Failed to load program from {args.program}: {exc}", file=sys.stderr)
        return 1

    if chatty:
        print(f"Loaded:\n{interpreter.render(color=color)}")
        print("Running program...")

    try:
        interpreter.run(make_step_callback(args, color=color), max_steps=args.max_steps)
    except BefRuntimeError as error:
        sys.stdout.flush()
        formatter = TracebackFormatter(interpreter)
        print(f"Failed to run the program:\n{formatter.format_text(error, verbose=args.verbose)}", file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1

    if not chatty:
        sys.stdout.write(interpreter.output)
    elif not args.trace:
        print()
    return 0


def main() -> int:
    return run_cli()


if __name__ == "__main__":
    raise SystemExit(run_cli())
