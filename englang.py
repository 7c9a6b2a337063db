"""ENGLANG entry point: run a plain-English script file."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional

from extensions import EngExtensionError, Hook, load_runtime_services
from interpreter import ExitSignal, Interpreter, TracebackFormatter
from program import SourceLocation
from storage import EngRuntimeError, Limits


QUICK_REFERENCE = """\
Language Quick Reference:
  set x to 42
  set greeting to "Hello, World!"
  set total to a plus b
  add x and y into result
  subtract a from b into diff
  multiply x by y into product
  divide a by b into quotient
  increment counter
  decrement counter by 5
  print x and y
  ask "Enter a number:" into num
  if x is greater than 5 then
    print x
  otherwise
    print "small"
  end if
  while x is less than 100 then
    increment x
  end while
  repeat 10 times
    print x
  end repeat
  for i from 1 to 10 step 1 then
    print i
  end for
  define factorial with n as
    ...
  end define
  call factorial with 5
  push 42 onto stack
  pop from stack into x
  store x at address 0
  load from address 0 into y
  create array nums
  append 10 to array nums
  get element 0 of array nums into val
  square root of x into root
  length of mystring into len
  stop"""


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="englang", description="ENGLANG interpreter")
    parser.add_argument("program", nargs="?", help="Script file path")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit variable snapshots in tracebacks")
    parser.add_argument("-trace", "--trace", dest="trace", action="store_true", help="Echo each executed statement to stderr")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("-ext", "--ext", dest="extensions", action="append", default=[], metavar="PATH", help="Load an extension module (repeatable)")
    parser.add_argument(
        "--max-call-depth",
        type=int,
        default=Limits().max_call_depth,
        help="Maximum nesting of procedure calls before aborting",
    )
    return parser


def _trace_statement(_interpreter: Interpreter, location: SourceLocation) -> None:
    print(f"[trace] {location.file}:{location.line}: {location.statement}", file=sys.stderr)


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(argv)

    if args.program is None:
        print("ENGLANG Interpreter v1.0", file=sys.stderr)
        print(parser.format_usage(), file=sys.stderr)
        print(QUICK_REFERENCE, file=sys.stderr)
        return 1

    filename = args.program
    try:
        with open(filename, "r", encoding="utf-8") as handle:
            source_text = handle.read()
    except OSError as exc:
        print(f"Failed to read {filename}: {exc}", file=sys.stderr)
        return 1

    try:
        services = load_runtime_services(args.extensions)
    except EngExtensionError as exc:
        print(f"ExtensionError: {exc}", file=sys.stderr)
        return 1
    if args.trace:
        services.hook_registry.add_hook(Hook("before_statement", _trace_statement, owner="--trace"))

    limits = Limits(max_call_depth=args.max_call_depth)
    interpreter = Interpreter(source=source_text, filename=filename, verbose=args.verbose, limits=limits, services=services)
    try:
        interpreter.run()
    except ExitSignal as sig:
        return sig.code
    except EngRuntimeError as error:
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    finally:
        sys.stdout.flush()
    return 0


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
