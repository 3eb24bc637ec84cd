"""The smallest possible program: a greeting, printed directly or through a library call."""

from __future__ import annotations

import argparse

GREETING = "Hello SLAM!"
LIBRARY_GREETING = "Hello SLAM"


def print_hello() -> str:
    """Print the library greeting and return the line that was printed."""
    line = LIBRARY_GREETING
    print(line)
    return line


def main(argv: list[str] | None = None) -> int:
    """Print the greeting; with --library, print it through print_hello()."""
    parser = argparse.ArgumentParser(prog="hello", description="Print a greeting.")
    parser.add_argument(
        "--library",
        action="store_true",
        help="print the greeting through the library function",
    )
    args = parser.parse_args(argv)
    if args.library:
        print_hello()
    else:
        print(GREETING)
    return 0