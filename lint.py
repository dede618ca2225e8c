#!/usr/bin/env python3
"""
Lint and format the bot.

By default ruff, isort and black fix what they can in place.
    --check   only report problems (for CI)
    --tests   also run the unit test suite afterwards
"""

import argparse
import shutil
import subprocess
import sys
from pathlib import Path

TARGETS = ["source", "cogs", "tests", "main.py", "lint.py"]


def run_step(command: list[str], description: str) -> bool:
    """Run one tool from the project root and report whether it passed."""
    print(f"\n{'=' * 80}")
    print(f"{description}: {' '.join(command)}")
    print(f"{'=' * 80}\n")

    if shutil.which(command[0]) is None:
        print(f"❌ {command[0]} is not installed (pip install -e '.[dev]')")
        return False

    result = subprocess.run(command, cwd=Path(__file__).parent)
    return result.returncode == 0


def build_steps(check_only: bool, with_tests: bool) -> list[tuple[list[str], str]]:
    if check_only:
        steps = [
            (["ruff", "check", *TARGETS], "Ruff linting"),
            (["isort", "--check-only", *TARGETS], "isort import order"),
            (["black", "--check", *TARGETS], "Black formatting"),
        ]
    else:
        steps = [
            (["ruff", "check", "--fix", *TARGETS], "Ruff auto-fix"),
            (["isort", *TARGETS], "isort import sorting"),
            (["black", *TARGETS], "Black code formatting"),
        ]

    if with_tests:
        steps.append((["pytest", "-m", "unit", "-q"], "Unit tests"))
    return steps


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--check", action="store_true", help="report only, modify nothing")
    parser.add_argument("--tests", action="store_true", help="run the unit tests too")
    args = parser.parse_args()

    steps = build_steps(args.check, args.tests)
    results = [run_step(command, description) for command, description in steps]

    print(f"\n{'=' * 80}\nSUMMARY\n{'=' * 80}\n")
    for (_, description), passed in zip(steps, results):
        print(f"{'✅' if passed else '❌'} {description}")

    if all(results):
        print("\n🎉 All good!\n")
        return 0

    if args.check:
        print("\n⚠️  Run 'python lint.py' without --check to auto-fix.\n")
    return 1


if __name__ == "__main__":
    sys.exit(main())
