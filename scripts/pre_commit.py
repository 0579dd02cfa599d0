#!/usr/bin/env python3
"""
Git pre-commit hook for Power Watch.
Blocks commits with unformatted or lint-failing Python files and runs the
unit tests when anything under src/ or tests/ is staged.

Install with: invoke install-hooks
"""

import subprocess
import sys


def staged_python_files():
    result = subprocess.run(
        ["git", "diff", "--cached", "--name-only", "--diff-filter=ACM"],
        capture_output=True,
        text=True,
    )
    return [f for f in result.stdout.splitlines() if f.endswith(".py")]


def run_step(title, cmd):
    """Run one check; returns True when it passed."""
    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode == 0:
        return True
    print(f"❌ {title} failed:")
    print(result.stdout)
    print(result.stderr)
    return False


def main():
    print("🔍 Running pre-commit checks...")

    staged = staged_python_files()
    if not staged:
        print("✅ No Python files to check")
        return 0

    print(f"   Checking {len(staged)} Python file(s)...")

    if not run_step("Formatting", ["ruff", "format", "--check", *staged]):
        print("\nTo fix, run:")
        print("  invoke format")
        print("  git add -u")
        return 1

    if not run_step("Linting", ["ruff", "check", *staged]):
        print("\nTo fix, run: invoke lint-fix")
        return 1

    if any(f.startswith(("src/", "tests/")) for f in staged):
        if not run_step("Unit tests", [sys.executable, "-m", "pytest", "tests/", "-q"]):
            return 1

    print("✅ Pre-commit checks passed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
