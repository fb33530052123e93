#!/usr/bin/env python3
"""
Test runner for the visitor analytics service.

    python run_tests.py                 # whole suite
    python run_tests.py -k realtime     # extra args go straight to pytest
"""

import os
import subprocess
import sys

PYTEST_ARGS = ["tests/", "-v", "--tb=short"]


def main() -> int:
    project_dir = os.path.dirname(os.path.abspath(__file__))
    command = [sys.executable, "-m", "pytest", *PYTEST_ARGS, *sys.argv[1:]]

    print("Visitor analytics test suite")
    print("-" * 40)
    try:
        completed = subprocess.run(command, cwd=project_dir)
    except FileNotFoundError:
        print("Python interpreter not found")
        return 1

    if completed.returncode == 0:
        print("\nAll tests passed")
    elif completed.returncode == 5:
        print("\nNo tests collected")
    else:
        print(f"\nTests failed (exit code {completed.returncode}); install test deps with: pip install -e '.[test]'")
    return completed.returncode


if __name__ == "__main__":
    sys.exit(main())
