#!/usr/bin/env python3
"""
Modular test runner for stfusion.

Quick shortcuts for running specific test suites.

Usage:
    ./run_tests.py                     # Run all tests
    ./run_tests.py starfm              # Run STARFM tests only
    ./run_tests.py estarfm --quick     # Run ESTARFM tests, skip slow
    ./run_tests.py parallel            # Run parallel driver tests
    ./run_tests.py --keyword mask      # Run tests matching 'mask'
    ./run_tests.py --file raster       # Run test files matching 'raster'
    ./run_tests.py --list              # List available test categories
"""

import argparse
import os
import subprocess
import sys
from pathlib import Path


# Test categories with their pytest selectors
CATEGORIES = {
    # Algorithms
    "starfm": {"marker": "starfm", "desc": "Similarity-weighted fusion"},
    "estarfm": {"marker": "estarfm", "desc": "Regression-enhanced fusion"},
    "regression": {"file": "test_regression.py", "desc": "Gated regression and correlation"},

    # Components
    "parallel": {"marker": "parallel", "desc": "Partition-parallel driver"},
    "core": {"file": "test_r*.py", "desc": "Raster, rectangle and regression basics"},
    "config": {"file": "test_config.py", "desc": "Configuration loading"},

    # Test types
    "quick": {"marker": "not slow", "desc": "Fast tests only"},
    "slow": {"marker": "slow", "desc": "Slow/comprehensive tests"},
    "integration": {"marker": "integration", "desc": "File and CLI tests"},
}


def list_categories():
    """Print available test categories."""
    print("\nAvailable Test Categories:\n")

    print("  Algorithms:")
    for name in ["starfm", "estarfm", "regression"]:
        print(f"    {name:12} - {CATEGORIES[name]['desc']}")

    print("\n  Components:")
    for name in ["parallel", "core", "config"]:
        print(f"    {name:12} - {CATEGORIES[name]['desc']}")

    print("\n  Test Types:")
    for name in ["quick", "slow", "integration"]:
        print(f"    {name:12} - {CATEGORIES[name]['desc']}")

    print("\n  Examples:")
    print("    ./run_tests.py starfm")
    print("    ./run_tests.py parallel --quick")
    print("    ./run_tests.py --keyword double_pair")
    print()


def build_pytest_args(args):
    """Build pytest command arguments."""
    # Use venv pytest if available
    project_root = Path(__file__).parent
    venv_pytest = project_root / ".venv" / "bin" / "pytest"

    if venv_pytest.exists():
        pytest_args = [str(venv_pytest)]
    else:
        pytest_args = [sys.executable, "-m", "pytest"]

    tests_dir = project_root / "tests"

    markers = []
    file_patterns = []

    if args.category:
        cat = args.category.lower()
        if cat in CATEGORIES:
            cat_info = CATEGORIES[cat]
            if "marker" in cat_info:
                markers.append(cat_info["marker"])
            if "file" in cat_info:
                file_patterns.append(cat_info["file"])
        else:
            # Try as a file pattern
            file_patterns.append(f"*{cat}*")

    if args.quick:
        markers.append("not slow")

    if args.file:
        file_patterns.append(f"*{args.file}*")

    if markers:
        marker_expr = " and ".join(f"({m})" for m in markers)
        pytest_args.extend(["-m", marker_expr])

    if args.keyword:
        pytest_args.extend(["-k", args.keyword])

    # Add file patterns or default to tests/
    if file_patterns:
        for pattern in file_patterns:
            if "*" in pattern:
                pytest_args.extend(str(f) for f in sorted(tests_dir.glob(pattern)))
            else:
                pytest_args.append(str(tests_dir / pattern))
    else:
        pytest_args.append(str(tests_dir))

    pytest_args.append("-v")

    if args.pytest_args:
        pytest_args.extend(args.pytest_args)

    pytest_args.append("--tb=short")

    return pytest_args


def main():
    parser = argparse.ArgumentParser(
        description="Modular test runner for stfusion",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s starfm             Run STARFM tests
  %(prog)s estarfm --quick    Run fast ESTARFM tests
  %(prog)s --keyword mask     Run tests matching 'mask'
  %(prog)s --list             Show all categories
        """
    )

    parser.add_argument(
        "category",
        nargs="?",
        help="Test category: starfm, estarfm, regression, parallel, core, config, integration"
    )
    parser.add_argument(
        "--quick", "-q",
        action="store_true",
        help="Skip slow tests"
    )
    parser.add_argument(
        "--keyword", "-k",
        help="Filter by test name expression"
    )
    parser.add_argument(
        "--file", "-f",
        help="Filter by test file name pattern"
    )
    parser.add_argument(
        "--list", "-l",
        action="store_true",
        help="List available test categories"
    )
    parser.add_argument(
        "pytest_args",
        nargs="*",
        help="Additional arguments to pass to pytest"
    )

    args = parser.parse_args()

    if args.list:
        list_categories()
        return 0

    project_root = Path(__file__).parent
    os.environ["PYTHONPATH"] = str(project_root)

    pytest_args = build_pytest_args(args)

    print(f"Running: {' '.join(pytest_args[2:])}\n")

    result = subprocess.run(pytest_args)
    return result.returncode


if __name__ == "__main__":
    sys.exit(main())
