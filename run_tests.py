#!/usr/bin/env python
"""
Test runner script for the FPL data gateway.

Runs the resilience suites first (they guard quota spend on the paid
providers), then the remaining suites, optionally with coverage.

Usage:
    python run_tests.py                 # every suite, then full run with coverage
    python run_tests.py --quick         # required suites only
    python run_tests.py cache queue     # selected suites
"""

import argparse
import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).parent

# name -> (test modules, required before commit)
SUITES = {
    "limits": (["tests/test_rate_limiter.py", "tests/test_circuit_breaker.py"], True),
    "cache": (["tests/test_cache_manager.py", "tests/test_ttl_policy.py"], True),
    "queue": (["tests/test_request_queue.py", "tests/test_deduplicator.py"], True),
    "adapters": (["tests/test_http_client.py", "tests/test_source_adapter.py"], True),
    "coordinator": (["tests/test_hybrid_source.py", "tests/test_events.py"], True),
    "normalizer": (
        ["tests/test_normalizer_schemas.py", "tests/test_normalizer_transformer.py"],
        False,
    ),
    "ops": (
        [
            "tests/test_scheduler.py",
            "tests/test_config.py",
            "tests/test_logger.py",
            "tests/test_main.py",
        ],
        False,
    ),
}


def run_pytest(args: list[str], description: str) -> int:
    """
    Run pytest in a subprocess.

    Returns:
        pytest exit code
    """
    print(f"\n{'=' * 80}")
    print(f"Running: {description}")
    print(f"{'=' * 80}\n")

    result = subprocess.run([sys.executable, "-m", "pytest", *args], cwd=ROOT)
    return result.returncode


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the FPL data gateway test suites")
    parser.add_argument("suites", nargs="*", help=f"Suites to run ({', '.join(SUITES)})")
    parser.add_argument("--quick", action="store_true", help="Required suites only")
    parser.add_argument("--no-coverage", action="store_true", help="Skip the coverage run")
    args = parser.parse_args()

    unknown = [name for name in args.suites if name not in SUITES]
    if unknown:
        parser.error(f"unknown suites: {', '.join(unknown)}")

    print("\n" + "=" * 80)
    print(" FPL Data Gateway - Test Suite Runner")
    print("=" * 80)

    selected = args.suites or [
        name for name, (_, required) in SUITES.items() if required or not args.quick
    ]

    results = []
    for name in selected:
        modules, required = SUITES[name]
        code = run_pytest([*modules, "-v", "--tb=short"], f"Suite - {name}")
        results.append((name, code == 0, required))

    full_run = not args.suites and not args.quick and not args.no_coverage
    if full_run:
        code = run_pytest(
            ["tests/", "--cov=fpl_gateway", "--cov-report=term-missing", "-q"],
            "All Tests with Coverage",
        )
        results.append(("coverage", code == 0, False))

    print("\n" + "=" * 80)
    print(" TEST SUMMARY")
    print("=" * 80 + "\n")

    for name, passed, required in results:
        status = "✅ PASSED" if passed else "❌ FAILED"
        kind = "(REQUIRED)" if required else "(OPTIONAL)"
        print(f"{status:12} {kind:12} {name}")

    passed_count = sum(1 for _, passed, _ in results if passed)
    print(f"\nTotal: {passed_count}/{len(results)} test suites passed\n")

    if any(required and not passed for _, passed, required in results):
        print("❌ CRITICAL: Required tests failed. Please fix before committing.")
        sys.exit(1)

    print("✅ SUCCESS: All required tests passed!")
    sys.exit(0)


if __name__ == "__main__":
    main()
