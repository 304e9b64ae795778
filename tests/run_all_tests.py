#!/usr/bin/env python3
"""
Test runner for the CBT quiz server.

Loads every test module, runs it with unittest and prints a short summary.
"""
import sys
import time
import unittest
from pathlib import Path

# Repository root, so that ``cbt`` and ``tests`` import as packages
sys.path.insert(0, str(Path(__file__).parent.parent))

TEST_MODULES = [
    'tests.test_data_manager',
    'tests.test_config_manager',
    'tests.test_quiz_engine',
    'tests.test_timer_lifecycle',
    'tests.test_quiz_controller',
    'tests.test_auth',
    'tests.test_authoring',
    'tests.test_results',
    'tests.test_dashboards',
    'tests.test_api',
]


def run_test_suite() -> bool:
    """Run the complete test suite and print a report."""
    print("=" * 70)
    print("CBT Quiz Server - Test Suite")
    print("=" * 70)

    loader = unittest.TestLoader()
    suite = unittest.TestSuite()
    load_failures = []

    for module_name in TEST_MODULES:
        try:
            suite.addTest(loader.loadTestsFromName(module_name))
            print(f"✓ Loaded tests from {module_name}")
        except (ImportError, AttributeError) as e:
            load_failures.append(module_name)
            print(f"✗ Failed to load {module_name}: {e}")

    runner = unittest.TextTestRunner(verbosity=2, stream=sys.stdout, buffer=True)
    start_time = time.time()
    result = runner.run(suite)
    elapsed = time.time() - start_time

    failed = len(result.failures) + len(result.errors)
    passed = result.testsRun - failed - len(result.skipped)

    print("\n" + "=" * 70)
    print("Test Summary Report")
    print("=" * 70)
    print(f"Total Tests Run: {result.testsRun}")
    print(f"Passed: {passed}")
    print(f"Failed: {len(result.failures)}")
    print(f"Errors: {len(result.errors)}")
    print(f"Skipped: {len(result.skipped)}")
    print(f"Execution Time: {elapsed:.2f} seconds")

    for test, _ in result.failures + result.errors:
        print(f"  • {test}")

    return result.wasSuccessful() and not load_failures


if __name__ == '__main__':
    sys.exit(0 if run_test_suite() else 1)
