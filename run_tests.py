#!/usr/bin/env python3
"""
HSSE - Single-Command Test Runner
==================================
Run:  python run_tests.py
      python run_tests.py --html          (with HTML report)
      python run_tests.py --quick         (pure unit tests only, no app startup)
      python run_tests.py --module ppe    (core tests plus tests/test_ppe.py)
"""

import os
import sys
import glob
import subprocess
import datetime

ROOT_DIR = os.path.dirname(os.path.abspath(__file__))
ARTIFACTS_DIR = os.path.join(ROOT_DIR, "test_artifacts")


def _module_arg(args):
    if "--module" in args:
        idx = args.index("--module")
        if idx + 1 < len(args):
            return args[idx + 1]
    return None


def main():
    args = sys.argv[1:]
    quick = "--quick" in args
    html = "--html" in args
    module = _module_arg(args)

    cmd = [sys.executable, "-m", "pytest"]

    if quick:
        test_files = ["tests/test_units.py"]
    elif module:
        test_files = ["tests/test_api_core.py", f"tests/test_{module}.py"]
        missing = [f for f in test_files if not os.path.exists(os.path.join(ROOT_DIR, f))]
        if missing:
            print(f"[HSSE] No such test file: {', '.join(missing)}")
            return 2
    else:
        test_files = sorted(os.path.relpath(p, ROOT_DIR)
                            for p in glob.glob(os.path.join(ROOT_DIR, "tests", "test_*.py")))

    cmd.extend(test_files)
    cmd.extend(["-v", "--tb=short"])

    if html:
        ts = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
        report_dir = os.path.join(ARTIFACTS_DIR, ts)
        os.makedirs(report_dir, exist_ok=True)
        report_path = os.path.join(report_dir, "test_report.html")
        cmd.extend(["--html", report_path, "--self-contained-html"])
        print(f"[HSSE] HTML report will be saved to: {report_path}")

    print(f"[HSSE] Running: {' '.join(cmd)}")
    print(f"[HSSE] {'Quick mode (unit tests)' if quick else f'{len(test_files)} test files'}")
    print()

    result = subprocess.run(cmd, cwd=ROOT_DIR)

    if html and result.returncode == 0:
        print(f"\n[HSSE] HTML report: {report_path}")

    return result.returncode


if __name__ == "__main__":
    sys.exit(main())
