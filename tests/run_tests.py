"""
Test runner script for the object manager test suite.
Provides easy commands to run different test categories and generate coverage reports.
"""

import subprocess
import sys
import os
from pathlib import Path

COMMANDS = {
    "all": ("python -m pytest tests/ -v", "Running all tests"),
    "unit": ("python -m pytest tests/unit/ -v", "Running unit tests"),
    "functional": ("python -m pytest tests/functional/ -v", "Running functional tests"),
    "api": ("python -m pytest tests/functional/test_exception_handlers_api.py -v", "Running API tests"),
    "finder": ("python -m pytest tests/ -k 'finder or detached' -v", "Running finder tests"),
    "manager": ("python -m pytest tests/ -k 'manager or repository' -v", "Running object manager tests"),
    "coverage": (
        "python -m pytest tests/ --cov=object_manager --cov-report=html --cov-report=term-missing -v",
        "Running tests with coverage report",
    ),
    "install": ('pip install -e ".[test]" pytest-cov', "Installing test dependencies"),
}


def run_command(command, description):
    """Run a command and handle output"""
    print(f"\n{'='*60}")
    print(f"Running: {description}")
    print(f"Command: {command}")
    print(f"{'='*60}")

    result = subprocess.run(command, shell=True, capture_output=True, text=True)

    if result.stdout:
        print(result.stdout)
    if result.stderr:
        print("STDERR:", result.stderr)

    return result.returncode == 0


def main():
    """Main test runner"""
    # Change to project root directory
    project_root = Path(__file__).parent.parent
    os.chdir(project_root)

    if len(sys.argv) < 2 or sys.argv[1].lower() not in COMMANDS:
        print("Usage: python tests/run_tests.py [command]")
        print("\nAvailable commands:")
        print("  all          - Run all tests")
        print("  unit         - Run unit tests only")
        print("  functional   - Run functional tests only")
        print("  api          - Run API tests only")
        print("  finder       - Run finder and streaming tests only")
        print("  manager      - Run object manager and repository tests only")
        print("  coverage     - Run tests with coverage report")
        print("  install      - Install test dependencies")
        sys.exit(1)

    command = sys.argv[1].lower()
    success = run_command(*COMMANDS[command])

    if command == "coverage" and success:
        print("\n📊 Coverage report generated in htmlcov/index.html")

    if success:
        print("\n✅ Completed successfully!")
    else:
        print("\n❌ Failed!")
        sys.exit(1)


if __name__ == "__main__":
    main()
