"""Tests for the test runner's pytest command line."""
from __future__ import annotations

import argparse
import importlib.util
from pathlib import Path
import sys

import pytest

RUNNER = Path(__file__).resolve().parents[1] / "run_tests.py"


@pytest.fixture(scope="module")
def runner():
    spec = importlib.util.spec_from_file_location("run_tests", RUNNER)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def namespace(**overrides):
    values = dict(integration=False, unit=False, coverage=False, verbose=False, paths=[])
    values.update(overrides)
    return argparse.Namespace(**values)


class TestBuildCommand:
    """Tests for translating runner options into pytest arguments."""

    def test_defaults(self, runner):
        assert runner.build_command(namespace()) == [sys.executable, "-m", "pytest", "tests"]

    def test_unit_skips_integration(self, runner):
        cmd = runner.build_command(namespace(unit=True, verbose=True))
        assert cmd[3:] == ["-v", "-m", "not integration", "tests"]

    def test_integration_with_coverage_and_paths(self, runner):
        cmd = runner.build_command(
            namespace(integration=True, coverage=True, paths=["tests/test_http_server.py"])
        )
        assert cmd[3:] == [
            "-m",
            "integration",
            "--cov=nvme_exporter",
            "--cov-report=term-missing",
            "tests/test_http_server.py",
        ]
