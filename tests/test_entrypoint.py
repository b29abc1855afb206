"""Smoke tests for the Dispatch Navigator entrypoint module."""

from __future__ import annotations

import builtins
import importlib.util
import io
import sys
import types
from contextlib import redirect_stdout
from pathlib import Path

import pytest


def load_entrypoint_module():
    """Load the project entrypoint module without running it as ``__main__``."""
    module_path = Path(__file__).resolve().parents[1] / "__main__.py"
    spec = importlib.util.spec_from_file_location("dispatch_nav_entry", module_path)
    module = importlib.util.module_from_spec(spec)
    assert spec.loader is not None
    spec.loader.exec_module(module)
    return module


@pytest.fixture()
def entry_module():
    return load_entrypoint_module()


def run(entry_module, argv):
    buffer = io.StringIO()
    with redirect_stdout(buffer):
        exit_code = entry_module.main(argv)
    return exit_code, buffer.getvalue()


def test_check_dependencies_reports_missing_required(entry_module, monkeypatch):
    """check_dependencies should fail gracefully when PySide6 is unavailable."""
    real_import = builtins.__import__

    def fake_import(name, globals=None, locals=None, fromlist=(), level=0):  # noqa: D401
        if name.startswith("PySide6"):
            raise ImportError("No module named PySide6")
        return real_import(name, globals, locals, fromlist, level)

    monkeypatch.setattr(builtins, "__import__", fake_import)

    buffer = io.StringIO()
    with redirect_stdout(buffer):
        result = entry_module.check_dependencies()

    output = buffer.getvalue()

    assert result is False
    assert "Missing required dependencies" in output
    assert "PySide6" in output


def test_check_dependencies_passes_with_installed_qt(entry_module):
    buffer = io.StringIO()
    with redirect_stdout(buffer):
        result = entry_module.check_dependencies()
    assert result is True
    assert "OK PySide6" in buffer.getvalue()


def test_main_reports_missing_dependencies(entry_module, monkeypatch):
    """The main function should exit early when dependencies are missing."""
    monkeypatch.setattr(entry_module, "setup_environment", lambda: None)
    monkeypatch.setattr(entry_module, "check_dependencies", lambda: False)
    monkeypatch.setitem(sys.modules, "main", types.ModuleType("main"))

    exit_code, output = run(entry_module, ["--check-deps"])

    assert exit_code == 1
    assert "Some dependencies are missing" in output


def test_main_check_deps_success(entry_module, monkeypatch):
    monkeypatch.setattr(entry_module, "check_dependencies", lambda: True)
    exit_code, output = run(entry_module, ["--check-deps"])
    assert exit_code == 0
    assert "All dependencies are satisfied!" in output


def test_help_examples_use_runnable_commands(entry_module):
    buffer = io.StringIO()
    with redirect_stdout(buffer), pytest.raises(SystemExit):
        entry_module.parse_arguments(["--help"])
    output = buffer.getvalue()
    assert "-m dispatchnav" not in output
    assert "python __main__.py --route-only --offline" in output
    assert "dispatch-nav" in output


def test_route_only_requires_both_points(entry_module, monkeypatch):
    monkeypatch.setattr(entry_module, "check_dependencies", lambda: True)
    exit_code, output = run(entry_module, ["--route-only", "--destination", "40.7484,-73.9857"])
    assert exit_code == 2
    assert "--route-only needs both --origin and --destination" in output


def test_route_only_rejects_bad_coordinates(entry_module, monkeypatch):
    monkeypatch.setattr(entry_module, "check_dependencies", lambda: True)
    exit_code, output = run(entry_module, [
        "--route-only", "--origin", "somewhere", "--destination", "40.7484,-73.9857",
    ])
    assert exit_code == 2
    assert "Invalid input" in output


def test_route_only_offline_prints_direct_route(entry_module, monkeypatch, tmp_path):
    monkeypatch.setattr(entry_module, "check_dependencies", lambda: True)
    exit_code, output = run(entry_module, [
        "--route-only", "--offline",
        "--origin", "40.7128,-74.0060",
        "--destination", "40.7484,-73.9857",
        "--log-dir", str(tmp_path / "logs"),
    ])
    assert exit_code == 3
    assert "Route 40.7128,-74.006-40.7484,-73.9857 (offline)" in output
    assert "Distance: " in output
