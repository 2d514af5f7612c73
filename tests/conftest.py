"""Shared test fixtures for markgen.

Fixtures defined here are available to all tests in the suite without
needing an explicit import. Add project-wide fixtures here; keep
domain-specific fixtures close to the tests that use them.
"""
from __future__ import annotations

import importlib
import sys
import textwrap
from collections.abc import Callable
from pathlib import Path

import pytest

from markgen.core.context import ProcessingContext


@pytest.fixture()
def package_name() -> str:
    """Return the importable package name for assertions."""
    return "markgen"


@pytest.fixture()
def expected_version() -> str:
    """Return the current expected version string.

    Update this fixture when cutting a release so that the version
    test immediately catches stale ``__version__`` values.
    """
    return "0.1.0"


@pytest.fixture()
def context(monkeypatch: pytest.MonkeyPatch) -> ProcessingContext:
    """A context outside test mode, regardless of the environment."""
    monkeypatch.delenv("MARKGEN_TEST_MODE", raising=False)
    return ProcessingContext(packages=(), test_mode=False)


@pytest.fixture()
def make_package(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Callable[[str, dict[str, str]], str]:
    """Write an importable package under ``tmp_path`` and return its name.

    ``files`` maps a module path relative to the package (``"__init__.py"``,
    ``"sub/models.py"``) to its source.  Missing ``__init__.py`` files are
    created empty.
    """
    monkeypatch.syspath_prepend(str(tmp_path))

    def _make(name: str, files: dict[str, str]) -> str:
        for cached in [m for m in sys.modules if m == name or m.startswith(name + ".")]:
            monkeypatch.delitem(sys.modules, cached)
        root = tmp_path / name
        root.mkdir()
        (root / "__init__.py").write_text("", encoding="utf-8")
        for relative, source in files.items():
            target = root / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            init = target.parent / "__init__.py"
            if not init.exists():
                init.write_text("", encoding="utf-8")
            target.write_text(textwrap.dedent(source), encoding="utf-8")
        importlib.invalidate_caches()
        return name

    return _make
