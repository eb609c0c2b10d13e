"""Checks that the API reference only points at names that exist."""

from __future__ import annotations

import importlib
import re
import runpy
from pathlib import Path

import golem_requestor

DOCS = Path(__file__).resolve().parents[2] / "docs"


def test_documented_modules_import() -> None:
    modules = re.findall(r"^\.\. automodule:: (\S+)$", (DOCS / "index.rst").read_text(), re.M)

    assert modules
    for name in modules:
        importlib.import_module(name)


def test_type_aliases_resolve() -> None:
    conf = runpy.run_path(str(DOCS / "conf.py"))

    assert conf["release"] == golem_requestor.__version__
    for alias, target in conf["autodoc_type_aliases"].items():
        module_name, _, attr = target.rpartition(".")
        assert attr == alias
        assert hasattr(importlib.import_module(module_name), attr)
