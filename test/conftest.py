# test/conftest.py

import pytest
from pathlib import Path
from helpers.reporter import Reporter
from keysync_lib.diagnostics import CollectingDiagnostics
from keysync_lib.owner import Owner

def pytest_addoption(parser):
    parser.addoption("--keysync-report", choices=["jsonl", "yaml", "both"], default="jsonl")

@pytest.fixture
def diagnostics():
    return CollectingDiagnostics()

@pytest.fixture
def owner():
    return Owner("test")

@pytest.fixture
def reporter(request, pytestconfig, tmp_path):
    emit_yaml = pytestconfig.getoption("--keysync-report") in ("yaml", "both")
    r = Reporter(
        test_name=request.node.name,
        artifacts_dir=tmp_path / "artifacts",
        emit_yaml=emit_yaml,
    )
    yield r
    rep = getattr(request.node, "rep_call", None)
    r.finalize(getattr(rep, "outcome", "unknown"))

@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    outcome = yield
    rep = outcome.get_result()
    setattr(item, f"rep_{rep.when}", rep)
