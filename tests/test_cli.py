"""End-to-end tests for the command line interface"""
import re

import pytest
from typer.testing import CliRunner

from pocket_ipam.cli import app as cli
from pocket_ipam.core.config import APP_VERSION, DB_FILENAME
from pocket_ipam.core.models import ProbeResult

runner = CliRunner()
ID_RE = re.compile(r"ID: ([A-Z]{3}[0-9]{3})")


@pytest.fixture
def env(tmp_path):
    return {"POCKET_IPAM_DATADIR": str(tmp_path), "POCKET_IPAM_LOG_LEVEL": "ERROR"}


@pytest.fixture
def invoke(env):
    def _invoke(*args, input=None):
        return runner.invoke(cli.app, list(args), env=env, input=input)

    return _invoke


@pytest.fixture
def initialized(invoke, tmp_path):
    result = invoke("init", "--data-dir", str(tmp_path))
    assert result.exit_code == 0, result.output
    return invoke


def _new_id(result):
    match = ID_RE.search(result.output)
    assert match, result.output
    return match.group(1)


def test_version(invoke):
    result = invoke("version")
    assert result.exit_code == 0
    assert APP_VERSION in result.output


def test_help_command(invoke):
    result = invoke("help")
    assert result.exit_code == 0
    assert "add" in result.output and "search" in result.output


def test_init_prompts_for_location(invoke, tmp_path):
    result = invoke("init", input="\n")
    assert result.exit_code == 0, result.output
    assert (tmp_path / DB_FILENAME).exists()
    assert "POCKET_IPAM_DATADIR" not in result.output


def test_init_elsewhere_prints_env_hint(invoke, tmp_path):
    other = tmp_path / "other"
    result = invoke("init", "--data-dir", str(other))
    assert result.exit_code == 0, result.output
    assert (other / DB_FILENAME).exists()
    assert f"POCKET_IPAM_DATADIR={other}" in result.output


def test_commands_before_init_fail_cleanly(invoke):
    result = invoke("list", "subnets")
    assert result.exit_code == 1
    assert "not initialized" in result.output


def test_add_and_resolve_parent(initialized):
    result = initialized("add", "subnet", "--cidr", "10.0.0.0/24", "--name", "lab", "--comment", "bench")
    assert result.exit_code == 0, result.output
    assert "Subnet added successfully!" in result.output
    subnet_id = _new_id(result)

    result = initialized("add", "host", "--address", "10.0.0.5", "--parent", "lab", "--name", "nas")
    assert result.exit_code == 0, result.output
    assert f"Parent: {subnet_id}" in result.output

    result = initialized("add", "host", "--address", "10.0.0.6", "--parent", "nonexistent")
    assert result.exit_code == 1
    assert "no subnet found matching reference: nonexistent" in result.output

    result = initialized("list", "hosts")
    assert result.exit_code == 0
    assert "10.0.0.5" in result.output
    assert "10.0.0.6" not in result.output
    assert "| lab " in result.output
    assert "Total: 1 rows" in result.output


def test_ambiguous_parent_is_reported(initialized):
    initialized("add", "subnet", "--cidr", "10.0.0.0/24", "--name", "lab")
    initialized("add", "subnet", "--cidr", "10.0.1.0/24", "--name", "lab")
    result = initialized("add", "host", "--address", "10.0.0.9", "--parent", "lab")
    assert result.exit_code == 1
    assert "multiple subnets match reference 'lab'" in result.output


def test_missing_required_option_prints_usage_on_stdout(initialized):
    result = initialized("add", "subnet", "--name", "lab")
    assert result.exit_code == 2
    assert "Usage:" in result.stdout
    assert "add subnet" in result.stdout
    assert "Missing option '--cidr'" in result.stdout


@pytest.mark.parametrize(
    "args",
    [("add", "router"), ("list", "routers"), ("frobnicate",)],
)
def test_unknown_verb_or_object_prints_usage_on_stdout(initialized, args):
    result = initialized(*args)
    assert result.exit_code == 2
    assert "Usage:" in result.stdout
    assert "Error:" in result.stdout


def test_domain_errors_keep_exit_code_one(initialized):
    result = initialized("show", "host", "NOP000")
    assert result.exit_code == 1
    assert "host NOP000 not found" in result.output


def test_interrupted_sweep_exits_130(initialized, monkeypatch):
    initialized("add", "subnet", "--cidr", "10.0.0.0/29", "--name", "lab")

    def interrupted(*args, **kwargs):
        raise KeyboardInterrupt

    monkeypatch.setattr(cli, "ping_sweep", interrupted)
    result = initialized("ping", "subnet", "lab")
    assert result.exit_code == 130
    assert "Interrupted by user." in result.output


def test_invalid_cidr_is_reported(initialized):
    result = initialized("add", "subnet", "--cidr", "10.0.0.0/99")
    assert result.exit_code == 1
    assert "invalid CIDR" in result.output


def test_edit_show_and_delete(initialized):
    subnet_id = _new_id(initialized("add", "subnet", "--cidr", "10.0.0.0/24", "--name", "lab"))
    host_id = _new_id(initialized("add", "host", "--address", "10.0.0.5", "--parent", "lab"))

    result = initialized("edit", "host", host_id, "--name", "printer", "--comment", "2nd floor")
    assert result.exit_code == 0, result.output
    assert "Name: printer" in result.output

    result = initialized("edit", "subnet", subnet_id)
    assert result.exit_code == 1
    assert "nothing to change" in result.output

    result = initialized("show", "subnet", "lab")
    assert result.exit_code == 1

    result = initialized("show", "subnet", subnet_id)
    assert result.exit_code == 0
    assert "printer" in result.output

    result = initialized("delete", "host", host_id)
    assert result.exit_code == 0
    assert f"Host {host_id} deleted." in result.output

    result = initialized("delete", "host", host_id)
    assert result.exit_code == 1
    assert f"host {host_id} not found" in result.output

    assert initialized("delete", "subnet", subnet_id).exit_code == 0
    assert "No data to display." in initialized("list", "subnets").output


def test_search(initialized):
    initialized("add", "subnet", "--cidr", "192.168.1.0/24", "--name", "home-network")
    initialized("add", "host", "--address", "192.168.1.1", "--name", "router", "--parent", "home-network")

    result = initialized("search", "192.168.1")
    assert result.exit_code == 0
    assert "Subnets:" in result.output and "Hosts:" in result.output
    assert "router" in result.output

    result = initialized("search", "zzz")
    assert result.exit_code == 0
    assert "No results found." in result.output


def test_ping_subnet_records_discoveries(initialized, monkeypatch):
    initialized("add", "subnet", "--cidr", "10.0.0.0/29", "--name", "lab")
    calls = {}

    def fake_sweep(cidr, method, timeout, workers, limit, iface):
        calls.update(cidr=cidr, method=method, timeout=timeout, workers=workers)
        return [ProbeResult("10.0.0.1", True, 0.3), ProbeResult("10.0.0.2", False)]

    monkeypatch.setattr(cli, "ping_sweep", fake_sweep)
    result = initialized("ping", "subnet", "lab", "--timeout", "2")
    assert result.exit_code == 0, result.output
    assert "1 of 2 addresses answered." in result.output
    assert calls == {"cidr": "10.0.0.0/29", "method": "icmp", "timeout": 2, "workers": 64}

    result = initialized("list", "discoveries", "--subnet", "10.0.0.0/29")
    assert "10.0.0.1" in result.output
    assert "alive" in result.output
    assert "10.0.0.2" not in result.output


def test_ping_unknown_subnet(initialized):
    result = initialized("ping", "subnet", "nowhere")
    assert result.exit_code == 1
    assert "no subnet found" in result.output
