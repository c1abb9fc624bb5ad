import importlib.util
import io
import json
import sys
import uuid
from pathlib import Path

import pytest
import yaml


def _load_cli_module():
    """Dynamically load the top-level cgraph.py (CLI) as a module with a unique name."""
    cli_path = Path(__file__).resolve().parents[1] / "cgraph.py"
    mod_name = f"cgraph_cli_for_test_{uuid.uuid4().hex}"
    spec = importlib.util.spec_from_file_location(mod_name, str(cli_path))
    mod = importlib.util.module_from_spec(spec)
    sys.modules[mod_name] = mod
    assert spec.loader is not None
    spec.loader.exec_module(mod)
    return mod


@pytest.fixture
def cli():
    return _load_cli_module()


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / "graph.cg"
    path.write_text("grid\npoint:a p 1 2\n", encoding="utf-8")
    return path


def test_text_output(cli, source_file, capsys):
    cli.main([str(source_file)])
    out = capsys.readouterr().out
    lines = out.splitlines()
    assert lines[0] == "init:init"
    assert "grid" in lines
    assert "point:a" in lines
    assert '  <circle cx="1" cy="2" stroke-width="0" fill="#000" r="3"/>' in lines


def test_json_output(cli, source_file, capsys):
    cli.main([str(source_file), "--format=json"])
    data = json.loads(capsys.readouterr().out)
    assert [c["command"] for c in data["commands"]] == ["init", "grid", "point"]
    assert data["commands"][2]["name"] == "a"
    assert data["commands"][2]["elements"][0]["attributes"]["cx"] == "1"


def test_yaml_output(cli, source_file, capsys):
    cli.main([str(source_file), "--format=yaml"])
    data = yaml.safe_load(capsys.readouterr().out)
    assert [c["command"] for c in data["commands"]] == ["init", "grid", "point"]


def test_xml_output(cli, source_file, capsys):
    cli.main([str(source_file), "--format=xml"])
    out = capsys.readouterr().out
    assert "<cgraph>" in out
    assert "<command>grid</command>" in out


def test_toml_output(cli, source_file, capsys):
    cli.main([str(source_file), "--format=TOML"])
    out = capsys.readouterr().out
    assert "[[commands]]" in out


def test_reads_stdin(cli, monkeypatch, capsys):
    monkeypatch.setattr(sys, "stdin", io.StringIO("axis"))
    cli.main(["-", "--format=json"])
    data = json.loads(capsys.readouterr().out)
    assert [c["command"] for c in data["commands"]] == ["init", "axis"]


def test_stdin_is_default(cli, monkeypatch, capsys):
    monkeypatch.setattr(sys, "stdin", io.StringIO(""))
    cli.main([])
    assert capsys.readouterr().out == ""


def test_script_errors_go_to_stderr(cli, monkeypatch, capsys):
    monkeypatch.setattr(sys, "stdin", io.StringIO("point p {=oops} 1 2"))
    cli.main([])
    captured = capsys.readouterr()
    assert "ScriptError: NameError" in captured.err
    assert "point" in captured.out


def test_config_option(cli, tmp_path, monkeypatch, capsys):
    config = tmp_path / "cfg.yaml"
    config.write_text("options:\n  max_loop_iterations: 1\n", encoding="utf-8")
    monkeypatch.setattr(sys, "stdin", io.StringIO(".for {i=0}{True}{i=i+1}\npoint p $i 0;;"))
    cli.main([f"--config={config}", "--format=json"])
    data = json.loads(capsys.readouterr().out)
    assert [c["command"] for c in data["commands"]] == ["init", "point"]


@pytest.mark.parametrize("argv, message", [
    (["--format=svg"], "unknown format"),
    (["--verbose"], "unknown option"),
    (["does-not-exist.cg"], "file not found"),
])
def test_bad_arguments_exit_with_error(cli, capsys, argv, message):
    with pytest.raises(SystemExit) as exc:
        cli.main(argv)
    assert exc.value.code == 1
    assert message in capsys.readouterr().err


def test_bad_config_exits_with_error(cli, tmp_path, source_file, capsys):
    config = tmp_path / "cfg.ini"
    config.write_text("", encoding="utf-8")
    with pytest.raises(SystemExit) as exc:
        cli.main([str(source_file), f"--config={config}"])
    assert exc.value.code == 1
    assert "bad configuration" in capsys.readouterr().err


def test_help(cli, capsys):
    with pytest.raises(SystemExit) as exc:
        cli.main(["-h"])
    assert exc.value.code == 0
    assert capsys.readouterr().out.startswith("usage: cgraph.py")


def test_parse_args_defaults(cli):
    assert cli.parse_args([]) == ("-", "text", None)
    assert cli.parse_args(["a.cg", "--format=yaml", "--config=c.toml"]) == ("a.cg", "yaml", "c.toml")
