from __future__ import annotations

from onionrelay import cli
from onionrelay.__about__ import __version__


def test_parser_builds() -> None:
    p = cli.build_parser()
    # Ensure subcommands exist
    sub = p._subparsers
    assert sub is not None
    args = p.parse_args(["simulate", "--relays", "4", "--message", "hi", "--seed", "3"])
    assert args.command == "simulate"
    assert args.relays == 4
    assert args.seed == 3


def test_version_command_runs(capsys) -> None:
    rc = cli.main(["version"])
    assert rc == 0
    out = capsys.readouterr().out.strip()
    assert out == __version__


def test_simulate_command_delivers(tmp_path, capsys) -> None:
    rc = cli.main(
        ["simulate", "--config", str(tmp_path / "none.yaml"), "--relays", "3", "--message", "hi", "--seed", "1"]
    )
    assert rc == 0
    out = capsys.readouterr().out
    assert "delivered: 'hi'" in out


def test_simulate_with_too_few_relays(tmp_path, capsys) -> None:
    rc = cli.main(["simulate", "--config", str(tmp_path / "none.yaml"), "--relays", "2"])
    assert rc == 1
    assert "Insufficient nodes" in capsys.readouterr().out
