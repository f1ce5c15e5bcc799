from __future__ import annotations

import ipaddress
import logging
import socket
from unittest.mock import AsyncMock, patch

import pytest

from reflectip import cli
from reflectip.__about__ import __version__
from reflectip.config import Config
from reflectip.parsers import IPAddressInfo
from reflectip.reflector import Reflector
from reflectip.robustness import NoConsensusError

ADDRESS = ipaddress.ip_address("203.0.113.7")


@pytest.fixture(autouse=True)
def _isolated(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for env_var in Config.ENV_MAPPINGS:
        monkeypatch.delenv(env_var, raising=False)
    logger = logging.getLogger("reflectip")
    level, handlers = logger.level, list(logger.handlers)
    yield
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)


def test_parser_builds() -> None:
    p = cli.build_parser()
    # Ensure subcommands exist
    sub = p._subparsers
    assert sub is not None


def test_version_command_runs(capsys) -> None:
    rc = cli.main(["version"])
    assert rc == 0
    out = capsys.readouterr().out.strip()
    assert out == __version__


def test_prints_reflected_address(capsys) -> None:
    with patch.object(Reflector, "reflect", new=AsyncMock(return_value=ADDRESS)) as reflect:
        rc = cli.main(["--oracles", "stun", "--timeout", "3"])
    assert rc == cli.EXIT_OK
    assert capsys.readouterr().out.strip() == "203.0.113.7"
    oracles, family, timeout = reflect.await_args.args
    assert len(oracles) == 5
    assert family == socket.AF_INET
    assert timeout == 3.0


def test_ipv6_family(capsys) -> None:
    with patch.object(Reflector, "reflect", new=AsyncMock(return_value=ADDRESS)) as reflect:
        assert cli.main(["--family", "6"]) == cli.EXIT_OK
    assert reflect.await_args.args[1] == socket.AF_INET6


def test_sslip_output(capsys) -> None:
    with patch.object(Reflector, "reflect", new=AsyncMock(return_value=ADDRESS)):
        assert cli.main(["--sslip"]) == cli.EXIT_OK
    assert capsys.readouterr().out.strip() == "203-0-113-7.sslip.io"


def test_consensus_mode(capsys) -> None:
    with patch.object(Reflector, "reflect_consensus", new=AsyncMock(return_value=ADDRESS)) as vote:
        assert cli.main(["--consensus"]) == cli.EXIT_OK
    vote.assert_awaited_once()
    assert capsys.readouterr().out.strip() == "203.0.113.7"


def test_no_address_exit_code(capsys) -> None:
    with patch.object(Reflector, "reflect", new=AsyncMock(side_effect=NoConsensusError())):
        assert cli.main([]) == cli.EXIT_NO_ADDRESS
    assert "cannot obtain an address" in capsys.readouterr().err


def test_info_command(capsys) -> None:
    info = IPAddressInfo(address=ADDRESS, country="Utopia", asn=64500)
    with patch.object(Reflector, "reflect_info", new=AsyncMock(return_value=info)):
        assert cli.main(["info"]) == cli.EXIT_OK
    out = capsys.readouterr().out
    assert "address: 203.0.113.7" in out
    assert "country: Utopia" in out
    assert "city" not in out


def test_invalid_config_exit_code(tmp_path, capsys) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text("reflection:\n  family: 9\n")
    assert cli.main(["--config", str(path)]) == cli.EXIT_BAD_INPUT
    assert "Invalid configuration" in capsys.readouterr().err


def test_unknown_family_rejected_by_parser() -> None:
    with pytest.raises(SystemExit):
        cli.main(["--family", "5"])


def test_empty_config_section_with_env_override(tmp_path, monkeypatch, capsys) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("reflection:\nstun:\n")
    monkeypatch.setenv("REFLECTIP_FAMILY", "6")
    with patch.object(Reflector, "reflect", new=AsyncMock(return_value=ADDRESS)) as reflect:
        assert cli.main(["--config", str(path), "--oracles", "stun"]) == cli.EXIT_OK
    assert reflect.await_args.args[1] == socket.AF_INET6
