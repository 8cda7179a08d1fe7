"""Tests for the photonic-chain command-line entry point."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from conftest import P2PKH_SCRIPT
from photonic_chain.main import build_parser, main


def test_parser_collects_repeated_scripts() -> None:
    args = build_parser().parse_args(
        ["--identity", "addr", "--script", P2PKH_SCRIPT, "--script", "51", "--server", "wss://a"]
    )
    assert args.identity == "addr"
    assert args.script == [P2PKH_SCRIPT, "51"]
    assert args.server == ["wss://a"]
    assert args.config == ""


def test_parser_requires_identity() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--script", "51"])


def test_main_runs_client() -> None:
    """Verify that main() hands the parsed arguments to run()."""
    with patch("photonic_chain.main.asyncio.run") as mock_run:
        main(["--identity", "addr", "--script", "51"])
        mock_run.assert_called_once()
        coro = mock_run.call_args[0][0]
        assert coro.cr_frame.f_locals["identity"] == "addr"
        assert coro.cr_frame.f_locals["scripts"] == ["51"]
        coro.close()
