"""Tests for the command line entry point."""

import json

import pytest

from main import build_parser, run


def test_uninstall_arguments():
    args = build_parser().parse_args(["uninstall", "old"])
    assert args.command == "uninstall"
    assert args.version == "old"


@pytest.mark.asyncio
async def test_uninstall_command(tmp_path, capsys):
    root = tmp_path / "minecraft"
    (root / "versions" / "old").mkdir(parents=True)
    (root / "versions" / "keep").mkdir()
    config_path = tmp_path / "launcher_config.json"
    config_path.write_text(json.dumps({"root_dir": str(root)}))

    args = build_parser().parse_args(["--config", str(config_path), "uninstall", "old"])

    assert await run(args) == 0
    assert not (root / "versions" / "old").exists()
    assert (root / "versions" / "keep").is_dir()
    assert "Removed old" in capsys.readouterr().out
