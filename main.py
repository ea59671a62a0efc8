#!/usr/bin/env python3
"""Minecraft Launcher Entry Point"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from craftlaunch.config import load_config
from craftlaunch.core.launcher import Launcher
from craftlaunch.errors import LauncherError, OperationCancelledError
from craftlaunch.utils import setup_logging

logger = logging.getLogger("craftlaunch")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="craftlaunch", description="Install and launch Minecraft versions")
    parser.add_argument("--config", type=Path, help="path to launcher_config.json")
    parser.add_argument("-v", "--verbose", action="store_true", help="log debug output to the console")
    sub = parser.add_subparsers(dest="command", required=True)

    install = sub.add_parser("install", help="download a catalog version")
    install.add_argument("version")

    modded = sub.add_parser("modded", help="create a modded version on top of a base version")
    modded.add_argument("name")
    modded.add_argument("base_version")
    modded.add_argument("loader", choices=["fabric", "quilt", "forge", "neoforge"])

    launch = sub.add_parser("launch", help="prepare and start an installed version")
    launch.add_argument("version")
    launch.add_argument("--username", default="Player")
    launch.add_argument("--java", type=Path)

    uninstall = sub.add_parser("uninstall", help="remove an installed version")
    uninstall.add_argument("version")

    sub.add_parser("list", help="list catalog and installed versions")
    return parser


async def run(args) -> int:
    launcher = Launcher(load_config(args.config))

    async def progress(stage: str, current: int, total: int):
        logger.debug("%s %d/%d", stage, current, total)

    async def transfer(report):
        logger.debug("%s %d/%s bytes", report.name, report.downloaded, report.total or "?")

    context = launcher.new_context(progress=progress, transfer=transfer)

    if args.command == "install":
        await launcher.install_version(args.version, context)
    elif args.command == "modded":
        result = await launcher.create_modded_version(args.name, args.base_version, args.loader, context)
        print(f"Created {result['id']} ({result['loader']} {result['loaderVersion']})")
    elif args.command == "launch":
        process = await launcher.launch(args.version, args.username, args.java, context)
        for line in process.stdout:
            print(line.decode("utf-8", errors="replace").rstrip())
        return process.wait()
    elif args.command == "list":
        for version in await launcher.list_versions(context):
            marker = "*" if version.isInstalled else " "
            print(f"{marker} {version.id:<32} {version.type}")
    elif args.command == "uninstall":
        launcher.uninstall(args.version)
        print(f"Removed {args.version}")
    return 0


def main() -> int:
    args = build_parser().parse_args()
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)
    try:
        return asyncio.run(run(args))
    except OperationCancelledError:
        logger.info("Cancelled")
        return 130
    except KeyboardInterrupt:
        return 130
    except LauncherError as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
