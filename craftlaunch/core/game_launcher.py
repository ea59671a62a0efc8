"""Game launcher for Minecraft."""

import logging
import os
import platform
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..config import LauncherConfig
from ..versions.acquisition import is_loader_produced, library_path
from ..versions.models import (
    ArgumentToken, ConditionalArgument, ResolvedRuntime, VersionLibraryRules, VersionLibraryRulesOs,
)
from ..versions.rules import allowed

logger = logging.getLogger(__name__)

DEFAULT_MAIN_CLASS = "net.minecraft.client.main.Main"
VARIABLE_RE = re.compile(r"\$\{([^}]+)\}")

# JVM arguments used when a version has no modern argument templates.
DEFAULT_JVM_ARGUMENTS: List[ArgumentToken] = [
    ConditionalArgument(
        rules=[VersionLibraryRules(action="allow", os=VersionLibraryRulesOs(name="osx"))],
        value=["-XstartOnFirstThread"],
    ),
    ConditionalArgument(
        rules=[VersionLibraryRules(action="allow", os=VersionLibraryRulesOs(name="windows"))],
        value="-XX:HeapDumpPath=MojangTricksIntelDriversForPerformance_javaw.exe_minecraft.exe.heapdump",
    ),
    "-Djava.library.path=${natives_directory}",
    "-Dminecraft.launcher.brand=${launcher_name}",
    "-Dminecraft.launcher.version=${launcher_version}",
    "-cp",
    "${classpath}",
]

# Game arguments used when a version has neither modern nor legacy templates.
DEFAULT_GAME_ARGUMENTS = [
    "--username", "${auth_player_name}",
    "--version", "${version_name}",
    "--gameDir", "${game_directory}",
    "--assetsDir", "${assets_root}",
    "--assetIndex", "${assets_index_name}",
    "--uuid", "${auth_uuid}",
    "--accessToken", "${auth_access_token}",
    "--userType", "${user_type}",
]

MOD_PATH_FLAGS = {
    "fabric": "-Dfabric.modPath",
    "quilt": "-Dquilt.modPath",
    "forge": "-Dfml.modsFolder",
    "neoforge": "-Dfml.modsFolder",
}


@dataclass
class LaunchCommand:
    jvm_args: List[str]
    main_class: str
    game_args: List[str]
    classpath: List[Path] = field(default_factory=list)
    cwd: Optional[Path] = None

    @property
    def classpath_string(self) -> str:
        return os.pathsep.join(str(path) for path in self.classpath)

    def command(self, java: str) -> List[str]:
        return [str(java), *self.jvm_args, self.main_class, *self.game_args]


def substitute(token: str, variables: Dict[str, str]) -> str:
    """Replace ``${name}`` placeholders, leaving unknown names verbatim."""
    return VARIABLE_RE.sub(lambda m: variables.get(m.group(1), m.group(0)), token)


def expand_arguments(tokens: Iterable[ArgumentToken], variables: Dict[str, str],
                     os_name: Optional[str] = None) -> List[str]:
    """Expand argument templates. Conditional tokens are evaluated with no feature enabled."""
    args: List[str] = []
    for token in tokens:
        if isinstance(token, ConditionalArgument):
            if not allowed(token.rules, os_name, features={}):
                continue
            args.extend(substitute(value, variables) for value in token.values)
        else:
            args.append(substitute(token, variables))
    return args


def apply_memory(jvm_args: List[str], max_memory: Optional[str], min_memory: Optional[str]) -> List[str]:
    """Replace heap size flags with the configured ones."""
    overrides = []
    if max_memory:
        overrides.append(f"-Xmx{max_memory}")
    if min_memory:
        overrides.append(f"-Xms{min_memory}")
    prefixes = tuple(flag[:4] for flag in overrides)
    kept = [arg for arg in jvm_args if not (prefixes and arg.startswith(prefixes))]
    return overrides + kept


class GameLauncher:
    def __init__(self, config: LauncherConfig):
        self.config = config
        self.libraries_dir = config.libraries_dir
        self.versions_dir = config.versions_dir

    def build_classpath(self, runtime: ResolvedRuntime, extra_binaries: Iterable[Path] = (),
                        os_name: Optional[str] = None) -> List[Path]:
        """Libraries in resolver order, then the version binaries, then ``extra_binaries``."""
        entries: List[Path] = []
        for library in runtime.libraries:
            if not allowed(library.rules, os_name):
                continue
            has_artifact = bool(library.downloads and library.downloads.artifact)
            if library.natives and not has_artifact:
                continue
            path = library_path(library, self.libraries_dir)
            if path is None:
                continue
            if is_loader_produced(library) and not path.is_file():
                logger.debug("Skipping %s, not produced yet", library.name)
                continue
            entries.append(path)

        for jar_id in runtime.binaries:
            entries.append(self.versions_dir / jar_id / f"{jar_id}.jar")
        entries.extend(Path(path) for path in extra_binaries)

        classpath: List[Path] = []
        seen = set()
        for path in entries:
            key = os.path.normcase(str(path))
            if key not in seen:
                seen.add(key)
                classpath.append(path)
        return classpath

    def build_invocation(self, runtime: ResolvedRuntime, runtime_vars: Dict[str, str],
                         extra_binaries: Iterable[Path] = (), os_name: Optional[str] = None) -> LaunchCommand:
        """Assemble the java invocation for a resolved version."""
        version_dir = self.versions_dir / runtime.version_id
        classpath = self.build_classpath(runtime, extra_binaries, os_name)

        variables = {
            "version_name": runtime.version_id,
            "version_type": runtime.version_type or "release",
            "game_directory": str(version_dir),
            "assets_root": str(self.config.assets_dir),
            "game_assets": str(self.config.assets_dir),
            "assets_index_name": runtime.asset_index.id if runtime.asset_index else runtime.version_id,
            "library_directory": str(self.libraries_dir),
            "natives_directory": str(version_dir / "natives"),
            "launcher_name": self.config.launcher_name,
            "launcher_version": self.config.launcher_version,
            "classpath_separator": os.pathsep,
            "classpath": os.pathsep.join(map(str, classpath)),
            "user_properties": "{}",
        }
        variables.update(runtime_vars)

        if runtime.has_modern_arguments:
            jvm_args = expand_arguments(runtime.jvm_arguments, variables, os_name)
            game_args = expand_arguments(runtime.game_arguments, variables, os_name)
        else:
            jvm_args = expand_arguments(DEFAULT_JVM_ARGUMENTS, variables, os_name)
            if runtime.legacy_arguments:
                game_args = [substitute(arg, variables) for arg in runtime.legacy_arguments.split()]
            else:
                game_args = expand_arguments(DEFAULT_GAME_ARGUMENTS, variables, os_name)

        if not {"-cp", "-classpath", "--class-path"} & set(jvm_args):
            jvm_args.extend(["-cp", variables["classpath"]])

        jvm_args = apply_memory(jvm_args, self.config.max_memory, self.config.min_memory)

        meta = runtime.launcher
        if meta is not None and meta.modded and meta.loader in MOD_PATH_FLAGS:
            jvm_args.insert(0, f"{MOD_PATH_FLAGS[meta.loader]}={version_dir / 'mods'}")

        return LaunchCommand(
            jvm_args=jvm_args,
            main_class=runtime.main_class or DEFAULT_MAIN_CLASS,
            game_args=game_args,
            classpath=classpath,
            cwd=version_dir,
        )

    def launch_game(self, command: LaunchCommand, java: str) -> subprocess.Popen:
        """Launch the game process."""
        logger.info("Launching %s with %s", command.main_class, java)
        popen_args = {
            "args": command.command(java),
            "cwd": str(command.cwd) if command.cwd else None,
            "env": os.environ.copy(),
            "stdout": subprocess.PIPE,
            "stderr": subprocess.STDOUT,
            "stdin": subprocess.DEVNULL,
        }

        # Keep the game alive after the launcher exits
        if platform.system() == "Windows":
            popen_args["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            popen_args["start_new_session"] = True

        return subprocess.Popen(**popen_args)
