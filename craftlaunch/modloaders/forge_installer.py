"""Forge/NeoForge installer processing.

Modern Forge and NeoForge installers do not ship a client jar. They ship a
binary patch against the vanilla jar and a list of processors (small Java
tools) that deobfuscate, merge and patch it. This module replays that chain
locally and installs the produced jar as the version's runtime binary.
"""

import asyncio
import contextlib
import json
import logging
import lzma
import os
import re
import secrets
import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..core.context import LaunchContext
from ..errors import (
    MissingToolError, NotFoundError, ProcessorError, StorageError, ValidationError,
)
from ..utils.retry import RetryPolicy
from ..versions.acquisition import ArtifactCoordinator
from ..versions.download_manager import verify_file
from ..versions.maven import MavenCoordinate
from .models import InstallProfile, ProcessorSpec

logger = logging.getLogger(__name__)

SIDE = "client"
INSTALL_PROFILE = "install_profile.json"
# Known entry points: modern versions first, then pre-1.6 ones.
ENTRY_POINT_CLASSES = (
    "net/minecraft/client/main/Main.class",
    "net/minecraft/client/Minecraft.class",
)
# Data keys naming the pipeline's final jar, in order of preference.
OUTPUT_KEYS = ("PATCHED", "MC_OFF")
TOKEN_RE = re.compile(r"\{([A-Za-z0-9_]+)\}")
STDERR_TAIL = 4000


def is_valid_game_jar(path: Path) -> bool:
    try:
        with zipfile.ZipFile(path, 'r') as zf:
            names = set(zf.namelist())
    except (zipfile.BadZipFile, OSError):
        return False
    return any(entry in names for entry in ENTRY_POINT_CLASSES)


def validate_game_jar(path: Path) -> None:
    if not is_valid_game_jar(path):
        raise ValidationError(f"{path} is not a valid game jar (no known entry point)")


def read_main_class(jar: Path) -> Optional[str]:
    """Read ``Main-Class`` from a jar's manifest."""
    try:
        with zipfile.ZipFile(jar, 'r') as zf:
            manifest = zf.read("META-INF/MANIFEST.MF").decode("utf-8", errors="replace")
    except KeyError:
        return None
    except (zipfile.BadZipFile, OSError) as e:
        raise MissingToolError(f"Cannot open tool jar {jar}: {e}") from e

    # Manifest lines longer than 72 bytes continue on lines starting with a space.
    unfolded = re.sub(r"\r?\n ", "", manifest)
    for line in unfolded.splitlines():
        key, _, value = line.partition(":")
        if key.strip() == "Main-Class":
            return value.strip() or None
    return None


def read_install_profile(installer: Path) -> InstallProfile:
    try:
        with zipfile.ZipFile(installer, 'r') as zf:
            data = json.loads(zf.read(INSTALL_PROFILE))
    except KeyError as e:
        raise StorageError(f"{installer.name} has no {INSTALL_PROFILE}") from e
    except (zipfile.BadZipFile, OSError, json.JSONDecodeError) as e:
        raise StorageError(f"Cannot read installer {installer}: {e}") from e
    try:
        return InstallProfile(**data)
    except PydanticValidationError as e:
        raise StorageError(f"Invalid install profile in {installer.name}: {e}") from e


def read_installer_version_json(installer: Path) -> Dict[str, Any]:
    """The version descriptor embedded in an installer (``version.json``)."""
    try:
        with zipfile.ZipFile(installer, 'r') as zf:
            names = zf.namelist()
            if "version.json" in names:
                return json.loads(zf.read("version.json"))
            if INSTALL_PROFILE in names:
                legacy = json.loads(zf.read(INSTALL_PROFILE))
                if "versionInfo" in legacy:
                    return legacy["versionInfo"]
            for name in names:
                if name.endswith("version.json"):
                    return json.loads(zf.read(name))
    except (zipfile.BadZipFile, OSError, json.JSONDecodeError) as e:
        raise StorageError(f"Cannot read installer {installer}: {e}") from e
    raise NotFoundError(f"version.json not found in installer {installer.name}")


class ForgeInstaller:
    def __init__(self, coordinator: ArtifactCoordinator, context: LaunchContext,
                 java_path: Optional[str] = None):
        self.coordinator = coordinator
        self.java_path = str(java_path) if java_path else None
        self.context = context
        self.config = context.config
        self.libraries_dir = self.config.libraries_dir

    def artifact_path(self, coordinate: str) -> Path:
        return self.libraries_dir / MavenCoordinate.parse(coordinate).path

    async def materialize_binary(self, base_version_id: str, installer_path: Optional[Path],
                                 output_path: Path) -> Path:
        """Produce a launchable client jar at ``output_path``.

        ``output_path`` is only replaced once the produced jar validated, a
        failing step leaves it untouched.
        """
        base_jar = self.config.versions_dir / base_version_id / f"{base_version_id}.jar"
        if installer_path is None:
            return await self._install_base_copy(base_jar, output_path)

        loop = asyncio.get_running_loop()
        profile = await loop.run_in_executor(None, read_install_profile, installer_path)
        processors = [proc for proc in profile.processors if proc.runs_on(SIDE)]
        if not processors:
            logger.info("Installer %s has no client processors, using the base jar", installer_path.name)
            return await self._install_base_copy(base_jar, output_path)

        if not base_jar.is_file():
            raise NotFoundError(f"Base jar for {base_version_id} is missing: {base_jar}")

        await loop.run_in_executor(None, self._extract_embedded_maven, installer_path)
        await self.coordinator.acquire_libraries(profile.libraries)

        work_root = self.config.root_dir / "installers"
        try:
            work_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create installer work directory {work_root}: {e}") from e
        with tempfile.TemporaryDirectory(prefix="work-", dir=work_root) as work:
            work_dir = Path(work)
            data = await loop.run_in_executor(
                None, self._build_data, profile, installer_path, work_dir, base_version_id, base_jar)

            total = len(processors)
            for index, processor in enumerate(processors):
                self.context.cancel.raise_if_cancelled()
                await self.context.report("Running installer processors", index, total)
                await self._run_processor(index, processor, data, work_dir)
            await self.context.report("Running installer processors", total, total)

            produced = self._locate_output(data)
            await loop.run_in_executor(None, self._install_output, produced, output_path)

        logger.info("Installed patched client jar %s", output_path)
        return output_path

    async def _install_base_copy(self, base_jar: Path, output_path: Path) -> Path:
        if not base_jar.is_file():
            raise NotFoundError(f"Base jar is missing: {base_jar}")
        await asyncio.get_running_loop().run_in_executor(None, self._install_output, base_jar, output_path)
        return output_path

    def _extract_embedded_maven(self, installer: Path) -> None:
        """Copy the installer's bundled ``maven/`` artifacts into the library cache."""
        part = None
        try:
            with zipfile.ZipFile(installer, 'r') as zf:
                for info in zf.infolist():
                    if info.is_dir() or not info.filename.startswith("maven/"):
                        continue
                    target = self.libraries_dir / info.filename[len("maven/"):]
                    if target.is_file():
                        continue
                    target.parent.mkdir(parents=True, exist_ok=True)
                    part = target.with_name(f"{target.name}.{secrets.token_hex(4)}.part")
                    with zf.open(info) as src, open(part, 'wb') as dst:
                        shutil.copyfileobj(src, dst)
                    os.replace(part, target)
                    part = None
                    logger.debug("Extracted bundled library %s", target)
        except (zipfile.BadZipFile, OSError) as e:
            raise StorageError(f"Cannot extract bundled libraries from {installer.name}: {e}") from e
        finally:
            if part is not None:
                part.unlink(missing_ok=True)

    def _build_data(self, profile: InstallProfile, installer: Path, work_dir: Path,
                    base_version_id: str, base_jar: Path) -> Dict[str, str]:
        data = {
            "SIDE": SIDE,
            "MINECRAFT_JAR": str(base_jar),
            "MINECRAFT_VERSION": base_version_id,
            "ROOT": str(self.config.root_dir),
            "INSTALLER": str(installer),
            "LIBRARY_DIR": str(self.libraries_dir),
        }
        try:
            with zipfile.ZipFile(installer, 'r') as zf:
                for key, spec in profile.data.items():
                    value = spec.client
                    if value is not None:
                        data[key] = self._data_value(value, zf, work_dir)
        except (zipfile.BadZipFile, OSError) as e:
            raise StorageError(f"Cannot extract installer data from {installer.name}: {e}") from e

        binpatch = data.get("BINPATCH")
        if binpatch and Path(binpatch).is_file():
            patch_data = work_dir / "client.patch"
            try:
                with lzma.open(binpatch, 'rb') as src, open(patch_data, 'wb') as dst:
                    shutil.copyfileobj(src, dst)
            except lzma.LZMAError as e:
                raise ProcessorError(f"Cannot decompress binary patch {binpatch}: {e}") from e
            except OSError as e:
                raise StorageError(f"Cannot write binary patch {patch_data}: {e}") from e
            data["PATCH_DATA"] = str(patch_data)
        return data

    def _data_value(self, value: str, zf: zipfile.ZipFile, work_dir: Path) -> str:
        if value.startswith("[") and value.endswith("]"):
            return str(self.artifact_path(value[1:-1]))
        if value.startswith("'") and value.endswith("'"):
            return value[1:-1]
        if value.startswith("/"):
            entry = value.lstrip("/")
            target = work_dir / entry
            target.parent.mkdir(parents=True, exist_ok=True)
            try:
                with zf.open(entry) as src, open(target, 'wb') as dst:
                    shutil.copyfileobj(src, dst)
            except KeyError as e:
                raise MissingToolError(f"Installer is missing data entry {value}") from e
            return str(target)
        return value

    def expand_argument(self, arg: str, data: Dict[str, str]) -> str:
        if arg.startswith("[") and arg.endswith("]"):
            return str(self.artifact_path(arg[1:-1]))

        def lookup(match):
            key = match.group(1)
            if key not in data:
                raise ProcessorError(f"Unknown installer token {{{key}}} in argument {arg!r}")
            return data[key]

        return TOKEN_RE.sub(lookup, arg)

    def _outputs_verified(self, processor: ProcessorSpec, data: Dict[str, str]) -> bool:
        if not processor.outputs:
            return False
        for path_token, sha1_token in processor.outputs.items():
            path = Path(self.expand_argument(path_token, data))
            sha1 = self.expand_argument(sha1_token, data).strip("'")
            if not verify_file(path, sha1=sha1):
                return False
        return True

    def _command(self, index: int, processor: ProcessorSpec, data: Dict[str, str]) -> List[str]:
        if self.java_path is None:
            raise MissingToolError("No Java executable configured for installer processors")
        jar = self.artifact_path(processor.jar)
        if not jar.is_file():
            raise MissingToolError(f"Processor {index} tool {processor.jar} is missing at {jar}")

        classpath = [jar]
        for coordinate in processor.classpath:
            path = self.artifact_path(coordinate)
            if not path.is_file():
                raise MissingToolError(f"Processor {index} classpath library {coordinate} is missing")
            classpath.append(path)

        main_class = read_main_class(jar)
        if not main_class:
            raise ProcessorError(f"Processor {index} tool {processor.jar} has no Main-Class", step=index)

        args = [self.expand_argument(arg, data) for arg in processor.args]
        return [self.java_path, "-cp", os.pathsep.join(map(str, classpath)), main_class, *args]

    async def _run_processor(self, index: int, processor: ProcessorSpec, data: Dict[str, str],
                             work_dir: Path) -> None:
        if self._outputs_verified(processor, data):
            logger.info("Processor %d (%s) outputs already present, skipping", index, processor.jar)
            return

        command = self._command(index, processor, data)
        logger.info("Running processor %d: %s", index, processor.jar)
        await RetryPolicy.PROCESSOR.run(lambda: self._execute(index, processor, command, work_dir),
                                        f"processor {index}")

        if processor.outputs and not self._outputs_verified(processor, data):
            raise ProcessorError(f"Processor {index} ({processor.jar}) produced unexpected output", step=index)

    async def _execute(self, index: int, processor: ProcessorSpec, command: List[str], work_dir: Path) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *command, cwd=str(work_dir),
                stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE)
        except FileNotFoundError as e:
            raise MissingToolError(f"Java executable not found: {self.java_path}") from e
        stdout, stderr = await proc.communicate()

        for line in stdout.decode("utf-8", errors="replace").splitlines():
            logger.debug("[processor %d] %s", index, line)
        if proc.returncode != 0:
            err = stderr.decode("utf-8", errors="replace")[-STDERR_TAIL:]
            raise ProcessorError(
                f"Processor {index} ({processor.jar}) exited with code {proc.returncode}: {err.strip()}",
                step=index, returncode=proc.returncode, stderr=err)

    def _locate_output(self, data: Dict[str, str]) -> Path:
        for key in OUTPUT_KEYS:
            value = data.get(key)
            if value and Path(value).is_file():
                return Path(value)
        raise ProcessorError("Installer processors did not produce a client jar")

    def _install_output(self, produced: Path, output_path: Path) -> None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        part = output_path.with_name(f"{output_path.name}.{secrets.token_hex(4)}.part")
        try:
            shutil.copy2(produced, part)
            validate_game_jar(part)
            os.replace(part, output_path)
        except OSError as e:
            raise StorageError(f"Cannot install {output_path}: {e}") from e
        finally:
            with contextlib.suppress(FileNotFoundError):
                part.unlink()
