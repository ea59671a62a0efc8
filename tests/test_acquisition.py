"""Tests for library, native and asset acquisition."""

import hashlib
import json

import pytest

from craftlaunch.errors import NotFoundError, OperationCancelledError, StorageError
from craftlaunch.versions.acquisition import (
    ArtifactCoordinator, NativeBundle, asset_object_path, asset_object_url, is_loader_produced,
)
from craftlaunch.versions.download_manager import DownloadJob, DownloadManager
from craftlaunch.versions.maven import MavenCoordinate
from craftlaunch.versions.models import AssetIndexRef, VersionLibrary


def sha1(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


def test_asset_object_location(config):
    digest = "abc123" + "0" * 34
    assert len(digest) == 40

    path = asset_object_path(config.assets_dir / "objects", digest)
    assert path == config.assets_dir / "objects" / "ab" / digest
    assert asset_object_url(config.resources_base_url, digest) == \
        f"https://resources.download.minecraft.net/ab/{digest}"


def test_maven_coordinate_paths():
    coord = MavenCoordinate.parse("de.oceanlabs.mcp:mcp_config:1.20.1-20230612.114412@zip")
    assert coord.path == "de/oceanlabs/mcp/mcp_config/1.20.1-20230612.114412/mcp_config-1.20.1-20230612.114412.zip"

    natives = MavenCoordinate.parse("org.lwjgl:lwjgl:3.3.1").with_classifier("natives-linux")
    assert natives.path == "org/lwjgl/lwjgl/3.3.1/lwjgl-3.3.1-natives-linux.jar"
    assert str(natives) == "org.lwjgl:lwjgl:3.3.1:natives-linux"

    with pytest.raises(ValueError):
        MavenCoordinate.parse("not-a-coordinate")


@pytest.mark.asyncio
async def test_jobs_from_coordinates_and_descriptors(context):
    async with DownloadManager() as downloader:
        coordinator = ArtifactCoordinator(downloader, context)

        derived = coordinator.library_job(VersionLibrary(name="net.fabricmc:intermediary:1.20.1",
                                                         url="https://maven.fabricmc.net/"))
        default_repo = coordinator.library_job(VersionLibrary(name="com.mojang:brigadier:1.1.8"))
        explicit = coordinator.library_job(VersionLibrary(
            name="org.ow2.asm:asm:9.5",
            downloads={"artifact": {"path": "org/ow2/asm/asm/9.5/asm-9.5.jar", "sha1": "a" * 40,
                                    "size": 10, "url": "https://maven.example/asm-9.5.jar"}},
        ))

    libraries = context.config.libraries_dir
    assert derived.url == "https://maven.fabricmc.net/net/fabricmc/intermediary/1.20.1/intermediary-1.20.1.jar"
    assert derived.destination == libraries / "net/fabricmc/intermediary/1.20.1/intermediary-1.20.1.jar"
    assert default_repo.url == "https://libraries.minecraft.net/com/mojang/brigadier/1.1.8/brigadier-1.1.8.jar"
    assert explicit.destination == libraries / "org/ow2/asm/asm/9.5/asm-9.5.jar"
    assert (explicit.url, explicit.sha1, explicit.size) == ("https://maven.example/asm-9.5.jar", "a" * 40, 10)


def test_loader_client_artifacts_are_not_downloaded(context):
    forge_client = VersionLibrary(name="net.minecraftforge:forge:1.20.1-47.2.0:client")
    neoforge_client = VersionLibrary(name="net.neoforged:neoforge:20.4.80:client")
    local_only = VersionLibrary(name="net.minecraftforge:forge:1.20.1-47.2.0:universal",
                                downloads={"artifact": {"path": "net/minecraftforge/forge/x.jar", "url": ""}})
    universal = VersionLibrary(name="net.minecraftforge:forge:1.20.1-47.2.0:universal")

    assert is_loader_produced(forge_client)
    assert is_loader_produced(neoforge_client)
    assert is_loader_produced(local_only)
    assert not is_loader_produced(universal)

    coordinator = ArtifactCoordinator(DownloadManager(), context)
    jobs, natives = coordinator.plan_libraries([forge_client, neoforge_client, local_only, universal], "linux")
    assert [job.name for job in jobs] == ["net.minecraftforge:forge:1.20.1-47.2.0:universal"]
    assert natives == []


def test_plan_filters_by_rules(context):
    linux_only = VersionLibrary(name="org.lwjgl:lwjgl-glfw:3.3.1",
                                rules=[{"action": "allow", "os": {"name": "linux"}}])
    not_osx = VersionLibrary(name="ca.weblite:java-objc-bridge:1.1",
                             rules=[{"action": "allow"}, {"action": "disallow", "os": {"name": "osx"}}])

    coordinator = ArtifactCoordinator(DownloadManager(), context)
    linux_jobs, _ = coordinator.plan_libraries([linux_only, not_osx], "linux")
    osx_jobs, _ = coordinator.plan_libraries([linux_only, not_osx], "osx")

    assert [job.name for job in linux_jobs] == [linux_only.name, not_osx.name]
    assert osx_jobs == []


@pytest.mark.asyncio
async def test_acquire_libraries_with_natives(file_server, context, jar_factory):
    lib_bytes = jar_factory({"org/example/Lib.class": b"lib"})
    native_bytes = jar_factory({
        "META-INF/MANIFEST.MF": b"Manifest-Version: 1.0\r\n",
        "linux/x64/liblwjgl.so": b"so",
        "lwjgl.dll": b"dll",
    })
    context.config.libraries_base_url = file_server.url("/maven/")
    file_server.add("/maven/org/example/lib/1.0/lib-1.0.jar", lib_bytes)
    native_url = file_server.add("/natives.jar", native_bytes)

    library = VersionLibrary(name="org.example:lib:1.0")
    native = VersionLibrary(
        name="org.lwjgl:lwjgl-platform:2.9.4",
        natives={"linux": "natives-test", "windows": "natives-test", "osx": "natives-test"},
        extract={"exclude": ["META-INF/"]},
        downloads={"classifiers": {"natives-test": {
            "path": "org/lwjgl/lwjgl-platform/2.9.4/lwjgl-platform-2.9.4-natives-test.jar",
            "sha1": sha1(native_bytes), "size": len(native_bytes), "url": native_url,
        }}},
    )
    natives_dir = context.config.versions_dir / "1.12.2" / "natives"

    async with DownloadManager() as downloader:
        coordinator = ArtifactCoordinator(downloader, context)
        await coordinator.acquire_libraries([library, native], natives_dir)
        await coordinator.acquire_libraries([library, native], natives_dir)

    assert file_server.total_hits == 2
    assert (context.config.libraries_dir / "org/example/lib/1.0/lib-1.0.jar").read_bytes() == lib_bytes
    assert sorted(p.name for p in natives_dir.iterdir()) == ["liblwjgl.so", "lwjgl.dll"]


@pytest.mark.asyncio
async def test_broken_native_does_not_stop_siblings(context, jar_factory, tmp_path):
    good = tmp_path / "good.jar"
    good.write_bytes(jar_factory({"good.so": b"ok"}))
    bad = tmp_path / "bad.jar"
    bad.write_bytes(b"not a zip")
    natives_dir = tmp_path / "natives"

    coordinator = ArtifactCoordinator(DownloadManager(), context)
    bundles = [NativeBundle(DownloadJob("", bad)), NativeBundle(DownloadJob("", good))]
    with pytest.raises(StorageError):
        await coordinator._extract_all(bundles, natives_dir)

    assert (natives_dir / "good.so").read_bytes() == b"ok"


def asset_index(file_server, objects):
    index = json.dumps({"objects": {
        name: {"hash": sha1(data), "size": len(data)} for name, data in objects.items()
    }}).encode()
    for data in objects.values():
        digest = sha1(data)
        file_server.add(f"/objects/{digest[:2]}/{digest}", data)
    url = file_server.add("/indexes/5.json", index)
    return AssetIndexRef(id="5", sha1=sha1(index), size=len(index), url=url)


@pytest.mark.asyncio
async def test_acquire_assets(file_server, context):
    context.config.resources_base_url = file_server.url("/objects/")
    objects = {
        "minecraft/sounds/a.ogg": b"sound a",
        "minecraft/sounds/b.ogg": b"sound b",
        "minecraft/lang/en_us.json": b"{}",
        "minecraft/sounds/a_copy.ogg": b"sound a",
    }
    index = asset_index(file_server, objects)
    progress = []

    async def report(stage, current, total):
        progress.append((stage, current, total))

    context.progress = report
    async with DownloadManager() as downloader:
        coordinator = ArtifactCoordinator(downloader, context)
        index_path = await coordinator.acquire_assets(index)
        first_pass = file_server.total_hits
        await coordinator.acquire_assets(index)

    assert index_path == context.config.assets_dir / "indexes" / "5.json"
    assert first_pass == 4
    assert file_server.total_hits == first_pass
    for data in objects.values():
        assert (context.config.assets_dir / "objects" / sha1(data)[:2] / sha1(data)).read_bytes() == data
    assert progress[-1] == ("Downloading assets", 3, 3)


@pytest.mark.asyncio
async def test_missing_asset_fails_the_phase(file_server, context):
    context.config.resources_base_url = file_server.url("/objects/")
    index = asset_index(file_server, {"a": b"present", "b": b"absent"})
    del file_server.files[f"/objects/{sha1(b'absent')[:2]}/{sha1(b'absent')}"]

    async with DownloadManager() as downloader:
        with pytest.raises(NotFoundError):
            await ArtifactCoordinator(downloader, context).acquire_assets(index)


@pytest.mark.asyncio
async def test_cancelled_before_claiming_work(file_server, context):
    context.config.resources_base_url = file_server.url("/objects/")
    file_server.add(f"/objects/{sha1(b'one')[:2]}/{sha1(b'one')}", b"one")
    context.cancel.cancel()

    async with DownloadManager() as downloader:
        coordinator = ArtifactCoordinator(downloader, context)
        with pytest.raises(OperationCancelledError):
            await coordinator.run_jobs([coordinator.asset_job(sha1(b"one"), 3)], "Downloading assets")

    assert file_server.total_hits == 0
