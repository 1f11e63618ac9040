"""Install tool binaries from GitHub releases into the runner tool cache."""

import json
import os
import platform
import re
import shutil
import sys
import tarfile
import tempfile
import threading
import urllib.error
import urllib.request
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from heighliner_action.config import InstallOptions
from heighliner_action.workflow import add_path, info

DEFAULT_API_URL = "https://api.github.com"
ASSET_SUFFIX = ".tar.gz"

# PATH is shared between concurrent installs
_path_lock = threading.Lock()

# Runner architecture tokens -> tokens used in release asset names
ARCH_ALIASES = {
    "x86": "386",
    "x64": "amd64",
}


class AssetNotFoundError(RuntimeError):
    """Raised when no release asset matches the runner architecture and platform."""


class ReleaseLookupError(RuntimeError):
    """Raised when the GitHub release API request fails."""


def get_runner_arch() -> str:
    """Get the runner CPU architecture (x64, x86, arm64, arm)."""
    machine = platform.machine().lower()

    if machine in ("x86_64", "amd64"):
        return "x64"
    elif machine in ("i386", "i686", "x86"):
        return "x86"
    elif machine in ("arm64", "aarch64"):
        return "arm64"
    elif machine.startswith("arm"):
        return "arm"
    return machine


def get_runner_platform() -> str:
    """Get the runner OS platform (linux, darwin, win32)."""
    if sys.platform.startswith("linux"):
        return "linux"
    return sys.platform


def normalize_arch(arch: str) -> str:
    return ARCH_ALIASES.get(arch, arch)


def find_asset(assets: list[dict], arch: str, plat: str, suffix: str = ASSET_SUFFIX) -> dict | None:
    """Find the first release asset built for arch and plat.

    Both tokens are matched as independent substrings of the asset name,
    e.g. 'heighliner_1.5.0_linux_amd64.tar.gz' or
    'buildkit-v0.12.0.linux-amd64.tar.gz'.

    Args:
        assets: Release assets as returned by the GitHub API
        arch: Runner architecture, normalized with normalize_arch
        plat: Runner platform
        suffix: Required file name suffix

    Returns:
        The matching asset dict, or None
    """
    arch = normalize_arch(arch)
    for asset in assets:
        name = asset["name"]
        if arch in name and plat in name and name.endswith(suffix):
            return asset
    return None


def get_api_url() -> str:
    return os.environ.get("GITHUB_API_URL", DEFAULT_API_URL).rstrip("/")


def _github_request(url: str, token: str = "") -> dict:
    headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
        "User-Agent": "heighliner-action",
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"

    request = urllib.request.Request(url, headers=headers)
    try:
        with urllib.request.urlopen(request, timeout=30) as response:
            return json.loads(response.read().decode())
    except urllib.error.HTTPError as e:
        raise ReleaseLookupError(f"GitHub API request failed ({e.code} {e.reason}): {url}") from e
    except urllib.error.URLError as e:
        raise ReleaseLookupError(f"GitHub API not reachable: {e.reason}") from e


def get_release_metadata(owner: str, repo: str, tag: str = "", token: str = "") -> dict:
    """Get release metadata for a tag, or the latest release if tag is empty."""
    base = f"{get_api_url()}/repos/{owner}/{repo}/releases"

    if tag:
        info(f"Fetching release for tag {tag}")
        return _github_request(f"{base}/tags/{tag}", token)

    info("Fetching latest release")
    return _github_request(f"{base}/latest", token)


# --- Tool cache ---

def get_tool_cache_root() -> Path:
    """Get the tool cache directory (RUNNER_TOOL_CACHE or a temp fallback)."""
    if cache := os.environ.get("RUNNER_TOOL_CACHE"):
        return Path(cache)
    return Path(tempfile.gettempdir()) / "heighliner-action" / "tool-cache"


def get_temp_root() -> Path:
    if temp := os.environ.get("RUNNER_TEMP"):
        return Path(temp)
    return Path(tempfile.gettempdir())


def clean_version(version: str) -> str:
    """Strip a leading 'v' or '=' from semver-like versions ('v1.2.3' -> '1.2.3')."""
    match = re.match(r"^[v=\s]*(\d+\.\d+\.\d+.*)$", version)
    if match:
        return match.group(1)
    return version


def _tool_path(tool: str, version: str, arch: str) -> Path:
    return get_tool_cache_root() / tool / clean_version(version) / arch


def find_cached(tool: str, version: str, arch: str) -> Path | None:
    """Find a cached tool directory.

    Only directories with a completion marker count as cached, so
    interrupted copies are never reused.
    """
    tool_path = _tool_path(tool, version, arch)
    marker = tool_path.parent / f"{arch}.complete"
    if tool_path.is_dir() and marker.exists():
        return tool_path
    return None


def cache_dir(source: Path, tool: str, version: str, arch: str) -> Path:
    """Copy a directory into the tool cache and mark it complete."""
    dest = _tool_path(tool, version, arch)
    marker = dest.parent / f"{arch}.complete"

    marker.unlink(missing_ok=True)
    if dest.exists():
        shutil.rmtree(dest)

    shutil.copytree(source, dest, symlinks=True)
    marker.write_text("")
    return dest


def download_tool(url: str, token: str = "") -> Path:
    """Download url to a uniquely named file below the runner temp directory."""
    dest = get_temp_root() / str(uuid.uuid4())
    dest.parent.mkdir(parents=True, exist_ok=True)

    headers = {"User-Agent": "heighliner-action"}
    if token:
        headers["Authorization"] = f"Bearer {token}"

    request = urllib.request.Request(url, headers=headers)
    try:
        with urllib.request.urlopen(request, timeout=300) as response, open(dest, "wb") as f:
            shutil.copyfileobj(response, f)
    except urllib.error.URLError as e:
        dest.unlink(missing_ok=True)
        raise ReleaseLookupError(f"Failed to download {url}: {e}") from e

    return dest


def extract_tar(archive: Path, dest: Path | None = None) -> Path:
    """Extract a gzip tarball into dest (a fresh temp directory by default)."""
    if dest is None:
        dest = get_temp_root() / str(uuid.uuid4())
    dest.mkdir(parents=True, exist_ok=True)

    with tarfile.open(archive, "r:gz") as tar:
        tar.extractall(dest, filter="data")

    return dest


def install_release(name: str, url: str, version: str, arch: str) -> Path:
    """Download, extract and cache a release asset. Returns the cached directory."""
    download_path = download_tool(url)
    try:
        extracted = extract_tar(download_path)
    finally:
        download_path.unlink(missing_ok=True)

    info(f"Caching {name} {version} {arch}")
    cached = cache_dir(extracted, name, version, arch)
    shutil.rmtree(extracted, ignore_errors=True)
    return cached


def install_and_cache(opts: InstallOptions) -> Path:
    """Install a tool from its GitHub release and add it to PATH.

    Returns:
        Directory containing the tool binaries
    """
    arch = get_runner_arch()
    plat = get_runner_platform()
    release = get_release_metadata(opts.owner, opts.repo, opts.tag, opts.github_token)
    tag = release.get("tag_name")
    if not tag:
        raise ReleaseLookupError(f"Release of {opts.owner}/{opts.repo} has no tag_name")

    cached_path = find_cached(opts.name, tag, arch)
    if cached_path is not None:
        info(f"Found {opts.name} {tag} {arch} in cache")
    else:
        info(f"Found release {opts.name} {tag} {arch}")
        asset = find_asset(release.get("assets", []), arch, plat)
        if asset is None:
            raise AssetNotFoundError(
                f"Viable release asset not found for {opts.owner}/{opts.repo} {tag} ({plat}/{normalize_arch(arch)})"
            )

        info(f"Downloading asset {asset['name']}")
        cached_path = install_release(opts.name, asset["browser_download_url"], tag, arch)

    bin_path = cached_path / opts.tar_sub_dir if opts.tar_sub_dir else cached_path
    with _path_lock:
        add_path(bin_path)
    return bin_path


def install_all(options: list[InstallOptions]) -> list[Path]:
    """Install several tools concurrently.

    Returns bin directories in the same order as options. The first
    failure is raised once all installs have finished.
    """
    with ThreadPoolExecutor(max_workers=max(len(options), 1)) as executor:
        futures = [executor.submit(install_and_cache, opts) for opts in options]
    return [future.result() for future in futures]
