"""Run heighliner builds and collect their results."""

import json
import os
import subprocess
import sys
import tempfile
import threading
from pathlib import Path

import docker
from docker.errors import ImageNotFound
from pydantic_yaml import to_yaml_file

from heighliner_action.config import BuildOptions, ChainSpec, ChainSpecFile
from heighliner_action.parsing import BuildOutput, parse_buildkit_output, parse_classic_output
from heighliner_action.workflow import debug, group, info

HEIGHLINER_BINARY = "heighliner"
CHAINS_FILE_NAME = "chains.yaml"


class BuildError(RuntimeError):
    """Raised when heighliner cannot be run or exits non-zero."""


class ImageMetadataError(RuntimeError):
    """Raised when docker has no metadata for the built image."""


def get_docker_client() -> docker.DockerClient:
    """Get Docker client for the host daemon."""
    return docker.from_env()


def build_options_to_arguments(opts: BuildOptions) -> list[str]:
    """Map build options to heighliner arguments.

    The order of flags is fixed and independent of how opts was built.
    """
    args = ["build"]

    if opts.chain is not None:
        args += ["--chain", opts.chain]
    if opts.chains_spec_file is not None:
        args += ["--file", opts.chains_spec_file]
    if opts.local:
        args += ["--local"]
    if opts.github_organization is not None:
        args += ["--org", opts.github_organization]
    if opts.github_repo is not None:
        args += ["--repo", opts.github_repo]
    if opts.registry is not None:
        args += ["--registry", opts.registry]
    if opts.git_ref is not None:
        args += ["--git-ref", opts.git_ref]
    if opts.clone_key is not None:
        args += ["--clone-key", opts.clone_key]
    if opts.tag is not None:
        args += ["--tag", opts.tag]
    if opts.buildkit:
        args += ["--use-buildkit"]
    if opts.skip:
        args += ["--skip"]
    if opts.tar_export_path is not None:
        args += ["--tar-export-path", opts.tar_export_path]
    if opts.platform is not None:
        args += ["--platform", opts.platform]
    if opts.buildkit_address is not None:
        args += ["--buildkit-addr", opts.buildkit_address]
    if opts.additional_args is not None:
        args += opts.additional_args.split(" ")

    return args


def write_chain_spec(spec: ChainSpec, directory: Path | None = None) -> Path:
    """Write spec as a single-entry chains.yaml.

    Args:
        spec: Chain spec to serialize
        directory: Target directory; a fresh temp directory if None

    Returns:
        Path to the written file
    """
    if directory is None:
        directory = Path(tempfile.mkdtemp(prefix="heighliner-"))

    path = directory / CHAINS_FILE_NAME
    to_yaml_file(path, ChainSpecFile([spec]), by_alias=True, exclude_none=True)
    return path


def _tee(stream, target, lines: list[str]) -> None:
    """Copy each line of stream to target as it arrives and keep it in lines."""
    for line in iter(stream.readline, ""):
        lines.append(line)
        target.write(line)
        target.flush()
    stream.close()


def run_heighliner(args: list[str]) -> subprocess.CompletedProcess:
    """Run heighliner with plain buildkit progress output.

    Both streams are echoed line by line while heighliner runs and are
    also captured for parsing.

    Raises:
        BuildError: If heighliner is missing or exits non-zero
    """
    cmd = [HEIGHLINER_BINARY, *args]
    env = {**os.environ, "BUILDKIT_PROGRESS": "plain"}

    info(f"Running: {' '.join(cmd)}")
    debug(f"heighliner arguments: {args}")
    try:
        proc = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            text=True,
            env=env,
        )
    except FileNotFoundError as e:
        raise BuildError(f"{HEIGHLINER_BINARY} not found on PATH") from e

    stdout_lines: list[str] = []
    stderr_lines: list[str] = []
    readers = [
        threading.Thread(target=_tee, args=(proc.stdout, sys.stdout, stdout_lines), daemon=True),
        threading.Thread(target=_tee, args=(proc.stderr, sys.stderr, stderr_lines), daemon=True),
    ]
    for reader in readers:
        reader.start()

    returncode = proc.wait()
    for reader in readers:
        reader.join()

    if returncode != 0:
        raise BuildError(f"{HEIGHLINER_BINARY} failed with exit code {returncode}")

    return subprocess.CompletedProcess(cmd, returncode, "".join(stdout_lines), "".join(stderr_lines))


def get_image_metadata(image_id: str) -> tuple[dict, str]:
    """Inspect a local image.

    Returns:
        The inspect record and the JSON text of the full inspect result

    Raises:
        ImageMetadataError: If docker does not know the image
    """
    client = get_docker_client()
    try:
        record = client.api.inspect_image(image_id)
    except ImageNotFound as e:
        raise ImageMetadataError(
            "Expected docker metadata to include at least one result, got none."
        ) from e

    if not record:
        raise ImageMetadataError("Expected docker metadata to include at least one result, got none.")

    return record, json.dumps([record], indent=4)


def build_image(opts: BuildOptions, spec: ChainSpec | None = None) -> BuildOutput:
    """Build an image with heighliner and collect its outputs.

    A custom chain spec replaces the chains file heighliner would
    otherwise use.
    """
    if spec is not None:
        spec_path = write_chain_spec(spec)
        info(f"Wrote chain spec for {spec.name} to {spec_path}")
        opts = opts.model_copy(update={"chains_spec_file": str(spec_path)})

    args = build_options_to_arguments(opts)
    with group(f"Building {opts.chain or 'chain'}"):
        result = run_heighliner(args)

    if opts.buildkit:
        return parse_buildkit_output(result.stdout, result.stderr, opts.registry, opts.chain)

    matches = parse_classic_output(result.stdout)
    record, metadata = get_image_metadata(matches.image_id)
    repo_digests = record.get("RepoDigests") or []

    return BuildOutput(
        imageid=record["Id"],
        tag=matches.tag,
        metadata=metadata,
        digest=repo_digests[0] if repo_digests else None,
    )
