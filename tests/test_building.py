import io
import json
import os
import subprocess
import sys
from unittest.mock import MagicMock, patch

import pytest
import yaml
from docker.errors import ImageNotFound
from pydantic_yaml import parse_yaml_file_as

from conftest import read_fixture
from heighliner_action.building import (
    BuildError,
    ImageMetadataError,
    build_image,
    build_options_to_arguments,
    get_image_metadata,
    run_heighliner,
    write_chain_spec,
)
from heighliner_action.config import BuildOptions, ChainSpec, ChainSpecFile

REGISTRY = "ghcr.io/strangelove-ventures/heighliner"
MANIFEST = "sha256:7c2b9a4e1f0d3c5b8a6e9f2d1c4b7a0e3f6d9c2b5a8e1f4d7c0b3a6e9f2d5c8b"
IMAGE_ID = "sha256:3f2a1b0c9d8e7f6a5b4c3d2e1f0a9b8c7d6e5f4a3b2c1d0e9f8a7b6c5d4e3f2a"
INSPECT_RECORD = {
    "Id": IMAGE_ID,
    "RepoTags": [f"{REGISTRY}/gaia:v14.1.0"],
    "RepoDigests": [f"{REGISTRY}/gaia@sha256:feedbeef"],
}


def _completed(stdout: str = "", stderr: str = "", returncode: int = 0) -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=["heighliner"], returncode=returncode, stdout=stdout, stderr=stderr)


class TestArguments:
    def test_minimal(self):
        assert build_options_to_arguments(BuildOptions()) == ["build"]

    def test_all_options_in_fixed_order(self):
        opts = BuildOptions.model_validate({
            "additional-args": "--no-cache --alpine-version 3.17",
            "buildkit-address": "tcp://10.0.0.2:1234",
            "platform": "linux/amd64,linux/arm64",
            "tar-export-path": "/tmp/gaia.tar",
            "skip": True,
            "buildkit": True,
            "tag": "v14.1.0",
            "clone-key": "c2VjcmV0",
            "git-ref": "v14.1.0",
            "registry": REGISTRY,
            "github-repo": "gaia",
            "github-organization": "cosmos",
            "local": True,
            "chains-spec-file": "./chains.yaml",
            "chain": "gaia",
        })

        assert build_options_to_arguments(opts) == [
            "build",
            "--chain", "gaia",
            "--file", "./chains.yaml",
            "--local",
            "--org", "cosmos",
            "--repo", "gaia",
            "--registry", REGISTRY,
            "--git-ref", "v14.1.0",
            "--clone-key", "c2VjcmV0",
            "--tag", "v14.1.0",
            "--use-buildkit",
            "--skip",
            "--tar-export-path", "/tmp/gaia.tar",
            "--platform", "linux/amd64,linux/arm64",
            "--buildkit-addr", "tcp://10.0.0.2:1234",
            "--no-cache", "--alpine-version", "3.17",
        ]

    def test_order_independent_of_input_order(self):
        a = BuildOptions(chain="gaia", tag="v1", registry=REGISTRY, buildkit=True)
        b = BuildOptions(buildkit=True, registry=REGISTRY, tag="v1", chain="gaia")
        assert build_options_to_arguments(a) == build_options_to_arguments(b)

    def test_false_flags_omitted(self):
        args = build_options_to_arguments(BuildOptions(chain="gaia", local=False, buildkit=False, skip=False))
        assert args == ["build", "--chain", "gaia"]

    def test_pure(self):
        opts = BuildOptions(chain="gaia", additional_args="--no-cache")
        build_options_to_arguments(opts)
        assert build_options_to_arguments(opts) == ["build", "--chain", "gaia", "--no-cache"]
        assert opts.additional_args == "--no-cache"


class TestChainSpecFile:
    def test_write_chain_spec(self, tmp_path):
        spec = ChainSpec.model_validate({
            "name": "mychain",
            "repo-host": "gitlab.com",
            "dockerfile": "cosmos",
            "build-env": '["LEDGER_ENABLED=false"]',
            "binaries": '["/go/bin/mychaind"]',
        })

        path = write_chain_spec(spec, tmp_path)

        assert path == tmp_path / "chains.yaml"
        assert yaml.safe_load(path.read_text()) == [{
            "name": "mychain",
            "repo-host": "gitlab.com",
            "dockerfile": "cosmos",
            "build-env": ["LEDGER_ENABLED=false"],
            "binaries": ["/go/bin/mychaind"],
        }]
        assert parse_yaml_file_as(ChainSpecFile, path).root == [spec]

    def test_write_chain_spec_fresh_directory(self):
        path = write_chain_spec(ChainSpec(name="gaia"))
        assert path.name == "chains.yaml"
        assert path.parent.name.startswith("heighliner-")
        assert yaml.safe_load(path.read_text()) == [{"name": "gaia"}]


class _MarkerStream(io.StringIO):
    """Stdout stand-in that creates a marker file once it sees a given line."""

    def __init__(self, marker, trigger):
        super().__init__()
        self.marker = marker
        self.trigger = trigger

    def write(self, s):
        if self.trigger in s:
            self.marker.touch()
        return super().write(s)


@pytest.fixture
def fake_heighliner(tmp_path, monkeypatch):
    """Put an executable heighliner shell script with the given body on PATH."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()

    def install(body: str):
        script = bin_dir / "heighliner"
        script.write_text(f"#!/bin/sh\n{body}\n")
        script.chmod(0o755)
        monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ['PATH']}")
        return script

    return install


class TestRunHeighliner:
    def test_captures_and_echoes_both_streams(self, fake_heighliner, capfd):
        fake_heighliner('echo "progress=$BUILDKIT_PROGRESS args=$*"\necho "#9 exporting manifest" >&2')

        result = run_heighliner(["build", "--chain", "gaia"])

        assert result.args == ["heighliner", "build", "--chain", "gaia"]
        assert result.returncode == 0
        assert result.stdout == "progress=plain args=build --chain gaia\n"
        assert result.stderr == "#9 exporting manifest\n"
        out, err = capfd.readouterr()
        assert "progress=plain args=build --chain gaia" in out
        assert "#9 exporting manifest" in err

    def test_streams_output_while_running(self, fake_heighliner, tmp_path, monkeypatch):
        """The script only finishes once its first line has reached the console."""
        marker = tmp_path / "seen"
        fake_heighliner(
            "echo line1\n"
            "i=0\n"
            f'while [ ! -f "{marker}" ]; do\n'
            "  i=$((i + 1))\n"
            '  [ "$i" -gt 200 ] && exit 3\n'
            "  sleep 0.05\n"
            "done\n"
            "echo line2"
        )
        stream = _MarkerStream(marker, "line1")
        monkeypatch.setattr(sys, "stdout", stream)

        result = run_heighliner(["build"])

        assert result.stdout == "line1\nline2\n"
        assert "line1\nline2\n" in stream.getvalue()

    def test_logs_arguments_as_debug(self, fake_heighliner, capsys):
        fake_heighliner("exit 0")

        run_heighliner(["build", "--chain", "gaia"])

        assert "::debug::heighliner arguments: ['build', '--chain', 'gaia']" in capsys.readouterr().out

    def test_non_zero_exit(self, fake_heighliner):
        fake_heighliner('echo boom >&2\nexit 2')
        with pytest.raises(BuildError, match="exit code 2"):
            run_heighliner(["build"])

    def test_missing_binary(self, tmp_path, monkeypatch):
        empty = tmp_path / "empty"
        empty.mkdir()
        monkeypatch.setenv("PATH", str(empty))
        with pytest.raises(BuildError, match="not found on PATH"):
            run_heighliner(["build"])


class TestImageMetadata:
    def test_inspect(self):
        client = MagicMock()
        client.api.inspect_image.return_value = INSPECT_RECORD

        with patch("heighliner_action.building.get_docker_client", return_value=client):
            record, metadata = get_image_metadata("3f2a1b0c9d8e")

        client.api.inspect_image.assert_called_once_with("3f2a1b0c9d8e")
        assert record == INSPECT_RECORD
        assert json.loads(metadata) == [INSPECT_RECORD]

    def test_unknown_image(self):
        client = MagicMock()
        client.api.inspect_image.side_effect = ImageNotFound("No such image: 3f2a1b0c9d8e")

        with patch("heighliner_action.building.get_docker_client", return_value=client):
            with pytest.raises(ImageMetadataError, match="at least one result"):
                get_image_metadata("3f2a1b0c9d8e")


class TestBuildImage:
    def test_buildkit(self):
        opts = BuildOptions(chain="gaia", registry=REGISTRY, buildkit=True)
        result = _completed(read_fixture("buildkit_stdout.txt"), read_fixture("buildkit_stderr.txt"))

        with patch("heighliner_action.building.run_heighliner", return_value=result) as run, \
             patch("heighliner_action.building.get_docker_client") as docker_client:
            output = build_image(opts)

        run.assert_called_once_with(["build", "--chain", "gaia", "--registry", REGISTRY, "--use-buildkit"])
        docker_client.assert_not_called()
        assert output.imageid == MANIFEST
        assert output.tag == "v14.1.0"
        assert output.digest == f"{REGISTRY}/gaia@{MANIFEST}"

    def test_classic(self):
        opts = BuildOptions(chain="gaia", registry=REGISTRY)
        client = MagicMock()
        client.api.inspect_image.return_value = INSPECT_RECORD

        with patch("heighliner_action.building.run_heighliner", return_value=_completed(read_fixture("classic_stdout.txt"))), \
             patch("heighliner_action.building.get_docker_client", return_value=client):
            output = build_image(opts)

        client.api.inspect_image.assert_called_once_with("3f2a1b0c9d8e")
        assert output.imageid == IMAGE_ID
        assert output.tag == f"{REGISTRY}/gaia:v14.1.0"
        assert output.digest == f"{REGISTRY}/gaia@sha256:feedbeef"
        assert json.loads(output.metadata) == [INSPECT_RECORD]

    def test_classic_without_repo_digest(self):
        client = MagicMock()
        client.api.inspect_image.return_value = {**INSPECT_RECORD, "RepoDigests": []}

        with patch("heighliner_action.building.run_heighliner", return_value=_completed(read_fixture("classic_stdout.txt"))), \
             patch("heighliner_action.building.get_docker_client", return_value=client):
            output = build_image(BuildOptions(chain="gaia", skip=True))

        assert output.digest is None

    def test_chain_spec_overrides_spec_file(self, tmp_path):
        opts = BuildOptions(chain="mychain", chains_spec_file="./ignored.yaml", buildkit=True)
        spec = ChainSpec(name="mychain", dockerfile="cosmos")
        result = _completed(
            "resulting docker image tags: +[mychain:local]\n",
            f"#9 exporting manifest {MANIFEST} done\n",
        )

        with patch("heighliner_action.building.tempfile.mkdtemp", return_value=str(tmp_path)), \
             patch("heighliner_action.building.run_heighliner", return_value=result) as run:
            output = build_image(opts, spec)

        args = run.call_args[0][0]
        assert args[args.index("--file") + 1] == str(tmp_path / "chains.yaml")
        assert yaml.safe_load((tmp_path / "chains.yaml").read_text()) == [{"name": "mychain", "dockerfile": "cosmos"}]
        assert opts.chains_spec_file == "./ignored.yaml"
        assert output.tag == "local"
        assert output.digest == f"mychain@{MANIFEST}"
