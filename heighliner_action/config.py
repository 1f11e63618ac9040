"""Action inputs validated into build, chain spec and install models."""

import yaml
from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator

from heighliner_action.workflow import get_input, get_boolean_input

DEFAULT_HEIGHLINER_OWNER = "strangelove-ventures"
DEFAULT_HEIGHLINER_REPO = "heighliner"
BUILDKIT_OWNER = "moby"
BUILDKIT_REPO = "buildkit"

BUILD_KEYS_STRING = (
    "chain",
    "chains-spec-file",
    "tag",
    "github-organization",
    "github-repo",
    "clone-key",
    "registry",
    "platform",
    "buildkit-address",
    "git-ref",
    "tar-export-path",
    "additional-args",
)

BUILD_KEYS_BOOLEAN = ("local", "buildkit", "skip")

CHAIN_SPEC_KEYS = (
    "repo-host",
    "dockerfile",
    "build-env",
    "pre-build",
    "build-target",
    "binaries",
    "libraries",
    "build-dir",
)


class BuildOptions(BaseModel):
    """Options for a single heighliner build; unset fields are omitted from the command line"""
    model_config = ConfigDict(populate_by_name=True)

    chain: str | None = None
    chains_spec_file: str | None = Field(default=None, alias="chains-spec-file")
    tag: str | None = None
    github_organization: str | None = Field(default=None, alias="github-organization")
    github_repo: str | None = Field(default=None, alias="github-repo")
    clone_key: str | None = Field(default=None, alias="clone-key")
    registry: str | None = None
    platform: str | None = None
    buildkit_address: str | None = Field(default=None, alias="buildkit-address")
    git_ref: str | None = Field(default=None, alias="git-ref")
    tar_export_path: str | None = Field(default=None, alias="tar-export-path")
    additional_args: str | None = Field(default=None, alias="additional-args")
    local: bool = False
    buildkit: bool = False
    skip: bool = False


class ChainSpec(BaseModel):
    """Chain definition written to chains.yaml for heighliner"""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    repo_host: str | None = Field(default=None, alias="repo-host")
    dockerfile: str | None = None
    build_env: list[str] | None = Field(default=None, alias="build-env")
    pre_build: str | None = Field(default=None, alias="pre-build")
    build_target: str | None = Field(default=None, alias="build-target")
    binaries: list[str] | None = None
    libraries: list[str] | None = None
    build_dir: str | None = Field(default=None, alias="build-dir")

    @field_validator("build_env", "binaries", "libraries", mode="before")
    @classmethod
    def parse_yaml_list(cls, value):
        """Inputs are plain strings; list fields hold YAML such as '["a", "b"]'."""
        if not isinstance(value, str):
            return value
        try:
            parsed = yaml.safe_load(value)
        except yaml.YAMLError as e:
            raise ValueError(f"not a YAML list: {e}") from e
        if parsed is None:
            return None
        if isinstance(parsed, list):
            return [str(item) for item in parsed]
        return [str(parsed)]


class ChainSpecFile(RootModel[list[ChainSpec]]):
    """Top level of a chains.yaml file"""


class InstallOptions(BaseModel):
    """A GitHub release to install a tool from"""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    owner: str
    repo: str
    tag: str = ""
    tar_sub_dir: str = Field(default="", alias="tar-sub-dir")
    github_token: str = Field(default="", alias="github-token")


def get_build_options() -> BuildOptions:
    """Read build options from the action inputs.

    String inputs are only set when non-empty; booleans are always read.
    """
    values: dict[str, str | bool] = {}
    for key in BUILD_KEYS_STRING:
        value = get_input(key)
        if value != "":
            values[key] = value
    for key in BUILD_KEYS_BOOLEAN:
        values[key] = get_boolean_input(key)
    return BuildOptions.model_validate(values)


def get_chain_spec_inputs() -> ChainSpec | None:
    """Read a custom chain spec from the action inputs.

    Returns None when no chain spec input is set. The chain input doubles
    as the spec name.
    """
    values = {}
    for key in CHAIN_SPEC_KEYS:
        value = get_input(key)
        if value != "":
            values[key] = value

    if not values:
        return None

    values["name"] = get_input("chain")
    return ChainSpec.model_validate(values)


def get_install_options() -> list[InstallOptions]:
    """Get install options for heighliner and buildkit, in that order."""
    github_token = get_input("github-token")
    return [
        InstallOptions(
            name="heighliner",
            owner=get_input("heighliner-owner") or DEFAULT_HEIGHLINER_OWNER,
            repo=get_input("heighliner-repo") or DEFAULT_HEIGHLINER_REPO,
            tag=get_input("heighliner-tag"),
            tar_sub_dir="",
            github_token=github_token,
        ),
        InstallOptions(
            name="buildkit",
            owner=BUILDKIT_OWNER,
            repo=BUILDKIT_REPO,
            tag=get_input("buildkit-tag"),
            tar_sub_dir="bin",
            github_token=github_token,
        ),
    ]
