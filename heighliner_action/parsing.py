"""Extract build results from heighliner output."""

import json
import re
from dataclasses import dataclass

MANIFEST_PATTERN = re.compile(r"exporting manifest (\S+:\S+)")
TAGS_PATTERN = re.compile(r"resulting docker image tags: \+\[(.*)?\]")
CLASSIC_PATTERN = re.compile(r"Successfully (tagged|built) (\S+)")


class OutputParseError(RuntimeError):
    """Raised when the builder output lacks an expected marker."""


@dataclass
class BuildOutput:
    """Results published as action outputs"""
    imageid: str
    tag: str
    metadata: str
    digest: str | None = None


@dataclass
class ClassicMatches:
    """Image id and tag reported by a classic docker build"""
    image_id: str
    tag: str


def extract_manifest_digests(stderr: str) -> list[str]:
    """Extract manifest digests from buildkit progress output (stderr).

    Example line: '#12 exporting manifest sha256:4f1c... done'
    """
    digests = []
    for line in stderr.splitlines():
        match = MANIFEST_PATTERN.search(line)
        if match:
            digests.append(match.group(1))
    return digests


def extract_image_tags(stdout: str) -> list[list[str]]:
    """Extract tag lists from heighliner stdout, one list per matching line.

    Example line: 'resulting docker image tags: +[ghcr.io/org/gaia:v1 ghcr.io/org/gaia:latest]'
    """
    found = []
    for line in stdout.splitlines():
        match = TAGS_PATTERN.search(line)
        if match:
            tags = match.group(1) or ""
            found.append([t for t in tags.split(" ") if t])
    return found


def parse_buildkit_output(stdout: str, stderr: str, registry: str | None, chain: str | None) -> BuildOutput:
    """Build outputs for a buildkit build.

    The manifest digest doubles as the image id; buildkit images never reach
    the local docker daemon, so metadata is synthesized.

    Raises:
        OutputParseError: If no manifest or no tags line was found
    """
    digests = extract_manifest_digests(stderr)
    tag_lines = extract_image_tags(stdout)

    if not digests or not tag_lines:
        raise OutputParseError(
            f"Couldn't find buildkit necessary info, manifests: {digests}, tags: {tag_lines}"
        )

    imageid = digests[-1]
    tags = [tag for line in tag_lines for tag in line]

    repository = "/".join(part for part in (registry, chain) if part)
    digest = f"{repository}@{imageid}"

    return BuildOutput(
        imageid=imageid,
        tag=tags[0].split(":")[-1] if tags else "",
        digest=digest,
        metadata=json.dumps([{"Id": imageid, "RepoDigests": [digest], "RepoTags": tags}]),
    )


def parse_classic_output(stdout: str) -> ClassicMatches:
    """Find the built image id and tag in classic docker build output.

    Example lines: 'Successfully built 3f2a1b0c9d8e',
    'Successfully tagged ghcr.io/org/gaia:v1'. The first of each wins.

    Raises:
        OutputParseError: If either line is missing
    """
    image_id = None
    tag = None

    for line in stdout.splitlines():
        match = CLASSIC_PATTERN.search(line)
        if match is None:
            continue
        if match.group(1) == "built":
            image_id = image_id or match.group(2)
        else:
            tag = tag or match.group(2)

    if image_id is None:
        raise OutputParseError("Couldn't find imageid")
    if tag is None:
        raise OutputParseError("Couldn't find tag")

    return ClassicMatches(image_id=image_id, tag=tag)
