from heighliner_action.config import BuildOptions
from heighliner_action.parsing import BuildOutput
from heighliner_action.rendering import render_summary


def test_render_summary_buildkit():
    output = BuildOutput(
        imageid="sha256:7c2b",
        tag="v14.1.0",
        metadata="[]",
        digest="ghcr.io/strangelove-ventures/heighliner/gaia@sha256:7c2b",
    )
    opts = BuildOptions(chain="gaia", buildkit=True, platform="linux/amd64", registry="ghcr.io/strangelove-ventures/heighliner")

    summary = render_summary(output, opts)

    assert summary.startswith("### heighliner build: `gaia`\n")
    assert "| Image ID | `sha256:7c2b` |" in summary
    assert "| Tag | `v14.1.0` |" in summary
    assert "| Digest | `ghcr.io/strangelove-ventures/heighliner/gaia@sha256:7c2b` |" in summary
    assert "| Builder | buildkit |" in summary
    assert "| Platform | `linux/amd64` |" in summary
    assert "| Registry | `ghcr.io/strangelove-ventures/heighliner` |" in summary


def test_render_summary_classic_without_digest():
    output = BuildOutput(imageid="sha256:3f2a", tag="gaia:local", metadata="[]")

    summary = render_summary(output, BuildOptions())

    assert summary.startswith("### heighliner build\n")
    assert "| Digest | - |" in summary
    assert "| Builder | docker |" in summary
    assert "Platform" not in summary
    assert "Registry" not in summary
    assert summary.endswith("| Builder | docker |\n")
