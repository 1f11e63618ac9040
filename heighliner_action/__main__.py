"""Command line entry point for the heighliner action."""

import sys
import tarfile

from docker.errors import DockerException

from heighliner_action.buildkit import BUILDKIT_ADDR, ensure_buildkitd
from heighliner_action.building import build_image, build_options_to_arguments
from heighliner_action.config import BuildOptions, get_build_options, get_chain_spec_inputs, get_install_options
from heighliner_action.install import install_all
from heighliner_action.parsing import BuildOutput
from heighliner_action.rendering import render_summary
from heighliner_action.workflow import append_summary, group, info, set_failed, set_output

HANDLED_ERRORS = (
    RuntimeError,
    ValueError,
    OSError,
    tarfile.TarError,
    DockerException,
)


def print_usage() -> None:
    """Print main usage information."""
    print("Usage: heighliner-action <command>", file=sys.stderr)
    print()
    print("Commands:")
    print("  run        Install tools, build the image and set action outputs")
    print("  install    Install and cache heighliner and buildkit only")
    print("  build      Build the image with heighliner already on PATH")
    print("  args       Print the heighliner arguments for the current inputs")
    print()
    print("All settings are read from INPUT_* environment variables as set by")
    print("the GitHub Actions runner (e.g. INPUT_CHAIN=gaia, INPUT_BUILDKIT=true).")


def needs_local_buildkitd(opts: BuildOptions) -> bool:
    """Buildkit builds need the local buildkitd unless they point at another daemon."""
    return opts.buildkit and opts.buildkit_address in (None, BUILDKIT_ADDR)


def publish_outputs(output: BuildOutput, opts: BuildOptions) -> None:
    if output.digest is not None:
        set_output("digest", output.digest)
    set_output("imageid", output.imageid)
    set_output("metadata", output.metadata)
    set_output("tag", output.tag)

    append_summary(render_summary(output, opts))

    info(f"Image ID: {output.imageid}")
    info(f"Tag: {output.tag}")
    if output.digest is not None:
        info(f"Digest: {output.digest}")


def cmd_run(args: list[str]) -> int:
    """Run the whole action."""
    opts = get_build_options()
    spec = get_chain_spec_inputs()

    with group("Installing heighliner and buildkit"):
        _, buildkit_bin = install_all(get_install_options())

    if needs_local_buildkitd(opts):
        with group("Starting buildkitd"):
            ensure_buildkitd(buildkit_bin)

    output = build_image(opts, spec)
    publish_outputs(output, opts)
    return 0


def cmd_install(args: list[str]) -> int:
    """Install the tools without building."""
    paths = install_all(get_install_options())
    for path in paths:
        info(f"Added to PATH: {path}")
    return 0


def cmd_build(args: list[str]) -> int:
    """Build with tools that are already installed."""
    opts = get_build_options()
    output = build_image(opts, get_chain_spec_inputs())
    publish_outputs(output, opts)
    return 0


def cmd_args(args: list[str]) -> int:
    """Print the heighliner command line for the current inputs."""
    print(" ".join(["heighliner", *build_options_to_arguments(get_build_options())]))
    return 0


COMMANDS = {
    "run": cmd_run,
    "install": cmd_install,
    "build": cmd_build,
    "args": cmd_args,
}


def main() -> None:
    if len(sys.argv) < 2:
        print_usage()
        sys.exit(1)

    command = sys.argv[1]
    args = sys.argv[2:]

    if command in ("--help", "-h"):
        print_usage()
        sys.exit(0)

    handler = COMMANDS.get(command)
    if handler is None:
        print(f"Unknown command: {command}", file=sys.stderr)
        print_usage()
        sys.exit(1)

    try:
        sys.exit(handler(args))
    except HANDLED_ERRORS as e:
        sys.exit(set_failed(str(e)))


if __name__ == "__main__":
    main()
