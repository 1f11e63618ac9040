"""Start a local buildkitd for heighliner buildkit builds."""

import socket
import subprocess
import time
from pathlib import Path

from heighliner_action.install import get_temp_root
from heighliner_action.workflow import info, warning

BUILDKIT_HOST = "127.0.0.1"
BUILDKIT_PORT = 8125
BUILDKIT_ADDR = f"tcp://{BUILDKIT_HOST}:{BUILDKIT_PORT}"
READY_TIMEOUT = 10.0
LOG_TAIL_LINES = 50


class BuildkitError(RuntimeError):
    """Raised when buildkitd does not come up."""


def is_port_open(host: str, port: int, timeout: float = 0.1) -> bool:
    """Check if a TCP port is open."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.settimeout(timeout)
            s.connect((host, port))
            return True
    except (ConnectionRefusedError, TimeoutError, OSError):
        return False


def get_log_path() -> Path:
    return get_temp_root() / "buildkitd.log"


def buildkitd_command(bin_dir: Path, addr: str = BUILDKIT_ADDR) -> list[str]:
    return [
        "sudo",
        str(bin_dir / "buildkitd"),
        "--allow-insecure-entitlement", "network.host",
        "--addr", addr,
    ]


def start_buildkitd(bin_dir: Path, addr: str = BUILDKIT_ADDR) -> subprocess.Popen:
    """Start buildkitd detached from this process.

    Output goes to a log file so failures can be reported. The daemon is
    left running after the action exits.
    """
    cmd = buildkitd_command(bin_dir, addr)
    log_file = get_log_path()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    info(f"Starting buildkitd: {' '.join(cmd)}")

    with open(log_file, "w") as log:
        proc = subprocess.Popen(
            cmd,
            stdout=log,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            start_new_session=True,
        )

    return proc


def _log_tail(lines: int = LOG_TAIL_LINES) -> str:
    log_file = get_log_path()
    if log_file.exists():
        return "".join(log_file.read_text().splitlines(keepends=True)[-lines:])
    return ""


def wait_for_port(
    host: str = BUILDKIT_HOST,
    port: int = BUILDKIT_PORT,
    timeout: float = READY_TIMEOUT,
    proc: subprocess.Popen | None = None,
    interval: float = 0.1,
) -> None:
    """Wait until host:port accepts TCP connections.

    Raises:
        BuildkitError: On timeout, or if proc exits before the port opens
    """
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if is_port_open(host, port):
            info(f"buildkitd is ready (addr: tcp://{host}:{port})")
            return
        if proc is not None and proc.poll() is not None:
            raise BuildkitError(
                f"buildkitd process exited with code {proc.returncode}\n{_log_tail()}"
            )
        time.sleep(interval)

    raise BuildkitError(f"buildkitd not available on {host}:{port} after {timeout:g} seconds\n{_log_tail()}")


def ensure_buildkitd(bin_dir: Path) -> None:
    """Start buildkitd from bin_dir unless something already listens on its port."""
    if is_port_open(BUILDKIT_HOST, BUILDKIT_PORT):
        warning(f"buildkitd is already running (addr: {BUILDKIT_ADDR}), reusing it")
        return

    proc = start_buildkitd(bin_dir)
    wait_for_port(proc=proc)
