"""Workflow commands understood by the GitHub Actions runner.

Inputs arrive as INPUT_* environment variables; outputs, PATH additions and
step summaries are appended to the files the runner names in GITHUB_OUTPUT,
GITHUB_PATH and GITHUB_STEP_SUMMARY.
"""

import os
import uuid
from contextlib import contextmanager
from pathlib import Path

TRUE_VALUES = ("true", "True", "TRUE")
FALSE_VALUES = ("false", "False", "FALSE")


class InputError(ValueError):
    """Raised when an action input is missing or malformed."""


def _input_env_name(name: str) -> str:
    return f"INPUT_{name.replace(' ', '_').upper()}"


def get_input(name: str, required: bool = False) -> str:
    """Get an action input, stripped of surrounding whitespace.

    Returns an empty string when the input is not set.
    """
    value = os.environ.get(_input_env_name(name), "").strip()
    if required and not value:
        raise InputError(f"Input required and not supplied: {name}")
    return value


def get_boolean_input(name: str, required: bool = False) -> bool:
    """Get a boolean action input using the runner's true/false spellings.

    Unset inputs are false unless required.
    """
    value = get_input(name, required=required)
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES or value == "":
        return False
    raise InputError(
        f"Input does not meet YAML 1.2 \"Core Schema\" specification: {name}\n"
        "Support boolean input list: `true | True | TRUE | false | False | FALSE`"
    )


def _escape_data(value: str) -> str:
    return value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def _escape_property(value: str) -> str:
    return _escape_data(value).replace(":", "%3A").replace(",", "%2C")


def issue_command(command: str, message: str = "", **properties: str) -> None:
    """Print a workflow command (::command key=value::message) to stdout."""
    props = ",".join(f"{key}={_escape_property(str(val))}" for key, val in properties.items() if val)
    head = f"{command} {props}" if props else command
    print(f"::{head}::{_escape_data(message)}", flush=True)


def info(message: str) -> None:
    print(message, flush=True)


def debug(message: str) -> None:
    issue_command("debug", message)


def warning(message: str) -> None:
    issue_command("warning", message)


def error(message: str) -> None:
    issue_command("error", message)


@contextmanager
def group(title: str):
    """Fold everything printed inside the block into a collapsible log group."""
    issue_command("group", title)
    try:
        yield
    finally:
        issue_command("endgroup")


def _append_file_command(env_name: str, content: str) -> bool:
    """Append content to the runner file named by env_name.

    Returns False if the runner did not provide that file.
    """
    file_path = os.environ.get(env_name)
    if not file_path:
        return False

    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Missing file at path: {file_path}")

    with open(path, "a", encoding="utf-8") as f:
        f.write(content)
    return True


def _key_value_message(name: str, value: str) -> str:
    delimiter = f"ghadelimiter_{uuid.uuid4()}"
    if delimiter in name or delimiter in value:
        raise ValueError(f"Unexpected input: delimiter {delimiter} found in '{name}'")
    return f"{name}<<{delimiter}\n{value}\n{delimiter}\n"


def set_output(name: str, value: str) -> None:
    """Set an action output.

    Uses the GITHUB_OUTPUT file when present, otherwise the legacy
    set-output command.
    """
    if _append_file_command("GITHUB_OUTPUT", _key_value_message(name, value)):
        return
    print()
    issue_command("set-output", value, name=name)


def add_path(path: str | Path) -> None:
    """Prepend a directory to PATH for this process and later steps."""
    path = str(path)
    if not _append_file_command("GITHUB_PATH", f"{path}\n"):
        issue_command("add-path", path)
    os.environ["PATH"] = f"{path}{os.pathsep}{os.environ.get('PATH', '')}"


def append_summary(markdown: str) -> bool:
    """Append markdown to the job step summary if the runner supports it."""
    return _append_file_command("GITHUB_STEP_SUMMARY", markdown if markdown.endswith("\n") else f"{markdown}\n")


def set_failed(message: str) -> int:
    """Log an error annotation and return the failing exit code."""
    error(message)
    return 1
