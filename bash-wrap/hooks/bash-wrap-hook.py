#!/usr/bin/env -S uv run
# /// script
# requires-python = ">=3.10"
# ///
"""Bash Wrap Hook -- shields Bash commands from upstream preprocessing.

PreToolUse hook that rewrites each Bash tool command into
``bash -c "$(echo '<base64>' | base64 -d)"``. The payload survives quote
stripping, variable pre-expansion and any other rewriting that happens between
Claude Code and the shell. Append ``# no-wrap`` (or ``# bypass-hook``,
``# skip-hook``) to a command to leave it untouched.
"""

import base64
import json
import logging
import os
import re
import sys
from dataclasses import asdict, dataclass, fields
from pathlib import Path

VERSION = "1.0.0"

_MAX_INPUT = 10 * 1024 * 1024  # 10 MB


# ── Wrap policy ─────────────────────────────────────────────────────────────

# Comment markers that opt a command out of wrapping
ESCAPE_MARKERS = ("# bypass-hook", "# no-wrap", "# skip-hook")

WRAPPED_PREFIX = "bash -c "

_TRIM_CHARS = " \t\n\r"


@dataclass(frozen=True)
class PolicyConfig:
    """Toggles for a single hook invocation.

    additional_safe_patterns and force_wrap_patterns are accepted and
    validated but not consulted by should_wrap.
    """

    enabled: bool = True
    additional_escape_markers: tuple[str, ...] = ()
    additional_safe_patterns: tuple[str, ...] = ()
    force_wrap_patterns: tuple[str, ...] = ()
    debug_log: bool = False
    log_file: str = ""
    permission_decision: str = "allow"


def _as_text(command: str | bytes) -> str:
    if isinstance(command, bytes):
        return command.decode("utf-8", "surrogateescape")
    return command


def should_wrap(command: str | bytes, config: PolicyConfig | None = None) -> bool:
    """Decide whether *command* gets wrapped.

    Returns False only for: empty, already wrapped, disabled, or an escape
    marker anywhere in the command.
    """
    if config is None:
        config = PolicyConfig()
    cmd = _as_text(command).strip(_TRIM_CHARS)

    if not cmd or cmd.startswith(WRAPPED_PREFIX):
        return False
    if not config.enabled:
        return False
    if any(marker in cmd for marker in ESCAPE_MARKERS):
        return False
    return not any(marker in cmd for marker in config.additional_escape_markers)


# ── Safe encoder ────────────────────────────────────────────────────────────


def base64_encode(command: str | bytes) -> str:
    """Standard-alphabet base64 with padding and no line breaks."""
    if isinstance(command, str):
        # surrogatepass: JSON input may carry lone surrogates
        command = command.encode("utf-8", "surrogatepass")
    return base64.b64encode(command).decode("ascii")


def wrap_command(command: str | bytes) -> str:
    """Wrap *command* so the shell receives its exact bytes.

    The base64 alphabet has no quote, backslash, dollar, backtick or newline,
    so the single-quoted echo argument is safe for any input.
    """
    return f"bash -c \"$(echo '{base64_encode(command)}' | base64 -d)\""


# ── Configuration ───────────────────────────────────────────────────────────

_CONFIG_ENV = "BASH_HOOK_CONFIG"
_PERMISSION_DECISIONS = ("allow", "ask")
_BOOL_FIELDS = ("enabled", "debug_log")
_STR_FIELDS = ("log_file", "permission_decision")
_LIST_FIELDS = (
    "additional_safe_patterns",
    "additional_escape_markers",
    "force_wrap_patterns",
)


def _claude_dir() -> Path | None:
    try:
        return Path.home() / ".claude"
    except RuntimeError:
        return None


def default_config_path() -> Path | None:
    """Config file location: $BASH_HOOK_CONFIG, else ~/.claude/bash-hook-config.json."""
    override = os.environ.get(_CONFIG_ENV)
    if override:
        return Path(override).expanduser()
    claude_dir = _claude_dir()
    if claude_dir is None:
        return None
    return claude_dir / "bash-hook-config.json"


def default_log_path() -> Path | None:
    claude_dir = _claude_dir()
    if claude_dir is None:
        return None
    return claude_dir / "bash-hook-debug.log"


def _string_list(raw, key):
    value = raw.get(key)
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise TypeError(f"{key} must be a list of strings")
    return tuple(value)


def config_from_dict(raw: dict) -> PolicyConfig:
    """Build a PolicyConfig from parsed JSON. Raises TypeError/ValueError on bad values."""
    if not isinstance(raw, dict):
        raise TypeError(f"expected JSON object, got {type(raw).__name__}")
    for key in _BOOL_FIELDS:
        if key in raw and not isinstance(raw[key], bool):
            raise TypeError(f"{key} must be a boolean")
    for key in _STR_FIELDS:
        if key in raw and not isinstance(raw[key], str):
            raise TypeError(f"{key} must be a string")

    decision = raw.get("permission_decision", "allow")
    if decision not in _PERMISSION_DECISIONS:
        raise ValueError(f"permission_decision must be 'allow' or 'ask', got {decision!r}")

    debug_log = raw.get("debug_log", False)
    log_file = raw.get("log_file", "")
    if debug_log and not log_file:
        log_path = default_log_path()
        log_file = str(log_path) if log_path else ""

    return PolicyConfig(
        enabled=raw.get("enabled", True),
        # An empty marker would match every command
        additional_escape_markers=tuple(
            m for m in _string_list(raw, "additional_escape_markers") if m
        ),
        additional_safe_patterns=_string_list(raw, "additional_safe_patterns"),
        force_wrap_patterns=_string_list(raw, "force_wrap_patterns"),
        debug_log=debug_log,
        log_file=log_file,
        permission_decision=decision,
    )


def load_config(path: Path | None = None) -> PolicyConfig:
    """Load the hook configuration, or defaults when no file exists.

    Raises OSError, ValueError or TypeError on an unreadable or malformed
    file; callers fall back to PolicyConfig().
    """
    if path is None:
        path = default_config_path()
    if path is None or not path.exists():
        return PolicyConfig()
    with open(path) as f:
        raw = json.load(f)
    return config_from_dict(raw)


def save_config(config: PolicyConfig, path: Path | None = None) -> Path:
    """Write *config* as indented JSON with owner-only permissions."""
    if path is None:
        path = default_config_path()
    if path is None:
        raise FileNotFoundError("cannot determine home directory for config file")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(config), indent=2) + "\n")
    os.chmod(path, 0o600)
    return path


def validate_config(path: Path | None = None) -> list[str]:
    """Return human-readable issues with the config file. Missing file is fine."""
    if path is None:
        path = default_config_path()
    if path is None or not path.exists():
        return []
    try:
        with open(path) as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        return [f"{path}: invalid JSON: {e}"]
    except OSError as e:
        return [f"{path}: cannot read file: {e}"]
    if not isinstance(raw, dict):
        return [f"{path}: expected JSON object, got {type(raw).__name__}"]

    issues = []
    known = {f.name for f in fields(PolicyConfig)}
    for key in raw:
        if key not in known:
            issues.append(f"unknown key {key!r}")
    for key in _BOOL_FIELDS:
        if key in raw and not isinstance(raw[key], bool):
            issues.append(f"{key!r} must be true or false, got {type(raw[key]).__name__}")
    for key in _STR_FIELDS:
        if key in raw and not isinstance(raw[key], str):
            issues.append(f"{key!r} must be a string, got {type(raw[key]).__name__}")
    for key in _LIST_FIELDS:
        value = raw.get(key)
        if value is None:
            continue
        if not isinstance(value, list):
            issues.append(f"{key!r} must be an array, got {type(value).__name__}")
            continue
        for i, entry in enumerate(value):
            if not isinstance(entry, str):
                issues.append(f"{key}[{i}] must be a string, got {type(entry).__name__}")
            elif not entry and key == "additional_escape_markers":
                issues.append(f"{key}[{i}] is empty (ignored; it would match every command)")
    decision = raw.get("permission_decision", "allow")
    if isinstance(decision, str) and decision not in _PERMISSION_DECISIONS:
        issues.append(f"'permission_decision' must be 'allow' or 'ask', got {decision!r}")
    return issues


# ── Diagnostics ─────────────────────────────────────────────────────────────

_LOGGER_NAME = "bash-wrap"
_MAX_LOG_SIZE = 1024 * 1024  # 1 MB
_MAX_LOG_LINES = 1000

SECRET_PATTERNS = [
    re.compile(r"""(api[_-]?key|apikey)[\s=:]+['"]?([a-zA-Z0-9_-]{16,})['"]?"""),
    re.compile(r"""(token|bearer)[\s=:]+['"]?([a-zA-Z0-9_.-]{16,})['"]?"""),
    re.compile(r"""(password|passwd|pwd)[\s=:]+['"]?([^\s'"]{8,})['"]?"""),
    re.compile(r"""(secret|auth)[\s=:]+['"]?([a-zA-Z0-9_-]{16,})['"]?"""),
    re.compile(r"sk-[a-zA-Z0-9]{32,}"),  # OpenAI API keys
    re.compile(r"ghp_[a-zA-Z0-9]{36,}"),  # GitHub personal access tokens
]

REDACTED = "[REDACTED]"


def redact_secrets(message: str) -> str:
    """Replace credential values with [REDACTED], keeping the key name."""
    for pattern in SECRET_PATTERNS:
        if pattern.groups:
            message = pattern.sub(lambda m: f"{m.group(1)}={REDACTED}", message)
        else:
            message = pattern.sub(REDACTED, message)
    return message


class RedactingFilter(logging.Filter):
    """Scrub secrets from every record before a handler formats it."""

    def filter(self, record):
        record.msg = redact_secrets(record.getMessage())
        record.args = None
        return True


def _trim_log(log_file: Path) -> None:
    """Keep only the last _MAX_LOG_LINES lines once the log reaches _MAX_LOG_SIZE."""
    try:
        if log_file.stat().st_size < _MAX_LOG_SIZE:
            return
        lines = log_file.read_text(errors="replace").splitlines()
    except OSError:
        return
    log_file.write_text("\n".join(lines[-_MAX_LOG_LINES:]) + "\n")


def setup_logging(config: PolicyConfig) -> logging.Logger:
    """Configure the diagnostic logger. Silent unless config.debug_log is set."""
    logger = logging.getLogger(_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = False
    logger.setLevel(logging.DEBUG)

    if not config.debug_log or not config.log_file:
        logger.addHandler(logging.NullHandler())
        return logger

    log_file = Path(config.log_file).expanduser()
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        _trim_log(log_file)
        handler = logging.FileHandler(log_file)
        os.chmod(log_file, 0o600)
    except OSError:
        logger.addHandler(logging.NullHandler())
        return logger
    handler.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s"))
    handler.addFilter(RedactingFilter())
    logger.addHandler(handler)
    return logger


# ── Hook I/O ────────────────────────────────────────────────────────────────

logger = logging.getLogger(_LOGGER_NAME)


def _read_config() -> PolicyConfig:
    try:
        return load_config()
    except (OSError, ValueError, TypeError) as e:
        print(f"bash-wrap-hook: config unreadable, using defaults ({e})", file=sys.stderr)
        return PolicyConfig()


def _parse_hook_input() -> dict | None:
    """Read and parse the JSON hook payload from stdin. None on bad input."""
    raw = sys.stdin.buffer.read(_MAX_INPUT + 1)
    if len(raw) > _MAX_INPUT:
        logger.warning("Input exceeds %d bytes, passing through", _MAX_INPUT)
        return None
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, ValueError) as e:
        logger.error("Failed to parse JSON: %s", e)
        return None
    if not isinstance(data, dict):
        logger.error("Hook input is not a JSON object")
        return None
    return data


def process_hook_input(data: dict, config: PolicyConfig) -> dict | None:
    """Compute the hook response for one payload. None means pass through."""
    event = data.get("hook_event_name", "PreToolUse")
    if event != "PreToolUse":
        logger.debug("Ignoring %s event", event)
        return None
    if not config.enabled:
        logger.debug("Hook disabled via config")
        return None

    tool_name = data.get("tool_name", "")
    if tool_name != "Bash":
        logger.debug("Ignoring non-Bash tool: %s", tool_name)
        return None

    tool_input = data.get("tool_input")
    if not isinstance(tool_input, dict):
        logger.debug("tool_input is not an object")
        return None
    command = tool_input.get("command")
    if command is None:
        logger.debug("No command parameter found")
        return None
    if not isinstance(command, str):
        logger.debug("Command parameter is not a string")
        return None

    logger.debug("Processing command: %s", command)
    if not should_wrap(command, config):
        logger.debug("Skipping wrap")
        return None

    wrapped = wrap_command(command)
    logger.debug("Wrapped: %s", wrapped)
    return {
        "hookSpecificOutput": {
            "hookEventName": "PreToolUse",
            "permissionDecision": config.permission_decision,
            "permissionDecisionReason": "Command base64-wrapped to bypass preprocessing",
            "updatedInput": {**tool_input, "command": wrapped},
        }
    }


def _passthrough() -> None:
    print("{}")
    sys.exit(0)


def run_hook() -> None:
    config = _read_config()
    setup_logging(config)

    data = _parse_hook_input()
    if data is None:
        _passthrough()

    output = process_hook_input(data, config)
    if output is None:
        _passthrough()

    output_json = json.dumps(output)
    logger.debug("Output JSON: %s", output_json)
    print(output_json)
    sys.exit(0)


# ── Command line ────────────────────────────────────────────────────────────

HELP = """\
bash-wrap-hook - PreToolUse hook for Claude Code

USAGE:
    bash-wrap-hook.py                   Hook mode (read JSON from stdin)
    bash-wrap-hook.py --test "command"  Show how a command would be rewritten
    bash-wrap-hook.py --validate        Check the config file
    bash-wrap-hook.py --init-config     Write a default config file
    bash-wrap-hook.py --version         Show version
    bash-wrap-hook.py --help            Show this help

HOOK MODE:
    Reads PreToolUse hook JSON from stdin, wraps Bash commands in
    bash -c "$(echo '<base64>' | base64 -d)" and writes the modified
    tool input to stdout. Anything unexpected passes through as {}.

ESCAPE MARKERS:
    Commands containing "# bypass-hook", "# no-wrap" or "# skip-hook"
    are left unchanged. Add more with "additional_escape_markers".

CONFIGURATION:
    ~/.claude/bash-hook-config.json (override with $BASH_HOOK_CONFIG)
    Keys: enabled, additional_escape_markers, additional_safe_patterns,
          force_wrap_patterns, debug_log, log_file, permission_decision
"""


def _test_command(command: str) -> int:
    config = _read_config()
    raw = os.fsencode(command)
    if should_wrap(raw, config):
        print(wrap_command(raw))
    else:
        print(command)
    return 0


def _validate() -> int:
    """Output channels follow hook conventions: issues to stderr (exit 2), else stdout."""
    path = default_config_path()
    issues = validate_config(path)
    if issues:
        print(f"bash-wrap config {path} -- validation failed:", file=sys.stderr)
        for issue in issues:
            print(f"  ✗ {issue}", file=sys.stderr)
        return 2
    if path is None or not path.exists():
        print("bash-wrap config -- no config file, using defaults")
    else:
        print(f"bash-wrap config -- {path} is valid")
    return 0


def _init_config() -> int:
    path = default_config_path()
    if path is not None and path.exists():
        print(f"Config already exists: {path}", file=sys.stderr)
        return 1
    try:
        path = save_config(PolicyConfig(), path)
    except OSError as e:
        print(f"Cannot write config: {e}", file=sys.stderr)
        return 1
    print(f"Wrote default config to {path}")
    return 0


def main() -> None:
    args = sys.argv[1:]
    if args:
        if args[0] == "--test" and len(args) > 1:
            sys.exit(_test_command(args[1]))
        if args[0] == "--validate":
            sys.exit(_validate())
        if args[0] == "--init-config":
            sys.exit(_init_config())
        if args[0] == "--version":
            print(f"bash-wrap-hook v{VERSION}")
            sys.exit(0)
        if args[0] == "--help":
            print(HELP, end="")
            sys.exit(0)
    run_hook()


if __name__ == "__main__":
    main()
