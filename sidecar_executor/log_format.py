import logging
import re


_ANSI_ESCAPE_RE = re.compile(
    r"""
    \x1B  # ESC
    (?:
        \[ [0-?]* [ -/]* [@-~]   # CSI ... cmd
      | \] .*? (?:\x07|\x1B\\)   # OSC ... BEL or ST
      | .                       # single-char escape
    )
    """,
    re.VERBOSE,
)

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

_CANONICAL_LOG_RE = re.compile(r"^\[[^/\]]+/[^\]]+\]\[[A-Z]+\]\s")
_NESTED_HEADER_RE = re.compile(r"^\[[^\]]+\]\[[A-Z]+\]\s?")

LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")

# stdout/stderr is the only severity signal an undifferentiated byte stream has
STREAM_LEVELS = {
    "stdout": logging.INFO,
    "stderr": logging.ERROR,
}


def level_for_stream(stream: str) -> int | None:
    """Logging level for a container stream, or None for an unknown stream."""
    return STREAM_LEVELS.get(stream)


def format_log_line(scope: str, subscope: str = "none", level: str = "INFO", message: str = "") -> str:
    """Format a log line as ``[{scope}/{subscope}][{LEVEL}] {message}``.

    Nested headers at the start of ``message`` are stripped so relayed lines
    that already carry a header are not double-wrapped. Returns an empty
    string when nothing is left after stripping.

    Examples:
        >>> format_log_line("6e9f", "stdout", "INFO", "hello")
        '[6e9f/stdout][INFO] hello'

        >>> format_log_line("host", "relay", "info", "[nested/header][WARN] real message")
        '[host/relay][INFO] real message'
    """
    level = level.upper().strip()
    if level not in LEVELS:
        level = "INFO"

    while True:
        match = _NESTED_HEADER_RE.match(message)
        if not match:
            break
        message = message[match.end():]

    if not message:
        return ""
    return f"[{scope}/{subscope}][{level}] {message}"


def wrap_container_log(cid: str, stream: str, line: str) -> str:
    """Wrap one line of container output for the executor's own log.

    Args:
        cid: Container ID (first 4 chars become the scope).
        stream: ``stdout`` or ``stderr``.
        line: The raw line.

    Returns:
        The line unchanged if it already has a canonical header, otherwise
        wrapped with stderr mapped to ERROR and everything else to INFO.
    """
    if _CANONICAL_LOG_RE.match(line):
        return line

    cid4 = cid[:4] if len(cid) >= 4 else cid
    level = "ERROR" if stream == "stderr" else "INFO"
    return format_log_line(cid4, stream, level, line)


def prettify_log_line(line: str) -> str:
    """Strip carriage returns, ANSI escapes and control characters."""
    text = (line or "").replace("\r", "")
    text = _ANSI_ESCAPE_RE.sub("", text)
    text = _CONTROL_CHARS_RE.sub("", text)
    return text.rstrip()
