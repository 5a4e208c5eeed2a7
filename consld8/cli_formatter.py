"""
Module: cli_formatter
Purpose: Terminal output for the consld8 CLI: headings, status lines, boxed
plan/result summaries and the STOP/BLOCKED frame.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from importlib import metadata
from typing import Sequence, TextIO

from .utils import BOLD, COLOR_RESET, color_256, osc8_link

BOX_WIDTH = 72
LABEL_WIDTH = 22
INDENT = "  "

# 256-colour codes per message level
LEVEL_COLORS = {
    "info": color_256(75),
    "ok": color_256(64),
    "warn": color_256(214),
    "error": color_256(160),
    "muted": color_256(244),
}

_UNICODE_BOX = ("┌", "┐", "└", "┘", "─", "│")
_ASCII_BOX = ("+", "+", "+", "+", "-", "|")


@dataclass
class FormatterConfig:
    use_color: bool = True
    unicode_enabled: bool = True
    show_banner: bool = True
    plain_mode: bool = False
    osc8_links: bool = True
    verbose: bool = False
    pipe_mode: bool = False


class CLIFormatter:
    """
    Human-facing output. In pipe mode the CLI hands it a throwaway stream and
    writes JSON documents to pipe_target instead.
    """

    def __init__(self, config: FormatterConfig | None = None, stream: TextIO | None = None) -> None:
        self.config = config or FormatterConfig()
        self.stream = stream or sys.stdout
        self.pipe_target: TextIO = sys.stdout

    def print_banner(self) -> None:
        if not self.config.show_banner or self.config.plain_mode or self.config.pipe_mode:
            return
        dash = "—" if self._unicode() else "-"
        self._write(self._style(f"consld8 {dash} Consolidation Wizard ({_version()})", "info", bold=True))

    def line(self, text: str = "") -> None:
        self._write(text)

    def blank(self) -> None:
        self._write("")

    def section(self, title: str) -> None:
        marker = "▸" if self._unicode() else ">"
        self.blank()
        self._write(self._style(f"{marker} {title}", "info", bold=True))

    def success(self, text: str) -> None:
        self._write(self._style(text, "ok", bold=True))

    def warning(self, text: str) -> None:
        self._write(self._style(text, "warn", bold=True))

    def error(self, text: str) -> None:
        self._write(self._style(text, "error", bold=True))

    def muted(self, text: str) -> None:
        self._write(self._style(text, "muted"))

    def verbose(self, text: str) -> None:
        if self.config.verbose:
            self.muted(f"[verbose] {text}")

    def kv(self, label: str, value: str) -> None:
        self._write(f"{INDENT}{label:<{LABEL_WIDTH}} : {value}")

    def bullet(self, text: str) -> None:
        self._write(f"{INDENT}- {text}")

    def label(self, text: str, level: str = "info", *, bold: bool = True) -> str:
        """Styled inline text for embedding in other lines."""
        return self._style(text, level, bold=bold)

    def prompt(self, message: str) -> str:
        return self._style(message, "info", bold=True)

    def link(self, path: str, label: str | None = None) -> str:
        """
        OSC-8 hyperlink to a local file when the terminal supports it,
        otherwise the bare label (or path).
        """
        text = label or path
        if not (self.config.osc8_links and self.config.use_color and not self.config.plain_mode):
            return text
        return osc8_link(path, text)

    def summary_box(self, title: str, rows: Sequence[tuple[str, str]]) -> None:
        """
        Boxed label/value table (MOVE PLAN, RESULT). Values that do not fit
        are cut with an ellipsis so the box keeps its width.
        """
        if self.config.pipe_mode:
            return
        tl, tr, bl, br, horiz, vert = self._box_chars()
        inner = BOX_WIDTH - 2
        self._write(f"{tl}{horiz * inner}{tr}")
        self._write(f"{vert}{f' {title} '.center(inner)}{vert}")
        for label, value in rows:
            text = f"{label:<{LABEL_WIDTH}} {value}"
            if len(text) > inner - 2:
                text = text[: inner - 5] + "..."
            self._write(f"{vert} {text.ljust(inner - 1)}{vert}")
        self._write(f"{bl}{horiz * inner}{br}")

    def failure_summary(self, *, reason: str, log_hint: str | None = None, remediation: Sequence[str] = ()) -> None:
        """
        STOP/BLOCKED frame: why the run stopped, where the log is and what
        the user has to do before rerunning.
        """
        if self.config.pipe_mode:
            return
        steps = list(remediation) or ["Review the error and rerun when ready."]
        rows = [f"Reason: {reason}"]
        if log_hint:
            rows.append(f"Log file: {log_hint}")
        rows.append(f"Required: {steps[0]}")
        rows.extend(f"Then: {step}" for step in steps[1:])

        tl, tr, bl, br, horiz, vert = self._box_chars()
        heading = f"{horiz} STOP/BLOCKED "
        self.blank()
        self._write(f"{tl}{heading}{horiz * (BOX_WIDTH - 2 - len(heading))}{tr}")
        for row in rows:
            # rows carrying escape sequences cannot be padded by length
            self._write(f"{vert} {row}" if "\x1b" in row else f"{vert} {row.ljust(BOX_WIDTH - 4)} {vert}")
        self._write(f"{bl}{horiz * (BOX_WIDTH - 2)}{br}")

    def _unicode(self) -> bool:
        return self.config.unicode_enabled and not self.config.plain_mode

    def _box_chars(self) -> tuple[str, ...]:
        return _UNICODE_BOX if self._unicode() else _ASCII_BOX

    def _write(self, text: str) -> None:
        self.stream.write(text + "\n")

    def _style(self, text: str, level: str, bold: bool = False) -> str:
        if not self.config.use_color or not text:
            return text
        prefix = (BOLD if bold else "") + LEVEL_COLORS.get(level, LEVEL_COLORS["info"])
        return f"{prefix}{text}{COLOR_RESET}"


def _version() -> str:
    value = os.environ.get("CONSLD8_VERSION", "").strip()
    if not value:
        try:
            value = metadata.version("consld8")
        except metadata.PackageNotFoundError:
            value = "dev"
    return value if value.lower().startswith("v") else f"v{value}"


def detect_terminal_capabilities(
    *,
    plain_mode: bool = False,
    no_color_flag: bool = False,
    stdout_isatty: bool | None = None,
    mode_preference: str = "auto",
) -> FormatterConfig:
    """
    Pick the output mode from flags and environment.

    Args:
        plain_mode: --plain was given.
        no_color_flag: --no-color was given.
        stdout_isatty: Whether stdout is a terminal (detected when None).
        mode_preference: auto, tty, plain or pipe. Auto means pipe when
            stdout is not a terminal.

    Returns:
        FormatterConfig. NO_COLOR and TERM=dumb disable colour;
        CONSLD8_PLAIN forces plain output.
    """
    mode = (mode_preference or "auto").lower()
    if stdout_isatty is None:
        stdout_isatty = sys.stdout.isatty()
    pipe_mode = mode == "pipe" or (mode == "auto" and not stdout_isatty)
    if pipe_mode or plain_mode or mode == "plain" or os.environ.get("CONSLD8_PLAIN"):
        return FormatterConfig(
            use_color=False,
            unicode_enabled=False,
            show_banner=False,
            plain_mode=True,
            osc8_links=False,
            pipe_mode=pipe_mode,
        )

    term = os.environ.get("TERM", "").lower()
    use_color = stdout_isatty and not no_color_flag and not os.environ.get("NO_COLOR") and term != "dumb"
    return FormatterConfig(
        use_color=use_color,
        unicode_enabled=term != "dumb" and _encodes_box_drawing(),
        osc8_links=use_color,
    )


def _encodes_box_drawing() -> bool:
    encoding = getattr(sys.stdout, "encoding", None)
    if not encoding:
        return False
    try:
        "┌".encode(encoding)
    except (UnicodeEncodeError, LookupError):
        return False
    return True
