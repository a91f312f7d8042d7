#!/usr/bin/env python3
"""
Env File Manager for lanup

This module reads, merges and rewrites the generated env file. lanup owns only
the variables it marks as managed; everything else in the file belongs to the
user and survives every rewrite untouched.

**File Layout:**
    ```
    # Generated by lanup on 2025-01-15 10:30:45 UTC
    # Do not edit the managed variables manually

    # lanup:managed
    API_URL=http://192.168.1.100:8000

    # User variables (preserved)
    SECRET_KEY=my-secret
    ```

**Managed Status:**
Lines are tokenised by python-dotenv's parser. A variable is managed when the
line directly above it is the ``# lanup:managed`` marker. The status is keyed
by name and sticks across runs until the user deletes the marker line. User
lines are written back exactly as they were read.

**Write Safety:**
The previous file is copied to ``<path>.bak`` before each write, and the new
content is written to a temporary sibling file that replaces the original in
one ``os.replace`` call, so a failed write never leaves a half-written file.

License: MIT
"""

import io
import os
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

from dotenv.parser import Binding, parse_stream

from .errors import EnvParseError, EnvPermissionError
from .utils import get_logger

logger = get_logger("lanup.env")

MANAGED_MARKER = "# lanup:managed"
USER_SECTION_HEADER = "# User variables (preserved)"
BACKUP_SUFFIX = ".bak"

KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")

# Characters that force a value to be double-quoted on write
_QUOTE_TRIGGERS = ("#", "\n", "\r")


def is_valid_key(key: str) -> bool:
    """Return True when ``key`` can be written to and read back from an env file."""
    return isinstance(key, str) and KEY_PATTERN.fullmatch(key) is not None


@dataclass
class EnvVar:
    """
    One ``KEY=VALUE`` entry of an env file.

    Attributes:
        key (str): Variable name, unique within a file.
        value (str): Decoded value.
        managed (bool): True when lanup owns the variable and rewrites it on
            every run; False for user variables lanup must never modify.
        raw (Optional[str]): The line exactly as read from disk. User
            variables that carry it are written back unchanged.
    """
    key: str
    value: str
    managed: bool = False
    raw: Optional[str] = field(default=None, compare=False, repr=False)


def format_value(value: str) -> str:
    """
    Return ``value`` as it must appear after ``KEY=``.

    Values that would read back differently when written bare (surrounding
    whitespace, a leading quote, ``#`` or a line break) are double-quoted with
    backslashes and double quotes escaped.
    """
    if value != value.strip() or value[:1] in ('"', "'") or any(c in value for c in _QUOTE_TRIGGERS):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return value


def _binding_line(binding: Binding) -> int:
    text = binding.original.string
    leading = text[:len(text) - len(text.lstrip())]
    return binding.original.line + leading.count("\n")


def _binding_to_var(binding: Binding, line_number: int) -> EnvVar:
    text = binding.original.string.strip()
    if binding.error or binding.value is None:
        raise EnvParseError(f"Invalid line {line_number}: expected KEY=VALUE, got {text!r}",
                            line_number=line_number)
    if not is_valid_key(binding.key):
        raise EnvParseError(f"Invalid line {line_number}: bad variable name {binding.key!r}",
                            line_number=line_number)
    return EnvVar(key=binding.key, value=binding.value, managed=False, raw=text)


def parse_env_line(line: str, line_number: int) -> EnvVar:
    """
    Parse one non-comment, non-blank line into an (unmanaged) ``EnvVar``.

    Accepts ``KEY=VALUE``, ``KEY="VALUE"``, ``KEY='VALUE'``, an optional
    leading ``export`` and a trailing ``# comment``.

    Raises:
        EnvParseError: If the line is not a valid assignment.
    """
    bindings = list(parse_stream(io.StringIO(line.strip())))
    if len(bindings) != 1 or (bindings[0].key is None and not bindings[0].error):
        raise EnvParseError(f"Invalid line {line_number}: expected KEY=VALUE, got {line.strip()!r}",
                            line_number=line_number)
    return _binding_to_var(bindings[0], line_number)


def parse_env_content(content: str) -> List[EnvVar]:
    """
    Parse env file content into an ordered list of variables.

    Blank lines and comments are skipped. The managed marker flags the next
    variable as managed; a blank line between marker and variable is allowed,
    another comment is not and cancels the marker. A repeated key keeps its
    first position and takes the last value.

    Raises:
        EnvParseError: If any line cannot be parsed.
    """
    variables: List[EnvVar] = []
    index = {}
    pending_managed = False

    for binding in parse_stream(io.StringIO(content)):
        line_number = _binding_line(binding)
        if binding.key is None and not binding.error:
            text = binding.original.string.strip()
            if text:
                pending_managed = text == MANAGED_MARKER
            continue

        var = _binding_to_var(binding, line_number)
        var.managed = pending_managed
        pending_managed = False

        if var.key in index:
            existing = variables[index[var.key]]
            existing.value = var.value
            existing.raw = var.raw
            existing.managed = existing.managed or var.managed
        else:
            index[var.key] = len(variables)
            variables.append(var)

    return variables


def merge_env_vars(new_vars: Iterable[EnvVar], existing: Iterable[EnvVar]) -> List[EnvVar]:
    """
    Merge freshly resolved managed variables over the variables already on disk.

    Rules:
    - every key in ``new_vars`` takes its new value and is marked managed,
      whatever its previous value or status
    - existing user (unmanaged) keys absent from ``new_vars`` are kept with
      their original line and relative order
    - existing managed keys absent from ``new_vars`` are stale and dropped

    Result order: new managed variables in the order given, then the preserved
    user variables.

    Args:
        new_vars (Iterable[EnvVar]): Resolved managed variables.
        existing (Iterable[EnvVar]): Variables read from the current file.

    Returns:
        List[EnvVar]: Merged variables (new objects; inputs are not modified).

    Example:
        ```python
        merged = merge_env_vars(
            [EnvVar("A", "new", True), EnvVar("C", "new", True)],
            [EnvVar("A", "old", True), EnvVar("B", "user", False)],
        )
        # A(new, managed), C(new, managed), B(user, unmanaged)
        ```
    """
    merged: List[EnvVar] = []
    seen = set()

    for var in new_vars:
        if var.key in seen:
            # Later duplicates win, position of the first is kept
            for item in merged:
                if item.key == var.key:
                    item.value = var.value
            continue
        seen.add(var.key)
        merged.append(EnvVar(key=var.key, value=var.value, managed=True))

    for var in existing:
        if var.key in seen:
            continue
        if var.managed:
            logger.debug(f"Dropping stale managed variable {var.key}")
            continue
        seen.add(var.key)
        merged.append(EnvVar(key=var.key, value=var.value, managed=False, raw=var.raw))

    return merged


def render_env_file(variables: Iterable[EnvVar], generated_at: Optional[datetime] = None) -> str:
    """
    Render variables into env file text.

    Args:
        variables (Iterable[EnvVar]): Variables in output order.
        generated_at (Optional[datetime]): Header timestamp, now (UTC) by default.

    Returns:
        str: File content ending with a newline.
    """
    generated_at = generated_at or datetime.now(timezone.utc)
    variables = list(variables)
    managed = [v for v in variables if v.managed]
    user = [v for v in variables if not v.managed]

    lines = [
        f"# Generated by lanup on {generated_at.strftime('%Y-%m-%d %H:%M:%S %Z').strip()}",
        "# Do not edit the managed variables manually",
        "",
    ]

    for var in managed:
        lines.append(MANAGED_MARKER)
        lines.append(f"{var.key}={format_value(var.value)}")

    if user:
        if managed:
            lines.append("")
        lines.append(USER_SECTION_HEADER)
        for var in user:
            lines.append(var.raw if var.raw is not None else f"{var.key}={format_value(var.value)}")

    return "\n".join(lines) + "\n"


class EnvFileManager:
    """
    Reads, merges and writes one generated env file.

    Attributes:
        file_path (Path): Env file location.
        backup_enabled (bool): Copy the previous file to ``<path>.bak`` before writing.

    Example:
        ```python
        manager = EnvFileManager(".env.local")
        merged = manager.update([EnvVar("API_URL", "http://192.168.1.100:8000", True)])
        ```
    """

    def __init__(self, file_path, backup_enabled: bool = True):
        self.file_path = Path(file_path)
        self.backup_enabled = backup_enabled

    @property
    def backup_path(self) -> Path:
        return self.file_path.with_name(self.file_path.name + BACKUP_SUFFIX)

    def read(self) -> List[EnvVar]:
        """
        Read and parse the current file.

        Returns:
            List[EnvVar]: Variables in file order; empty if the file does not exist.

        Raises:
            EnvParseError: If the file contains a malformed line.
            EnvPermissionError: If the file exists but cannot be read.
        """
        try:
            content = self.file_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug(f"{self.file_path} does not exist yet")
            return []
        except OSError as e:
            raise EnvPermissionError(f"Failed to read env file {self.file_path}", cause=e) from e

        variables = parse_env_content(content)
        logger.debug(f"Read {len(variables)} variable(s) from {self.file_path} "
                     f"({sum(1 for v in variables if v.managed)} managed)")
        return variables

    def merge(self, new_vars: Iterable[EnvVar], existing: Iterable[EnvVar]) -> List[EnvVar]:
        """Merge resolved managed variables over existing ones. See ``merge_env_vars``."""
        return merge_env_vars(new_vars, existing)

    def backup(self) -> Optional[Path]:
        """
        Copy the current file to the backup path.

        Returns:
            Optional[Path]: Backup path, or None when there was nothing to back up.

        Raises:
            EnvPermissionError: If the copy fails.
        """
        if not self.file_path.exists():
            return None
        try:
            shutil.copyfile(self.file_path, self.backup_path)
        except OSError as e:
            raise EnvPermissionError(f"Failed to back up {self.file_path} to {self.backup_path}",
                                     cause=e) from e
        logger.debug(f"Backed up {self.file_path} to {self.backup_path}")
        return self.backup_path

    def write(self, variables: Iterable[EnvVar]) -> None:
        """
        Write variables to the file, replacing it atomically.

        Raises:
            EnvPermissionError: If the backup or the write fails. The previous
                file is left as it was.
        """
        content = render_env_file(variables)

        if self.backup_enabled:
            self.backup()

        directory = self.file_path.parent
        tmp_name = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.file_path.name}.", suffix=".tmp", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as tmp_file:
                tmp_file.write(content)
            if self.file_path.exists():
                shutil.copymode(self.file_path, tmp_name)
            else:
                os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, self.file_path)
            tmp_name = None
        except OSError as e:
            raise EnvPermissionError(f"Failed to write env file {self.file_path}", cause=e) from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

        logger.info(f"Wrote {self.file_path}")

    def update(self, new_vars: Iterable[EnvVar]) -> List[EnvVar]:
        """
        Read the current file, merge ``new_vars`` over it and write the result.

        Returns:
            List[EnvVar]: The merged variables that were written.
        """
        existing = self.read()
        merged = self.merge(new_vars, existing)
        self.write(merged)
        return merged
