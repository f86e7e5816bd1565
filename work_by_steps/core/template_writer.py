"""
Template output writing for rendered workflow documents.
Following Single Responsibility Principle - handles document output only.
"""

import re
from abc import ABC, abstractmethod
from pathlib import Path

from .atomic_io import atomic_write_text
from .exceptions import SecurityError


def normalize_path(base: Path, relative_path: str) -> Path:
    """
    Normalize and validate a relative path to prevent path traversal attacks.

    Args:
        base: Base directory path
        relative_path: Relative path string

    Returns:
        Normalized absolute path

    Raises:
        SecurityError: If path traversal is detected
    """
    base_resolved = base.resolve()
    try:
        target = (base / relative_path).resolve()
    except (ValueError, OSError) as e:
        raise SecurityError(f"Invalid path: '{relative_path}': {e}")
    if target != base_resolved and base_resolved not in target.parents:
        raise SecurityError(
            f"Path traversal detected: '{relative_path}' resolves outside base directory '{base}'"
        )
    return target


def replace_section(document: str, section: str, body: str) -> str:
    """
    Replace the body of a ``## section`` heading, or append the section.

    The section runs until the next level-2 heading or the end of the
    document.
    """
    heading = re.compile(rf'^##\s+{re.escape(section)}\s*$', re.MULTILINE)
    match = heading.search(document)
    block = f"## {section}\n\n{body.strip()}\n"
    if not match:
        if not document.strip():
            return block
        return document.rstrip("\n") + "\n\n" + block

    next_heading = re.compile(r'^##\s+', re.MULTILINE).search(document, match.end())
    end = next_heading.start() if next_heading else len(document)
    tail = document[end:]
    return document[:match.start()] + block + ("\n" + tail if tail else "")


class TemplateWriter(ABC):
    """Writes rendered template output on behalf of the sequencer"""

    @abstractmethod
    def write(self, relative_path: str, content: str) -> Path:
        """Write content and return the absolute path written"""
        pass

    @abstractmethod
    def read(self, relative_path: str) -> str:
        """Read a file relative to the project root"""
        pass


class FileTemplateWriter(TemplateWriter):
    """Writes files under a project root, refusing paths that escape it"""

    def __init__(self, project_root: Path):
        self.project_root = Path(project_root)

    def write(self, relative_path: str, content: str) -> Path:
        target = normalize_path(self.project_root, relative_path)
        return atomic_write_text(target, content)

    def read(self, relative_path: str) -> str:
        target = normalize_path(self.project_root, relative_path)
        return target.read_text(encoding='utf-8')
