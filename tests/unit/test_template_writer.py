"""
Unit tests for template output writing.
"""
import pytest

from work_by_steps.core.exceptions import SecurityError
from work_by_steps.core.template_writer import FileTemplateWriter, normalize_path, replace_section


class TestNormalizePath:
    """Test path traversal protection."""

    def test_relative_path_inside_base(self, temp_workspace):
        target = normalize_path(temp_workspace, "docs/architecture.md")

        assert target == (temp_workspace / "docs" / "architecture.md").resolve()

    def test_traversal_rejected(self, temp_workspace):
        with pytest.raises(SecurityError):
            normalize_path(temp_workspace, "../outside.md")


class TestFileTemplateWriter:
    """Test FileTemplateWriter."""

    def test_write_creates_directories(self, temp_workspace):
        """Test that parent directories are created on write."""
        writer = FileTemplateWriter(temp_workspace)

        path = writer.write("docs/stories/1.md", "# Story")

        assert path.read_text(encoding="utf-8") == "# Story"
        assert writer.read("docs/stories/1.md") == "# Story"

    def test_write_leaves_no_temp_files(self, temp_workspace):
        """Test that the atomic write cleans up after itself."""
        writer = FileTemplateWriter(temp_workspace)
        writer.write("docs/a.md", "one")
        writer.write("docs/a.md", "two")

        assert [p.name for p in (temp_workspace / "docs").iterdir()] == ["a.md"]
        assert writer.read("docs/a.md") == "two"

    def test_write_outside_root_rejected(self, temp_workspace):
        writer = FileTemplateWriter(temp_workspace)

        with pytest.raises(SecurityError):
            writer.write("../../etc/passwd", "x")


class TestReplaceSection:
    """Test replace_section."""

    DOCUMENT = "# Architecture\n\n## Overview\n\nTBD\n\n## Security\n\nTBD\n"

    def test_replaces_existing_section(self):
        """Test that only the named section body changes."""
        updated = replace_section(self.DOCUMENT, "Overview", "A layered system.")

        assert "## Overview\n\nA layered system.\n" in updated
        assert updated.count("TBD") == 1
        assert updated.index("## Overview") < updated.index("## Security")

    def test_replaces_last_section(self):
        updated = replace_section(self.DOCUMENT, "Security", "TLS everywhere.")

        assert updated.endswith("## Security\n\nTLS everywhere.\n")

    def test_appends_missing_section(self):
        updated = replace_section(self.DOCUMENT, "Deployment", "Kubernetes.")

        assert updated.endswith("\n\n## Deployment\n\nKubernetes.\n")

    def test_empty_document(self):
        assert replace_section("", "Overview", "Text") == "## Overview\n\nText\n"
