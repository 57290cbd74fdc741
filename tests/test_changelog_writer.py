from __future__ import annotations

from datetime import date
from pathlib import Path

from keryx.utils.changelog_models import ChangelogCategory, ChangelogEntry, ChangelogOutput
from keryx.utils.changelog_writer import (
    CHANGELOG_HEADER,
    find_insertion_point,
    generate_summary,
    parse_changelog,
    read_changelog,
    remove_version_section,
    render_unreleased,
    write_changelog,
)
from keryx.utils.semver import SemVer

DAY = date(2024, 5, 1)


def _output(*pairs) -> ChangelogOutput:
    return ChangelogOutput(entries=[ChangelogEntry(category=c, description=d) for c, d in pairs])


def test_creates_new_file_with_header(tmp_path: Path) -> None:
    path = tmp_path / "CHANGELOG.md"
    backup = write_changelog(path, _output((ChangelogCategory.ADDED, "Initial release")), SemVer(0, 1, 0), today=DAY)
    assert backup is None
    content = path.read_text(encoding="utf-8")
    assert content.startswith(CHANGELOG_HEADER)
    assert content.endswith("## [0.1.0] - 2024-05-01\n\n### Added\n\n- Initial release\n")


def test_categories_follow_keep_a_changelog_order(tmp_path: Path) -> None:
    path = tmp_path / "CHANGELOG.md"
    output = _output(
        (ChangelogCategory.FIXED, "Log level is respected"),
        (ChangelogCategory.ADDED, "New export command"),
        (ChangelogCategory.SECURITY, "Escape shell arguments"),
        (ChangelogCategory.ADDED, "Dry run flag"),
    )
    write_changelog(path, output, SemVer(2, 0, 0), today=DAY)
    content = path.read_text(encoding="utf-8")
    assert content.index("### Added") < content.index("### Fixed") < content.index("### Security")
    assert content.index("- New export command") < content.index("- Dry run flag")


def test_inserts_after_unreleased_section(tmp_path: Path) -> None:
    path = tmp_path / "CHANGELOG.md"
    path.write_text(
        "# Changelog\n\n## [Unreleased]\n\n- pending item\n\n## [1.0.0] - 2024-01-01\n\n### Added\n\n- First\n",
        encoding="utf-8",
    )
    backup = write_changelog(path, _output((ChangelogCategory.FIXED, "Bug")), SemVer(1, 0, 1), today=DAY)
    content = path.read_text(encoding="utf-8")
    assert content.index("## [Unreleased]") < content.index("- pending item") < content.index("## [1.0.1]")
    assert content.index("## [1.0.1]") < content.index("## [1.0.0]")
    assert backup == tmp_path / "CHANGELOG.md.bak"
    assert "## [1.0.1]" not in backup.read_text(encoding="utf-8")


def test_inserts_before_first_section_without_unreleased(tmp_path: Path) -> None:
    content = "# Changelog\n\nIntro.\n\n## [1.0.0] - 2024-01-01\n\n- First\n"
    assert content[find_insertion_point(content):].startswith("## [1.0.0]")


def test_appends_when_there_are_no_sections() -> None:
    content = "# Changelog\n\nNothing yet.\n"
    assert find_insertion_point(content) == len(content)


def test_parse_changelog_reports_latest_and_versions() -> None:
    parsed = parse_changelog("# Changelog\r\n\r\n## [Unreleased]\r\n\r\n## [v1.2.0] - 2024-02-02\r\n\r\n## 1.1.0\r\n")
    assert parsed.has_unreleased
    assert parsed.latest_version == SemVer(1, 2, 0)
    assert parsed.has_version(SemVer(1, 1, 0))
    assert not parsed.has_version(SemVer(1, 3, 0))


def test_read_missing_file_is_none(tmp_path: Path) -> None:
    assert read_changelog(tmp_path / "missing.md") is None


def test_remove_version_section() -> None:
    content = "# C\n\n## [1.1.0] - x\n\n- new\n\n## [1.0.0] - y\n\n- old\n"
    out = remove_version_section(content, SemVer(1, 1, 0))
    assert "## [1.1.0]" not in out and "- new" not in out
    assert "## [1.0.0] - y\n\n- old\n" in out


def test_force_replaces_existing_section(tmp_path: Path) -> None:
    path = tmp_path / "CHANGELOG.md"
    path.write_text("# Changelog\n\n## [1.1.0] - 2024-01-01\n\n### Added\n\n- stale\n", encoding="utf-8")
    write_changelog(path, _output((ChangelogCategory.ADDED, "fresh")), SemVer(1, 1, 0), today=DAY,
                    replace_existing=True)
    content = path.read_text(encoding="utf-8")
    assert content.count("## [1.1.0]") == 1
    assert "- fresh" in content and "- stale" not in content


def test_render_unreleased_and_summary() -> None:
    output = _output((ChangelogCategory.ADDED, "a"), (ChangelogCategory.FIXED, "b"), (ChangelogCategory.ADDED, "c"))
    rendered = render_unreleased(output)
    assert "## [Unreleased]\n\n### Added\n\n- a\n- c\n\n### Fixed\n\n- b\n" in rendered
    assert render_unreleased().endswith("## [Unreleased]\n")
    assert generate_summary(output) == "Added 3 entries (Added: 2, Fixed: 1) to CHANGELOG.md"
    assert generate_summary(ChangelogOutput()) == "No changelog entries generated."


def test_crlf_changelog_keeps_its_line_endings(tmp_path: Path) -> None:
    path = tmp_path / "CHANGELOG.md"
    path.write_bytes(b"# Changelog\r\n\r\n## [Unreleased]\r\n\r\n## [1.0.0] - 2024-01-01\r\n\r\n- First\r\n")

    write_changelog(path, _output((ChangelogCategory.FIXED, "Bug")), SemVer(1, 0, 1), today=DAY)

    data = path.read_bytes()
    assert b"## [1.0.1] - 2024-05-01\r\n\r\n### Fixed\r\n\r\n- Bug\r\n" in data
    assert data.count(b"\n") == data.count(b"\r\n")
    assert read_changelog(path).newline == "\r\n"
