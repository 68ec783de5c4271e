"""Tests for unified diff parsing and cleaning."""

from changereel.github.diff_parser import (
    CleanDiffOptions,
    clean_diff,
    extract_context,
    get_file_type,
    get_quick_summary,
    has_extension,
    parse_for_ai,
    parse_unified_diff,
    render_unified_diff,
    summarize_diff,
)
from changereel.models.diff import BothSides, FileStatus, LineType, NewSide, OldSide
from tests.conftest import BINARY_DIFF, MULTI_FILE_DIFF, RENAME_DIFF, SIMPLE_DIFF


class TestParseUnifiedDiff:
    """Structure recovered from unified diff text."""

    def test_simple_diff_stats(self):
        files = parse_unified_diff(SIMPLE_DIFF)

        assert len(files) == 1
        file = files[0]
        assert file.filename == "src/utils.js"
        assert file.status == FileStatus.MODIFIED
        assert file.file_type == "javascript"
        assert not file.is_binary
        assert not file.is_generated
        assert file.stats.additions == 2
        assert file.stats.deletions == 1
        assert file.stats.changes == 3
        assert file.stats.context_lines == 4

    def test_hunk_header_and_line_numbers(self):
        hunk = parse_unified_diff(SIMPLE_DIFF)[0].hunks[0]

        assert (hunk.old_start, hunk.old_lines, hunk.new_start, hunk.new_lines) == (1, 5, 1, 7)
        first, deleted, added = hunk.lines[0], hunk.lines[1], hunk.lines[2]
        assert first.numbers == BothSides(old=1, new=1)
        assert deleted.type == LineType.DELETE
        assert deleted.numbers == OldSide(old=2)
        assert deleted.new_line_number is None
        assert added.type == LineType.ADD
        assert added.numbers == NewSide(new=2)
        assert added.content == "  console.log('Hello World');"

    def test_whitespace_context_line_is_flagged(self):
        lines = parse_unified_diff(SIMPLE_DIFF)[0].hunks[0].lines

        blank = [line for line in lines if line.type == LineType.CONTEXT and line.content == ""]
        assert len(blank) == 1
        assert blank[0].is_whitespace_only

    def test_added_and_deleted_files(self):
        readme, index = parse_unified_diff(MULTI_FILE_DIFF)

        assert readme.filename == "README.md"
        assert readme.status == FileStatus.ADDED
        assert readme.stats.additions == 3
        assert index.filename == "src/index.js"
        assert index.status == FileStatus.DELETED
        assert index.stats.deletions == 2

    def test_binary_file_has_no_hunks(self):
        files = parse_unified_diff(BINARY_DIFF)

        assert len(files) == 1
        assert files[0].is_binary
        assert files[0].hunks == []
        assert files[0].stats.changes == 0

    def test_rename_without_content(self):
        (file,) = parse_unified_diff(RENAME_DIFF)

        assert file.status == FileStatus.RENAMED
        assert file.filename == "new-name.js"
        assert file.previous_filename == "old-name.js"

    def test_no_newline_marker_retags_previous_line(self):
        diff = "\n".join(
            [
                "diff --git a/a.txt b/a.txt",
                "--- a/a.txt",
                "+++ b/a.txt",
                "@@ -1 +1 @@",
                "-old",
                "+new",
                "\\ No newline at end of file",
            ]
        )
        lines = parse_unified_diff(diff)[0].hunks[0].lines

        assert lines[-1].type == LineType.NO_NEWLINE
        assert lines[-1].content == "new"

    def test_missing_hunk_length_defaults_to_one(self):
        diff = "diff --git a/a b/a\n--- a/a\n+++ b/a\n@@ -3 +3 @@\n-x\n+y"
        hunk = parse_unified_diff(diff)[0].hunks[0]

        assert hunk.old_lines == 1
        assert hunk.new_lines == 1

    def test_blank_input(self):
        assert parse_unified_diff("") == []
        assert parse_unified_diff("   \n\t\n") == []

    def test_garbage_never_raises(self):
        garbage = "@@ nonsense @@\n+++\n---\ndiff --git broken\n\\\n@@ -x,y +z @@\n+floating"
        assert parse_unified_diff(garbage) == []

    def test_malformed_hunk_is_skipped_but_file_kept(self):
        diff = SIMPLE_DIFF.replace("@@ -1,5 +1,7 @@", "@@ -a,b +c,d @@")
        files = parse_unified_diff(diff)

        assert len(files) == 1
        assert files[0].hunks == []

    def test_crlf_line_endings(self):
        files = parse_unified_diff(SIMPLE_DIFF.replace("\n", "\r\n"))

        assert files[0].stats.changes == 3


class TestCleanDiff:
    """Declarative cleaning keeps stats consistent with lines."""

    def test_default_options_keep_content(self):
        files = parse_unified_diff(SIMPLE_DIFF)
        cleaned = clean_diff(files)

        assert cleaned[0].stats == files[0].stats

    def test_remove_whitespace_only_recomputes_stats(self):
        files = parse_unified_diff(SIMPLE_DIFF)
        cleaned = clean_diff(files, CleanDiffOptions(remove_whitespace_only=True))

        assert cleaned[0].stats.context_lines == 3
        assert cleaned[0].stats.changes == 3
        assert files[0].stats.context_lines == 4

    def test_max_context_lines_truncates(self):
        files = parse_unified_diff(SIMPLE_DIFF)
        cleaned = clean_diff(files, CleanDiffOptions(max_context_lines=2))

        assert len(cleaned[0].hunks[0].lines) == 2
        assert cleaned[0].stats.changes == 1
        assert cleaned[0].stats.deletions == 1

    def test_exclusions(self):
        files = parse_unified_diff(MULTI_FILE_DIFF + "\n" + BINARY_DIFF)
        options = CleanDiffOptions(remove_binary_files=True, exclude_extensions=["md"])

        assert [f.filename for f in clean_diff(files, options)] == ["src/index.js"]

    def test_large_file_threshold(self):
        files = parse_unified_diff(SIMPLE_DIFF)

        assert clean_diff(files, CleanDiffOptions(large_file_threshold=2)) == []


class TestHelpers:
    def test_summarize_diff(self):
        summary = summarize_diff(parse_unified_diff(MULTI_FILE_DIFF + "\n" + BINARY_DIFF))

        assert summary.total_files == 3
        assert summary.files_by_type["added"] == 1
        assert summary.files_by_type["deleted"] == 1
        assert summary.files_by_extension["md"] == 1
        assert summary.stats.binary_files == 1
        assert summary.stats.changes == 5

    def test_quick_summary(self):
        assert get_quick_summary(SIMPLE_DIFF) == "1 files changed, 2 insertions(+), 1 deletions(-)"

    def test_extract_context(self):
        file = parse_unified_diff(SIMPLE_DIFF)[0]
        context = extract_context(file, 2, context_size=1)

        assert [line.content for line in context] == [
            "  console.log('Hello');",
            "  console.log('Hello World');",
            "  console.log('New line');",
        ]
        assert extract_context(file, 99) == []

    def test_render_round_trip_preserves_stats(self):
        files = parse_unified_diff(SIMPLE_DIFF + "\n" + MULTI_FILE_DIFF)
        reparsed = parse_unified_diff(render_unified_diff(files))

        assert [f.filename for f in reparsed] == [f.filename for f in files]
        assert [f.stats for f in reparsed] == [f.stats for f in files]

    def test_parse_for_ai_drops_maps_and_binaries(self):
        diff = BINARY_DIFF + "\n" + SIMPLE_DIFF.replace("src/utils.js", "dist/app.js.map")

        assert parse_for_ai(diff) == []

    def test_file_type_and_extensions(self):
        assert get_file_type("Dockerfile") == "docker"
        assert get_file_type("main.py") == "python"
        assert has_extension("bundle.min.js", "min.js")
        assert not has_extension("admin.js", "min.js")
