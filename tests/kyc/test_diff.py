"""Tests for positional snapshot diffs and content hashes."""

from kyc.diff import compute_content_hash, generate_simple_diff, short_hash


class TestGenerateSimpleDiff:
    """Tests for generate_simple_diff."""

    def test_identical(self) -> None:
        text = "(kyc-case FUND-001\n  (nature \"fund\"))"
        assert generate_simple_diff(text, text) == "No changes"

    def test_empty_identical(self) -> None:
        assert generate_simple_diff("", "") == "No changes"

    def test_whitespace_only(self) -> None:
        assert generate_simple_diff("a\nb", "a\n  b  ") == "Structural changes only"

    def test_changed_line(self) -> None:
        assert generate_simple_diff("a\nb", "a\nc") == "- b\n+ c\n"

    def test_added_line(self) -> None:
        assert generate_simple_diff("a", "a\nb") == "+ b\n"

    def test_removed_line(self) -> None:
        assert generate_simple_diff("a\nb", "a") == "- b\n"

    def test_insertion_is_positional(self) -> None:
        """An inserted line shifts every following pair."""
        assert generate_simple_diff("a\nc", "a\nb\nc") == "- c\n+ b\n+ c\n"

    def test_lines_are_trimmed(self) -> None:
        assert generate_simple_diff("  x  \ny", "x\nz") == "- y\n+ z\n"


class TestHashing:
    """Tests for content hashing."""

    def test_sha256_hex(self) -> None:
        assert compute_content_hash("") == (
            "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )

    def test_exact_text(self) -> None:
        assert compute_content_hash("a") != compute_content_hash("a ")

    def test_short_hash(self) -> None:
        digest = compute_content_hash("FUND-001")
        assert short_hash(digest) == digest[:12]
        assert len(short_hash(digest)) == 12
