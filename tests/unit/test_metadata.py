"""Unit tests for build metadata reporting."""

from catd.domain.metadata import UNKNOWN, ZERO_MTIME, BuildMetadata, load_build_metadata


def test_render_lists_every_field():
    """The metadata block is four labelled lines."""
    metadata = BuildMetadata(
        version="1.2.3", commit="abc123", mtime="2024-01-02T03:04:05Z"
    )

    assert metadata.render() == (
        "Name: catd\n"
        "Version: 1.2.3\n"
        "Commit: abc123\n"
        "MTime: 2024-01-02T03:04:05Z\n"
    )


def test_build_environment_overrides(monkeypatch):
    """Values stamped at build time take precedence."""
    monkeypatch.setenv("CATD_BUILD_VERSION", "9.9.9")
    monkeypatch.setenv("CATD_BUILD_COMMIT", "deadbeef")
    monkeypatch.setenv("CATD_BUILD_MTIME", "2024-05-06T07:08:09Z")

    metadata = load_build_metadata()

    assert metadata.version == "9.9.9"
    assert metadata.commit == "deadbeef"
    assert metadata.mtime == "2024-05-06T07:08:09Z"


def test_unstamped_build_uses_placeholders(monkeypatch):
    """Missing commit and mtime fall back to fixed placeholders."""
    monkeypatch.delenv("CATD_BUILD_COMMIT", raising=False)
    monkeypatch.delenv("CATD_BUILD_MTIME", raising=False)

    metadata = load_build_metadata()

    assert metadata.name == "catd"
    assert metadata.commit == UNKNOWN
    assert metadata.mtime == ZERO_MTIME
    assert metadata.version
