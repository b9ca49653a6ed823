"""Unit tests for the install engine.

Key Testing Patterns:
    - Install a real staging tree into a temporary destination
    - Compare permission bits between source and copy
    - Run the wrapper preparation twice to check it is idempotent
"""

import os

from qup.core.platform import resolve_platform
from qup.fs.sync import WRAPPER_MARKER, SyncEngine, launcher_stanza
from qup.utils.cancellation import CancellationToken

DEBIAN = resolve_platform("Debian 12 AMD64")


def mode(path):
    return path.stat().st_mode & 0o777


def test_install_copies_files_and_permissions(staged_tree, tmp_path):
    destination = tmp_path / "installed"
    report = SyncEngine("tool", DEBIAN).install(staged_tree, destination)

    assert report.ok
    assert len(report.copied) == 3
    for name in ("tool", "helper.so", "docs/readme.txt"):
        assert (destination / name).read_bytes() == (staged_tree / name).read_bytes()
        assert mode(destination / name) == mode(staged_tree / name)


def test_install_tightens_existing_permissions(staged_tree, tmp_path):
    destination = tmp_path / "installed"
    destination.mkdir()
    (destination / "helper.so").write_bytes(b"old")
    os.chmod(destination / "helper.so", 0o777)

    SyncEngine("tool", DEBIAN).install(staged_tree, destination)

    assert mode(destination / "helper.so") == 0o644


def test_desktop_entry_is_duplicated(staged_tree, tmp_path):
    (staged_tree / "tool.desktop").write_text("[Desktop Entry]\nName=Tool\n")
    desktop = tmp_path / "applications"

    report = SyncEngine("tool", DEBIAN, desktop_dir=desktop).install(
        staged_tree, tmp_path / "installed"
    )

    assert report.desktop_entries == [desktop / "tool.desktop"]
    assert (desktop / "tool.desktop").read_text().startswith("[Desktop Entry]")
    assert str(desktop / "tool.desktop") not in report.copied


def test_desktop_entries_ignored_on_windows(staged_tree, tmp_path):
    (staged_tree / "tool.desktop").write_text("[Desktop Entry]\n")
    desktop = tmp_path / "Desktop"

    report = SyncEngine("tool", resolve_platform("Windows 11 AMD64"), desktop).install(
        staged_tree, tmp_path / "installed"
    )

    assert report.desktop_entries == []
    assert not desktop.exists()


def test_wrapper_stanza_is_inserted_once(staged_tree, tmp_path):
    script = staged_tree / "tool.sh"
    script.write_text(f"#!/bin/sh\n{WRAPPER_MARKER}\necho dev\n")
    destination = tmp_path / "installed"
    engine = SyncEngine("tool", DEBIAN)

    first = engine.install(staged_tree, destination)
    second = engine.install(staged_tree, destination)

    stanza = "".join(launcher_stanza(destination, "tool"))
    installed = (destination / "tool.sh").read_text()
    assert first.wrappers == [script]
    assert second.wrappers == []
    assert installed.count(stanza) == 1
    assert installed.index(WRAPPER_MARKER) < installed.index(stanza)
    assert installed == script.read_text()
    assert mode(destination / "tool.sh") == 0o755


def test_wrapper_without_marker_is_left_alone(staged_tree, tmp_path):
    (staged_tree / "tool.sh").write_text("#!/bin/sh\necho dev\n")

    assert SyncEngine("tool", DEBIAN).prepare_wrapper(staged_tree / "tool.sh", tmp_path) is False
    assert (staged_tree / "tool.sh").read_text() == "#!/bin/sh\necho dev\n"


def test_failure_does_not_stop_the_walk(staged_tree, tmp_path):
    destination = tmp_path / "installed"
    (destination / "helper.so").mkdir(parents=True)
    messages = []

    report = SyncEngine(
        "tool", DEBIAN, report=lambda level, text: messages.append((level, text))
    ).install(staged_tree, destination)

    assert not report.ok
    assert [path for path, _ in report.failures] == [str(destination / "helper.so")]
    assert (destination / "tool").is_file()
    assert (destination / "docs" / "readme.txt").is_file()
    assert messages[-1][0] == "error"


def test_cancelled_install_copies_nothing(staged_tree, tmp_path):
    token = CancellationToken()
    token.cancel()

    report = SyncEngine("tool", DEBIAN).install(staged_tree, tmp_path / "installed", token)

    assert report.cancelled
    assert report.copied == []


def test_wrapper_in_another_encoding_does_not_stop_the_walk(staged_tree, tmp_path):
    (staged_tree / "a.txt").write_text("first")
    script = staged_tree / "tool.sh"
    script.write_bytes(f"#!/bin/sh\n{WRAPPER_MARKER}\n".encode() + b"echo \xff\xfe\n")
    (staged_tree / "z.txt").write_text("last")
    destination = tmp_path / "installed"

    report = SyncEngine("tool", DEBIAN).install(staged_tree, destination)

    assert report.ok
    assert report.wrappers == [script]
    assert (destination / "z.txt").read_text() == "last"
    installed = (destination / "tool.sh").read_bytes()
    assert installed.endswith(b"echo \xff\xfe\n")
    assert "".join(launcher_stanza(destination, "tool")).encode() in installed


def test_wrapper_stanza_follows_a_new_destination(staged_tree, tmp_path):
    script = staged_tree / "tool.sh"
    script.write_text(f"#!/bin/sh\n{WRAPPER_MARKER}\necho dev\n")
    engine = SyncEngine("tool", DEBIAN)

    assert engine.prepare_wrapper(script, tmp_path / "old") is True
    assert engine.prepare_wrapper(script, tmp_path / "new") is True

    text = script.read_text()
    assert text.count("if [ -r ") == 1
    assert "".join(launcher_stanza(tmp_path / "new", "tool")) in text
    assert str(tmp_path / "old") not in text
    assert text.endswith("echo dev\n")
