"""Unit tests for the Fossil backend against scripted tool output."""

import os

import pytest

from scmbridge.backend import FossilBackend
from scmbridge.backend.fossil import FOSSIL_FILE_STATUS, FOSSIL_STATUS, TIMELINE_FORMAT
from scmbridge.models import FileStatus


@pytest.fixture
def checkout(tmp_path):
    """Project directory holding a Fossil checkout marker."""
    (tmp_path / ".fslckout").write_bytes(b"")
    return str(tmp_path)


@pytest.fixture
def backend(context):
    """Create a FossilBackend using the scripted runner."""
    return FossilBackend(context)


def test_status_vocabulary():
    """Test raw Fossil tokens map onto canonical statuses."""
    assert FOSSIL_STATUS == {
        "ADDED": FileStatus.ADDED,
        "DELETED": FileStatus.DELETED,
        "EDITED": FileStatus.EDITED,
        "RENAMED": FileStatus.RENAMED,
        "EXTRA": FileStatus.UNTRACKED,
    }
    assert FOSSIL_FILE_STATUS["unchanged"] is None


def test_detect(backend, checkout, tmp_path_factory):
    """Test detection through the checkout marker."""
    assert backend.detect(checkout) is True
    assert backend.detect(str(tmp_path_factory.mktemp("plain"))) is False
    assert backend.has_staging() is False


@pytest.mark.asyncio
async def test_staging_unsupported(backend, runner, checkout):
    """Test that staging requests fail without running the tool."""
    file = os.path.join(checkout, "a.c")

    staged = await backend.stage_file(file, checkout)
    unstaged = await backend.unstage_file(file, checkout)

    assert staged.success is False
    assert "does not support staging" in staged.message
    assert unstaged.success is False
    assert await backend.get_staged(checkout) == set()
    assert runner.calls == []


@pytest.mark.asyncio
async def test_get_changes(backend, runner, checkout):
    """Test parsing of changes --differ output."""
    runner.respond(
        "changes",
        "--differ",
        stdout=(
            "EDITED     src/main.c\n"
            "ADDED      new.c\n"
            "DELETED    old.c\n"
            "RENAMED    a.c -> b.c\n"
            "EXTRA      scratch.txt\n"
            "CONFLICT   weird.c\n"
            "\n"
        ),
    )

    changes = await backend.get_changes(checkout)

    found = {change.path: change for change in changes}
    assert found[os.path.join(checkout, "src/main.c")].status == FileStatus.EDITED
    assert found[os.path.join(checkout, "new.c")].status == FileStatus.ADDED
    assert found[os.path.join(checkout, "old.c")].status == FileStatus.DELETED
    assert found[os.path.join(checkout, "scratch.txt")].status == FileStatus.UNTRACKED
    renamed = found[os.path.join(checkout, "a.c")]
    assert renamed.status == FileStatus.RENAMED
    assert renamed.new_path == os.path.join(checkout, "b.c")
    assert os.path.join(checkout, "weird.c") not in found
    assert all(change.staged is None for change in changes)


@pytest.mark.asyncio
async def test_get_changes_strips_trailing_separator(backend, runner, checkout):
    """Test that the cache and paths use the bare directory."""
    runner.respond("changes", "--differ", stdout="EDITED a.c\n")

    changes = await backend.get_changes(checkout + os.sep)

    assert changes[0].path == os.path.join(checkout, "a.c")
    assert runner.calls[0][1] == checkout


@pytest.mark.asyncio
async def test_get_branch(backend, runner, checkout):
    """Test picking the current branch from the branch list."""
    runner.respond("branch", stdout="   feature\n * trunk\n")

    assert await backend.get_branch(checkout) == "trunk"


@pytest.mark.asyncio
async def test_get_commit_history(backend, runner, checkout):
    """Test timeline parsing."""
    runner.respond(
        "timeline",
        "-n",
        "0",
        "-F",
        TIMELINE_FORMAT,
        stdout=(
            "'jane' abcdef0123 '2024-01-15 10:30:00' Fix the parser\n"
            "+++ no more data (2) +++\n"
            "'john' 0123abcdef '2024-01-14 09:00:00' Initial empty check-in\n"
        ),
    )

    history = await backend.get_commit_history(None, checkout)

    assert [(c.author, c.hash, c.date) for c in history] == [
        ("jane", "abcdef0123", "2024-01-15 10:30:00"),
        ("john", "0123abcdef", "2024-01-14 09:00:00"),
    ]
    assert history[0].summary == "Fix the parser"


@pytest.mark.asyncio
async def test_get_commit_history_for_file(backend, runner, checkout):
    """Test that a path restricts the timeline."""
    runner.respond(
        "timeline",
        "-n",
        "0",
        "-F",
        TIMELINE_FORMAT,
        "-p",
        "main.c",
        stdout="'jane' abcdef0123 '2024-01-15 10:30:00' Touch main\n",
    )

    history = await backend.get_commit_history(os.path.join(checkout, "main.c"), checkout)

    assert len(history) == 1


@pytest.mark.asyncio
async def test_get_commit_info(backend, runner, checkout):
    """Test parsing of info output."""
    runner.respond(
        "info",
        "abcdef",
        stdout=(
            "hash:         abcdef0123456789 2024-01-15 10:30:00 UTC\n"
            "parent:       0123456789abcdef 2024-01-14 09:00:00 UTC\n"
            "tags:         trunk\n"
            "comment:      Fix the parser (user: jane)\n"
        ),
    )

    commit = await backend.get_commit_info("abcdef", checkout)

    assert commit.hash == "abcdef0123456789"
    assert commit.date == "2024-01-15 10:30:00 UTC"
    assert commit.summary == "Fix the parser"
    assert commit.author == "jane"
    assert commit.message is None


@pytest.mark.asyncio
async def test_get_commit_info_unknown(backend, runner, checkout):
    """Test that an unknown check-in yields None."""
    runner.respond("info", "zzz", returncode=1, stderr="no such object: zzz\n")

    assert await backend.get_commit_info("zzz", checkout) is None


@pytest.mark.asyncio
async def test_commit_diff_and_file(backend, runner, checkout):
    """Test the raw text queries."""
    runner.respond("diff", "--unified", "-ci", "abcdef", stdout="diff text\n")
    runner.respond("cat", "main.c", "-r", "abcdef", stdout="int main;\n")
    runner.respond("cat", "main.c", stdout="int main(void);\n")
    runner.respond("diff", stdout="working diff\n")
    file = os.path.join(checkout, "main.c")

    assert await backend.get_commit_diff("abcdef", checkout) == "diff text\n"
    assert await backend.get_commit_file("abcdef", checkout, file) == "int main;\n"
    assert await backend.get_commit_file(None, checkout, file) == "int main(void);\n"
    assert await backend.get_diff(checkout) == "working diff\n"


@pytest.mark.asyncio
async def test_get_file_diff_cached_by_file(backend, runner, checkout):
    """Test that file diffs are keyed by file, not directory."""
    runner.respond("diff", "a.c", stdout="diff a\n")
    runner.respond("diff", "b.c", stdout="diff b\n")

    assert await backend.get_file_diff(os.path.join(checkout, "a.c"), checkout) == "diff a\n"
    assert await backend.get_file_diff(os.path.join(checkout, "b.c"), checkout) == "diff b\n"


@pytest.mark.asyncio
async def test_get_file_status(backend, runner, checkout):
    """Test finfo -s vocabulary."""
    runner.respond("finfo", "-s", "a.c", stdout="edited\n")
    runner.respond("finfo", "-s", "b.c", stdout="unchanged\n")
    runner.respond("finfo", "-s", "c.c", stdout="unknown\n")
    runner.respond("finfo", "-s", "d.c", stdout="new\n")

    status = {
        name: await backend.get_file_status(os.path.join(checkout, name), checkout)
        for name in ("a.c", "b.c", "c.c", "d.c")
    }

    assert status == {
        "a.c": FileStatus.EDITED,
        "b.c": None,
        "c.c": FileStatus.UNTRACKED,
        "d.c": FileStatus.ADDED,
    }


@pytest.mark.asyncio
async def test_get_file_blame(backend, runner, checkout):
    """Test blame parsing."""
    runner.respond(
        "blame",
        "main.c",
        stdout=(
            "abcdef0123 2024-01-15       jane: int main(void)\n"
            "0123abcdef 2024-01-14       john: {\n"
        ),
    )

    entries = await backend.get_file_blame(os.path.join(checkout, "main.c"), checkout)

    assert [(e.commit, e.date, e.author) for e in entries] == [
        ("abcdef0123", "2024-01-15", "jane"),
        ("0123abcdef", "2024-01-14", "john"),
    ]


@pytest.mark.asyncio
async def test_get_stats_uses_total_line(backend, runner, checkout):
    """Test that stats come from the summary line."""
    runner.respond(
        "diff",
        "--numstat",
        stdout="     3      1 a.c\n     7      3 b.c\n    10      4 TOTAL over 2 changed files\n\n",
    )

    stats = await backend.get_stats(checkout)

    assert (stats.inserts, stats.deletes) == (10, 4)


@pytest.mark.asyncio
async def test_get_stats_empty(backend, checkout):
    """Test that missing output yields zero counts."""
    stats = await backend.get_stats(checkout)

    assert (stats.inserts, stats.deletes) == (0, 0)


@pytest.mark.asyncio
async def test_mutations(backend, runner, checkout):
    """Test mutation command lines and reports."""
    runner.respond("revert", "a.c")
    runner.respond("add", "b.c")
    runner.respond("rm", "c.c", returncode=1, stderr="not tracked: c.c\n")
    runner.respond("mv", "d.c", "e.c")
    runner.respond("pull", returncode=1, stdout="cannot reach server\n")

    assert (await backend.revert_file(os.path.join(checkout, "a.c"), checkout)).success
    assert (await backend.add_path(os.path.join(checkout, "b.c"), checkout)).success
    removed = await backend.remove_path(os.path.join(checkout, "c.c"), checkout)
    assert removed.success is False
    assert removed.message == "not tracked: c.c\n"
    moved = await backend.move_path(
        os.path.join(checkout, "d.c"), os.path.join(checkout, "e.c"), checkout
    )
    assert moved.success
    pulled = await backend.pull(checkout)
    assert pulled.message == "cannot reach server\n"


@pytest.mark.asyncio
async def test_mutation_invalidates_changes(backend, runner, checkout):
    """Test that reverting a file forces a fresh change list."""
    runner.respond("changes", "--differ", stdout="EDITED a.c\n")
    runner.respond("revert", "a.c")

    await backend.get_changes(checkout)
    await backend.revert_file(os.path.join(checkout, "a.c"), checkout)
    await backend.get_changes(checkout)

    assert runner.called("changes", "--differ") == 2
