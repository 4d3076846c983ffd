"""Repository-diff source backed by git subprocesses."""

from __future__ import annotations

from collections.abc import Collection, Iterable
from pathlib import Path
from subprocess import CalledProcessError, run
from typing import Protocol

from push_guard.errors import InvalidBlobArgumentError, RepositoryDiffError
from push_guard.models import (
    BlobPair,
    ChangedPathEntry,
    DiffBlob,
    DiffStatus,
    RefChange,
    is_blank_blob_id,
)

BINARY_SNIFF_BYTES = 8000

_STATUS_FILTER_LETTERS: dict[DiffStatus, str] = {
    DiffStatus.ADDED: "A",
    DiffStatus.MODIFIED: "M",
    DiffStatus.DELETED: "D",
    DiffStatus.RENAMED: "R",
    DiffStatus.COPIED: "C",
    DiffStatus.TYPE_CHANGED: "T",
}


class RepositoryDiffSource(Protocol):
    """Read-only view of the repository used by the scan."""

    def new_commits(self, changes: list[RefChange]) -> list[str]:
        """Return ids of the commits introduced by the ref changes."""

    def commit_messages(self, commits: list[str]) -> list[str]:
        """Return the full messages of the given commits."""

    def find_changed_paths(
        self, commits: list[str], statuses: Collection[DiffStatus]
    ) -> list[ChangedPathEntry]:
        """Return changed paths of each commit against all of its parents."""

    def diff_blobs(self, pairs: list[BlobPair], *, patch_bytes_limit: int) -> list[DiffBlob]:
        """Return unified patches for each blob pair."""


class GitRepositoryDiffSource:
    """RepositoryDiffSource for a local (bare or working) git repository.

    With ``exclude_existing_refs`` new branches only contribute commits not yet
    reachable from any ref, which is what a pre-receive hook sees.
    """

    def __init__(self, repo: Path, *, exclude_existing_refs: bool = True) -> None:
        self.repo = repo
        self.exclude_existing_refs = exclude_existing_refs

    def new_commits(self, changes: list[RefChange]) -> list[str]:
        commits: list[str] = []
        seen: set[str] = set()
        for change in changes:
            if change.is_branch_deletion:
                continue
            if change.is_branch_creation:
                args = ["rev-list", "--reverse", change.newrev]
                if self.exclude_existing_refs:
                    args.extend(["--not", "--all"])
            else:
                args = ["rev-list", "--reverse", f"{change.oldrev}..{change.newrev}"]
            for line in _run_git(self.repo, args).decode("utf-8").splitlines():
                commit = line.strip()
                if commit and commit not in seen:
                    seen.add(commit)
                    commits.append(commit)
        return commits

    def commit_messages(self, commits: list[str]) -> list[str]:
        if not commits:
            return []
        output = _run_git(
            self.repo,
            ["log", "--no-walk=unsorted", "--format=%B%x00", *commits],
        ).decode("utf-8", errors="replace")
        return [message.strip() for message in output.split("\0") if message.strip()]

    def find_changed_paths(
        self, commits: list[str], statuses: Collection[DiffStatus]
    ) -> list[ChangedPathEntry]:
        if not commits:
            return []
        diff_filter = "".join(_STATUS_FILTER_LETTERS[status] for status in statuses)
        output = _run_git(
            self.repo,
            [
                "diff-tree",
                "--stdin",
                "-r",
                "-m",
                "--root",
                "-z",
                "--no-abbrev",
                "--find-renames",
                "--find-copies",
                f"--diff-filter={diff_filter}",
            ],
            stdin="\n".join(commits) + "\n",
        )
        return parse_raw_diff_tree(output.decode("utf-8", errors="replace"))

    def diff_blobs(self, pairs: list[BlobPair], *, patch_bytes_limit: int) -> list[DiffBlob]:
        diffs: list[DiffBlob] = []
        for pair in pairs:
            try:
                diffs.append(self._diff_pair(pair, patch_bytes_limit=patch_bytes_limit))
            except RepositoryDiffError as exc:
                raise InvalidBlobArgumentError(
                    f"cannot diff {pair.left_blob_id}..{pair.right_blob_id}: {exc}"
                ) from exc
        return diffs

    def _diff_pair(self, pair: BlobPair, *, patch_bytes_limit: int) -> DiffBlob:
        if is_blank_blob_id(pair.left_blob_id):
            content = _run_git(self.repo, ["cat-file", "blob", pair.right_blob_id])
            if _looks_binary(content):
                return DiffBlob(pair.left_blob_id, pair.right_blob_id, patch="", binary=True)
            raw_patch = _patch_for_new_content(content)
        else:
            raw_patch = _run_git(
                self.repo,
                [
                    "diff",
                    "--no-color",
                    "--no-ext-diff",
                    "--no-textconv",
                    "--unified=0",
                    pair.left_blob_id,
                    pair.right_blob_id,
                ],
            )
            if _is_binary_patch(raw_patch):
                return DiffBlob(pair.left_blob_id, pair.right_blob_id, patch="", binary=True)
            raw_patch = _strip_patch_preamble(raw_patch)

        if len(raw_patch) > patch_bytes_limit:
            return DiffBlob(
                pair.left_blob_id,
                pair.right_blob_id,
                patch="",
                over_patch_bytes_limit=True,
            )
        return DiffBlob(
            pair.left_blob_id,
            pair.right_blob_id,
            patch=raw_patch.decode("utf-8", errors="surrogateescape"),
        )


def parse_raw_diff_tree(output: str) -> list[ChangedPathEntry]:
    """Parse ``git diff-tree -z --stdin`` raw output into changed-path entries."""
    entries: list[ChangedPathEntry] = []
    tokens = output.split("\0")
    commit_id = ""
    index = 0
    while index < len(tokens):
        token = tokens[index].strip("\n")
        index += 1
        if not token:
            continue
        if not token.startswith(":"):
            # commit header, optionally followed by the first record on the same token
            header, separator, record = token.partition("\n:")
            commit_id = header.split()[0]
            if not separator:
                continue
            token = ":" + record

        old_mode, new_mode, old_blob_id, new_blob_id, status_letter = token[1:].split()
        status = DiffStatus.from_git_letter(status_letter)
        old_path = tokens[index] if index < len(tokens) else ""
        index += 1
        path = old_path
        if status in {DiffStatus.RENAMED, DiffStatus.COPIED}:
            path = tokens[index] if index < len(tokens) else ""
            index += 1

        entries.append(
            ChangedPathEntry(
                path=path,
                status=status,
                old_blob_id=old_blob_id,
                new_blob_id=new_blob_id,
                commit_id=commit_id,
                old_path=old_path,
                old_mode=old_mode,
                new_mode=new_mode,
            )
        )
    return entries


def _patch_for_new_content(content: bytes) -> bytes:
    if not content:
        return b""
    lines = content.split(b"\n")
    missing_newline = lines[-1] != b""
    if not missing_newline:
        lines = lines[:-1]
    body = b"".join(b"+" + line + b"\n" for line in lines)
    header = f"@@ -0,0 +1,{len(lines)} @@\n".encode()
    if missing_newline:
        body += b"\\ No newline at end of file\n"
    return header + body


def _strip_patch_preamble(raw_patch: bytes) -> bytes:
    if raw_patch.startswith(b"@@"):
        return raw_patch
    marker = raw_patch.find(b"\n@@")
    if marker == -1:
        return b""
    return raw_patch[marker + 1 :]


def _is_binary_patch(raw_patch: bytes) -> bool:
    for line in raw_patch.split(b"\n"):
        if line.startswith(b"@@"):
            return False
        if line.startswith(b"Binary files ") or line.startswith(b"GIT binary patch"):
            return True
    return False


def _looks_binary(content: bytes) -> bool:
    return b"\0" in content[:BINARY_SNIFF_BYTES]


def _run_git(
    repo: Path,
    args: Iterable[str],
    *,
    stdin: str | None = None,
) -> bytes:
    args = list(args)
    try:
        completed = run(
            ["git", *args],
            cwd=repo,
            check=True,
            capture_output=True,
            input=stdin.encode("utf-8") if stdin is not None else None,
        )
    except CalledProcessError as exc:
        stderr = (exc.stderr or b"").decode("utf-8", errors="replace").strip()
        raise RepositoryDiffError(stderr or f"git {' '.join(args)} failed") from exc
    except OSError as exc:
        raise RepositoryDiffError(f"git {' '.join(args)} failed: {exc}") from exc

    return completed.stdout
