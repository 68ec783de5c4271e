"""Commit and diff retrieval on top of the GitHub client and response cache."""

from typing import Any, Awaitable, Callable, Optional, TypeVar

from changereel.core.logging import get_logger
from changereel.github.cache import CacheKeys, CacheTTL, MemoryCache
from changereel.github.client import GitHubClient
from changereel.github.models import (
    CommitAuthor,
    CommitInfo,
    DiffData,
    DiffStatsSummary,
    FileChange,
)

logger = get_logger(__name__)

T = TypeVar("T")

# Tree object of an empty repository; diffing against it shows a root commit in full.
EMPTY_TREE_SHA = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"


async def _cached(
    cache: Optional[MemoryCache],
    key: str,
    ttl: float,
    load: Callable[[], Awaitable[Any]],
) -> Any:
    """Return the cached JSON-able value for ``key`` or load and store it."""
    if cache is not None:
        hit = cache.get(key)
        if hit is not None:
            logger.debug("GitHub cache hit", key=key)
            return hit
    value = await load()
    if cache is not None:
        cache.set(key, value, ttl=ttl)
    return value


class CommitService:
    """Commit metadata lookups, cached when a cache is supplied."""

    def __init__(
        self,
        client: GitHubClient,
        cache: Optional[MemoryCache] = None,
        ttl: float = CacheTTL.LONG,
    ):
        self.client = client
        self.cache = cache
        self.ttl = ttl

    async def get_commit(self, owner: str, repo: str, sha: str) -> CommitInfo:
        """
        Fetch commit metadata.

        Raises:
            NotFoundError: If the commit does not exist
        """
        raw = await _cached(
            self.cache,
            CacheKeys.commit(owner, repo, sha),
            self.ttl,
            lambda: self.client.get_commit(owner, repo, sha),
        )
        commit = raw.get("commit", {})
        author = commit.get("author") or {}
        return CommitInfo(
            sha=raw.get("sha", sha),
            message=commit.get("message", ""),
            author=CommitAuthor(
                name=author.get("name", ""),
                email=author.get("email"),
                date=author.get("date"),
            ),
            parents=[p["sha"] for p in raw.get("parents", []) if "sha" in p],
            url=raw.get("html_url"),
        )

    async def get_commit_files(self, owner: str, repo: str, sha: str) -> list[FileChange]:
        """Per-file changes of a single commit."""
        raw = await _cached(
            self.cache,
            CacheKeys.commit(owner, repo, sha),
            self.ttl,
            lambda: self.client.get_commit(owner, repo, sha),
        )
        return [FileChange.model_validate(f) for f in raw.get("files", [])]


class DiffService:
    """Diff lookups between two refs, cached when a cache is supplied."""

    def __init__(
        self,
        client: GitHubClient,
        cache: Optional[MemoryCache] = None,
        ttl: float = CacheTTL.LONG,
    ):
        self.client = client
        self.cache = cache
        self.ttl = ttl

    async def get_diff(
        self,
        owner: str,
        repo: str,
        base: str,
        head: str,
        max_files: Optional[int] = None,
        include_patches: bool = True,
    ) -> DiffData:
        """Structured comparison with per-file stats and optional patches."""

        async def load() -> dict:
            raw = await self.client.compare_commits(owner, repo, base, head)
            files = raw.get("files", [])
            truncated = max_files is not None and len(files) > max_files
            if max_files is not None:
                files = files[:max_files]
            changes = [
                FileChange(
                    filename=f.get("filename", ""),
                    status=f.get("status", "modified"),
                    additions=f.get("additions", 0),
                    deletions=f.get("deletions", 0),
                    changes=f.get("changes", 0),
                    patch=f.get("patch") if include_patches else None,
                    previous_filename=f.get("previous_filename"),
                )
                for f in files
            ]
            additions = sum(c.additions for c in changes)
            deletions = sum(c.deletions for c in changes)
            return DiffData(
                base_sha=base,
                head_sha=head,
                files=changes,
                stats=DiffStatsSummary(
                    files_changed=len(changes),
                    additions=additions,
                    deletions=deletions,
                    total_changes=additions + deletions,
                ),
                truncated=truncated,
            ).model_dump()

        data = await _cached(
            self.cache,
            CacheKeys.diff(owner, repo, base, head, max_files, include_patches),
            self.ttl,
            load,
        )
        return DiffData.model_validate(data)

    async def get_raw_diff(self, owner: str, repo: str, base: str, head: str) -> str:
        """Raw unified diff text between two refs."""
        return await _cached(
            self.cache,
            CacheKeys.diff_raw(owner, repo, base, head),
            self.ttl,
            lambda: self.client.get_commit_diff(owner, repo, base, head),
        )

    async def get_diff_stats(self, owner: str, repo: str, base: str, head: str) -> DiffStatsSummary:
        data = await _cached(
            self.cache,
            CacheKeys.diff_stats(owner, repo, base, head),
            self.ttl,
            lambda: self._load_stats(owner, repo, base, head),
        )
        return DiffStatsSummary.model_validate(data)

    async def _load_stats(self, owner: str, repo: str, base: str, head: str) -> dict:
        diff = await self.get_diff(owner, repo, base, head, include_patches=False)
        return diff.stats.model_dump()


def synthesize_unified_diff(files: list[FileChange]) -> str:
    """Build unified diff text from per-file patches."""
    parts = []
    for f in files:
        if not f.patch:
            continue
        old_name = f.previous_filename or f.filename
        header = [f"diff --git a/{old_name} b/{f.filename}"]
        if f.status == "added":
            header += ["new file mode 100644", "--- /dev/null", f"+++ b/{f.filename}"]
        elif f.status == "removed":
            header += ["deleted file mode 100644", f"--- a/{old_name}", "+++ /dev/null"]
        else:
            if f.status == "renamed" and f.previous_filename:
                header += [f"rename from {f.previous_filename}", f"rename to {f.filename}"]
            header += [f"--- a/{old_name}", f"+++ b/{f.filename}"]
        parts.append("\n".join(header + [f.patch]))
    return "\n".join(parts)
