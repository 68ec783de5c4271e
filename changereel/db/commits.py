"""Commit records read and updated by job handlers."""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from asyncpg import Pool

from changereel.models.commit import Commit


class CommitRepository(ABC):
    @abstractmethod
    async def get_commit(self, commit_id: str) -> Optional[Commit]:
        pass

    async def get_commits(self, commit_ids: Iterable[str]) -> List[Optional[Commit]]:
        return [await self.get_commit(commit_id) for commit_id in commit_ids]

    @abstractmethod
    async def save_commit(self, commit: Commit) -> Commit:
        """Insert or replace a commit record."""

    @abstractmethod
    async def update_summary(self, commit_id: str, summary: str, change_type: str) -> None:
        pass

    @abstractmethod
    async def mark_email_sent(self, commit_ids: Iterable[str]) -> None:
        pass


class InMemoryCommitRepository(CommitRepository):
    def __init__(self, commits: Iterable[Commit] = ()):
        self._commits = {commit.id: commit for commit in commits}

    async def save_commit(self, commit: Commit) -> Commit:
        self._commits[commit.id] = commit.model_copy()
        return commit

    async def get_commit(self, commit_id: str) -> Optional[Commit]:
        commit = self._commits.get(commit_id)
        return commit.model_copy() if commit else None

    async def update_summary(self, commit_id: str, summary: str, change_type: str) -> None:
        commit = self._commits.get(commit_id)
        if commit is None:
            raise KeyError(f"Commit not found: {commit_id}")
        self._commits[commit_id] = commit.model_copy(
            update={"summary": summary, "change_type": change_type}
        )

    async def mark_email_sent(self, commit_ids: Iterable[str]) -> None:
        for commit_id in commit_ids:
            commit = self._commits.get(commit_id)
            if commit is not None:
                self._commits[commit_id] = commit.model_copy(update={"email_sent": True})


class PostgresCommitRepository(CommitRepository):
    def __init__(self, pool: Pool):
        self.pool = pool

    async def save_commit(self, commit: Commit) -> Commit:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO commits (
                    id, project_id, project_name, repository_owner, repository_name,
                    sha, author, message, branch, timestamp, summary, change_type, email_sent
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
                ON CONFLICT (id) DO UPDATE SET
                    summary = EXCLUDED.summary,
                    change_type = EXCLUDED.change_type,
                    email_sent = EXCLUDED.email_sent,
                    updated_at = NOW()
                """,
                commit.id,
                commit.project_id,
                commit.project_name,
                commit.repository_owner,
                commit.repository_name,
                commit.sha,
                commit.author,
                commit.message,
                commit.branch,
                commit.timestamp,
                commit.summary,
                commit.change_type,
                commit.email_sent,
            )
        return commit

    async def get_commit(self, commit_id: str) -> Optional[Commit]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, project_id, project_name, repository_owner, repository_name,
                       sha, author, message, branch, timestamp, summary, change_type, email_sent
                FROM commits
                WHERE id = $1
                """,
                commit_id,
            )
        return Commit.model_validate(dict(row)) if row else None

    async def update_summary(self, commit_id: str, summary: str, change_type: str) -> None:
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE commits
                SET summary = $2, change_type = $3, updated_at = NOW()
                WHERE id = $1
                """,
                commit_id,
                summary,
                change_type,
            )
        if result.endswith(" 0"):
            raise KeyError(f"Commit not found: {commit_id}")

    async def mark_email_sent(self, commit_ids: Iterable[str]) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE commits SET email_sent = TRUE, updated_at = NOW() WHERE id = ANY($1::text[])",
                list(commit_ids),
            )
