"""HTML rendering for summary emails."""

from datetime import datetime
from html import escape
from typing import List, Optional

from changereel.models.commit import Commit

CARD_STYLE = (
    "max-width:640px;margin:0 auto;background:#fff;border-radius:8px;"
    "box-shadow:0 1px 3px rgba(0,0,0,0.06);"
)
BADGE_STYLES = {
    "fix": "color:#7f1d1d;background:#fef2f2;border:1px solid #fecaca;",
    "feature": "color:#065f46;background:#ecfdf5;border:1px solid #a7f3d0;",
}
BADGE_BASE = (
    "display:inline-block;padding:2px 8px;border-radius:9999px;font-size:11px;font-weight:600;"
)
CHANGE_LABELS = {"feature": "Feature", "fix": "Bugfix", "refactor": "Refactor", "chore": "Chore"}


def _format_date(timestamp: Optional[datetime]) -> str:
    if timestamp is None:
        return ""
    return f"{timestamp.strftime('%b')} {timestamp.day}, {timestamp.year}"


def _badge(change_type: Optional[str]) -> str:
    label = CHANGE_LABELS.get(change_type or "feature", "Feature")
    style = BADGE_BASE + BADGE_STYLES.get(change_type or "feature", BADGE_STYLES["feature"])
    return f'<span style="{style}">{label}</span>'


def _commit_rows(commits: List[Commit]) -> str:
    rows = []
    for commit in commits:
        rows.append(
            '<tr><td style="padding:12px 24px;border-bottom:1px solid #eee;font-size:12px;">'
            f"{_badge(commit.change_type)}<br/>"
            f'<div style="color:#111;margin-top:6px;">{escape(commit.summary or "")}</div>'
            f'<div style="color:#555;margin-top:6px;">By: {escape(commit.author or "Unknown")}'
            f" &middot; {escape(_format_date(commit.timestamp))}"
            f" &middot; {escape(commit.sha[:7])}</div>"
            "</td></tr>"
        )
    return "".join(rows)


def _wrap(title: str, body_rows: str) -> str:
    return (
        '<div style="font-family:Inter,system-ui,-apple-system,Segoe UI,Roboto,Arial,sans-serif;'
        'background:#f7f7f8;padding:24px;">'
        f'<table role="presentation" cellpadding="0" cellspacing="0" width="100%" style="{CARD_STYLE}">'
        f'<tr><td style="padding:24px 24px 8px 24px;font-size:14px;font-weight:600;">{title}</td></tr>'
        f"{body_rows}"
        '<tr><td style="padding:16px 24px 24px 24px;color:#555;font-size:12px;">'
        "Sent by,<br/>Change Reel</td></tr>"
        "</table></div>"
    )


def render_single_commit_email(project_name: str, commit: Commit) -> tuple[str, str]:
    """Return (subject, html) for one summarised commit."""
    if commit.change_type == "fix":
        subject = f"There's a Bugfix in {project_name}"
    else:
        subject = f"There's a New Feature in {project_name}"
    html = _wrap(f"Repo: {escape(project_name)}", _commit_rows([commit]))
    return subject, html


def render_digest_email(
    project_name: str, commits: List[Commit], period: str = "Recent"
) -> tuple[str, str]:
    """Return (subject, html) listing several summarised commits."""
    noun = "change" if len(commits) == 1 else "changes"
    subject = f"{period} changes in {project_name}: {len(commits)} {noun}"
    html = _wrap(
        f"{escape(period)} changes in {escape(project_name)}",
        _commit_rows(commits),
    )
    return subject, html


def render_email(
    template_type: str,
    project_name: str,
    commits: List[Commit],
    template_data: Optional[dict] = None,
) -> tuple[str, str]:
    template_data = template_data or {}
    if template_type == "single_commit":
        return render_single_commit_email(project_name, commits[0])
    if template_type == "weekly_summary":
        return render_digest_email(project_name, commits, template_data.get("period", "Weekly"))
    return render_digest_email(project_name, commits, template_data.get("period", "Recent"))
