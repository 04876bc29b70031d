"""Project label derivation.

A session's project label is computed once, from the first event seen for
it, and only used for display.
"""

from pathlib import PurePath
from typing import Optional

UNKNOWN_PROJECT = "unknown"


def _github_label(parts: tuple[str, ...]) -> Optional[str]:
    """Return "org/repo" when the path runs through a github.com directory."""
    if "github.com" not in parts:
        return None
    index = len(parts) - 1 - parts[::-1].index("github.com")
    if index < len(parts) - 2:
        org, repo = parts[index + 1], parts[index + 2]
        if org and repo:
            return f"{org}/{repo}"
    return None


def format_project_folder(folder_name: str) -> str:
    """Shorten a Claude Code project folder name for display.

    Claude Code names project folders after the working directory with
    separators replaced by dashes, e.g. ``-home-me-src-github-com-acme-api``.
    """
    parts = [part for part in folder_name.split("-") if part]

    if len(parts) <= 3:
        return "-".join(parts)

    if "github" in parts:
        github_index = parts.index("github")
        if github_index < len(parts) - 3:
            org = parts[github_index + 2]
            repo = "-".join(parts[github_index + 3:])
            if org and repo:
                return f"{org}/{repo}"

    last_three = "-".join(parts[-3:])
    if len(last_three) > 20:
        return "..." + last_three[-20:]
    return last_three


def project_from_file_path(file_path: str) -> str:
    """Label from a transcript path under ``.../projects/<folder>/``."""
    parts = PurePath(file_path).parts
    if "projects" in parts:
        index = parts.index("projects")
        if index < len(parts) - 1 and parts[index + 1]:
            return format_project_folder(parts[index + 1])
    return UNKNOWN_PROJECT


def derive_project_label(cwd: Optional[str], file_path: Optional[str] = None) -> str:
    """Derive a display label from the working directory or transcript path."""
    if cwd:
        parts = PurePath(cwd).parts
        label = _github_label(parts)
        if label:
            return label
        name = PurePath(cwd).name
        if name and name != "undefined":
            return name

    if file_path:
        return project_from_file_path(file_path)

    return UNKNOWN_PROJECT
