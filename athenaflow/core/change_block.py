"""
Change-Block Extractor

Recovers a commit message, an optional branch and complete file
contents from free-form model output of the form:

    Commit message: Add landing page
    Branch: feature/landing
    FILE: app/page.tsx
    ```tsx
    ...
    ```

Pure functions; no I/O.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_COMMIT_MESSAGE = "Apply AI changes"
STRIPPED_PLACEHOLDER = "Applied file changes to the selected repository."

FILE_HEADER_RE = re.compile(r"^\s*(?:[-*]\s*)?FILE:\s*(.+?)\s*$", re.IGNORECASE)
COMMIT_LINE_RE = re.compile(r"^\s*commit message:\s*(.+?)\s*$", re.IGNORECASE)
BRANCH_LINE_RE = re.compile(r"^\s*branch:\s*(.+?)\s*$", re.IGNORECASE)
FENCE_LINE_RE = re.compile(r"^\s*```")

_COMMIT_PLACEHOLDER_RE = re.compile(r"^<.*commit message.*>$", re.IGNORECASE)
_BRANCH_PLACEHOLDER_RE = re.compile(r"^<.*branch name.*>$", re.IGNORECASE)


class _State(Enum):
    OUTSIDE = "outside"
    IN_FENCE = "in_fence"
    IN_FILE_BODY = "in_file_body"


@dataclass
class ChangeSet:
    """
    Parsed FILE CHANGES block.

    `files` keeps first-seen order; a repeated path keeps its position
    and takes the later content.
    """
    commit_message: str
    branch: Optional[str]
    files: Dict[str, str] = field(default_factory=dict)
    start_index: int = 0

    @property
    def paths(self) -> List[str]:
        return list(self.files)

    def to_dict(self) -> Dict[str, object]:
        return {
            "commitMessage": self.commit_message,
            "branch": self.branch,
            "files": [{"path": p, "content": c} for p, c in self.files.items()],
            "startIndex": self.start_index,
        }


def _normalize(text: str) -> str:
    return text.replace("\r\n", "\n")


def _header_path(line: str) -> Optional[str]:
    match = FILE_HEADER_RE.match(line)
    if not match:
        return None
    path = match.group(1).strip()
    path = re.sub(r"^`|`$", "", path)
    path = re.sub(r'^"|"$', "", path)
    return path or None


def _is_fence(line: str) -> bool:
    return line.strip().startswith("```")


def _find_boundary(lines: List[str]) -> Optional[int]:
    """
    Line index where the change block starts, or None without headers.

    Lines inside fenced regions are ignored.
    """
    state = _State.OUTSIDE
    first_header: Optional[int] = None
    last_commit: Optional[int] = None

    for index, line in enumerate(lines):
        if _is_fence(line):
            state = _State.OUTSIDE if state == _State.IN_FENCE else _State.IN_FENCE
            continue
        if state == _State.IN_FENCE:
            continue
        if COMMIT_LINE_RE.match(line):
            if first_header is None:
                last_commit = index
            continue
        if first_header is None and _header_path(line):
            first_header = index

    if first_header is None:
        return None
    return last_commit if last_commit is not None else first_header


def _search_tail(pattern: re.Pattern, lines: List[str]) -> str:
    for line in lines:
        match = pattern.match(line)
        if match:
            return match.group(1).strip()
    return ""


def _read_fenced_body(lines: List[str], start: int) -> Tuple[str, int]:
    """Body between the fence at `start` and the next fence line."""
    body: List[str] = []
    index = start + 1
    while index < len(lines) and not FENCE_LINE_RE.match(lines[index]):
        body.append(lines[index])
        index += 1
    return "\n".join(body), index + 1


def _read_open_body(lines: List[str], start: int) -> Tuple[str, int]:
    """Unfenced body: runs until the next header, commit or branch line."""
    body: List[str] = []
    state = _State.IN_FILE_BODY
    index = start
    while index < len(lines):
        line = lines[index]
        if _is_fence(line):
            state = _State.IN_FILE_BODY if state == _State.IN_FENCE else _State.IN_FENCE
        elif state == _State.IN_FILE_BODY and (
            FILE_HEADER_RE.match(line) or COMMIT_LINE_RE.match(line) or BRANCH_LINE_RE.match(line)
        ):
            break
        body.append(line)
        index += 1
    return "\n".join(body).rstrip(), index


def extract_change_set(text: str) -> Optional[ChangeSet]:
    """
    Parse the FILE CHANGES block out of model output.

    Returns None when the text contains no FILE header outside fences.
    """
    normalized = _normalize(text)
    lines = normalized.split("\n")

    offsets: List[int] = []
    offset = 0
    for line in lines:
        offsets.append(offset)
        offset += len(line) + 1

    start_line = _find_boundary(lines)
    if start_line is None:
        return None
    tail = lines[start_line:]

    commit_message = _search_tail(COMMIT_LINE_RE, tail)
    if not commit_message or _COMMIT_PLACEHOLDER_RE.match(commit_message):
        commit_message = DEFAULT_COMMIT_MESSAGE

    branch: Optional[str] = _search_tail(BRANCH_LINE_RE, tail)
    if not branch or _BRANCH_PLACEHOLDER_RE.match(branch):
        branch = None

    files: Dict[str, str] = {}
    index = start_line
    state = _State.OUTSIDE
    while index < len(lines):
        line = lines[index]
        if state is _State.IN_FENCE:
            if _is_fence(line):
                state = _State.OUTSIDE
            index += 1
            continue
        path = _header_path(line)
        if path is None:
            if _is_fence(line):
                state = _State.IN_FENCE
            index += 1
            continue
        if index + 1 < len(lines) and FENCE_LINE_RE.match(lines[index + 1]):
            content, index = _read_fenced_body(lines, index + 1)
        else:
            content, index = _read_open_body(lines, index + 1)
        if path in files:
            logger.debug("Duplicate FILE entry for %s; keeping the later content", path)
        files[path] = content

    if not files:
        return None

    return ChangeSet(
        commit_message=commit_message,
        branch=branch,
        files=files,
        start_index=offsets[start_line],
    )


def strip_change_block(text: str, change_set: ChangeSet) -> str:
    """Prose before the change block, for display after applying it."""
    before = _normalize(text)[: change_set.start_index].rstrip()
    return before or STRIPPED_PLACEHOLDER
