"""
Tests for the FILE CHANGES extractor:
- fenced and unfenced bodies
- boundary detection (commit line vs first header)
- duplicate paths, placeholders, headers inside code examples
- stripping the block for display
"""

from athenaflow.core.change_block import (
    DEFAULT_COMMIT_MESSAGE,
    STRIPPED_PLACEHOLDER,
    extract_change_set,
    strip_change_block,
)


def test_readme_reply_end_to_end():
    reply = "I'll add a README.\n\nCommit message: add readme\nFILE: README.md\n```\nhello\n```\n"

    change_set = extract_change_set(reply)

    assert change_set is not None
    assert change_set.commit_message == "add readme"
    assert change_set.branch is None
    assert change_set.files == {"README.md": "hello"}
    assert strip_change_block(reply, change_set) == "I'll add a README."


def test_multiple_fenced_files_keep_internal_blank_lines_and_order():
    reply = (
        "Plan done.\n"
        "Commit message: Add pages\n"
        "Branch: feature/pages\n"
        "FILE: app/page.tsx\n"
        "```tsx\n"
        "export default function Page() {\n"
        "\n"
        "  return null;\n"
        "}\n"
        "```\n"
        "\n"
        "FILE: app/layout.tsx\n"
        "```tsx\n"
        "export const x = 1;\n"
        "```\n"
    )

    change_set = extract_change_set(reply)

    assert change_set.paths == ["app/page.tsx", "app/layout.tsx"]
    assert change_set.files["app/page.tsx"] == "export default function Page() {\n\n  return null;\n}"
    assert change_set.files["app/layout.tsx"] == "export const x = 1;"
    assert change_set.branch == "feature/pages"
    assert change_set.commit_message == "Add pages"


def test_duplicate_path_keeps_later_content_once():
    reply = (
        "FILE: a.txt\n```\nfirst\n```\n"
        "FILE: b.txt\n```\nb\n```\n"
        "FILE: a.txt\n```\nsecond\n```\n"
    )

    change_set = extract_change_set(reply)

    assert change_set.paths == ["a.txt", "b.txt"]
    assert change_set.files["a.txt"] == "second"


def test_no_headers_returns_none():
    assert extract_change_set("Just some prose with no changes.") is None
    assert extract_change_set("") is None


def test_header_inside_fenced_example_is_ignored():
    reply = (
        "Use this format:\n"
        "```\n"
        "FILE: path/to/file.ext\n"
        "contents\n"
        "```\n"
        "That is all."
    )

    assert extract_change_set(reply) is None


def test_missing_or_placeholder_commit_message_uses_default():
    assert extract_change_set("FILE: x.py\n```\nprint(1)\n```").commit_message == DEFAULT_COMMIT_MESSAGE

    reply = "Commit message: <descriptive commit message>\nBranch: <branch name, optional>\nFILE: x.py\n```\n1\n```"
    change_set = extract_change_set(reply)
    assert change_set.commit_message == DEFAULT_COMMIT_MESSAGE
    assert change_set.branch is None


def test_header_path_strips_bullets_backticks_and_quotes():
    reply = (
        "- FILE: `src/a.ts`\n```\na\n```\n"
        '* FILE: "src/b.ts"\n```\nb\n```\n'
    )

    change_set = extract_change_set(reply)

    assert change_set.paths == ["src/a.ts", "src/b.ts"]


def test_unfenced_body_runs_to_next_header_and_trims_trailing_blanks():
    reply = (
        "Commit message: plain\n"
        "FILE: notes.txt\n"
        "line one\n"
        "line two\n"
        "\n"
        "\n"
        "FILE: other.txt\n"
        "```\n"
        "x\n"
        "```\n"
    )

    change_set = extract_change_set(reply)

    assert change_set.files["notes.txt"] == "line one\nline two"
    assert change_set.files["other.txt"] == "x"


def test_unfenced_body_keeps_inner_fence_with_header_like_line():
    reply = (
        "FILE: docs/guide.md\n"
        "# Guide\n"
        "```\n"
        "FILE: example.txt\n"
        "```\n"
        "end\n"
    )

    change_set = extract_change_set(reply)

    assert change_set.paths == ["docs/guide.md"]
    assert change_set.files["docs/guide.md"] == "# Guide\n```\nFILE: example.txt\n```\nend"


def test_crlf_is_normalized():
    reply = "Intro\r\n\r\nCommit message: crlf\r\nFILE: a.txt\r\n```\r\none\r\ntwo\r\n```\r\n"

    change_set = extract_change_set(reply)

    assert change_set.files == {"a.txt": "one\ntwo"}
    assert strip_change_block(reply, change_set) == "Intro"


def test_boundary_is_first_header_without_commit_line():
    reply = "Some intro text.\n\nFILE: a.txt\n```\na\n```\n"

    change_set = extract_change_set(reply)

    assert change_set.start_index == reply.index("FILE:")
    assert strip_change_block(reply, change_set) == "Some intro text."


def test_strip_with_nothing_before_block_returns_placeholder():
    reply = "Commit message: only changes\nFILE: a.txt\n```\na\n```"

    change_set = extract_change_set(reply)

    assert strip_change_block(reply, change_set) == STRIPPED_PLACEHOLDER


def test_to_dict_shape():
    change_set = extract_change_set("Commit message: m\nFILE: a.txt\n```\na\n```")

    assert change_set.to_dict() == {
        "commitMessage": "m",
        "branch": None,
        "files": [{"path": "a.txt", "content": "a"}],
        "startIndex": 0,
    }


def test_fenced_example_after_the_block_is_not_a_file():
    reply = (
        "Commit message: fix\n"
        "FILE: a.txt\n"
        "```\nreal\n```\n"
        "To add more files later, use this shape:\n"
        "```\nFILE: example.txt\nnot a file\n```\n"
    )

    change_set = extract_change_set(reply)

    assert change_set is not None
    assert list(change_set.files) == ["a.txt"]
    assert change_set.files["a.txt"] == "real"
