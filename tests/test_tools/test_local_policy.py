import os
from pathlib import Path

import pytest

from gateway_assistant.config import RuntimeConfig
from gateway_assistant.exceptions import ErrorCode, GatewayError
from gateway_assistant.tools.local_policy import (
    LocalFilePolicy,
    assert_path_allowed,
    get_local_file_policy,
    is_allowed_root,
    is_within_root,
    parse_allowed_roots,
    resolve_and_assert_path,
    resolve_existing_path_with_fallback,
    to_positive_int,
)


def _policy(*roots: Path) -> LocalFilePolicy:
    return LocalFilePolicy(allowed_roots=[str(root) for root in roots])


def test_containment_compares_whole_segments(tmp_path: Path):
    root = tmp_path / "data"

    assert is_within_root(root, root)
    assert is_within_root(root / "a" / "b.txt", root)
    assert not is_within_root(tmp_path / "data2" / "x.txt", root)
    assert not is_within_root(tmp_path, root)


def test_sibling_prefix_is_not_allowed(tmp_path: Path):
    root = tmp_path / "data"
    root.mkdir()
    policy = _policy(root)

    with pytest.raises(GatewayError) as exc:
        assert_path_allowed(tmp_path / "data2" / "x.txt", policy)

    assert exc.value.code == ErrorCode.PATH_NOT_ALLOWED
    assert exc.value.details == {"allowedRoots": [str(root)]}


def test_case_insensitive_comparison_when_configured(tmp_path: Path):
    root = tmp_path / "Data"
    target = str(tmp_path / "data" / "file.txt")

    assert not is_within_root(target, root, case_insensitive=False)
    assert is_within_root(target, root, case_insensitive=True)


def test_zero_roots_is_missing_config(tmp_path: Path):
    with pytest.raises(GatewayError) as exc:
        resolve_and_assert_path(str(tmp_path / "a.txt"), LocalFilePolicy())
    assert exc.value.code == ErrorCode.MISSING_CONFIG


def test_blank_path_is_bad_request(tmp_path: Path):
    with pytest.raises(GatewayError) as exc:
        resolve_and_assert_path("   ", _policy(tmp_path))
    assert exc.value.code == ErrorCode.BAD_REQUEST


def test_relative_create_style_uses_first_root(tmp_path: Path):
    first = tmp_path / "first"
    second = tmp_path / "second"
    resolved = resolve_and_assert_path("notes/todo.md", _policy(first, second))

    assert resolved.absolute_path == first / "notes" / "todo.md"
    assert resolved.allowed_root == str(first)


def test_relative_read_style_falls_back_across_roots(tmp_path: Path):
    first = tmp_path / "first"
    second = tmp_path / "second"
    first.mkdir()
    second.mkdir()
    (second / "report.txt").write_text("hello", encoding="utf-8")

    resolved = resolve_existing_path_with_fallback("report.txt", _policy(first, second), kind="file")

    assert resolved.absolute_path == second / "report.txt"
    assert resolved.allowed_root == str(second)


def test_relative_read_style_not_found_lists_roots(tmp_path: Path):
    policy = _policy(tmp_path)

    with pytest.raises(GatewayError) as exc:
        resolve_existing_path_with_fallback("missing.txt", policy)

    assert exc.value.code == ErrorCode.NOT_FOUND
    assert exc.value.details["allowedRoots"] == [str(tmp_path)]


def test_relative_escape_is_skipped(tmp_path: Path):
    root = tmp_path / "root"
    root.mkdir()
    (tmp_path / "secret.txt").write_text("x", encoding="utf-8")

    with pytest.raises(GatewayError) as exc:
        resolve_existing_path_with_fallback("../secret.txt", _policy(root))
    assert exc.value.code == ErrorCode.NOT_FOUND


def test_absolute_escape_is_rejected(tmp_path: Path):
    root = tmp_path / "root"
    root.mkdir()

    with pytest.raises(GatewayError) as exc:
        resolve_existing_path_with_fallback(str(root / ".." / "secret.txt"), _policy(root))
    assert exc.value.code == ErrorCode.PATH_NOT_ALLOWED


def test_absolute_wrong_kind_is_bad_request(tmp_path: Path):
    (tmp_path / "file.txt").write_text("x", encoding="utf-8")

    with pytest.raises(GatewayError) as exc:
        resolve_existing_path_with_fallback(str(tmp_path / "file.txt"), _policy(tmp_path), kind="dir")
    assert exc.value.code == ErrorCode.BAD_REQUEST


def test_is_allowed_root_ignores_trailing_separator(tmp_path: Path):
    policy = _policy(tmp_path)
    assert is_allowed_root(str(tmp_path) + os.sep, policy)
    assert not is_allowed_root(tmp_path / "child", policy)


def test_policy_limits_are_clamped():
    runtime = RuntimeConfig(
        local_file_allowed_roots="",
        local_file_max_read_chars="10",
        local_file_max_list_entries="999999",
        local_file_max_pdf_pages="not-a-number",
    )

    policy = get_local_file_policy(runtime)

    assert policy.max_read_chars == 500
    assert policy.max_list_entries == 5000
    assert policy.max_pdf_pages == 30
    assert policy.to_dict()["allowedRootCount"] == 0


def test_parse_allowed_roots_splits_and_canonicalizes(tmp_path: Path):
    raw = f" {tmp_path / 'a'} ;; {tmp_path / 'b' / '..' / 'c'} "
    assert parse_allowed_roots(raw) == [str(tmp_path / "a"), str(tmp_path / "c")]


def test_to_positive_int_fallback_and_bounds():
    assert to_positive_int("abc", 7, 1, 10) == 7
    assert to_positive_int("0", 7, 1, 10) == 1
    assert to_positive_int(25, 7, 1, 10) == 10
