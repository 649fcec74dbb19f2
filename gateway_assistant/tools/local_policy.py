"""Local filesystem access policy: allowed roots, limits and path resolution."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from gateway_assistant.config import RuntimeConfig, load_runtime_config
from gateway_assistant.exceptions import ErrorCode, GatewayError

DEFAULT_MAX_READ_CHARS = 12000
DEFAULT_MAX_LIST_ENTRIES = 100
DEFAULT_MAX_PDF_PAGES = 30


@dataclass(frozen=True)
class LocalFilePolicy:
    """Snapshot of the local file access policy for a single call."""

    allowed_roots: list[str] = field(default_factory=list)
    max_read_chars: int = DEFAULT_MAX_READ_CHARS
    max_list_entries: int = DEFAULT_MAX_LIST_ENTRIES
    max_pdf_pages: int = DEFAULT_MAX_PDF_PAGES
    case_insensitive: bool = os.name == "nt"

    def to_dict(self) -> dict[str, object]:
        return {
            "allowedRoots": list(self.allowed_roots),
            "allowedRootCount": len(self.allowed_roots),
            "maxReadChars": self.max_read_chars,
            "maxListEntries": self.max_list_entries,
            "maxPdfPages": self.max_pdf_pages,
        }


@dataclass(frozen=True)
class ResolvedPath:
    absolute_path: Path
    allowed_root: str


def to_positive_int(raw: str | int | None, fallback: int, minimum: int, maximum: int) -> int:
    """Parse an integer setting and clamp it into ``[minimum, maximum]``."""
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return fallback
    return max(minimum, min(maximum, value))


def parse_allowed_roots(raw: str) -> list[str]:
    """Split a ``;``-separated root list into canonical absolute paths."""
    roots: list[str] = []
    for item in (raw or "").split(";"):
        item = item.strip()
        if item:
            roots.append(os.path.abspath(os.path.expanduser(item)))
    return roots


def get_local_file_policy(runtime: RuntimeConfig | None = None) -> LocalFilePolicy:
    """Build the policy from runtime settings, reading them fresh by default."""
    runtime = runtime or load_runtime_config()
    return LocalFilePolicy(
        allowed_roots=parse_allowed_roots(runtime.local_file_allowed_roots),
        max_read_chars=to_positive_int(runtime.local_file_max_read_chars, DEFAULT_MAX_READ_CHARS, 500, 200000),
        max_list_entries=to_positive_int(runtime.local_file_max_list_entries, DEFAULT_MAX_LIST_ENTRIES, 1, 5000),
        max_pdf_pages=to_positive_int(runtime.local_file_max_pdf_pages, DEFAULT_MAX_PDF_PAGES, 1, 300),
    )


def normalize_for_compare(value: str | Path, case_insensitive: bool = False) -> str:
    normalized = os.path.abspath(str(value))
    if case_insensitive:
        normalized = normalized.replace("/", os.sep).lower()
    if len(normalized) > 1 and normalized.endswith(os.sep):
        normalized = normalized[:-1]
    return normalized


def is_within_root(target: str | Path, root: str | Path, case_insensitive: bool = False) -> bool:
    """Whole-segment containment: ``/data`` contains ``/data/x`` but not ``/data2``."""
    normalized_target = normalize_for_compare(target, case_insensitive)
    normalized_root = normalize_for_compare(root, case_insensitive)
    if normalized_target == normalized_root:
        return True
    prefix = normalized_root if normalized_root.endswith(os.sep) else normalized_root + os.sep
    return normalized_target.startswith(prefix)


def _require_roots(policy: LocalFilePolicy, action: str) -> None:
    if not policy.allowed_roots:
        raise GatewayError(
            ErrorCode.MISSING_CONFIG,
            f"LOCAL_FILE_ALLOWED_ROOTS is not configured; cannot {action}",
        )


def _clean_input(input_path: str) -> str:
    raw = (input_path or "").strip()
    if not raw:
        raise GatewayError(ErrorCode.BAD_REQUEST, "path must not be empty")
    return os.path.expanduser(raw)


def resolve_input_path(input_path: str, policy: LocalFilePolicy) -> Path:
    """Resolve create-style: absolute as given, relative against the first root."""
    raw = _clean_input(input_path)
    if os.path.isabs(raw):
        return Path(os.path.abspath(raw))
    _require_roots(policy, "resolve relative paths")
    return Path(os.path.abspath(os.path.join(policy.allowed_roots[0], raw)))


def assert_path_allowed(absolute_path: str | Path, policy: LocalFilePolicy) -> ResolvedPath:
    """Return the matching root or fail with PATH_NOT_ALLOWED."""
    _require_roots(policy, "access local files")
    for root in policy.allowed_roots:
        if is_within_root(absolute_path, root, policy.case_insensitive):
            return ResolvedPath(Path(os.path.abspath(str(absolute_path))), root)
    raise GatewayError(
        ErrorCode.PATH_NOT_ALLOWED,
        f"Path is outside the allowed roots: {absolute_path}",
        {"allowedRoots": list(policy.allowed_roots)},
    )


def resolve_and_assert_path(input_path: str, policy: LocalFilePolicy) -> ResolvedPath:
    return assert_path_allowed(resolve_input_path(input_path, policy), policy)


def _matches_kind(path: Path, kind: str | None) -> bool:
    if kind == "file":
        return path.is_file()
    if kind == "dir":
        return path.is_dir()
    return path.exists()


def resolve_existing_path_with_fallback(
    input_path: str,
    policy: LocalFilePolicy,
    kind: str | None = None,
) -> ResolvedPath:
    """Resolve read-style.

    An absolute path must exist inside a root. A relative path is tried
    against every root in order and the first existing candidate wins.
    ``kind`` ("file" or "dir") skips candidates of the wrong type.
    """
    raw = _clean_input(input_path)
    label = {"file": "File", "dir": "Directory"}.get(kind or "", "Path")

    if os.path.isabs(raw):
        resolved = resolve_and_assert_path(raw, policy)
        if not resolved.absolute_path.exists():
            raise GatewayError(ErrorCode.NOT_FOUND, f"{label} does not exist: {input_path}")
        if kind == "file" and not resolved.absolute_path.is_file():
            raise GatewayError(ErrorCode.BAD_REQUEST, f"Path is not a file: {input_path}")
        if kind == "dir" and not resolved.absolute_path.is_dir():
            raise GatewayError(ErrorCode.BAD_REQUEST, f"Path is not a directory: {input_path}")
        return resolved

    _require_roots(policy, "resolve relative paths")

    for root in policy.allowed_roots:
        candidate = Path(os.path.abspath(os.path.join(root, raw)))
        # "../" segments must not leave the root they were joined to
        if not is_within_root(candidate, root, policy.case_insensitive):
            continue
        if _matches_kind(candidate, kind):
            return ResolvedPath(candidate, root)

    raise GatewayError(
        ErrorCode.NOT_FOUND,
        f"{label} not found under the allowed roots: {input_path}",
        {"allowedRoots": list(policy.allowed_roots)},
    )


def is_allowed_root(path: str | Path, policy: LocalFilePolicy) -> bool:
    target = normalize_for_compare(path, policy.case_insensitive)
    return any(normalize_for_compare(root, policy.case_insensitive) == target for root in policy.allowed_roots)
