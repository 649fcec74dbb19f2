"""Local file capabilities confined to the allowed roots."""

import asyncio
import errno
import os
import shutil
from collections import deque
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator

from gateway_assistant.exceptions import ErrorCode, GatewayError
from gateway_assistant.logging import get_logger
from gateway_assistant.tools.local_policy import (
    LocalFilePolicy,
    assert_path_allowed,
    get_local_file_policy,
    is_allowed_root,
    resolve_and_assert_path,
    resolve_existing_path_with_fallback,
)
from gateway_assistant.tools.registry import NoArguments, Tool, ToolArguments, ToolResult

log = get_logger(__name__)


def _path_field() -> Any:
    return Field(min_length=1, max_length=400, description="Absolute path, or relative to an allowed root")


def _path_type(path: Path) -> str:
    return "dir" if path.is_dir() else "file"


def _mtime_iso(stat: os.stat_result) -> str:
    return datetime.fromtimestamp(stat.st_mtime, UTC).isoformat().replace("+00:00", "Z")


def _list_directory(base: Path, recursive: bool, max_entries: int) -> tuple[list[dict[str, Any]], bool]:
    """Breadth-first listing of ``base`` capped at ``max_entries`` items."""
    items: list[dict[str, Any]] = []
    queue: deque[Path] = deque([base])
    truncated = False

    while queue and not truncated:
        current = queue.popleft()
        for entry in sorted(current.iterdir(), key=lambda p: p.name):
            try:
                stat = entry.stat()
            except OSError:
                continue
            is_dir = entry.is_dir()
            items.append(
                {
                    "path": str(entry.relative_to(base)) or entry.name,
                    "name": entry.name,
                    "type": "dir" if is_dir else "file",
                    "size": stat.st_size,
                    "updatedAt": _mtime_iso(stat),
                }
            )
            if is_dir and recursive:
                queue.append(entry)
            if len(items) >= max_entries:
                truncated = True
                break

    return items, truncated


def _find_entries(
    roots: list[str],
    query: str,
    include_dirs: bool,
    max_entries: int,
) -> tuple[list[dict[str, Any]], bool]:
    needle = query.strip().lower()
    items: list[dict[str, Any]] = []

    for root in roots:
        queue: deque[Path] = deque([Path(root)])
        while queue:
            current = queue.popleft()
            try:
                entries = sorted(current.iterdir(), key=lambda p: p.name)
            except OSError:
                continue
            for entry in entries:
                is_dir = entry.is_dir()
                if needle in entry.name.lower() and (include_dirs or not is_dir):
                    items.append(
                        {
                            "root": root,
                            "path": str(entry.relative_to(root)) or entry.name,
                            "name": entry.name,
                            "type": "dir" if is_dir else "file",
                        }
                    )
                    if len(items) >= max_entries:
                        return items, True
                if is_dir:
                    queue.append(entry)

    return items, False


def _copy(source: Path, target: Path) -> None:
    if source.is_dir():
        shutil.copytree(source, target, dirs_exist_ok=True)
    else:
        shutil.copy2(source, target)


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _move(source: Path, target: Path) -> None:
    try:
        os.rename(source, target)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        # different filesystems
        _copy(source, target)
        _remove(source)


class _LocalFileTool(Tool):
    """Shared policy loading for local file tools."""

    timeout_seconds = 60.0

    def policy(self) -> LocalFilePolicy:
        return get_local_file_policy()


class GetLocalAccessPolicyTool(_LocalFileTool):
    name = "get_local_access_policy"
    description = "Show which local directories may be accessed and the read/list limits."
    args_model = NoArguments

    async def execute(self, **kwargs: Any) -> ToolResult:
        policy = self.policy()
        lines = [f"Allowed roots: {len(policy.allowed_roots)}"]
        lines.extend(f"{index}. {root}" for index, root in enumerate(policy.allowed_roots, start=1))
        lines.append(f"Max read chars: {policy.max_read_chars}")
        lines.append(f"Max list entries: {policy.max_list_entries}")
        lines.append(f"Max PDF pages: {policy.max_pdf_pages}")
        return ToolResult(content="\n".join(lines), data=policy.to_dict())


class ListLocalFilesArgs(ToolArguments):
    path: str = _path_field()
    recursive: bool = False
    max_entries: int | None = Field(default=None, ge=1, le=5000)


class ListLocalFilesTool(_LocalFileTool):
    name = "list_local_files"
    description = "List files and folders in an allowed local directory (breadth-first, optionally recursive)."
    args_model = ListLocalFilesArgs

    async def execute(self, path: str, recursive: bool = False, max_entries: int | None = None, **kwargs: Any) -> ToolResult:
        policy = self.policy()
        limit = min(max_entries or policy.max_list_entries, policy.max_list_entries)
        resolved = resolve_existing_path_with_fallback(path, policy, kind="dir")

        items, truncated = await asyncio.to_thread(_list_directory, resolved.absolute_path, recursive, limit)

        lines = [
            f"Directory: {resolved.absolute_path}",
            f"Entries: {len(items)}{' (truncated)' if truncated else ''}",
        ]
        lines.extend(f"{i}. [{item['type']}] {item['path']}" for i, item in enumerate(items, start=1))
        return ToolResult(
            content="\n".join(lines),
            data={
                "root": resolved.allowed_root,
                "queryPath": str(resolved.absolute_path),
                "recursive": recursive,
                "truncated": truncated,
                "count": len(items),
                "items": items,
            },
        )


class ReadTextFileArgs(ToolArguments):
    path: str = _path_field()
    max_chars: int | None = Field(default=None, ge=100, le=200000)


class ReadTextFileTool(_LocalFileTool):
    name = "read_text_file"
    description = "Read a UTF-8 text file (txt, md, json, csv, code) from an allowed directory."
    args_model = ReadTextFileArgs

    async def execute(self, path: str, max_chars: int | None = None, **kwargs: Any) -> ToolResult:
        policy = self.policy()
        limit = min(max_chars or policy.max_read_chars, policy.max_read_chars)
        resolved = resolve_existing_path_with_fallback(path, policy, kind="file")

        try:
            raw = await asyncio.to_thread(resolved.absolute_path.read_text, encoding="utf-8")
        except UnicodeDecodeError:
            raise GatewayError(
                ErrorCode.UNSUPPORTED_CONTENT,
                f"File is not valid UTF-8 text: {resolved.absolute_path}",
            )

        total = len(raw)
        truncated = total > limit
        content = raw[:limit] if truncated else raw
        header = f"Read {resolved.absolute_path}\nChars: {len(content)}"
        if truncated:
            header += f" / {total} (truncated)"
        return ToolResult(
            content=f"{header}\n\n{content}",
            data={
                "path": str(resolved.absolute_path),
                "truncated": truncated,
                "totalChars": total,
                "returnedChars": len(content),
                "content": content,
            },
        )


class CreateTextFileArgs(ToolArguments):
    path: str = _path_field()
    content: str = ""
    overwrite: bool = False


class CreateTextFileTool(_LocalFileTool):
    name = "create_text_file"
    description = "Create a new text file (parents are created). Fails if it exists unless overwrite=true."
    args_model = CreateTextFileArgs

    async def execute(self, path: str, content: str = "", overwrite: bool = False, **kwargs: Any) -> ToolResult:
        resolved = resolve_and_assert_path(path, self.policy())
        target = resolved.absolute_path

        existed = target.exists()
        if existed and not target.is_file():
            raise GatewayError(ErrorCode.BAD_REQUEST, f"Target is not a file: {path}")
        if existed and not overwrite:
            raise GatewayError(ErrorCode.ALREADY_EXISTS, f"File already exists: {path}")

        target.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(target.write_text, content, encoding="utf-8")
        return ToolResult(
            content=f"{'Overwrote' if existed else 'Created'} file: {target}",
            data={
                "path": str(target),
                "created": not existed,
                "overwritten": existed,
                "bytes": len(content.encode("utf-8")),
            },
        )


class WriteTextFileArgs(ToolArguments):
    path: str = _path_field()
    content: str
    overwrite: bool = True


class WriteTextFileTool(_LocalFileTool):
    name = "write_text_file"
    description = "Write text to a file, replacing its content (overwrite defaults to true)."
    args_model = WriteTextFileArgs

    async def execute(self, path: str, content: str, overwrite: bool = True, **kwargs: Any) -> ToolResult:
        resolved = resolve_and_assert_path(path, self.policy())
        target = resolved.absolute_path

        existed = target.exists()
        if existed and not target.is_file():
            raise GatewayError(ErrorCode.BAD_REQUEST, f"Target is not a file: {path}")
        if existed and not overwrite:
            raise GatewayError(ErrorCode.ALREADY_EXISTS, f"File already exists: {path}")

        target.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(target.write_text, content, encoding="utf-8")
        return ToolResult(
            content=f"Wrote file: {target}",
            data={"path": str(target), "overwritten": existed, "bytes": len(content.encode("utf-8"))},
        )


class AppendTextFileArgs(ToolArguments):
    path: str = _path_field()
    content: str = Field(min_length=1)


class AppendTextFileTool(_LocalFileTool):
    name = "append_text_file"
    description = "Append text to the end of a file, creating it if missing."
    args_model = AppendTextFileArgs

    async def execute(self, path: str, content: str, **kwargs: Any) -> ToolResult:
        resolved = resolve_and_assert_path(path, self.policy())
        target = resolved.absolute_path
        if target.exists() and not target.is_file():
            raise GatewayError(ErrorCode.BAD_REQUEST, f"Target is not a file: {path}")

        def _append() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "a", encoding="utf-8") as f:
                f.write(content)

        await asyncio.to_thread(_append)
        return ToolResult(
            content=f"Appended to file: {target}",
            data={"path": str(target), "appendedBytes": len(content.encode("utf-8"))},
        )


class TransferArgs(ToolArguments):
    source: str = Field(alias="from", min_length=1, max_length=400, description="Source path")
    target: str = Field(alias="to", min_length=1, max_length=400, description="Destination path")
    overwrite: bool = False


class CopyPathTool(_LocalFileTool):
    name = "copy_path"
    description = "Copy a file or directory to a new location inside the allowed roots."
    args_model = TransferArgs

    async def execute(self, source: str, target: str, overwrite: bool = False, **kwargs: Any) -> ToolResult:
        policy = self.policy()
        src = resolve_existing_path_with_fallback(source, policy)
        dst = resolve_and_assert_path(target, policy)

        copied_type = _path_type(src.absolute_path)
        target_exists = dst.absolute_path.exists()
        if target_exists and not overwrite:
            raise GatewayError(ErrorCode.ALREADY_EXISTS, f"Target already exists: {target}")

        dst.absolute_path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(_copy, src.absolute_path, dst.absolute_path)
        return ToolResult(
            content=f"Copied {src.absolute_path} -> {dst.absolute_path}",
            data={
                "from": str(src.absolute_path),
                "to": str(dst.absolute_path),
                "copiedType": copied_type,
                "overwritten": target_exists,
            },
        )


class MovePathTool(_LocalFileTool):
    name = "move_path"
    description = "Move a file or directory to a new location inside the allowed roots."
    args_model = TransferArgs

    async def execute(self, source: str, target: str, overwrite: bool = False, **kwargs: Any) -> ToolResult:
        policy = self.policy()
        src = resolve_existing_path_with_fallback(source, policy)
        dst = resolve_and_assert_path(target, policy)

        moved_type = _path_type(src.absolute_path)
        target_exists = dst.absolute_path.exists()
        if target_exists and not overwrite:
            raise GatewayError(ErrorCode.ALREADY_EXISTS, f"Target already exists: {target}")

        def _run() -> None:
            dst.absolute_path.parent.mkdir(parents=True, exist_ok=True)
            if target_exists:
                _remove(dst.absolute_path)
            _move(src.absolute_path, dst.absolute_path)

        await asyncio.to_thread(_run)
        return ToolResult(
            content=f"Moved {src.absolute_path} -> {dst.absolute_path}",
            data={
                "from": str(src.absolute_path),
                "to": str(dst.absolute_path),
                "movedType": moved_type,
                "overwritten": target_exists,
            },
        )


class RenamePathArgs(ToolArguments):
    path: str = _path_field()
    new_name: str = Field(min_length=1, max_length=255, description="New name without directory separators")

    @field_validator("new_name")
    @classmethod
    def _no_separators(cls, value: str) -> str:
        if "/" in value or "\\" in value:
            raise ValueError("new_name must not contain path separators")
        return value


class RenamePathTool(_LocalFileTool):
    name = "rename_path"
    description = "Rename a file or directory in place."
    args_model = RenamePathArgs

    async def execute(self, path: str, new_name: str, **kwargs: Any) -> ToolResult:
        policy = self.policy()
        src = resolve_existing_path_with_fallback(path, policy)
        renamed_type = _path_type(src.absolute_path)

        target = src.absolute_path.parent / new_name
        assert_path_allowed(target, policy)
        if target.exists():
            raise GatewayError(ErrorCode.ALREADY_EXISTS, f"Target already exists: {target}")

        await asyncio.to_thread(os.rename, src.absolute_path, target)
        return ToolResult(
            content=f"Renamed {src.absolute_path} -> {target}",
            data={"from": str(src.absolute_path), "to": str(target), "renamedType": renamed_type},
        )


class DeletePathArgs(ToolArguments):
    path: str = _path_field()
    recursive: bool = False
    confirm: str = Field(default="", description='Must be exactly "DELETE"')


class DeletePathTool(_LocalFileTool):
    name = "delete_path"
    description = 'Delete a file or directory. Requires confirm="DELETE"; non-empty directories need recursive=true.'
    args_model = DeletePathArgs

    async def execute(self, path: str, recursive: bool = False, confirm: str = "", **kwargs: Any) -> ToolResult:
        if confirm != "DELETE":
            raise GatewayError(ErrorCode.CONFIRM_REQUIRED, 'Deletion requires confirm="DELETE"')

        policy = self.policy()
        resolved = resolve_existing_path_with_fallback(path, policy)
        target = resolved.absolute_path
        deleted_type = "symlink" if target.is_symlink() else _path_type(target)

        if is_allowed_root(target, policy):
            raise GatewayError(ErrorCode.DELETE_DENIED, "Deleting an allowed root is not permitted")

        # Only the link goes, never what it points at.
        if deleted_type == "symlink":
            await asyncio.to_thread(target.unlink)
        elif deleted_type == "dir":
            if not recursive and any(target.iterdir()):
                raise GatewayError(
                    ErrorCode.BAD_REQUEST,
                    "Directory is not empty; recursive=true is required",
                )
            await asyncio.to_thread(shutil.rmtree if recursive else os.rmdir, target)
        else:
            await asyncio.to_thread(target.unlink)

        log.info("Deleted local path", path=str(target), type=deleted_type)
        return ToolResult(
            content=f"Deleted: {target}",
            data={"path": str(target), "deletedType": deleted_type},
        )


class FindLocalFilesArgs(ToolArguments):
    query: str = Field(min_length=1, max_length=120, description="Substring to match in file names")
    roots: list[str] | None = Field(default=None, description="Search roots; defaults to every allowed root")
    max_entries: int | None = Field(default=None, ge=1, le=5000)
    include_dirs: bool = True


class FindLocalFilesTool(_LocalFileTool):
    name = "find_local_files"
    description = "Search allowed directories for files whose names contain a keyword."
    args_model = FindLocalFilesArgs

    def _search_roots(self, roots: list[str] | None, policy: LocalFilePolicy) -> list[str]:
        if not roots:
            return list(policy.allowed_roots)
        resolved: list[str] = []
        for raw in roots:
            candidate = resolve_and_assert_path(raw, policy).absolute_path
            if not candidate.exists():
                raise GatewayError(ErrorCode.NOT_FOUND, f"Search root does not exist: {raw}")
            if not candidate.is_dir():
                raise GatewayError(ErrorCode.BAD_REQUEST, f"Search root is not a directory: {raw}")
            resolved.append(str(candidate))
        return resolved

    async def execute(
        self,
        query: str,
        roots: list[str] | None = None,
        max_entries: int | None = None,
        include_dirs: bool = True,
        **kwargs: Any,
    ) -> ToolResult:
        policy = self.policy()
        limit = min(max_entries or policy.max_list_entries, policy.max_list_entries)
        search_roots = self._search_roots(roots, policy)
        if not search_roots:
            raise GatewayError(
                ErrorCode.MISSING_CONFIG,
                "LOCAL_FILE_ALLOWED_ROOTS is not configured; cannot search",
            )

        items, truncated = await asyncio.to_thread(_find_entries, search_roots, query, include_dirs, limit)

        lines = [
            f"Query: {query}",
            f"Search roots: {len(search_roots)}",
            f"Matches: {len(items)}{' (truncated)' if truncated else ''}",
        ]
        lines.extend(
            f"{i}. [{item['type']}] {item['path']} (root: {item['root']})"
            for i, item in enumerate(items, start=1)
        )
        return ToolResult(
            content="\n".join(lines),
            data={
                "query": query,
                "rootCount": len(search_roots),
                "count": len(items),
                "truncated": truncated,
                "items": items,
            },
        )
