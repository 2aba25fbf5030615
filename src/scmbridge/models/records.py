"""Normalized records produced by the version-control backends."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class FileStatus(str, Enum):
    """Canonical working-tree status of a path."""

    ADDED = "added"
    DELETED = "deleted"
    EDITED = "edited"
    RENAMED = "renamed"
    UNTRACKED = "untracked"


class LineStatus(str, Enum):
    """Change annotation for a single line of the current file."""

    ADDITION = "addition"
    DELETION = "deletion"
    MODIFICATION = "modification"


class FileChange(BaseModel):
    """Represents one path's change in a working tree."""

    status: FileStatus = Field(..., description="Normalized change status")
    path: str = Field(..., description="Absolute path of the changed file")
    new_path: Optional[str] = Field(None, description="Absolute destination path for renames")
    staged: Optional[bool] = Field(
        None, description="Whether the change is staged (only on backends with staging)"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "renamed",
                "path": "/home/user/project/old_name.py",
                "new_path": "/home/user/project/new_name.py",
                "staged": True,
            }
        }
    )

    @model_validator(mode="after")
    def _check_rename(self) -> "FileChange":
        if self.status is FileStatus.RENAMED and not self.new_path:
            raise ValueError("renamed changes require new_path")
        if self.status is not FileStatus.RENAMED and self.new_path:
            raise ValueError("new_path is only valid for renamed changes")
        return self


class Commit(BaseModel):
    """Represents a commit as reported by the version-control tool."""

    hash: str = Field(..., description="Commit identifier")
    author: str = Field("", description="Author name")
    date: str = Field("", description="Commit date, formatted by the backend")
    summary: str = Field("", description="First line of the commit message")
    message: Optional[str] = Field(None, description="Remaining lines of the commit message")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "hash": "3f2a9c1d8e7b6a5f4e3d2c1b0a9f8e7d6c5b4a3f",
                "author": "Jane Doe",
                "date": "2024-01-15 10:30 AM",
                "summary": "Fix authentication bug",
                "message": "Resolves issue with token validation",
            }
        }
    )


class BlameEntry(BaseModel):
    """Blame information for one source line."""

    commit: str = Field(..., description="Abbreviated commit identifier")
    author: str = Field(..., description="Author of the line")
    date: str = Field(..., description="Date of the commit, YYYY-MM-DD")


class DiffStats(BaseModel):
    """Aggregate inserted/deleted line counts of the working tree."""

    inserts: int = Field(0, description="Number of lines added")
    deletes: int = Field(0, description="Number of lines deleted")


class ExecStatus(BaseModel):
    """Outcome of a mutating operation."""

    success: bool = Field(..., description="True when the tool exited with code 0")
    message: str = Field("", description="Error text: stderr, else stdout, else empty")
