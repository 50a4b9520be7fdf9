"""Review pipeline data models."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ReviewRequest(BaseModel):
    """One review attempt, built at dispatch time and never mutated."""

    model_config = ConfigDict(frozen=True)

    owner: str
    repo: str
    pr_number: int
    comment_id: Optional[int] = None  # None for auto reviews
    log_id: Optional[str] = None
    installation_id: Optional[int] = None
    user_comment: Optional[str] = None
    requested_by: Optional[str] = None  # Set only for mention-triggered reviews
    is_auto_review: bool = False

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.repo}"


class ChangedFile(BaseModel):
    """A file touched by the pull request."""

    filename: str
    status: str
    additions: int = 0
    deletions: int = 0
    patch: str = ""


class PullRequestInfo(BaseModel):
    """Pull request metadata needed by the review prompts."""

    title: str
    body: Optional[str] = None
    author: str = "unknown"


class PullRequestSnapshot(BaseModel):
    """Everything fetched about a pull request for a single review."""

    title: str
    body: Optional[str] = None
    author: str
    files: List[ChangedFile] = Field(default_factory=list)
    diff: str = ""

    @property
    def chars_analyzed(self) -> int:
        return sum(len(f.patch or "") for f in self.files)


class FileAnalysis(BaseModel):
    """Stage-1 output for one file, or a placeholder when analysis failed."""

    filename: str
    content: str
    skipped: bool = False
    error: Optional[str] = None


class ReviewRecord(BaseModel):
    """Analytics entry stored after a completed review."""

    id: str
    timestamp: datetime
    repository: str
    pull_request: int
    user: str
    installation_id: Optional[int] = None
    model: str
    review_content: str
    processing_time_ms: int
    files_analyzed: int = 0
    files_skipped: int = 0
    status: str = "completed"
