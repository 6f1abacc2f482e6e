"""
Data models for storage layer.

Defines user quota state, project context and interaction records.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class InteractionStatus(Enum):
    """Lifecycle of an interaction record."""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class DailyUsage:
    """Token consumption inside one UTC calendar day."""
    date: str  # YYYY-MM-DD
    tokens_used: int = 0
    request_count: int = 0


@dataclass(frozen=True)
class MonthlyUsage:
    """Token consumption inside one UTC calendar month."""
    month: str  # YYYY-MM
    tokens_used: int = 0
    request_count: int = 0


@dataclass(frozen=True)
class UserQuotaState:
    """Quota-relevant slice of a user record."""
    user_id: str
    role: str
    daily: DailyUsage
    monthly: MonthlyUsage
    total_tokens_used: int = 0
    total_requests: int = 0


@dataclass(frozen=True)
class Project:
    project_id: str
    owner_id: str
    name: str
    description: str = ""
    language: str = "javascript"
    is_public: bool = False


@dataclass(frozen=True)
class ProjectFile:
    filename: str
    content: str
    size: int
    last_modified: datetime


@dataclass(frozen=True)
class ContextFile:
    """Filename/size pair recorded for each file injected into a prompt."""
    filename: str
    size: int

    def to_dict(self) -> Dict[str, Any]:
        return {"filename": self.filename, "size": self.size}


@dataclass(frozen=True)
class InteractionRecord:
    """One audit entry per generation attempt.

    Created pending before any remote call and moved exactly once to a
    terminal success or failure shape. `response` is None in list views
    and on failed records.
    """
    interaction_id: str
    user_id: str
    project_id: Optional[str]
    prompt: str
    mode: str
    model: str
    status: InteractionStatus
    created_at: datetime
    strategy: Optional[str] = None
    response: Optional[str] = None
    failure_reason: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    response_time_ms: int = 0
    context_files: List[ContextFile] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    completed_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.status == InteractionStatus.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON responses."""
        data = {
            "id": self.interaction_id,
            "userId": self.user_id,
            "projectId": self.project_id,
            "prompt": self.prompt,
            "mode": self.mode,
            "model": self.model,
            "strategy": self.strategy,
            "status": self.status.value,
            "success": self.success,
            "failureReason": self.failure_reason,
            "tokensUsed": {
                "input": self.input_tokens,
                "output": self.output_tokens,
                "total": self.total_tokens,
            },
            "responseTimeMs": self.response_time_ms,
            "contextFiles": [f.to_dict() for f in self.context_files],
            "createdAt": self.created_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }
        if self.response is not None:
            data["response"] = self.response
        return data
