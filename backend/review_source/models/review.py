"""
Data model definitions
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Union, Literal
from enum import Enum


ThinkLevel = Union[Literal["low", "medium", "high"], bool]

# Language sentinel: ask the model which language the code is written in
DETECT_LANGUAGE = "detect"


class IssueType(str, Enum):
    """Issue severity"""
    CRITICAL = "Critical"
    WARNING = "Warning"


class ReviewStatus(str, Enum):
    """Per-file review status"""
    PENDING = "pending"
    REVIEWING = "reviewing"
    DONE = "done"


class RuleItem(BaseModel):
    """One enforceable rule"""
    model_config = ConfigDict(frozen=True)

    no: int
    description: str
    target: str = ""


class LanguageRuleSet(BaseModel):
    """Ordered critical/warning rules for one language"""
    model_config = ConfigDict(frozen=True)

    language: str
    critical_rules: List[RuleItem] = []
    warning_rules: List[RuleItem] = []

    @property
    def total_rules(self) -> int:
        return len(self.critical_rules) + len(self.warning_rules)


class Issue(BaseModel):
    """One rule violation reported against a source line"""
    line: int = Field(gt=0)
    object: str = ""  # verbatim snippet of the offending line
    type: IssueType = IssueType.WARNING
    violated_rule: str = "Unknown"
    suggested_change: str = ""

    @property
    def is_critical(self) -> bool:
        return self.type == IssueType.CRITICAL


class ReviewResult(BaseModel):
    """Review outcome; error is only set when the model output was unusable"""
    issues: List[Issue] = []
    error: Optional[str] = None

    @property
    def critical_count(self) -> int:
        return sum(1 for issue in self.issues if issue.is_critical)

    @property
    def warning_count(self) -> int:
        return len(self.issues) - self.critical_count


class CodeLine(BaseModel):
    """A numbered source line with the issues attached to it"""
    num: int
    content: str
    issues: List[Issue] = []

    @property
    def has_issues(self) -> bool:
        return bool(self.issues)


class FileReviewState(BaseModel):
    """A file opened for review"""
    path: str = ""
    name: str
    content: str
    language: str = DETECT_LANGUAGE
    lines: List[CodeLine] = []
    result: Optional[ReviewResult] = None
    status: ReviewStatus = ReviewStatus.PENDING


class BatchReport(BaseModel):
    """Aggregate counters of a multi-file review"""
    total_files: int
    reviewed_files: int = 0
    total_issues: int = 0
    critical_count: int = 0
    warning_count: int = 0


class ModelConfig(BaseModel):
    """One model/parameter combination"""
    name: str
    model: str
    think: ThinkLevel = False

    @property
    def mode_name(self) -> str:
        if isinstance(self.think, bool):
            return "Think" if self.think else "No-think"
        return self.think


class ChatReply(BaseModel):
    """Non-streaming chat response with usage figures"""
    content: str = ""
    output_tokens: float = 0
    response_time_ms: float = 0
