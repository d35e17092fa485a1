"""
Lenient parsing of free-form model output into the strict issue schema
"""
import json
import re
from typing import Any, Dict, List, Optional
from loguru import logger

from ..models.review import Issue, IssueType, ReviewResult


PARSE_ERROR_MESSAGE = "Failed to parse AI response. Please try again."

# Outermost JSON object/array, models like to wrap it in prose or fences
JSON_CANDIDATE = re.compile(r'[\{\[][\s\S]*[\}\]]')


def parse_review_response(raw_text: str) -> ReviewResult:
    """
    Extract and normalize the issue list from model output

    Never raises: any failure is reported through ReviewResult.error with
    an empty issue list.

    Args:
        raw_text: accumulated model content

    Returns:
        review result
    """
    try:
        json_str = raw_text.strip()

        match = JSON_CANDIDATE.search(json_str)
        if match:
            json_str = match.group()

        parsed = json.loads(json_str)

        if isinstance(parsed, list):
            items = parsed
        elif isinstance(parsed, dict):
            items = _violation_list(parsed)
        elif parsed is None:
            raise ValueError("Unexpected JSON value: null")
        else:
            # Bare scalar: nothing to report
            items = []

        issues = []
        if isinstance(items, list):
            for item in items:
                issue = normalize_issue(item)
                if issue is not None:
                    issues.append(issue)

        return ReviewResult(issues=issues)

    except Exception as e:
        logger.error(f"Failed to parse review response: {e}")
        logger.debug(f"   Raw response: {raw_text[:200]}...")
        return ReviewResult(issues=[], error=PARSE_ERROR_MESSAGE)


def _violation_list(parsed: Dict[str, Any]) -> Any:
    """`violations`, else `issues`; an empty list or object still counts as set"""
    for key in ("violations", "issues"):
        value = parsed.get(key)
        if isinstance(value, (list, dict)) or value:
            return value
    return []


def normalize_issue(item: Any) -> Optional[Issue]:
    """Map one raw violation onto an Issue, or None when it has no usable line"""
    if not isinstance(item, dict):
        return None

    line = _line_number(item.get("line"))
    if line is None:
        return None

    return Issue(
        line=line,
        object=_text(item, "object", "position"),
        type=IssueType.CRITICAL if item.get("type") == "Critical" else IssueType.WARNING,
        violated_rule=_text(item, "violated_rule", "rule") or "Unknown",
        suggested_change=_text(item, "suggested_change", "suggestion"),
    )


def _line_number(value: Any) -> Optional[int]:
    # bool is an int subclass but never a line number
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not value.is_integer():
        return None
    line = int(value)
    return line if line > 0 else None


def _text(item: Dict[str, Any], *keys: str) -> str:
    """First non-empty value among keys, as a string"""
    for key in keys:
        value = item.get(key)
        if value:
            return value if isinstance(value, str) else str(value)
    return ""


def issues_to_wire(issues: List[Issue]) -> List[Dict[str, Any]]:
    """Issues in the storage/wire schema"""
    return [issue.model_dump(mode="json") for issue in issues]
