"""
Issue highlighting on source lines
"""
import html
from typing import Dict, List, Sequence, Tuple

from ..models.review import CodeLine, Issue


CRITICAL_CLASS = "critical-text"
WARNING_CLASS = "warning-text"


def escape_text(text: str) -> str:
    """Escape &, < and > for embedding in markup"""
    return html.escape(text, quote=False)


def highlight(line_content: str, issues: Sequence[Issue]) -> str:
    """
    Wrap each issue's object in a severity-tagged span

    Only the first occurrence of an object on the line is marked. Issues with
    the same object share one span whose severity is Critical when any of
    them is; `data-issue-indices` lists their positions in `issues`.
    Spans never overlap: when two objects overlap, the one further right
    is kept.

    Args:
        line_content: raw line text
        issues: issues reported for this line

    Returns:
        escaped line with highlight markup
    """
    # object -> (position, indices, has_critical)
    groups: Dict[str, Tuple[int, List[int], bool]] = {}

    for index, issue in enumerate(issues):
        if not issue.object:
            continue
        position = line_content.find(issue.object)
        if position == -1:
            continue

        if issue.object in groups:
            pos, indices, has_critical = groups[issue.object]
            indices.append(index)
            groups[issue.object] = (pos, indices, has_critical or issue.is_critical)
        else:
            groups[issue.object] = (position, [index], issue.is_critical)

    marked = escape_text(line_content)

    # Right to left so earlier offsets stay valid; a span overlapping one
    # already placed is dropped
    ordered = sorted(
        groups.items(),
        key=lambda item: (item[1][0], len(item[0])),
        reverse=True
    )
    boundary = len(line_content)
    for obj, (position, indices, has_critical) in ordered:
        if position + len(obj) > boundary:
            continue
        boundary = position

        escaped_object = escape_text(obj)
        escaped_position = len(escape_text(line_content[:position]))
        css_class = CRITICAL_CLASS if has_critical else WARNING_CLASS

        before = marked[:escaped_position]
        after = marked[escaped_position + len(escaped_object):]
        marked = (
            f'{before}<span class="{css_class}" '
            f'data-issue-indices="{",".join(str(i) for i in indices)}">'
            f'{escaped_object}</span>{after}'
        )

    return marked


def highlight_lines(lines: Sequence[CodeLine]) -> List[str]:
    """Highlighted markup for every line of a reviewed file"""
    return [highlight(line.content, line.issues) for line in lines]
