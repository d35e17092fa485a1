"""
Prompt construction

Prompts are pure functions of their inputs: identical rules and code always
produce identical text, which keeps benchmark runs reproducible.
"""
import json
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from ..models.review import CodeLine, LanguageRuleSet


NumberedLine = Union[CodeLine, Tuple[int, str]]


def build_system_prompt(language: str) -> str:
    """
    Role description plus the JSON contract the model must satisfy

    Args:
        language: target language name

    Returns:
        system prompt
    """
    return f"""### ROLE:
You are an expert code reviewer specializing in {language}. Your mission is to audit source code against a specific set of rules provided in JSON format.

### INPUT SPECIFICATION:
You will receive two inputs:
1. **RULES TO ENFORCE:**
- The rules are provided in the following JSON format:
```json
{{
  "language": "string (The target programming language)",
  "critical_rules": [
    {{
      "no": "string/number (Rule ID)",
      "description": "string (Logic and reasoning to identify the violation)",
      "target": "string (The specific code element, pattern, or scope to inspect)"
    }}
  ],
  "warning_rules": [
    {{
      "no": "string/number (Rule ID)",
      "description": "string (Logic and reasoning to identify the violation)",
      "target": "string (The specific code element, pattern, or scope to inspect)"
    }}
  ]
}}
```
- Critical Severity: If a violation matches a rule inside the critical_rules array, set "type": "Critical".
- Warning Severity: If a violation matches a rule inside the warning_rules array, set "type": "Warning".
- Contextual Analysis: Use the description to understand the "Why" and the target to understand the "Where" for each rule.

2. **SOURCE CODE:**
- Provided with line identifiers in the format `L[number] | `.
- You must use the exact number from the label for reporting. Do not recalculate or offset line numbers.

### OUTPUT SPECIFICATION:
- Return ONLY a valid JSON object. No preamble, no markdown code blocks, no postscript.
```json
{{
  "violations": [
    {{
      "line": number (use the exact number following the 'L' prefix),
      "object": "string (the specific variable name or code snippet causing the issue; MUST be extracted verbatim from the source, do not infer or add external information)",
      "type": "Critical" | "Warning",
      "violated_rule": "string (description of the rule being broken)",
      "suggested_change": "string (clear instructions or a code snippet to fix the issue)"
    }}
  ]
}}
```
- If no violations are found, return: {{"violations": []}}."""


def build_user_prompt(
    rule_set: Optional[LanguageRuleSet],
    code_lines: Sequence[NumberedLine],
    language: str = ""
) -> str:
    """
    Rules (machine-readable) followed by the numbered source

    Args:
        rule_set: rules to enforce; when missing an empty rule set for
            `language` is sent
        code_lines: CodeLine objects or (number, content) pairs

    Returns:
        user prompt
    """
    if rule_set is None:
        rule_set = LanguageRuleSet(language=language)

    return f"""### RULES TO ENFORCE:
{serialize_rules(rule_set)}

### SOURCE CODE:
{format_code(code_lines)}
"""


def serialize_rules(rule_set: LanguageRuleSet) -> str:
    """Compact JSON with a fixed key order"""
    return json.dumps(rule_set.model_dump(), ensure_ascii=False, separators=(",", ":"))


def format_code(code_lines: Iterable[NumberedLine]) -> str:
    """Render one `L<n>| <content>` row per line"""
    rows = []
    for line in code_lines:
        if isinstance(line, CodeLine):
            num, content = line.num, line.content
        else:
            num, content = line
        rows.append(f"L{num}| {content}")
    return "\n".join(rows)


def number_lines(code: str) -> List[Tuple[int, str]]:
    """Split source text into 1-based numbered lines"""
    return list(enumerate(split_lines(code), start=1))


def split_lines(code: str) -> List[str]:
    return code.replace("\r\n", "\n").split("\n")


def build_detect_system_prompt(languages: Sequence[str]) -> str:
    """Classification prompt; the answer must be one of the known languages or null"""
    options = ", ".join(list(languages) + ["null"])
    return f"""Analyze the provided source code to determine its programming language.

INPUT FORMAT:
- The source code.

OUTPUT FORMAT:
- You must return ONLY a valid JSON object.
- If the detected language is not in the enum, return null

JSON SCHEMA RESULT:
{{ "language": "enum ({options})" }}"""


def build_detect_user_prompt(code: str, max_chars: int = 2000) -> str:
    return f"""### SOURCE CODE:
{code[:max_chars]}"""
