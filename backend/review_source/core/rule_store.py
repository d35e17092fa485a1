"""
Rule store - parses Markdown rule documents into per-language rule sets

Document layout:

    ## Critical
    1. Rule title
    Description: what the model should look for
    Target: where to look

    ## Warning
    1. ...

Only "Critical" and "Warning" sections are read; anything else is ignored.
Malformed entries are skipped, a document never fails to load.
"""
import re
from pathlib import Path
from typing import Dict, List, Optional, Set
from loguru import logger

from ..models.review import LanguageRuleSet, RuleItem


SECTION_HEADING = re.compile(r'^##[ \t]+(.*?)[ \t]*$', re.MULTILINE)
RULE_ENTRY = re.compile(r'^\s*(\d+)\.\s+(\S.*?)\s*$')
DESCRIPTION_LINE = re.compile(r'^[ \t]*Description:[ \t]*(\S.*?)[ \t]*$', re.IGNORECASE | re.MULTILINE)
TARGET_LINE = re.compile(r'^[ \t]*Target(?:[ \t]*Object)?:[ \t]*(\S.*?)[ \t]*$', re.IGNORECASE | re.MULTILINE)

CRITICAL_SECTION = "critical"
WARNING_SECTION = "warning"


class RuleStore:
    """
    Rule sets cached by language

    One instance per application session: load once at startup, read many
    times. Loading a language again replaces its cached rule set.
    """

    def __init__(self):
        self._rules: Dict[str, LanguageRuleSet] = {}

    def load(self, language: str, document: str) -> None:
        """
        Parse a rule document and cache it under the language

        Args:
            language: language key, taken from the document's file name
            document: raw Markdown text
        """
        rule_set = parse_rule_document(language, document)
        self._rules[language] = rule_set
        logger.info(
            f"📚 Loaded rules for {language}: "
            f"{len(rule_set.critical_rules)} critical, {len(rule_set.warning_rules)} warning"
        )

    def load_directory(self, rules_dir: str) -> List[str]:
        """
        Load every *.md rule document in a directory

        Returns:
            languages loaded from this directory
        """
        directory = Path(rules_dir)
        if not directory.is_dir():
            logger.warning(f"Rules directory not found: {directory}")
            return []

        loaded = []
        for file_path in sorted(directory.glob("*.md")):
            try:
                document = file_path.read_text(encoding='utf-8')
            except OSError as e:
                logger.error(f"Failed to read rules {file_path}: {e}")
                continue
            self.load(file_path.stem, document)
            loaded.append(file_path.stem)

        return loaded

    def get(self, language: str) -> Optional[LanguageRuleSet]:
        return self._rules.get(language)

    def languages(self) -> Set[str]:
        return set(self._rules)

    def sorted_languages(self) -> List[str]:
        """Known languages in a stable order (for prompts)"""
        return sorted(self._rules)

    def clear(self) -> None:
        self._rules.clear()


def parse_rule_document(language: str, document: str) -> LanguageRuleSet:
    """Split a document into Critical/Warning sections and parse each one"""
    critical: List[RuleItem] = []
    warning: List[RuleItem] = []

    headings = list(SECTION_HEADING.finditer(document))
    for i, heading in enumerate(headings):
        title = heading.group(1).strip().lower()
        end = headings[i + 1].start() if i + 1 < len(headings) else len(document)
        body = document[heading.end():end]

        if title == CRITICAL_SECTION:
            critical = parse_rules_section(body)
        elif title == WARNING_SECTION:
            warning = parse_rules_section(body)
        else:
            logger.debug(f"   Skipping section: {heading.group(1)}")

    return LanguageRuleSet(
        language=language,
        critical_rules=critical,
        warning_rules=warning
    )


def parse_rules_section(section: str) -> List[RuleItem]:
    """
    Parse the numbered entries of one section

    An entry starts at a "<N>. <title>" line and runs until the next entry or
    the end of the section. Text before the first entry is ignored.
    """
    rules = []
    current = None  # (no, title, body lines)

    for line in section.splitlines():
        match = RULE_ENTRY.match(line)
        if match:
            if current:
                rules.append(_build_rule(*current))
            current = (int(match.group(1)), match.group(2), [])
        elif current:
            current[2].append(line)

    if current:
        rules.append(_build_rule(*current))

    return rules


def _build_rule(no: int, title: str, body_lines: List[str]) -> RuleItem:
    body = "\n".join(body_lines)

    desc_match = DESCRIPTION_LINE.search(body)
    description = desc_match.group(1) if desc_match else title

    target_match = TARGET_LINE.search(body)
    target = target_match.group(1) if target_match else ""

    return RuleItem(no=no, description=description, target=target)
