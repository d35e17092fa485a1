"""
Rule document converter - turns a Markdown rule document into the JSON rule
set that is sent to the model

Usage:
    review-source-rules .rules/vb.md -o rules/vb-rules.json
"""
import json
from pathlib import Path
from typing import Optional
from loguru import logger

from ..core.rule_store import parse_rule_document
from ..models.review import LanguageRuleSet


def convert_rules_to_json(
    rules_path: str,
    output_path: Optional[str] = None,
    language: Optional[str] = None
) -> str:
    """
    Convert one rule document

    Args:
        rules_path: Markdown rule document
        output_path: JSON output (default: same name with .json)
        language: language key (default: the document's file name)

    Returns:
        output file path
    """
    source = Path(rules_path)
    logger.info(f"📄 Converting rule document: {source}")

    language = language or source.stem
    rule_set = parse_rule_document(language, source.read_text(encoding='utf-8'))

    if not output_path:
        output_path = str(source.with_suffix('.json'))

    output_dir = Path(output_path).parent
    output_dir.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(rule_set.model_dump(), f, ensure_ascii=False, indent=2)

    logger.info(f"✅ Converted: {output_path}")
    logger.info(
        f"   {len(rule_set.critical_rules)} critical, "
        f"{len(rule_set.warning_rules)} warning rules"
    )
    return output_path


def load_rule_set(path: str, language: Optional[str] = None) -> LanguageRuleSet:
    """Load a rule set from a JSON rule set or a Markdown rule document"""
    source = Path(path)
    text = source.read_text(encoding='utf-8')

    if source.suffix.lower() == '.json':
        rule_set = LanguageRuleSet.model_validate_json(text)
        if language and language != rule_set.language:
            rule_set = rule_set.model_copy(update={"language": language})
        return rule_set

    return parse_rule_document(language or source.stem, text)


def main():
    """Command-line entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="Rule document converter")
    parser.add_argument("input", help="Markdown rule document")
    parser.add_argument("-o", "--output", help="output JSON path")
    parser.add_argument("--language", help="language key (default: file name)")

    args = parser.parse_args()

    convert_rules_to_json(
        rules_path=args.input,
        output_path=args.output,
        language=args.language
    )


if __name__ == "__main__":
    main()
