"""
API routes - rule sets
"""
from fastapi import APIRouter, HTTPException
from loguru import logger

from ..config import settings
from .review import rule_store

router = APIRouter(prefix="/api/rules", tags=["rules"])


@router.get("")
async def list_rule_sets():
    """
    Loaded rule sets

    Returns:
        one summary per language, sorted by language
    """
    rule_sets = []
    for language in rule_store.sorted_languages():
        rule_set = rule_store.get(language)
        rule_sets.append({
            "language": language,
            "critical_rules": len(rule_set.critical_rules),
            "warning_rules": len(rule_set.warning_rules),
            "total_rules": rule_set.total_rules
        })

    return {"total": len(rule_sets), "rule_sets": rule_sets}


@router.get("/{language}")
async def get_rule_set(language: str):
    rule_set = rule_store.get(language)
    if rule_set is None:
        raise HTTPException(status_code=404, detail=f"No rules loaded for {language}")
    return rule_set.model_dump()


@router.post("/reload")
async def reload_rules():
    """Drop the cached rule sets and load the rules directory again"""
    logger.info("=" * 60)
    logger.info(f"🔄 Reloading rules from {settings.rules_dir}")
    logger.info("=" * 60)

    rule_store.clear()
    loaded = rule_store.load_directory(settings.rules_dir)
    return {"total": len(loaded), "languages": loaded}
