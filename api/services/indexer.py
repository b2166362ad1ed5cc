"""Fetch, parse and upsert a single rule file."""

import logging

from api.models.sync import FileOutcome
from api.services.errors import ConfigurationError, SourceError, StoreError
from api.services.github_source import GitHubRuleSource, RuleFile
from api.services.rule_store import RuleStore
from src.rule_pipeline.parser import RuleRejection, parse_rule

logger = logging.getLogger(__name__)


async def index_rule_file(rule_file: RuleFile, source: GitHubRuleSource, store: RuleStore) -> FileOutcome:
    """Process one file and report how it went. Failures stay local to the file."""
    try:
        content = await source.fetch_rule(rule_file)
    except SourceError as e:
        logger.error("Failed to fetch %s: %s", rule_file.name, e)
        return FileOutcome.ERROR

    rule = parse_rule(content, rule_file.name)
    if isinstance(rule, RuleRejection):
        logger.info("Skipped rule: %s (%s)", rule_file.name, rule.reason)
        return FileOutcome.SKIPPED

    try:
        is_update = await store.exists(rule.id)
    except (StoreError, ConfigurationError) as e:
        logger.debug("Existence check for %s failed, treating as new: %s", rule.id, e)
        is_update = False

    try:
        await store.upsert(rule.id, rule.to_document())
    except (StoreError, ConfigurationError) as e:
        logger.error("Failed to index %s (%s): %s", rule.name, rule_file.name, e)
        return FileOutcome.ERROR

    if is_update:
        logger.info("Updated rule: %s", rule.name)
        return FileOutcome.UPDATED
    logger.info("Indexed new rule: %s", rule.name)
    return FileOutcome.INDEXED
