"""
Conversion lookup utilities for the /convert endpoint.

This module resolves a canonical input type and a requested target format
to a rule from the rule table, walking a fixed fallback chain. The order of
the chain matters: a more specific step always wins over a later one, and a
later step is only consulted when every earlier step produced nothing that
supports the target.
"""

import logging
from typing import Dict, Iterator, List, Optional, Tuple

from ..config import (
    AMBIGUOUS_MIME_TYPES,
    ARCHIVE_TARGETS,
    CATEGORY_RULES,
    CONVERSION_RULES,
    EXTENSION_RULES,
    MIME_ALIASES,
    MIME_PREFIX_ALIASES,
    OFFICE_FAMILY_MARKERS,
    TEXTUAL_APPLICATION_TYPES,
    ConversionRule,
    InputKind,
)
from .mime_detector import file_extension, normalize_mime_type

logger = logging.getLogger(__name__)

# Kinds reachable by a plain MIME lookup; pseudo-kinds are reached via fallbacks
_DIRECT_KINDS: Dict[str, InputKind] = {
    kind.value: kind for kind in CONVERSION_RULES if "/" in kind.value
}


def is_archive_target(target_format: str) -> bool:
    return target_format in ARCHIVE_TARGETS


def _is_textual(mime_type: str) -> bool:
    if mime_type.startswith("text/"):
        return True
    if mime_type in TEXTUAL_APPLICATION_TYPES:
        return True
    if not mime_type.startswith("application/"):
        return False
    return mime_type.endswith("+xml") or mime_type.endswith("+json")


def iter_rule_candidates(
    mime_type: str,
    target_format: str,
    filename: Optional[str] = None,
) -> Iterator[Tuple[str, InputKind]]:
    """
    Yield (step, kind) candidates in precedence order.

    A kind may be yielded by more than one step; callers take the first one
    whose rule supports the target.
    """
    # 1. Archive creation is defined by the target, not the source
    if is_archive_target(target_format):
        yield "archive", InputKind.ARCHIVE_CREATE

    # 2. Direct lookup
    direct = _DIRECT_KINDS.get(mime_type)
    if direct is not None:
        yield "direct", direct

    # 3. Known aliases
    alias = MIME_ALIASES.get(mime_type)
    if alias is not None:
        yield "alias", alias
    for prefix, kind in MIME_PREFIX_ALIASES.items():
        if mime_type.startswith(prefix):
            yield "alias", kind

    # 4. Generic types qualified by the filename extension
    if mime_type in AMBIGUOUS_MIME_TYPES:
        by_extension = EXTENSION_RULES.get(file_extension(filename))
        if by_extension is not None:
            yield "extension", by_extension

    # 5. Broad category
    main_type = mime_type.split("/", 1)[0]
    category = CATEGORY_RULES.get(main_type)
    if category is not None:
        yield "category", category

    # 6. Office document families
    for markers, kind in OFFICE_FAMILY_MARKERS:
        if any(marker in mime_type for marker in markers):
            yield "office-family", kind

    # 7. Anything textual can still go through the plain text rule
    if _is_textual(mime_type):
        yield "textual", InputKind.PLAIN_TEXT


def find_rule(
    mime_type: str,
    target_format: str,
    filename: Optional[str] = None,
) -> Optional[ConversionRule]:
    """
    Find the conversion rule for an input type and target format.

    Args:
        mime_type: Canonical input type (see mime_detector.resolve_input_type)
        target_format: Requested target token, e.g. 'pdf' or 'mp4-basic'
        filename: Original filename, used by the extension fallback

    Returns:
        The matching ConversionRule, or None if the conversion is unsupported
    """
    normalized = normalize_mime_type(mime_type)
    target = (target_format or "").strip().lower()
    if not target:
        return None

    for step, kind in iter_rule_candidates(normalized, target, filename):
        rule = CONVERSION_RULES.get(kind)
        if rule is not None and rule.supports(target):
            logger.debug(f"Rule {kind.value} matched {normalized} -> {target} via {step} lookup")
            return rule

    logger.info(f"No conversion rule for {normalized} -> {target}")
    return None


def get_supported_conversions() -> Dict[str, List[str]]:
    """
    Get all rule kinds and the target formats each can produce.

    Returns:
        Dictionary mapping kind names to sorted lists of target formats
    """
    return {
        kind.value: sorted(rule.valid_targets)
        for kind, rule in CONVERSION_RULES.items()
    }
