"""
Condition evaluator for stage `when:` blocks.

A condition is a mapping with a single key naming its kind:

    {"branch": "main"}
    {"changeset": "frontend/**"}
    {"anyChangeset": ["frontend/**", "web/**"]}
    {"and": [...]}, {"or": [...]}, {"not": {...}}
    {"flag": "deploy"}
    {"env": {"name": "TARGET", "value": "prod"}}

Evaluation is total: anything malformed or unknown evaluates to False and is
logged.
"""

import logging
from fnmatch import fnmatchcase
from typing import Any, Callable, Dict, Iterable, List, Optional

from controller.src.engine.errors import ConditionEvaluationError

logger = logging.getLogger(__name__)


def _globstar_variants(pattern: str) -> List[str]:
    # Each `**/` may also stand for no directory at all
    head, sep, tail = pattern.partition("**/")
    if not sep:
        return [pattern]
    rest = _globstar_variants(tail)
    return [head + sep + r for r in rest] + [head + r for r in rest]


def path_matches(path: str, pattern: str) -> bool:
    """
    Glob match for repository paths. `dir/**` matches anything below `dir/`
    and `**/` matches zero or more directories.
    """
    if pattern.endswith("/**"):
        prefix = pattern[:-3]
        if any(fnmatchcase(path, p) or path.startswith(p + "/") for p in _globstar_variants(prefix)):
            return True
    return any(fnmatchcase(path, p) for p in _globstar_variants(pattern))


def any_path_matches(paths: Iterable[str], patterns: Iterable[str]) -> bool:
    patterns = list(patterns)
    return any(path_matches(p, pat) for p in paths for pat in patterns)


def _branch(value, context) -> bool:
    if not isinstance(value, str):
        raise ConditionEvaluationError(f"'branch' expects a string, got {value!r}")
    return fnmatchcase(context.facts.branch, value)


def _changeset(value, context) -> bool:
    if not isinstance(value, str):
        raise ConditionEvaluationError(f"'changeset' expects a glob, got {value!r}")
    return any_path_matches(context.facts.changed_paths, [value])


def _any_changeset(value, context) -> bool:
    if not isinstance(value, list) or not value:
        raise ConditionEvaluationError("'anyChangeset' expects a non-empty list of globs")
    if not all(isinstance(p, str) for p in value):
        raise ConditionEvaluationError("'anyChangeset' globs must be strings")
    return any_path_matches(context.facts.changed_paths, value)


def _all(value, context) -> bool:
    if not isinstance(value, list) or not value:
        raise ConditionEvaluationError("'and' expects a non-empty list")
    # Short-circuit left to right
    for item in value:
        if not _evaluate(item, context):
            return False
    return True


def _any(value, context) -> bool:
    if not isinstance(value, list) or not value:
        raise ConditionEvaluationError("'or' expects a non-empty list")
    for item in value:
        if _evaluate(item, context):
            return True
    return False


def _not(value, context) -> bool:
    if not isinstance(value, dict):
        raise ConditionEvaluationError("'not' expects a condition mapping")
    return not _evaluate(value, context)


def _flag(value, context) -> bool:
    if not isinstance(value, str):
        raise ConditionEvaluationError(f"'flag' expects a flag name, got {value!r}")
    flag = context.facts.params.get(value)
    if isinstance(flag, str):
        return flag.lower() in ("1", "true", "yes", "on")
    return bool(flag)


def _env(value, context) -> bool:
    if not isinstance(value, dict) or "name" not in value:
        raise ConditionEvaluationError("'env' expects {name, value}")
    return context.variables.get(value["name"]) == value.get("value")


PREDICATES: Dict[str, Callable[[Any, Any], bool]] = {
    "branch": _branch,
    "changeset": _changeset,
    "anyChangeset": _any_changeset,
    "and": _all,
    "or": _any,
    "not": _not,
    "flag": _flag,
    "env": _env,
}


def _evaluate(condition: Any, context) -> bool:
    if not isinstance(condition, dict) or len(condition) != 1:
        raise ConditionEvaluationError(
            f"Condition must be a mapping with exactly one key, got {condition!r}"
        )

    kind, value = next(iter(condition.items()))
    predicate = PREDICATES.get(kind)
    if predicate is None:
        raise ConditionEvaluationError(f"Unknown condition kind '{kind}'")

    return predicate(value, context)


def evaluate(condition: Optional[Dict[str, Any]], context) -> bool:
    """
    Decide whether a stage should run.
    `context` needs `facts` (branch, changed_paths, params) and `variables`.
    """
    if condition is None:
        return True

    try:
        return _evaluate(condition, context)
    except ConditionEvaluationError as e:
        logger.warning(f"Condition {condition!r} treated as false: {e}")
        return False
