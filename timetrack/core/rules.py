"""Rule engine for TimeTrack.

Maps samples (application name, window title, optional URL) to
Categories using prioritized, confidence-scored rules. Built-in
categories and rules are merged with user-defined ones; a user entry
with the same id replaces the built-in.

Rules are evaluated in priority order (highest first, ties broken by
insertion order). The highest-confidence match wins, and evaluation
stops early once a match reaches 90. Returns ``uncategorized`` with
confidence 50 when no rule matches.
"""

import json
import logging
import threading
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Union

from timetrack.core import builtins
from timetrack.core.matcher import match_pattern
from timetrack.core.models import (
    NO_MATCH,
    UNCATEGORIZED_ID,
    Activity,
    CategorizationResult,
    Category,
    MatchResult,
    MatchType,
    OperationResult,
    ProductivityStats,
    Rule,
    RuleType,
    Sample,
)

logger = logging.getLogger(__name__)

EARLY_EXIT_CONFIDENCE = 90.0
UNMATCHED_CONFIDENCE = 50.0

CategoryDeletedListener = Callable[[str], None]


class RuleEngine:
    """Holds Categories and Rules and resolves the best Category for a sample.

    Shared between the poll thread and API handlers; all state is guarded by one lock.
    """

    def __init__(
        self,
        categories: Iterable[Category] = (),
        rules: Iterable[Rule] = (),
        include_builtins: bool = True,
    ) -> None:
        self._categories: dict[str, Category] = {}
        self._rules: dict[str, Rule] = {}
        self._ordered_rules: list[Rule] = []
        self._categorizations: dict[str, CategorizationResult] = {}
        self._deleted_listeners: list[CategoryDeletedListener] = []
        self._lock = threading.RLock()
        self.version = 0

        if include_builtins:
            for category in builtins.default_categories():
                self._categories[category.id] = category
            for rule in builtins.default_rules():
                self._rules[rule.id] = rule
        for category in categories:
            self._categories[category.id] = category
        for rule in rules:
            self._rules[rule.id] = rule

        if UNCATEGORIZED_ID not in self._categories:
            self._categories[UNCATEGORIZED_ID] = Category(
                id=UNCATEGORIZED_ID, name="Uncategorized", is_default=True, order=100
            )
        self._reorder()

    # ------------------------------------------------------------------
    # Categorization
    # ------------------------------------------------------------------

    def categorize(
        self,
        sample: Union[Sample, Activity],
        activity_id: Optional[str] = None,
        remember: bool = True,
    ) -> CategorizationResult:
        """Return the CategorizationResult for *sample*.

        A sticky manual override wins: either the engine's own for
        *activity_id*, or a stored Activity's manually assigned category.
        Otherwise the automatic result is remembered under *activity_id*
        unless *remember* is false.
        """
        with self._lock:
            if activity_id is not None:
                existing = self._categorizations.get(activity_id)
                if existing is not None and not existing.auto_assigned:
                    return existing
            if isinstance(sample, Activity) and not sample.category_auto_assigned:
                return CategorizationResult(
                    activity_id=activity_id or sample.id,
                    category_id=sample.category_id,
                    auto_assigned=False,
                    confidence=100.0,
                )

            categorization = self._evaluate(sample, activity_id)
            if activity_id is not None and remember:
                self._categorizations[activity_id] = categorization
            return categorization

    def _evaluate(
        self, sample: Union[Sample, Activity], activity_id: Optional[str]
    ) -> CategorizationResult:
        app_name, window_title, url = _sample_fields(sample)

        best_rule: Optional[Rule] = None
        best_confidence = 0.0
        for rule in self._ordered_rules:
            if not rule.is_enabled:
                continue
            result = _match_rule(rule, app_name, window_title, url)
            if result.matched and result.confidence > best_confidence:
                best_rule = rule
                best_confidence = result.confidence
                if best_confidence >= EARLY_EXIT_CONFIDENCE:
                    break

        if best_rule is None:
            return CategorizationResult(
                activity_id=activity_id,
                category_id=UNCATEGORIZED_ID,
                auto_assigned=True,
                confidence=UNMATCHED_CONFIDENCE,
            )
        return CategorizationResult(
            activity_id=activity_id,
            category_id=best_rule.category_id,
            auto_assigned=True,
            rule_id=best_rule.id,
            confidence=best_confidence,
        )

    def categorize_all(self, activities: Iterable[Activity]) -> dict[str, CategorizationResult]:
        """Categorize every activity, keyed by activity id, without remembering the results."""
        return {a.id: self.categorize(a, activity_id=a.id, remember=False) for a in activities}

    def manual_categorize(
        self, activity_id: str, category_id: str, now: Optional[datetime] = None
    ) -> OperationResult:
        """Pin *activity_id* to *category_id*; automatic passes will not replace it."""
        with self._lock:
            if category_id not in self._categories:
                return OperationResult.fail(f"Unknown category: {category_id}")
            self._categorizations[activity_id] = CategorizationResult(
                activity_id=activity_id,
                category_id=category_id,
                auto_assigned=False,
                confidence=100.0,
                overridden_at=now or datetime.now(),
            )
        return OperationResult.ok()

    def clear_override(self, activity_id: str) -> OperationResult:
        """Drop a manual override so the next pass re-categorizes automatically."""
        with self._lock:
            existing = self._categorizations.get(activity_id)
            if existing is None or existing.auto_assigned:
                return OperationResult.fail(f"No manual override for activity: {activity_id}")
            del self._categorizations[activity_id]
        return OperationResult.ok()

    def get_categorization(self, activity_id: str) -> Optional[CategorizationResult]:
        with self._lock:
            return self._categorizations.get(activity_id)

    def forget(self, activity_id: str) -> None:
        """Drop an automatic categorization; manual overrides are kept."""
        with self._lock:
            existing = self._categorizations.get(activity_id)
            if existing is not None and existing.auto_assigned:
                del self._categorizations[activity_id]

    def clear_categorizations(self) -> None:
        with self._lock:
            self._categorizations.clear()

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def get_categories(self) -> list[Category]:
        """Return all categories sorted by display order."""
        with self._lock:
            return sorted(self._categories.values(), key=lambda c: c.order)

    def get_category(self, category_id: str) -> Optional[Category]:
        with self._lock:
            return self._categories.get(category_id)

    def upsert_category(self, category: Category) -> OperationResult:
        """Add a category, or replace the one with the same id."""
        if not category.id:
            return OperationResult.fail("Category id is required")
        if not 0 <= category.productivity_score <= 100:
            return OperationResult.fail("Productivity score must be between 0 and 100")
        with self._lock:
            existing = self._categories.get(category.id)
            if existing is not None and existing.is_default and not category.is_default:
                category = replace(category, is_default=True)
            self._categories[category.id] = category
        return OperationResult.ok()

    def delete_category(self, category_id: str) -> OperationResult:
        """Delete a user-defined category.

        Rules and pending categorizations pointing at it are reassigned
        to ``uncategorized``; registered listeners are notified so that
        persisted activities can follow.
        """
        with self._lock:
            category = self._categories.get(category_id)
            if category is None:
                return OperationResult.fail(f"Unknown category: {category_id}")
            if category.is_default:
                return OperationResult.fail(f"Cannot delete built-in category: {category_id}")

            del self._categories[category_id]

            for rule_id, rule in list(self._rules.items()):
                if rule.category_id == category_id:
                    self._rules[rule_id] = replace(rule, category_id=UNCATEGORIZED_ID)
            self._reorder()

            for categorization in self._categorizations.values():
                if categorization.category_id == category_id:
                    categorization.category_id = UNCATEGORIZED_ID
                    categorization.auto_assigned = True
            listeners = list(self._deleted_listeners)

        for listener in listeners:
            try:
                listener(category_id)
            except Exception:
                logger.exception("Category-deleted listener failed for %s", category_id)
        return OperationResult.ok()

    def add_category_deleted_listener(self, listener: CategoryDeletedListener) -> None:
        with self._lock:
            self._deleted_listeners.append(listener)

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def get_rules(self) -> list[Rule]:
        """Return all rules in evaluation order."""
        with self._lock:
            return list(self._ordered_rules)

    def get_rule(self, rule_id: str) -> Optional[Rule]:
        with self._lock:
            return self._rules.get(rule_id)

    def get_rules_for_category(self, category_id: str) -> list[Rule]:
        with self._lock:
            return [r for r in self._ordered_rules if r.category_id == category_id]

    def upsert_rule(self, rule: Rule) -> OperationResult:
        """Add a rule, or replace the one with the same id (keeping its position)."""
        errors = rule.validate()
        if errors:
            return OperationResult.fail("; ".join(errors))
        with self._lock:
            if rule.category_id not in self._categories:
                return OperationResult.fail(f"Unknown category: {rule.category_id}")
            self._rules[rule.id] = rule
            self._reorder()
        return OperationResult.ok()

    def delete_rule(self, rule_id: str) -> OperationResult:
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                return OperationResult.fail(f"Unknown rule: {rule_id}")
            if rule.is_default:
                return OperationResult.fail(f"Cannot delete built-in rule: {rule_id}")
            del self._rules[rule_id]
            self._reorder()
        return OperationResult.ok()

    def toggle_rule(self, rule_id: str) -> OperationResult:
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                return OperationResult.fail(f"Unknown rule: {rule_id}")
            self._rules[rule_id] = replace(rule, is_enabled=not rule.is_enabled)
            self._reorder()
        return OperationResult.ok()

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def calculate_productivity_stats(
        self,
        activities: Iterable[Activity],
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        top_n: int = 10,
    ) -> ProductivityStats:
        from timetrack.core.stats import calculate_productivity_stats

        return calculate_productivity_stats(self, activities, start, end, top_n=top_n)

    # ------------------------------------------------------------------
    # Import / export of user-defined entries
    # ------------------------------------------------------------------

    def export_config(self) -> dict[str, list[dict[str, Any]]]:
        """Return user-defined categories and rules as JSON-ready dicts."""
        with self._lock:
            return {
                "categories": [category_to_dict(c) for c in self._categories.values() if not c.is_default],
                "rules": [rule_to_dict(r) for r in self._rules.values() if not r.is_default],
            }

    def import_config(self, data: dict[str, Any]) -> list[str]:
        """Upsert categories and rules from *data*; return rejected entries' errors."""
        errors: list[str] = []
        for raw in data.get("categories", []):
            try:
                category = replace(category_from_dict(raw), is_default=False)
            except (KeyError, TypeError, ValueError) as exc:
                errors.append(f"Invalid category {raw!r}: {exc}")
                continue
            result = self.upsert_category(category)
            if not result:
                errors.append(result.error or "")
        for raw in data.get("rules", []):
            try:
                rule = replace(rule_from_dict(raw), is_default=False)
            except (KeyError, TypeError, ValueError) as exc:
                errors.append(f"Invalid rule {raw!r}: {exc}")
                continue
            result = self.upsert_rule(rule)
            if not result:
                errors.append(result.error or "")
        for error in errors:
            logger.warning("Skipped entry on import: %s", error)
        return errors

    def save_config_file(self, path: str) -> None:
        """Serialize user-defined categories and rules to a JSON file."""
        file_path = Path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, "w", encoding="utf-8") as fh:
            json.dump(self.export_config(), fh, indent=2)

    def load_config_file(self, path: str) -> list[str]:
        """Merge user-defined categories and rules from a JSON file."""
        with open(Path(path), "r", encoding="utf-8") as fh:
            data = json.load(fh)
        return self.import_config(data)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _reorder(self) -> None:
        # sorted() is stable, so equal priorities keep insertion order.
        self._ordered_rules = sorted(self._rules.values(), key=lambda r: -r.priority)
        self.version += 1


def _sample_fields(sample: Union[Sample, Activity]) -> tuple[str, str, Optional[str]]:
    if isinstance(sample, Activity):
        return sample.application_name or "", sample.window_title or "", None
    return sample.app_name or "", sample.window_title or "", sample.url


def _match_rule(
    rule: Rule, app_name: str, window_title: str, url: Optional[str]
) -> MatchResult:
    """Match one rule against the sample fields, including the priority boost."""
    if rule.type is RuleType.APP:
        result = match_pattern(app_name, rule.app_pattern or "", rule.match_type)
    elif rule.type is RuleType.TITLE:
        result = match_pattern(window_title, rule.title_pattern or "", rule.match_type)
    elif rule.type is RuleType.URL:
        if not url:
            return NO_MATCH
        result = match_pattern(url, rule.url_pattern or "", rule.match_type)
    else:
        result = _match_combined(rule, app_name, window_title, url)

    if not result.matched:
        return NO_MATCH
    return MatchResult(
        matched=True, confidence=min(100.0, result.confidence + rule.priority / 10)
    )


def _match_combined(
    rule: Rule, app_name: str, window_title: str, url: Optional[str]
) -> MatchResult:
    # An undeclared sub-pattern counts as a full-confidence match.
    app_match = MatchResult(matched=True, confidence=100.0)
    title_match = MatchResult(matched=True, confidence=100.0)
    if rule.app_pattern:
        app_match = match_pattern(app_name, rule.app_pattern, rule.match_type)
    if rule.title_pattern:
        title_match = match_pattern(window_title, rule.title_pattern, rule.match_type)
    parts = [app_match, title_match]
    if rule.url_pattern:
        parts.append(match_pattern(url, rule.url_pattern, rule.match_type) if url else NO_MATCH)

    if not all(p.matched for p in parts):
        return NO_MATCH
    return MatchResult(matched=True, confidence=sum(p.confidence for p in parts) / len(parts))


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def category_to_dict(category: Category) -> dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "color": category.color,
        "icon": category.icon,
        "isProductivity": category.is_productivity,
        "productivityScore": category.productivity_score,
        "isDefault": category.is_default,
        "order": category.order,
    }


def category_from_dict(data: dict[str, Any]) -> Category:
    return Category(
        id=data["id"],
        name=data["name"],
        color=data.get("color", "#9CA3AF"),
        icon=data.get("icon", "help-circle"),
        is_productivity=bool(data.get("isProductivity", True)),
        productivity_score=int(data.get("productivityScore", 50)),
        is_default=bool(data.get("isDefault", False)),
        order=int(data.get("order", 50)),
    )


def rule_to_dict(rule: Rule) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": rule.id,
        "categoryId": rule.category_id,
        "type": rule.type.value,
        "matchType": rule.match_type.value,
        "priority": rule.priority,
        "isEnabled": rule.is_enabled,
        "isDefault": rule.is_default,
        "createdAt": rule.created_at.isoformat(),
    }
    for key, value in (
        ("appPattern", rule.app_pattern),
        ("titlePattern", rule.title_pattern),
        ("urlPattern", rule.url_pattern),
    ):
        if value:
            data[key] = value
    return data


def rule_from_dict(data: dict[str, Any]) -> Rule:
    created = data.get("createdAt")
    return Rule(
        id=data["id"],
        category_id=data["categoryId"],
        type=RuleType(data["type"]),
        match_type=MatchType(data.get("matchType", "contains")),
        app_pattern=data.get("appPattern") or None,
        title_pattern=data.get("titlePattern") or None,
        url_pattern=data.get("urlPattern") or None,
        priority=int(data.get("priority", 50)),
        is_enabled=bool(data.get("isEnabled", True)),
        is_default=bool(data.get("isDefault", False)),
        created_at=datetime.fromisoformat(created) if created else datetime.now(),
    )
