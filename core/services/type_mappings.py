"""
Entity type vocabulary: resolves free-text type labels to canonical types.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import func

from core.models import EntityTypeMapping

# Canonical type -> known variants. The canonical name is also a variant.
CANONICAL_TYPES: dict[str, tuple[str, ...]] = {
    "Project": ("project", "projects", "workspace", "workspaces", "context", "repo", "repository", "codebase"),
    "Framework": ("framework", "frameworks", "lib", "library"),
    "ApplicationStack": ("applicationstack", "application_stack", "app_stack", "stack", "techstack", "tech_stack"),
    "Workflow": ("workflow", "workflows", "process"),
    "BestPractice": ("bestpractice", "best_practice", "practice", "guideline", "convention", "pattern"),
    "Task": ("task", "tasks", "todo"),
    "Step": ("step", "steps", "substep", "sub_step"),
    "Issue": ("issue", "issues", "bug", "problem"),
    "Error": ("error", "errors", "exception"),
    "PossibleSolution": ("possiblesolution", "possible_solution", "solution", "workaround", "fix"),
    "Model": ("model", "models", "activerecord_model"),
    "DatabaseTable": ("databasetable", "database_table", "table", "db_table"),
    "DatabaseSchema": ("databaseschema", "database_schema", "schema", "db_schema"),
    "Class": ("class", "classes", "module"),
    "APIEndpoint": ("apiendpoint", "api_endpoint", "endpoint", "api"),
    "Route": ("route", "routes"),
    "Component": ("component", "components", "widget"),
    "Service": ("service", "services"),
    "Configuration": ("configuration", "config", "setting", "settings"),
    "Migration": ("migration", "migrations", "db_migration"),
    "TestCase": ("testcase", "test_case", "test", "spec"),
    "Permission": ("permission", "permissions", "role"),
    "User": ("user", "users", "person"),
    "Preference": ("preference", "preferences", "pref"),
    "Constant": ("constant", "constants", "const"),
    "ProjectPlan": ("projectplan", "project_plan", "plan"),
    "Feature": ("feature", "features"),
    "Gem": ("gem", "gems", "rubygem"),
    "Tool": ("tool", "tools"),
    "Resource": ("resource", "resources"),
    "Documentation": ("documentation", "docs", "doc", "readme"),
}


def _normalize(raw_type: Optional[str]) -> Optional[str]:
    if not isinstance(raw_type, str):
        return None
    value = raw_type.strip().lower()
    return value or None


def canonicalize(db, raw_type: Optional[str]) -> Optional[str]:
    """Canonical type for ``raw_type``, or None when no mapping is known."""
    variant = _normalize(raw_type)
    if variant is None:
        return None
    mapping = (
        db.query(EntityTypeMapping)
        .filter(func.lower(EntityTypeMapping.variant) == variant)
        .first()
    )
    return mapping.canonical_type if mapping else None


def iter_seed_variants():
    for canonical, variants in CANONICAL_TYPES.items():
        seen = set()
        for variant in (canonical, *variants):
            key = variant.lower()
            if key in seen:
                continue
            seen.add(key)
            yield key, canonical


def seed_type_mappings(db) -> int:
    """Insert any missing vocabulary rows. Returns the number inserted."""
    existing = {row[0] for row in db.query(EntityTypeMapping.variant).all()}
    inserted = 0
    for variant, canonical in iter_seed_variants():
        if variant in existing:
            continue
        db.add(EntityTypeMapping(variant=variant, canonical_type=canonical))
        existing.add(variant)
        inserted += 1
    db.commit()
    return inserted


__all__ = ["CANONICAL_TYPES", "canonicalize", "seed_type_mappings", "iter_seed_variants"]
