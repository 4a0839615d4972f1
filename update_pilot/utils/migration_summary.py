import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

CATEGORIES = [
    "CREATE_TABLE",
    "DROP_TABLE",
    "CREATE_INDEX",
    "DROP_INDEX",
    "ALTER_TABLE",
    "OTHER",
]

# (category, pattern, removes data)
OPERATION_PATTERNS = [
    ("CREATE_TABLE", re.compile(r"^CREATE TABLE ([^ ]+) .+$"), False),
    ("DROP_TABLE", re.compile(r"^DROP TABLE (.+)$"), True),
    ("CREATE_INDEX", re.compile(r"^CREATE INDEX ([^ ]+) ON ([^ ]+) \(([^)]+)\)$"), False),
    ("DROP_INDEX", re.compile(r"^DROP INDEX ([^ ]+) ON ([^ ]+)$"), True),
]

ALTER_TABLE_PATTERN = re.compile(r"^ALTER TABLE ([^ ]+) (.+)$")
ADD_FIELD_PATTERN = re.compile(r"^ADD ([^ ]+) (.+)$")
CHANGE_FIELD_PATTERN = re.compile(r"^CHANGE ([^ ]+) ([^ ]+) (.+)$")
DROP_FIELD_PATTERN = re.compile(r"^DROP (.+)$")


@dataclass
class MigrationSummary:
    """Pending database operations grouped by the kind of schema change."""

    total_operations: int
    breakdown: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    delete_operations: List[Dict[str, Any]] = field(default_factory=list)
    migration_type: str = "unknown"
    migration_hash: Optional[str] = None

    @property
    def has_deletes(self) -> bool:
        return bool(self.delete_operations)

    def counts(self) -> Dict[str, int]:
        """Non-zero operation counts in category order."""
        return {
            category: len(self.breakdown[category])
            for category in CATEGORIES
            if self.breakdown.get(category)
        }

    def describe(self) -> str:
        parts = [
            f"{count} {category.replace('_', ' ').lower()}"
            for category, count in self.counts().items()
        ]
        text = f"{self.total_operations} database operations pending"
        if parts:
            text += f" ({', '.join(parts)})"
        if self.has_deletes:
            text += f", {len(self.delete_operations)} remove data"
        return text


def split_alter_statement(statement: str) -> List[str]:
    """Split an ALTER TABLE body on commas that are not inside quotes."""
    parts: List[str] = []
    current = ""
    for index, chunk in enumerate(statement.split("'")):
        if index % 2:
            current += f"'{chunk}'"
            continue
        pieces = chunk.split(",")
        current += pieces[0]
        for piece in pieces[1:]:
            parts.append(current.strip())
            current = piece
    parts.append(current.strip())
    return [part for part in parts if part]


def parse_alter_operations(statement: str) -> List[Dict[str, Any]]:
    sub_operations = []
    for part in split_alter_statement(statement):
        add_match = ADD_FIELD_PATTERN.match(part)
        change_match = CHANGE_FIELD_PATTERN.match(part)
        drop_match = DROP_FIELD_PATTERN.match(part)

        if add_match:
            sub_operations.append(
                {"type": "ADD", "field": add_match.group(1), "definition": add_match.group(2)}
            )
        elif change_match:
            sub_operations.append(
                {
                    "type": "CHANGE",
                    "old_field": change_match.group(1),
                    "new_field": change_match.group(2),
                    "definition": change_match.group(3),
                }
            )
        elif drop_match:
            sub_operations.append({"type": "DROP", "field": drop_match.group(1)})
        else:
            sub_operations.append({"type": "OTHER", "statement": part})
    return sub_operations


def classify_operation(operation: Dict[str, Any]) -> Dict[str, Any]:
    """
    Classify a single migration operation by its SQL-like name.

    Returns a copy of the operation with ``category`` and ``requires_deletes``
    set. Operations that match no known pattern are assumed to remove data.
    """
    name = operation.get("name") or ""

    for category, pattern, removes_data in OPERATION_PATTERNS:
        match = pattern.match(name)
        if match:
            details = dict(operation, category=category, requires_deletes=removes_data)
            details["table"] = match.group(2) if category.endswith("INDEX") else match.group(1)
            return details

    alter_match = ALTER_TABLE_PATTERN.match(name)
    if alter_match:
        sub_operations = parse_alter_operations(alter_match.group(2))
        return dict(
            operation,
            category="ALTER_TABLE",
            table=alter_match.group(1),
            sub_operations=sub_operations,
            requires_deletes=any(sub["type"] == "DROP" for sub in sub_operations),
        )

    return dict(operation, category="OTHER", requires_deletes=True)


def summarize_migration(data: Any) -> Optional[MigrationSummary]:
    """Build a MigrationSummary from a migration payload, or None without operations."""
    if not isinstance(data, dict) or not data.get("operations"):
        return None

    summary = MigrationSummary(
        total_operations=len(data["operations"]),
        breakdown={category: [] for category in CATEGORIES},
        migration_type=data.get("type") or "unknown",
        migration_hash=data.get("hash"),
    )

    for operation in data["operations"]:
        details = classify_operation(operation)
        summary.breakdown[details["category"]].append(details)
        if details["requires_deletes"]:
            summary.delete_operations.append(operation)

    return summary
