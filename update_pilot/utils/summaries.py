from typing import Any, Dict, List

from ..models import Step, StepStatus

INSTALL_MARKERS = ("install", "Installing")
UPDATE_MARKERS = ("update", "Updating")


def _mentions(operation: Dict[str, Any], markers: tuple, op_type: str) -> bool:
    if operation.get("type") == op_type:
        return True
    text = f"{operation.get('summary') or ''} {operation.get('details') or ''}"
    return any(marker in text for marker in markers)


def _package_counts(operations: List[Dict[str, Any]]) -> Dict[str, int]:
    return {
        "install": sum(1 for op in operations if _mentions(op, INSTALL_MARKERS, "install")),
        "update": sum(1 for op in operations if _mentions(op, UPDATE_MARKERS, "update")),
    }


def _operations(data: Any) -> List[Dict[str, Any]]:
    if isinstance(data, dict) and isinstance(data.get("operations"), list):
        return data["operations"]
    return []


def summarize_step(step: Step) -> str:
    """
    One-line, human readable outcome of a finished step.

    Returns an empty string for steps that are not worth listing in a run
    history (the pending task check, steps that never ran).
    """
    if step.status == StepStatus.ERROR:
        return f"Error: {step.error or 'Unknown error occurred'}"
    if step.status == StepStatus.SKIPPED:
        return "Step skipped"
    if step.status == StepStatus.CANCELLED:
        return "Step cancelled"
    if step.status == StepStatus.PENDING:
        return ""

    data = step.data if isinstance(step.data, dict) else {}
    operations = _operations(data)

    if step.kind == "check-tasks":
        return ""

    if step.kind == "check-manager":
        self_update = data.get("selfUpdate")
        if self_update:
            current = self_update.get("current_version")
            latest = self_update.get("latest_version")
            if current and latest and current != latest:
                return f"Manager update available: {current} → {latest}"
            return f"Manager up to date ({current})"
        return "Manager version check completed"

    if step.kind == "update-manager":
        return "Manager update completed"

    if step.kind == "composer-dry-run":
        if not operations:
            return "Dry-run completed"
        counts = _package_counts(operations)
        parts = []
        if counts["install"]:
            parts.append(f"{counts['install']} to install")
        if counts["update"]:
            parts.append(f"{counts['update']} to update")
        if parts:
            return f"Dry-run: {', '.join(parts)}"
        return "Dry-run: no changes needed"

    if step.kind == "composer-update":
        if not operations:
            return "Package update completed"
        completed = [op for op in operations if op.get("status") == "complete"]
        counts = _package_counts(completed or operations)
        parts = []
        if counts["install"]:
            parts.append(f"{counts['install']} installed")
        if counts["update"]:
            parts.append(f"{counts['update']} updated")
        if parts:
            return f"Packages: {', '.join(parts)}"
        return "No package changes made"

    if step.kind == "check-migrations-loop":
        if operations:
            return f"{len(operations)} database operations pending"
        return "No database migrations needed"

    if step.kind == "execute-migrations":
        if operations:
            completed = [op for op in operations if op.get("status") == "complete"]
            return f"{len(completed)} database operations executed"
        return "No database migrations executed"

    if step.kind == "update-versions":
        version_info = data.get("versionInfo") or {}
        parts = []
        if version_info.get("contaoVersion"):
            parts.append(f"Contao {version_info['contaoVersion']}")
        if version_info.get("contaoManagerVersion"):
            parts.append(f"Manager {version_info['contaoManagerVersion']}")
        if version_info.get("phpVersion"):
            parts.append(f"PHP {version_info['phpVersion']}")
        if parts:
            return f"Version info updated: {', '.join(parts)}"
        return "Version information updated"

    return f"{step.title} completed"
