"""
Site profile loader.

Each YAML file under the sites directory describes one management instance
and the workflow defaults to use for it.
"""

import yaml
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models import WorkflowConfig
from .settings import SiteProfile

WORKFLOW_OPTIONS = ("perform_dry_run", "skip_composer", "with_deletes", "unroll_migration_cycles")


class SiteConfigLoader:
    """Loads and validates site profiles from YAML files."""

    def __init__(self, config_dir: Optional[Path] = None):
        if config_dir is None:
            self.config_dir = Path(__file__).parent / "sites"
        else:
            self.config_dir = Path(config_dir)

    def load_site(self, site_name: str) -> SiteProfile:
        """Load a specific site profile by name."""
        config_path = self.config_dir / f"{site_name}.yaml"

        if not config_path.exists():
            raise FileNotFoundError(f"Site configuration not found: {config_path}")

        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}

        return self._parse_site(config_data)

    def list_available_sites(self) -> List[str]:
        if not self.config_dir.exists():
            return []

        return sorted(yaml_file.stem for yaml_file in self.config_dir.glob("*.yaml"))

    def _parse_site(self, config_data: Dict[str, Any]) -> SiteProfile:
        site_data = config_data.get("site", {})

        for field_name in ("name", "url"):
            if field_name not in site_data:
                raise ValueError(f"Missing required field '{field_name}' in site configuration")

        workflow_data = config_data.get("workflow", {}) or {}
        unknown = set(workflow_data) - set(WORKFLOW_OPTIONS)
        if unknown:
            raise ValueError(f"Unknown workflow options: {', '.join(sorted(unknown))}")

        workflow = WorkflowConfig(
            **{key: bool(value) for key, value in workflow_data.items()}
        )

        return SiteProfile(
            name=site_data["name"],
            url=site_data["url"],
            token_env=site_data.get("token_env"),
            workflow=workflow,
        )
