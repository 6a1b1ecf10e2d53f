"""
File-backed prompt repository for the AI-backed pipeline steps.

Each step reads ``prompts/components/<name>.system`` from the project root.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional


class ComponentPromptRepository:
    def __init__(self, prompts_root: Optional[Path] = None):
        # Default: <repo_root>/prompts/components
        if prompts_root is None:
            repo_root = Path(__file__).resolve().parents[3]  # backend/intakeflow/components -> repo root
            prompts_root = repo_root / "prompts" / "components"
        self.prompts_root = prompts_root

    def get_system_prompt(self, prompt_name: str) -> str:
        return _read_prompt(self.prompts_root / f"{prompt_name}.system")


@lru_cache(maxsize=32)
def _read_prompt(path: Path) -> str:
    return path.read_text(encoding="utf-8")
