"""
Prompt Manager Service

Loads the interviewer and extractor prompt templates from prompts.json and
renders them with string.Template ($variable) substitution. The file is
re-read when its mtime changes, so prompt wording can be tuned without a
restart.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import Any, Dict, FrozenSet, Optional

logger = logging.getLogger(__name__)

DEFAULT_PROMPTS_FILE = Path(__file__).parent.parent / "prompts.json"


@dataclass(frozen=True)
class PromptTemplate:
    name: str
    template: str
    description: str = ""
    temperature: float = 0.5
    max_tokens: int = 1024
    output_format: str = "text"

    @property
    def variables(self) -> FrozenSet[str]:
        found = set()
        for match in Template.pattern.finditer(self.template):
            name = match.group("named") or match.group("braced")
            if name:
                found.add(name)
        return frozenset(found)

    def render(self, variables: Dict[str, Any]) -> str:
        missing = sorted(self.variables - set(variables))
        if missing:
            raise ValueError(f"Missing variables {missing} for prompt '{self.name}'")
        return Template(self.template).substitute(variables)


class PromptManager:
    def __init__(self, prompts_file: Path = DEFAULT_PROMPTS_FILE):
        self.prompts_file = Path(prompts_file)
        self._templates: Dict[str, PromptTemplate] = {}
        self._file_mtime: Optional[float] = None
        self.reload()

    def reload(self) -> None:
        if not self.prompts_file.exists():
            raise FileNotFoundError(f"Prompts file not found: {self.prompts_file}")

        with open(self.prompts_file, 'r', encoding='utf-8') as f:
            data = json.load(f)

        defaults = data.get("defaults", {})
        self._templates = {
            name: PromptTemplate(
                name=name,
                template=config.get("template", ""),
                description=config.get("description", ""),
                temperature=float(config.get("temperature", defaults.get("default_temperature", 0.5))),
                max_tokens=int(config.get("max_tokens", defaults.get("default_max_tokens", 1024))),
                output_format=config.get("output_format", "text"),
            )
            for name, config in data.get("prompts", {}).items()
        }
        self._file_mtime = self.prompts_file.stat().st_mtime
        logger.info("[PROMPTS] Loaded %d prompts (version %s)", len(self._templates), data.get("version", "?"))

    def _check_reload(self) -> None:
        if self.prompts_file.exists() and self.prompts_file.stat().st_mtime != self._file_mtime:
            self.reload()

    def get_prompt(self, prompt_name: str) -> PromptTemplate:
        """Raises KeyError for an unknown prompt."""
        self._check_reload()
        try:
            return self._templates[prompt_name]
        except KeyError:
            raise KeyError(f"Prompt not found: {prompt_name}") from None

    def render_prompt(self, prompt_name: str, variables: Dict[str, Any]) -> str:
        return self.get_prompt(prompt_name).render(variables)

    def get_prompt_metadata(self, prompt_name: str) -> Dict[str, Any]:
        prompt = self.get_prompt(prompt_name)
        return {
            "description": prompt.description,
            "temperature": prompt.temperature,
            "max_tokens": prompt.max_tokens,
            "output_format": prompt.output_format,
        }


_prompt_manager_instance: Optional[PromptManager] = None


def get_prompt_manager() -> PromptManager:
    global _prompt_manager_instance
    if _prompt_manager_instance is None:
        _prompt_manager_instance = PromptManager()
    return _prompt_manager_instance
