"""PRD drift configuration.

Centralised, typed configuration for an analysis run. All settings use
Pydantic v2 models so they are validated at construction time and can be
serialised to/from JSON or read from environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from prd_drift.llm_client import DEFAULT_ANTHROPIC_MODEL, DEFAULT_OLLAMA_MODEL
from prd_drift.utils import load_json


class GitHubConfig(BaseModel):
    """Where the PRD and the issues live."""

    token: str = Field(default="", repr=False, description="Personal access token")
    api_url: str = Field(default="https://api.github.com")
    timeout: int = Field(default=30, ge=1, description="Per-request timeout in seconds")


class AnthropicConfig(BaseModel):
    """Configuration for the Claude classification oracle."""

    api_key: str = Field(default="", repr=False)
    model: str = Field(default=DEFAULT_ANTHROPIC_MODEL)
    max_tokens: int = Field(default=4096, ge=256)
    timeout: int = Field(default=120, ge=10, description="Per-request timeout in seconds")


class OllamaConfig(BaseModel):
    """Configuration for a local Ollama oracle."""

    url: str = Field(default="http://localhost:11434")
    model: str = Field(default=DEFAULT_OLLAMA_MODEL)
    timeout: int = Field(default=120, ge=10, description="Per-request timeout in seconds")


class RateLimitConfig(BaseModel):
    """Per-caller analysis quota enforced by the pipeline."""

    enabled: bool = Field(default=False)
    limit: int = Field(default=5, ge=1, description="Analyses allowed per window")
    window_seconds: int = Field(default=24 * 60 * 60, ge=1)


class Config(BaseModel):
    """Global configuration for one drift analysis.

    Instances are typically created once by the CLI entry point and passed
    to ``DriftPipeline``.
    """

    repository: str = Field(default="", description="'owner/name' of the GitHub repository")
    prd_path: str = Field(default="docs/prd.md", description="PRD path inside the repository")
    prd_file: Optional[Path] = Field(
        default=None, description="Local PRD file; overrides fetching prd_path from GitHub"
    )
    issue_labels: list[str] = Field(default_factory=list)
    oracle: Literal["anthropic", "ollama"] = Field(default="anthropic")
    report_path: Optional[Path] = Field(default=None, description="Where to save the JSON report")
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    anthropic: AnthropicConfig = Field(default_factory=AnthropicConfig)
    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)

    @field_validator("repository")
    @classmethod
    def _owner_slash_name(cls, value: str) -> str:
        value = value.strip()
        if value and (value.count("/") != 1 or not all(value.split("/"))):
            raise ValueError(f"repository must look like 'owner/name', got {value!r}")
        return value

    @field_validator("issue_labels", mode="before")
    @classmethod
    def _split_labels(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [label.strip() for label in value.split(",") if label.strip()]
        return value

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the configuration to a JSON file.

        Credentials are never written.

        Returns:
            The path where the file was written.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            self.model_dump_json(
                indent=2,
                exclude={"github": {"token"}, "anthropic": {"api_key"}},
            ),
            encoding="utf-8",
        )
        return path

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a previously-saved configuration from JSON.

        Credentials are not stored in the file, so the loaded config carries
        empty ones; callers fill them from the environment.

        Raises:
            FileNotFoundError: If *path* does not exist.
            ValueError: If the file is not valid JSON or not a valid config.
        """
        data = load_json(path)
        if "_root" in data:
            raise ValueError(f"config file must hold a JSON object: {path}")
        return cls.model_validate(data)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a ``Config`` from environment variables.

        Recognised variables (all optional):
            PRD_DRIFT_REPOSITORY, PRD_DRIFT_PRD_PATH, PRD_DRIFT_PRD_FILE,
            PRD_DRIFT_LABELS, PRD_DRIFT_ORACLE, PRD_DRIFT_REPORT,
            GITHUB_TOKEN, ANTHROPIC_API_KEY, PRD_DRIFT_MODEL,
            PRD_DRIFT_OLLAMA_URL, PRD_DRIFT_OLLAMA_MODEL,
            PRD_DRIFT_RATE_LIMIT (per-day quota; enables limiting).
        """
        github_kwargs: dict[str, Any] = {}
        if os.environ.get("GITHUB_TOKEN"):
            github_kwargs["token"] = os.environ["GITHUB_TOKEN"]

        anthropic_kwargs: dict[str, Any] = {}
        if os.environ.get("ANTHROPIC_API_KEY"):
            anthropic_kwargs["api_key"] = os.environ["ANTHROPIC_API_KEY"]
        if os.environ.get("PRD_DRIFT_MODEL"):
            anthropic_kwargs["model"] = os.environ["PRD_DRIFT_MODEL"]

        ollama_kwargs: dict[str, Any] = {}
        if os.environ.get("PRD_DRIFT_OLLAMA_URL"):
            ollama_kwargs["url"] = os.environ["PRD_DRIFT_OLLAMA_URL"]
        if os.environ.get("PRD_DRIFT_OLLAMA_MODEL"):
            ollama_kwargs["model"] = os.environ["PRD_DRIFT_OLLAMA_MODEL"]

        rate_kwargs: dict[str, Any] = {}
        if os.environ.get("PRD_DRIFT_RATE_LIMIT"):
            rate_kwargs["enabled"] = True
            rate_kwargs["limit"] = int(os.environ["PRD_DRIFT_RATE_LIMIT"])

        prd_file = os.environ.get("PRD_DRIFT_PRD_FILE")
        report = os.environ.get("PRD_DRIFT_REPORT")

        return cls(
            repository=os.environ.get("PRD_DRIFT_REPOSITORY", ""),
            prd_path=os.environ.get("PRD_DRIFT_PRD_PATH", "docs/prd.md"),
            prd_file=Path(prd_file) if prd_file else None,
            issue_labels=os.environ.get("PRD_DRIFT_LABELS", ""),
            oracle=os.environ.get("PRD_DRIFT_ORACLE", "anthropic"),
            report_path=Path(report) if report else None,
            github=GitHubConfig(**github_kwargs),
            anthropic=AnthropicConfig(**anthropic_kwargs),
            ollama=OllamaConfig(**ollama_kwargs),
            rate_limit=RateLimitConfig(**rate_kwargs),
        )
