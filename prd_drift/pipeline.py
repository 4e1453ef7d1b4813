"""PRD drift analysis orchestrator.

Runs one analysis end to end:

1. Check the caller's quota (when rate limiting is enabled).
2. Fetch the PRD (local file or GitHub) and the repository's issues.
3. Extract requirements from the PRD.
4. Reconcile requirements against issues with the classification model.
5. Render the report and optionally save it, with a config snapshot, as JSON.

Usage::

    python -m prd_drift.pipeline acme/exporter
    python -m prd_drift.pipeline acme/exporter --prd-path docs/prd.md --labels feature,bug
    python -m prd_drift.pipeline acme/exporter --prd-file ./prd.md --oracle ollama -o report.json
    python -m prd_drift.pipeline --config report.config.json
"""

from __future__ import annotations

import asyncio
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from rich.panel import Panel

from prd_drift.analyzer import DriftAnalysisError, DriftReconciler
from prd_drift.config import Config
from prd_drift.github_client import GitHubClient, SourceError
from prd_drift.llm_client import AnthropicOracle, CompletionOracle, OllamaClient
from prd_drift.parser import AnalysisResult, extract_requirements, read_document
from prd_drift.rate_limit import RateLimiter
from prd_drift.utils import (
    console,
    format_duration,
    print_analysis,
    print_error,
    print_success,
    print_summary_table,
    print_warning,
    save_json,
)

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class PipelineError(Exception):
    """Raised when an analysis cannot be started or completed."""


class RateLimitExceededError(PipelineError):
    """Raised when a caller has used up its analysis quota."""

    def __init__(self, client_id: str, limit: int, reset_at: float) -> None:
        self.client_id = client_id
        self.limit = limit
        self.reset_at = reset_at
        reset = datetime.fromtimestamp(reset_at, tz=timezone.utc).isoformat()
        super().__init__(
            f"Rate limit exceeded: {limit} analyses per day. Try again after {reset}."
        )


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def build_oracle(config: Config) -> CompletionOracle:
    """Instantiate the classification oracle selected in *config*."""
    if config.oracle == "ollama":
        return OllamaClient(
            base_url=config.ollama.url,
            model=config.ollama.model,
            timeout=config.ollama.timeout,
        )
    if not config.anthropic.api_key:
        raise PipelineError(
            "ANTHROPIC_API_KEY is not set. Provide a key or use --oracle ollama."
        )
    return AnthropicOracle(
        api_key=config.anthropic.api_key,
        model=config.anthropic.model,
        max_tokens=config.anthropic.max_tokens,
        timeout=config.anthropic.timeout,
    )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class DriftPipeline:
    """Fetches inputs, extracts requirements, and reconciles them.

    Collaborators can be injected for tests or for embedding in a service;
    anything left as ``None`` is built from *config*. An oracle built here
    is closed by :meth:`aclose` (or on leaving an ``async with`` block); an
    injected one is left to its owner.

    Attributes:
        config: Analysis configuration.
        github: Document and work-item source.
        oracle: Classification oracle.
        reconciler: Drift reconciler wrapping the oracle.
        rate_limiter: Optional per-caller quota.
    """

    def __init__(
        self,
        config: Config,
        github: Optional[GitHubClient] = None,
        oracle: Optional[CompletionOracle] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        if not config.repository:
            raise PipelineError("A repository ('owner/name') is required.")
        self.config = config
        self.github = github or GitHubClient(
            token=config.github.token,
            repository=config.repository,
            api_url=config.github.api_url,
            timeout=config.github.timeout,
        )
        self._owns_oracle = oracle is None
        self.oracle = oracle or build_oracle(config)
        self.reconciler = DriftReconciler(self.oracle)
        if rate_limiter is None and config.rate_limit.enabled:
            rate_limiter = RateLimiter(
                limit=config.rate_limit.limit,
                window_seconds=config.rate_limit.window_seconds,
            )
        self.rate_limiter = rate_limiter

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _check_quota(self, client_id: str) -> None:
        if self.rate_limiter is None:
            return
        decision = self.rate_limiter.check(client_id)
        if not decision.allowed:
            raise RateLimitExceededError(client_id, self.rate_limiter.limit, decision.reset_at)

    async def _preflight(self) -> None:
        """Fail fast when a local Ollama oracle is not running."""
        if not isinstance(self.oracle, OllamaClient):
            return
        if not await self.oracle.is_available():
            raise PipelineError(
                f"Ollama is not reachable at {self.oracle.base_url}. "
                "Start the server or use --oracle anthropic."
            )
        models = await self.oracle.list_models()
        if self.oracle.model not in models:
            print_warning(
                f"  Model {self.oracle.model} is not pulled locally "
                f"({len(models)} model(s) available); generation may fail."
            )
        else:
            console.print(f"  [green]+[/green] Ollama online ({len(models)} model(s) available)")

    async def _load_prd(self) -> str:
        if self.config.prd_file is not None:
            console.print(f"  Reading PRD from [bold]{self.config.prd_file}[/bold]")
            return await read_document(self.config.prd_file)
        console.print(
            f"  Fetching PRD [bold]{self.config.prd_path}[/bold] "
            f"from [bold]{self.github.repository}[/bold]"
        )
        return await self.github.fetch_text(self.config.prd_path)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, client_id: str = "local") -> AnalysisResult:
        """Run one analysis and return the result.

        Raises:
            RateLimitExceededError: If *client_id* is over quota.
            PipelineError: If the Ollama server is not reachable.
            FileNotFoundError: If the PRD cannot be found.
            ValueError: If a local PRD file is not UTF-8 text.
            SourceError: If GitHub cannot be read.
            DriftAnalysisError: If the classification model call fails.
        """
        started = time.monotonic()
        self._check_quota(client_id)
        await self._preflight()

        prd_text = await self._load_prd()
        work_items = await self.github.list_work_items(self.config.issue_labels or None)

        requirements = extract_requirements(prd_text)
        console.print(
            f"  Extracted {len(requirements)} requirement(s); "
            f"{len(work_items)} issue(s) to compare"
        )
        if not requirements:
            print_warning("  No requirements found in the PRD -- the report will be empty.")

        analysis = await self.reconciler.reconcile(requirements, work_items)

        result = AnalysisResult(
            repository=self.config.repository,
            prd_path=str(self.config.prd_file or self.config.prd_path),
            total_requirements=len(requirements),
            total_issues=len(work_items),
            analysis=analysis,
        )

        if self.config.report_path is not None:
            await save_json(
                result.model_dump(mode="json", by_alias=True),
                self.config.report_path,
            )
            console.print(f"  Report saved to [bold]{self.config.report_path}[/bold]")
            snapshot = self.config.save(config_snapshot_path(self.config.report_path))
            console.print(f"  [dim]Config snapshot saved to {snapshot}[/dim]")

        console.print(f"  [dim]Analysis took {format_duration(time.monotonic() - started)}[/dim]")
        return result

    async def aclose(self) -> None:
        """Release the oracle's connection pool if this pipeline created it."""
        if self._owns_oracle and isinstance(self.oracle, AnthropicOracle):
            await self.oracle.aclose()

    async def __aenter__(self) -> "DriftPipeline":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def config_snapshot_path(report_path: Path) -> Path:
    """``report.json`` -> ``report.config.json`` in the same directory."""
    return report_path.with_name(f"{report_path.stem}.config.json")


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def _print_result(result: AnalysisResult) -> None:
    print_summary_table(
        {
            "Repository": result.repository,
            "PRD": result.prd_path,
            "Requirements": str(result.total_requirements),
            "Issues": str(result.total_issues),
        },
        title="Inputs",
    )
    print_analysis(result.analysis, title=f"PRD Drift -- {result.repository}")


async def _run(config: Config) -> AnalysisResult:
    async with DriftPipeline(config) as pipeline:
        return await pipeline.run()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for ``python -m prd_drift.pipeline`` / ``prd-drift``."""
    import argparse

    parser = argparse.ArgumentParser(
        description="PRD Drift -- compare a PRD with what the issue tracker shows was delivered",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Environment:\n"
            "  GITHUB_TOKEN       GitHub token with read access to the repository\n"
            "  ANTHROPIC_API_KEY  required for --oracle anthropic\n"
        ),
    )
    parser.add_argument("repository", nargs="?", default=None, help="GitHub repository as owner/name")
    parser.add_argument("--prd-path", default=None, help="PRD path in the repository (default: docs/prd.md)")
    parser.add_argument("--prd-file", default=None, help="Read the PRD from a local file instead")
    parser.add_argument("--labels", default=None, help="Comma-separated issue labels to filter by")
    parser.add_argument(
        "--oracle",
        choices=["anthropic", "ollama"],
        default=None,
        help="Classification model backend (default: anthropic)",
    )
    parser.add_argument("--output", "-o", default=None, help="Save the JSON report to this path")
    parser.add_argument("--config", default=None, help="Load settings from a saved config JSON")

    args = parser.parse_args(argv)

    try:
        env_config = Config.from_env()
        base = Config.load(Path(args.config)) if args.config else env_config
        overrides = base.model_dump()
        # Saved configs never hold credentials.
        overrides["github"]["token"] = env_config.github.token
        overrides["anthropic"]["api_key"] = env_config.anthropic.api_key
        if args.repository:
            overrides["repository"] = args.repository
        if args.prd_path:
            overrides["prd_path"] = args.prd_path
        if args.prd_file:
            overrides["prd_file"] = Path(args.prd_file)
        if args.labels is not None:
            overrides["issue_labels"] = args.labels
        if args.oracle:
            overrides["oracle"] = args.oracle
        if args.output:
            overrides["report_path"] = Path(args.output)
        config = Config.model_validate(overrides)
    except (ValueError, OSError) as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)

    console.print(
        Panel(
            f"[bold bright_cyan]PRD Drift[/bold bright_cyan]\n"
            f"Repository : {config.repository}\n"
            f"PRD        : {config.prd_file or config.prd_path}\n"
            f"Oracle     : {config.oracle}",
            title="[bold]Analysis Start[/bold]",
            border_style="bright_cyan",
        )
    )

    try:
        result = asyncio.run(_run(config))
    except (PipelineError, DriftAnalysisError, SourceError, FileNotFoundError, ValueError) as exc:
        print_error(f"Analysis failed: {exc}")
        sys.exit(1)

    _print_result(result)
    if result.analysis.degraded:
        print_warning("The model reply could not be parsed; showing the worst-case report.")
    else:
        print_success("Analysis complete.")


if __name__ == "__main__":
    main()
