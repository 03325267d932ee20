"""Command-line interface for sandbox-judge.

Usage:
    sbx-judge problem.json solution.py           # Judge a file
    sbx-judge problem.json -c 'print(input())'   # Judge inline code (python)
    cat solution.js | sbx-judge problem.json - -l javascript
    sbx-judge --runtime docker --json problem.json solution.py
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import NoReturn

import click
from pydantic import ValidationError

from sandbox_judge import (
    JudgeConfig,
    JudgeError,
    Language,
    ProblemDefinition,
    Submission,
    SubmissionRequest,
    TransientError,
    Verdict,
    VerdictStatus,
    __version__,
)
from sandbox_judge._logging import configure_logging
from sandbox_judge.judge import Judge
from sandbox_judge.settings import Settings

# Exit codes following Unix conventions
EXIT_ACCEPTED = 0
EXIT_REJECTED = 1
EXIT_CLI_ERROR = 2
EXIT_SANDBOX_ERROR = 125

EXTENSION_MAP: dict[str, str] = {
    ".py": "python",
    ".js": "javascript",
    ".mjs": "javascript",
}

STATUS_COLORS: dict[VerdictStatus, str] = {
    VerdictStatus.ACCEPTED: "green",
    VerdictStatus.WRONG_ANSWER: "red",
    VerdictStatus.TIME_LIMIT_EXCEEDED: "yellow",
    VerdictStatus.RUNTIME_ERROR: "magenta",
}


def detect_language(source: str | None) -> str | None:
    """Auto-detect language from file extension."""
    if not source or source == "-":
        return None
    return EXTENSION_MAP.get(Path(source).suffix.lower())


def format_error(title: str, message: str, suggestions: list[str] | None = None) -> str:
    """Format an error message following What → Why → Fix pattern."""
    lines = [
        click.style(f"Error: {title}", fg="red", bold=True),
        "",
        f"  {message}",
    ]
    if suggestions:
        lines.extend(["", "  Suggestions:"])
        lines.extend(f"    • {suggestion}" for suggestion in suggestions)
    return "\n".join(lines)


def format_verdict(verdict: Verdict) -> str:
    """Human-readable one-line verdict."""
    status = click.style(verdict.status.value, fg=STATUS_COLORS[verdict.status], bold=True)
    return (
        f"{status}  {verdict.test_cases_passed}/{verdict.total_test_cases} passed, "
        f"{verdict.points_earned} points"
    )


def load_problem(path: Path) -> ProblemDefinition:
    """Read and validate a problem definition JSON file.

    Raises:
        click.UsageError: File unreadable or invalid
    """
    try:
        return ProblemDefinition.model_validate_json(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise click.UsageError(f"Cannot read problem file {path}: {exc}") from exc
    except ValidationError as exc:
        raise click.UsageError(f"Invalid problem definition {path}:\n{exc}") from exc


def load_config(runtime: str | None = None) -> JudgeConfig:
    """Build the judge config from SANDBOX_JUDGE_* variables, --runtime taking precedence.

    Raises:
        click.UsageError: An environment variable holds an invalid value
    """
    try:
        config = Settings().to_config()
    except ValidationError as exc:
        raise click.UsageError(f"Invalid SANDBOX_JUDGE_* configuration:\n{exc}") from exc
    if runtime is not None:
        config = config.model_copy(update={"runtime": runtime})
    return config


async def run_judge(submission: Submission, config: JudgeConfig, json_output: bool) -> int:
    """Judge a submission and print the verdict. Returns the process exit code."""
    try:
        async with Judge(config) as judge:
            verdict = await judge.judge(submission)
    except TransientError as e:
        click.echo(
            format_error(
                "Sandbox unavailable",
                e.message,
                [
                    "Check that the interpreter or docker daemon is installed and running",
                    "Retry later if the host is under load",
                ],
            ),
            err=True,
        )
        return EXIT_SANDBOX_ERROR
    except JudgeError as e:
        click.echo(format_error("Judge error", e.message), err=True)
        return EXIT_SANDBOX_ERROR

    if json_output:
        click.echo(verdict.model_dump_json(by_alias=True, indent=2))
    else:
        click.echo(format_verdict(verdict))

    return EXIT_ACCEPTED if verdict.status is VerdictStatus.ACCEPTED else EXIT_REJECTED


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("problem_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("source", required=False)
@click.option(
    "-l",
    "--language",
    type=click.Choice([lang.value for lang in Language], case_sensitive=False),
    help="Language (auto-detected from file extension, default python)",
)
@click.option("-c", "--code", "inline_code", help="Code to judge (alternative to SOURCE)")
@click.option(
    "-r",
    "--runtime",
    type=click.Choice(["process", "docker"]),
    help="Sandbox runtime [default: SANDBOX_JUDGE_RUNTIME or process]",
)
@click.option("--json", "json_output", is_flag=True, help="Output verdict as JSON")
@click.option("-v", "--verbose", is_flag=True, help="Log every test case")
@click.option("-q", "--quiet", is_flag=True, help="Only log errors")
@click.version_option(__version__, "-V", "--version", prog_name="sandbox-judge")
def main(
    problem_file: Path,
    source: str | None,
    language: str | None,
    inline_code: str | None,
    runtime: str | None,
    json_output: bool,
    verbose: bool,
    quiet: bool,
) -> NoReturn:
    """Judge a solution against a problem definition.

    PROBLEM_FILE is a JSON problem definition:

    \b
      {"id": 1, "timeLimitMs": 2000, "memoryLimitBytes": 268435456,
       "pointsAvailable": 100,
       "testCases": [{"input": "2", "expectedOutput": "4", "isHidden": false}]}

    SOURCE is a file path, or - to read from stdin.
    """
    configure_logging(level="DEBUG" if verbose else "WARNING", quiet=quiet)

    if inline_code:
        code = inline_code
    elif source == "-":
        if sys.stdin.isatty():
            raise click.UsageError("No input provided. Pipe code to stdin or use -c flag.")
        code = sys.stdin.read()
    elif source:
        path = Path(source)
        if not path.is_file():
            raise click.UsageError(f"Source file not found: {source}")
        code = path.read_text(encoding="utf-8")
    else:
        raise click.UsageError("No code provided. Provide SOURCE argument or use -c flag.")

    resolved_language = language.lower() if language else (detect_language(source) or "python")
    problem = load_problem(problem_file)

    try:
        submission = Submission.from_request(
            SubmissionRequest(code=code, language=Language(resolved_language)),
            problem,
        )
    except ValidationError as exc:
        raise click.UsageError(f"Invalid submission:\n{exc}") from exc

    exit_code = asyncio.run(run_judge(submission, load_config(runtime), json_output))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
