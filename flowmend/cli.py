#!/usr/bin/env python3
# flowmend/cli.py

import json
from pathlib import Path
from typing import List, Optional

import typer

from flowmend.config import Settings
from flowmend.conformance.classifier import classify as classify_error
from flowmend.errors import DocumentParseError, FlowmendError
from flowmend.fixer.pipeline import fix as fix_workflow
from flowmend.generator.regen import OpenAIGenerator, extract_document
from flowmend.repair.loop import RepairLoop, RepairOptions
from flowmend.structural.complexity import COMPLEXITY_BANDS
from flowmend.structural.validator import ValidationOptions, validate as validate_workflow
from flowmend.utils.io import read_json, write_json
from flowmend.utils.logger import set_level

app = typer.Typer(help="flowmend CLI - validate and repair (n8n) workflow documents")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG | INFO | WARNING | ERROR (default: LOG_LEVEL or INFO)"),
):
    if log_level:
        set_level(log_level)


def _settings(config: Optional[Path]) -> Settings:
    try:
        return Settings.from_file(config) if config else Settings.from_env()
    except FlowmendError as e:
        raise typer.BadParameter(str(e))


def _read_input(path: Path) -> dict:
    try:
        return read_json(path)
    except DocumentParseError as e:
        raise typer.BadParameter(str(e), param_hint="--input")


def _print_outcome(outcome) -> None:
    print(f"Success:   {outcome.success}")
    print(f"Attempts:  {outcome.attempts}")
    print(f"Validated: {outcome.validated}")
    if outcome.cached:
        print("(cached result)")
    if outcome.last_error:
        print(f"Last error: {outcome.last_error}")
    for h in outcome.history:
        status = "ok" if h.success else f"{h.error_type}: {h.error}"
        print(f"  #{h.attempt} {status}{' [regenerated]' if h.regenerated else ''}")
    if outcome.suggestions:
        print("Suggestions:")
        for s in outcome.suggestions:
            print(f"- {s}")


@app.command()
def validate(
    input: Path = typer.Option(..., "--input", "-i", exists=True, readable=True, help="Path to n8n workflow JSON"),
    error_handling: bool = typer.Option(False, "--error-handling", help="Require error handling (continueOnFail / error trigger)"),
    require_app: List[str] = typer.Option([], "--require-app", help="App that must appear among node types (repeatable)"),
    complexity: Optional[str] = typer.Option(None, "--complexity", help="Target complexity band: simple | moderate | complex"),
    report: Optional[Path] = typer.Option(None, "--report", help="Write a JSON report to this path"),
):
    """
    Structural validation: errors, warnings, suggestions and a 0-100 quality score.
    """
    if complexity is not None and complexity not in COMPLEXITY_BANDS:
        raise typer.BadParameter(f"Invalid complexity '{complexity}'. Choose one of: {', '.join(COMPLEXITY_BANDS)}")
    wf = _read_input(input)
    opts = ValidationOptions(require_error_handling=error_handling, required_apps=list(require_app),
                             complexity_target=complexity)
    result = validate_workflow(wf, opts)

    print(f"Valid:      {result.is_valid}")
    print(f"Score:      {result.score}")
    print(f"Complexity: {result.complexity}")
    for issue in result.errors:
        print(f"[{issue.severity.value}] {issue.kind}: {issue.message}")
    for issue in result.warnings:
        print(f"[warning] {issue.kind}: {issue.message}")
    if result.suggestions:
        print("Suggestions:")
        for s in result.suggestions:
            print(f"- {s}")

    if report is not None:
        write_json(report, {"input": str(input), **result.to_dict()})
        print(f"[ok] wrote report to {report}")
    if not result.is_valid:
        raise typer.Exit(code=1)


@app.command()
def fix(
    input: Path = typer.Option(..., "--input", "-i", exists=True, readable=True, help="Path to n8n workflow JSON"),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write the fixed workflow here (default: stdout)"),
    error: Optional[str] = typer.Option(None, "--error", "-e", help="Engine error to target with a specific fix"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print the change log"),
):
    """
    Deterministic repair without network access.
    """
    wf = _read_input(input)
    classification = classify_error(error) if error else None
    result = fix_workflow(wf, classification)

    if out is not None:
        write_json(out, result.workflow)
        print(f"[ok] wrote {out}")
    else:
        print(json.dumps(result.workflow, ensure_ascii=False, indent=2))

    if result.suggestions:
        print("Suggestions:")
        for s in result.suggestions:
            print(f"- {s}")
    if verbose:
        print(f"[debug] {len(result.changes)} change(s):")
        for c in result.changes:
            print(f"    - {c}")


@app.command()
def classify(error: str = typer.Argument(..., help="Raw error message from the engine")):
    """Map an engine error message to an error kind and fix strategy."""
    c = classify_error(error)
    print(json.dumps(c.to_dict(), ensure_ascii=False, indent=2))


@app.command()
def repair(
    input: Path = typer.Option(..., "--input", "-i", exists=True, readable=True, help="Path to n8n workflow JSON"),
    prompt: str = typer.Option("", "--prompt", "-p", help="Original request (used for regeneration)"),
    max_attempts: Optional[int] = typer.Option(None, "--max-attempts", help="Repair attempts (default from settings)"),
    bypass_cache: bool = typer.Option(False, "--bypass-cache", help="Skip cache lookup and write"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Session deadline in seconds"),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write the repaired workflow here"),
    report: Optional[Path] = typer.Option(None, "--report", help="Write the full outcome as JSON"),
    config: Optional[Path] = typer.Option(None, "--config", help="JSON/YAML settings file"),
):
    """
    Full repair session: live test, classify, fix, optionally regenerate, retest.
    """
    loop = RepairLoop.from_settings(_settings(config))
    outcome = loop.repair(_read_input(input), prompt,
                          RepairOptions(max_attempts=max_attempts, bypass_cache=bypass_cache, timeout=timeout))
    _print_outcome(outcome)
    if out is not None:
        write_json(out, outcome.workflow)
        print(f"[ok] wrote {out}")
    if report is not None:
        write_json(report, outcome.to_dict())
        print(f"[ok] wrote report to {report}")
    if not outcome.success:
        raise typer.Exit(code=1)


@app.command()
def draft(
    prompt: str = typer.Option(..., "--prompt", "-p", help="Natural-language automation description"),
    out: Path = typer.Option(..., "--out", "-o", help="Where to write the repaired workflow"),
    max_attempts: Optional[int] = typer.Option(None, "--max-attempts", help="Repair attempts (default from settings)"),
    config: Optional[Path] = typer.Option(None, "--config", help="JSON/YAML settings file"),
):
    """
    Generate a first draft with the configured LLM, then repair it.
    """
    settings = _settings(config)
    generator = OpenAIGenerator(settings)
    if not generator.available:
        raise typer.BadParameter("OPENAI_API_KEY is not set")
    try:
        wf = extract_document(generator.draft(prompt))
    except DocumentParseError as e:
        print(f"[error] {e}")
        raise typer.Exit(code=2)

    loop = RepairLoop.from_settings(settings, generator=generator)
    outcome = loop.repair(wf, prompt, RepairOptions(max_attempts=max_attempts))
    _print_outcome(outcome)
    write_json(out, outcome.workflow)
    print(f"[ok] wrote {out}")


@app.command()
def bench(
    glob: str = typer.Option("bench/repair/*/workflow.json", "--glob", help="Glob for workflow JSON files"),
    out: Path = typer.Option(Path("experiments/results/repair.csv"), "--out", help="CSV path to write results"),
    max_attempts: int = typer.Option(3, "--max-attempts", help="Repair attempts per case"),
    config: Optional[Path] = typer.Option(None, "--config", help="JSON/YAML settings file"),
):
    """
    Batch validate -> fix -> repair and export a CSV report, then print cache stats.
    """
    import glob as _glob
    import pandas as pd

    loop = RepairLoop.from_settings(_settings(config))
    rows = []
    for fp_str in sorted(_glob.glob(glob)):
        fp = Path(fp_str)
        try:
            wf = read_json(fp)
        except DocumentParseError as e:
            print(f"[skip] {e}")
            continue
        if not isinstance(wf, dict) or "nodes" not in wf:
            print(f"[skip] {fp} does not look like a workflow JSON (missing 'nodes'); skipping")
            continue

        prompt_path = fp.with_name("prompt.txt")
        prompt = prompt_path.read_text(encoding="utf-8") if prompt_path.exists() else ""

        before = validate_workflow(wf)
        fixed = fix_workflow(wf)
        after = validate_workflow(fixed.workflow)
        outcome = loop.repair(wf, prompt, RepairOptions(max_attempts=max_attempts))

        rows.append({
            "id": fp.parent.name,
            "ScoreBefore": before.score,
            "ErrorsBefore": len(before.errors),
            "ScoreAfter": after.score,
            "ErrorsAfter": len(after.errors),
            "Changes": len(fixed.changes),
            "Repaired": outcome.success,
            "Attempts": outcome.attempts,
            "Validated": outcome.validated,
        })

    out.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame(rows).to_csv(out, index=False)
    print(f"[ok] wrote {out}")
    print(f"cache: {loop.cache_stats()}")


if __name__ == "__main__":
    app()
