#!/usr/bin/env python
"""
main.py

Command-line entry point for the C/C++ security scan pipeline.

Key stages (LangGraph workflow):
1. Scan:
   - CodeScanner discovers sources, ScanOrchestrator runs the analyzers
     for the chosen level and deduplicates their findings
   - DecisionEngine (optional) validates findings with an LLM and drops
     confirmed false positives
   - Findings are merged into an IssueStore
2. Remediation (optional):
   - The top N findings by severity go through the GVI loop and each
     produces a candidate fix; the source tree is never modified
3. Report:
   - JSON snapshot of the store (plus remediation.json when requested)
   - rich summary table on the console

Commands:
    scan <path>    run the pipeline
    cache-stats    show the LLM response cache statistics
    cache-clear    remove every cached LLM response
"""

import os
import argparse
import dataclasses
import json
import logging
import signal
import sys
import time
from typing import Any, Dict, List

import psutil
from dotenv import load_dotenv
from langgraph.graph import StateGraph
from rich.console import Console
from rich.table import Table

from llm_gateway.cache_manager import PersistentCacheManager
from llm_gateway.factory import ProviderFactory
from remediation.gvi_engine import GVIEngine
from remediation.models import RemediationStatus
from scan_engine.config import ScanEngineConfig, VALID_LEVELS
from scan_engine.issue_store import IssueStore
from scan_engine.metrics import get_metrics
from scan_engine.models import Issue
from scan_engine.orchestrator import ScanOrchestrator
from triage.code_slicer import CodeSlicer
from triage.decision_engine import DecisionEngine

console = Console()

# --------- Global shutdown flag ---------
shutdown_requested = False


def signal_handler(signum, frame):
    global shutdown_requested
    shutdown_requested = True
    console.print("\n[yellow]⚠️  Shutdown requested. Finishing current step...[/yellow]")


signal.signal(signal.SIGINT, signal_handler)
signal.signal(signal.SIGTERM, signal_handler)


# --------- Logging with memory tracking ---------
class MemoryFormatter(logging.Formatter):
    def format(self, record):
        process = psutil.Process()
        record.memory_mb = process.memory_info().rss / 1024 / 1024
        return super().format(record)


logging.basicConfig(level=logging.INFO, stream=sys.stdout, force=True)
for handler in logging.getLogger().handlers:
    handler.setFormatter(MemoryFormatter(
        "%(asctime)s - %(levelname)s - %(name)s - %(message)s - [Memory: %(memory_mb).1fMB]"
    ))

logger = logging.getLogger(__name__)

# Silence noisy third-party loggers that dump raw HTTP traffic at DEBUG level
for _noisy in (
    "urllib3", "urllib3.connectionpool", "httpcore", "httpx",
    "httpcore.http11", "httpcore.connection", "openai", "anthropic",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)


def get_memory_usage() -> float:
    process = psutil.Process()
    return process.memory_info().rss / 1024 / 1024


def log_memory_usage(context: str) -> float:
    mem = get_memory_usage()
    logger.info(f"Memory usage at {context}: {mem:.1f}MB")
    if mem > 2000:
        logger.warning(f"High memory usage detected: {mem:.1f}MB")
    return mem


# --------- CLI Argument Parsing ---------
def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Security scanning, AI triage and remediation for C/C++ codebases",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Static analysis only
  python main.py scan /path/to/project --no-ai

  # Deep scan with AI validation, snapshot written to ./out/issues.json
  python main.py scan /path/to/project --level deep --out ./out

  # Also propose Rust rewrites for the 3 most severe findings
  python main.py scan /path/to/project --remediate 3 --target rust

  # Inspect or wipe the LLM response cache
  python main.py cache-stats
  python main.py cache-clear
        """,
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-v", "--verbose", action="store_true", default=None)
    common.add_argument("-D", "--debug", action="store_true", default=None)
    common.add_argument("--quiet", action="store_true")

    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", parents=[common], help="Scan a source tree")
    scan.add_argument("path", help="Path to the C/C++ codebase")
    scan.add_argument("--level", choices=VALID_LEVELS, default=None,
                      help="Analyzer set: quick, standard or deep (default: config)")
    scan.add_argument("--sequential", action="store_true",
                      help="Run analyzers one after another instead of in parallel")
    scan.add_argument("--threads", type=int, default=None, help="Analyzer worker threads")
    scan.add_argument("--timeout", type=int, default=None, help="Per-analyzer timeout in seconds")
    scan.add_argument("--incremental", action="store_true", default=None,
                      help="Only scan files changed since the last run")
    scan.add_argument("--ai", dest="ai", action="store_true", default=None,
                      help="Validate findings with an LLM (default: config)")
    scan.add_argument("--no-ai", dest="ai", action="store_false")
    scan.add_argument("--out", default="./out", help="Output directory for the JSON snapshot")
    scan.add_argument("--remediate", type=int, default=0, metavar="N",
                      help="Run the remediation loop on the N most severe findings")
    scan.add_argument("--target", choices=("rust", "c"), default=None,
                      help="Remediation target language (default: config)")

    sub.add_parser("cache-stats", parents=[common], help="Show LLM cache statistics")
    sub.add_parser("cache-clear", parents=[common], help="Delete every cached LLM response")

    return parser.parse_args(argv)


def build_config(opts: Dict[str, Any]) -> ScanEngineConfig:
    """Environment (.env included) first, then command-line overrides."""
    load_dotenv()
    config = ScanEngineConfig.from_env()

    overrides: Dict[str, Any] = {}
    if opts.get("level"):
        overrides["level"] = opts["level"]
    if opts.get("sequential"):
        overrides["parallel"] = False
    if opts.get("threads") is not None:
        overrides["max_threads"] = opts["threads"]
    if opts.get("timeout") is not None:
        overrides["timeout_seconds"] = opts["timeout"]
    if opts.get("incremental") is not None:
        overrides["incremental"] = opts["incremental"]
    if opts.get("ai") is not None:
        overrides["ai_enabled"] = opts["ai"]
    if opts.get("target"):
        overrides["target_language"] = opts["target"]
    if overrides:
        config = dataclasses.replace(config, **overrides)

    for warning in config.validate():
        console.print(f"[yellow]Config warning: {warning}[/yellow]")
    return config


def select_for_remediation(issues: List[Issue], limit: int) -> List[Issue]:
    """Most severe first; file and line break ties."""
    ranked = sorted(
        issues,
        key=lambda i: (-i.severity.level, i.location.file, i.location.line),
    )
    return ranked[:max(0, limit)]


# --------- Workflow nodes ---------
def scan_agent(state: Dict[str, Any]) -> Dict[str, Any]:
    config: ScanEngineConfig = state["config"]
    store: IssueStore = state["store"]

    enhancer = None
    if config.ai_enabled:
        engine = DecisionEngine.from_config(config, factory=state.get("factory"))
        if engine.is_available():
            enhancer = engine
            state["decision_engine"] = engine
        else:
            console.print("[yellow]⚠️  No LLM provider configured; AI validation skipped[/yellow]")

    try:
        with ScanOrchestrator(config) as orchestrator:
            result = orchestrator.analyze(state["source_path"], store=store, enhancer=enhancer)
        state["scan_result"] = result
        state["scan_status"] = "success"
    except Exception as e:
        logger.error(f"Scan failed: {e}", exc_info=True)
        state["scan_status"] = f"error: {e}"

    log_memory_usage("scan complete")
    return state


def remediation_agent(state: Dict[str, Any]) -> Dict[str, Any]:
    limit = state["remediate"]
    if limit <= 0:
        state["remediation_status"] = "skipped: not requested"
        return state
    if state.get("scan_status") != "success":
        state["remediation_status"] = "skipped: scan did not complete"
        return state

    candidates = select_for_remediation(state["store"].get_all_issues(), limit)
    if not candidates:
        state["remediation_status"] = "skipped: no findings"
        return state

    try:
        engine = GVIEngine.from_config(state["config"], factory=state.get("factory"))
    except Exception as e:
        logger.error(f"Could not set up remediation: {e}", exc_info=True)
        state["remediation_status"] = f"error: {e}"
        return state

    if not engine.generator.is_available():
        state["remediation_status"] = "skipped: no LLM provider configured"
        return state
    if not engine.verifier.is_available():
        console.print(f"[yellow]⚠️  {engine.target.value} toolchain not found; "
                      f"every candidate will fail verification[/yellow]")

    slicer = CodeSlicer()
    results = []
    for issue in candidates:
        if shutdown_requested:
            console.print("[yellow]Stopping remediation early[/yellow]")
            break
        console.print(f"[blue]🔧 Remediating: {issue.title} ({issue.location})[/blue]")
        results.append(engine.remediate_issue(issue, slicer))

    state["remediation_results"] = results
    state["remediation_status"] = "success"
    return state


def report_agent(state: Dict[str, Any]) -> Dict[str, Any]:
    out_dir = state["out_dir"]
    store: IssueStore = state["store"]
    result = state.get("scan_result")
    analyzers = list(result.analyzers_used) if result is not None else None

    try:
        snapshot_path = os.path.join(out_dir, "issues.json")
        store.save_to_disk(snapshot_path, source_path=state["source_path"], analyzers_used=analyzers)
        state["snapshot_path"] = snapshot_path

        remediation = state.get("remediation_results")
        if remediation:
            remediation_path = os.path.join(out_dir, "remediation.json")
            with open(remediation_path, "w", encoding="utf-8") as f:
                json.dump([r.to_dict() for r in remediation], f, indent=2)
            state["remediation_path"] = remediation_path
        state["report_status"] = "success"
    except Exception as e:
        logger.error(f"Report failed: {e}", exc_info=True)
        state["report_status"] = f"error: {e}"
    return state


# --------- LangGraph Workflow ---------
def build_workflow_graph():
    graph = StateGraph(dict)

    graph.add_node("scan", scan_agent)
    graph.add_node("remediation", remediation_agent)
    graph.add_node("report", report_agent)

    graph.add_edge("scan", "remediation")
    graph.add_edge("remediation", "report")

    graph.set_entry_point("scan")
    return graph


def print_summary(final_state: Dict[str, Any]) -> None:
    console.print("\n[bold]📊 Stage Summary:[/bold]")
    for key, label in [
        ("scan_status", "🔍 Scan"),
        ("remediation_status", "🔧 Remediation"),
        ("report_status", "📄 Report"),
    ]:
        status = final_state.get(key, "unknown")
        if status == "success":
            console.print(f"  [green]✅ {label}: Success[/green]")
        elif isinstance(status, str) and status.startswith("error:"):
            console.print(f"  [red]❌ {label}: {status}[/red]")
        elif isinstance(status, str) and status.startswith("skipped:"):
            console.print(f"  [yellow]⏭️  {label}: {status}[/yellow]")
        else:
            console.print(f"  [blue]ℹ️  {label}: {status}[/blue]")

    result = final_state.get("scan_result")
    if result is not None:
        table = Table(title="Findings by severity")
        table.add_column("Severity")
        table.add_column("Count", justify="right")
        for severity, count in result.count_by_severity().items():
            table.add_row(severity.display_name, str(count))
        console.print(table)

        stats = result.statistics
        console.print(
            f"  Files: {stats.get('total_files', 0)}, raw findings: {stats.get('raw_issue_count', 0)}, "
            f"duplicates removed: {stats.get('duplicates_removed', 0)}"
        )
        if "ai_filtered_count" in stats:
            console.print(f"  AI-filtered false positives: {stats['ai_filtered_count']}")
        console.print(f"  Analyzers: {', '.join(result.analyzers_used) or 'none'}")

    remediation = final_state.get("remediation_results") or []
    if remediation:
        table = Table(title="Remediation")
        table.add_column("Issue")
        table.add_column("Status")
        table.add_column("Attempts", justify="right")
        table.add_column("Quality", justify="right")
        table.add_column("Unsafe %", justify="right")
        for r in remediation:
            best = r.best_attempt.verification
            style = "green" if r.status == RemediationStatus.ACCEPTED else "yellow"
            table.add_row(r.issue_id[:8], f"[{style}]{r.status.value}[/{style}]", str(r.attempts_made),
                          f"{best.quality_score:.1f}", f"{best.unsafe_ratio:.1f}")
        console.print(table)

    if final_state.get("snapshot_path"):
        console.print(f"\n[green]💾 Snapshot: {final_state['snapshot_path']}[/green]")
    if final_state.get("remediation_path"):
        console.print(f"[green]💾 Remediation candidates: {final_state['remediation_path']}[/green]")


def run_workflow(config: ScanEngineConfig, opts: Dict[str, Any]) -> Dict[str, Any]:
    log_memory_usage("workflow start")

    state: Dict[str, Any] = {
        "config": config,
        "source_path": opts["path"],
        "out_dir": opts["out"],
        "remediate": opts.get("remediate") or 0,
        "store": IssueStore(),
    }
    # one limiter and one cache for every LLM caller in this run
    if config.ai_enabled or state["remediate"] > 0:
        state["factory"] = ProviderFactory.create_default(config)

    console.print("\n[bold blue]🚀 Starting C/C++ Security Scan[/bold blue]")
    console.print(f"[blue]📁 Codebase: {state['source_path']}[/blue]")
    console.print(f"[blue]📂 Output: {state['out_dir']}[/blue]")
    console.print(f"[blue]🔄 Level: {config.level}, threads: {config.effective_threads}, "
                  f"AI validation: {'enabled' if config.ai_enabled else 'disabled'}[/blue]")
    if state["remediate"]:
        console.print(f"[blue]🔧 Remediation: top {state['remediate']} findings -> "
                      f"{config.target_language}[/blue]")

    workflow = build_workflow_graph().compile()

    start = time.time()
    final_state = workflow.invoke(state)
    elapsed = time.time() - start

    console.print("\n[bold green]🏁 Workflow Complete![/bold green]")
    console.print(f"[green]⏱️  Total Time: {elapsed:.1f} seconds[/green]")
    console.print(f"[green]💾 Final Memory: {get_memory_usage():.1f}MB[/green]")
    print_summary(final_state)
    get_metrics().log_summary(logging.DEBUG)
    return final_state


def show_cache_stats(config: ScanEngineConfig) -> None:
    stats = PersistentCacheManager.from_config(config).stats()
    table = Table(title=f"LLM cache ({config.resolved_cache_dir})")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    for key, value in stats.items():
        table.add_row(key, f"{value:.2%}" if key == "hit_rate" else str(value))
    console.print(table)


def main(argv=None):
    try:
        opts = vars(parse_args(argv))

        if opts.get("debug"):
            logging.getLogger().setLevel(logging.DEBUG)
        elif opts.get("verbose"):
            logging.getLogger().setLevel(logging.INFO)
        elif opts.get("quiet"):
            logging.getLogger().setLevel(logging.WARNING)

        config = build_config(opts)
        command = opts["command"]

        if command == "cache-stats":
            show_cache_stats(config)
            sys.exit(0)

        if command == "cache-clear":
            removed = PersistentCacheManager.from_config(config).clear()
            console.print(f"[green]✅ Removed {removed} cached responses[/green]")
            sys.exit(0)

        if not os.path.isdir(opts["path"]):
            console.print(f"[red]❌ Not a directory: {opts['path']}[/red]")
            sys.exit(2)

        final_state = run_workflow(config, opts)
        failed = any(
            isinstance(final_state.get(key), str) and final_state[key].startswith("error:")
            for key in ("scan_status", "remediation_status", "report_status")
        )
        sys.exit(1 if failed else 0)

    except KeyboardInterrupt:
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]❌ Unexpected error: {e}[/red]")
        logger.error("Unexpected error", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
