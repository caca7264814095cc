#!/usr/bin/env python3
"""CLI utility to align a project's prompt graph with a transcript set."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from backend.app.config import AppConfig, ConfigError, load_config
from backend.app.contracts import AlignmentReport
from backend.app.orchestration import build_orchestrator
from backend.app.storage import StorageError, create_session_factory, init_schema


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command line arguments for the alignment runner.

    Returns:
        argparse.Namespace: Parsed command line arguments.
    """
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("project_id", help="Project whose prompt nodes are aligned")
    parser.add_argument("transcript_set_id", help="Transcript set providing observed flows")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute the report without replacing stored alignments",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.yaml (default: repository config.yaml)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full report as JSON instead of a summary",
    )
    return parser.parse_args(argv)


async def run(config: AppConfig, project_id: str, transcript_set_id: str, *, persist: bool) -> AlignmentReport:
    """Run one alignment against the configured database."""

    engine, session_factory = create_session_factory(config.storage)
    try:
        await init_schema(engine)
        orchestrator = build_orchestrator(config, session_factory)
        return await orchestrator.run_alignment(project_id, transcript_set_id, persist=persist)
    finally:
        await engine.dispose()


def format_summary(report: AlignmentReport) -> str:
    """Render a short human readable summary of a report."""

    lines = [
        f"Alignment for project {report.project_id} against transcript set {report.transcript_set_id}",
        f"prompt_nodes={report.prompt_node_count} canonical_nodes={report.canonical_node_count} "
        f"persisted={report.persisted_count}",
        f"covered={report.counts.covered} overconstrained={report.counts.overconstrained} "
        f"uncovered={report.counts.uncovered}",
    ]
    for item in report.items:
        lines.append(f"  [{item.status.value}] {item.prompt_label or item.prompt_node_id}: {item.reason}")
    return "\n".join(lines)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for the alignment CLI.

    Returns:
        int: Exit status code where ``0`` indicates success.
    """
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    try:
        report = asyncio.run(
            run(config, args.project_id, args.transcript_set_id, persist=not args.dry_run)
        )
    except StorageError as exc:
        print(f"Alignment failed: {exc}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(report.model_dump(mode="json"), indent=2))
    else:
        print(format_summary(report))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
