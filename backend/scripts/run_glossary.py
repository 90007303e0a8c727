"""Run the glossary pipeline directly (no arq worker or Redis needed).

Usage:
    cd backend
    GEMINI_API_KEY=<key> python scripts/run_glossary.py extract novel.txt -o glossary.json
    GEMINI_API_KEY=<key> python scripts/run_glossary.py reconsolidate glossary.json -o out.json
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path

from storyglossary.config import settings
from storyglossary.core.exceptions import GlossaryError
from storyglossary.core.logging import setup_logging
from storyglossary.llm.providers import get_oracle
from storyglossary.repositories.project_repo import InMemoryProjectRepository
from storyglossary.schemas.project import ProjectRecord
from storyglossary.services.accumulator import GlossaryAccumulator
from storyglossary.services.pipeline import GlossaryPipeline


def _pipeline(args: argparse.Namespace, repo: InMemoryProjectRepository) -> GlossaryPipeline:
    return GlossaryPipeline(
        get_oracle(args.model or settings.llm_extraction),
        repo,
        chunk_size=getattr(args, "chunk_size", None),
        consolidation_oracle=get_oracle(args.consolidation_model or settings.llm_consolidation),
    )


def _write_snapshot(glossary: dict, out: Path) -> GlossaryAccumulator:
    accumulator = GlossaryAccumulator.from_snapshot(glossary)
    out.write_text(accumulator.export_json(), encoding="utf-8")
    return accumulator


async def run_extract(args: argparse.Namespace) -> None:
    text = Path(args.source).read_text(encoding="utf-8")
    project_id = args.project_id or Path(args.source).stem
    repo = InMemoryProjectRepository()

    t0 = time.time()
    result = await _pipeline(args, repo).run(
        project_id,
        text,
        args.lang,
        consolidate_arcs=not args.no_consolidate,
        name=project_id,
    )
    record = await repo.get(project_id)
    accumulator = _write_snapshot(record.glossary, Path(args.out))

    print(f"\n{'='*60}")
    print(f"EXTRACTION COMPLETE ({time.time() - t0:.1f}s)")
    print(f"  Chunks processed: {result.processed_chunks}/{result.total_chunks}")
    print(f"  Fallback chunks:  {result.fallback_chunks}")
    print(f"  Consolidated:     {result.consolidated}")
    print(f"  Arcs:             {len(accumulator.arcs)}")
    print(f"  Characters:       {len(accumulator.characters)}")
    print(f"  Snapshot:         {args.out}")
    print(f"{'='*60}\n")


async def run_reconsolidate(args: argparse.Namespace) -> None:
    source = GlossaryAccumulator()
    source.import_json(Path(args.snapshot).read_text(encoding="utf-8"))

    repo = InMemoryProjectRepository()
    project_id = Path(args.snapshot).stem
    await repo.save(ProjectRecord(id=project_id, name=project_id, glossary=source.serialize()))

    result = await _pipeline(args, repo).reconsolidate(project_id)
    record = await repo.get(project_id)
    accumulator = _write_snapshot(record.glossary, Path(args.out))

    print(f"Arcs: {len(source.arcs)} -> {len(accumulator.arcs)} (consolidated={result.consolidated})")
    print(f"Snapshot: {args.out}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Story glossary extraction")
    parser.add_argument("--model", help="Extraction oracle as provider:model")
    parser.add_argument("--consolidation-model", help="Consolidation oracle as provider:model")
    sub = parser.add_subparsers(dest="command", required=True)

    extract = sub.add_parser("extract", help="Extract a glossary from a text file")
    extract.add_argument("source", help="UTF-8 text file")
    extract.add_argument("-o", "--out", default="glossary.json")
    extract.add_argument("--lang", default=settings.default_target_language)
    extract.add_argument("--project-id")
    extract.add_argument("--chunk-size", type=int)
    extract.add_argument("--no-consolidate", action="store_true")

    recon = sub.add_parser("reconsolidate", help="Replay an exported snapshot and consolidate")
    recon.add_argument("snapshot", help="Exported glossary JSON")
    recon.add_argument("-o", "--out", default="glossary.consolidated.json")
    return parser


async def main() -> None:
    args = build_parser().parse_args()
    setup_logging(log_level=settings.log_level, log_format="console")
    try:
        if args.command == "extract":
            await run_extract(args)
        else:
            await run_reconsolidate(args)
    except GlossaryError as exc:
        print(f"error: {exc.detail}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
