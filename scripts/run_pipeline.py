"""Run one keyword research pipeline in-process and save the result as JSON."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from app.config import settings
from app.core.logging import setup_logging
from app.repositories.memory import InMemoryPipelineRunStore
from app.schemas.pipeline import PipelineJobInput
from app.services.pipeline_orchestrator import PipelineOrchestrator
from app.services.pipeline_service import parse_job_input

logger = logging.getLogger(__name__)

DEFAULT_SEEDS = (
    "accounts payable automation",
    "invoice processing software",
    "AP automation",
    "purchase order automation",
    "invoice matching software",
)
DEFAULT_COMPETITORS = ("bill.com", "tipalti.com", "stampli.com", "avidxchange.com")


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Build CLI parser."""
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--seeds", type=_split_csv, default=list(DEFAULT_SEEDS), help="Comma-separated seed keywords")
    parser.add_argument(
        "--competitors",
        type=_split_csv,
        default=list(DEFAULT_COMPETITORS),
        help="Comma-separated competitor domains",
    )
    parser.add_argument("--country", default="GB", help="ISO country code (default: GB)")
    parser.add_argument("--cpc-min", type=float, default=3.0, help="Target CPC range minimum")
    parser.add_argument("--cpc-max", type=float, default=8.0, help="Target CPC range maximum")
    parser.add_argument("--product", help="Product name to steer the strategy report")
    parser.add_argument("--product-desc", default="", help="Product description")
    parser.add_argument("--product-target", help="Product target audience")
    parser.add_argument("--product-integrations", help="Product integrations")
    parser.add_argument(
        "--output-dir",
        default=".",
        help="Directory for pipeline-results-<timestamp>.json (default: cwd)",
    )
    return parser.parse_args(argv)


def build_job_input(args: argparse.Namespace) -> PipelineJobInput:
    """Turn CLI arguments into a validated job input."""
    payload: dict[str, object] = {
        "seed_keywords": args.seeds,
        "target_country": args.country,
        "competitors": args.competitors,
        "cpc_range": {"min": args.cpc_min, "max": args.cpc_max},
    }
    if args.product:
        payload["product"] = {
            "name": args.product,
            "description": args.product_desc,
            "target": args.product_target,
            "integrations": args.product_integrations,
        }
    return parse_job_input(payload)


def results_path(output_dir: Path, now: datetime | None = None) -> Path:
    stamp = (now or datetime.now(timezone.utc)).isoformat().replace(":", "-").replace(".", "-")
    return output_dir / f"pipeline-results-{stamp}.json"


async def async_main(argv: list[str] | None = None) -> int:
    """Validate inputs, execute the pipeline and write the result file."""
    setup_logging()
    args = parse_args(argv)

    missing = settings.missing_pipeline_credentials()
    if missing:
        print(f"ERROR: {', '.join(missing)} required for pipeline execution.", file=sys.stderr)
        print("Set them in your .env file or export them in your shell.", file=sys.stderr)
        return 1

    job = build_job_input(args)
    print("Pipeline configuration:")
    print(f"  Country:     {job.target_country}")
    print(f"  Seeds:       {', '.join(job.seed_keywords)}")
    print(f"  Competitors: {', '.join(job.competitors)}")
    print(f"  CPC range:   {job.cpc_range.min}-{job.cpc_range.max}")
    if job.product:
        print(f"  Product:     {job.product.name}")

    store = InMemoryPipelineRunStore()
    run = await store.create(job)
    result = await PipelineOrchestrator(store).execute(run.id)
    if result is None:
        return 1

    out_file = results_path(Path(args.output_dir))
    out_file.write_text(json.dumps(result.to_json_dict(), indent=2), encoding="utf-8")
    summary = result.summary
    print(
        f"\n{summary.total_keywords_found} keywords, {summary.sweet_spot_count} sweet-spot, "
        f"{summary.competitor_gaps} competitor gaps. Top keyword: {summary.top_keyword}"
    )
    print(f"Results saved to: {out_file}")
    return 0


def main() -> int:
    """Sync wrapper."""
    try:
        return asyncio.run(async_main())
    except Exception:
        logger.exception("Pipeline failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
