"""Tests for the run_pipeline CLI helpers."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from app.config import settings
from app.core.exceptions import PipelineInputValidationError
from app.schemas.keyword import PipelineMetadata, PipelineResult, PipelineSummary
from scripts import run_pipeline


def test_parse_args_defaults_to_ap_automation_market() -> None:
    args = run_pipeline.parse_args([])

    assert args.seeds == list(run_pipeline.DEFAULT_SEEDS)
    assert args.competitors == list(run_pipeline.DEFAULT_COMPETITORS)
    assert args.country == "GB"
    assert (args.cpc_min, args.cpc_max) == (3.0, 8.0)
    assert args.product is None


def test_build_job_input_splits_lists_and_attaches_product() -> None:
    args = run_pipeline.parse_args(
        [
            "--seeds", "ap automation, , invoice capture",
            "--competitors", "Bill.com,tipalti.com",
            "--country", "us",
            "--cpc-min", "2",
            "--cpc-max", "6.5",
            "--product", "Ledgerly",
            "--product-integrations", "Xero, QuickBooks",
        ]
    )

    job = run_pipeline.build_job_input(args)

    assert job.seed_keywords == ["ap automation", "invoice capture"]
    assert job.competitors == ["bill.com", "tipalti.com"]
    assert job.target_country == "US"
    assert (job.cpc_range.min, job.cpc_range.max) == (2.0, 6.5)
    assert job.product is not None
    assert job.product.name == "Ledgerly"
    assert job.product.integrations == "Xero, QuickBooks"


def test_build_job_input_rejects_inverted_cpc_range() -> None:
    args = run_pipeline.parse_args(["--cpc-min", "9", "--cpc-max", "4"])

    with pytest.raises(PipelineInputValidationError):
        run_pipeline.build_job_input(args)


def test_results_path_uses_filesystem_safe_timestamp(tmp_path: Path) -> None:
    now = datetime(2026, 10, 17, 9, 30, 5, 123000, tzinfo=timezone.utc)

    path = run_pipeline.results_path(tmp_path, now)

    assert path == tmp_path / "pipeline-results-2026-10-17T09-30-05-123000+00-00.json"


@pytest.mark.asyncio
async def test_async_main_exits_when_credentials_missing(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setattr(settings, "dataforseo_login", None)
    monkeypatch.setattr(settings, "dataforseo_password", "secret")
    monkeypatch.setattr(settings, "openai_api_key", "sk-test")

    exit_code = await run_pipeline.async_main([])

    assert exit_code == 1
    assert "DATAFORSEO_LOGIN required" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_async_main_writes_result_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(settings, "dataforseo_login", "login")
    monkeypatch.setattr(settings, "dataforseo_password", "secret")
    monkeypatch.setattr(settings, "openai_api_key", "sk-test")
    executed: list[str] = []

    class _FakeOrchestrator:
        def __init__(self, store) -> None:
            self.store = store

        async def execute(self, run_id: str) -> PipelineResult:
            run = await self.store.get(run_id)
            executed.append(run.config.target_country)
            return PipelineResult(
                keywords=[],
                gaps=[],
                summary=PipelineSummary(market_opportunity="Narrow"),
                metadata=PipelineMetadata(
                    country=run.config.target_country,
                    seed_keywords=run.config.seed_keywords,
                    competitors=run.config.competitors,
                    timestamp="2026-10-17T09:00:00+00:00",
                    duration=12,
                ),
            )

    monkeypatch.setattr(run_pipeline, "PipelineOrchestrator", _FakeOrchestrator)

    exit_code = await run_pipeline.async_main(["--country", "de", "--output-dir", str(tmp_path)])

    assert exit_code == 0
    assert executed == ["DE"]
    [written] = list(tmp_path.glob("pipeline-results-*.json"))
    payload = json.loads(written.read_text(encoding="utf-8"))
    assert payload["metadata"]["country"] == "DE"
    assert payload["summary"]["marketOpportunity"] == "Narrow"
