"""Reusable OpenAPI docs content for pipeline behavior."""

from __future__ import annotations

import json
from typing import Any

OPENAPI_PIPELINE_GUIDE_MARKDOWN = """
## Keyword Research Pipeline Guide

A run takes seed keywords, competitor domains, a target country and a CPC
range, and produces a scored keyword list, competitor gaps and a PPC report.

### Stages

1. `expanding`: seed keywords are expanded through keyword data tools.
2. `analyzing`: competitor rankings and paid keywords are compared to find gaps.
3. `scoring`: keywords are deduplicated, scored 0-100 and tiered.
4. `reporting`: a strategist stage writes top picks, budget and next steps.

### Status Model

- Statuses only move forward: `queued -> expanding -> analyzing -> scoring -> reporting -> completed`.
- `failed` is reachable from any non-terminal status and carries a single `error` string.
- `completed` and `failed` are terminal. A failed run never carries a result.
- Poll `GET /api/v1/pipeline/runs/{run_id}` and read `status` and `stageDetail` for progress.

### Schedules

- Schedules are five-field cron expressions keyed by an external identifier.
- Each firing creates a fresh run carrying `scheduleKey`.
- Deleting a schedule only affects future firings.
"""

_PIPELINE_GUIDE_JSON_OBJECT: dict[str, Any] = {
    "statuses": ["queued", "expanding", "analyzing", "scoring", "reporting", "completed", "failed"],
    "terminal_statuses": ["completed", "failed"],
    "tiers": ["sweet-spot", "high-value", "monitor", "low-priority"],
    "gap_types": ["organic-only", "low-competition-high-intent", "untapped"],
    "supported_countries": ["GB", "US", "DE", "AU", "CA", "FR"],
    "polling": {
        "endpoint": "/api/v1/pipeline/runs/{run_id}",
        "progress_fields": ["status", "stageDetail"],
    },
}

OPENAPI_PIPELINE_GUIDE_JSON = json.dumps(
    _PIPELINE_GUIDE_JSON_OBJECT,
    indent=2,
    sort_keys=True,
)

PIPELINE_TAG_DESCRIPTION = """
Endpoints for submitting and observing keyword research runs.

- `POST /runs` queues a run and returns its job id.
- `GET /runs/{run_id}` returns status, stage detail and, once completed, the result.
- `/schedules` manages recurring runs keyed by an external identifier.
"""

PIPELINE_RUN_EXAMPLES: dict[str, dict[str, Any]] = {
    "minimal": {
        "summary": "Minimal run",
        "description": "One seed keyword and two competitors in the UK market.",
        "value": {
            "seedKeywords": ["ap automation"],
            "targetCountry": "GB",
            "competitors": ["bill.com", "tipalti.com"],
            "cpcRange": {"min": 2, "max": 6},
        },
    },
    "with_product": {
        "summary": "Run with product context",
        "description": "Product details steer the strategist's top picks and next steps.",
        "value": {
            "seedKeywords": ["invoice processing software", "accounts payable automation"],
            "targetCountry": "US",
            "competitors": ["stampli.com", "avidxchange.com"],
            "cpcRange": {"min": 3, "max": 8},
            "productId": "prod_ap_suite",
            "product": {
                "name": "AP Suite",
                "description": "Accounts payable automation for mid-market finance teams",
                "target": "Finance controllers",
                "integrations": "Xero, QuickBooks, NetSuite",
            },
        },
    },
}

PIPELINE_RUN_OPENAPI_EXTRA = {
    "requestBody": {
        "content": {
            "application/json": {
                "examples": PIPELINE_RUN_EXAMPLES,
            }
        }
    }
}
