"""Sample data for development databases."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import structlog

from prompt_ops.core.cases import TestCaseStore
from prompt_ops.core.errors import PromptOpsError
from prompt_ops.core.maintenance import MaintenanceReport
from prompt_ops.core.recorder import TestResultRecorder
from prompt_ops.core.registry import PromptRegistry
from prompt_ops.db.client import StoreClient
from prompt_ops.utils.timeutils import utcnow

logger = structlog.get_logger()

SAMPLE_PROMPTS: list[dict[str, Any]] = [
    {
        "name": "sequence-generator",
        "agent_type": "generator",
        "diagram_type": ["sequence"],
        "operation": "generation",
        "template": (
            "You are a PlantUML expert. Create a sequence diagram for: {{user_input}}\n"
            "Return only the @startuml ... @enduml block."
        ),
        "tags": ["plantuml", "sequence"],
    },
    {
        "name": "class-modifier",
        "agent_type": "modifier",
        "diagram_type": ["class"],
        "operation": "modification",
        "template": (
            "Modify the class diagram below as requested.\n"
            "Diagram:\n{{current_diagram}}\nRequest: {{user_input}}"
        ),
        "tags": ["plantuml", "class"],
    },
    {
        "name": "intent-classifier",
        "agent_type": "classifier",
        "diagram_type": ["unknown"],
        "operation": "intent-classification",
        "template": (
            "Classify the intent of this message as GENERATE, MODIFY or ANALYZE: {{user_input}}"
        ),
        "tags": ["routing"],
    },
]

SAMPLE_CASE = {
    "name": "Basic request",
    "vars": {
        "user_input": "A user logs in to a web shop",
        "current_diagram": "@startuml\n@enduml",
    },
    "assertions": [
        {"type": "contains", "value": "@startuml"},
        {"type": "llm-rubric", "rubric": "Output is valid PlantUML", "threshold": 0.7},
    ],
}


def seed_sample_data(db: StoreClient, results_per_case: int = 5) -> MaintenanceReport:
    """Create the sample prompts with one test case and a few results each.

    Prompts that already exist by name are skipped, so the seed can be re-run.
    """
    report = MaintenanceReport(
        operation="seed", counts={"created": 0, "skipped": 0, "errored": 0}
    )
    registry = PromptRegistry(db)
    cases = TestCaseStore(db)
    recorder = TestResultRecorder(db)
    now = utcnow()

    for sample in SAMPLE_PROMPTS:
        if registry.get_prompt_by_name(sample["name"]):
            report.counts["skipped"] += 1
            report.messages.append(f"Prompt {sample['name']} already exists")
            continue
        try:
            prompt = registry.create_prompt(**sample)
            case = cases.create_test_case(prompt_id=prompt["id"], **SAMPLE_CASE)
            for i in range(results_per_case):
                success = i % 4 != 3
                recorder.record(
                    case["id"],
                    prompt["id"],
                    prompt["primary_version"],
                    {
                        "success": success,
                        "score": 0.9 if success else 0.3,
                        "latency_ms": 400 + 150 * i,
                        "tokens_used": 250 + 10 * i,
                        "cost": 0.0005 * (i + 1),
                        "response": "@startuml\n@enduml" if success else "",
                        "error": None if success else "Assertion failed: contains @startuml",
                        "metadata": {
                            "provider": "openai",
                            "model": "gpt-4o-mini",
                            "temperature": 0.2,
                            "timestamp": now - timedelta(minutes=10 * i),
                            "environment": "development",
                        },
                    },
                )
        except PromptOpsError as e:
            report.counts["errored"] += 1
            report.errors.append(f"{sample['name']}: {e}")
            logger.warning("seed.prompt_failed", name=sample["name"], error=str(e))
            continue
        report.counts["created"] += 1

    logger.info("seed.complete", **report.counts)
    return report
