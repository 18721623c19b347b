"""Incident Triage Agent: main entry point.

Answers a scenario's incident question against its simulated logs.
"""

from __future__ import annotations

import asyncio
import sys
import time
from pathlib import Path

from triage.agents.formatting import format_answer
from triage.core.config import get_settings
from triage.core.errors import ContractViolation
from triage.core.logging import configure_logging, get_logger
from triage.data import scenarios
from triage.graph.triage import TriagePipeline
from triage.llm.client import build_llm_client
from triage.retrieval.code import LocalCodeSearcher
from triage.retrieval.memory import InMemoryObservabilityPlatform


async def run_triage(scenario: str = "expiration_queue_stall", seed: int = 42) -> None:
    """Run the full triage pipeline for the given scenario."""
    configure_logging()
    logger = get_logger("main")
    settings = get_settings()

    if not settings.groq_api_key:
        logger.error("missing_api_key", msg="Set TRIAGE_GROQ_API_KEY in .env file")
        sys.exit(1)

    data = scenarios.generate(scenario, seed=seed)
    logger.info("scenario_ready", scenario=scenario, seed=seed, logs=len(data.logs), model=settings.groq_model)

    if not settings.known_services:
        settings.known_services = data.services

    code_searcher = None
    if Path(settings.repo_path).is_dir():
        code_searcher = LocalCodeSearcher(settings.repo_path)

    pipeline = TriagePipeline(
        build_llm_client(settings),
        InMemoryObservabilityPlatform(data.logs),
        code_searcher=code_searcher,
        settings=settings,
    )

    start_time = time.monotonic()
    try:
        answer = await pipeline.run(data.question, now=data.incident_time)
    except ContractViolation as e:
        print(f"\nERROR: answer generation failed: {e}")
        sys.exit(2)
    elapsed = time.monotonic() - start_time

    print("\n" + "=" * 70)
    print("  TRIAGE ANSWER")
    print("=" * 70)
    print(f"\n  Answer ID: {answer.id}")
    print(f"  Question: {data.question}")
    print(f"  Duration: {elapsed:.1f}s")
    print(f"  Steps: {len(answer.steps)}")
    if answer.error:
        print(f"  Error: {answer.error}")

    print("\n" + format_answer(answer))

    print("\n" + "=" * 70)
    print(answer.response or "(no response)")
    print("=" * 70)


def main() -> None:
    """CLI entry point."""
    scenario = sys.argv[1] if len(sys.argv) > 1 else "expiration_queue_stall"
    seed = int(sys.argv[2]) if len(sys.argv) > 2 else 42

    available = scenarios.available_scenarios()
    if scenario not in available:
        print(f"Unknown scenario: {scenario}")
        print(f"Available: {available}")
        sys.exit(1)

    asyncio.run(run_triage(scenario=scenario, seed=seed))


if __name__ == "__main__":
    main()
