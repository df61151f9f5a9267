import asyncio
import os
import sys

sys.path.insert(0, ".")

from backend.config import REASONING_TIERS
from backend.orchestrator import AnswerOrchestrator


async def main():
    question = os.getenv("SMOKE_QUESTION", "Solve for x: 2x + 6 = 14. Show your steps.")
    tier = os.getenv("SMOKE_TIER", "fast")
    models = [m for m in os.getenv("SMOKE_MODELS", "").split(",") if m.strip()] or REASONING_TIERS[tier]
    language = os.getenv("SMOKE_LANGUAGE", "English")

    print(f"Asking {', '.join(models)} ({language}): {question}\n")
    orchestrator = AnswerOrchestrator(question, [], [], models, language=language)

    async for envelope in orchestrator.stream():
        event_type = envelope["type"]
        model_id = envelope.get("modelId", "")
        if event_type == "start":
            print(f"[{model_id}] started ({envelope['modelName']})")
        elif event_type == "reasoning_summary_start":
            print(f"[{model_id}] reasoning...")
        elif event_type in ("done", "error"):
            detail = f": {envelope['error']}" if event_type == "error" else ""
            print(f"[{model_id}] {event_type}{detail}")
        elif event_type == "complete":
            print("\nAll models finished.")

    for model_id in orchestrator.model_ids:
        print(f"\n===== {model_id} ({orchestrator.statuses[model_id]}) =====")
        reasoning = orchestrator.reasoning.get(model_id)
        if reasoning:
            print(f"--- reasoning ---\n{reasoning}\n--- answer ---")
        print(orchestrator.answers.get(model_id, "(no answer)"))


if __name__ == "__main__":
    asyncio.run(main())
