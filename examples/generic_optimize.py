# filename: examples/generic_optimize.py
import sys
import asyncio
import logging
import pathlib

# --- Path Setup ---
package_path = pathlib.Path(__file__).absolute().parent.parent
sys.path.append(str(package_path))
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(name)s - %(message)s')
logger = logging.getLogger(__name__)

from qforge import RLOptimizer, OptimizationConfig, QLearningConfig, Objective

KEYWORDS = ("deadline", "budget", "owner")


def draft_generator(objective, context, previous_candidate, feedback):
    """同步生成器：根据反馈补充缺失的关键词 (Sync generator that adds the missing keyword)"""
    if previous_candidate is None:
        return "Project status: on track."
    if feedback is not None and feedback.code == "MISSING_KEYWORD":
        return f"{previous_candidate} {feedback.fix}."
    return previous_candidate


def keyword_evaluator(candidate, analysis, objective):
    for keyword in KEYWORDS:
        if keyword not in str(candidate).lower():
            return {"passed": False,
                    "feedback": {"code": "MISSING_KEYWORD", "message": f"No {keyword}", "fix": f"Mention the {keyword}"}}
    return {"passed": True}


async def main():
    config = OptimizationConfig(q_learning=QLearningConfig(epsilon=0.0, max_iterations=8), use_live_monitor=True)
    optimizer = RLOptimizer(generator=draft_generator, evaluator=keyword_evaluator, config=config)

    objective = Objective.from_dict({
        "intent": "Write a one-line project status update",
        "scope": {},
        "constraints": {"must_include": list(KEYWORDS)},
        "expected_type": "str",
    })
    result = await optimizer.optimize(objective)

    logger.info(f"Converged: {result.converged} after {result.iterations} iterations")
    logger.info(f"Candidate: {result.candidate}")
    for log in result.iteration_log:
        logger.info(f"  {log.iteration}: {log.action} -> reward {log.reward.total:.1f}")


if __name__ == "__main__":
    asyncio.run(main())
