# filename: examples/sql_optimize.py
import sys
import pprint
import asyncio
import logging
import pathlib
import random

# --- Path Setup ---
package_path = pathlib.Path(__file__).absolute().parent.parent
sys.path.append(str(package_path))
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(name)s - %(message)s')
logger = logging.getLogger(__name__)

# --- Environment Loading ---
from dotenv import load_dotenv, find_dotenv

env_path = find_dotenv()
if env_path:
    load_dotenv(dotenv_path=env_path, override=True)
    logger.info(f"Loaded .env file from: {env_path}")

# --- Imports from qforge ---
from qforge import (
    RLOptimizer,
    OptimizationConfig,
    QLearningConfig,
    Feedback,
    create_sql_strategy,
)

OUTPUT_DIR = package_path / "examples" / "output"


class FlakySqlGenerator:
    """
    模拟的 SQL 生成器：先给出缺少过滤条件的查询，收到反馈后修正；偶尔会失败。

    Simulated SQL generator: first returns a query without the filter, fixes it once it
    receives feedback, and occasionally fails like a remote service would.
    """

    def __init__(self, failure_rate: float = 0.2, seed: int = 7):
        self.failure_rate = failure_rate
        self.rng = random.Random(seed)

    async def __call__(self, objective, context, previous_candidate, feedback: Feedback = None) -> str:
        await asyncio.sleep(0.01)
        if self.rng.random() < self.failure_rate:
            raise ConnectionError("generator service unavailable")

        table = (context or {}).get("table", "transactions")
        if feedback is None:
            return f"SELECT * FROM {table}"
        logger.info(f"Generator received feedback {feedback.code}: {feedback.fix}")
        if feedback.code == "MISSING_FILTER_FIELD":
            values = ", ".join(f"'{v}'" for f in objective.scope.filters for v in f.values)
            field = objective.scope.filters[0].field
            return f"SELECT * FROM {table} WHERE {field} IN ({values})" if "," in values \
                else f"SELECT * FROM {table} WHERE {field} = {values}"
        return previous_candidate or f"SELECT * FROM {table}"


async def run_sql_optimization():
    """运行 SQL 策略的演示 (Run the SQL strategy demo)"""
    config = OptimizationConfig(
        q_learning=QLearningConfig(epsilon=0.1, max_iterations=6),
        generator_max_retries=1,
        generator_retry_delay=0.1,
        q_table_path=str(OUTPUT_DIR / "q_table.json"),
        experiences_path=str(OUTPUT_DIR / "experiences.json"),
        use_live_monitor=False,
        tracker_config={"experiment_name": "sql_demo", "save_dir": str(OUTPUT_DIR / "sessions")},
    )
    optimizer = RLOptimizer(
        generator=FlakySqlGenerator(),
        strategy=create_sql_strategy(),
        config=config,
    )

    objective = {
        "intent": "Show me all coffee transactions",
        "scope": {"filters": [{"field": "category", "value": "Coffee"}]},
        "constraints": {"dataSource": "transactions"},
    }

    result = await optimizer.optimize(objective, context={"table": "transactions"})

    logger.info("--- Result ---")
    logger.info(f"Final SQL: {result.candidate}")
    pprint.pprint(result.get_summary())

    # 模拟真实执行后回填奖励 (Feed back real execution metrics)
    if result.iteration_log:
        last = result.iteration_log[-1]
        optimizer.update_from_execution(last.experience_id, {"execution_time_ms": 35, "row_count": 12})

    pprint.pprint(optimizer.get_statistics()["q_table"])


if __name__ == "__main__":
    asyncio.run(run_sql_optimization())
