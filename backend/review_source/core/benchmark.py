"""
Benchmark - scores detected issues against labeled datasets

Matching is greedy on (line, type): the object text is not compared.
"""
import math
from datetime import datetime, timezone
from typing import List, Sequence, Tuple
from loguru import logger

from ..models.benchmark import (
    BenchmarkResult,
    Dataset,
    DatasetSummary,
    ExpectedViolation,
    ModelResult,
    RunResult,
    Score,
)
from ..models.review import Issue, LanguageRuleSet, ModelConfig
from ..services.ollama_service import OllamaService
from .prompt_builder import build_system_prompt, build_user_prompt, number_lines
from .response_parser import parse_review_response


# Default model matrix
MODEL_CONFIGS = [
    ModelConfig(name="gpt-oss:20b", model="gpt-oss:20b", think="low"),
    ModelConfig(name="gpt-oss:20b", model="gpt-oss:20b", think="medium"),
    ModelConfig(name="gpt-oss:20b", model="gpt-oss:20b", think="high"),
    ModelConfig(name="qwen3:8b", model="qwen3:8b", think=False),
    ModelConfig(name="qwen3:8b", model="qwen3:8b", think=True),
]


def score(detected: Sequence[Issue], expected: Sequence[ExpectedViolation]) -> Score:
    """
    Count true/false positives and false negatives

    Each detected issue consumes the first unconsumed expected violation with
    the same line and type.
    """
    consumed = set()
    tp = fp = 0

    for issue in detected:
        for i, violation in enumerate(expected):
            if i in consumed:
                continue
            if issue.line == violation.line and issue.type == violation.type:
                consumed.add(i)
                tp += 1
                break
        else:
            fp += 1

    return Score(tp=tp, fp=fp, fn=len(expected) - len(consumed))


def metrics(run: RunResult) -> Tuple[float, float, float]:
    """Precision, recall and F1 as fractions (0 when undefined)"""
    tp, fp, fn = run.true_positives, run.false_positives, run.false_negatives
    precision = tp / (tp + fp) if tp + fp else 0.0
    recall = tp / (tp + fn) if tp + fn else 0.0
    f1 = 2 * precision * recall / (precision + recall) if precision + recall else 0.0
    return precision, recall, f1


def select_best(runs: Sequence[RunResult]) -> RunResult:
    """Run with the highest F1; the earliest wins a tie"""
    if not runs:
        raise ValueError("No runs to select from")

    best = runs[0]
    for run in runs[1:]:
        if metrics(run)[2] > metrics(best)[2]:
            best = run
    return best


def percent(value: float) -> float:
    """Fraction to a percentage rounded half-up to two decimals"""
    return math.floor(value * 10000 + 0.5) / 100


def summarize_runs(config: ModelConfig, runs: Sequence[RunResult]) -> ModelResult:
    best = select_best(runs)
    precision, recall, f1 = metrics(best)
    acc_per_token = best.true_positives / best.output_tokens if best.output_tokens else 0.0

    return ModelResult(
        model_name=config.name,
        mode=config.mode_name,
        runs=list(runs),
        best_run=best,
        precision=percent(precision),
        recall=percent(recall),
        f1_score=percent(f1),
        acc_per_token=percent(acc_per_token),
    )


class BenchmarkRunner:
    """
    Runs model configurations over labeled datasets

    Every test case is reviewed with the same deterministic prompts the
    interactive review uses, without streaming.
    """

    def __init__(self, client: OllamaService, runs_per_model: int = 1):
        self.client = client
        self.runs_per_model = max(runs_per_model, 1)

    async def run(
        self,
        configs: Sequence[ModelConfig],
        datasets: Sequence[Tuple[LanguageRuleSet, Dataset]]
    ) -> BenchmarkResult:
        total_cases = sum(len(d.test_cases) for _, d in datasets)
        total_expected = sum(d.total_expected_violations for _, d in datasets)
        logger.info(f"Total test cases: {total_cases}")
        logger.info(f"Total expected violations: {total_expected}")

        models = []
        for config in configs:
            try:
                models.append(await self.run_model(config, datasets))
            except Exception as e:
                logger.error(f"Failed to test {config.name} ({config.mode_name}): {e}")

        return BenchmarkResult(
            timestamp=datetime.now(timezone.utc).isoformat(),
            datasets=[
                DatasetSummary(
                    name=dataset.language,
                    total_cases=len(dataset.test_cases),
                    total_expected_violations=dataset.total_expected_violations,
                )
                for _, dataset in datasets
            ],
            models=models,
        )

    async def run_model(
        self,
        config: ModelConfig,
        datasets: Sequence[Tuple[LanguageRuleSet, Dataset]]
    ) -> ModelResult:
        logger.info(f"Testing {config.name} ({config.mode_name})...")

        runs: List[RunResult] = []
        for run_index in range(self.runs_per_model):
            logger.info(f"  Run {run_index + 1}/{self.runs_per_model}")
            runs.append(await self._run_once(config, datasets))

        return summarize_runs(config, runs)

    async def _run_once(
        self,
        config: ModelConfig,
        datasets: Sequence[Tuple[LanguageRuleSet, Dataset]]
    ) -> RunResult:
        totals = Score()
        total_time_ms = 0.0
        total_tokens = 0.0
        total_cases = 0

        for rule_set, dataset in datasets:
            system_prompt = build_system_prompt(dataset.language)

            for case in dataset.test_cases:
                total_cases += 1
                try:
                    user_prompt = build_user_prompt(rule_set, number_lines(case.source_code))
                    reply = await self.client.chat_completion(system_prompt, user_prompt, config)
                except Exception as e:
                    logger.error(f"    ✗ {case.id}: {e}")
                    totals.fn += len(case.expected_violations)
                    continue

                total_time_ms += reply.response_time_ms
                total_tokens += reply.output_tokens

                detected = parse_review_response(reply.content).issues
                case_score = score(detected, case.expected_violations)
                totals.tp += case_score.tp
                totals.fp += case_score.fp
                totals.fn += case_score.fn

                logger.info(
                    f"    ✓ {case.id} | TP:{case_score.tp} FP:{case_score.fp} "
                    f"FN:{case_score.fn} | {reply.response_time_ms:.0f}ms"
                )

        return RunResult(
            response_time_ms=total_time_ms / total_cases if total_cases else 0.0,
            output_tokens=total_tokens,
            output_speed_tps=total_tokens / (total_time_ms / 1000) if total_time_ms else 0.0,
            true_positives=totals.tp,
            false_positives=totals.fp,
            false_negatives=totals.fn,
        )
