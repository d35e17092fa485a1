"""
Benchmark runner for code review models

Usage:
    review-source-benchmark --pair TestData/rules/vb.md TestData/datasets/vb-dataset.json

Progress goes to stderr, the BenchmarkResult JSON to stdout.
"""
import asyncio
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Tuple
from loguru import logger

from ..config import settings
from ..core.benchmark import MODEL_CONFIGS, BenchmarkRunner
from ..models.benchmark import BenchmarkResult, Dataset
from ..models.review import LanguageRuleSet, ModelConfig
from ..services.ollama_service import OllamaService
from .rule_converter import load_rule_set


def load_dataset(path: str) -> Dataset:
    return Dataset.model_validate_json(Path(path).read_text(encoding='utf-8'))


def parse_model(value: str) -> ModelConfig:
    """
    Parse "model[@think]"

    think is low/medium/high, on/off, or omitted (off).
    """
    model, _, think = value.partition("@")
    think = think.strip().lower()

    if think in ("low", "medium", "high"):
        level = think
    elif think in ("", "off", "false", "no"):
        level = False
    elif think in ("on", "true", "yes"):
        level = True
    else:
        raise ValueError(f"Unknown think mode: {think}")

    return ModelConfig(name=model, model=model, think=level)


async def run_benchmark(
    pairs: Sequence[Tuple[str, str]],
    configs: Sequence[ModelConfig],
    runs: int,
    host: Optional[str] = None
) -> BenchmarkResult:
    datasets: List[Tuple[LanguageRuleSet, Dataset]] = []
    for rules_path, dataset_path in pairs:
        dataset = load_dataset(dataset_path)
        datasets.append((load_rule_set(rules_path, dataset.language), dataset))

    client = OllamaService(host=host)
    runner = BenchmarkRunner(client, runs_per_model=runs)
    return await runner.run(configs, datasets)


def main(argv=None):
    """Command-line entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="Benchmark code review models")
    parser.add_argument(
        "--pair", nargs=2, action="append", required=True,
        metavar=("RULES", "DATASET"),
        help="rule set (.json or .md) and dataset (.json); repeatable"
    )
    parser.add_argument(
        "--model", action="append", dest="models",
        help="model[@think], e.g. qwen3:8b@on or gpt-oss:20b@high; repeatable"
    )
    parser.add_argument("--runs", type=int, default=settings.benchmark_runs, help="runs per model")
    parser.add_argument("--host", default=settings.ollama_host, help="Ollama host")

    args = parser.parse_args(argv)

    logger.remove()
    logger.add(sys.stderr, level="INFO", format="{message}")

    configs = [parse_model(m) for m in args.models] if args.models else MODEL_CONFIGS

    result = asyncio.run(run_benchmark(args.pair, configs, args.runs, args.host))
    print(result.model_dump_json(by_alias=True, indent=2))


if __name__ == "__main__":
    main()
