"""
Benchmark data models (camelCase on the wire)
"""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import List

from .review import IssueType


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=()
    )


class ExpectedViolation(_CamelModel):
    """A labeled violation in a test case"""
    line: int
    object: str = ""
    type: IssueType
    rule: str = ""


class TestCase(_CamelModel):
    __test__ = False  # not a pytest class

    id: str
    category: str = ""
    source_code: str
    expected_violations: List[ExpectedViolation] = []


class Dataset(_CamelModel):
    language: str
    test_cases: List[TestCase] = []

    @property
    def total_expected_violations(self) -> int:
        return sum(len(case.expected_violations) for case in self.test_cases)


class Score(BaseModel):
    """Raw match counters for one comparison"""
    tp: int = 0
    fp: int = 0
    fn: int = 0


class RunResult(_CamelModel):
    """One benchmark execution's raw counters"""
    response_time_ms: float = 0
    output_tokens: float = 0
    output_speed_tps: float = 0
    true_positives: int = 0
    false_positives: int = 0
    false_negatives: int = 0


class ModelResult(_CamelModel):
    model_name: str
    mode: str
    runs: List[RunResult]
    best_run: RunResult
    precision: float
    recall: float
    f1_score: float
    acc_per_token: float


class DatasetSummary(_CamelModel):
    name: str
    total_cases: int
    total_expected_violations: int


class BenchmarkResult(_CamelModel):
    timestamp: str
    datasets: List[DatasetSummary]
    models: List[ModelResult]
