import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
BACKEND = ROOT / "backend"
sys.path.insert(0, str(BACKEND))

import httpx  # noqa: E402
import pytest  # noqa: E402

from review_source.core.review_logger import ReviewLogger  # noqa: E402
from review_source.models.review import ModelConfig  # noqa: E402
from review_source.services.ollama_service import OllamaService  # noqa: E402

HOST = "http://ollama.test"

VB_RULES = """# VB rules

## Critical
1. Avoid GoTo
Description: GoTo makes control flow hard to follow
Target: GoTo statements

## Warning
1. Use Option Explicit
Description: Every module declares Option Explicit
"""


def ndjson(frames):
    return "".join(json.dumps(frame) + "\n" for frame in frames).encode("utf-8")


def review_frames(violations, thinking="checking"):
    content = json.dumps({"violations": violations})
    half = len(content) // 2
    return [
        {"message": {"role": "assistant", "thinking": thinking, "content": ""}},
        {"message": {"role": "assistant", "content": content[:half]}},
        {"message": {"role": "assistant", "content": content[half:]}},
        {"message": {"role": "assistant", "content": ""}, "done": True},
    ]


class ChunkedStream(httpx.AsyncByteStream):
    def __init__(self, chunks):
        self.chunks = chunks

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk


@pytest.fixture
def model_config():
    return ModelConfig(name="qwen3:8b", model="qwen3:8b", think=False)


@pytest.fixture
def log_dir(tmp_path):
    return tmp_path / "logs"


@pytest.fixture
def make_service(log_dir):
    def factory(handler, api_key=""):
        return OllamaService(
            host=HOST,
            api_key=api_key,
            request_logger=ReviewLogger(str(log_dir)),
            transport=httpx.MockTransport(handler),
        )

    return factory


@pytest.fixture
def rules_dir(tmp_path):
    directory = tmp_path / "rules"
    directory.mkdir()
    (directory / "vb.md").write_text(VB_RULES, encoding="utf-8")
    (directory / "sql.md").write_text(
        "## Critical\n1. No SELECT *\nDescription: List the columns\nTarget: SELECT statements\n",
        encoding="utf-8",
    )
    return directory
