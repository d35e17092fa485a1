import asyncio
import json

import httpx
import pytest

from review_source.core.cancellation import CancelToken
from review_source.core.errors import ReviewCancelled, StreamBusyError, TransportError
from review_source.models.review import ModelConfig
from review_source.services.ollama_service import StreamAccumulator, match_language, think_param

from conftest import ChunkedStream, ndjson


FRAMES = [
    {"message": {"thinking": "Let me "}},
    {"message": {"thinking": "look."}},
    {"message": {"content": '{"violations": ['}},
    {"message": {"content": '{"line": 1, "object": "café"}'}},
    {"message": {"content": "]}"}},
    {"message": {"content": ""}, "done": True},
]
EXPECTED_CONTENT = '{"violations": [{"line": 1, "object": "café"}]}'


def split_every(data, size):
    return [data[i:i + size] for i in range(0, len(data), size)]


def test_stream_content_is_independent_of_chunk_boundaries(make_service, model_config):
    body = ndjson(FRAMES)

    for size in (1, 2, 5, 17, len(body)):
        def handler(request, size=size):
            return httpx.Response(200, stream=ChunkedStream(split_every(body, size)))

        service = make_service(handler)
        content = asyncio.run(service.stream("system", "user", model_config))
        assert content == EXPECTED_CONTENT


def test_stream_callbacks_receive_cumulative_text(make_service, model_config):
    thinking, contents, done = [], [], []

    def handler(request):
        return httpx.Response(200, content=ndjson(FRAMES))

    service = make_service(handler)
    asyncio.run(service.stream(
        "system", "user", model_config,
        on_thinking=thinking.append,
        on_content=contents.append,
        on_done=lambda: done.append(True),
    ))

    assert thinking == ["Let me ", "Let me look."]
    assert contents[-1] == EXPECTED_CONTENT
    assert all(later.startswith(earlier) for earlier, later in zip(contents, contents[1:]))
    assert done == [True]


def test_stream_request_payload(make_service):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, content=ndjson([{"done": True}]))

    service = make_service(handler, api_key="secret")
    config = ModelConfig(name="gpt-oss:20b", model="gpt-oss:20b", think="high")
    asyncio.run(service.stream("sys", "usr", config))

    request = requests[0]
    assert request.url == "http://ollama.test/api/chat"
    assert request.headers["Authorization"] == "Bearer secret"
    assert json.loads(request.content) == {
        "model": "gpt-oss:20b",
        "messages": [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "usr"},
        ],
        "stream": True,
        "think": "high",
    }


def test_frames_after_done_are_ignored():
    done = []
    accumulator = StreamAccumulator(on_done=lambda: done.append(True))

    accumulator.feed_line('{"message": {"content": "a"}}')
    accumulator.feed_line('{"message": {"content": "b"}, "done": true}')
    accumulator.feed_line('{"message": {"content": "c"}, "done": true}')

    assert accumulator.content == "ab"
    assert done == [True]


def test_unparseable_frames_are_dropped():
    accumulator = StreamAccumulator()

    for line in ["", "   ", '{"message": {"cont', "[1, 2]", '{"message": {"content": "ok"}}']:
        accumulator.feed_line(line)

    assert accumulator.content == "ok"
    assert accumulator.frames == 1


def test_stream_writes_one_log_record(make_service, model_config, log_dir):
    def handler(request):
        return httpx.Response(200, content=ndjson(FRAMES))

    service = make_service(handler)
    asyncio.run(service.stream("system", "user", model_config))

    logs = list(log_dir.glob("*.json"))
    assert len(logs) == 1
    record = json.loads(logs[0].read_text(encoding="utf-8"))
    assert record["request"]["messages"][1]["content"] == "user"
    assert record["response"] == {"thinking": "Let me look.", "content": EXPECTED_CONTENT}


def test_transport_failure_before_any_frame(make_service, model_config, log_dir):
    def handler(request):
        raise httpx.ConnectError("connection refused")

    service = make_service(handler)
    with pytest.raises(TransportError):
        asyncio.run(service.stream("system", "user", model_config))

    assert not service.is_streaming
    assert not log_dir.exists() or not list(log_dir.glob("*.json"))


def test_http_error_status_is_a_transport_error(make_service, model_config):
    def handler(request):
        return httpx.Response(500)

    service = make_service(handler)
    with pytest.raises(TransportError) as excinfo:
        asyncio.run(service.stream("system", "user", model_config))

    assert str(excinfo.value) == "Ollama API error: Internal Server Error"
    assert excinfo.value.status_code == 500


class HangingStream(httpx.AsyncByteStream):
    """Sends one frame, then waits forever"""

    def __init__(self, first):
        self.first = first

    async def __aiter__(self):
        yield self.first
        await asyncio.Event().wait()


def test_cancel_aborts_in_flight_stream(make_service, model_config, log_dir):
    def handler(request):
        return httpx.Response(200, stream=HangingStream(ndjson([{"message": {"content": "partial"}}])))

    service = make_service(handler)

    async def scenario():
        token = CancelToken()
        first_frame = asyncio.Event()

        task = asyncio.create_task(service.stream(
            "system", "user", model_config,
            cancel_token=token,
            on_content=lambda text: first_frame.set(),
        ))
        await first_frame.wait()

        with pytest.raises(StreamBusyError):
            await service.stream("system", "user", model_config)

        token.cancel()
        with pytest.raises(ReviewCancelled):
            await task

    asyncio.run(scenario())

    assert not service.is_streaming
    # the partial exchange is still logged
    record = json.loads(next(log_dir.glob("*.json")).read_text(encoding="utf-8"))
    assert record["response"]["content"] == "partial"


def test_cancel_from_callback_stops_at_next_frame(make_service, model_config):
    def handler(request):
        return httpx.Response(200, content=ndjson(FRAMES))

    service = make_service(handler)
    token = CancelToken()
    seen = []

    def on_thinking(text):
        seen.append(text)
        token.cancel()

    with pytest.raises(ReviewCancelled):
        asyncio.run(service.stream(
            "system", "user", model_config, cancel_token=token, on_thinking=on_thinking
        ))

    assert seen == ["Let me "]


def test_cancelled_token_never_sends_request(make_service, model_config):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, content=ndjson([{"done": True}]))

    service = make_service(handler)
    token = CancelToken()
    token.cancel()

    with pytest.raises(ReviewCancelled):
        asyncio.run(service.stream("system", "user", model_config, cancel_token=token))
    assert calls == []


def test_list_models(make_service):
    def handler(request):
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": [{"name": "qwen3:8b"}, {"name": "gpt-oss:20b"}]})

    service = make_service(handler)
    assert asyncio.run(service.list_models()) == ["qwen3:8b", "gpt-oss:20b"]


def test_list_models_failure(make_service):
    def handler(request):
        return httpx.Response(404)

    service = make_service(handler)
    with pytest.raises(TransportError, match="Failed to fetch models: Not Found"):
        asyncio.run(service.list_models())


def test_chat_completion_usage(make_service, model_config):
    def handler(request):
        payload = json.loads(request.content)
        assert payload["stream"] is False
        assert "format" not in payload
        return httpx.Response(200, json={"message": {"content": "12345678"}, "eval_count": 42})

    service = make_service(handler)
    reply = asyncio.run(service.chat_completion("system", "user", model_config))

    assert reply.content == "12345678"
    assert reply.output_tokens == 42
    assert reply.response_time_ms >= 0


def test_chat_completion_estimates_tokens(make_service, model_config):
    def handler(request):
        return httpx.Response(200, json={"message": {"content": "12345678"}})

    service = make_service(handler)
    assert asyncio.run(service.chat_completion("system", "user", model_config)).output_tokens == 2


def test_detect_language(make_service, model_config):
    payloads = []

    def handler(request):
        payloads.append(json.loads(request.content))
        return httpx.Response(200, json={"message": {"content": '{"language": "VB"}'}})

    service = make_service(handler)
    language = asyncio.run(service.detect_language(
        "Dim x As Integer" * 100, ["sql", "vb"], model_config, max_chars=20
    ))

    assert language == "vb"
    assert payloads[0]["format"] == "json"
    assert payloads[0]["messages"][1]["content"] == "### SOURCE CODE:\n" + ("Dim x As Integer" * 2)[:20]


def test_detect_language_null(make_service, model_config):
    def handler(request):
        return httpx.Response(200, json={"message": {"content": '{"language": null}'}})

    service = make_service(handler)
    assert asyncio.run(service.detect_language("x", ["vb"], model_config)) is None


def test_match_language():
    assert match_language('{"language": "sql"}', ["sql", "vb"]) == "sql"
    assert match_language('{"language": "Python"}', ["sql", "vb"]) is None
    assert match_language("nonsense", ["sql"]) is None
    assert match_language('["sql"]', ["sql"]) is None


def test_think_param():
    assert think_param(ModelConfig(name="g", model="gpt-oss:20b", think="low")) == "low"
    assert think_param(ModelConfig(name="g", model="gpt-oss:20b", think=True)) is None
    assert think_param(ModelConfig(name="q", model="qwen3:8b", think=True)) is True
    assert think_param(ModelConfig(name="q", model="qwen3:8b", think=False)) is False
    assert think_param(ModelConfig(name="q", model="qwen3:8b", think="high")) is None
