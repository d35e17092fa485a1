"""
API routes - code review
"""
import asyncio
import json
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set
from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from loguru import logger

from ..config import settings
from ..core.cancellation import CancelToken
from ..core.errors import DetectionFailure, ReviewCancelled, ReviewError, StreamBusyError, TransportError
from ..core.highlighter import highlight, highlight_lines
from ..core.response_parser import issues_to_wire
from ..core.review_logger import ReviewLogger
from ..core.review_pipeline import ReviewObserver, ReviewPipeline, summarize
from ..core.rule_store import RuleStore
from ..core.source_loader import SourceFile, read_folder
from ..models.review import DETECT_LANGUAGE, BatchReport, FileReviewState, Issue
from ..services.ollama_service import OllamaService

router = APIRouter(prefix="/api", tags=["review"])

# Services (process-wide singletons)
rule_store = RuleStore()
rule_store.load_directory(settings.rules_dir)

review_logger = ReviewLogger(settings.logs_dir, settings.max_log_files)
ollama_service = OllamaService(request_logger=review_logger)
pipeline = ReviewPipeline(ollama_service, rule_store)

# Strong references to background review tasks
running_tasks: Set[asyncio.Task] = set()


class ReviewRequest(BaseModel):
    code: str
    language: str = DETECT_LANGUAGE


class BatchFile(BaseModel):
    path: str
    content: str


class BatchRequest(BaseModel):
    files: List[BatchFile]


class FolderRequest(BaseModel):
    path: str


class HighlightRequest(BaseModel):
    content: str
    issues: List[Issue] = []


class QueueObserver(ReviewObserver):
    """Forwards pipeline notifications to an SSE event queue"""

    def __init__(self, queue: asyncio.Queue):
        self.queue = queue

    def emit(self, event_type: str, **data: Any):
        self.queue.put_nowait({"type": event_type, **data})

    def on_status(self, message: str):
        self.emit("status", message=message)

    def on_thinking(self, thinking: str):
        self.emit("thinking", text=thinking)

    def on_content(self, content: str):
        self.emit("content", text=content)

    def on_file_started(self, index: int, state: FileReviewState):
        self.emit("file_started", index=index, name=state.name, path=state.path)

    def on_file_finished(self, index: int, state: FileReviewState):
        self.emit("file_finished", index=index, file=file_payload(state))


def file_payload(state: FileReviewState) -> Dict[str, Any]:
    """Reviewed file with issues attached per line and highlighted markup"""
    markup = highlight_lines(state.lines)
    return {
        "name": state.name,
        "path": state.path,
        "language": state.language,
        "status": state.status.value,
        "result": state.result.model_dump(mode="json") if state.result else None,
        "summary": summarize(state.result),
        "lines": [
            {
                "num": line.num,
                "content": line.content,
                "html": html,
                "issues": issues_to_wire(line.issues)
            }
            for line, html in zip(state.lines, markup)
        ]
    }


def sse(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


def start_operation(
    operation: Callable[[QueueObserver], Awaitable[Dict[str, Any]]],
    token: CancelToken
) -> StreamingResponse:
    """
    Run a pipeline operation in the background and stream its notifications

    The pipeline must already be reserved under `token`. The operation's
    return value becomes the final "complete" event. A client disconnecting
    cancels the operation.
    """
    queue: asyncio.Queue = asyncio.Queue()
    observer = QueueObserver(queue)

    async def run():
        try:
            final = await operation(observer)
            observer.emit("complete", **final)
        except ReviewCancelled:
            observer.emit("cancelled", message="Review cancelled")
        except DetectionFailure as e:
            observer.emit("error", kind="detection", message=str(e))
        except ReviewError as e:
            logger.error(f"Review failed: {e}")
            observer.emit("error", kind="review", message=str(e))
        except Exception as e:
            logger.exception(f"Unexpected review failure: {e}")
            observer.emit("error", kind="internal", message=str(e))
        finally:
            pipeline.release(token)
            queue.put_nowait(None)

    task = asyncio.create_task(run())
    running_tasks.add(task)
    task.add_done_callback(running_tasks.discard)

    return event_stream(relay_events(queue, task))


async def relay_events(queue: asyncio.Queue, task: asyncio.Task) -> AsyncIterator[str]:
    finished = False
    try:
        while True:
            event = await queue.get()
            if event is None:
                finished = True
                break
            yield sse(event)
    finally:
        if not finished and not task.done():
            logger.info("Client disconnected, cancelling review")
            pipeline.cancel()


def event_stream(events: AsyncIterator[str]) -> StreamingResponse:
    return StreamingResponse(
        events,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"
        }
    )


@router.get("/models")
async def list_models():
    """Models available on the Ollama server"""
    try:
        models = await ollama_service.list_models()
    except TransportError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"total": len(models), "models": models}


@router.post("/review/stream")
async def review_stream(request: ReviewRequest):
    """
    Stream a single-file review

    Events: status, thinking, content, result (reviewed file) and complete,
    or cancelled / error.
    """
    if not request.code.strip():
        raise HTTPException(status_code=400, detail="Please paste or open a code file")
    try:
        token = pipeline.reserve()
    except StreamBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))

    logger.info(f"Review requested: {len(request.code)} chars, language={request.language}")

    async def operation(observer: QueueObserver) -> Dict[str, Any]:
        state = await pipeline.review_code(request.code, request.language, observer)
        observer.emit("result", file=file_payload(state))
        return {"summary": summarize(state.result)}

    return start_operation(operation, token)


@router.post("/review/batch/stream")
async def review_batch_stream(request: BatchRequest):
    """
    Stream a multi-file review

    Adds file_started / file_finished events; complete carries the batch
    report.
    """
    return start_batch([(f.path, f.content) for f in request.files])


@router.post("/review/folder/stream")
async def review_folder_stream(request: FolderRequest):
    """Stream a review of every file directly inside a server-side folder"""
    try:
        files = read_folder(request.path)
    except NotADirectoryError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return start_batch(files)


def start_batch(files: List[SourceFile]) -> StreamingResponse:
    if not files:
        raise HTTPException(status_code=400, detail="No files to review")

    try:
        pipeline.open_batch(files)
        token = pipeline.reserve()
    except StreamBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))

    async def operation(observer: QueueObserver) -> Dict[str, Any]:
        report: BatchReport = await pipeline.review_files(observer)
        return {"report": report.model_dump()}

    return start_operation(operation, token)


@router.get("/review/files")
async def get_batch_files():
    """Current batch with per-file status and results"""
    return {
        "report": pipeline.report.model_dump() if pipeline.report else None,
        "files": [file_payload(state) for state in pipeline.files]
    }


@router.post("/review/cancel")
async def cancel_review():
    running = pipeline.is_running
    pipeline.cancel()
    return {"cancelled": running}


@router.post("/review/highlight")
async def highlight_line(request: HighlightRequest):
    """Highlight one line for the given issues"""
    return {"html": highlight(request.content, request.issues)}


@router.get("/logs/recent")
async def get_recent_logs(limit: int = 10):
    sessions = review_logger.recent_logs(limit)
    return {"total": len(sessions), "logs": sessions}


@router.get("/logs/latest")
async def get_latest_log():
    latest: Optional[Any] = review_logger.latest_log_path()
    if latest is None:
        raise HTTPException(status_code=404, detail="No log files found")

    return {"file": latest.name, "log": review_logger.read_log(latest.name)}
