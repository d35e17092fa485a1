"""
Review pipeline - single-file and multi-file review orchestration
"""
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence
from loguru import logger

from ..config import settings
from ..models.review import (
    DETECT_LANGUAGE,
    BatchReport,
    CodeLine,
    FileReviewState,
    Issue,
    ModelConfig,
    ReviewResult,
    ReviewStatus,
)
from ..services.ollama_service import OllamaService
from .cancellation import CancelToken
from .errors import DetectionFailure, EmptySourceError, ReviewCancelled, StreamBusyError
from .prompt_builder import build_system_prompt, build_user_prompt, split_lines
from .response_parser import parse_review_response
from .rule_store import RuleStore
from .source_loader import SourceFile, file_extension


ALLOWED_TRANSITIONS = {
    ReviewStatus.PENDING: {ReviewStatus.REVIEWING},
    ReviewStatus.REVIEWING: {ReviewStatus.DONE, ReviewStatus.PENDING},
    ReviewStatus.DONE: set(),
}


class ReviewObserver:
    """
    Pipeline notifications

    Hosts subclass this and override the hooks they care about; the
    defaults do nothing.
    """

    def on_status(self, message: str) -> None:
        pass

    def on_thinking(self, thinking: str) -> None:
        pass

    def on_content(self, content: str) -> None:
        pass

    def on_done(self) -> None:
        pass

    def on_file_started(self, index: int, state: FileReviewState) -> None:
        pass

    def on_file_finished(self, index: int, state: FileReviewState) -> None:
        pass


class ReviewPipeline:
    """
    Review orchestrator

    Flow per file:
    1. Detect the language when it is the "detect" sentinel
    2. Build prompts from the language's rules
    3. Stream the review, forwarding thinking text to the observer
    4. Parse the response and attach issues to their lines

    Files of a batch are reviewed strictly one after another. One operation
    runs at a time; `cancel()` stops it.
    """

    def __init__(
        self,
        client: OllamaService,
        rule_store: RuleStore,
        model: Optional[ModelConfig] = None,
        detect_max_chars: Optional[int] = None
    ):
        self.client = client
        self.rules = rule_store
        self.model = model or settings.review_model()
        self.detect_max_chars = detect_max_chars or settings.detect_max_chars
        self.files: List[FileReviewState] = []
        self.report: Optional[BatchReport] = None
        self._token: Optional[CancelToken] = None
        # Token claimed by reserve() and not yet taken by an operation
        self._reserved: Optional[CancelToken] = None

    @property
    def is_running(self) -> bool:
        return self._token is not None

    @property
    def total_issues(self) -> int:
        return self.report.total_issues if self.report else 0

    def cancel(self) -> None:
        """Cancel the operation in progress, if any"""
        if self._token is not None:
            logger.info("⏹️ Cancelling review")
            self._token.cancel()

    def reserve(self) -> CancelToken:
        """
        Claim the pipeline for an operation that starts later

        The next review_code / review_files call runs under the returned
        token, so cancel() already works before that call begins.

        Raises:
            StreamBusyError: a review is running or reserved
        """
        if self._token is not None:
            raise StreamBusyError("A review is already running")
        self._token = self._reserved = CancelToken()
        return self._token

    def release(self, token: CancelToken) -> None:
        """Drop a reservation no operation has taken"""
        if self._reserved is token:
            self._reserved = None
            self._token = None

    def open_source(
        self,
        code: str,
        language: str = DETECT_LANGUAGE,
        path: str = "",
        name: str = "untitled"
    ) -> FileReviewState:
        """Build a pending review state with numbered lines"""
        lines = [
            CodeLine(num=num, content=content)
            for num, content in enumerate(split_lines(code), start=1)
        ]
        return FileReviewState(
            path=path,
            name=name,
            content=code,
            language=language or DETECT_LANGUAGE,
            lines=lines
        )

    def open_batch(self, files: Sequence[SourceFile]) -> List[FileReviewState]:
        """
        Replace the current batch

        Files are ordered by name, then path. A file whose extension names a
        known rule language gets that language, other files are detected.
        """
        if self.is_running:
            raise StreamBusyError("A review is already running")

        states = [
            self.open_source(content, self.language_for(path), path, Path(path).name or path)
            for path, content in files
        ]
        states.sort(key=lambda s: (s.name, s.path))

        self.files = states
        self.report = None
        logger.info(f"📂 Opened batch of {len(states)} files")
        return states

    def language_for(self, path: str) -> str:
        extension = file_extension(path)
        return extension if extension in self.rules.languages() else DETECT_LANGUAGE

    async def review_code(
        self,
        code: str,
        language: str = DETECT_LANGUAGE,
        observer: Optional[ReviewObserver] = None,
        path: str = "",
        name: str = "untitled"
    ) -> FileReviewState:
        """
        Review a single piece of code

        Args:
            code: source text
            language: rule language, or "detect"
            observer: progress notifications

        Returns:
            the reviewed file state (status Done, issues attached to lines)

        Raises:
            EmptySourceError: code is empty or whitespace
            DetectionFailure: the language could not be detected
            ReviewCancelled: cancel() was called
            TransportError: the model server failed
        """
        if not code.strip():
            raise EmptySourceError()

        observer = observer or ReviewObserver()
        state = self.open_source(code, language, path, name)
        token = self._begin()

        try:
            await self._review_file(state, token, observer)
        except ReviewCancelled:
            self._reset(state)
            observer.on_status("Review cancelled")
            raise
        except Exception:
            self._reset(state)
            raise
        finally:
            self._token = None

        observer.on_status(summarize(state.result))
        return state

    async def review_files(self, observer: Optional[ReviewObserver] = None) -> BatchReport:
        """
        Review the opened batch, one file at a time

        Files already Done keep their results and are not reviewed again;
        after a cancellation the next call resumes with the pending files.
        A file whose language cannot be detected is finished with an error
        result and the batch goes on. Any other failure stops the batch.

        Returns:
            aggregate counters

        Raises:
            ReviewCancelled: cancel() was called; unfinished files are Pending
            TransportError: the model server failed
        """
        observer = observer or ReviewObserver()
        token = self._begin()
        total = len(self.files)
        report = BatchReport(total_files=total)
        for state in self.files:
            if state.status == ReviewStatus.DONE:
                _count(report, state)
        self.report = report

        start_time = time.time()
        logger.info(f"📋 Reviewing {total} files")

        try:
            for index, state in enumerate(self.files):
                if state.status == ReviewStatus.DONE:
                    continue

                # File boundary
                token.raise_if_cancelled()

                logger.info("=" * 60)
                logger.info(f"📄 File {index + 1}/{total}: {state.name}")
                logger.info("=" * 60)

                prefix = f"File {index + 1}/{total}: {state.name} - "
                observer.on_file_started(index, state)

                try:
                    await self._review_file(state, token, observer, prefix)
                except DetectionFailure as e:
                    logger.warning(f"   Skipping {state.name}: {e}")
                    state.result = ReviewResult(issues=[], error=str(e))
                    _transition(state, ReviewStatus.DONE)

                _count(report, state)
                observer.on_file_finished(index, state)

        except ReviewCancelled:
            self._reset_unfinished()
            logger.info(f"Batch cancelled after {report.reviewed_files}/{total} files")
            observer.on_status("Review cancelled")
            raise
        except Exception as e:
            self._reset_unfinished()
            logger.error(f"❌ Batch review failed: {e}")
            raise
        finally:
            self._token = None

        elapsed = time.time() - start_time
        logger.info(f"✅ Batch finished in {elapsed:.2f}s: {report.total_issues} issues")

        if report.total_issues == 0:
            observer.on_status(f"All {total} files reviewed - No issues found!")
        else:
            observer.on_status(f"Reviewed {total} files - Found {report.total_issues} issues")
        return report

    async def _review_file(
        self,
        state: FileReviewState,
        token: CancelToken,
        observer: ReviewObserver,
        prefix: str = ""
    ):
        _transition(state, ReviewStatus.REVIEWING)

        language = state.language
        if language == DETECT_LANGUAGE:
            observer.on_status(f"{prefix}Detecting language...")
            detected = await self.client.detect_language(
                state.content,
                self.rules.sorted_languages(),
                self.model,
                cancel_token=token,
                max_chars=self.detect_max_chars
            )
            if not detected:
                raise DetectionFailure()
            state.language = language = detected

        rule_set = self.rules.get(language)
        if rule_set is None:
            logger.warning(f"No rules loaded for {language}")

        observer.on_status(f"{prefix}Reviewing {language} code...")

        generating = False

        def on_content(content: str):
            nonlocal generating
            if not generating:
                generating = True
                observer.on_status(f"{prefix}Generating response...")
            observer.on_content(content)

        def on_done():
            observer.on_status(f"{prefix}Done!")
            observer.on_done()

        content = await self.client.stream(
            build_system_prompt(language),
            build_user_prompt(rule_set, state.lines, language),
            self.model,
            cancel_token=token,
            on_thinking=observer.on_thinking,
            on_content=on_content,
            on_done=on_done
        )

        result = parse_review_response(content)
        attach_issues(state.lines, result.issues)
        state.result = result
        _transition(state, ReviewStatus.DONE)

        logger.info(
            f"   Found {len(result.issues)} issues "
            f"({result.critical_count} critical, {result.warning_count} warnings)"
        )

    def _begin(self) -> CancelToken:
        if self._reserved is not None:
            token, self._reserved = self._reserved, None
            return token
        if self._token is not None:
            raise StreamBusyError("A review is already running")
        self._token = CancelToken()
        return self._token

    def _reset_unfinished(self):
        for state in self.files:
            self._reset(state)

    @staticmethod
    def _reset(state: FileReviewState):
        if state.status == ReviewStatus.REVIEWING:
            _transition(state, ReviewStatus.PENDING)


def _transition(state: FileReviewState, status: ReviewStatus):
    if status not in ALLOWED_TRANSITIONS[state.status]:
        raise ValueError(f"Invalid status change for {state.name}: {state.status.value} -> {status.value}")
    state.status = status


def _count(report: BatchReport, state: FileReviewState):
    result = state.result or ReviewResult()
    report.reviewed_files += 1
    report.total_issues += len(result.issues)
    report.critical_count += result.critical_count
    report.warning_count += result.warning_count


def attach_issues(lines: List[CodeLine], issues: Sequence[Issue]) -> None:
    """Attach each issue to the line with the same number"""
    by_line: Dict[int, List[Issue]] = {}
    for issue in issues:
        by_line.setdefault(issue.line, []).append(issue)

    for line in lines:
        line.issues = by_line.get(line.num, [])


def summarize(result: Optional[ReviewResult]) -> str:
    """Human-readable outcome of one review"""
    if result is None:
        return "Not reviewed"
    if result.error:
        return f"Error: {result.error}"

    issue_count = len(result.issues)
    if issue_count == 0:
        return "No issues found!"
    return (
        f"Found {issue_count} issues "
        f"({result.critical_count} critical, {result.warning_count} warnings)"
    )
