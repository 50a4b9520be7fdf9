"""
Review Orchestrator component.

Runs one review attempt for a pull request: per-PR locking, duplicate
suppression, snapshot fetch, the two AI stages, comment posting and
bookkeeping. Attempts are spawned as background tasks from the webhook
handler.
"""

import asyncio
import time
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Set

from redis.exceptions import RedisError

from app.agents.file_analyzer import FileAnalyzer
from app.agents.review_synthesizer import ReviewSynthesizer
from app.models.review import (
    ChangedFile,
    FileAnalysis,
    PullRequestInfo,
    PullRequestSnapshot,
    ReviewRecord,
    ReviewRequest,
)
from app.models.webhook_log import WebhookStatus
from app.services.analytics_store import ReviewAnalyticsStore, new_review_id
from app.services.github_client import GitHubAccessError, GitHubClient, build_unified_diff
from app.services.redis_client import RedisClient, RedisConnectionError
from app.services.webhook_log_store import WebhookLogStore
from app.utils.logging import get_logger, log_error_with_context, log_stage_transition
from app.utils.mentions import limit_mentions
from app.utils.metrics import ReviewMetrics, track_api_call

logger = get_logger(__name__)

STORE_ERRORS = (RedisConnectionError, RedisError)

PLACEHOLDER_PR = PullRequestInfo(
    title="Mock PR Title",
    body="Mock PR description for testing purposes",
    author="test-user",
)
PLACEHOLDER_FILE = ChangedFile(
    filename="test/file.js",
    status="modified",
    additions=1,
    deletions=0,
    patch='+ console.log("Mock file content");',
)
PLACEHOLDER_DIFF = "Mock diff content for testing"


class ReviewOrchestrator:
    """Coordinates review attempts for pull requests."""

    def __init__(
        self,
        redis_client: RedisClient,
        log_store: WebhookLogStore,
        analytics_store: ReviewAnalyticsStore,
        file_analyzer: FileAnalyzer,
        review_synthesizer: ReviewSynthesizer,
        settings,
    ):
        self.redis_client = redis_client
        self.log_store = log_store
        self.analytics_store = analytics_store
        self.file_analyzer = file_analyzer
        self.review_synthesizer = review_synthesizer
        self.settings = settings
        self._tasks: Set[asyncio.Task] = set()

    @property
    def active_reviews(self) -> int:
        """Number of review attempts currently in flight."""
        return len(self._tasks)

    def spawn(self, request: ReviewRequest, github: GitHubClient) -> asyncio.Task:
        """
        Schedule a review attempt in the background and return its task.

        The orchestrator holds a reference to the task until it finishes.
        """
        task = asyncio.create_task(
            self.handle_review_request(request, github),
            name=f"review:{request.repository}#{request.pr_number}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self, timeout: float = 30.0) -> None:
        """Wait for in-flight reviews, cancelling any still running after ``timeout``."""
        if not self._tasks:
            return

        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            logger.warning(f"Cancelling unfinished review task {task.get_name()}")
            task.cancel()

        # Let cancelled runs write their failure bookkeeping
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def handle_review_request(self, request: ReviewRequest, github: GitHubClient) -> None:
        """
        Run one review attempt. Never raises, except to propagate cancellation.

        Args:
            request: What to review and who asked for it
            github: Client scoped to the webhook's installation
        """
        log = logger.with_context(
            owner=request.owner,
            repo=request.repo,
            pr_number=request.pr_number,
            log_id=request.log_id,
        )
        metrics = ReviewMetrics(request.owner, request.repo, request.pr_number)
        metrics.start()
        start_time = time.time()

        lock_key = self.redis_client.lock_key(request.owner, request.repo, request.pr_number)
        lock_token = uuid.uuid4().hex
        lock_held = False

        # Lock
        try:
            acquired = await self.redis_client.set_if_absent(
                lock_key, lock_token, self.settings.lock_ttl_seconds
            )
            if not acquired:
                log.info(f"Skipping review: another run holds the lock for {request.repository}#{request.pr_number}")
                await self.log_store.append_action(request.log_id, "Skipped: review already in progress")
                await self.log_store.update_status(request.log_id, WebhookStatus.IGNORED)
                return
            lock_held = True
            log_stage_transition(log, "lock", "completed")
        except STORE_ERRORS as e:
            log.warning(f"Could not acquire review lock, proceeding without it: {e}")

        try:
            skip_reason = await self._duplicate_reason(request, log)
            if skip_reason:
                log.info(f"Skipping review: {skip_reason}")
                await self._release_lock(lock_key, lock_token, lock_held, log)
                await self.log_store.append_action(request.log_id, f"Skipped: {skip_reason}")
                await self.log_store.update_status(request.log_id, WebhookStatus.IGNORED)
                return

            snapshot = await self._fetch_snapshot(request, github, metrics, log)
            metrics.record_chars_analyzed(snapshot.chars_analyzed)
            await self.log_store.append_action(
                request.log_id, f"Fetched PR snapshot with {len(snapshot.files)} file(s)"
            )

            await self._post_greeting(request, snapshot, github, metrics, log)

            analyses = await self._analyze_files(request, snapshot, metrics, log)

            log_stage_transition(log, "stage2", "started")
            review = await self.review_synthesizer.synthesize(
                model=self.settings.comment_model,
                pr_title=snapshot.title,
                pr_body=snapshot.body,
                files=snapshot.files,
                file_analyses=[a.content for a in analyses],
                pr_author=snapshot.author,
                requested_by=request.requested_by,
                user_comment=request.user_comment,
                metrics=metrics,
            )
            log_stage_transition(log, "stage2", "completed")

            await self._post_review(request, snapshot, review, github, metrics, log)

            processing_time_ms = int((time.time() - start_time) * 1000)
            await self._finalize(request, snapshot, analyses, review, processing_time_ms, lock_key, lock_token, lock_held, log)
            metrics.complete("completed")

        except asyncio.CancelledError:
            log.warning(f"Review cancelled for {request.repository}#{request.pr_number}")
            metrics.complete("error", "Review cancelled")
            await self._fail(request, "Review cancelled", lock_key, lock_token, lock_held, log)
            raise

        except Exception as e:
            log_error_with_context(log, f"Review failed for {request.repository}#{request.pr_number}", e)
            metrics.complete("error", str(e))
            await self._fail(request, str(e), lock_key, lock_token, lock_held, log)

    async def _duplicate_reason(self, request: ReviewRequest, log) -> Optional[str]:
        """Return why this attempt is a duplicate, or None to proceed."""
        try:
            if request.comment_id is not None:
                key = self.redis_client.processed_comment_key(request.owner, request.repo, request.comment_id)
                if await self.redis_client.get(key):
                    return f"comment {request.comment_id} already processed"

            if request.requested_by:
                return None

            key = self.redis_client.recent_comment_key(request.owner, request.repo, request.pr_number)
            last_comment = await self.redis_client.get(key)
            if last_comment and self._is_recent(last_comment):
                return "bot commented on this PR recently"

        except STORE_ERRORS as e:
            log.warning(f"Could not check duplicate markers, proceeding: {e}")

        return None

    def _is_recent(self, timestamp: str) -> bool:
        try:
            commented_at = datetime.fromisoformat(timestamp)
        except ValueError:
            # The key expires on its own; an unreadable value still counts
            return True
        if commented_at.tzinfo is None:
            commented_at = commented_at.replace(tzinfo=timezone.utc)
        age = (datetime.now(timezone.utc) - commented_at).total_seconds()
        return age < self.settings.recent_comment_ttl_seconds

    async def _fetch_snapshot(
        self,
        request: ReviewRequest,
        github: GitHubClient,
        metrics: ReviewMetrics,
        log,
    ) -> PullRequestSnapshot:
        """Fetch PR metadata and files, substituting placeholders for 403/404."""
        log_stage_transition(log, "fetch", "started")

        try:
            async with track_api_call(metrics, "github", log, "pulls.get", "GET"):
                pr = await github.get_pull_request(request.owner, request.repo, request.pr_number)
        except GitHubAccessError as e:
            log.warning(f"PR not accessible ({e.status}), using placeholder metadata")
            await self.log_store.append_action(request.log_id, f"PR metadata unavailable ({e.status}), placeholder used")
            pr = PLACEHOLDER_PR

        try:
            async with track_api_call(metrics, "github", log, "pulls.list_files", "GET"):
                files = await github.list_files(request.owner, request.repo, request.pr_number)
            diff = build_unified_diff(files)
        except GitHubAccessError as e:
            log.warning(f"PR files not accessible ({e.status}), using placeholder file")
            await self.log_store.append_action(request.log_id, f"PR files unavailable ({e.status}), placeholder used")
            files = [PLACEHOLDER_FILE.model_copy()]
            diff = PLACEHOLDER_DIFF

        log_stage_transition(log, "fetch", "completed", files=len(files))
        return PullRequestSnapshot(
            title=pr.title,
            body=pr.body,
            author=pr.author,
            files=files,
            diff=diff,
        )

    async def _post_greeting(
        self,
        request: ReviewRequest,
        snapshot: PullRequestSnapshot,
        github: GitHubClient,
        metrics: ReviewMetrics,
        log,
    ) -> None:
        user = request.requested_by or snapshot.author
        automated = " with an automated review" if request.is_auto_review else ""
        greeting = (
            f"Hey @{user}! 👋\n\n"
            f"I'll go through the changes and help you out{automated}! 🔍\n\n"
            f"Starting the review now..."
        )
        greeting = limit_mentions(greeting, self.settings.max_mentions_per_user)

        try:
            async with track_api_call(metrics, "github", log, "issues.create_comment", "POST"):
                await github.create_issue_comment(request.owner, request.repo, request.pr_number, greeting)
            await self.log_store.append_action(request.log_id, f"Greeting posted for @{user}")
        except GitHubAccessError as e:
            log.info(f"Greeting not posted ({e.status}), content: {greeting}")
        except Exception as e:
            log.warning(f"Greeting comment failed, continuing with review: {e}")

    async def _analyze_files(
        self,
        request: ReviewRequest,
        snapshot: PullRequestSnapshot,
        metrics: ReviewMetrics,
        log,
    ) -> List[FileAnalysis]:
        """Analyze files one at a time, in order; a failure yields a placeholder."""
        log_stage_transition(log, "stage1", "started", files=len(snapshot.files))
        analyses: List[FileAnalysis] = []

        for changed_file in snapshot.files:
            try:
                content = await self.file_analyzer.analyze(
                    model=self.settings.analysis_model,
                    pr_title=snapshot.title,
                    pr_body=snapshot.body,
                    file=changed_file,
                    user_comment=request.user_comment,
                    metrics=metrics,
                )
                analyses.append(FileAnalysis(filename=changed_file.filename, content=content))
                metrics.record_file_analyzed()
            except Exception as e:
                log.warning(f"Analysis failed for {changed_file.filename}: {e}")
                analyses.append(FileAnalysis(
                    filename=changed_file.filename,
                    content=(
                        f"## 📄 **File: {changed_file.filename}**\n\n"
                        f"⚠️ Analysis skipped due to error: {e}"
                    ),
                    skipped=True,
                    error=str(e),
                ))
                metrics.record_file_analyzed(skipped=True)

        skipped = sum(1 for a in analyses if a.skipped)
        await self.log_store.append_action(
            request.log_id, f"Analyzed {len(analyses)} file(s), {skipped} skipped"
        )
        log_stage_transition(log, "stage1", "completed", files=len(analyses), skipped=skipped)
        return analyses

    def _format_review(self, request: ReviewRequest, snapshot: PullRequestSnapshot, review: str) -> str:
        file_count = len(snapshot.files)
        plural = "" if file_count == 1 else "s"
        auto = " • Auto-generated" if request.is_auto_review else ""
        return (
            f"{review}\n\n"
            f"---\n\n"
            f"<div align=\"center\">\n\n"
            f"**🤖 Powered by [Xibe AI](https://xibe.app)**{auto}\n"
            f"**📊 Analysis:** {snapshot.chars_analyzed} characters analyzed across {file_count} file{plural}\n\n"
            f"</div>"
        )

    async def _post_review(
        self,
        request: ReviewRequest,
        snapshot: PullRequestSnapshot,
        review: str,
        github: GitHubClient,
        metrics: ReviewMetrics,
        log,
    ) -> None:
        """Post the final review. Only 403/404 are tolerated."""
        body = limit_mentions(self._format_review(request, snapshot, review), self.settings.max_mentions_per_user)

        log_stage_transition(log, "post", "started")
        try:
            async with track_api_call(metrics, "github", log, "issues.create_comment", "POST"):
                await github.create_issue_comment(request.owner, request.repo, request.pr_number, body)
            await self.log_store.append_action(request.log_id, "Review posted")
        except GitHubAccessError as e:
            log.info(f"Review not posted ({e.status}), content:\n{body}")
            await self.log_store.append_action(request.log_id, f"Review not posted ({e.status})")
        log_stage_transition(log, "post", "completed")

    async def _release_lock(self, lock_key: str, lock_token: str, lock_held: bool, log) -> None:
        if not lock_held:
            return
        try:
            released = await self.redis_client.delete_if_equals(lock_key, lock_token)
            if not released:
                log.warning(f"Lock {lock_key} expired before release")
        except STORE_ERRORS as e:
            log.warning(f"Could not release lock {lock_key}: {e}")

    async def _mark_processed(self, request: ReviewRequest, log) -> None:
        if request.comment_id is None:
            return
        key = self.redis_client.processed_comment_key(request.owner, request.repo, request.comment_id)
        try:
            await self.redis_client.set_with_expiry(key, "processed", self.settings.processed_marker_ttl_seconds)
        except STORE_ERRORS as e:
            log.warning(f"Could not mark comment {request.comment_id} as processed: {e}")

    async def _finalize(
        self,
        request: ReviewRequest,
        snapshot: PullRequestSnapshot,
        analyses: List[FileAnalysis],
        review: str,
        processing_time_ms: int,
        lock_key: str,
        lock_token: str,
        lock_held: bool,
        log,
    ) -> None:
        await self._release_lock(lock_key, lock_token, lock_held, log)
        await self._mark_processed(request, log)

        recent_key = self.redis_client.recent_comment_key(request.owner, request.repo, request.pr_number)
        try:
            await self.redis_client.set_with_expiry(
                recent_key,
                datetime.now(timezone.utc).isoformat(),
                self.settings.recent_comment_ttl_seconds
            )
        except STORE_ERRORS as e:
            log.warning(f"Could not record recent comment timestamp: {e}")

        record = ReviewRecord(
            id=new_review_id(),
            timestamp=datetime.now(timezone.utc),
            repository=request.repository,
            pull_request=request.pr_number,
            user=snapshot.author,
            installation_id=request.installation_id,
            model=self.settings.selected_model,
            review_content=review,
            processing_time_ms=processing_time_ms,
            files_analyzed=len(analyses),
            files_skipped=sum(1 for a in analyses if a.skipped),
        )
        review_id = await self.analytics_store.save_review(record)
        if review_id:
            log.info(f"Analytics updated for review {review_id}")

        await self.log_store.update_status(request.log_id, WebhookStatus.COMPLETED)
        log.info(f"Review completed for {request.repository}#{request.pr_number} in {processing_time_ms}ms")

    async def _fail(
        self,
        request: ReviewRequest,
        message: str,
        lock_key: str,
        lock_token: str,
        lock_held: bool,
        log,
    ) -> None:
        """Failure bookkeeping. Nothing is posted to the PR."""
        try:
            await self._release_lock(lock_key, lock_token, lock_held, log)
            await self._mark_processed(request, log)
            await self.log_store.update_status(request.log_id, WebhookStatus.ERROR, error=message)
        except Exception as e:
            log_error_with_context(log, "Failure bookkeeping did not complete", e)


_review_orchestrator: Optional[ReviewOrchestrator] = None


def get_review_orchestrator() -> ReviewOrchestrator:
    """Get or create the global orchestrator wired to the shared stores."""
    global _review_orchestrator
    if _review_orchestrator is None:
        from app.agents.llm_client import LLMClient
        from app.config import settings
        from app.services.analytics_store import get_analytics_store
        from app.services.redis_client import get_redis_client
        from app.services.webhook_log_store import get_webhook_log_store

        llm_client = LLMClient(settings)
        _review_orchestrator = ReviewOrchestrator(
            redis_client=get_redis_client(),
            log_store=get_webhook_log_store(),
            analytics_store=get_analytics_store(),
            file_analyzer=FileAnalyzer(llm_client, max_input_chars=settings.max_patch_chars),
            review_synthesizer=ReviewSynthesizer(llm_client),
            settings=settings,
        )
    return _review_orchestrator
