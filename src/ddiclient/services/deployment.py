"""Deployment action state machine."""

import asyncio
import shutil
from pathlib import Path
from typing import Optional, Protocol
import logging

from pydantic import ValidationError

from ddiclient.config import ClientConfig
from ddiclient.errors import (
    ExternalStepError,
    HashMismatchError,
    IntegrityError,
    ProtocolError,
    TransportError,
)
from ddiclient.models.deployment import DeploymentDescriptor, DownloadedArtifact
from ddiclient.models.feedback import Progress
from ddiclient.models.state import ActionSnapshot, InstallResult
from ddiclient.models.status import ActionStateEnum, Execution, Finished
from ddiclient.services.download import DownloadService
from ddiclient.services.reporter import FeedbackReporter, feedback_url
from ddiclient.services.state_manager import StateManager
from ddiclient.services.transport import DDITransport
from ddiclient.utils.verification import compute_file_hashes


class Installer(Protocol):
    """Device-local install step.

    Receives the verified artifacts and an abort event that is set when the
    server cancels the action. Returns a verdict or raises ExternalStepError.
    """

    async def install(
        self,
        action_id: str,
        artifacts: list[DownloadedArtifact],
        abort: asyncio.Event,
    ) -> InstallResult:
        ...


class DeploymentStateMachine:
    """Drives one deployment action from ``pending`` to a terminal state.

    The action runs as a background task so the poll loop keeps running
    (and can deliver cancellations) while artifacts download or install.
    Each state transition sends exactly one feedback message; per-action
    feedback is sent in order from the action task, and a cancellation's
    feedback only after that task has finished.
    """

    def __init__(
        self,
        transport: DDITransport,
        downloader: DownloadService,
        reporter: FeedbackReporter,
        installer: Installer,
        config: ClientConfig,
        state_manager: Optional[StateManager] = None,
    ):
        self.logger = logging.getLogger("ddiclient.deployment")
        self.transport = transport
        self.downloader = downloader
        self.reporter = reporter
        self.installer = installer
        self.state_manager = state_manager or StateManager()
        self.download_dir = Path(config.download_dir)

        self._task: Optional[asyncio.Task] = None
        self._abort: Optional[asyncio.Event] = None
        self._artifacts: list[DownloadedArtifact] = []
        self._scheduled_sent = False

    def snapshot(self) -> ActionSnapshot:
        """Read-only view of the action slot."""
        return self.state_manager.get_snapshot()

    @property
    def active_action_id(self) -> Optional[str]:
        snapshot = self.snapshot()
        return snapshot.action_id if snapshot.is_active else None

    async def wait_for_terminal(self) -> None:
        await self.state_manager.wait_for_terminal()

    async def join(self) -> None:
        """Wait for the action task to finish, including its last feedback."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait([task])

    async def start(self, action_id: str, url: str) -> None:
        """Handle a deployment offered by the server.

        Args:
            action_id: Action id taken from the deploymentBase link
            url: deploymentBase href
        """
        # The previous action's terminal feedback may still be in flight.
        if not self.snapshot().is_active:
            await self.join()

        reject_for: Optional[str] = None
        finished: Optional[ActionSnapshot] = None
        async with self.state_manager.lock:
            snapshot = self.snapshot()
            if snapshot.is_active:
                if snapshot.action_id != action_id:
                    reject_for = snapshot.action_id
                elif self._task is None or self._task.done():
                    # pending after a failed descriptor fetch, or verified
                    # and waiting for the maintenance window
                    self.logger.info(
                        f"Resuming action {action_id} in state {snapshot.state.value}"
                    )
                    self._launch(action_id, url)
                else:
                    self.logger.debug(f"Action {action_id} already in progress")
            elif snapshot.action_id == action_id:
                # Poll reply raced with our terminal feedback, or the feedback was lost
                finished = snapshot
            else:
                self.state_manager.begin(action_id)
                self._artifacts = []
                self._scheduled_sent = False
                self._abort = asyncio.Event()
                self._launch(action_id, url)

        if finished is not None:
            await self._resend_terminal(action_id, url, finished)
        elif reject_for is not None:
            self.logger.warning(
                f"Protocol anomaly: deployment {action_id} offered while "
                f"action {reject_for} is active, rejecting"
            )
            await self.reporter.send_feedback(
                feedback_url(url),
                action_id,
                Execution.REJECTED,
                Finished.NONE,
                [f"Action {reject_for} is still in progress, rejecting action {action_id}"],
            )

    async def cancel(self, action_id: str, cancel_url: str) -> bool:
        """Handle a cancellation request.

        Args:
            action_id: Action the server wants stopped (``stopId``)
            cancel_url: cancelAction href, used for the feedback endpoint

        Returns:
            True if the active action was canceled, False for a stale request
        """
        async with self.state_manager.lock:
            snapshot = self.snapshot()
            if not snapshot.is_active or snapshot.action_id != action_id:
                self.logger.info(
                    f"Ignoring cancellation of action {action_id}: "
                    f"active action is {self.active_action_id}"
                )
                return False

            previous_state = snapshot.state
            task = self._task
            if self._abort is not None:
                self._abort.set()
            if task is not None and not task.done():
                task.cancel()

        if task is not None:
            await asyncio.wait([task])

        async with self.state_manager.lock:
            self.state_manager.update_status(
                ActionStateEnum.CANCELED,
                f"Action {action_id} canceled by server",
            )
        await self.reporter.send_feedback(
            feedback_url(cancel_url),
            action_id,
            Execution.CANCELED,
            Finished.SUCCESS,
            [f"Action canceled while {previous_state.value}"],
        )
        self._release(action_id)
        return True

    async def shutdown(self, grace: float = 5.0) -> None:
        """Give the running action ``grace`` seconds, then stop tracking it."""
        task = self._task
        if task is None or task.done():
            return
        done, _ = await asyncio.wait([task], timeout=grace)
        if not done:
            self.logger.warning("Stopping in-flight action on shutdown")
            if self._abort is not None:
                self._abort.set()
            task.cancel()
            await asyncio.wait([task])

    async def _resend_terminal(self, action_id: str, url: str, snapshot: ActionSnapshot) -> None:
        """Answer a re-offer of a finished action without running it again.

        The final feedback is repeated only if it never reached the server.
        """
        if not self.reporter.undelivered(action_id):
            self.logger.debug(
                f"Action {action_id} already {snapshot.state.value}, ignoring re-offer"
            )
            return
        if snapshot.state == ActionStateEnum.CLOSED:
            execution, finished = Execution.CLOSED, snapshot.result
        elif snapshot.state == ActionStateEnum.REJECTED:
            execution, finished = Execution.REJECTED, Finished.NONE
        else:
            self.logger.info(f"Action {action_id} was {snapshot.state.value}, ignoring re-offer")
            return
        self.logger.info(f"Repeating final feedback of action {action_id}")
        await self.reporter.send_feedback(
            feedback_url(url), action_id, execution, finished, [snapshot.message]
        )

    def _launch(self, action_id: str, url: str) -> None:
        self._task = asyncio.create_task(self._run(action_id, url), name=f"action-{action_id}")

    async def _run(self, action_id: str, url: str) -> None:
        try:
            state = self.snapshot().state
            if state == ActionStateEnum.PENDING:
                descriptor = await self._fetch_descriptor(action_id, url)
                if descriptor is None:
                    return
                artifacts = await self._download(action_id, url, descriptor)
                if artifacts is None:
                    return
            elif state == ActionStateEnum.VERIFIED:
                descriptor = await self._fetch_descriptor(action_id, url)
                if descriptor is None:
                    return
                artifacts = self._artifacts
                if not await self._recheck_held(action_id, url, artifacts):
                    return
            else:
                return

            if descriptor.install_deferred():
                if not self._scheduled_sent:
                    self._scheduled_sent = True
                    await self.reporter.send_feedback(
                        feedback_url(url),
                        action_id,
                        Execution.SCHEDULED,
                        Finished.NONE,
                        ["Installation deferred until the maintenance window is available"],
                    )
                self.logger.info(f"Action {action_id} verified, installation deferred")
                return

            await self._install(action_id, url, artifacts)
        except Exception as e:
            self.logger.error(f"Action {action_id} failed unexpectedly: {e}", exc_info=True)
            await self._transition(
                action_id,
                url,
                ActionStateEnum.CLOSED,
                Execution.CLOSED,
                Finished.FAILURE,
                f"Unexpected error: {e}",
                error=str(e),
            )
        finally:
            if self.snapshot().action_id == action_id and self.snapshot().state in (
                ActionStateEnum.CLOSED,
                ActionStateEnum.REJECTED,
            ):
                self._release(action_id)

    async def _fetch_descriptor(self, action_id: str, url: str) -> Optional[DeploymentDescriptor]:
        """Fetch the deployment descriptor.

        Returns:
            The descriptor, or None if the action stays where it is (transient
            transport failure, retried on the next poll) or has been terminated
            (permanent 4xx, malformed or mismatched descriptor)
        """
        try:
            raw = await self.transport.get_json(url)
            descriptor = DeploymentDescriptor.model_validate(raw)
        except TransportError as e:
            if e.permanent:
                self.logger.error(f"Deployment {action_id} unavailable: {e}")
                await self._transition(
                    action_id,
                    url,
                    ActionStateEnum.CLOSED,
                    Execution.CLOSED,
                    Finished.FAILURE,
                    f"Deployment descriptor unavailable: {e}",
                    error=f"PROTOCOL_ERROR: HTTP {e.status_code}",
                )
                return None
            self.logger.warning(
                f"Could not fetch deployment {action_id}: {e}. Will retry on next poll"
            )
            return None
        except (ProtocolError, ValidationError) as e:
            self.logger.error(f"Malformed deployment descriptor for {action_id}: {e}")
            await self._transition(
                action_id,
                url,
                ActionStateEnum.CLOSED,
                Execution.CLOSED,
                Finished.FAILURE,
                f"Malformed deployment descriptor: {e}",
                error=f"PROTOCOL_ERROR: {e}",
            )
            return None

        if descriptor.id != action_id:
            await self._transition(
                action_id,
                url,
                ActionStateEnum.REJECTED,
                Execution.REJECTED,
                Finished.NONE,
                f"Descriptor id {descriptor.id} does not match action {action_id}",
                error="PROTOCOL_ERROR: action id mismatch",
            )
            return None
        return descriptor

    async def _recheck_held(
        self, action_id: str, url: str, artifacts: list[DownloadedArtifact]
    ) -> bool:
        """Re-verify artifacts kept on disk while installation was deferred.

        Returns:
            False if an artifact went missing or changed; the action is closed
        """
        try:
            for artifact in artifacts:
                if not artifact.path.is_file():
                    raise IntegrityError(f"MISSING: {artifact.filename} is no longer on disk")
                actual = await asyncio.to_thread(
                    compute_file_hashes, artifact.path, artifact.hashes.keys()
                )
                for name, expected in artifact.hashes.items():
                    if actual[name] != expected:
                        raise HashMismatchError(name, expected, actual[name], artifact.filename)
        except (IntegrityError, OSError) as e:
            self.logger.error(f"Held artifacts of action {action_id} failed re-check: {e}")
            await self._transition(
                action_id,
                url,
                ActionStateEnum.CLOSED,
                Execution.CLOSED,
                Finished.FAILURE,
                f"Downloaded artifacts changed while installation was deferred: {e}",
                error=str(e),
            )
            return False
        return True

    async def _download(
        self, action_id: str, url: str, descriptor: DeploymentDescriptor
    ) -> Optional[list[DownloadedArtifact]]:
        total = descriptor.artifact_count()
        self.state_manager.update_progress(artifacts_done=0, artifacts_total=total, bytes_downloaded=0)
        await self._transition(
            action_id,
            url,
            ActionStateEnum.DOWNLOADING,
            Execution.PROCEEDING,
            Finished.NONE,
            f"Downloading {total} artifacts",
            progress=Progress(cnt=0, of=total),
        )

        action_dir = self._action_dir(action_id)
        artifacts: list[DownloadedArtifact] = []
        completed_bytes = 0

        def on_progress(received: int, _expected: int) -> None:
            self.state_manager.update_progress(bytes_downloaded=completed_bytes + received)

        for chunk in descriptor.chunks:
            for artifact in chunk.artifacts:
                try:
                    result = await self.downloader.fetch_artifact(
                        artifact,
                        action_dir / chunk.directory_name,
                        chunk=chunk,
                        on_progress=on_progress,
                    )
                except (IntegrityError, TransportError) as e:
                    await self._transition(
                        action_id,
                        url,
                        ActionStateEnum.CLOSED,
                        Execution.CLOSED,
                        Finished.FAILURE,
                        f"Download of artifact {artifact.filename} failed: {e}",
                        error=str(e),
                    )
                    return None
                artifacts.append(result)
                completed_bytes += result.size
                self.state_manager.update_progress(
                    artifacts_done=len(artifacts), bytes_downloaded=completed_bytes
                )

        self._artifacts = artifacts
        await self._transition(
            action_id,
            url,
            ActionStateEnum.VERIFIED,
            Execution.PROCEEDING,
            Finished.NONE,
            f"All {total} artifacts downloaded and verified",
            progress=Progress(cnt=total, of=total),
        )
        return artifacts

    async def _install(
        self, action_id: str, url: str, artifacts: list[DownloadedArtifact]
    ) -> None:
        await self._transition(
            action_id,
            url,
            ActionStateEnum.INSTALLING,
            Execution.PROCEEDING,
            Finished.NONE,
            f"Installing {len(artifacts)} artifacts",
        )

        abort = self._abort or asyncio.Event()
        try:
            verdict = await self.installer.install(action_id, artifacts, abort)
        except ExternalStepError as e:
            verdict = InstallResult(success=False, details=[str(e)])
        except Exception as e:
            self.logger.error(f"Installer raised for action {action_id}: {e}", exc_info=True)
            verdict = InstallResult(success=False, details=[f"Installer error: {e}"])

        if verdict.success:
            await self._transition(
                action_id,
                url,
                ActionStateEnum.CLOSED,
                Execution.CLOSED,
                Finished.SUCCESS,
                f"Action {action_id} installed",
                extra_details=verdict.details,
            )
        else:
            reason = "; ".join(verdict.details) or "install step reported failure"
            await self._transition(
                action_id,
                url,
                ActionStateEnum.CLOSED,
                Execution.CLOSED,
                Finished.FAILURE,
                f"Installation failed: {reason}",
                error=f"INSTALL_FAILED: {reason}",
                extra_details=verdict.details,
            )

    async def _transition(
        self,
        action_id: str,
        url: str,
        state: ActionStateEnum,
        execution: Execution,
        finished: Finished,
        message: str,
        error: Optional[str] = None,
        progress: Optional[Progress] = None,
        extra_details: Optional[list[str]] = None,
    ) -> None:
        """Record a transition, then send its one feedback message."""
        async with self.state_manager.lock:
            snapshot = self.snapshot()
            if snapshot.action_id != action_id or not snapshot.is_active:
                self.logger.debug(
                    f"Dropping transition of action {action_id} to {state.value}: "
                    f"slot holds {snapshot.action_id} ({snapshot.state})"
                )
                return
            self.state_manager.update_status(state, message, result=finished, error=error)

        details = [message]
        details.extend(line for line in (extra_details or []) if line != message)
        await self.reporter.send_feedback(
            feedback_url(url), action_id, execution, finished, details, progress
        )

    def _action_dir(self, action_id: str) -> Path:
        return self.download_dir / f"action-{action_id}"

    def _release(self, action_id: str) -> None:
        """Remove downloaded files of a finished action."""
        action_dir = self._action_dir(action_id)
        if action_dir.exists():
            shutil.rmtree(action_dir, ignore_errors=True)
            self.logger.debug(f"Released download directory {action_dir}")
        self._artifacts = []
