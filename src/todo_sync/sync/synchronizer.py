"""Offline-first synchronizer.

User mutations are applied to the local store right away and recorded in the
operation queue. A sync pass drains that queue against the remote gateway in
enqueue order, then reconciles the server's task list into the local store
by last-write-wins on ``updated_at`` and pushes the merged list to the
application state sink.

Only one pass runs at a time. Triggers arriving while a pass is in flight
(timer ticks, connectivity restored, manual requests) are no-ops.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set

from ..errors import (
    AuthenticationError,
    GatewayError,
    GatewayNotFound,
    GatewayRejected,
    GatewayTimeout,
    NetworkUnavailable,
    SyncError,
    TaskNotFoundError,
)
from ..storage import OperationQueue, TaskStore
from ..sync_models import (
    OperationType,
    QueuedOperation,
    SyncResult,
    SyncState,
    SyncStatus,
    SyncStatusReport,
)
from ..task import Task, is_temporary_id
from ..utils.datetime import now_utc, parse_iso, to_iso_string
from ..utils.validation import validate_task_payload
from .connectivity import ConnectivityMonitor
from .gateway import RemoteTaskGateway


logger = logging.getLogger(__name__)


LAST_SYNC_KEY = "lastSync"


class _DrainAborted(Exception):
    """Internal signal: stop draining, connectivity is gone."""


class Synchronizer:
    """Drains queued mutations and reconciles server state for one owner."""

    def __init__(self, owner_id: str, store: TaskStore, queue: OperationQueue,
                 gateway: RemoteTaskGateway, sink=None,
                 monitor: Optional[ConnectivityMonitor] = None,
                 interval: float = 30.0, request_timeout: float = 10.0,
                 max_attempts: int = 5, backoff_max: float = 300.0,
                 push_on_write: bool = False,
                 clock: Callable[[], float] = time.monotonic):
        """Initialize the synchronizer.

        Args:
            owner_id: The authenticated user whose tasks are synchronized
            store: Local task records
            queue: Pending operations
            gateway: Remote task API
            sink: Application state sink receiving task list updates
            monitor: Connectivity monitor; without one the client is always online
            interval: Seconds between periodic sync passes
            request_timeout: Upper bound for a single gateway call
            max_attempts: Rejections tolerated before an operation is abandoned
            backoff_max: Cap in seconds for the delay after failing passes
            push_on_write: Request a background pass after each local mutation
            clock: Monotonic clock, replaceable in tests
        """
        self.owner_id = owner_id
        self.store = store
        self.queue = queue
        self.gateway = gateway
        self.sink = sink
        self.monitor = monitor
        self.interval = interval
        self.request_timeout = request_timeout
        self.max_attempts = max_attempts
        self.backoff_max = backoff_max
        self.push_on_write = push_on_write
        self._clock = clock

        self.state = SyncState.IDLE if self.is_online else SyncState.OFFLINE
        self.last_result: Optional[SyncResult] = None
        self._sync_in_progress = False
        self._consecutive_failures = 0
        self._retry_after = 0.0
        self._timer_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self.logger = logging.getLogger(__name__)

    @property
    def is_online(self) -> bool:
        return self.monitor.is_online if self.monitor is not None else True

    @property
    def is_syncing(self) -> bool:
        return self._sync_in_progress

    # Sink notifications

    def _notify(self, method: str, *args):
        if self.sink is not None:
            getattr(self.sink, method)(*args)

    # User actions

    async def get_tasks(self) -> List[Task]:
        """Return the owner's tasks from the local store."""
        return await self.store.get(self.owner_id)

    async def load_tasks(self) -> List[Task]:
        """Initial load: sync when online, then publish the local list."""
        if self.sink is not None and hasattr(self.sink, "set_loading"):
            self.sink.set_loading(True)

        if self.is_online:
            await self.sync(force=True)

        tasks = await self.store.get(self.owner_id)
        self._notify("replace_tasks", tasks)
        return tasks

    async def create_task(self, data: Dict[str, Any]) -> Task:
        """Create a task locally and queue it for the server.

        Raises:
            TaskValidationError: If the payload would be rejected
        """
        payload = validate_task_payload(data)
        task = Task.new_local(self.owner_id, payload)

        await self.store.put(task)
        await self.queue.enqueue(OperationType.CREATE, task.id, payload)
        self._notify("upsert_task", task)
        self.logger.info(f"Created task {task.id} locally: {task.title}")

        self._after_write()
        return task

    async def update_task(self, task_id: str, updates: Dict[str, Any]) -> Task:
        """Apply an update locally and queue it for the server.

        Raises:
            TaskValidationError: If the payload would be rejected
            TaskNotFoundError: If the task is not in the local store
        """
        payload = validate_task_payload(updates, partial=True)
        current = await self.store.get_task(task_id)
        if current is None or current.owner_id != self.owner_id:
            raise TaskNotFoundError(task_id)

        updated = current.apply_changes(payload)
        await self.store.put(updated)
        await self.queue.enqueue(OperationType.UPDATE, task_id, payload)
        self._notify("upsert_task", updated)
        self.logger.info(f"Updated task {task_id} locally")

        self._after_write()
        return updated

    async def toggle_complete(self, task_id: str) -> Task:
        """Flip the completion flag of a task."""
        current = await self.store.get_task(task_id)
        if current is None or current.owner_id != self.owner_id:
            raise TaskNotFoundError(task_id)
        return await self.update_task(task_id, {"completed": not current.completed})

    async def delete_task(self, task_id: str):
        """Delete a task locally and queue the deletion for the server.

        Deleting a task that is not stored locally is allowed; the server may
        still hold it.
        """
        await self.store.delete(task_id)
        await self.queue.enqueue(OperationType.DELETE, task_id)
        self._notify("remove_task", task_id)
        self.logger.info(f"Deleted task {task_id} locally")

        self._after_write()

    async def clear_offline_data(self):
        """Forget the owner's local records and every pending operation."""
        await self.store.clear(self.owner_id)
        await self.queue.clear()
        self._notify("replace_tasks", [])

    def _after_write(self):
        if self.push_on_write and self.is_online:
            self.request_sync()

    # Status

    async def get_status(self) -> SyncStatusReport:
        """Report connectivity, state and queue depth."""
        return SyncStatusReport(
            is_online=self.is_online,
            state=self.state,
            pending_operations=await self.queue.pending_count(),
            last_sync=parse_iso(await self.store.get_meta(LAST_SYNC_KEY)),
            storage_durable=self.store.durable,
            storage_warning=self.store.backend.degraded_reason,
            consecutive_failures=self._consecutive_failures,
        )

    # Triggers

    def request_sync(self, force: bool = False) -> Optional[asyncio.Task]:
        """Schedule a sync pass in the background unless one is running."""
        if self._sync_in_progress:
            return None

        task = asyncio.ensure_future(self.sync(force=force))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def tick(self) -> Optional[SyncResult]:
        """Periodic timer trigger."""
        if not self.is_online or self._sync_in_progress:
            return None
        return await self.sync()

    async def _on_connectivity_change(self, online: bool):
        if online:
            if self.state == SyncState.OFFLINE:
                self.state = SyncState.IDLE
            self.request_sync(force=True)
        elif not self._sync_in_progress:
            self.state = SyncState.OFFLINE

    async def _run_timer(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception as e:
                self.logger.error(f"Periodic sync failed: {e}")

    def start(self):
        """Start the periodic timer and follow connectivity changes."""
        if self.monitor is not None:
            self.monitor.on_change(self._on_connectivity_change)
        if self._timer_task is None:
            self._timer_task = asyncio.ensure_future(self._run_timer())
            self.logger.info(f"Periodic sync started (interval={self.interval}s)")

    async def stop(self):
        """Stop the timer and wait for background passes to finish."""
        if self.monitor is not None:
            self.monitor.remove_callback(self._on_connectivity_change)

        if self._timer_task is not None:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # Sync pass

    async def sync(self, force: bool = False) -> SyncResult:
        """Run one pass: drain the queue, then reconcile with the server.

        Args:
            force: Ignore the backoff delay left by earlier failing passes

        Returns:
            Result of the pass
        """
        if self._sync_in_progress:
            self.logger.debug("Sync already in progress, trigger ignored")
            return self._finish(SyncResult(status=SyncStatus.SKIPPED))

        if not self.is_online:
            self.state = SyncState.OFFLINE
            return self._finish(SyncResult(status=SyncStatus.OFFLINE))

        if not force and self._clock() < self._retry_after:
            self.logger.debug("Backing off after failed passes, trigger ignored")
            return self._finish(SyncResult(status=SyncStatus.SKIPPED))

        self._sync_in_progress = True
        self.state = SyncState.SYNCING
        result = SyncResult(status=SyncStatus.SUCCESS)
        self.logger.info("Sync started")

        try:
            await self._drain(result)
            reconciled = await self._reconcile(result)
            if reconciled:
                await self.store.set_meta(LAST_SYNC_KEY, to_iso_string(now_utc()))
            self._settle(result, retryable_failure=not reconciled)
        except _DrainAborted:
            result.status = SyncStatus.OFFLINE
            self.logger.warning("Connectivity lost during sync, remaining operations stay queued")
        except SyncError as e:
            result.status = SyncStatus.ERROR
            result.add_error(str(e))
            self.logger.error(f"Sync failed: {e}")
        finally:
            self._sync_in_progress = False
            self.state = SyncState.IDLE if self.is_online else SyncState.OFFLINE

        self.last_result = self._finish(result)
        self.logger.info(
            f"Sync finished: {result.status.value}, {result.operations_applied} applied, "
            f"{result.failed} failed, {result.inserted + result.overwritten} reconciled"
        )
        return result

    @staticmethod
    def _finish(result: SyncResult) -> SyncResult:
        result.complete()
        return result

    def _settle(self, result: SyncResult, retryable_failure: bool):
        """Pick the final status and update the backoff window."""
        if result.failed or result.abandoned or result.errors:
            result.status = SyncStatus.PARTIAL
        elif not result.has_changes():
            result.status = SyncStatus.NO_CHANGES

        if result.failed or retryable_failure:
            self._consecutive_failures += 1
            delay = min(self.backoff_max, self.interval * 2 ** (self._consecutive_failures - 1))
            self._retry_after = self._clock() + delay
            self.logger.warning(
                f"Sync pass had failures ({self._consecutive_failures} in a row), "
                f"next periodic attempt in {delay:.0f}s"
            )
        else:
            self._consecutive_failures = 0
            self._retry_after = 0.0

    async def _call(self, coro):
        """Await a gateway call under the request timeout."""
        try:
            return await asyncio.wait_for(coro, timeout=self.request_timeout)
        except asyncio.TimeoutError as e:
            raise GatewayTimeout(f"Gateway call exceeded {self.request_timeout}s") from e

    async def _go_offline(self):
        if self.monitor is not None:
            await self.monitor.set_online(False)

    # Drain

    async def _cancel_unconfirmed(self, operations: List[QueuedOperation],
                                  result: SyncResult) -> List[QueuedOperation]:
        """Drop every operation of a temporary task that was deleted before it was created remotely."""
        created = {op.task_id for op in operations if op.type == OperationType.CREATE}
        deleted = {
            op.task_id for op in operations
            if op.type == OperationType.DELETE and is_temporary_id(op.task_id)
        }
        cancelled = created & deleted
        if not cancelled:
            return operations

        remaining = []
        for op in operations:
            if op.task_id in cancelled:
                await self.queue.remove(op.id)
                result.cancelled += 1
            else:
                remaining.append(op)

        for task_id in cancelled:
            await self.store.delete(task_id)
            self.logger.debug(f"Cancelled unsynced task {task_id}")
        return remaining

    async def _drain(self, result: SyncResult):
        operations = await self._cancel_unconfirmed(await self.queue.list(), result)
        pending_creates = {op.task_id for op in operations if op.type == OperationType.CREATE}
        confirmed: Dict[str, str] = {}
        blocked: Set[str] = set()

        for op in operations:
            if not self.is_online:
                raise _DrainAborted()

            if op.task_id in confirmed:
                op.task_id = confirmed[op.task_id]

            if op.task_id in blocked:
                # Later operations for a task wait until its earlier ones succeed
                result.deferred += 1
                continue

            if (op.type != OperationType.CREATE and is_temporary_id(op.task_id)
                    and op.task_id not in pending_creates):
                await self.queue.remove(op.id)
                result.dropped += 1
                self.logger.debug(f"Dropped {op.type.value} for never-created task {op.task_id}")
                continue

            try:
                if op.type == OperationType.CREATE:
                    server_id = await self._apply_create(op)
                    confirmed[op.task_id] = server_id
                    result.created += 1
                elif op.type == OperationType.UPDATE:
                    await self._apply_update(op)
                    result.updated += 1
                else:
                    await self._apply_delete(op)
                    result.deleted += 1
            except NetworkUnavailable as e:
                self.logger.warning(f"Server unreachable while syncing {op.id}: {e}")
                await self._go_offline()
                raise _DrainAborted() from e
            except GatewayNotFound as e:
                if op.type == OperationType.CREATE:
                    await self._reject(op, e, result, blocked)
                else:
                    await self._resolve_not_found(op)
                    result.dropped += 1
            except AuthenticationError as e:
                # Every remaining call would fail the same way; not the operation's fault
                result.failed += 1
                result.add_error(f"Authentication failed: {e}")
                self.logger.error(f"Authentication failed while syncing: {e}")
                break
            except GatewayRejected as e:
                await self._reject(op, e, result, blocked)
            except GatewayError as e:
                await self.queue.record_failure(op, str(e))
                blocked.add(op.task_id)
                result.failed += 1
                self.logger.warning(f"Failed to sync {op.type.value} for {op.task_id}, will retry: {e}")

    async def _queued_after(self, op: QueuedOperation) -> List[QueuedOperation]:
        """Operations for the same task still waiting behind ``op``.

        Read from the live queue, so it includes mutations made while the
        gateway call for ``op`` was in flight.
        """
        return [
            later for later in await self.queue.list()
            if later.task_id == op.task_id and later.id != op.id
        ]

    async def _apply_create(self, op: QueuedOperation) -> str:
        created = await self._call(self.gateway.create_task(op.payload))
        created.owner_id = created.owner_id or self.owner_id
        created.is_unconfirmed = False

        followups = await self._queued_after(op)
        local = await self.store.get_task(op.task_id)
        if local is None and any(later.type == OperationType.DELETE for later in followups):
            # Deleted locally mid-flight; the queued delete now targets the server record
            await self.queue.retarget(op.task_id, created.id)
            await self.queue.remove(op.id)
            self.logger.info(f"Task {op.task_id} confirmed as {created.id} after local delete")
            return created.id

        if followups and local is not None:
            # Keep the newer local edits until their queued updates land
            record = Task.from_dict({
                **local.to_dict(),
                "_id": created.id,
                "createdAt": to_iso_string(created.created_at),
                "isOffline": False,
            })
        else:
            record = created

        await self.store.put(record)
        await self.store.delete(op.task_id)
        await self.queue.retarget(op.task_id, created.id)
        await self.queue.remove(op.id)
        self._notify("replace_task_id", op.task_id, record)
        self.logger.info(f"Task {op.task_id} confirmed as {created.id}")
        return created.id

    async def _apply_update(self, op: QueuedOperation):
        updated = await self._call(self.gateway.update_task(op.task_id, op.payload))
        updated.owner_id = updated.owner_id or self.owner_id
        updated.is_unconfirmed = False

        followups = await self._queued_after(op)
        local = await self.store.get_task(op.task_id)
        if local is not None and not followups:
            await self.store.put(updated)
            self._notify("upsert_task", updated)
        await self.queue.remove(op.id)

    async def _apply_delete(self, op: QueuedOperation):
        await self._call(self.gateway.delete_task(op.task_id))
        await self.store.delete(op.task_id)
        await self.queue.remove(op.id)

    async def _resolve_not_found(self, op: QueuedOperation):
        """The server no longer has the task: the operation is already moot."""
        await self.queue.remove(op.id)
        if await self.store.delete(op.task_id):
            self._notify("remove_task", op.task_id)
        self.logger.info(f"Task {op.task_id} is gone on the server, dropped {op.type.value}")

    async def _reject(self, op: QueuedOperation, error: GatewayError,
                      result: SyncResult, blocked: Set[str]):
        op = await self.queue.record_failure(op, str(error))
        if op.attempts >= self.max_attempts:
            await self.queue.remove(op.id)
            result.abandoned += 1
            result.add_error(f"{op.type.value} for {op.task_id} abandoned: {error}")
            self.logger.error(
                f"Abandoning {op.type.value} for task {op.task_id} after "
                f"{op.attempts} rejected attempts: {error}"
            )
        else:
            blocked.add(op.task_id)
            result.failed += 1
            self.logger.warning(
                f"Server rejected {op.type.value} for {op.task_id} "
                f"(attempt {op.attempts}/{self.max_attempts}): {error}"
            )

    # Reconciliation

    async def _reconcile(self, result: SyncResult) -> bool:
        """Merge the server's task list into the local store.

        Returns:
            True if the server list was fetched and merged
        """
        try:
            server_tasks = await self._call(self.gateway.list_tasks(self.owner_id))
        except NetworkUnavailable as e:
            self.logger.warning(f"Server unreachable during reconciliation: {e}")
            result.add_error(f"Reconciliation skipped: {e}")
            await self._go_offline()
            return False
        except GatewayError as e:
            self.logger.error(f"Failed to fetch tasks from server: {e}")
            result.add_error(f"Reconciliation failed: {e}")
            return False

        local = {task.id: task for task in await self.store.get(self.owner_id)}
        pending_deletes = {
            op.task_id for op in await self.queue.list() if op.type == OperationType.DELETE
        }

        changed = []
        for server_task in server_tasks:
            server_task.owner_id = server_task.owner_id or self.owner_id
            server_task.is_unconfirmed = False
            if server_task.id in pending_deletes:
                continue

            local_task = local.get(server_task.id)
            if local_task is None:
                result.inserted += 1
                changed.append(server_task)
            elif server_task.is_newer_than(local_task):
                result.overwritten += 1
                changed.append(server_task)

        await self.store.put_many(changed)
        merged = await self.store.get(self.owner_id)
        self._notify("replace_tasks", merged)
        self.logger.debug(
            f"Reconciled {len(server_tasks)} server tasks: "
            f"{result.inserted} inserted, {result.overwritten} overwritten"
        )
        return True
