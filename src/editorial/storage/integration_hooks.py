"""
Integration Hooks Manager

Delivers post-commit signals to external systems (search index, cold-storage
backup, notifications). Delivery never blocks or rolls back the operation
that produced the signal.
"""

import json
import requests
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List, Callable
import logging
import threading
import queue
import time


class HookEvent(Enum):
    """Hook event types."""
    PAPER_CREATED = "paper.created"
    PAPER_UPDATED = "paper.updated"
    PAPER_DELETED = "paper.deleted"
    PAPER_STATUS_CHANGED = "paper.status_changed"
    PAPER_BACKUP_REQUESTED = "paper.backup_requested"


# Events the search index consumes
INDEX_EVENTS = [HookEvent.PAPER_CREATED, HookEvent.PAPER_UPDATED, HookEvent.PAPER_DELETED]


@dataclass
class HookPayload:
    """Hook event payload."""
    event: HookEvent
    timestamp: datetime
    data: Dict[str, Any]
    metadata: Optional[Dict[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'event': self.event.value,
            'timestamp': self.timestamp.isoformat(),
            'data': self.data,
            'metadata': self.metadata
        }


@dataclass
class HookResult:
    """Result of hook execution."""
    success: bool
    hook_name: str
    event: HookEvent
    execution_time: float
    error: Optional[str] = None
    response: Optional[Dict[str, Any]] = None


class IntegrationHook:
    """Base class for integration hooks."""

    def __init__(self, name: str, events: Optional[List[HookEvent]] = None):
        """
        Initialize hook.

        Args:
            name: Hook name
            events: Events to handle (None = all events)
        """
        self.name = name
        self.events = events
        self.logger = logging.getLogger(f"{__name__}.{name}")

    def should_process(self, event: HookEvent, payload: HookPayload) -> bool:
        """Check if hook should process this event."""
        if self.events is None:
            return True
        return event in self.events

    def process(self, payload: HookPayload) -> HookResult:
        raise NotImplementedError


class WebhookHook(IntegrationHook):
    """HTTP webhook integration."""

    def __init__(
        self,
        name: str,
        url: str,
        events: Optional[List[HookEvent]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: int = 30,
        retry_count: int = 3
    ):
        """
        Initialize webhook hook.

        Args:
            name: Hook name
            url: Webhook URL
            events: Events to deliver (None = all events)
            headers: HTTP headers
            timeout: Request timeout in seconds
            retry_count: Number of attempts before giving up
        """
        super().__init__(name, events)
        self.url = url
        self.headers = headers or {'Content-Type': 'application/json'}
        self.timeout = timeout
        self.retry_count = max(1, retry_count)

    def _post(self, payload: HookPayload) -> requests.Response:
        """POST payload, retrying on request errors."""
        data = json.dumps(payload.to_dict())
        last_error = None
        for attempt in range(self.retry_count):
            try:
                response = requests.post(
                    self.url,
                    data=data,
                    headers=self.headers,
                    timeout=self.timeout
                )
                response.raise_for_status()
                return response
            except requests.RequestException as e:
                last_error = e
                if attempt < self.retry_count - 1:
                    self.logger.warning(f"Webhook attempt {attempt + 1} failed: {e}")
        raise requests.RequestException(
            f"Failed after {self.retry_count} attempts: {last_error}"
        )

    def process(self, payload: HookPayload) -> HookResult:
        """Send webhook HTTP request."""
        started = time.monotonic()
        try:
            response = self._post(payload)
        except requests.RequestException as e:
            return HookResult(
                success=False,
                hook_name=self.name,
                event=payload.event,
                execution_time=time.monotonic() - started,
                error=str(e)
            )
        return HookResult(
            success=True,
            hook_name=self.name,
            event=payload.event,
            execution_time=time.monotonic() - started,
            response={
                'status_code': response.status_code,
                'body': response.text[:500]  # Truncate for logging
            }
        )


class BackupHook(WebhookHook):
    """
    Cold-storage backup webhook.

    The backup service answers with ``{"success", "storage_url",
    "backed_up_at"}``; a successful answer is handed to ``on_result`` so the
    caller can persist the backup location.
    """

    def __init__(
        self,
        name: str,
        url: str,
        on_result: Optional[Callable[[str, Dict[str, Any]], Any]] = None,
        **kwargs
    ):
        super().__init__(name, url, events=[HookEvent.PAPER_BACKUP_REQUESTED], **kwargs)
        self.on_result = on_result

    def process(self, payload: HookPayload) -> HookResult:
        started = time.monotonic()
        try:
            response = self._post(payload)
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            return HookResult(
                success=False,
                hook_name=self.name,
                event=payload.event,
                execution_time=time.monotonic() - started,
                error=str(e)
            )

        if not body.get('success'):
            return HookResult(
                success=False,
                hook_name=self.name,
                event=payload.event,
                execution_time=time.monotonic() - started,
                error=body.get('error', 'Backup service reported failure'),
                response=body
            )

        if self.on_result is not None:
            self.on_result(payload.data['paper_id'], body)

        return HookResult(
            success=True,
            hook_name=self.name,
            event=payload.event,
            execution_time=time.monotonic() - started,
            response=body
        )


class CallbackHook(IntegrationHook):
    """Python callback function hook."""

    def __init__(
        self,
        name: str,
        callback: Callable[[HookPayload], Any],
        events: Optional[List[HookEvent]] = None
    ):
        """
        Initialize callback hook.

        Args:
            name: Hook name
            callback: Callback function
            events: List of events to handle (None = all events)
        """
        super().__init__(name, events)
        self.callback = callback

    def process(self, payload: HookPayload) -> HookResult:
        """Execute callback function."""
        started = time.monotonic()
        try:
            result = self.callback(payload)
        except Exception as e:
            return HookResult(
                success=False,
                hook_name=self.name,
                event=payload.event,
                execution_time=time.monotonic() - started,
                error=str(e)
            )
        return HookResult(
            success=True,
            hook_name=self.name,
            event=payload.event,
            execution_time=time.monotonic() - started,
            response={'result': str(result)}
        )


class IntegrationHookManager:
    """
    Manages integration hooks for external systems.

    Features:
    - Webhook and callback hooks
    - Asynchronous execution from a worker thread
    - Event filtering per hook
    - Hook statistics
    """

    def __init__(
        self,
        async_execution: bool = True,
        max_queue_size: int = 1000
    ):
        """
        Initialize hook manager.

        Args:
            async_execution: Execute hooks asynchronously
            max_queue_size: Maximum queue size for async execution
        """
        self.hooks: Dict[str, IntegrationHook] = {}
        self.async_execution = async_execution
        self.logger = logging.getLogger(__name__)
        self._stats_lock = threading.Lock()
        self.clear_statistics()

        self.event_queue = None
        self.worker_thread = None
        if async_execution:
            self.event_queue = queue.Queue(maxsize=max_queue_size)
            self.worker_thread = threading.Thread(target=self._process_queue, daemon=True)
            self.worker_thread.start()

    def register_hook(self, hook: IntegrationHook):
        self.hooks[hook.name] = hook
        self.logger.info(f"Registered hook: {hook.name}")

    def unregister_hook(self, name: str) -> bool:
        """
        Unregister a hook.

        Args:
            name: Hook name

        Returns:
            True if hook was removed
        """
        if name in self.hooks:
            del self.hooks[name]
            self.logger.info(f"Unregistered hook: {name}")
            return True
        return False

    def fire_event(
        self,
        event: HookEvent,
        data: Dict[str, Any],
        metadata: Optional[Dict[str, str]] = None
    ) -> List[HookResult]:
        """
        Fire an event to all registered hooks.

        Never raises: a full queue drops the event with an error log.

        Args:
            event: Event type
            data: Event data
            metadata: Optional metadata

        Returns:
            List of HookResult (empty if async)
        """
        payload = HookPayload(
            event=event,
            timestamp=datetime.now(timezone.utc),
            data=data,
            metadata=metadata
        )

        with self._stats_lock:
            self.stats['events_fired'] += 1

        if self.async_execution:
            try:
                self.event_queue.put_nowait(payload)
            except queue.Full:
                with self._stats_lock:
                    self.stats['events_dropped'] += 1
                self.logger.error(f"Hook queue full, dropped {event.value} for {data.get('paper_id')}")
            return []
        return self._execute_hooks(payload)

    def _execute_hooks(self, payload: HookPayload) -> List[HookResult]:
        """Execute all hooks for an event."""
        results = []

        for hook in list(self.hooks.values()):
            if not hook.should_process(payload.event, payload):
                continue

            try:
                result = hook.process(payload)
            except Exception as e:
                self.logger.error(f"Exception in hook {hook.name}: {e}")
                result = HookResult(
                    success=False,
                    hook_name=hook.name,
                    event=payload.event,
                    execution_time=0.0,
                    error=str(e)
                )
            results.append(result)

            with self._stats_lock:
                self.stats['hooks_executed'] += 1
                self.stats['total_execution_time'] += result.execution_time
                if not result.success:
                    self.stats['hooks_failed'] += 1

            if not result.success:
                self.logger.error(f"Hook {hook.name} failed: {result.error}")
            else:
                self.logger.debug(f"Hook {hook.name} executed in {result.execution_time:.3f}s")

        return results

    def _process_queue(self):
        """Worker thread for async hook execution."""
        while True:
            payload = self.event_queue.get()
            try:
                if payload is None:
                    return
                self._execute_hooks(payload)
            except Exception as e:
                self.logger.error(f"Error processing event queue: {e}")
            finally:
                self.event_queue.task_done()

    def wait_idle(self):
        """Block until every queued event has been delivered."""
        if self.async_execution:
            self.event_queue.join()

    def shutdown(self, timeout: float = 5.0):
        """Stop the worker after the queued events are delivered."""
        if self.async_execution and self.worker_thread.is_alive():
            self.event_queue.put(None)
            self.worker_thread.join(timeout)

    def get_statistics(self) -> Dict[str, Any]:
        """Get hook execution statistics."""
        with self._stats_lock:
            stats = dict(self.stats)
        executed = stats['hooks_executed']
        return {
            **stats,
            'avg_execution_time': stats['total_execution_time'] / executed if executed else 0.0,
            'registered_hooks': len(self.hooks),
            'async_queue_size': self.event_queue.qsize() if self.async_execution else 0,
            'success_rate': (executed - stats['hooks_failed']) / max(executed, 1) * 100
        }

    def clear_statistics(self):
        with self._stats_lock:
            self.stats = {
                'events_fired': 0,
                'events_dropped': 0,
                'hooks_executed': 0,
                'hooks_failed': 0,
                'total_execution_time': 0.0
            }

    def list_hooks(self) -> List[Dict[str, str]]:
        """List all registered hooks."""
        return [
            {
                'name': hook.name,
                'type': hook.__class__.__name__
            }
            for hook in self.hooks.values()
        ]
