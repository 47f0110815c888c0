"""Dispatcher composition root: build and lifecycle-manage concrete dependencies.

Composition may: import concrete classes, call factories, store interface types,
manage high-level lifecycle.
"""
from __future__ import annotations

import os
import socket
from typing import Any

from loguru import logger

from dispatcher.app.application.dispatch_service import DispatchService
from dispatcher.app.application.dispatch_worker import DispatchWorker
from dispatcher.app.config.settings import Settings
from dispatcher.app.core import SERVICE_NAME
from dispatcher.app.infrastructure.persistence.factory import create_message_repository
from dispatcher.app.infrastructure.sender.factory import create_message_sender
from dispatcher.app.ports.message_repository import MessageRepository
from dispatcher.app.ports.message_sender import MessageSender


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class WorkerDependencies:
    """Holds wired dispatcher dependencies and their lifecycle."""

    def __init__(self, *, settings: Settings) -> None:
        self._settings = settings
        self._repository: MessageRepository | None = None
        self._sender: MessageSender | None = None
        self._dispatch_service: DispatchService | None = None
        self._dispatch_worker: DispatchWorker | None = None
        self._connected = False

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def repository(self) -> MessageRepository:
        if self._repository is None:
            raise RuntimeError("repository is not initialized")
        return self._repository

    @property
    def sender(self) -> MessageSender:
        if self._sender is None:
            raise RuntimeError("sender is not initialized")
        return self._sender

    @property
    def dispatch_service(self) -> DispatchService:
        if self._dispatch_service is None:
            raise RuntimeError("dispatch_service is not initialized")
        return self._dispatch_service

    @property
    def dispatch_worker(self) -> DispatchWorker:
        if self._dispatch_worker is None:
            raise RuntimeError("dispatch_worker is not initialized")
        return self._dispatch_worker

    async def connect(self) -> None:
        settings = self._settings
        self._sender = create_message_sender(settings)
        try:
            self._repository = await create_message_repository(settings)
        except Exception:
            await self._sender.close()
            self._sender = None
            raise

        self._dispatch_service = DispatchService(
            self.repository,
            self.sender,
            worker_id=settings.worker_id or default_worker_id(),
            max_retries=settings.max_retries,
            batch_size=settings.batch_size,
            claim_ttl_seconds=settings.claim_ttl_seconds,
            max_content_length=settings.max_content_length,
            status_update_attempts=settings.status_update_attempts,
        )
        self._dispatch_worker = DispatchWorker(
            self._dispatch_service,
            poll_interval_seconds=settings.poll_interval_seconds,
            shutdown_timeout_seconds=settings.shutdown_timeout_seconds,
        )
        self._connected = True
        _log(
            "dependencies_connected",
            repository_backend=settings.repository_backend,
            sender_backend=settings.sender_backend,
        )

    async def close(self) -> None:
        if self._dispatch_worker is not None:
            try:
                await self._dispatch_worker.stop()
            except Exception as exc:
                logger.warning("dispatch worker stop failed: {}", exc)
            self._dispatch_worker = None

        if self._sender is not None:
            try:
                await self._sender.close()
            except Exception as exc:
                logger.warning("sender close failed: {}", exc)
            self._sender = None

        if self._repository is not None:
            try:
                await self._repository.close()
            except Exception as exc:
                logger.warning("repository close failed: {}", exc)

        self._repository = None
        self._dispatch_service = None
        self._connected = False


def create_worker_dependencies(settings: Settings | None = None) -> WorkerDependencies:
    return WorkerDependencies(settings=settings or Settings())
