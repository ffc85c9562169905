"""
Multi-instance Gerrit client.

This module owns the instance -> handler registry, the shared credential and
the account cache, and exposes the public polling API. All shared state sits
behind one reader/writer lock: queries share it, reconfiguration, credential
rotation and account cache fills take it exclusively.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog

from .auth import CredentialRotator, select_credential_source
from .config import Settings
from .exceptions import (
    ClientUpdateError,
    ConfigurationError,
    GerritAPIError,
    InstanceNotFoundError,
    ProjectNotFoundError,
)
from .gateway import GerritRestClient
from .handler import InstanceHandler
from .locks import ReadWriteLock
from .metrics import MetricsSink, QueryResultMetrics
from .models import (
    AccountInfo,
    ChangeInfo,
    InstanceProjects,
    LastSyncState,
    ProjectFilter,
    ReviewInput,
)
from .poller import query_strings_from_filter
from .state import SyncStateTracker

logger = structlog.get_logger(__name__)

GatewayFactory = Callable[[str], Any]
ConfigGetter = Callable[[], InstanceProjects | None]


class GerritClient:
    """
    Client for many Gerrit instances.

    Handlers are created per instance from ``gateway_factory`` (a
    ``GerritRestClient`` by default) and kept across reconfigurations so
    their connections and credentials are not churned.
    """

    def __init__(
        self,
        instances: InstanceProjects | None = None,
        gateway_factory: GatewayFactory | None = None,
        metrics: MetricsSink | None = None,
        auth_refresh_interval_seconds: float = 60.0,
        config_reload_interval_seconds: float = 1.0,
        request_timeout_seconds: float = 30.0,
    ):
        """
        Initialize the client.

        Args:
            instances: Initial instance -> project -> filter map
            gateway_factory: Builds the gateway for an instance URL
            metrics: Sink for per-project query outcomes
            auth_refresh_interval_seconds: Credential re-read interval
            config_reload_interval_seconds: Configuration reload interval
            request_timeout_seconds: Timeout for the default REST gateway

        Raises:
            ConfigurationError: If a gateway cannot be created for an instance
        """
        self._lock = ReadWriteLock()
        self._handlers: dict[str, InstanceHandler] = {}
        self._accounts: dict[str, AccountInfo] = {}
        self.metrics = metrics if metrics is not None else QueryResultMetrics()
        self._gateway_factory = gateway_factory or (
            lambda instance: GerritRestClient(
                instance, timeout=request_timeout_seconds
            )
        )
        self.rotator = CredentialRotator(
            self._lock,
            lambda: self._handlers.values(),
            interval_seconds=auth_refresh_interval_seconds,
        )
        self.config_reload_interval_seconds = config_reload_interval_seconds
        self._config_task: asyncio.Task[None] | None = None

        for instance, projects in (instances or {}).items():
            try:
                self._handlers[instance] = self._new_handler(instance, projects)
            except Exception as e:
                raise ConfigurationError(
                    f"Creating gerrit client for {instance}: {e}"
                ) from e

    @classmethod
    def from_settings(
        cls, settings: Settings, metrics: MetricsSink | None = None
    ) -> "GerritClient":
        """Create a client configured from application settings."""
        return cls(
            settings.instance_projects,
            metrics=metrics,
            auth_refresh_interval_seconds=settings.auth_refresh_interval_seconds,
            config_reload_interval_seconds=settings.config_reload_interval_seconds,
            request_timeout_seconds=settings.request_timeout_seconds,
        )

    @property
    def handlers(self) -> dict[str, InstanceHandler]:
        """Snapshot of the registered handlers."""
        return dict(self._handlers)

    def _new_handler(
        self, instance: str, projects: dict[str, ProjectFilter | None]
    ) -> InstanceHandler:
        gateway = self._gateway_factory(instance)
        return InstanceHandler.from_gateway(
            instance, dict(projects), gateway, self.metrics
        )

    async def update_clients(self, instances: InstanceProjects) -> None:
        """
        Reconcile the handler set with the desired instances.

        Existing handlers are kept and only get their project set replaced,
        new instances get a fresh handler, and instances no longer listed are
        dropped. Instances that fail to initialize are skipped; the others are
        still applied.

        Raises:
            ClientUpdateError: If any new instance could not be initialized
        """
        new_handlers: dict[str, InstanceHandler] = {}
        errors: list[Exception] = []

        async with self._lock.write():
            for instance, projects in instances.items():
                handler = self._handlers.get(instance)
                if handler is not None:
                    # Already initialized, only the projects underneath change.
                    handler.projects = dict(projects)
                    new_handlers[instance] = handler
                    continue

                try:
                    handler = self._new_handler(instance, projects)
                except Exception as e:
                    logger.error(
                        "Creating gerrit client", instance=instance, error=str(e)
                    )
                    errors.append(e)
                    continue

                self.rotator.apply_current(handler)
                new_handlers[instance] = handler

            removed = [
                handler
                for instance, handler in self._handlers.items()
                if instance not in new_handlers
            ]
            self._handlers = new_handlers

        for handler in removed:
            logger.info("Dropping gerrit instance", instance=handler.instance)
            await handler.close()

        if errors:
            raise ClientUpdateError(errors)

    async def authenticate(
        self, cookiefile_path: str | None = None, token_path: str | None = None
    ) -> None:
        """
        Authenticate requests using the given credential file.

        The cookie file takes precedence over the token file. The first call
        with a source starts the background rotator; later calls only swap the
        source and re-read it.
        """
        source = select_credential_source(cookiefile_path, token_path)
        if source is None:
            return

        await self.rotator.set_source(source)
        self.rotator.start()
        # Make sure the very next request is already authenticated.
        await self.rotator.rotate_once()

    async def apply_global_config(
        self,
        config_getter: ConfigGetter,
        sync_tracker: SyncStateTracker | None = None,
        cookiefile_path: str | None = None,
        token_path: str | None = None,
        additional: Callable[[], None] | None = None,
    ) -> None:
        """
        Apply configuration now, then keep re-applying it in the background.

        Args:
            config_getter: Returns the desired instance map, or None if unknown
            sync_tracker: Tracker to reconcile with the configured projects
            cookiefile_path: Cookie file credential source
            token_path: Token file credential source
            additional: Extra hook run after each reconfiguration
        """
        await self.apply_global_config_once(
            config_getter, sync_tracker, cookiefile_path, token_path, additional
        )
        if self._config_task is not None:
            return
        self._config_task = asyncio.create_task(
            self._config_loop(
                config_getter, sync_tracker, cookiefile_path, token_path, additional
            ),
            name="gerrit-config-reload",
        )

    async def apply_global_config_once(
        self,
        config_getter: ConfigGetter,
        sync_tracker: SyncStateTracker | None = None,
        cookiefile_path: str | None = None,
        token_path: str | None = None,
        additional: Callable[[], None] | None = None,
    ) -> None:
        instances = config_getter()
        if instances is None:
            return

        try:
            await self.update_clients(instances)
        except ClientUpdateError as e:
            logger.error("Updating clients", error=str(e))

        if sync_tracker is not None:
            try:
                await sync_tracker.update(instances)
            except Exception as e:
                logger.error("Syncing states", error=str(e))

        if additional is not None:
            additional()

        await self.authenticate(cookiefile_path, token_path)

    async def _config_loop(self, *args: Any) -> None:
        while True:
            # A second of delay before picking up config changes is fine.
            await asyncio.sleep(self.config_reload_interval_seconds)
            try:
                await self.apply_global_config_once(*args)
            except Exception as e:
                logger.error("Applying gerrit config failed", error=str(e))

    async def close(self) -> None:
        """Stop background tasks and close every gateway."""
        if self._config_task is not None and not self._config_task.done():
            self._config_task.cancel()
            try:
                await self._config_task
            except asyncio.CancelledError:
                pass
        await self.rotator.stop()

        async with self._lock.write():
            handlers = list(self._handlers.values())
            self._handlers = {}
        for handler in handlers:
            await handler.close()

    async def query_changes(
        self, last_state: LastSyncState, rate_limit: int
    ) -> dict[str, list[ChangeInfo]]:
        """
        Query all projects of all instances for changes since their watermark.

        Failing projects are logged and skipped; only instances with at least
        one change appear in the result.
        """
        result: dict[str, list[ChangeInfo]] = {}
        async with self._lock.read():
            for handler in self._handlers.values():
                changes = await handler.query_all_changes(
                    last_state.get(handler.instance), rate_limit
                )
                if not changes:
                    continue
                result.setdefault(handler.instance, []).extend(changes)
        return result

    async def query_changes_for_instance(
        self, instance: str, last_state: LastSyncState, rate_limit: int
    ) -> list[ChangeInfo]:
        """Query one instance; an unregistered instance yields no changes."""
        async with self._lock.read():
            handler = self._handlers.get(instance)
            if handler is None:
                logger.warning(
                    "Instance not registered as handlers",
                    instance=instance,
                    last_state={
                        host: sorted(projects) for host, projects in last_state.items()
                    },
                )
                return []
            return await handler.query_all_changes(last_state.get(instance), rate_limit)

    async def query_changes_for_project(
        self,
        instance: str,
        project: str,
        last_update: datetime,
        rate_limit: int,
        *additional_filters: str,
    ) -> list[ChangeInfo]:
        """
        Query changes for one project.

        This does not touch any sync state: it cannot tell whether the other
        projects of the instance were polled too, so advancing the watermark
        is up to the caller.

        Raises:
            InstanceNotFoundError: If the instance is not registered
            ProjectNotFoundError: If the project is not watched on the instance
            GerritAPIError: If the query fails
        """
        async with self._lock.read():
            handler = self._handlers.get(instance)
            if handler is None:
                raise InstanceNotFoundError(instance)
            if project not in handler.projects:
                raise ProjectNotFoundError(instance, project)

            filters = [
                *query_strings_from_filter(handler.projects[project]),
                *additional_filters,
            ]
            try:
                return await handler.query_changes_for_project(
                    project, last_update, rate_limit, filters
                )
            except GerritAPIError as e:
                raise GerritAPIError(
                    f"failed to query changes for project {project!r} "
                    f"of {instance!r} instance: {e}",
                    status_code=e.status_code,
                ) from e

    def _handler(self, instance: str) -> InstanceHandler:
        handler = self._handlers.get(instance)
        if handler is None:
            raise InstanceNotFoundError(instance)
        return handler

    async def get_change(self, instance: str, change_id: str) -> ChangeInfo:
        """Fetch a single change."""
        async with self._lock.read():
            handler = self._handler(instance)
            try:
                return await handler.change_service.get_change(change_id)
            except GerritAPIError as e:
                raise GerritAPIError(
                    f"error getting current change: {e}", status_code=e.status_code
                ) from e

    async def change_exists(self, instance: str, change_id: str) -> bool:
        """Check whether a change exists; a 404 means it does not."""
        async with self._lock.read():
            handler = self._handler(instance)
            try:
                await handler.change_service.get_change(change_id)
            except GerritAPIError as e:
                if e.status_code == 404:
                    return False
                raise GerritAPIError(
                    f"error getting current change: {e}", status_code=e.status_code
                ) from e
            return True

    async def set_review(
        self,
        instance: str,
        change_id: str,
        revision: str,
        message: str,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Post a review message (and optional labels) on a revision."""
        async with self._lock.read():
            handler = self._handler(instance)
            try:
                await handler.change_service.set_review(
                    change_id,
                    revision,
                    ReviewInput(message=message, labels=labels or {}),
                )
            except GerritAPIError as e:
                raise GerritAPIError(
                    f"cannot comment to gerrit: {e}", status_code=e.status_code
                ) from e

    async def get_branch_revision(
        self, instance: str, project: str, branch: str
    ) -> str:
        """Return the SHA the head of a branch points at."""
        async with self._lock.read():
            handler = self._handler(instance)
            branch_info = await handler.project_service.get_branch(project, branch)
            return branch_info.revision

    async def account(self, instance: str) -> AccountInfo:
        """
        Return the account the client is authenticated as on an instance.

        The lookup runs under the exclusive lock because it may fill the cache;
        once cached, the account is kept for the client's lifetime.
        """
        async with self._lock.write():
            existing = self._accounts.get(instance)
            if existing is not None:
                return existing

            handler = self._handler(instance)
            try:
                account = await handler.account_service.get_account("self")
            except GerritAPIError as e:
                raise GerritAPIError(
                    f"get_account() failed with new authentication: {e}",
                    status_code=e.status_code,
                ) from e
            self._accounts[instance] = account
            return account
