import asyncio
import dataclasses
import logging
import typing

from infragraph import (
    diagnostics,
    errors,
    graph,
    outputs,
    resources,
    schemas,
    settings,
    state,
    waiters,
)
from infragraph.state import ResourceStatus

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class ResourceError:
    address: str
    error: Exception

    def __str__(self):
        return f"{self.address}: {self.error}"


@dataclasses.dataclass
class ApplyResult:
    operation: str
    order: typing.List[str] = dataclasses.field(default_factory=list)
    statuses: typing.Dict[str, ResourceStatus] = dataclasses.field(
        default_factory=dict
    )
    errors: typing.List[ResourceError] = dataclasses.field(default_factory=list)
    outputs: typing.Dict[str, typing.Any] = dataclasses.field(default_factory=dict)
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.errors and not self.cancelled

    def with_status(self, status: ResourceStatus) -> typing.List[str]:
        return [
            address for address in self.order if self.statuses.get(address) == status
        ]


class Engine:
    """
    Realizes plans through a provider, one asyncio task per resource.

    A resource's task waits until every dependency settled, then creates it
    unless a dependency failed. Independent resources run concurrently, at
    most ``parallelism`` provider operations at a time.
    """

    def __init__(
        self,
        provider: schemas.Provider,
        store: state.StateStore,
        *,
        parallelism: int = settings.PARALLELISM,
        backoff: typing.Optional[waiters.Backoff] = None,
        timeouts: typing.Optional[typing.Mapping[str, float]] = None,
    ):
        self.provider = provider
        self.store = store
        self.parallelism = parallelism
        self.backoff = backoff or waiters.Backoff()
        self.timeouts = dict(timeouts or {})
        self.cancelled = False
        self._semaphore: typing.Optional[asyncio.Semaphore] = None
        self._result: typing.Optional[ApplyResult] = None

    def cancel(self) -> None:
        """Stop issuing provider calls. In-flight operations are awaited."""
        if not self.cancelled:
            logger.warning("Cancelling: no new operations will be started")
        self.cancelled = True

    # grpclib.utils.graceful_exit closes its targets on SIGINT/SIGTERM
    close = cancel

    def timeout_for(self, type_name: str) -> float:
        if type_name in self.timeouts:
            return self.timeouts[type_name]
        return self.provider.get_resource(type_name).timeout

    def _save(self) -> None:
        self.store.save()

    def _fail(self, record: state.ResourceState, error: Exception) -> None:
        record.transition(ResourceStatus.FAILED, error=str(error))
        self._result.errors.append(ResourceError(record.address, error))
        logger.error("%s: failed: %s", record.address, error)
        self._save()

    async def _run(
        self,
        addresses: typing.Sequence[str],
        func: typing.Callable[[str], typing.Awaitable[None]],
    ) -> None:
        self._semaphore = asyncio.Semaphore(self.parallelism)
        results = await asyncio.gather(
            *(func(address) for address in addresses), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def _poll(
        self,
        record: state.ResourceState,
        done: typing.Callable[[schemas.ProviderResult], bool],
    ) -> schemas.ProviderResult:
        async def describe():
            async with self._semaphore:
                return await self.provider.describe(record.type, record.handle)

        return await waiters.wait_until(
            describe,
            done,
            address=record.address,
            timeout=self.timeout_for(record.type),
            backoff=self.backoff,
        )

    # Apply

    async def apply(self, plan: resources.Plan) -> ApplyResult:
        dependency_graph = graph.DependencyGraph.from_plan(
            plan, provider=self.provider
        )
        order = dependency_graph.apply_order()

        with self.store.lock():
            self.provider.configure(plan.provider_config)
            self._result = result = ApplyResult(operation="apply", order=order)

            for address in self.store:
                if address not in plan:
                    logger.warning(
                        "%s is in the state but not in the plan; "
                        "run destroy without a plan to remove it",
                        address,
                    )

            events = {address: asyncio.Event() for address in order}

            async def run(address: str):
                try:
                    await self._apply_one(
                        plan, plan[address], dependency_graph, events
                    )
                finally:
                    events[address].set()

            await self._run(order, run)

            result.cancelled = self.cancelled
            for address in order:
                result.statuses[address] = self.store[address].status
            self.store.reorder(order)

            for error in outputs.record_outputs(plan, self.store):
                result.errors.append(
                    ResourceError(f"output.{error.identifiers[0]}", error)
                )
            result.outputs = {
                name: output.value for name, output in self.store.outputs.items()
            }
            self._save()

        logger.info(
            "Apply finished: %d ready, %d failed, %d pending",
            len(result.with_status(ResourceStatus.READY)),
            len(result.with_status(ResourceStatus.FAILED)),
            len(result.with_status(ResourceStatus.PENDING)),
        )
        return result

    async def _apply_one(
        self,
        plan: resources.Plan,
        declaration: resources.ResourceDeclaration,
        dependency_graph: graph.DependencyGraph,
        events: typing.Mapping[str, asyncio.Event],
    ) -> None:
        address = declaration.address
        dependencies = dependency_graph.dependencies(address)

        for dependency in dependencies:
            await events[dependency].wait()

        record = self._fresh_record(declaration, dependencies)
        if record.status == ResourceStatus.READY:
            logger.info("%s: ready, nothing to do", address)
            return

        failed = [
            dependency
            for dependency in dependencies
            if self.store[dependency].status == ResourceStatus.FAILED
        ]
        if failed:
            self._fail(record, errors.DependencyError(address, failed[0]))
            return

        if any(
            self.store[dependency].status != ResourceStatus.READY
            for dependency in dependencies
        ):
            # A dependency was left pending by cancellation
            return

        if self.cancelled:
            return
        try:
            await self._realize(plan, record, declaration)
        except errors.InfragraphError as e:
            if isinstance(e, errors.ProviderError) and e.address is None:
                e.address = address
            self._fail(record, e)

    def _fresh_record(
        self,
        declaration: resources.ResourceDeclaration,
        dependencies: typing.List[str],
    ) -> state.ResourceState:
        """
        The record this run works on.

        Ready resources are carried over. Anything else starts again from
        Pending, keeping the handle of an earlier attempt so the resource
        can be looked up before it is created again.
        """
        existing = self.store.get(declaration.address)

        if existing is not None and existing.status == ResourceStatus.READY:
            existing.dependencies = dependencies
            return existing

        record = state.ResourceState(
            address=declaration.address,
            type=declaration.type,
            dependencies=dependencies,
        )
        if existing is not None:
            record.handle = existing.handle
            record.attributes = existing.attributes
        self.store[declaration.address] = record
        self._save()
        return record

    def _resolve_attributes(
        self, plan: resources.Plan, declaration: resources.ResourceDeclaration
    ) -> typing.Dict[str, typing.Any]:
        attributes = outputs.resolve_value(
            dict(declaration.attributes), plan, self.store
        )

        resource = self.provider.get_resource(declaration.type)
        schema_errors = resource.validate_config(attributes)
        if schema_errors:
            raise errors.ConfigurationError(
                f"{declaration.address}: invalid attributes after resolution",
                identifiers=[declaration.address],
                diagnostics=diagnostics.Diagnostics.from_schema_errors(
                    errors=schema_errors, address=declaration.address
                ),
            )
        return attributes

    async def _realize(
        self,
        plan: resources.Plan,
        record: state.ResourceState,
        declaration: resources.ResourceDeclaration,
    ) -> None:
        if record.handle is not None:
            async with self._semaphore:
                if self.cancelled:
                    return
                found = await self.provider.describe(record.type, record.handle)
            if self._adopt(record, found):
                return

        if record.status == ResourceStatus.PENDING:
            attributes = self._resolve_attributes(plan, declaration)
            async with self._semaphore:
                if self.cancelled:
                    return
                record.transition(ResourceStatus.CREATING)
                self._save()
                logger.info("%s: creating", record.address)
                created = await self.provider.create(record.type, attributes)

            record.handle = created.handle
            record.attributes = {**attributes, **created.attributes}
            self._save()

            if created.status != schemas.ProviderStatus.IN_PROGRESS:
                self._settle_creation(record, created)
                return
        else:
            logger.info("%s: resuming wait for %s", record.address, record.handle)

        result = await self._poll(
            record, lambda r: r.status != schemas.ProviderStatus.IN_PROGRESS
        )
        self._settle_creation(record, result)

    def _adopt(
        self, record: state.ResourceState, found: schemas.ProviderResult
    ) -> bool:
        """
        Reconcile a record with what an interrupted run left behind.

        Returns ``True`` once it is adopted as ready. A creation still in
        progress moves the record to Creating; a vanished resource clears
        the handle so it is created again.
        """
        if found.status == schemas.ProviderStatus.AVAILABLE:
            logger.info("%s: adopting existing %s", record.address, record.handle)
            record.transition(ResourceStatus.CREATING)
            record.attributes = {**record.attributes, **found.attributes}
            record.transition(ResourceStatus.READY)
            self._save()
            return True

        if found.status == schemas.ProviderStatus.IN_PROGRESS:
            record.transition(ResourceStatus.CREATING)
            self._save()
            return False

        if found.status == schemas.ProviderStatus.FAILED:
            raise errors.ProviderError(
                found.reason or f"{record.handle} is in a failed state",
                address=record.address,
            )

        logger.info("%s: %s no longer exists", record.address, record.handle)
        record.handle = None
        record.attributes = {}
        return False

    def _settle_creation(
        self, record: state.ResourceState, result: schemas.ProviderResult
    ) -> None:
        if result.status == schemas.ProviderStatus.AVAILABLE:
            record.attributes = {**record.attributes, **result.attributes}
            record.transition(ResourceStatus.READY)
            logger.info("%s: ready (%s)", record.address, record.handle)
            self._save()
            return

        reason = result.reason or f"provider reported {result.status.value}"
        raise errors.ProviderError(reason, address=record.address)

    # Destroy

    async def destroy(
        self, plan: typing.Optional[resources.Plan] = None
    ) -> ApplyResult:
        """
        Delete realized resources, dependents before their dependencies.

        Without a plan every resource in the state is destroyed, ordered by
        the dependencies recorded when it was created.
        """
        with self.store.lock():
            if plan is not None:
                dependency_graph = graph.DependencyGraph.from_plan(
                    plan, provider=self.provider
                )
                self.provider.configure(plan.provider_config)
            else:
                dependency_graph = graph.DependencyGraph.from_dependencies(
                    {
                        address: record.dependencies
                        for address, record in self.store.items()
                    }
                )

            order = dependency_graph.destroy_order()
            self._result = result = ApplyResult(operation="destroy", order=order)
            events = {address: asyncio.Event() for address in order}

            async def run(address: str):
                try:
                    await self._destroy_one(address, dependency_graph, events)
                finally:
                    events[address].set()

            await self._run(order, run)

            result.cancelled = self.cancelled
            for address in order:
                record = self.store.get(address)
                if record is None or record.status == ResourceStatus.DELETED:
                    result.statuses[address] = ResourceStatus.DELETED
                    self.store.pop(address, None)
                else:
                    result.statuses[address] = record.status

            if not self.store:
                self.store.outputs = {}
            self._save()

        logger.info(
            "Destroy finished: %d deleted, %d failed",
            len(result.with_status(ResourceStatus.DELETED)),
            len(result.with_status(ResourceStatus.FAILED)),
        )
        return result

    async def _destroy_one(
        self,
        address: str,
        dependency_graph: graph.DependencyGraph,
        events: typing.Mapping[str, asyncio.Event],
    ) -> None:
        dependents = dependency_graph.dependents(address)
        for dependent in dependents:
            await events[dependent].wait()

        record = self.store.get(address)
        if record is None:
            return

        blocked = [
            dependent
            for dependent in dependents
            if dependent in self.store
            and self.store[dependent].status != ResourceStatus.DELETED
        ]
        if blocked:
            logger.warning("%s: kept, %s still exists", address, blocked[0])
            return

        if record.handle is None or record.status == ResourceStatus.DELETED:
            # Never created, or deleted by an interrupted run
            del self.store[address]
            self._save()
            return

        if self.cancelled:
            return
        try:
            await self._delete(record)
        except errors.InfragraphError as e:
            if isinstance(e, errors.ProviderError) and e.address is None:
                e.address = address
            current = self.store.get(address)
            if current is not None and current.status == ResourceStatus.DELETING:
                self._fail(current, e)
            else:
                self._result.errors.append(ResourceError(address, e))
                logger.error("%s: %s", address, e)

    async def _delete(self, record: state.ResourceState) -> None:
        if record.status != ResourceStatus.READY:
            async with self._semaphore:
                if self.cancelled:
                    return
                found = await self.provider.describe(record.type, record.handle)
            if found.status == schemas.ProviderStatus.IN_PROGRESS:
                found = await self._poll(
                    record, lambda r: r.status != schemas.ProviderStatus.IN_PROGRESS
                )
            if found.status == schemas.ProviderStatus.DELETED:
                logger.info("%s: already gone", record.address)
                del self.store[record.address]
                self._save()
                return
            record = state.ResourceState(
                address=record.address,
                type=record.type,
                status=ResourceStatus.READY,
                handle=record.handle,
                attributes={**record.attributes, **found.attributes},
                dependencies=record.dependencies,
            )
            self.store[record.address] = record

        async with self._semaphore:
            if self.cancelled:
                return
            record.transition(ResourceStatus.DELETING)
            self._save()
            logger.info("%s: deleting %s", record.address, record.handle)
            deleted = await self.provider.delete(record.type, record.handle)

        if deleted.status in (
            schemas.ProviderStatus.IN_PROGRESS,
            schemas.ProviderStatus.AVAILABLE,
        ):
            deleted = await self._poll(
                record,
                lambda r: r.status
                in (schemas.ProviderStatus.DELETED, schemas.ProviderStatus.FAILED),
            )

        if deleted.status != schemas.ProviderStatus.DELETED:
            reason = deleted.reason or f"provider reported {deleted.status.value}"
            raise errors.ProviderError(reason, address=record.address)

        record.transition(ResourceStatus.DELETED)
        logger.info("%s: deleted", record.address)
        self._save()
