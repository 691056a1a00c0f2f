"""
In-memory provider.

Realizes resources without talking to AWS: handles are fake ARNs, computed
attributes are derived from the handle, and asynchronous types stay in
progress for a configurable number of polls. Used by the CLI for dry runs
and by the test suite.
"""
import asyncio
import dataclasses
import itertools
import logging
import typing

from infragraph import aws, errors, schemas

logger = logging.getLogger(__name__)

Predicate = typing.Callable[[str, typing.Dict[str, typing.Any]], typing.Any]


@dataclasses.dataclass
class SimulatedResource:
    type_name: str
    handle: str
    attributes: typing.Dict[str, typing.Any]
    status: schemas.ProviderStatus
    polls_remaining: int = 0
    stalled: bool = False


class SimulatedProvider(aws.Provider):
    name = "simulated"

    def __init__(
        self,
        *,
        polls: typing.Optional[typing.Dict[str, int]] = None,
        reject: typing.Optional[Predicate] = None,
        reject_delete: typing.Optional[Predicate] = None,
        stall: typing.Optional[Predicate] = None,
        delay: float = 0.0,
    ):
        super().__init__()
        self.polls = polls or {}
        self.reject = reject
        self.reject_delete = reject_delete
        self.stall = stall
        self.delay = delay
        self.inventory: typing.Dict[str, SimulatedResource] = {}
        self.calls: typing.List[typing.Tuple[str, str, typing.Optional[str]]] = []
        self._ids = itertools.count(1)

    @property
    def region(self) -> str:
        return self.config.get("region") or "us-east-1"

    def polls_for(self, type_name: str) -> int:
        if type_name in self.polls:
            return self.polls[type_name]
        return 1 if self.get_resource(type_name).asynchronous else 0

    def count_calls(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    def _computed_value(
        self, name: str, attribute: schemas.Attribute, short_id: str
    ) -> typing.Any:
        if attribute.type == "string":
            return f"{short_id}.{name.replace('_', '-')}.{self.region}.simulated"
        elif attribute.type == "number":
            return 1
        elif attribute.type == "bool":
            return False
        elif isinstance(attribute.type, list) and attribute.type[0] in (
            "list",
            "set",
        ):
            return []
        return {}

    async def _pause(self):
        if self.delay:
            await asyncio.sleep(self.delay)

    async def create(
        self, type_name: str, attributes: typing.Dict[str, typing.Any]
    ) -> schemas.ProviderResult:
        resource = self.get_resource(type_name)
        self.calls.append(("create", type_name, None))
        await self._pause()

        if self.reject is not None:
            reason = self.reject(type_name, attributes)
            if reason:
                raise errors.ProviderError(str(reason))

        prefix = type_name.replace("aws_", "").replace("_", "-")
        short_id = f"{prefix}-{next(self._ids):04d}"
        handle = f"arn:aws:simulated:{self.region}:000000000000:{short_id}"

        realized = dict(attributes)
        block = resource.to_block()
        for name in block.computed_attributes():
            if realized.get(name) is None:
                realized[name] = self._computed_value(
                    name, block.attributes[name], short_id
                )
        realized["id"] = short_id
        realized["arn"] = handle

        polls = self.polls_for(type_name)
        stalled = bool(self.stall is not None and self.stall(type_name, attributes))
        status = (
            schemas.ProviderStatus.IN_PROGRESS
            if polls or stalled
            else schemas.ProviderStatus.AVAILABLE
        )
        self.inventory[handle] = SimulatedResource(
            type_name=type_name,
            handle=handle,
            attributes=realized,
            status=status,
            polls_remaining=polls,
            stalled=stalled,
        )
        logger.debug("Created %s %s (%s)", type_name, handle, status.value)
        return schemas.ProviderResult(
            handle=handle, status=status, attributes=dict(realized)
        )

    async def describe(self, type_name: str, handle: str) -> schemas.ProviderResult:
        self.calls.append(("describe", type_name, handle))
        await self._pause()

        item = self.inventory.get(handle)
        if item is None:
            return schemas.ProviderResult(
                handle=handle, status=schemas.ProviderStatus.DELETED
            )

        if item.status == schemas.ProviderStatus.IN_PROGRESS and not item.stalled:
            if item.polls_remaining > 0:
                item.polls_remaining -= 1
            if item.polls_remaining == 0:
                item.status = schemas.ProviderStatus.AVAILABLE

        if item.status == schemas.ProviderStatus.DELETED:
            del self.inventory[handle]

        return schemas.ProviderResult(
            handle=handle, status=item.status, attributes=dict(item.attributes)
        )

    async def delete(self, type_name: str, handle: str) -> schemas.ProviderResult:
        self.calls.append(("delete", type_name, handle))
        await self._pause()

        item = self.inventory.get(handle)
        if item is None:
            return schemas.ProviderResult(
                handle=handle, status=schemas.ProviderStatus.DELETED
            )

        if self.reject_delete is not None:
            reason = self.reject_delete(type_name, item.attributes)
            if reason:
                raise errors.ProviderError(str(reason))

        if self.get_resource(type_name).asynchronous:
            # Gone on the next describe
            item.status = schemas.ProviderStatus.DELETED
            item.stalled = False
            return schemas.ProviderResult(
                handle=handle, status=schemas.ProviderStatus.IN_PROGRESS
            )

        del self.inventory[handle]
        return schemas.ProviderResult(
            handle=handle, status=schemas.ProviderStatus.DELETED
        )
