import contextlib
import dataclasses
import enum
import logging
import os
import tempfile
import typing

import msgpack

from infragraph import errors, settings

logger = logging.getLogger(__name__)


class ResourceStatus(enum.Enum):
    PENDING = "pending"
    CREATING = "creating"
    READY = "ready"
    FAILED = "failed"
    DELETING = "deleting"
    DELETED = "deleted"


TRANSITIONS: typing.Dict[ResourceStatus, typing.FrozenSet[ResourceStatus]] = {
    # Pending -> Failed: abandoned because a dependency failed
    ResourceStatus.PENDING: frozenset(
        {ResourceStatus.CREATING, ResourceStatus.FAILED}
    ),
    ResourceStatus.CREATING: frozenset({ResourceStatus.READY, ResourceStatus.FAILED}),
    ResourceStatus.READY: frozenset({ResourceStatus.DELETING}),
    ResourceStatus.DELETING: frozenset(
        {ResourceStatus.DELETED, ResourceStatus.FAILED}
    ),
    ResourceStatus.FAILED: frozenset(),
    ResourceStatus.DELETED: frozenset(),
}


@dataclasses.dataclass
class ResourceState:
    address: str
    type: str
    status: ResourceStatus = ResourceStatus.PENDING
    handle: typing.Optional[str] = None
    attributes: typing.Dict[str, typing.Any] = dataclasses.field(default_factory=dict)
    dependencies: typing.List[str] = dataclasses.field(default_factory=list)
    error: typing.Optional[str] = None

    @property
    def terminal(self) -> bool:
        return not TRANSITIONS[self.status]

    def transition(
        self, status: ResourceStatus, *, error: typing.Optional[str] = None
    ) -> None:
        if status not in TRANSITIONS[self.status]:
            raise errors.InvalidTransitionError(
                f"{self.address}: cannot go from {self.status.value} to {status.value}"
            )
        logger.debug("%s: %s -> %s", self.address, self.status.value, status.value)
        self.status = status
        self.error = error

    def to_dict(self) -> typing.Dict[str, typing.Any]:
        return {
            "address": self.address,
            "type": self.type,
            "status": self.status.value,
            "handle": self.handle,
            "attributes": self.attributes,
            "dependencies": self.dependencies,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: typing.Dict[str, typing.Any]) -> "ResourceState":
        try:
            return cls(
                address=data["address"],
                type=data["type"],
                status=ResourceStatus(data["status"]),
                handle=data.get("handle"),
                attributes=data.get("attributes") or {},
                dependencies=list(data.get("dependencies") or []),
                error=data.get("error"),
            )
        except (KeyError, ValueError) as e:
            raise errors.StateError(f"Invalid resource record: {e}") from e


@dataclasses.dataclass
class OutputState:
    value: typing.Any
    sensitive: bool = False


class StateStore(typing.MutableMapping[str, ResourceState]):
    """
    The realized resources of one deployment.

    Backed by a msgpack file when ``path`` is set, in memory otherwise. The
    engine saves after every status transition so an interrupted run can be
    resumed.
    """

    def __init__(self, path: typing.Optional[str] = None):
        self.path = path
        self.resources: typing.Dict[str, ResourceState] = {}
        self.outputs: typing.Dict[str, OutputState] = {}
        self.serial = 0
        self._locked = False

    def __getitem__(self, address: str) -> ResourceState:
        return self.resources[address]

    def __setitem__(self, address: str, value: ResourceState) -> None:
        self.resources[address] = value

    def __delitem__(self, address: str) -> None:
        del self.resources[address]

    def __iter__(self):
        return iter(self.resources)

    def __len__(self) -> int:
        return len(self.resources)

    def ready(self) -> typing.Dict[str, ResourceState]:
        return {
            address: resource
            for address, resource in self.resources.items()
            if resource.status == ResourceStatus.READY
        }

    def reorder(self, addresses: typing.Iterable[str]) -> None:
        """
        Move the given records to the front, in the given order.

        Destroy without a plan walks records in store order, so keeping them
        in apply order makes it delete in exactly the reverse order.
        """
        ordered = {
            address: self.resources[address]
            for address in addresses
            if address in self.resources
        }
        ordered.update(self.resources)
        self.resources = ordered

    def to_dict(self) -> typing.Dict[str, typing.Any]:
        return {
            "version": settings.STATE_FORMAT_VERSION,
            "serial": self.serial,
            "resources": [resource.to_dict() for resource in self.resources.values()],
            "outputs": {
                name: {"value": output.value, "sensitive": output.sensitive}
                for name, output in self.outputs.items()
            },
        }

    def load_dict(self, data: typing.Dict[str, typing.Any]) -> None:
        if not isinstance(data, typing.Dict):
            raise errors.StateError("State must be a map")

        version = data.get("version")
        if version != settings.STATE_FORMAT_VERSION:
            raise errors.StateError(f"Unsupported state format version {version!r}")

        self.serial = data.get("serial", 0)
        self.resources = {}
        for item in data.get("resources") or []:
            resource = ResourceState.from_dict(item)
            self.resources[resource.address] = resource
        self.outputs = {
            name: OutputState(
                value=item["value"], sensitive=bool(item.get("sensitive"))
            )
            for name, item in (data.get("outputs") or {}).items()
        }

    @classmethod
    def load(cls, path: str) -> "StateStore":
        store = cls(path)
        if not os.path.exists(path):
            return store

        with open(path, "rb") as f:
            content = f.read()
        if not content:
            return store

        try:
            data = msgpack.unpackb(content, raw=False, strict_map_key=False)
        except (msgpack.UnpackException, ValueError) as e:
            raise errors.StateError(f"Corrupt state file {path}: {e}") from e

        store.load_dict(data)
        logger.debug("Loaded %d resources from %s", len(store), path)
        return store

    def save(self) -> None:
        self.serial += 1
        if self.path is None:
            return

        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".infragraph-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(msgpack.packb(self.to_dict(), use_bin_type=True))
            os.replace(tmp_path, self.path)
        except BaseException:
            os.unlink(tmp_path)
            raise

    @property
    def lock_path(self) -> typing.Optional[str]:
        if self.path is None:
            return None
        return self.path + settings.LOCK_SUFFIX

    def _acquire(self, lock_path: str) -> None:
        while True:
            try:
                fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                break
            except FileExistsError:
                holder = read_lock_holder(lock_path)

            if holder is None:
                # Released between the two calls
                continue
            if holder.isdigit() and not process_alive(int(holder)):
                logger.warning(
                    "Removing stale lock %s left by pid %s", lock_path, holder
                )
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(lock_path)
                continue
            raise errors.StateLockError(
                f"State {self.path} is locked (held by pid {holder or 'unknown'})"
            )

        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))

    def force_unlock(self) -> bool:
        """Remove the lock file regardless of who holds it."""
        if self.lock_path is None:
            return False
        try:
            os.unlink(self.lock_path)
        except FileNotFoundError:
            return False
        logger.warning("Removed lock %s", self.lock_path)
        return True

    @contextlib.contextmanager
    def lock(self) -> typing.Iterator["StateStore"]:
        """Hold exclusive ownership of the state for one run."""
        if self._locked:
            raise errors.StateLockError("State is already locked by this process")

        lock_path = self.lock_path
        if lock_path is not None:
            self._acquire(lock_path)

        self._locked = True
        try:
            yield self
        finally:
            self._locked = False
            if lock_path is not None:
                os.unlink(lock_path)


def read_lock_holder(lock_path: str) -> typing.Optional[str]:
    try:
        with open(lock_path) as f:
            return f.read().strip()
    except FileNotFoundError:
        return None


def process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Owned by another user
        return True
    return True
