from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Any, List, Optional, Tuple

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from .exceptions import OvirtBadArgumentError, OvirtBugError

if TYPE_CHECKING:
    from .params import (
        CreateDiskAttachmentParams,
        UpdateDiskParams,
        UpdateNICParams,
        UpdateVMParams,
    )
    from .pyovirt import PyOvirt
    from .retry import RetryStrategy

# ID of the template every engine ships; creating from it means "no template".
BLANK_TEMPLATE_ID = "00000000-0000-0000-0000-000000000000"


class VMStatus(str, Enum):
    """Lifecycle status of a VM as reported by the engine.

    The client only observes these; the engine decides every transition.
    """

    DOWN = "down"
    IMAGE_LOCKED = "image_locked"
    MIGRATING = "migrating"
    NOT_RESPONDING = "not_responding"
    PAUSED = "paused"
    POWERING_DOWN = "powering_down"
    POWERING_UP = "powering_up"
    REBOOTING = "reboot_in_progress"
    RESTORING_STATE = "restoring_state"
    SAVING_STATE = "saving_state"
    SUSPENDED = "suspended"
    UNASSIGNED = "unassigned"
    UNKNOWN = "unknown"
    UP = "up"
    WAIT_FOR_LAUNCH = "wait_for_launch"

    @classmethod
    def validate(cls, value: Any) -> "VMStatus":
        try:
            return cls(value)
        except ValueError:
            raise OvirtBadArgumentError(f"invalid value for VM status: {value}") from None


class VMHugePages(IntEnum):
    """Supported huge page sizes in KiB."""

    HUGE_PAGES_2M = 2048
    HUGE_PAGES_1G = 1048576

    @classmethod
    def validate(cls, value: Any) -> "VMHugePages":
        allowed = ", ".join(str(v.value) for v in cls)
        if isinstance(value, bool) or not isinstance(value, int):
            raise OvirtBadArgumentError(f"Invalid value for VM huge pages: {value} must be one of: {allowed}")
        try:
            return cls(value)
        except ValueError:
            raise OvirtBadArgumentError(
                f"Invalid value for VM huge pages: {value} must be one of: {allowed}"
            ) from None


class TemplateStatus(str, Enum):
    OK = "ok"
    LOCKED = "locked"
    ILLEGAL = "illegal"


class DiskStatus(str, Enum):
    OK = "ok"
    LOCKED = "locked"
    ILLEGAL = "illegal"


class DiskFormat(str, Enum):
    COW = "cow"
    RAW = "raw"


class DiskInterface(str, Enum):
    IDE = "ide"
    SATA = "sata"
    SPAPR_VSCSI = "spapr_vscsi"
    VIRTIO = "virtio"
    VIRTIO_SCSI = "virtio_scsi"


class VMCPUTopo(BaseModel):
    """CPU topology of a VM. All three components must be at least 1."""

    model_config = ConfigDict(frozen=True)

    cores: int
    threads: int
    sockets: int

    @field_validator("cores", "threads", "sockets")
    @classmethod
    def _positive(cls, value: int, info: ValidationInfo) -> int:
        if value < 1:
            raise OvirtBadArgumentError(f"number of {info.field_name} must be positive")
        return value


def new_vm_cpu_topo(cores: int, threads: int, sockets: int) -> VMCPUTopo:
    """Create a CPU topology, raising OvirtBadArgumentError for any invalid component."""
    try:
        return VMCPUTopo(cores=cores, threads=threads, sockets=sockets)
    except ValidationError as e:
        raise OvirtBadArgumentError(f"invalid CPU topology: {e}") from e


class VMCPU(BaseModel):
    model_config = ConfigDict(frozen=True)

    topo: VMCPUTopo


class Initialization(BaseModel):
    """Initialization (cloud-init) settings applied when the VM is deployed."""

    model_config = ConfigDict(frozen=True)

    custom_script: str = ""
    host_name: str = ""


class _Snapshot(BaseModel):
    """Point-in-time copy of a remote resource, bound to the client that fetched it."""

    model_config = ConfigDict(frozen=True)

    _client: Any = PrivateAttr(default=None)

    def bind(self, client: "PyOvirt"):
        self._client = client
        return self

    @property
    def client(self) -> "PyOvirt":
        if self._client is None:
            raise OvirtBugError(f"{type(self).__name__} is not bound to a client")
        return self._client


class Tag(_Snapshot):
    id: str
    name: str
    description: str = ""

    async def remove(self, *retries: "RetryStrategy", ignore_not_found: bool = False) -> None:
        await self.client.remove_tag(self.id, *retries, ignore_not_found=ignore_not_found)


class NIC(_Snapshot):
    id: str
    name: str
    vm_id: str
    vnic_profile_id: str

    async def update(self, params: "UpdateNICParams", *retries: "RetryStrategy") -> "NIC":
        return await self.client.update_nic(self.vm_id, self.id, params, *retries)

    async def remove(self, *retries: "RetryStrategy", ignore_not_found: bool = False) -> None:
        await self.client.remove_nic(self.vm_id, self.id, *retries, ignore_not_found=ignore_not_found)


class Disk(_Snapshot):
    id: str
    alias: str
    provisioned_size: int
    total_size: int = 0
    format: DiskFormat
    storage_domain_ids: Tuple[str, ...] = ()
    status: DiskStatus
    sparse: bool = False

    async def update(self, params: "UpdateDiskParams", *retries: "RetryStrategy") -> "Disk":
        return await self.client.update_disk(self.id, params, *retries)

    async def remove(self, *retries: "RetryStrategy", ignore_not_found: bool = False) -> None:
        await self.client.remove_disk(self.id, *retries, ignore_not_found=ignore_not_found)

    async def wait_for_ok(self, *retries: "RetryStrategy") -> "Disk":
        return await self.client.wait_for_disk_ok(self.id, *retries)


class DiskAttachment(_Snapshot):
    id: str
    vm_id: str
    disk_id: str
    interface: DiskInterface
    bootable: bool = False
    active: bool = False

    async def detach(self, *retries: "RetryStrategy", ignore_not_found: bool = False) -> None:
        await self.client.remove_disk_attachment(self.vm_id, self.id, *retries, ignore_not_found=ignore_not_found)


class Template(_Snapshot):
    id: str
    name: str
    description: str = ""
    status: TemplateStatus
    cpu: Optional[VMCPU] = None

    async def remove(self, *retries: "RetryStrategy", ignore_not_found: bool = False) -> None:
        await self.client.remove_template(self.id, *retries, ignore_not_found=ignore_not_found)

    async def wait_for_status(self, status: TemplateStatus, *retries: "RetryStrategy") -> "Template":
        return await self.client.wait_for_template_status(self.id, status, *retries)


class VM(_Snapshot):
    """A virtual machine as last seen by the client.

    Snapshots are never updated in place: ``update``, ``wait_for_status`` and
    friends return a fresh object.
    """

    id: str
    name: str
    comment: str
    cluster_id: str
    template_id: str
    status: VMStatus
    cpu: VMCPU
    tag_ids: Tuple[str, ...] = ()
    huge_pages: Optional[VMHugePages] = None
    initialization: Initialization = Field(default_factory=Initialization)

    async def update(self, params: "UpdateVMParams", *retries: "RetryStrategy") -> "VM":
        return await self.client.update_vm(self.id, params, *retries)

    async def remove(self, *retries: "RetryStrategy", ignore_not_found: bool = False) -> None:
        await self.client.remove_vm(self.id, *retries, ignore_not_found=ignore_not_found)

    async def start(self, *retries: "RetryStrategy") -> None:
        await self.client.start_vm(self.id, *retries)

    async def stop(self, *retries: "RetryStrategy", force: bool = False) -> None:
        await self.client.stop_vm(self.id, *retries, force=force)

    async def shutdown(self, *retries: "RetryStrategy", force: bool = False) -> None:
        await self.client.shutdown_vm(self.id, *retries, force=force)

    async def wait_for_status(self, status: VMStatus, *retries: "RetryStrategy") -> "VM":
        return await self.client.wait_for_vm_status(self.id, status, *retries)

    async def auto_optimize_cpu_pinning(self, optimize: bool, *retries: "RetryStrategy") -> None:
        await self.client.auto_optimize_vm_cpu_pinning(self.id, optimize, *retries)

    async def create_nic(self, name: str, vnic_profile_id: str, *retries: "RetryStrategy") -> NIC:
        return await self.client.create_nic(self.id, vnic_profile_id, name, *retries)

    async def get_nic(self, nic_id: str, *retries: "RetryStrategy") -> NIC:
        return await self.client.get_nic(self.id, nic_id, *retries)

    async def list_nics(self, *retries: "RetryStrategy") -> List[NIC]:
        return await self.client.list_nics(self.id, *retries)

    async def attach_disk(
        self,
        disk_id: str,
        interface: DiskInterface,
        *retries: "RetryStrategy",
        params: Optional["CreateDiskAttachmentParams"] = None,
    ) -> DiskAttachment:
        return await self.client.create_disk_attachment(self.id, disk_id, interface, *retries, params=params)

    async def get_disk_attachment(self, attachment_id: str, *retries: "RetryStrategy") -> DiskAttachment:
        return await self.client.get_disk_attachment(self.id, attachment_id, *retries)

    async def list_disk_attachments(self, *retries: "RetryStrategy") -> List[DiskAttachment]:
        return await self.client.list_disk_attachments(self.id, *retries)

    async def detach_disk(
        self,
        attachment_id: str,
        *retries: "RetryStrategy",
        ignore_not_found: bool = False,
    ) -> None:
        await self.client.remove_disk_attachment(self.id, attachment_id, *retries, ignore_not_found=ignore_not_found)

    async def add_tag(self, tag_id: str, *retries: "RetryStrategy") -> None:
        await self.client.add_tag_to_vm(self.id, tag_id, *retries)

    async def tags(self, *retries: "RetryStrategy") -> List[Tag]:
        """Fetch the tags referenced by this snapshot."""
        return [await self.client.get_tag(tag_id, *retries) for tag_id in self.tag_ids]
