"""
PyOvirt Python SDK - An async client library for managing oVirt VMs and their resources.

Example:
    >>> from pyovirt import PyOvirt, ClientConfig, CreateVMParams, VMStatus, BLANK_TEMPLATE_ID
    >>> async with PyOvirt(ClientConfig.from_env()) as client:
    ...     params = CreateVMParams().must_with_cpu_parameters(2, 1, 1)
    ...     vm = await client.create_vm(cluster_id, BLANK_TEMPLATE_ID, "my-vm", params=params)
    ...     await vm.start()
    ...     vm = await vm.wait_for_status(VMStatus.UP)
"""

# Use relative imports
from .pyovirt import PyOvirt
from .client import OvirtClient, Transport
from .config import ClientConfig
from .models import (
    BLANK_TEMPLATE_ID,
    NIC,
    VM,
    VMCPU,
    Disk,
    DiskAttachment,
    DiskFormat,
    DiskInterface,
    DiskStatus,
    Initialization,
    Tag,
    Template,
    TemplateStatus,
    VMCPUTopo,
    VMHugePages,
    VMStatus,
    new_vm_cpu_topo,
)
from .params import (
    CreateDiskAttachmentParams,
    CreateDiskParams,
    CreateTagParams,
    CreateTemplateParams,
    CreateVMParams,
    UpdateDiskParams,
    UpdateNICParams,
    UpdateVMParams,
    VMSearchParams,
)
from .retry import (
    AutoRetry,
    CancelOnEvent,
    ExponentialBackoff,
    FixedDelay,
    MaxTries,
    RetryStrategy,
)
from .exceptions import (
    ErrorCode,
    OvirtError,
    OvirtBadArgumentError,
    OvirtBugError,
    OvirtConnectionError,
    OvirtFieldMissingError,
    OvirtNotFoundError,
    OvirtPendingError,
    OvirtServerError,
    OvirtStatusTimeoutError,
    OvirtTimeoutError,
    has_error_code,
)

__version__ = "0.1.0"

__all__ = [
    "PyOvirt",
    "OvirtClient",
    "Transport",
    "ClientConfig",
    "BLANK_TEMPLATE_ID",
    "NIC",
    "VM",
    "VMCPU",
    "Disk",
    "DiskAttachment",
    "DiskFormat",
    "DiskInterface",
    "DiskStatus",
    "Initialization",
    "Tag",
    "Template",
    "TemplateStatus",
    "VMCPUTopo",
    "VMHugePages",
    "VMStatus",
    "new_vm_cpu_topo",
    "CreateDiskAttachmentParams",
    "CreateDiskParams",
    "CreateTagParams",
    "CreateTemplateParams",
    "CreateVMParams",
    "UpdateDiskParams",
    "UpdateNICParams",
    "UpdateVMParams",
    "VMSearchParams",
    "AutoRetry",
    "CancelOnEvent",
    "ExponentialBackoff",
    "FixedDelay",
    "MaxTries",
    "RetryStrategy",
    "ErrorCode",
    "OvirtError",
    "OvirtBadArgumentError",
    "OvirtBugError",
    "OvirtConnectionError",
    "OvirtFieldMissingError",
    "OvirtNotFoundError",
    "OvirtPendingError",
    "OvirtServerError",
    "OvirtStatusTimeoutError",
    "OvirtTimeoutError",
    "has_error_code",
]
