"""Builders for the optional parameters of create, update and search calls.

Each ``with_*`` method validates its argument right away. On success the value
is stored and the builder is returned so calls can be chained; on failure an
:class:`OvirtBadArgumentError` is raised and the builder keeps its previous
state. The ``must_with_*`` twins run the same validation but treat a failure
as a programming error and raise :class:`OvirtBugError` instead, which makes
them convenient for literals::

    params = CreateVMParams().must_with_cpu_parameters(2, 2, 2).must_with_comment("db")

Fields that were never set stay ``None`` and are left out of the request, so
the engine applies its own defaults (or, for updates, leaves them unchanged).
"""

import re
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar, Union

from pydantic import BaseModel, PrivateAttr

from .exceptions import OvirtBadArgumentError, OvirtBugError, OvirtError
from .models import VM, Initialization, VMCPUTopo, VMHugePages, VMStatus, new_vm_cpu_topo

B = TypeVar("B", bound="_Builder")

_VM_NAME_RE = re.compile(r"[a-zA-Z0-9_\-.]*")

# Values end up inside an engine search expression
_SEARCH_VALUE_RE = re.compile(r"[^\s\"=]+")


def validate_vm_name(name: str) -> str:
    if not isinstance(name, str) or not _VM_NAME_RE.fullmatch(name):
        raise OvirtBadArgumentError(f"invalid VM name: {name}")
    return name


def _validate_str(value: Any, what: str) -> str:
    if not isinstance(value, str):
        raise OvirtBadArgumentError(f"{what} must be a string, got {type(value).__name__}")
    return value


def _validate_search_value(value: Any, what: str) -> str:
    if not isinstance(value, str) or not _SEARCH_VALUE_RE.fullmatch(value):
        raise OvirtBadArgumentError(f"invalid {what} for VM search: {value!r}")
    return value


def _validate_bool(value: Any, what: str) -> bool:
    if not isinstance(value, bool):
        raise OvirtBadArgumentError(f"{what} must be a boolean, got {type(value).__name__}")
    return value


class _Builder(BaseModel):
    """Shared plumbing: one lock per instance and the must-variant conversion."""

    _lock: Any = PrivateAttr(default_factory=threading.Lock)

    def _set(self: B, **values: Any) -> B:
        with self._lock:
            for key, value in values.items():
                setattr(self, key, value)
        return self

    def _must(self: B, method: Callable[..., B], *args: Any) -> B:
        try:
            return method(*args)
        except OvirtError as e:
            raise OvirtBugError(f"invalid literal passed to {method.__name__}: {e.message}", cause=e) from e

    def model_dump(self, **kwargs) -> Dict[str, Any]:
        kwargs.setdefault("exclude_none", True)
        with self._lock:
            return super().model_dump(**kwargs)


class CreateVMParams(_Builder):
    """Optional parameters for creating a VM."""

    comment: Optional[str] = None
    cpu: Optional[VMCPUTopo] = None
    huge_pages: Optional[VMHugePages] = None
    initialization: Optional[Initialization] = None

    def with_comment(self, comment: str) -> "CreateVMParams":
        return self._set(comment=_validate_str(comment, "comment"))

    def must_with_comment(self, comment: str) -> "CreateVMParams":
        return self._must(self.with_comment, comment)

    def with_cpu(self, cpu: VMCPUTopo) -> "CreateVMParams":
        if not isinstance(cpu, VMCPUTopo):
            raise OvirtBadArgumentError(f"cpu must be a VMCPUTopo, got {type(cpu).__name__}")
        return self._set(cpu=cpu)

    def must_with_cpu(self, cpu: VMCPUTopo) -> "CreateVMParams":
        return self._must(self.with_cpu, cpu)

    def with_cpu_parameters(self, cores: int, threads: int, sockets: int) -> "CreateVMParams":
        return self.with_cpu(new_vm_cpu_topo(cores, threads, sockets))

    def must_with_cpu_parameters(self, cores: int, threads: int, sockets: int) -> "CreateVMParams":
        return self._must(self.with_cpu_parameters, cores, threads, sockets)

    def with_huge_pages(self, huge_pages: Union[VMHugePages, int]) -> "CreateVMParams":
        return self._set(huge_pages=VMHugePages.validate(huge_pages))

    def must_with_huge_pages(self, huge_pages: Union[VMHugePages, int]) -> "CreateVMParams":
        return self._must(self.with_huge_pages, huge_pages)

    def with_initialization(self, initialization: Initialization) -> "CreateVMParams":
        if not isinstance(initialization, Initialization):
            raise OvirtBadArgumentError(
                f"initialization must be an Initialization, got {type(initialization).__name__}"
            )
        return self._set(initialization=initialization)

    def must_with_initialization(self, initialization: Initialization) -> "CreateVMParams":
        return self._must(self.with_initialization, initialization)

    def with_initialization_parameters(self, custom_script: str, host_name: str) -> "CreateVMParams":
        return self.with_initialization(
            Initialization(
                custom_script=_validate_str(custom_script, "custom script"),
                host_name=_validate_str(host_name, "host name"),
            )
        )

    def must_with_initialization_parameters(self, custom_script: str, host_name: str) -> "CreateVMParams":
        return self._must(self.with_initialization_parameters, custom_script, host_name)

    def model_dump(self, **kwargs) -> Dict[str, Any]:
        data = super().model_dump(**kwargs)
        # Reshape into the engine's representation
        if "cpu" in data:
            data["cpu"] = {"topology": data["cpu"]}
        if "huge_pages" in data:
            data["custom_properties"] = {
                "custom_property": [{"name": "hugepages", "value": str(int(data.pop("huge_pages")))}]
            }
        return data


class UpdateVMParams(_Builder):
    """Fields to change on an existing VM; ``None`` means leave unchanged."""

    name: Optional[str] = None
    comment: Optional[str] = None

    def with_name(self, name: str) -> "UpdateVMParams":
        return self._set(name=validate_vm_name(name))

    def must_with_name(self, name: str) -> "UpdateVMParams":
        return self._must(self.with_name, name)

    def with_comment(self, comment: str) -> "UpdateVMParams":
        return self._set(comment=_validate_str(comment, "comment"))

    def must_with_comment(self, comment: str) -> "UpdateVMParams":
        return self._must(self.with_comment, comment)


class VMSearchParams(_Builder):
    """Filters for a VM search. Every filter that is set must match."""

    name: Optional[str] = None
    tag: Optional[str] = None
    statuses: Optional[List[VMStatus]] = None
    not_statuses: Optional[List[VMStatus]] = None

    def with_name(self, name: str) -> "VMSearchParams":
        return self._set(name=_validate_search_value(name, "name"))

    def with_tag(self, tag: str) -> "VMSearchParams":
        return self._set(tag=_validate_search_value(tag, "tag"))

    def with_status(self, status: Union[VMStatus, str]) -> "VMSearchParams":
        status = VMStatus.validate(status)
        with self._lock:
            self.statuses = [*(self.statuses or []), status]
        return self

    def with_not_status(self, status: Union[VMStatus, str]) -> "VMSearchParams":
        status = VMStatus.validate(status)
        with self._lock:
            self.not_statuses = [*(self.not_statuses or []), status]
        return self

    def with_statuses(self, statuses: Iterable[Union[VMStatus, str]]) -> "VMSearchParams":
        return self._set(statuses=[VMStatus.validate(s) for s in statuses])

    def with_not_statuses(self, statuses: Iterable[Union[VMStatus, str]]) -> "VMSearchParams":
        return self._set(not_statuses=[VMStatus.validate(s) for s in statuses])

    def search_query(self) -> Optional[str]:
        """Build the engine-side search expression for the name and tag filters."""
        with self._lock:
            parts = []
            if self.name is not None:
                parts.append(f"name={self.name}")
            if self.tag is not None:
                parts.append(f"tag={self.tag}")
        return " and ".join(parts) or None

    def matches(self, vm: VM) -> bool:
        """Apply the filters the engine search does not cover.

        The tag filter is left to the engine since snapshots only carry tag IDs.
        """
        with self._lock:
            if self.name is not None and vm.name != self.name:
                return False
            if self.statuses is not None and vm.status not in self.statuses:
                return False
            if self.not_statuses is not None and vm.status in self.not_statuses:
                return False
        return True


class CreateTemplateParams(_Builder):
    description: Optional[str] = None

    def with_description(self, description: str) -> "CreateTemplateParams":
        return self._set(description=_validate_str(description, "description"))

    def must_with_description(self, description: str) -> "CreateTemplateParams":
        return self._must(self.with_description, description)


class CreateDiskParams(_Builder):
    alias: Optional[str] = None
    sparse: Optional[bool] = None

    def with_alias(self, alias: str) -> "CreateDiskParams":
        return self._set(alias=_validate_str(alias, "alias"))

    def must_with_alias(self, alias: str) -> "CreateDiskParams":
        return self._must(self.with_alias, alias)

    def with_sparse(self, sparse: bool) -> "CreateDiskParams":
        return self._set(sparse=_validate_bool(sparse, "sparse"))

    def must_with_sparse(self, sparse: bool) -> "CreateDiskParams":
        return self._must(self.with_sparse, sparse)


class UpdateDiskParams(_Builder):
    alias: Optional[str] = None

    def with_alias(self, alias: str) -> "UpdateDiskParams":
        return self._set(alias=_validate_str(alias, "alias"))

    def must_with_alias(self, alias: str) -> "UpdateDiskParams":
        return self._must(self.with_alias, alias)


class CreateDiskAttachmentParams(_Builder):
    active: Optional[bool] = None
    bootable: Optional[bool] = None

    def with_active(self, active: bool) -> "CreateDiskAttachmentParams":
        return self._set(active=_validate_bool(active, "active"))

    def must_with_active(self, active: bool) -> "CreateDiskAttachmentParams":
        return self._must(self.with_active, active)

    def with_bootable(self, bootable: bool) -> "CreateDiskAttachmentParams":
        return self._set(bootable=_validate_bool(bootable, "bootable"))

    def must_with_bootable(self, bootable: bool) -> "CreateDiskAttachmentParams":
        return self._must(self.with_bootable, bootable)


class UpdateNICParams(_Builder):
    name: Optional[str] = None
    vnic_profile_id: Optional[str] = None

    def with_name(self, name: str) -> "UpdateNICParams":
        return self._set(name=_validate_str(name, "name"))

    def must_with_name(self, name: str) -> "UpdateNICParams":
        return self._must(self.with_name, name)

    def with_vnic_profile_id(self, vnic_profile_id: str) -> "UpdateNICParams":
        return self._set(vnic_profile_id=_validate_str(vnic_profile_id, "vNIC profile ID"))

    def must_with_vnic_profile_id(self, vnic_profile_id: str) -> "UpdateNICParams":
        return self._must(self.with_vnic_profile_id, vnic_profile_id)

    def model_dump(self, **kwargs) -> Dict[str, Any]:
        data = super().model_dump(**kwargs)
        if "vnic_profile_id" in data:
            data["vnic_profile"] = {"id": data.pop("vnic_profile_id")}
        return data


class CreateTagParams(_Builder):
    description: Optional[str] = None

    def with_description(self, description: str) -> "CreateTagParams":
        return self._set(description=_validate_str(description, "description"))

    def must_with_description(self, description: str) -> "CreateTagParams":
        return self._must(self.with_description, description)
