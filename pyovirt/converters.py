"""Conversion of engine JSON objects into snapshots.

The engine omits fields freely, so every accessor here decides explicitly what
absence means: a missing required field raises OvirtFieldMissingError, while
the few legitimately optional ones (initialization, the hugepages custom
property, tags) convert to an explicit empty value. Numbers and booleans may
arrive as strings.
"""

from typing import Any, List, Mapping, Optional

from .exceptions import OvirtBadArgumentError, OvirtBugError, OvirtFieldMissingError
from .models import (
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
)

Wire = Mapping[str, Any]


def items_of(data: Optional[Wire], key: str) -> List[Wire]:
    """Unwrap a list envelope such as ``{"vm": [...]}``; engines send ``{}`` for no items."""
    if not data:
        return []
    items = data.get(key)
    if items is None:
        return []
    if isinstance(items, Mapping):
        return [items]
    return list(items)


def _required(data: Wire, field: str, object_name: str) -> Any:
    value = data.get(field)
    if value is None:
        raise OvirtFieldMissingError(object_name, field)
    return value


def _ref_id(data: Wire, field: str, object_name: str) -> str:
    ref = _required(data, field, object_name)
    return _required(ref, "id", f"{field} in {object_name}")


def _to_int(value: Any, field: str, object_name: str) -> int:
    if isinstance(value, bool):
        raise OvirtBugError(f"Failed to parse {field} of {object_name} into a number: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise OvirtBugError(f"Failed to parse {field} of {object_name} into a number: {value!r}", cause=e) from e


def _to_bool(value: Any, field: str, object_name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise OvirtBugError(f"Failed to parse {field} of {object_name} into a boolean: {value!r}")


def _optional_bool(data: Wire, field: str, object_name: str) -> bool:
    value = data.get(field)
    if value is None:
        return False
    return _to_bool(value, field, object_name)


def convert_cpu(data: Wire, object_name: str) -> VMCPU:
    cpu = _required(data, "cpu", object_name)
    topology = _required(cpu, "topology", f"CPU in {object_name}")
    where = f"CPU topo in CPU in {object_name}"
    cores = _to_int(_required(topology, "cores", where), "cores", where)
    threads = _to_int(_required(topology, "threads", where), "threads", where)
    sockets = _to_int(_required(topology, "sockets", where), "sockets", where)
    try:
        topo = VMCPUTopo(cores=cores, threads=threads, sockets=sockets)
    except OvirtBadArgumentError as e:
        raise OvirtBugError(f"Invalid CPU topology in {object_name}: {e.message}", cause=e) from e
    return VMCPU(topo=topo)


def convert_initialization(data: Wire) -> Initialization:
    init = data.get("initialization")
    if init is None:
        return Initialization()
    return Initialization(
        custom_script=init.get("custom_script") or "",
        host_name=init.get("host_name") or "",
    )


def convert_huge_pages(data: Wire) -> Optional[VMHugePages]:
    for prop in items_of(data.get("custom_properties"), "custom_property"):
        if prop.get("name") != "hugepages":
            continue
        text = prop.get("value")
        if text is None:
            return None
        value = _to_int(text, "'hugepages' custom property", "VM")
        try:
            return VMHugePages(value)
        except ValueError:
            raise OvirtBugError(f"Unsupported value for 'hugepages' custom property: {text}") from None
    return None


def convert_vm_status(value: Any) -> VMStatus:
    try:
        return VMStatus(value)
    except ValueError:
        return VMStatus.UNASSIGNED


def convert_tag_ids(data: Wire) -> tuple:
    return tuple(tag["id"] for tag in items_of(data.get("tags"), "tag") if tag.get("id"))


def convert_vm(data: Wire, client: Any = None) -> VM:
    vm = VM(
        id=_required(data, "id", "VM"),
        name=_required(data, "name", "VM"),
        comment=_required(data, "comment", "VM"),
        cluster_id=_ref_id(data, "cluster", "VM"),
        template_id=_ref_id(data, "template", "VM"),
        status=convert_vm_status(_required(data, "status", "VM")),
        cpu=convert_cpu(data, "VM"),
        tag_ids=convert_tag_ids(data),
        huge_pages=convert_huge_pages(data),
        initialization=convert_initialization(data),
    )
    return vm.bind(client)


def convert_template(data: Wire, client: Any = None) -> Template:
    status = _required(data, "status", "template")
    try:
        status = TemplateStatus(status)
    except ValueError:
        raise OvirtBugError(f"Unknown template status: {status}") from None
    template = Template(
        id=_required(data, "id", "template"),
        name=_required(data, "name", "template"),
        description=data.get("description") or "",
        status=status,
        cpu=convert_cpu(data, "template") if data.get("cpu") is not None else None,
    )
    return template.bind(client)


def convert_disk(data: Wire, client: Any = None) -> Disk:
    fmt = _required(data, "format", "disk")
    status = _required(data, "status", "disk")
    try:
        fmt = DiskFormat(fmt)
        status = DiskStatus(status)
    except ValueError as e:
        raise OvirtBugError(f"Unexpected value in disk object: {e}") from e
    total_size = data.get("total_size")
    disk = Disk(
        id=_required(data, "id", "disk"),
        alias=data.get("alias") or "",
        provisioned_size=_to_int(_required(data, "provisioned_size", "disk"), "provisioned_size", "disk"),
        total_size=_to_int(total_size, "total_size", "disk") if total_size is not None else 0,
        format=fmt,
        storage_domain_ids=tuple(
            sd["id"] for sd in items_of(data.get("storage_domains"), "storage_domain") if sd.get("id")
        ),
        status=status,
        sparse=_optional_bool(data, "sparse", "disk"),
    )
    return disk.bind(client)


def convert_disk_attachment(data: Wire, client: Any = None) -> DiskAttachment:
    interface = _required(data, "interface", "disk attachment")
    try:
        interface = DiskInterface(interface)
    except ValueError:
        raise OvirtBugError(f"Unknown disk interface: {interface}") from None
    attachment = DiskAttachment(
        id=_required(data, "id", "disk attachment"),
        vm_id=_ref_id(data, "vm", "disk attachment"),
        disk_id=_ref_id(data, "disk", "disk attachment"),
        interface=interface,
        bootable=_optional_bool(data, "bootable", "disk attachment"),
        active=_optional_bool(data, "active", "disk attachment"),
    )
    return attachment.bind(client)


def convert_nic(data: Wire, client: Any = None) -> NIC:
    nic = NIC(
        id=_required(data, "id", "NIC"),
        name=_required(data, "name", "NIC"),
        vm_id=_ref_id(data, "vm", "NIC"),
        vnic_profile_id=_ref_id(data, "vnic_profile", "NIC"),
    )
    return nic.bind(client)


def convert_tag(data: Wire, client: Any = None) -> Tag:
    tag = Tag(
        id=_required(data, "id", "tag"),
        name=_required(data, "name", "tag"),
        description=data.get("description") or "",
    )
    return tag.bind(client)

