"""In-memory engine for tests and offline development.

:class:`MockTransport` answers the same paths as the real engine with the
same JSON shapes and raises the same classified errors, so a :class:`PyOvirt`
wired to it behaves like one talking to a small, well-behaved engine:

    >>> client = new_mock_client()
    >>> vm = await client.create_vm(client.client.cluster_id, BLANK_TEMPLATE_ID, "test")
"""

import copy
import re
import uuid
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Set, Tuple

from .client import Transport
from .config import ClientConfig
from .exceptions import OvirtError, error_for_status
from .models import BLANK_TEMPLATE_ID, VMStatus
from .pyovirt import PyOvirt

_RUNNING = {
    VMStatus.WAIT_FOR_LAUNCH.value,
    VMStatus.POWERING_UP.value,
    VMStatus.UP.value,
}


class MockTransport(Transport):
    """Transport backed by in-memory wire objects."""

    def __init__(self):
        self.cluster_id = str(uuid.uuid4())
        self.storage_domain_id = str(uuid.uuid4())
        self.vnic_profile_id = str(uuid.uuid4())

        self.vms: Dict[str, Dict[str, Any]] = {}
        self.templates: Dict[str, Dict[str, Any]] = {
            BLANK_TEMPLATE_ID: {
                "id": BLANK_TEMPLATE_ID,
                "name": "Blank",
                "description": "Blank template",
                "status": "ok",
                "cpu": _topology(1, 1, 1),
            }
        }
        self.disks: Dict[str, Dict[str, Any]] = {}
        self.nics: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.disk_attachments: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.tags: Dict[str, Dict[str, Any]] = {}

        # Every request as (method, path), failed ones included
        self.requests: List[Tuple[str, str]] = []

        self._failures: Deque[OvirtError] = deque()
        self._vm_statuses: Dict[str, Deque[str]] = {}
        self._held: Set[str] = set()
        self._unlock_on_fetch: Set[str] = set()

        self._routes: List[Tuple[str, "re.Pattern[str]", Callable[..., Any]]] = []
        for method, pattern, handler in (
            ("GET", r"/vms", self._list_vms),
            ("POST", r"/vms", self._create_vm),
            ("GET", r"/vms/(?P<vm_id>[^/]+)", self._get_vm),
            ("PUT", r"/vms/(?P<vm_id>[^/]+)", self._update_vm),
            ("DELETE", r"/vms/(?P<vm_id>[^/]+)", self._remove_vm),
            ("POST", r"/vms/(?P<vm_id>[^/]+)/start", self._start_vm),
            ("POST", r"/vms/(?P<vm_id>[^/]+)/stop", self._stop_vm),
            ("POST", r"/vms/(?P<vm_id>[^/]+)/shutdown", self._stop_vm),
            ("POST", r"/vms/(?P<vm_id>[^/]+)/autopincpuandnumanodes", self._optimize_vm),
            ("GET", r"/vms/(?P<vm_id>[^/]+)/tags", self._list_vm_tags),
            ("POST", r"/vms/(?P<vm_id>[^/]+)/tags", self._add_vm_tag),
            ("GET", r"/vms/(?P<vm_id>[^/]+)/nics", self._list_nics),
            ("POST", r"/vms/(?P<vm_id>[^/]+)/nics", self._create_nic),
            ("GET", r"/vms/(?P<vm_id>[^/]+)/nics/(?P<nic_id>[^/]+)", self._get_nic),
            ("PUT", r"/vms/(?P<vm_id>[^/]+)/nics/(?P<nic_id>[^/]+)", self._update_nic),
            ("DELETE", r"/vms/(?P<vm_id>[^/]+)/nics/(?P<nic_id>[^/]+)", self._remove_nic),
            ("GET", r"/vms/(?P<vm_id>[^/]+)/diskattachments", self._list_attachments),
            ("POST", r"/vms/(?P<vm_id>[^/]+)/diskattachments", self._create_attachment),
            ("GET", r"/vms/(?P<vm_id>[^/]+)/diskattachments/(?P<attachment_id>[^/]+)", self._get_attachment),
            ("DELETE", r"/vms/(?P<vm_id>[^/]+)/diskattachments/(?P<attachment_id>[^/]+)", self._remove_attachment),
            ("GET", r"/templates", self._list_templates),
            ("POST", r"/templates", self._create_template),
            ("GET", r"/templates/(?P<template_id>[^/]+)", self._get_template),
            ("DELETE", r"/templates/(?P<template_id>[^/]+)", self._remove_template),
            ("GET", r"/disks", self._list_disks),
            ("POST", r"/disks", self._create_disk),
            ("GET", r"/disks/(?P<disk_id>[^/]+)", self._get_disk),
            ("PUT", r"/disks/(?P<disk_id>[^/]+)", self._update_disk),
            ("DELETE", r"/disks/(?P<disk_id>[^/]+)", self._remove_disk),
            ("GET", r"/tags", self._list_tags),
            ("POST", r"/tags", self._create_tag),
            ("GET", r"/tags/(?P<tag_id>[^/]+)", self._get_tag),
            ("DELETE", r"/tags/(?P<tag_id>[^/]+)", self._remove_tag),
        ):
            self._routes.append((method, re.compile(pattern), handler))

    # ------------------------------------------------------------------
    # Test hooks
    # ------------------------------------------------------------------
    def fail_next(self, count: int, error: OvirtError) -> None:
        """Make the next ``count`` requests raise ``error`` instead of being served."""
        self._failures.extend([error] * count)

    def script_vm_statuses(self, vm_id: str, statuses: Iterable[VMStatus]) -> None:
        """Report these statuses on the next fetches of the VM, one per fetch."""
        self._vm(vm_id)
        self._held.discard(vm_id)
        self._vm_statuses[vm_id] = deque(VMStatus(s).value for s in statuses)

    def hold_vm_status(self, vm_id: str, status: VMStatus) -> None:
        """Pin the VM to ``status``; start and stop no longer move it."""
        vm = self._vm(vm_id)
        vm["status"] = VMStatus(status).value
        self._vm_statuses.pop(vm_id, None)
        self._held.add(vm_id)

    def count_requests(self, method: str, path: str) -> int:
        return sum(1 for request in self.requests if request == (method, path))

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._dispatch("GET", path, None, params)

    async def post(
        self,
        path: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        return self._dispatch("POST", path, data or {}, params)

    async def put(self, path: str, data: Dict[str, Any]) -> Any:
        return self._dispatch("PUT", path, data, None)

    async def delete(self, path: str, params: Optional[Dict[str, Any]] = None) -> None:
        self._dispatch("DELETE", path, None, params)

    def _dispatch(
        self,
        method: str,
        path: str,
        data: Optional[Dict[str, Any]],
        params: Optional[Dict[str, Any]],
    ) -> Any:
        self.requests.append((method, path))
        if self._failures:
            raise self._failures.popleft()
        operation = f"{method} {path}"
        for route_method, pattern, handler in self._routes:
            match = pattern.fullmatch(path)
            if match is None or route_method != method:
                continue
            result = handler(operation, data=data, params=params or {}, **match.groupdict())
            return copy.deepcopy(result)
        raise error_for_status(404, "Not Found", f"no such path: {path}", operation=operation)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _fail(status_code: int, detail: str, operation: str) -> OvirtError:
        return error_for_status(status_code, "Operation Failed", detail, operation=operation)

    def _lookup(self, table: Dict[str, Any], key: str, kind: str, operation: str) -> Any:
        try:
            return table[key]
        except KeyError:
            raise error_for_status(
                404, "Not Found", f"{kind} with ID {key} not found", operation=operation
            ) from None

    def _vm(self, vm_id: str, operation: str = "lookup") -> Dict[str, Any]:
        return self._lookup(self.vms, vm_id, "VM", operation)

    @staticmethod
    def _ref(data: Dict[str, Any], field: str) -> Optional[str]:
        ref = data.get(field)
        if isinstance(ref, dict):
            return ref.get("id")
        return None

    def _check_unique(self, table: Dict[str, Any], name: str, kind: str, operation: str) -> None:
        if any(item["name"] == name for item in table.values()):
            raise self._fail(400, f"Cannot add {kind}. The {kind} name is already in use.", operation)

    # ------------------------------------------------------------------
    # VMs
    # ------------------------------------------------------------------
    def _list_vms(self, operation, params, **_):
        vms = list(self.vms.values())
        search = params.get("search")
        if search:
            for term in search.split(" and "):
                key, _, value = term.strip().partition("=")
                if key == "name":
                    vms = [vm for vm in vms if vm["name"] == value]
                elif key == "tag":
                    tag_ids = {tag["id"] for tag in self.tags.values() if tag["name"] == value}
                    vms = [
                        vm for vm in vms
                        if tag_ids & {tag["id"] for tag in vm["tags"]["tag"]}
                    ]
                else:
                    raise self._fail(400, f"Unsupported search term: {term}", operation)
        if not vms:
            return {}
        return {"vm": vms}

    def _create_vm(self, operation, data, **_):
        name = data.get("name")
        if not name:
            raise self._fail(400, "VM name is required.", operation)
        self._check_unique(self.vms, name, "VM", operation)
        cluster_id = self._ref(data, "cluster")
        if cluster_id != self.cluster_id:
            raise error_for_status(404, "Not Found", f"cluster with ID {cluster_id} not found", operation=operation)
        template_id = self._ref(data, "template")
        template = self._lookup(self.templates, template_id, "template", operation)
        if template["status"] != "ok":
            raise self._fail(400, "Cannot add VM. Template is locked.", operation)

        if "cpu" in data:
            topology = data["cpu"]["topology"]
            cpu = _topology(topology["cores"], topology["threads"], topology["sockets"])
        else:
            cpu = copy.deepcopy(template["cpu"])
        vm = {
            "id": str(uuid.uuid4()),
            "name": name,
            "comment": data.get("comment", ""),
            "status": VMStatus.DOWN.value,
            "cluster": {"id": cluster_id},
            "template": {"id": template_id},
            "cpu": cpu,
            "tags": {"tag": []},
        }
        for key in ("custom_properties", "initialization"):
            if key in data:
                vm[key] = copy.deepcopy(data[key])
        self.vms[vm["id"]] = vm
        self.nics[vm["id"]] = {}
        self.disk_attachments[vm["id"]] = {}
        return vm

    def _get_vm(self, operation, vm_id, **_):
        vm = self._vm(vm_id, operation)
        queue = self._vm_statuses.get(vm_id)
        if vm_id not in self._held and queue:
            vm["status"] = queue.popleft()
        return vm

    def _update_vm(self, operation, vm_id, data, **_):
        vm = self._vm(vm_id, operation)
        name = data.get("name")
        if name is not None and name != vm["name"]:
            self._check_unique(self.vms, name, "VM", operation)
            vm["name"] = name
        if data.get("comment") is not None:
            vm["comment"] = data["comment"]
        return vm

    def _remove_vm(self, operation, vm_id, **_):
        vm = self._vm(vm_id, operation)
        if vm["status"] != VMStatus.DOWN.value:
            raise self._fail(400, "Cannot remove VM. VM is running.", operation)
        del self.vms[vm_id]
        self.nics.pop(vm_id, None)
        self.disk_attachments.pop(vm_id, None)
        self._vm_statuses.pop(vm_id, None)
        self._held.discard(vm_id)

    def _start_vm(self, operation, vm_id, **_):
        vm = self._vm(vm_id, operation)
        if vm["status"] in _RUNNING:
            raise self._fail(400, "Cannot run VM. VM is running.", operation)
        if vm_id in self._held:
            return {"status": "complete"}
        vm["status"] = VMStatus.WAIT_FOR_LAUNCH.value
        self._vm_statuses[vm_id] = deque([VMStatus.POWERING_UP.value, VMStatus.UP.value])
        return {"status": "complete"}

    def _stop_vm(self, operation, vm_id, **_):
        vm = self._vm(vm_id, operation)
        if vm_id in self._held or vm["status"] == VMStatus.DOWN.value:
            return {"status": "complete"}
        vm["status"] = VMStatus.POWERING_DOWN.value
        self._vm_statuses[vm_id] = deque([VMStatus.DOWN.value])
        return {"status": "complete"}

    def _optimize_vm(self, operation, vm_id, data, **_):
        vm = self._vm(vm_id, operation)
        vm["auto_pinning_policy"] = "adjust" if data.get("optimize_cpu_settings") else "existing"
        return {"status": "complete"}

    def _list_vm_tags(self, operation, vm_id, **_):
        vm = self._vm(vm_id, operation)
        tags = [self.tags[tag["id"]] for tag in vm["tags"]["tag"] if tag["id"] in self.tags]
        return {"tag": tags} if tags else {}

    def _add_vm_tag(self, operation, vm_id, data, **_):
        vm = self._vm(vm_id, operation)
        tag = self._lookup(self.tags, data.get("id"), "tag", operation)
        if all(ref["id"] != tag["id"] for ref in vm["tags"]["tag"]):
            vm["tags"]["tag"].append({"id": tag["id"]})
        return tag

    # ------------------------------------------------------------------
    # NICs
    # ------------------------------------------------------------------
    def _list_nics(self, operation, vm_id, **_):
        self._vm(vm_id, operation)
        nics = list(self.nics[vm_id].values())
        return {"nic": nics} if nics else {}

    def _create_nic(self, operation, vm_id, data, **_):
        self._vm(vm_id, operation)
        name = data.get("name")
        if not name:
            raise self._fail(400, "NIC name is required.", operation)
        self._check_unique(self.nics[vm_id], name, "NIC", operation)
        self._check_vnic_profile(self._ref(data, "vnic_profile"), operation)
        nic = {
            "id": str(uuid.uuid4()),
            "name": name,
            "vm": {"id": vm_id},
            "vnic_profile": {"id": self._ref(data, "vnic_profile")},
        }
        self.nics[vm_id][nic["id"]] = nic
        return nic

    def _check_vnic_profile(self, profile_id: Optional[str], operation: str) -> None:
        if profile_id != self.vnic_profile_id:
            raise error_for_status(
                404, "Not Found", f"vNIC profile with ID {profile_id} not found", operation=operation
            )

    def _get_nic(self, operation, vm_id, nic_id, **_):
        self._vm(vm_id, operation)
        return self._lookup(self.nics[vm_id], nic_id, "NIC", operation)

    def _update_nic(self, operation, vm_id, nic_id, data, **_):
        nic = self._get_nic(operation, vm_id, nic_id)
        name = data.get("name")
        if name is not None and name != nic["name"]:
            self._check_unique(self.nics[vm_id], name, "NIC", operation)
            nic["name"] = name
        profile_id = self._ref(data, "vnic_profile")
        if profile_id is not None:
            self._check_vnic_profile(profile_id, operation)
            nic["vnic_profile"] = {"id": profile_id}
        return nic

    def _remove_nic(self, operation, vm_id, nic_id, **_):
        self._get_nic(operation, vm_id, nic_id)
        del self.nics[vm_id][nic_id]

    # ------------------------------------------------------------------
    # Disk attachments
    # ------------------------------------------------------------------
    def _list_attachments(self, operation, vm_id, **_):
        self._vm(vm_id, operation)
        attachments = list(self.disk_attachments[vm_id].values())
        return {"disk_attachment": attachments} if attachments else {}

    def _create_attachment(self, operation, vm_id, data, **_):
        self._vm(vm_id, operation)
        disk_id = self._ref(data, "disk")
        self._lookup(self.disks, disk_id, "disk", operation)
        if disk_id in self.disk_attachments[vm_id]:
            raise self._fail(400, "Cannot attach disk. The disk is already attached to the VM.", operation)
        # The engine uses the disk ID as the attachment ID
        attachment = {
            "id": disk_id,
            "vm": {"id": vm_id},
            "disk": {"id": disk_id},
            "interface": data.get("interface"),
            "bootable": str(bool(data.get("bootable", False))).lower(),
            "active": str(bool(data.get("active", True))).lower(),
        }
        self.disk_attachments[vm_id][disk_id] = attachment
        return attachment

    def _get_attachment(self, operation, vm_id, attachment_id, **_):
        self._vm(vm_id, operation)
        return self._lookup(self.disk_attachments[vm_id], attachment_id, "disk attachment", operation)

    def _remove_attachment(self, operation, vm_id, attachment_id, **_):
        self._get_attachment(operation, vm_id, attachment_id)
        del self.disk_attachments[vm_id][attachment_id]

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------
    def _list_templates(self, operation, **_):
        return {"template": list(self.templates.values())}

    def _create_template(self, operation, data, **_):
        name = data.get("name")
        if not name:
            raise self._fail(400, "Template name is required.", operation)
        self._check_unique(self.templates, name, "template", operation)
        vm = self._vm(self._ref(data, "vm"), operation)
        template = {
            "id": str(uuid.uuid4()),
            "name": name,
            "description": data.get("description", ""),
            "status": "locked",
            "cpu": copy.deepcopy(vm["cpu"]),
        }
        self.templates[template["id"]] = template
        self._unlock_on_fetch.add(template["id"])
        return template

    def _get_template(self, operation, template_id, **_):
        template = self._lookup(self.templates, template_id, "template", operation)
        if template_id in self._unlock_on_fetch:
            self._unlock_on_fetch.discard(template_id)
            template["status"] = "ok"
        return template

    def _remove_template(self, operation, template_id, **_):
        self._lookup(self.templates, template_id, "template", operation)
        if template_id == BLANK_TEMPLATE_ID:
            raise self._fail(400, "Cannot delete Blank template.", operation)
        if any(vm["template"]["id"] == template_id for vm in self.vms.values()):
            raise self._fail(400, "Cannot delete template. Template is in use by VMs.", operation)
        del self.templates[template_id]
        self._unlock_on_fetch.discard(template_id)

    # ------------------------------------------------------------------
    # Disks
    # ------------------------------------------------------------------
    def _list_disks(self, operation, **_):
        disks = list(self.disks.values())
        return {"disk": disks} if disks else {}

    def _create_disk(self, operation, data, **_):
        domains = data.get("storage_domains", {}).get("storage_domain", [])
        domain_ids = [domain.get("id") for domain in domains]
        if domain_ids != [self.storage_domain_id]:
            raise error_for_status(
                404, "Not Found", f"storage domain with ID {domain_ids} not found", operation=operation
            )
        disk = {
            "id": str(uuid.uuid4()),
            "alias": data.get("alias", ""),
            "format": data.get("format"),
            "provisioned_size": str(data.get("provisioned_size")),
            "total_size": "0",
            "status": "locked",
            "sparse": str(bool(data.get("sparse", False))).lower(),
            "storage_domains": {"storage_domain": [{"id": self.storage_domain_id}]},
        }
        self.disks[disk["id"]] = disk
        self._unlock_on_fetch.add(disk["id"])
        return disk

    def _get_disk(self, operation, disk_id, **_):
        disk = self._lookup(self.disks, disk_id, "disk", operation)
        if disk_id in self._unlock_on_fetch:
            self._unlock_on_fetch.discard(disk_id)
            disk["status"] = "ok"
        return disk

    def _update_disk(self, operation, disk_id, data, **_):
        disk = self._lookup(self.disks, disk_id, "disk", operation)
        if disk["status"] == "locked":
            raise self._fail(409, "Cannot edit disk. Disk is locked.", operation)
        if data.get("alias") is not None:
            disk["alias"] = data["alias"]
        return disk

    def _remove_disk(self, operation, disk_id, **_):
        disk = self._lookup(self.disks, disk_id, "disk", operation)
        if disk["status"] == "locked":
            raise self._fail(409, "Cannot remove disk. Disk is locked.", operation)
        for attachments in self.disk_attachments.values():
            attachments.pop(disk_id, None)
        del self.disks[disk_id]

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------
    def _list_tags(self, operation, **_):
        tags = list(self.tags.values())
        return {"tag": tags} if tags else {}

    def _create_tag(self, operation, data, **_):
        name = data.get("name")
        if not name:
            raise self._fail(400, "Tag name is required.", operation)
        self._check_unique(self.tags, name, "tag", operation)
        tag = {"id": str(uuid.uuid4()), "name": name, "description": data.get("description", "")}
        self.tags[tag["id"]] = tag
        return tag

    def _get_tag(self, operation, tag_id, **_):
        return self._lookup(self.tags, tag_id, "tag", operation)

    def _remove_tag(self, operation, tag_id, **_):
        self._lookup(self.tags, tag_id, "tag", operation)
        del self.tags[tag_id]
        for vm in self.vms.values():
            vm["tags"]["tag"] = [ref for ref in vm["tags"]["tag"] if ref["id"] != tag_id]


def _topology(cores: Any, threads: Any, sockets: Any) -> Dict[str, Any]:
    # The engine sends numbers as strings
    return {"topology": {"cores": str(cores), "threads": str(threads), "sockets": str(sockets)}}


def new_mock_client(**config_overrides: Any) -> PyOvirt:
    """Create a PyOvirt client backed by a fresh MockTransport.

    Retry delays default to zero so tests run instantly.
    """
    values = {
        "url": "https://mock.engine/ovirt-engine/api",
        "default_initial_delay": 0,
        "default_max_delay": 0,
        "poll_delay": 0,
    }
    values.update(config_overrides)
    return PyOvirt(ClientConfig(**values), transport=MockTransport())
