import logging
from functools import wraps
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar, Union

import aiohttp

from .client import OvirtClient, Transport
from .config import ClientConfig
from .converters import (
    convert_disk,
    convert_disk_attachment,
    convert_nic,
    convert_tag,
    convert_template,
    convert_vm,
    items_of,
)
from .exceptions import (
    ErrorCode,
    OvirtBadArgumentError,
    OvirtError,
    OvirtPendingError,
    OvirtStatusTimeoutError,
    OvirtTimeoutError,
    has_error_code,
)
from .models import (
    NIC,
    VM,
    Disk,
    DiskAttachment,
    DiskFormat,
    DiskInterface,
    DiskStatus,
    Tag,
    Template,
    TemplateStatus,
    VMStatus,
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
    validate_vm_name,
)
from .retry import (
    AutoRetry,
    ExponentialBackoff,
    FixedDelay,
    MaxTries,
    RetryStrategy,
    retry,
)

# Type variable for the decorator
T = TypeVar('T')


def ensure_client(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Decorator to ensure the transport exists before executing the method."""
    @wraps(func)
    async def wrapper(self: 'PyOvirt', *args: Any, **kwargs: Any) -> T:
        self._ensure_client()
        return await func(self, *args, **kwargs)
    return wrapper


class PyOvirt:
    """Async client for the engine's VMs, templates, disks, NICs and tags.

    Every operation takes any number of retry strategies as trailing
    positional arguments; without them the budgets from the config apply.

    Example:
        >>> async with PyOvirt(ClientConfig.from_env()) as client:
        ...     vm = await client.create_vm(cluster_id, BLANK_TEMPLATE_ID, "web-1")
        ...     await vm.start()
        ...     vm = await vm.wait_for_status(VMStatus.UP)
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        transport: Optional[Transport] = None,
        debug: Optional[bool] = None,
    ):
        """Initialize the client.

        Args:
            config: Connection settings and default retry budgets; read from
                the OVIRT_* environment variables when omitted
            transport: Use this transport instead of an aiohttp one built from config
            debug: Enable debug logging; defaults to config.debug
        """
        self.config = config if config is not None else ClientConfig.from_env()
        self.debug = self.config.debug if debug is None else debug
        self.client: Optional[Transport] = transport

        # Configure logging
        self.logger = logging.getLogger('pyovirt')
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.DEBUG if self.debug else logging.INFO)

    async def __aenter__(self) -> 'PyOvirt':
        """Async context manager entry."""
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    def _ensure_client(self) -> None:
        """Initialize the transport if not already initialized."""
        if self.client is None:
            client_timeout = aiohttp.ClientTimeout(
                total=self.config.request_timeout,
                connect=self.config.connect_timeout,
                sock_connect=self.config.connect_timeout,
            )
            self.client = OvirtClient(
                base_url=self.config.url,
                username=self.config.username,
                password=self.config.password,
                timeout=client_timeout,
                verify_ssl=not self.config.insecure,
                ca_file=self.config.ca_file,
                debug=self.debug,
            )

    async def close(self) -> None:
        """Close the transport."""
        if self.client is not None:
            await self.client.close()

    def _retries(self, retries: Sequence[RetryStrategy]) -> Sequence[RetryStrategy]:
        if retries:
            return retries
        return (
            AutoRetry(),
            MaxTries(self.config.default_max_tries),
            ExponentialBackoff(
                factor=self.config.default_backoff_factor,
                initial=self.config.default_initial_delay,
                maximum=self.config.default_max_delay,
            ),
        )

    def _poll_retries(self, retries: Sequence[RetryStrategy]) -> Sequence[RetryStrategy]:
        if retries:
            return retries
        return (
            AutoRetry(),
            MaxTries(self.config.poll_max_tries),
            FixedDelay(self.config.poll_delay),
        )

    async def _call(
        self,
        action: str,
        retries: Sequence[RetryStrategy],
        what: Callable[[], Awaitable[T]],
    ) -> T:
        return await retry(action, self.logger, self._retries(retries), what)

    async def _remove(
        self,
        action: str,
        path: str,
        retries: Sequence[RetryStrategy],
        ignore_not_found: bool,
    ) -> None:
        try:
            await self._call(action, retries, lambda: self.client.delete(path))
        except OvirtError as e:
            if ignore_not_found and has_error_code(e, ErrorCode.NOT_FOUND):
                self.logger.debug(f"Nothing to do for {action}, already gone.")
                return
            raise

    async def _wait_for_status(
        self,
        kind: str,
        resource_id: str,
        status: Any,
        fetch: Callable[[str], Awaitable[Any]],
        retries: Sequence[RetryStrategy],
    ) -> Any:
        last_seen = None

        async def poll():
            nonlocal last_seen
            last_seen = await fetch(resource_id)
            if last_seen.status != status:
                raise OvirtPendingError(
                    f"{kind} {resource_id} status is {last_seen.status.value}, not {status.value}"
                )
            return last_seen

        action = f"waiting for {kind} {resource_id} status {status.value}"
        try:
            return await retry(action, self.logger, self._poll_retries(retries), poll)
        except OvirtTimeoutError as e:
            # Only a status mismatch is a status timeout; an exhausted fetch propagates as is
            if not isinstance(e.cause, OvirtPendingError):
                raise
            last_status = last_seen.status if last_seen is not None else None
            raise OvirtStatusTimeoutError(
                f"{kind} {resource_id} did not reach status {status.value}"
                f" (last status: {last_status.value if last_status is not None else 'unknown'})",
                last_status=last_status,
                last_seen=last_seen,
                cause=e.cause,
                attempts=e.attempts,
            ) from e

    # ------------------------------------------------------------------
    # VMs
    # ------------------------------------------------------------------
    @ensure_client
    async def create_vm(
        self,
        cluster_id: str,
        template_id: str,
        name: str,
        *retries: RetryStrategy,
        params: Optional[CreateVMParams] = None,
    ) -> VM:
        """Create a VM from a template; params may override the template's settings."""
        validate_vm_name(name)
        body = {
            "name": name,
            "cluster": {"id": cluster_id},
            "template": {"id": template_id},
        }
        if params is not None:
            body.update(params.model_dump())

        async def create():
            return convert_vm(await self.client.post("/vms", body), self)

        return await self._call(f"creating VM {name}", retries, create)

    @ensure_client
    async def get_vm(self, vm_id: str, *retries: RetryStrategy) -> VM:
        """Get VM details."""
        async def fetch():
            return convert_vm(await self.client.get(f"/vms/{vm_id}", {"follow": "tags"}), self)

        return await self._call(f"getting VM {vm_id}", retries, fetch)

    @ensure_client
    async def update_vm(self, vm_id: str, params: UpdateVMParams, *retries: RetryStrategy) -> VM:
        """Change the fields set on params; everything else is left as is."""
        body = params.model_dump()

        async def update():
            return convert_vm(await self.client.put(f"/vms/{vm_id}", body), self)

        return await self._call(f"updating VM {vm_id}", retries, update)

    @ensure_client
    async def auto_optimize_vm_cpu_pinning(self, vm_id: str, optimize: bool, *retries: RetryStrategy) -> None:
        """Let the engine pick CPU pinning and NUMA settings for the VM."""
        await self._call(
            f"setting CPU pinning optimization on VM {vm_id}",
            retries,
            lambda: self.client.post(
                f"/vms/{vm_id}/autopincpuandnumanodes",
                {"optimize_cpu_settings": bool(optimize)},
            ),
        )

    @ensure_client
    async def start_vm(self, vm_id: str, *retries: RetryStrategy) -> None:
        """Trigger a VM start. Use wait_for_vm_status to wait for it to come up."""
        await self._call(f"starting VM {vm_id}", retries, lambda: self.client.post(f"/vms/{vm_id}/start"))

    @ensure_client
    async def stop_vm(self, vm_id: str, *retries: RetryStrategy, force: bool = False) -> None:
        """Power off a VM. force proceeds even while a backup is running."""
        await self._call(
            f"stopping VM {vm_id}",
            retries,
            lambda: self.client.post(f"/vms/{vm_id}/stop", {"force": bool(force)}),
        )

    @ensure_client
    async def shutdown_vm(self, vm_id: str, *retries: RetryStrategy, force: bool = False) -> None:
        """Ask the guest to shut down. force proceeds even while a backup is running."""
        await self._call(
            f"shutting down VM {vm_id}",
            retries,
            lambda: self.client.post(f"/vms/{vm_id}/shutdown", {"force": bool(force)}),
        )

    @ensure_client
    async def wait_for_vm_status(
        self,
        vm_id: str,
        status: Union[VMStatus, str],
        *retries: RetryStrategy,
    ) -> VM:
        """Poll the VM until it reports status.

        The retries describe the polling budget; each individual fetch is
        retried with the default strategy. Raises OvirtStatusTimeoutError,
        carrying the last observed status, when the budget runs out.
        """
        status = VMStatus.validate(status)
        return await self._wait_for_status("VM", vm_id, status, self.get_vm, retries)

    @ensure_client
    async def list_vms(self, *retries: RetryStrategy) -> List[VM]:
        """List all VMs."""
        async def fetch():
            data = await self.client.get("/vms", {"follow": "tags"})
            return [convert_vm(vm, self) for vm in items_of(data, "vm")]

        return await self._call("listing VMs", retries, fetch)

    @ensure_client
    async def search_vms(self, params: VMSearchParams, *retries: RetryStrategy) -> List[VM]:
        """List the VMs matching every filter set on params."""
        query = {"follow": "tags"}
        search = params.search_query()
        if search is not None:
            query["search"] = search

        async def fetch():
            data = await self.client.get("/vms", query)
            vms = [convert_vm(vm, self) for vm in items_of(data, "vm")]
            return [vm for vm in vms if params.matches(vm)]

        return await self._call("searching VMs", retries, fetch)

    @ensure_client
    async def remove_vm(self, vm_id: str, *retries: RetryStrategy, ignore_not_found: bool = False) -> None:
        """Delete a VM. With ignore_not_found an already deleted VM counts as success."""
        await self._remove(f"removing VM {vm_id}", f"/vms/{vm_id}", retries, ignore_not_found)

    @ensure_client
    async def add_tag_to_vm(self, vm_id: str, tag_id: str, *retries: RetryStrategy) -> None:
        await self._call(
            f"adding tag {tag_id} to VM {vm_id}",
            retries,
            lambda: self.client.post(f"/vms/{vm_id}/tags", {"id": tag_id}),
        )

    @ensure_client
    async def list_vm_tags(self, vm_id: str, *retries: RetryStrategy) -> List[Tag]:
        async def fetch():
            data = await self.client.get(f"/vms/{vm_id}/tags")
            return [convert_tag(tag, self) for tag in items_of(data, "tag")]

        return await self._call(f"listing tags of VM {vm_id}", retries, fetch)

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------
    @ensure_client
    async def create_template(
        self,
        vm_id: str,
        name: str,
        *retries: RetryStrategy,
        params: Optional[CreateTemplateParams] = None,
    ) -> Template:
        """Create a template from a VM. The template starts out locked."""
        body = {"name": name, "vm": {"id": vm_id}}
        if params is not None:
            body.update(params.model_dump())

        async def create():
            return convert_template(await self.client.post("/templates", body), self)

        return await self._call(f"creating template {name} from VM {vm_id}", retries, create)

    @ensure_client
    async def get_template(self, template_id: str, *retries: RetryStrategy) -> Template:
        async def fetch():
            return convert_template(await self.client.get(f"/templates/{template_id}"), self)

        return await self._call(f"getting template {template_id}", retries, fetch)

    @ensure_client
    async def list_templates(self, *retries: RetryStrategy) -> List[Template]:
        async def fetch():
            data = await self.client.get("/templates")
            return [convert_template(t, self) for t in items_of(data, "template")]

        return await self._call("listing templates", retries, fetch)

    @ensure_client
    async def remove_template(
        self,
        template_id: str,
        *retries: RetryStrategy,
        ignore_not_found: bool = False,
    ) -> None:
        await self._remove(
            f"removing template {template_id}",
            f"/templates/{template_id}",
            retries,
            ignore_not_found,
        )

    @ensure_client
    async def wait_for_template_status(
        self,
        template_id: str,
        status: Union[TemplateStatus, str],
        *retries: RetryStrategy,
    ) -> Template:
        try:
            status = TemplateStatus(status)
        except ValueError:
            raise OvirtBadArgumentError(f"invalid value for template status: {status}") from None
        return await self._wait_for_status("template", template_id, status, self.get_template, retries)

    # ------------------------------------------------------------------
    # Disks
    # ------------------------------------------------------------------
    @ensure_client
    async def create_disk(
        self,
        storage_domain_id: str,
        format: Union[DiskFormat, str],
        provisioned_size: int,
        *retries: RetryStrategy,
        params: Optional[CreateDiskParams] = None,
    ) -> Disk:
        """Create an empty disk. The disk starts out locked; see wait_for_disk_ok."""
        try:
            format = DiskFormat(format)
        except ValueError:
            raise OvirtBadArgumentError(f"invalid disk format: {format}") from None
        if isinstance(provisioned_size, bool) or not isinstance(provisioned_size, int) or provisioned_size < 1:
            raise OvirtBadArgumentError(f"provisioned size must be a positive integer, got {provisioned_size!r}")
        body = {
            "format": format.value,
            "provisioned_size": provisioned_size,
            "storage_domains": {"storage_domain": [{"id": storage_domain_id}]},
        }
        if params is not None:
            body.update(params.model_dump())

        async def create():
            return convert_disk(await self.client.post("/disks", body), self)

        return await self._call(f"creating disk in storage domain {storage_domain_id}", retries, create)

    @ensure_client
    async def get_disk(self, disk_id: str, *retries: RetryStrategy) -> Disk:
        async def fetch():
            return convert_disk(await self.client.get(f"/disks/{disk_id}"), self)

        return await self._call(f"getting disk {disk_id}", retries, fetch)

    @ensure_client
    async def list_disks(self, *retries: RetryStrategy) -> List[Disk]:
        async def fetch():
            data = await self.client.get("/disks")
            return [convert_disk(d, self) for d in items_of(data, "disk")]

        return await self._call("listing disks", retries, fetch)

    @ensure_client
    async def update_disk(self, disk_id: str, params: UpdateDiskParams, *retries: RetryStrategy) -> Disk:
        body = params.model_dump()

        async def update():
            return convert_disk(await self.client.put(f"/disks/{disk_id}", body), self)

        return await self._call(f"updating disk {disk_id}", retries, update)

    @ensure_client
    async def remove_disk(self, disk_id: str, *retries: RetryStrategy, ignore_not_found: bool = False) -> None:
        await self._remove(f"removing disk {disk_id}", f"/disks/{disk_id}", retries, ignore_not_found)

    @ensure_client
    async def wait_for_disk_ok(self, disk_id: str, *retries: RetryStrategy) -> Disk:
        """Poll the disk until it leaves the locked state."""
        return await self._wait_for_status("disk", disk_id, DiskStatus.OK, self.get_disk, retries)

    # ------------------------------------------------------------------
    # Disk attachments
    # ------------------------------------------------------------------
    @ensure_client
    async def create_disk_attachment(
        self,
        vm_id: str,
        disk_id: str,
        interface: Union[DiskInterface, str],
        *retries: RetryStrategy,
        params: Optional[CreateDiskAttachmentParams] = None,
    ) -> DiskAttachment:
        """Attach a disk to a VM."""
        try:
            interface = DiskInterface(interface)
        except ValueError:
            raise OvirtBadArgumentError(f"invalid disk interface: {interface}") from None
        body = {"disk": {"id": disk_id}, "interface": interface.value}
        if params is not None:
            body.update(params.model_dump())

        async def create():
            data = await self.client.post(f"/vms/{vm_id}/diskattachments", body)
            return convert_disk_attachment(data, self)

        return await self._call(f"attaching disk {disk_id} to VM {vm_id}", retries, create)

    @ensure_client
    async def get_disk_attachment(self, vm_id: str, attachment_id: str, *retries: RetryStrategy) -> DiskAttachment:
        async def fetch():
            data = await self.client.get(f"/vms/{vm_id}/diskattachments/{attachment_id}")
            return convert_disk_attachment(data, self)

        return await self._call(f"getting disk attachment {attachment_id} of VM {vm_id}", retries, fetch)

    @ensure_client
    async def list_disk_attachments(self, vm_id: str, *retries: RetryStrategy) -> List[DiskAttachment]:
        async def fetch():
            data = await self.client.get(f"/vms/{vm_id}/diskattachments")
            return [convert_disk_attachment(a, self) for a in items_of(data, "disk_attachment")]

        return await self._call(f"listing disk attachments of VM {vm_id}", retries, fetch)

    @ensure_client
    async def remove_disk_attachment(
        self,
        vm_id: str,
        attachment_id: str,
        *retries: RetryStrategy,
        ignore_not_found: bool = False,
    ) -> None:
        """Detach a disk from a VM. The disk itself is kept."""
        await self._remove(
            f"detaching disk attachment {attachment_id} from VM {vm_id}",
            f"/vms/{vm_id}/diskattachments/{attachment_id}",
            retries,
            ignore_not_found,
        )

    # ------------------------------------------------------------------
    # NICs
    # ------------------------------------------------------------------
    @ensure_client
    async def create_nic(
        self,
        vm_id: str,
        vnic_profile_id: str,
        name: str,
        *retries: RetryStrategy,
    ) -> NIC:
        body = {"name": name, "vnic_profile": {"id": vnic_profile_id}}

        async def create():
            return convert_nic(await self.client.post(f"/vms/{vm_id}/nics", body), self)

        return await self._call(f"creating NIC {name} on VM {vm_id}", retries, create)

    @ensure_client
    async def get_nic(self, vm_id: str, nic_id: str, *retries: RetryStrategy) -> NIC:
        async def fetch():
            return convert_nic(await self.client.get(f"/vms/{vm_id}/nics/{nic_id}"), self)

        return await self._call(f"getting NIC {nic_id} of VM {vm_id}", retries, fetch)

    @ensure_client
    async def list_nics(self, vm_id: str, *retries: RetryStrategy) -> List[NIC]:
        async def fetch():
            data = await self.client.get(f"/vms/{vm_id}/nics")
            return [convert_nic(nic, self) for nic in items_of(data, "nic")]

        return await self._call(f"listing NICs of VM {vm_id}", retries, fetch)

    @ensure_client
    async def update_nic(self, vm_id: str, nic_id: str, params: UpdateNICParams, *retries: RetryStrategy) -> NIC:
        body = params.model_dump()

        async def update():
            return convert_nic(await self.client.put(f"/vms/{vm_id}/nics/{nic_id}", body), self)

        return await self._call(f"updating NIC {nic_id} of VM {vm_id}", retries, update)

    @ensure_client
    async def remove_nic(
        self,
        vm_id: str,
        nic_id: str,
        *retries: RetryStrategy,
        ignore_not_found: bool = False,
    ) -> None:
        await self._remove(
            f"removing NIC {nic_id} from VM {vm_id}",
            f"/vms/{vm_id}/nics/{nic_id}",
            retries,
            ignore_not_found,
        )

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------
    @ensure_client
    async def create_tag(
        self,
        name: str,
        *retries: RetryStrategy,
        params: Optional[CreateTagParams] = None,
    ) -> Tag:
        body = {"name": name}
        if params is not None:
            body.update(params.model_dump())

        async def create():
            return convert_tag(await self.client.post("/tags", body), self)

        return await self._call(f"creating tag {name}", retries, create)

    @ensure_client
    async def get_tag(self, tag_id: str, *retries: RetryStrategy) -> Tag:
        async def fetch():
            return convert_tag(await self.client.get(f"/tags/{tag_id}"), self)

        return await self._call(f"getting tag {tag_id}", retries, fetch)

    @ensure_client
    async def list_tags(self, *retries: RetryStrategy) -> List[Tag]:
        async def fetch():
            data = await self.client.get("/tags")
            return [convert_tag(tag, self) for tag in items_of(data, "tag")]

        return await self._call("listing tags", retries, fetch)

    @ensure_client
    async def remove_tag(self, tag_id: str, *retries: RetryStrategy, ignore_not_found: bool = False) -> None:
        await self._remove(f"removing tag {tag_id}", f"/tags/{tag_id}", retries, ignore_not_found)
