"""Tests for templates, disks, disk attachments, NICs and tags."""

import pytest

from pyovirt import (
    BLANK_TEMPLATE_ID,
    CreateDiskAttachmentParams,
    CreateDiskParams,
    CreateTemplateParams,
    DiskFormat,
    DiskInterface,
    DiskStatus,
    UpdateDiskParams,
    UpdateNICParams,
)
from pyovirt.exceptions import OvirtBadArgumentError, OvirtNotFoundError, OvirtServerError


class TestTemplates:
    @pytest.mark.asyncio
    async def test_blank_template_is_seeded(self, client):
        templates = await client.list_templates()
        assert [t.id for t in templates] == [BLANK_TEMPLATE_ID]
        blank = await client.get_template(BLANK_TEMPLATE_ID)
        assert blank.cpu.topo.cores == 1

    @pytest.mark.asyncio
    async def test_create_and_remove(self, client, create_vm):
        vm = await create_vm()
        template = await client.create_template(
            vm.id, "base", params=CreateTemplateParams().must_with_description("base image")
        )
        assert template.description == "base image"

        await client.wait_for_template_status(template.id, "ok")
        await template.remove()

        with pytest.raises(OvirtNotFoundError):
            await client.get_template(template.id)
        await client.remove_template(template.id, ignore_not_found=True)
        await template.remove(ignore_not_found=True)
        with pytest.raises(OvirtNotFoundError):
            await template.remove()

    @pytest.mark.asyncio
    async def test_template_in_use_cannot_be_removed(self, client, create_vm):
        vm = await create_vm()
        template = await client.create_template(vm.id, "base")
        await template.wait_for_status("ok")
        await create_vm(template_id=template.id)

        with pytest.raises(OvirtServerError):
            await template.remove()


class TestDisks:
    @pytest.mark.asyncio
    async def test_create_wait_update_remove(self, client, engine):
        disk = await client.create_disk(
            engine.storage_domain_id,
            DiskFormat.COW,
            512 * 1024 * 1024,
            params=CreateDiskParams().with_alias("data").with_sparse(True),
        )
        assert disk.status == DiskStatus.LOCKED
        assert disk.alias == "data"
        assert disk.sparse is True
        assert disk.storage_domain_ids == (engine.storage_domain_id,)

        disk = await disk.wait_for_ok()
        assert disk.status == DiskStatus.OK

        disk = await disk.update(UpdateDiskParams().with_alias("renamed"))
        assert disk.alias == "renamed"
        assert [d.id for d in await client.list_disks()] == [disk.id]

        await disk.remove()
        assert await client.list_disks() == []
        await disk.remove(ignore_not_found=True)
        with pytest.raises(OvirtNotFoundError):
            await disk.remove()

    @pytest.mark.asyncio
    async def test_rejects_bad_arguments_locally(self, client, engine):
        with pytest.raises(OvirtBadArgumentError):
            await client.create_disk(engine.storage_domain_id, "qcow3", 1024)
        with pytest.raises(OvirtBadArgumentError):
            await client.create_disk(engine.storage_domain_id, DiskFormat.RAW, 0)
        assert engine.requests == []

    @pytest.mark.asyncio
    async def test_unknown_storage_domain(self, client):
        with pytest.raises(OvirtNotFoundError):
            await client.create_disk("missing", DiskFormat.RAW, 1024)


class TestDiskAttachments:
    @pytest.mark.asyncio
    async def test_attach_and_detach(self, client, engine, create_vm):
        vm = await create_vm()
        disk = await client.create_disk(engine.storage_domain_id, DiskFormat.RAW, 1024)
        disk = await disk.wait_for_ok()

        attachment = await vm.attach_disk(
            disk.id,
            DiskInterface.VIRTIO_SCSI,
            params=CreateDiskAttachmentParams().with_bootable(True).with_active(True),
        )
        assert attachment.vm_id == vm.id
        assert attachment.disk_id == disk.id
        assert attachment.bootable is True
        assert attachment.active is True

        assert await vm.get_disk_attachment(attachment.id) == attachment
        assert [a.id for a in await vm.list_disk_attachments()] == [attachment.id]

        await attachment.detach()
        assert await vm.list_disk_attachments() == []
        await attachment.detach(ignore_not_found=True)
        await vm.detach_disk(attachment.id, ignore_not_found=True)
        with pytest.raises(OvirtNotFoundError):
            await attachment.detach()
        # Detaching keeps the disk
        assert (await client.get_disk(disk.id)).id == disk.id

    @pytest.mark.asyncio
    async def test_invalid_interface(self, client, create_vm):
        vm = await create_vm()
        with pytest.raises(OvirtBadArgumentError):
            await client.create_disk_attachment(vm.id, "disk", "scsi")


class TestNICs:
    @pytest.mark.asyncio
    async def test_create_update_remove(self, client, engine, create_vm):
        vm = await create_vm()

        nic = await vm.create_nic("eth0", engine.vnic_profile_id)
        assert nic.vm_id == vm.id
        assert nic.vnic_profile_id == engine.vnic_profile_id
        assert (await vm.get_nic(nic.id)).name == "eth0"

        nic = await nic.update(UpdateNICParams().with_name("eth1"))
        assert nic.name == "eth1"
        assert [n.name for n in await vm.list_nics()] == ["eth1"]

        await nic.remove()
        assert await client.list_nics(vm.id) == []
        await client.remove_nic(vm.id, nic.id, ignore_not_found=True)
        await nic.remove(ignore_not_found=True)
        with pytest.raises(OvirtNotFoundError):
            await nic.remove()

    @pytest.mark.asyncio
    async def test_unknown_vnic_profile(self, client, create_vm):
        vm = await create_vm()
        with pytest.raises(OvirtNotFoundError):
            await client.create_nic(vm.id, "missing", "eth0")


class TestTags:
    @pytest.mark.asyncio
    async def test_create_list_remove(self, client, create_vm):
        tag = await client.create_tag("web")
        assert tag.description == ""
        assert [t.name for t in await client.list_tags()] == ["web"]

        vm = await create_vm()
        await vm.add_tag(tag.id)
        await tag.remove()

        assert await client.list_tags() == []
        assert (await client.get_vm(vm.id)).tag_ids == ()
        await tag.remove(ignore_not_found=True)
        with pytest.raises(OvirtNotFoundError):
            await tag.remove()

    @pytest.mark.asyncio
    async def test_missing_tag(self, client):
        with pytest.raises(OvirtNotFoundError):
            await client.get_tag("missing")
