"""VM lifecycle tests against the in-memory engine."""

import pytest
from pydantic import ValidationError

from pyovirt import (
    BLANK_TEMPLATE_ID,
    AutoRetry,
    CreateTagParams,
    CreateVMParams,
    FixedDelay,
    Initialization,
    MaxTries,
    UpdateVMParams,
    VMHugePages,
    VMSearchParams,
    VMStatus,
)
from pyovirt.exceptions import (
    ErrorCode,
    OvirtBadArgumentError,
    OvirtConnectionError,
    OvirtNotFoundError,
    OvirtServerError,
    OvirtStatusTimeoutError,
    OvirtTimeoutError,
)
from pyovirt.models import TemplateStatus


class TestCreateVM:
    @pytest.mark.asyncio
    async def test_create_from_blank_template(self, client, engine, create_vm):
        vm = await create_vm()

        assert vm.status == VMStatus.DOWN
        assert vm.cluster_id == engine.cluster_id
        assert vm.comment == ""
        assert (vm.cpu.topo.cores, vm.cpu.topo.threads, vm.cpu.topo.sockets) == (1, 1, 1)
        assert vm.huge_pages is None
        assert vm.initialization == Initialization()

        fetched = await client.get_vm(vm.id)
        assert fetched == vm

    @pytest.mark.asyncio
    async def test_create_with_parameters(self, create_vm):
        params = (
            CreateVMParams()
            .must_with_comment("database")
            .must_with_huge_pages(VMHugePages.HUGE_PAGES_2M)
            .must_with_initialization_parameters("script-test", "test-vm")
        )

        vm = await create_vm(params)

        assert vm.comment == "database"
        assert vm.huge_pages == VMHugePages.HUGE_PAGES_2M
        assert vm.initialization.custom_script == "script-test"
        assert vm.initialization.host_name == "test-vm"

    @pytest.mark.asyncio
    async def test_template_cpu_is_inherited_and_can_be_overridden(self, client, engine, create_vm):
        source = await create_vm(CreateVMParams().must_with_cpu_parameters(2, 2, 2))
        template = await client.create_template(source.id, "cpu-template")
        assert template.status == TemplateStatus.LOCKED
        template = await template.wait_for_status(TemplateStatus.OK)
        assert template.cpu.topo.cores == 2

        inherited = await create_vm(template_id=template.id)
        assert (inherited.cpu.topo.cores, inherited.cpu.topo.threads, inherited.cpu.topo.sockets) == (2, 2, 2)

        overridden = await create_vm(CreateVMParams().must_with_cpu_parameters(3, 3, 3), template_id=template.id)
        assert (overridden.cpu.topo.cores, overridden.cpu.topo.threads, overridden.cpu.topo.sockets) == (3, 3, 3)
        assert overridden.template_id == template.id

    @pytest.mark.asyncio
    async def test_invalid_name_is_rejected_locally(self, client, engine):
        with pytest.raises(OvirtBadArgumentError):
            await client.create_vm(engine.cluster_id, "template", "no spaces allowed")
        assert engine.requests == []

    @pytest.mark.asyncio
    async def test_unknown_cluster(self, client):
        with pytest.raises(OvirtNotFoundError):
            await client.create_vm("no-such-cluster", "00000000-0000-0000-0000-000000000000", "vm")

    @pytest.mark.asyncio
    async def test_duplicate_name_is_permanent(self, client, engine, create_vm):
        vm = await create_vm()
        with pytest.raises(OvirtServerError) as excinfo:
            await client.create_vm(engine.cluster_id, vm.template_id, vm.name)
        assert excinfo.value.code == ErrorCode.PERMANENT_HTTP_ERROR
        assert engine.count_requests("POST", "/vms") == 2

    @pytest.mark.asyncio
    async def test_snapshots_are_immutable(self, create_vm):
        vm = await create_vm()
        with pytest.raises(ValidationError):
            vm.name = "changed"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, engine, create_vm):
        vm = await create_vm()

        await vm.start()
        vm = await vm.wait_for_status(VMStatus.UP)
        assert vm.status == VMStatus.UP

        await vm.stop()
        vm = await vm.wait_for_status(VMStatus.DOWN)
        assert vm.status == VMStatus.DOWN
        assert ("POST", f"/vms/{vm.id}/stop") in engine.requests

    @pytest.mark.asyncio
    async def test_shutdown(self, engine, create_vm):
        vm = await create_vm()
        await vm.start()
        await vm.wait_for_status(VMStatus.UP)

        await vm.shutdown(force=True)
        vm = await vm.wait_for_status(VMStatus.DOWN)

        assert vm.status == VMStatus.DOWN
        assert ("POST", f"/vms/{vm.id}/shutdown") in engine.requests

    @pytest.mark.asyncio
    async def test_wait_follows_scripted_statuses(self, client, engine, create_vm):
        vm = await create_vm()
        engine.script_vm_statuses(
            vm.id, [VMStatus.IMAGE_LOCKED, VMStatus.IMAGE_LOCKED, VMStatus.DOWN]
        )

        result = await client.wait_for_vm_status(vm.id, "down")

        assert result.status == VMStatus.DOWN
        assert engine.count_requests("GET", f"/vms/{vm.id}") == 3

    @pytest.mark.asyncio
    async def test_wait_gives_up_after_exact_attempts(self, client, engine, create_vm):
        vm = await create_vm()
        engine.hold_vm_status(vm.id, VMStatus.DOWN)

        with pytest.raises(OvirtStatusTimeoutError) as excinfo:
            await client.wait_for_vm_status(vm.id, VMStatus.UP, AutoRetry(), MaxTries(3), FixedDelay(0))

        assert engine.count_requests("GET", f"/vms/{vm.id}") == 3
        assert excinfo.value.last_status == VMStatus.DOWN
        assert excinfo.value.last_seen.id == vm.id
        assert excinfo.value.attempts == 3
        assert excinfo.value.code == ErrorCode.TIMEOUT

    @pytest.mark.asyncio
    async def test_wait_keeps_fetch_failure_distinct_from_status_timeout(self, client, engine, create_vm):
        vm = await create_vm()
        engine.fail_next(100, OvirtConnectionError("connection refused"))

        with pytest.raises(OvirtTimeoutError) as excinfo:
            await client.wait_for_vm_status(vm.id, VMStatus.UP, AutoRetry(), MaxTries(3), FixedDelay(0))

        assert not isinstance(excinfo.value, OvirtStatusTimeoutError)
        assert isinstance(excinfo.value.cause, OvirtConnectionError)
        assert excinfo.value.attempts == client.config.default_max_tries
        assert engine.count_requests("GET", f"/vms/{vm.id}") == client.config.default_max_tries

    @pytest.mark.asyncio
    async def test_wait_rejects_unknown_status(self, client, create_vm):
        vm = await create_vm()
        with pytest.raises(OvirtBadArgumentError):
            await client.wait_for_vm_status(vm.id, "sleeping")

    @pytest.mark.asyncio
    async def test_wait_for_missing_vm(self, client):
        with pytest.raises(OvirtNotFoundError):
            await client.wait_for_vm_status("missing", VMStatus.UP)

    @pytest.mark.asyncio
    async def test_start_running_vm_fails(self, create_vm):
        vm = await create_vm()
        await vm.start()
        with pytest.raises(OvirtServerError):
            await vm.start()

    @pytest.mark.asyncio
    async def test_auto_optimize_cpu_pinning(self, engine, create_vm):
        vm = await create_vm()
        await vm.auto_optimize_cpu_pinning(True)
        assert engine.vms[vm.id]["auto_pinning_policy"] == "adjust"


class TestUpdateAndRemove:
    @pytest.mark.asyncio
    async def test_update_name_keeps_comment(self, create_vm):
        vm = await create_vm(CreateVMParams().must_with_comment("keep me"))

        updated = await vm.update(UpdateVMParams().must_with_name("renamed"))

        assert updated.name == "renamed"
        assert updated.comment == "keep me"
        assert vm.name != "renamed"

    @pytest.mark.asyncio
    async def test_update_comment(self, client, create_vm):
        vm = await create_vm()
        updated = await client.update_vm(vm.id, UpdateVMParams().must_with_comment("new"))
        assert updated.comment == "new"
        assert updated.name == vm.name

    @pytest.mark.asyncio
    async def test_remove(self, client, create_vm):
        vm = await create_vm()
        await vm.remove()
        with pytest.raises(OvirtNotFoundError):
            await client.get_vm(vm.id)

    @pytest.mark.asyncio
    async def test_remove_is_idempotent_when_asked(self, client, create_vm):
        vm = await create_vm()
        await vm.remove()

        await vm.remove(ignore_not_found=True)
        with pytest.raises(OvirtNotFoundError):
            await client.remove_vm(vm.id)

    @pytest.mark.asyncio
    async def test_remove_running_vm_fails(self, create_vm):
        vm = await create_vm()
        await vm.start()
        with pytest.raises(OvirtServerError) as excinfo:
            await vm.remove()
        assert not excinfo.value.can_auto_retry


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, client, engine, create_vm):
        vm = await create_vm()
        engine.fail_next(2, OvirtConnectionError("connection refused"))

        fetched = await client.get_vm(vm.id)

        assert fetched.id == vm.id
        assert engine.count_requests("GET", f"/vms/{vm.id}") == 3

    @pytest.mark.asyncio
    async def test_default_budget_is_exhausted(self, client, engine):
        engine.fail_next(50, OvirtConnectionError("connection refused"))

        with pytest.raises(OvirtTimeoutError) as excinfo:
            await client.list_vms()

        assert excinfo.value.attempts == client.config.default_max_tries
        assert len(engine.requests) == client.config.default_max_tries

    @pytest.mark.asyncio
    async def test_positional_strategies_are_not_taken_as_options(self, client, engine):
        vm = await client.create_vm(
            engine.cluster_id, BLANK_TEMPLATE_ID, "positional", AutoRetry(), MaxTries(1)
        )
        assert vm.name == "positional"
        assert vm.comment == ""

        await vm.start(AutoRetry(), MaxTries(1))
        await vm.wait_for_status(VMStatus.UP)
        await vm.stop(AutoRetry(), MaxTries(1))
        assert (await vm.wait_for_status(VMStatus.DOWN)).status == VMStatus.DOWN

    @pytest.mark.asyncio
    async def test_explicit_strategies_replace_defaults(self, client, engine):
        engine.fail_next(5, OvirtConnectionError("connection refused"))
        with pytest.raises(OvirtTimeoutError):
            await client.list_vms(AutoRetry(), MaxTries(2), FixedDelay(0))
        assert len(engine.requests) == 2


class TestListAndSearch:
    @pytest.mark.asyncio
    async def test_list_empty(self, client):
        assert await client.list_vms() == []

    @pytest.mark.asyncio
    async def test_list(self, client, create_vm):
        first = await create_vm()
        second = await create_vm()
        assert {vm.id for vm in await client.list_vms()} == {first.id, second.id}

    @pytest.mark.asyncio
    async def test_search_by_name(self, client, create_vm):
        wanted = await create_vm()
        await create_vm()

        result = await client.search_vms(VMSearchParams().with_name(wanted.name))

        assert [vm.id for vm in result] == [wanted.id]

    @pytest.mark.asyncio
    async def test_engine_routes_match_whole_path(self, client, engine, create_vm):
        vm = await create_vm()
        with pytest.raises(OvirtNotFoundError):
            await engine.get(f"/vms/{vm.id}\n")
        with pytest.raises(OvirtNotFoundError):
            await engine.get("/vms\n")

    @pytest.mark.asyncio
    async def test_search_by_status(self, client, create_vm):
        started = await create_vm()
        stopped = await create_vm()
        await started.start()

        not_down = await client.search_vms(VMSearchParams().with_not_status(VMStatus.DOWN))
        down = await client.search_vms(VMSearchParams().with_status(VMStatus.DOWN))

        assert [vm.id for vm in not_down] == [started.id]
        assert [vm.id for vm in down] == [stopped.id]

    @pytest.mark.asyncio
    async def test_search_by_tag(self, client, create_vm):
        tagged = await create_vm()
        await create_vm()
        tag = await client.create_tag("prod", params=CreateTagParams().with_description("production"))
        await tagged.add_tag(tag.id)

        result = await client.search_vms(VMSearchParams().with_tag("prod"))

        assert [vm.id for vm in result] == [tagged.id]
        assert result[0].tag_ids == (tag.id,)
        assert [t.name for t in await result[0].tags()] == ["prod"]
        assert [t.id for t in await client.list_vm_tags(tagged.id)] == [tag.id]
