"""Unit tests for configuration.py - Per-kind configuration access."""

import pytest

from configuration import (
    FlowSchemaAccess,
    KindMismatchError,
    PriorityLevelConfigurationAccess,
    new_access,
)
from db import AlreadyExistsError, ConflictError, NotFoundError
from objects import (
    AUTO_UPDATE_ANNOTATION,
    FIELD_MANAGER,
    FlowSchema,
    FlowSchemaSpec,
    ObjectMeta,
    PriorityLevelConfiguration,
    PriorityLevelConfigurationSpec,
)


def _flow_schema(name="probes", precedence=None, annotations=None):
    return FlowSchema(
        metadata=ObjectMeta(name=name, annotations=annotations or {}),
        spec=FlowSchemaSpec(
            priority_level_configuration="exempt", matching_precedence=precedence
        ),
    )


def _exempt_level(name="exempt"):
    return PriorityLevelConfiguration(
        metadata=ObjectMeta(name=name),
        spec=PriorityLevelConfigurationSpec(type="Exempt"),
    )


class TestNewAccess:
    """Tests for new_access."""

    def test_known_kinds(self, fake_db, cache):
        assert isinstance(new_access("FlowSchema", fake_db, cache), FlowSchemaAccess)
        assert isinstance(
            new_access("PriorityLevelConfiguration", fake_db, cache),
            PriorityLevelConfigurationAccess,
        )

    def test_unknown_kind(self, fake_db, cache):
        with pytest.raises(ValueError, match="Unknown configuration kind"):
            new_access("Deployment", fake_db, cache)

    def test_type_name(self, flow_schemas, priority_levels):
        assert flow_schemas.type_name() == "FlowSchema"
        assert priority_levels.type_name() == "PriorityLevelConfiguration"


@pytest.mark.asyncio
class TestStoreBackedAccess:
    """Tests for the store-backed access implementation."""

    async def test_create_defaults_spec_and_sets_field_manager(
        self, fake_db, flow_schemas
    ):
        created = await flow_schemas.create(
            _flow_schema(annotations={AUTO_UPDATE_ANNOTATION: "true"})
        )

        stored = fake_db.record("FlowSchema", "probes")
        assert stored["spec"]["matching_precedence"] == 1000
        assert stored["field_manager"] == FIELD_MANAGER
        assert stored["annotations"] == {AUTO_UPDATE_ANNOTATION: "true"}
        assert created.metadata.resource_version == stored["resource_version"]
        assert created.metadata.uid == stored["uid"]

    async def test_create_existing(self, fake_db, flow_schemas):
        fake_db.seed("FlowSchema", "probes", {"priority_level_configuration": "x"})

        with pytest.raises(AlreadyExistsError):
            await flow_schemas.create(_flow_schema())

    async def test_create_wrong_kind(self, fake_db, flow_schemas):
        with pytest.raises(KindMismatchError) as exc_info:
            await flow_schemas.create(_exempt_level())

        assert "FlowSchema" in exc_info.value.message
        assert fake_db.create_calls == 0

    async def test_get_and_list(self, fake_db, flow_schemas):
        fake_db.seed("FlowSchema", "a", {"priority_level_configuration": "x"})
        fake_db.seed("FlowSchema", "b", {"priority_level_configuration": "y"})

        obj = await flow_schemas.get("a")
        listed = await flow_schemas.list()

        assert isinstance(obj, FlowSchema)
        assert obj.spec.priority_level_configuration == "x"
        assert [o.name for o in listed] == ["a", "b"]

    async def test_get_missing(self, flow_schemas):
        with pytest.raises(NotFoundError):
            await flow_schemas.get("missing")

    async def test_created_object_visible_through_cache(self, flow_schemas):
        await flow_schemas.create(_flow_schema())

        obj = await flow_schemas.get("probes")

        assert obj.spec.matching_precedence == 1000

    async def test_update_uses_resource_version(self, fake_db, flow_schemas):
        fake_db.seed("FlowSchema", "probes", {"priority_level_configuration": "x"})
        current = await flow_schemas.get("probes")
        current.spec.priority_level_configuration = "y"

        updated = await flow_schemas.update(current)

        assert updated.metadata.resource_version != current.metadata.resource_version
        refreshed = await flow_schemas.get("probes")
        assert refreshed.spec.priority_level_configuration == "y"

    async def test_update_conflict_refreshes_cache(self, fake_db, flow_schemas):
        fake_db.seed("FlowSchema", "probes", {"priority_level_configuration": "x"})
        stale = await flow_schemas.get("probes")
        fake_db.objects[("FlowSchema", "probes")]["resource_version"] = "100"

        with pytest.raises(ConflictError):
            await flow_schemas.update(stale)

        assert (await flow_schemas.get("probes")).metadata.resource_version == "100"

    async def test_update_deleted_object_drops_cache_entry(self, fake_db, flow_schemas):
        fake_db.seed("FlowSchema", "probes", {"priority_level_configuration": "x"})
        stale = await flow_schemas.get("probes")
        del fake_db.objects[("FlowSchema", "probes")]

        with pytest.raises(NotFoundError):
            await flow_schemas.update(stale)

        with pytest.raises(NotFoundError):
            await flow_schemas.get("probes")

    async def test_resync_picks_up_outside_writes(self, fake_db, flow_schemas):
        fake_db.seed("FlowSchema", "a", {"priority_level_configuration": "x"})
        fake_db.seed("FlowSchema", "b", {"priority_level_configuration": "x"})
        await flow_schemas.list()
        del fake_db.objects[("FlowSchema", "a")]
        fake_db.seed("FlowSchema", "c", {"priority_level_configuration": "x"})
        fake_db.objects[("FlowSchema", "b")]["spec"] = {
            "priority_level_configuration": "y"
        }

        await flow_schemas.resync()

        listed = {o.name: o for o in await flow_schemas.list()}
        assert sorted(listed) == ["b", "c"]
        assert listed["b"].spec.priority_level_configuration == "y"

    async def test_update_wrong_kind(self, priority_levels):
        with pytest.raises(KindMismatchError):
            await priority_levels.update(_flow_schema())

    async def test_delete_with_preconditions(self, fake_db, flow_schemas):
        fake_db.seed("FlowSchema", "probes", {})
        current = await flow_schemas.get("probes")

        await flow_schemas.delete(
            "probes",
            uid=current.metadata.uid,
            resource_version=current.metadata.resource_version,
        )

        assert fake_db.record("FlowSchema", "probes") is None
        with pytest.raises(NotFoundError):
            await flow_schemas.get("probes")

    async def test_delete_precondition_failure(self, fake_db, flow_schemas):
        fake_db.seed("FlowSchema", "probes", {})

        with pytest.raises(ConflictError):
            await flow_schemas.delete("probes", uid="someone-else")

        assert fake_db.record("FlowSchema", "probes") is not None


class TestSpecHelpers:
    """Tests for copy_spec and has_spec_changed."""

    def test_copy_spec_uses_defaulted_independent_copy(self, flow_schemas):
        bootstrap = _flow_schema()
        current = _flow_schema(precedence=7)

        flow_schemas.copy_spec(bootstrap, current)

        assert current.spec.matching_precedence == 1000
        current.spec.rules.append(None)
        assert bootstrap.spec.rules == []
        assert bootstrap.spec.matching_precedence is None

    def test_has_spec_changed_compares_against_defaulted(self, flow_schemas):
        bootstrap = _flow_schema()

        converged = _flow_schema(precedence=1000)
        assert not flow_schemas.has_spec_changed(bootstrap, converged)
        assert flow_schemas.has_spec_changed(bootstrap, _flow_schema(precedence=500))

    def test_has_spec_changed_wrong_kind(self, flow_schemas):
        with pytest.raises(KindMismatchError):
            flow_schemas.has_spec_changed(_exempt_level(), _flow_schema())

    def test_copy_spec_wrong_kind(self, priority_levels):
        with pytest.raises(KindMismatchError):
            priority_levels.copy_spec(_flow_schema(), _exempt_level())
