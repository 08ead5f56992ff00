"""Tests for the module registry and the bans module lifecycle."""

import uuid
from unittest.mock import MagicMock

import pytest
from fastapi import APIRouter

from wafplane.config import WafPlaneConfig
from wafplane.modules import BansModule, BaseModule, ModuleDependencies, ModuleRegistry, MountPoint


class _RecordingModule(BaseModule):
    """Minimal module that records lifecycle calls into a shared list."""

    def __init__(self, name, mount_point=MountPoint.PROTECTED, journal=None, fail_shutdown=False):
        self.name = name
        self.mount_point = mount_point
        super().__init__()
        self.journal = journal if journal is not None else []
        self.fail_shutdown = fail_shutdown
        self.mounted_on = None

    def init(self, deps):
        self.journal.append(("init", self.name))
        self.initialized = True

    def mount(self, router):
        self.mounted_on = router
        self.journal.append(("mount", self.name))

    async def shutdown(self):
        self.journal.append(("shutdown", self.name))
        if self.fail_shutdown:
            raise RuntimeError("boom")
        await super().shutdown()


@pytest.fixture
def deps():
    return ModuleDependencies(
        config=WafPlaneConfig(secret_key="test-secret"),
        session_factory=MagicMock(),
        redis=None,
    )


class TestModuleRegistry:
    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError):
            ModuleRegistry([_RecordingModule("a"), _RecordingModule("a")])

    def test_get(self):
        a = _RecordingModule("a")
        registry = ModuleRegistry([a])
        assert registry.get("a") is a
        with pytest.raises(KeyError):
            registry.get("missing")

    def test_init_in_order(self, deps):
        journal = []
        registry = ModuleRegistry([
            _RecordingModule("a", journal=journal),
            _RecordingModule("b", journal=journal),
        ])
        registry.init_all(deps)
        assert journal == [("init", "a"), ("init", "b")]

    def test_mount_dispatches_on_mount_point(self, deps):
        public = _RecordingModule("health", mount_point=MountPoint.PUBLIC)
        protected = _RecordingModule("bans", mount_point=MountPoint.PROTECTED)
        registry = ModuleRegistry([public, protected])
        public_router, protected_router = APIRouter(), APIRouter()

        registry.mount_all(public_router, protected_router)

        assert public.mounted_on is public_router
        assert protected.mounted_on is protected_router

    @pytest.mark.asyncio
    async def test_shutdown_reverse_order_survives_failure(self, deps):
        journal = []
        registry = ModuleRegistry([
            _RecordingModule("a", journal=journal),
            _RecordingModule("b", journal=journal, fail_shutdown=True),
            _RecordingModule("c", journal=journal),
        ])
        registry.init_all(deps)
        journal.clear()

        await registry.shutdown_all()

        assert journal == [("shutdown", "c"), ("shutdown", "b"), ("shutdown", "a")]
        assert registry.get("a").initialized is False

    def test_describe(self, deps):
        registry = ModuleRegistry([_RecordingModule("a", mount_point=MountPoint.PUBLIC)])
        registry.init_all(deps)
        assert registry.describe() == [
            {"name": "a", "version": "0.0.0", "mountPoint": "public", "initialized": True}
        ]


class TestBansModule:
    def test_mount_before_init_raises(self):
        with pytest.raises(RuntimeError):
            BansModule().mount(APIRouter())

    def test_init_without_redis_disables_cache(self, deps):
        module = BansModule()
        module.init(deps)

        status = module.get_status()
        assert status["initialized"] is True
        assert status["mountPoint"] == "protected"
        assert status["cacheEnabled"] is False

    def test_init_with_redis(self, deps, fake_redis):
        module = BansModule()
        module.init(ModuleDependencies(
            config=deps.config, session_factory=deps.session_factory, redis=fake_redis,
        ))
        assert module.get_status()["cacheEnabled"] is True

    @pytest.mark.asyncio
    async def test_mounted_routes_sit_behind_the_auth_boundary(self, client, auth_headers):
        tenant = uuid.uuid4()

        unauthenticated = await client.get("/api/v1/bans/check/10.0.0.1")
        listed = await client.get("/api/v1/bans", headers=auth_headers(tenant))
        checked = await client.get("/api/v1/bans/check/10.0.0.0/24", headers=auth_headers(tenant))

        assert unauthenticated.status_code == 401
        assert listed.status_code == 200
        assert checked.json() == {"banned": False}

    @pytest.mark.asyncio
    async def test_shutdown_releases_coordinator(self, deps):
        module = BansModule()
        module.init(deps)

        await module.shutdown()

        assert module.coordinator is None
        assert module.initialized is False
