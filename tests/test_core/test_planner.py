"""Tests for the reconciliation planner."""

import pytest

from podfleet.core.planner import Planner, diff_container
from podfleet.models.host import ContainerSpec, HostProfile
from podfleet.models.live import (
    HOST_LABEL,
    MANAGED_LABEL,
    SPEC_LABEL,
    InspectionError,
    InspectionResult,
    LiveContainer,
    LiveDirectory,
    LiveNetwork,
)
from podfleet.models.plan import OperationKind


def live_from(spec: ContainerSpec, host: str = "node1", **overrides) -> LiveContainer:
    """A live container created from ``spec`` by podfleet."""
    container = LiveContainer(
        name=spec.name,
        image=spec.image,
        status="running",
        labels={MANAGED_LABEL: "true", HOST_LABEL: host, SPEC_LABEL: spec.fingerprint(), **spec.labels},
        networks=list(spec.declared_networks),
        restart_policy=spec.restart_policy,
    )
    for key, value in overrides.items():
        setattr(container, key, value)
    return container


def kinds(plan):
    return [(op.kind, op.target) for op in plan.operations]


@pytest.fixture
def host():
    """A host with one network and one container attached to it."""
    return HostProfile(
        name="node1",
        networks=[{"name": "app-net"}],
        containers=[{"name": "web", "image": "nginx:1.25", "ports": ["8080:80"], "networks": ["app-net"]}],
    )


class TestDiffContainer:
    """Test drift detection for a single container."""

    def test_matching(self, host):
        spec = host.get_container("web")

        assert diff_container(spec, live_from(spec)) == []

    def test_fully_qualified_image_matches(self, host):
        spec = host.get_container("web")
        live = live_from(spec, image="docker.io/library/nginx:1.25")

        assert diff_container(spec, live) == []

    def test_unmanaged(self, host):
        spec = host.get_container("web")
        live = live_from(spec, labels={})

        assert diff_container(spec, live) == ["unmanaged"]

    def test_environment_drift(self, host):
        spec = host.get_container("web")
        old = spec.model_copy(update={"environment": {"MODE": "debug"}})

        assert diff_container(spec, live_from(old)) == ["environment"]

    def test_detached_network(self, host):
        spec = host.get_container("web")

        assert diff_container(spec, live_from(spec, networks=[])) == ["networks"]

    def test_restart_policy(self, host):
        spec = host.get_container("web")

        assert diff_container(spec, live_from(spec, restart_policy="always")) == ["restart_policy"]


class TestPlanner:
    """Test plan computation."""

    def test_empty_host_creates_everything(self, host):
        plan = Planner().plan(host, InspectionResult(host="node1"))

        assert kinds(plan) == [
            (OperationKind.CREATE_NETWORK, "app-net"),
            (OperationKind.CREATE_CONTAINER, "web"),
        ]
        create = plan.get("create-container:web")
        assert create.depends_on == ["create-network:app-net"]
        assert create.spec is host.get_container("web")

    def test_converged_host_is_noop(self, host):
        live = InspectionResult(
            host="node1",
            networks={"app-net": LiveNetwork(name="app-net")},
            containers={"web": live_from(host.get_container("web"))},
        )

        plan = Planner().plan(host, live)

        assert plan.is_empty
        assert ("container", "web") in plan.unchanged
        assert ("network", "app-net") in plan.unchanged

    def test_image_change_recreates(self):
        old = ContainerSpec(name="web", image="nginx:1.24")
        host = HostProfile(name="node1", containers=[{"name": "web", "image": "nginx:latest"}])
        live = InspectionResult(host="node1", containers={"web": live_from(old, image="docker.io/library/nginx:1.24")})

        plan = Planner().plan(host, live)

        assert kinds(plan) == [(OperationKind.RECREATE_CONTAINER, "web")]
        assert plan.operations[0].changes == ["image"]

    def test_absent_removes_exactly_one(self):
        host = HostProfile(
            name="node1",
            containers=[
                {"name": "old", "image": "busybox", "state": "absent"},
                {"name": "keep", "image": "busybox"},
            ],
        )
        live = InspectionResult(
            host="node1",
            containers={
                "old": live_from(ContainerSpec(name="old", image="busybox")),
                "keep": live_from(ContainerSpec(name="keep", image="busybox")),
            },
        )

        plan = Planner().plan(host, live)

        assert kinds(plan) == [(OperationKind.REMOVE_CONTAINER, "old")]

    def test_absent_and_missing_is_unchanged(self):
        host = HostProfile(name="node1", containers=[{"name": "old", "image": "busybox", "state": "absent"}])

        plan = Planner().plan(host, InspectionResult(host="node1"))

        assert plan.is_empty
        assert ("container", "old") in plan.unchanged

    def test_prune_only_managed_containers_of_this_host(self, host):
        stray = ContainerSpec(name="stray", image="busybox")
        live = InspectionResult(
            host="node1",
            networks={"app-net": LiveNetwork(name="app-net")},
            containers={
                "web": live_from(host.get_container("web")),
                "stray": live_from(stray),
                "manual": LiveContainer(name="manual", image="busybox", status="running"),
                "foreign": live_from(ContainerSpec(name="foreign", image="busybox"), host="node2"),
            },
        )

        assert Planner(prune=False).plan(host, live).is_empty
        plan = Planner(prune=True).plan(host, live)
        assert kinds(plan) == [(OperationKind.REMOVE_CONTAINER, "stray")]

    def test_restart_policy_updated_in_place(self, host):
        spec = host.get_container("web")
        live = InspectionResult(
            host="node1",
            networks={"app-net": LiveNetwork(name="app-net")},
            containers={"web": live_from(spec, restart_policy="always")},
        )

        assert kinds(Planner(supports_in_place_update=True).plan(host, live)) == [
            (OperationKind.UPDATE_CONTAINER, "web"),
        ]
        assert kinds(Planner(supports_in_place_update=False).plan(host, live)) == [
            (OperationKind.RECREATE_CONTAINER, "web"),
        ]

    @pytest.mark.parametrize("state, status, health, expected", [
        ("running", "exited", None, OperationKind.START_CONTAINER),
        ("running", "created", None, OperationKind.START_CONTAINER),
        ("running", "running", "unhealthy", OperationKind.RESTART_CONTAINER),
        ("stopped", "running", None, OperationKind.STOP_CONTAINER),
    ])
    def test_run_state(self, state, status, health, expected):
        host = HostProfile(name="node1", containers=[{"name": "app", "image": "busybox", "state": state}])
        spec = host.get_container("app")
        live = InspectionResult(host="node1", containers={"app": live_from(spec, status=status, health=health)})

        plan = Planner().plan(host, live)

        assert kinds(plan) == [(expected, "app")]

    def test_stopped_and_stopped_is_noop(self):
        host = HostProfile(name="node1", containers=[{"name": "app", "image": "busybox", "state": "stopped"}])
        live = InspectionResult(
            host="node1",
            containers={"app": live_from(host.get_container("app"), status="exited")},
        )

        assert Planner().plan(host, live).is_empty

    def test_unmanaged_same_name_recreated(self, host):
        live = InspectionResult(
            host="node1",
            networks={"app-net": LiveNetwork(name="app-net")},
            containers={"web": LiveContainer(name="web", image="nginx:1.25", status="running", networks=["app-net"])},
        )

        plan = Planner().plan(host, live)

        assert kinds(plan) == [(OperationKind.RECREATE_CONTAINER, "web")]
        assert plan.operations[0].changes == ["unmanaged"]

    def test_network_driver_mismatch_warns(self):
        host = HostProfile(name="node1", networks=[{"name": "app-net", "driver": "macvlan"}])
        live = InspectionResult(host="node1", networks={"app-net": LiveNetwork(name="app-net", driver="bridge")})

        plan = Planner().plan(host, live)

        assert plan.is_empty
        assert len(plan.warnings) == 1
        assert "macvlan" in plan.warnings[0]

    def test_directories(self):
        host = HostProfile(
            name="node1",
            directories=[
                {"path": "/srv/new"},
                {"path": "/srv/drift", "mode": "0750", "owner": "1000"},
                {"path": "/srv/ok", "mode": "0700"},
                {"path": "/srv/file"},
            ],
        )
        live = InspectionResult(
            host="node1",
            directories={
                "/srv/new": LiveDirectory(path="/srv/new", exists=False),
                "/srv/drift": LiveDirectory(path="/srv/drift", exists=True, mode="0755", owner="root", uid="0"),
                "/srv/ok": LiveDirectory(path="/srv/ok", exists=True, mode="0700", owner="root", uid="0"),
                "/srv/file": LiveDirectory(path="/srv/file", exists=True, is_dir=False),
            },
        )

        plan = Planner().plan(host, live)

        assert kinds(plan) == [
            (OperationKind.CREATE_DIRECTORY, "/srv/new"),
            (OperationKind.CREATE_DIRECTORY, "/srv/drift"),
        ]
        assert plan.get("create-directory:/srv/drift").changes == ["mode", "owner"]
        assert "/srv/file" in plan.blocked
        assert ("directory", "/srv/ok") in plan.unchanged

    def test_bind_mount_waits_for_directory(self):
        host = HostProfile(
            name="node1",
            directories=[{"path": "/srv/web"}],
            containers=[{"name": "web", "image": "nginx", "volumes": ["/srv/web/html:/usr/share/nginx/html:ro"]}],
        )

        plan = Planner().plan(host, InspectionResult(host="node1"))

        assert plan.get("create-container:web").depends_on == ["create-directory:/srv/web"]

    def test_inspection_failure_blocks_container(self, host):
        live = InspectionResult(
            host="node1",
            networks={"app-net": LiveNetwork(name="app-net")},
            errors=[InspectionError("container", "web", "timeout")],
        )

        plan = Planner().plan(host, live)

        assert plan.is_empty
        assert plan.blocked == {"web": "inspection-failed"}

    def test_dependency_order(self):
        host = HostProfile(
            name="node1",
            containers=[
                {"name": "web", "image": "nginx", "depends_on": ["db"]},
                {"name": "db", "image": "postgres:16"},
            ],
        )

        plan = Planner().plan(host, InspectionResult(host="node1"))

        assert kinds(plan) == [
            (OperationKind.CREATE_CONTAINER, "db"),
            (OperationKind.CREATE_CONTAINER, "web"),
        ]
        assert plan.get("create-container:web").depends_on == ["create-container:db"]

    def test_network_namespace_follows_recreate(self):
        app_old = ContainerSpec(name="app", image="app:1")
        host = HostProfile(
            name="node1",
            containers=[
                {"name": "app", "image": "app:2"},
                {"name": "sidecar", "image": "envoy", "networks": ["container:app"]},
            ],
        )
        live = InspectionResult(
            host="node1",
            containers={
                "app": live_from(app_old),
                "sidecar": live_from(host.get_container("sidecar")),
            },
        )

        plan = Planner().plan(host, live)

        assert kinds(plan) == [
            (OperationKind.RECREATE_CONTAINER, "app"),
            (OperationKind.RECREATE_CONTAINER, "sidecar"),
        ]
        sidecar = plan.get("recreate-container:sidecar")
        assert sidecar.changes == ["network-namespace"]
        assert "recreate-container:app" in sidecar.depends_on

    def test_network_namespace_overrides_in_place_update(self):
        app_old = ContainerSpec(name="app", image="app:1")
        host = HostProfile(
            name="node1",
            containers=[
                {"name": "app", "image": "app:2"},
                {"name": "sidecar", "image": "envoy", "networks": ["container:app"], "restart_policy": "always"},
            ],
        )
        live = InspectionResult(
            host="node1",
            containers={
                "app": live_from(app_old),
                "sidecar": live_from(host.get_container("sidecar"), restart_policy="no"),
            },
        )

        plan = Planner(supports_in_place_update=True).plan(host, live)

        assert kinds(plan) == [
            (OperationKind.RECREATE_CONTAINER, "app"),
            (OperationKind.RECREATE_CONTAINER, "sidecar"),
        ]
        assert plan.get("update-container:sidecar") is None
        assert plan.get("recreate-container:sidecar").changes == ["restart_policy", "network-namespace"]

    def test_create_waits_for_removal_of_port_holder(self):
        old = ContainerSpec(name="old-web", image="httpd", ports=["8080:80"])
        host = HostProfile(
            name="node1",
            containers=[
                {"name": "old-web", "image": "httpd", "state": "absent"},
                {"name": "web", "image": "nginx", "ports": ["8080:80"]},
            ],
        )
        live = InspectionResult(host="node1", containers={"old-web": live_from(old)})

        plan = Planner().plan(host, live)

        assert kinds(plan) == [
            (OperationKind.REMOVE_CONTAINER, "old-web"),
            (OperationKind.CREATE_CONTAINER, "web"),
        ]
        assert plan.get("create-container:web").depends_on == ["remove-container:old-web"]

    def test_images_phase_pulls_missing(self, host):
        live = InspectionResult(host="node1", images={"nginx:1.25": False})

        plan = Planner().plan(host, live, phases={"images", "networks", "containers"})

        assert kinds(plan) == [
            (OperationKind.CREATE_NETWORK, "app-net"),
            (OperationKind.PULL_IMAGE, "nginx:1.25"),
            (OperationKind.CREATE_CONTAINER, "web"),
        ]
        assert "pull-image:nginx:1.25" in plan.get("create-container:web").depends_on

    def test_phase_selection(self, host):
        plan = Planner().plan(host, InspectionResult(host="node1"), phases={"networks"})

        assert kinds(plan) == [(OperationKind.CREATE_NETWORK, "app-net")]
