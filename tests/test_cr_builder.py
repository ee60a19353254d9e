"""
Tests for custom resource document building.
"""
import pytest

from dbaas_controller.exceptions import BuildValidationError
from dbaas_controller.models.cluster import Engine, KubernetesClusterType
from dbaas_controller.models.params import (
    BackupSchedule,
    ComputeResources,
    HAProxyComponent,
    PMMParams,
    ProxySQLComponent,
    PSMDBParams,
    PXCComponent,
    PXCParams,
    Replicaset,
    StorageTarget,
)
from dbaas_controller.services import cr_builder, psmdb_spec, pxc_spec
from dbaas_controller.services.cr_common import BuildOptions
from dbaas_controller.utils.documents import render

MINIKUBE = BuildOptions(cluster_type=KubernetesClusterType.MINIKUBE)
EKS = BuildOptions(cluster_type=KubernetesClusterType.EKS)


def pxc_params(**kwargs) -> PXCParams:
    values = {
        "name": "orders",
        "size": 3,
        "haproxy": HAProxyComponent(),
        "pxc": PXCComponent(compute_resources=ComputeResources(cpu_m="1", memory_bytes="2G")),
    }
    values.update(kwargs)
    return PXCParams(**values)


def psmdb_params(**kwargs) -> PSMDBParams:
    values = {"name": "events", "size": 3}
    values.update(kwargs)
    return PSMDBParams(**values)


class TestGenerations:
    @pytest.mark.parametrize(
        "engine,version,expected",
        [
            (Engine.PXC, "1.10.0", "pxc-legacy"),
            (Engine.PXC, "1.11.0", "pxc-1.11"),
            (Engine.PXC, "1.13.2", "pxc-1.11"),
            (Engine.PSMDB, "1.11.0", "psmdb-legacy"),
            (Engine.PSMDB, "1.12.0", "psmdb-1.12"),
        ],
    )
    def test_select_generation(self, engine, version, expected):
        assert cr_builder.select_generation(engine, version).name == expected

    @pytest.mark.parametrize("version", ["0.9.0", "garbage", ""])
    def test_unknown_generation(self, version):
        with pytest.raises(BuildValidationError):
            cr_builder.select_generation(Engine.PXC, version)

    def test_pxc_legacy_shape(self):
        document = cr_builder.build(Engine.PXC, "1.10.0", pxc_params(), options=MINIKUBE)
        assert document["apiVersion"] == "pxc.percona.com/v1-10-0"
        assert "expose" not in document["spec"]["pxc"]
        assert "upgradeOptions" not in document["spec"]

    def test_pxc_111_shape(self):
        document = cr_builder.build(Engine.PXC, "1.11.0", pxc_params(), options=MINIKUBE)
        assert document["apiVersion"] == "pxc.percona.com/v1-11-0"
        assert document["spec"]["pxc"]["expose"] == {"enabled": False}
        assert document["spec"]["upgradeOptions"]["apply"] == "disabled"

    def test_psmdb_legacy_shape(self):
        document = cr_builder.build(Engine.PSMDB, "1.11.0", psmdb_params(), options=MINIKUBE)
        spec = document["spec"]
        assert document["apiVersion"] == "psmdb.percona.com/v1-11-0"
        assert spec["updateStrategy"] == "RollingUpdate"
        assert spec["mongod"]["security"]["encryptionKeySecret"] == "events-mongodb-encryption-key"
        assert "arbiter" in spec["sharding"]["configsvrReplSet"]

    def test_psmdb_112_shape(self):
        document = cr_builder.build(Engine.PSMDB, "1.12.0", psmdb_params(), options=MINIKUBE)
        spec = document["spec"]
        assert document["apiVersion"] == "psmdb.percona.com/v1"
        assert spec["updateStrategy"] == "SmartUpdate"
        assert "mongod" not in spec
        assert spec["secrets"]["encryptionKey"] == "events-mongodb-encryption-key"
        assert spec["backup"]["pitr"] == {"enabled": False}
        assert spec["replsets"][0]["nonvoting"]["enabled"] is False


class TestCreate:
    def test_build_is_idempotent(self):
        first = cr_builder.build(Engine.PXC, "1.11.0", pxc_params(), options=MINIKUBE)
        second = cr_builder.build(Engine.PXC, "1.11.0", pxc_params(), options=MINIKUBE)
        assert render(first) == render(second)

    def test_reapplying_params_changes_nothing(self):
        params = pxc_params()
        created = cr_builder.build(Engine.PXC, "1.11.0", params, options=MINIKUBE)
        rebuilt = cr_builder.build(Engine.PXC, "1.11.0", params, existing=created, options=MINIKUBE)
        assert render(rebuilt) == render(created)

    def test_pxc_document(self):
        document = cr_builder.build(Engine.PXC, "1.11.0", pxc_params(), options=MINIKUBE)
        spec = document["spec"]
        assert document["kind"] == "PerconaXtraDBCluster"
        assert document["metadata"]["finalizers"] == ["delete-proxysql-pvc", "delete-pxc-pvc"]
        assert spec["secretsName"] == "dbaas-orders-pxc-secrets"
        assert spec["pxc"]["size"] == 3
        assert spec["pxc"]["resources"] == {"limits": {"cpu": "1", "memory": "2G"}}
        assert spec["pxc"]["affinity"] == {"antiAffinityTopologyKey": "none"}
        assert spec["haproxy"]["size"] == 3
        assert spec["haproxy"]["serviceType"] == "ClusterIP"
        assert spec["haproxy"]["image"] == "percona/percona-xtradb-cluster-operator:1.11.0-haproxy"
        assert "proxysql" not in spec
        assert cr_builder.secret_name(Engine.PXC, document) == "dbaas-orders-pxc-secrets"

    def test_pxc_with_proxysql_exposed_on_eks(self):
        params = pxc_params(haproxy=None, proxysql=ProxySQLComponent(disk_size="2Gi"), expose=True)
        document = cr_builder.build(Engine.PXC, "1.11.0", params, options=EKS)
        spec = document["spec"]
        assert spec["proxysql"]["serviceType"] == "LoadBalancer"
        assert spec["proxysql"]["volumeSpec"]["persistentVolumeClaim"]["resources"]["requests"]["storage"] == "2Gi"
        assert spec["pxc"]["expose"] == {"enabled": True, "type": "LoadBalancer"}
        assert spec["pxc"]["affinity"] == {"antiAffinityTopologyKey": "kubernetes.io/hostname"}

    def test_pxc_requires_exactly_one_proxy(self):
        with pytest.raises(BuildValidationError):
            cr_builder.build(Engine.PXC, "1.11.0", pxc_params(proxysql=ProxySQLComponent()), options=MINIKUBE)
        with pytest.raises(BuildValidationError):
            cr_builder.build(Engine.PXC, "1.11.0", pxc_params(haproxy=None), options=MINIKUBE)

    @pytest.mark.parametrize("size", [None, 0, -1])
    def test_create_requires_size(self, size):
        with pytest.raises(BuildValidationError):
            cr_builder.build(Engine.PXC, "1.11.0", pxc_params(size=size), options=MINIKUBE)

    def test_malformed_quantity(self):
        params = pxc_params(pxc=PXCComponent(compute_resources=ComputeResources(memory_bytes="2Q")))
        with pytest.raises(BuildValidationError):
            cr_builder.build(Engine.PXC, "1.11.0", params, options=MINIKUBE)

    def test_engine_mismatch(self):
        with pytest.raises(BuildValidationError):
            cr_builder.build(Engine.PSMDB, "1.12.0", pxc_params(), options=MINIKUBE)

    def test_pmm_and_backups(self):
        params = pxc_params(
            pmm=PMMParams(public_address="pmm.example.com", password="secret"),
            backup_schedules=[BackupSchedule(name="daily", schedule="0 0 * * *", storage_name="fs")],
            storages={"fs": StorageTarget(disk_size="5Gi")},
        )
        spec = cr_builder.build(Engine.PXC, "1.11.0", params, options=MINIKUBE)["spec"]
        assert spec["pmm"]["enabled"] is True
        assert spec["pmm"]["serverHost"] == "pmm.example.com"
        assert spec["pmm"]["serverUser"] == "api_key"
        assert spec["backup"]["schedule"] == [
            {"name": "daily", "schedule": "0 0 * * *", "keep": 3, "storageName": "fs"},
        ]
        assert list(spec["backup"]["storages"]) == ["fs"]

    def test_template_layer(self):
        template = {
            "spec": {
                "pxc": {"size": 1, "priorityClassName": "high"},
                "backup": {"schedule": [{"name": "nightly", "schedule": "0 2 * * *", "keep": 7, "storageName": "s3"}]},
            },
        }
        options = BuildOptions(cluster_type=KubernetesClusterType.MINIKUBE, template=template)
        spec = cr_builder.build(Engine.PXC, "1.11.0", pxc_params(), options=options)["spec"]
        assert spec["pxc"]["priorityClassName"] == "high"
        assert spec["pxc"]["size"] == 3
        assert spec["backup"]["schedule"] == template["spec"]["backup"]["schedule"]

    def test_psmdb_sharded_and_exposed(self):
        document = cr_builder.build(Engine.PSMDB, "1.12.0", psmdb_params(expose=True), options=MINIKUBE)
        sharding = document["spec"]["sharding"]
        assert sharding["enabled"] is True
        assert sharding["configsvrReplSet"]["size"] == 3
        assert sharding["mongos"]["expose"] == {"exposeType": "NodePort", "enabled": True}
        assert document["spec"]["replsets"][0]["size"] == 3

    def test_psmdb_single_member(self):
        document = cr_builder.build(Engine.PSMDB, "1.12.0", psmdb_params(size=1, expose=True), options=MINIKUBE)
        spec = document["spec"]
        assert spec["allowUnsafeConfigurations"] is True
        assert spec["sharding"]["enabled"] is False
        assert spec["replsets"][0]["expose"] == {"enabled": True, "exposeType": "ClusterIP"}

    def test_psmdb_backup_image_option(self):
        options = BuildOptions(cluster_type=KubernetesClusterType.MINIKUBE, backup_image="percona/pbm:1.7.0")
        document = cr_builder.build(Engine.PSMDB, "1.12.0", psmdb_params(), options=options)
        assert document["spec"]["backup"]["image"] == "percona/pbm:1.7.0"

    def test_psmdb_default_backup_image(self):
        document = cr_builder.build(Engine.PSMDB, "1.12.0", psmdb_params(), options=MINIKUBE)
        assert document["spec"]["backup"]["image"] == "percona/percona-server-mongodb-operator:1.12.0-backup"
        assert cr_builder.secret_name(Engine.PSMDB, document) == "dbaas-events-psmdb-secrets"


class TestUpdate:
    @pytest.fixture
    def pxc_document(self):
        return cr_builder.build(Engine.PXC, "1.11.0", pxc_params(), options=MINIKUBE)

    def test_unset_fields_are_kept(self, pxc_document):
        params = PXCParams(name="orders", pxc=PXCComponent(disk_size="20Gi"))
        document = cr_builder.build(Engine.PXC, "1.11.0", params, existing=pxc_document, options=MINIKUBE)
        pxc = document["spec"]["pxc"]
        assert pxc["resources"] == pxc_document["spec"]["pxc"]["resources"]
        assert pxc["size"] == 3
        assert pxc["volumeSpec"]["persistentVolumeClaim"]["resources"]["requests"]["storage"] == "20Gi"

    def test_limits_merge_key_by_key(self, pxc_document):
        params = PXCParams(name="orders", pxc=PXCComponent(compute_resources=ComputeResources(cpu_m="2")))
        document = cr_builder.build(Engine.PXC, "1.11.0", params, existing=pxc_document, options=MINIKUBE)
        assert document["spec"]["pxc"]["resources"] == {"limits": {"cpu": "2", "memory": "2G"}}

    def test_memory_only_update_keeps_cpu(self, pxc_document):
        params = PXCParams(name="orders", pxc=PXCComponent(compute_resources=ComputeResources(memory_bytes="4G")))
        document = cr_builder.build(Engine.PXC, "1.11.0", params, existing=pxc_document, options=MINIKUBE)
        assert document["spec"]["pxc"]["resources"] == {"limits": {"cpu": "1", "memory": "4G"}}

    def test_resize_moves_proxy(self, pxc_document):
        document = cr_builder.build(
            Engine.PXC, "1.11.0", PXCParams(name="orders", size=5), existing=pxc_document, options=MINIKUBE,
        )
        assert document["spec"]["pxc"]["size"] == 5
        assert document["spec"]["haproxy"]["size"] == 5

    def test_suspend_and_resume(self, pxc_document):
        paused = cr_builder.build(
            Engine.PXC, "1.11.0", PXCParams(name="orders", suspend=True), existing=pxc_document, options=MINIKUBE,
        )
        assert paused["spec"]["pause"] is True
        resumed = cr_builder.build(
            Engine.PXC, "1.11.0", PXCParams(name="orders", resume=True), existing=paused, options=MINIKUBE,
        )
        assert resumed["spec"]["pause"] is False

    def test_other_proxy_is_rejected(self, pxc_document):
        params = PXCParams(name="orders", proxysql=ProxySQLComponent(image="percona/proxysql:2"))
        with pytest.raises(BuildValidationError):
            cr_builder.build(Engine.PXC, "1.11.0", params, existing=pxc_document, options=MINIKUBE)

    def test_image_tag_change(self, pxc_document):
        params = PXCParams(name="orders", pxc=PXCComponent(image="percona/percona-xtradb-cluster:8.0.25-15.1"))
        document = cr_builder.build(Engine.PXC, "1.11.0", params, existing=pxc_document, options=MINIKUBE)
        assert document["spec"]["pxc"]["image"] == "percona/percona-xtradb-cluster:8.0.25-15.1"

    @pytest.mark.parametrize(
        "image",
        ["mysql/mysql-server:8.0.25", "percona/percona-xtradb-cluster"],
    )
    def test_invalid_image_change(self, pxc_document, image):
        params = PXCParams(name="orders", pxc=PXCComponent(image=image))
        with pytest.raises(BuildValidationError):
            cr_builder.build(Engine.PXC, "1.11.0", params, existing=pxc_document, options=MINIKUBE)

    def test_psmdb_resize_and_resources(self):
        existing = cr_builder.build(Engine.PSMDB, "1.12.0", psmdb_params(), options=MINIKUBE)
        params = PSMDBParams(
            name="events",
            size=5,
            replicaset=Replicaset(compute_resources=ComputeResources(cpu_m="500m", memory_bytes="1Gi")),
        )
        document = cr_builder.build(Engine.PSMDB, "1.12.0", params, existing=existing, options=MINIKUBE)
        replset = document["spec"]["replsets"][0]
        assert replset["name"] == "rs0"
        assert replset["size"] == 5
        assert replset["resources"] == {"limits": {"cpu": "500m", "memory": "1Gi"}}
        assert replset["configuration"] == psmdb_spec.REPLSET_CONFIGURATION
        assert document["spec"]["sharding"]["configsvrReplSet"]["size"] == 3


class TestValidateImage:
    def test_tag_change_is_allowed(self):
        cr_builder.validate_image("percona/pxc:8.0.20", "percona/pxc:8.0.25")

    def test_missing_tag(self):
        with pytest.raises(BuildValidationError, match="version tag"):
            cr_builder.validate_image("percona/pxc:8.0.20", "percona/pxc")

    def test_other_repository(self):
        with pytest.raises(BuildValidationError, match="expected image"):
            cr_builder.validate_image("percona/pxc:8.0.20", "mysql/pxc:8.0.25")

    def test_same_tag(self):
        with pytest.raises(BuildValidationError, match="already in use"):
            cr_builder.validate_image(pxc_spec.DEFAULT_IMAGE, pxc_spec.DEFAULT_IMAGE)
