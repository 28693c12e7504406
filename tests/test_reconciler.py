from rdso import db
from rdso.api_models import StatusState
from rdso.errors import ConflictError, TransientStoreError
from rdso.events import EventRecorder
from rdso.labels import CONTROLLER_LABEL, INSTANCE_LABEL, RESTARTED_AT_LABEL
from rdso.memstore import RecordingEventSink
from rdso.reconciler import PassOutcome, Reconciler
from rdso.resources import Identity, ResourceKind

CM = ResourceKind.CONFIG_MAP
DEPLOY = ResourceKind.DEPLOYMENT
ORDS = Identity("default", "ords")


def _deploy_updates(store) -> int:
    return store.calls[("update", DEPLOY)]


def _condition(status, ctype):
    return next(c for c in status.conditions if c.type == ctype)


def test_first_pass_creates_every_object(specs, store, reconciler, make_spec):
    specs.put("ords", make_spec())

    result = reconciler.reconcile(ORDS)

    assert result.outcome is PassOutcome.SUCCEEDED
    assert result.created == 5
    assert {(o.kind, o.name) for o in store.all()} == {
        (CM, "ords-init-script"),
        (CM, "ords-settings-global"),
        (CM, "ords-settings-pdb1"),
        (DEPLOY, "ords"),
        (ResourceKind.SERVICE, "ords"),
    }
    status = specs.get(ORDS).status
    assert status.state is StatusState.PROGRESSING
    assert status.workload_status == "Preparing"
    assert (status.ready_replicas, status.desired_replicas) == (0, 1)
    assert status.ords_version == "24.1.1"
    assert status.http_port == 8080
    assert status.https_port == 8443
    assert status.observed_generation == 1
    assert status.message == "0/1 replicas ready"


def test_every_object_is_owned_and_labelled(specs, store, reconciler, make_spec):
    record = specs.put("ords", make_spec())
    reconciler.reconcile(ORDS)

    for obj in store.all():
        assert obj.owner["uid"] == record.uid
        assert obj.owner["controller"] is True
        assert obj.labels[INSTANCE_LABEL] == "ords"
        assert obj.labels[CONTROLLER_LABEL] == "oracle-ords-operator"


def test_converged_instance_writes_nothing(specs, store, reconciler, make_spec):
    specs.put("ords", make_spec())
    reconciler.reconcile(ORDS)
    reconciler.reconcile(ORDS)
    writes, status_writes = store.writes(), specs.status_writes

    result = reconciler.reconcile(ORDS)

    assert result.outcome is PassOutcome.SUCCEEDED
    assert (result.created, result.updated, result.deleted, result.restarted) == (0, 0, 0, False)
    assert store.writes() == writes
    assert specs.status_writes == status_writes


def test_removed_pool_config_is_pruned(specs, store, reconciler, make_spec, make_pool):
    specs.put("ords", make_spec(poolSettings=[make_pool("pdb1"), make_pool("pdb2")]))
    reconciler.reconcile(ORDS)
    assert store.find(CM, "default", "ords-settings-pdb2") is not None
    pdb1 = store.find(CM, "default", "ords-settings-pdb1")
    cm_updates = store.calls[("update", CM)]

    specs.put("ords", make_spec(poolSettings=[make_pool("pdb1")]))
    result = reconciler.reconcile(ORDS)

    assert result.outcome is PassOutcome.SUCCEEDED
    assert result.deleted == 1
    assert store.find(CM, "default", "ords-settings-pdb2") is None
    assert store.find(CM, "default", "ords-settings-pdb1").resource_version == pdb1.resource_version
    assert store.calls[("update", CM)] == cm_updates
    assert store.find(CM, "default", "ords-settings-pdb1") is not None
    assert store.find(CM, "default", "ords-settings-global") is not None
    assert store.find(CM, "default", "ords-init-script") is not None


def test_pool_prune_leaves_other_instances_alone(specs, store, reconciler, make_spec, make_pool):
    specs.put("a", make_spec())
    specs.put("b", make_spec())
    reconciler.reconcile(Identity("default", "a"))
    reconciler.reconcile(Identity("default", "b"))

    specs.put("a", make_spec(poolSettings=[make_pool("pdb2")]))
    reconciler.reconcile(Identity("default", "a"))

    assert store.find(CM, "default", "a-settings-pdb1") is None
    assert store.find(CM, "default", "a-settings-pdb2") is not None
    assert store.find(CM, "default", "b-settings-pdb1") is not None


def test_switching_workload_type_removes_previous_shape(specs, store, reconciler, make_spec):
    specs.put("ords", make_spec())
    reconciler.reconcile(ORDS)

    specs.put("ords", make_spec(workloadType="StatefulSet"))
    result = reconciler.reconcile(ORDS)

    assert result.outcome is PassOutcome.SUCCEEDED
    assert result.deleted == 1
    assert store.find(DEPLOY, "default", "ords") is None
    sts = store.find(ResourceKind.STATEFUL_SET, "default", "ords")
    assert sts.body["serviceName"] == "ords"
    assert specs.get(ORDS).status.workload_type == "StatefulSet"

    specs.put("ords", make_spec(workloadType="DaemonSet"))
    reconciler.reconcile(ORDS)

    assert store.find(ResourceKind.STATEFUL_SET, "default", "ords") is None
    ds = store.find(ResourceKind.DAEMON_SET, "default", "ords")
    assert "replicas" not in ds.body
    assert (specs.get(ORDS).status.ready_replicas, specs.get(ORDS).status.desired_replicas) == (0, 0)


def test_config_change_restarts_pods_exactly_once(specs, store, sink, reconciler, make_spec):
    specs.put("ords", make_spec())
    reconciler.reconcile(ORDS)
    before = _deploy_updates(store)

    specs.put("ords", make_spec(globalSettings={"cacheMetadataEnabled": True}))
    result = reconciler.reconcile(ORDS)

    assert result.restarted is True
    assert result.updated == 1  # the global config
    assert _deploy_updates(store) == before + 1
    live = store.find(DEPLOY, "default", "ords")
    assert live.body["template"]["metadata"]["labels"][RESTARTED_AT_LABEL] == "20260301T120000Z"
    assert "Restart" in sink.reasons()

    again = reconciler.reconcile(ORDS)

    assert again.restarted is False
    assert _deploy_updates(store) == before + 1


def test_workload_update_consumes_the_restart(specs, store, reconciler, make_spec):
    specs.put("ords", make_spec())
    reconciler.reconcile(ORDS)
    before = _deploy_updates(store)

    specs.put(
        "ords",
        make_spec(
            image="container-registry.oracle.com/database/ords:24.2.0",
            globalSettings={"cacheMetadataEnabled": True},
        ),
    )
    result = reconciler.reconcile(ORDS)

    assert result.restarted is False
    assert _deploy_updates(store) == before + 1
    live = store.find(DEPLOY, "default", "ords")
    assert RESTARTED_AT_LABEL not in live.body["template"]["metadata"]["labels"]
    assert specs.get(ORDS).status.ords_version == "24.2.0"


def test_restart_stays_pending_until_auto_restart_is_enabled(specs, store, reconciler, make_spec):
    specs.put("ords", make_spec(autoRestart=False))
    reconciler.reconcile(ORDS)
    before = _deploy_updates(store)

    specs.put("ords", make_spec(autoRestart=False, globalSettings={"cacheMetadataEnabled": True}))
    result = reconciler.reconcile(ORDS)

    assert result.restarted is False
    assert _deploy_updates(store) == before
    status = specs.get(ORDS).status
    assert status.restart_required is True
    assert _condition(status, "RestartRequired").status == "True"

    writes, status_writes = store.writes(), specs.status_writes
    reconciler.reconcile(ORDS)
    assert store.writes() == writes
    assert specs.status_writes == status_writes

    specs.put("ords", make_spec(autoRestart=True, globalSettings={"cacheMetadataEnabled": True}))
    result = reconciler.reconcile(ORDS)

    assert result.restarted is True
    assert _deploy_updates(store) == before + 1
    assert specs.get(ORDS).status.restart_required is False


def test_restart_signal_does_not_leak_between_instances(specs, store, reconciler, make_spec):
    a, b = Identity("default", "a"), Identity("default", "b")
    specs.put("a", make_spec())
    specs.put("b", make_spec())
    reconciler.reconcile(a)
    reconciler.reconcile(b)
    b_updates = store.calls[("update", DEPLOY)]

    specs.put("a", make_spec(globalSettings={"cacheMetadataEnabled": True}))
    assert reconciler.reconcile(a).restarted is True
    result_b = reconciler.reconcile(b)

    assert result_b.restarted is False
    assert store.calls[("update", DEPLOY)] == b_updates + 1
    live_b = store.find(DEPLOY, "default", "b")
    assert RESTARTED_AT_LABEL not in live_b.body["template"]["metadata"]["labels"]


def test_ready_workload_is_available(specs, store, reconciler, make_spec):
    specs.put("ords", make_spec())
    reconciler.reconcile(ORDS)
    store.set_status(DEPLOY, "default", "ords", {"readyReplicas": 1, "replicas": 1})

    reconciler.reconcile(ORDS)

    status = specs.get(ORDS).status
    assert status.state is StatusState.AVAILABLE
    assert status.workload_status == "Healthy"
    assert status.message == "Workload in Sync"
    assert _condition(status, "Available").status == "True"
    assert _condition(status, "Progressing").status == "False"


def test_partially_ready_workload_is_progressing(specs, store, reconciler, make_spec):
    specs.put("ords", make_spec(replicas=3))
    reconciler.reconcile(ORDS)
    store.set_status(DEPLOY, "default", "ords", {"readyReplicas": 1, "replicas": 3})

    reconciler.reconcile(ORDS)

    status = specs.get(ORDS).status
    assert status.state is StatusState.PROGRESSING
    assert status.workload_status == "Progressing"
    assert status.message == "1/3 replicas ready"


def test_duplicate_pool_names_are_fatal(specs, store, sink, reconciler, make_spec, make_pool):
    specs.put("ords", make_spec(poolSettings=[make_pool("PDB1"), make_pool("pdb1")]))

    result = reconciler.reconcile(ORDS)

    assert result.outcome is PassOutcome.FATAL
    assert not result.outcome.retryable
    assert store.writes() == 0
    status = specs.get(ORDS).status
    assert status.state is StatusState.DEGRADED
    assert "not unique" in status.last_error
    assert _condition(status, "Degraded").status == "True"
    assert ("default/ords", "Warning", "ReconcileFailed") in [e[:3] for e in sink.events]


def test_invalid_document_is_fatal(specs, store, reconciler, make_spec):
    doc = make_spec()
    del doc["image"]
    specs.put("ords", doc)

    result = reconciler.reconcile(ORDS)

    assert result.outcome is PassOutcome.FATAL
    assert store.writes() == 0
    status = specs.get(ORDS).status
    assert status.state is StatusState.DEGRADED
    assert status.last_error.startswith("ConfigurationError")


def test_deleted_specification_is_a_noop(specs, store, reconciler):
    result = reconciler.reconcile(Identity("default", "ghost"))

    assert result.outcome is PassOutcome.DELETED
    assert store.writes() == 0
    assert specs.status_writes == 0


def test_conflict_ends_the_pass_for_retry(specs, store, sink, reconciler, make_spec):
    specs.put("ords", make_spec())
    reconciler.reconcile(ORDS)
    store.fail("update", DEPLOY, ConflictError("Deployment/ords was modified"))

    specs.put("ords", make_spec(image="container-registry.oracle.com/database/ords:24.2.0"))
    result = reconciler.reconcile(ORDS)

    assert result.outcome is PassOutcome.RETRY
    assert result.outcome.retryable
    assert specs.get(ORDS).status.last_error.startswith("ConflictError")
    assert "RetryScheduled" in sink.reasons()

    store.heal()
    result = reconciler.reconcile(ORDS)

    assert result.outcome is PassOutcome.SUCCEEDED
    assert specs.get(ORDS).status.last_error is None
    live = store.find(DEPLOY, "default", "ords")
    assert live.body["template"]["spec"]["containers"][0]["image"].endswith(":24.2.0")


def test_failed_cleanup_degrades_but_applies_the_rest(specs, store, sink, reconciler, make_spec, make_pool):
    specs.put("ords", make_spec(poolSettings=[make_pool("pdb1"), make_pool("pdb2")]))
    reconciler.reconcile(ORDS)
    store.fail("delete", CM, TransientStoreError("api unavailable"))

    specs.put(
        "ords",
        make_spec(image="container-registry.oracle.com/database/ords:24.2.0", poolSettings=[make_pool("pdb1")]),
    )
    result = reconciler.reconcile(ORDS)

    assert result.outcome is PassOutcome.DEGRADED
    assert result.outcome.retryable
    assert store.find(CM, "default", "ords-settings-pdb2") is not None
    live = store.find(DEPLOY, "default", "ords")
    assert live.body["template"]["spec"]["containers"][0]["image"].endswith(":24.2.0")
    assert "ConfigMap/ords-settings-pdb2" in specs.get(ORDS).status.last_error
    assert "CleanupFailed" in sink.reasons()


def test_failing_event_sink_never_fails_a_pass(specs, store, make_spec):
    reconciler = Reconciler(specs, store, EventRecorder(RecordingEventSink(fail=True)))
    specs.put("ords", make_spec())

    result = reconciler.reconcile(ORDS)

    assert result.outcome is PassOutcome.SUCCEEDED
    assert store.find(DEPLOY, "default", "ords") is not None


def test_passes_and_events_are_journaled(specs, reconciler, make_spec):
    specs.put("ords", make_spec())
    reconciler.reconcile(ORDS)

    passes = db.latest_passes(namespace="default", instance="ords")
    assert passes[0]["outcome"] == "succeeded"
    assert passes[0]["created"] == 5
    reasons = {e["reason"] for e in db.latest_events(namespace="default", instance="ords")}
    assert "Create" in reasons


def test_restart_survives_a_failed_workload_read(specs, store, reconciler, make_spec):
    specs.put("ords", make_spec())
    reconciler.reconcile(ORDS)
    before = _deploy_updates(store)
    store.fail("get", DEPLOY, ConflictError("Deployment/ords unavailable"))

    specs.put("ords", make_spec(globalSettings={"cacheMetadataEnabled": True}))
    first = reconciler.reconcile(ORDS)

    assert first.outcome is PassOutcome.RETRY
    assert first.updated == 1
    assert specs.get(ORDS).status.restart_required is True

    store.heal()
    second = reconciler.reconcile(ORDS)

    assert second.outcome is PassOutcome.SUCCEEDED
    assert second.restarted is True
    assert _deploy_updates(store) == before + 1
    assert specs.get(ORDS).status.restart_required is False


def test_restart_survives_a_failed_stamp_write(specs, store, reconciler, make_spec):
    specs.put("ords", make_spec())
    reconciler.reconcile(ORDS)
    store.fail("update", DEPLOY, ConflictError("Deployment/ords was modified"))

    specs.put("ords", make_spec(globalSettings={"cacheMetadataEnabled": True}))
    first = reconciler.reconcile(ORDS)

    assert first.outcome is PassOutcome.RETRY
    assert first.restarted is False
    assert specs.get(ORDS).status.restart_required is True

    store.heal()
    second = reconciler.reconcile(ORDS)

    assert second.restarted is True
    live = store.find(DEPLOY, "default", "ords")
    assert RESTARTED_AT_LABEL in live.body["template"]["metadata"]["labels"]
    assert reconciler.reconcile(ORDS).restarted is False


def test_fatal_pass_with_missing_workload_reports_zero_replicas(specs, store, reconciler, make_spec, make_pool):
    specs.put("ords", make_spec())
    reconciler.reconcile(ORDS)
    store.set_status(DEPLOY, "default", "ords", {"readyReplicas": 1, "replicas": 1})
    reconciler.reconcile(ORDS)
    store.delete(DEPLOY, "default", "ords")

    specs.put("ords", make_spec(poolSettings=[make_pool("pdb1"), make_pool("PDB1")]))
    result = reconciler.reconcile(ORDS)

    assert result.outcome is PassOutcome.FATAL
    status = specs.get(ORDS).status
    assert (status.ready_replicas, status.desired_replicas) == (0, 0)
    assert status.workload_status == "Preparing"
    assert status.state is StatusState.DEGRADED
