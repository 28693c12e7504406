from datetime import datetime, timezone

from rdso.applier import Applier, Outcome
from rdso.compiler import compile_spec
from rdso.events import EventRecorder
from rdso.restarts import RestartCoordinator, next_stamp


def _desired(specs, make_spec):
    record = specs.put("ords", make_spec())
    return record, compile_spec(record)


def test_apply_create_then_unchanged(specs, store, sink, make_spec):
    record, desired = _desired(specs, make_spec)
    applier = Applier(store, EventRecorder(sink))

    assert applier.apply(record, desired.global_config).outcome is Outcome.CREATED
    assert applier.apply(record, desired.global_config).outcome is Outcome.UNCHANGED
    assert sink.reasons() == ["Create"]


def test_service_update_keeps_cluster_ip(specs, store, sink, make_spec):
    record, desired = _desired(specs, make_spec)
    applier = Applier(store, EventRecorder(sink))
    created = applier.apply(record, desired.service).resource
    created.body["clusterIP"] = "10.0.0.7"
    store.update(created)

    changed = desired.service.copy()
    changed.body["ports"][0]["port"] = 9090
    applied = applier.apply(record, changed)

    assert applied.outcome is Outcome.UPDATED
    assert applied.resource.body["clusterIP"] == "10.0.0.7"
    assert applied.resource.body["ports"][0]["port"] == 9090


def test_server_defaults_do_not_count_as_drift(specs, store, sink, make_spec):
    record, desired = _desired(specs, make_spec)
    applier = Applier(store, EventRecorder(sink))
    live = applier.apply(record, desired.workload).resource
    live.body["progressDeadlineSeconds"] = 600
    live.body["template"]["spec"]["dnsPolicy"] = "ClusterFirst"
    store.update(live)

    assert applier.apply(record, desired.workload).outcome is Outcome.UNCHANGED


def test_update_keeps_foreign_labels(specs, store, sink, make_spec):
    record, desired = _desired(specs, make_spec)
    applier = Applier(store, EventRecorder(sink))
    live = applier.apply(record, desired.global_config).resource
    live.labels["team"] = "dba"
    live.body["settings.xml"] = "edited by hand"
    store.update(live)

    applied = applier.apply(record, desired.global_config)

    assert applied.outcome is Outcome.UPDATED
    assert applied.resource.labels["team"] == "dba"
    assert applied.resource.body == desired.global_config.body


def test_next_stamp_always_changes():
    now = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
    assert next_stamp(now, None) == "20260301T120000Z"
    assert next_stamp(now, "20260101T000000Z") == "20260301T120000Z"
    assert next_stamp(now, "20260301T120000Z") == "20260301T120000Z-1"
    assert next_stamp(now, "20260301T120000Z-1") == "20260301T120000Z-2"


def test_restart_gating():
    assert RestartCoordinator.pods_stale([Outcome.UNCHANGED, Outcome.UPDATED], pending=False)
    assert not RestartCoordinator.pods_stale([Outcome.UNCHANGED], pending=False)
    assert RestartCoordinator.pods_stale([], pending=True)
    assert RestartCoordinator.signal(True, auto_restart=True)
    assert not RestartCoordinator.signal(True, auto_restart=False)
    assert not RestartCoordinator.signal(False, auto_restart=True)
