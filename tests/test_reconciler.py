import threading

import pytest
from kubernetes import client

from kcr import builder, db, naming
from kcr.conditions import DISPATCHER, READY, SERVICE, ConditionStatus, Reason
from kcr.errors import AggregateError, Cancelled, ConfigurationError, TransientStoreError
from kcr.reconciler import DispatcherReconciler
from kcr.resolver import StaticSecretResolver

NAME = naming.dispatcher_dns_safe_name("ns1", "chan-a")


class CountingResolver(StaticSecretResolver):
    def __init__(self, bindings):
        super().__init__(bindings)
        self.lookups = 0

    def secret_name(self, topic):
        self.lookups += 1
        return super().secret_name(topic)


def _seed_existing(store, channel, cfg, status=None):
    store.create_service(builder.build_service(channel, cfg))
    store.create_deployment(builder.build_deployment(channel, cfg, "kafka-secret-ns1-chan-a"))
    if status is not None:
        store.set_deployment_status(cfg.system_namespace, NAME, status)
    store.calls.clear()


def test_first_pass_creates_service_and_deployment(engine, store, make_channel, events):
    channel = make_channel()

    engine.reconcile(channel)

    assert store.count("create", "service") == 1
    assert store.count("create", "deployment") == 1
    created = store.get_deployment("knative-eventing", NAME)
    assert len(created.spec.template.spec.containers[0].env) == 13
    assert created.spec.replicas == 2
    conditions = channel.status.conditions
    assert conditions.get(SERVICE).is_true
    assert conditions.get(DISPATCHER).is_true
    assert conditions.get(READY).is_true
    assert events.reasons(db.NORMAL) == ["DispatcherServiceCreated", "DispatcherDeploymentCreated"]


def test_second_pass_only_verifies(engine, store, make_channel):
    channel = make_channel()
    engine.reconcile(channel)
    first = channel.status
    store.calls.clear()

    engine.reconcile(channel)

    assert store.count("create") == 0
    assert store.count("update") == 0
    assert [(v, k) for v, k, _ in store.calls] == [("get", "service"), ("get", "deployment")]
    assert channel.status == first


def test_lookup_and_create_use_the_same_name(engine, store, make_channel):
    engine.reconcile(make_channel())

    refs = {ref for _, _, ref in store.calls}
    assert refs == {f"knative-eventing/{NAME}"}


def test_unbound_secret_fails_without_any_write(store, cfg, make_channel, events):
    engine = DispatcherReconciler(store, StaticSecretResolver({}), cfg, events)
    channel = make_channel()

    with pytest.raises(AggregateError) as exc:
        engine.reconcile(channel)

    assert any(isinstance(e, ConfigurationError) for e in exc.value.errors)
    assert store.count("create") == 0
    assert store.count("update") == 0
    dispatcher = channel.status.conditions.get(DISPATCHER)
    assert dispatcher.status is ConditionStatus.FALSE
    assert dispatcher.reason == Reason.DISPATCHER_DEPLOYMENT_RECONCILIATION_FAILED.value
    assert channel.status.conditions.get(READY).status is ConditionStatus.FALSE
    assert Reason.DISPATCHER_DEPLOYMENT_RECONCILIATION_FAILED.value in events.reasons(db.WARNING)


def test_secret_is_not_resolved_when_everything_exists(store, cfg, make_channel, events):
    resolver = CountingResolver({"ns1.chan-a": "kafka-secret-ns1-chan-a"})
    engine = DispatcherReconciler(store, resolver, cfg, events)
    channel = make_channel()
    _seed_existing(store, channel, cfg)

    engine.reconcile(channel)

    assert resolver.lookups == 0


def test_secret_is_resolved_once_per_pass(store, cfg, make_channel, events):
    resolver = CountingResolver({"ns1.chan-a": "kafka-secret-ns1-chan-a"})
    engine = DispatcherReconciler(store, resolver, cfg, events)

    engine.reconcile(make_channel())

    assert resolver.lookups == 1


def test_ambiguous_service_get_does_not_create(engine, store, make_channel, events):
    store.fail_next("get", "service", TransientStoreError("connection reset"))
    channel = make_channel()

    with pytest.raises(AggregateError) as exc:
        engine.reconcile(channel)

    assert len(exc.value.errors) == 1
    assert store.count("create", "service") == 0
    # the deployment is still attempted
    assert store.count("create", "deployment") == 1
    service = channel.status.conditions.get(SERVICE)
    assert service.status is ConditionStatus.UNKNOWN
    assert "connection reset" in service.message
    assert channel.status.conditions.get(DISPATCHER).is_true
    assert events.reasons(db.WARNING) == [Reason.DISPATCHER_SERVICE_RECONCILIATION_FAILED.value]


def test_ambiguous_deployment_get_marks_dispatcher_unknown(engine, store, make_channel):
    store.fail_next("get", "deployment", TransientStoreError("timeout"))
    channel = make_channel()

    with pytest.raises(AggregateError):
        engine.reconcile(channel)

    assert store.count("create", "deployment") == 0
    assert store.count("create", "service") == 1
    assert channel.status.conditions.get(DISPATCHER).status is ConditionStatus.UNKNOWN


def test_failed_deployment_create_does_not_block_service(engine, store, make_channel, events):
    store.fail_next("create", "deployment", TransientStoreError("quota exceeded"))
    channel = make_channel()

    with pytest.raises(AggregateError, match="failed to reconcile dispatcher resources"):
        engine.reconcile(channel)

    assert store.count("create", "service") == 1
    assert channel.status.conditions.get(SERVICE).is_true
    dispatcher = channel.status.conditions.get(DISPATCHER)
    assert dispatcher.status is ConditionStatus.FALSE
    assert "quota exceeded" in dispatcher.message
    assert Reason.DISPATCHER_DEPLOYMENT_RECONCILIATION_FAILED.value in events.reasons(db.WARNING)


def test_existing_deployment_health_is_propagated(engine, store, cfg, make_channel):
    channel = make_channel()
    _seed_existing(store, channel, cfg, client.V1DeploymentStatus(replicas=2, available_replicas=1))

    engine.reconcile(channel)

    dispatcher = channel.status.conditions.get(DISPATCHER)
    assert dispatcher.status is ConditionStatus.FALSE
    assert dispatcher.reason == Reason.DISPATCHER_DEPLOYMENT_UNAVAILABLE.value
    assert channel.status.conditions.get(SERVICE).is_true


def test_recovered_deployment_flips_dispatcher_back(engine, store, cfg, make_channel):
    channel = make_channel()
    _seed_existing(store, channel, cfg, client.V1DeploymentStatus(replicas=2, available_replicas=0))
    engine.reconcile(channel)

    store.set_deployment_status(cfg.system_namespace, NAME, client.V1DeploymentStatus(replicas=2, available_replicas=2))
    engine.reconcile(channel)

    assert channel.status.conditions.get(READY).is_true


def test_cancelled_pass_issues_no_calls(engine, store, make_channel):
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(Cancelled):
        engine.reconcile(make_channel(), cancel)

    assert store.calls == []
