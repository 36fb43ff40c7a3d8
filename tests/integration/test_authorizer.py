"""
Integration tests for the Authorizer on the in-memory store.
"""

import asyncio
import logging
from logging.handlers import RotatingFileHandler

import pytest
from unittest.mock import MagicMock

from abac_authz import (
    ABACConfig,
    AuthorizationRequest,
    Authorizer,
    Decision,
    PolicyRule,
    PolicyTarget,
    SecurityLogger,
    get_security_logger,
)
from abac_authz.authorizer import DEADLINE_EXCEEDED, TIMED_OUT
from abac_authz.logging import shutdown_security_logger


def document_target():
    return PolicyTarget(target_type="resource", attribute_name="resourceType", operator="==", value="document")


def read_request(subject_id="u1", resource_id="doc-1", **kwargs):
    return AuthorizationRequest(
        subject_id=subject_id,
        action_name=kwargs.pop("action_name", "read"),
        resource_id=resource_id,
        resource_type=kwargs.pop("resource_type", "document"),
        context=kwargs.pop("context", {}),
    )


class SlowStore:
    """Wraps a store so that attribute lookups for some resources never finish."""

    def __init__(self, store, slow_resources):
        self.store = store
        self.slow_resources = set(slow_resources)
        self.cancelled = []

    def __getattr__(self, name):
        return getattr(self.store, name)

    async def get_resource_attributes(self, resource_id):
        if resource_id in self.slow_resources:
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                self.cancelled.append(resource_id)
                raise
        return await self.store.get_resource_attributes(resource_id)


class TestAuthorizerScenarios:
    """Test cases for end-to-end authorization decisions."""

    @pytest.fixture
    def authorizer(self, store, quiet_config, fixed_clock):
        return Authorizer(store, store, config=quiet_config, clock=fixed_clock)

    @pytest.mark.asyncio
    async def test_role_clearance_permits(self, authorizer, store):
        store.add_policy(
            name="p1", effect="permit", priority=50,
            targets=[document_target()],
            rules=[PolicyRule("subject.clearance", "equals", "2")],
        )

        result = await authorizer.authorize(read_request())

        assert result.decision == Decision.PERMIT
        assert result.applied_policies == ["p1"]
        assert result.reason == "Permitted by highest priority policy: p1"
        assert result.processing_time_ms >= 0

    @pytest.mark.asyncio
    async def test_non_matching_rule_denies(self, authorizer, store):
        store.add_policy(
            name="p1", effect="permit", priority=50,
            targets=[document_target()],
            rules=[PolicyRule("subject.clearance", "equals", "5")],
        )

        result = await authorizer.authorize(read_request())

        assert result.decision == Decision.DENY
        assert result.applied_policies == ["p1"]
        assert result.reason == "No matching policies found"

    @pytest.mark.asyncio
    async def test_no_policies_is_not_applicable(self, authorizer):
        result = await authorizer.authorize(read_request())

        assert result.decision == Decision.NOT_APPLICABLE
        assert result.applied_policies == []
        assert result.reason == "No applicable policies found"

    @pytest.mark.asyncio
    async def test_non_applicable_policies_are_not_reported(self, authorizer, store):
        store.add_policy(
            name="images-only", effect="permit",
            targets=[PolicyTarget("resource", "resource_type", "equals", "image")],
            rules=[PolicyRule("clearance", "exists")],
        )

        result = await authorizer.authorize(read_request())

        assert result.decision == Decision.NOT_APPLICABLE
        assert result.applied_policies == []

    @pytest.mark.asyncio
    async def test_empty_policy_is_excluded(self, authorizer, store):
        store.add_policy(name="empty", effect="deny", priority=100)
        store.add_policy(name="p1", effect="permit", priority=1, rules=[PolicyRule("clearance", "equals", "2")])

        result = await authorizer.authorize(read_request())

        assert result.decision == Decision.PERMIT
        assert result.applied_policies == ["p1"]

    @pytest.mark.asyncio
    async def test_priority_decides_between_matching_policies(self, authorizer, store):
        permit = store.add_policy(
            name="permit", effect="permit", priority=10, rules=[PolicyRule("clearance", "equals", "2")]
        )
        store.add_policy(name="deny", effect="deny", priority=20, rules=[PolicyRule("clearance", "exists")])

        result = await authorizer.authorize(read_request())
        assert result.decision == Decision.DENY
        assert result.applied_policies == ["deny", "permit"]

        permit.priority = 30
        result = await authorizer.authorize(read_request())
        assert result.decision == Decision.PERMIT
        assert result.reason == "Permitted by highest priority policy: permit"

    @pytest.mark.asyncio
    async def test_rule_groups(self, authorizer, store):
        policy = store.add_policy(
            name="grouped", effect="permit",
            rules=[
                PolicyRule("clearance", "equals", "9", logical_operator="OR", group_id="g1"),
                PolicyRule("confidentiality", "equals", "internal", group_id="g1"),
                PolicyRule("action_name", "equals", "read", group_id="g2"),
            ],
        )

        assert (await authorizer.authorize(read_request())).decision == Decision.PERMIT
        assert (await authorizer.authorize(read_request(action_name="write"))).decision == Decision.DENY

        policy.rules[1] = PolicyRule("confidentiality", "equals", "secret", group_id="g1")
        assert (await authorizer.authorize(read_request())).decision == Decision.DENY

    @pytest.mark.asyncio
    async def test_ownership(self, authorizer, store):
        store.add_policy(
            name="owner", effect="permit",
            targets=[PolicyTarget("resource", "is_owner", "equals", "true")],
        )

        assert (await authorizer.authorize(read_request("u1"))).decision == Decision.PERMIT
        assert (await authorizer.authorize(read_request("u2"))).decision == Decision.NOT_APPLICABLE

        attributes = await authorizer.gather_attributes("u2", "read", resource_id="doc-1")
        assert attributes["resource.is_owner"].value == "false"

    @pytest.mark.asyncio
    async def test_context_attributes(self, authorizer, store):
        store.add_policy(
            name="office-network", effect="permit",
            rules=[PolicyRule("environment.ip", "regex", r"^10\.")],
        )

        inside = await authorizer.authorize(read_request(context={"ip": "10.1.2.3"}))
        outside = await authorizer.authorize(read_request(context={"ip": "192.168.0.1"}))

        assert inside.decision == Decision.PERMIT
        assert outside.decision == Decision.DENY

    @pytest.mark.asyncio
    async def test_repeated_calls_are_idempotent(self, authorizer, store):
        store.add_policy(name="p1", effect="permit", priority=5, rules=[PolicyRule("clearance", "gt", "1")])
        store.add_policy(name="p2", effect="deny", priority=3, rules=[PolicyRule("clearance", "lt", "1")])

        results = [await authorizer.authorize(read_request()) for _ in range(3)]

        assert {result.decision for result in results} == {Decision.PERMIT}
        assert all(result.applied_policies == ["p1", "p2"] for result in results)

    @pytest.mark.asyncio
    async def test_convenience_wrappers(self, authorizer, store):
        store.add_policy(
            name="read-only", effect="permit",
            rules=[PolicyRule("action_name", "equals", "read")],
        )

        assert (await authorizer.can_read("u1", "doc-1")).decision == Decision.PERMIT
        assert (await authorizer.can_write("u1", "doc-1")).decision == Decision.DENY
        assert (await authorizer.can_delete("u1", "doc-1", {"reason": "cleanup"})).decision == Decision.DENY


class TestAuthorizerFailures:
    """Test cases for failure handling."""

    @pytest.fixture
    def authorizer(self, store, quiet_config, fixed_clock):
        return Authorizer(store, store, config=quiet_config, clock=fixed_clock)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("subject_id,action_name", [("", "read"), ("   ", "read"), ("u1", "")])
    async def test_missing_identifiers_are_rejected_before_lookup(self, authorizer, store, subject_id, action_name):
        result = await authorizer.authorize(AuthorizationRequest(subject_id=subject_id, action_name=action_name))

        assert result.decision == Decision.INDETERMINATE
        assert result.reason.startswith("Authorization error: ")
        assert result.applied_policies == []
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_attribute_store_failure_is_indeterminate(self, authorizer, store):
        store.add_policy(name="p1", effect="permit", rules=[PolicyRule("clearance", "exists")])
        store.fail_on.add("get_resource_owner")

        result = await authorizer.authorize(read_request())

        assert result.decision == Decision.INDETERMINATE
        assert result.reason == "Authorization error: get_resource_owner failed"
        assert result.applied_policies == []
        assert result.processing_time_ms >= 0
        assert "get_active_policies" not in store.calls

    @pytest.mark.asyncio
    async def test_policy_store_failure_is_indeterminate(self, authorizer, store):
        store.fail_on.add("get_targets_for_policy")
        store.add_policy(name="p1", effect="permit", rules=[PolicyRule("clearance", "exists")])

        result = await authorizer.authorize(read_request())

        assert result.decision == Decision.INDETERMINATE
        assert result.reason == "Authorization error: get_targets_for_policy failed"

    @pytest.mark.asyncio
    async def test_invalid_policy_rejected_when_validating(self, store, fixed_clock):
        config = ABACConfig(validate_operators=True, logging={"enabled": False})
        authorizer = Authorizer(store, store, config=config, clock=fixed_clock)
        store.add_policy(name="typo", effect="permit", rules=[PolicyRule("clearance", "equal", "2")])

        result = await authorizer.authorize(read_request())

        assert result.decision == Decision.INDETERMINATE
        assert "Policy typo is invalid" in result.reason

    @pytest.mark.asyncio
    async def test_timeout(self, store, quiet_config, fixed_clock):
        slow = SlowStore(store, {"doc-1"})
        authorizer = Authorizer(slow, store, config=quiet_config, clock=fixed_clock)

        result = await authorizer.authorize(read_request(), timeout=0.05)

        assert result.decision == Decision.INDETERMINATE
        assert result.reason == TIMED_OUT
        assert slow.cancelled == ["doc-1"]

    @pytest.mark.asyncio
    async def test_request_timeout_from_config(self, store, fixed_clock):
        config = ABACConfig(request_timeout=0.05, logging={"enabled": False})
        authorizer = Authorizer(SlowStore(store, {"doc-1"}), store, config=config, clock=fixed_clock)

        result = await authorizer.authorize(read_request())

        assert result.reason == TIMED_OUT

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, store, quiet_config, fixed_clock):
        authorizer = Authorizer(SlowStore(store, {"doc-1"}), store, config=quiet_config, clock=fixed_clock)

        task = asyncio.ensure_future(authorizer.authorize(read_request()))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestAuthorizerBatch:
    """Test cases for authorize_many."""

    @pytest.mark.asyncio
    async def test_missing_resource_does_not_affect_others(self, store, quiet_config, fixed_clock):
        authorizer = Authorizer(store, store, config=quiet_config, clock=fixed_clock)
        store.add_policy(name="p1", effect="permit", rules=[PolicyRule("subject.clearance", "equals", "2")])
        store.add_policy(
            name="owner-only", effect="deny", priority=10,
            targets=[PolicyTarget("resource", "is_owner", "equals", "false")],
        )

        results = await authorizer.authorize_many("u1", "read", ["doc-1", "doc-missing"], {})

        assert list(results) == ["doc-1", "doc-missing"]
        assert results["doc-1"].decision == Decision.PERMIT
        assert results["doc-missing"].decision == Decision.PERMIT
        assert results["doc-missing"].applied_policies == ["p1"]
        assert results["doc-1"].applied_policies == ["p1"]

    @pytest.mark.asyncio
    async def test_one_failure_does_not_fail_the_batch(self, store, quiet_config, fixed_clock):
        authorizer = Authorizer(store, store, config=quiet_config, clock=fixed_clock)
        store.add_policy(name="p1", effect="permit", rules=[PolicyRule("clearance", "exists")])
        store.add_resource("doc-2", owner_id="ghost")

        original = store.get_resource_owner

        async def flaky_owner(resource_id):
            if resource_id == "doc-2":
                raise RuntimeError("owner table locked")
            return await original(resource_id)

        store.get_resource_owner = flaky_owner

        results = await authorizer.authorize_many("u1", "read", ["doc-1", "doc-2"])

        assert results["doc-1"].decision == Decision.PERMIT
        assert results["doc-2"].decision == Decision.INDETERMINATE
        assert "owner table locked" in results["doc-2"].reason

    @pytest.mark.asyncio
    async def test_duplicate_ids_are_evaluated_once(self, store, quiet_config, fixed_clock):
        authorizer = Authorizer(store, store, config=quiet_config, clock=fixed_clock)
        store.add_policy(name="p1", effect="permit", rules=[PolicyRule("clearance", "exists")])

        results = await authorizer.authorize_many("u1", "read", ["doc-1", "doc-1"])

        assert list(results) == ["doc-1"]
        assert store.calls.count("get_resource_owner") == 1

    @pytest.mark.asyncio
    async def test_batches_respect_width(self, store, fixed_clock):
        config = ABACConfig(batch={"width": 2}, logging={"enabled": False})
        authorizer = Authorizer(store, store, config=config, clock=fixed_clock)
        in_flight = []
        peak = []
        original = store.get_resource_attributes

        async def tracking(resource_id):
            in_flight.append(resource_id)
            peak.append(len(in_flight))
            await asyncio.sleep(0.01)
            in_flight.remove(resource_id)
            return await original(resource_id)

        store.get_resource_attributes = tracking

        results = await authorizer.authorize_many("u1", "read", [f"doc-{i}" for i in range(5)])

        assert len(results) == 5
        assert max(peak) == 2

    @pytest.mark.asyncio
    async def test_deadline_cancels_in_flight_and_skips_remaining(self, store, fixed_clock):
        config = ABACConfig(batch={"width": 2}, logging={"enabled": False})
        slow = SlowStore(store, {"doc-slow"})
        authorizer = Authorizer(slow, store, config=config, clock=fixed_clock)
        store.add_policy(name="p1", effect="permit", rules=[PolicyRule("clearance", "exists")])

        results = await authorizer.authorize_many(
            "u1", "read", ["doc-1", "doc-slow", "doc-3", "doc-4"], timeout=0.05
        )

        assert results["doc-1"].decision == Decision.PERMIT
        for resource_id in ("doc-slow", "doc-3", "doc-4"):
            assert results[resource_id].decision == Decision.INDETERMINATE
            assert results[resource_id].reason == DEADLINE_EXCEEDED
            assert results[resource_id].processing_time_ms > 0
        assert slow.cancelled == ["doc-slow"]
        assert store.calls.count("get_resource_owner") == 1


class TestAuthorizerAudit:
    """Test cases for access request auditing."""

    @pytest.mark.asyncio
    async def test_audit_record_written_when_resource_addressed(self, store, quiet_config, fixed_clock):
        store.add_policy(name="p1", effect="permit", rules=[PolicyRule("clearance", "equals", "2")])
        store.add_policy(name="p2", effect="deny", rules=[PolicyRule("clearance", "equals", "7")])

        async with Authorizer(store, store, audit_sink=store, config=quiet_config, clock=fixed_clock) as authorizer:
            await authorizer.authorize(read_request(context={"ip": "10.0.0.1"}))
            await authorizer.authorize(AuthorizationRequest(subject_id="u1", action_name="read"))

        assert len(store.access_requests) == 1
        record = store.access_requests[0]
        assert record.subject_id == "u1"
        assert record.resource_id == "doc-1"
        assert record.decision == Decision.PERMIT
        assert record.request_context == {"ip": "10.0.0.1"}
        assert [entry["name"] for entry in record.applied_policies] == ["p1", "p2"]
        assert [entry["matches"] for entry in record.applied_policies] == [True, False]

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_change_result(self, store, quiet_config, fixed_clock, caplog):
        store.add_policy(name="p1", effect="permit", rules=[PolicyRule("clearance", "equals", "2")])
        store.fail_on.add("record_access_request")
        authorizer = Authorizer(store, store, audit_sink=store, config=quiet_config, clock=fixed_clock)

        with caplog.at_level(logging.ERROR, logger="abac_authz.audit"):
            result = await authorizer.authorize(read_request())
            await authorizer.close()

        assert result.decision == Decision.PERMIT
        assert store.access_requests == []
        assert "record_access_request failed" in caplog.text

    @pytest.mark.asyncio
    async def test_audit_can_be_disabled(self, store, fixed_clock):
        config = ABACConfig(audit={"enabled": False}, logging={"enabled": False})
        authorizer = Authorizer(store, store, audit_sink=store, config=config, clock=fixed_clock)

        await authorizer.authorize(read_request())
        await authorizer.close()

        assert authorizer.audit is None
        assert store.access_requests == []


class TestAuthorizerObservability:
    """Test cases for decision logging and caching."""

    @pytest.mark.asyncio
    async def test_every_decision_is_logged(self, store, quiet_config, fixed_clock):
        security_logger = MagicMock(spec=SecurityLogger)
        authorizer = Authorizer(
            store, store, config=quiet_config, security_logger=security_logger, clock=fixed_clock
        )

        await authorizer.authorize(read_request())

        security_logger.log_authorization.assert_called_once()
        kwargs = security_logger.log_authorization.call_args.kwargs
        assert kwargs["subject_id"] == "u1"
        assert kwargs["decision"] == "not_applicable"
        assert kwargs["resource"] == "doc-1"

    @pytest.mark.asyncio
    async def test_logging_failure_does_not_change_result(self, store, quiet_config, fixed_clock):
        security_logger = MagicMock(spec=SecurityLogger)
        security_logger.log_authorization.side_effect = OSError("disk full")
        authorizer = Authorizer(
            store, store, config=quiet_config, security_logger=security_logger, clock=fixed_clock
        )

        result = await authorizer.authorize(read_request())

        assert result.decision == Decision.NOT_APPLICABLE

    @pytest.mark.asyncio
    async def test_cache_serves_repeated_requests(self, store, fixed_clock, fake_clock):
        config = ABACConfig(cache={"enabled": True, "ttl_seconds": 30}, logging={"enabled": False})
        authorizer = Authorizer(store, store, config=config, clock=fixed_clock, cache_clock=fake_clock)
        store.add_policy(name="p1", effect="permit", rules=[PolicyRule("clearance", "equals", "2")])

        await authorizer.authorize(read_request())
        await authorizer.authorize(read_request())
        assert store.calls.count("get_subject_attributes") == 1
        assert authorizer.cache_stats()["hits"] == 1

        assert authorizer.invalidate_cache(subject_id="u1") == 1
        await authorizer.authorize(read_request())
        assert store.calls.count("get_subject_attributes") == 2

        fake_clock.advance(31)
        await authorizer.authorize(read_request())
        assert store.calls.count("get_subject_attributes") == 3

    def test_security_logger_follows_logging_config(self, store, tmp_path):
        config = ABACConfig(logging={
            "log_format": "text",
            "log_level": "ERROR",
            "log_file": str(tmp_path / "security.log"),
            "max_file_size": 2048,
            "backup_count": 2,
        })
        try:
            authorizer = Authorizer(store, store, config=config)

            security_logger = authorizer.security_logger
            assert security_logger is get_security_logger()
            assert security_logger.log_format == "text"
            assert security_logger.log_level == logging.ERROR
            file_handlers = [
                handler for handler in security_logger.logger.handlers
                if isinstance(handler, RotatingFileHandler)
            ]
            assert len(file_handlers) == 1
            assert file_handlers[0].maxBytes == 2048
            assert file_handlers[0].backupCount == 2
        finally:
            shutdown_security_logger()

    def test_security_logging_disabled(self, store, quiet_config):
        assert Authorizer(store, store, config=quiet_config).security_logger is None

    def test_cache_disabled_by_default(self, store, quiet_config):
        authorizer = Authorizer(store, store, config=quiet_config)
        assert authorizer.cache_stats() == {"enabled": False}
        assert authorizer.invalidate_cache() == 0
