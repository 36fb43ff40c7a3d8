"""
Authorization orchestration.

``Authorizer`` runs one request through attribute gathering, policy
loading, target filtering, rule evaluation and decision resolution, then
queues an audit record when a resource was addressed. It never raises to
its caller: every failure becomes an ``indeterminate`` result.
"""
import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from .attributes import AttributeGatherer, AttributeStore
from .audit import AuditDispatcher, AuditSink
from .cache import AttributeCache
from .config import ABACConfig
from .engine.resolver import DecisionResolver
from .engine.rules import RuleEvaluator
from .engine.targets import TargetMatcher
from .exceptions import ABACError, AuthorizationTimeoutError, InvalidRequestError
from .logging import SecurityLogger, configure_security_logger
from .models import (
    AccessRequestRecord,
    AttributeMap,
    AuthorizationRequest,
    AuthorizationResult,
    Decision,
    PolicyEvaluation,
)
from .policies import PolicyLoader, PolicyRepository

logger = logging.getLogger(__name__)

TIMED_OUT = "Authorization timed out"
DEADLINE_EXCEEDED = "Authorization deadline exceeded"


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


class Authorizer:
    """
    ABAC policy decision point.

    Args:
        attribute_store: source of attribute assignments.
        policy_repository: source of policies, rules and targets.
        audit_sink: optional destination for access request records.
        config: engine configuration; defaults to ``ABACConfig()``.
        security_logger: decision event logger; when omitted and security
            logging is enabled, the global logger is configured from
            ``config.logging``.
        clock: "now" for attribute gathering.
        cache_clock: monotonic clock for the attribute cache.
    """

    def __init__(
        self,
        attribute_store: AttributeStore,
        policy_repository: PolicyRepository,
        audit_sink: Optional[AuditSink] = None,
        config: Optional[ABACConfig] = None,
        security_logger: Optional[SecurityLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
        cache_clock: Optional[Callable[[], float]] = None
    ):
        self.config = config or ABACConfig()

        self.cache: Optional[AttributeCache] = None
        if self.config.cache.enabled:
            self.cache = AttributeCache(
                max_size=self.config.cache.max_size,
                ttl_seconds=self.config.cache.ttl_seconds,
                clock=cache_clock
            )

        if security_logger is None and self.config.logging.enabled:
            logging_config = self.config.logging
            security_logger = configure_security_logger(
                log_level=logging_config.log_level,
                log_format=logging_config.log_format,
                log_file=logging_config.log_file,
                max_file_size=logging_config.max_file_size,
                backup_count=logging_config.backup_count
            )
        self.security_logger = security_logger

        self.gatherer = AttributeGatherer(
            attribute_store,
            cache=self.cache,
            clock=clock,
            role_attributes_override=self.config.role_attributes_override
        )
        self.loader = PolicyLoader(
            policy_repository,
            validate_operators=self.config.validate_operators,
            security_logger=self.security_logger
        )
        self.target_matcher = TargetMatcher()
        self.rule_evaluator = RuleEvaluator(strict_references=self.config.strict_rule_references)
        self.resolver = DecisionResolver()

        self.audit: Optional[AuditDispatcher] = None
        if audit_sink is not None and self.config.audit.enabled:
            self.audit = AuditDispatcher(
                audit_sink,
                queue_size=self.config.audit.queue_size,
                shutdown_timeout=self.config.audit.shutdown_timeout
            )

    async def start(self) -> None:
        """Start background audit writing."""
        if self.audit is not None:
            self.audit.start()

    async def close(self) -> None:
        """Flush pending audit records and stop background work."""
        if self.audit is not None:
            await self.audit.close()

    async def __aenter__(self) -> "Authorizer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def authorize(
        self,
        request: AuthorizationRequest,
        timeout: Optional[float] = None
    ) -> AuthorizationResult:
        """Decide whether the request's subject may perform its action."""
        started = time.perf_counter()
        if timeout is None:
            timeout = self.config.request_timeout

        try:
            if timeout is None:
                result = await self._evaluate(request, started)
            else:
                result = await asyncio.wait_for(self._evaluate(request, started), timeout=timeout)
        except asyncio.TimeoutError as e:
            error = AuthorizationTimeoutError(TIMED_OUT, timeout=timeout, cause=e)
            logger.warning("Authorization for subject %r timed out after %ss", request.subject_id, timeout)
            result = AuthorizationResult(
                decision=Decision.INDETERMINATE,
                reason=error.message,
                processing_time_ms=_elapsed_ms(started)
            )
        except Exception as e:
            message = e.message if isinstance(e, ABACError) else str(e)
            logger.error("Authorization failed for subject %r: %s", request.subject_id, message)
            result = AuthorizationResult(
                decision=Decision.INDETERMINATE,
                reason=f"Authorization error: {message}",
                processing_time_ms=_elapsed_ms(started)
            )

        self._log_decision(request, result)
        return result

    async def _evaluate(self, request: AuthorizationRequest, started: float) -> AuthorizationResult:
        self._validate(request)

        attributes = await self.gatherer.gather(
            subject_id=request.subject_id,
            action_name=request.action_name,
            resource_id=request.resource_id,
            resource_type=request.resource_type,
            context=request.context
        )
        policies = await self.loader.load()

        evaluations: List[PolicyEvaluation] = []
        for policy in policies:
            if not self.target_matcher.matches(policy.targets, attributes):
                logger.debug("Policy %s not applicable", policy.name)
                continue
            matches, reason = self.rule_evaluator.evaluate(policy.rules, attributes)
            logger.debug("Policy %s evaluated: matches=%s", policy.name, matches)
            evaluations.append(PolicyEvaluation(
                policy_id=policy.id,
                policy_name=policy.name,
                effect=policy.effect,
                matches=matches,
                priority=policy.priority,
                reason=reason
            ))

        decision, reason = self.resolver.resolve(evaluations, policies)
        result = AuthorizationResult(
            decision=decision,
            reason=reason,
            applied_policies=[evaluation.policy_name for evaluation in evaluations],
            processing_time_ms=_elapsed_ms(started)
        )

        if request.resource_id:
            self._submit_audit(request, result, evaluations)
        return result

    @staticmethod
    def _validate(request: AuthorizationRequest) -> None:
        if not request.subject_id or not str(request.subject_id).strip():
            raise InvalidRequestError("subject_id is required", field_name="subject_id")
        if not request.action_name or not str(request.action_name).strip():
            raise InvalidRequestError("action_name is required", field_name="action_name")

    def _submit_audit(
        self,
        request: AuthorizationRequest,
        result: AuthorizationResult,
        evaluations: List[PolicyEvaluation]
    ) -> None:
        if self.audit is None:
            return
        self.audit.submit(AccessRequestRecord(
            subject_id=request.subject_id,
            resource_id=request.resource_id,
            action_name=request.action_name,
            decision=result.decision,
            applied_policies=[evaluation.to_dict() for evaluation in evaluations],
            request_context=dict(request.context or {}),
            processing_time_ms=result.processing_time_ms
        ))

    def _log_decision(self, request: AuthorizationRequest, result: AuthorizationResult) -> None:
        if self.security_logger is None:
            return
        try:
            self.security_logger.log_authorization(
                subject_id=request.subject_id,
                action=request.action_name,
                decision=result.decision.value,
                reason=result.reason,
                resource=request.resource_id,
                applied_policies=result.applied_policies,
                processing_time_ms=result.processing_time_ms
            )
        except Exception as e:
            logger.error("Failed to log authorization decision: %s", e)

    async def can_read(
        self, subject_id: str, resource_id: str, context: Optional[Dict[str, Any]] = None
    ) -> AuthorizationResult:
        return await self.authorize(AuthorizationRequest(
            subject_id=subject_id, action_name="read", resource_id=resource_id, context=context or {}
        ))

    async def can_write(
        self, subject_id: str, resource_id: str, context: Optional[Dict[str, Any]] = None
    ) -> AuthorizationResult:
        return await self.authorize(AuthorizationRequest(
            subject_id=subject_id, action_name="write", resource_id=resource_id, context=context or {}
        ))

    async def can_delete(
        self, subject_id: str, resource_id: str, context: Optional[Dict[str, Any]] = None
    ) -> AuthorizationResult:
        return await self.authorize(AuthorizationRequest(
            subject_id=subject_id, action_name="delete", resource_id=resource_id, context=context or {}
        ))

    async def authorize_many(
        self,
        subject_id: str,
        action_name: str,
        resource_ids: Iterable[str],
        context: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> Dict[str, AuthorizationResult]:
        """
        Authorize one action on many resources.

        Resources are processed ``batch.width`` at a time with an optional
        pause between chunks. When ``timeout`` expires, in-flight items are
        cancelled and the remaining ones are not started; all of them get an
        ``indeterminate`` result.
        """
        started = time.perf_counter()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None
        width = self.config.batch.width
        pause = self.config.batch.pause_seconds

        ids = list(dict.fromkeys(resource_ids))
        results: Dict[str, AuthorizationResult] = {}

        for offset in range(0, len(ids), width):
            chunk = ids[offset:offset + width]
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                for resource_id in chunk:
                    results[resource_id] = self._deadline_result(subject_id, action_name, resource_id, started)
                continue

            tasks = [
                loop.create_task(self.authorize(AuthorizationRequest(
                    subject_id=subject_id,
                    action_name=action_name,
                    resource_id=resource_id,
                    context=dict(context or {})
                )))
                for resource_id in chunk
            ]
            try:
                done, pending = await asyncio.wait(tasks, timeout=remaining)
            except asyncio.CancelledError:
                for task in tasks:
                    task.cancel()
                raise

            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

            for resource_id, task in zip(chunk, tasks):
                if task in done:
                    results[resource_id] = task.result()
                else:
                    results[resource_id] = self._deadline_result(subject_id, action_name, resource_id, started)

            if pause and offset + width < len(ids):
                await asyncio.sleep(pause)

        return results

    def _deadline_result(
        self, subject_id: str, action_name: str, resource_id: str, started: float
    ) -> AuthorizationResult:
        result = AuthorizationResult(
            decision=Decision.INDETERMINATE,
            reason=DEADLINE_EXCEEDED,
            processing_time_ms=_elapsed_ms(started)
        )
        self._log_decision(
            AuthorizationRequest(subject_id=subject_id, action_name=action_name, resource_id=resource_id),
            result
        )
        return result

    async def gather_attributes(
        self,
        subject_id: str,
        action_name: str,
        resource_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> AttributeMap:
        """Attribute map the engine would evaluate for this request."""
        return await self.gatherer.gather(
            subject_id=subject_id,
            action_name=action_name,
            resource_id=resource_id,
            resource_type=resource_type,
            context=context
        )

    def invalidate_cache(self, subject_id: Optional[str] = None, resource_id: Optional[str] = None) -> int:
        """Drop cached attribute maps; returns the number removed."""
        if self.cache is None:
            return 0
        removed = self.cache.invalidate(subject_id=subject_id, resource_id=resource_id)
        logger.debug("Invalidated %d cached attribute maps", removed)
        return removed

    def cache_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        if self.cache is None:
            return {"enabled": False}
        stats = self.cache.stats()
        stats["enabled"] = True
        return stats
