"""
REST API endpoints for authorization checks.

``create_abac_router`` exposes an ``Authorizer`` over HTTP. Request and
response bodies use camelCase field names; snake_case is accepted on input.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .authorizer import Authorizer
from .models import AuthorizationRequest, AuthorizationResult
from .version import get_version


class CamelModel(BaseModel):
    """Base model with camelCase aliases."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ActionRequest(CamelModel):
    """Generic authorization request."""
    subject_id: str = Field(..., min_length=1, description="Subject requesting access")
    action_name: str = Field(..., min_length=1, description="Action to perform")
    resource_id: Optional[str] = Field(None, description="External resource id")
    resource_type: Optional[str] = Field(None, description="Resource type")
    context: Dict[str, Any] = Field(default_factory=dict, description="Request context")


class ResourceRequest(CamelModel):
    """Read/write/delete check on one resource."""
    user_id: str = Field(..., min_length=1, description="Subject requesting access")
    resource_id: str = Field(..., min_length=1, description="External resource id")
    context: Optional[Dict[str, Any]] = Field(None, description="Request context")


class BatchRequest(CamelModel):
    """One action checked against many resources."""
    user_id: str = Field(..., min_length=1, description="Subject requesting access")
    action_name: str = Field(..., min_length=1, description="Action to perform")
    resource_ids: List[str] = Field(..., description="External resource ids")
    context: Optional[Dict[str, Any]] = Field(None, description="Request context")


class DecisionModel(CamelModel):
    """Authorization decision."""
    decision: str
    reason: str
    applied_policies: List[str] = Field(default_factory=list)
    processing_time_ms: float = 0.0

    @classmethod
    def from_result(cls, result: AuthorizationResult) -> "DecisionModel":
        return cls(
            decision=result.decision.value,
            reason=result.reason,
            applied_policies=list(result.applied_policies),
            processing_time_ms=result.processing_time_ms,
        )


class DecisionResponse(CamelModel):
    decision: DecisionModel


class BatchDecisionResponse(CamelModel):
    decisions: Dict[str, DecisionModel]


class StatusResponse(CamelModel):
    message: str
    version: str


def create_abac_router(
    authorizer: Authorizer,
    prefix: str = "/abac",
    tags: Optional[List[str]] = None
) -> APIRouter:
    """Create a router exposing ``authorizer``."""
    router = APIRouter(prefix=prefix, tags=tags or ["abac"])

    def get_authorizer() -> Authorizer:
        return authorizer

    @router.post("/canUserPerformAction", response_model=DecisionResponse)
    async def can_user_perform_action(
        body: ActionRequest,
        engine: Authorizer = Depends(get_authorizer)
    ):
        """Authorize an arbitrary action."""
        result = await engine.authorize(AuthorizationRequest(
            subject_id=body.subject_id,
            action_name=body.action_name,
            resource_id=body.resource_id,
            resource_type=body.resource_type,
            context=body.context,
        ))
        return DecisionResponse(decision=DecisionModel.from_result(result))

    @router.post("/canUserRead", response_model=DecisionResponse)
    async def can_user_read(body: ResourceRequest, engine: Authorizer = Depends(get_authorizer)):
        result = await engine.can_read(body.user_id, body.resource_id, body.context)
        return DecisionResponse(decision=DecisionModel.from_result(result))

    @router.post("/canUserWrite", response_model=DecisionResponse)
    async def can_user_write(body: ResourceRequest, engine: Authorizer = Depends(get_authorizer)):
        result = await engine.can_write(body.user_id, body.resource_id, body.context)
        return DecisionResponse(decision=DecisionModel.from_result(result))

    @router.post("/canUserDelete", response_model=DecisionResponse)
    async def can_user_delete(body: ResourceRequest, engine: Authorizer = Depends(get_authorizer)):
        result = await engine.can_delete(body.user_id, body.resource_id, body.context)
        return DecisionResponse(decision=DecisionModel.from_result(result))

    @router.post("/canUserPerformActionOnResources", response_model=BatchDecisionResponse)
    async def can_user_perform_action_on_resources(
        body: BatchRequest,
        engine: Authorizer = Depends(get_authorizer)
    ):
        """Authorize one action on each of the given resources."""
        results = await engine.authorize_many(
            body.user_id, body.action_name, body.resource_ids, body.context
        )
        return BatchDecisionResponse(decisions={
            resource_id: DecisionModel.from_result(result)
            for resource_id, result in results.items()
        })

    @router.get("/test", response_model=StatusResponse)
    async def test_endpoint():
        return StatusResponse(message="ABAC plugin is working!", version=get_version())

    return router
