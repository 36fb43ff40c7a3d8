"""
Attribute collection for authorization requests.

``AttributeStore`` is the async interface to wherever subject, role,
resource, action and environment attribute assignments live.
``AttributeGatherer`` turns one request into an attribute map keyed by
``"{category}.{name}"``.
"""
import dataclasses
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from .cache import AttributeCache
from .exceptions import ABACError, AttributeStoreError
from .models import (
    AttributeCategory,
    AttributeMap,
    AttributeValue,
    runtime_type_name,
    stringify_value,
)

logger = logging.getLogger(__name__)


class AttributeStore(ABC):
    """Abstract base class for attribute stores."""

    @abstractmethod
    async def get_subject_attributes(self, subject_id: str) -> List[AttributeValue]:
        """Attributes assigned directly to the subject."""
        pass

    @abstractmethod
    async def get_role_attributes(self, subject_id: str) -> List[AttributeValue]:
        """Attributes assigned to the subject's role."""
        pass

    @abstractmethod
    async def get_resource_attributes(self, resource_id: str) -> List[AttributeValue]:
        """Attributes of the resource with the given external id."""
        pass

    @abstractmethod
    async def get_resource_owner(self, resource_id: str) -> Optional[str]:
        """Owner subject id of the resource, or ``None``."""
        pass

    @abstractmethod
    async def get_action_attributes(self, action_name: str) -> List[AttributeValue]:
        """Attributes assigned to the named action."""
        pass

    @abstractmethod
    async def get_environment_attributes(self, now: datetime) -> List[AttributeValue]:
        """Environment attributes whose validity window contains ``now``."""
        pass


def format_timestamp(now: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def day_of_week(now: datetime) -> str:
    """Day of week as ``0`` (Sunday) to ``6`` (Saturday)."""
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return str(now.isoweekday() % 7)


class AttributeGatherer:
    """
    Builds the attribute map for a request.

    Storage-derived attributes (subject, role, resource, action and stored
    environment values) may be served from an ``AttributeCache``. The
    current time, day of week and request context are added fresh on every
    call.

    Args:
        store: attribute store to read from.
        cache: optional cache of storage-derived maps.
        clock: returns "now"; defaults to the current UTC time.
        role_attributes_override: when a subject and its role assign the
            same attribute, keep the role's value (``True``) or the
            subject's own value (``False``).
    """

    def __init__(
        self,
        store: AttributeStore,
        cache: Optional[AttributeCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
        role_attributes_override: bool = True
    ):
        self.store = store
        self.cache = cache
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.role_attributes_override = role_attributes_override

    async def gather(
        self,
        subject_id: str,
        action_name: str,
        resource_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> AttributeMap:
        now = self.clock()

        attributes = None
        if self.cache is not None:
            attributes = self.cache.get(subject_id, resource_id, action_name)
            if attributes is not None:
                logger.debug("Attribute map for %s/%s/%s served from cache",
                             subject_id, resource_id, action_name)

        if attributes is None:
            try:
                attributes = await self._load_stored(subject_id, action_name, resource_id, now)
            except ABACError:
                raise
            except Exception as e:
                raise AttributeStoreError(
                    f"Failed to gather attributes: {e}",
                    operation="gather",
                    subject_id=subject_id,
                    resource_id=resource_id,
                    cause=e
                ) from e
            if self.cache is not None:
                self.cache.put(subject_id, resource_id, action_name, attributes)

        # Request-scoped values never enter the cache.
        if resource_type:
            attributes = self._insert_before_environment(attributes, AttributeValue(
                id="dynamic-resource-type",
                name="resource_type",
                type="string",
                category=AttributeCategory.RESOURCE.value,
                value=str(resource_type),
            ))
        self._add_dynamic_environment(attributes, now, context)

        logger.debug("Gathered %d attributes for subject %s", len(attributes), subject_id)
        return attributes

    async def _load_stored(
        self,
        subject_id: str,
        action_name: str,
        resource_id: Optional[str],
        now: datetime
    ) -> AttributeMap:
        attributes: AttributeMap = {}
        subject = AttributeCategory.SUBJECT.value
        resource = AttributeCategory.RESOURCE.value
        action = AttributeCategory.ACTION.value
        environment = AttributeCategory.ENVIRONMENT.value

        self._merge(attributes, subject, await self.store.get_subject_attributes(subject_id))
        self._merge(
            attributes,
            subject,
            await self.store.get_role_attributes(subject_id),
            overwrite=self.role_attributes_override
        )

        if resource_id:
            self._merge(attributes, resource, await self.store.get_resource_attributes(resource_id))
            owner_id = await self.store.get_resource_owner(resource_id)
            if owner_id is not None:
                self._set(attributes, AttributeValue(
                    id="resource-owner",
                    name="owner_id",
                    type="string",
                    category=resource,
                    value=str(owner_id),
                ))
                self._set(attributes, AttributeValue(
                    id="resource-is-owner",
                    name="is_owner",
                    type="boolean",
                    category=resource,
                    value=stringify_value(str(owner_id) == subject_id),
                ))

        self._merge(attributes, action, await self.store.get_action_attributes(action_name))
        self._set(attributes, AttributeValue(
            id="dynamic-action-name",
            name="action_name",
            type="string",
            category=action,
            value=action_name,
        ))

        self._merge(attributes, environment, await self.store.get_environment_attributes(now))
        return attributes

    def _add_dynamic_environment(
        self,
        attributes: AttributeMap,
        now: datetime,
        context: Optional[Dict[str, Any]]
    ) -> None:
        environment = AttributeCategory.ENVIRONMENT.value
        self._set(attributes, AttributeValue(
            id="env-current-time",
            name="current_time",
            type="string",
            category=environment,
            value=format_timestamp(now),
        ))
        self._set(attributes, AttributeValue(
            id="env-day-of-week",
            name="day_of_week",
            type="string",
            category=environment,
            value=day_of_week(now),
        ))
        for key, value in (context or {}).items():
            self._set(attributes, AttributeValue(
                id=f"ctx-{key}",
                name=str(key),
                type=runtime_type_name(value),
                category=environment,
                value=stringify_value(value),
            ))

    @staticmethod
    def _insert_before_environment(attributes: AttributeMap, attribute: AttributeValue) -> AttributeMap:
        """
        Place ``attribute`` after the action entries and ahead of stored
        environment attributes, so first-match lookups by bare name see it
        before an environment attribute of the same name.
        """
        if attribute.key in attributes:
            attributes[attribute.key] = attribute
            return attributes

        environment = AttributeCategory.ENVIRONMENT.value
        ordered: AttributeMap = {}
        for key, value in attributes.items():
            if attribute.key not in ordered and value.category == environment:
                ordered[attribute.key] = attribute
            ordered[key] = value
        ordered.setdefault(attribute.key, attribute)
        return ordered

    @staticmethod
    def _set(attributes: AttributeMap, attribute: AttributeValue) -> None:
        # Overwriting keeps the key's original position.
        attributes[attribute.key] = attribute

    @classmethod
    def _merge(
        cls,
        attributes: AttributeMap,
        category: str,
        values: Iterable[AttributeValue],
        overwrite: bool = True
    ) -> None:
        for value in values or ():
            if value.category != category:
                value = dataclasses.replace(value, category=category)
            if not overwrite and value.key in attributes:
                continue
            cls._set(attributes, value)
