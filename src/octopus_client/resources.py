"""
Resource snapshots and the per-type capability contract used by repositories
"""

import copy
from enum import Enum
from types import MappingProxyType
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, Type

from .link_resolver import LinkCollection


SELF_RELATION = "Self"


@dataclass(frozen=True)
class Resource:
    """Immutable snapshot of a server-managed entity"""
    id: Optional[str]
    links: LinkCollection = field(default_factory=LinkCollection)
    fields: Mapping = field(default_factory=lambda: MappingProxyType({}))
    concurrency_token: Optional[str] = None

    @classmethod
    def draft(cls, **fields) -> 'Resource':
        """Build an unsaved resource for create(); the server assigns the identifier"""
        return cls(id=None, fields=MappingProxyType(dict(fields)))

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def __getitem__(self, name: str) -> Any:
        return self.fields[name]

    @property
    def self_link(self) -> Optional[str]:
        return self.links.get(SELF_RELATION)

    def with_fields(self, **changes) -> 'Resource':
        """
        Return a new snapshot with the given fields replaced

        The original snapshot is left untouched; nothing is sent to the server
        until the new snapshot is passed to a repository's modify().
        """
        updated = dict(self.fields)
        updated.update(changes)
        return type(self)(
            id=self.id,
            links=self.links,
            fields=MappingProxyType(updated),
            concurrency_token=self.concurrency_token
        )

    def to_wire(self) -> Dict[str, Any]:
        return copy.deepcopy(dict(self.fields))


class FeedType(Enum):
    """Package feed kinds known to the server"""
    NONE = "None"
    NUGET = "NuGet"
    DOCKER = "Docker"
    MAVEN = "Maven"
    OCTOPUS_PROJECT = "OctopusProject"
    GITHUB = "GitHub"
    BUILT_IN = "BuiltIn"
    HELM = "Helm"
    AWS_ELASTIC_CONTAINER_REGISTRY = "AwsElasticContainerRegistry"
    S3 = "S3"

    @classmethod
    def parse(cls, value: Optional[str]) -> 'FeedType':
        if not value:
            return cls.NONE
        for member in cls:
            if member.value.lower() == str(value).lower():
                return member
        raise ValueError(f"Unknown feed type: {value}")


class FeedResource(Resource):
    """Feed snapshot exposing its feed type"""

    @property
    def feed_type(self) -> FeedType:
        return FeedType.parse(self.get("FeedType"))


@dataclass(frozen=True)
class ResourceType:
    """
    Capability contract describing how one resource type appears on the wire

    Repositories are generic over this contract rather than over runtime
    introspection of resource classes.
    """
    name: str
    collection_relation: str
    id_field: str = "Id"
    links_field: str = "Links"
    name_field: str = "Name"
    concurrency_field: Optional[str] = None
    resource_class: Type[Resource] = Resource

    def from_wire(self, body: Any) -> Resource:
        """
        Build a resource snapshot from a decoded response body

        Args:
            body: Decoded JSON object

        Returns:
            Resource (or resource_class) snapshot

        Raises:
            ValueError: If the body is not a JSON object
        """
        if not isinstance(body, Mapping):
            raise ValueError(f"Expected a JSON object for {self.name}, got {type(body).__name__}")

        fields = copy.deepcopy(dict(body))
        identifier = fields.get(self.id_field)
        links = fields.get(self.links_field) or {}
        token = fields.get(self.concurrency_field) if self.concurrency_field else None

        return self.resource_class(
            id=str(identifier) if identifier is not None else None,
            links=LinkCollection(links if isinstance(links, Mapping) else {}),
            fields=MappingProxyType(fields),
            concurrency_token=str(token) if token is not None else None
        )

    def to_wire(self, resource: Resource) -> Dict[str, Any]:
        body = resource.to_wire()
        if resource.id is not None:
            body[self.id_field] = resource.id
        return body


def _builtin(name: str, relation: str, resource_class: Type[Resource] = Resource) -> ResourceType:
    return ResourceType(
        name=name,
        collection_relation=relation,
        concurrency_field="LastModifiedOn",
        resource_class=resource_class
    )


BUILTIN_RESOURCE_TYPES: Dict[str, ResourceType] = {
    resource_type.collection_relation: resource_type for resource_type in [
        _builtin("Project", "Projects"),
        _builtin("Release", "Releases"),
        _builtin("Environment", "Environments"),
        _builtin("Feed", "Feeds", FeedResource),
        _builtin("Machine", "Machines"),
        _builtin("Lifecycle", "Lifecycles"),
        _builtin("Tenant", "Tenants"),
        _builtin("Deployment", "Deployments"),
        _builtin("Channel", "Channels"),
        _builtin("Team", "Teams"),
        _builtin("User", "Users"),
        _builtin("Space", "Spaces"),
    ]
}


def get_resource_type(name: str) -> ResourceType:
    """
    Look up a built-in resource type by collection relation or type name

    Raises:
        KeyError: If no built-in type matches
    """
    lowered = name.lower()
    for resource_type in BUILTIN_RESOURCE_TYPES.values():
        if lowered in (resource_type.collection_relation.lower(), resource_type.name.lower()):
            return resource_type
    raise KeyError(f"Unknown resource type: {name}")
