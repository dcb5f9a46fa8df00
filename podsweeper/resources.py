from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Protocol
import asyncio

from .errors import AlreadyExistsError, ResourceNotFoundError

LABEL_APP = "app.kubernetes.io/name"
LABEL_COMPONENT = "app.kubernetes.io/component"
LABEL_COORD_X = "podsweeper.io/x"
LABEL_COORD_Y = "podsweeper.io/y"
LABEL_GAME_ID = "podsweeper.io/game-id"
ANNOTATION_HINT = "podsweeper.io/hint"
ANNOTATION_MESSAGE = "podsweeper.io/message"

APP_NAME = "podsweeper"
DEFAULT_NAMESPACE = "podsweeper-game"


@dataclass
class Resource:
    """A visible resource in the orchestration platform (a pod, in practice)."""

    name: str
    namespace: str = DEFAULT_NAMESPACE
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    ready: bool = False
    terminating: bool = False

    @property
    def component(self) -> Optional[str]:
        return self.labels.get(LABEL_COMPONENT)


class ResourceManager(Protocol):
    """What the core needs from an orchestration client, scoped to one namespace."""

    namespace: str

    async def create(self, resource: Resource) -> None:
        """Raises AlreadyExistsError if the name is taken."""

    async def delete(self, name: str) -> None:
        """Raises ResourceNotFoundError if the name is unknown."""

    async def get(self, name: str) -> Optional[Resource]:
        ...

    async def list_by_tag(self, labels: Dict[str, str]) -> List[Resource]:
        ...


class InMemoryResourceManager:
    """Resource manager backed by a dict, for tests and local dev.

    ``fail_creates`` maps a resource name to how many upcoming creations of
    that name should fail; ``ready_on_create`` controls the ready flag of new
    resources.
    """

    def __init__(self, namespace: str = DEFAULT_NAMESPACE, ready_on_create: bool = True) -> None:
        self.namespace = namespace
        self.ready_on_create = ready_on_create
        self.resources: Dict[str, Resource] = {}
        self.fail_creates: Dict[str, int] = {}
        self.create_calls = 0
        self.delete_calls = 0

    async def create(self, resource: Resource) -> None:
        self.create_calls += 1
        # yield so concurrent creates interleave like real network calls
        await asyncio.sleep(0)
        remaining = self.fail_creates.get(resource.name, 0)
        if remaining:
            self.fail_creates[resource.name] = remaining - 1
            raise RuntimeError(f"injected failure creating {resource.name}")
        if resource.name in self.resources:
            raise AlreadyExistsError(f"resource {resource.name} already exists")
        self.resources[resource.name] = replace(
            resource,
            namespace=self.namespace,
            labels=dict(resource.labels),
            annotations=dict(resource.annotations),
            ready=self.ready_on_create,
        )

    async def delete(self, name: str) -> None:
        self.delete_calls += 1
        await asyncio.sleep(0)
        if self.resources.pop(name, None) is None:
            raise ResourceNotFoundError(f"resource {name} not found")

    async def get(self, name: str) -> Optional[Resource]:
        res = self.resources.get(name)
        return replace(res) if res is not None else None

    async def list_by_tag(self, labels: Dict[str, str]) -> List[Resource]:
        out = []
        for res in self.resources.values():
            if all(res.labels.get(k) == v for k, v in labels.items()):
                out.append(replace(res))
        return out

    def mark_terminating(self, name: str) -> None:
        self.resources[name].terminating = True

    def mark_ready(self, names: Optional[List[str]] = None) -> None:
        for name, res in self.resources.items():
            if names is None or name in names:
                res.ready = True

    def names(self) -> List[str]:
        return sorted(self.resources)
