"""Scene graph models and tree surgery."""
from __future__ import annotations

import uuid
from typing import Any, Dict, Iterator, List, Optional

from pydantic import BaseModel, Field

from avatar_engines.scene_engine.core.geometry import Transform


class SceneNode(BaseModel):
    id: str = Field(default_factory=lambda: f"node_{uuid.uuid4().hex[:12]}")
    name: Optional[str] = None
    transform: Transform = Field(default_factory=Transform)
    mesh_ids: List[str] = Field(default_factory=list)
    children: List[SceneNode] = Field(default_factory=list)
    meta: Dict[str, Any] = Field(default_factory=dict)

    def walk(self) -> Iterator[SceneNode]:
        """Depth-first, parent before children."""
        yield self
        for child in self.children:
            yield from child.walk()

    def find(self, node_id: str) -> Optional[SceneNode]:
        for node in self.walk():
            if node.id == node_id:
                return node
        return None

    def find_parent(self, node_id: str) -> Optional[SceneNode]:
        for node in self.walk():
            if any(child.id == node_id for child in node.children):
                return node
        return None

    def path_to(self, node_id: str) -> Optional[List[SceneNode]]:
        """Nodes from this node down to ``node_id`` inclusive."""
        if self.id == node_id:
            return [self]
        for child in self.children:
            sub = child.path_to(node_id)
            if sub is not None:
                return [self] + sub
        return None


def insert_parent(root: SceneNode, node_id: str, wrapper: SceneNode) -> SceneNode:
    """Put ``wrapper`` between ``node_id`` and its parent, at the same slot.

    The caller is responsible for adjusting the moved node's local transform.
    """
    parent = root.find_parent(node_id)
    if parent is None:
        raise ValueError(f"Node {node_id} has no parent under {root.id}")
    index = next(i for i, child in enumerate(parent.children) if child.id == node_id)
    node = parent.children[index]
    wrapper.children.append(node)
    parent.children[index] = wrapper
    return wrapper


# Resolve forward references for recursive SceneNode
SceneNode.model_rebuild()
