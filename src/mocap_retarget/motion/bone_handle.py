"""Bone handle interface and an in-memory scene-graph bone.

The retargeter never owns bones; it reads and writes them through
BoneHandle. A renderer integration wraps its own node type in an adapter
implementing these seven methods. SceneBone is a self-contained
implementation used for headless processing and tests.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, Optional, Sequence, Union
import numpy as np

from mocap_retarget.core import MixamoBone, MIXAMO_BONE_PARENTS
from mocap_retarget.core.math3d import (
    as_vec3,
    quat_identity,
    quat_inverse,
    quat_multiply,
    quat_normalize,
    quat_rotate_vector,
)


class BoneHandle(ABC):
    """Mutable bone exposed by the scene.

    Quaternions are (w, x, y, z). World getters must reflect the latest
    local values once propagate_to_children() has been called.
    """

    @abstractmethod
    def get_world_position(self) -> np.ndarray:
        ...

    @abstractmethod
    def get_world_rotation(self) -> np.ndarray:
        ...

    @abstractmethod
    def get_local_position(self) -> np.ndarray:
        ...

    @abstractmethod
    def get_local_rotation(self) -> np.ndarray:
        ...

    @abstractmethod
    def set_local_position(self, position: np.ndarray) -> None:
        ...

    @abstractmethod
    def set_local_rotation(self, rotation: np.ndarray) -> None:
        ...

    @abstractmethod
    def propagate_to_children(self) -> None:
        """Recompute world transforms of this bone and its descendants."""

    def get_parent_world_rotation(self) -> np.ndarray:
        """World rotation of the parent, recovered as world * inverse(local)."""
        return quat_multiply(self.get_world_rotation(), quat_inverse(self.get_local_rotation()))


class SceneBone(BoneHandle):
    """Scene-graph node with cached world transform."""

    def __init__(
        self,
        name: str,
        position: Optional[Sequence[float]] = None,
        rotation: Optional[Sequence[float]] = None,
        parent: Optional["SceneBone"] = None
    ):
        self.name = name
        self.parent: Optional[SceneBone] = None
        self.children: List[SceneBone] = []
        self._local_position = as_vec3(position if position is not None else (0.0, 0.0, 0.0))
        self._local_rotation = quat_normalize(
            np.asarray(rotation, dtype=np.float64) if rotation is not None else quat_identity()
        )
        self._world_position = self._local_position.copy()
        self._world_rotation = self._local_rotation.copy()
        if parent is not None:
            parent.add_child(self)
        else:
            self.update_world()

    def add_child(self, child: "SceneBone") -> None:
        if child.parent is not None:
            child.parent.children.remove(child)
        child.parent = self
        self.children.append(child)
        child.update_world()

    def update_world(self) -> None:
        if self.parent is None:
            self._world_position = self._local_position.copy()
            self._world_rotation = self._local_rotation.copy()
        else:
            self._world_rotation = quat_multiply(self.parent._world_rotation, self._local_rotation)
            self._world_position = self.parent._world_position + quat_rotate_vector(
                self.parent._world_rotation, self._local_position
            )
        for child in self.children:
            child.update_world()

    def get_world_position(self) -> np.ndarray:
        return self._world_position.copy()

    def get_world_rotation(self) -> np.ndarray:
        return self._world_rotation.copy()

    def get_local_position(self) -> np.ndarray:
        return self._local_position.copy()

    def get_local_rotation(self) -> np.ndarray:
        return self._local_rotation.copy()

    def set_local_position(self, position: np.ndarray) -> None:
        self._local_position = as_vec3(position)

    def set_local_rotation(self, rotation: np.ndarray) -> None:
        self._local_rotation = quat_normalize(np.asarray(rotation, dtype=np.float64))

    def propagate_to_children(self) -> None:
        self.update_world()

    def get_parent_world_rotation(self) -> np.ndarray:
        if self.parent is None:
            return quat_identity()
        return self.parent._world_rotation.copy()

    def traverse(self):
        """Yield this bone and all descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.traverse()

    def __repr__(self) -> str:
        return f"SceneBone({self.name!r}, children={len(self.children)})"


def build_skeleton(
    rest_positions: Mapping[Union[str, MixamoBone], Sequence[float]],
    parents: Optional[Mapping[MixamoBone, MixamoBone]] = None,
    prefix: str = ""
) -> Dict[str, SceneBone]:
    """
    Build a SceneBone hierarchy from world-space rest positions.

    Bones get identity rotations. A bone whose parent is absent attaches to
    the nearest present ancestor, or becomes a root.

    Args:
        rest_positions: Canonical bone -> world position
        parents: Child -> parent table (defaults to the Mixamo hierarchy)
        prefix: Prepended to every bone name (e.g. "mixamorig:")

    Returns:
        Dict of bone name (with prefix) -> SceneBone
    """
    parents = parents if parents is not None else MIXAMO_BONE_PARENTS
    positions = {MixamoBone.from_name(k): as_vec3(v) for k, v in rest_positions.items()}
    bones: Dict[MixamoBone, SceneBone] = {}

    def create(bone: MixamoBone) -> SceneBone:
        if bone in bones:
            return bones[bone]
        ancestor = parents.get(bone)
        while ancestor is not None and ancestor not in positions:
            ancestor = parents.get(ancestor)
        parent_node = create(ancestor) if ancestor is not None else None
        local = positions[bone] - (positions[ancestor] if ancestor is not None else 0.0)
        node = SceneBone(f"{prefix}{bone.canonical_name}", local, parent=parent_node)
        bones[bone] = node
        return node

    for bone in sorted(positions):
        create(bone)

    return {node.name: node for node in bones.values()}
