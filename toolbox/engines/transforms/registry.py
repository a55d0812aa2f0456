"""
Transform Registry

Closed mapping from operation id to strategy instance.
"""

from typing import Dict, Iterable, List, Type

from toolbox.core.exceptions import UnknownOperation
from toolbox.engines.transforms.base import Transform
from toolbox.engines.transforms.image import IMAGE_TRANSFORMS
from toolbox.engines.transforms.pdf import PDF_TRANSFORMS
from toolbox.engines.transforms.video import VIDEO_TRANSFORMS


class TransformRegistry:
    def __init__(self, transforms: Iterable[Transform] = ()):
        self._transforms: Dict[str, Transform] = {}
        for transform in transforms:
            self.register(transform)

    def register(self, transform: Transform):
        if not transform.operation:
            raise ValueError(f"{type(transform).__name__} has no operation id")
        if transform.operation in self._transforms:
            raise ValueError(f"Operation '{transform.operation}' is already registered")
        self._transforms[transform.operation] = transform

    def get(self, operation: str) -> Transform:
        try:
            return self._transforms[operation]
        except KeyError:
            raise UnknownOperation(operation)

    def __contains__(self, operation: str) -> bool:
        return operation in self._transforms

    def __len__(self) -> int:
        return len(self._transforms)

    def operations(self) -> List[str]:
        return sorted(self._transforms)

    def describe(self) -> List[dict]:
        return [self._transforms[op].describe() for op in self.operations()]


ALL_TRANSFORMS: List[Type[Transform]] = [
    *VIDEO_TRANSFORMS,
    *IMAGE_TRANSFORMS,
    *PDF_TRANSFORMS,
]


def build_default_registry() -> TransformRegistry:
    return TransformRegistry(cls() for cls in ALL_TRANSFORMS)
