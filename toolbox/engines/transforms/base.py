"""
Transform Contract

Every operation exposed under /api/<operation-id> is one Transform subclass.
A transform declares how many inputs it takes, which parameters it
recognizes (with types, bounds and defaults), how its output is named and
how to run it. The coordinator checks the declared contract once, centrally,
before any file is written.
"""

from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, List, Tuple, Sequence

from pydantic import BaseModel

from toolbox.core.exceptions import ValidationFailure
from toolbox.core.storage import IArtifactStore
from toolbox.modules.artifacts.models import Artifact, Namespace


class Arity(str, Enum):
    SINGLE = "single"        # exactly one input
    MULTIPLE = "multiple"    # two or more inputs, merge-style


class ParamKind(str, Enum):
    INT = "int"
    FLOAT = "float"
    STR = "str"


class ParamSpec(BaseModel):
    """One recognized request parameter."""
    name: str
    kind: ParamKind = ParamKind.STR
    required: bool = False
    default: Any = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    choices: Optional[Tuple[str, ...]] = None
    description: str = ""

    def parse(self, raw: Any) -> Any:
        """Coerce a raw form/JSON value. Returns None when absent."""
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            if self.required:
                raise ValidationFailure(
                    f"Parameter '{self.name}' is required.",
                    details={"parameter": self.name}
                )
            return self.default

        try:
            if self.kind == ParamKind.INT:
                if isinstance(raw, float) and not raw.is_integer():
                    raise ValueError(raw)
                value = int(str(raw).strip()) if not isinstance(raw, (int, float)) else int(raw)
            elif self.kind == ParamKind.FLOAT:
                value = float(str(raw).strip())
            else:
                value = str(raw).strip()
        except (TypeError, ValueError):
            raise ValidationFailure(
                f"Parameter '{self.name}' must be {'an integer' if self.kind == ParamKind.INT else 'a number'}.",
                details={"parameter": self.name, "value": str(raw)}
            )

        if self.kind in (ParamKind.INT, ParamKind.FLOAT):
            if value != value:  # NaN
                raise ValidationFailure(
                    f"Parameter '{self.name}' must be a number.",
                    details={"parameter": self.name}
                )
            if self.minimum is not None and value < self.minimum:
                raise ValidationFailure(
                    f"Parameter '{self.name}' must be at least {self.minimum:g}.",
                    details={"parameter": self.name, "value": value}
                )
            if self.maximum is not None and value > self.maximum:
                raise ValidationFailure(
                    f"Parameter '{self.name}' must be at most {self.maximum:g}.",
                    details={"parameter": self.name, "value": value}
                )

        if self.choices is not None:
            value = value.lower()
            if value not in self.choices:
                raise ValidationFailure(
                    f"Parameter '{self.name}' must be one of: {', '.join(self.choices)}.",
                    details={"parameter": self.name, "value": value}
                )
        return value

    def describe(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {
            "name": self.name,
            "type": self.kind.value,
            "required": self.required,
        }
        if self.default is not None:
            info["default"] = self.default
        if self.minimum is not None:
            info["minimum"] = self.minimum
        if self.maximum is not None:
            info["maximum"] = self.maximum
        if self.choices:
            info["choices"] = list(self.choices)
        if self.description:
            info["description"] = self.description
        return info


class TransformContext:
    """Everything a strategy may touch while it runs."""

    def __init__(
        self,
        operation: str,
        inputs: List[Artifact],
        params: Dict[str, Any],
        store: IArtifactStore,
        output: Optional[Artifact] = None,
        scratch: Optional[List[Artifact]] = None
    ):
        self.operation = operation
        self.inputs = inputs
        self.params = params
        self.store = store
        self.output = output
        # Shared with the coordinator, which reclaims everything appended here
        self.scratch = scratch if scratch is not None else []

    @property
    def input_paths(self) -> List[Path]:
        return [a.path for a in self.inputs]

    @property
    def output_path(self) -> Path:
        if self.output is None:
            raise RuntimeError(f"{self.operation} does not produce an output file")
        return self.output.path

    def scratch_file(self, name: str) -> Artifact:
        """Allocate a helper file (e.g. a concat manifest) that is reclaimed with the request."""
        artifact = self.store.allocate(name, Namespace.INTAKE)
        self.scratch.append(artifact)
        return artifact


class Transform(ABC):
    """Base class for one operation strategy."""

    operation: str = ""
    arity: Arity = Arity.SINGLE
    params: Sequence[ParamSpec] = ()
    content_kind: str = "file"
    description: str = ""

    # Output naming: "<prefix>-<input stem>.<extension>"
    output_prefix: str = "output"
    output_extension: Optional[str] = None  # None keeps the input's extension
    produces_output: bool = True
    success_message: str = "File processed successfully!"

    @property
    def min_inputs(self) -> int:
        return 2 if self.arity == Arity.MULTIPLE else 1

    @property
    def max_inputs(self) -> Optional[int]:
        return None if self.arity == Arity.MULTIPLE else 1

    def parse_params(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        """Parse every declared parameter; undeclared keys are ignored."""
        parsed = {spec.name: spec.parse(raw.get(spec.name)) for spec in self.params}
        self.validate(parsed)
        return parsed

    def validate(self, params: Dict[str, Any]):
        """Cross-parameter checks. Runs before any file I/O."""

    def output_name(self, inputs: List[Artifact], params: Dict[str, Any]) -> str:
        source = inputs[0].original_name if inputs else self.output_prefix
        stem, suffix = _split_name(source)
        extension = self.resolve_extension(suffix, params)
        if self.arity == Arity.MULTIPLE:
            return f"{self.output_prefix}.{extension}"
        return f"{self.output_prefix}-{stem}.{extension}"

    def resolve_extension(self, input_suffix: str, params: Dict[str, Any]) -> str:
        return self.output_extension or input_suffix or "bin"

    @abstractmethod
    async def run(self, ctx: TransformContext) -> Optional[str]:
        """
        Produce ctx.output from ctx.inputs.

        Returns:
            Optional human-readable text result (e.g. a colour code)
        """

    def describe(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "kind": self.content_kind,
            "arity": self.arity.value,
            "min_inputs": self.min_inputs,
            "max_inputs": self.max_inputs,
            "produces_file": self.produces_output,
            "parameters": [p.describe() for p in self.params],
            "description": self.description,
        }


def _split_name(name: str) -> Tuple[str, str]:
    path = Path(name or "file")
    return path.stem or "file", path.suffix.lstrip(".").lower()
