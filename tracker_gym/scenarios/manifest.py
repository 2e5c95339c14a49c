"""Response manifest: ordered rules mapping tracker calls to canned responses.

Rules are evaluated top-down with plain equality or the ``"*"`` wildcard;
the first rule that matches a call answers it.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tracker_gym.types import OnExhausted

WILDCARD = "*"


def request_key(method: str, args: dict[str, str]) -> str:
    """Stable call signature: ``method:k1=v1,k2=v2`` with keys sorted.

    A call without arguments is keyed by the bare method name.
    """
    if not args:
        return method
    parts = ",".join(f"{key}={args[key]}" for key in sorted(args))
    return f"{method}:{parts}"


class WhenCondition(BaseModel):
    """Extra matching condition on the request body."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    body_contains: str | None = None


class ResponseMapping(BaseModel):
    """One ``[[responses]]`` entry."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    method: str
    args: dict[str, str] = Field(default_factory=dict)
    file: str | None = None
    sequence: tuple[str, ...] | None = None
    status: int = Field(default=200, ge=100, le=599)
    on_exhausted: OnExhausted | None = None
    when: WhenCondition | None = None
    delay_ms: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _one_response_source(self) -> ResponseMapping:
        if (self.file is None) == (self.sequence is None):
            msg = f"mapping for '{self.method}' needs exactly one of 'file' or 'sequence'"
            raise ValueError(msg)
        if self.sequence is not None and not self.sequence:
            msg = f"mapping for '{self.method}' has an empty sequence"
            raise ValueError(msg)
        if self.on_exhausted is not None and self.sequence is None:
            msg = f"mapping for '{self.method}' sets on_exhausted without a sequence"
            raise ValueError(msg)
        return self

    @property
    def exhaustion_policy(self) -> OnExhausted:
        return self.on_exhausted or OnExhausted.ERROR

    @property
    def response_files(self) -> tuple[str, ...]:
        """Every response file this mapping can serve."""
        if self.sequence is not None:
            return self.sequence
        return (self.file,) if self.file else ()

    def matches(self, method: str, args: dict[str, str], body: str | None = None) -> bool:
        """Whether this mapping answers the given call.

        Each declared arg must be present on the call and equal to it, or
        be the wildcard. Undeclared call args are ignored.
        """
        if method != self.method:
            return False
        for key, expected in self.args.items():
            if key not in args:
                return False
            if expected != WILDCARD and args[key] != expected:
                return False
        if self.when is not None and self.when.body_contains is not None:
            if body is None or self.when.body_contains not in body:
                return False
        return True


class Manifest(BaseModel):
    """The parsed ``manifest.toml``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    responses: tuple[ResponseMapping, ...] = ()

    def find(self, method: str, args: dict[str, str], body: str | None = None) -> ResponseMapping | None:
        """Return the first mapping that matches, or None."""
        for mapping in self.responses:
            if mapping.matches(method, args, body):
                return mapping
        return None

    def methods(self) -> set[str]:
        """The method vocabulary declared by this manifest."""
        return {mapping.method for mapping in self.responses}
