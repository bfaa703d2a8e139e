"""Exception taxonomy for the clawpen pipeline.

Everything raised before the agent process starts is terminal: the CLI turns
it into a message on stderr and exit code 1.  Only a non-zero exit of an
already running agent (``RuntimeCrash``) is recovered, by the supervisor's
restart policy.
"""

from __future__ import annotations

from pathlib import Path


class ClawpenError(Exception):
    """Base class for every pipeline failure."""


# ── Composer ─────────────────────────────────────────────────────────────────


class MalformedEntryError(ClawpenError, ValueError):
    """A single allow/deny list entry is unusable."""

    def __init__(self, field: str, value: str, reason: str) -> None:
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"{field}: {reason} (got {value!r})")


# ── Validator ────────────────────────────────────────────────────────────────


class ConfigValidationError(ClawpenError):
    """One violated invariant of a composed policy document."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConfigValidationError):
            return NotImplemented
        return (self.field, self.message) == (other.field, other.message)

    def __hash__(self) -> int:
        return hash((self.field, self.message))


class PolicyValidationError(ClawpenError):
    """Raised by ensure_valid(); carries every violation, not just the first."""

    def __init__(self, errors: list[ConfigValidationError]) -> None:
        self.errors = list(errors)
        lines = "\n".join(f"  - {e}" for e in self.errors)
        super().__init__(f"policy has {len(self.errors)} error(s):\n{lines}")


# ── Secret materialization ───────────────────────────────────────────────────


class MaterializeError(ClawpenError):
    """Secret materialization failed; the agent must not be started."""


class SecretReadError(MaterializeError):
    def __init__(self, path: Path | str, detail: str = "") -> None:
        self.path = Path(path)
        msg = f"secret file is not readable: {self.path}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class EmptySecretError(MaterializeError):
    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        super().__init__(f"secret file is empty: {self.path}")


class UnresolvedPlaceholderError(MaterializeError):
    def __init__(self, tokens: list[str]) -> None:
        self.tokens = list(tokens)
        super().__init__(
            "runtime config still contains placeholders: " + ", ".join(self.tokens)
        )


# ── Sandbox ──────────────────────────────────────────────────────────────────


class SandboxSetupError(ClawpenError):
    """The host cannot provide an isolation primitive the profile requires."""

    def __init__(self, primitive: str, detail: str) -> None:
        self.primitive = primitive
        self.detail = detail
        super().__init__(f"cannot apply {primitive}: {detail}")


class RuntimeCrash(ClawpenError):
    """The agent exited non-zero after a successful start."""

    def __init__(self, pid: int, returncode: int) -> None:
        self.pid = pid
        self.returncode = returncode
        super().__init__(f"agent pid {pid} exited with status {returncode}")
