"""
Error kinds raised by the block resolution engine.

  InvalidSpec               -- rejected immediately, never degraded
  ProviderUnavailable       -- recovered by the cache / synthetic fallback
  NarrativeGenerationFailed -- isolated to a single generation task
"""
from __future__ import annotations

import uuid


class EngineError(Exception):
    code = "engine_error"

    def __init__(self, message: str, *, error_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.error_id = error_id or str(uuid.uuid4())


class InvalidSpec(EngineError):
    code = "invalid_spec"

    def __init__(self, errors: list[str] | str) -> None:
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))


class ProviderUnavailable(EngineError):
    code = "provider_unavailable"


class NarrativeGenerationFailed(EngineError):
    code = "narrative_generation_failed"

    def __init__(self, message: str, *, block_id: str | None = None) -> None:
        super().__init__(message)
        self.block_id = block_id
