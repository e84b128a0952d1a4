"""Exception hierarchy shared across agentd."""

from __future__ import annotations

from typing import Optional


class AgentdError(Exception):
    """Base class for all agentd errors."""


class ConfigError(AgentdError):
    pass


class AgentNotFoundError(AgentdError, LookupError):
    def __init__(self, name: str):
        super().__init__(f'Agent "{name}" not found')
        self.name = name


class AgentDefinitionError(AgentdError, ValueError):
    pass


class ToolRegistryError(AgentdError):
    pass


class InvalidToolNameError(ToolRegistryError, ValueError):
    pass


class ServerNotFoundError(ToolRegistryError, LookupError):
    pass


class ToolNotFoundError(ToolRegistryError, LookupError):
    pass


class ToolServerConnectError(ToolRegistryError):
    pass


TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504, 529})


class ProviderError(AgentdError):
    """An error returned by (or while reaching) a model provider."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def transient(self) -> bool:
        return self.status_code in TRANSIENT_STATUS_CODES

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


class UnknownModelError(ProviderError, ValueError):
    pass


class ProviderConfigError(ProviderError):
    pass


class RunLookupError(AgentdError, LookupError):
    pass


class RunNotFoundError(RunLookupError):
    def __init__(self, run_id: str):
        super().__init__(f'Run "{run_id}" not found')
        self.run_id = run_id


class AmbiguousRunIdError(RunLookupError):
    def __init__(self, prefix: str, matches: int):
        super().__init__(
            f'Ambiguous run ID prefix "{prefix}" matches {matches} runs, be more specific'
        )
        self.prefix = prefix
        self.matches = matches
