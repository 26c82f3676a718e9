from dataclasses import dataclass


@dataclass(frozen=True)
class RequestContext:
    """Already-authorized caller identity. Every query is scoped by `tenant_id`."""

    tenant_id: str
    actor_id: str
    company_id: str | None = None
