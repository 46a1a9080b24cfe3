from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass

tenant_id_ctx: ContextVar[str | None] = ContextVar("sustainwatch_tenant_id", default=None)
actor_id_ctx: ContextVar[str | None] = ContextVar("sustainwatch_actor_id", default=None)


@dataclass(frozen=True)
class ContextTokens:
    tenant: Token[str | None]
    actor: Token[str | None]


def set_request_context(tenant_id: str | None, actor_id: str | None) -> ContextTokens:
    return ContextTokens(
        tenant=tenant_id_ctx.set(tenant_id),
        actor=actor_id_ctx.set(actor_id),
    )


def reset_request_context(tokens: ContextTokens) -> None:
    actor_id_ctx.reset(tokens.actor)
    tenant_id_ctx.reset(tokens.tenant)


@contextmanager
def request_context(tenant_id: str | None, actor_id: str | None) -> Iterator[None]:
    """Scope tenant and actor to a block of work outside an HTTP request."""
    tokens = set_request_context(tenant_id, actor_id)
    try:
        yield
    finally:
        reset_request_context(tokens)


def get_tenant_id() -> str | None:
    return tenant_id_ctx.get()


def get_actor_id() -> str | None:
    return actor_id_ctx.get()
