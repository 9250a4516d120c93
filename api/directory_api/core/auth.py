from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class ActorContext:
    """Who is making a request, resolved once per request by the security layer."""

    user_id: str | None = None
    email: str | None = None
    email_verified: bool = False
    ip_address: str | None = None
    user_agent: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)


@dataclass(slots=True, frozen=True)
class ReviewerIdentity:
    user_id: str
    email: str


def anonymous_actor(*, ip_address: str | None = None, user_agent: str | None = None) -> ActorContext:
    return ActorContext(ip_address=ip_address, user_agent=user_agent)


@dataclass(slots=True, frozen=True)
class MachinePrincipal:
    """A worker authenticated by module id and API key rather than a user session."""

    module_id: str
