"""Profile payloads returned by the profile-lookup API."""

from __future__ import annotations

from pydantic import BaseModel
from pydantic import Field

from vibegraph.models.entities import Entity


class VerificationInfo(BaseModel):
    model_config = {"extra": "ignore"}

    type: str | None = None
    reason: str | None = None


class Profile(BaseModel):
    """A user object as returned by the profile-lookup API.

    Field names follow the upstream payload so responses validate
    directly; ``to_entity`` maps them onto the graph model.
    """

    model_config = {"extra": "ignore"}

    id_str: str | None = None
    id: int | str | None = None
    screen_name: str
    name: str | None = None
    description: str | None = None
    location: str | None = None
    url: str | None = None
    profile_image_url_https: str | None = None
    profile_banner_url: str | None = None
    followers_count: int = 0
    friends_count: int = 0
    verified: bool = False
    verification_info: VerificationInfo | None = None
    created_at: str | None = None
    listed_count: int = 0
    statuses_count: int = 0
    favourites_count: int = 0
    protected: bool = False
    can_dm: bool = False

    @property
    def entity_id(self) -> str | None:
        if self.id_str:
            return self.id_str
        if self.id is not None:
            return str(self.id)
        return None

    @property
    def is_business_verified(self) -> bool:
        info = self.verification_info
        return info is not None and info.type == "Business"

    def to_entity(self) -> Entity:
        info = self.verification_info
        return Entity(
            handle=self.screen_name,
            entity_id=self.entity_id,
            name=self.name,
            bio=self.description or None,
            location=self.location or None,
            url=self.url or None,
            profile_image_url=self.profile_image_url_https,
            followers_count=self.followers_count or 0,
            following_count=self.friends_count or 0,
            verified=bool(self.verified),
            verification_type=info.type if info else None,
            verification_reason=info.reason if info else None,
        )


class ProfilePage(BaseModel):
    """One page of a follower/following listing."""

    users: list[Profile] = Field(default_factory=list)
    next_cursor: str | None = None
