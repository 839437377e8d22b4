"""
Skyrapport Data Models and Enums

File Purpose: Core data structures for the social graph, activity and derived scores
Primary Functions/Classes: Profile, Post, Interaction, Engagement, SyncState,
    NoiseScore, ReciprocityScore, AnalyticsSnapshot, merge_profile
Inputs and Outputs (I/O): Data structure definitions, no direct I/O operations

This module defines the entities the sync engine writes to the local store and
the analytics engine reads back. Every entity round-trips through a plain dict
(``to_dict``/``from_dict``) so any conforming store can hold it. Timestamps are
epoch milliseconds throughout.
"""

import time
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from rich.console import Console

# Shared console instance for all Skyrapport modules
console = Console()

TEXT_PREVIEW_LENGTH = 200


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class PostType(str, Enum):
    """Variant tag of a stored feed item."""

    POST = "post"
    REPOST = "repost"
    REPLY = "reply"
    QUOTE = "quote"


class InteractionType(str, Enum):
    """Kinds of engagement an account can perform on a post."""

    LIKE = "like"
    REPLY = "reply"
    QUOTE = "quote"
    REPOST = "repost"


class SyncStatus(str, Enum):
    """Lifecycle of a sync stage key."""

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


def _from_dict(cls, data: Dict[str, Any]):
    """Build a dataclass from a dict, ignoring keys the class does not define."""
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class Profile:
    """An account you follow or that follows you."""

    did: str
    handle: str
    display_name: Optional[str] = None
    avatar: Optional[str] = None
    follows_you: bool = False
    you_follow: bool = False
    is_mutual: bool = False
    last_updated: int = field(default_factory=now_ms)

    def __post_init__(self):
        self.is_mutual = bool(self.follows_you and self.you_follow)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Profile":
        return _from_dict(cls, data)


def merge_profile(existing: Optional[Profile], update: Dict[str, Any]) -> Profile:
    """Merge new profile fields over an existing profile.

    Fields present in ``update`` (and not None) overwrite, the mutual flag is
    recomputed from the two follow booleans and ``last_updated`` is bumped.
    """
    stamp = now_ms()
    if existing is None:
        return Profile(
            did=update.get("did") or "",
            handle=update.get("handle") or "",
            display_name=update.get("display_name"),
            avatar=update.get("avatar"),
            follows_you=bool(update.get("follows_you", False)),
            you_follow=bool(update.get("you_follow", False)),
            last_updated=stamp,
        )

    merged = existing.to_dict()
    for key, value in update.items():
        if key in ("is_mutual", "last_updated") or value is None:
            continue
        if key in merged:
            merged[key] = value
    merged["last_updated"] = stamp
    return Profile.from_dict(merged)


@dataclass
class Post:
    """A feed item from an account in your universe.

    Content is immutable; the engagement counters are a snapshot taken at
    ``fetched_at`` and are not refreshed afterwards.
    """

    uri: str
    cid: str
    author_did: str
    author_handle: str
    created_at: int
    post_type: PostType = PostType.POST
    indexed_at: int = 0
    author_display_name: Optional[str] = None
    author_avatar: Optional[str] = None
    # Reposts: the account whose feed carried the repost
    reposted_by_did: Optional[str] = None
    reposted_by_handle: Optional[str] = None
    # Replies
    reply_parent_uri: Optional[str] = None
    reply_root_uri: Optional[str] = None
    # Quotes
    quoted_uri: Optional[str] = None
    text_preview: Optional[str] = None
    like_count: int = 0
    repost_count: int = 0
    reply_count: int = 0
    quote_count: int = 0
    fetched_at: int = field(default_factory=now_ms)

    def __post_init__(self):
        self.post_type = PostType(self.post_type)
        if not self.indexed_at:
            self.indexed_at = self.created_at
        if self.text_preview:
            self.text_preview = self.text_preview[:TEXT_PREVIEW_LENGTH]

    @property
    def key(self) -> str:
        """Storage key; reposts are keyed per reposting account."""
        if self.post_type is PostType.REPOST and self.reposted_by_did:
            return f"repost:{self.reposted_by_did}:{self.uri}"
        return self.uri

    @property
    def contributor_did(self) -> str:
        """The account this item is attributed to in your feed."""
        if self.post_type is PostType.REPOST and self.reposted_by_did:
            return self.reposted_by_did
        return self.author_did

    @property
    def contributor_handle(self) -> str:
        if self.post_type is PostType.REPOST and self.reposted_by_handle:
            return self.reposted_by_handle
        return self.author_handle

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["post_type"] = self.post_type.value
        data["key"] = self.key
        data["contributor_did"] = self.contributor_did
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Post":
        return _from_dict(cls, data)


def make_interaction_id(interaction_type: InteractionType, target_uri: str) -> str:
    return f"{InteractionType(interaction_type).value}:{target_uri}"


def make_engagement_id(
    engagement_type: InteractionType, from_did: str, target_uri: str
) -> str:
    return f"{InteractionType(engagement_type).value}:{from_did}:{target_uri}"


@dataclass
class Interaction:
    """You acting on someone else's post. At most one per (type, target)."""

    type: InteractionType
    target_uri: str
    target_author_did: str
    created_at: int = field(default_factory=now_ms)
    own_post_uri: Optional[str] = None

    def __post_init__(self):
        self.type = InteractionType(self.type)

    @property
    def id(self) -> str:
        return make_interaction_id(self.type, self.target_uri)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["id"] = self.id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Interaction":
        return _from_dict(cls, data)


@dataclass
class Engagement:
    """Another account acting on one of your posts."""

    type: InteractionType
    target_uri: str
    from_did: str
    from_handle: str = ""
    created_at: int = field(default_factory=now_ms)
    their_post_uri: Optional[str] = None

    def __post_init__(self):
        self.type = InteractionType(self.type)

    @property
    def id(self) -> str:
        return make_engagement_id(self.type, self.from_did, self.target_uri)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["id"] = self.id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Engagement":
        return _from_dict(cls, data)


@dataclass
class SyncState:
    """Persisted progress row for one sync stage key."""

    key: str
    cursor: Optional[str] = None
    last_sync_at: int = 0
    items_processed: int = 0
    status: SyncStatus = SyncStatus.IDLE
    error: Optional[str] = None

    def __post_init__(self):
        self.status = SyncStatus(self.status)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncState":
        return _from_dict(cls, data)


@dataclass
class NoiseScore:
    """How much volume an account produces relative to your engagement with it."""

    did: str
    handle: str
    score: float = 0.0
    volume_percentile: float = 0.0
    engagement_rate: float = 0.0
    is_mutual: bool = False
    post_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NoiseScore":
        return _from_dict(cls, data)


@dataclass
class ReciprocityScore:
    """Their share of the engagement flowing between you and an account.

    0.0 means only you engage, 0.5 is balanced, 1.0 means only they engage.
    """

    did: str
    handle: str
    score: float = 0.0
    your_engagement: int = 0
    their_engagement: int = 0
    balanced: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReciprocityScore":
        return _from_dict(cls, data)


@dataclass
class AnalyticsSnapshot:
    """The single cached analytics row."""

    computed_at: int
    noise_scores: List[NoiseScore] = field(default_factory=list)
    reciprocity_scores: List[ReciprocityScore] = field(default_factory=list)
    total_contributors: int = 0
    total_posts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "computed_at": self.computed_at,
            "noise_scores": [s.to_dict() for s in self.noise_scores],
            "reciprocity_scores": [s.to_dict() for s in self.reciprocity_scores],
            "total_contributors": self.total_contributors,
            "total_posts": self.total_posts,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalyticsSnapshot":
        return cls(
            computed_at=int(data["computed_at"]),
            noise_scores=[NoiseScore.from_dict(s) for s in data.get("noise_scores", [])],
            reciprocity_scores=[
                ReciprocityScore.from_dict(s)
                for s in data.get("reciprocity_scores", [])
            ],
            total_contributors=int(data.get("total_contributors", 0)),
            total_posts=int(data.get("total_posts", 0)),
        )


def parse_datetime(
    date_str: Optional[str], default_on_error: Optional[datetime] = None
) -> Optional[datetime]:
    """
    Unified date parsing utility for all Skyrapport modules.

    Handles various ISO8601 formats including:
    - YYYY-MM-DD (date only)
    - YYYY-MM-DDTHH:MM:SS.sssZ (with Z timezone)
    - YYYY-MM-DDTHH:MM:SS.sss+00:00 (with timezone offset)

    Args:
        date_str: Date string to parse, can be None
        default_on_error: Value to return on parse error (None by default)

    Returns:
        Parsed datetime object, default_on_error on failure, or None if date_str is None
    """
    if not date_str:
        return None

    try:
        if len(date_str) == 10 and date_str[4] == "-" and date_str[7] == "-":
            return datetime.fromisoformat(date_str)
        return datetime.fromisoformat(date_str.replace("Z", "+00:00"))
    except ValueError:
        return default_on_error


def to_millis(date_str: Optional[str], default: int = 0) -> int:
    """Convert an ISO8601 timestamp to epoch milliseconds (``default`` if unparseable)."""
    parsed = parse_datetime(date_str)
    if parsed is None:
        return default
    return int(parsed.timestamp() * 1000)
