from dataclasses import dataclass

MB = 1024 * 1024
GB = 1024 * MB


@dataclass(frozen=True)
class PlatformMediaLimits:
    photo_bytes: int
    video_bytes: int
    story_bytes: int | None = None


PLATFORM_MEDIA_LIMITS: dict[str, PlatformMediaLimits] = {
    "tiktok": PlatformMediaLimits(photo_bytes=30 * MB, video_bytes=4 * GB),
    "instagram": PlatformMediaLimits(photo_bytes=30 * MB, video_bytes=4 * GB, story_bytes=100 * MB),
    "facebook": PlatformMediaLimits(photo_bytes=100 * MB, video_bytes=4 * GB, story_bytes=100 * MB),
    "youtube": PlatformMediaLimits(photo_bytes=20 * MB, video_bytes=256 * GB),
    "x": PlatformMediaLimits(photo_bytes=5 * MB, video_bytes=512 * MB),
    "linkedin": PlatformMediaLimits(photo_bytes=20 * MB, video_bytes=5 * GB),
    "threads": PlatformMediaLimits(photo_bytes=30 * MB, video_bytes=4 * GB, story_bytes=100 * MB),
}


def parse_option_id(option_id: str) -> tuple[str, str | None]:
    """Split a publish option such as ``instagram_reels`` into ``("instagram", "reels")``."""
    normalized = (option_id or "").strip().lower()
    platform, _, variant = normalized.partition("_")
    return platform, (variant or None)


def media_kind(media_type: str | None) -> str:
    normalized = (media_type or "").strip().lower()
    if normalized.startswith("video") or normalized in {"reel", "reels"}:
        return "video"
    return "photo"


def find_media_limit_violations(platform: str, media_files: list[dict], *, variant: str | None = None) -> list[str]:
    limits = PLATFORM_MEDIA_LIMITS.get(platform)
    if limits is None:
        return []

    violations: list[str] = []
    for index, media in enumerate(media_files):
        size = media.get("size")
        if not isinstance(size, int) or size <= 0:
            continue
        kind = media_kind(media.get("type"))
        if variant == "story" and limits.story_bytes is not None:
            limit = limits.story_bytes
            kind = "story"
        elif kind == "video":
            limit = limits.video_bytes
        else:
            limit = limits.photo_bytes
        if size > limit:
            name = media.get("name") or f"media[{index}]"
            violations.append(f"{name} exceeds {platform} {kind} limit of {limit // MB}MB")
    return violations
