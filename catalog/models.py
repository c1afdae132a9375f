"""Catalog sources, media kinds and fetched metadata."""

from enum import StrEnum

from pydantic import BaseModel


class CatalogSource(StrEnum):
    TMDB = "TMDB"
    BGM = "BGM.TV"


class MediaKind(StrEnum):
    MOVIE = "电影"
    TV = "电视剧"


# Suffix stored after the provider in media_requests.source ("TMDB/TV").
KIND_SUFFIX = {MediaKind.MOVIE: "Movie", MediaKind.TV: "TV"}
TMDB_PATH = {MediaKind.MOVIE: "movie", MediaKind.TV: "tv"}


def source_tag(source: CatalogSource, kind: MediaKind) -> str:
    """Build the catalog source tag persisted with a request.

    BGM.TV subject ids are shared by every kind, so the tag omits the kind and
    duplicate detection stays correct across kinds.
    """
    if source == CatalogSource.BGM:
        return source.value
    return f"{source.value}/{KIND_SUFFIX[kind]}"


def parse_source_tag(tag: str) -> tuple[CatalogSource, MediaKind]:
    """Inverse of ``source_tag``. Raises ValueError for unknown tags."""
    provider, _, suffix = tag.partition("/")
    source = CatalogSource(provider)
    if not suffix:
        return source, MediaKind.TV
    for kind, name in KIND_SUFFIX.items():
        if name.lower() == suffix.lower():
            return source, kind
    raise ValueError(f"Unknown media kind in source tag: {tag}")


def catalog_url(source: CatalogSource, kind: MediaKind, media_id: str) -> str:
    """Public web page of a catalog item."""
    if source == CatalogSource.BGM:
        return f"https://bgm.tv/subject/{media_id}"
    return f"https://www.themoviedb.org/{TMDB_PATH[kind]}/{media_id}"


class MediaInfo(BaseModel):
    """Title, summary and poster fetched from a catalog."""

    title: str
    summary: str | None = None
    poster: str | None = None
