"""Gallery listing helpers for the Flux Gallery API.

The reconstructed gallery is a plain newest-first list of
:class:`~fluxgallery.core.records.GalleryEntry`.  These helpers keep the HTTP
concerns (wire format, filtering, pagination) out of the route handlers and
out of the core.
"""

from __future__ import annotations

from fluxgallery.core.records import GalleryEntry


def serialize_entry(entry: GalleryEntry) -> dict:
    """Convert a gallery entry to its JSON wire form.

    The metadata record uses its persisted field names (``imageUrl``), so a
    client sees the same document that is stored in the sidecar.
    """
    return {
        "url": entry.url,
        "metadata": entry.metadata.model_dump(by_alias=True),
        "timestamp": entry.timestamp,
        "synthesized": entry.synthesized,
    }


def filter_gallery_entries(
    entries: list[GalleryEntry],
    *,
    model: str | None = None,
    with_metadata_only: bool = False,
) -> list[GalleryEntry]:
    """Apply model and metadata filters to gallery entries.

    Args:
        entries: Source gallery entries.
        model: Optional canonical model id to filter by.
        with_metadata_only: Whether to drop entries with synthesized metadata.

    Returns:
        Filtered gallery entries in their original order.
    """
    filtered_entries = entries

    if with_metadata_only:
        filtered_entries = [entry for entry in filtered_entries if not entry.synthesized]

    if model:
        filtered_entries = [entry for entry in filtered_entries if entry.metadata.model == model]

    return filtered_entries


def paginate_gallery_entries(entries: list[GalleryEntry], page: int, per_page: int) -> dict:
    """Paginate gallery entries and clamp the requested page to valid bounds.

    Clamping keeps a client that asks for a page past the end (for example
    after artifacts were removed outside the application) on the last page
    that actually exists.

    Args:
        entries: Filtered gallery entries.
        page: Requested one-based page number.
        per_page: Requested items per page.

    Returns:
        Dictionary containing ``total``, ``page``, ``per_page``, ``pages``, and
        ``images`` (serialized entries) for the resolved page.
    """
    total = len(entries)
    pages = (total + per_page - 1) // per_page if total > 0 else 1
    resolved_page = min(max(page, 1), pages)

    start = (resolved_page - 1) * per_page
    end = start + per_page

    return {
        "total": total,
        "page": resolved_page,
        "per_page": per_page,
        "pages": pages,
        "images": [serialize_entry(entry) for entry in entries[start:end]],
    }
