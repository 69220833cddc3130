from __future__ import annotations

from typing import Sequence

from fors.exceptions import QualityNotFoundError
from fors.stream.hls.segment import StreamVariant


def select_variant(variants: Sequence[StreamVariant], quality: str) -> StreamVariant:
    """
    Pick a variant by quality name.

    ``best`` and ``worst`` select by bandwidth (the first variant wins on ties), any other
    value is looked up case-insensitively in the aliases of each variant.

    :raises QualityNotFoundError: if no variant matches
    """
    quality = quality.lower()

    if variants:
        if quality == "best":
            return max(variants, key=lambda variant: variant.bandwidth)
        if quality == "worst":
            return min(variants, key=lambda variant: variant.bandwidth)

        for variant in variants:
            if quality in variant.aliases:
                return variant

    raise QualityNotFoundError(quality, (variant.label for variant in sorted_variants(variants)))


def sorted_variants(variants: Sequence[StreamVariant]) -> list[StreamVariant]:
    return sorted(variants, key=lambda variant: variant.bandwidth, reverse=True)
