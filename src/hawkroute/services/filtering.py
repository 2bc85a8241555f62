"""Temporal and commodity filters applied to buyer requests."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from ..models.domain import BuyerRequest


def is_eligible(request: BuyerRequest, reference_time: datetime) -> bool:
    return reference_time < request.expiration and bool(request.commodities)


def eligible_requests(requests: Iterable[BuyerRequest], reference_time: datetime) -> list[BuyerRequest]:
    """Drop requests that have expired at ``reference_time`` or name no commodity.

    Dropped requests are not errors and nothing is deleted from storage;
    input order is preserved.
    """

    return [request for request in requests if is_eligible(request, reference_time)]


def normalize_commodity(name: str) -> str:
    """Case-fold a commodity name and collapse its whitespace."""
    return " ".join(name.split()).casefold()


def matching_requests(requests: Iterable[BuyerRequest], commodities: Iterable[str]) -> list[BuyerRequest]:
    """Keep requests sharing at least one commodity with ``commodities``."""

    offered = {normalize_commodity(item) for item in commodities}
    if not offered:
        return []
    return [
        request
        for request in requests
        if any(normalize_commodity(item) in offered for item in request.commodities)
    ]
