# Overview: Packet/piece conversion arithmetic shared by stock and sales services.

"""
Unit conversion between (packets, pieces) and absolute piece counts.

Pieces are the atomic unit of stock. A packet is a per-tile bundle of
`items_per_packet` pieces. Everything persisted is in pieces; packets only
exist at the input boundary and in audit records.
"""

from __future__ import annotations

from ..errors import InvalidQuantity
from ..validation import MAX_QUANTITY, coerce_int


def effective_items_per_packet(items_per_packet) -> int:
    """Missing or zero packet size falls back to 1."""
    if not items_per_packet or items_per_packet < 1:
        return 1
    return int(items_per_packet)


def to_pieces(packets: int, pieces: int, items_per_packet: int | None) -> int:
    return packets * effective_items_per_packet(items_per_packet) + pieces


def to_packets_and_loose(total_pieces: int, items_per_packet: int | None) -> tuple[int, int]:
    ipp = effective_items_per_packet(items_per_packet)
    return total_pieces // ipp, total_pieces % ipp


def parse_packets_and_pieces(packets, pieces) -> tuple[int, int]:
    """
    Validate a packets/pieces pair from caller input.

    - None counts as 0
    - negatives, decimals, booleans and values above MAX_QUANTITY raise
      InvalidQuantity naming the field
    - at least one of the two must be positive
    """
    packets = 0 if packets is None else coerce_int(
        packets, "packets", minimum=0, maximum=MAX_QUANTITY, error_cls=InvalidQuantity,
    )
    pieces = 0 if pieces is None else coerce_int(
        pieces, "pieces", minimum=0, maximum=MAX_QUANTITY, error_cls=InvalidQuantity,
    )
    if packets <= 0 and pieces <= 0:
        raise InvalidQuantity(
            "At least packets or pieces must be greater than 0",
            {"packets": packets, "pieces": pieces},
        )
    return packets, pieces
