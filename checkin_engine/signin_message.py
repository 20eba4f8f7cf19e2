"""
Sign-in Message

Builds the text the wallet signs to log in to the check-in service. The
layout must match what the service verifies, byte for byte.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


EXPIRATION = timedelta(hours=24)


def format_timestamp(moment: datetime) -> str:
    """UTC ISO-8601 with millisecond precision, e.g. 2025-09-01T08:30:00.123Z"""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime('%Y-%m-%dT%H:%M:%S.') + f"{moment.microsecond // 1000:03d}Z"


def build_signin_message(
    domain: str,
    uri: str,
    address: str,
    chain_id: int,
    nonce: str,
    issued_at: Optional[datetime] = None
) -> str:
    """
    Build the sign-in message

    Args:
        domain: Service domain shown in the first line (e.g. of.apr.io)
        uri: Service URI
        address: Checksummed wallet address
        chain_id: Chain id of the network
        nonce: Server-issued nonce
        issued_at: Issue time (default: now, UTC); expiry is issued_at + 24h

    Returns:
        Message text; identical inputs give identical output
    """
    if issued_at is None:
        issued_at = datetime.now(timezone.utc)

    return (
        f"{domain} wants you to sign in with your Ethereum account:\n"
        f"{address}\n"
        f"\n"
        f"Please sign this message to verify your account ownership.\n"
        f"\n"
        f"URI: {uri}\n"
        f"Version: 1\n"
        f"Chain ID: {chain_id}\n"
        f"Nonce: {nonce}\n"
        f"Issued At: {format_timestamp(issued_at)}\n"
        f"Expiration Time: {format_timestamp(issued_at + EXPIRATION)}"
    )
