import base64
import binascii

from sandcastle.core.exceptions import DecodeError
from sandcastle.schemas.gmail import MimePart


def decode_base64url(data: str) -> str:
    """Decode a Gmail base64url body segment, restoring stripped padding."""
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.b64decode(padded, altchars=b"-_", validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64url body: {e}") from e
    return raw.decode("utf-8", errors="replace")


def decode_body(part: MimePart) -> str:
    """
    Concatenate every decodable body in the part tree, depth first.

    Plain-text and HTML parts are both included; markup is stripped later
    by the extractor.
    """
    if part is None:
        return ""
    chunks = [decode_base64url(part.body)] if part.body else []
    for child in part.parts:
        chunks.append(decode_body(child))
    # newline keeps numbers in adjacent parts from running together
    return "\n".join(c for c in chunks if c)
