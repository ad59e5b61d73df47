"""Header value encoding for user-supplied filenames."""
import re
from urllib.parse import quote_plus

# the filename is everything between the first `filename="` and the next quote
FILENAME_PATTERN = re.compile(r'(?<=filename=")[^"]+(?=")')


def encode_content_disposition(content_disposition: str) -> str:
    """
    Percent-encode the filename inside a Content-Disposition value.

    S3 signs request headers, and signing fails for non-ASCII bytes, so the
    filename is URL-encoded. Only the filename is touched; the directive and
    the ``filename=`` keyword stay literal. ``quote_plus`` turns spaces into
    ``+`` and browsers do not decode that back in this header, so every
    ``+`` is turned back into a space.

    Args:
        content_disposition: e.g. ``inline; filename="résumé.pdf"``

    Returns:
        The value with its filename encoded, or the input unchanged when it
        carries no ``filename="..."`` segment.
    """
    return FILENAME_PATTERN.sub(
        lambda match: quote_plus(match.group(0)).replace("+", " "),
        content_disposition,
        count=1,
    )
