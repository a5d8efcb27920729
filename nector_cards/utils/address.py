"""Two-line address wrapping for the card face."""

ADDRESS_PLACEHOLDER = "Address not provided"


def wrap_address(
    address: str | None,
    line_width: int,
    placeholder: str = ADDRESS_PLACEHOLDER,
) -> tuple[str, str]:
    """Split an address into two display lines, preferring a word boundary.

    The split point is the rightmost space at or before ``line_width``; with no
    space in that range the text is cut at exactly ``line_width``. Only one
    split is made, so the second line may itself be longer than ``line_width``.

    Args:
        address: Free-text address, may be empty or None
        line_width: Maximum characters on the first line
        placeholder: Text shown on the first line when there is no address

    Returns:
        (line1, line2), line2 empty when the address fits on one line
    """
    if line_width < 1:
        raise ValueError("line_width must be positive")

    if not address:
        return placeholder, ""

    if len(address) <= line_width:
        return address, ""

    split_point = address.rfind(" ", 0, line_width + 1)
    if split_point == -1:
        split_point = line_width

    return address[:split_point].strip(), address[split_point:].strip()
