"""Install-referrer payload parsing.

The platform hands over the raw referrer as a URL query string, e.g.
``utm_source=google-play&utm_campaign=DDGRAxyz``. Parsing is pure and total:
anything that does not carry a usable campaign yields ``None``.
"""

from __future__ import annotations

from collections.abc import Iterable
from urllib.parse import parse_qs


class QueryParamReferrerParser:
    """Extract the campaign value from a query-string referrer.

    Args:
        campaign_param: Query parameter holding the campaign.
        campaign_prefixes: Accepted prefixes. When given, the campaign must
            start with one of them and the remainder is returned; when empty,
            the campaign value is returned verbatim.

    Example:
        >>> QueryParamReferrerParser().parse("utm_campaign=xyz")
        'xyz'
        >>> QueryParamReferrerParser(campaign_prefixes=["DDGRA"]).parse("utm_campaign=DDGRAxyz")
        'xyz'
    """

    def __init__(
        self,
        campaign_param: str = "utm_campaign",
        campaign_prefixes: Iterable[str] = (),
    ):
        self.campaign_param = campaign_param
        # longest first so "DDGRAB" wins over "DDGRA"
        self.campaign_prefixes = tuple(
            sorted((p for p in campaign_prefixes if p), key=len, reverse=True)
        )

    def parse(self, raw: str) -> str | None:
        if not isinstance(raw, str) or not raw.strip():
            return None

        params = parse_qs(raw.strip().lstrip("?"), keep_blank_values=False)
        values = params.get(self.campaign_param)
        if not values:
            return None
        campaign = values[0].strip()

        if not self.campaign_prefixes:
            return campaign or None

        for prefix in self.campaign_prefixes:
            if campaign.startswith(prefix):
                return campaign[len(prefix):] or None
        return None


__all__ = ["QueryParamReferrerParser"]
