from urllib.parse import quote

from propqr.settings import Settings, settings as default_settings


class UrlBuilder:
    """스캔/매물/익스플로러 URL 조합"""

    def __init__(self, scan_base_url: str, property_base_url: str, explorer_base_url: str):
        self.scan_base_url = scan_base_url.rstrip("/")
        self.property_base_url = property_base_url.rstrip("/")
        self.explorer_base_url = explorer_base_url.rstrip("/")

    @classmethod
    def from_settings(cls, config: Settings = default_settings) -> "UrlBuilder":
        return cls(config.scan_base_url, config.property_base_url, config.explorer_base_url)

    def scan_url(self, subject_id: str) -> str:
        return f"{self.scan_base_url}/scan/{subject_id}"

    def property_url(self, subject_id: str) -> str:
        return f"{self.property_base_url}/property-details/{subject_id}"

    def explorer_url(self, chain_ref: str | None) -> str | None:
        if not chain_ref or not chain_ref.strip():
            return None
        return f"{self.explorer_base_url}/address/{quote(chain_ref.strip(), safe='')}"
