import pytest

from propqr.services.qr_encoder import QrEncoder
from propqr.services.redirect_page import render_error_page, render_redirect_page
from propqr.services.redirect_service import RedirectPlan
from propqr.url_builder import UrlBuilder


def _plan(**overrides):
    values = dict(
        subject_id="p1",
        primary_url="https://app.example.com/property-details/p1",
        secondary_url=None,
        redirect_type="single",
        resource_version=1,
        resource_status="ACTIVE",
        display_name="Lakeside Villa",
    )
    values.update(overrides)
    return RedirectPlan(**values)


@pytest.mark.unit
class TestUrlBuilder:

    def test_urls(self):
        urls = UrlBuilder("https://qr.example.com/", "https://app.example.com", "https://scan.example.com")
        assert urls.scan_url("p1") == "https://qr.example.com/scan/p1"
        assert urls.property_url("p1") == "https://app.example.com/property-details/p1"
        assert urls.explorer_url(" 0xabc ") == "https://scan.example.com/address/0xabc"

    @pytest.mark.parametrize("chain_ref", [None, "", "   "])
    def test_blank_chain_ref_has_no_explorer_url(self, chain_ref):
        urls = UrlBuilder("https://a", "https://b", "https://c")
        assert urls.explorer_url(chain_ref) is None


@pytest.mark.unit
class TestRedirectPage:

    def test_single_redirect(self):
        page = render_redirect_page(_plan(), delay_seconds=3)
        assert 'window.location.href = "https://app.example.com/property-details/p1"' in page
        assert "}, 3000);" in page
        assert "window.open" not in page
        assert 'data-redirect-type="single"' in page

    def test_dual_redirect_opens_explorer(self):
        plan = _plan(
            secondary_url="https://scan.example.com/address/0xabc",
            redirect_type="dual",
        )
        page = render_redirect_page(plan, delay_seconds=0)
        assert 'window.open("https://scan.example.com/address/0xabc"' in page
        assert "View on Blockchain" in page

    def test_display_name_is_escaped(self):
        page = render_redirect_page(_plan(display_name="<script>alert(1)</script>"))
        assert "<script>alert(1)</script>" not in page
        assert "&lt;script&gt;" in page

    def test_script_breakout_is_escaped(self):
        page = render_redirect_page(_plan(primary_url="https://x/</script><b>"))
        assert "</script><b>" not in page

    def test_error_page(self):
        page = render_error_page("Not found", "QR <code> missing")
        assert "QR &lt;code&gt; missing" in page


@pytest.mark.unit
def test_qr_encoder_renders_png():
    data = QrEncoder(box_size=2, border=1).encode('{"type":"resource-link","subject_id":"p1","scan_url":"https://x/scan/p1"}')
    assert data.startswith(b"\x89PNG\r\n\x1a\n")
