"""Tests for outbound link rewriting."""

import pytest

from dealfeed.core.exceptions import InvalidRedirectTarget
from dealfeed.services.link_rewriter import LinkRewriter, render_redirect_page


class TestLinkRewriter:
    """Tests for affiliate and UTM parameter injection."""

    def test_affiliate_param_by_host_suffix(self):
        rewriter = LinkRewriter(affiliate_params={"banggood.com": "p=AFF", "aliexpress.com": "aff_fcid=9"})

        url = rewriter.rewrite("https://m.banggood.com/item.html")

        assert url.startswith("https://m.banggood.com/item.html?p=AFF&utm_source=dealfeed")

    def test_lookalike_host_gets_no_affiliate(self):
        rewriter = LinkRewriter(affiliate_params={"banggood.com": "p=AFF"})

        url = rewriter.rewrite("https://notbanggood.com/item")

        assert "p=AFF" not in url

    def test_existing_params_never_overwritten(self):
        rewriter = LinkRewriter(affiliate_params={"banggood.com": "p=AFF"})

        url = rewriter.rewrite(
            "https://www.banggood.com/x?p=THEIRS&utm_campaign=spring", source="sheets", coupon_code="Z"
        )

        assert "p=THEIRS" in url
        assert "p=AFF" not in url
        assert "utm_campaign=spring" in url
        assert "utm_campaign=deals" not in url
        assert url.endswith("utm_content=sheets&utm_term=Z")

    def test_https_forced_and_fragment_kept(self):
        url = LinkRewriter().rewrite("http://x.com/a#reviews")
        assert url == "https://x.com/a?utm_source=dealfeed&utm_medium=referral&utm_campaign=deals#reviews"

    def test_original_query_kept_verbatim(self):
        url = LinkRewriter().rewrite("https://x.com/a?flag&q=a%20b")
        assert url == "https://x.com/a?flag&q=a%20b&utm_source=dealfeed&utm_medium=referral&utm_campaign=deals"

    def test_blank_source_and_code_omitted(self):
        url = LinkRewriter().rewrite("https://x.com/a", source=" ", coupon_code="")
        assert "utm_content" not in url
        assert "utm_term" not in url

    def test_malformed_affiliate_config_ignored(self):
        rewriter = LinkRewriter(affiliate_params={"x.com": "novalue"})
        assert rewriter.rewrite("https://x.com/a").startswith("https://x.com/a?utm_source=")

    @pytest.mark.parametrize(
        "target, message",
        [
            (None, "Missing u"),
            ("   ", "Missing u"),
            ("ftp://x.com/file", "Invalid u"),
            ("x.com/a", "Invalid u"),
            ("https://", "Invalid u"),
            ("http://[::1", "Invalid u"),
        ],
    )
    def test_invalid_targets(self, target, message):
        with pytest.raises(InvalidRedirectTarget) as exc:
            LinkRewriter().rewrite(target)
        assert exc.value.message.startswith(message)


class TestRedirectPage:
    """Tests for the self-redirecting HTML page."""

    def test_url_escaped_in_every_position(self):
        page = render_redirect_page('https://x.com/a?q="</script><b>&r=1')

        assert "</script><b>" not in page.split("<script>", 1)[1].split("</script>", 1)[0]
        assert 'content="0;url=https://x.com/a?q=&quot;&lt;/script&gt;&lt;b&gt;&amp;r=1"' in page
        assert 'rel="noreferrer noopener"' in page
