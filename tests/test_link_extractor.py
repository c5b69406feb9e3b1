"""Tests for sitemirror.crawler.link_extractor."""

from __future__ import annotations

from sitemirror.crawler.link_extractor import LinkExtractor, MailLinkLog, resolve_reference

BASE = "http://x/dir/page.html"


def extract(content, base=BASE, mail_log=None):
    return LinkExtractor(mail_log if mail_log is not None else MailLinkLog()).extract(base, content)


class TestRecognizedTags:
    def test_all_tag_attribute_pairs(self):
        content = (
            '<img src="i.gif">'
            '<a href="a.html">'
            '<body background="bg.jpg">'
            '<frame src="f.html">'
            '<link href="s.css">'
            '<embed src="m.swf">'
        )
        assert extract(content) == [
            "http://x/dir/i.gif",
            "http://x/dir/a.html",
            "http://x/dir/bg.jpg",
            "http://x/dir/f.html",
            "http://x/dir/s.css",
            "http://x/dir/m.swf",
        ]

    def test_case_insensitive(self):
        content = '<IMG SRC="up.gif"> <A HREF="/Upper"> <Img Src="mixed.png">'
        links = extract(content)
        assert "http://x/dir/up.gif" in links
        assert "http://x/Upper" in links
        assert "http://x/dir/mixed.png" in links

    def test_attribute_after_other_attributes(self):
        content = '<a class="nav" id="home"\n   href="../index.html">Home</a>'
        assert extract(content) == ["http://x/index.html"]

    def test_single_quoted_value(self):
        assert extract("<a href='other.html'>") == ["http://x/dir/other.html"]

    def test_document_order_within_a_tag(self):
        content = '<a href="/one"> <a href="/two"> <a href="/three">'
        assert extract(content) == ["http://x/one", "http://x/two", "http://x/three"]

    def test_similar_tag_names_not_matched(self):
        content = '<abbr href="/abbr"> <address href="/addr"> <a href="/real">'
        assert extract(content) == ["http://x/real"]

    def test_prefixed_attribute_not_matched(self):
        assert extract('<img data-src="/lazy.png" src="/real.png">') == ["http://x/real.png"]

    def test_attribute_outside_tag_ignored(self):
        assert extract('<a name="top"> href="/not-a-link"') == []


class TestResolution:
    def test_absolute_urls_kept(self):
        assert extract('<a href="https://other.org/page">') == ["https://other.org/page"]

    def test_fragment_stripped(self):
        assert extract('<a href="/doc.html#part2">') == ["http://x/doc.html"]

    def test_fragment_only_reference_dropped(self):
        assert extract('<a href="#top">') == []

    def test_duplicates_collapsed(self):
        content = '<a href="/a"> <a href="http://x/a"> <a href="/a#frag"> <img src="/a">'
        assert extract(content) == ["http://x/a"]

    def test_non_http_schemes_dropped(self):
        assert extract('<a href="javascript:void(0)"> <a href="ftp://x/file">') == []

    def test_malformed_reference_dropped_without_aborting(self):
        content = '<a href="http://[::1/broken"> <a href="/fine">'
        assert extract(content) == ["http://x/fine"]

    def test_resolve_reference_rejects_markup(self):
        assert resolve_reference(BASE, 'http://x/b <a href=') is None


class TestTolerance:
    def test_truncated_tag_contributes_nothing(self):
        content = '<a href="http://x/a"> some text <img src="http://x/b'
        assert extract(content) == ["http://x/a"]

    def test_unclosed_quote_inside_tag(self):
        assert extract('<a href="http://x/a>') == []

    def test_no_recognized_tags(self):
        assert extract("<html><p>nothing to see</p></html>") == []

    def test_empty_document(self):
        assert extract("") == []

    def test_garbage(self):
        assert extract('<<<a href=>>"<img src=\'\'><a') == []

    def test_unquoted_attribute_ignored(self):
        assert extract("<a href=/unquoted>") == []


class TestMailLinks:
    def test_mailto_goes_to_mail_log(self):
        mail_log = MailLinkLog()
        found = LinkExtractor(mail_log).scan(BASE, '<a href="mailto:me@x.com">Mail me</a>')
        assert found.links == []
        assert found.mail_links == ["mailto:me@x.com"]
        assert mail_log.count == 1

    def test_mailto_case_insensitive(self):
        found = LinkExtractor().scan(BASE, '<A HREF="MailTo:Boss@X.com">')
        assert found.mail_links == ["MailTo:Boss@X.com"]

    def test_scan_reports_only_this_page(self):
        mail_log = MailLinkLog()
        extractor = LinkExtractor(mail_log)
        first = extractor.scan("http://x/one", '<a href="mailto:a@x.com"> <a href="/two">')
        second = extractor.scan("http://x/two", '<a href="mailto:b@x.com">')
        assert first.mail_links == ["mailto:a@x.com"]
        assert first.links == ["http://x/two"]
        assert second.mail_links == ["mailto:b@x.com"]
        assert mail_log.count == 2

    def test_empty_log_is_still_used(self, tmp_path):
        path = tmp_path / "mailto.txt"
        mail_log = MailLinkLog(path)
        assert mail_log.count == 0
        extract('<a href="mailto:a@x.com">', mail_log=mail_log)
        assert path.read_text() == "mailto:a@x.com\n"
        assert mail_log.count == 1

    def test_log_file_one_reference_per_line(self, tmp_path):
        path = tmp_path / "logs" / "mailto.txt"
        mail_log = MailLinkLog(path)
        extract('<a href="mailto:a@x.com"> <a href="mailto:b@x.com?subject=hi">', mail_log=mail_log)
        assert path.read_text().splitlines() == ["mailto:a@x.com", "mailto:b@x.com?subject=hi"]

    def test_append_failure_is_not_fatal(self, tmp_path, caplog):
        # a directory cannot be opened for appending
        mail_log = MailLinkLog(tmp_path)
        links = extract('<a href="mailto:a@x.com"> <a href="/next">', mail_log=mail_log)
        assert links == ["http://x/next"]
        assert mail_log.count == 1
        assert "Could not append mailto link" in caplog.text
