import pytest

from onvif_transport.errors import MalformedResponseError
from onvif_transport.xmlpath import compact_xml, find_path, parse_xml, value_for_path

DOC = b"""<s:Envelope xmlns:s="http://www.w3.org/2003/05/soap-envelope" xmlns:a="urn:a">
  <s:Body>
    <a:Item>  first  </a:Item>
    <a:Item>second</a:Item>
    <a:Empty/>
  </s:Body>
</s:Envelope>"""


def test_value_for_path_ignores_namespaces_and_strips():
    root = parse_xml(DOC)
    assert value_for_path(root, "Envelope.Body.Item") == "first"
    assert value_for_path(root, "Envelope.Body.Empty") == ""


def test_missing_path_is_none():
    root = parse_xml(DOC)
    assert value_for_path(root, "Envelope.Body.Nothing") is None
    assert find_path(root, "Document.Body") is None
    assert find_path(root, "") is None


def test_entities_are_refused():
    bomb = b'<!DOCTYPE x [<!ENTITY a "aaaa">]><x>&a;</x>'
    with pytest.raises(MalformedResponseError):
        parse_xml(bomb)


def test_compact_xml():
    assert compact_xml("  <a>\n  <b>x   y</b>\n</a>\n") == "<a><b>x y</b></a>"
