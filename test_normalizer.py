#!/usr/bin/env python3
"""
Tests for response normalization across v2 JSON, v4 JSON and Atom/XML.
"""

import json
import unittest

from odata_mcp_bridge import OriginRequestError
from odata_mcp_bridge.normalizer import ResponseNormalizer, parse_legacy_date
from odata_mcp_bridge.session import HttpResponse


def make_response(status_code=200, body=b"", content_type=None):
    if isinstance(body, (dict, list)):
        body = json.dumps(body).encode("utf-8")
        content_type = content_type or "application/json"
    elif isinstance(body, str):
        body = body.encode("utf-8")
    return HttpResponse(status_code, body, {"Content-Type": content_type} if content_type else None)


ATOM_FEED = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom"
      xmlns:m="http://schemas.microsoft.com/ado/2007/08/dataservices/metadata"
      xmlns:d="http://schemas.microsoft.com/ado/2007/08/dataservices">
  <id>https://example.com/odata/ProductService.svc/Products</id>
  <m:count>3</m:count>
  <entry>
    <id>https://example.com/odata/ProductService.svc/Products(1)</id>
    <content type="application/xml">
      <m:properties>
        <d:ID m:type="Edm.Int32">1</d:ID>
        <d:Name>Widget</d:Name>
        <d:Rating m:type="Edm.Int32" m:null="true"/>
        <d:Active m:type="Edm.Boolean">true</d:Active>
      </m:properties>
    </content>
  </entry>
  <entry>
    <id>https://example.com/odata/ProductService.svc/Products(2)</id>
    <content type="application/xml">
      <m:properties>
        <d:ID m:type="Edm.Int32">2</d:ID>
        <d:Name>Gadget</d:Name>
        <d:Rating m:type="Edm.Int32">4</d:Rating>
        <d:Active m:type="Edm.Boolean">false</d:Active>
      </m:properties>
    </content>
  </entry>
  <link rel="next" href="https://example.com/odata/ProductService.svc/Products?$skiptoken=2"/>
</feed>
"""

ATOM_ENTRY = """<?xml version="1.0" encoding="utf-8"?>
<entry xmlns="http://www.w3.org/2005/Atom"
       xmlns:m="http://schemas.microsoft.com/ado/2007/08/dataservices/metadata"
       xmlns:d="http://schemas.microsoft.com/ado/2007/08/dataservices">
  <id>https://example.com/odata/ProductService.svc/Products(1)</id>
  <content type="application/xml">
    <m:properties>
      <d:ID m:type="Edm.Int32">1</d:ID>
      <d:Price m:type="Edm.Decimal">19.99</d:Price>
      <d:Address>
        <d:City>Berlin</d:City>
      </d:Address>
    </m:properties>
  </content>
</entry>
"""


class TestLegacyDates(unittest.TestCase):

    def test_parse_legacy_date(self):
        self.assertEqual(parse_legacy_date("/Date(1672531200000)/"), "2023-01-01T00:00:00Z")
        self.assertEqual(parse_legacy_date("/Date(1672531200000+0100)/"), "2023-01-01T00:00:00Z")
        self.assertEqual(parse_legacy_date("/Date(-86400000)/"), "1969-12-31T00:00:00Z")
        self.assertIsNone(parse_legacy_date("2023-01-01"))

    def test_conversion_can_be_disabled(self):
        body = {"d": {"ReleaseDate": "/Date(1672531200000)/"}}
        self.assertEqual(ResponseNormalizer().normalize(make_response(200, body)),
                         {"ReleaseDate": "2023-01-01T00:00:00Z"})
        self.assertEqual(ResponseNormalizer(legacy_dates=False).normalize(make_response(200, body)),
                         {"ReleaseDate": "/Date(1672531200000)/"})


class TestJsonResponses(unittest.TestCase):

    def setUp(self):
        self.normalizer = ResponseNormalizer(max_items=100)

    def test_v2_collection_with_count(self):
        body = {"d": {"results": [
            {"__metadata": {"uri": "Products(1)", "type": "Catalog.Product"}, "ID": 1,
             "Category": {"__deferred": {"uri": "Products(1)/Category"}}},
            {"__metadata": {"uri": "Products(2)"}, "ID": 2,
             "Category": {"__deferred": {"uri": "Products(2)/Category"}}},
        ], "__count": "10"}}
        result = self.normalizer.normalize(make_response(200, body), skip=4)
        self.assertEqual(result["results"], [{"ID": 1}, {"ID": 2}])
        self.assertEqual(result["pagination"], {"total_count": 10, "has_more": True, "next_skip": 6})

    def test_v2_next_link(self):
        body = {"d": {"results": [{"ID": 1}],
                      "__next": "https://example.com/odata/ProductService.svc/Products?$skiptoken='1'"}}
        pagination = self.normalizer.normalize(make_response(200, body))["pagination"]
        self.assertEqual(pagination, {"has_more": True, "next_skiptoken": "'1'"})

    def test_v2_last_page(self):
        body = {"d": {"results": [{"ID": 9}, {"ID": 10}], "__count": "10"}}
        pagination = self.normalizer.normalize(make_response(200, body), skip=8)["pagination"]
        self.assertEqual(pagination, {"total_count": 10, "has_more": False})

    def test_v2_expanded_navigation(self):
        body = {"d": {"ID": 1, "Items": {"results": [{"__metadata": {}, "No": 1}]}}}
        self.assertEqual(self.normalizer.normalize(make_response(200, body)), {"ID": 1, "Items": [{"No": 1}]})

    def test_response_metadata_is_kept_on_request(self):
        body = {"d": {"__metadata": {"uri": "Products(1)"}, "ID": 1}}
        result = ResponseNormalizer(response_metadata=True).normalize(make_response(200, body))
        self.assertEqual(result["__metadata"], {"uri": "Products(1)"})

    def test_v4_collection(self):
        body = {"@odata.context": "$metadata#People", "@odata.count": 3,
                "value": [{"UserName": "a"}, {"UserName": "b"}]}
        result = self.normalizer.normalize(make_response(200, body))
        self.assertEqual(result["results"], [{"UserName": "a"}, {"UserName": "b"}])
        self.assertEqual(result["pagination"], {"total_count": 3, "has_more": True, "next_skip": 2})

    def test_v4_single_entity_and_primitive(self):
        entity = {"@odata.context": "$metadata#People/$entity", "UserName": "russell"}
        self.assertEqual(self.normalizer.normalize(make_response(200, entity)), {"UserName": "russell"})
        primitive = {"@odata.context": "$metadata#Edm.Int32", "value": 7}
        self.assertEqual(self.normalizer.normalize(make_response(200, primitive)), {"result": 7})

    def test_v2_primitive_function_result(self):
        body = {"d": {"DiscontinueProduct": False}}
        self.assertEqual(self.normalizer.normalize(make_response(200, body), primitive=True), {"result": False})
        self.assertEqual(self.normalizer.normalize(make_response(200, body)), {"DiscontinueProduct": False})

    def test_max_items_truncation(self):
        body = {"d": {"results": [{"ID": i} for i in range(5)]}}
        result = ResponseNormalizer(max_items=3).normalize(make_response(200, body), skip=10)
        self.assertEqual([item["ID"] for item in result["results"]], [0, 1, 2])
        self.assertEqual(result["pagination"], {"has_more": True, "truncated": True, "max_items": 3,
                                                "next_skip": 13})

    def test_invalid_json(self):
        with self.assertRaises(OriginRequestError):
            self.normalizer.normalize(make_response(200, b"{not json", "application/json"))


class TestOtherResponses(unittest.TestCase):

    def setUp(self):
        self.normalizer = ResponseNormalizer()

    def test_no_content(self):
        self.assertEqual(self.normalizer.normalize(make_response(204)),
                         {"message": "Operation successful (No content returned)."})

    def test_plain_text(self):
        self.assertEqual(self.normalizer.normalize(make_response(200, "42", "text/plain")), {"result": "42"})

    def test_oversized_response(self):
        normalizer = ResponseNormalizer(max_response_size=10)
        with self.assertRaises(OriginRequestError) as ctx:
            normalizer.normalize(make_response(200, {"d": {"results": []}}))
        self.assertIn("exceeds maximum allowed", ctx.exception.message)

    def test_atom_feed(self):
        result = self.normalizer.normalize(make_response(200, ATOM_FEED, "application/atom+xml"))
        self.assertEqual(result["results"], [
            {"ID": 1, "Name": "Widget", "Rating": None, "Active": True},
            {"ID": 2, "Name": "Gadget", "Rating": 4, "Active": False},
        ])
        self.assertEqual(result["pagination"], {"total_count": 3, "has_more": True, "next_skiptoken": "2"})

    def test_atom_entry(self):
        result = self.normalizer.normalize(make_response(200, ATOM_ENTRY, "application/atom+xml"))
        self.assertEqual(result, {"ID": 1, "Price": "19.99", "Address": {"City": "Berlin"}})

    def test_malformed_xml(self):
        with self.assertRaises(OriginRequestError):
            self.normalizer.normalize(make_response(200, "<feed><entry>", "application/xml"))


if __name__ == "__main__":
    unittest.main()
