import json
import os
import tempfile
import unittest
from unittest import mock

import requests

from client import MediFinderClient, SessionContext, api_base_url


def http_response(status_code=200, payload=None):
    response = requests.Response()
    response.status_code = status_code
    response._content = (b"null" if payload is None else json.dumps(payload).encode())
    response.url = "http://test/api"
    return response


class SessionContextTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.path = os.path.join(self.tmp.name, "session.json")

    def test_login_persists_and_logout_clears(self):
        session = SessionContext(path=self.path)
        session.login("tok", {"id": "p1", "name": "City Pharmacy"})

        restored = SessionContext.load(self.path)
        self.assertTrue(restored.is_authenticated)
        self.assertEqual(restored.pharmacy["name"], "City Pharmacy")

        restored.clear()
        self.assertFalse(os.path.exists(self.path))
        self.assertFalse(SessionContext.load(self.path).is_authenticated)

    def test_unreadable_file(self):
        with open(self.path, "w") as fh:
            fh.write("{not json")
        self.assertIsNone(SessionContext.load(self.path).token)


class ClientTests(unittest.TestCase):
    def setUp(self):
        self.http = mock.Mock(spec=requests.Session)
        self.client = MediFinderClient("http://localhost:8000", http=self.http)

    def test_base_url_normalised(self):
        self.assertEqual(api_base_url("http://host:5000/"), "http://host:5000/api")
        self.assertEqual(api_base_url("http://host/api"), "http://host/api")

    def test_login_stores_token_and_sends_it(self):
        self.http.request.return_value = http_response(payload={"token": "tok", "pharmacy": {"id": "p1"}})
        self.assertEqual(self.client.login_by_phone("9000"), {"id": "p1"})

        self.http.request.return_value = http_response(payload=[])
        self.client.pharmacy_reservations()
        args, kwargs = self.http.request.call_args
        self.assertEqual(args, ("GET", "http://localhost:8000/api/reservations/pharmacy"))
        self.assertEqual(kwargs["headers"], {"Authorization": "Bearer tok"})

    def test_unknown_phone_means_register(self):
        self.http.request.return_value = http_response(404, {"detail": "Pharmacy not found"})
        self.assertIsNone(self.client.login_by_phone("0000"))
        self.assertFalse(self.client.session.is_authenticated)

    def test_other_errors_propagate(self):
        self.http.request.return_value = http_response(500, {"detail": "boom"})
        with self.assertRaises(requests.HTTPError):
            self.client.login_by_phone("9000")

    def test_reservation_payload_is_camel_case(self):
        self.http.request.return_value = http_response(201, {"id": "r1"})
        self.client.create_reservation("m1", "p1", "Asha", "98")
        self.assertEqual(self.http.request.call_args.kwargs["json"], {
            "medicineId": "m1", "pharmacyId": "p1", "customerName": "Asha", "customerPhone": "98",
        })
