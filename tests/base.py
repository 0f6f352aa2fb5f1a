import unittest
from unittest import mock

import mongomock
from fastapi.testclient import TestClient

import config
import database
from main import app


class APITestCase(unittest.TestCase):
    """Runs the API against an in-memory MongoDB with the AI gateway in mock mode"""

    def setUp(self):
        self.db = mongomock.MongoClient()["medifinder_test"]
        for patcher in (
            mock.patch.object(database, "db", self.db),
            mock.patch.object(config, "GEMINI_API_KEY", None),
        ):
            patcher.start()
            self.addCleanup(patcher.stop)
        self.client = TestClient(app)

    def register(self, contact="9000000001", name="City Pharmacy", lat=12.9716, lon=77.5946):
        response = self.client.post("/api/auth/register", json={
            "name": name,
            "address": "MG Road, Bengaluru",
            "contact": contact,
            "location": {"lat": lat, "lon": lon},
            "operatingHours": "9am - 9pm",
        })
        self.assertEqual(response.status_code, 201, response.text)
        data = response.json()
        return data["pharmacy"], data["token"]

    def auth(self, token):
        return {"Authorization": f"Bearer {token}"}

    def add_medicine(self, token, **fields):
        body = {"name": "Paracetamol 500mg", "price": 30.5, "quantity": 10}
        body.update(fields)
        response = self.client.post("/api/medicines", json=body, headers=self.auth(token))
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()
