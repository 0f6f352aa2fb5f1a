from tests.base import APITestCase


class MedicineSearchTests(APITestCase):
    def setUp(self):
        super().setUp()
        self.pharmacy, self.token = self.register()
        self.medicine = self.add_medicine(self.token, name="Dolo 650", price=31)
        self.add_medicine(self.token, name="Aspirin 75mg", price=15.5)

    def test_search_is_case_insensitive_substring(self):
        response = self.client.get("/api/medicines/search", params={"q": "dolo"})
        self.assertEqual(response.status_code, 200)
        results = response.json()
        self.assertEqual([m["name"] for m in results], ["Dolo 650"])
        self.assertEqual(results[0]["pharmacy"]["id"], self.pharmacy["id"])
        self.assertEqual(results[0]["pharmacy"]["name"], "City Pharmacy")

    def test_search_treats_query_literally(self):
        response = self.client.get("/api/medicines/search", params={"q": "Dolo.*"})
        self.assertEqual(response.json(), [])

    def test_search_requires_query(self):
        self.assertEqual(self.client.get("/api/medicines/search").status_code, 400)
        self.assertEqual(self.client.get("/api/medicines/search", params={"q": "  "}).status_code, 400)

    def test_get_by_id_joins_pharmacy(self):
        response = self.client.get(f"/api/medicines/{self.medicine['id']}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["pharmacy"]["contact"], "9000000001")

    def test_get_unknown_and_malformed_id(self):
        self.assertEqual(self.client.get("/api/medicines/5f1d7f3e2b3c4a5d6e7f8091").status_code, 404)
        self.assertEqual(self.client.get("/api/medicines/not-an-id").status_code, 400)

    def test_list_by_pharmacy(self):
        response = self.client.get(f"/api/medicines/pharmacy/{self.pharmacy['id']}")
        self.assertEqual([m["name"] for m in response.json()], ["Aspirin 75mg", "Dolo 650"])


class MedicineOwnershipTests(APITestCase):
    def setUp(self):
        super().setUp()
        self.owner, self.owner_token = self.register(contact="111")
        self.other, self.other_token = self.register(contact="222", name="Other Pharmacy")
        self.medicine = self.add_medicine(self.owner_token)

    def test_create_requires_token(self):
        response = self.client.post("/api/medicines", json={"name": "X", "price": 1})
        self.assertEqual(response.status_code, 401)

    def test_create_assigns_caller_pharmacy(self):
        self.assertEqual(self.medicine["pharmacyId"], self.owner["id"])
        self.assertEqual(self.medicine["stock"], "Available")
        self.assertEqual(self.medicine["quantity"], 10)

    def test_negative_price_rejected(self):
        response = self.client.post("/api/medicines", json={"name": "X", "price": -1},
                                    headers=self.auth(self.owner_token))
        self.assertEqual(response.status_code, 422)

    def test_owner_updates_medicine(self):
        response = self.client.patch(f"/api/medicines/{self.medicine['id']}",
                                     json={"price": 25, "stock": "Limited Stock"},
                                     headers=self.auth(self.owner_token))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["price"], 25)
        self.assertEqual(response.json()["stock"], "Limited Stock")
        self.assertEqual(response.json()["name"], "Paracetamol 500mg")

    def test_null_fields_rejected_and_record_kept(self):
        response = self.client.patch(f"/api/medicines/{self.medicine['id']}",
                                     json={"name": None, "stock": None},
                                     headers=self.auth(self.owner_token))
        self.assertEqual(response.status_code, 422)
        stored = self.client.get(f"/api/medicines/{self.medicine['id']}").json()
        self.assertEqual(stored["name"], "Paracetamol 500mg")
        self.assertEqual(stored["stock"], "Available")
        self.assertEqual(self.client.get("/api/medicines/search", params={"q": "para"}).status_code, 200)

    def test_null_price_and_quantity_rejected(self):
        for field in ("price", "quantity"):
            response = self.client.patch(f"/api/medicines/{self.medicine['id']}", json={field: None},
                                         headers=self.auth(self.owner_token))
            self.assertEqual(response.status_code, 422)

    def test_nullable_fields_can_be_cleared(self):
        response = self.client.patch(f"/api/medicines/{self.medicine['id']}", json={"description": None},
                                     headers=self.auth(self.owner_token))
        self.assertEqual(response.status_code, 200)
        self.assertIsNone(response.json()["description"])

    def test_other_pharmacy_cannot_update(self):
        response = self.client.patch(f"/api/medicines/{self.medicine['id']}", json={"price": 1},
                                     headers=self.auth(self.other_token))
        self.assertEqual(response.status_code, 404)
        stored = self.client.get(f"/api/medicines/{self.medicine['id']}").json()
        self.assertEqual(stored["price"], 30.5)

    def test_other_pharmacy_cannot_delete(self):
        response = self.client.delete(f"/api/medicines/{self.medicine['id']}",
                                      headers=self.auth(self.other_token))
        self.assertEqual(response.status_code, 404)
        self.assertEqual(self.client.get(f"/api/medicines/{self.medicine['id']}").status_code, 200)

    def test_owner_deletes_medicine(self):
        response = self.client.delete(f"/api/medicines/{self.medicine['id']}",
                                      headers=self.auth(self.owner_token))
        self.assertEqual(response.json(), {"id": self.medicine["id"], "deleted": True})
        self.assertEqual(self.client.get(f"/api/medicines/{self.medicine['id']}").status_code, 404)

    def test_bulk_upload_from_price_slip(self):
        items = self.client.post("/api/ai/parse-price-slip", json={"image": "aGVsbG8="}).json()["items"]
        response = self.client.post("/api/medicines/bulk", json={"items": items},
                                    headers=self.auth(self.other_token))
        self.assertEqual(response.status_code, 201)
        created = response.json()
        self.assertEqual(sorted(m["name"] for m in created), ["Aspirin 75mg", "Cetirizine 10mg", "Dolo 650"])
        self.assertTrue(all(m["pharmacyId"] == self.other["id"] for m in created))
