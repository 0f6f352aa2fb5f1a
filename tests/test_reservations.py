from datetime import timedelta

from bson import ObjectId

import database
from tests.base import APITestCase


class ReservationCreateTests(APITestCase):
    def setUp(self):
        super().setUp()
        self.pharmacy, self.token = self.register()

    def reserve(self, medicine, **fields):
        body = {
            "medicineId": medicine["id"],
            "pharmacyId": medicine["pharmacyId"],
            "customerName": "Asha",
            "customerPhone": "9876543210",
        }
        body.update(fields)
        return self.client.post("/api/reservations", json=body)

    def test_reservation_takes_one_unit(self):
        medicine = self.add_medicine(self.token, quantity=3)
        response = self.reserve(medicine)
        self.assertEqual(response.status_code, 201, response.text)
        data = response.json()
        self.assertEqual(data["status"], "Pending")
        self.assertEqual(data["pharmacyId"], self.pharmacy["id"])

        stored = self.client.get(f"/api/medicines/{medicine['id']}").json()
        self.assertEqual(stored["quantity"], 2)
        self.assertEqual(stored["stock"], "Available")

    def test_hold_lasts_two_hours(self):
        medicine = self.add_medicine(self.token)
        reservation = self.reserve(medicine).json()
        doc = self.db["reservation"].find_one({"_id": ObjectId(reservation["id"])})
        self.assertEqual(doc["expiry_time"] - doc["reservation_time"], timedelta(hours=2))

    def test_last_unit_flips_to_out_of_stock(self):
        medicine = self.add_medicine(self.token, quantity=1)
        self.assertEqual(self.reserve(medicine).status_code, 201)

        stored = self.client.get(f"/api/medicines/{medicine['id']}").json()
        self.assertEqual(stored["quantity"], 0)
        self.assertEqual(stored["stock"], "Out of Stock")

        second = self.reserve(medicine, customerName="Ravi")
        self.assertEqual(second.status_code, 400)
        self.assertEqual(self.db["reservation"].count_documents({}), 1)

    def test_unit_taken_between_read_and_decrement(self):
        medicine = self.add_medicine(self.token, quantity=1)
        oid = ObjectId(medicine["id"])
        stale = self.db["medicine"].find_one({"_id": oid})
        self.db["medicine"].update_one({"_id": oid}, {"$set": {"quantity": 0}})

        self.assertIsNone(database.take_one_unit(oid))
        self.assertEqual(self.db["medicine"].find_one({"_id": oid})["quantity"], 0)
        self.assertEqual(stale["quantity"], 1)

    def test_unknown_medicine(self):
        fake = {"id": str(ObjectId()), "pharmacyId": self.pharmacy["id"]}
        self.assertEqual(self.reserve(fake).status_code, 400)

    def test_pharmacy_must_match_medicine_owner(self):
        medicine = self.add_medicine(self.token)
        other, _ = self.register(contact="222")
        response = self.reserve(medicine, pharmacyId=other["id"])
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.client.get(f"/api/medicines/{medicine['id']}").json()["quantity"], 10)

    def test_pharmacy_is_taken_from_medicine_when_omitted(self):
        medicine = self.add_medicine(self.token)
        response = self.client.post("/api/reservations", json={
            "medicineId": medicine["id"], "customerName": "Asha", "customerPhone": "1",
        })
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["pharmacyId"], self.pharmacy["id"])


class ReservationOwnerTests(APITestCase):
    def setUp(self):
        super().setUp()
        self.pharmacy, self.token = self.register(contact="111")
        self.other, self.other_token = self.register(contact="222")
        medicine = self.add_medicine(self.token)
        self.medicine = medicine
        self.first = self.client.post("/api/reservations", json={
            "medicineId": medicine["id"], "customerName": "First", "customerPhone": "1",
        }).json()
        self.second = self.client.post("/api/reservations", json={
            "medicineId": medicine["id"], "customerName": "Second", "customerPhone": "2",
        }).json()

    def set_status(self, reservation, status, token=None):
        return self.client.patch(f"/api/reservations/{reservation['id']}/status", json={"status": status},
                                 headers=self.auth(token or self.token))

    def test_list_newest_first_with_medicine(self):
        response = self.client.get("/api/reservations/pharmacy", headers=self.auth(self.token))
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual([r["customerName"] for r in data], ["Second", "First"])
        self.assertEqual(data[0]["medicine"]["name"], "Paracetamol 500mg")

    def test_list_is_scoped_to_caller(self):
        response = self.client.get("/api/reservations/pharmacy", headers=self.auth(self.other_token))
        self.assertEqual(response.json(), [])

    def test_list_requires_token(self):
        self.assertEqual(self.client.get("/api/reservations/pharmacy").status_code, 401)

    def test_confirm_then_pick_up(self):
        self.assertEqual(self.set_status(self.first, "Confirmed").json()["status"], "Confirmed")
        response = self.set_status(self.first, "PickedUp")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "Picked Up")

    def test_cancel_from_pending_and_confirmed(self):
        self.assertEqual(self.set_status(self.first, "Cancelled").status_code, 200)
        self.set_status(self.second, "Confirmed")
        self.assertEqual(self.set_status(self.second, "Cancelled").status_code, 200)

    def test_illegal_transitions(self):
        self.assertEqual(self.set_status(self.first, "Picked Up").status_code, 409)
        self.set_status(self.first, "Cancelled")
        self.assertEqual(self.set_status(self.first, "Confirmed").status_code, 409)
        self.assertEqual(self.set_status(self.first, "Pending").status_code, 409)

    def test_unknown_status_value(self):
        self.assertEqual(self.set_status(self.first, "Lost").status_code, 422)

    def test_other_pharmacy_cannot_change_status(self):
        response = self.set_status(self.first, "Confirmed", token=self.other_token)
        self.assertEqual(response.status_code, 404)
        doc = self.db["reservation"].find_one({"_id": ObjectId(self.first["id"])})
        self.assertEqual(doc["status"], "Pending")
