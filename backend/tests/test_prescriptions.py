def test_prescription_crud(client, auth_headers):
    r = client.post(
        "/api/prescriptions",
        json={
            "doctor_name": "Dr. Rivera",
            "clinic": "North Clinic",
            "medicines": [{"medicine_name": "Amoxicillin", "dosage": "500mg", "duration": "7 days"}],
        },
        headers=auth_headers,
    )
    assert r.status_code == 201
    prescription = r.json()["data"]["prescription"]
    assert prescription["date_issued"]
    assert prescription["medicines"][0]["medicine_name"] == "Amoxicillin"

    url = f"/api/prescriptions/{prescription['id']}"
    r = client.put(url, json={"notes": "Take after food", "medicines": []}, headers=auth_headers)
    assert r.status_code == 200
    updated = r.json()["data"]["prescription"]
    assert updated["notes"] == "Take after food"
    assert updated["medicines"] == []
    assert updated["clinic"] == "North Clinic"

    assert client.delete(url, headers=auth_headers).status_code == 200
    r = client.get(url, headers=auth_headers)
    assert r.status_code == 404
    assert r.json()["message"] == "Prescription not found"


def test_prescriptions_newest_first(client, auth_headers):
    for issued, clinic in [("2024-01-01T09:00:00", "Old"), ("2024-06-01T09:00:00", "New"), ("2024-03-01T09:00:00", "Mid")]:
        client.post("/api/prescriptions", json={"clinic": clinic, "date_issued": issued}, headers=auth_headers)

    r = client.get("/api/prescriptions", headers=auth_headers)
    assert r.json()["results"] == 3
    assert [p["clinic"] for p in r.json()["data"]["prescriptions"]] == ["New", "Mid", "Old"]


def test_prescription_medicine_requires_name(client, auth_headers):
    r = client.post("/api/prescriptions", json={"medicines": [{"dosage": "5mg"}]}, headers=auth_headers)
    assert r.status_code == 422


def test_prescription_ownership(client, register, auth_headers):
    bob = register(email="bob@example.com", name="Bob Jones")
    r = client.post("/api/prescriptions", json={"clinic": "North Clinic"}, headers=auth_headers)
    url = f"/api/prescriptions/{r.json()['data']['prescription']['id']}"

    assert client.get(url, headers=bob).status_code == 403
    assert client.delete(url, headers=bob).status_code == 403
    assert client.get("/api/prescriptions", headers=bob).json()["results"] == 0
