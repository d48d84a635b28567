"""
HTTP API tests through the Flask test client.
"""

from conftest import EMPLOYEE_ID, MANAGER_ID, OWNER_ID

EMPLOYEE = {"X-User-Id": str(EMPLOYEE_ID)}
MANAGER = {"X-User-Id": str(MANAGER_ID)}
OWNER = {"X-User-Id": str(OWNER_ID)}


def start_shift(client, station):
    response = client.post("/api/shifts/start", json={"station_id": station.id}, headers=EMPLOYEE)
    assert response.status_code == 201
    return response.get_json()["shift"]


def post_reading(client, shift, nozzle, current_volume, split):
    return client.post(
        "/api/readings",
        json={
            "nozzle_id": nozzle.id,
            "shift_id": shift["id"],
            "current_volume": current_volume,
            "payment_split": split,
        },
        headers=EMPLOYEE,
    )


def test_requests_without_actor_are_rejected(client, db_session):
    response = client.get("/api/shifts")
    assert response.status_code == 401
    assert response.get_json()["kind"] == "Unauthenticated"


def test_health_needs_no_actor(client, db_session):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.get_json()["checks"]["database"]["status"] == "healthy"


def test_start_shift_defaults_employee_to_actor(client, db_session, station):
    shift = start_shift(client, station)
    assert shift["employee_id"] == EMPLOYEE_ID
    assert shift["status"] == "ACTIVE"

    duplicate = client.post("/api/shifts/start", json={"station_id": station.id}, headers=EMPLOYEE)
    assert duplicate.status_code == 409
    assert duplicate.get_json()["kind"] == "DuplicateActiveShift"


def test_record_reading_and_split_mismatch(client, db_session, nozzle, price, station):
    shift = start_shift(client, station)

    rejected = post_reading(client, shift, nozzle, "1010.000", {"cash_cents": 80_000, "online_cents": 10_000})
    assert rejected.status_code == 400
    body = rejected.get_json()
    assert body["kind"] == "PaymentSplitMismatch"
    assert body["retryable"] is False
    assert body["details"]["difference_cents"] == -10_000

    accepted = post_reading(client, shift, nozzle, "1010.000", {"cash_cents": 90_000, "online_cents": 10_000})
    assert accepted.status_code == 201
    reading = accepted.get_json()["reading"]
    assert reading["total_amount_cents"] == 100_000
    assert reading["litres_sold_ml"] == 10_000

    fetched = client.get(f"/api/readings/{reading['id']}", headers=EMPLOYEE).get_json()["reading"]
    assert fetched["effective_payment_split"]["cash_cents"] == 90_000

    previous = client.get(f"/api/readings/nozzles/{nozzle.id}/previous", headers=EMPLOYEE).get_json()
    assert previous["previous_volume_ml"] == 1_010_000


def test_reading_rejects_float_cents(client, db_session, nozzle, price, station):
    shift = start_shift(client, station)
    response = post_reading(client, shift, nozzle, "1001.000", {"cash_cents": 100.5})
    assert response.status_code == 400
    assert response.get_json()["kind"] == "ValidationError"


def test_split_correction_route(client, db_session, nozzle, price, station):
    shift = start_shift(client, station)
    reading = post_reading(client, shift, nozzle, "1010.000", {"cash_cents": 100_000}).get_json()["reading"]

    response = client.post(
        f"/api/readings/{reading['id']}/corrections",
        json={"payment_split": {"cash_cents": 60_000, "online_cents": 40_000}, "reason": "Card keyed as cash"},
        headers=MANAGER,
    )
    assert response.status_code == 201
    body = response.get_json()
    assert body["correction"]["kind"] == "SPLIT_CORRECTION"
    assert body["effective_payment_split"]["online_cents"] == 40_000


def test_end_shift_returns_handover_and_advisory(client, db_session, nozzle, price, station):
    shift = start_shift(client, station)
    post_reading(client, shift, nozzle, "1010.000", {"cash_cents": 100_000})

    response = client.post(f"/api/shifts/{shift['id']}/end", json={"actual_cash_cents": 95_000}, headers=EMPLOYEE)
    assert response.status_code == 200
    body = response.get_json()
    assert body["shift"]["status"] == "ENDED"
    assert body["shift"]["variance_cents"] == 5_000
    assert body["handover"]["handover_type"] == "SHIFT_COLLECTION"
    assert body["handover"]["expected_amount_cents"] == 95_000
    assert body["advisories"][0]["kind"] == "discrepancy"

    detail = client.get(f"/api/shifts/{shift['id']}", headers=MANAGER).get_json()
    assert len(detail["handovers"]) == 1

    again = client.post(f"/api/shifts/{shift['id']}/end", json={"actual_cash_cents": 95_000}, headers=EMPLOYEE)
    assert again.status_code == 409
    assert again.get_json()["kind"] == "ShiftNotActive"


def test_confirm_dispute_and_resolve_routes(client, db_session, notifier, nozzle, price, station):
    shift = start_shift(client, station)
    post_reading(client, shift, nozzle, "1009.500", {"cash_cents": 95_000})
    handover = client.post(
        f"/api/shifts/{shift['id']}/end", json={"actual_cash_cents": 95_000}, headers=EMPLOYEE
    ).get_json()["handover"]

    confirmed = client.post(
        f"/api/handovers/{handover['id']}/confirm", json={"actual_amount_cents": 95_000}, headers=MANAGER
    )
    assert confirmed.status_code == 200
    body = confirmed.get_json()
    assert body["handover"]["status"] == "CONFIRMED"
    assert body["replayed"] is False
    next_step = body["next_handover"]
    assert next_step["expected_amount_cents"] == 95_000

    replay = client.post(
        f"/api/handovers/{handover['id']}/confirm", json={"actual_amount_cents": 95_000}, headers=MANAGER
    )
    assert replay.status_code == 200
    assert replay.get_json()["replayed"] is True
    assert replay.get_json()["next_handover"]["id"] == next_step["id"]

    conflict = client.post(
        f"/api/handovers/{handover['id']}/confirm", json={"actual_amount_cents": 1}, headers=MANAGER
    )
    assert conflict.status_code == 409
    assert conflict.get_json()["kind"] == "HandoverAlreadyFinalized"

    disputed = client.post(
        f"/api/handovers/{next_step['id']}/confirm", json={"actual_amount_cents": 90_000}, headers=MANAGER
    ).get_json()
    assert disputed["handover"]["status"] == "DISPUTED"
    assert disputed["next_handover"] is None
    assert disputed["advisories"][0]["handover_status"] == "DISPUTED"

    resolved = client.post(
        f"/api/handovers/{next_step['id']}/resolve",
        json={"resolution_notes": "shortage investigated"},
        headers=OWNER,
    )
    assert resolved.status_code == 200
    assert resolved.get_json()["next_handover"]["expected_amount_cents"] == 90_000

    chain = client.get(f"/api/handovers/shifts/{shift['id']}/chain", headers=OWNER).get_json()["handovers"]
    assert [h["status"] for h in chain] == ["CONFIRMED", "RESOLVED", "PENDING"]

    pending = client.get("/api/handovers/pending", headers=OWNER).get_json()["handovers"]
    assert [h["handover_type"] for h in pending] == ["MANAGER_TO_OWNER"]

    unconfirmed = client.get(f"/api/handovers/unconfirmed?station_id={station.id}", headers=OWNER).get_json()
    assert len(unconfirmed["handovers"]) == 1


def test_unknown_handover_is_404(client, db_session):
    response = client.post("/api/handovers/999/confirm", json={"actual_amount_cents": 1}, headers=MANAGER)
    assert response.status_code == 404
    assert response.get_json()["kind"] == "NotFound"


def test_close_period_not_ready_then_closed(client, db_session, nozzle, price, station):
    shift = start_shift(client, station)
    post_reading(client, shift, nozzle, "1001.000", {"cash_cents": 10_000})
    body = client.post(
        f"/api/shifts/{shift['id']}/end", json={"actual_cash_cents": 10_000}, headers=EMPLOYEE
    ).get_json()
    business_date = body["shift"]["business_date"]

    not_ready = client.post(
        "/api/settlements/close",
        json={"station_id": station.id, "business_date": business_date},
        headers=OWNER,
    )
    assert not_ready.status_code == 409
    assert not_ready.get_json()["kind"] == "PeriodNotReady"

    step = body["handover"]
    while step is not None:
        step = client.post(
            f"/api/handovers/{step['id']}/confirm",
            json={"actual_amount_cents": 10_000, "deposit_reference": "DEP-1"},
            headers=OWNER,
        ).get_json()["next_handover"]

    closed = client.post(
        "/api/settlements/close",
        json={"station_id": station.id, "business_date": business_date},
        headers=OWNER,
    )
    assert closed.status_code == 201
    settlement = closed.get_json()["settlement"]
    assert settlement["deposited_cash_cents"] == 10_000

    again = client.post(
        "/api/settlements/close",
        json={"station_id": station.id, "business_date": business_date},
        headers=OWNER,
    )
    assert again.status_code == 409
    assert again.get_json()["kind"] == "PeriodAlreadyClosed"

    listed = client.get(f"/api/settlements?station_id={station.id}", headers=OWNER).get_json()
    assert [s["id"] for s in listed["settlements"]] == [settlement["id"]]

    summary = client.get(f"/api/handovers/summary?station_id={station.id}", headers=OWNER).get_json()
    assert summary["in_transit_cents"] == 0


def test_audit_trail_route(client, db_session, station):
    shift = start_shift(client, station)
    client.post(f"/api/shifts/{shift['id']}/cancel", json={"reason": "Opened by mistake"}, headers=MANAGER)

    items = client.get(f"/api/audit?shift_id={shift['id']}", headers=OWNER).get_json()["items"]
    assert [item["event_type"] for item in items] == ["shift.started", "shift.cancelled"]
    assert items[1]["before_state"]["status"] == "ACTIVE"
    assert items[1]["after_state"]["status"] == "CANCELLED"
    assert items[1]["actor_user_id"] == MANAGER_ID


def test_list_station_handovers_route(client, db_session, nozzle, price, station):
    shift = start_shift(client, station)
    post_reading(client, shift, nozzle, "1001.000", {"cash_cents": 10_000})
    handover = client.post(
        f"/api/shifts/{shift['id']}/end", json={"actual_cash_cents": 10_000}, headers=EMPLOYEE
    ).get_json()["handover"]
    client.post(f"/api/handovers/{handover['id']}/confirm", json={"actual_amount_cents": 10_000}, headers=MANAGER)

    body = client.get(f"/api/handovers?station_id={station.id}", headers=OWNER).get_json()
    assert [h["handover_type"] for h in body["handovers"]] == ["STAFF_TO_MANAGER", "SHIFT_COLLECTION"]
    assert body["limit"] == 100
    assert body["offset"] == 0

    confirmed = client.get(f"/api/handovers?station_id={station.id}&status=CONFIRMED", headers=OWNER).get_json()
    assert [h["id"] for h in confirmed["handovers"]] == [handover["id"]]

    clamped = client.get(f"/api/handovers?station_id={station.id}&limit=-5", headers=OWNER).get_json()
    assert clamped["limit"] == 1
    assert len(clamped["handovers"]) == 1

    missing = client.get("/api/handovers", headers=OWNER)
    assert missing.status_code == 400
    bad_type = client.get(f"/api/handovers?station_id={station.id}&handover_type=NOPE", headers=OWNER)
    assert bad_type.status_code == 400


def test_shift_listing_limits_are_clamped_to_at_least_one(client, db_session, station):
    start_shift(client, station)
    client.post(
        "/api/shifts/start", json={"station_id": station.id, "employee_id": EMPLOYEE_ID + 1}, headers=MANAGER
    )

    everything = client.get("/api/shifts", headers=MANAGER).get_json()["shifts"]
    assert len(everything) == 2
    clamped = client.get("/api/shifts?limit=-1", headers=MANAGER).get_json()["shifts"]
    assert len(clamped) == 1

    discrepancies = client.get(f"/api/shifts/discrepancies?station_id={station.id}&limit=0", headers=MANAGER)
    assert discrepancies.status_code == 200
