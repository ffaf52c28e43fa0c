from datetime import timedelta

from availability import dates, security

from conftest import auth_headers


def _day(offset: int) -> str:
    return dates.to_ymd(dates.today_utc() + timedelta(days=offset))


def _setup(client, **calendar):
    body = {"name": "Main", "lead_time_min_days": 0, "lead_time_max_days": 3650}
    body.update(calendar)
    r = client.post("/calendars", json=body, headers=auth_headers())
    assert r.status_code == 200, r.text
    cal = r.json()

    r = client.post(
        "/units",
        json={
            "unit_key": "room-101",
            "name": "Room 101",
            "rate": 395,
            "currency": "usd",
            "calendars": [{"calendar_id": cal["id"], "effective_date": _day(-30)}],
        },
        headers=auth_headers(),
    )
    assert r.status_code == 200, r.text
    return cal, r.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_calendar_versions_and_overwrite(client):
    r1 = client.post("/calendars", json={"name": "Main", "cancel_fee": 10}, headers=auth_headers())
    r2 = client.post("/calendars", json={"name": "Main", "cancel_fee": 20}, headers=auth_headers())
    assert (r1.json()["version"], r2.json()["version"]) == (1, 2)

    r3 = client.post(
        "/calendars", params={"mode": "overwrite"}, json={"name": "Main", "cancel_fee": 30}, headers=auth_headers()
    )
    assert r3.status_code == 200, r3.text
    assert (r3.json()["id"], r3.json()["version"]) == (r2.json()["id"], 2)

    r = client.get("/calendars/by-name/Main", params={"version": 1}, headers=auth_headers("guest"))
    assert r.json()["cancel_fee"] == 10
    r = client.get("/calendars/by-name/Main", headers=auth_headers("guest"))
    assert r.json()["cancel_fee"] == 30

    listed = client.get("/calendars", headers=auth_headers("guest")).json()
    assert [(c["name"], c["version"]) for c in listed] == [("Main", 2), ("Main", 1)]
    assert "blackouts" not in listed[0]
    full = client.get("/calendars", params={"full": True}, headers=auth_headers("guest")).json()
    assert full[0]["blackouts"] == []

    r = client.post(f"/calendars/{r1.json()['id']}/deactivate", headers=auth_headers())
    assert r.json()["active"] is False
    assert len(client.get("/calendars", params={"active": True}, headers=auth_headers()).json()) == 1


def test_calendar_payload_validation(client):
    bad = [
        {"name": "X", "currency": "dollars"},
        {"name": "X", "lead_time_min_days": 10, "lead_time_max_days": 5},
        {"name": "X", "min_stay_by_weekday": {"Friday": 2}},
        {"name": "X", "min_stay_by_weekday": {"Fri": 0}},
        {"name": "X", "blackouts": ["16/01/2026"]},
        {"name": "X", "holidays": [{"date": "2026-12-25", "min_nights": 0}]},
        {"name": "X", "recurring_blackouts": "FREQ=SOMETIMES"},
    ]
    for body in bad:
        r = client.post("/calendars", json=body, headers=auth_headers())
        assert r.status_code == 422, body


def test_writes_require_staff(client):
    r = client.post("/calendars", json={"name": "Main"}, headers=auth_headers("guest"))
    assert r.status_code == 403
    r = client.post("/calendars", json={"name": "Main"})
    assert r.status_code == 401


def test_tenant_header_required(client):
    r = client.get("/units", headers=auth_headers(tenant=None))
    assert r.status_code == 400


def test_tenant_scoped_token(client):
    token = security.issue_token("ops@other", "admin", tenant="other")
    r = client.get("/units", headers={"Authorization": f"Bearer {token}", "X-Tenant-Id": "acme"})
    assert r.status_code == 403


def test_availability_quote_reserve_flow(client):
    _setup(client)
    params = {"unit_key": "room-101", "check_in": _day(10), "check_out": _day(13)}

    r = client.get("/booking/availability", params=params, headers=auth_headers("guest"))
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["ok"] is True
    assert body["nights"] == 3
    assert body["calendar"]["version"] == 1

    r = client.get("/booking/quote", params=params, headers=auth_headers("guest"))
    q = r.json()
    assert (q["nights"], q["total"], q["currency"]) == (3, 1185, "USD")

    r = client.post(
        "/booking/reserve",
        json={**params, "guest": {"name": "Ada", "room_pref": "quiet"}, "payment": {"provider": "stripe", "last4": "4242"}},
        headers=auth_headers("guest"),
    )
    assert r.status_code == 200, r.text
    res = r.json()
    assert res["status"] == "confirmed"
    assert (res["start_date"], res["end_date"]) == (_day(10), _day(14))
    assert res["guest"] == {"name": "Ada", "room_pref": "quiet"}
    assert res["payment"]["currency"] == "USD"

    r = client.get("/booking/availability", params=params, headers=auth_headers("guest"))
    assert r.json()["reason_codes"] == ["OVERLAP"]
    assert r.json()["conflicts"][0]["id"] == res["id"]

    r = client.post("/booking/reserve", json=params, headers=auth_headers("guest"))
    assert r.status_code == 409
    assert r.json()["detail"]["reason_codes"] == ["OVERLAP"]

    listing = client.get(
        "/reservations",
        params={"unit_key": "room-101", "start": _day(0), "end": _day(30)},
        headers=auth_headers("agent"),
    ).json()
    assert listing["overlap"] is True
    assert [i["id"] for i in listing["items"]] == [res["id"]]

    r = client.post(f"/reservations/{res['id']}/cancel", headers=auth_headers("guest"))
    assert r.json()["status"] == "cancelled"
    r = client.post("/booking/reserve", json=params, headers=auth_headers("guest"))
    assert r.status_code == 200, r.text


def test_reserve_rejects_raw_card_data(client):
    _setup(client)
    r = client.post(
        "/booking/reserve",
        json={
            "unit_key": "room-101",
            "check_in": _day(10),
            "check_out": _day(11),
            "payment": {"card_number": "4242424242424242", "cvc": "123"},
        },
        headers=auth_headers("guest"),
    )
    assert r.status_code == 422


def test_rule_rejection_and_bad_input(client):
    _setup(client, blackouts=[_day(11)])
    params = {"unit_key": "room-101", "check_in": _day(10), "check_out": _day(12)}

    r = client.get("/booking/availability", params=params, headers=auth_headers("guest"))
    assert r.json()["ok"] is False
    assert r.json()["reason_codes"] == ["BLACKOUT"]

    r = client.post("/booking/reserve", json=params, headers=auth_headers("guest"))
    assert r.status_code == 409
    assert r.json()["detail"]["reason_codes"] == ["BLACKOUT"]

    r = client.get(
        "/booking/availability", params={**params, "check_in": "tomorrow"}, headers=auth_headers("guest")
    )
    assert r.status_code == 400
    assert r.json()["detail"]["reason_codes"] == ["INVALID_DATE"]

    r = client.get(
        "/booking/availability",
        params={**params, "check_in": _day(12), "check_out": _day(10)},
        headers=auth_headers("guest"),
    )
    assert r.status_code == 400

    r = client.get(
        "/booking/availability", params={**params, "unit_key": "ghost"}, headers=auth_headers("guest")
    )
    assert r.status_code == 404
    assert r.json()["detail"]["reason_codes"] == ["UNIT_NOT_FOUND"]


def test_hold_then_confirm(client):
    _setup(client)
    r = client.post(
        "/booking/reserve",
        json={"unit_key": "room-101", "check_in": _day(20), "check_out": _day(21), "status": "hold", "hold_minutes": 5},
        headers=auth_headers("guest"),
    )
    hold = r.json()
    assert hold["status"] == "hold"
    assert hold["hold_expires_at"] is not None

    r = client.post(f"/reservations/{hold['id']}/confirm", headers=auth_headers("guest"))
    assert r.json()["status"] == "confirmed"

    r = client.get(f"/reservations/{hold['id']}", headers=auth_headers("guest", tenant="other"))
    assert r.status_code == 404


def test_unit_links_and_availability_grid(client):
    cal, unit = _setup(client, recurring_blackouts="FREQ=WEEKLY;BYDAY=SU")
    assert unit["currency"] == "USD"

    r = client.get(f"/calendars/{cal['id']}/availability", params={"year": 2026}, headers=auth_headers("guest"))
    grid = r.json()["available"]
    assert len(grid) == 365 - 52  # 2026 has 52 Sundays
    assert "2026-01-04" not in grid

    r = client.post(
        "/units/room-101/calendars",
        json={"calendar_id": cal["id"], "effective_date": _day(-30)},
        headers=auth_headers(),
    )
    assert r.status_code == 409
    assert r.json()["detail"]["reason_codes"] == ["DUPLICATE_LINK"]

    r = client.delete(
        "/units/room-101/calendars",
        params={"calendar_id": cal["id"], "effective_date": _day(-30)},
        headers=auth_headers(),
    )
    assert r.json()["calendars"] == []

    r = client.get(
        "/booking/availability",
        params={"unit_key": "room-101", "check_in": _day(10)},
        headers=auth_headers("guest"),
    )
    assert r.status_code == 409
    assert r.json()["detail"]["reason_codes"] == ["NO_CALENDAR_FOR_DATE"]

    assert [u["unit_key"] for u in client.get("/units", headers=auth_headers("guest")).json()] == ["room-101"]
