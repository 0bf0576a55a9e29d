from decimal import Decimal


def test_wallet_requires_login(client):
    response = client.get("/api/wallet")
    assert response.status_code == 401
    assert response.get_json()["error"] == "unauthorized"


def test_wallet_projection(make_user, fund, login):
    user = make_user()
    fund(user, "120.50")
    fund(user, "30", bucket="saving")

    response = login(user).get("/api/wallet")
    assert response.status_code == 200
    body = response.get_json()
    assert body["referralBalance"] == "120.50"
    assert body["savingBalance"] == "30.00"
    assert body["totalBalance"] == "150.50"
    assert body["currency"] == "INR"


def test_commission_history_and_referral_summary(chain, levels, make_payment, login):
    from referral.commission import CommissionEngine

    a, b, c = chain(3)
    levels(instant=[10, 5])
    CommissionEngine.distribute(make_payment(c, "1000"))

    client = login(a)
    history = client.get("/api/commissions").get_json()
    assert history["count"] == 1
    assert history["commissions"][0]["amount"] == "50.00"
    assert history["commissions"][0]["level"] == 2

    assert client.get("/api/commissions?level=1").get_json()["count"] == 0
    assert client.get("/api/commissions?status=paid").get_json()["count"] == 0

    summary = client.get("/api/referrals/summary").get_json()
    assert summary["levels"][0] == {"level": 1, "members": 1, "earned": "0.00"}
    assert summary["levels"][1] == {"level": 2, "members": 1, "earned": "50.00"}
    assert summary["totalMembers"] == 2
    assert Decimal(summary["totalEarned"]) == Decimal("50.00")


def test_bad_query_parameters(make_user, login):
    client = login(make_user())
    assert client.get("/api/commissions?level=abc").status_code == 400
    assert client.get("/api/commissions?status=unknown").status_code == 400
    assert client.get("/api/withdrawals?status=lost").status_code == 400


def test_create_and_list_withdrawals(make_user, fund, login):
    user = make_user()
    fund(user, "500")
    client = login(user)

    response = client.post("/api/withdrawals", json={
        "amount": "200",
        "paymentMethod": "upi",
        "paymentDetails": {"upi_id": "asha@okbank"},
    })
    assert response.status_code == 201
    created = response.get_json()["withdrawal"]
    assert created["status"] == "pending"
    assert created["amount"] == "200.00"

    listing = client.get("/api/withdrawals").get_json()
    assert listing["count"] == 1
    assert listing["withdrawals"][0]["id"] == created["id"]
    assert client.get("/api/withdrawals?status=completed").get_json()["count"] == 0


def test_withdrawal_over_balance_returns_409(make_user, fund, login):
    user = make_user()
    fund(user, "50")
    response = login(user).post("/api/withdrawals", json={
        "amount": 80,
        "paymentMethod": "upi",
        "paymentDetails": {"upi_id": "asha@okbank"},
    })
    assert response.status_code == 409
    body = response.get_json()
    assert body["error"] == "insufficient_balance"
    assert body["details"]["available"] == "50.00"


def test_withdrawal_validation_returns_400(make_user, fund, login):
    user = make_user()
    fund(user, "50")
    client = login(user)
    assert client.post("/api/withdrawals", json={}).status_code == 400
    response = client.post("/api/withdrawals", json={
        "amount": "10",
        "paymentMethod": "bank_transfer",
        "paymentDetails": {"account_holder": "Asha"},
    })
    assert response.status_code == 400
    assert response.get_json()["error"] == "validation_error"


def test_healthz(client):
    assert client.get("/healthz").get_json() == {"status": "ok"}
