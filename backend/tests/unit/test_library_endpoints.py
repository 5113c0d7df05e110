"""Tests for library (inventory ledger) endpoints."""
import pytest


class TestGetLibrary:

    def test_get_library(self, client, counterparty_id):
        response = client.get(f"/users/{counterparty_id}/library")

        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == counterparty_id
        assert data["total_cards"] == 7
        assert {(c["card_id"], c["quantity"]) for c in data["cards"]} == {("card_x", 5), ("card_y", 2)}

    def test_empty_library(self, client, outsider_id):
        response = client.get(f"/users/{outsider_id}/library")

        assert response.status_code == 200
        assert response.json() == {"user_id": outsider_id, "cards": [], "total_cards": 0}

    def test_get_single_card(self, client, counterparty_id):
        response = client.get(f"/users/{counterparty_id}/library/card_y")

        assert response.status_code == 200
        assert response.json()["quantity"] == 2

    def test_absent_card_is_zero(self, client, counterparty_id):
        response = client.get(f"/users/{counterparty_id}/library/card_missing")

        assert response.status_code == 200
        assert response.json()["quantity"] == 0


class TestAdjustLibrary:

    def test_add_card(self, client, proposer_id):
        response = client.post(
            "/library/add",
            json={"user_id": proposer_id, "card_id": "card_new"},
            headers={"X-User-Id": proposer_id},
        )

        assert response.status_code == 200
        assert response.json() == {"user_id": proposer_id, "card_id": "card_new", "quantity": 1}

    def test_remove_card(self, client, counterparty_id):
        response = client.post(
            "/library/remove",
            json={"user_id": counterparty_id, "card_id": "card_y"},
            headers={"X-User-Id": counterparty_id},
        )

        assert response.status_code == 200
        assert response.json()["quantity"] == 1

    def test_remove_absent_card_is_no_op(self, client, outsider_id):
        response = client.post(
            "/library/remove",
            json={"user_id": outsider_id, "card_id": "card_x"},
            headers={"X-User-Id": outsider_id},
        )

        assert response.status_code == 200
        assert response.json()["quantity"] == 0

    def test_cannot_adjust_another_library(self, client, ledger, proposer_id, counterparty_id):
        response = client.post(
            "/library/remove",
            json={"user_id": counterparty_id, "card_id": "card_x"},
            headers={"X-User-Id": proposer_id},
        )

        assert response.status_code == 403
        assert ledger.quantity(counterparty_id, "card_x") == 5

    @pytest.mark.parametrize("path", ["/library/add", "/library/remove"])
    def test_requires_card_id(self, client, proposer_id, path):
        response = client.post(path, json={"user_id": proposer_id, "card_id": ""}, headers={"X-User-Id": proposer_id})

        assert response.status_code == 400
